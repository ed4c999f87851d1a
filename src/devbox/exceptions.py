"""Errors raised while provisioning a VM."""


class ProvisioningError(Exception):
    """Base class for every failure that aborts a provisioning run."""


class ImageNotFound(ProvisioningError):
    """No catalog image matches the requested family pattern and location."""

    def __init__(self, family_pattern: str, location: str) -> None:
        self.family_pattern = family_pattern
        self.location = location
        super().__init__(f"No image matching {family_pattern!r} is available in {location!r}")


class StorageAccountMissing(ProvisioningError):
    """The storage account the VM depends on does not exist."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Storage account {name!r} does not exist")


class SubscriptionNotFound(ProvisioningError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Subscription {name!r} is not accessible with the supplied credentials")


class CredentialsFileInvalid(ProvisioningError):
    pass


class ProviderCallFailed(ProvisioningError):
    """A call to the cloud provider (or the VM it hosts) failed."""


class CertificateParseFailed(ProvisioningError):
    pass


class ConfigurationFailed(ProvisioningError):
    """A remote configuration step exited with a non-zero status."""

    def __init__(self, step: str, status_code: int, output: str = "") -> None:
        self.step = step
        self.status_code = status_code
        self.output = output
        message = f"Configuration step {step!r} failed with exit code {status_code}"
        if output:
            message += f": {output}"
        super().__init__(message)


class ConfigurationProfileInvalid(ProvisioningError):
    """A configuration profile or setting cannot be used."""
