"""
src/devbox/configuration_applier.py

Configure a freshly provisioned Windows VM over WinRM: install Chocolatey,
install the profile's packages, then apply its OS settings.
"""

import logging
from typing import Any, Callable, List, Optional, Tuple

import requests
import winrm
from winrm.exceptions import WinRMError

from devbox.config import Config
from devbox.exceptions import ConfigurationFailed, ProviderCallFailed
from devbox.models import AdminCredentials, ConfigurationProfile

logger = logging.getLogger(__name__)

CHOCOLATEY_BOOTSTRAP = (
    "if (-not (Get-Command choco -ErrorAction SilentlyContinue)) { "
    "Set-ExecutionPolicy Bypass -Scope Process -Force; "
    "[System.Net.ServicePointManager]::SecurityProtocol = "
    "[System.Net.ServicePointManager]::SecurityProtocol -bor 3072; "
    "iex ((New-Object System.Net.WebClient).DownloadString('https://community.chocolatey.org/install.ps1')) }"
)


def choco_install_script(package: str) -> str:
    return f"& \"$env:ProgramData\\chocolatey\\bin\\choco.exe\" install {package} -y --no-progress"


class WinRmConfigurationApplier:
    """Runs the configuration profile on a VM through a WinRM session."""

    def __init__(
        self,
        profile: ConfigurationProfile,
        resolve_host: Callable[[str, str], Optional[str]],
        ca_trust_path: str = Config.TRUST_STORE_PATH,
        port: int = Config.WINRM_PORT,
        cert_validation: str = Config.WINRM_CERT_VALIDATION,
    ) -> None:
        """
        Args:
            profile: Packages and settings to apply
            resolve_host: Returns the address of a VM given (service, name)
            ca_trust_path: PEM bundle used to validate the VM certificate
            port: WinRM HTTPS port
            cert_validation: "validate" or "ignore"
        """
        self.profile = profile
        self.resolve_host = resolve_host
        self.ca_trust_path = ca_trust_path
        self.port = port
        self.cert_validation = cert_validation

    def steps(self) -> List[Tuple[str, str]]:
        """Ordered (name, PowerShell script) pairs run by apply()."""
        steps = [("install-chocolatey", CHOCOLATEY_BOOTSTRAP)]
        steps.extend((f"install {package}", choco_install_script(package)) for package in self.profile.packages)
        steps.extend((setting.name, setting.script) for setting in self.profile.settings)
        return steps

    def open_session(self, host: str, credentials: AdminCredentials) -> Any:
        return winrm.Session(
            f"https://{host}:{self.port}/wsman",
            auth=(credentials.user_name, credentials.password),
            transport="ntlm",
            server_cert_validation=self.cert_validation,
            ca_trust_path=self.ca_trust_path,
        )

    def apply(self, service_name: str, vm_name: str, credentials: AdminCredentials) -> None:
        """Run every step in order, stopping at the first failure.

        Raises:
            ConfigurationFailed: If a step exits with a non-zero status
        """
        host = self.resolve_host(service_name, vm_name)
        if host is None:
            raise ProviderCallFailed(f"VM {service_name}/{vm_name} has no public address")

        session = self.open_session(host, credentials)
        steps = self.steps()
        logger.info(f"📦 Applying {len(steps)} configuration steps on {vm_name!r}")

        for index, (name, script) in enumerate(steps, start=1):
            logger.info(f"▶️  [{index}/{len(steps)}] {name}")
            try:
                result = session.run_ps(script)
            except (WinRMError, requests.exceptions.RequestException) as e:
                raise ProviderCallFailed(f"WinRM call to {host} failed during {name}: {e}") from e
            if result.status_code != 0:
                error = result.std_err.decode(errors="replace").strip()
                logger.error(f"❌ {name} failed: {error}")
                raise ConfigurationFailed(name, result.status_code, error)

        logger.info(f"✅ Configuration of {vm_name!r} complete")
