"""Shared test fixtures and configuration for devbox tests."""

import datetime
from typing import Callable, List
from unittest import mock

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from devbox.config import Config
from devbox.models import AdminCredentials, ImageDescriptor, VmInstance, VmLocation, VmSize, VmSpec
from devbox.trust_store import PemTrustStore


def make_certificate(common_name: str) -> x509.Certificate:
    """Self-signed certificate like the one WinRM generates for a VM."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.datetime.now(datetime.timezone.utc)
    return (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=365))
        .sign(key, hashes.SHA256())
    )


def to_pem(certificate: x509.Certificate) -> bytes:
    return certificate.public_bytes(serialization.Encoding.PEM)


@pytest.fixture(scope="session")
def vm_certificate() -> x509.Certificate:
    return make_certificate("devbox-vm1")


@pytest.fixture(scope="session")
def other_certificate() -> x509.Certificate:
    return make_certificate("some-other-host")


@pytest.fixture
def vm_certificate_pem(vm_certificate) -> bytes:
    return to_pem(vm_certificate)


@pytest.fixture
def other_certificate_pem(other_certificate) -> bytes:
    return to_pem(other_certificate)


@pytest.fixture
def vm_thumbprint(vm_certificate) -> str:
    return vm_certificate.fingerprint(hashes.SHA1()).hex().upper()


@pytest.fixture
def trust_store(tmp_path) -> PemTrustStore:
    return PemTrustStore(tmp_path / "store" / "trusted.pem")


@pytest.fixture
def make_image() -> Callable[..., ImageDescriptor]:
    def _make(family: str, locations: str, published: str, name: str = "") -> ImageDescriptor:
        return ImageDescriptor(
            family=family,
            locations=ImageDescriptor.parse_locations(locations),
            published_date=datetime.datetime.fromisoformat(published),
            image_name=name or f"{family}-{published}",
        )

    return _make


@pytest.fixture
def sample_images(make_image) -> List[ImageDescriptor]:
    """Catalog from the image selection example: Foo2 is newer."""
    return [
        make_image("Foo1", "West Europe;East US", "2020-01-01", "img-foo1"),
        make_image("Foo2", "West Europe", "2021-01-01", "img-foo2"),
        make_image("Bar1", "West Europe", "2022-01-01", "img-bar1"),
    ]


@pytest.fixture
def vm_spec() -> VmSpec:
    return VmSpec(
        name="vm1",
        size=VmSize.D2S_V3,
        image_name="img-foo2",
        storage_account_name="devboxdiag",
        service_name="svc1",
        admin_user_name="devadmin",
        admin_password="S3cret!pass",
        location=VmLocation.WEST_EUROPE,
    )


@pytest.fixture
def admin_credentials() -> AdminCredentials:
    return AdminCredentials(user_name="devadmin", password="S3cret!pass")


@pytest.fixture
def mock_provider():
    """Compute provider double with a storage account present and no VMs."""
    provider = mock.MagicMock()
    provider.storage_account_exists.return_value = True
    provider.find_vm.return_value = None
    provider.create_vm.side_effect = lambda spec: VmInstance(spec.service_name, spec.name, "vm1.example.net")
    return provider


@pytest.fixture
def mock_catalog(sample_images):
    catalog = mock.MagicMock()
    catalog.list_images.return_value = sample_images
    return catalog


@pytest.fixture
def mock_azure_client():
    """AzureClient stand-in exposing MagicMock management clients."""
    client = mock.MagicMock()
    client.network.public_ip_addresses.get.return_value.dns_settings.fqdn = "svc1-vm1.westeurope.cloudapp.azure.com"
    return client


@pytest.fixture
def mock_env(monkeypatch, tmp_path):
    """Set up test environment variables."""
    for key in ("PROFILE_PATH", "AZURE_TENANT_ID", "AZURE_CLIENT_ID", "AZURE_CLIENT_SECRET"):
        monkeypatch.delenv(key, raising=False)

    env_vars = {
        "VM_START_TIMEOUT": "60",
        "VM_POLL_INTERVAL": "1",
        "TRUST_STORE_PATH": str(tmp_path / "trusted.pem"),
    }
    for key, value in env_vars.items():
        monkeypatch.setenv(key, value)
    monkeypatch.setattr(Config, "PROFILE_PATH", None)
    monkeypatch.setattr(Config, "TRUST_STORE_PATH", env_vars["TRUST_STORE_PATH"])
    return env_vars
