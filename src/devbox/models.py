"""Data models for VM provisioning."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, FrozenSet, List, Optional


class VmSize(str, Enum):
    """VM sizes a developer box may be created with."""

    A2_V2 = "Standard_A2_v2"
    A4_V2 = "Standard_A4_v2"
    A8_V2 = "Standard_A8_v2"
    B2MS = "Standard_B2ms"
    B4MS = "Standard_B4ms"
    D2S_V3 = "Standard_D2s_v3"
    D4S_V3 = "Standard_D4s_v3"
    D8S_V3 = "Standard_D8s_v3"


class VmLocation(str, Enum):
    """Regions a developer box may be created in, by display name."""

    WEST_EUROPE = "West Europe"
    NORTH_EUROPE = "North Europe"
    UK_SOUTH = "UK South"
    EAST_US = "East US"
    EAST_US_2 = "East US 2"
    CENTRAL_US = "Central US"
    WEST_US = "West US"
    WEST_US_2 = "West US 2"
    EAST_ASIA = "East Asia"
    SOUTHEAST_ASIA = "Southeast Asia"
    JAPAN_EAST = "Japan East"
    AUSTRALIA_EAST = "Australia East"

    @property
    def region(self) -> str:
        """ARM region name, e.g. ``westeurope``."""
        return normalize_location(self.value)


def normalize_location(location: str) -> str:
    """Reduce a display name or ARM name to a comparable token.

    >>> normalize_location("West Europe")
    'westeurope'
    """
    return location.replace(" ", "").lower()


@dataclass(frozen=True)
class ImageDescriptor:
    """A published machine image as reported by the image catalog."""

    family: str
    locations: FrozenSet[str]
    published_date: datetime
    image_name: str

    @staticmethod
    def parse_locations(raw: str) -> FrozenSet[str]:
        """Split a semicolon-delimited location list ("West Europe;East US")."""
        return frozenset(part.strip() for part in raw.split(";") if part.strip())

    def available_in(self, location: str) -> bool:
        wanted = normalize_location(location)
        return any(normalize_location(loc) == wanted for loc in self.locations)


@dataclass
class VmSpec:
    """Everything needed to create one VM."""

    name: str
    size: VmSize
    image_name: str
    storage_account_name: str
    service_name: str
    admin_user_name: str
    admin_password: str = field(repr=False)
    location: VmLocation
    enable_remoting: bool = True


@dataclass(frozen=True)
class VmInstance:
    """A VM known to exist, identified by its service (resource group) and name."""

    service_name: str
    name: str
    host: Optional[str] = None


@dataclass(frozen=True)
class TrustCertificate:
    """A certificate as held by the local trust store."""

    thumbprint: str
    subject: str
    pem: bytes = field(repr=False)


@dataclass(frozen=True)
class AdminCredentials:
    user_name: str
    password: str = field(repr=False)


@dataclass(frozen=True)
class ProvisioningContext:
    """Subscription-wide settings shared by every Azure call of a run."""

    credential: Any
    subscription_id: str


@dataclass
class WindowsSetting:
    """A named PowerShell snippet that applies one OS setting."""

    name: str
    script: str


@dataclass
class ConfigurationProfile:
    """Software packages and OS settings applied after the VM boots."""

    packages: List[str] = field(default_factory=list)
    settings: List[WindowsSetting] = field(default_factory=list)


@dataclass
class ProvisioningRequest:
    """Caller-supplied parameters of one provisioning run."""

    image_family: str
    vm_name: str
    vm_size: VmSize
    location: VmLocation
    storage_account_name: str
    credentials: AdminCredentials
    service_name: Optional[str] = None

    @property
    def effective_service_name(self) -> str:
        return self.service_name or self.vm_name


@dataclass
class ProvisioningResult:
    instance: VmInstance
    image: ImageDescriptor
    certificate: TrustCertificate
