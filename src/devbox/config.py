import os
from pathlib import Path
from typing import Dict, List, Optional, Union

import yaml
from azure.identity import ClientSecretCredential
from dotenv import dotenv_values, load_dotenv

from devbox.exceptions import ConfigurationProfileInvalid, CredentialsFileInvalid
from devbox.models import ConfigurationProfile, WindowsSetting

DEFAULT_PACKAGES: List[str] = [
    "git",
    "vscode",
    "googlechrome",
    "firefox",
    "7zip",
    "notepadplusplus",
    "sysinternals",
    "python",
    "nodejs-lts",
    "dotnet-sdk",
    "powershell-core",
    "microsoft-windows-terminal",
]

DEFAULT_SETTINGS: List[WindowsSetting] = [
    WindowsSetting(
        name="show-file-extensions",
        script=(
            "Set-ItemProperty -Path 'HKCU:\\Software\\Microsoft\\Windows\\CurrentVersion\\Explorer\\Advanced' "
            "-Name HideFileExt -Value 0"
        ),
    ),
    WindowsSetting(
        name="show-hidden-files",
        script=(
            "Set-ItemProperty -Path 'HKCU:\\Software\\Microsoft\\Windows\\CurrentVersion\\Explorer\\Advanced' "
            "-Name Hidden -Value 1"
        ),
    ),
    WindowsSetting(
        name="disable-ie-enhanced-security",
        script=(
            "$key = 'HKLM:\\SOFTWARE\\Microsoft\\Active Setup\\Installed Components\\"
            "{A509B1A7-37EF-4b3f-8CFC-4F3A74704073}'; "
            "if (Test-Path $key) { Set-ItemProperty -Path $key -Name IsInstalled -Value 0 }"
        ),
    ),
    WindowsSetting(
        name="disable-server-manager-at-logon",
        script=(
            "Get-ScheduledTask -TaskName ServerManager -ErrorAction SilentlyContinue | "
            "Disable-ScheduledTask | Out-Null"
        ),
    ),
]

CREDENTIAL_KEYS = ("AZURE_TENANT_ID", "AZURE_CLIENT_ID", "AZURE_CLIENT_SECRET")


class Config:
    """Loads and manages configuration from environment variables."""

    load_dotenv()

    VM_START_TIMEOUT = int(os.getenv("VM_START_TIMEOUT", "900"))
    VM_POLL_INTERVAL = int(os.getenv("VM_POLL_INTERVAL", "15"))

    WINRM_PORT = int(os.getenv("WINRM_PORT", "5986"))
    # "validate" checks the VM certificate against the trust store, "ignore" skips the check
    WINRM_CERT_VALIDATION = os.getenv("WINRM_CERT_VALIDATION", "validate")

    TRUST_STORE_PATH = os.path.expanduser(os.getenv("TRUST_STORE_PATH", "~/.devbox/trusted-remoting.pem"))
    PROFILE_PATH = os.getenv("PROFILE_PATH")

    # Optional "<resource-group>/<gallery>" restricting the image search
    IMAGE_GALLERY = os.getenv("IMAGE_GALLERY", "")

    VNET_ADDRESS_PREFIX = os.getenv("VNET_ADDRESS_PREFIX", "10.0.0.0/16")
    SUBNET_ADDRESS_PREFIX = os.getenv("SUBNET_ADDRESS_PREFIX", "10.0.0.0/24")

    @staticmethod
    def read_credentials_file(path: Union[str, Path]) -> Dict[str, str]:
        """Read the service principal settings from a dotenv-style file.

        Args:
            path: File holding AZURE_TENANT_ID, AZURE_CLIENT_ID and AZURE_CLIENT_SECRET

        Returns:
            Mapping of the three keys to their values

        Raises:
            CredentialsFileInvalid: If the file is missing or lacks a key
        """
        path = Path(path).expanduser()
        if not path.is_file():
            raise CredentialsFileInvalid(f"Credentials file not found at {path}")

        values = dotenv_values(path)
        missing = [key for key in CREDENTIAL_KEYS if not values.get(key)]
        if missing:
            raise CredentialsFileInvalid(f"Credentials file {path} is missing: {', '.join(missing)}")
        return {key: str(values[key]) for key in CREDENTIAL_KEYS}

    @staticmethod
    def load_credentials(path: Union[str, Path]) -> ClientSecretCredential:
        """Build an Azure credential from a credentials file."""
        values = Config.read_credentials_file(path)
        return ClientSecretCredential(
            tenant_id=values["AZURE_TENANT_ID"],
            client_id=values["AZURE_CLIENT_ID"],
            client_secret=values["AZURE_CLIENT_SECRET"],
        )

    @staticmethod
    def load_profile(path: Optional[Union[str, Path]] = None) -> ConfigurationProfile:
        """
        Load the configuration profile applied to the VM.

        Falls back to PROFILE_PATH, then to the built-in package list and settings.
        A YAML profile may set ``packages`` and/or ``settings``; omitted keys keep the defaults.

        Raises:
            ConfigurationProfileInvalid: If the file cannot be read or does not describe a profile
        """
        path = path or Config.PROFILE_PATH
        if not path:
            return ConfigurationProfile(packages=list(DEFAULT_PACKAGES), settings=list(DEFAULT_SETTINGS))

        path = Path(path).expanduser()
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except OSError as e:
            raise ConfigurationProfileInvalid(f"Cannot read profile {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigurationProfileInvalid(f"Profile {path} is not valid YAML: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationProfileInvalid(f"Profile {path} must be a mapping with packages and/or settings")

        packages = data.get("packages", DEFAULT_PACKAGES)
        raw_settings = data.get("settings")
        if not isinstance(packages, list):
            raise ConfigurationProfileInvalid(f"Profile {path}: packages must be a list")
        if raw_settings is None:
            settings = list(DEFAULT_SETTINGS)
        elif not isinstance(raw_settings, list):
            raise ConfigurationProfileInvalid(f"Profile {path}: settings must be a list")
        else:
            try:
                settings = [
                    WindowsSetting(name=str(item["name"]), script=str(item["script"])) for item in raw_settings
                ]
            except (KeyError, TypeError) as e:
                raise ConfigurationProfileInvalid(f"Profile {path}: every setting needs a name and a script") from e
        return ConfigurationProfile(packages=[str(p) for p in packages], settings=settings)
