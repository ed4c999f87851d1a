"""
Command-line interface for provisioning a Windows developer VM.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from devbox.azure_api import AzureClient, AzureComputeProvider, resolve_subscription_id
from devbox.config import Config
from devbox.configuration_applier import WinRmConfigurationApplier
from devbox.exceptions import ProvisioningError
from devbox.image_catalog import AzureGalleryImageCatalog
from devbox.models import AdminCredentials, ProvisioningContext, ProvisioningRequest, VmLocation, VmSize
from devbox.orchestrator import ProvisioningOrchestrator
from devbox.trust_store import PemTrustStore

app = typer.Typer(
    name="devbox",
    help="Provision a Windows developer VM in Azure and install its software",
    add_completion=False,
)
console = Console()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)


def build_orchestrator(context: ProvisioningContext, profile_path: Optional[Path]) -> ProvisioningOrchestrator:
    """Wire the Azure collaborators for one subscription."""
    client = AzureClient(context)
    provider = AzureComputeProvider(client)
    trust_store = PemTrustStore(Config.TRUST_STORE_PATH)
    applier = WinRmConfigurationApplier(
        profile=Config.load_profile(profile_path),
        resolve_host=provider.public_address,
        ca_trust_path=str(trust_store.path),
    )
    return ProvisioningOrchestrator(
        catalog=AzureGalleryImageCatalog(client),
        provider=provider,
        trust_store=trust_store,
        applier=applier,
    )


@app.command()
def provision(
    image_family: str = typer.Option(..., help="Image family name, may contain '*' wildcards"),
    credentials_file: Path = typer.Option(..., help="Service principal credentials (dotenv format)"),
    subscription: str = typer.Option(..., help="Subscription display name or id"),
    storage_account: str = typer.Option(..., help="Existing storage account for boot diagnostics"),
    vm_name: str = typer.Option(..., help="Name of the VM"),
    vm_size: VmSize = typer.Option(..., help="VM size"),
    location: VmLocation = typer.Option(..., help="Region to create the VM in"),
    service_name: Optional[str] = typer.Option(None, help="Resource group of the VM [default: VM name]"),
    admin_user: str = typer.Option(..., prompt=True, help="Administrator user name"),
    admin_password: str = typer.Option(
        ..., prompt=True, hide_input=True, confirmation_prompt=True, help="Administrator password"
    ),
    profile: Optional[Path] = typer.Option(None, help="YAML profile with packages and settings to apply"),
) -> None:
    """Create the VM if needed, trust its remoting certificate and configure it."""
    request = ProvisioningRequest(
        image_family=image_family,
        vm_name=vm_name,
        vm_size=vm_size,
        location=location,
        storage_account_name=storage_account,
        credentials=AdminCredentials(user_name=admin_user, password=admin_password),
        service_name=service_name,
    )
    logger.info(f"🚀 Provisioning {vm_name!r} in {request.effective_service_name!r}")

    try:
        credential = Config.load_credentials(credentials_file)
        context = ProvisioningContext(
            credential=credential,
            subscription_id=resolve_subscription_id(credential, subscription),
        )
        result = build_orchestrator(context, profile).provision(request)
    except ProvisioningError as e:
        console.print(f"❌ Provisioning failed: {e}", soft_wrap=True)
        raise typer.Exit(1)

    host = result.instance.host or vm_name
    logger.info(f"✅ {vm_name!r} is ready")
    console.print(f"🔗 Connect with Remote Desktop: mstsc /v:{host} (user {admin_user})", soft_wrap=True)


if __name__ == "__main__":
    app()
