"""
src/devbox/azure_api.py

Azure Resource Manager access: subscription lookup and the compute provider
that creates Windows VMs and exposes their WinRM remoting certificate.
"""

import logging
import re
import ssl
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from azure.core.exceptions import AzureError, ResourceNotFoundError
from azure.mgmt.compute import ComputeManagementClient
from azure.mgmt.network import NetworkManagementClient
from azure.mgmt.resource import ResourceManagementClient, SubscriptionClient
from azure.mgmt.storage import StorageManagementClient
from cryptography import x509

from devbox.config import Config
from devbox.exceptions import CertificateParseFailed, ProviderCallFailed, SubscriptionNotFound
from devbox.models import ProvisioningContext, VmInstance, VmSpec
from devbox.trust_store import thumbprint_of

logger = logging.getLogger(__name__)

RUNNING_STATE = "PowerState/running"
ENABLE_REMOTING_COMMAND = "RunPowerShellScript"
RDP_PORT = 3389


@contextmanager
def provider_call(action: str) -> Iterator[None]:
    """Re-raise any Azure SDK error as ProviderCallFailed."""
    try:
        yield
    except AzureError as e:
        logger.error(f"Azure call failed while {action}: {e}")
        raise ProviderCallFailed(f"Failed {action}: {e}") from e


def resolve_subscription_id(credential: Any, subscription: str) -> str:
    """
    Find the id of a subscription given its display name or id.

    Raises:
        SubscriptionNotFound: If no accessible subscription matches
    """
    client = SubscriptionClient(credential)
    with provider_call("listing subscriptions"):
        for sub in client.subscriptions.list():
            if subscription in (sub.display_name, sub.subscription_id):
                logger.info(f"🔑 Using subscription {sub.display_name} ({sub.subscription_id})")
                return str(sub.subscription_id)
    raise SubscriptionNotFound(subscription)


def dns_label_for(service_name: str, vm_name: str) -> str:
    """Public DNS label for a VM: lower-case letters, digits and hyphens."""
    label = re.sub(r"[^a-z0-9-]+", "-", f"{service_name}-{vm_name}".lower()).strip("-")
    if not label or not label[0].isalpha():
        label = f"vm-{label}"
    return label[:63].rstrip("-")


def remoting_script(host: str, port: int) -> List[str]:
    """
    PowerShell lines that serve WinRM over HTTPS with a certificate issued for host.

    host must be the name clients connect to, so that hostname verification
    against the trusted certificate succeeds.
    """
    return [
        "Enable-PSRemoting -SkipNetworkProfileCheck -Force",
        f"$cert = New-SelfSignedCertificate -DnsName '{host}' -CertStoreLocation Cert:\\LocalMachine\\My",
        "Get-ChildItem WSMan:\\localhost\\Listener | Where-Object { $_.Keys -contains 'Transport=HTTPS' } "
        "| Remove-Item -Recurse -Force",
        "New-Item -Path WSMan:\\localhost\\Listener -Transport HTTPS -Address * "
        f"-HostName '{host}' -CertificateThumbPrint $cert.Thumbprint -Force",
        "Remove-NetFirewallRule -Name 'WinRM-HTTPS-In' -ErrorAction SilentlyContinue",
        "New-NetFirewallRule -Name 'WinRM-HTTPS-In' -DisplayName 'WinRM HTTPS' -Direction Inbound "
        f"-Protocol TCP -LocalPort {port} -Action Allow",
    ]


class AzureClient:
    """Management clients bound to one subscription."""

    def __init__(self, context: ProvisioningContext) -> None:
        self.context = context
        self.compute = ComputeManagementClient(context.credential, context.subscription_id)
        self.network = NetworkManagementClient(context.credential, context.subscription_id)
        self.storage = StorageManagementClient(context.credential, context.subscription_id)
        self.resources = ResourceManagementClient(context.credential, context.subscription_id)


class AzureComputeProvider:
    """Creates and inspects Windows VMs; the service name is the resource group."""

    def __init__(
        self,
        client: AzureClient,
        start_timeout: int = Config.VM_START_TIMEOUT,
        poll_interval: int = Config.VM_POLL_INTERVAL,
        winrm_port: int = Config.WINRM_PORT,
    ) -> None:
        self.client = client
        self.start_timeout = start_timeout
        self.poll_interval = poll_interval
        self.winrm_port = winrm_port
        # PEM data of remoting certificates fetched so far, by thumbprint
        self._certificates: Dict[str, bytes] = {}

    def storage_account_exists(self, name: str) -> bool:
        with provider_call(f"looking up storage account {name}"):
            return any(account.name == name for account in self.client.storage.storage_accounts.list())

    def find_vm(self, service_name: str, vm_name: str) -> Optional[VmInstance]:
        """Return the VM if it exists, else None."""
        try:
            self.client.compute.virtual_machines.get(service_name, vm_name)
        except ResourceNotFoundError:
            return None
        except AzureError as e:
            raise ProviderCallFailed(f"Failed looking up VM {service_name}/{vm_name}: {e}") from e
        return VmInstance(service_name=service_name, name=vm_name, host=self.public_address(service_name, vm_name))

    def public_address(self, service_name: str, vm_name: str) -> Optional[str]:
        """DNS name (or IP when there is none) of the VM's public IP, None if it has no public IP."""
        try:
            ip = self.client.network.public_ip_addresses.get(service_name, f"{vm_name}-ip")
        except ResourceNotFoundError:
            return None
        except AzureError as e:
            raise ProviderCallFailed(f"Failed looking up public IP of {vm_name}: {e}") from e
        if ip.dns_settings is not None and ip.dns_settings.fqdn:
            return str(ip.dns_settings.fqdn)
        return ip.ip_address

    def create_vm(self, spec: VmSpec) -> VmInstance:
        """
        Create the VM with its network resources and wait until it is running.

        With spec.enable_remoting the WinRM HTTPS listener is enabled once the VM
        is up, serving a self-signed certificate issued for the VM's public DNS name.
        """
        rg = spec.service_name
        region = spec.location.region

        with provider_call(f"creating resource group {rg}"):
            self.client.resources.resource_groups.create_or_update(rg, {"location": region})

        nic_id = self._create_network(spec)
        params = self._vm_parameters(spec, nic_id)

        logger.info(f"🆕 Creating VM {spec.name!r} ({spec.size.value}) in {spec.location.value}")
        with provider_call(f"creating VM {spec.name}"):
            self.client.compute.virtual_machines.begin_create_or_update(rg, spec.name, params).result()

        self.wait_until_running(rg, spec.name)

        host = self.public_address(rg, spec.name)
        if spec.enable_remoting:
            if host is None:
                raise ProviderCallFailed(f"VM {rg}/{spec.name} has no public address to enable remoting for")
            self.enable_remoting(rg, spec.name, host)

        return VmInstance(service_name=rg, name=spec.name, host=host)

    def _create_network(self, spec: VmSpec) -> str:
        """Create NSG, virtual network, public IP and NIC; return the NIC id."""
        rg = spec.service_name
        region = spec.location.region
        network = self.client.network

        with provider_call(f"creating network for {spec.name}"):
            nsg = network.network_security_groups.begin_create_or_update(
                rg,
                f"{spec.name}-nsg",
                {
                    "location": region,
                    "security_rules": [
                        self._inbound_rule("allow-rdp", RDP_PORT, 1000),
                        self._inbound_rule("allow-winrm-https", self.winrm_port, 1010),
                    ],
                },
            ).result()

            vnet = network.virtual_networks.begin_create_or_update(
                rg,
                f"{spec.name}-vnet",
                {
                    "location": region,
                    "address_space": {"address_prefixes": [Config.VNET_ADDRESS_PREFIX]},
                    "subnets": [{"name": "default", "address_prefix": Config.SUBNET_ADDRESS_PREFIX}],
                },
            ).result()

            public_ip = network.public_ip_addresses.begin_create_or_update(
                rg,
                f"{spec.name}-ip",
                {
                    "location": region,
                    "sku": {"name": "Standard"},
                    "public_ip_allocation_method": "Static",
                    "dns_settings": {"domain_name_label": dns_label_for(rg, spec.name)},
                },
            ).result()

            nic = network.network_interfaces.begin_create_or_update(
                rg,
                f"{spec.name}-nic",
                {
                    "location": region,
                    "network_security_group": {"id": nsg.id},
                    "ip_configurations": [
                        {
                            "name": "ipconfig1",
                            "subnet": {"id": vnet.subnets[0].id},
                            "public_ip_address": {"id": public_ip.id},
                        }
                    ],
                },
            ).result()

        return str(nic.id)

    @staticmethod
    def _inbound_rule(name: str, port: int, priority: int) -> Dict[str, Any]:
        return {
            "name": name,
            "protocol": "Tcp",
            "direction": "Inbound",
            "access": "Allow",
            "priority": priority,
            "source_address_prefix": "*",
            "source_port_range": "*",
            "destination_address_prefix": "*",
            "destination_port_range": str(port),
        }

    @staticmethod
    def _vm_parameters(spec: VmSpec, nic_id: str) -> Dict[str, Any]:
        return {
            "location": spec.location.region,
            "hardware_profile": {"vm_size": spec.size.value},
            "storage_profile": {
                "image_reference": {"id": spec.image_name},
                "os_disk": {
                    "create_option": "FromImage",
                    "managed_disk": {"storage_account_type": "StandardSSD_LRS"},
                },
            },
            "os_profile": {
                # Windows computer names are limited to 15 characters
                "computer_name": spec.name[:15],
                "admin_username": spec.admin_user_name,
                "admin_password": spec.admin_password,
                "windows_configuration": {
                    "provision_vm_agent": True,
                    "enable_automatic_updates": True,
                },
            },
            "network_profile": {"network_interfaces": [{"id": nic_id, "primary": True}]},
            "diagnostics_profile": {
                "boot_diagnostics": {
                    "enabled": True,
                    "storage_uri": f"https://{spec.storage_account_name}.blob.core.windows.net/",
                }
            },
        }

    def wait_until_running(self, service_name: str, vm_name: str) -> None:
        """Poll the instance view until the VM reports running.

        Raises:
            ProviderCallFailed: If the VM is not running within start_timeout
        """
        deadline = time.time() + self.start_timeout
        while time.time() < deadline:
            with provider_call(f"reading state of VM {vm_name}"):
                view = self.client.compute.virtual_machines.instance_view(service_name, vm_name)
            codes = [status.code for status in (view.statuses or [])]
            if RUNNING_STATE in codes:
                logger.info(f"✅ VM {vm_name!r} is running.")
                return
            time.sleep(self.poll_interval)
        raise ProviderCallFailed(f"VM {vm_name!r} did not start within {self.start_timeout}s")

    def enable_remoting(self, service_name: str, vm_name: str, host: str) -> None:
        """Enable WinRM over HTTPS on the VM with a self-signed certificate for host."""
        logger.info(f"🔧 Enabling WinRM over HTTPS on {vm_name!r} as {host}")
        with provider_call(f"enabling remoting on {vm_name}"):
            result = self.client.compute.virtual_machines.begin_run_command(
                service_name,
                vm_name,
                {"command_id": ENABLE_REMOTING_COMMAND, "script": remoting_script(host, self.winrm_port)},
            ).result()
        for status in getattr(result, "value", None) or []:
            if status.message:
                logger.debug(status.message)

    def get_remoting_thumbprint(self, service_name: str, vm_name: str) -> str:
        """Read the certificate served on the VM's WinRM HTTPS port and return its thumbprint."""
        host = self.public_address(service_name, vm_name)
        if host is None:
            raise ProviderCallFailed(f"VM {service_name}/{vm_name} has no public address")

        try:
            pem = ssl.get_server_certificate((host, self.winrm_port))
        except OSError as e:
            raise ProviderCallFailed(f"Could not read remoting certificate from {host}:{self.winrm_port}: {e}") from e

        try:
            certificate = x509.load_pem_x509_certificate(pem.encode())
        except ValueError as e:
            raise CertificateParseFailed(f"{host}:{self.winrm_port} served an unreadable certificate: {e}") from e
        thumbprint = thumbprint_of(certificate)
        self._certificates[thumbprint] = pem.encode()
        logger.info(f"📜 Remoting certificate of {vm_name!r}: {thumbprint}")
        return thumbprint

    def get_certificate_data(self, service_name: str, thumbprint: str) -> bytes:
        try:
            return self._certificates[thumbprint]
        except KeyError:
            raise ProviderCallFailed(f"No certificate with thumbprint {thumbprint} known for {service_name}")
