#!/usr/bin/env python3
"""
src/devbox/orchestrator.py

Idempotent provisioning of one developer VM:
1. Pick the newest image of the requested family available in the location
2. Create the VM unless it already exists
3. Trust the VM's remoting certificate locally unless already trusted
4. Install software and apply OS settings on the VM
"""

import logging
import os
import tempfile
from contextlib import contextmanager
from fnmatch import fnmatchcase
from typing import Any, Iterator, Optional

from devbox.exceptions import ImageNotFound, StorageAccountMissing
from devbox.models import (
    AdminCredentials,
    ImageDescriptor,
    ProvisioningRequest,
    ProvisioningResult,
    TrustCertificate,
    VmInstance,
    VmSpec,
)

logger = logging.getLogger(__name__)


@contextmanager
def temporary_certificate_file(data: bytes, directory: Optional[str] = None) -> Iterator[str]:
    """Write certificate data to a temp file that is removed on exit."""
    fd, path = tempfile.mkstemp(suffix=".cer", dir=directory)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        yield path
    finally:
        os.remove(path)


class ProvisioningOrchestrator:
    """
    Sequences the provisioning steps against its collaborators.

    Collaborators:
        catalog: list_images()
        provider: storage_account_exists, find_vm, create_vm,
            get_remoting_thumbprint, get_certificate_data
        trust_store: list_certificates, add, load_certificate
        applier: apply(service, name, credentials)
    """

    def __init__(
        self, catalog: Any, provider: Any, trust_store: Any, applier: Any, temp_dir: Optional[str] = None
    ) -> None:
        self.catalog = catalog
        self.provider = provider
        self.trust_store = trust_store
        self.applier = applier
        self.temp_dir = temp_dir

    def select_image(self, family_pattern: str, location: str) -> ImageDescriptor:
        """
        Return the most recently published image matching the family pattern and location.

        The pattern is a case-insensitive glob ("Windows-Server-*"). Among images
        published on the same date the first in catalog order wins.

        Raises:
            ImageNotFound: If no image matches
        """
        pattern = family_pattern.lower()
        candidates = [
            image
            for image in self.catalog.list_images()
            if fnmatchcase(image.family.lower(), pattern) and image.available_in(location)
        ]

        if not candidates:
            logger.error(f"❌ No image found for family {family_pattern!r} in {location!r}")
            raise ImageNotFound(family_pattern, location)

        image = max(candidates, key=lambda i: i.published_date)
        logger.info(f"✅ Found image {image.family} published {image.published_date:%Y-%m-%d}: {image.image_name}")
        return image

    def ensure_vm(self, spec: VmSpec) -> VmInstance:
        """Create the VM described by spec unless one with the same service and name exists.

        Raises:
            StorageAccountMissing: If the storage account does not exist; nothing is created
        """
        if not self.provider.storage_account_exists(spec.storage_account_name):
            logger.error(f"❌ Storage account {spec.storage_account_name!r} does not exist")
            raise StorageAccountMissing(spec.storage_account_name)

        existing = self.provider.find_vm(spec.service_name, spec.name)
        if existing is not None:
            logger.info(f"✅ VM {spec.name!r} already exists in {spec.service_name!r}, skipping creation.")
            return existing

        logger.info(f"🆕 VM {spec.name!r} not found in {spec.service_name!r}, creating it")
        instance = self.provider.create_vm(spec)
        logger.info(f"✅ VM {spec.name!r} is up")
        return instance

    def ensure_remote_trust(self, service_name: str, vm_name: str) -> TrustCertificate:
        """Add the VM's remoting certificate to the local trust store unless already present."""
        thumbprint = self.provider.get_remoting_thumbprint(service_name, vm_name)
        data = self.provider.get_certificate_data(service_name, thumbprint)

        with temporary_certificate_file(data, self.temp_dir) as path:
            certificate = self.trust_store.load_certificate(path)

            if any(entry.thumbprint == thumbprint for entry in self.trust_store.list_certificates()):
                logger.info(f"✅ Remoting certificate {thumbprint} already trusted")
                return certificate

            logger.info(f"🔐 Installing remoting certificate {thumbprint}")
            self.trust_store.add(certificate)
            return certificate

    def apply_configuration(self, service_name: str, vm_name: str, credentials: AdminCredentials) -> None:
        logger.info(f"📦 Configuring {vm_name!r}")
        self.applier.apply(service_name, vm_name, credentials)

    def provision(self, request: ProvisioningRequest) -> ProvisioningResult:
        """Run every step in order; any failure aborts the remaining ones."""
        service_name = request.effective_service_name

        image = self.select_image(request.image_family, request.location.value)
        spec = VmSpec(
            name=request.vm_name,
            size=request.vm_size,
            image_name=image.image_name,
            storage_account_name=request.storage_account_name,
            service_name=service_name,
            admin_user_name=request.credentials.user_name,
            admin_password=request.credentials.password,
            location=request.location,
        )

        instance = self.ensure_vm(spec)
        certificate = self.ensure_remote_trust(service_name, request.vm_name)
        self.apply_configuration(service_name, request.vm_name, request.credentials)

        return ProvisioningResult(instance=instance, image=image, certificate=certificate)
