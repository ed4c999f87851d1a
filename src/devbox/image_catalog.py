"""Image catalog backed by Azure Compute Galleries."""

import logging
from typing import Any, Iterator, List, Optional, Tuple

from devbox.azure_api import AzureClient, provider_call
from devbox.config import Config
from devbox.exceptions import ConfigurationProfileInvalid, ProviderCallFailed
from devbox.models import ImageDescriptor

logger = logging.getLogger(__name__)


def resource_group_of(resource_id: str) -> str:
    """Extract the resource group from an ARM resource id."""
    parts = resource_id.strip("/").split("/")
    for key, value in zip(parts, parts[1:]):
        if key.lower() == "resourcegroups":
            return value
    raise ValueError(f"No resource group in resource id {resource_id!r}")


class AzureGalleryImageCatalog:
    """
    Lists every image version published in the subscription's compute galleries.

    An image definition plays the role of the image family; each of its versions
    is one ImageDescriptor, available in the version's target regions.
    """

    def __init__(self, client: AzureClient, gallery: Optional[str] = None) -> None:
        self.client = client
        self.gallery = gallery if gallery is not None else Config.IMAGE_GALLERY

    def _galleries(self) -> Iterator[Tuple[str, str]]:
        if self.gallery:
            resource_group, _, name = self.gallery.partition("/")
            if not name:
                raise ConfigurationProfileInvalid(
                    f"IMAGE_GALLERY must be given as <resource-group>/<gallery>, got {self.gallery!r}"
                )
            yield resource_group, name
            return
        for gallery in self.client.compute.galleries.list():
            try:
                resource_group = resource_group_of(gallery.id)
            except ValueError as e:
                raise ProviderCallFailed(f"Gallery {gallery.name!r} has an unexpected id: {e}") from e
            yield resource_group, gallery.name

    def list_images(self) -> List[ImageDescriptor]:
        compute = self.client.compute
        images: List[ImageDescriptor] = []
        with provider_call("listing gallery images"):
            for resource_group, gallery_name in self._galleries():
                for definition in compute.gallery_images.list_by_gallery(resource_group, gallery_name):
                    versions = compute.gallery_image_versions.list_by_gallery_image(
                        resource_group, gallery_name, definition.name
                    )
                    for version in versions:
                        descriptor = self._describe(definition.name, version)
                        if descriptor is not None:
                            images.append(descriptor)
        logger.debug(f"Catalog holds {len(images)} image versions")
        return images

    @staticmethod
    def _describe(family: str, version: Any) -> Optional[ImageDescriptor]:
        profile = version.publishing_profile
        if profile is None or profile.published_date is None:
            return None
        if profile.exclude_from_latest:
            return None
        regions = frozenset(region.name for region in (profile.target_regions or []))
        return ImageDescriptor(
            family=family,
            locations=regions,
            published_date=profile.published_date,
            image_name=version.id,
        )
