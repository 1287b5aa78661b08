"""
Generic OCI Registry V2 provider.

Works with any registry implementing the OCI Distribution API (Harbor, Quay,
distribution/registry, Artifactory, ...).

Limitations:
- Package listing relies on /v2/_catalog, which is not part of the OCI spec.
- Untagged manifests cannot be enumerated through the v2 API.
- Creation times come from the image config blob's `created` field.
"""

import base64
import logging
from typing import Dict, List, Optional, Tuple

from registry_cleaner.error_utils import AuthenticationError, NotFoundError, PolicyRejectionError, RegistryError
from registry_cleaner.http_client import HttpClient
from registry_cleaner.models import Manifest, Package, ProviderConfig, Referrer, RegistryFeature, Tag
from registry_cleaner.providers.base import BaseProvider
from registry_cleaner.validation import parse_timestamp

logger = logging.getLogger(__name__)

_CONFIG_MEDIA_TYPES = (
    "application/vnd.oci.image.config.v1+json",
    "application/vnd.docker.container.image.v1+json",
)
_PAGE_SIZE = 1000


def next_page_url(link_header: Optional[str], base_url: str) -> Optional[str]:
    """Extract the rel="next" target from a Link header, resolved against base_url"""
    if not link_header:
        return None
    for part in link_header.split(","):
        if 'rel="next"' in part:
            target = part.split(";")[0].strip()[1:-1]
            if target.startswith("/"):
                return base_url + target
            return target
    return None


class GenericOCIProvider(BaseProvider):
    registry_type = "oci"

    def __init__(self, config: ProviderConfig, http_client: HttpClient):
        super().__init__(config, http_client)
        if not self.registry_url:
            raise ValueError("registry-url is required for the OCI provider")
        if config.username and not config.password:
            raise ValueError("registry-password is required when registry-username is provided")
        self._manifests: Dict[Tuple[str, str], Manifest] = {}

    def get_auth_headers(self) -> Dict[str, str]:
        if self.config.token:
            return {"Authorization": f"Bearer {self.config.token}"}
        if self.config.username and self.config.password:
            raw = f"{self.config.username}:{self.config.password}".encode()
            return {"Authorization": f"Basic {base64.b64encode(raw).decode()}"}
        return {}

    def authenticate(self) -> None:
        logger.debug(f"Authenticating with OCI registry at {self.registry_url}")
        try:
            self.http_client.get(f"{self.api_url()}/", self.get_auth_headers())
        except AuthenticationError:
            raise AuthenticationError(
                "OCI registry authentication failed: Invalid credentials. Please check your token or username/password.",
                self.registry_type,
            )
        except RegistryError as e:
            raise AuthenticationError(f"OCI registry authentication failed: {e}", self.registry_type) from e
        self.authenticated = True

    def list_packages(self) -> List[Package]:
        self.ensure_authenticated()
        names: List[str] = []
        url: Optional[str] = f"{self.api_url()}/_catalog?n={_PAGE_SIZE}"
        try:
            while url:
                response = self.http_client.get(url, self.get_auth_headers())
                data = response.data if isinstance(response.data, dict) else {}
                names.extend(data.get("repositories") or [])
                url = next_page_url(response.header("link"), self.registry_url)
        except RegistryError as e:
            if e.is_client_error:
                logger.warning(
                    "Registry does not support listing repositories (/v2/_catalog). Please specify package names explicitly."
                )
                return []
            raise
        return [Package(id=name, name=name, url=f"{self.registry_url}/{name}") for name in names]

    def list_tags(self, package_name: str) -> List[Tag]:
        self.ensure_authenticated()
        tag_names: List[str] = []
        url: Optional[str] = f"{self.tags_url(package_name)}?n={_PAGE_SIZE}"
        while url:
            response = self.http_client.get(url, self.get_auth_headers())
            data = response.data if isinstance(response.data, dict) else {}
            tag_names.extend(data.get("tags") or [])
            url = next_page_url(response.header("link"), self.registry_url)

        tags = []
        for tag_name in tag_names:
            try:
                manifest = self.get_manifest(package_name, tag_name)
            except RegistryError as e:
                logger.debug(f"Could not get manifest for tag {package_name}:{tag_name}: {e}")
                continue
            tags.append(Tag(name=tag_name, digest=manifest.digest, created_at=manifest.created_at))
        return tags

    def get_manifest(self, package_name: str, reference: str) -> Manifest:
        cached = self._manifests.get((package_name, reference))
        if cached is not None:
            return cached
        manifest = self.fetch_manifest(package_name, reference)
        if manifest.created_at is None:
            manifest.created_at = self._config_created_at(package_name, manifest)
        self._manifests[(package_name, manifest.digest)] = manifest
        return manifest

    def _config_created_at(self, package_name: str, manifest: Manifest):
        """Read the image creation time from the config blob, if there is one"""
        if manifest.config is None or manifest.config.media_type not in _CONFIG_MEDIA_TYPES:
            return None
        try:
            response = self.http_client.get(
                self.blob_url(package_name, manifest.config.digest), self.get_auth_headers()
            )
        except RegistryError as e:
            logger.debug(f"Could not read config blob for {package_name}@{manifest.digest}: {e}")
            return None
        if isinstance(response.data, dict):
            return parse_timestamp(response.data.get("created"))
        return None

    def get_package_manifests(self, package_name: str) -> List[Manifest]:
        logger.debug(f"OCI v2 API cannot enumerate untagged manifests for {package_name}")
        return []

    def delete_tag(self, package_name: str, tag: str) -> None:
        try:
            self.remove_manifest(package_name, tag)
        except RegistryError as e:
            if e.status_code in (400, 405):
                raise PolicyRejectionError(
                    f"Registry does not allow deleting tag {package_name}:{tag} on its own: {e}",
                    e.status_code,
                    self.registry_type,
                ) from e
            raise
        logger.info(f"Deleted tag {tag} from {package_name}")

    def delete_manifest(self, package_name: str, digest: str) -> None:
        try:
            self.remove_manifest(package_name, digest)
        except NotFoundError:
            logger.debug(f"Manifest {package_name}@{digest} is already gone")
            return
        self._manifests.pop((package_name, digest), None)
        logger.info(f"Deleted manifest {digest} from {package_name}")

    def get_referrers(self, package_name: str, digest: str) -> List[Referrer]:
        return self.fetch_referrers(package_name, digest)

    def supports_feature(self, feature: RegistryFeature) -> bool:
        return feature in (RegistryFeature.MULTI_ARCH, RegistryFeature.REFERRERS)

    def get_known_registry_urls(self) -> List[str]:
        return []
