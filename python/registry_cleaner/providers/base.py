"""
Registry provider contract and shared OCI Distribution v2 helpers.

The cleanup engine depends only on RegistryProvider. BaseProvider adds the URL
building, manifest fetching and referrer parsing that every v2-speaking backend
shares.
"""

import hashlib
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from registry_cleaner.error_utils import RegistryError
from registry_cleaner.graph import parse_manifest
from registry_cleaner.http_client import HttpClient, RegistryResponse
from registry_cleaner.models import (
    MANIFEST_ACCEPT_HEADER,
    Manifest,
    Package,
    ProviderConfig,
    Referrer,
    RegistryFeature,
    Tag,
)

logger = logging.getLogger(__name__)


class RegistryProvider(ABC):
    """Uniform capability contract every registry backend implements"""

    @abstractmethod
    def authenticate(self) -> None:
        """Verify credentials; raises AuthenticationError on failure"""

    @abstractmethod
    def list_packages(self) -> List[Package]:
        pass

    @abstractmethod
    def list_tags(self, package_name: str) -> List[Tag]:
        pass

    @abstractmethod
    def get_manifest(self, package_name: str, reference: str) -> Manifest:
        """Fetch a manifest by tag or digest"""

    @abstractmethod
    def get_package_manifests(self, package_name: str) -> List[Manifest]:
        """Manifests of the package that tags may not cover (untagged manifests)"""

    @abstractmethod
    def delete_tag(self, package_name: str, tag: str) -> None:
        pass

    @abstractmethod
    def delete_manifest(self, package_name: str, digest: str) -> None:
        pass

    @abstractmethod
    def get_referrers(self, package_name: str, digest: str) -> List[Referrer]:
        pass

    @abstractmethod
    def supports_feature(self, feature: RegistryFeature) -> bool:
        pass

    @abstractmethod
    def get_known_registry_urls(self) -> List[str]:
        """Hosts used to auto-detect this provider from a registry URL"""


def compute_digest(content: bytes) -> str:
    return "sha256:" + hashlib.sha256(content).hexdigest()


class BaseProvider(RegistryProvider):
    """Common OCI Registry V2 API plumbing"""

    registry_type = "oci"

    def __init__(self, config: ProviderConfig, http_client: HttpClient):
        self.config = config
        self.http_client = http_client
        self.registry_url = self.normalize_registry_url(config.registry_url or "")
        self.authenticated = False

    @staticmethod
    def normalize_registry_url(url: str) -> str:
        """Ensure a protocol and drop the trailing slash"""
        if url and not url.startswith(("http://", "https://")):
            url = f"https://{url}"
        return url.rstrip("/")

    def repository_path(self, package_name: str) -> str:
        """Repository path used in v2 URLs for a package"""
        return package_name

    def api_url(self) -> str:
        return f"{self.registry_url}/v2"

    def manifest_url(self, package_name: str, reference: str) -> str:
        return f"{self.api_url()}/{self.repository_path(package_name)}/manifests/{reference}"

    def tags_url(self, package_name: str) -> str:
        return f"{self.api_url()}/{self.repository_path(package_name)}/tags/list"

    def referrers_url(self, package_name: str, digest: str) -> str:
        return f"{self.api_url()}/{self.repository_path(package_name)}/referrers/{digest}"

    def blob_url(self, package_name: str, digest: str) -> str:
        return f"{self.api_url()}/{self.repository_path(package_name)}/blobs/{digest}"

    @abstractmethod
    def get_auth_headers(self) -> Dict[str, str]:
        """Headers authenticating requests against the v2 API"""

    def registry_headers(self, accept: str = MANIFEST_ACCEPT_HEADER) -> Dict[str, str]:
        return {**self.get_auth_headers(), "Accept": accept}

    def ensure_authenticated(self) -> None:
        if not self.authenticated:
            self.authenticate()

    def fetch_manifest(self, package_name: str, reference: str) -> Manifest:
        """GET a manifest from the v2 API and parse it"""
        self.ensure_authenticated()
        response = self.http_client.get(self.manifest_url(package_name, reference), self.registry_headers())
        if response.data is None:
            raise RegistryError(f"Empty manifest response for {package_name}@{reference}", response.status)
        digest = self.response_digest(response, reference)
        try:
            return parse_manifest(digest, response.data)
        except ValueError as e:
            raise RegistryError(f"Invalid manifest for {package_name}@{reference}: {e}", response.status) from e

    @staticmethod
    def response_digest(response: RegistryResponse, reference: str) -> str:
        """Digest from Docker-Content-Digest, the reference itself, or the body hash"""
        digest = response.header("docker-content-digest")
        if digest:
            return digest
        if reference.startswith("sha256:"):
            return reference
        return compute_digest(response.content)

    def fetch_referrers(self, package_name: str, digest: str) -> List[Referrer]:
        """Query the OCI referrers API; registries without it yield an empty list"""
        self.ensure_authenticated()
        try:
            response = self.http_client.get(
                self.referrers_url(package_name, digest),
                self.registry_headers(accept="application/vnd.oci.image.index.v1+json"),
            )
        except RegistryError as e:
            logger.debug(f"Referrers API not available for {package_name}@{digest}: {e}")
            return []

        data = response.data if isinstance(response.data, dict) else {}
        return [
            Referrer(
                digest=m.get("digest", ""),
                artifact_type=m.get("artifactType", ""),
                media_type=m.get("mediaType", ""),
                size=int(m.get("size") or 0),
                annotations=dict(m.get("annotations") or {}),
            )
            for m in data.get("manifests") or []
        ]

    def remove_manifest(self, package_name: str, reference: str) -> None:
        """DELETE a manifest (by digest) or tag through the v2 API"""
        self.ensure_authenticated()
        self.http_client.delete(self.manifest_url(package_name, reference), self.get_auth_headers())
