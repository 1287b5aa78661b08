"""
GitHub Container Registry provider.

Package and version metadata come from the GitHub Packages REST API; manifests
and referrers come from the ghcr.io v2 API. A package version on GHCR is one
manifest digest, so deletion always removes a whole version.
"""

import base64
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from registry_cleaner.error_utils import AuthenticationError, NotFoundError, PolicyRejectionError, RegistryError
from registry_cleaner.http_client import HttpClient
from registry_cleaner.models import Manifest, Package, ProviderConfig, Referrer, RegistryFeature, Tag
from registry_cleaner.providers.base import BaseProvider
from registry_cleaner.validation import parse_timestamp

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"
GHCR_URL = "https://ghcr.io"
GITHUB_API_VERSION = "2022-11-28"
_PER_PAGE = 100


def version_tags(version: Dict[str, Any]) -> List[str]:
    """Tags recorded on a GitHub package version"""
    container = (version.get("metadata") or {}).get("container") or {}
    return list(container.get("tags") or [])


class GHCRProvider(BaseProvider):
    registry_type = "ghcr"

    def __init__(self, config: ProviderConfig, http_client: HttpClient):
        super().__init__(config, http_client)
        if not config.token:
            raise ValueError("token is required for GHCR")
        if not config.owner:
            raise ValueError("owner is required for GHCR")
        self.registry_url = self.normalize_registry_url(config.registry_url or GHCR_URL)
        self.owner = config.owner
        self.owner_type = config.owner_type or "users"
        self._versions: Dict[str, List[Dict[str, Any]]] = {}

    def repository_path(self, package_name: str) -> str:
        return f"{self.owner.lower()}/{package_name}"

    def get_auth_headers(self) -> Dict[str, str]:
        """ghcr.io accepts the base64-encoded PAT as a bearer token"""
        encoded = base64.b64encode(self.config.token.encode()).decode()
        return {"Authorization": f"Bearer {encoded}"}

    def api_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
        }

    def packages_url(self) -> str:
        return f"{GITHUB_API_URL}/{self.owner_type}/{self.owner}/packages"

    def versions_url(self, package_name: str) -> str:
        return f"{self.packages_url()}/container/{quote(package_name, safe='')}/versions"

    def authenticate(self) -> None:
        logger.debug("Authenticating with the GitHub API")
        try:
            self.http_client.get(f"{GITHUB_API_URL}/user", self.api_headers())
        except AuthenticationError:
            raise AuthenticationError(
                "GHCR authentication failed: Invalid token. Please check your GitHub token.", self.registry_type
            )
        self.authenticated = True

    def _paginate(self, url: str) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        page = 1
        while True:
            separator = "&" if "?" in url else "?"
            response = self.http_client.get(f"{url}{separator}per_page={_PER_PAGE}&page={page}", self.api_headers())
            batch = response.data if isinstance(response.data, list) else []
            items.extend(batch)
            if len(batch) < _PER_PAGE:
                return items
            page += 1

    def list_packages(self) -> List[Package]:
        self.ensure_authenticated()
        packages = []
        for item in self._paginate(f"{self.packages_url()}?package_type=container"):
            repository = item.get("repository") or {}
            packages.append(
                Package(
                    id=str(item.get("id", item["name"])),
                    name=item["name"],
                    owner=(item.get("owner") or {}).get("login", self.owner),
                    repository=repository.get("name"),
                    url=item.get("html_url"),
                    created_at=parse_timestamp(item.get("created_at")),
                    updated_at=parse_timestamp(item.get("updated_at")),
                )
            )
        return packages

    def get_versions(self, package_name: str, refresh: bool = False) -> List[Dict[str, Any]]:
        """All package versions, cached per package"""
        if refresh or package_name not in self._versions:
            self.ensure_authenticated()
            self._versions[package_name] = self._paginate(self.versions_url(package_name))
        return self._versions[package_name]

    def find_version(self, package_name: str, digest: str) -> Optional[Dict[str, Any]]:
        for version in self.get_versions(package_name):
            if version.get("name") == digest:
                return version
        return None

    def list_tags(self, package_name: str) -> List[Tag]:
        tags = []
        for version in self.get_versions(package_name):
            for tag_name in version_tags(version):
                tags.append(
                    Tag(
                        name=tag_name,
                        digest=version["name"],
                        created_at=parse_timestamp(version.get("created_at")),
                        updated_at=parse_timestamp(version.get("updated_at")),
                    )
                )
        return tags

    def get_manifest(self, package_name: str, reference: str) -> Manifest:
        manifest = self.fetch_manifest(package_name, reference)
        version = self.find_version(package_name, manifest.digest)
        if version is not None:
            manifest.created_at = manifest.created_at or parse_timestamp(version.get("created_at"))
            manifest.updated_at = manifest.updated_at or parse_timestamp(version.get("updated_at"))
        return manifest

    def get_package_manifests(self, package_name: str) -> List[Manifest]:
        """Manifests of untagged versions; tagged ones are reached through list_tags"""
        manifests = []
        for version in self.get_versions(package_name):
            if version_tags(version):
                continue
            try:
                manifests.append(self.get_manifest(package_name, version["name"]))
            except RegistryError as e:
                logger.warning(f"Could not get manifest for {package_name}@{version['name']}: {e}")
        return manifests

    def delete_version(self, package_name: str, version: Dict[str, Any]) -> None:
        url = f"{self.versions_url(package_name)}/{version['id']}"
        self.http_client.delete(url, self.api_headers())
        versions = self._versions.get(package_name)
        if versions is not None and version in versions:
            versions.remove(version)

    def delete_tag(self, package_name: str, tag: str) -> None:
        """Delete the version carrying `tag`, which GHCR only allows when it is the version's sole tag"""
        for version in self.get_versions(package_name):
            tags = version_tags(version)
            if tag not in tags:
                continue
            if len(tags) > 1:
                raise PolicyRejectionError(
                    f"GHCR cannot delete tag {package_name}:{tag} alone; version {version['name']} "
                    f"also carries {', '.join(t for t in tags if t != tag)}",
                    registry_type=self.registry_type,
                )
            self.delete_version(package_name, version)
            logger.info(f"Deleted tag {tag} from {package_name}")
            return
        raise NotFoundError(f"Tag {tag} not found in package {package_name}", self.registry_type)

    def delete_manifest(self, package_name: str, digest: str) -> None:
        version = self.find_version(package_name, digest)
        if version is None:
            logger.debug(f"No package version for {package_name}@{digest}; already deleted")
            return
        self.delete_version(package_name, version)
        logger.info(f"Deleted manifest {digest} from {package_name}")

    def get_referrers(self, package_name: str, digest: str) -> List[Referrer]:
        return self.fetch_referrers(package_name, digest)

    def supports_feature(self, feature: RegistryFeature) -> bool:
        return True

    def get_known_registry_urls(self) -> List[str]:
        return ["ghcr.io"]
