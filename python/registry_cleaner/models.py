"""
Data model for registry cleanup.

Packages, manifests, tags and referrers are what a provider reports. An Image is
the unit of classification and deletion: one package plus one manifest plus every
tag pointing at that manifest's digest.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple

OCI_IMAGE_INDEX = "application/vnd.oci.image.index.v1+json"
OCI_IMAGE_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
DOCKER_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"
DOCKER_MANIFEST = "application/vnd.docker.distribution.manifest.v2+json"

INDEX_MEDIA_TYPES = (OCI_IMAGE_INDEX, DOCKER_MANIFEST_LIST)
MANIFEST_ACCEPT_HEADER = ", ".join([OCI_IMAGE_MANIFEST, OCI_IMAGE_INDEX, DOCKER_MANIFEST, DOCKER_MANIFEST_LIST])


class RegistryFeature(Enum):
    """Optional capabilities a provider may declare"""

    MULTI_ARCH = "MULTI_ARCH"
    REFERRERS = "REFERRERS"
    ATTESTATION = "ATTESTATION"
    COSIGN = "COSIGN"


@dataclass(frozen=True)
class Package:
    """Registry-level namespace (repository) holding images"""

    id: str
    name: str
    type: str = "container"
    owner: Optional[str] = None
    repository: Optional[str] = None
    url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class Platform:
    architecture: str
    os: str
    variant: Optional[str] = None


@dataclass
class Descriptor:
    """Content descriptor for a config blob, layer or child manifest"""

    digest: str
    media_type: str
    size: int = 0
    platform: Optional[Platform] = None
    annotations: Dict[str, str] = field(default_factory=dict)


@dataclass
class Manifest:
    """Content-addressed artifact; `manifests` is non-empty only for an index"""

    digest: str
    media_type: str
    size: int = 0
    config: Optional[Descriptor] = None
    layers: List[Descriptor] = field(default_factory=list)
    manifests: List[Descriptor] = field(default_factory=list)
    annotations: Dict[str, str] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class Tag:
    name: str
    digest: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class Referrer:
    """An artifact (attestation, signature) pointing at another manifest by digest"""

    digest: str
    artifact_type: str
    media_type: str
    size: int = 0
    annotations: Dict[str, str] = field(default_factory=dict)


@dataclass(eq=False)
class Image:
    """One (package, manifest digest) pair with all tags pointing at it.

    `child_digests` holds the resolved children of a multi-arch index in the
    manifest's own order. Children are looked up through an ImageGraph rather
    than stored as object references.
    """

    package: Package
    manifest: Manifest
    tags: List[Tag] = field(default_factory=list)
    is_multi_arch: bool = False
    child_digests: List[str] = field(default_factory=list)
    referrers: List[Referrer] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def digest(self) -> str:
        return self.manifest.digest

    @property
    def key(self) -> Tuple[str, str]:
        return (self.package.name, self.manifest.digest)

    @property
    def tag_names(self) -> List[str]:
        return [tag.name for tag in self.tags]

    @property
    def is_tagged(self) -> bool:
        return len(self.tags) > 0

    def __repr__(self) -> str:
        tags = ",".join(self.tag_names) or "untagged"
        return f"Image({self.package.name}@{self.manifest.digest} [{tags}])"


@dataclass(frozen=True)
class CleanupConfig:
    """Retention policy consumed by the filter pipeline and the engine"""

    dry_run: bool = True
    keep_n_tagged: Optional[int] = None
    keep_n_untagged: Optional[int] = None
    delete_untagged: bool = False
    delete_tags: Tuple[str, ...] = ()
    exclude_tags: Tuple[str, ...] = ()
    older_than: Optional[str] = None
    delete_ghost_images: bool = False
    delete_partial_images: bool = False
    delete_orphaned_images: bool = False
    validate: bool = False
    retry: int = 3
    throttle: int = 1000
    expand_packages: bool = False
    use_regex: bool = False


@dataclass(frozen=True)
class ProviderConfig:
    """Connection settings for a registry provider"""

    registry_type: str = "auto"
    registry_url: Optional[str] = None
    token: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    owner: Optional[str] = None
    repository: Optional[str] = None
    packages: Tuple[str, ...] = ()
    owner_type: str = "users"
    skip_certificate_check: bool = False


@dataclass
class CleanupResult:
    deleted_count: int = 0
    kept_count: int = 0
    deleted_tags: List[str] = field(default_factory=list)
    kept_tags: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def failed(self, dry_run: bool) -> bool:
        """A live run with any recorded error counts as failed for automation"""
        return bool(self.errors) and not dry_run

    def to_dict(self) -> Dict[str, object]:
        return {
            "deleted_count": self.deleted_count,
            "kept_count": self.kept_count,
            "deleted_tags": list(self.deleted_tags),
            "kept_tags": list(self.kept_tags),
            "errors": list(self.errors),
        }
