"""
Image graph: links multi-arch indexes to the child manifests they declare.

Children are stored on each Image as digests and resolved through the graph's
(package, digest) index, so removing images from a working list never leaves a
dangling object reference behind.
"""

import json
import logging
from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, Iterable, Iterator, List, Optional, Set, Tuple

from registry_cleaner.models import INDEX_MEDIA_TYPES, Descriptor, Image, Manifest, Platform

logger = logging.getLogger(__name__)

ImageKey = Tuple[str, str]


def is_multi_arch_manifest(manifest: Manifest) -> bool:
    """True for an index (OCI image index or Docker manifest list) with at least one child"""
    return manifest.media_type in INDEX_MEDIA_TYPES and len(manifest.manifests) > 0


def get_child_image_digests(manifest: Manifest) -> List[str]:
    """Declared child digests of an index, in manifest order; empty for anything else"""
    if not is_multi_arch_manifest(manifest):
        return []
    return [child.digest for child in manifest.manifests]


def _parse_descriptor(data: Dict[str, Any]) -> Descriptor:
    platform = None
    if isinstance(data.get("platform"), dict):
        p = data["platform"]
        platform = Platform(architecture=p.get("architecture", ""), os=p.get("os", ""), variant=p.get("variant"))
    return Descriptor(
        digest=data.get("digest", ""),
        media_type=data.get("mediaType", ""),
        size=int(data.get("size") or 0),
        platform=platform,
        annotations=dict(data.get("annotations") or {}),
    )


def parse_manifest(digest: str, data: Any, created_at: Optional[datetime] = None) -> Manifest:
    """Build a Manifest from a registry manifest document.

    Args:
        digest: Content digest reported by the registry
        data: Manifest document as a dict or JSON text
        created_at: Creation time if the caller knows it

    Raises:
        ValueError: if the document is not an object or has no mediaType
    """
    if isinstance(data, (str, bytes)):
        data = json.loads(data)
    if not isinstance(data, dict):
        raise ValueError("Invalid manifest: not an object")
    media_type = data.get("mediaType")
    if not media_type:
        raise ValueError("Invalid manifest: missing mediaType")

    raw_size = len(json.dumps(data))
    annotations = dict(data.get("annotations") or {})

    if media_type in INDEX_MEDIA_TYPES:
        return Manifest(
            digest=digest,
            media_type=media_type,
            size=raw_size,
            manifests=[_parse_descriptor(m) for m in data.get("manifests") or []],
            annotations=annotations,
            created_at=created_at,
        )

    config = _parse_descriptor(data["config"]) if isinstance(data.get("config"), dict) else None
    return Manifest(
        digest=digest,
        media_type=media_type,
        size=config.size if config and config.size else raw_size,
        config=config,
        layers=[_parse_descriptor(layer) for layer in data.get("layers") or []],
        annotations=annotations,
        created_at=created_at,
    )


class ImageGraph:
    """All discovered images indexed by (package name, digest)"""

    def __init__(self, images: Iterable[Image]):
        self.images: List[Image] = list(images)
        self._by_key: Dict[ImageKey, Image] = {}
        for image in self.images:
            if image.key in self._by_key:
                raise ValueError(f"Duplicate image for {image.package.name}@{image.digest}")
            self._by_key[image.key] = image
        self._parents: Optional[Dict[ImageKey, List[Image]]] = None
        self._subjects: Optional[Dict[ImageKey, List[Image]]] = None

    def __iter__(self) -> Iterator[Image]:
        return iter(self.images)

    def __len__(self) -> int:
        return len(self.images)

    def __contains__(self, image: Image) -> bool:
        return self._by_key.get(image.key) is image

    def get(self, package_name: str, digest: str) -> Optional[Image]:
        return self._by_key.get((package_name, digest))

    def children_of(self, image: Image) -> List[Image]:
        """Resolved child images of a multi-arch image, in manifest order"""
        children = []
        for digest in image.child_digests:
            child = self.get(image.package.name, digest)
            if child is not None:
                children.append(child)
        return children

    def parents_of(self, image: Image) -> List[Image]:
        """Multi-arch images whose declared child list contains this image's digest"""
        if self._parents is None:
            self._parents = defaultdict(list)
            for candidate in self.images:
                for digest in get_child_image_digests(candidate.manifest):
                    parents = self._parents[(candidate.package.name, digest)]
                    if candidate not in parents:
                        parents.append(candidate)
        return list(self._parents.get(image.key, []))

    def subjects_of(self, image: Image) -> List[Image]:
        """Images that list this image's digest among their referrers"""
        if self._subjects is None:
            self._subjects = defaultdict(list)
            for candidate in self.images:
                for referrer in candidate.referrers:
                    subjects = self._subjects[(candidate.package.name, referrer.digest)]
                    if candidate not in subjects:
                        subjects.append(candidate)
        return list(self._subjects.get(image.key, []))

    def referrer_images_of(self, image: Image) -> List[Image]:
        """Discovered images that are referrers (attestations, signatures) of this image"""
        found = []
        for referrer in image.referrers:
            match = self.get(image.package.name, referrer.digest)
            if match is not None and match not in found:
                found.append(match)
        return found

    def dependents_of(self, image: Image) -> List[Image]:
        """Images that only exist to serve this one: resolved children, then referrers"""
        dependents = self.children_of(image)
        for referrer in self.referrer_images_of(image):
            if referrer not in dependents:
                dependents.append(referrer)
        return dependents

    def child_map(self) -> Dict[str, List[Image]]:
        """Multi-arch manifest digest to resolved child images"""
        return {image.digest: self.children_of(image) for image in self.images if image.is_multi_arch}

    def missing_child_digests(self, image: Image) -> List[str]:
        """Declared child digests of an index that are absent from the discovered set"""
        return [
            digest for digest in get_child_image_digests(image.manifest) if self.get(image.package.name, digest) is None
        ]


def build_image_graph(images: Iterable[Image]) -> ImageGraph:
    """Resolve every index's declared children against the discovered set.

    Sets `is_multi_arch` and `child_digests` on each image in place. Digests that
    do not resolve are not errors here; they stay in the manifest's own child
    list and surface later as partial or ghost images.

    Returns:
        ImageGraph over the same images
    """
    graph = ImageGraph(images)
    unresolved: Set[ImageKey] = set()

    for image in graph:
        resolved = []
        for digest in get_child_image_digests(image.manifest):
            if graph.get(image.package.name, digest) is not None:
                resolved.append(digest)
            else:
                unresolved.add((image.package.name, digest))
        image.child_digests = resolved
        image.is_multi_arch = len(resolved) > 0

    if unresolved:
        logger.debug(f"{len(unresolved)} declared child manifests were not found in the discovered images")
    return graph
