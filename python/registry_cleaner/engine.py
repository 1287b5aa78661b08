"""
Cleanup engine: discovery, graph build, filtering, deletion and validation.

A run moves through the phases once each:

    DISCOVER -> BUILD_GRAPH -> FILTER -> (DRY_RUN_REPORT | DELETE) -> VALIDATE -> DONE

Failures while listing packages abort the run. Failures for a single package,
tag or manifest are logged, recorded in CleanupResult.errors and skipped.
"""

import logging
from collections import OrderedDict
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Sequence, Set, Tuple

from registry_cleaner.error_utils import NotFoundError
from registry_cleaner.filters import ImageFilter
from registry_cleaner.graph import ImageGraph, build_image_graph, get_child_image_digests, is_multi_arch_manifest
from registry_cleaner.models import CleanupConfig, CleanupResult, Image, Manifest, Package, RegistryFeature, Tag
from registry_cleaner.providers.base import RegistryProvider
from registry_cleaner.validation import expand_packages

logger = logging.getLogger(__name__)

ImageKey = Tuple[str, str]


class CleanupPhase(Enum):
    DISCOVER = "discover"
    BUILD_GRAPH = "build_graph"
    FILTER = "filter"
    DRY_RUN_REPORT = "dry_run_report"
    DELETE = "delete"
    VALIDATE = "validate"
    DONE = "done"


def _earliest(values) -> Optional[datetime]:
    values = [v for v in values if v is not None]
    return min(values) if values else None


def _latest(values) -> Optional[datetime]:
    values = [v for v in values if v is not None]
    return max(values) if values else None


class CleanupEngine:
    """Orchestrates one cleanup run against a single provider"""

    def __init__(self, provider: RegistryProvider, config: CleanupConfig, now: Optional[datetime] = None):
        """Initialize CleanupEngine

        Args:
            provider: Registry backend
            config: Retention policy, fixed for the engine's lifetime
            now: Reference time for age filters (defaults to the current time)
        """
        self.provider = provider
        self.config = config
        self.filter = ImageFilter(config, now=now)
        self.phase: Optional[CleanupPhase] = None
        self.images: List[Image] = []
        self.selected: List[Image] = []
        self.cascaded: List[Image] = []
        self.removed: Set[ImageKey] = set()
        self.removed_tags: Set[Tuple[ImageKey, str]] = set()
        self.warnings: List[str] = []

    def _enter(self, phase: CleanupPhase) -> None:
        self.phase = phase
        logger.debug(f"Entering {phase.value} phase")

    def run(self, package_names: Optional[Sequence[str]] = None) -> CleanupResult:
        """Run a full cleanup and return its result.

        Raises:
            RegistryError: Package listing failed, so nothing can be discovered
        """
        result = CleanupResult()

        self._enter(CleanupPhase.DISCOVER)
        logger.info("Starting discovery phase...")
        self.images = self.discover_images(list(package_names or []), result.errors)
        logger.info(f"Discovered {len(self.images)} images")

        self._enter(CleanupPhase.BUILD_GRAPH)
        graph = build_image_graph(self.images)

        self._enter(CleanupPhase.FILTER)
        logger.info("Starting filtering phase...")
        self.selected = self.filter.filter_images(self.images, graph)
        cascade = self.cascade_plan(self.selected, graph)
        self.cascaded = [dependent for dependents in cascade.values() for dependent in dependents]
        logger.info(
            f"Filtered to {len(self.selected)} images for deletion"
            + (f" ({len(self.cascaded)} dependent manifests cascade)" if self.cascaded else "")
        )

        if self.config.dry_run:
            self._enter(CleanupPhase.DRY_RUN_REPORT)
            self.report_dry_run(self.selected, cascade)
            result.deleted_count = len(self.selected)
            result.deleted_tags = [name for image in self.selected for name in image.tag_names]
            removed = {image.key for image in self.selected} | {image.key for image in self.cascaded}
        else:
            self._enter(CleanupPhase.DELETE)
            logger.info("Starting deletion phase...")
            self.delete_images(self.selected, cascade, result)
            # images whose deletion failed still exist
            removed = self.removed

        kept = [image for image in self.images if image.key not in removed]
        result.kept_count = len(kept)
        result.kept_tags = [
            tag.name for image in kept for tag in image.tags if (image.key, tag.name) not in self.removed_tags
        ]

        if self.config.validate:
            self._enter(CleanupPhase.VALIDATE)
            logger.info("Starting validation phase...")
            self.warnings = self.validate_images(kept, graph, removed)

        self._enter(CleanupPhase.DONE)
        return result

    def resolve_packages(self, package_names: List[str]) -> Tuple[List[str], Dict[str, Package]]:
        """Package names to process, plus any Package metadata the provider listed"""
        if package_names and not self.config.expand_packages:
            return package_names, {}

        packages = self.provider.list_packages()
        by_name = {package.name: package for package in packages}
        if not package_names:
            return list(by_name), by_name

        names = expand_packages(package_names, list(by_name), self.config.use_regex)
        logger.info(f"Expanded {len(package_names)} package pattern(s) to {len(names)} package(s)")
        return names, by_name

    def discover_images(self, package_names: List[str], errors: List[str]) -> List[Image]:
        names, packages = self.resolve_packages(package_names)
        images: List[Image] = []
        for name in names:
            package = packages.get(name) or Package(id=name, name=name)
            try:
                logger.debug(f"Discovering images for package: {name}")
                images.extend(self.discover_package(package))
            except Exception as e:
                message = f"Failed to discover images for package {name}: {e}"
                logger.warning(message)
                errors.append(message)
        return images

    def discover_package(self, package: Package) -> List[Image]:
        """Images of one package: one per distinct manifest digest"""
        tags = self.provider.list_tags(package.name)
        logger.debug(f"Found {len(tags)} tags for {package.name}")

        tags_by_digest: Dict[str, List[Tag]] = OrderedDict()
        for tag in tags:
            tags_by_digest.setdefault(tag.digest, []).append(tag)

        images: Dict[str, Image] = OrderedDict()
        for digest, digest_tags in tags_by_digest.items():
            try:
                manifest = self.provider.get_manifest(package.name, digest)
            except Exception as e:
                logger.warning(f"Failed to get manifest for {package.name}@{digest}: {e}")
                continue
            existing = images.get(manifest.digest)
            if existing is not None:
                existing.tags.extend(digest_tags)
                continue
            images[manifest.digest] = self.make_image(package, manifest, digest_tags)

        for manifest in self.provider.get_package_manifests(package.name):
            if manifest.digest not in images:
                images[manifest.digest] = self.make_image(package, manifest, [])

        self.discover_children(package, images)
        return list(images.values())

    def discover_children(self, package: Package, images: Dict[str, Image]) -> None:
        """Fetch child manifests that indexes declare but listing did not return.

        Registries without an untagged-manifest listing only expose children by
        digest. A child counts as absent only when the registry answers not found;
        any other failure propagates so the package is skipped.
        """
        pending = [digest for image in list(images.values()) for digest in get_child_image_digests(image.manifest)]
        absent: Set[str] = set()
        while pending:
            digest = pending.pop(0)
            if digest in images or digest in absent:
                continue
            try:
                manifest = self.provider.get_manifest(package.name, digest)
            except NotFoundError:
                logger.debug(f"Child manifest {package.name}@{digest} does not exist")
                absent.add(digest)
                continue
            if manifest.digest in images:
                continue
            images[manifest.digest] = self.make_image(package, manifest, [])
            pending.extend(get_child_image_digests(manifest))

    def make_image(self, package: Package, manifest: Manifest, tags: List[Tag]) -> Image:
        return Image(
            package=package,
            manifest=manifest,
            tags=list(tags),
            referrers=self.fetch_referrers(package.name, manifest.digest),
            created_at=manifest.created_at or _earliest(tag.created_at for tag in tags),
            updated_at=manifest.updated_at or _latest(tag.updated_at or tag.created_at for tag in tags),
        )

    def fetch_referrers(self, package_name: str, digest: str):
        if not self.provider.supports_feature(RegistryFeature.REFERRERS):
            return []
        try:
            return self.provider.get_referrers(package_name, digest)
        except Exception as e:
            logger.debug(f"Could not get referrers for {package_name}@{digest}: {e}")
            return []

    def cascade_plan(self, selected: List[Image], graph: ImageGraph) -> Dict[ImageKey, List[Image]]:
        """Dependents to remove after each removed image.

        A dependent is skipped when it carries its own tags or when an image that
        is not being removed still lists it as a child or referrer. Each digest is
        planned at most once.
        """
        removed: Set[ImageKey] = {image.key for image in selected}
        plan: Dict[ImageKey, List[Image]] = OrderedDict()
        queue = list(selected)
        while queue:
            image = queue.pop(0)
            for dependent in graph.dependents_of(image):
                if dependent.key in removed:
                    continue
                if dependent.is_tagged:
                    logger.debug(f"Not cascading to {dependent!r}: it is tagged")
                    continue
                holders = graph.parents_of(dependent) + graph.subjects_of(dependent)
                if any(holder.key not in removed for holder in holders):
                    logger.debug(f"Not cascading to {dependent!r}: still referenced by a surviving image")
                    continue
                removed.add(dependent.key)
                plan.setdefault(image.key, []).append(dependent)
                queue.append(dependent)
        return plan

    def report_dry_run(self, selected: List[Image], cascade: Dict[ImageKey, List[Image]]) -> None:
        logger.info("DRY RUN: Would delete the following images:")
        for image in selected:
            tags = ", ".join(image.tag_names) or "untagged"
            logger.info(f"  - {image.package.name}@{image.digest} (tags: {tags})")
            for dependent in self._dependents(image, cascade):
                logger.info(f"      + {dependent.digest} (dependent)")

    @staticmethod
    def _dependents(image: Image, cascade: Dict[ImageKey, List[Image]]) -> List[Image]:
        found = []
        for dependent in cascade.get(image.key, []):
            found.append(dependent)
            found.extend(CleanupEngine._dependents(dependent, cascade))
        return found

    def delete_images(self, images: List[Image], cascade: Dict[ImageKey, List[Image]], result: CleanupResult) -> None:
        """Delete tags, then the manifest, then cascade to planned dependents"""
        for image in images:
            for tag in image.tags:
                try:
                    self.provider.delete_tag(image.package.name, tag.name)
                    result.deleted_tags.append(tag.name)
                    self.removed_tags.add((image.key, tag.name))
                except Exception as e:
                    message = f"Failed to delete tag {image.package.name}:{tag.name}: {e}"
                    logger.warning(message)
                    result.errors.append(message)

            try:
                self.provider.delete_manifest(image.package.name, image.digest)
            except Exception as e:
                message = f"Failed to delete manifest {image.package.name}@{image.digest}: {e}"
                logger.warning(message)
                result.errors.append(message)
                continue

            result.deleted_count += 1
            self.removed.add(image.key)
            logger.info(f"Deleted {image.package.name}@{image.digest}")
            self.delete_dependents(image, cascade, result)

    def delete_dependents(self, image: Image, cascade: Dict[ImageKey, List[Image]], result: CleanupResult) -> None:
        for dependent in cascade.get(image.key, []):
            try:
                self.provider.delete_manifest(dependent.package.name, dependent.digest)
            except Exception as e:
                message = f"Failed to delete dependent manifest {dependent.package.name}@{dependent.digest}: {e}"
                logger.warning(message)
                result.errors.append(message)
                continue
            logger.debug(f"Deleted dependent manifest {dependent.package.name}@{dependent.digest}")
            self.removed.add(dependent.key)
            self.delete_dependents(dependent, cascade, result)

    def validate_images(self, kept: List[Image], graph: ImageGraph, removed: Set[ImageKey]) -> List[str]:
        """Warn about surviving multi-arch images whose children are not all present"""
        warnings = []
        for image in kept:
            if not is_multi_arch_manifest(image.manifest):
                continue
            expected = len(get_child_image_digests(image.manifest))
            actual = len([child for child in graph.children_of(image) if child.key not in removed])
            if expected > actual:
                message = (
                    f"Multi-arch image {image.package.name}@{image.digest} is missing "
                    f"{expected - actual} child images"
                )
                logger.warning(message)
                warnings.append(message)
        return warnings
