"""
Filter pipeline: reduces the discovered images to the set to delete.

Stages run in a fixed order. The first stages narrow the candidate set
(dependents, exclusions, age); the remaining stages each select images from
those candidates, and the deletion set is the de-duplicated union of the
selections.
"""

import logging
from collections import OrderedDict
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from registry_cleaner.classifier import is_ghost_image, is_orphaned_image, is_partial_multi_arch_image
from registry_cleaner.graph import ImageGraph
from registry_cleaner.models import CleanupConfig, Image
from registry_cleaner.tag_matching import image_has_matching_tag
from registry_cleaner.validation import EPOCH, ensure_utc, parse_older_than

logger = logging.getLogger(__name__)


def image_sort_date(image: Image) -> datetime:
    """updated_at, falling back to created_at, falling back to the epoch"""
    date = image.updated_at or image.created_at
    return ensure_utc(date) if date else EPOCH


def newest_first(images: Iterable[Image]) -> List[Image]:
    # sorted() is stable, so equal dates keep discovery order
    return sorted(images, key=image_sort_date, reverse=True)


class _Selection:
    """Insertion-ordered set of images keyed by (package, digest)"""

    def __init__(self):
        self._images: Dict[Tuple[str, str], Image] = OrderedDict()

    def add_all(self, images: Iterable[Image], reason: str) -> None:
        added = 0
        for image in images:
            if image.key not in self._images:
                self._images[image.key] = image
                added += 1
        if added:
            logger.debug(f"Selected {added} image(s) for deletion: {reason}")

    def images(self) -> List[Image]:
        return list(self._images.values())


class ImageFilter:
    """Applies a CleanupConfig to a set of images"""

    def __init__(self, config: CleanupConfig, now: Optional[datetime] = None):
        """Initialize ImageFilter

        Args:
            config: Retention policy
            now: Reference time for older-than (defaults to the current time)
        """
        self.config = config
        self.now = now

    def filter_images(self, images: List[Image], graph: ImageGraph) -> List[Image]:
        """Run the whole pipeline and return the images to delete"""
        candidates = self.candidate_images(images, graph)

        selection = _Selection()
        if self.config.delete_tags:
            selection.add_all(self.select_delete_tags(candidates), "delete-tags")
        if self.config.delete_ghost_images:
            selection.add_all(self.select_ghost_images(candidates, graph), "ghost image")
        if self.config.delete_partial_images:
            selection.add_all(self.select_partial_images(candidates), "partial multi-arch image")
        if self.config.delete_orphaned_images:
            selection.add_all(self.select_orphaned_images(candidates, graph), "orphaned image")
        selection.add_all(self.keep_n_tagged(candidates), "keep-n-tagged")
        selection.add_all(self.filter_untagged(candidates), "untagged")

        return self.drop_held_images(selection.images(), graph)

    def drop_held_images(self, selected: List[Image], graph: ImageGraph) -> List[Image]:
        """Remove selections that a surviving index or subject still depends on.

        Dropping one image can strand its own selected children, so this repeats
        until the selection is stable.
        """
        remaining = list(selected)
        while True:
            keys = {image.key for image in remaining}
            held = {
                image.key
                for image in remaining
                if any(
                    holder is not image and holder.key not in keys
                    for holder in graph.parents_of(image) + graph.subjects_of(image)
                )
            }
            if not held:
                return remaining
            for image in remaining:
                if image.key in held:
                    logger.debug(f"Keeping {image!r}: a surviving image depends on it")
            remaining = [image for image in remaining if image.key not in held]

    def candidate_images(self, images: List[Image], graph: ImageGraph) -> List[Image]:
        """Images eligible for selection after the narrowing stages"""
        candidates = self.remove_child_images(images, graph)
        candidates = self.remove_referrer_images(candidates, graph)
        if self.config.exclude_tags:
            candidates = self.filter_exclude_tags(candidates)
        if self.config.older_than:
            candidates = self.filter_older_than(candidates)
        logger.debug(f"{len(candidates)} of {len(images)} images are candidates for deletion")
        return candidates

    def remove_child_images(self, images: List[Image], graph: ImageGraph) -> List[Image]:
        """Drop images that are resolved children of a multi-arch parent.

        Children go only as a cascade of their parent's deletion. An image that
        is itself multi-arch stays even when listed as a child elsewhere.
        """
        child_keys = set()
        for parent in graph:
            if parent.is_multi_arch:
                child_keys.update(child.key for child in graph.children_of(parent))
        return [image for image in images if image.is_multi_arch or image.key not in child_keys]

    def remove_referrer_images(self, images: List[Image], graph: ImageGraph) -> List[Image]:
        """Drop attestations and signatures attached to a discovered subject image"""
        return [
            image
            for image in images
            if not any(subject is not image for subject in graph.subjects_of(image))
        ]

    def filter_exclude_tags(self, images: List[Image]) -> List[Image]:
        """Drop every image carrying at least one tag matching an exclusion pattern"""
        return [image for image in images if not image_has_matching_tag(image, self.config.exclude_tags)]

    def filter_older_than(self, images: List[Image]) -> List[Image]:
        """Keep only images provably older than the cutoff.

        Images with neither timestamp cannot be proven stale and are dropped.
        """
        if not self.config.older_than:
            return images
        cutoff = parse_older_than(self.config.older_than, self.now)
        kept = []
        for image in images:
            date = image.updated_at or image.created_at
            if date is not None and ensure_utc(date) < cutoff:
                kept.append(image)
        return kept

    def select_delete_tags(self, images: List[Image]) -> List[Image]:
        return [image for image in images if image_has_matching_tag(image, self.config.delete_tags)]

    def select_ghost_images(self, images: List[Image], graph: ImageGraph) -> List[Image]:
        return [image for image in images if is_ghost_image(image, graph)]

    def select_partial_images(self, images: List[Image]) -> List[Image]:
        return [image for image in images if is_partial_multi_arch_image(image)]

    def select_orphaned_images(self, images: List[Image], graph: ImageGraph) -> List[Image]:
        return [image for image in images if is_orphaned_image(image, graph)]

    def keep_n_tagged(self, images: List[Image]) -> List[Image]:
        """Tagged images beyond the newest N"""
        if self.config.keep_n_tagged is None:
            return []
        tagged = newest_first(image for image in images if image.is_tagged)
        return tagged[self.config.keep_n_tagged :]

    def filter_untagged(self, images: List[Image]) -> List[Image]:
        """Untagged images to delete: all of them with delete_untagged, else those beyond the newest N"""
        untagged = [image for image in images if not image.is_tagged]
        if self.config.delete_untagged:
            return untagged
        if self.config.keep_n_untagged is not None:
            return newest_first(untagged)[self.config.keep_n_untagged :]
        return []
