"""
Image classification predicates.

Each predicate takes an image and, where it needs context, the full set of
discovered images (an ImageGraph, or any iterable of images which is wrapped in
one). Classification is scoped to the image's own package.
"""

from typing import Iterable, List, Set, Tuple, Union

from registry_cleaner.graph import ImageGraph, get_child_image_digests, is_multi_arch_manifest
from registry_cleaner.models import Image

Images = Union[ImageGraph, Iterable[Image]]


def _as_graph(images: Images) -> ImageGraph:
    return images if isinstance(images, ImageGraph) else ImageGraph(images)


def has_referrers(image: Image) -> bool:
    return len(image.referrers) > 0


def get_referrer_digests(image: Image) -> List[str]:
    return [referrer.digest for referrer in image.referrers]


def is_referrer_image(image: Image, images: Images) -> bool:
    """True if another image lists this image's digest among its referrers"""
    return any(subject is not image for subject in _as_graph(images).subjects_of(image))


def find_parent_images(image: Image, images: Images) -> List[Image]:
    """Multi-arch images that declare this image's digest as a child"""
    return [parent for parent in _as_graph(images).parents_of(image) if parent is not image]


def is_child_image(image: Image, images: Images) -> bool:
    return len(find_parent_images(image, images)) > 0


def is_partial_multi_arch_image(image: Image) -> bool:
    """Multi-arch image whose index declares more children than were resolved"""
    if not image.is_multi_arch or not is_multi_arch_manifest(image.manifest):
        return False
    return len(get_child_image_digests(image.manifest)) > len(image.child_digests)


def is_orphaned_image(image: Image, images: Images) -> bool:
    """Untagged, without a parent index, and not a referrer of another image.

    Tagged images are never orphaned regardless of graph position.
    """
    if image.is_tagged:
        return False
    graph = _as_graph(images)
    if find_parent_images(image, graph):
        return False
    if is_referrer_image(image, graph):
        return False
    return True


def is_ghost_image(image: Image, images: Images) -> bool:
    """An index whose declared children all point at artifacts that do not exist.

    A digest that is absent from the registry cannot itself be an Image, so a
    ghost is recognised from the index side: every declared child is missing
    from the discovered set. Indexes with some but not all children missing are
    partial images instead.
    """
    if not is_multi_arch_manifest(image.manifest):
        return False
    graph = _as_graph(images)
    declared = get_child_image_digests(image.manifest)
    return len(graph.missing_child_digests(image)) == len(declared)


def find_ghost_digests(images: Images) -> Set[Tuple[str, str]]:
    """(package, digest) pairs declared by some index but absent from the discovered set"""
    graph = _as_graph(images)
    missing = set()
    for image in graph:
        for digest in graph.missing_child_digests(image):
            missing.add((image.package.name, digest))
    return missing
