"""Unit tests for registry_cleaner/graph.py"""

import json

import pytest

from conftest import digest_of, make_image
from registry_cleaner.graph import (
    ImageGraph,
    build_image_graph,
    get_child_image_digests,
    is_multi_arch_manifest,
    parse_manifest,
)
from registry_cleaner.models import (
    DOCKER_MANIFEST,
    DOCKER_MANIFEST_LIST,
    OCI_IMAGE_INDEX,
    OCI_IMAGE_MANIFEST,
    Descriptor,
    Manifest,
)


class TestIsMultiArchManifest:
    """Tests for index recognition"""

    @pytest.mark.parametrize("media_type", [OCI_IMAGE_INDEX, DOCKER_MANIFEST_LIST])
    def test_index_with_children_is_multi_arch(self, media_type):
        manifest = Manifest(
            digest="sha256:idx", media_type=media_type, manifests=[Descriptor("sha256:a", OCI_IMAGE_MANIFEST)]
        )
        assert is_multi_arch_manifest(manifest) is True

    def test_index_without_children_is_not_multi_arch(self):
        assert is_multi_arch_manifest(Manifest(digest="sha256:idx", media_type=OCI_IMAGE_INDEX)) is False

    @pytest.mark.parametrize("media_type", [OCI_IMAGE_MANIFEST, DOCKER_MANIFEST, "application/unknown"])
    def test_non_index_media_type_is_never_multi_arch(self, media_type):
        manifest = Manifest(
            digest="sha256:x", media_type=media_type, manifests=[Descriptor("sha256:a", OCI_IMAGE_MANIFEST)]
        )
        assert is_multi_arch_manifest(manifest) is False
        assert get_child_image_digests(manifest) == []

    def test_child_digests_follow_manifest_order(self):
        manifest = make_image("idx", children=["c", "a", "b"]).manifest
        assert get_child_image_digests(manifest) == [digest_of("c"), digest_of("a"), digest_of("b")]


class TestParseManifest:
    """Tests for parsing registry manifest documents"""

    def test_parses_index_with_platforms(self):
        doc = {
            "schemaVersion": 2,
            "mediaType": OCI_IMAGE_INDEX,
            "manifests": [
                {
                    "mediaType": OCI_IMAGE_MANIFEST,
                    "digest": "sha256:amd",
                    "size": 500,
                    "platform": {"architecture": "amd64", "os": "linux"},
                },
                {
                    "mediaType": OCI_IMAGE_MANIFEST,
                    "digest": "sha256:arm",
                    "size": 501,
                    "platform": {"architecture": "arm64", "os": "linux", "variant": "v8"},
                },
            ],
        }
        manifest = parse_manifest("sha256:idx", doc)

        assert manifest.media_type == OCI_IMAGE_INDEX
        assert [m.digest for m in manifest.manifests] == ["sha256:amd", "sha256:arm"]
        assert manifest.manifests[1].platform.variant == "v8"
        assert manifest.config is None

    def test_parses_image_manifest_from_json_text(self):
        doc = {
            "mediaType": DOCKER_MANIFEST,
            "config": {"mediaType": "application/vnd.docker.container.image.v1+json", "digest": "sha256:cfg", "size": 7},
            "layers": [{"mediaType": "application/vnd.docker.image.rootfs.diff.tar.gzip", "digest": "sha256:l1", "size": 100}],
        }
        manifest = parse_manifest("sha256:img", json.dumps(doc))

        assert manifest.digest == "sha256:img"
        assert manifest.config.digest == "sha256:cfg"
        assert manifest.layers[0].size == 100
        assert manifest.manifests == []

    def test_missing_media_type_is_rejected(self):
        with pytest.raises(ValueError, match="mediaType"):
            parse_manifest("sha256:x", {"schemaVersion": 2})

    def test_non_object_is_rejected(self):
        with pytest.raises(ValueError):
            parse_manifest("sha256:x", "[1, 2]")


class TestBuildImageGraph:
    """Tests for resolving index children against the discovered set"""

    def test_links_resolved_children_in_place(self):
        parent = make_image("idx", tags=["v1"], children=["amd", "arm"])
        amd = make_image("amd")
        arm = make_image("arm")

        graph = build_image_graph([parent, amd, arm])

        assert parent.is_multi_arch is True
        assert parent.child_digests == [digest_of("amd"), digest_of("arm")]
        assert graph.children_of(parent) == [amd, arm]
        assert graph.children_of(parent)[0] is amd
        assert amd.is_multi_arch is False

    def test_unresolved_children_are_dropped_but_stay_declared(self):
        parent = make_image("idx", children=["amd", "missing"])
        amd = make_image("amd")

        graph = build_image_graph([parent, amd])

        assert parent.child_digests == [digest_of("amd")]
        assert len(parent.manifest.manifests) == 2
        assert graph.missing_child_digests(parent) == [digest_of("missing")]

    def test_index_with_no_resolved_children_is_not_multi_arch(self):
        parent = make_image("idx", children=["gone"])
        build_image_graph([parent])
        assert parent.is_multi_arch is False
        assert parent.child_digests == []

    def test_resolution_is_scoped_to_the_package(self):
        parent = make_image("idx", children=["amd"], package="web")
        other_package_child = make_image("amd", package="api")

        graph = build_image_graph([parent, other_package_child])

        assert parent.is_multi_arch is False
        assert graph.parents_of(other_package_child) == []

    def test_child_map(self):
        parent = make_image("idx", children=["amd"])
        amd = make_image("amd")
        graph = build_image_graph([parent, amd])
        assert graph.child_map() == {digest_of("idx"): [amd]}


class TestImageGraph:
    """Tests for the (package, digest) index"""

    def test_duplicate_image_is_rejected(self):
        with pytest.raises(ValueError, match="Duplicate"):
            ImageGraph([make_image("a"), make_image("a")])

    def test_same_digest_in_two_packages_is_allowed(self):
        graph = ImageGraph([make_image("a", package="one"), make_image("a", package="two")])
        assert len(graph) == 2
        assert graph.get("two", digest_of("a")).package.name == "two"

    def test_parents_of_lists_every_declaring_index(self):
        first = make_image("idx1", children=["shared"])
        second = make_image("idx2", children=["shared"])
        shared = make_image("shared")
        graph = build_image_graph([first, second, shared])
        assert graph.parents_of(shared) == [first, second]

    def test_dependents_are_children_then_referrers(self):
        parent = make_image("idx", children=["amd"], referrers=["sig"])
        amd = make_image("amd")
        sig = make_image("sig")
        graph = build_image_graph([parent, amd, sig])

        assert graph.dependents_of(parent) == [amd, sig]
        assert graph.subjects_of(sig) == [parent]
