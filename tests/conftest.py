"""
Pytest configuration file.

Sets up the Python path so test files can import from the python/ directory,
and provides builders for synthetic images.
"""
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add python directory to path for all tests
_python_dir = Path(__file__).parent.parent / 'python'
_python_dir_abs = str(_python_dir.absolute())
if _python_dir_abs not in sys.path:
    sys.path.insert(0, _python_dir_abs)

from registry_cleaner.models import (  # noqa: E402
    OCI_IMAGE_INDEX,
    OCI_IMAGE_MANIFEST,
    Descriptor,
    Image,
    Manifest,
    Package,
    Referrer,
    Tag,
)

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def digest_of(name: str) -> str:
    """Readable fake digest: sha256:<name>"""
    return f"sha256:{name}"


def make_manifest(name, children=None, created_at=None, updated_at=None, media_type=None):
    children = list(children or [])
    if children or media_type == OCI_IMAGE_INDEX:
        return Manifest(
            digest=digest_of(name),
            media_type=media_type or OCI_IMAGE_INDEX,
            manifests=[Descriptor(digest=digest_of(c), media_type=OCI_IMAGE_MANIFEST) for c in children],
            created_at=created_at,
            updated_at=updated_at,
        )
    return Manifest(
        digest=digest_of(name),
        media_type=media_type or OCI_IMAGE_MANIFEST,
        config=Descriptor(digest=digest_of(f"{name}-config"), media_type="application/vnd.oci.image.config.v1+json"),
        created_at=created_at,
        updated_at=updated_at,
    )


def make_image(
    name,
    tags=(),
    children=None,
    package="app",
    age_days=None,
    created_at=None,
    updated_at=None,
    referrers=(),
    media_type=None,
):
    """Build an Image named `name` in `package`.

    age_days sets updated_at relative to NOW. referrers are names of other
    images attached to this one.
    """
    if age_days is not None:
        updated_at = NOW - timedelta(days=age_days)
    manifest = make_manifest(name, children, created_at=created_at, updated_at=updated_at, media_type=media_type)
    return Image(
        package=Package(id=package, name=package),
        manifest=manifest,
        tags=[Tag(name=t, digest=manifest.digest) for t in tags],
        referrers=[
            Referrer(
                digest=digest_of(r),
                artifact_type="application/vnd.in-toto+json",
                media_type=OCI_IMAGE_MANIFEST,
            )
            for r in referrers
        ],
        created_at=created_at,
        updated_at=updated_at,
    )


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def image_factory():
    return make_image
