"""
Utility functions for report generation and saving.

This module provides functions to:
- Render the deletion plan and the run summary as tables
- Save reports as JSON, optionally with a timestamped filename
"""

import json
from datetime import date, datetime
from pathlib import Path
from typing import Any, List, Optional

from tabulate import tabulate

from registry_cleaner.logging_utils import get_logger
from registry_cleaner.models import CleanupResult, Image

logger = get_logger(__name__)


# ============================================================================
# Formatting Utilities
# ============================================================================


def sizeof_fmt(num: float, suffix: str = "B") -> str:
    """Format bytes into human-readable size.

    Args:
        num: Number of bytes
        suffix: Suffix to append (default: "B")

    Returns:
        Formatted string like "1.5GiB", "500MiB", etc.
    """
    for unit in ("", "Ki", "Mi", "Gi", "Ti", "Pi", "Ei", "Zi"):
        if abs(num) < 1024.0:
            return f"{num:3.1f}{unit}{suffix}"
        num /= 1024.0
    return f"{num:.1f}Yi{suffix}"


def short_digest(digest: str, length: int = 12) -> str:
    algorithm, _, value = digest.partition(":")
    return f"{algorithm}:{value[:length]}" if value else digest[:length]


def image_size(image: Image) -> int:
    """Manifest size plus config and layer sizes"""
    manifest = image.manifest
    size = manifest.size
    if manifest.config is not None:
        size += manifest.config.size
    return size + sum(layer.size for layer in manifest.layers)


def _format_date(value: Optional[datetime]) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else "-"


def plan_table(images: List[Image], dependents: Optional[List[Image]] = None) -> str:
    """Table of the images selected for deletion, followed by cascaded dependents"""
    headers = ["Package", "Digest", "Tags", "Kind", "Updated", "Size"]
    rows = []
    for image in images:
        rows.append(
            [
                image.package.name,
                short_digest(image.digest),
                ", ".join(image.tag_names) or "<untagged>",
                "multi-arch" if image.is_multi_arch else "image",
                _format_date(image.updated_at or image.created_at),
                sizeof_fmt(image_size(image)),
            ]
        )
    for image in dependents or []:
        rows.append(
            [
                image.package.name,
                short_digest(image.digest),
                "<untagged>",
                "dependent",
                _format_date(image.updated_at or image.created_at),
                sizeof_fmt(image_size(image)),
            ]
        )
    return tabulate(rows, headers=headers, tablefmt="grid")


def summary_table(result: CleanupResult, dry_run: bool) -> str:
    rows = [
        ["Mode", "dry run" if dry_run else "live"],
        ["Would delete" if dry_run else "Deleted", result.deleted_count],
        ["Kept", result.kept_count],
        ["Tags removed" if not dry_run else "Tags affected", len(result.deleted_tags)],
        ["Errors", len(result.errors)],
    ]
    return tabulate(rows, headers=["Metric", "Value"], tablefmt="grid")


# ============================================================================
# Report Saving Functions
# ============================================================================


def get_timestamp_suffix() -> str:
    """
    Generate a timestamp suffix for report filenames.

    Returns:
        String in format: YYYY-MM-DD-HH-MM-SS
    """
    return datetime.now().strftime("%Y-%m-%d-%H-%M-%S")


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def save_json(path: str, data: Any, timestamp: bool = False) -> str:
    """
    Write JSON data to a file with indentation.

    Args:
        path: Path to save the JSON file
        data: Data to save
        timestamp: If True, add timestamp to filename (default: False)

    Returns:
        Path to the saved file
    """
    p = Path(path)
    if timestamp:
        p = p.parent / f"{p.stem}-{get_timestamp_suffix()}{p.suffix}"
    p.parent.mkdir(parents=True, exist_ok=True)
    with open(p, "w") as f:
        json.dump(data, f, indent=2, default=_json_default)
    logger.info(f"Saved report to {p}")
    return str(p)


def build_report(
    result: CleanupResult, dry_run: bool, selected: List[Image], warnings: Optional[List[str]] = None
) -> dict:
    """JSON-ready report of a run"""
    return {
        "generated_at": datetime.now().isoformat(),
        "dry_run": dry_run,
        "result": result.to_dict(),
        "selected": [
            {
                "package": image.package.name,
                "digest": image.digest,
                "tags": image.tag_names,
                "multi_arch": image.is_multi_arch,
                "created_at": image.created_at,
                "updated_at": image.updated_at,
            }
            for image in selected
        ],
        "warnings": list(warnings or []),
    }
