"""Unit tests for registry_cleaner/report_utils.py"""

import json
from datetime import datetime, timezone
from unittest.mock import patch

from conftest import NOW, make_image
from registry_cleaner.models import CleanupResult
from registry_cleaner.report_utils import (
    build_report,
    image_size,
    plan_table,
    save_json,
    short_digest,
    sizeof_fmt,
    summary_table,
)


class TestFormatting:
    def test_sizeof_fmt(self):
        assert sizeof_fmt(0) == "0.0B"
        assert sizeof_fmt(1536) == "1.5KiB"
        assert sizeof_fmt(5 * 1024 ** 3) == "5.0GiB"

    def test_short_digest(self):
        assert short_digest("sha256:" + "a" * 64) == "sha256:aaaaaaaaaaaa"
        assert short_digest("sha256:abc") == "sha256:abc"

    def test_image_size_adds_config_and_layers(self):
        image = make_image("a")
        image.manifest.size = 100
        image.manifest.config.size = 20
        assert image_size(image) == 120


class TestTables:
    def test_plan_table_lists_selected_and_dependents(self):
        parent = make_image("idx", tags=["v1", "latest"], children=["amd"], updated_at=NOW)
        child = make_image("amd")

        table = plan_table([parent], [child])

        assert "v1, latest" in table
        assert "2024-06-01 12:00" in table
        assert "dependent" in table
        assert "<untagged>" in table
        assert table.startswith("+")

    def test_summary_table_wording_depends_on_mode(self):
        result = CleanupResult(deleted_count=3, kept_count=7, deleted_tags=["v1"], errors=[])

        dry = summary_table(result, dry_run=True)
        live = summary_table(result, dry_run=False)

        assert "Would delete" in dry
        assert "Deleted" in live
        assert "Tags removed" in live


class TestSaveJson:
    def test_serializes_datetimes_and_creates_directories(self, tmp_path):
        path = tmp_path / "nested" / "report.json"

        saved = save_json(str(path), {"when": datetime(2024, 1, 2, tzinfo=timezone.utc), "tags": ("a", "b")})

        assert saved == str(path)
        data = json.loads(path.read_text())
        assert data == {"when": "2024-01-02T00:00:00+00:00", "tags": ["a", "b"]}

    def test_timestamped_filename(self, tmp_path):
        with patch("registry_cleaner.report_utils.get_timestamp_suffix", return_value="2024-01-02-03-04-05"):
            saved = save_json(str(tmp_path / "report.json"), {}, timestamp=True)
        assert saved.endswith("report-2024-01-02-03-04-05.json")


def test_build_report():
    image = make_image("a", tags=["v1"], package="web", updated_at=NOW)
    result = CleanupResult(deleted_count=1, deleted_tags=["v1"])

    report = build_report(result, True, [image], ["something odd"])

    assert report["dry_run"] is True
    assert report["result"]["deleted_tags"] == ["v1"]
    assert report["selected"][0]["package"] == "web"
    assert report["selected"][0]["updated_at"] == NOW
    assert report["warnings"] == ["something odd"]
