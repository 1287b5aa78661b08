"""Unit tests for registry_cleaner/validation.py and tag_matching.py"""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import NOW, make_image
from registry_cleaner.error_utils import ConfigValidationError
from registry_cleaner.models import CleanupConfig, ProviderConfig
from registry_cleaner.tag_matching import glob_to_regex, image_has_matching_tag, matches_any, matches_glob
from registry_cleaner.validation import (
    cleanup_config_errors,
    expand_packages,
    extract_hostname,
    match_registry_url,
    normalize_registry_url,
    parse_duration,
    parse_older_than,
    parse_timestamp,
    provider_config_errors,
    validate_cleanup_config,
    validate_provider_config,
    validate_registry_type,
)


class TestGlobMatching:
    @pytest.mark.parametrize(
        "name,pattern,expected",
        [
            ("v1.0", "v*", True),
            ("latest", "v*", False),
            ("v1.0", "v?.?", True),
            ("v10.0", "v?.?", False),
            ("release", "release", True),
            ("release-1", "release", False),
            ("V1", "v*", False),
            ("a.b", "a.b", True),
            ("axb", "a.b", False),
            ("", "*", True),
        ],
    )
    def test_matches_glob(self, name, pattern, expected):
        assert matches_glob(name, pattern) is expected

    def test_regex_characters_are_literal(self):
        assert glob_to_regex("sha-[abc]+").match("sha-[abc]+") is not None
        assert matches_glob("sha-a", "sha-[abc]+") is False

    def test_matches_any(self):
        assert matches_any("nightly-5", ["v*", "nightly-*"]) is True
        assert matches_any("stable", ["v*", "nightly-*"]) is False
        assert matches_any("stable", []) is False

    def test_image_has_matching_tag(self):
        assert image_has_matching_tag(make_image("a", tags=["x", "v2"]), ["v*"]) is True
        assert image_has_matching_tag(make_image("a"), ["*"]) is False
        assert image_has_matching_tag(make_image("a", tags=["v2"]), []) is False


class TestOlderThan:
    @pytest.mark.parametrize(
        "value,days",
        [("1d", 1), ("2w", 14), ("3m", 90), ("1y", 365), ("10D", 10)],
    )
    def test_parse_duration(self, value, days):
        assert parse_duration(value) == timedelta(days=days)

    @pytest.mark.parametrize("value", ["", "d", "30", "30 days", "-1d", "1.5d", "3h"])
    def test_invalid_duration(self, value):
        with pytest.raises(ConfigValidationError):
            parse_duration(value)

    def test_cutoff_is_relative_to_now(self):
        assert parse_older_than("2d", NOW) == NOW - timedelta(hours=48)

    def test_naive_now_is_treated_as_utc(self):
        naive = datetime(2024, 6, 1, 12, 0)
        assert parse_older_than("1d", naive) == NOW - timedelta(days=1)


class TestParseTimestamp:
    def test_zulu_suffix(self):
        assert parse_timestamp("2024-06-01T12:00:00Z") == NOW

    def test_offset_is_converted_to_utc(self):
        assert parse_timestamp("2024-06-01T14:00:00+02:00") == NOW

    def test_nanoseconds_are_truncated(self):
        parsed = parse_timestamp("2024-06-01T12:00:00.123456789Z")
        assert parsed == NOW.replace(microsecond=123456)

    @pytest.mark.parametrize("value", [None, "", "yesterday", 12])
    def test_unparsable_is_none(self, value):
        assert parse_timestamp(value) is None

    def test_datetime_passthrough(self):
        assert parse_timestamp(datetime(2024, 6, 1, 12, 0)).tzinfo == timezone.utc


class TestRegistryUrls:
    def test_normalize(self):
        assert normalize_registry_url("https://ghcr.io/") == "ghcr.io"
        assert normalize_registry_url("http://localhost:5000") == "localhost:5000"

    def test_extract_hostname(self):
        assert extract_hostname("https://registry.example.com:5000/v2/") == "registry.example.com:5000"

    def test_match_exact_and_subdomain(self):
        assert match_registry_url("https://ghcr.io", ["ghcr.io"]) is True
        assert match_registry_url("eu.ghcr.io", ["ghcr.io"]) is True
        assert match_registry_url("notghcr.io", ["ghcr.io"]) is False
        assert match_registry_url("registry.example.com", []) is False


class TestExpandPackages:
    ALL = ["team/web", "team/api", "tools/ci", "web"]

    def test_glob_patterns(self):
        assert expand_packages(["team/*"], self.ALL) == ["team/web", "team/api"]

    def test_regex_patterns_use_search(self):
        assert expand_packages(["web$"], self.ALL, use_regex=True) == ["team/web", "web"]

    def test_no_duplicates_and_first_match_order(self):
        assert expand_packages(["*web", "team/*"], self.ALL) == ["team/web", "web", "team/api"]

    def test_no_patterns_returns_everything(self):
        assert expand_packages([], self.ALL) == self.ALL


class TestConfigValidation:
    def test_registry_type(self):
        assert validate_registry_type(" GHCR ") == "ghcr"
        with pytest.raises(ConfigValidationError):
            validate_registry_type("docker-hub")

    def test_oci_requires_url(self):
        assert provider_config_errors(ProviderConfig(registry_type="oci")) == [
            "registry-url is required when registry-type is oci"
        ]

    def test_username_requires_password(self):
        errors = provider_config_errors(ProviderConfig(registry_type="oci", registry_url="r", username="me"))
        assert errors == ["registry-password is required when registry-username is provided"]

    def test_owner_type(self):
        config = ProviderConfig(registry_type="ghcr", token="t", owner="o", owner_type="teams")
        assert "owner-type must be 'users' or 'orgs', got: teams" in provider_config_errors(config)

    def test_valid_cleanup_config(self):
        assert cleanup_config_errors(CleanupConfig(keep_n_tagged=0, older_than="1y")) == []
        validate_cleanup_config(CleanupConfig())

    def test_negative_values(self):
        errors = cleanup_config_errors(CleanupConfig(keep_n_untagged=-1, retry=-1, throttle=-5))
        assert len(errors) == 3

    def test_empty_pattern(self):
        with pytest.raises(ConfigValidationError, match="empty patterns"):
            validate_cleanup_config(CleanupConfig(delete_tags=("",)))

    def test_validate_provider_config_raises(self):
        with pytest.raises(ConfigValidationError, match="token is required"):
            validate_provider_config(ProviderConfig(registry_type="ghcr", owner="o"))
