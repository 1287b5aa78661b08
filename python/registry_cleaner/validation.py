"""
Validation and parsing helpers for cleanup and provider configuration.
"""

import re
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional

from registry_cleaner.error_utils import ConfigValidationError
from registry_cleaner.models import CleanupConfig, ProviderConfig
from registry_cleaner.tag_matching import matches_glob

REGISTRY_TYPES = ("ghcr", "oci", "auto")

_OLDER_THAN_RE = re.compile(r"^(\d+)([dwmy])$", re.IGNORECASE)

# Months and years are fixed-length approximations
_UNIT_DAYS = {"d": 1, "w": 7, "m": 30, "y": 365}

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def validate_registry_type(registry_type: str) -> str:
    """Validate and normalize a registry type name"""
    normalized = (registry_type or "").strip().lower()
    if normalized not in REGISTRY_TYPES:
        raise ConfigValidationError(
            f"Invalid registry-type: {registry_type}. Must be one of: {', '.join(REGISTRY_TYPES)}"
        )
    return normalized


def provider_config_errors(config: ProviderConfig) -> List[str]:
    """Collect every problem with a provider configuration"""
    errors = []
    try:
        registry_type = validate_registry_type(config.registry_type)
    except ConfigValidationError as e:
        return [str(e)]

    if registry_type in ("oci", "auto") and not config.registry_url:
        errors.append(f"registry-url is required when registry-type is {registry_type}")

    if registry_type == "ghcr":
        if not config.token:
            errors.append("token is required for registry-type: ghcr")
        if not config.owner:
            errors.append("owner is required for registry-type: ghcr")

    if config.username and not config.password:
        errors.append("registry-password is required when registry-username is provided")

    if config.owner_type not in ("users", "orgs"):
        errors.append(f"owner-type must be 'users' or 'orgs', got: {config.owner_type}")

    return errors


def cleanup_config_errors(config: CleanupConfig) -> List[str]:
    """Collect every problem with a cleanup configuration"""
    errors = []
    if config.keep_n_tagged is not None and config.keep_n_tagged < 0:
        errors.append("keep-n-tagged must be a non-negative number")
    if config.keep_n_untagged is not None and config.keep_n_untagged < 0:
        errors.append("keep-n-untagged must be a non-negative number")
    if config.retry < 0:
        errors.append("retry must be a non-negative number")
    if config.throttle < 0:
        errors.append("throttle must be a non-negative number")
    if config.older_than and not _OLDER_THAN_RE.match(config.older_than):
        errors.append('older-than must be in format: <number><unit> (e.g., "30d", "2w", "1m", "1y")')
    if any(not pattern for pattern in config.delete_tags + config.exclude_tags):
        errors.append("delete-tags and exclude-tags must not contain empty patterns")
    return errors


def validate_provider_config(config: ProviderConfig) -> None:
    errors = provider_config_errors(config)
    if errors:
        raise ConfigValidationError("; ".join(errors))


def validate_cleanup_config(config: CleanupConfig) -> None:
    errors = cleanup_config_errors(config)
    if errors:
        raise ConfigValidationError("; ".join(errors))


def parse_duration(value: str) -> timedelta:
    """Parse "<number><d|w|m|y>" into a timedelta"""
    match = _OLDER_THAN_RE.match(value.strip()) if value else None
    if not match:
        raise ConfigValidationError(f"Invalid older-than format: {value}")
    amount = int(match.group(1))
    unit = match.group(2).lower()
    return timedelta(days=amount * _UNIT_DAYS[unit])


def parse_older_than(value: str, now: Optional[datetime] = None) -> datetime:
    """Return the cutoff instant: images last updated before it are stale"""
    now = ensure_utc(now) if now else datetime.now(timezone.utc)
    return now - parse_duration(value)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so they compare with aware ones"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp (with or without a trailing Z) to aware UTC.

    Returns None for empty or unparsable input.
    """
    if isinstance(value, datetime):
        return ensure_utc(value)
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    # Registries may report nanoseconds; fromisoformat accepts at most microseconds
    text = re.sub(r"(\.\d{6})\d+", r"\1", text)
    try:
        return ensure_utc(datetime.fromisoformat(text))
    except ValueError:
        return None


def normalize_registry_url(url: str) -> str:
    """Strip protocol and trailing slash"""
    normalized = re.sub(r"^https?://", "", url.strip())
    return normalized.rstrip("/")


def extract_hostname(url: str) -> str:
    return normalize_registry_url(url).split("/")[0]


def match_registry_url(url: str, known_urls: Iterable[str]) -> bool:
    """Match a URL's host against known hosts, exactly or as a subdomain"""
    hostname = extract_hostname(url)
    for known_url in known_urls:
        known_hostname = extract_hostname(known_url)
        if hostname == known_hostname or hostname.endswith(f".{known_hostname}"):
            return True
    return False


def expand_packages(patterns: Iterable[str], all_packages: List[str], use_regex: bool = False) -> List[str]:
    """Expand package patterns against the full package list.

    Glob patterns are anchored; regex patterns use search semantics. The result
    keeps the order of first match and contains no duplicates. With no patterns
    every package is returned.
    """
    patterns = [p for p in patterns if p]
    if not patterns:
        return list(all_packages)

    expanded: List[str] = []
    for pattern in patterns:
        if use_regex:
            regex = re.compile(pattern)
            matches = [name for name in all_packages if regex.search(name)]
        else:
            matches = [name for name in all_packages if matches_glob(name, pattern)]
        for name in matches:
            if name not in expanded:
                expanded.append(name)
    return expanded
