"""
Tag matching utilities for image tags and package names.

Patterns are simple globs: `*` matches any run of characters (including none),
`?` matches exactly one character, everything else is literal. Matching is
case-sensitive and anchored to the full name.
"""

import re
from functools import lru_cache
from typing import Iterable, Pattern

from registry_cleaner.models import Image


@lru_cache(maxsize=256)
def glob_to_regex(pattern: str) -> Pattern[str]:
    """Compile a glob pattern into an anchored regular expression.

    Args:
        pattern: Glob such as "v*" or "release-?.?"

    Returns:
        Compiled regex matching the full string
    """
    parts = []
    for char in pattern:
        if char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return re.compile("^" + "".join(parts) + "$", re.DOTALL)


def matches_glob(name: str, pattern: str) -> bool:
    """Check if a single name matches a glob pattern"""
    return glob_to_regex(pattern).match(name) is not None


def matches_any(name: str, patterns: Iterable[str]) -> bool:
    """Check if a name matches at least one of the glob patterns"""
    return any(matches_glob(name, pattern) for pattern in patterns)


def image_has_matching_tag(image: Image, patterns: Iterable[str]) -> bool:
    """True if at least one of the image's tags matches one of the patterns.

    Untagged images never match.
    """
    patterns = list(patterns)
    if not patterns:
        return False
    return any(matches_any(tag.name, patterns) for tag in image.tags)
