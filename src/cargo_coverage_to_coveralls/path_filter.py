from __future__ import annotations

import fnmatch
import os
from pathlib import Path

from .command_utils import fail


def normalize_coverage_path(path: str) -> str:
    path = path.strip()
    if not path:
        return ""
    return os.path.normpath(path)


def relative_to_root(path: str, source_root: Path) -> str:
    """Express an SF path relative to the source root when it lives under it."""
    normalized = normalize_coverage_path(path)
    if not os.path.isabs(normalized):
        return normalized
    root = os.path.normpath(str(source_root.resolve()))
    if normalized == root or normalized.startswith(root + os.sep):
        return os.path.relpath(normalized, root)
    return normalized


def matches_excluded_pattern(path: str, pattern: str) -> bool:
    """
    Match one SF path against an exclude pattern.

    Supports both exact string matches and '*' wildcard matches, where '*'
    also crosses '/' like grcov's --ignore globs.
    """
    normalized_path = normalize_coverage_path(path)
    normalized_pattern = normalize_coverage_path(pattern)

    if any(char in normalized_pattern for char in "*?["):
        return fnmatch.fnmatchcase(normalized_path, normalized_pattern)

    return normalized_path == normalized_pattern


def is_excluded(path: str, patterns: list[str] | tuple[str, ...]) -> bool:
    return any(matches_excluded_pattern(path, pattern) for pattern in patterns)


def parse_excluded_paths(raw_paths: list[str]) -> tuple[str, ...]:
    parsed_paths: list[str] = []
    for item in raw_paths:
        parsed = normalize_coverage_path(item)
        if not parsed or parsed == ".":
            fail(f"Invalid --exclude '{item}', pattern cannot be empty")
        parsed_paths.append(parsed)

    # Keep input order while removing duplicates.
    return tuple(dict.fromkeys(parsed_paths))
