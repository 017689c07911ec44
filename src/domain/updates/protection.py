"""
Update Protection - Protected File Policy
==========================================

Decides which repository paths an automated update may touch.

ARCHITECTURAL DECISION:
- A hardcoded list of protected patterns is always checked first and cannot
  be weakened by vozsmart.config.json
- Paths that fail normalization are treated as protected (fail-closed)
- Pure functions only: no I/O happens here, so this runs before any read or
  write of a manifest-supplied path
"""

import posixpath
import re
from functools import lru_cache
from typing import Iterable, List, Optional, Pattern, Sequence

from .models import ValidationResult


# Credentials, configuration and client data. Always wins over config.
HARDCODED_PROTECTED_PATTERNS: List[Pattern[str]] = [
    re.compile(r"^\.env"),
    re.compile(r"^vozsmart\.config\.json$"),
    re.compile(r"^next\.config\."),
    re.compile(r"^package(-lock)?\.json$"),
    re.compile(r"^supabase/migrations/"),
    re.compile(r"^\.vercel/"),
    re.compile(r"^\.git/"),
    re.compile(r"^\.vozsmart-backups/"),
    re.compile(r"^tmp/"),
    re.compile(r"\.log$"),
    re.compile(r"^node_modules/"),
    re.compile(r"^\.next/"),
    re.compile(r"^out/"),
]

_DRIVE_PREFIX = re.compile(r"^[A-Za-z]:")


def normalize_path(file_path) -> Optional[str]:
    """
    Normalize a repository-relative path, rejecting anything unsafe.

    Returns the path with "/" separators and no leading separator, or None
    when the input is empty, absolute, or contains a ".." segment.
    """
    if not isinstance(file_path, str):
        return None

    candidate = file_path.strip().replace("\\", "/")
    if not candidate:
        return None

    if candidate.startswith("/") or _DRIVE_PREFIX.match(candidate):
        return None

    # Conservative: reject any parent segment, even one that stays inside the root
    if ".." in candidate.split("/"):
        return None

    normalized = posixpath.normpath(candidate)
    if normalized in (".", "") or normalized.startswith("/"):
        return None
    if normalized == ".." or normalized.startswith("../"):
        return None

    return normalized


@lru_cache(maxsize=256)
def _glob_to_regex(pattern: str) -> Pattern[str]:
    """Compile a protectedFiles glob into an anchored regex."""
    parts = []
    i = 0
    while i < len(pattern):
        char = pattern[i]
        if pattern.startswith("**", i):
            parts.append(".*")
            i += 2
            continue
        if char == "*":
            parts.append("[^/]*")
        elif char == "?":
            parts.append(".")
        else:
            parts.append(re.escape(char))
        i += 1
    return re.compile("".join(parts))


def matches_pattern(path: str, pattern: str) -> bool:
    """Full-path glob match: '*' stays inside a segment, '**' crosses them."""
    return _glob_to_regex(pattern).fullmatch(path) is not None


def is_protected(file_path: str, protected_patterns: Iterable[str] = ()) -> bool:
    """
    Check whether a file must never be overwritten by an update.

    Args:
        file_path: Path relative to the repository root (raw manifest value).
        protected_patterns: protectedFiles globs from vozsmart.config.json.

    Returns:
        True if the path is protected or could not be normalized.
    """
    normalized = normalize_path(file_path)
    if normalized is None:
        return True

    for pattern in HARDCODED_PROTECTED_PATTERNS:
        if pattern.search(normalized):
            return True

    for pattern in protected_patterns or ():
        if matches_pattern(normalized, pattern):
            return True

    return False


def validate_file_list(files: Sequence[str], protected_patterns: Iterable[str] = ()) -> ValidationResult:
    """
    Validate a manifest file list against the protection policy.

    blocked keeps the original (pre-normalization) strings in input order.
    """
    patterns = list(protected_patterns or ())
    blocked = [f for f in files if is_protected(f, patterns)]
    return ValidationResult(valid=not blocked, blocked=blocked)
