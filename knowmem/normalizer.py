"""
Canonical forms for dedup keys and indexing.

All functions are pure and idempotent: applying one twice gives the same
result as applying it once.

Author: Olivier Vitrac, PhD, HDR | olivier.vitrac@adservio.fr | Adservio
"""

from __future__ import annotations

import hashlib
import re
from typing import Iterable, List, Optional

from knowmem.types import DEFAULT_SCOPE

_WHITESPACE_RE = re.compile(r"\s+")
_BLANK_LINES_RE = re.compile(r"\n{3,}")


def normalize_title(title: str) -> str:
    """Lowercase, trim, collapse internal whitespace runs to one space."""
    return _WHITESPACE_RE.sub(" ", title.lower().strip())


def normalize_content(content: str) -> str:
    """Trim, convert CRLF/CR to LF, collapse 3+ newlines to exactly 2.

    >>> normalize_content("  a\\r\\n\\r\\n\\r\\n\\r\\nb  ")
    'a\\n\\nb'
    """
    text = content.strip().replace("\r\n", "\n").replace("\r", "\n")
    return _BLANK_LINES_RE.sub("\n\n", text)


def hash_content(content: str) -> str:
    """SHA-256 hex digest (64 chars) of the normalized content."""
    normalized = normalize_content(content)
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def normalize_tags(tags: Iterable[str]) -> List[str]:
    """Lowercase + trim each tag, drop empties, dedupe in first-seen order."""
    seen: List[str] = []
    for tag in tags:
        t = tag.lower().strip()
        if t and t not in seen:
            seen.append(t)
    return seen


def normalize_scope(scope: Optional[str] = None) -> str:
    """``global`` when absent or blank, else trimmed and lowercased."""
    if scope is None or not scope.strip():
        return DEFAULT_SCOPE
    return scope.strip().lower()
