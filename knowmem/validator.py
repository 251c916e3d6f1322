"""
Field and cross-field validation for store, update and search input.

Each ``validate_<field>`` returns the list of violation messages for one
field (empty = valid).  The ``validate_*_input`` entry points collect every
violation before raising, so callers see all problems at once.

Author: Olivier Vitrac, PhD, HDR | olivier.vitrac@adservio.fr | Adservio
"""

from __future__ import annotations

import re
from typing import Any, List, Optional

from knowmem.errors import ValidationError

TITLE_MIN_LENGTH = 10
TITLE_MAX_LENGTH = 100
CONTENT_MIN_LENGTH = 50
CONTENT_MAX_LENGTH = 5000
TAGS_MAX_COUNT = 10
QUERY_MIN_LENGTH = 3
QUERY_MAX_LENGTH = 500

SCOPE_PATTERN = re.compile(
    r"^(global|project:[a-z0-9_-]+|repo:[a-z0-9_-]+)$", re.IGNORECASE,
)
TAG_PATTERN = re.compile(r"^[a-z0-9][a-z0-9-]*$", re.IGNORECASE)

# Low-information openers. Matched on the whole content or as a leading word
# group ("todo fix the parser ...").
GENERIC_PHRASES = (
    "this is important",
    "remember this",
    "note to self",
    "todo",
    "fix this",
    "do this",
    "always do",
    "never do",
)

GENERIC_CONTENT_MESSAGE = (
    "Content appears too generic. "
    "Please provide specific, actionable knowledge."
)


# ---------------------------------------------------------------------------
# Field rules
# ---------------------------------------------------------------------------


def validate_title(title: Any) -> List[str]:
    """Title: required, 10-100 chars after trimming."""
    if not isinstance(title, str) or not title.strip():
        return ["Title is required"]
    errors: List[str] = []
    length = len(title.strip())
    if length < TITLE_MIN_LENGTH:
        errors.append(f"Title must be at least {TITLE_MIN_LENGTH} characters")
    if length > TITLE_MAX_LENGTH:
        errors.append(f"Title must be at most {TITLE_MAX_LENGTH} characters")
    return errors


def validate_content(content: Any) -> List[str]:
    """Content: required, 50-5000 chars after trimming, not generic."""
    if not isinstance(content, str) or not content.strip():
        return ["Content is required"]
    errors: List[str] = []
    trimmed = content.strip()
    if len(trimmed) < CONTENT_MIN_LENGTH:
        errors.append(f"Content must be at least {CONTENT_MIN_LENGTH} characters")
    if len(trimmed) > CONTENT_MAX_LENGTH:
        errors.append(f"Content must be at most {CONTENT_MAX_LENGTH} characters")
    lower = trimmed.lower()
    for phrase in GENERIC_PHRASES:
        if lower == phrase or lower.startswith(phrase + " "):
            errors.append(GENERIC_CONTENT_MESSAGE)
            break
    return errors


def validate_tags(tags: Any) -> List[str]:
    """Tags: optional, at most 10, each alphanumeric with hyphens."""
    if tags is None:
        return []
    if isinstance(tags, str) or not isinstance(tags, (list, tuple)):
        return ["Tags must be a list of strings"]
    errors: List[str] = []
    if len(tags) > TAGS_MAX_COUNT:
        errors.append(f"Maximum {TAGS_MAX_COUNT} tags allowed")
    for tag in tags:
        if not isinstance(tag, str) or not TAG_PATTERN.match(tag):
            errors.append(
                f'Invalid tag "{tag}". Tags must be alphanumeric with hyphens.'
            )
    return errors


def validate_scope(scope: Any) -> List[str]:
    """Scope: optional; global, project:<name> or repo:<name>."""
    if scope is None or scope == "" or scope == "global":
        return []
    if not isinstance(scope, str) or not SCOPE_PATTERN.match(scope):
        return [
            'Invalid scope. Must be "global", "project:<name>", or "repo:<name>"'
        ]
    return []


def validate_query(query: Any) -> List[str]:
    """Search query: required, 3-500 chars after trimming."""
    if not isinstance(query, str) or not query.strip():
        return ["Query is required"]
    errors: List[str] = []
    length = len(query.strip())
    if length < QUERY_MIN_LENGTH:
        errors.append(f"Query must be at least {QUERY_MIN_LENGTH} characters")
    if length > QUERY_MAX_LENGTH:
        errors.append(f"Query must be at most {QUERY_MAX_LENGTH} characters")
    return errors


def validate_limit(limit: Any) -> List[str]:
    """Limit: optional integer. Range is clamped by the caller."""
    if limit is None:
        return []
    if isinstance(limit, bool) or not isinstance(limit, int):
        return ["Limit must be an integer"]
    return []


def validate_search_context(context_tags: Any, scope: Any) -> List[str]:
    """Search context: tags are a list of strings, scope a string.

    Scope values are not pattern-checked here; an unknown scope only
    narrows the result set.
    """
    errors: List[str] = []
    if context_tags is not None and (
        isinstance(context_tags, str)
        or not isinstance(context_tags, (list, tuple))
        or not all(isinstance(t, str) for t in context_tags)
    ):
        errors.append("Context tags must be a list of strings")
    if scope is not None and not isinstance(scope, str):
        errors.append("Scope must be a string")
    return errors


# ---------------------------------------------------------------------------
# Operation entry points
# ---------------------------------------------------------------------------


def _raise_if(errors: List[str]) -> None:
    if errors:
        raise ValidationError.from_errors(errors)


def validate_store_input(
    title: Any,
    content: Any,
    tags: Any = None,
    scope: Any = None,
) -> None:
    """Validate a store request. Raises ValidationError listing all violations."""
    errors: List[str] = []
    errors.extend(validate_title(title))
    errors.extend(validate_content(content))
    errors.extend(validate_tags(tags))
    errors.extend(validate_scope(scope))
    _raise_if(errors)


def validate_update_input(
    item_id: Any,
    title: Any = None,
    content: Any = None,
    tags: Any = None,
    scope: Any = None,
) -> None:
    """Validate an update request.

    Only supplied (non-None) fields are checked; at least one must be given.
    """
    errors: List[str] = []
    if not isinstance(item_id, str) or not item_id.strip():
        errors.append("Id is required")
    if title is None and content is None and tags is None and scope is None:
        errors.append(
            "At least one field (title, content, tags, scope) must be provided"
        )
    if title is not None:
        errors.extend(validate_title(title))
    if content is not None:
        errors.extend(validate_content(content))
    if tags is not None:
        errors.extend(validate_tags(tags))
    if scope is not None:
        errors.extend(validate_scope(scope))
    _raise_if(errors)


def validate_search_input(
    query: Any,
    limit: Optional[Any] = None,
    context_tags: Any = None,
    scope: Any = None,
) -> None:
    """Validate a search request (query length, limit and context types)."""
    errors: List[str] = []
    errors.extend(validate_query(query))
    errors.extend(validate_limit(limit))
    errors.extend(validate_search_context(context_tags, scope))
    _raise_if(errors)
