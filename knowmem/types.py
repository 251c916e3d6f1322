"""
Knowledge Data Model — Items and Result DTOs

Defines the persisted knowledge item and the plain result objects returned
by the store, update and search operations.  Rows come back from SQLite as
``sqlite3.Row``; ``KnowledgeItem.from_row`` is the single place where the
column layout is mapped to Python.

Author: Olivier Vitrac, PhD, HDR | olivier.vitrac@adservio.fr | Adservio
"""

from __future__ import annotations

import json
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping

DEFAULT_SCOPE = "global"


def _now_iso() -> str:
    """Current UTC time as ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def _generate_id() -> str:
    """Generate a fresh knowledge item id (UUID4)."""
    return str(uuid.uuid4())


def parse_tags(raw: Any) -> List[str]:
    """Decode the stored JSON tag array. Anything unparsable yields []."""
    if isinstance(raw, list):
        return [str(t) for t in raw]
    try:
        tags = json.loads(raw)
    except (TypeError, ValueError):
        return []
    if not isinstance(tags, list):
        return []
    return [str(t) for t in tags]


# ---------------------------------------------------------------------------
# Knowledge Item (persisted row)
# ---------------------------------------------------------------------------

@dataclass
class KnowledgeItem:
    """
    One row of the ``knowledge`` table.

    ``normalized_title`` and ``content_hash`` are derived from ``title`` and
    ``content``; together with ``scope`` they form the two dedup keys.
    """

    id: str = field(default_factory=_generate_id)
    title: str = ""
    content: str = ""
    tags: List[str] = field(default_factory=list)
    scope: str = DEFAULT_SCOPE
    normalized_title: str = ""
    content_hash: str = ""
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> KnowledgeItem:
        """Build an item from a ``knowledge`` row."""
        return cls(
            id=row["id"],
            title=row["title"],
            content=row["content"],
            tags=parse_tags(row["tags"]),
            scope=row["scope"],
            normalized_title=row["normalized_title"],
            content_hash=row["content_hash"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dict (JSON-safe)."""
        return asdict(self)

    def tags_json(self) -> str:
        """Tags in their stored form."""
        return json.dumps(self.tags)


# ---------------------------------------------------------------------------
# Write results
# ---------------------------------------------------------------------------

@dataclass
class StoreResult:
    """Outcome of a successful store."""

    id: str
    success: bool = True
    message: str = "Knowledge stored successfully"

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "id": self.id, "message": self.message}


@dataclass
class UpdateResult:
    """Outcome of a successful update."""

    id: str
    success: bool = True
    message: str = "Knowledge updated successfully"

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "id": self.id, "message": self.message}


# ---------------------------------------------------------------------------
# Search results
# ---------------------------------------------------------------------------

@dataclass
class SearchResultItem:
    """One ranked hit. ``score`` is the boosted, rounded final score."""

    id: str
    title: str
    content: str
    tags: List[str] = field(default_factory=list)
    scope: str = DEFAULT_SCOPE
    score: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SearchResult:
    """Ranked, truncated hits plus the pre-truncation match count."""

    results: List[SearchResultItem] = field(default_factory=list)
    total_matches: int = 0
    query: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "results": [r.to_dict() for r in self.results],
            "total_matches": self.total_matches,
            "query": self.query,
        }
