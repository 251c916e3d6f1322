"""
Knowledge Store — store, update and search handlers.

    store   validate → normalize → transaction{dedup checks, insert}
    update  validate → transaction{load, merge, dedup checks (id != self), update}
    search  validate → FTS5 query (or recency fallback) → rank → truncate

Dedup keys, both scoped:
    (scope, normalized_title)  checked first, reported as "title"
    (scope, content_hash)      reported as "content"

The Database handle is injected and owned by the caller; this class never
opens or closes it.

Author: Olivier Vitrac, PhD, HDR | olivier.vitrac@adservio.fr | Adservio
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Dict, List, Optional, Sequence

from knowmem.config import SearchConfig
from knowmem.db import Database
from knowmem.errors import (
    DuplicateError,
    KnowledgeMemoryError,
    NotFoundError,
    StorageError,
)
from knowmem.normalizer import (
    hash_content,
    normalize_scope,
    normalize_tags,
    normalize_title,
)
from knowmem.query import (
    EMPTY_FTS_QUERY,
    build_fts_query,
    build_search_query,
    build_simple_query,
)
from knowmem.ranker import rank_results
from knowmem.schema import get_schema_version
from knowmem.types import (
    KnowledgeItem,
    SearchResult,
    StoreResult,
    UpdateResult,
    _generate_id,
    _now_iso,
    parse_tags,
)
from knowmem.validator import (
    validate_search_input,
    validate_store_input,
    validate_update_input,
)

logger = logging.getLogger(__name__)

# Search fetches this many times the limit so boosts can reorder before
# truncation.
SEARCH_BREADTH_FACTOR = 2

_TITLE_DUPLICATE_MESSAGE = "Knowledge with similar title already exists in this scope"
_CONTENT_DUPLICATE_MESSAGE = "Knowledge with identical content already exists in this scope"


class KnowledgeStore:
    """
    Deduplicated, ranked knowledge memory over an injected Database.

    Usage:
        with open_database(path) as db:
            store = KnowledgeStore(db)
            result = store.store("Always use DTOs for APIs", content, ["api"])
            hits = store.search("api dto", context_tags=["api"])
    """

    def __init__(self, db: Database, config: Optional[SearchConfig] = None):
        self._db = db
        self._search_config = config or SearchConfig()

    @property
    def db(self) -> Database:
        return self._db

    # -- Write operations --------------------------------------------------

    def store(
        self,
        title: str,
        content: str,
        tags: Optional[Sequence[str]] = None,
        scope: Optional[str] = None,
    ) -> StoreResult:
        """Insert a new knowledge item.

        Raises:
            ValidationError: input violates field rules.
            DuplicateError: title or content already present in the scope.
            StorageError: unexpected engine failure.
        """
        validate_store_input(title, content, tags, scope)

        now = _now_iso()
        item = KnowledgeItem(
            id=_generate_id(),
            title=title.strip(),
            content=content.strip(),
            tags=normalize_tags(tags or []),
            scope=normalize_scope(scope),
            normalized_title=normalize_title(title),
            content_hash=hash_content(content),
            created_at=now,
            updated_at=now,
        )

        try:
            with self._db.transaction():
                self._check_duplicates(item)
                self._db.execute(
                    """INSERT INTO knowledge
                       (id, title, content, tags, scope,
                        normalized_title, content_hash, created_at, updated_at)
                       VALUES (?,?,?,?,?,?,?,?,?)""",
                    (
                        item.id, item.title, item.content, item.tags_json(),
                        item.scope, item.normalized_title, item.content_hash,
                        item.created_at, item.updated_at,
                    ),
                )
        except KnowledgeMemoryError:
            raise
        except sqlite3.Error as exc:
            raise StorageError(
                f"Failed to store knowledge: {exc}",
                {"original_error": str(exc)},
            ) from exc

        logger.info(f"Stored knowledge {item.id} (scope={item.scope})")
        return StoreResult(id=item.id)

    def update(
        self,
        item_id: str,
        title: Optional[str] = None,
        content: Optional[str] = None,
        tags: Optional[Sequence[str]] = None,
        scope: Optional[str] = None,
    ) -> UpdateResult:
        """Patch an existing item. ``id`` and ``created_at`` never change.

        Unsupplied fields keep their stored values; derived keys are
        recomputed from the merged title and content.

        Raises:
            ValidationError: no field supplied, or a supplied field is invalid.
            NotFoundError: no item with *item_id*.
            DuplicateError: the merged item collides with another item.
            StorageError: unexpected engine failure.
        """
        validate_update_input(item_id, title, content, tags, scope)

        try:
            with self._db.transaction():
                row = self._db.query_one(
                    "SELECT * FROM knowledge WHERE id=?", (item_id,)
                )
                if row is None:
                    raise NotFoundError(
                        f"Knowledge item not found: {item_id}", item_id,
                    )
                existing = KnowledgeItem.from_row(row)
                merged = self._merge(existing, title, content, tags, scope)
                self._check_duplicates(merged, exclude_id=item_id)
                self._db.execute(
                    """UPDATE knowledge SET
                           title=?, content=?, tags=?, scope=?,
                           normalized_title=?, content_hash=?, updated_at=?
                       WHERE id=?""",
                    (
                        merged.title, merged.content, merged.tags_json(),
                        merged.scope, merged.normalized_title,
                        merged.content_hash, merged.updated_at, item_id,
                    ),
                )
        except KnowledgeMemoryError:
            raise
        except sqlite3.Error as exc:
            raise StorageError(
                f"Failed to update knowledge: {exc}",
                {"original_error": str(exc)},
            ) from exc

        logger.info(f"Updated knowledge {item_id}")
        return UpdateResult(id=item_id)

    @staticmethod
    def _merge(
        existing: KnowledgeItem,
        title: Optional[str],
        content: Optional[str],
        tags: Optional[Sequence[str]],
        scope: Optional[str],
    ) -> KnowledgeItem:
        """Supplied fields override; derived keys follow the merged text."""
        merged_title = title.strip() if title is not None else existing.title
        merged_content = content.strip() if content is not None else existing.content
        return KnowledgeItem(
            id=existing.id,
            title=merged_title,
            content=merged_content,
            tags=normalize_tags(tags) if tags is not None else list(existing.tags),
            scope=normalize_scope(scope) if scope is not None else existing.scope,
            normalized_title=normalize_title(merged_title),
            content_hash=hash_content(merged_content),
            created_at=existing.created_at,
            updated_at=_now_iso(),
        )

    def _check_duplicates(
        self, item: KnowledgeItem, exclude_id: Optional[str] = None,
    ) -> None:
        """Raise DuplicateError on a title or content collision (title first).

        Must be called inside the writing transaction.
        """
        extra = ""
        params: List[Any] = []
        if exclude_id is not None:
            extra = " AND id != ?"
            params.append(exclude_id)

        row = self._db.query_one(
            f"SELECT id FROM knowledge WHERE normalized_title=? AND scope=?{extra}",
            [item.normalized_title, item.scope] + params,
        )
        if row is not None:
            raise DuplicateError(_TITLE_DUPLICATE_MESSAGE, row["id"], "title")

        row = self._db.query_one(
            f"SELECT id FROM knowledge WHERE content_hash=? AND scope=?{extra}",
            [item.content_hash, item.scope] + params,
        )
        if row is not None:
            raise DuplicateError(_CONTENT_DUPLICATE_MESSAGE, row["id"], "content")

    # -- Query operations --------------------------------------------------

    def search(
        self,
        query: str,
        context_tags: Optional[Sequence[str]] = None,
        scope: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> SearchResult:
        """Ranked full-text search.

        Malformed FTS syntax never surfaces: the query silently falls back
        to a most-recent-first listing.

        Raises:
            ValidationError: query shorter than 3 or longer than 500 chars,
                a non-integer limit, non-string context tags or scope.
            StorageError: unexpected engine failure.
        """
        validate_search_input(query, limit, context_tags, scope)

        effective_limit = self._clamp_limit(limit)
        query_scope = normalize_scope(scope) if scope and scope.strip() else None
        fts_query = build_fts_query(query)

        try:
            rows = self._fetch_candidates(fts_query, query_scope, effective_limit)
        except sqlite3.Error as exc:
            raise StorageError(
                f"Failed to search knowledge: {exc}",
                {"original_error": str(exc)},
            ) from exc

        ranked = rank_results(rows, context_tags=context_tags, query_scope=query_scope)
        return SearchResult(
            results=ranked[:effective_limit],
            total_matches=len(ranked),
            query=query,
        )

    def _clamp_limit(self, limit: Optional[int]) -> int:
        cfg = self._search_config
        if limit is None:
            limit = cfg.default_limit
        return max(min(limit, cfg.max_limit), 1)

    def _fetch_candidates(
        self, fts_query: str, scope: Optional[str], limit: int,
    ) -> List[sqlite3.Row]:
        if fts_query == EMPTY_FTS_QUERY:
            logger.debug("[search] empty FTS query → recent items")
            sql, params = build_simple_query(scope, limit)
            return self._db.query(sql, params)

        sql, params = build_search_query(
            fts_query, scope, limit * SEARCH_BREADTH_FACTOR,
        )
        try:
            rows = self._db.query(sql, params)
        except sqlite3.OperationalError as exc:
            logger.debug("[search] FTS query %r rejected (%s) → recent items", fts_query, exc)
            sql, params = build_simple_query(scope, limit)
            return self._db.query(sql, params)
        logger.debug("[search] MATCH %s → %d hits", fts_query, len(rows))
        return rows

    # -- Read helpers ------------------------------------------------------

    def get(self, item_id: str) -> KnowledgeItem:
        """Read one item by id.

        Raises:
            NotFoundError: no item with *item_id*.
        """
        try:
            row = self._db.query_one("SELECT * FROM knowledge WHERE id=?", (item_id,))
        except sqlite3.Error as exc:
            raise StorageError(
                f"Failed to read knowledge: {exc}",
                {"original_error": str(exc)},
            ) from exc
        if row is None:
            raise NotFoundError(f"Knowledge item not found: {item_id}", item_id)
        return KnowledgeItem.from_row(row)

    def stats(self) -> Dict[str, Any]:
        """Item counts per scope, tag frequencies and schema version."""
        try:
            total = self._db.query_one("SELECT COUNT(*) AS cnt FROM knowledge")["cnt"]
            scope_rows = self._db.query(
                "SELECT scope, COUNT(*) AS cnt FROM knowledge "
                "GROUP BY scope ORDER BY scope"
            )
            tag_rows = self._db.query("SELECT tags FROM knowledge")
            version = get_schema_version(self._db)
        except sqlite3.Error as exc:
            raise StorageError(
                f"Failed to read statistics: {exc}",
                {"original_error": str(exc)},
            ) from exc

        tag_counts: Dict[str, int] = {}
        for row in tag_rows:
            for tag in parse_tags(row["tags"]):
                tag_counts[tag] = tag_counts.get(tag, 0) + 1

        return {
            "db_path": self._db.path,
            "schema_version": version,
            "total_items": total,
            "by_scope": {r["scope"]: r["cnt"] for r in scope_rows},
            "top_tags": dict(
                sorted(tag_counts.items(), key=lambda kv: (-kv[1], kv[0]))[:10]
            ),
        }
