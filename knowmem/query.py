"""
FTS5 query construction.

Translates free text into an FTS5 MATCH expression and builds the two read
queries used by search:

  1. build_search_query() — BM25-ranked FTS5 join (title=10, content=5, tags=1)
  2. build_simple_query() — most-recent-first listing, neutral score

Both return ``(sql, params)`` and apply the same scope filter: rows of the
requested scope plus ``global`` rows.

Author: Olivier Vitrac, PhD, HDR | olivier.vitrac@adservio.fr | Adservio
"""

from __future__ import annotations

import logging
import re
from typing import Any, List, Optional, Tuple

logger = logging.getLogger(__name__)

# Returned by build_fts_query() when nothing searchable is left.
EMPTY_FTS_QUERY = ""

# Column weights passed to bm25(): title, content, tags.
BM25_WEIGHTS = (10.0, 5.0, 1.0)

# FTS5 operators: * ^ ( ) : and - (column exclusion).  Quotes are doubled.
_FTS_OPERATOR_RE = re.compile(r"[*^():\-]")
_BOOLEAN_RE = re.compile(r"\b(AND|OR|NOT)\b", re.IGNORECASE)
_WHITESPACE_RE = re.compile(r"\s+")

Query = Tuple[str, List[Any]]


def escape_fts_text(text: str) -> str:
    """Neutralize FTS5 syntax in user text.

    >>> escape_fts_text('api-design (NOT legacy)')
    'api design legacy'
    """
    escaped = text.replace('"', '""')
    escaped = _FTS_OPERATOR_RE.sub(" ", escaped)
    escaped = _BOOLEAN_RE.sub("", escaped)
    return _WHITESPACE_RE.sub(" ", escaped.strip()).strip()


def build_fts_query(query: str) -> str:
    """Build an FTS5 prefix query from natural language.

    Every remaining word gets a trailing ``*``; words are space-joined,
    which FTS5 treats as implicit AND.

    >>> build_fts_query("api design")
    'api* design*'
    >>> build_fts_query("---")
    ''
    """
    words = [w for w in escape_fts_text(query).split() if w]
    if not words:
        return EMPTY_FTS_QUERY
    return " ".join(f"{w}*" for w in words)


def build_search_query(
    fts_query: str,
    scope: Optional[str] = None,
    limit: int = 5,
) -> Query:
    """BM25-ranked FTS5 search. Lower ``bm25_score`` is a better match."""
    weights = ", ".join(str(w) for w in BM25_WEIGHTS)
    params: List[Any] = [fts_query]
    sql = (
        "SELECT k.id, k.title, k.content, k.tags, k.scope, "
        "k.created_at, k.updated_at, "
        f"bm25(knowledge_fts, {weights}) AS bm25_score "
        "FROM knowledge k "
        "JOIN knowledge_fts fts ON k.rowid = fts.rowid "
        "WHERE knowledge_fts MATCH ?"
    )
    if scope:
        sql += " AND (k.scope = ? OR k.scope = 'global')"
        params.append(scope)
    sql += " ORDER BY bm25_score LIMIT ?"
    params.append(limit)
    return sql, params


def build_simple_query(scope: Optional[str] = None, limit: int = 5) -> Query:
    """Most-recent-first listing with a neutral zero score."""
    params: List[Any] = []
    sql = (
        "SELECT id, title, content, tags, scope, created_at, updated_at, "
        "0 AS bm25_score FROM knowledge"
    )
    if scope:
        sql += " WHERE scope = ? OR scope = 'global'"
        params.append(scope)
    sql += " ORDER BY created_at DESC LIMIT ?"
    params.append(limit)
    return sql, params
