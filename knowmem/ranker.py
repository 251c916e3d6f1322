"""
Context-aware re-ranking of raw FTS5 hits.

Formula (deterministic):

    final = (-bm25) * tag_boost + scope_boost

    tag_boost   = 1 + 0.1 * |context_tags ∩ item_tags|
    scope_boost = 0.5  item scope == query scope
                  0.2  item scope == global
                  0    otherwise

SQLite's bm25() is more-negative-is-better, hence the negation.

Author: Olivier Vitrac, PhD, HDR | olivier.vitrac@adservio.fr | Adservio
"""

from __future__ import annotations

from typing import Any, Iterable, List, Mapping, Optional

from knowmem.types import SearchResultItem, parse_tags

TAG_BOOST_PER_MATCH = 0.1
SCOPE_MATCH_BOOST = 0.5
GLOBAL_SCOPE_BOOST = 0.2


def tag_boost(item_tags: Iterable[str], context_tags: Optional[Iterable[str]]) -> float:
    """+10% per context tag present on the item."""
    if not context_tags:
        return 1.0
    wanted = {t.lower() for t in context_tags}
    have = {t.lower() for t in item_tags}
    return 1.0 + len(wanted & have) * TAG_BOOST_PER_MATCH


def scope_boost(item_scope: str, query_scope: Optional[str]) -> float:
    if query_scope and item_scope == query_scope:
        return SCOPE_MATCH_BOOST
    if item_scope == "global":
        return GLOBAL_SCOPE_BOOST
    return 0.0


def rank_results(
    rows: Iterable[Mapping[str, Any]],
    context_tags: Optional[Iterable[str]] = None,
    query_scope: Optional[str] = None,
) -> List[SearchResultItem]:
    """Apply tag and scope boosts, return items sorted by score descending.

    Ties keep their upstream (BM25 or recency) order.
    """
    context = list(context_tags) if context_tags else []
    ranked: List[SearchResultItem] = []
    for row in rows:
        tags = parse_tags(row["tags"])
        base = -float(row["bm25_score"] or 0.0)
        score = base * tag_boost(tags, context) + scope_boost(row["scope"], query_scope)
        ranked.append(SearchResultItem(
            id=row["id"],
            title=row["title"],
            content=row["content"],
            tags=tags,
            scope=row["scope"],
            score=round(score, 3),
        ))
    return sorted(ranked, key=lambda r: r.score, reverse=True)
