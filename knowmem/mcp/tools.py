"""
knowmem MCP Tools — 3 knowledge tools for MCP integration.

Thin wrappers around KnowledgeStore.  Each tool follows the same order:

    ① Request id + timer
    ② Tool execution   — KnowledgeStore handler (validation lives there)
    ③ Audit log        — always, including on failure (in finally block)

Responses are plain dicts:

    {"status": "ok", ...result}
    {"status": "error", "error": CODE, "message": ..., "details": {...}}

Tools:
    WRITE:   memory_store_knowledge   — deduplicated insert
             memory_update_knowledge  — partial update by id
    READ:    memory_search_knowledge  — BM25 search, tag/scope boosted

Author: Olivier Vitrac, PhD, HDR | olivier.vitrac@adservio.fr | Adservio
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

from knowmem.errors import (
    DuplicateError,
    KnowledgeMemoryError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from knowmem.mcp.audit import AuditLogger
from knowmem.store import KnowledgeStore

logger = logging.getLogger(__name__)

_CLIENT_ERRORS = (ValidationError, DuplicateError, NotFoundError)


def _error_response(exc: KnowledgeMemoryError) -> Dict[str, Any]:
    return {"status": "error", **exc.to_dict()}


def _unexpected_response(tool: str, exc: Exception) -> Dict[str, Any]:
    logger.exception("%s failed", tool)
    wrapped = StorageError(f"{tool} failed: {exc}", {"original_error": str(exc)})
    return _error_response(wrapped)


def register_knowledge_tools(
    mcp,
    store: KnowledgeStore,
    *,
    audit: Optional[AuditLogger] = None,
) -> None:
    """
    Register the knowledge MCP tools on a FastMCP server instance.

    Args:
        mcp: FastMCP server instance.
        store: KnowledgeStore over an open, migrated Database.
        audit: AuditLogger for structured logging. None → stderr logger.
    """
    if audit is None:
        audit = AuditLogger()

    _audit_db = store.db.path

    # =====================================================================
    # WRITE
    # =====================================================================

    @mcp.tool()
    def memory_store_knowledge(
        title: str,
        content: str,
        tags: Optional[List[str]] = None,
        scope: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Store a piece of reusable knowledge (decision, pattern, fix).

        Rejected when an item with the same normalized title or identical
        content already exists in the scope.

        Args:
            title: Short descriptive title (10-100 characters).
            content: Specific, actionable knowledge (50-5000 characters).
            tags: Lowercase alphanumeric tags with hyphens (max 10).
            scope: "global" (default), "project:<name>" or "repo:<name>".

        Returns:
            success, id, message on success; error, message, details otherwise.
        """
        t0 = time.monotonic()
        rid = audit.new_rid()
        outcome = "ok"
        detail: Dict[str, Any] = {}
        try:
            detail.update(audit.make_write_detail(content, tags, scope))
            result = store.store(title, content, tags=tags, scope=scope)
            detail["id"] = result.id
            return {"status": "ok", **result.to_dict()}
        except _CLIENT_ERRORS as e:
            outcome = "rejected"
            detail["error"] = e.code
            return _error_response(e)
        except KnowledgeMemoryError as e:
            outcome = "error"
            detail["error"] = e.code
            return _error_response(e)
        except Exception as e:
            outcome = "error"
            return _unexpected_response("memory_store_knowledge", e)
        finally:
            audit.log("memory_store_knowledge", rid, _audit_db,
                      outcome, detail, (time.monotonic() - t0) * 1000)

    @mcp.tool()
    def memory_update_knowledge(
        id: str,
        title: Optional[str] = None,
        content: Optional[str] = None,
        tags: Optional[List[str]] = None,
        scope: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Update an existing knowledge item. Only supplied fields change.

        Args:
            id: Item id returned by memory_store_knowledge.
            title: New title (10-100 characters).
            content: New content (50-5000 characters).
            tags: Replacement tag list (max 10).
            scope: New scope.

        Returns:
            success, id, message on success; error, message, details otherwise.
        """
        t0 = time.monotonic()
        rid = audit.new_rid()
        outcome = "ok"
        detail: Dict[str, Any] = {"id": id}
        try:
            detail.update(audit.make_write_detail(content, tags, scope))
            detail["fields"] = [
                name for name, value in (
                    ("title", title), ("content", content),
                    ("tags", tags), ("scope", scope),
                ) if value is not None
            ]
            result = store.update(id, title=title, content=content,
                                  tags=tags, scope=scope)
            return {"status": "ok", **result.to_dict()}
        except _CLIENT_ERRORS as e:
            outcome = "rejected"
            detail["error"] = e.code
            return _error_response(e)
        except KnowledgeMemoryError as e:
            outcome = "error"
            detail["error"] = e.code
            return _error_response(e)
        except Exception as e:
            outcome = "error"
            return _unexpected_response("memory_update_knowledge", e)
        finally:
            audit.log("memory_update_knowledge", rid, _audit_db,
                      outcome, detail, (time.monotonic() - t0) * 1000)

    # =====================================================================
    # READ
    # =====================================================================

    @mcp.tool()
    def memory_search_knowledge(
        query: str,
        context_tags: Optional[List[str]] = None,
        scope: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Search stored knowledge, best matches first.

        Items sharing context_tags, or belonging to the requested scope,
        are ranked higher.  Global items are always included.

        Args:
            query: Search text (3-500 characters).
            context_tags: Tags describing the current task.
            scope: Scope to search alongside global.
            limit: Max results (default 5, capped at 20).

        Returns:
            results: [{id, title, content, tags, scope, score}].
            total_matches: Candidates ranked before truncation.
            query: The query as given.
        """
        t0 = time.monotonic()
        rid = audit.new_rid()
        outcome = "ok"
        detail: Dict[str, Any] = {}
        try:
            if isinstance(query, str):
                detail["query_len"] = len(query)
            result = store.search(query, context_tags=context_tags,
                                  scope=scope, limit=limit)
            detail["results"] = len(result.results)
            detail["total_matches"] = result.total_matches
            return {"status": "ok", **result.to_dict()}
        except _CLIENT_ERRORS as e:
            outcome = "rejected"
            detail["error"] = e.code
            return _error_response(e)
        except KnowledgeMemoryError as e:
            outcome = "error"
            detail["error"] = e.code
            return _error_response(e)
        except Exception as e:
            outcome = "error"
            return _unexpected_response("memory_search_knowledge", e)
        finally:
            audit.log("memory_search_knowledge", rid, _audit_db,
                      outcome, detail, (time.monotonic() - t0) * 1000)

    logger.debug("Registered knowledge tools (db=%s)", _audit_db)
