"""
Audit trail for the knowledge tools.

Every memory_store_knowledge / memory_update_knowledge /
memory_search_knowledge call appends one JSON line, whether it succeeded,
was rejected as a client error, or failed in storage:

    {"v":1,"ts":"...Z","rid":"...","tool":"memory_store_knowledge",
     "db":"memory.db","outcome":"rejected","d":{"error":"DUPLICATE_ERROR"},"ms":3.2}

Knowledge bodies stay out of the trail: a write is recorded by its size,
its content hash (the same SHA-256 used for duplicate detection) and a
short single-line preview.

A failed write to the trail is reported on the module logger; the tool
call itself always completes.

Author: Olivier Vitrac, PhD, HDR | olivier.vitrac@adservio.fr | Adservio
"""

from __future__ import annotations

import hashlib
import json
import logging
import sys
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence, TextIO

logger = logging.getLogger(__name__)

AUDIT_SCHEMA_VERSION = 1
PREVIEW_MAX_CHARS = 120


class AuditLogger:
    """Append-only JSONL trail of knowledge tool calls."""

    def __init__(self, output: Optional[TextIO] = None):
        """
        Args:
            output: Text stream for records. None → stderr. The caller keeps
                ownership of a stream passed here.
        """
        self._output = output if output is not None else sys.stderr
        self._owned = False

    @classmethod
    def open(cls, path: str) -> AuditLogger:
        """Append to the file at *path*; close() releases it."""
        audit = cls(open(path, "a", encoding="utf-8"))
        audit._owned = True
        return audit

    def close(self) -> None:
        """Close the trail file if this logger opened it. Idempotent."""
        if self._owned and not self._output.closed:
            self._output.close()

    def new_rid(self) -> str:
        """Request id tying a record to one tool call."""
        return uuid.uuid4().hex

    def log(
        self,
        tool: str,
        rid: str,
        db_path: str,
        outcome: str,
        detail: Optional[Dict[str, Any]] = None,
        latency_ms: float = 0.0,
    ) -> None:
        """Append one record. Never raises.

        Args:
            tool: Tool name, e.g. "memory_search_knowledge".
            rid: Request id from new_rid().
            db_path: Knowledge database the call ran against.
            outcome: "ok", "rejected" (validation, duplicate, not found)
                or "error" (storage or unexpected failure).
            detail: Per-tool fields, stored under "d" when non-empty.
            latency_ms: Wall-clock time of the call.
        """
        try:
            now = datetime.now(timezone.utc)
            record: Dict[str, Any] = {
                "v": AUDIT_SCHEMA_VERSION,
                "ts": now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z",
                "rid": rid,
                "tool": tool,
                "db": db_path,
                "outcome": outcome,
            }
            if detail:
                record["d"] = detail
            record["ms"] = round(latency_ms, 1)

            line = json.dumps(record, ensure_ascii=False, separators=(",", ":"))
            self._output.write(line + "\n")
            self._output.flush()
        except (OSError, ValueError, TypeError) as exc:
            logger.warning("Audit record for %s dropped: %s", tool, exc)

    @staticmethod
    def make_content_detail(content: str) -> Dict[str, Any]:
        """Size, SHA-256 and a one-line preview of a knowledge body."""
        data = content.encode("utf-8")
        preview = content[:PREVIEW_MAX_CHARS].replace("\n", " ").replace("\r", "")
        if len(content) > PREVIEW_MAX_CHARS:
            preview = preview.rstrip() + "…"
        return {
            "bytes": len(data),
            "hash": hashlib.sha256(data).hexdigest(),
            "preview": preview,
        }

    @classmethod
    def make_write_detail(
        cls,
        content: Any = None,
        tags: Optional[Sequence[Any]] = None,
        scope: Any = None,
    ) -> Dict[str, Any]:
        """Detail for a store/update call. Non-string values are skipped."""
        detail: Dict[str, Any] = {}
        if isinstance(content, str):
            detail.update(cls.make_content_detail(content))
        if isinstance(tags, (list, tuple)):
            detail["tags"] = len(tags)
        if isinstance(scope, str):
            detail["scope"] = scope
        return detail
