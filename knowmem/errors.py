"""
Error taxonomy for the knowledge store.

Every error carries a stable machine-readable ``code``, a human message and
a structured ``details`` payload.  Callers branch on the class (or the code),
never on the message text.

    ValidationError  VALIDATION_ERROR  input violates field rules
    DuplicateError   DUPLICATE_ERROR   title/content collision within scope
    NotFoundError    NOT_FOUND_ERROR   update/get on an unknown id
    StorageError     STORAGE_ERROR     any other engine failure
    MigrationError   MIGRATION_ERROR   malformed migration set (fatal)

Author: Olivier Vitrac, PhD, HDR | olivier.vitrac@adservio.fr | Adservio
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class KnowledgeMemoryError(Exception):
    """Base class for all knowledge store errors."""

    code: str = "KNOWLEDGE_MEMORY_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a JSON-safe dict (MCP responses, CLI --json)."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(KnowledgeMemoryError):
    """Input violates one or more field rules."""

    code = "VALIDATION_ERROR"

    @classmethod
    def from_errors(cls, errors: List[str]) -> ValidationError:
        """Build one error reporting every violation."""
        return cls("; ".join(errors), {"errors": list(errors)})

    @property
    def errors(self) -> List[str]:
        return list(self.details.get("errors", []))


class DuplicateError(KnowledgeMemoryError):
    """A title or content collision within the same scope."""

    code = "DUPLICATE_ERROR"

    def __init__(self, message: str, existing_id: str, duplicate_type: str):
        super().__init__(
            message,
            {"existing_id": existing_id, "duplicate_type": duplicate_type},
        )
        self.existing_id = existing_id
        self.duplicate_type = duplicate_type


class NotFoundError(KnowledgeMemoryError):
    """No knowledge item with the given id."""

    code = "NOT_FOUND_ERROR"

    def __init__(self, message: str, item_id: Optional[str] = None):
        super().__init__(message, {"id": item_id} if item_id else None)
        self.item_id = item_id


class StorageError(KnowledgeMemoryError):
    """Unexpected engine failure (I/O, corruption, lock timeout)."""

    code = "STORAGE_ERROR"


class MigrationError(KnowledgeMemoryError):
    """Migration set is malformed. Raised at discovery, never retried."""

    code = "MIGRATION_ERROR"
