"""
knowmem — a local knowledge memory for coding agents.

One file, one truth. Knowledge items live in a single SQLite + FTS5 + WAL
database with scoped dedup on normalized titles and content hashes, and
BM25 search re-ranked by context tags and scope.

Author: Olivier Vitrac, PhD, HDR | olivier.vitrac@adservio.fr | Adservio
"""

__version__ = "0.1.0"

from knowmem.config import KnowledgeConfig, SearchConfig, StoreConfig, load_config
from knowmem.db import Database, open_database
from knowmem.errors import (
    DuplicateError,
    KnowledgeMemoryError,
    MigrationError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from knowmem.schema import get_schema_version, migrate, reset_schema
from knowmem.store import KnowledgeStore
from knowmem.types import (
    KnowledgeItem,
    SearchResult,
    SearchResultItem,
    StoreResult,
    UpdateResult,
)

__all__ = [
    "__version__",
    "KnowledgeConfig",
    "StoreConfig",
    "SearchConfig",
    "load_config",
    "Database",
    "open_database",
    "migrate",
    "reset_schema",
    "get_schema_version",
    "KnowledgeStore",
    "KnowledgeItem",
    "StoreResult",
    "UpdateResult",
    "SearchResult",
    "SearchResultItem",
    "KnowledgeMemoryError",
    "ValidationError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    "MigrationError",
]
