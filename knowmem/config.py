"""
Knowledge Store Configuration

Configuration dataclasses for knowmem: SQLite engine settings and search
limits.  Includes load_config() for reading a JSON config file with silent
fallback to compiled defaults.

Author: Olivier Vitrac, PhD, HDR | olivier.vitrac@adservio.fr | Adservio
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = os.path.join(os.path.expanduser("~"), ".knowmem", "memory.db")

_SYNCHRONOUS_MODES = ("OFF", "NORMAL", "FULL", "EXTRA")


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when config values are out of valid range."""

    pass


def _check_range(
    errors: List[str], name: str, value, lo, hi, typ=None,
) -> None:
    """Append an error message if value is out of [lo, hi] or wrong type."""
    if typ is not None and not isinstance(value, typ):
        errors.append(f"{name}: expected {typ.__name__}, got {type(value).__name__}")
        return
    if value < lo or value > hi:
        errors.append(f"{name}: {value} not in [{lo}, {hi}]")


@dataclass
class StoreConfig:
    """SQLite engine configuration."""
    db_path: str = DEFAULT_DB_PATH
    wal_mode: bool = True
    busy_timeout_ms: int = 5000
    mmap_size: int = 268_435_456  # 256 MiB
    synchronous: str = "NORMAL"

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        _check_range(errors, "store.busy_timeout_ms",
                     self.busy_timeout_ms, 0, 600_000, int)
        _check_range(errors, "store.mmap_size",
                     self.mmap_size, 0, 1 << 40, int)
        if str(self.synchronous).upper() not in _SYNCHRONOUS_MODES:
            errors.append(
                f"store.synchronous: {self.synchronous!r} not in "
                f"{', '.join(_SYNCHRONOUS_MODES)}"
            )
        return errors


@dataclass
class SearchConfig:
    """Search result limits."""
    default_limit: int = 5
    max_limit: int = 20

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        _check_range(errors, "search.max_limit", self.max_limit, 1, 100, int)
        _check_range(errors, "search.default_limit",
                     self.default_limit, 1, 100, int)
        if not errors and self.default_limit > self.max_limit:
            errors.append(
                f"search.default_limit: {self.default_limit} exceeds "
                f"max_limit {self.max_limit}"
            )
        return errors


@dataclass
class KnowledgeConfig:
    """Top-level knowmem configuration."""
    store: StoreConfig = field(default_factory=StoreConfig)
    search: SearchConfig = field(default_factory=SearchConfig)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> KnowledgeConfig:
        """Build config from a nested dict (e.g. JSON)."""
        kwargs: Dict[str, Any] = {}
        if "store" in d:
            kwargs["store"] = StoreConfig(**d["store"])
        if "search" in d:
            kwargs["search"] = SearchConfig(**d["search"])
        return cls(**kwargs)

    def validate(self) -> List[str]:
        """Validate all config sections. Returns list of error messages."""
        errors: List[str] = []
        errors.extend(self.store.validate())
        errors.extend(self.search.validate())
        return errors


def resolve_db_path(
    explicit: Optional[str] = None, config: Optional[KnowledgeConfig] = None,
) -> str:
    """Database path precedence: explicit flag > $KNOWMEM_DB > config > default."""
    if explicit:
        return explicit
    env = os.environ.get("KNOWMEM_DB")
    if env:
        return env
    if config is not None and config.store.db_path:
        return config.store.db_path
    return DEFAULT_DB_PATH


def load_config(
    path: Optional[str] = None, *, strict: bool = False,
) -> KnowledgeConfig:
    """Load config from a JSON file. Returns defaults if file missing/invalid.

    Args:
        path: Path to config.json. If None, returns compiled defaults.
        strict: If True, raise ConfigError on invalid config values.
            Otherwise each invalid section is replaced by its defaults
            with a WARNING.

    Returns:
        KnowledgeConfig with values from file or defaults.

    Raises:
        ConfigError: If strict=True and config values are out of range.
    """
    if path is None:
        cfg = KnowledgeConfig()
    else:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            cfg = KnowledgeConfig.from_dict(data)
        except FileNotFoundError:
            cfg = KnowledgeConfig()
        except (json.JSONDecodeError, TypeError, KeyError, AttributeError) as exc:
            logger.warning("Ignoring invalid config %s: %s", path, exc)
            cfg = KnowledgeConfig()

    if strict:
        errors = cfg.validate()
        if errors:
            raise ConfigError(
                f"Config validation failed: {'; '.join(errors)}"
            )
    else:
        _reset_invalid_sections(cfg, path)

    return cfg


def _reset_invalid_sections(cfg: KnowledgeConfig, path: Optional[str]) -> None:
    """Replace each section that fails validation with its defaults."""
    store_errors = cfg.store.validate()
    if store_errors:
        logger.warning("Ignoring store config in %s: %s", path, "; ".join(store_errors))
        db_path = cfg.store.db_path
        cfg.store = StoreConfig(db_path=db_path if isinstance(db_path, str) else DEFAULT_DB_PATH)
    search_errors = cfg.search.validate()
    if search_errors:
        logger.warning("Ignoring search config in %s: %s", path, "; ".join(search_errors))
        cfg.search = SearchConfig()
