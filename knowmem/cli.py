"""
knowmem CLI — Knowledge Memory Commands

Commands:
    knowmem init    [PATH]                          — create + migrate a database
    knowmem store   --title T [--content C] [--tags a,b] [--scope S]
                                                    — store knowledge (content from stdin if omitted)
    knowmem update  <id> [--title T] [--content C] [--tags a,b] [--scope S]
    knowmem search  "query" [--tags a,b] [--scope S] [-k N]
    knowmem show    <id>                            — display one item
    knowmem stats                                   — item counts, tags, schema version
    knowmem migrate [--status]                      — apply / list pending migrations
    knowmem reset   --yes                           — drop and recreate the schema
    knowmem serve   [--audit-log FILE]              — start MCP server (foreground)

Environment variables:
    KNOWMEM_DB      Path to SQLite database (default: ~/.knowmem/memory.db)
    KNOWMEM_CONFIG  Path to JSON config file

Precedence (invariant):
    CLI --flag  >  KNOWMEM_* env var  >  config file  >  compiled default

Exit codes:
    0  Success (including idempotent no-op)
    1  Client error (bad args, validation, duplicate, not found)
    2  Internal failure (storage error, unexpected exception)

Author: Olivier Vitrac, PhD, HDR | olivier.vitrac@adservio.fr | Adservio
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from knowmem.config import KnowledgeConfig, load_config, resolve_db_path
from knowmem.db import Database, open_database
from knowmem.errors import (
    DuplicateError,
    KnowledgeMemoryError,
    NotFoundError,
    ValidationError,
)
from knowmem.store import KnowledgeStore

logger = logging.getLogger(__name__)

_CLIENT_ERRORS = (ValidationError, DuplicateError, NotFoundError)


# ---------------------------------------------------------------------------
# Defensive env parsing (never crash on bad export)
# ---------------------------------------------------------------------------


def _env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    """Parse string env var with fallback. Empty counts as unset."""
    return os.environ.get(name) or default


# ---------------------------------------------------------------------------
# Resolvers
# ---------------------------------------------------------------------------


def _resolve_config(args: Optional[argparse.Namespace] = None) -> KnowledgeConfig:
    """Resolve config: CLI --config > KNOWMEM_CONFIG > compiled defaults."""
    path = getattr(args, "config", None) if args else None
    return load_config(path or _env_str("KNOWMEM_CONFIG"))


def _resolve_db(
    args: Optional[argparse.Namespace] = None,
    config: Optional[KnowledgeConfig] = None,
) -> str:
    """Resolve database path: CLI --db > KNOWMEM_DB > config > default."""
    explicit = getattr(args, "db", None) if args else None
    return resolve_db_path(explicit, config)


def _open(
    args: argparse.Namespace, *, migrate: bool = True,
) -> Tuple[Database, KnowledgeStore]:
    """Open the resolved database and wrap it in a KnowledgeStore."""
    config = _resolve_config(args)
    db_path = _resolve_db(args, config)
    db = open_database(db_path, config.store, migrate=migrate)
    return db, KnowledgeStore(db, config.search)


def _split_tags(raw: Optional[str]) -> Optional[List[str]]:
    """'a, b,c' → ['a', 'b', 'c']; None stays None (field not supplied)."""
    if raw is None:
        return None
    return [t.strip() for t in raw.split(",") if t.strip()]


# ---------------------------------------------------------------------------
# Stderr/stdout helpers (respect --quiet)
# ---------------------------------------------------------------------------

_quiet = False


def _info(msg: str) -> None:
    """Print progress to stderr (suppressed by --quiet)."""
    if not _quiet:
        print(msg, file=sys.stderr)


def _warn(msg: str) -> None:
    """Print warning to stderr (always visible)."""
    print(msg, file=sys.stderr)


def _emit_json(payload: Dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def _report_error(args: argparse.Namespace, exc: KnowledgeMemoryError) -> None:
    """Print a knowmem error as JSON (stdout) or as text (stderr)."""
    if getattr(args, "json", False):
        _emit_json({"status": "error", **exc.to_dict()})
        return
    if isinstance(exc, ValidationError) and len(exc.errors) > 1:
        _warn("Validation failed:")
        for msg in exc.errors:
            _warn(f"  - {msg}")
    elif isinstance(exc, DuplicateError):
        _warn(f"{exc.message} (existing id: {exc.existing_id})")
    else:
        _warn(f"Error: {exc.message}")


# ===========================================================================
# Command: init
# ===========================================================================


def cmd_init(args: argparse.Namespace) -> None:
    """Create the database (and parent dirs), apply migrations, write config."""
    from knowmem.schema import get_schema_version

    config = _resolve_config(args)
    db_path = args.path or _resolve_db(args, config)
    existed = Path(db_path).exists()

    db = open_database(db_path, config.store)
    try:
        version = get_schema_version(db)
    finally:
        db.close()

    config_path = Path(db_path).parent / "config.json"
    if not config_path.exists():
        config.store.db_path = str(Path(db_path).resolve())
        config_path.write_text(
            json.dumps(asdict(config), indent=2) + "\n", encoding="utf-8",
        )

    if existed:
        _info(f"Database exists: {db_path} (schema version {version})")
    else:
        _info(f"Knowledge database initialized: {db_path}")
        _info(f"  Schema version: {version}")
        _info(f"  Config:         {config_path}")
    # The export line goes to stdout (useful for eval)
    print(f'export KNOWMEM_DB="{Path(db_path).resolve()}"')


# ===========================================================================
# Command: store
# ===========================================================================


def cmd_store(args: argparse.Namespace) -> None:
    """Store one knowledge item. Content comes from --content or stdin."""
    content = args.content
    if content is None:
        if sys.stdin.isatty():
            _warn("No content: pass --content or pipe text on stdin.")
            sys.exit(1)
        content = sys.stdin.read()

    db, store = _open(args)
    try:
        result = store.store(
            args.title, content, tags=_split_tags(args.tags), scope=args.scope,
        )
    finally:
        db.close()

    if getattr(args, "json", False):
        _emit_json({"status": "ok", **result.to_dict()})
    else:
        _info(result.message)
        print(result.id)


# ===========================================================================
# Command: update
# ===========================================================================


def cmd_update(args: argparse.Namespace) -> None:
    """Patch an existing item. Only the supplied fields change."""
    db, store = _open(args)
    try:
        result = store.update(
            args.id,
            title=args.title,
            content=args.content,
            tags=_split_tags(args.tags),
            scope=args.scope,
        )
    finally:
        db.close()

    if getattr(args, "json", False):
        _emit_json({"status": "ok", **result.to_dict()})
    else:
        _info(result.message)
        print(result.id)


# ===========================================================================
# Command: search
# ===========================================================================


def cmd_search(args: argparse.Namespace) -> None:
    """Ranked full-text search."""
    db, store = _open(args)
    try:
        result = store.search(
            args.query,
            context_tags=_split_tags(args.tags),
            scope=args.scope,
            limit=args.k,
        )
    finally:
        db.close()

    if getattr(args, "json", False):
        _emit_json({"status": "ok", **result.to_dict()})
        return

    if not result.results:
        _info("No results found.")
        return

    # Human-readable output (still stdout — search is a data command)
    print(f"Found {len(result.results)} item(s) of {result.total_matches} match(es):\n")
    for hit in result.results:
        print(f"  {hit.score:8.3f}  {hit.id}  [{hit.scope}]  {hit.title}")
        if hit.tags:
            print(f"    tags: {', '.join(hit.tags)}")
        print()


# ===========================================================================
# Command: show
# ===========================================================================


def cmd_show(args: argparse.Namespace) -> None:
    """Show a knowledge item by id."""
    db, store = _open(args)
    try:
        item = store.get(args.id)
    finally:
        db.close()

    if getattr(args, "json", False):
        _emit_json(item.to_dict())
        return

    print(f"ID:       {item.id}")
    print(f"Title:    {item.title}")
    print(f"Scope:    {item.scope}")
    print(f"Tags:     {', '.join(item.tags) if item.tags else '(none)'}")
    print(f"Hash:     {item.content_hash}")
    print(f"Created:  {item.created_at}")
    print(f"Updated:  {item.updated_at}")
    print(f"\n--- Content ---\n{item.content}")


# ===========================================================================
# Command: stats
# ===========================================================================


def cmd_stats(args: argparse.Namespace) -> None:
    """Show knowledge store statistics."""
    db, store = _open(args)
    try:
        stats = store.stats()
    finally:
        db.close()

    if getattr(args, "json", False):
        stats["status"] = "ok"
        _emit_json(stats)
        return

    print("Knowledge Store Statistics")
    print("=" * 40)
    print(f"  Database:       {stats['db_path']}")
    print(f"  Schema version: {stats['schema_version']}")
    print(f"  Total items:    {stats['total_items']}")
    print("  By scope:")
    for scope, count in stats["by_scope"].items():
        print(f"    {scope:24s}: {count}")
    if stats["top_tags"]:
        print("  Top tags:")
        for tag, count in stats["top_tags"].items():
            print(f"    {tag:24s}: {count}")


# ===========================================================================
# Command: migrate
# ===========================================================================


def cmd_migrate(args: argparse.Namespace) -> None:
    """Apply pending migrations, or list them with --status."""
    from knowmem.schema import get_schema_version, migrate, pending_migrations

    db, _store = _open(args, migrate=False)
    try:
        if args.status:
            version = get_schema_version(db)
            pending = pending_migrations(db)
            if getattr(args, "json", False):
                _emit_json({
                    "status": "ok",
                    "schema_version": version,
                    "pending": pending,
                })
            else:
                print(f"Schema version: {version}")
                if pending:
                    print("Pending migrations:")
                    for label in pending:
                        print(f"  {label}")
                else:
                    print("Up to date.")
            return

        applied = migrate(db)
        version = get_schema_version(db)
    finally:
        db.close()

    if getattr(args, "json", False):
        _emit_json({
            "status": "ok",
            "applied": [m.label for m in applied],
            "schema_version": version,
        })
    elif applied:
        for m in applied:
            _info(f"Applied {m.label}")
        print(f"Schema version: {version}")
    else:
        _info(f"Nothing to migrate (schema version {version}).")


# ===========================================================================
# Command: reset
# ===========================================================================


def cmd_reset(args: argparse.Namespace) -> None:
    """Drop every knowledge item and recreate the schema."""
    from knowmem.schema import get_schema_version, reset_schema

    if not args.yes:
        _warn("Refusing to reset without --yes (this deletes all knowledge).")
        sys.exit(1)

    db, _store = _open(args, migrate=False)
    try:
        reset_schema(db)
        version = get_schema_version(db)
        db_path = db.path
    finally:
        db.close()

    if getattr(args, "json", False):
        _emit_json({"status": "ok", "db_path": db_path, "schema_version": version})
    else:
        _info(f"Reset {db_path} (schema version {version})")


# ===========================================================================
# Command: serve  (start MCP server)
# ===========================================================================


def cmd_serve(args: argparse.Namespace) -> None:
    """Start the knowmem MCP server in foreground."""
    try:
        from knowmem.mcp.server import create_server, build_parser as mcp_parser
    except ImportError:
        _warn("MCP dependencies not installed. Run: pip install knowmem[mcp]")
        sys.exit(1)

    config = _resolve_config(args)
    server_argv = ["--db", _resolve_db(args, config)]
    config_path = getattr(args, "config", None) or _env_str("KNOWMEM_CONFIG")
    if config_path:
        server_argv.extend(["--config", config_path])
    if args.audit_log:
        server_argv.extend(["--audit-log", args.audit_log])
    if getattr(args, "verbose", False):
        server_argv.append("--verbose")

    server_args = mcp_parser().parse_args(server_argv)

    try:
        mcp, db, audit = create_server(server_args)
    except ImportError:
        _warn("MCP dependencies not installed. Run: pip install knowmem[mcp]")
        sys.exit(1)

    _info(f"knowmem MCP server (db={server_args.db})")
    _info("Press Ctrl+C to stop.")
    try:
        mcp.run()
    finally:
        audit.close()
        db.close()


# ===========================================================================
# Entry point
# ===========================================================================


class _ArgumentParser(argparse.ArgumentParser):
    """Bad arguments are client errors: exit 1, not argparse's 2."""

    def error(self, message: str) -> None:
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    """Build the knowmem argument parser."""
    # Shared parent with flags that work on all subcommands.
    # Using parents= propagates these into each subparser so
    # both `knowmem --json stats` and `knowmem stats --json` work.
    #
    # SUPPRESS defaults prevent subparser defaults from overriding
    # values parsed at the main-parser level (argparse parents quirk).
    _common = _ArgumentParser(add_help=False)
    _common.add_argument(
        "--db", default=argparse.SUPPRESS,
        help="Path to SQLite database (default: $KNOWMEM_DB or ~/.knowmem/memory.db)",
    )
    _common.add_argument(
        "--config", default=argparse.SUPPRESS,
        help="JSON config file (default: $KNOWMEM_CONFIG)",
    )
    _common.add_argument(
        "--quiet", "-q", action="store_true", default=argparse.SUPPRESS,
        help="Suppress stderr progress messages",
    )
    _common.add_argument(
        "--json", action="store_true", default=argparse.SUPPRESS,
        help="Machine-readable JSON output",
    )
    _common.add_argument(
        "-v", "--verbose", action="store_true", default=argparse.SUPPRESS,
        help="Enable verbose logging",
    )

    parser = _ArgumentParser(
        prog="knowmem",
        description="knowmem — local knowledge memory for coding agents",
        parents=[_common],
    )

    sub = parser.add_subparsers(dest="command", help="Available commands")

    # -- init --------------------------------------------------------------
    p_init = sub.add_parser("init", parents=[_common], help="Create and migrate a database")
    p_init.add_argument(
        "path", nargs="?", default=None,
        help="Database file (default: --db, $KNOWMEM_DB or ~/.knowmem/memory.db)",
    )
    p_init.set_defaults(func=cmd_init)

    # -- store -------------------------------------------------------------
    p_store = sub.add_parser("store", parents=[_common], help="Store a knowledge item")
    p_store.add_argument("--title", required=True, help="Title (10-100 characters)")
    p_store.add_argument(
        "--content", default=None,
        help="Content (50-5000 characters). Read from stdin when omitted.",
    )
    p_store.add_argument("--tags", default=None, help="Comma-separated tags")
    p_store.add_argument("--scope", default=None, help="global | project:<name> | repo:<name>")
    p_store.set_defaults(func=cmd_store)

    # -- update ------------------------------------------------------------
    p_update = sub.add_parser("update", parents=[_common], help="Update a knowledge item")
    p_update.add_argument("id", help="Knowledge item ID")
    p_update.add_argument("--title", default=None, help="New title")
    p_update.add_argument("--content", default=None, help="New content")
    p_update.add_argument("--tags", default=None, help="Replacement comma-separated tags")
    p_update.add_argument("--scope", default=None, help="New scope")
    p_update.set_defaults(func=cmd_update)

    # -- search ------------------------------------------------------------
    p_search = sub.add_parser("search", parents=[_common], help="Search knowledge (FTS5 + boosts)")
    p_search.add_argument("query", help="Search query (3-500 characters)")
    p_search.add_argument("--tags", default=None, help="Comma-separated context tags (boost)")
    p_search.add_argument("--scope", default=None, help="Scope to search alongside global")
    p_search.add_argument(
        "-k", "--limit", dest="k", type=int, default=None,
        help="Max results (default: 5, capped at 20)",
    )
    p_search.set_defaults(func=cmd_search)

    # -- show --------------------------------------------------------------
    p_show = sub.add_parser("show", parents=[_common], help="Show knowledge item details")
    p_show.add_argument("id", help="Knowledge item ID")
    p_show.set_defaults(func=cmd_show)

    # -- stats -------------------------------------------------------------
    p_stats = sub.add_parser("stats", parents=[_common], help="Store statistics")
    p_stats.set_defaults(func=cmd_stats)

    # -- migrate -----------------------------------------------------------
    p_migrate = sub.add_parser("migrate", parents=[_common], help="Apply schema migrations")
    p_migrate.add_argument(
        "--status", action="store_true",
        help="List pending migrations without applying them",
    )
    p_migrate.set_defaults(func=cmd_migrate)

    # -- reset -------------------------------------------------------------
    p_reset = sub.add_parser("reset", parents=[_common], help="Drop all knowledge and recreate schema")
    p_reset.add_argument("--yes", action="store_true", help="Confirm data loss")
    p_reset.set_defaults(func=cmd_reset)

    # -- serve -------------------------------------------------------------
    p_serve = sub.add_parser("serve", parents=[_common], help="Start MCP server")
    p_serve.add_argument("--audit-log", default=None, help="Audit log file (default: stderr)")
    p_serve.set_defaults(func=cmd_serve)

    return parser


def main() -> None:
    """CLI entry point: knowmem <command> [args]."""
    global _quiet

    parser = build_parser()
    args = parser.parse_args()

    _quiet = getattr(args, "quiet", False)

    if getattr(args, "verbose", False):
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(name)s %(levelname)s %(message)s",
        )
    else:
        logging.basicConfig(level=logging.WARNING)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        args.func(args)
    except BrokenPipeError:
        # Handle broken pipe gracefully (e.g. knowmem search ... | head)
        devnull = os.open(os.devnull, os.O_WRONLY)
        os.dup2(devnull, sys.stdout.fileno())
        sys.exit(0)
    except KeyboardInterrupt:
        sys.exit(0)
    except _CLIENT_ERRORS as e:
        _report_error(args, e)
        sys.exit(1)
    except KnowledgeMemoryError as e:
        _report_error(args, e)
        sys.exit(2)
    except Exception as e:
        _warn(f"Internal error: {e}")
        if getattr(args, "verbose", False):
            import traceback
            traceback.print_exc(file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
