"""
knowmem MCP Server — Knowledge Memory for Coding Agents

Standalone MCP server exposing the knowledge store via the Model Context
Protocol (stdio transport).  Works with any MCP-compatible client.

Architecture: thin MCP layer delegating to KnowledgeStore.
Zero business logic in this module — all logic lives in knowmem/*.

Usage:
    python -m knowmem.mcp.server --db /path/to/memory.db
    python -m knowmem.mcp.server --config knowmem.json --audit-log audit.jsonl

Author: Olivier Vitrac, PhD, HDR | olivier.vitrac@adservio.fr | Adservio
"""

from __future__ import annotations

import argparse
import logging
import os

logger = logging.getLogger(__name__)

# Instructions embedded in FastMCP — always visible to any MCP client.
_MCP_INSTRUCTIONS = (
    "Local knowledge memory for coding agents (3 tools).\n"
    "\n"
    "SEARCH: Use memory_search_knowledge before starting a task; pass the\n"
    "        task's tags as context_tags and the project scope.\n"
    "STORE:  Use memory_store_knowledge for decisions, patterns and fixes\n"
    "        worth reusing.\n"
    "UPDATE: Use memory_update_knowledge to refine an existing item by id.\n"
    "\n"
    "Rules:\n"
    "- Titles 10-100 chars, content 50-5000 chars, at most 10 tags\n"
    "- Use lowercase hyphenated tags\n"
    "- Scope is global, project:<name> or repo:<name>\n"
    "- Duplicates (same title or same content in a scope) are rejected\n"
    "- NEVER store secrets or generic notes ('todo', 'remember this')\n"
)


def build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser for the knowledge MCP server."""
    p = argparse.ArgumentParser(
        prog="knowmem-mcp",
        description="knowmem MCP Server — local knowledge memory for coding agents",
    )
    p.add_argument(
        "--db",
        default=None,
        help="SQLite database path (default: $KNOWMEM_DB, config, or ~/.knowmem/memory.db)",
    )
    p.add_argument(
        "--config",
        default=os.environ.get("KNOWMEM_CONFIG"),
        help="JSON config file (default: $KNOWMEM_CONFIG)",
    )
    p.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    a = p.add_argument_group("audit")
    a.add_argument(
        "--audit-log",
        default=None,
        help="Audit log file path (default: stderr)",
    )

    return p


def create_server(args=None):
    """
    Create and configure the FastMCP server with knowledge tools.

    Args:
        args: Parsed argparse.Namespace, or None to parse from sys.argv.

    Returns:
        (mcp_server, db, audit) tuple.  The caller owns db and audit and
        must close both.
    """
    from mcp.server.fastmcp import FastMCP

    from knowmem.config import load_config, resolve_db_path
    from knowmem.db import open_database
    from knowmem.mcp.audit import AuditLogger
    from knowmem.mcp.tools import register_knowledge_tools
    from knowmem.store import KnowledgeStore

    if args is None:
        args = build_parser().parse_args()

    config = load_config(args.config)
    db_path = resolve_db_path(args.db, config)
    config.store.db_path = db_path

    audit = AuditLogger.open(args.audit_log) if args.audit_log else AuditLogger()
    try:
        db = open_database(db_path, config.store)
    except Exception:
        audit.close()
        raise
    store = KnowledgeStore(db, config.search)

    mcp = FastMCP(
        name="knowmem Knowledge",
        instructions=_MCP_INSTRUCTIONS,
    )

    register_knowledge_tools(mcp, store, audit=audit)

    logger.info(
        "knowmem MCP server ready: db=%s, audit=%s",
        db_path, args.audit_log or "stderr",
    )

    return mcp, db, audit


def main():
    """CLI entry point — parse args, create server, run."""
    parser = build_parser()
    args = parser.parse_args()

    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    mcp, db, audit = create_server(args)
    try:
        mcp.run()
    finally:
        audit.close()
        db.close()


if __name__ == "__main__":
    main()
