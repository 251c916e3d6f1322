"""
Tests for the knowmem MCP tools in knowmem.mcp.tools.

Tests use direct function calls (not MCP protocol) via a mock FastMCP.

Author: Olivier Vitrac, PhD, HDR | olivier.vitrac@adservio.fr | Adservio
"""

import io
import json

import pytest

from knowmem.db import open_database
from knowmem.mcp.audit import AuditLogger
from knowmem.store import KnowledgeStore

TITLE = "Use DTOs for API boundaries"
CONTENT = (
    "Never expose ORM entities directly from HTTP handlers; map them to "
    "dedicated DTO classes so schema changes stay internal."
)


# ---------------------------------------------------------------------------
# Mock FastMCP
# ---------------------------------------------------------------------------


class MockMCP:
    """Minimal FastMCP mock that captures tool registrations."""

    def __init__(self):
        self.tools = {}

    def tool(self):
        def decorator(fn):
            self.tools[fn.__name__] = fn
            return fn
        return decorator


@pytest.fixture
def mcp_env(tmp_path):
    """Open a store, register the tools on a mock MCP, capture audit."""
    db = open_database(str(tmp_path / "memory.db"))
    store = KnowledgeStore(db)
    audit_buf = io.StringIO()
    mcp = MockMCP()

    from knowmem.mcp.tools import register_knowledge_tools
    register_knowledge_tools(mcp, store, audit=AuditLogger(output=audit_buf))

    yield {"mcp": mcp, "store": store, "db": db, "audit": audit_buf}
    db.close()


def _audit_records(env):
    env["audit"].seek(0)
    return [json.loads(ln) for ln in env["audit"].read().splitlines() if ln]


def _tool(env, name):
    return env["mcp"].tools[name]


class TestRegistration:
    def test_three_tools(self, mcp_env):
        assert set(mcp_env["mcp"].tools) == {
            "memory_store_knowledge",
            "memory_update_knowledge",
            "memory_search_knowledge",
        }


class TestStoreTool:
    def test_ok(self, mcp_env):
        r = _tool(mcp_env, "memory_store_knowledge")(
            title=TITLE, content=CONTENT, tags=["api"], scope="project:x",
        )
        assert r["status"] == "ok"
        assert r["success"] is True
        assert r["message"] == "Knowledge stored successfully"
        assert mcp_env["store"].get(r["id"]).scope == "project:x"

    def test_validation_error(self, mcp_env):
        r = _tool(mcp_env, "memory_store_knowledge")(title="short", content=CONTENT)
        assert r["status"] == "error"
        assert r["error"] == "VALIDATION_ERROR"
        assert r["details"]["errors"] == ["Title must be at least 10 characters"]

    def test_duplicate(self, mcp_env):
        store_tool = _tool(mcp_env, "memory_store_knowledge")
        first = store_tool(title=TITLE, content=CONTENT)
        r = store_tool(title=TITLE, content=CONTENT)
        assert r["error"] == "DUPLICATE_ERROR"
        assert r["details"]["existing_id"] == first["id"]

    def test_audit_never_holds_full_content(self, mcp_env):
        long_content = CONTENT + " " + "x" * 400
        _tool(mcp_env, "memory_store_knowledge")(title=TITLE, content=long_content)
        (rec,) = _audit_records(mcp_env)
        assert rec["tool"] == "memory_store_knowledge"
        assert rec["outcome"] == "ok"
        assert long_content not in json.dumps(rec)
        assert rec["d"]["bytes"] == len(long_content.encode("utf-8"))

    def test_audit_records_tags_and_scope(self, mcp_env):
        _tool(mcp_env, "memory_store_knowledge")(
            title=TITLE, content=CONTENT, tags=["api", "dto"], scope="repo:y",
        )
        (rec,) = _audit_records(mcp_env)
        assert rec["d"]["tags"] == 2
        assert rec["d"]["scope"] == "repo:y"

    def test_audit_rejected_outcome(self, mcp_env):
        _tool(mcp_env, "memory_store_knowledge")(title="short", content="tiny")
        (rec,) = _audit_records(mcp_env)
        assert rec["outcome"] == "rejected"
        assert rec["d"]["error"] == "VALIDATION_ERROR"


class TestUpdateTool:
    def test_ok(self, mcp_env):
        item_id = _tool(mcp_env, "memory_store_knowledge")(
            title=TITLE, content=CONTENT,
        )["id"]
        r = _tool(mcp_env, "memory_update_knowledge")(id=item_id, tags=["design"])
        assert r == {
            "status": "ok", "success": True, "id": item_id,
            "message": "Knowledge updated successfully",
        }
        assert mcp_env["store"].get(item_id).tags == ["design"]

    def test_not_found(self, mcp_env):
        r = _tool(mcp_env, "memory_update_knowledge")(id="missing", title=TITLE)
        assert r["status"] == "error"
        assert r["error"] == "NOT_FOUND_ERROR"
        assert r["details"] == {"id": "missing"}

    def test_audit_lists_fields(self, mcp_env):
        item_id = _tool(mcp_env, "memory_store_knowledge")(
            title=TITLE, content=CONTENT,
        )["id"]
        _tool(mcp_env, "memory_update_knowledge")(id=item_id, scope="repo:y")
        rec = _audit_records(mcp_env)[-1]
        assert rec["d"]["fields"] == ["scope"]


class TestSearchTool:
    def test_ok(self, mcp_env):
        item_id = _tool(mcp_env, "memory_store_knowledge")(
            title=TITLE, content=CONTENT, tags=["api"],
        )["id"]
        r = _tool(mcp_env, "memory_search_knowledge")(
            query="dto", context_tags=["api"], limit=3,
        )
        assert r["status"] == "ok"
        assert r["results"][0]["id"] == item_id
        assert r["total_matches"] == 1
        assert r["query"] == "dto"

    def test_short_query(self, mcp_env):
        r = _tool(mcp_env, "memory_search_knowledge")(query="ab")
        assert r["error"] == "VALIDATION_ERROR"

    def test_non_string_scope_rejected(self, mcp_env):
        r = _tool(mcp_env, "memory_search_knowledge")(query="dto", scope=5)
        assert r["error"] == "VALIDATION_ERROR"
        assert _audit_records(mcp_env)[-1]["outcome"] == "rejected"

    def test_storage_error_reported(self, mcp_env):
        mcp_env["db"].close()
        r = _tool(mcp_env, "memory_search_knowledge")(query="dto")
        assert r["status"] == "error"
        assert r["error"] == "STORAGE_ERROR"
        rec = _audit_records(mcp_env)[-1]
        assert rec["outcome"] == "error"


class TestCreateServer:
    def test_owns_audit_file(self, tmp_path, monkeypatch):
        pytest.importorskip("mcp.server.fastmcp")
        from knowmem.mcp.server import build_parser, create_server

        monkeypatch.delenv("KNOWMEM_CONFIG", raising=False)
        audit_path = tmp_path / "audit.jsonl"
        args = build_parser().parse_args([
            "--db", str(tmp_path / "memory.db"), "--audit-log", str(audit_path),
        ])
        _mcp, db, audit = create_server(args)
        audit.close()
        db.close()
        assert audit._output.closed
        assert audit_path.exists()
