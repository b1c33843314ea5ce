"""
Auric PM - MCP Tool Tests
=========================

Tools are called directly on PMTools; the registry is checked through the
FastMCP server itself.
"""

import pytest
from mcp.server.fastmcp.exceptions import ToolError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from auric_pm.core.config import settings
from auric_pm.mcp.server import TOOL_NAMES, PMTools, _database_url, create_mcp_server


@pytest.fixture
def tools(session_factory: async_sessionmaker[AsyncSession]) -> PMTools:
    return PMTools(session_factory)


class TestRegistry:
    """Tests for the registered tool set."""

    async def test_every_tool_is_registered(self, session_factory: async_sessionmaker[AsyncSession]):
        """The server exposes exactly the public tool names."""
        server = create_mcp_server(session_factory)

        registered = {tool.name for tool in await server.list_tools()}

        assert registered == set(TOOL_NAMES)
        assert len(TOOL_NAMES) == 19

    async def test_camel_case_parameters(self, session_factory: async_sessionmaker[AsyncSession]):
        """Tool schemas use the camelCase parameter names."""
        server = create_mcp_server(session_factory)

        schemas = {tool.name: tool.inputSchema for tool in await server.list_tools()}

        assert set(schemas["create_dependency"]["properties"]) == {
            "sourceId",
            "targetId",
            "sourceType",
            "targetType",
        }
        assert schemas["create_dependency"]["required"] == ["sourceId", "targetId"]


class TestPlanningTools:
    """Tests for epic, ticket and dependency tools."""

    async def test_create_and_list(self, tools: PMTools):
        """Outputs use camelCase keys and live counts."""
        epic = await tools.create_epic("Platform")
        ticket = await tools.create_ticket(epic["id"], "Parser", priority="high")

        assert ticket["epicId"] == epic["id"]
        assert ticket["sortOrder"] == 1
        assert ticket["needsHumanSupervision"] is False
        [listed] = await tools.list_epics()
        assert listed["ticketCount"] == 1
        assert [t["id"] for t in await tools.list_tickets(status="open", epicId=epic["id"])] == [ticket["id"]]

    async def test_missing_epic_returns_error_object(self, tools: PMTools):
        """A missing epic is a structured result, not a failure."""
        assert await tools.get_epic_with_tickets("missing") == {
            "error": "Epic not found",
            "code": "NOT_FOUND",
        }

    async def test_epic_tree(self, tools: PMTools):
        epic = await tools.create_epic("Platform")
        await tools.create_ticket(epic["id"], "A")

        nested = await tools.get_epic_with_tickets(epic["id"])
        tree = await tools.list_epics_with_tickets()

        assert [t["name"] for t in nested["tickets"]] == ["A"]
        assert tree[0]["tickets"] == nested["tickets"]

    async def test_domain_errors_become_tool_errors(self, tools: PMTools):
        """Not-found and missing-parent failures surface with their code."""
        with pytest.raises(ToolError, match="NOT_FOUND"):
            await tools.update_ticket("missing", status="done")
        with pytest.raises(ToolError, match="FOREIGN_KEY_VIOLATION"):
            await tools.create_ticket("missing", "Orphan")

    async def test_invalid_enum_values(self, tools: PMTools):
        """Bad status and type values are rejected before touching the store."""
        with pytest.raises(ToolError, match="Invalid status"):
            await tools.list_tickets(status="blocked")
        with pytest.raises(ToolError, match="Invalid sourceType"):
            await tools.create_dependency("a", "b", sourceType="project")

    async def test_update_records_mcp_source(self, tools: PMTools):
        """Status changes made through tools are attributed to mcp."""
        epic = await tools.create_epic("Platform")
        ticket = await tools.create_ticket(epic["id"], "A")

        updated = await tools.update_ticket(ticket["id"], status="in_progress", needsHumanSupervision=True)

        assert updated["status"] == "in_progress"
        assert updated["needsHumanSupervision"] is True
        history = await tools.list_status_history(ticketId=ticket["id"])
        assert [(h["fromStatus"], h["toStatus"], h["source"]) for h in history] == [
            (None, "open", "mcp"),
            ("open", "in_progress", "mcp"),
        ]

    async def test_dependencies_and_test_cases(self, tools: PMTools):
        epic = await tools.create_epic("Platform")
        a = await tools.create_ticket(epic["id"], "A")
        b = await tools.create_ticket(epic["id"], "B")

        edge = await tools.create_dependency(b["id"], a["id"])
        again = await tools.create_dependency(b["id"], a["id"])
        case = await tools.create_test_case(a["id"], "parses input")

        assert edge["id"] == again["id"]
        assert edge["sourceType"] == edge["targetType"] == "ticket"
        [listed] = await tools.list_dependencies(ticketId=b["id"])
        assert listed["targetName"] == "A"
        assert case["ticketId"] == a["id"]
        assert case["sortOrder"] == 1


class TestDispatchTools:
    """Tests for claiming and completing through tools."""

    async def test_unblocked_walkthrough(self, tools: PMTools):
        """Critical A blocks low B until A is completed."""
        epic = await tools.create_epic("E1")
        a = await tools.create_ticket(epic["id"], "A", priority="critical")
        b = await tools.create_ticket(epic["id"], "B", priority="low")
        await tools.create_dependency(b["id"], a["id"])

        assert (await tools.fetch_next_unblocked_task())["id"] == a["id"]
        assert await tools.fetch_next_unblocked_task() is None

        done = await tools.complete_task(a["id"], summary="merged")
        assert done["status"] == "done"
        assert done["description"] == "\n\n---\nCompletion Summary: merged"

        assert (await tools.fetch_next_unblocked_task())["id"] == b["id"]

    async def test_fetch_next_task_empty(self, tools: PMTools):
        assert await tools.fetch_next_task() is None

    async def test_completion_source(self, tools: PMTools):
        epic = await tools.create_epic("E1")
        ticket = await tools.create_ticket(epic["id"], "A")

        await tools.fetch_next_task()
        await tools.complete_task(ticket["id"])

        history = await tools.list_status_history(ticketId=ticket["id"])
        assert [h["source"] for h in history] == ["mcp", "scheduler", "mcp"]


class TestContextTools:
    """Tests for ticket context tools."""

    async def test_context_lifecycle(self, tools: PMTools):
        epic = await tools.create_epic("E1")
        ticket = await tools.create_ticket(epic["id"], "A")

        await tools.add_context_snippet(ticket["id"], "x = 1")
        items = await tools.add_context_file(ticket["id"], "src/x.py")
        assert [i["kind"] for i in items] == ["snippet", "file"]

        remaining = await tools.remove_context_item(ticket["id"], items[0]["id"])
        assert [i["value"] for i in remaining] == ["src/x.py"]
        assert await tools.get_ticket_context(ticket["id"]) == remaining

        assert await tools.clear_ticket_context(ticket["id"]) == {"ticketId": ticket["id"], "context": []}


class TestDatabaseUrl:
    """Tests for the command-line database argument."""

    def test_default(self):
        assert _database_url(None) == settings.DATABASE_URL

    def test_bare_path(self):
        assert _database_url("/tmp/project.db") == "sqlite+aiosqlite:////tmp/project.db"

    def test_full_url(self):
        url = "postgresql+asyncpg://pm@localhost/pm"
        assert _database_url(url) == url
