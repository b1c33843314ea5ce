"""MCP Server for Auric PM - ticket dispatch for coding agents.

Exposes the project-management services as MCP tools over stdio, so an agent
can claim work, record progress and read the dependency graph of a project
database. Tool names and their camelCase parameters are the public contract.

Each tool call runs in its own database session.
"""

import asyncio
import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.exceptions import ToolError
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from auric_pm.core.config import settings
from auric_pm.core.database import (
    close_db,
    create_engine,
    create_session_factory,
    get_db_session,
    init_db,
)
from auric_pm.core.errors import PMError
from auric_pm.core.models import ItemType, TicketStatus
from auric_pm.core.pm import (
    DependencyGraph,
    EpicRepository,
    HistoryLedger,
    Scheduler,
    TestCaseRepository,
    TicketContextService,
    TicketRepository,
)
from auric_pm.core.schemas import (
    DependencyResponse,
    EpicResponse,
    StatusHistoryResponse,
    TestCaseResponse,
    TicketResponse,
    context_items_adapter,
)

logger = structlog.get_logger()

INSTRUCTIONS = """Auric PM - ticket queue for coding agents

| Goal | Tool |
|------|------|
| Get work | `fetch_next_unblocked_task` (dependency-aware) or `fetch_next_task` |
| Finish work | `complete_task(id, summary)` |
| Inspect | `list_epics`, `get_epic_with_tickets`, `list_tickets`, `list_dependencies` |
| Plan | `create_epic`, `create_ticket`, `create_dependency`, `create_test_case` |
| Context | `get_ticket_context`, `add_context_snippet`, `add_context_file` |

A dependency `sourceId -> targetId` means the source waits for the target to
be done or archived. Tickets flagged `needsHumanSupervision` are never handed
out by the fetch tools.
"""


def _dump(model: BaseModel) -> dict:
    return model.model_dump(mode="json", by_alias=True)


def _choice(enum_cls, value: str, field: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ToolError(f"Invalid {field} '{value}'. Valid: {allowed}") from None


# ============================================================================
# Tools
# ============================================================================

class PMTools:
    """
    Tool implementations bound to one session factory.

    Methods are registered on the MCP server under their own names; the
    camelCase parameter names are part of the tool schema.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    @asynccontextmanager
    async def _session(self, tool: str) -> AsyncGenerator[AsyncSession, None]:
        async with get_db_session(self.session_factory) as db:
            try:
                yield db
            except PMError as exc:
                logger.warning("Tool rejected", tool=tool, code=exc.code, error=exc.message)
                raise ToolError(f"{exc.code}: {exc.message}") from exc

    # ------------------------------------------------------------------ epics

    async def list_epics(self) -> list[dict]:
        """List all epics ordered by sort order, each with its ticket count."""
        async with self._session("list_epics") as db:
            return [_dump(e) for e in await EpicRepository(db).list_epics()]

    async def create_epic(self, name: str, description: Optional[str] = None) -> dict:
        """Create a new epic at the end of the ordering."""
        async with self._session("create_epic") as db:
            epic = await EpicRepository(db).create_epic(name, description)
            return _dump(EpicResponse.model_validate(epic))

    async def get_epic_with_tickets(self, epicId: str) -> dict:  # noqa: N803
        """Get an epic with all of its tickets in sort order."""
        async with self._session("get_epic_with_tickets") as db:
            epic = await EpicRepository(db).get_epic_with_tickets(epicId)
        if epic is None:
            return {"error": "Epic not found", "code": "NOT_FOUND"}
        return _dump(epic)

    async def list_epics_with_tickets(self) -> list[dict]:
        """List every epic with its tickets nested."""
        async with self._session("list_epics_with_tickets") as db:
            return [_dump(e) for e in await EpicRepository(db).list_epics_with_tickets()]

    # ---------------------------------------------------------------- tickets

    async def list_tickets(
        self,
        status: Optional[str] = None,
        epicId: Optional[str] = None,  # noqa: N803
    ) -> list[dict]:
        """List tickets in sort order, optionally filtered by status (e.g. open, done) and epic."""
        status_filter = _choice(TicketStatus, status, "status") if status else None
        async with self._session("list_tickets") as db:
            tickets = await TicketRepository(db).list_tickets(status=status_filter, epic_id=epicId)
            return [_dump(TicketResponse.model_validate(t)) for t in tickets]

    async def create_ticket(
        self,
        epicId: str,  # noqa: N803
        name: str,
        description: Optional[str] = None,
        priority: Optional[str] = None,
    ) -> dict:
        """Create a ticket in an epic. Priority defaults to normal."""
        async with self._session("create_ticket") as db:
            ticket = await TicketRepository(db, source=settings.HISTORY_SOURCE_MCP).create_ticket(
                epic_id=epicId,
                name=name,
                description=description,
                priority=priority,
            )
            return _dump(TicketResponse.model_validate(ticket))

    async def update_ticket(
        self,
        id: str,
        status: Optional[str] = None,
        name: Optional[str] = None,
        description: Optional[str] = None,
        priority: Optional[str] = None,
        needsHumanSupervision: Optional[bool] = None,  # noqa: N803
    ) -> dict:
        """
        Update an existing ticket. Only the supplied fields change.

        Setting needsHumanSupervision hides the ticket from the fetch tools.
        """
        new_status = _choice(TicketStatus, status, "status") if status else None
        async with self._session("update_ticket") as db:
            ticket = await TicketRepository(db, source=settings.HISTORY_SOURCE_MCP).update_ticket(
                id,
                status=new_status,
                name=name,
                description=description,
                priority=priority,
                needs_human_supervision=needsHumanSupervision,
            )
            return _dump(TicketResponse.model_validate(ticket))

    # ------------------------------------------------------------------ tasks

    async def fetch_next_task(self) -> Optional[dict]:
        """
        Fetch the highest-priority open ticket, atomically set it to
        in_progress and return it. Returns null if no open tickets exist.
        Skips tickets flagged as needing human supervision.
        Priority order: critical > high > normal > low.
        """
        async with self._session("fetch_next_task") as db:
            ticket = await Scheduler(db).fetch_next_task()
        if ticket is None:
            return None
        logger.info("Task dispatched", ticket_id=ticket.id, source=settings.HISTORY_SOURCE_MCP)
        return _dump(TicketResponse.model_validate(ticket))

    async def fetch_next_unblocked_task(self) -> Optional[dict]:
        """
        Like fetch_next_task but dependency-aware: only tickets whose
        dependencies are all done or archived are eligible. Returns null if
        no unblocked open ticket exists.
        """
        async with self._session("fetch_next_unblocked_task") as db:
            ticket = await Scheduler(db).fetch_next_unblocked_task()
        if ticket is None:
            return None
        logger.info("Unblocked task dispatched", ticket_id=ticket.id, source=settings.HISTORY_SOURCE_MCP)
        return _dump(TicketResponse.model_validate(ticket))

    async def complete_task(self, id: str, summary: Optional[str] = None) -> dict:
        """Mark a ticket as done, optionally appending a completion summary to its description."""
        async with self._session("complete_task") as db:
            ticket = await Scheduler(db).complete_task(
                id, summary=summary, source=settings.HISTORY_SOURCE_MCP
            )
            return _dump(TicketResponse.model_validate(ticket))

    # ----------------------------------------------------------- dependencies

    async def create_dependency(
        self,
        sourceId: str,  # noqa: N803
        targetId: str,  # noqa: N803
        sourceType: Optional[str] = None,  # noqa: N803
        targetType: Optional[str] = None,  # noqa: N803
    ) -> dict:
        """
        Record that sourceId depends on targetId (the target blocks the source).
        Types default to ticket. Creating the same pair again returns the existing edge.
        """
        source_type = _choice(ItemType, sourceType, "sourceType") if sourceType else ItemType.TICKET
        target_type = _choice(ItemType, targetType, "targetType") if targetType else ItemType.TICKET
        async with self._session("create_dependency") as db:
            dependency = await DependencyGraph(db).create_dependency(
                sourceId, targetId, source_type=source_type, target_type=target_type
            )
            return _dump(DependencyResponse.model_validate(dependency))

    async def list_dependencies(self, ticketId: Optional[str] = None) -> list[dict]:  # noqa: N803
        """List dependencies with ticket names and statuses, optionally only those touching ticketId."""
        async with self._session("list_dependencies") as db:
            return [_dump(d) for d in await DependencyGraph(db).list_dependencies(ticketId)]

    async def create_test_case(
        self,
        ticketId: str,  # noqa: N803
        title: str,
        body: Optional[str] = None,
    ) -> dict:
        """Create a test case linked to a ticket."""
        async with self._session("create_test_case") as db:
            test_case = await TestCaseRepository(db).create_test_case(ticketId, title, body)
            return _dump(TestCaseResponse.model_validate(test_case))

    # ---------------------------------------------------------------- history

    async def list_status_history(self, ticketId: Optional[str] = None) -> list[dict]:  # noqa: N803
        """List status transitions oldest first, optionally for one ticket."""
        async with self._session("list_status_history") as db:
            entries = await HistoryLedger(db).list(ticketId)
            return [_dump(StatusHistoryResponse.model_validate(e)) for e in entries]

    # ---------------------------------------------------------------- context

    async def get_ticket_context(self, ticketId: str) -> list[dict]:  # noqa: N803
        """Get the snippets and file references attached to a ticket."""
        async with self._session("get_ticket_context") as db:
            items = await TicketContextService(db).get_context(ticketId)
            return context_items_adapter.dump_python(items, mode="json", by_alias=True)

    async def add_context_snippet(self, ticketId: str, value: str) -> list[dict]:  # noqa: N803
        """Attach a text or code snippet to a ticket. Returns the full updated context."""
        async with self._session("add_context_snippet") as db:
            items = await TicketContextService(db).add_snippet(ticketId, value)
            return context_items_adapter.dump_python(items, mode="json", by_alias=True)

    async def add_context_file(self, ticketId: str, filePath: str) -> list[dict]:  # noqa: N803
        """
        Attach a file reference (relative to the project root) to a ticket.
        Returns the full updated context.
        """
        async with self._session("add_context_file") as db:
            items = await TicketContextService(db).add_file(ticketId, filePath)
            return context_items_adapter.dump_python(items, mode="json", by_alias=True)

    async def remove_context_item(self, ticketId: str, itemId: str) -> list[dict]:  # noqa: N803
        """Remove one context item by id. Returns the full updated context."""
        async with self._session("remove_context_item") as db:
            items = await TicketContextService(db).remove_item(ticketId, itemId)
            return context_items_adapter.dump_python(items, mode="json", by_alias=True)

    async def clear_ticket_context(self, ticketId: str) -> dict:  # noqa: N803
        """Remove all context items from a ticket."""
        async with self._session("clear_ticket_context") as db:
            await TicketContextService(db).clear(ticketId)
        return {"ticketId": ticketId, "context": []}


TOOL_NAMES = (
    "list_epics",
    "create_epic",
    "get_epic_with_tickets",
    "list_epics_with_tickets",
    "list_tickets",
    "create_ticket",
    "update_ticket",
    "fetch_next_task",
    "fetch_next_unblocked_task",
    "complete_task",
    "create_dependency",
    "list_dependencies",
    "list_status_history",
    "create_test_case",
    "get_ticket_context",
    "add_context_snippet",
    "add_context_file",
    "remove_context_item",
    "clear_ticket_context",
)


# ============================================================================
# Server
# ============================================================================

def create_mcp_server(session_factory: async_sessionmaker[AsyncSession]) -> FastMCP:
    """Build a FastMCP server with every PM tool bound to ``session_factory``."""
    server = FastMCP(settings.MCP_SERVER_NAME, instructions=INSTRUCTIONS)
    tools = PMTools(session_factory)
    for name in TOOL_NAMES:
        server.add_tool(getattr(tools, name), name=name)
    return server


def _database_url(argument: Optional[str]) -> str:
    if not argument:
        return settings.DATABASE_URL
    if "://" in argument:
        return argument
    # Bare path to a project database file
    return f"sqlite+aiosqlite:///{argument}"


def _configure_logging() -> None:
    # stdout carries the MCP protocol; logs go to stderr
    logging.basicConfig(
        stream=sys.stderr,
        level=logging.DEBUG if settings.DEBUG else logging.INFO,
        format="%(message)s",
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def main(argv: Optional[list[str]] = None) -> None:
    """Run the MCP server: ``auric-pm-mcp [DATABASE_URL | path/to/project.db]``."""
    args = list(sys.argv[1:] if argv is None else argv)
    _configure_logging()

    url = _database_url(args[0] if args else None)
    engine = create_engine(url)

    async def _prepare() -> None:
        await init_db(engine)
        # Connections are bound to this loop; the server runs its own
        await close_db(engine)

    asyncio.run(_prepare())
    logger.info("Starting MCP server", name=settings.MCP_SERVER_NAME, database=engine.url.render_as_string())

    create_mcp_server(create_session_factory(engine)).run(transport="stdio")


if __name__ == "__main__":
    main()
