"""
Ticket Context - snippets and file references attached to a ticket.

Items live as a JSON array on the ticket row, each tagged with its kind.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from auric_pm.core.database import atomic
from auric_pm.core.errors import NotFoundError
from auric_pm.core.models import ContextKind, Ticket, new_id, utcnow
from auric_pm.core.pm.tickets import load_ticket
from auric_pm.core.schemas import ContextItem, context_items_adapter

logger = logging.getLogger(__name__)


class TicketContextService:
    """Read and edit a ticket's context list."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_context(self, ticket_id: str) -> list[ContextItem]:
        async with atomic(self.db):
            ticket = await self._ticket(ticket_id)
            return context_items_adapter.validate_python(ticket.context or [])

    async def add_snippet(self, ticket_id: str, value: str) -> list[ContextItem]:
        """Append a text snippet; returns the full list."""
        return await self._append(ticket_id, ContextKind.SNIPPET, value)

    async def add_file(self, ticket_id: str, file_path: str) -> list[ContextItem]:
        """Append a file reference; returns the full list."""
        return await self._append(ticket_id, ContextKind.FILE, file_path)

    async def remove_item(self, ticket_id: str, item_id: str) -> list[ContextItem]:
        """Remove one item by id. An unknown id leaves the list unchanged."""
        async with atomic(self.db):
            ticket = await self._ticket(ticket_id, for_update=True)
            items = context_items_adapter.validate_python(ticket.context or [])
            kept = [item for item in items if item.id != item_id]
            if len(kept) != len(items):
                self._store(ticket, kept)
                logger.info(f"Removed context item {item_id} from ticket {ticket_id}")
        return kept

    async def clear(self, ticket_id: str) -> list[ContextItem]:
        async with atomic(self.db):
            ticket = await self._ticket(ticket_id, for_update=True)
            self._store(ticket, [])
        logger.info(f"Cleared context of ticket {ticket_id}")
        return []

    # ======================================================================
    # Helpers
    # ======================================================================

    async def _ticket(self, ticket_id: str, for_update: bool = False) -> Ticket:
        ticket = await load_ticket(self.db, ticket_id, for_update=for_update)
        if ticket is None:
            raise NotFoundError("Ticket", ticket_id)
        return ticket

    async def _append(self, ticket_id: str, kind: ContextKind, value: str) -> list[ContextItem]:
        async with atomic(self.db):
            ticket = await self._ticket(ticket_id, for_update=True)
            items = context_items_adapter.validate_python(ticket.context or [])
            items.append(
                context_items_adapter.validate_python(
                    [{"id": new_id(), "kind": kind.value, "value": value}]
                )[0]
            )
            self._store(ticket, items)
        logger.info(f"Added {kind.value} context to ticket {ticket_id}")
        return items

    def _store(self, ticket: Ticket, items: list[ContextItem]) -> None:
        # Assign a new list so the JSON column is flagged dirty
        ticket.context = context_items_adapter.dump_python(items, by_alias=True)
        ticket.updated_at = utcnow()
