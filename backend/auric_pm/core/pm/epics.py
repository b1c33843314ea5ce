"""
Epic Repository - CRUD over epics.

Epics are ordered by ``sort_order``, assigned ``max + 1`` at creation.
Deleting an epic cascades to its tickets at the database level.
"""

import logging
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from auric_pm.core.database import atomic
from auric_pm.core.errors import NotFoundError
from auric_pm.core.models import Epic, Ticket
from auric_pm.core.schemas import (
    EpicWithCountResponse,
    EpicWithTicketsResponse,
    TicketResponse,
)

logger = logging.getLogger(__name__)


class EpicRepository:
    """
    Epic persistence.

    Listing returns each epic with a ticket count computed at read time, so
    counts never drift from the tickets table.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_epics(self) -> list[EpicWithCountResponse]:
        """
        All epics ordered by sort order, each with its live ticket count.

        Returns:
            Epics with ``ticket_count``; empty list when there are none
        """
        query = (
            select(Epic, func.count(Ticket.id))
            .outerjoin(Ticket, Ticket.epic_id == Epic.id)
            .group_by(Epic.id)
            .order_by(Epic.sort_order.asc(), Epic.created_at.asc())
        )

        async with atomic(self.db):
            result = await self.db.execute(query)
            rows = result.all()

        return [
            EpicWithCountResponse(
                id=epic.id,
                name=epic.name,
                description=epic.description,
                sort_order=epic.sort_order,
                created_at=epic.created_at,
                updated_at=epic.updated_at,
                ticket_count=count,
            )
            for epic, count in rows
        ]

    async def create_epic(self, name: str, description: Optional[str] = None) -> Epic:
        """
        Create an epic at the end of the ordering.

        Args:
            name: Epic name
            description: Optional description (stored as "" when omitted)

        Returns:
            The persisted epic
        """
        async with atomic(self.db):
            result = await self.db.execute(select(func.max(Epic.sort_order)))
            max_order = result.scalar_one_or_none()

            epic = Epic(
                name=name,
                description=description or "",
                sort_order=0 if max_order is None else max_order + 1,
            )
            self.db.add(epic)
            await self.db.flush()

        logger.info(f"Created epic {epic.id} '{name}' (sort_order={epic.sort_order})")
        return epic

    async def get_epic(self, epic_id: str) -> Optional[Epic]:
        result = await self.db.execute(select(Epic).where(Epic.id == epic_id))
        return result.scalar_one_or_none()

    async def get_epic_with_tickets(self, epic_id: str) -> Optional[EpicWithTicketsResponse]:
        """
        One epic with its tickets in sort order.

        Returns:
            The nested epic, or None if it does not exist
        """
        async with atomic(self.db):
            epic = await self.get_epic(epic_id)
            if epic is None:
                return None
            tickets = await self._tickets_for([epic.id])

        return self._nest(epic, tickets.get(epic.id, []))

    async def list_epics_with_tickets(self) -> list[EpicWithTicketsResponse]:
        """Every epic with its tickets nested, for bulk export."""
        async with atomic(self.db):
            result = await self.db.execute(
                select(Epic).order_by(Epic.sort_order.asc(), Epic.created_at.asc())
            )
            epics = list(result.scalars().all())
            tickets = await self._tickets_for([epic.id for epic in epics])

        return [self._nest(epic, tickets.get(epic.id, [])) for epic in epics]

    async def delete_epic(self, epic_id: str) -> None:
        """
        Delete an epic and, by cascade, its tickets.

        Raises:
            NotFoundError: If the epic does not exist
        """
        async with atomic(self.db):
            result = await self.db.execute(
                delete(Epic)
                .where(Epic.id == epic_id)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                logger.warning(f"Delete rejected, epic not found: {epic_id}")
                raise NotFoundError("Epic", epic_id)

        # Cascaded rows are gone from the database; drop stale instances
        self.db.expunge_all()
        logger.info(f"Deleted epic {epic_id}")

    # ======================================================================
    # Helpers
    # ======================================================================

    async def _tickets_for(self, epic_ids: list[str]) -> dict[str, list[Ticket]]:
        if not epic_ids:
            return {}
        result = await self.db.execute(
            select(Ticket)
            .where(Ticket.epic_id.in_(epic_ids))
            .order_by(Ticket.sort_order.asc(), Ticket.created_at.asc())
        )
        grouped: dict[str, list[Ticket]] = {}
        for ticket in result.scalars().all():
            grouped.setdefault(ticket.epic_id, []).append(ticket)
        return grouped

    @staticmethod
    def _nest(epic: Epic, tickets: list[Ticket]) -> EpicWithTicketsResponse:
        return EpicWithTicketsResponse(
            id=epic.id,
            name=epic.name,
            description=epic.description,
            sort_order=epic.sort_order,
            created_at=epic.created_at,
            updated_at=epic.updated_at,
            tickets=[TicketResponse.model_validate(t) for t in tickets],
        )
