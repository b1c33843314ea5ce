"""
Ticket Repository - CRUD over tickets scoped to an epic.

Every status change made here is paired with a History Ledger entry in the
same transaction.
"""

import logging
from typing import Any, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from auric_pm.core.config import settings
from auric_pm.core.database import atomic
from auric_pm.core.errors import ForeignKeyViolationError, NotFoundError
from auric_pm.core.models import Epic, Ticket, TicketPriority, TicketStatus, utcnow
from auric_pm.core.pm.history import HistoryLedger

logger = logging.getLogger(__name__)


# Fields a sparse update may set besides status
UPDATABLE_FIELDS = (
    "name",
    "description",
    "priority",
    "needs_human_supervision",
    "working_directory",
    "model_power",
)


async def load_ticket(db: AsyncSession, ticket_id: str, for_update: bool = False) -> Optional[Ticket]:
    """Fetch a ticket by id, refreshing any cached instance from the row."""
    query = select(Ticket).where(Ticket.id == ticket_id).execution_options(populate_existing=True)
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    return result.scalar_one_or_none()


class TicketRepository:
    """
    Ticket persistence.

    Args:
        db: Session the repository works in
        source: Label written to the history ledger for status changes
    """

    def __init__(self, db: AsyncSession, source: str = settings.HISTORY_SOURCE_API):
        self.db = db
        self.source = source
        self.history = HistoryLedger(db)

    async def list_tickets(
        self,
        status: Optional[TicketStatus] = None,
        epic_id: Optional[str] = None,
    ) -> list[Ticket]:
        """
        Tickets ordered by sort order; both filters are optional and ANDed.
        """
        query = select(Ticket)
        if status is not None:
            query = query.where(Ticket.status == TicketStatus(status))
        if epic_id:
            query = query.where(Ticket.epic_id == epic_id)
        query = query.order_by(Ticket.sort_order.asc(), Ticket.created_at.asc())

        async with atomic(self.db):
            result = await self.db.execute(query)
            return list(result.scalars().all())

    async def get_ticket(self, ticket_id: str) -> Ticket:
        """
        Raises:
            NotFoundError: If the ticket does not exist
        """
        async with atomic(self.db):
            ticket = await load_ticket(self.db, ticket_id)
        if ticket is None:
            raise NotFoundError("Ticket", ticket_id)
        return ticket

    async def create_ticket(
        self,
        epic_id: str,
        name: str,
        description: Optional[str] = None,
        priority: Optional[str] = None,
    ) -> Ticket:
        """
        Create an open ticket at the end of its epic.

        The ``null -> open`` history entry is written in the same
        transaction as the ticket row.

        Args:
            epic_id: Owning epic
            name: Ticket name
            description: Optional description
            priority: Priority string; defaults to "normal"

        Returns:
            The persisted ticket

        Raises:
            ForeignKeyViolationError: If the epic does not exist
        """
        async with atomic(self.db):
            epic = await self.db.execute(select(Epic.id).where(Epic.id == epic_id))
            if epic.scalar_one_or_none() is None:
                logger.warning(f"Ticket rejected, epic does not exist: {epic_id}")
                raise ForeignKeyViolationError("ticket", "epic", epic_id)

            result = await self.db.execute(
                select(func.coalesce(func.max(Ticket.sort_order), 0)).where(
                    Ticket.epic_id == epic_id
                )
            )
            next_order = result.scalar_one() + 1

            now = utcnow()
            ticket = Ticket(
                epic_id=epic_id,
                name=name,
                description=description or "",
                status=TicketStatus.OPEN,
                priority=priority or TicketPriority.NORMAL.value,
                sort_order=next_order,
                context=[],
                needs_human_supervision=False,
                status_updated_at=now,
                created_at=now,
                updated_at=now,
            )
            self.db.add(ticket)
            await self.db.flush()
            self.history.record(ticket.id, None, TicketStatus.OPEN, self.source)

        logger.info(f"Created ticket {ticket.id} '{name}' in epic {epic_id}")
        return ticket

    async def update_ticket(
        self,
        ticket_id: str,
        status: Optional[TicketStatus] = None,
        **fields: Any,
    ) -> Ticket:
        """
        Sparse update of a ticket.

        Only a status that differs from the stored one moves
        ``status_updated_at`` and appends a history entry. ``updated_at`` is
        refreshed whenever any field is supplied.

        Args:
            ticket_id: Ticket to update
            status: New status, or None to leave it
            **fields: Any of ``UPDATABLE_FIELDS``; None values are skipped

        Returns:
            The updated ticket

        Raises:
            NotFoundError: If the ticket does not exist
            ValueError: If an unknown field is supplied
        """
        unknown = set(fields) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown ticket fields: {sorted(unknown)}")
        changes = {key: value for key, value in fields.items() if value is not None}

        async with atomic(self.db):
            ticket = await load_ticket(self.db, ticket_id, for_update=True)
            if ticket is None:
                logger.warning(f"Update rejected, ticket not found: {ticket_id}")
                raise NotFoundError("Ticket", ticket_id)

            now = utcnow()
            touched = bool(changes)

            if status is not None:
                touched = True
                new_status = TicketStatus(status)
                old_status = ticket.status
                if new_status != old_status:
                    ticket.status = new_status
                    ticket.status_updated_at = now
                    self.history.record(ticket.id, old_status, new_status, self.source)
                    logger.info(
                        f"Ticket {ticket.id}: {old_status.value} -> {new_status.value} ({self.source})"
                    )

            for key, value in changes.items():
                setattr(ticket, key, value)

            if touched:
                ticket.updated_at = now
            await self.db.flush()

        return ticket

    async def delete_ticket(self, ticket_id: str) -> None:
        """
        Delete a ticket; its test cases and history go with it.

        Dependency edges naming the ticket are left as they are.

        Raises:
            NotFoundError: If the ticket does not exist
        """
        async with atomic(self.db):
            result = await self.db.execute(
                delete(Ticket)
                .where(Ticket.id == ticket_id)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                logger.warning(f"Delete rejected, ticket not found: {ticket_id}")
                raise NotFoundError("Ticket", ticket_id)

        self.db.expunge_all()
        logger.info(f"Deleted ticket {ticket_id}")
