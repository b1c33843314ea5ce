"""
Scheduler - dispatch the next eligible ticket to an agent.

A claim selects the best open ticket and moves it to ``in_progress`` inside
one transaction. On SQLite that transaction begins IMMEDIATE, which holds the
write lock from the first read; on PostgreSQL the candidate row is locked
with ``FOR UPDATE SKIP LOCKED``. Either way the status change itself is a
guarded ``UPDATE ... WHERE status = 'open'``, so two claimants can never both
win the same ticket.
"""

import logging
from typing import Optional

from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from auric_pm.core.config import settings
from auric_pm.core.database import atomic
from auric_pm.core.errors import ClaimConflictError, NotFoundError
from auric_pm.core.models import (
    PRIORITY_RANK,
    UNRANKED_PRIORITY,
    Ticket,
    TicketStatus,
    utcnow,
)
from auric_pm.core.pm.dependencies import blocking_source_ids
from auric_pm.core.pm.history import HistoryLedger
from auric_pm.core.pm.tickets import load_ticket

logger = logging.getLogger(__name__)

COMPLETION_SEPARATOR = "\n\n---\nCompletion Summary: "

priority_rank = case(PRIORITY_RANK, value=Ticket.priority, else_=UNRANKED_PRIORITY)


class Scheduler:
    """
    Ticket dispatch.

    Features:
    - Priority first (critical, high, normal, low, then anything else)
    - Per-epic sort order breaks ties; creation time and id keep it total
    - Tickets flagged for human supervision are never handed out
    - Dependency-aware variant skips blocked tickets
    """

    def __init__(
        self,
        db: AsyncSession,
        source: str = settings.HISTORY_SOURCE_SCHEDULER,
        history: Optional[HistoryLedger] = None,
    ):
        self.db = db
        self.source = source
        self.history = history or HistoryLedger(db)

    async def fetch_next_task(self) -> Optional[Ticket]:
        """
        Claim the best open, unsupervised ticket.

        Returns:
            The claimed ticket (now ``in_progress``), or None if the queue is empty

        Raises:
            ClaimConflictError: If another caller claimed the candidate first
        """
        return await self._claim(unblocked_only=False)

    async def fetch_next_unblocked_task(self) -> Optional[Ticket]:
        """
        Like ``fetch_next_task`` but skips tickets with unresolved dependencies.

        Tickets in a dependency cycle are always blocked, so a fully cyclic
        queue returns None.
        """
        return await self._claim(unblocked_only=True)

    async def complete_task(
        self,
        ticket_id: str,
        summary: Optional[str] = None,
        source: Optional[str] = None,
    ) -> Ticket:
        """
        Mark a ticket done, appending an optional completion summary.

        Completion is accepted from any status and always refreshes
        ``status_updated_at`` and records ``previous -> done``, including
        ``done -> done`` for a ticket completed twice.

        Args:
            ticket_id: Ticket to complete
            summary: Text appended to the description after a separator
            source: History source label; defaults to the scheduler's

        Returns:
            The completed ticket

        Raises:
            NotFoundError: If the ticket does not exist
        """
        source = source or self.source

        async with atomic(self.db):
            ticket = await load_ticket(self.db, ticket_id, for_update=True)
            if ticket is None:
                logger.warning(f"Completion rejected, ticket not found: {ticket_id}")
                raise NotFoundError("Ticket", ticket_id)

            now = utcnow()
            if summary:
                ticket.description = f"{ticket.description}{COMPLETION_SEPARATOR}{summary}"

            previous = ticket.status
            ticket.status = TicketStatus.DONE
            ticket.status_updated_at = now
            ticket.updated_at = now
            self.history.record(ticket.id, previous, TicketStatus.DONE, source)
            await self.db.flush()

        logger.info(f"Completed ticket {ticket_id} (was {previous.value}, source={source})")
        return ticket

    # ======================================================================
    # Claiming
    # ======================================================================

    def _candidate_query(self, unblocked_only: bool):
        query = select(Ticket.id).where(
            Ticket.status == TicketStatus.OPEN,
            Ticket.needs_human_supervision.is_(False),
        )
        if unblocked_only:
            query = query.where(Ticket.id.not_in(blocking_source_ids()))
        return (
            query.order_by(
                priority_rank,
                Ticket.sort_order.asc(),
                Ticket.created_at.asc(),
                Ticket.id.asc(),
            )
            .limit(1)
            .with_for_update(skip_locked=True)
        )

    async def _claim(self, unblocked_only: bool) -> Optional[Ticket]:
        kind = "unblocked task" if unblocked_only else "task"

        async with atomic(self.db):
            result = await self.db.execute(self._candidate_query(unblocked_only))
            ticket_id = result.scalar_one_or_none()
            if ticket_id is None:
                logger.debug(f"No eligible {kind}")
                return None

            now = utcnow()
            claimed = await self.db.execute(
                update(Ticket)
                .where(Ticket.id == ticket_id, Ticket.status == TicketStatus.OPEN)
                .values(
                    status=TicketStatus.IN_PROGRESS,
                    status_updated_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                logger.warning(f"Claim lost for ticket {ticket_id}")
                raise ClaimConflictError(ticket_id)

            self.history.record(ticket_id, TicketStatus.OPEN, TicketStatus.IN_PROGRESS, self.source)
            ticket = await load_ticket(self.db, ticket_id)

        logger.info(f"Claimed {kind} {ticket_id} '{ticket.name}' (priority={ticket.priority})")
        return ticket
