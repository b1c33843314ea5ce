"""
History Ledger - append-only log of ticket status transitions.

Entries are written inside the caller's transaction by every operation that
changes a ticket's status; nothing updates or deletes them afterwards.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auric_pm.core.database import atomic
from auric_pm.core.models import StatusHistoryEntry, TicketStatus, utcnow

logger = logging.getLogger(__name__)

StatusValue = Union[TicketStatus, str]

_last_stamp: Optional[datetime] = None


def _next_stamp() -> datetime:
    """UTC now, nudged past the previous stamp so entries written in one process never tie."""
    global _last_stamp
    stamp = utcnow()
    if _last_stamp is not None and stamp <= _last_stamp:
        stamp = _last_stamp + timedelta(microseconds=1)
    _last_stamp = stamp
    return stamp


def _status_value(status: Optional[StatusValue]) -> Optional[str]:
    if status is None:
        return None
    return TicketStatus(status).value


class HistoryLedger:
    """Writer and reader for ``pm_status_history``."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def record(
        self,
        ticket_id: str,
        from_status: Optional[StatusValue],
        to_status: StatusValue,
        source: str,
    ) -> StatusHistoryEntry:
        """
        Stage one transition in the current transaction.

        Does not commit: the entry becomes visible together with the status
        change it describes, or not at all.
        """
        entry = StatusHistoryEntry(
            ticket_id=ticket_id,
            from_status=_status_value(from_status),
            to_status=_status_value(to_status),
            changed_at=_next_stamp(),
            source=source,
        )
        self.db.add(entry)
        logger.debug(
            f"History {ticket_id}: {entry.from_status} -> {entry.to_status} ({source})"
        )
        return entry

    async def list(self, ticket_id: Optional[str] = None) -> list[StatusHistoryEntry]:
        """All entries, or one ticket's entries, oldest first."""
        query = select(StatusHistoryEntry)
        if ticket_id:
            query = query.where(StatusHistoryEntry.ticket_id == ticket_id)
        query = query.order_by(StatusHistoryEntry.changed_at.asc(), StatusHistoryEntry.id.asc())

        async with atomic(self.db):
            result = await self.db.execute(query)
            return list(result.scalars().all())
