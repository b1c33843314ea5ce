"""
PM Snapshot - export, import and clear the whole project store.

Import is authoritative: after it, the store holds exactly the payload's
epics, tickets, test cases and dependencies. Tickets that survive the import
keep their history, and the ledger gains one entry for every ticket that is
new or whose status changed.
"""

import logging

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from auric_pm.core.config import settings
from auric_pm.core.database import atomic
from auric_pm.core.errors import DependencyCycleError, ForeignKeyViolationError
from auric_pm.core.models import (
    Dependency,
    Epic,
    StatusHistoryEntry,
    TestCase,
    Ticket,
)
from auric_pm.core.pm.dependencies import find_dependency_cycles
from auric_pm.core.pm.history import HistoryLedger
from auric_pm.core.schemas import (
    DependencyResponse,
    EpicResponse,
    PMStateSnapshot,
    TestCaseResponse,
    TicketResponse,
    context_items_adapter,
)

logger = logging.getLogger(__name__)

_TICKET_FIELDS = (
    "epic_id",
    "name",
    "description",
    "status",
    "sort_order",
    "status_updated_at",
    "working_directory",
    "priority",
    "model_power",
    "needs_human_supervision",
)


class PMSnapshotService:
    """Whole-store export/import/clear."""

    def __init__(self, db: AsyncSession, source: str = settings.HISTORY_SOURCE_API):
        self.db = db
        self.source = source
        self.history = HistoryLedger(db)

    async def export_state(self) -> PMStateSnapshot:
        """Everything except history, each collection in its natural order."""
        async with atomic(self.db):
            epics = await self.db.execute(
                select(Epic).order_by(Epic.sort_order.asc(), Epic.created_at.asc())
            )
            tickets = await self.db.execute(
                select(Ticket).order_by(Ticket.sort_order.asc(), Ticket.created_at.asc())
            )
            test_cases = await self.db.execute(
                select(TestCase).order_by(TestCase.ticket_id, TestCase.sort_order.asc())
            )
            dependencies = await self.db.execute(
                select(Dependency).order_by(Dependency.source_id, Dependency.target_id)
            )

            return PMStateSnapshot(
                epics=[EpicResponse.model_validate(e) for e in epics.scalars()],
                tickets=[TicketResponse.model_validate(t) for t in tickets.scalars()],
                test_cases=[TestCaseResponse.model_validate(c) for c in test_cases.scalars()],
                dependencies=[DependencyResponse.model_validate(d) for d in dependencies.scalars()],
            )

    async def import_state(self, snapshot: PMStateSnapshot) -> PMStateSnapshot:
        """
        Replace the store contents with ``snapshot`` in one transaction.

        Args:
            snapshot: Full payload; rows are matched to existing ones by id

        Returns:
            The store as exported after the import

        Raises:
            DependencyCycleError: If the payload's dependencies contain a cycle
            ForeignKeyViolationError: If a ticket or test case names a parent
                missing from the payload
        """
        cycles = find_dependency_cycles(
            (dep.source_id, dep.target_id) for dep in snapshot.dependencies
        )
        if cycles:
            logger.warning(f"Import rejected, dependency cycle: {cycles[0]}")
            raise DependencyCycleError(cycles[0])

        self._check_references(snapshot)

        async with atomic(self.db):
            fresh = {"populate_existing": True}
            epic_rows = await self.db.execute(select(Epic).execution_options(**fresh))
            existing_epics = {e.id: e for e in epic_rows.scalars()}
            ticket_rows = await self.db.execute(select(Ticket).execution_options(**fresh))
            existing_tickets = {t.id: t for t in ticket_rows.scalars()}

            # Upsert epics and tickets first so tickets can move between epics
            for payload in snapshot.epics:
                epic = existing_epics.get(payload.id)
                if epic is None:
                    epic = Epic(id=payload.id, created_at=payload.created_at)
                    self.db.add(epic)
                epic.name = payload.name
                epic.description = payload.description
                epic.sort_order = payload.sort_order
                epic.updated_at = payload.updated_at
            await self.db.flush()

            for payload in snapshot.tickets:
                ticket = existing_tickets.get(payload.id)
                previous = ticket.status if ticket is not None else None
                if ticket is None:
                    ticket = Ticket(id=payload.id, created_at=payload.created_at)
                    self.db.add(ticket)
                for field in _TICKET_FIELDS:
                    setattr(ticket, field, getattr(payload, field))
                ticket.context = context_items_adapter.dump_python(payload.context, by_alias=True)
                ticket.updated_at = payload.updated_at
                if previous != payload.status:
                    await self.db.flush()
                    self.history.record(ticket.id, previous, payload.status, self.source)
            await self.db.flush()

            ticket_ids = {t.id for t in snapshot.tickets}
            epic_ids = {e.id for e in snapshot.epics}
            await self.db.execute(
                delete(Ticket)
                .where(Ticket.id.not_in(ticket_ids))
                .execution_options(synchronize_session=False)
            )
            await self.db.execute(
                delete(Epic)
                .where(Epic.id.not_in(epic_ids))
                .execution_options(synchronize_session=False)
            )
            self.db.expunge_all()

            await self.db.execute(delete(TestCase).execution_options(synchronize_session=False))
            await self.db.execute(delete(Dependency).execution_options(synchronize_session=False))
            self.db.add_all(
                TestCase(
                    id=case.id,
                    ticket_id=case.ticket_id,
                    title=case.title,
                    body=case.body,
                    sort_order=case.sort_order,
                    created_at=case.created_at,
                    updated_at=case.updated_at,
                )
                for case in snapshot.test_cases
            )
            self.db.add_all(
                Dependency(
                    id=dep.id,
                    source_type=dep.source_type,
                    source_id=dep.source_id,
                    target_type=dep.target_type,
                    target_id=dep.target_id,
                )
                for dep in snapshot.dependencies
            )
            await self.db.flush()

        self.db.expunge_all()
        logger.info(
            f"Imported {len(snapshot.epics)} epics, {len(snapshot.tickets)} tickets, "
            f"{len(snapshot.test_cases)} test cases, {len(snapshot.dependencies)} dependencies"
        )
        return await self.export_state()

    @staticmethod
    def _check_references(snapshot: PMStateSnapshot) -> None:
        epic_ids = {e.id for e in snapshot.epics}
        for ticket in snapshot.tickets:
            if ticket.epic_id not in epic_ids:
                raise ForeignKeyViolationError("ticket", "epic", ticket.epic_id)
        ticket_ids = {t.id for t in snapshot.tickets}
        for case in snapshot.test_cases:
            if case.ticket_id not in ticket_ids:
                raise ForeignKeyViolationError("test case", "ticket", case.ticket_id)

    async def clear_state(self) -> None:
        """Delete every PM row, history included."""
        async with atomic(self.db):
            for model in (StatusHistoryEntry, Dependency, TestCase, Ticket, Epic):
                await self.db.execute(delete(model).execution_options(synchronize_session=False))

        self.db.expunge_all()
        logger.info("Cleared PM state")
