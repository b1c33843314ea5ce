"""
Auric PM - API Dependencies
===========================

Shared dependencies for FastAPI endpoints.
"""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from auric_pm.core.config import settings
from auric_pm.core.database import get_db
from auric_pm.core.pm import (
    DependencyGraph,
    EpicRepository,
    HistoryLedger,
    PMSnapshotService,
    Scheduler,
    TestCaseRepository,
    TicketContextService,
    TicketRepository,
)


# ==========================================================================
# Database
# ==========================================================================

DbSession = Annotated[AsyncSession, Depends(get_db)]


# ==========================================================================
# Services
# ==========================================================================

def get_epic_repository(db: DbSession) -> EpicRepository:
    return EpicRepository(db)


def get_ticket_repository(db: DbSession) -> TicketRepository:
    return TicketRepository(db, source=settings.HISTORY_SOURCE_API)


def get_scheduler(db: DbSession) -> Scheduler:
    """Scheduler for HTTP callers; claims are still recorded as scheduler transitions."""
    return Scheduler(db, source=settings.HISTORY_SOURCE_SCHEDULER)


def get_dependency_graph(db: DbSession) -> DependencyGraph:
    return DependencyGraph(db)


def get_history_ledger(db: DbSession) -> HistoryLedger:
    return HistoryLedger(db)


def get_context_service(db: DbSession) -> TicketContextService:
    return TicketContextService(db)


def get_test_case_repository(db: DbSession) -> TestCaseRepository:
    return TestCaseRepository(db)


def get_snapshot_service(db: DbSession) -> PMSnapshotService:
    return PMSnapshotService(db, source=settings.HISTORY_SOURCE_API)


Epics = Annotated[EpicRepository, Depends(get_epic_repository)]
Tickets = Annotated[TicketRepository, Depends(get_ticket_repository)]
Dispatcher = Annotated[Scheduler, Depends(get_scheduler)]
Dependencies = Annotated[DependencyGraph, Depends(get_dependency_graph)]
History = Annotated[HistoryLedger, Depends(get_history_ledger)]
Context = Annotated[TicketContextService, Depends(get_context_service)]
TestCases = Annotated[TestCaseRepository, Depends(get_test_case_repository)]
Snapshots = Annotated[PMSnapshotService, Depends(get_snapshot_service)]
