"""
Auric PM - Project Management Services
======================================

Epics group tickets; tickets are claimed by agents through the scheduler,
which respects priority, per-epic order, human-supervision flags and
ticket-to-ticket dependencies.

Components:
- HistoryLedger: Append-only log of status transitions
- DependencyGraph: "Depends on" edges and the blocking predicate
- TicketRepository: Ticket CRUD with history on every status change
- EpicRepository: Epic CRUD with live ticket counts
- Scheduler: Next-task claiming and completion
- TicketContextService: Snippets and file references on tickets
- TestCaseRepository: Test cases on tickets
- PMSnapshotService: Whole-store export, import and clear
"""

from auric_pm.core.pm.history import HistoryLedger
from auric_pm.core.pm.dependencies import DependencyGraph, find_dependency_cycles
from auric_pm.core.pm.tickets import TicketRepository
from auric_pm.core.pm.epics import EpicRepository
from auric_pm.core.pm.scheduler import COMPLETION_SEPARATOR, Scheduler
from auric_pm.core.pm.context import TicketContextService
from auric_pm.core.pm.test_cases import TestCaseRepository
from auric_pm.core.pm.snapshot import PMSnapshotService

__all__ = [
    "HistoryLedger",
    "DependencyGraph",
    "find_dependency_cycles",
    "TicketRepository",
    "EpicRepository",
    "Scheduler",
    "COMPLETION_SEPARATOR",
    "TicketContextService",
    "TestCaseRepository",
    "PMSnapshotService",
]
