"""
Auric PM - Scheduler Tests
==========================

Priority ordering, claim exclusivity, supervision, blocking and completion.
"""

import asyncio

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from auric_pm.core.database import close_db, create_engine, create_session_factory, init_db
from auric_pm.core.errors import NotFoundError
from auric_pm.core.models import Epic, ItemType, TicketStatus
from auric_pm.core.pm import (
    COMPLETION_SEPARATOR,
    DependencyGraph,
    EpicRepository,
    HistoryLedger,
    Scheduler,
    TicketRepository,
)


class TestFetchNextTask:
    """Tests for dependency-unaware claiming."""

    async def test_priority_beats_sort_order(self, db_session: AsyncSession, make_ticket):
        """Critical < high < normal < low < anything else, regardless of creation order."""
        low = await make_ticket("low", priority="low")
        other = await make_ticket("other", priority="someday")
        normal = await make_ticket("normal")
        critical = await make_ticket("critical", priority="critical")
        high = await make_ticket("high", priority="high")

        scheduler = Scheduler(db_session)
        claimed = [(await scheduler.fetch_next_task()).id for _ in range(5)]

        assert claimed == [critical.id, high.id, normal.id, low.id, other.id]
        assert await scheduler.fetch_next_task() is None

    async def test_sort_order_breaks_ties(self, db_session: AsyncSession, make_ticket):
        """Within a priority band the lower sort order wins."""
        first = await make_ticket("first", priority="high")
        await make_ticket("second", priority="high")

        claimed = await Scheduler(db_session).fetch_next_task()

        assert claimed.id == first.id

    async def test_claim_transitions_and_records(self, db_session: AsyncSession, make_ticket):
        """A claim sets in_progress, refreshes timestamps and logs open -> in_progress."""
        ticket = await make_ticket("A")
        before = ticket.status_updated_at

        claimed = await Scheduler(db_session).fetch_next_task()

        assert claimed.id == ticket.id
        assert claimed.status == TicketStatus.IN_PROGRESS
        assert claimed.status_updated_at > before
        assert claimed.updated_at == claimed.status_updated_at
        last = (await HistoryLedger(db_session).list(ticket.id))[-1]
        assert (last.from_status, last.to_status, last.source) == ("open", "in_progress", "scheduler")

    async def test_claim_is_exclusive(self, db_session: AsyncSession, make_ticket):
        """The only open ticket is handed out once, then the queue is empty."""
        ticket = await make_ticket("A")
        scheduler = Scheduler(db_session)

        assert (await scheduler.fetch_next_task()).id == ticket.id
        assert await scheduler.fetch_next_task() is None

    async def test_sequential_sessions_never_share_a_ticket(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        make_ticket,
    ):
        """Claims from separate sessions hand out distinct tickets."""
        for i in range(3):
            await make_ticket(f"T{i}")

        async def claim():
            async with session_factory() as session:
                ticket = await Scheduler(session).fetch_next_task()
                return ticket.id if ticket else None

        results = [await claim() for _ in range(4)]

        claimed = [r for r in results if r is not None]
        assert len(claimed) == 3
        assert len(set(claimed)) == 3
        assert results[-1] is None

    async def test_concurrent_claims_never_share_a_ticket(self, tmp_path):
        """Simultaneous claims through separate engines on one file database get distinct tickets."""
        url = f"sqlite+aiosqlite:///{tmp_path / 'claims.db'}"
        engines = [create_engine(url) for _ in range(8)]
        try:
            await init_db(engines[0])
            async with create_session_factory(engines[0])() as session:
                epic = await EpicRepository(session).create_epic("Concurrency")
                repo = TicketRepository(session)
                opened = {(await repo.create_ticket(epic.id, f"T{i}")).id for i in range(5)}

            async def claim(engine):
                async with create_session_factory(engine)() as session:
                    ticket = await Scheduler(session).fetch_next_task()
                    return ticket.id if ticket else None

            results = await asyncio.gather(*(claim(engine) for engine in engines))
        finally:
            for engine in engines:
                await close_db(engine)

        claimed = [r for r in results if r is not None]
        assert sorted(claimed) == sorted(opened)
        assert results.count(None) == 3

    async def test_skips_supervised_tickets(self, db_session: AsyncSession, make_ticket):
        """A supervised ticket is never claimed, even when it is the only one."""
        await make_ticket("needs a human", priority="critical", needs_human_supervision=True)

        scheduler = Scheduler(db_session)

        assert await scheduler.fetch_next_task() is None
        assert await scheduler.fetch_next_unblocked_task() is None

    async def test_ignores_non_open_tickets(self, db_session: AsyncSession, make_ticket):
        """Only open tickets are eligible."""
        await make_ticket("done", status=TicketStatus.DONE)
        await make_ticket("archived", status=TicketStatus.ARCHIVED)
        await make_ticket("busy", status=TicketStatus.IN_PROGRESS)

        assert await Scheduler(db_session).fetch_next_task() is None

    async def test_ignores_dependencies(self, db_session: AsyncSession, make_ticket):
        """The plain variant hands out blocked tickets."""
        blocker = await make_ticket("blocker", priority="low")
        blocked = await make_ticket("blocked", priority="critical")
        await DependencyGraph(db_session).create_dependency(blocked.id, blocker.id)

        assert (await Scheduler(db_session).fetch_next_task()).id == blocked.id


class TestFetchNextUnblockedTask:
    """Tests for dependency-aware claiming."""

    async def test_walkthrough(self, db_session: AsyncSession, epic: Epic, make_ticket):
        """Critical A blocks low B: A first, then nothing, then B once A is done."""
        a = await make_ticket("A", priority="critical")
        b = await make_ticket("B", priority="low")
        await DependencyGraph(db_session).create_dependency(b.id, a.id)
        scheduler = Scheduler(db_session)

        first = await scheduler.fetch_next_unblocked_task()
        assert first.id == a.id
        assert first.status == TicketStatus.IN_PROGRESS

        assert await scheduler.fetch_next_unblocked_task() is None

        await scheduler.complete_task(a.id)
        third = await scheduler.fetch_next_unblocked_task()
        assert third.id == b.id

    async def test_blocked_ticket_skipped_for_lower_priority(self, db_session: AsyncSession, make_ticket):
        """A blocked critical ticket yields to an unblocked normal one."""
        blocker = await make_ticket("blocker", status=TicketStatus.IN_PROGRESS)
        blocked = await make_ticket("blocked", priority="critical")
        free = await make_ticket("free")
        await DependencyGraph(db_session).create_dependency(blocked.id, blocker.id)

        assert (await Scheduler(db_session).fetch_next_unblocked_task()).id == free.id

    async def test_archived_target_unblocks(self, db_session: AsyncSession, make_ticket):
        """Archived targets count as resolved."""
        target = await make_ticket("target", status=TicketStatus.ARCHIVED)
        source = await make_ticket("source")
        await DependencyGraph(db_session).create_dependency(source.id, target.id)

        assert (await Scheduler(db_session).fetch_next_unblocked_task()).id == source.id

    async def test_epic_target_never_blocks(self, db_session: AsyncSession, epic: Epic, make_ticket):
        """Dependencies on epics are informational only."""
        source = await make_ticket("source")
        await DependencyGraph(db_session).create_dependency(
            source.id, epic.id, target_type=ItemType.EPIC
        )

        assert (await Scheduler(db_session).fetch_next_unblocked_task()).id == source.id

    async def test_deleted_target_stops_blocking(self, db_session: AsyncSession, make_ticket):
        """An edge whose target ticket was deleted no longer blocks."""
        target = await make_ticket("target")
        source = await make_ticket("source", priority="high")
        graph = DependencyGraph(db_session)
        await graph.create_dependency(source.id, target.id)
        assert await graph.is_blocked(source.id)

        await TicketRepository(db_session).delete_ticket(target.id)

        assert not await graph.is_blocked(source.id)
        assert (await Scheduler(db_session).fetch_next_unblocked_task()).id == source.id

    async def test_cycle_blocks_everything(self, db_session: AsyncSession, make_ticket):
        """Tickets that depend on each other are never handed out."""
        a = await make_ticket("A")
        b = await make_ticket("B")
        graph = DependencyGraph(db_session)
        await graph.create_dependency(a.id, b.id)
        await graph.create_dependency(b.id, a.id)

        assert await Scheduler(db_session).fetch_next_unblocked_task() is None
        assert await graph.list_cycles() == [sorted([a.id, b.id])]


class TestCompleteTask:
    """Tests for task completion."""

    async def test_summary_is_appended(self, db_session: AsyncSession, epic: Epic):
        """The summary follows the existing description after the separator."""
        ticket = await TicketRepository(db_session).create_ticket(epic.id, "A", "Original text")

        done = await Scheduler(db_session).complete_task(ticket.id, summary="Shipped it")

        assert done.description == f"Original text{COMPLETION_SEPARATOR}Shipped it"
        assert done.description == "Original text\n\n---\nCompletion Summary: Shipped it"
        assert done.status == TicketStatus.DONE

    async def test_no_summary_keeps_description(self, db_session: AsyncSession, epic: Epic):
        """Without a summary the description is untouched."""
        ticket = await TicketRepository(db_session).create_ticket(epic.id, "A", "Original text")

        done = await Scheduler(db_session).complete_task(ticket.id)

        assert done.description == "Original text"

    async def test_history_from_prior_status(self, db_session: AsyncSession, make_ticket):
        """Completion is accepted from any status and logged from it."""
        ticket = await make_ticket("A", status=TicketStatus.ARCHIVED)

        await Scheduler(db_session).complete_task(ticket.id, source="mcp")

        last = (await HistoryLedger(db_session).list(ticket.id))[-1]
        assert (last.from_status, last.to_status, last.source) == ("archived", "done", "mcp")

    async def test_completing_done_ticket_is_unconditional(self, db_session: AsyncSession, make_ticket):
        """A second completion appends the summary, refreshes the stamp and logs done -> done."""
        ticket = await make_ticket("A")
        scheduler = Scheduler(db_session)
        first = await scheduler.complete_task(ticket.id)
        stamp = first.status_updated_at

        second = await scheduler.complete_task(ticket.id, summary="again")

        assert second.status == TicketStatus.DONE
        assert second.status_updated_at > stamp
        assert second.description.endswith("Completion Summary: again")
        entries = await HistoryLedger(db_session).list(ticket.id)
        assert [(e.from_status, e.to_status) for e in entries] == [
            (None, "open"),
            ("open", "done"),
            ("done", "done"),
        ]

    async def test_missing_ticket(self, db_session: AsyncSession):
        """Completing an unknown ticket raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await Scheduler(db_session).complete_task("missing")


class TestPerEpicOrdering:
    """Sort order is per epic, so ties across epics fall back to creation order."""

    async def test_cross_epic_tie(self, db_session: AsyncSession, epic: Epic, make_ticket):
        """Equal (priority, sort order) in two epics: the older ticket wins."""
        other = await EpicRepository(db_session).create_epic("Other")
        older = await make_ticket("older")
        await asyncio.sleep(0.001)
        await make_ticket("newer", epic_id=other.id)

        assert (await Scheduler(db_session).fetch_next_task()).id == older.id
