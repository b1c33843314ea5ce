"""
Auric PM - Dependency Graph Tests
=================================
"""

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from auric_pm.core.errors import NotFoundError
from auric_pm.core.models import Dependency, Epic, ItemType, TicketStatus
from auric_pm.core.pm import DependencyGraph, find_dependency_cycles


class TestCreateDependency:
    """Tests for edge creation."""

    async def test_idempotent_per_pair(self, db_session: AsyncSession, make_ticket):
        """The same pair twice yields one row and the same id."""
        a = await make_ticket("A")
        b = await make_ticket("B")
        graph = DependencyGraph(db_session)

        first = await graph.create_dependency(b.id, a.id)
        second = await graph.create_dependency(b.id, a.id)

        assert first.id == second.id
        assert await db_session.scalar(select(func.count()).select_from(Dependency)) == 1

    async def test_direction_matters(self, db_session: AsyncSession, make_ticket):
        """(a, b) and (b, a) are distinct edges."""
        a = await make_ticket("A")
        b = await make_ticket("B")
        graph = DependencyGraph(db_session)

        forward = await graph.create_dependency(a.id, b.id)
        backward = await graph.create_dependency(b.id, a.id)

        assert forward.id != backward.id

    async def test_types_default_to_ticket(self, db_session: AsyncSession, make_ticket):
        """Endpoint types default to ticket."""
        a = await make_ticket("A")
        b = await make_ticket("B")

        edge = await DependencyGraph(db_session).create_dependency(a.id, b.id)

        assert edge.source_type == "ticket"
        assert edge.target_type == "ticket"


class TestListDependencies:
    """Tests for enriched listing."""

    async def test_enriched_with_names_and_statuses(self, db_session: AsyncSession, make_ticket):
        """Ticket endpoints carry their names and statuses."""
        a = await make_ticket("Alpha", status=TicketStatus.DONE)
        b = await make_ticket("Beta")
        await DependencyGraph(db_session).create_dependency(b.id, a.id)

        [edge] = await DependencyGraph(db_session).list_dependencies()

        assert (edge.source_name, edge.source_status) == ("Beta", "open")
        assert (edge.target_name, edge.target_status) == ("Alpha", "done")

    async def test_filter_matches_either_end(self, db_session: AsyncSession, make_ticket):
        """The ticket filter matches edges where it is source or target."""
        a = await make_ticket("A")
        b = await make_ticket("B")
        c = await make_ticket("C")
        d = await make_ticket("D")
        graph = DependencyGraph(db_session)
        await graph.create_dependency(b.id, a.id)
        await graph.create_dependency(a.id, c.id)
        await graph.create_dependency(d.id, c.id)

        edges = await graph.list_dependencies(a.id)

        assert {(e.source_id, e.target_id) for e in edges} == {(b.id, a.id), (a.id, c.id)}
        assert len(await graph.list_dependencies()) == 3
        assert await graph.list_dependencies("nobody") == []

    async def test_epic_endpoint_falls_back_to_id(self, db_session: AsyncSession, epic: Epic, make_ticket):
        """Non-ticket endpoints use the raw id and an empty status."""
        a = await make_ticket("A")
        await DependencyGraph(db_session).create_dependency(a.id, epic.id, target_type=ItemType.EPIC)

        [edge] = await DependencyGraph(db_session).list_dependencies(a.id)

        assert edge.target_name == epic.id
        assert edge.target_status == ""
        assert edge.target_type == "epic"


class TestBlocking:
    """Tests for the blocking predicate."""

    async def test_open_and_in_progress_targets_block(self, db_session: AsyncSession, make_ticket):
        """Unresolved targets block; resolving them unblocks."""
        target = await make_ticket("target")
        source = await make_ticket("source")
        graph = DependencyGraph(db_session)
        await graph.create_dependency(source.id, target.id)

        assert await graph.is_blocked(source.id)
        assert not await graph.is_blocked(target.id)

    async def test_all_targets_must_resolve(self, db_session: AsyncSession, make_ticket):
        """One unresolved target among several still blocks."""
        done = await make_ticket("done", status=TicketStatus.DONE)
        pending = await make_ticket("pending")
        source = await make_ticket("source")
        graph = DependencyGraph(db_session)
        await graph.create_dependency(source.id, done.id)
        await graph.create_dependency(source.id, pending.id)

        assert await graph.is_blocked(source.id)


class TestDeleteDependency:
    """Tests for edge deletion."""

    async def test_delete(self, db_session: AsyncSession, make_ticket):
        """Deleting an edge removes it."""
        a = await make_ticket("A")
        b = await make_ticket("B")
        graph = DependencyGraph(db_session)
        edge = await graph.create_dependency(a.id, b.id)

        await graph.delete_dependency(edge.id)

        assert await graph.list_dependencies() == []

    async def test_delete_missing(self, db_session: AsyncSession):
        """Deleting an unknown edge raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await DependencyGraph(db_session).delete_dependency("missing")


class TestFindDependencyCycles:
    """Tests for the cycle finder used by diagnostics and import."""

    def test_acyclic(self):
        """A chain has no cycles."""
        assert find_dependency_cycles([("a", "b"), ("b", "c")]) == []

    def test_two_separate_cycles(self):
        """Each strongly connected group is reported once."""
        edges = [("a", "b"), ("b", "c"), ("c", "a"), ("x", "y"), ("y", "x"), ("c", "x")]
        assert find_dependency_cycles(edges) == [["a", "b", "c"], ["x", "y"]]

    def test_self_loop(self):
        """A ticket depending on itself is a cycle."""
        assert find_dependency_cycles([("a", "a"), ("a", "b")]) == [["a"]]

    def test_long_chain(self):
        """Deep graphs do not exhaust the recursion limit."""
        edges = [(str(i), str(i + 1)) for i in range(5000)]
        assert find_dependency_cycles(edges) == []
        assert find_dependency_cycles(edges + [("5000", "0")]) != []
