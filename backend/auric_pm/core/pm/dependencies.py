"""
Dependency Graph - directed "depends on" edges between work items.

An edge ``source -> target`` reads "source depends on target". A ticket is
blocked while any of its edges points at a ticket-typed target that is
neither done nor archived. Epic-typed targets never block, and edges whose
target ticket no longer exists stop resolving and so stop blocking.
"""

import logging
from collections.abc import Iterable
from typing import Optional

from sqlalchemy import Select, and_, delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from auric_pm.core.database import atomic
from auric_pm.core.errors import NotFoundError
from auric_pm.core.models import (
    RESOLVED_STATUSES,
    Dependency,
    ItemType,
    Ticket,
    new_id,
)
from auric_pm.core.schemas import DependencyInfo

logger = logging.getLogger(__name__)


def blocking_source_ids() -> Select:
    """
    Ids of tickets that currently have an unresolved ticket-typed target.

    Usable as ``Ticket.id.not_in(blocking_source_ids())`` inside a larger
    query so the predicate is evaluated in the same transaction.
    """
    target = aliased(Ticket)
    return (
        select(Dependency.source_id)
        .join(
            target,
            and_(
                Dependency.target_type == ItemType.TICKET.value,
                Dependency.target_id == target.id,
            ),
        )
        .where(target.status.not_in(RESOLVED_STATUSES))
    )


def find_dependency_cycles(edges: Iterable[tuple[str, str]]) -> list[list[str]]:
    """
    Strongly connected components that contain a cycle.

    Each returned group is a set of nodes that (transitively) depend on each
    other, sorted for stable output; self-loops are reported as one-element
    groups. Iterative Tarjan, so deep chains do not hit the recursion limit.
    """
    graph: dict[str, list[str]] = {}
    self_loops: set[str] = set()
    for source, target in edges:
        graph.setdefault(source, []).append(target)
        graph.setdefault(target, [])
        if source == target:
            self_loops.add(source)

    index_of: dict[str, int] = {}
    lowlink: dict[str, int] = {}
    on_stack: set[str] = set()
    stack: list[str] = []
    components: list[list[str]] = []
    counter = 0

    for root in sorted(graph):
        if root in index_of:
            continue
        work = [(root, iter(graph[root]))]
        index_of[root] = lowlink[root] = counter
        counter += 1
        stack.append(root)
        on_stack.add(root)

        while work:
            node, children = work[-1]
            advanced = False
            for child in children:
                if child not in index_of:
                    index_of[child] = lowlink[child] = counter
                    counter += 1
                    stack.append(child)
                    on_stack.add(child)
                    work.append((child, iter(graph[child])))
                    advanced = True
                    break
                if child in on_stack:
                    lowlink[node] = min(lowlink[node], index_of[child])
            if advanced:
                continue

            work.pop()
            if work:
                parent = work[-1][0]
                lowlink[parent] = min(lowlink[parent], lowlink[node])

            if lowlink[node] == index_of[node]:
                component = []
                while True:
                    member = stack.pop()
                    on_stack.discard(member)
                    component.append(member)
                    if member == node:
                        break
                if len(component) > 1 or node in self_loops:
                    components.append(sorted(component))

    return sorted(components)


class DependencyGraph:
    """Edge persistence plus the blocking predicate."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_dependency(
        self,
        source_id: str,
        target_id: str,
        source_type: ItemType = ItemType.TICKET,
        target_type: ItemType = ItemType.TICKET,
    ) -> Dependency:
        """
        Record that ``source_id`` depends on ``target_id``.

        Idempotent per ordered pair: a repeated call returns the row created
        by the first one and leaves its endpoint types unchanged.

        Returns:
            The stored edge
        """
        async with atomic(self.db):
            await self._insert_ignore(
                source_id,
                target_id,
                ItemType(source_type).value,
                ItemType(target_type).value,
            )
            result = await self.db.execute(
                select(Dependency).where(
                    Dependency.source_id == source_id,
                    Dependency.target_id == target_id,
                )
            )
            dependency = result.scalar_one()

        logger.info(f"Dependency {dependency.id}: {source_id} depends on {target_id}")
        return dependency

    async def list_dependencies(self, ticket_id: Optional[str] = None) -> list[DependencyInfo]:
        """
        Edges, optionally only those touching ``ticket_id`` on either end.

        Each edge is enriched with endpoint names and statuses; endpoints
        that are not tickets (or no longer exist) fall back to their raw id
        for the name and an empty status.
        """
        source = aliased(Ticket)
        target = aliased(Ticket)
        query = (
            select(
                Dependency,
                source.name,
                source.status,
                target.name,
                target.status,
            )
            .outerjoin(
                source,
                and_(
                    Dependency.source_type == ItemType.TICKET.value,
                    Dependency.source_id == source.id,
                ),
            )
            .outerjoin(
                target,
                and_(
                    Dependency.target_type == ItemType.TICKET.value,
                    Dependency.target_id == target.id,
                ),
            )
        )
        if ticket_id:
            query = query.where(
                or_(Dependency.source_id == ticket_id, Dependency.target_id == ticket_id)
            )
        query = query.order_by(Dependency.source_id, Dependency.target_id)

        async with atomic(self.db):
            result = await self.db.execute(query)
            rows = result.all()

        return [
            DependencyInfo(
                id=dep.id,
                source_type=dep.source_type,
                source_id=dep.source_id,
                target_type=dep.target_type,
                target_id=dep.target_id,
                source_name=source_name or dep.source_id,
                source_status=source_status.value if source_status else "",
                target_name=target_name or dep.target_id,
                target_status=target_status.value if target_status else "",
            )
            for dep, source_name, source_status, target_name, target_status in rows
        ]

    async def is_blocked(self, ticket_id: str) -> bool:
        """Whether ``ticket_id`` has any unresolved ticket-typed target."""
        async with atomic(self.db):
            result = await self.db.execute(
                select(blocking_source_ids().where(Dependency.source_id == ticket_id).exists())
            )
            return bool(result.scalar())

    async def delete_dependency(self, dependency_id: str) -> None:
        """
        Raises:
            NotFoundError: If the edge does not exist
        """
        async with atomic(self.db):
            result = await self.db.execute(
                delete(Dependency)
                .where(Dependency.id == dependency_id)
                .execution_options(synchronize_session="fetch")
            )
            if result.rowcount == 0:
                logger.warning(f"Delete rejected, dependency not found: {dependency_id}")
                raise NotFoundError("Dependency", dependency_id)

        logger.info(f"Deleted dependency {dependency_id}")

    async def list_cycles(self) -> list[list[str]]:
        """
        Groups of tickets that block each other, for diagnostics.

        Scheduling is unaffected: tickets in a cycle simply stay blocked.
        """
        async with atomic(self.db):
            result = await self.db.execute(
                select(Dependency.source_id, Dependency.target_id).where(
                    Dependency.source_type == ItemType.TICKET.value,
                    Dependency.target_type == ItemType.TICKET.value,
                )
            )
            edges = [(row.source_id, row.target_id) for row in result]

        cycles = find_dependency_cycles(edges)
        if cycles:
            logger.warning(f"Found {len(cycles)} dependency cycle(s)")
        return cycles

    # ======================================================================
    # Helpers
    # ======================================================================

    async def _insert_ignore(
        self,
        source_id: str,
        target_id: str,
        source_type: str,
        target_type: str,
    ) -> None:
        values = {
            "id": new_id(),
            "source_type": source_type,
            "source_id": source_id,
            "target_type": target_type,
            "target_id": target_id,
        }
        dialect = self.db.get_bind().dialect.name

        if dialect in ("sqlite", "postgresql"):
            if dialect == "sqlite":
                from sqlalchemy.dialects.sqlite import insert
            else:
                from sqlalchemy.dialects.postgresql import insert
            await self.db.execute(
                insert(Dependency)
                .values(**values)
                .on_conflict_do_nothing(index_elements=["source_id", "target_id"])
            )
            return

        existing = await self.db.execute(
            select(Dependency.id).where(
                Dependency.source_id == source_id,
                Dependency.target_id == target_id,
            )
        )
        if existing.scalar_one_or_none() is None:
            self.db.add(Dependency(**values))
            await self.db.flush()
