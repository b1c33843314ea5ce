"""
Test Case Repository - test cases attached to tickets.
"""

import logging
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from auric_pm.core.database import atomic
from auric_pm.core.errors import ForeignKeyViolationError
from auric_pm.core.models import TestCase, Ticket

logger = logging.getLogger(__name__)


class TestCaseRepository:
    """Creates and lists a ticket's test cases; sort order starts at 1 per ticket."""

    __test__ = False

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_test_case(
        self,
        ticket_id: str,
        title: str,
        body: Optional[str] = None,
    ) -> TestCase:
        """
        Append a test case to a ticket.

        Raises:
            ForeignKeyViolationError: If the ticket does not exist
        """
        async with atomic(self.db):
            exists = await self.db.execute(select(Ticket.id).where(Ticket.id == ticket_id))
            if exists.scalar_one_or_none() is None:
                logger.warning(f"Test case rejected, ticket does not exist: {ticket_id}")
                raise ForeignKeyViolationError("test case", "ticket", ticket_id)

            result = await self.db.execute(
                select(func.coalesce(func.max(TestCase.sort_order), 0)).where(
                    TestCase.ticket_id == ticket_id
                )
            )
            test_case = TestCase(
                ticket_id=ticket_id,
                title=title,
                body=body or "",
                sort_order=result.scalar_one() + 1,
            )
            self.db.add(test_case)
            await self.db.flush()

        logger.info(f"Created test case {test_case.id} on ticket {ticket_id}")
        return test_case

    async def list_test_cases(self, ticket_id: str) -> list[TestCase]:
        async with atomic(self.db):
            result = await self.db.execute(
                select(TestCase)
                .where(TestCase.ticket_id == ticket_id)
                .order_by(TestCase.sort_order.asc())
            )
            return list(result.scalars().all())
