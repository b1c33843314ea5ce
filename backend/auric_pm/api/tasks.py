"""
Auric PM - Tasks API
====================

Agent-facing dispatch: claim the next ticket and report completion.
An empty queue answers 200 with a null body.
"""

from typing import Optional

import structlog
from fastapi import APIRouter

from auric_pm.api.deps import Dispatcher
from auric_pm.core.config import settings
from auric_pm.core.schemas import CompleteTaskRequest, ErrorResponse, TicketResponse

logger = structlog.get_logger()

router = APIRouter(prefix="/pm/tasks", tags=["Tasks"])


@router.post(
    "/next",
    response_model=Optional[TicketResponse],
    summary="Claim next task",
    responses={409: {"model": ErrorResponse, "description": "Claim lost to another caller"}},
)
async def fetch_next_task(scheduler: Dispatcher) -> Optional[TicketResponse]:
    """Claim the highest-priority open ticket, ignoring dependencies."""
    ticket = await scheduler.fetch_next_task()
    if ticket is None:
        return None
    logger.info("Task claimed", ticket_id=ticket.id, priority=ticket.priority)
    return TicketResponse.model_validate(ticket)


@router.post(
    "/next-unblocked",
    response_model=Optional[TicketResponse],
    summary="Claim next unblocked task",
    responses={409: {"model": ErrorResponse, "description": "Claim lost to another caller"}},
)
async def fetch_next_unblocked_task(scheduler: Dispatcher) -> Optional[TicketResponse]:
    """Claim the highest-priority open ticket whose dependencies are all resolved."""
    ticket = await scheduler.fetch_next_unblocked_task()
    if ticket is None:
        return None
    logger.info("Unblocked task claimed", ticket_id=ticket.id, priority=ticket.priority)
    return TicketResponse.model_validate(ticket)


@router.post(
    "/{ticket_id}/complete",
    response_model=TicketResponse,
    summary="Complete task",
    responses={404: {"model": ErrorResponse, "description": "Ticket not found"}},
)
async def complete_task(
    ticket_id: str,
    scheduler: Dispatcher,
    data: Optional[CompleteTaskRequest] = None,
) -> TicketResponse:
    """Mark a ticket done and append the optional completion summary."""
    summary = data.summary if data else None
    ticket = await scheduler.complete_task(
        ticket_id, summary=summary, source=settings.HISTORY_SOURCE_API
    )
    logger.info("Task completed", ticket_id=ticket.id)
    return TicketResponse.model_validate(ticket)
