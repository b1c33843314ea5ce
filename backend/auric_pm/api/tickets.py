"""
Auric PM - Tickets API
======================

Ticket CRUD plus the per-ticket context and test case endpoints.
"""

from typing import Optional

import structlog
from fastapi import APIRouter, Query, status

from auric_pm.api.deps import Context, TestCases, Tickets
from auric_pm.core.models import TicketStatus
from auric_pm.core.schemas import (
    ContextFileCreate,
    ContextItem,
    ContextSnippetCreate,
    ErrorResponse,
    MessageResponse,
    TestCaseCreate,
    TestCaseResponse,
    TicketCreate,
    TicketResponse,
    TicketUpdate,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/pm/tickets", tags=["Tickets"])

NOT_FOUND = {404: {"model": ErrorResponse, "description": "Ticket not found"}}


# ==========================================================================
# Ticket CRUD
# ==========================================================================

@router.get(
    "",
    response_model=list[TicketResponse],
    summary="List tickets",
)
async def list_tickets(
    tickets: Tickets,
    status_filter: Optional[TicketStatus] = Query(
        None, alias="status", description="Filter by status"
    ),
    epic_id: Optional[str] = Query(None, alias="epicId", description="Filter by epic"),
) -> list[TicketResponse]:
    """List tickets in sort order, optionally filtered by status and epic."""
    rows = await tickets.list_tickets(status=status_filter, epic_id=epic_id)
    return [TicketResponse.model_validate(t) for t in rows]


@router.post(
    "",
    response_model=TicketResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create ticket",
    responses={422: {"model": ErrorResponse, "description": "Epic does not exist"}},
)
async def create_ticket(data: TicketCreate, tickets: Tickets) -> TicketResponse:
    """Create an open ticket at the end of its epic."""
    ticket = await tickets.create_ticket(
        epic_id=data.epic_id,
        name=data.name,
        description=data.description,
        priority=data.priority,
    )
    logger.info("Ticket created", ticket_id=ticket.id, epic_id=ticket.epic_id)
    return TicketResponse.model_validate(ticket)


@router.get(
    "/{ticket_id}",
    response_model=TicketResponse,
    summary="Get ticket",
    responses=NOT_FOUND,
)
async def get_ticket(ticket_id: str, tickets: Tickets) -> TicketResponse:
    return TicketResponse.model_validate(await tickets.get_ticket(ticket_id))


@router.patch(
    "/{ticket_id}",
    response_model=TicketResponse,
    summary="Update ticket",
    responses=NOT_FOUND,
)
async def update_ticket(ticket_id: str, data: TicketUpdate, tickets: Tickets) -> TicketResponse:
    """
    Sparse update. Only fields present in the body are changed; a status
    equal to the current one is accepted and leaves history untouched.
    """
    fields = data.model_dump(exclude_unset=True, exclude={"status"})
    ticket = await tickets.update_ticket(ticket_id, status=data.status, **fields)
    return TicketResponse.model_validate(ticket)


@router.delete(
    "/{ticket_id}",
    response_model=MessageResponse,
    summary="Delete ticket",
    responses=NOT_FOUND,
)
async def delete_ticket(ticket_id: str, tickets: Tickets) -> MessageResponse:
    """Delete a ticket with its test cases and history. Dependency edges stay."""
    await tickets.delete_ticket(ticket_id)
    logger.info("Ticket deleted", ticket_id=ticket_id)
    return MessageResponse(message="Ticket deleted")


# ==========================================================================
# Test Cases
# ==========================================================================

@router.get(
    "/{ticket_id}/test-cases",
    response_model=list[TestCaseResponse],
    summary="List test cases",
)
async def list_test_cases(ticket_id: str, test_cases: TestCases) -> list[TestCaseResponse]:
    rows = await test_cases.list_test_cases(ticket_id)
    return [TestCaseResponse.model_validate(c) for c in rows]


@router.post(
    "/{ticket_id}/test-cases",
    response_model=TestCaseResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create test case",
    responses={422: {"model": ErrorResponse, "description": "Ticket does not exist"}},
)
async def create_test_case(
    ticket_id: str,
    data: TestCaseCreate,
    test_cases: TestCases,
) -> TestCaseResponse:
    test_case = await test_cases.create_test_case(ticket_id, data.title, data.body)
    return TestCaseResponse.model_validate(test_case)


# ==========================================================================
# Context
# ==========================================================================

@router.get(
    "/{ticket_id}/context",
    response_model=list[ContextItem],
    summary="Get ticket context",
    responses=NOT_FOUND,
)
async def get_ticket_context(ticket_id: str, context: Context) -> list[ContextItem]:
    return await context.get_context(ticket_id)


@router.post(
    "/{ticket_id}/context/snippets",
    response_model=list[ContextItem],
    status_code=status.HTTP_201_CREATED,
    summary="Attach snippet",
    responses=NOT_FOUND,
)
async def add_context_snippet(
    ticket_id: str,
    data: ContextSnippetCreate,
    context: Context,
) -> list[ContextItem]:
    return await context.add_snippet(ticket_id, data.value)


@router.post(
    "/{ticket_id}/context/files",
    response_model=list[ContextItem],
    status_code=status.HTTP_201_CREATED,
    summary="Attach file reference",
    responses=NOT_FOUND,
)
async def add_context_file(
    ticket_id: str,
    data: ContextFileCreate,
    context: Context,
) -> list[ContextItem]:
    return await context.add_file(ticket_id, data.file_path)


@router.delete(
    "/{ticket_id}/context/{item_id}",
    response_model=list[ContextItem],
    summary="Remove context item",
    responses=NOT_FOUND,
)
async def remove_context_item(ticket_id: str, item_id: str, context: Context) -> list[ContextItem]:
    """Remove one item; an unknown item id leaves the list unchanged."""
    return await context.remove_item(ticket_id, item_id)


@router.delete(
    "/{ticket_id}/context",
    response_model=list[ContextItem],
    summary="Clear ticket context",
    responses=NOT_FOUND,
)
async def clear_ticket_context(ticket_id: str, context: Context) -> list[ContextItem]:
    return await context.clear(ticket_id)
