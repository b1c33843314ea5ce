"""
Auric PM - Epics API
====================

Epic listing, creation, nesting and deletion.
"""

import structlog
from fastapi import APIRouter, status

from auric_pm.api.deps import Epics
from auric_pm.core.errors import NotFoundError
from auric_pm.core.schemas import (
    EpicCreate,
    EpicResponse,
    EpicWithCountResponse,
    EpicWithTicketsResponse,
    ErrorResponse,
    MessageResponse,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/pm/epics", tags=["Epics"])


@router.get(
    "",
    response_model=list[EpicWithCountResponse],
    summary="List epics",
)
async def list_epics(epics: Epics) -> list[EpicWithCountResponse]:
    """List all epics in sort order with their live ticket counts."""
    return await epics.list_epics()


@router.post(
    "",
    response_model=EpicResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create epic",
)
async def create_epic(data: EpicCreate, epics: Epics) -> EpicResponse:
    """Create an epic at the end of the ordering."""
    epic = await epics.create_epic(data.name, data.description)
    logger.info("Epic created", epic_id=epic.id)
    return EpicResponse.model_validate(epic)


@router.get(
    "/tree",
    response_model=list[EpicWithTicketsResponse],
    summary="List epics with tickets",
)
async def list_epics_with_tickets(epics: Epics) -> list[EpicWithTicketsResponse]:
    """All epics with their tickets nested, for bulk export."""
    return await epics.list_epics_with_tickets()


@router.get(
    "/{epic_id}",
    response_model=EpicWithTicketsResponse,
    summary="Get epic with tickets",
    responses={404: {"model": ErrorResponse, "description": "Epic not found"}},
)
async def get_epic_with_tickets(epic_id: str, epics: Epics) -> EpicWithTicketsResponse:
    """Get one epic with its tickets in sort order."""
    epic = await epics.get_epic_with_tickets(epic_id)
    if epic is None:
        raise NotFoundError("Epic", epic_id)
    return epic


@router.delete(
    "/{epic_id}",
    response_model=MessageResponse,
    summary="Delete epic",
    responses={404: {"model": ErrorResponse, "description": "Epic not found"}},
)
async def delete_epic(epic_id: str, epics: Epics) -> MessageResponse:
    """Delete an epic together with its tickets."""
    await epics.delete_epic(epic_id)
    logger.info("Epic deleted", epic_id=epic_id)
    return MessageResponse(message="Epic deleted")
