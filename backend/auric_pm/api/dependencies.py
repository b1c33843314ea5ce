"""
Auric PM - Dependencies API
===========================

"Depends on" edges between tickets (or epics) and cycle diagnostics.
"""

from typing import Optional

import structlog
from fastapi import APIRouter, Query, status

from auric_pm.api.deps import Dependencies
from auric_pm.core.schemas import (
    DependencyCreate,
    DependencyCyclesResponse,
    DependencyInfo,
    DependencyResponse,
    ErrorResponse,
    MessageResponse,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/pm/dependencies", tags=["Dependencies"])


@router.get(
    "",
    response_model=list[DependencyInfo],
    summary="List dependencies",
)
async def list_dependencies(
    graph: Dependencies,
    ticket_id: Optional[str] = Query(
        None, alias="ticketId", description="Only edges touching this ticket"
    ),
) -> list[DependencyInfo]:
    """List edges enriched with endpoint names and statuses."""
    return await graph.list_dependencies(ticket_id)


@router.post(
    "",
    response_model=DependencyResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create dependency",
)
async def create_dependency(data: DependencyCreate, graph: Dependencies) -> DependencyResponse:
    """
    Record that ``sourceId`` depends on ``targetId``.

    Repeating the call for the same pair returns the existing edge.
    """
    dependency = await graph.create_dependency(
        data.source_id,
        data.target_id,
        source_type=data.source_type,
        target_type=data.target_type,
    )
    return DependencyResponse.model_validate(dependency)


@router.get(
    "/cycles",
    response_model=DependencyCyclesResponse,
    summary="List dependency cycles",
)
async def list_dependency_cycles(graph: Dependencies) -> DependencyCyclesResponse:
    """Groups of tickets that block each other. Read-only."""
    cycles = await graph.list_cycles()
    if cycles:
        logger.warning("Dependency cycles present", count=len(cycles))
    return DependencyCyclesResponse(cycles=cycles)


@router.delete(
    "/{dependency_id}",
    response_model=MessageResponse,
    summary="Delete dependency",
    responses={404: {"model": ErrorResponse, "description": "Dependency not found"}},
)
async def delete_dependency(dependency_id: str, graph: Dependencies) -> MessageResponse:
    await graph.delete_dependency(dependency_id)
    return MessageResponse(message="Dependency deleted")
