"""
Auric PM - Snapshot API
=======================

Whole-store export, import and clear.
"""

import structlog
from fastapi import APIRouter

from auric_pm.api.deps import Snapshots
from auric_pm.core.schemas import ErrorResponse, MessageResponse, PMStateSnapshot

logger = structlog.get_logger()

router = APIRouter(prefix="/pm/state", tags=["Snapshot"])


@router.get(
    "",
    response_model=PMStateSnapshot,
    summary="Export state",
)
async def export_state(snapshots: Snapshots) -> PMStateSnapshot:
    """Export epics, tickets, test cases and dependencies."""
    return await snapshots.export_state()


@router.put(
    "",
    response_model=PMStateSnapshot,
    summary="Import state",
    responses={422: {"model": ErrorResponse, "description": "Cycle or dangling reference"}},
)
async def import_state(data: PMStateSnapshot, snapshots: Snapshots) -> PMStateSnapshot:
    """
    Replace the store with the payload.

    Rejected as a whole when its dependencies contain a cycle. History is
    kept for surviving tickets and extended for new or changed ones.
    """
    state = await snapshots.import_state(data)
    logger.info("State imported", tickets=len(state.tickets), epics=len(state.epics))
    return state


@router.delete(
    "",
    response_model=MessageResponse,
    summary="Clear state",
)
async def clear_state(snapshots: Snapshots) -> MessageResponse:
    """Delete all epics, tickets, test cases, dependencies and history."""
    await snapshots.clear_state()
    logger.warning("State cleared")
    return MessageResponse(message="State cleared")
