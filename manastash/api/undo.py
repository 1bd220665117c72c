"""
Undo API endpoints.

History is kept per session, identified by the X-Session-Id header.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Header, Response, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlalchemy.ext.asyncio import AsyncSession

from manastash.db.database import get_session
from manastash.services.undo_log import DEFAULT_SESSION_ID, UndoLog, get_undo_registry

router = APIRouter(tags=["undo"])


def get_undo_log(
    x_session_id: Annotated[str, Header()] = DEFAULT_SESSION_ID,
) -> UndoLog:
    """Dependency resolving the caller's undo log from the X-Session-Id header."""
    return get_undo_registry().get(x_session_id)


UndoLogDep = Annotated[UndoLog, Depends(get_undo_log)]


class UndoHistoryResponse(BaseModel):
    """Descriptions of what can be undone and redone."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    can_undo: bool
    can_redo: bool
    past: list[str] = Field(default_factory=list, description="Oldest first")
    future: list[str] = Field(default_factory=list, description="Next redo last")


class UndoOutcomeResponse(BaseModel):
    performed: bool
    description: str | None = None


@router.get("/undo", response_model=UndoHistoryResponse)
async def get_history(log: UndoLogDep) -> UndoHistoryResponse:
    return UndoHistoryResponse(
        can_undo=log.can_undo,
        can_redo=log.can_redo,
        past=[entry.description for entry in log.past],
        future=[entry.description for entry in log.future],
    )


@router.post("/undo", response_model=UndoOutcomeResponse)
async def undo(
    log: UndoLogDep,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> UndoOutcomeResponse:
    """
    Reverse the most recent operation of this session.

    performed is false when there is nothing to undo. A failing inverse
    leaves the history untouched and surfaces as its error.
    """
    outcome = await log.undo(session)
    return UndoOutcomeResponse(performed=outcome.performed, description=outcome.description)


@router.post("/redo", response_model=UndoOutcomeResponse)
async def redo(
    log: UndoLogDep,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> UndoOutcomeResponse:
    outcome = await log.redo(session)
    return UndoOutcomeResponse(performed=outcome.performed, description=outcome.description)


@router.delete("/undo", status_code=status.HTTP_204_NO_CONTENT)
async def clear_history(log: UndoLogDep) -> Response:
    log.clear()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
