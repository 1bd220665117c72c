"""
Folder API endpoints.

Create, list, rename and delete user folders. Reserved names are refused
with 400 and duplicates with 409.
"""

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from manastash.api.undo import UndoLogDep
from manastash.db.database import get_session, transaction
from manastash.services import folder_service

router = APIRouter(prefix="/folders", tags=["folders"])


class FolderResponse(BaseModel):
    name: str
    description: str | None = None
    created_at: datetime | None = None
    item_count: int = 0
    implicit: bool = Field(default=False, description="True for Unsorted")


class FolderCreateRequest(BaseModel):
    name: str = Field(..., examples=["Lands"])
    description: str | None = None


class FolderRenameRequest(BaseModel):
    new_name: str


class FolderChangeResponse(BaseModel):
    name: str
    moved_item_ids: list[int] = Field(default_factory=list)


@router.get("", response_model=list[FolderResponse])
async def list_folders(
    session: Annotated[AsyncSession, Depends(get_session)],
) -> list[FolderResponse]:
    """User folders by name, preceded by Unsorted when it holds items."""
    listings = await folder_service.list_folder_listings(session)
    return [
        FolderResponse(
            name=listing.name,
            description=listing.description,
            created_at=listing.created_at,
            item_count=listing.item_count,
            implicit=listing.implicit,
        )
        for listing in listings
    ]


@router.post("", response_model=FolderChangeResponse, status_code=status.HTTP_201_CREATED)
async def create_folder(
    body: FolderCreateRequest,
    log: UndoLogDep,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> FolderChangeResponse:
    async with transaction(session):
        change = await folder_service.create_folder(session, body.name, body.description)
    log.record(change.undo_entry)
    return FolderChangeResponse(name=change.name)


@router.put("/{name}", response_model=FolderChangeResponse)
async def rename_folder(
    name: str,
    body: FolderRenameRequest,
    log: UndoLogDep,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> FolderChangeResponse:
    """Rename a folder; its items follow."""
    async with transaction(session):
        change = await folder_service.rename_folder(session, name, body.new_name)
    log.record(change.undo_entry)
    return FolderChangeResponse(name=change.name, moved_item_ids=change.moved_item_ids)


@router.delete("/{name}", response_model=FolderChangeResponse)
async def delete_folder(
    name: str,
    log: UndoLogDep,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> FolderChangeResponse:
    """Delete a folder. Its items move to Unsorted."""
    async with transaction(session):
        change = await folder_service.delete_folder(session, name)
    log.record(change.undo_entry)
    return FolderChangeResponse(name=change.name, moved_item_ids=change.moved_item_ids)
