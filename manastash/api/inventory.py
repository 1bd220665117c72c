"""
Inventory API endpoints.

CRUD for inventory items, soft delete through Trash, bulk lots and
folder moves. Every mutating endpoint runs in one transaction and records
its undo entry on the caller's session after the commit.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from manastash.api.undo import UndoLogDep
from manastash.db import operations as store
from manastash.db.database import get_session, transaction
from manastash.models.failure import NotFoundError
from manastash.models.inventory import ItemFilter, MoveResult, NewItem
from manastash.services import folder_service, inventory_service

router = APIRouter(prefix="/inventory", tags=["inventory"])


class InventoryItemResponse(BaseModel):
    """An inventory line as stored."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    set_code: str
    collector_number: str | None = None
    finish: str
    quality: str
    quantity: int
    reserved_quantity: int
    available: int
    purchase_price: float | None = None
    purchase_date: date | None = None
    image_url: str | None = None
    scryfall_id: str | None = None
    folder: str
    created_at: datetime
    last_modified: datetime


class InventoryItemCreate(BaseModel):
    """Request model for adding copies to the inventory."""

    name: str = Field(..., min_length=1, examples=["Sol Ring"])
    set_code: str = Field(default="", examples=["CMM"])
    collector_number: str | None = None
    finish: str = Field(default="normal", description="normal or foil")
    quality: str = Field(default="NM", description="NM, LP, MP, HP or DMG")
    quantity: int = Field(default=1, ge=0)
    purchase_price: Decimal | None = Field(default=None, ge=0)
    purchase_date: date | None = None
    image_url: str | None = None
    scryfall_id: str | None = None
    folder: str | None = Field(default=None, description="Defaults to Unsorted")

    def to_new_item(self) -> NewItem:
        return NewItem(**self.model_dump())


class InventoryItemUpdate(BaseModel):
    """Partial update. Only the fields sent are changed."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = None
    set_code: str | None = None
    collector_number: str | None = None
    finish: str | None = None
    quality: str | None = None
    quantity: int | None = Field(default=None, ge=0)
    purchase_price: Decimal | None = Field(default=None, ge=0)
    purchase_date: date | None = None
    image_url: str | None = None
    scryfall_id: str | None = None
    folder: str | None = None


class LotRequest(BaseModel):
    items: list[InventoryItemCreate] = Field(..., min_length=1)


class ItemIdsRequest(BaseModel):
    item_ids: list[int] = Field(..., min_length=1)


class MoveRequest(BaseModel):
    item_ids: list[int] = Field(..., min_length=1)
    folder: str


class MoveByNameRequest(BaseModel):
    card_name: str = Field(..., min_length=1)
    folder: str
    from_folder: str | None = None


class RestoreRequest(BaseModel):
    folder: str | None = Field(default=None, description="Defaults to Unsorted")


class MoveResponse(BaseModel):
    item_ids: list[int]
    folder: str


class EmptyTrashResponse(BaseModel):
    deleted: int


class RecomputeResponse(BaseModel):
    corrected_item_ids: list[int]


def _move_response(result: MoveResult) -> MoveResponse:
    return MoveResponse(item_ids=result.item_ids, folder=result.folder)


@router.get("", response_model=list[InventoryItemResponse])
async def list_inventory(
    session: Annotated[AsyncSession, Depends(get_session)],
    folder: str | None = None,
    name: str | None = None,
    finish: str | None = None,
    quality: str | None = None,
    available_gte: Annotated[int | None, Query(ge=0)] = None,
    include_trash: bool = False,
) -> list[InventoryItemResponse]:
    """
    List inventory items.

    Trash is hidden unless include_trash is set or folder=Trash is asked for.
    """
    if folder:
        folder = await folder_service.resolve_folder(session, folder)
    items = await store.find_items(
        session,
        ItemFilter(
            name=name,
            folder=folder,
            finish=finish,
            quality=quality,
            available_gte=available_gte,
            include_trash=include_trash,
        ),
    )
    return [InventoryItemResponse.model_validate(item) for item in items]


@router.post("", response_model=InventoryItemResponse, status_code=status.HTTP_201_CREATED)
async def create_item(
    body: InventoryItemCreate,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> InventoryItemResponse:
    async with transaction(session):
        item = await inventory_service.add_item(session, body.to_new_item())
    return InventoryItemResponse.model_validate(item)


@router.post(
    "/lots", response_model=list[InventoryItemResponse], status_code=status.HTTP_201_CREATED
)
async def create_lot(
    body: LotRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> list[InventoryItemResponse]:
    """Add a bulk lot in one transaction. One bad line rejects the lot."""
    async with transaction(session):
        items = await inventory_service.add_lot(
            session, [line.to_new_item() for line in body.items]
        )
    return [InventoryItemResponse.model_validate(item) for item in items]


# --- Trash Operations ---


@router.delete("/trash", response_model=EmptyTrashResponse)
async def empty_trash(
    session: Annotated[AsyncSession, Depends(get_session)],
) -> EmptyTrashResponse:
    """Permanently delete everything in Trash. Not undoable."""
    async with transaction(session):
        deleted = await inventory_service.empty_trash(session)
    return EmptyTrashResponse(deleted=deleted)


@router.post("/trash", response_model=MoveResponse)
async def trash_items(
    body: ItemIdsRequest,
    log: UndoLogDep,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> MoveResponse:
    async with transaction(session):
        result = await inventory_service.trash_items(session, body.item_ids)
    log.record(result.undo_entry)
    return _move_response(result)


@router.post("/{item_id}/trash", response_model=MoveResponse)
async def trash_item(
    item_id: int,
    log: UndoLogDep,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> MoveResponse:
    """Soft delete. 409 if the item still backs a reservation."""
    async with transaction(session):
        result = await inventory_service.trash_items(session, [item_id])
    log.record(result.undo_entry)
    return _move_response(result)


@router.post("/{item_id}/restore", response_model=MoveResponse)
async def restore_item(
    item_id: int,
    log: UndoLogDep,
    session: Annotated[AsyncSession, Depends(get_session)],
    body: RestoreRequest | None = None,
) -> MoveResponse:
    async with transaction(session):
        result = await inventory_service.restore_item(
            session, item_id, body.folder if body else None
        )
    log.record(result.undo_entry)
    return _move_response(result)


# --- Move Operations ---


@router.post("/move", response_model=MoveResponse)
async def move_items(
    body: MoveRequest,
    log: UndoLogDep,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> MoveResponse:
    async with transaction(session):
        result = await folder_service.move_items(session, body.item_ids, body.folder)
    log.record(result.undo_entry)
    return _move_response(result)


@router.post("/move-by-name", response_model=MoveResponse)
async def move_by_name(
    body: MoveByNameRequest,
    log: UndoLogDep,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> MoveResponse:
    """Move every copy of a card, optionally only those in from_folder."""
    async with transaction(session):
        result = await folder_service.move_by_name(
            session, body.card_name, body.folder, body.from_folder
        )
    log.record(result.undo_entry)
    return _move_response(result)


@router.post("/recompute-reserved", response_model=RecomputeResponse)
async def recompute_reserved(
    session: Annotated[AsyncSession, Depends(get_session)],
) -> RecomputeResponse:
    """Rebuild reserved_quantity counters from the reservation rows."""
    async with transaction(session):
        corrected = await store.recompute_reserved_quantities(session)
    return RecomputeResponse(corrected_item_ids=corrected)


# --- Item Operations ---


@router.get("/{item_id}", response_model=InventoryItemResponse)
async def get_item(
    item_id: int,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> InventoryItemResponse:
    item = await store.get_item(session, item_id)
    if item is None:
        raise NotFoundError("Inventory item", item_id)
    return InventoryItemResponse.model_validate(item)


@router.put("/{item_id}", response_model=InventoryItemResponse)
async def update_item(
    item_id: int,
    body: InventoryItemUpdate,
    log: UndoLogDep,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> InventoryItemResponse:
    """Partial update; only fields present in the body change."""
    async with transaction(session):
        result = await inventory_service.update_item(
            session, item_id, body.model_dump(exclude_unset=True)
        )
        item = await store.get_item(session, result.item_id)
    log.record(result.undo_entry)
    return InventoryItemResponse.model_validate(item)


@router.delete("/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_item(
    item_id: int,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> Response:
    """Hard delete. 409 if the item still backs a reservation."""
    async with transaction(session):
        await inventory_service.delete_item_permanently(session, item_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
