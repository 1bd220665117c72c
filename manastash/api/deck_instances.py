"""
Deck instance API endpoints.

Reservations of inventory copies by deck instances: add and remove cards,
reoptimize, auto-fill, release, and move reservations to another deck or
back into a folder.
"""

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlalchemy.ext.asyncio import AsyncSession

from manastash.api.undo import UndoLogDep
from manastash.db.database import get_session, transaction
from manastash.models.deck import AllocationResult, DeckSummary
from manastash.services import reservation_engine

router = APIRouter(prefix="/deck-instances", tags=["deck-instances"])


class CamelModel(BaseModel):
    """Response body serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CardLineModel(CamelModel):
    name: str
    quantity: int
    set_code: str | None = None
    collector_number: str | None = None


class UnmetLineModel(CamelModel):
    name: str
    shortfall: int


class AllocationResponse(CamelModel):
    """Outcome of reoptimize, auto-fill or build."""

    deck_id: int
    reserved_count: int
    missing_count: int
    unmet: list[UnmetLineModel] = Field(default_factory=list)


class DeckSummaryResponse(CamelModel):
    id: int
    name: str
    template_id: int | None = None
    created_at: datetime
    reserved_count: int
    desired_count: int
    total_cost: float
    state: str


class ReservationResponse(CamelModel):
    reservation_id: int
    inventory_item_id: int
    name: str
    set_code: str
    finish: str
    quality: str
    folder: str
    quantity: int
    unit_price: float | None = None
    line_cost: float


class DeckDetailsResponse(DeckSummaryResponse):
    cards: list[CardLineModel] = Field(default_factory=list)
    reservations: list[ReservationResponse] = Field(default_factory=list)
    missing: list[UnmetLineModel] = Field(default_factory=list)


class AddCardRequest(BaseModel):
    inventory_item_id: int
    quantity: int = Field(..., ge=1)


class AddCardResponse(BaseModel):
    reservation_id: int
    inventory_item_id: int
    requested_quantity: int
    reserved_quantity: int
    downscaled: bool


class RemoveCardRequest(BaseModel):
    reservation_id: int
    quantity: int = Field(..., ge=1)


class RemoveCardResponse(BaseModel):
    inventory_item_id: int
    removed_quantity: int
    remaining_quantity: int


class MoveCardRequest(BaseModel):
    reservation_id: int
    target_deck_id: int


class MoveToFolderRequest(BaseModel):
    reservation_id: int
    folder: str


class MoveCardResponse(BaseModel):
    inventory_item_id: int
    quantity: int
    source_deck_id: int
    target_deck_id: int | None = None
    target_folder: str | None = None


class RenameRequest(BaseModel):
    name: str = Field(..., min_length=1)


def allocation_response(result: AllocationResult) -> AllocationResponse:
    return AllocationResponse(
        deck_id=result.deck_id,
        reserved_count=result.reserved_count,
        missing_count=result.missing_count,
        unmet=[UnmetLineModel(name=line.name, shortfall=line.shortfall) for line in result.unmet],
    )


def _summary_fields(summary: DeckSummary) -> dict:
    return {
        "id": summary.id,
        "name": summary.name,
        "template_id": summary.template_id,
        "created_at": summary.created_at,
        "reserved_count": summary.reserved_count,
        "desired_count": summary.desired_count,
        "total_cost": float(summary.total_cost),
        "state": summary.state.value,
    }


@router.get("", response_model=list[DeckSummaryResponse])
async def list_deck_instances(
    session: Annotated[AsyncSession, Depends(get_session)],
) -> list[DeckSummaryResponse]:
    """Every deck instance with its totals and state, newest first."""
    summaries = await reservation_engine.list_deck_summaries(session)
    return [DeckSummaryResponse(**_summary_fields(summary)) for summary in summaries]


@router.post("/move-card", response_model=MoveCardResponse)
async def move_card(
    body: MoveCardRequest,
    log: UndoLogDep,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> MoveCardResponse:
    """Move a whole reservation to another deck that still needs the card."""
    async with transaction(session):
        result = await reservation_engine.move_card_between_decks(
            session, body.reservation_id, body.target_deck_id
        )
    log.record(result.undo_entry)
    return MoveCardResponse(
        inventory_item_id=result.inventory_item_id,
        quantity=result.quantity,
        source_deck_id=result.source_deck_id,
        target_deck_id=result.target_deck_id,
    )


@router.get("/{deck_id}/details", response_model=DeckDetailsResponse)
async def get_deck_details(
    deck_id: int,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> DeckDetailsResponse:
    """Reservations with item details, aggregate cost and missing lines."""
    details = await reservation_engine.get_deck_details(session, deck_id)
    return DeckDetailsResponse(
        **_summary_fields(details.summary),
        cards=[CardLineModel(**line.to_dict()) for line in details.cards],
        reservations=[
            ReservationResponse(
                reservation_id=view.reservation_id,
                inventory_item_id=view.inventory_item_id,
                name=view.name,
                set_code=view.set_code,
                finish=view.finish,
                quality=view.quality,
                folder=view.folder,
                quantity=view.quantity,
                unit_price=float(view.unit_price) if view.unit_price is not None else None,
                line_cost=float(view.line_cost),
            )
            for view in details.reservations
        ],
        missing=[
            UnmetLineModel(name=line.name, shortfall=line.shortfall) for line in details.missing
        ],
    )


@router.put("/{deck_id}", response_model=DeckSummaryResponse)
async def rename_deck_instance(
    deck_id: int,
    body: RenameRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> DeckSummaryResponse:
    async with transaction(session):
        await reservation_engine.rename_deck_instance(session, deck_id, body.name)
    details = await reservation_engine.get_deck_details(session, deck_id)
    return DeckSummaryResponse(**_summary_fields(details.summary))


@router.post("/{deck_id}/add-card", response_model=AddCardResponse)
async def add_card(
    deck_id: int,
    body: AddCardRequest,
    log: UndoLogDep,
    session: Annotated[AsyncSession, Depends(get_session)],
    partial: Annotated[bool, Query(description="Reserve what is available on shortfall")] = False,
) -> AddCardResponse:
    """
    Reserve copies of an inventory item for this deck.

    Exact by default: a shortfall is 409 with requiredCount/availableCount.
    With partial=true the request is downscaled to what is available.
    """
    async with transaction(session):
        result = await reservation_engine.add_card_to_deck(
            session, deck_id, body.inventory_item_id, body.quantity, exact=not partial
        )
    log.record(result.undo_entry)
    return AddCardResponse(
        reservation_id=result.reservation_id,
        inventory_item_id=result.inventory_item_id,
        requested_quantity=result.requested_qty,
        reserved_quantity=result.reserved_qty,
        downscaled=result.downscaled,
    )


@router.delete("/{deck_id}/remove-card", response_model=RemoveCardResponse)
async def remove_card(
    deck_id: int,
    body: RemoveCardRequest,
    log: UndoLogDep,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> RemoveCardResponse:
    async with transaction(session):
        result = await reservation_engine.remove_card_from_deck(
            session, deck_id, body.reservation_id, body.quantity
        )
    log.record(result.undo_entry)
    return RemoveCardResponse(
        inventory_item_id=result.inventory_item_id,
        removed_quantity=result.removed_qty,
        remaining_quantity=result.remaining_qty,
    )


@router.post("/{deck_id}/reoptimize", response_model=AllocationResponse)
async def reoptimize(
    deck_id: int,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> AllocationResponse:
    """Release and reallocate the deck's reservations, cheapest copies first."""
    async with transaction(session):
        result = await reservation_engine.reoptimize(session, deck_id)
    return allocation_response(result)


@router.post("/{deck_id}/auto-fill", response_model=AllocationResponse)
async def auto_fill(
    deck_id: int,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> AllocationResponse:
    """Top up missing copies without touching existing reservations."""
    async with transaction(session):
        result = await reservation_engine.auto_fill(session, deck_id)
    return allocation_response(result)


@router.post("/{deck_id}/release", status_code=status.HTTP_204_NO_CONTENT)
async def release_deck(
    deck_id: int,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> Response:
    """Drop every reservation and delete the deck instance."""
    async with transaction(session):
        await reservation_engine.release_deck(session, deck_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{deck_id}/move-to-folder", response_model=MoveCardResponse)
async def move_to_folder(
    deck_id: int,
    body: MoveToFolderRequest,
    log: UndoLogDep,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> MoveCardResponse:
    """Drop a reservation and file the item into a folder."""
    async with transaction(session):
        result = await reservation_engine.move_card_from_deck_to_folder(
            session, body.reservation_id, body.folder, deck_id=deck_id
        )
    log.record(result.undo_entry)
    return MoveCardResponse(
        inventory_item_id=result.inventory_item_id,
        quantity=result.quantity,
        source_deck_id=result.source_deck_id,
        target_folder=result.target_folder,
    )
