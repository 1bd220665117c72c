"""
Allocates physical copies to deck instances.

INVARIANTS:
- For every item, reserved_quantity == sum of its reservations
- 0 <= reserved_quantity <= quantity
- Items in Trash have reserved_quantity == 0
- Every reservation of a deck points at an item named on one of its lines

Every write changes the reservation row and the item counter together,
with the item row locked first. Functions expect to run inside one
`transaction()` and never commit; reversible ones return the undo entry
the caller records after commit.

Candidate ranking for reoptimize and auto-fill: cheapest purchase price
first (unpriced last), then oldest, then lowest id.
"""

import logging
from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from manastash.db.operations import (
    candidate_items_for_update,
    deck_lines,
    find_reservation,
    get_item_for_update,
    get_reservation,
    list_deck_instances,
    list_reservations,
    list_reservations_with_items,
    lock_items,
    require_deck_instance,
    reserved_totals_by_name,
    reserved_value_by_deck,
)
from manastash.models.db import DeckInstanceDB, InventoryItemDB, ReservationDB, as_utc, utcnow
from manastash.models.deck import (
    AddCardResult,
    AllocationResult,
    DeckCardLine,
    DeckDetails,
    DeckState,
    DeckSummary,
    MoveCardResult,
    ReleaseResult,
    RemoveCardResult,
    ReservationView,
    UnmetLine,
    deck_state,
    total_quantity,
)
from manastash.models.failure import (
    InsufficientInventoryError,
    InvalidInputError,
    InvariantViolationError,
    NotFoundError,
    ReservedItemDeletionError,
    ValidationFailedError,
)
from manastash.models.inventory import TRASH
from manastash.models.undo import UndoEntry, UndoPayload, UndoType, batch
from manastash.services.folder_service import resolve_folder

logger = logging.getLogger(__name__)


# =============================================================================
# BOOKKEEPING PRIMITIVES
# =============================================================================


def _check_item(item: InventoryItemDB) -> None:
    if not 0 <= item.reserved_quantity <= item.quantity:
        logger.error(
            "Item %d out of bounds: reserved=%d quantity=%d",
            item.id,
            item.reserved_quantity,
            item.quantity,
        )
        raise InvariantViolationError(
            f"Item {item.id} would have reserved_quantity={item.reserved_quantity} "
            f"with quantity={item.quantity}"
        )
    if item.folder == TRASH and item.reserved_quantity > 0:
        raise InvariantViolationError(f"Trashed item {item.id} would hold reservations")


def rank_key(item: InventoryItemDB) -> tuple[bool, Decimal, datetime, int]:
    """Sort key for candidates: price ascending (nulls last), oldest, lowest id."""
    price = item.purchase_price
    return (price is None, price or Decimal(0), as_utc(item.created_at), item.id)


async def _reserve(
    session: AsyncSession, deck_id: int, item: InventoryItemDB, quantity: int
) -> ReservationDB:
    """Claim copies of a locked item for a deck."""
    reservation = await find_reservation(session, deck_id, item.id)
    if reservation is None:
        reservation = ReservationDB(
            deck_id=deck_id, inventory_item_id=item.id, quantity_reserved=quantity
        )
        session.add(reservation)
    else:
        reservation.quantity_reserved += quantity

    item.reserved_quantity += quantity
    _check_item(item)
    await session.flush()
    return reservation


async def _unreserve(
    session: AsyncSession, reservation: ReservationDB, item: InventoryItemDB, quantity: int
) -> int:
    """
    Return copies of a locked item from a reservation.

    Deletes the reservation when nothing is left. Returns the remaining quantity.
    """
    if reservation.inventory_item_id != item.id:
        raise InvariantViolationError(
            f"Reservation {reservation.id} does not reference item {item.id}"
        )

    released = min(quantity, reservation.quantity_reserved)
    reservation.quantity_reserved -= released
    item.reserved_quantity -= released
    _check_item(item)

    remaining = reservation.quantity_reserved
    if remaining == 0:
        await session.delete(reservation)
    await session.flush()
    return remaining


def _line_names(deck: DeckInstanceDB) -> set[str]:
    return {card.name.strip().lower() for card in deck.cards}


def _desired_for(deck: DeckInstanceDB, name_lower: str) -> int:
    return sum(card.quantity for card in deck.cards if card.name.strip().lower() == name_lower)


def _require_deck_line(deck: DeckInstanceDB, item: InventoryItemDB) -> None:
    if item.name_lower not in _line_names(deck):
        raise ValidationFailedError(
            f"'{item.name}' is not part of deck '{deck.name}'",
            suggestion="Add the card to the deck list first.",
        )


def _shortfalls(lines: Sequence[DeckCardLine], reserved: dict[str, int]) -> list[UnmetLine]:
    """Lines not covered by the reserved copies, consuming counts in line order."""
    remaining = dict(reserved)
    unmet: list[UnmetLine] = []
    for line in lines:
        key = line.name.strip().lower()
        covered = min(remaining.get(key, 0), line.quantity)
        remaining[key] = remaining.get(key, 0) - covered
        if line.quantity > covered:
            unmet.append(UnmetLine(name=line.name, shortfall=line.quantity - covered))
    return unmet


async def _allocate(
    session: AsyncSession, deck_id: int, lines: Sequence[DeckCardLine], reserved: dict[str, int]
) -> AllocationResult:
    """Top up every line past what is already reserved, best-ranked copies first."""
    reserved_count = 0
    unmet: list[UnmetLine] = []

    gaps = _shortfalls(lines, reserved)
    by_name: dict[str, list[InventoryItemDB]] = {}
    for item in await candidate_items_for_update(session, [gap.name for gap in gaps]):
        by_name.setdefault(item.name_lower, []).append(item)

    for gap in gaps:
        need = gap.shortfall
        candidates = sorted(by_name.get(gap.name.strip().lower(), []), key=rank_key)
        for item in candidates:
            if need == 0:
                break
            take = min(item.available, need)
            if take <= 0:
                continue
            await _reserve(session, deck_id, item, take)
            need -= take
            reserved_count += take
        if need > 0:
            unmet.append(UnmetLine(name=gap.name, shortfall=need))

    return AllocationResult(deck_id=deck_id, reserved_count=reserved_count, unmet=unmet)


async def _release_reservations(session: AsyncSession, deck_id: int) -> tuple[int, list[int]]:
    """Delete every reservation of a deck. Returns (copies released, item ids)."""
    pending = await list_reservations(session, deck_id)
    locked = await lock_items(session, [r.inventory_item_id for r in pending])
    items = {item.id: item for item in locked}

    released = 0
    for reservation in await list_reservations(session, deck_id):
        item = items.get(reservation.inventory_item_id)
        if item is None:
            item = await get_item_for_update(session, reservation.inventory_item_id)
            items[item.id] = item
        item.reserved_quantity -= reservation.quantity_reserved
        _check_item(item)
        released += reservation.quantity_reserved
        await session.delete(reservation)

    await session.flush()
    return released, sorted(items)


def _add_payload(deck_id: int, item_id: int, quantity: int) -> UndoPayload:
    return UndoPayload(
        "add_card_to_deck",
        {"deck_id": deck_id, "inventory_item_id": item_id, "quantity": quantity, "exact": True},
    )


def _remove_payload(deck_id: int, item_id: int, quantity: int) -> UndoPayload:
    return UndoPayload(
        "remove_card_from_deck",
        {"deck_id": deck_id, "inventory_item_id": item_id, "quantity": quantity},
    )


# =============================================================================
# PUBLIC OPERATIONS
# =============================================================================


async def add_card_to_deck(
    session: AsyncSession,
    deck_id: int,
    inventory_item_id: int,
    quantity: int,
    exact: bool = True,
) -> AddCardResult:
    """
    Reserve copies of a specific item for a deck.

    With exact=False a shortfall is downscaled to whatever is available;
    with exact=True (the default) it fails. No copies available fails
    either way.

    Raises:
        InsufficientInventoryError: Nothing (or, if exact, not enough) available.
        ValidationFailedError: The card is not on the deck's list.
        NotFoundError: Unknown deck or item.
    """
    if quantity <= 0:
        raise InvalidInputError("Quantity must be positive")

    deck = await require_deck_instance(session, deck_id)
    item = await get_item_for_update(session, inventory_item_id)
    _require_deck_line(deck, item)

    available = 0 if item.folder == TRASH else item.available
    if available == 0 or (exact and available < quantity):
        logger.warning(
            "Refused reservation of %d x %r for deck %d: %d available",
            quantity,
            item.name,
            deck_id,
            available,
        )
        raise InsufficientInventoryError(quantity, available, item.name)

    granted = min(quantity, available)
    reservation = await _reserve(session, deck_id, item, granted)
    logger.info(
        "Reserved %d/%d x %r (item %d) for deck %d",
        granted,
        quantity,
        item.name,
        item.id,
        deck_id,
    )

    entry = UndoEntry(
        type=UndoType.RESERVATION_ADD,
        description=f"Add {granted}x {item.name} to {deck.name}",
        forward_payload=_add_payload(deck_id, item.id, granted),
        inverse_payload=_remove_payload(deck_id, item.id, granted),
    )
    return AddCardResult(
        deck_id=deck_id,
        inventory_item_id=item.id,
        reservation_id=reservation.id,
        requested_qty=quantity,
        reserved_qty=granted,
        undo_entry=entry,
    )


async def remove_card_from_deck(
    session: AsyncSession, deck_id: int, reservation_id: int, quantity: int
) -> RemoveCardResult:
    """
    Return reserved copies to the pool. Quantities beyond the reservation are clamped.

    Raises:
        NotFoundError: If the reservation does not belong to the deck.
    """
    if quantity <= 0:
        raise InvalidInputError("Quantity must be positive")

    reservation = await get_reservation(session, reservation_id)
    if reservation is None or reservation.deck_id != deck_id:
        raise NotFoundError("Reservation", reservation_id)

    deck = await require_deck_instance(session, deck_id)
    item = await get_item_for_update(session, reservation.inventory_item_id)
    reservation = await get_reservation(session, reservation_id)
    if reservation is None:
        raise NotFoundError("Reservation", reservation_id)

    removed = min(quantity, reservation.quantity_reserved)
    remaining = await _unreserve(session, reservation, item, removed)
    logger.info("Released %d x %r (item %d) from deck %d", removed, item.name, item.id, deck_id)

    entry = UndoEntry(
        type=UndoType.RESERVATION_REMOVE,
        description=f"Remove {removed}x {item.name} from {deck.name}",
        forward_payload=_remove_payload(deck_id, item.id, removed),
        inverse_payload=_add_payload(deck_id, item.id, removed),
    )
    return RemoveCardResult(
        deck_id=deck_id,
        inventory_item_id=item.id,
        removed_qty=removed,
        remaining_qty=remaining,
        undo_entry=entry,
    )


async def remove_item_from_deck(
    session: AsyncSession, deck_id: int, inventory_item_id: int, quantity: int
) -> RemoveCardResult:
    """Like remove_card_from_deck, addressed by the reserved item instead of the reservation."""
    reservation = await find_reservation(session, deck_id, inventory_item_id)
    if reservation is None:
        raise NotFoundError("Reservation", f"deck {deck_id} / item {inventory_item_id}")
    return await remove_card_from_deck(session, deck_id, reservation.id, quantity)


async def release_deck(session: AsyncSession, deck_id: int) -> ReleaseResult:
    """Drop every reservation of a deck, then delete the deck."""
    deck = await require_deck_instance(session, deck_id)
    released, item_ids = await _release_reservations(session, deck_id)

    await session.delete(deck)
    await session.flush()
    logger.info("Released deck %d (%d copies across %d items)", deck_id, released, len(item_ids))
    return ReleaseResult(deck_id=deck_id, released_count=released, item_ids=item_ids)


async def reoptimize(session: AsyncSession, deck_id: int) -> AllocationResult:
    """
    Release a deck's reservations and reallocate from scratch.

    Idempotent when the inventory has not changed.
    """
    deck = await require_deck_instance(session, deck_id)
    await _release_reservations(session, deck_id)
    result = await _allocate(session, deck_id, deck_lines(deck), {})
    logger.info(
        "Reoptimized deck %d: %d reserved, %d missing",
        deck_id,
        result.reserved_count,
        result.missing_count,
    )
    return result


async def auto_fill(session: AsyncSession, deck_id: int) -> AllocationResult:
    """Top up under-reserved lines without touching existing reservations."""
    deck = await require_deck_instance(session, deck_id)
    reserved = await reserved_totals_by_name(session, deck_id)
    result = await _allocate(session, deck_id, deck_lines(deck), reserved)
    logger.info(
        "Auto-filled deck %d: %d reserved, %d missing",
        deck_id,
        result.reserved_count,
        result.missing_count,
    )
    return result


async def move_card_between_decks(
    session: AsyncSession, reservation_id: int, target_deck_id: int
) -> MoveCardResult:
    """
    Move a whole reservation to another deck. No partial moves.

    Raises:
        ValidationFailedError: If the target does not need that many copies.
    """
    reservation = await get_reservation(session, reservation_id)
    if reservation is None:
        raise NotFoundError("Reservation", reservation_id)
    source_id = reservation.deck_id
    if source_id == target_deck_id:
        raise ValidationFailedError("The card is already in that deck")

    source = await require_deck_instance(session, source_id)
    target = await require_deck_instance(session, target_deck_id)
    item = await get_item_for_update(session, reservation.inventory_item_id)
    reservation = await get_reservation(session, reservation_id)
    if reservation is None:
        raise NotFoundError("Reservation", reservation_id)

    quantity = reservation.quantity_reserved
    _require_deck_line(target, item)
    reserved = await reserved_totals_by_name(session, target_deck_id)
    outstanding = _desired_for(target, item.name_lower) - reserved.get(item.name_lower, 0)
    if outstanding < quantity:
        raise ValidationFailedError(
            f"Deck '{target.name}' needs {max(outstanding, 0)} more '{item.name}', "
            f"cannot take {quantity}"
        )

    await _unreserve(session, reservation, item, quantity)
    await _reserve(session, target_deck_id, item, quantity)
    logger.info(
        "Moved %d x %r from deck %d to deck %d", quantity, item.name, source_id, target_deck_id
    )

    entry = UndoEntry(
        type=UndoType.RESERVATION_MOVE,
        description=f"Move {quantity}x {item.name} from {source.name} to {target.name}",
        forward_payload=batch(
            _remove_payload(source_id, item.id, quantity),
            _add_payload(target_deck_id, item.id, quantity),
        ),
        inverse_payload=batch(
            _remove_payload(target_deck_id, item.id, quantity),
            _add_payload(source_id, item.id, quantity),
        ),
    )
    return MoveCardResult(
        inventory_item_id=item.id,
        quantity=quantity,
        source_deck_id=source_id,
        target_deck_id=target_deck_id,
        undo_entry=entry,
    )


async def move_card_from_deck_to_folder(
    session: AsyncSession,
    reservation_id: int,
    target_folder: str,
    deck_id: int | None = None,
) -> MoveCardResult:
    """
    Drop a reservation and file the item into a folder, both or neither.

    Raises:
        NotFoundError: Unknown reservation (or not in deck_id), or unknown folder.
        ReservedItemDeletionError: Target is Trash and other decks still hold copies.
    """
    reservation = await get_reservation(session, reservation_id)
    if reservation is None or (deck_id is not None and reservation.deck_id != deck_id):
        raise NotFoundError("Reservation", reservation_id)
    source_id = reservation.deck_id

    folder = await resolve_folder(session, target_folder)
    item = await get_item_for_update(session, reservation.inventory_item_id)
    reservation = await get_reservation(session, reservation_id)
    if reservation is None:
        raise NotFoundError("Reservation", reservation_id)

    quantity = reservation.quantity_reserved
    await _unreserve(session, reservation, item, quantity)

    previous_folder = item.folder
    if folder == TRASH and item.reserved_quantity > 0:
        raise ReservedItemDeletionError(item.id, item.reserved_quantity)
    item.folder = folder
    item.last_modified = utcnow()
    await session.flush()
    logger.info(
        "Moved %d x %r from deck %d to folder %r", quantity, item.name, source_id, folder
    )

    entry = UndoEntry(
        type=UndoType.MOVE_TO_FOLDER,
        description=f'Move {item.name} from deck to "{folder}"',
        forward_payload=batch(
            _remove_payload(source_id, item.id, quantity),
            UndoPayload("set_item_folders", {"folders": {item.id: folder}}),
        ),
        inverse_payload=batch(
            UndoPayload("set_item_folders", {"folders": {item.id: previous_folder}}),
            _add_payload(source_id, item.id, quantity),
        ),
    )
    return MoveCardResult(
        inventory_item_id=item.id,
        quantity=quantity,
        source_deck_id=source_id,
        target_folder=folder,
        undo_entry=entry,
    )


async def rename_deck_instance(session: AsyncSession, deck_id: int, name: str) -> DeckInstanceDB:
    """Rename a deck instance."""
    cleaned = (name or "").strip()
    if not cleaned:
        raise InvalidInputError("Deck name must not be empty")
    deck = await require_deck_instance(session, deck_id)
    deck.name = cleaned
    await session.flush()
    return deck


# =============================================================================
# READ MODELS
# =============================================================================


async def deck_state_of(session: AsyncSession, deck_id: int) -> DeckState:
    """Draft, Partial or Complete, from reserved vs desired copies."""
    deck = await require_deck_instance(session, deck_id)
    reserved = await reserved_totals_by_name(session, deck_id)
    return deck_state(sum(reserved.values()), total_quantity(deck_lines(deck)))


async def get_deck_details(session: AsyncSession, deck_id: int) -> DeckDetails:
    """A deck with its reservations, total cost and missing lines."""
    deck = await require_deck_instance(session, deck_id)
    lines = deck_lines(deck)

    views: list[ReservationView] = []
    reserved_by_name: dict[str, int] = {}
    for reservation, item in await list_reservations_with_items(session, deck_id):
        views.append(
            ReservationView(
                reservation_id=reservation.id,
                inventory_item_id=item.id,
                name=item.name,
                set_code=item.set_code,
                finish=item.finish,
                quality=item.quality,
                folder=item.folder,
                quantity=reservation.quantity_reserved,
                unit_price=item.purchase_price,
            )
        )
        reserved_by_name[item.name_lower] = (
            reserved_by_name.get(item.name_lower, 0) + reservation.quantity_reserved
        )

    summary = DeckSummary(
        id=deck.id,
        name=deck.name,
        template_id=deck.template_id,
        created_at=deck.created_at,
        reserved_count=sum(view.quantity for view in views),
        desired_count=total_quantity(lines),
        total_cost=sum((view.line_cost for view in views), Decimal(0)),
    )
    return DeckDetails(
        summary=summary,
        cards=lines,
        reservations=views,
        missing=_shortfalls(lines, reserved_by_name),
    )


async def list_deck_summaries(session: AsyncSession) -> list[DeckSummary]:
    """Every deck instance with its totals, newest first."""
    totals = await reserved_value_by_deck(session)
    summaries = []
    for deck in await list_deck_instances(session):
        reserved_count, total_cost = totals.get(deck.id, (0, Decimal(0)))
        summaries.append(
            DeckSummary(
                id=deck.id,
                name=deck.name,
                template_id=deck.template_id,
                created_at=deck.created_at,
                reserved_count=reserved_count,
                desired_count=total_quantity(deck_lines(deck)),
                total_cost=total_cost,
            )
        )
    return summaries
