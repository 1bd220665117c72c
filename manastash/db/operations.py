"""
Catalog store operations.

Provides async functions over inventory items, folders, deck templates,
deck instances and reservations. None of them commit: callers group them
inside `transaction()` so each engine or folder operation is one unit of
work. Functions ending in `_for_update` take row-level exclusive locks, in
ascending id order when several rows are involved.
"""

import logging
from collections.abc import Sequence
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from manastash.models.db import (
    DeckInstanceCardDB,
    DeckInstanceDB,
    DeckTemplateDB,
    FolderDB,
    InventoryItemDB,
    ReservationDB,
    utcnow,
)
from manastash.models.deck import DeckCardLine
from manastash.models.failure import (
    InvalidInputError,
    InvariantViolationError,
    NotFoundError,
    ReservedItemDeletionError,
    ValidationFailedError,
)
from manastash.models.inventory import FINISHES, QUALITIES, TRASH, UNSORTED, ItemFilter, NewItem

logger = logging.getLogger(__name__)

# Fields a caller may patch. reserved_quantity belongs to the reservation engine.
UPDATABLE_ITEM_FIELDS = frozenset(
    {
        "name",
        "set_code",
        "collector_number",
        "finish",
        "quality",
        "quantity",
        "purchase_price",
        "purchase_date",
        "image_url",
        "scryfall_id",
        "folder",
    }
)


def _check_finish_and_quality(finish: str | None, quality: str | None) -> None:
    if finish is not None and finish not in FINISHES:
        raise InvalidInputError(f"Unknown finish '{finish}'", detail=f"Expected one of {FINISHES}")
    if quality is not None and quality not in QUALITIES:
        raise InvalidInputError(
            f"Unknown quality '{quality}'", detail=f"Expected one of {QUALITIES}"
        )


# --- Inventory Operations ---


async def get_item(session: AsyncSession, item_id: int) -> InventoryItemDB | None:
    """
    Get an inventory item by id.

    Returns None if the item does not exist.
    """
    return await session.get(InventoryItemDB, item_id)


async def get_item_for_update(session: AsyncSession, item_id: int) -> InventoryItemDB:
    """
    Lock an inventory item and return its current row.

    The row is re-read even if it is already in the session, so quantities
    reflect what other transactions committed before the lock was granted.

    Raises:
        NotFoundError: If the item does not exist.
    """
    result = await session.execute(
        select(InventoryItemDB)
        .where(InventoryItemDB.id == item_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    item = result.scalar_one_or_none()
    if item is None:
        raise NotFoundError("Inventory item", item_id)
    return item


async def lock_items(session: AsyncSession, item_ids: Sequence[int]) -> list[InventoryItemDB]:
    """
    Lock several inventory items in ascending id order.

    Raises:
        NotFoundError: If any of the ids does not exist.
    """
    ids = sorted(set(item_ids))
    if not ids:
        return []

    result = await session.execute(
        select(InventoryItemDB)
        .where(InventoryItemDB.id.in_(ids))
        .order_by(InventoryItemDB.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    items = list(result.scalars().all())

    found = {item.id for item in items}
    for item_id in ids:
        if item_id not in found:
            raise NotFoundError("Inventory item", item_id)
    return items


async def find_items(session: AsyncSession, criteria: ItemFilter) -> list[InventoryItemDB]:
    """
    Query inventory items.

    Name matching is case-insensitive and exact. Trashed items are
    excluded unless a folder is given or `include_trash` is set.
    """
    stmt = select(InventoryItemDB)

    if criteria.name is not None:
        stmt = stmt.where(InventoryItemDB.name_lower == criteria.name.strip().lower())
    if criteria.folder is not None:
        stmt = stmt.where(InventoryItemDB.folder == criteria.folder)
    elif not criteria.include_trash:
        stmt = stmt.where(InventoryItemDB.folder != TRASH)
    if criteria.finish is not None:
        stmt = stmt.where(InventoryItemDB.finish == criteria.finish)
    if criteria.quality is not None:
        stmt = stmt.where(InventoryItemDB.quality == criteria.quality)
    if criteria.available_gte is not None:
        stmt = stmt.where(
            InventoryItemDB.quantity - InventoryItemDB.reserved_quantity
            >= criteria.available_gte
        )

    result = await session.execute(stmt.order_by(InventoryItemDB.name_lower, InventoryItemDB.id))
    return list(result.scalars().all())


async def list_items(
    session: AsyncSession, folder: str | None = None, include_trash: bool = False
) -> list[InventoryItemDB]:
    """List inventory items, optionally limited to one folder."""
    return await find_items(session, ItemFilter(folder=folder, include_trash=include_trash))


async def candidate_items_for_update(
    session: AsyncSession, names: Sequence[str]
) -> list[InventoryItemDB]:
    """
    Lock every item that could back a reservation for any of the card names.

    All candidates are locked by one statement, in ascending id order.
    Candidates have at least one unreserved copy and are not in Trash.
    Ranking is left to the caller.
    """
    keys = sorted({name.strip().lower() for name in names})
    if not keys:
        return []

    result = await session.execute(
        select(InventoryItemDB)
        .where(
            InventoryItemDB.name_lower.in_(keys),
            InventoryItemDB.folder != TRASH,
            InventoryItemDB.quantity > InventoryItemDB.reserved_quantity,
        )
        .order_by(InventoryItemDB.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def create_item(session: AsyncSession, new_item: NewItem) -> InventoryItemDB:
    """
    Add a line of copies to the inventory.

    The folder is stored as given (default Unsorted); resolving it against
    the folder table is the caller's job.
    """
    name = new_item.name.strip()
    if not name:
        raise InvalidInputError("Card name must not be empty")
    if new_item.quantity < 0:
        raise InvalidInputError("Quantity must not be negative")
    _check_finish_and_quality(new_item.finish, new_item.quality)

    item = InventoryItemDB(
        name=name,
        set_code=new_item.set_code,
        collector_number=new_item.collector_number,
        finish=new_item.finish,
        quality=new_item.quality,
        quantity=new_item.quantity,
        reserved_quantity=0,
        purchase_price=new_item.purchase_price,
        purchase_date=new_item.purchase_date,
        image_url=new_item.image_url,
        scryfall_id=new_item.scryfall_id,
        folder=new_item.folder or UNSORTED,
    )
    session.add(item)
    await session.flush()
    return item


async def create_items(
    session: AsyncSession, new_items: Sequence[NewItem]
) -> list[InventoryItemDB]:
    """Insert a lot of items. Either all rows are added or, on error, none are."""
    return [await create_item(session, new_item) for new_item in new_items]


def _check_item_patch(item: InventoryItemDB, patch: dict[str, Any]) -> None:
    unknown = set(patch) - UPDATABLE_ITEM_FIELDS
    if unknown:
        raise InvalidInputError(f"Cannot update fields: {', '.join(sorted(unknown))}")

    for field in ("set_code", "finish", "quality"):
        if field in patch and patch[field] is None:
            raise InvalidInputError(f"{field} must not be null")
    _check_finish_and_quality(patch.get("finish"), patch.get("quality"))

    if "quantity" in patch:
        quantity = patch["quantity"]
        if quantity is None or quantity < 0:
            raise InvalidInputError("Quantity must not be negative")
        if quantity < item.reserved_quantity:
            raise ValidationFailedError(
                f"Quantity {quantity} is below the {item.reserved_quantity} reserved copies",
                suggestion="Remove the item from its decks first.",
            )

    if "name" in patch:
        name = (patch["name"] or "").strip()
        if not name:
            raise InvalidInputError("Card name must not be empty")
        if item.reserved_quantity > 0 and name.lower() != item.name_lower:
            raise ValidationFailedError(
                "Cannot rename an item that is reserved by a deck",
                suggestion="Remove the item from its decks first.",
            )

    if patch.get("folder") == TRASH and item.reserved_quantity > 0:
        raise ReservedItemDeletionError(item.id, item.reserved_quantity)


async def update_item(
    session: AsyncSession, item_id: int, patch: dict[str, Any]
) -> InventoryItemDB:
    """
    Apply a partial update to an inventory item.

    Sets last_modified. Rejects patches that would leave the item with
    more reserved copies than it has, or send reserved copies to Trash.
    """
    item = await get_item_for_update(session, item_id)
    _check_item_patch(item, patch)

    for field, value in patch.items():
        if field == "name":
            value = value.strip()
        setattr(item, field, value)
    item.last_modified = utcnow()

    await session.flush()
    return item


async def delete_item(session: AsyncSession, item_id: int) -> None:
    """
    Permanently delete an inventory item.

    Raises:
        ReservedItemDeletionError: If any copies are reserved.
    """
    item = await get_item_for_update(session, item_id)
    if item.reserved_quantity > 0:
        raise ReservedItemDeletionError(item.id, item.reserved_quantity)
    await session.delete(item)
    await session.flush()


async def delete_trashed_items(session: AsyncSession) -> int:
    """
    Permanently delete every item in Trash.

    Returns:
        Number of items deleted.
    """
    result = await session.execute(
        select(InventoryItemDB)
        .where(InventoryItemDB.folder == TRASH)
        .order_by(InventoryItemDB.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    items = list(result.scalars().all())

    for item in items:
        if item.reserved_quantity > 0:
            raise InvariantViolationError(
                f"Trashed item {item.id} has reserved_quantity={item.reserved_quantity}"
            )
        await session.delete(item)

    await session.flush()
    return len(items)


async def recompute_reserved_quantities(session: AsyncSession) -> list[int]:
    """
    Rebuild every reserved_quantity from the reservation rows.

    Returns:
        Ids of items whose stored counter had drifted.
    """
    items_result = await session.execute(
        select(InventoryItemDB)
        .order_by(InventoryItemDB.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    items = list(items_result.scalars().all())

    totals_result = await session.execute(
        select(ReservationDB.inventory_item_id, func.sum(ReservationDB.quantity_reserved)).group_by(
            ReservationDB.inventory_item_id
        )
    )
    totals = {item_id: int(total) for item_id, total in totals_result.all()}

    drifted: list[int] = []
    for item in items:
        expected = totals.get(item.id, 0)
        if item.reserved_quantity == expected:
            continue
        if expected > item.quantity:
            raise InvariantViolationError(
                f"Item {item.id} has {expected} copies reserved but only {item.quantity} on hand"
            )
        logger.warning(
            "Item %d reserved_quantity drifted: stored %d, reservations sum to %d",
            item.id,
            item.reserved_quantity,
            expected,
        )
        item.reserved_quantity = expected
        drifted.append(item.id)

    await session.flush()
    return drifted


# --- Folder Operations ---


async def get_folder(session: AsyncSession, name: str) -> FolderDB | None:
    """Get a user folder by name, case-insensitively."""
    result = await session.execute(
        select(FolderDB).where(FolderDB.name_lower == name.strip().lower())
    )
    return result.scalar_one_or_none()


async def list_folders(session: AsyncSession) -> list[FolderDB]:
    """List user folders sorted by name."""
    result = await session.execute(select(FolderDB).order_by(FolderDB.name_lower))
    return list(result.scalars().all())


async def item_counts_by_folder(session: AsyncSession) -> dict[str, int]:
    """Number of inventory items per folder name."""
    result = await session.execute(
        select(InventoryItemDB.folder, func.count(InventoryItemDB.id)).group_by(
            InventoryItemDB.folder
        )
    )
    return {folder: int(count) for folder, count in result.all()}


async def items_in_folder_for_update(session: AsyncSession, folder: str) -> list[InventoryItemDB]:
    """Lock every item stored in a folder."""
    result = await session.execute(
        select(InventoryItemDB)
        .where(InventoryItemDB.folder == folder)
        .order_by(InventoryItemDB.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


# --- Deck Template Operations ---


def template_lines(template: DeckTemplateDB) -> list[DeckCardLine]:
    """Convert a template's JSON cards into DeckCardLine values."""
    return [DeckCardLine.from_dict(card) for card in template.cards or []]


async def get_deck_template(session: AsyncSession, template_id: int) -> DeckTemplateDB | None:
    return await session.get(DeckTemplateDB, template_id)


async def list_deck_templates(session: AsyncSession) -> list[DeckTemplateDB]:
    result = await session.execute(select(DeckTemplateDB).order_by(DeckTemplateDB.name))
    return list(result.scalars().all())


async def create_deck_template(
    session: AsyncSession,
    name: str,
    cards: Sequence[DeckCardLine],
    format: str = "commander",
    commander_name: str | None = None,
    description: str | None = None,
    archidekt_url: str | None = None,
) -> DeckTemplateDB:
    """Insert a deck template. Validation of the card list is the caller's job."""
    template = DeckTemplateDB(
        name=name,
        format=format,
        commander_name=commander_name,
        description=description,
        archidekt_url=archidekt_url,
        cards=[line.to_dict() for line in cards],
    )
    session.add(template)
    await session.flush()
    return template


# --- Deck Instance Operations ---


def deck_lines(deck: DeckInstanceDB) -> list[DeckCardLine]:
    """Convert a deck instance's snapshot rows into DeckCardLine values."""
    return [
        DeckCardLine(
            name=card.name,
            quantity=card.quantity,
            set_code=card.set_code,
            collector_number=card.collector_number,
        )
        for card in deck.cards
    ]


async def get_deck_instance(session: AsyncSession, deck_id: int) -> DeckInstanceDB | None:
    """
    Get a deck instance with its card snapshot.

    Returns None if the deck does not exist.
    """
    return await session.get(DeckInstanceDB, deck_id)


async def require_deck_instance(session: AsyncSession, deck_id: int) -> DeckInstanceDB:
    """
    Get a deck instance or fail.

    Raises:
        NotFoundError: If the deck does not exist.
    """
    deck = await get_deck_instance(session, deck_id)
    if deck is None:
        raise NotFoundError("Deck instance", deck_id)
    return deck


async def list_deck_instances(session: AsyncSession) -> list[DeckInstanceDB]:
    """List deck instances, newest first."""
    result = await session.execute(
        select(DeckInstanceDB).order_by(DeckInstanceDB.created_at.desc(), DeckInstanceDB.id.desc())
    )
    return list(result.scalars().all())


async def create_deck_instance(
    session: AsyncSession,
    name: str,
    cards: Sequence[DeckCardLine],
    template_id: int | None = None,
) -> DeckInstanceDB:
    """Insert a deck instance with a snapshot of its desired composition."""
    deck = DeckInstanceDB(
        name=name,
        template_id=template_id,
        cards=[
            DeckInstanceCardDB(
                position=position,
                name=line.name,
                quantity=line.quantity,
                set_code=line.set_code,
                collector_number=line.collector_number,
            )
            for position, line in enumerate(cards)
        ],
    )
    session.add(deck)
    await session.flush()
    return deck


# --- Reservation Operations ---


async def get_reservation(session: AsyncSession, reservation_id: int) -> ReservationDB | None:
    """Get a reservation by id, re-read from the store."""
    result = await session.execute(
        select(ReservationDB)
        .where(ReservationDB.id == reservation_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def find_reservation(
    session: AsyncSession, deck_id: int, inventory_item_id: int
) -> ReservationDB | None:
    """Get the reservation a deck holds against an item, if any."""
    result = await session.execute(
        select(ReservationDB)
        .where(
            ReservationDB.deck_id == deck_id,
            ReservationDB.inventory_item_id == inventory_item_id,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_reservations(session: AsyncSession, deck_id: int) -> list[ReservationDB]:
    """List a deck's reservations in creation order."""
    result = await session.execute(
        select(ReservationDB)
        .where(ReservationDB.deck_id == deck_id)
        .order_by(ReservationDB.id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def list_reservations_with_items(
    session: AsyncSession, deck_id: int
) -> list[tuple[ReservationDB, InventoryItemDB]]:
    """A deck's reservations joined with the items they claim."""
    result = await session.execute(
        select(ReservationDB, InventoryItemDB)
        .join(InventoryItemDB, ReservationDB.inventory_item_id == InventoryItemDB.id)
        .where(ReservationDB.deck_id == deck_id)
        .order_by(ReservationDB.id)
    )
    return [(reservation, item) for reservation, item in result.all()]


async def reserved_totals_by_name(session: AsyncSession, deck_id: int) -> dict[str, int]:
    """Copies a deck has reserved, keyed by lower-cased card name."""
    result = await session.execute(
        select(InventoryItemDB.name_lower, func.sum(ReservationDB.quantity_reserved))
        .join(InventoryItemDB, ReservationDB.inventory_item_id == InventoryItemDB.id)
        .where(ReservationDB.deck_id == deck_id)
        .group_by(InventoryItemDB.name_lower)
    )
    return {name: int(total) for name, total in result.all()}


async def reserved_value_by_deck(session: AsyncSession) -> dict[int, tuple[int, Decimal]]:
    """
    Reserved copies and their purchase cost, per deck instance.

    Items without a purchase price count as zero cost.
    """
    result = await session.execute(
        select(
            ReservationDB.deck_id,
            ReservationDB.quantity_reserved,
            InventoryItemDB.purchase_price,
        ).join(InventoryItemDB, ReservationDB.inventory_item_id == InventoryItemDB.id)
    )

    totals: dict[int, tuple[int, Decimal]] = {}
    for deck_id, quantity, price in result.all():
        count, cost = totals.get(deck_id, (0, Decimal(0)))
        totals[deck_id] = (count + quantity, cost + (price or Decimal(0)) * quantity)
    return totals
