"""
Inventory operations on top of the catalog store.

Adds folder resolution and undo entries to item creation, edits, soft
delete and restore. Functions expect to run inside one `transaction()`.
"""

import logging
from collections.abc import Sequence
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from manastash.db import operations as store
from manastash.models.db import InventoryItemDB
from manastash.models.failure import NotFoundError, ValidationFailedError
from manastash.models.inventory import TRASH, UNSORTED, ItemUpdate, MoveResult, NewItem
from manastash.models.undo import UndoEntry, UndoPayload, UndoType
from manastash.services.folder_service import resolve_folder, set_item_folders

logger = logging.getLogger(__name__)


async def _storage_folder(session: AsyncSession, folder: str | None) -> str:
    """Folder for new or edited items: Unsorted, or an existing user folder."""
    if not folder:
        return UNSORTED
    try:
        resolved = await resolve_folder(session, folder)
    except NotFoundError as e:
        raise ValidationFailedError(
            f'Folder "{folder}" does not exist', suggestion="Create the folder first."
        ) from e
    if resolved == TRASH:
        raise ValidationFailedError("Items cannot be added or edited into Trash")
    return resolved


async def add_item(session: AsyncSession, new_item: NewItem) -> InventoryItemDB:
    """Add a line of copies, filed in Unsorted unless a folder is given."""
    new_item.folder = await _storage_folder(session, new_item.folder)
    item = await store.create_item(session, new_item)
    logger.info("Added %d x %r to %r (item %d)", item.quantity, item.name, item.folder, item.id)
    return item


async def add_lot(session: AsyncSession, new_items: Sequence[NewItem]) -> list[InventoryItemDB]:
    """Add a bulk lot. Any invalid line rejects the whole lot."""
    for new_item in new_items:
        new_item.folder = await _storage_folder(session, new_item.folder)
    items = await store.create_items(session, new_items)
    logger.info("Added lot of %d items", len(items))
    return items


async def update_item(session: AsyncSession, item_id: int, patch: dict[str, Any]) -> ItemUpdate:
    """
    Apply a partial update and record how to put the old values back.

    Moving to Trash goes through trash_items, not here.
    """
    patch = dict(patch)
    item = await store.get_item_for_update(session, item_id)
    if "folder" in patch:
        if item.folder == TRASH:
            raise ValidationFailedError(
                f"Item {item_id} is in Trash", suggestion="Restore the item instead."
            )
        patch["folder"] = await _storage_folder(session, patch["folder"])

    previous = {field: getattr(item, field) for field in patch if hasattr(item, field)}
    item = await store.update_item(session, item_id, patch)
    logger.info("Updated item %d: %s", item.id, ", ".join(sorted(patch)))

    entry = UndoEntry(
        type=UndoType.UPDATE_ITEM,
        description=f"Edit {item.name}",
        forward_payload=UndoPayload("update_item", {"item_id": item.id, "patch": patch}),
        inverse_payload=UndoPayload("update_item", {"item_id": item.id, "patch": previous}),
    )
    return ItemUpdate(item_id=item.id, changed=patch, undo_entry=entry)


async def trash_items(session: AsyncSession, item_ids: Sequence[int]) -> MoveResult:
    """
    Soft-delete items by moving them to Trash.

    Raises:
        ReservedItemDeletionError: If any item still backs a reservation.
    """
    ids = sorted(set(item_ids))
    if not ids:
        raise ValidationFailedError("No items to delete")

    previous = await set_item_folders(session, dict.fromkeys(ids, TRASH))
    logger.info("Moved %d items to %s", len(ids), TRASH)

    if len(ids) == 1:
        undo_type = UndoType.DELETE_ITEM
        description = "Delete item"
    else:
        undo_type = UndoType.BULK_DELETE
        description = f"Delete {len(ids)} items"

    entry = UndoEntry(
        type=undo_type,
        description=description,
        forward_payload=UndoPayload("set_item_folders", {"folders": dict.fromkeys(ids, TRASH)}),
        inverse_payload=UndoPayload("set_item_folders", {"folders": previous}),
    )
    return MoveResult(item_ids=ids, folder=TRASH, undo_entry=entry)


async def restore_item(
    session: AsyncSession, item_id: int, folder: str | None = None
) -> MoveResult:
    """Move an item out of Trash, into Unsorted unless a folder is given."""
    item = await store.get_item_for_update(session, item_id)
    if item.folder != TRASH:
        raise ValidationFailedError(f"Item {item_id} is not in Trash")

    target = await _storage_folder(session, folder)
    await set_item_folders(session, {item_id: target})
    logger.info("Restored item %d to %r", item_id, target)

    entry = UndoEntry(
        type=UndoType.RESTORE_ITEM,
        description=f'Restore {item.name} to "{target}"',
        forward_payload=UndoPayload("set_item_folders", {"folders": {item_id: target}}),
        inverse_payload=UndoPayload("set_item_folders", {"folders": {item_id: TRASH}}),
    )
    return MoveResult(item_ids=[item_id], folder=target, undo_entry=entry)


async def empty_trash(session: AsyncSession) -> int:
    """Permanently delete everything in Trash. Not undoable."""
    deleted = await store.delete_trashed_items(session)
    logger.info("Emptied trash: %d items deleted", deleted)
    return deleted


async def delete_item_permanently(session: AsyncSession, item_id: int) -> None:
    """Hard delete. Not undoable."""
    await store.delete_item(session, item_id)
    logger.info("Deleted item %d", item_id)
