"""
Folder names, lifecycle and moves of named containers.

"Unsorted" and "Trash" are implicit: they exist without a folder row.
"Uncategorized" is accepted as the legacy spelling of Unsorted, and
"All" / "All Cards" are views, never folders.

INVARIANTS:
- No two folders share a lower-cased name
- No folder has a reserved name
- Rename and delete move the affected items in the same transaction
- An item with reserved copies never lands in Trash

Every function expects to run inside one `transaction()` and returns the
undo entry the caller records after commit.
"""

import logging
from collections.abc import Sequence
from dataclasses import replace

from sqlalchemy.ext.asyncio import AsyncSession

from manastash.db.operations import (
    find_items,
    get_folder,
    item_counts_by_folder,
    items_in_folder_for_update,
    list_folders,
    lock_items,
)
from manastash.models.db import FolderDB, utcnow
from manastash.models.failure import (
    DuplicateFolderError,
    InvalidInputError,
    NotFoundError,
    ReservedFolderNameError,
    ReservedItemDeletionError,
)
from manastash.models.inventory import (
    TRASH,
    UNSORTED,
    UNSORTED_ALIASES,
    VIEW_NAMES,
    FolderChange,
    FolderListing,
    ItemFilter,
    MoveResult,
    is_reserved_folder_name,
)
from manastash.models.undo import UndoEntry, UndoPayload, UndoType

logger = logging.getLogger(__name__)


def normalize_folder_name(name: str) -> str:
    """Trim a folder name, rejecting empty ones."""
    cleaned = (name or "").strip()
    if not cleaned:
        raise InvalidInputError("Folder name must not be empty")
    return cleaned


async def resolve_folder(session: AsyncSession, name: str) -> str:
    """
    Map a user-supplied folder name to the name stored on items.

    Raises:
        ReservedFolderNameError: For view names ("All", "All Cards").
        NotFoundError: If no such user folder exists.
    """
    cleaned = normalize_folder_name(name)
    lowered = cleaned.lower()

    if lowered in UNSORTED_ALIASES:
        return UNSORTED
    if lowered == TRASH.lower():
        return TRASH
    if lowered in VIEW_NAMES:
        raise ReservedFolderNameError(cleaned)

    folder = await get_folder(session, cleaned)
    if folder is None:
        raise NotFoundError("Folder", cleaned)
    return folder.name


async def _require_user_folder(session: AsyncSession, name: str) -> FolderDB:
    cleaned = normalize_folder_name(name)
    if is_reserved_folder_name(cleaned):
        raise ReservedFolderNameError(cleaned)
    folder = await get_folder(session, cleaned)
    if folder is None:
        raise NotFoundError("Folder", cleaned)
    return folder


async def _check_new_name(session: AsyncSession, name: str, current: FolderDB | None = None) -> str:
    cleaned = normalize_folder_name(name)
    if is_reserved_folder_name(cleaned):
        logger.warning("Refused reserved folder name %r", cleaned)
        raise ReservedFolderNameError(cleaned)

    existing = await get_folder(session, cleaned)
    if existing is not None and existing is not current:
        logger.warning("Refused duplicate folder name %r", cleaned)
        raise DuplicateFolderError(cleaned)
    return cleaned


# =============================================================================
# LIFECYCLE
# =============================================================================


async def create_folder(
    session: AsyncSession, name: str, description: str | None = None
) -> FolderChange:
    """
    Create a user folder.

    Raises:
        ReservedFolderNameError: If the name is reserved (case-insensitive).
        DuplicateFolderError: If a folder with that name already exists.
    """
    cleaned = await _check_new_name(session, name)

    session.add(FolderDB(name=cleaned, description=description))
    await session.flush()
    logger.info("Created folder %r", cleaned)

    entry = UndoEntry(
        type=UndoType.FOLDER_CREATE,
        description=f'Create folder "{cleaned}"',
        forward_payload=UndoPayload(
            "create_folder", {"name": cleaned, "description": description}
        ),
        inverse_payload=UndoPayload("delete_folder", {"name": cleaned}),
    )
    return FolderChange(name=cleaned, undo_entry=entry)


async def rename_folder(session: AsyncSession, old_name: str, new_name: str) -> FolderChange:
    """
    Rename a user folder and repoint every item stored in it.

    A change of case only is allowed.
    """
    folder = await _require_user_folder(session, old_name)
    previous = folder.name
    cleaned = await _check_new_name(session, new_name, current=folder)

    items = await items_in_folder_for_update(session, previous)
    for item in items:
        item.folder = cleaned
        item.last_modified = utcnow()

    folder.name = cleaned
    await session.flush()
    logger.info("Renamed folder %r to %r (%d items)", previous, cleaned, len(items))

    entry = UndoEntry(
        type=UndoType.FOLDER_RENAME,
        description=f'Rename folder "{previous}" to "{cleaned}"',
        forward_payload=UndoPayload("rename_folder", {"old_name": previous, "new_name": cleaned}),
        inverse_payload=UndoPayload("rename_folder", {"old_name": cleaned, "new_name": previous}),
    )
    return FolderChange(name=cleaned, undo_entry=entry, moved_item_ids=[i.id for i in items])


async def delete_folder(session: AsyncSession, name: str) -> FolderChange:
    """
    Delete a user folder. Items stored in it move to Unsorted.
    """
    folder = await _require_user_folder(session, name)
    folder_name = folder.name
    description = folder.description

    items = await items_in_folder_for_update(session, folder_name)
    for item in items:
        item.folder = UNSORTED
        item.last_modified = utcnow()

    await session.delete(folder)
    await session.flush()
    moved = [item.id for item in items]
    logger.info("Deleted folder %r, moved %d items to %s", folder_name, len(moved), UNSORTED)

    entry = UndoEntry(
        type=UndoType.FOLDER_DELETE,
        description=f'Delete folder "{folder_name}"',
        forward_payload=UndoPayload("delete_folder", {"name": folder_name}),
        inverse_payload=UndoPayload(
            "restore_folder",
            {"name": folder_name, "description": description, "item_ids": moved},
        ),
    )
    return FolderChange(name=folder_name, undo_entry=entry, moved_item_ids=moved)


async def restore_folder(
    session: AsyncSession,
    name: str,
    description: str | None = None,
    item_ids: Sequence[int] = (),
) -> None:
    """Recreate a deleted folder and move its former items back into it."""
    change = await create_folder(session, name, description)
    if item_ids:
        await set_item_folders(session, {item_id: change.name for item_id in item_ids})


async def list_folder_listings(session: AsyncSession) -> list[FolderListing]:
    """
    User folders sorted by name, plus Unsorted when any item sits there.

    Trash is never listed.
    """
    counts = await item_counts_by_folder(session)
    listings = [
        FolderListing(
            name=folder.name,
            description=folder.description,
            created_at=folder.created_at,
            item_count=counts.get(folder.name, 0),
        )
        for folder in await list_folders(session)
    ]

    unsorted_count = counts.get(UNSORTED, 0)
    if unsorted_count:
        listings.insert(0, FolderListing(name=UNSORTED, item_count=unsorted_count, implicit=True))
    return listings


# =============================================================================
# MOVES
# =============================================================================


async def set_item_folders(session: AsyncSession, folders: dict[int, str]) -> dict[int, str]:
    """
    Put each item into the given folder.

    Returns:
        The folder each item was in before the move.
    """
    resolved: dict[str, str] = {}
    for target in set(folders.values()):
        resolved[target] = await resolve_folder(session, target)

    items = await lock_items(session, [int(item_id) for item_id in folders])
    targets = {int(item_id): resolved[target] for item_id, target in folders.items()}

    previous: dict[int, str] = {}
    for item in items:
        target = targets[item.id]
        if target == TRASH and item.reserved_quantity > 0:
            raise ReservedItemDeletionError(item.id, item.reserved_quantity)
        previous[item.id] = item.folder
        if item.folder != target:
            item.folder = target
            item.last_modified = utcnow()

    await session.flush()
    return previous


async def move_items(session: AsyncSession, item_ids: Sequence[int], folder: str) -> MoveResult:
    """
    Move one or more items into a folder.

    One item yields a MOVE_TO_FOLDER undo entry, several a BULK_MOVE.
    """
    ids = sorted(set(item_ids))
    if not ids:
        raise InvalidInputError("No items to move")

    target = await resolve_folder(session, folder)
    previous = await set_item_folders(session, dict.fromkeys(ids, target))
    logger.info("Moved %d items to %r", len(ids), target)

    if len(ids) == 1:
        undo_type = UndoType.MOVE_TO_FOLDER
        description = f'Move item to "{target}"'
    else:
        undo_type = UndoType.BULK_MOVE
        description = f'Move {len(ids)} items to "{target}"'

    entry = UndoEntry(
        type=undo_type,
        description=description,
        forward_payload=UndoPayload("set_item_folders", {"folders": dict.fromkeys(ids, target)}),
        inverse_payload=UndoPayload("set_item_folders", {"folders": previous}),
    )
    return MoveResult(item_ids=ids, folder=target, undo_entry=entry)


async def move_by_name(
    session: AsyncSession, card_name: str, folder: str, from_folder: str | None = None
) -> MoveResult:
    """
    Move every copy of a card, optionally only those in one folder.

    Raises:
        NotFoundError: If no matching items exist.
    """
    source = await resolve_folder(session, from_folder) if from_folder else None
    items = await find_items(session, ItemFilter(name=card_name, folder=source))
    if not items:
        raise NotFoundError("Card", card_name)

    result = await move_items(session, [item.id for item in items], folder)
    if result.undo_entry is not None:
        result.undo_entry = replace(
            result.undo_entry, description=f'Move {card_name} to "{result.folder}"'
        )
    return result
