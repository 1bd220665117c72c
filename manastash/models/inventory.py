"""
Inventory domain values.

Folder constants, the fungibility key, and the query filter used by the
catalog store.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Protocol

from manastash.models.undo import UndoEntry

# Implicit folders exist without a row in the folders table.
UNSORTED = "Unsorted"
TRASH = "Trash"
IMPLICIT_FOLDERS = frozenset({UNSORTED, TRASH})

# Names that can never be created as user folders (compared lower-case).
# "Uncategorized" is the legacy spelling of Unsorted; "All"/"All Cards" are views.
RESERVED_FOLDER_NAMES = frozenset({"unsorted", "uncategorized", "all", "all cards", "trash"})
UNSORTED_ALIASES = frozenset({"unsorted", "uncategorized"})
VIEW_NAMES = frozenset({"all", "all cards"})

FINISHES = ("normal", "foil")
QUALITIES = ("NM", "LP", "MP", "HP", "DMG")


def is_reserved_folder_name(name: str) -> bool:
    """Check a folder name against the reserved set (case-insensitive)."""
    return name.strip().lower() in RESERVED_FOLDER_NAMES


class FungibleItem(Protocol):
    name: str
    set_code: str
    finish: str
    quality: str


def fungibility_key(item: FungibleItem) -> tuple[str, str, str, str]:
    """
    Equivalence class of interchangeable copies.

    Collector number is informational and deliberately excluded.
    """
    return (item.name.strip().lower(), item.set_code, item.finish, item.quality)


@dataclass
class ItemFilter:
    """
    Criteria for find_items.

    Attributes:
        name: Exact card name, compared case-insensitively
        folder: Folder name (exact)
        finish: normal or foil
        quality: NM, LP, MP, HP or DMG
        available_gte: Minimum unreserved copies (quantity - reserved_quantity)
        include_trash: Include soft-deleted items when no folder is given
    """

    name: str | None = None
    folder: str | None = None
    finish: str | None = None
    quality: str | None = None
    available_gte: int | None = None
    include_trash: bool = False


@dataclass
class NewItem:
    """Fields supplied by the caller when adding copies to the inventory."""

    name: str
    set_code: str = ""
    collector_number: str | None = None
    finish: str = "normal"
    quality: str = "NM"
    quantity: int = 1
    purchase_price: Decimal | None = None
    purchase_date: date | None = None
    image_url: str | None = None
    scryfall_id: str | None = None
    folder: str | None = None


@dataclass
class FolderListing:
    """A folder as shown in the folder list."""

    name: str
    item_count: int
    description: str | None = None
    created_at: datetime | None = None
    implicit: bool = False


@dataclass
class FolderChange:
    """Outcome of a folder create, rename or delete."""

    name: str
    undo_entry: UndoEntry
    moved_item_ids: list[int] = field(default_factory=list)


@dataclass
class MoveResult:
    """Outcome of moving items between folders (including Trash)."""

    item_ids: list[int]
    folder: str
    undo_entry: UndoEntry | None = None


@dataclass
class ItemUpdate:
    """Outcome of a partial item update."""

    item_id: int
    changed: dict[str, Any]
    undo_entry: UndoEntry | None = None
