from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from manastash.models.undo import UndoEntry


@dataclass
class DeckCardLine:
    """
    One line of a desired deck composition.

    Attributes:
        name: Card name as written in the decklist
        quantity: Copies wanted
        set_code: Preferred printing (informational)
        collector_number: Preferred collector number (informational)
    """

    name: str
    quantity: int
    set_code: str | None = None
    collector_number: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON columns."""
        return {
            "name": self.name,
            "quantity": self.quantity,
            "set_code": self.set_code,
            "collector_number": self.collector_number,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DeckCardLine":
        return cls(
            name=str(data["name"]),
            quantity=int(data.get("quantity") or 1),
            set_code=data.get("set_code") or None,
            collector_number=data.get("collector_number") or None,
        )


def total_quantity(lines: list[DeckCardLine]) -> int:
    """Total copies across all lines."""
    return sum(line.quantity for line in lines)


class DeckState(str, Enum):
    """Lifecycle state of a deck instance, derived from its reservations."""

    DRAFT = "Draft"
    PARTIAL = "Partial"
    COMPLETE = "Complete"


def deck_state(reserved: int, desired: int) -> DeckState:
    """Classify a deck instance by reserved vs desired copies."""
    if reserved <= 0:
        return DeckState.DRAFT
    if reserved >= desired:
        return DeckState.COMPLETE
    return DeckState.PARTIAL


@dataclass
class UnmetLine:
    """Copies of a card that could not be reserved."""

    name: str
    shortfall: int


@dataclass
class AllocationResult:
    """Outcome of reoptimize or auto_fill."""

    deck_id: int
    reserved_count: int
    unmet: list[UnmetLine] = field(default_factory=list)

    @property
    def missing_count(self) -> int:
        return sum(line.shortfall for line in self.unmet)


@dataclass
class AddCardResult:
    """Outcome of add_card_to_deck."""

    deck_id: int
    inventory_item_id: int
    reservation_id: int
    requested_qty: int
    reserved_qty: int
    undo_entry: UndoEntry | None = None

    @property
    def downscaled(self) -> bool:
        return self.reserved_qty < self.requested_qty


@dataclass
class RemoveCardResult:
    """Outcome of remove_card_from_deck."""

    deck_id: int
    inventory_item_id: int
    removed_qty: int
    remaining_qty: int
    undo_entry: UndoEntry | None = None


@dataclass
class ReleaseResult:
    """Outcome of release_deck."""

    deck_id: int
    released_count: int
    item_ids: list[int] = field(default_factory=list)


@dataclass
class MoveCardResult:
    """Outcome of moving a reservation to another deck or to a folder."""

    inventory_item_id: int
    quantity: int
    source_deck_id: int
    target_deck_id: int | None = None
    target_folder: str | None = None
    undo_entry: UndoEntry | None = None


@dataclass
class ReservationView:
    """A reservation joined with the item it claims."""

    reservation_id: int
    inventory_item_id: int
    name: str
    set_code: str
    finish: str
    quality: str
    folder: str
    quantity: int
    unit_price: Decimal | None

    @property
    def line_cost(self) -> Decimal:
        return (self.unit_price or Decimal(0)) * self.quantity


@dataclass
class DeckSummary:
    """A deck instance with its reservation totals."""

    id: int
    name: str
    template_id: int | None
    created_at: datetime
    reserved_count: int
    desired_count: int
    total_cost: Decimal

    @property
    def state(self) -> DeckState:
        return deck_state(self.reserved_count, self.desired_count)


@dataclass
class DeckDetails:
    """Everything the deck view needs: snapshot, reservations, cost and gaps."""

    summary: DeckSummary
    cards: list[DeckCardLine]
    reservations: list[ReservationView] = field(default_factory=list)
    missing: list[UnmetLine] = field(default_factory=list)
