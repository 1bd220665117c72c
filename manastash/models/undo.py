"""
Undo log entries.

Payloads are declarative ({op, args}) so that undo and redo re-enter the
same engine and folder operations as the original request did.
"""

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class UndoType(str, Enum):
    """Kinds of reversible operations."""

    DELETE_ITEM = "DELETE_ITEM"
    UPDATE_ITEM = "UPDATE_ITEM"
    MOVE_TO_FOLDER = "MOVE_TO_FOLDER"
    RESTORE_ITEM = "RESTORE_ITEM"
    BULK_DELETE = "BULK_DELETE"
    BULK_MOVE = "BULK_MOVE"
    RESERVATION_ADD = "RESERVATION_ADD"
    RESERVATION_REMOVE = "RESERVATION_REMOVE"
    RESERVATION_MOVE = "RESERVATION_MOVE"
    FOLDER_CREATE = "FOLDER_CREATE"
    FOLDER_DELETE = "FOLDER_DELETE"
    FOLDER_RENAME = "FOLDER_RENAME"


@dataclass(frozen=True)
class UndoPayload:
    """A single operation invocation: op name plus keyword arguments."""

    op: str
    args: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"op": self.op, "args": self.args}


def batch(*steps: UndoPayload) -> UndoPayload:
    """Compose several payloads that must run in one transaction, in order."""
    return UndoPayload(op="batch", args={"steps": [step.to_dict() for step in steps]})


@dataclass(frozen=True)
class UndoEntry:
    """A recorded reversible operation."""

    type: UndoType
    description: str
    forward_payload: UndoPayload
    inverse_payload: UndoPayload
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class UndoOutcome:
    """Result of an undo or redo request."""

    performed: bool
    description: str | None = None
