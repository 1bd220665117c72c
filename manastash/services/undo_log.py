"""
Per-session undo/redo over declarative payloads.

Each session keeps a bounded `past` stack and a `future` stack. Undo and
redo re-run payloads through the same engine and folder functions the
original request used, each inside its own transaction, so the inventory
invariants hold after every step.

INVARIANTS:
- Entries are recorded only after the operation committed
- record() clears the redo stack
- A failed undo/redo leaves both stacks unchanged
"""

import asyncio
import logging
from collections import OrderedDict, deque
from collections.abc import Awaitable, Callable
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from manastash.config import settings
from manastash.db.database import transaction
from manastash.models.failure import InvariantViolationError
from manastash.models.undo import UndoEntry, UndoOutcome, UndoPayload
from manastash.services import folder_service, inventory_service, reservation_engine

logger = logging.getLogger(__name__)

DEFAULT_SESSION_ID = "default"

PayloadHandler = Callable[..., Awaitable[Any]]

_HANDLERS: dict[str, PayloadHandler] = {
    "set_item_folders": folder_service.set_item_folders,
    "update_item": inventory_service.update_item,
    "add_card_to_deck": reservation_engine.add_card_to_deck,
    "remove_card_from_deck": reservation_engine.remove_item_from_deck,
    "create_folder": folder_service.create_folder,
    "delete_folder": folder_service.delete_folder,
    "restore_folder": folder_service.restore_folder,
    "rename_folder": folder_service.rename_folder,
}


async def execute_payload(session: AsyncSession, payload: UndoPayload) -> None:
    """
    Run a payload against the engine. Batches run their steps in order.

    Does not commit; the caller owns the transaction.
    """
    if payload.op == "batch":
        for step in payload.args.get("steps", []):
            await execute_payload(session, UndoPayload(op=step["op"], args=step["args"]))
        return

    handler = _HANDLERS.get(payload.op)
    if handler is None:
        raise InvariantViolationError(f"Unknown undo operation {payload.op!r}")
    await handler(session, **payload.args)


class UndoLog:
    """Undo/redo history of one session."""

    def __init__(self, limit: int = 50):
        self.limit = limit
        self._past: deque[UndoEntry] = deque(maxlen=limit)
        self._future: deque[UndoEntry] = deque(maxlen=limit)
        self._lock = asyncio.Lock()

    @property
    def can_undo(self) -> bool:
        return bool(self._past)

    @property
    def can_redo(self) -> bool:
        return bool(self._future)

    @property
    def past(self) -> list[UndoEntry]:
        """Undoable entries, oldest first."""
        return list(self._past)

    @property
    def future(self) -> list[UndoEntry]:
        """Redoable entries, the next one to redo last."""
        return list(self._future)

    def record(self, entry: UndoEntry | None) -> None:
        """Push a committed operation. The oldest entry falls off past the limit."""
        if entry is None:
            return
        self._past.append(entry)
        self._future.clear()
        logger.debug("Recorded %s: %s", entry.type.value, entry.description)

    def clear(self) -> None:
        self._past.clear()
        self._future.clear()

    async def undo(self, session: AsyncSession) -> UndoOutcome:
        """Reverse the most recent operation."""
        async with self._lock:
            if not self._past:
                return UndoOutcome(performed=False)

            entry = self._past[-1]
            async with transaction(session):
                await execute_payload(session, entry.inverse_payload)

            self._past.pop()
            self._future.append(entry)
            logger.info("Undid %s", entry.description)
            return UndoOutcome(performed=True, description=entry.description)

    async def redo(self, session: AsyncSession) -> UndoOutcome:
        """Re-apply the most recently undone operation."""
        async with self._lock:
            if not self._future:
                return UndoOutcome(performed=False)

            entry = self._future[-1]
            async with transaction(session):
                await execute_payload(session, entry.forward_payload)

            self._future.pop()
            self._past.append(entry)
            logger.info("Redid %s", entry.description)
            return UndoOutcome(performed=True, description=entry.description)


class UndoRegistry:
    """
    Process-local map of session id to undo log.

    Holds at most `max_sessions` logs; the least recently used one is
    dropped when a new session would exceed that.
    """

    def __init__(self, limit: int = 50, max_sessions: int = 1000):
        self.limit = limit
        self.max_sessions = max_sessions
        self._logs: OrderedDict[str, UndoLog] = OrderedDict()

    def get(self, session_id: str = DEFAULT_SESSION_ID) -> UndoLog:
        log = self._logs.get(session_id)
        if log is not None:
            self._logs.move_to_end(session_id)
            return log

        log = UndoLog(self.limit)
        self._logs[session_id] = log
        while len(self._logs) > self.max_sessions:
            evicted, _ = self._logs.popitem(last=False)
            logger.info("Dropped undo history of idle session %s", evicted)
        return log

    def __len__(self) -> int:
        return len(self._logs)

    def drop(self, session_id: str) -> None:
        self._logs.pop(session_id, None)

    def clear(self) -> None:
        self._logs.clear()


_registry = UndoRegistry(settings.undo_history_limit, settings.undo_max_sessions)


def get_undo_registry() -> UndoRegistry:
    return _registry


def reset_undo_registry() -> None:
    """Forget every session's history (for testing)."""
    _registry.clear()
