from manastash.models.autobuy import (
    DEFAULT_IPS_WEIGHTS,
    AccuracyMetrics,
    CardProfitMetrics,
    IPSCandidate,
    IPSScore,
    RunItemSnapshot,
    RunSnapshot,
    RunStatus,
    SaleEvent,
    SellThroughMetrics,
    WeightAdjustment,
)
from manastash.models.deck import (
    AddCardResult,
    AllocationResult,
    DeckCardLine,
    DeckState,
    MoveCardResult,
    ReleaseResult,
    RemoveCardResult,
    UnmetLine,
)
from manastash.models.failure import (
    DuplicateFolderError,
    DuplicateGroupMemberError,
    ExternalAPIError,
    FailureDetail,
    FailureKind,
    InsufficientInventoryError,
    InvalidInputError,
    InvariantViolationError,
    KnownError,
    NotFoundError,
    ReservedFolderNameError,
    ReservedItemDeletionError,
    ServiceUnavailableError,
    TransientError,
    ValidationFailedError,
)
from manastash.models.inventory import TRASH, UNSORTED, ItemFilter, NewItem
from manastash.models.undo import UndoEntry, UndoPayload, UndoType

__all__ = [
    "DEFAULT_IPS_WEIGHTS",
    "TRASH",
    "UNSORTED",
    "AccuracyMetrics",
    "AddCardResult",
    "AllocationResult",
    "CardProfitMetrics",
    "DeckCardLine",
    "DeckState",
    "DuplicateFolderError",
    "DuplicateGroupMemberError",
    "ExternalAPIError",
    "FailureDetail",
    "FailureKind",
    "IPSCandidate",
    "IPSScore",
    "InsufficientInventoryError",
    "InvalidInputError",
    "InvariantViolationError",
    "ItemFilter",
    "KnownError",
    "MoveCardResult",
    "NewItem",
    "NotFoundError",
    "ReleaseResult",
    "RemoveCardResult",
    "ReservedFolderNameError",
    "ReservedItemDeletionError",
    "RunItemSnapshot",
    "RunSnapshot",
    "RunStatus",
    "SaleEvent",
    "SellThroughMetrics",
    "ServiceUnavailableError",
    "TransientError",
    "UndoEntry",
    "UndoPayload",
    "UndoType",
    "UnmetLine",
    "ValidationFailedError",
    "WeightAdjustment",
]
