"""
Failure classification for the collection engine.

Every failure the engine knows how to explain is a KnownError subclass.
The HTTP layer converts them into a JSON error body with the status code
carried by the exception, so routers never have to translate them.

Status mapping:
- 400: ReservedFolderNameError, InvalidInputError
- 404: NotFoundError
- 409: InsufficientInventoryError, ReservedItemDeletionError, DuplicateFolderError,
       DuplicateGroupMemberError
- 422: ValidationFailedError
- 500: InvariantViolationError, TransientError
- 503: ServiceUnavailableError, ExternalAPIError
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class FailureKind(str, Enum):
    """Classification of failure types."""

    # Input validation failures
    INVALID_INPUT = "invalid_input"
    VALIDATION_FAILED = "validation_failed"

    # Resource failures
    NOT_FOUND = "not_found"

    # Inventory constraints
    INSUFFICIENT_INVENTORY = "insufficient_inventory"
    RESERVED_ITEM_DELETION = "reserved_item_deletion"

    # Folder constraints
    RESERVED_NAME = "reserved_name"
    DUPLICATE = "duplicate"

    # Service failures
    SERVICE_UNAVAILABLE = "service_unavailable"
    EXTERNAL_API_ERROR = "external_api_error"
    TRANSIENT = "transient"

    # Internal errors
    INVARIANT_VIOLATION = "invariant_violation"


class FailureDetail(BaseModel):
    """Detailed information about a failure."""

    kind: FailureKind = Field(
        ...,
        description="Classification of the failure",
    )
    message: str = Field(
        ...,
        description="User-appropriate explanation of what went wrong",
    )
    detail: str | None = Field(
        default=None,
        description="Additional technical detail (optional)",
    )
    suggestion: str | None = Field(
        default=None,
        description="Suggested action for the user",
    )


class KnownError(Exception):
    """
    Base class for exceptions that represent known, explainable failures.

    Subclass this for errors where the system knows exactly what went wrong.
    """

    def __init__(
        self,
        kind: FailureKind,
        message: str,
        detail: str | None = None,
        suggestion: str | None = None,
        status_code: int = 400,
    ):
        self.kind = kind
        self.message = message
        self.detail = detail
        self.suggestion = suggestion
        self.status_code = status_code
        super().__init__(message)

    def to_detail(self) -> FailureDetail:
        """Convert to a FailureDetail."""
        return FailureDetail(
            kind=self.kind,
            message=self.message,
            detail=self.detail,
            suggestion=self.suggestion,
        )

    def extra_payload(self) -> dict[str, Any]:
        """Additional top-level fields for the error body."""
        return {}

    def to_payload(self) -> dict[str, Any]:
        """JSON body returned to HTTP clients."""
        payload: dict[str, Any] = {"error": self.to_detail().model_dump(mode="json")}
        payload.update(self.extra_payload())
        return payload


class InvalidInputError(KnownError):
    """Malformed request input (empty names, non-positive quantities)."""

    def __init__(self, message: str, detail: str | None = None):
        super().__init__(
            kind=FailureKind.INVALID_INPUT,
            message=message,
            detail=detail,
            status_code=400,
        )


class ValidationFailedError(KnownError):
    """Well-formed input that violates a semantic rule."""

    def __init__(self, message: str, detail: str | None = None, suggestion: str | None = None):
        super().__init__(
            kind=FailureKind.VALIDATION_FAILED,
            message=message,
            detail=detail,
            suggestion=suggestion,
            status_code=422,
        )


class NotFoundError(KnownError):
    """A referenced entity does not exist."""

    def __init__(self, entity: str, identifier: object):
        self.entity = entity
        self.identifier = identifier
        super().__init__(
            kind=FailureKind.NOT_FOUND,
            message=f"{entity} '{identifier}' not found",
            status_code=404,
        )


class InsufficientInventoryError(KnownError):
    """Not enough unreserved copies to satisfy a reservation."""

    def __init__(self, required_count: int, available_count: int, card_name: str | None = None):
        self.required_count = required_count
        self.available_count = available_count
        self.card_name = card_name
        subject = f"'{card_name}'" if card_name else "this item"
        super().__init__(
            kind=FailureKind.INSUFFICIENT_INVENTORY,
            message=(
                f"Not enough available copies of {subject}: "
                f"requested {required_count}, available {available_count}"
            ),
            suggestion="Release copies from another deck or allow a partial reservation.",
            status_code=409,
        )

    def extra_payload(self) -> dict[str, Any]:
        return {
            "requiredCount": self.required_count,
            "availableCount": self.available_count,
        }


class ReservedItemDeletionError(KnownError):
    """Attempt to delete or trash an item that still backs reservations."""

    def __init__(self, item_id: int, reserved_quantity: int):
        self.item_id = item_id
        self.reserved_quantity = reserved_quantity
        copies = "copy" if reserved_quantity == 1 else "copies"
        super().__init__(
            kind=FailureKind.RESERVED_ITEM_DELETION,
            message=f"Inventory item {item_id} has {reserved_quantity} reserved {copies}",
            suggestion="Remove the item from its decks first.",
            status_code=409,
        )


class ReservedFolderNameError(KnownError):
    """Folder name collides with a built-in folder or view."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(
            kind=FailureKind.RESERVED_NAME,
            message=f'"{name}" is a reserved folder name',
            suggestion="Choose a different folder name.",
            status_code=400,
        )


class DuplicateFolderError(KnownError):
    """A folder with the same (case-insensitive) name already exists."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(
            kind=FailureKind.DUPLICATE,
            message=f'Folder "{name}" already exists',
            status_code=409,
        )


class DuplicateGroupMemberError(KnownError):
    """A card already belongs to a substitution group."""

    def __init__(self, scryfall_id: str, group_id: int):
        self.scryfall_id = scryfall_id
        self.group_id = group_id
        super().__init__(
            kind=FailureKind.DUPLICATE,
            message=f"Card {scryfall_id} already belongs to substitution group {group_id}",
            suggestion="Remove it from that group first.",
            status_code=409,
        )


class InvariantViolationError(KnownError):
    """
    Internal bookkeeping is inconsistent.

    This is a programmer error: it is logged and surfaced as 500, never swallowed.
    """

    def __init__(self, detail: str):
        super().__init__(
            kind=FailureKind.INVARIANT_VIOLATION,
            message="Inventory bookkeeping is inconsistent; the operation was rolled back.",
            detail=detail,
            status_code=500,
        )


class TransientError(KnownError):
    """Store conflict or I/O failure. Safe to retry."""

    def __init__(self, detail: str | None = None):
        super().__init__(
            kind=FailureKind.TRANSIENT,
            message="The operation could not be completed right now.",
            detail=detail,
            suggestion="Wait a moment and retry.",
            status_code=500,
        )


class ServiceUnavailableError(KnownError):
    """An external collaborator is disabled or unreachable."""

    def __init__(self, message: str, detail: str | None = None):
        super().__init__(
            kind=FailureKind.SERVICE_UNAVAILABLE,
            message=message,
            detail=detail,
            status_code=503,
        )


class ExternalAPIError(KnownError):
    """An external collaborator answered with an error or an unusable reply."""

    def __init__(self, message: str, detail: str | None = None):
        super().__init__(
            kind=FailureKind.EXTERNAL_API_ERROR,
            message=message,
            detail=detail,
            suggestion="Try again in a moment.",
            status_code=503,
        )
