"""Domain exceptions for bulk transfer operations."""

from __future__ import annotations

from enum import StrEnum


class BackendErrorCode(StrEnum):
    """Error codes reported by the transfer backend."""

    RATE_LIMIT_EXCEEDED = "RateLimitExceeded"
    SERVER_ERROR = "ServerError"
    SERVICE_UNAVAILABLE = "ServiceUnavailable"
    RESOURCE_NOT_FOUND = "ResourceNotFound"
    PERMISSION_DENIED = "PermissionDenied"
    CONFLICT = "Conflict"
    BAD_REQUEST = "BadRequest"
    TRANSPORT_ERROR = "TransportError"
    UNKNOWN = "Unknown"


class TransferEngineError(Exception):
    """Base class for transfer engine errors."""


class TransferValidationError(TransferEngineError):
    """Raised when request or option validation fails."""


class TransferConflictError(TransferEngineError):
    """Raised when an operation conflicts with a live transfer."""


class TransferNotFoundError(TransferEngineError):
    """Raised when a transfer id is unknown."""


class CheckpointNotFoundError(TransferNotFoundError):
    """Raised when a checkpoint id is unknown to the store."""


class CheckpointStorageError(TransferEngineError):
    """Raised when the checkpoint store cannot read or write a record."""


class CheckpointCorruptedError(CheckpointStorageError):
    """Raised when a stored checkpoint cannot be decoded."""


class EnumerationError(TransferEngineError):
    """Raised when listing the source tree fails."""


class BackendError(TransferEngineError):
    """Raised by transfer backend adapters."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: str | None = None,
        request_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code or BackendErrorCode.UNKNOWN.value
        self.request_id = request_id

    def __str__(self) -> str:
        parts = [self.code]
        if self.status_code is not None:
            parts.append(f"HTTP {self.status_code}")
        if self.request_id:
            parts.append(f"request {self.request_id}")
        return f"{self.message} ({', '.join(parts)})"


class BatchTimeoutError(TransferEngineError):
    """Raised when a batch job does not reach a terminal status in time."""


__all__ = [
    "BackendError",
    "BackendErrorCode",
    "BatchTimeoutError",
    "CheckpointCorruptedError",
    "CheckpointNotFoundError",
    "CheckpointStorageError",
    "EnumerationError",
    "TransferConflictError",
    "TransferEngineError",
    "TransferNotFoundError",
    "TransferValidationError",
]
