"""Transfer backend adapters."""

from bulk_transfer_engine.infrastructure.backends.http_transfer_backend import (
    DEFAULT_BASE_URL,
    HttpTransferBackend,
)

__all__ = ["DEFAULT_BASE_URL", "HttpTransferBackend"]
