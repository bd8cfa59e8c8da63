"""Route modules public API."""

from bulk_transfer_engine.api.routes.health import router as health_router
from bulk_transfer_engine.api.routes.transfers import router as transfers_router

__all__ = ["health_router", "transfers_router"]
