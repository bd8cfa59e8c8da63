"""Dependency providers for FastAPI routes."""

from functools import lru_cache

from bulk_transfer_engine.application.services import (
    MemoryOptimizedTransferService,
    TransferOrchestrator,
)
from bulk_transfer_engine.bootstrap import TransferServices, build_transfer_services
from bulk_transfer_engine.config import Settings


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return singleton settings."""

    return Settings()


@lru_cache(maxsize=1)
def get_transfer_services() -> TransferServices:
    """Return singleton service graph."""

    return build_transfer_services(get_settings())


def get_transfer_orchestrator() -> TransferOrchestrator:
    """Return the resumable transfer orchestrator."""

    return get_transfer_services().orchestrator


def get_streaming_service() -> MemoryOptimizedTransferService:
    """Return the memory-optimized transfer service."""

    return get_transfer_services().streaming


__all__ = [
    "get_settings",
    "get_streaming_service",
    "get_transfer_orchestrator",
    "get_transfer_services",
]
