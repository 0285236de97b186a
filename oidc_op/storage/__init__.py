"""
Storage adapters for the provider core

``create_storage`` builds the configured adapter and wraps it with bounded
retries, which is what the protocol components talk to.
"""

import logging

from ..config import StorageConfig
from .interface import (
    CodeRedemption,
    Rotation,
    StorageAdapter,
    StorageTimeoutError,
    StorageUnavailableError,
)
from .memory import InMemoryStorage
from .retry import RetryingStorage
from .sqlite import SQLiteStorage

logger = logging.getLogger(__name__)


def create_storage(config: StorageConfig) -> RetryingStorage:
    """Create storage adapter based on configuration"""
    if config.type == "memory":
        adapter: StorageAdapter = InMemoryStorage(timeout=config.timeout)
    elif config.type == "sqlite":
        if not config.path:
            raise ValueError("sqlite storage requires a path")
        adapter = SQLiteStorage(config.path, timeout=config.timeout)
    else:
        raise ValueError(f"Unsupported storage type: {config.type}")

    logger.info(f"Storage initialized: {config.type}")
    return RetryingStorage(adapter, attempts=config.retry_attempts, backoff=config.retry_backoff)


__all__ = [
    'StorageAdapter',
    'StorageUnavailableError',
    'StorageTimeoutError',
    'CodeRedemption',
    'Rotation',
    'InMemoryStorage',
    'SQLiteStorage',
    'RetryingStorage',
    'create_storage',
]
