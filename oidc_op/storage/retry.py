import functools
import logging
import time

from ..errors import ServerError
from .interface import StorageAdapter, StorageUnavailableError

logger = logging.getLogger(__name__)

_CONTRACT_METHODS = (
    "create_auth_request",
    "get_auth_request",
    "complete_auth_request",
    "delete_auth_request",
    "issue_code",
    "get_code",
    "redeem_code",
    "store_token",
    "store_refresh_token",
    "get_token",
    "rotate_refresh_token",
    "revoke_token",
    "revoke_token_family",
    "is_family_revoked",
    "record_assertion_jti",
    "cleanup_expired",
)


class RetryingStorage:
    """
    Wraps a storage adapter with bounded retries.

    Only ``StorageUnavailableError`` is retried; adapters raise it solely
    when the operation was not applied, so a retry cannot apply a transition
    twice. When every attempt fails the caller gets ``ServerError``.
    """

    def __init__(self, storage: StorageAdapter, attempts: int = 3, backoff: float = 0.05):
        self.storage = storage
        self.attempts = max(1, attempts)
        self.backoff = backoff

        for name in _CONTRACT_METHODS:
            setattr(self, name, self._with_retries(name, getattr(storage, name)))

    def _with_retries(self, name, method):
        @functools.wraps(method)
        def call(*args, **kwargs):
            for attempt in range(1, self.attempts + 1):
                try:
                    return method(*args, **kwargs)
                except StorageUnavailableError as e:
                    logger.warning(f"Storage call {name} failed (attempt {attempt}/{self.attempts}): {e}")
                    if attempt == self.attempts:
                        raise ServerError("storage unavailable") from e
                    time.sleep(self.backoff * attempt)
        return call

    def close(self):
        self.storage.close()
