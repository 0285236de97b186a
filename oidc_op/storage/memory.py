import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Optional, Set

from ..models import AuthorizationCode, AuthorizationRequest, AuthRequestStatus, Token, TokenType
from .interface import CodeRedemption, Rotation, StorageAdapter, StorageTimeoutError

logger = logging.getLogger(__name__)


class InMemoryStorage(StorageAdapter):
    """
    Reference storage adapter backed by dictionaries.

    One lock per keyspace; operations that span keyspaces take the locks in
    a fixed order (codes, requests, tokens). Records are copied in and out so
    callers never share mutable state with the store.
    """

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout
        self._requests: Dict[str, AuthorizationRequest] = {}
        self._codes: Dict[str, AuthorizationCode] = {}
        self._tokens: Dict[str, Token] = {}
        self._revoked_families: Set[str] = set()
        self._assertions: Dict[str, datetime] = {}

        self._requests_lock = threading.Lock()
        self._codes_lock = threading.Lock()
        self._tokens_lock = threading.Lock()
        self._assertions_lock = threading.Lock()

    @contextmanager
    def _locked(self, lock: threading.Lock):
        if not lock.acquire(timeout=self.timeout):
            raise StorageTimeoutError(f"storage lock not acquired within {self.timeout}s")
        try:
            yield
        finally:
            lock.release()

    # Authorization requests

    def create_auth_request(self, request: AuthorizationRequest) -> AuthorizationRequest:
        with self._locked(self._requests_lock):
            self._requests[request.id] = request.model_copy(deep=True)
        return request

    def get_auth_request(self, request_id: str) -> Optional[AuthorizationRequest]:
        with self._locked(self._requests_lock):
            stored = self._requests.get(request_id)
            return stored.model_copy(deep=True) if stored else None

    def complete_auth_request(self, request_id: str, subject: str, auth_time: datetime, now: datetime,
                              code: str, code_expires_at: datetime) -> Optional[AuthorizationRequest]:
        with self._locked(self._codes_lock), self._locked(self._requests_lock):
            stored = self._requests.get(request_id)
            if stored is None or stored.status != AuthRequestStatus.PENDING or now >= stored.expires_at:
                return None
            if code in self._codes:
                raise ValueError("authorization code already exists")

            updated = stored.model_copy(update={
                "subject": subject,
                "auth_time": auth_time,
                "status": AuthRequestStatus.AUTHENTICATED,
            })
            self._codes[code] = AuthorizationCode(
                code=code,
                authorization_request_id=request_id,
                client_id=stored.client_id,
                expires_at=code_expires_at,
            )
            self._requests[request_id] = updated
            return updated.model_copy(deep=True)

    def delete_auth_request(self, request_id: str) -> Optional[AuthorizationRequest]:
        with self._locked(self._requests_lock):
            return self._requests.pop(request_id, None)

    # Authorization codes

    def issue_code(self, code: AuthorizationCode) -> AuthorizationCode:
        with self._locked(self._codes_lock):
            if code.code in self._codes:
                raise ValueError("authorization code already exists")
            self._codes[code.code] = code.model_copy()
        return code

    def get_code(self, code: str) -> Optional[AuthorizationCode]:
        with self._locked(self._codes_lock):
            stored = self._codes.get(code)
            return stored.model_copy() if stored else None

    def redeem_code(self, code: str, now: datetime) -> CodeRedemption:
        with self._locked(self._codes_lock):
            stored = self._codes.get(code)
            if stored is None:
                return CodeRedemption(None, False, "not_found")

            with self._locked(self._requests_lock):
                request = self._requests.get(stored.authorization_request_id)
                if stored.used:
                    return CodeRedemption(request.model_copy(deep=True) if request else None, False, "used")
                if now >= stored.expires_at:
                    return CodeRedemption(request.model_copy(deep=True) if request else None, False, "expired")
                if request is None or request.status != AuthRequestStatus.AUTHENTICATED:
                    return CodeRedemption(None, False, "not_found")

                self._codes[code] = stored.model_copy(update={"used": True})
                consumed = request.model_copy(update={"status": AuthRequestStatus.CONSUMED})
                self._requests[request.id] = consumed
                return CodeRedemption(consumed.model_copy(deep=True), True)

    # Tokens

    def store_token(self, token: Token) -> Token:
        with self._locked(self._tokens_lock):
            if token.family_id in self._revoked_families:
                token = token.model_copy(update={"revoked": True})
            self._tokens[token.value] = token.model_copy(deep=True)
        return token

    def get_token(self, value: str) -> Optional[Token]:
        with self._locked(self._tokens_lock):
            stored = self._tokens.get(value)
            return stored.model_copy(deep=True) if stored else None

    def rotate_refresh_token(self, old_value: str, new_token: Token, now: datetime) -> Rotation:
        with self._locked(self._tokens_lock):
            old = self._tokens.get(old_value)
            if old is None or old.token_type != TokenType.REFRESH:
                return Rotation(None, False, "not_found")
            if old.revoked or old.family_id in self._revoked_families:
                return Rotation(old.model_copy(deep=True), False, "revoked")
            if now >= old.expires_at:
                return Rotation(old.model_copy(deep=True), False, "expired")

            self._tokens[old_value] = old.model_copy(update={"revoked": True})
            self._tokens[new_token.value] = new_token.model_copy(deep=True)
            return Rotation(new_token, True)

    def revoke_token(self, value: str) -> bool:
        with self._locked(self._tokens_lock):
            stored = self._tokens.get(value)
            if stored is None:
                return False
            self._tokens[value] = stored.model_copy(update={"revoked": True})
            return True

    def revoke_token_family(self, family_id: str) -> int:
        with self._locked(self._tokens_lock):
            self._revoked_families.add(family_id)
            count = 0
            for value, token in self._tokens.items():
                if token.family_id == family_id and not token.revoked:
                    self._tokens[value] = token.model_copy(update={"revoked": True})
                    count += 1
        logger.warning(f"Revoked token family {family_id} ({count} tokens)")
        return count

    def is_family_revoked(self, family_id: str) -> bool:
        with self._locked(self._tokens_lock):
            return family_id in self._revoked_families

    def record_assertion_jti(self, client_id: str, jti: str, expires_at: datetime) -> bool:
        key = f"{client_id}:{jti}"
        with self._locked(self._assertions_lock):
            if key in self._assertions:
                return False
            self._assertions[key] = expires_at
            return True

    def cleanup_expired(self, now: datetime) -> int:
        cleaned_count = 0

        with self._locked(self._codes_lock), self._locked(self._requests_lock):
            for code in [c for c, data in self._codes.items() if now >= data.expires_at]:
                del self._codes[code]
                cleaned_count += 1

            referenced = {data.authorization_request_id for data in self._codes.values()}
            expired = [
                rid for rid, req in self._requests.items()
                if now >= req.expires_at and rid not in referenced
            ]
            for rid in expired:
                del self._requests[rid]
                cleaned_count += 1

        with self._locked(self._tokens_lock):
            for value in [v for v, token in self._tokens.items() if now >= token.expires_at]:
                del self._tokens[value]
                cleaned_count += 1

        with self._locked(self._assertions_lock):
            for key in [k for k, exp in self._assertions.items() if now >= exp]:
                del self._assertions[key]
                cleaned_count += 1

        if cleaned_count > 0:
            logger.info(f"Cleaned up {cleaned_count} expired records")
        return cleaned_count

    def close(self):
        pass
