from abc import ABC, abstractmethod
from datetime import datetime
from typing import NamedTuple, Optional

from ..models import AuthorizationCode, AuthorizationRequest, Token


class StorageUnavailableError(Exception):
    """Transient storage failure; the operation was not applied"""
    pass


class StorageTimeoutError(StorageUnavailableError):
    """A storage call did not complete within its bound"""
    pass


class CodeRedemption(NamedTuple):
    auth_request: Optional[AuthorizationRequest]
    ok: bool
    reason: Optional[str] = None  # not_found / expired / used


class Rotation(NamedTuple):
    token: Optional[Token]
    ok: bool
    reason: Optional[str] = None  # not_found / expired / revoked


class StorageAdapter(ABC):
    """
    Persistence contract required by the provider core.

    Every state transition is one atomic operation keyed by the request id,
    code or token value. ``redeem_code`` and ``rotate_refresh_token`` are
    compare-and-swap operations and must be linearizable across processes.
    """

    # Authorization requests
    @abstractmethod
    def create_auth_request(self, request: AuthorizationRequest) -> AuthorizationRequest:
        """Persist a new pending authorization request"""
        pass

    @abstractmethod
    def get_auth_request(self, request_id: str) -> Optional[AuthorizationRequest]:
        pass

    @abstractmethod
    def complete_auth_request(self, request_id: str, subject: str, auth_time: datetime, now: datetime,
                              code: str, code_expires_at: datetime) -> Optional[AuthorizationRequest]:
        """
        Move a pending, unexpired request to authenticated and issue its code.

        Both writes happen in one step: either the request is authenticated
        and ``code`` is stored for it, or nothing changes. Returns None if the
        request is missing, expired or not pending. Raises ValueError if
        ``code`` already exists.
        """
        pass

    @abstractmethod
    def delete_auth_request(self, request_id: str) -> Optional[AuthorizationRequest]:
        pass

    # Authorization codes
    @abstractmethod
    def issue_code(self, code: AuthorizationCode) -> AuthorizationCode:
        """Store a code on its own; raises ValueError if it already exists"""
        pass

    @abstractmethod
    def get_code(self, code: str) -> Optional[AuthorizationCode]:
        pass

    @abstractmethod
    def redeem_code(self, code: str, now: datetime) -> CodeRedemption:
        """
        Atomically check and consume a code.

        Marks the code used and its authorization request consumed in one
        step. ``ok`` is False for missing, expired or already-used codes; for
        used codes the request is still returned so its family can be revoked.
        """
        pass

    # Tokens
    @abstractmethod
    def store_token(self, token: Token) -> Token:
        """Persist a token; stored revoked if its family is already revoked"""
        pass

    @abstractmethod
    def get_token(self, value: str) -> Optional[Token]:
        pass

    def store_refresh_token(self, token: Token) -> Token:
        return self.store_token(token)

    @abstractmethod
    def rotate_refresh_token(self, old_value: str, new_token: Token, now: datetime) -> Rotation:
        """
        Atomically revoke ``old_value`` and store ``new_token``.

        Fails without side effects if the old token is missing, expired or
        already revoked. On failure the old record (if any) is returned.
        """
        pass

    @abstractmethod
    def revoke_token(self, value: str) -> bool:
        pass

    @abstractmethod
    def revoke_token_family(self, family_id: str) -> int:
        """Revoke every token of a family and remember the family as revoked"""
        pass

    @abstractmethod
    def is_family_revoked(self, family_id: str) -> bool:
        pass

    # Client assertion replay cache
    @abstractmethod
    def record_assertion_jti(self, client_id: str, jti: str, expires_at: datetime) -> bool:
        """Remember an assertion id; False if it was already seen"""
        pass

    @abstractmethod
    def cleanup_expired(self, now: datetime) -> int:
        """
        Drop expired codes, tokens and replay entries, and expired requests
        in any status that no stored code still points at.
        """
        pass

    @abstractmethod
    def close(self):
        pass
