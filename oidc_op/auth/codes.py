"""
Authorization code issuance and redemption

Codes are single use. Redemption validates everything it can against the
stored records first, then consumes the code with one atomic storage
compare-and-swap; only the caller that wins the swap gets a grant.
"""

import logging
import secrets
from datetime import datetime, timezone, timedelta
from typing import Callable, Optional

from ..config import ProviderConfig
from ..errors import AccessDenied, InvalidGrant, InvalidRequest
from ..models import Grant
from ..security.audit_logger import AuditEventType, SecurityAuditLogger
from .authorization import build_redirect_url
from .client_authenticator import ClientContext
from .pkce_verifier import PKCEVerifier

logger = logging.getLogger(__name__)


class CodeService:
    """Issues codes when login completes and redeems them at the token endpoint"""

    def __init__(self,
                 storage,
                 config: ProviderConfig,
                 audit: SecurityAuditLogger,
                 clock: Optional[Callable[[], datetime]] = None):
        self.storage = storage
        self.config = config
        self.audit = audit
        self._now = clock or (lambda: datetime.now(timezone.utc))

    def complete_authorization(self, request_id: str, subject: str) -> str:
        """
        Attach the authenticated subject and issue a code

        Called by the login UI once it has verified the user's credentials.

        Returns:
            Redirect URL back to the client carrying ``code`` and ``state``

        Raises:
            InvalidRequest: If the request is unknown, expired or already completed
        """
        if not subject:
            raise InvalidRequest("subject is required")

        now = self._now()
        code = self._generate_authorization_code()
        request = self.storage.complete_auth_request(
            request_id, subject, now, now,
            code=code,
            code_expires_at=now + timedelta(seconds=self.config.tokens.code_ttl),
        )
        if request is None:
            raise InvalidRequest("Authorization request not found, expired or already completed")

        logger.info(f"Authorization code issued for request {request.id}, client {request.client_id}")
        self.audit.record(AuditEventType.AUTHZ_LOGIN_COMPLETED, subject=subject,
                          client_id=request.client_id, request_id=request.id)
        self.audit.record(AuditEventType.CODE_ISSUED, client_id=request.client_id, request_id=request.id)

        return build_redirect_url(request.redirect_uri, {"code": code, "state": request.state})

    def deny_authorization(self, request_id: str, description: str = "The user denied the request") -> str:
        """Abort a pending request; returns the error redirect for the client"""
        request = self.storage.delete_auth_request(request_id)
        if request is None:
            raise InvalidRequest("Authorization request not found")

        self.audit.record(AuditEventType.AUTHZ_ACCESS_DENIED, success=False,
                          client_id=request.client_id, request_id=request.id)
        error = AccessDenied(description)
        return build_redirect_url(request.redirect_uri, {**error.to_dict(), "state": request.state})

    def redeem(self,
               context: ClientContext,
               code: str,
               redirect_uri: str,
               code_verifier: Optional[str] = None) -> Grant:
        """
        Exchange a code for a grant

        Raises:
            InvalidGrant: Unknown, used, expired or mismatched code, or PKCE failure
        """
        stored = self.storage.get_code(code)
        if stored is None:
            raise InvalidGrant("Invalid authorization code")

        if stored.used:
            self._handle_code_reuse(stored.authorization_request_id, context.client_id)
            raise InvalidGrant("Authorization code already used")

        now = self._now()
        if now >= stored.expires_at:
            raise InvalidGrant("Authorization code has expired")

        if stored.client_id != context.client_id:
            raise InvalidGrant("Authorization code issued to different client")

        request = self.storage.get_auth_request(stored.authorization_request_id)
        if request is None:
            raise InvalidGrant("Invalid authorization code")

        if request.redirect_uri != redirect_uri:
            raise InvalidGrant("redirect_uri does not match the authorization request")

        if request.code_challenge:
            if not code_verifier:
                raise InvalidGrant("code_verifier is required")
            if not PKCEVerifier.verify_code_challenge(
                code_verifier, request.code_challenge, request.code_challenge_method
            ):
                self.audit.record(AuditEventType.PKCE_FAILURE, success=False,
                                  client_id=context.client_id, request_id=request.id)
                raise InvalidGrant("PKCE verification failed")
        elif code_verifier:
            raise InvalidGrant("code_verifier sent but no code_challenge was registered")

        redemption = self.storage.redeem_code(code, now)
        if not redemption.ok:
            if redemption.reason == "used":
                self._handle_code_reuse(stored.authorization_request_id, context.client_id)
                raise InvalidGrant("Authorization code already used")
            if redemption.reason == "expired":
                raise InvalidGrant("Authorization code has expired")
            raise InvalidGrant("Invalid authorization code")

        request = redemption.auth_request
        logger.info(f"Authorization code exchanged for client {context.client_id}")
        self.audit.record(AuditEventType.CODE_EXCHANGED, subject=request.subject,
                          client_id=context.client_id, request_id=request.id)

        return Grant(
            client=context.client,
            subject=request.subject,
            scopes=list(request.scopes),
            family_id=request.id,
            auth_time=request.auth_time,
            nonce=request.nonce,
        )

    def _handle_code_reuse(self, request_id: str, client_id: str) -> None:
        logger.warning(f"Authorization code reuse detected for client {client_id}")
        self.audit.record(AuditEventType.CODE_REUSE_DETECTED, success=False,
                          client_id=client_id, request_id=request_id)
        if self.config.security.revoke_on_code_reuse:
            revoked = self.storage.revoke_token_family(request_id)
            self.audit.record(AuditEventType.TOKEN_FAMILY_REVOKED, success=False, client_id=client_id,
                              request_id=request_id, revoked_tokens=revoked)

    def _generate_authorization_code(self) -> str:
        """256 bits of randomness"""
        return secrets.token_urlsafe(32)
