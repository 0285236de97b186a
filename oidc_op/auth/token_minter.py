"""
Token Minter

Mints access, identity and refresh tokens for a validated grant:
- Access tokens are signed JWTs (or opaque strings) persisted for revocation
- Identity tokens are only issued when ``openid`` was granted
- Refresh tokens rotate on every use; reuse of a rotated token revokes the family
"""

import logging
import secrets
import uuid
from datetime import datetime, timezone, timedelta
from typing import Any, Callable, Dict, Optional

import jwt

from ..config import ProviderConfig
from ..errors import InvalidGrant, InvalidScope, InvalidToken, UnauthorizedClient
from ..models import Grant, GrantType, Token, TokenResponse, TokenType
from ..security.audit_logger import AuditEventType, SecurityAuditLogger
from ..security.validators import OAuthValidator
from .client_authenticator import ClientContext
from .keys import SigningKeys

logger = logging.getLogger(__name__)

OFFLINE_ACCESS = "offline_access"


def _epoch(moment: datetime) -> int:
    return int(moment.timestamp())


class TokenMinter:
    """Creates, rotates, validates and revokes tokens"""

    def __init__(self,
                 storage,
                 keys: SigningKeys,
                 config: ProviderConfig,
                 audit: SecurityAuditLogger,
                 clock: Optional[Callable[[], datetime]] = None):
        self.storage = storage
        self.keys = keys
        self.config = config
        self.audit = audit
        self._now = clock or (lambda: datetime.now(timezone.utc))

        logger.info(f"TokenMinter initialized ({config.tokens.access_token_format} access tokens, "
                    f"{keys.algorithm} signing)")

    def mint(self, grant: Grant, grant_type: GrantType = GrantType.AUTHORIZATION_CODE) -> TokenResponse:
        """
        Mint the token set for a grant

        Args:
            grant: Validated client, subject and scopes
            grant_type: Grant the tokens are issued for

        Returns:
            TokenResponse ready for the token endpoint
        """
        now = self._now()
        access_token = self._create_access_token(grant, now)

        id_token = None
        if "openid" in grant.scopes:
            id_token = self._create_id_token(grant, now)

        refresh_token = None
        if self._refresh_allowed(grant):
            refresh_token = self._generate_refresh_token()
            self.storage.store_refresh_token(self._refresh_record(refresh_token, grant, now))

        token_types = ["access_token"] + (["id_token"] if id_token else []) + \
            (["refresh_token"] if refresh_token else [])
        self.audit.log_token_issued(grant.subject, grant.client.id, grant.scope, token_types, grant_type.value)
        logger.info(f"Issued {', '.join(token_types)} for client {grant.client.id}")

        return TokenResponse(
            access_token=access_token,
            expires_in=self.config.tokens.access_token_ttl,
            scope=grant.scope,
            id_token=id_token,
            refresh_token=refresh_token,
        )

    def refresh(self, context: ClientContext, refresh_token: str, scope: Optional[str] = None) -> TokenResponse:
        """
        Rotate a refresh token and mint a fresh token set

        Raises:
            UnauthorizedClient: If the client may not use the refresh grant
            InvalidGrant: If the token is unknown, expired, revoked or reused
            InvalidScope: If the requested scope widens the original grant
        """
        client = context.client
        if not self.config.refresh_grant_enabled or GrantType.REFRESH_TOKEN not in client.grant_types:
            raise UnauthorizedClient("Client is not allowed to use the refresh_token grant")

        stored = self.storage.get_token(refresh_token)
        if stored is None or stored.token_type != TokenType.REFRESH:
            raise InvalidGrant("Invalid refresh token")

        if stored.client_id != client.id:
            raise InvalidGrant("Refresh token was issued to another client")

        if stored.revoked or self.storage.is_family_revoked(stored.family_id):
            self._handle_refresh_reuse(stored)
            raise InvalidGrant("Refresh token has been revoked")

        now = self._now()
        if now >= stored.expires_at:
            raise InvalidGrant("Refresh token has expired")

        scopes = list(stored.scopes)
        if scope:
            requested = OAuthValidator.parse_scope(scope)
            wider = [s for s in requested if s not in stored.scopes]
            if wider:
                raise InvalidScope(f"Requested scope exceeds the original grant: {' '.join(wider)}")
            scopes = requested

        grant = Grant(
            client=client,
            subject=stored.subject,
            scopes=scopes,
            family_id=stored.family_id,
            auth_time=stored.auth_time,
        )

        new_value = self._generate_refresh_token()
        new_record = self._refresh_record(new_value, grant, now).model_copy(
            update={"rotated_from": stored.value, "scopes": list(stored.scopes)}
        )
        rotation = self.storage.rotate_refresh_token(stored.value, new_record, now)
        if not rotation.ok:
            if rotation.reason == "revoked":
                self._handle_refresh_reuse(stored)
                raise InvalidGrant("Refresh token has been revoked")
            if rotation.reason == "expired":
                raise InvalidGrant("Refresh token has expired")
            raise InvalidGrant("Invalid refresh token")

        self.audit.record(AuditEventType.TOKEN_REFRESHED, subject=stored.subject,
                          client_id=client.id, family_id=stored.family_id)

        access_token = self._create_access_token(grant, now)
        id_token = self._create_id_token(grant, now) if "openid" in scopes else None
        self.audit.log_token_issued(grant.subject, client.id, grant.scope,
                                    ["access_token", "refresh_token"] + (["id_token"] if id_token else []),
                                    GrantType.REFRESH_TOKEN.value)

        return TokenResponse(
            access_token=access_token,
            expires_in=self.config.tokens.access_token_ttl,
            scope=grant.scope,
            id_token=id_token,
            refresh_token=new_value,
        )

    def validate_access_token(self, token: str) -> Token:
        """
        Validate an access token presented to a resource server

        Returns:
            The stored token record

        Raises:
            InvalidToken: If the token is not authentic, expired or revoked
        """
        key = self._access_token_key(token)
        if key is None:
            raise InvalidToken("Invalid access token")

        stored = self.storage.get_token(key)
        if stored is None or stored.token_type != TokenType.ACCESS:
            raise InvalidToken("Token not found")

        if stored.revoked or self.storage.is_family_revoked(stored.family_id):
            raise InvalidToken("Token has been revoked")

        if self._now() >= stored.expires_at:
            raise InvalidToken("Token has expired")

        return stored

    def revoke(self, token: str, client_id: str) -> bool:
        """
        Revoke an access or refresh token owned by ``client_id``

        Revoking a refresh token revokes its whole family.

        Returns:
            True if something was revoked, False for unknown or foreign tokens
        """
        stored = self.storage.get_token(token)
        if stored is None:
            key = self._access_token_key(token)
            stored = self.storage.get_token(key) if key else None
        if stored is None:
            logger.debug("Revocation requested for unknown token")
            return False

        if stored.client_id != client_id:
            logger.warning(f"Client {client_id} tried to revoke a token of client {stored.client_id}")
            return False

        if stored.token_type == TokenType.REFRESH:
            revoked = self.storage.revoke_token_family(stored.family_id)
            self.audit.record(AuditEventType.TOKEN_FAMILY_REVOKED, client_id=client_id,
                              family_id=stored.family_id, revoked_tokens=revoked)
        else:
            self.storage.revoke_token(stored.value)

        self.audit.record(AuditEventType.TOKEN_REVOKED, subject=stored.subject, client_id=client_id,
                          token_type=stored.token_type.value)
        return True

    def _create_access_token(self, grant: Grant, now: datetime) -> str:
        expires_at = now + timedelta(seconds=self.config.tokens.access_token_ttl)

        if self.config.tokens.access_token_format == "opaque":
            value = secrets.token_urlsafe(32)
            token = value
        else:
            value = str(uuid.uuid4())
            claims = {
                "iss": self.config.issuer,
                "sub": grant.subject,
                "aud": grant.client.id,
                "client_id": grant.client.id,
                "scope": grant.scope,
                "iat": _epoch(now),
                "exp": _epoch(expires_at),
                "jti": value,
            }
            token = self.keys.sign(claims, token_type="at+jwt")

        self.storage.store_token(Token(
            value=value,
            token_type=TokenType.ACCESS,
            subject=grant.subject,
            client_id=grant.client.id,
            scopes=list(grant.scopes),
            issued_at=now,
            expires_at=expires_at,
            family_id=grant.family_id,
            auth_time=grant.auth_time,
        ))
        return token

    def _create_id_token(self, grant: Grant, now: datetime) -> str:
        claims: Dict[str, Any] = {
            "iss": self.config.issuer,
            "sub": grant.subject,
            "aud": grant.client.id,
            "iat": _epoch(now),
            "exp": _epoch(now + timedelta(seconds=self.config.tokens.id_token_ttl)),
        }
        if grant.auth_time:
            claims["auth_time"] = _epoch(grant.auth_time)
        if grant.nonce:
            claims["nonce"] = grant.nonce
        return self.keys.sign(claims)

    def _refresh_allowed(self, grant: Grant) -> bool:
        return (self.config.refresh_grant_enabled
                and GrantType.REFRESH_TOKEN in grant.client.grant_types
                and OFFLINE_ACCESS in grant.scopes)

    def _refresh_record(self, value: str, grant: Grant, now: datetime) -> Token:
        return Token(
            value=value,
            token_type=TokenType.REFRESH,
            subject=grant.subject,
            client_id=grant.client.id,
            scopes=list(grant.scopes),
            issued_at=now,
            expires_at=now + timedelta(seconds=self.config.tokens.refresh_token_ttl),
            family_id=grant.family_id,
            auth_time=grant.auth_time,
        )

    def _access_token_key(self, token: str) -> Optional[str]:
        """Storage key of an access token: the jti for JWTs, the token itself when opaque"""
        if self.config.tokens.access_token_format == "opaque":
            return token
        try:
            claims = self.keys.verify(token, issuer=self.config.issuer)
        except jwt.InvalidTokenError as e:
            logger.debug(f"Access token rejected: {e}")
            return None
        return claims.get("jti")

    def _handle_refresh_reuse(self, stored: Token) -> None:
        logger.warning(f"Refresh token reuse detected for client {stored.client_id}")
        self.audit.record(AuditEventType.REFRESH_REUSE_DETECTED, success=False, subject=stored.subject,
                          client_id=stored.client_id, family_id=stored.family_id)
        if self.config.security.revoke_family_on_refresh_reuse:
            revoked = self.storage.revoke_token_family(stored.family_id)
            self.audit.record(AuditEventType.TOKEN_FAMILY_REVOKED, success=False, client_id=stored.client_id,
                              family_id=stored.family_id, revoked_tokens=revoked)

    def _generate_refresh_token(self) -> str:
        return secrets.token_urlsafe(32)
