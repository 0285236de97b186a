"""
OpenID Provider

Composes client registry, storage, client authentication, authorization
request processing, code handling and token minting into the operations
an HTTP front end needs. Holds no per-flow state: every call reloads what
it needs from storage.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional

from ..config import ProviderConfig
from ..errors import InvalidRequest, OAuthError, ServerError, UnauthorizedClient, UnsupportedGrantType
from ..models import GrantType
from ..security.audit_logger import SecurityAuditLogger, get_security_audit_logger
from ..security.validators import OAuthValidator, ValidationError
from ..storage import create_storage
from .authorization import AuthorizationRequestProcessor, build_redirect_url
from .client_authenticator import ClientAuthenticator, ClientContext, ClientCredentials
from .client_registry import ClientRegistry
from .codes import CodeService
from .discovery import DiscoveryService
from .end_session import EndSessionService
from .keys import SigningKeys
from .token_minter import TokenMinter

logger = logging.getLogger(__name__)

SUPPORTED_GRANT_TYPES = {g.value for g in GrantType}


@dataclass
class AuthorizeResponse:
    """Outcome of an authorization request as the front end should render it"""
    status_code: int
    location: Optional[str] = None
    error: Optional[OAuthError] = None
    request_id: Optional[str] = None

    @property
    def is_redirect(self) -> bool:
        return self.location is not None


class OpenIDProvider:
    """
    OpenID Connect authorization server core

    Features:
    - Authorization code flow with PKCE
    - client_secret_basic, client_secret_post, private_key_jwt and public clients
    - Refresh token rotation with family revocation on reuse
    - Token revocation (RFC 7009)
    - RP-initiated logout
    """

    def __init__(self,
                 config: ProviderConfig,
                 registry: ClientRegistry,
                 storage=None,
                 keys: Optional[SigningKeys] = None,
                 audit: Optional[SecurityAuditLogger] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        """
        Initialize the provider

        Args:
            config: Provider configuration
            registry: Pre-registered clients; frozen here
            storage: Storage adapter, built from ``config.storage`` when omitted
            keys: Signing keys, built from ``config.signing`` when omitted
            audit: Security audit logger
            clock: Source of the current time, for tests
        """
        self.config = config
        self.registry = registry.freeze()
        self.storage = storage if storage is not None else create_storage(config.storage)
        self.keys = keys or SigningKeys.from_config(config.signing)
        self.audit = audit or get_security_audit_logger()
        self._now = clock or (lambda: datetime.now(timezone.utc))

        self.client_authenticator = ClientAuthenticator(
            self.registry,
            self.storage,
            issuer=config.issuer,
            token_endpoint=config.endpoint(config.token_path),
            config=config.client_auth,
            audit=self.audit,
            clock=self._now,
        )
        self.authorization = AuthorizationRequestProcessor(
            self.registry, self.storage, config, self.audit, clock=self._now
        )
        self.codes = CodeService(self.storage, config, self.audit, clock=self._now)
        self.minter = TokenMinter(self.storage, self.keys, config, self.audit, clock=self._now)
        self.discovery = DiscoveryService(config, self.keys)
        self.logout = EndSessionService(self.registry, self.keys, config, self.audit)

        logger.info(f"OpenIDProvider initialized for issuer {config.issuer} with {len(self.registry)} clients")

    def authorize(self, params: Mapping[str, Any]) -> AuthorizeResponse:
        """
        Handle an authorization request

        Success sends the user agent to the login UI with the pending request
        id. Errors are redirected to the client only when the redirect URI has
        been validated; otherwise they are rendered inline.
        """
        try:
            request = self.authorization.process(params)
        except OAuthError as e:
            if e.redirectable:
                location = build_redirect_url(e.redirect_uri, {**e.to_dict(), "state": e.state})
                return AuthorizeResponse(status_code=302, location=location, error=e)
            status_code = 500 if isinstance(e, ServerError) else 400
            return AuthorizeResponse(status_code=status_code, error=e)

        location = build_redirect_url(self.config.login_url, {"authRequestID": request.id})
        return AuthorizeResponse(status_code=302, location=location, request_id=request.id)

    def complete_authorization(self, request_id: str, subject: str) -> str:
        """Resume a pending request after login; returns the client redirect URL"""
        return self.codes.complete_authorization(request_id, subject)

    def deny_authorization(self, request_id: str, description: str = "The user denied the request") -> str:
        """Abort a pending request; returns the access_denied redirect URL"""
        return self.codes.deny_authorization(request_id, description)

    def token(self, form: Mapping[str, Any], authorization_header: Optional[str] = None) -> Dict[str, Any]:
        """
        Handle a token request

        Args:
            form: Form parameters of the request
            authorization_header: Value of the Authorization header, if any

        Returns:
            Token response body

        Raises:
            OAuthError: Rendered by the front end as a JSON error response
        """
        grant_type = form.get("grant_type")
        if not grant_type:
            raise InvalidRequest("grant_type is required")
        if grant_type not in SUPPORTED_GRANT_TYPES or \
                (grant_type == GrantType.REFRESH_TOKEN.value and not self.config.refresh_grant_enabled):
            raise UnsupportedGrantType(f"grant_type '{grant_type}' is not supported")

        context = self._authenticate(form, authorization_header)

        try:
            validated = OAuthValidator.validate_token_request(form)
        except ValidationError as e:
            raise InvalidRequest(str(e))

        if GrantType(grant_type) not in context.client.grant_types:
            raise UnauthorizedClient(f"Client is not allowed to use the {grant_type} grant")

        if grant_type == GrantType.AUTHORIZATION_CODE.value:
            grant = self.codes.redeem(
                context,
                validated["code"],
                validated["redirect_uri"],
                validated["code_verifier"],
            )
            response = self.minter.mint(grant, GrantType.AUTHORIZATION_CODE)
        else:
            response = self.minter.refresh(context, validated["refresh_token"], validated["scope"])

        return response.to_dict()

    def revoke(self, form: Mapping[str, Any], authorization_header: Optional[str] = None) -> bool:
        """
        Handle a revocation request (RFC 7009)

        Unknown tokens are not an error; only client authentication failures
        and a missing ``token`` parameter are.
        """
        context = self._authenticate(form, authorization_header)

        token = form.get("token")
        if not token:
            raise InvalidRequest("token is required")

        return self.minter.revoke(token, context.client_id)

    def end_session(self, params: Mapping[str, Any]) -> str:
        """Handle RP-initiated logout; returns the post-logout redirect URL"""
        return self.logout.end_session(params)

    def validate_access_token(self, token: str):
        return self.minter.validate_access_token(token)

    def discovery_document(self) -> Dict[str, Any]:
        return self.discovery.get_provider_metadata()

    def jwks(self) -> Dict[str, Any]:
        return self.discovery.get_jwks()

    def cleanup_expired(self) -> int:
        """Drop expired requests, codes, tokens and assertion ids"""
        return self.storage.cleanup_expired(self._now())

    def close(self):
        self.storage.close()

    def _authenticate(self, form: Mapping[str, Any], authorization_header: Optional[str]) -> ClientContext:
        credentials = ClientCredentials.from_request(form, authorization_header)
        return self.client_authenticator.authenticate_client(credentials)


def create_provider(config: ProviderConfig,
                    registry: ClientRegistry,
                    clock: Optional[Callable[[], datetime]] = None) -> OpenIDProvider:
    """Create provider with storage and signing keys built from configuration"""
    return OpenIDProvider(config, registry, clock=clock)
