"""
Authorization Request Processor

Validates authorization requests and persists them as pending until the
external login UI resumes them. Errors found before the redirect URI is
known to be registered are never redirected, so the endpoint cannot be
used as an open redirector.
"""

import logging
import uuid
from datetime import datetime, timezone, timedelta
from typing import Any, Callable, Dict, Mapping, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from ..config import ProviderConfig
from ..errors import (
    InvalidClient,
    InvalidRequest,
    InvalidScope,
    OAuthError,
    RequestNotSupported,
    UnauthorizedClient,
    UnsupportedResponseType,
)
from ..models import AuthorizationRequest, Client, GrantType
from ..security.audit_logger import AuditEventType, SecurityAuditLogger
from ..security.validators import OAuthValidator, ValidationError
from .client_registry import ClientRegistry
from .pkce_verifier import PKCEError, PKCEVerifier
from .request_object import verify_request_object

logger = logging.getLogger(__name__)


def build_redirect_url(base_uri: str, params: Dict[str, Optional[str]]) -> str:
    """Append query parameters to a URI, keeping any query it already has"""
    scheme, netloc, path, query, fragment = urlsplit(base_uri)
    pairs = parse_qsl(query, keep_blank_values=True)
    pairs.extend((k, v) for k, v in params.items() if v is not None)
    return urlunsplit((scheme, netloc, path, urlencode(pairs), fragment))


class AuthorizationRequestProcessor:
    """Validates /authorize requests and stores them as pending"""

    def __init__(self,
                 registry: ClientRegistry,
                 storage,
                 config: ProviderConfig,
                 audit: SecurityAuditLogger,
                 clock: Optional[Callable[[], datetime]] = None):
        self.registry = registry
        self.storage = storage
        self.config = config
        self.audit = audit
        self.pkce = PKCEVerifier(allow_plain=config.pkce.allow_plain)
        self._now = clock or (lambda: datetime.now(timezone.utc))

    def process(self, params: Mapping[str, Any]) -> AuthorizationRequest:
        """
        Validate an authorization request and persist it as pending

        Args:
            params: Query (or form) parameters of the request

        Returns:
            The stored AuthorizationRequest

        Raises:
            OAuthError: Redirectable errors carry the validated redirect URI
        """
        client_id = params.get("client_id")
        if not client_id:
            raise InvalidRequest("client_id is required")

        client = self.registry.get(client_id)
        if client is None:
            self.audit.record(AuditEventType.AUTHZ_REQUEST_REJECTED, success=False,
                              client_id=client_id, error_code="invalid_client")
            raise InvalidClient("Unknown client")

        redirect_uri = params.get("redirect_uri")
        if not redirect_uri:
            raise InvalidRequest("redirect_uri is required")

        # Exact string match only
        if redirect_uri not in client.redirect_uris:
            logger.warning(f"Unregistered redirect_uri for client {client_id}")
            self.audit.record(AuditEventType.AUTHZ_INVALID_REDIRECT, success=False,
                              client_id=client_id, redirect_uri=redirect_uri)
            raise InvalidClient("redirect_uri is not registered for this client")

        state = params.get("state") or None
        try:
            request = self._validate(client, params)
        except OAuthError as e:
            self.audit.record(AuditEventType.AUTHZ_REQUEST_REJECTED, success=False, client_id=client_id,
                              error_code=e.error, error_message=e.description)
            raise e.with_redirect(redirect_uri, state)

        self.storage.create_auth_request(request)
        logger.info(f"Authorization request {request.id} pending for client {client_id}")
        self.audit.record(AuditEventType.AUTHZ_REQUEST_ACCEPTED, client_id=client_id,
                          request_id=request.id, scope=" ".join(request.scopes))
        return request

    def _validate(self, client: Client, params: Mapping[str, Any]) -> AuthorizationRequest:
        if params.get("request"):
            if not self.config.request_object_supported:
                raise RequestNotSupported("The request parameter is not supported")
            verify_request_object(params["request"], client, params, self.config.issuer)

        try:
            validated = OAuthValidator.validate_authorization_request(params)
        except ValidationError as e:
            raise InvalidRequest(str(e))

        response_type = validated["response_type"]
        if response_type != "code" or response_type not in client.response_types:
            raise UnsupportedResponseType(f"response_type '{response_type}' is not supported")

        if GrantType.AUTHORIZATION_CODE not in client.grant_types:
            raise UnauthorizedClient("Client is not allowed to use the authorization code grant")

        scopes = OAuthValidator.parse_scope(validated["scope"])
        permitted = client.allowed_scopes & set(self.config.supported_scopes)
        unknown = [s for s in scopes if s not in permitted]
        if unknown:
            raise InvalidScope(f"Scope not permitted for this client: {' '.join(unknown)}")

        code_challenge = validated["code_challenge"]
        code_challenge_method = None
        if code_challenge:
            try:
                code_challenge_method = self.pkce.check_challenge(
                    code_challenge, validated["code_challenge_method"]
                )
            except PKCEError as e:
                raise InvalidRequest(str(e))
        elif client.is_public or self.config.pkce.required:
            raise InvalidRequest("code_challenge is required")

        now = self._now()
        return AuthorizationRequest(
            id=str(uuid.uuid4()),
            client_id=client.id,
            response_type=response_type,
            scopes=scopes,
            redirect_uri=params["redirect_uri"],
            state=validated["state"],
            nonce=validated["nonce"],
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
            requested_at=now,
            expires_at=now + timedelta(seconds=self.config.tokens.auth_request_ttl),
        )
