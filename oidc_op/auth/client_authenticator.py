"""
Client Authentication at the token endpoint

Supports the client authentication methods registered per client:
- none: public clients relying on PKCE
- client_secret_basic / client_secret_post: shared secret
- private_key_jwt: signed assertion (RFC 7523), replay-protected by jti
"""

import logging
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional

import jwt

from ..config import ClientAuthConfig
from ..errors import InvalidClient
from ..models import AuthMethod, Client
from ..security.audit_logger import AuditEventType, SecurityAuditLogger
from ..security.validators import JWT_BEARER_ASSERTION, OAuthValidator, ValidationError
from .client_registry import ClientRegistry

logger = logging.getLogger(__name__)

ASSERTION_ALGORITHMS = ["RS256", "ES256", "PS256"]


@dataclass
class ClientCredentials:
    """Credential form presented by the caller"""
    client_id: Optional[str]
    method: AuthMethod
    client_secret: Optional[str] = None
    client_assertion: Optional[str] = None

    @classmethod
    def from_request(cls,
                     form: Mapping[str, Any],
                     authorization_header: Optional[str] = None) -> "ClientCredentials":
        """
        Extract exactly one credential form from a token request

        Raises:
            InvalidClient: If several forms are combined, or client ids disagree
        """
        form_client_id = form.get("client_id") or None
        presented = []

        if authorization_header and authorization_header.startswith("Basic "):
            try:
                basic_id, basic_secret = OAuthValidator.parse_basic_auth(authorization_header)
            except ValidationError as e:
                raise InvalidClient(str(e))
            presented.append(cls(basic_id, AuthMethod.BASIC, client_secret=basic_secret))

        if form.get("client_secret"):
            presented.append(cls(form_client_id, AuthMethod.POST, client_secret=form["client_secret"]))

        if form.get("client_assertion") or form.get("client_assertion_type"):
            if form.get("client_assertion_type") != JWT_BEARER_ASSERTION:
                raise InvalidClient("Unsupported client_assertion_type")
            assertion = form.get("client_assertion")
            if not assertion:
                raise InvalidClient("Missing client_assertion")
            presented.append(cls(form_client_id or cls._assertion_subject(assertion),
                                 AuthMethod.PRIVATE_KEY_JWT, client_assertion=assertion))

        if len(presented) > 1:
            raise InvalidClient("Multiple client authentication methods used")

        if not presented:
            if not form_client_id:
                raise InvalidClient("Client authentication required")
            return cls(form_client_id, AuthMethod.NONE)

        credentials = presented[0]
        if not credentials.client_id:
            raise InvalidClient("Missing client_id")
        if form_client_id and form_client_id != credentials.client_id:
            raise InvalidClient("client_id does not match the authenticated client")
        return credentials

    @staticmethod
    def _assertion_subject(assertion: str) -> Optional[str]:
        try:
            payload = jwt.decode(assertion, options={"verify_signature": False})
        except jwt.InvalidTokenError as e:
            raise InvalidClient(f"Malformed client assertion: {e}")
        return payload.get("sub") or payload.get("iss")


@dataclass
class ClientContext:
    """Client authentication result"""
    client: Client
    auth_method: AuthMethod
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def client_id(self) -> str:
        return self.client.id


class ClientAuthStrategy(ABC):
    """One member of the closed set of authentication strategies"""

    @abstractmethod
    def authenticate(self, client: Client, credentials: ClientCredentials) -> Dict[str, Any]:
        """Verify the credentials for the client; returns context metadata"""
        pass


class NoAuthentication(ClientAuthStrategy):
    """Public clients prove nothing here; PKCE binds the code instead"""

    def authenticate(self, client: Client, credentials: ClientCredentials) -> Dict[str, Any]:
        if not client.is_public:
            raise InvalidClient("Confidential clients must authenticate")
        return {}


class SharedSecretAuthentication(ClientAuthStrategy):
    """client_secret_basic and client_secret_post"""

    def authenticate(self, client: Client, credentials: ClientCredentials) -> Dict[str, Any]:
        if not client.secret or not credentials.client_secret:
            raise InvalidClient("Client not configured for secret authentication")
        if not secrets.compare_digest(credentials.client_secret.encode(), client.secret.encode()):
            raise InvalidClient("Invalid client credentials")
        return {}


class SignedAssertionAuthentication(ClientAuthStrategy):
    """private_key_jwt (RFC 7523 section 2.2)"""

    def __init__(self, storage, audiences: List[str], config: ClientAuthConfig,
                 audit: SecurityAuditLogger, clock: Callable[[], datetime]):
        self.storage = storage
        self.audiences = audiences
        self.audit = audit
        self.max_lifetime = config.assertion_max_lifetime
        self.clock_skew = config.clock_skew
        self._now = clock

    def authenticate(self, client: Client, credentials: ClientCredentials) -> Dict[str, Any]:
        payload = self._verify_signature(client, credentials.client_assertion)

        if payload.get("iss") != client.id or payload.get("sub") != client.id:
            raise InvalidClient("Assertion iss and sub must equal the client_id")

        now = self._now()
        expires_at = datetime.fromtimestamp(payload["exp"], timezone.utc)
        if expires_at - now > timedelta(seconds=self.max_lifetime + self.clock_skew):
            raise InvalidClient("Assertion lifetime exceeds the allowed maximum")

        if not self.storage.record_assertion_jti(client.id, str(payload["jti"]), expires_at):
            self.audit.record(AuditEventType.CLIENT_ASSERTION_REPLAY, success=False, client_id=client.id)
            raise InvalidClient("Client assertion has already been used")

        return {"jti": payload["jti"]}

    def _verify_signature(self, client: Client, assertion: str) -> Dict[str, Any]:
        for registered_key in client.public_keys:
            try:
                key = jwt.PyJWK(registered_key).key if isinstance(registered_key, dict) else registered_key
                return jwt.decode(
                    assertion,
                    key,
                    algorithms=ASSERTION_ALGORITHMS,
                    audience=self.audiences,
                    leeway=self.clock_skew,
                    options={"require": ["exp", "iss", "sub", "aud", "jti"]},
                )
            except (jwt.InvalidSignatureError, jwt.exceptions.InvalidKeyError, jwt.exceptions.PyJWKError):
                continue
            except jwt.InvalidTokenError as e:
                raise InvalidClient(f"Invalid client assertion: {e}")
        raise InvalidClient("Client assertion signature does not match any registered key")


class ClientAuthenticator:
    """
    Authenticates token endpoint callers against the client registry

    The strategy is picked from the presented credential form, which must be
    one of the methods the client registered and the provider enabled.
    """

    def __init__(self,
                 registry: ClientRegistry,
                 storage,
                 issuer: str,
                 token_endpoint: str,
                 config: ClientAuthConfig,
                 audit: SecurityAuditLogger,
                 clock: Optional[Callable[[], datetime]] = None):
        self.registry = registry
        self.audit = audit
        clock = clock or (lambda: datetime.now(timezone.utc))

        self.enabled_methods = {AuthMethod.NONE, AuthMethod.BASIC}
        if config.auth_method_post:
            self.enabled_methods.add(AuthMethod.POST)
        if config.auth_method_private_key_jwt:
            self.enabled_methods.add(AuthMethod.PRIVATE_KEY_JWT)

        secret = SharedSecretAuthentication()
        self._strategies: Dict[AuthMethod, ClientAuthStrategy] = {
            AuthMethod.NONE: NoAuthentication(),
            AuthMethod.BASIC: secret,
            AuthMethod.POST: secret,
            AuthMethod.PRIVATE_KEY_JWT: SignedAssertionAuthentication(
                storage, [issuer, token_endpoint], config, audit, clock
            ),
        }

    def authenticate_client(self, credentials: ClientCredentials) -> ClientContext:
        """
        Authenticate client using the presented credential form

        Raises:
            InvalidClient: If authentication fails
        """
        try:
            client = self.registry.get(credentials.client_id)
            if client is None:
                raise InvalidClient("Unknown client")
            if credentials.method not in self.enabled_methods:
                raise InvalidClient(f"Authentication method {credentials.method.value} is not enabled")
            if credentials.method not in client.auth_methods:
                raise InvalidClient(f"Authentication method {credentials.method.value} not registered for client")

            metadata = self._strategies[credentials.method].authenticate(client, credentials)

        except InvalidClient as e:
            logger.warning(f"Client authentication failed for {credentials.client_id}: {e.description}")
            self.audit.log_client_auth_failure(credentials.client_id, credentials.method.value, e.description)
            raise

        logger.debug(f"Client authenticated via {credentials.method.value}: {client.id}")
        self.audit.record(AuditEventType.CLIENT_AUTH_SUCCESS, client_id=client.id,
                          auth_method=credentials.method.value)
        return ClientContext(client=client, auth_method=credentials.method, metadata=metadata)
