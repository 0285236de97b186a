"""
RP-initiated logout

The provider keeps no browser session of its own, so ending a session is
about where to send the user agent afterwards. A ``post_logout_redirect_uri``
is honoured only when the identified client registered it; every other
request lands on the configured logged-out page.
"""

import logging
from typing import Any, Mapping, Optional, Tuple

import jwt

from ..config import ProviderConfig
from ..errors import InvalidRequest
from ..models import Client
from ..security.audit_logger import AuditEventType, SecurityAuditLogger
from .authorization import build_redirect_url
from .client_registry import ClientRegistry
from .keys import SigningKeys

logger = logging.getLogger(__name__)


class EndSessionService:
    """Resolves end_session requests to a redirect target"""

    def __init__(self,
                 registry: ClientRegistry,
                 keys: SigningKeys,
                 config: ProviderConfig,
                 audit: SecurityAuditLogger):
        self.registry = registry
        self.keys = keys
        self.config = config
        self.audit = audit

    def end_session(self, params: Mapping[str, Any]) -> str:
        """
        Handle an end_session request

        Args:
            params: ``id_token_hint``, ``client_id``, ``post_logout_redirect_uri``
                and ``state``, all optional

        Returns:
            URL the user agent should be redirected to

        Raises:
            InvalidRequest: If the id_token_hint is not one of ours or names another client
        """
        client, subject = self._identify(params.get("id_token_hint"), params.get("client_id"))
        client_id = client.id if client else params.get("client_id")

        redirect_uri = params.get("post_logout_redirect_uri")
        if redirect_uri and client and redirect_uri in client.post_logout_redirect_uris:
            self.audit.record(AuditEventType.END_SESSION, subject=subject, client_id=client_id,
                              redirect_uri=redirect_uri)
            return build_redirect_url(redirect_uri, {"state": params.get("state")})

        if redirect_uri:
            logger.warning(f"Unregistered post_logout_redirect_uri for client {client_id}")
            self.audit.record(AuditEventType.LOGOUT_REDIRECT_REJECTED, success=False,
                              client_id=client_id, redirect_uri=redirect_uri)
        self.audit.record(AuditEventType.END_SESSION, subject=subject, client_id=client_id,
                          redirect_uri=self.config.default_logout_redirect_uri)
        return self.config.default_logout_redirect_uri

    def _identify(self, id_token_hint: Optional[str],
                  client_id: Optional[str]) -> Tuple[Optional[Client], Optional[str]]:
        if not id_token_hint:
            return self.registry.get(client_id), None

        # Expired hints are still good enough to identify the client
        try:
            claims = self.keys.verify(id_token_hint, issuer=self.config.issuer, verify_exp=False)
        except jwt.InvalidTokenError as e:
            raise InvalidRequest("id_token_hint is invalid") from e

        audience = claims.get("aud")
        audiences = [audience] if isinstance(audience, str) else list(audience or [])
        if client_id:
            if client_id not in audiences:
                raise InvalidRequest("client_id does not match the id_token_hint audience")
        elif len(audiences) == 1:
            client_id = audiences[0]

        return self.registry.get(client_id), claims.get("sub")
