"""
OpenID Connect Discovery

Publishes provider metadata (OpenID Connect Discovery 1.0 / RFC 8414) and
the public signing keys. Both documents are derived from configuration and
the key set; nothing here has state of its own.
"""

import logging
from typing import Any, Dict, List

from ..config import ProviderConfig
from .keys import SigningKeys
from .pkce_verifier import PLAIN, S256

logger = logging.getLogger(__name__)


class DiscoveryService:
    """Provider metadata and JWKS"""

    def __init__(self, config: ProviderConfig, keys: SigningKeys):
        self.config = config
        self.keys = keys
        self.issuer = config.issuer.rstrip('/')

        logger.info(f"DiscoveryService initialized for issuer: {self.issuer}")

    def get_provider_metadata(self) -> Dict[str, Any]:
        """
        OpenID Provider Metadata

        Available at: /.well-known/openid-configuration
        """
        metadata = {
            "issuer": self.config.issuer,
            "authorization_endpoint": self.config.endpoint(self.config.authorization_path),
            "token_endpoint": self.config.endpoint(self.config.token_path),
            "revocation_endpoint": self.config.endpoint(self.config.revocation_path),
            "jwks_uri": self.config.endpoint(self.config.jwks_path),
            "end_session_endpoint": self.config.endpoint(self.config.end_session_path),

            "response_types_supported": ["code"],
            "response_modes_supported": ["query"],
            "grant_types_supported": self._grant_types(),
            "subject_types_supported": ["public"],
            "id_token_signing_alg_values_supported": [self.keys.algorithm],
            "scopes_supported": list(self.config.supported_scopes),
            "claims_supported": ["iss", "sub", "aud", "iat", "exp", "auth_time", "nonce"],

            "token_endpoint_auth_methods_supported": self._auth_methods(),
            "revocation_endpoint_auth_methods_supported": self._auth_methods(),
            "code_challenge_methods_supported": self._challenge_methods(),

            "request_parameter_supported": self.config.request_object_supported,
            "request_uri_parameter_supported": False,
        }

        if self.config.client_auth.auth_method_private_key_jwt:
            metadata["token_endpoint_auth_signing_alg_values_supported"] = ["RS256", "ES256", "PS256"]
        if self.config.request_object_supported:
            metadata["request_object_signing_alg_values_supported"] = ["HS256", "RS256", "ES256", "PS256"]

        logger.debug("Generated provider metadata")
        return metadata

    def get_jwks(self) -> Dict[str, List[Dict[str, Any]]]:
        """JSON Web Key Set; available at the configured jwks path"""
        return self.keys.jwks()

    def _grant_types(self) -> List[str]:
        grant_types = ["authorization_code"]
        if self.config.refresh_grant_enabled:
            grant_types.append("refresh_token")
        return grant_types

    def _auth_methods(self) -> List[str]:
        methods = ["none", "client_secret_basic"]
        if self.config.client_auth.auth_method_post:
            methods.append("client_secret_post")
        if self.config.client_auth.auth_method_private_key_jwt:
            methods.append("private_key_jwt")
        return methods

    def _challenge_methods(self) -> List[str]:
        methods = [S256]
        if self.config.pkce.allow_plain:
            methods.append(PLAIN)
        return methods
