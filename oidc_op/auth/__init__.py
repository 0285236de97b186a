"""
OpenID Connect authorization server core

This module provides:
- Client registry and client authentication (secret, private_key_jwt, public)
- Authorization request processing with PKCE and signed request objects
- Single-use authorization codes
- Access, identity and refresh token minting with rotation
- Discovery metadata and JWKS
- RP-initiated logout
"""

from .authorization import AuthorizationRequestProcessor, build_redirect_url
from .client_authenticator import ClientAuthenticator, ClientContext, ClientCredentials
from .client_registry import ClientRegistry, ClientRegistryError, native_client, web_client
from .codes import CodeService
from .discovery import DiscoveryService
from .end_session import EndSessionService
from .keys import KeyConfigurationError, SigningKeys
from .pkce_verifier import PKCEChallenge, PKCEError, PKCEVerifier
from .provider import AuthorizeResponse, OpenIDProvider, create_provider
from .request_object import verify_request_object
from .token_minter import TokenMinter

__all__ = [
    'OpenIDProvider',
    'AuthorizeResponse',
    'create_provider',
    'AuthorizationRequestProcessor',
    'build_redirect_url',
    'ClientAuthenticator',
    'ClientContext',
    'ClientCredentials',
    'ClientRegistry',
    'ClientRegistryError',
    'web_client',
    'native_client',
    'CodeService',
    'DiscoveryService',
    'EndSessionService',
    'SigningKeys',
    'KeyConfigurationError',
    'PKCEVerifier',
    'PKCEChallenge',
    'PKCEError',
    'verify_request_object',
    'TokenMinter',
]
