"""
Test configuration and fixtures for the OpenID provider tests
"""

import base64
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict
from urllib.parse import parse_qs, urlsplit

import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi.testclient import TestClient

from oidc_op.auth import (
    ClientRegistry,
    OpenIDProvider,
    PKCEVerifier,
    SigningKeys,
    native_client,
    web_client,
)
from oidc_op.config import LoggingConfig, ProviderConfig, SigningConfig, StorageConfig
from oidc_op.http_server import OpenIDProviderHTTPServer
from oidc_op.models import AuthMethod, Client
from oidc_op.security import SecurityAuditLogger
from oidc_op.storage import InMemoryStorage

ISSUER = "http://localhost:9998"
TOKEN_ENDPOINT = f"{ISSUER}/token"
TEST_SIGNING_SECRET = "test-signing-secret-0123456789-abcdef"

WEB_REDIRECT = "https://app.example.com/callback"
NATIVE_REDIRECT = "http://127.0.0.1:4000/callback"
SERVICE_REDIRECT = "https://service.example.com/callback"
WEB_LOGOUT_REDIRECT = "https://app.example.com/signed-out"


class FakeClock:
    """Controllable time source; starts at the real current time so JWT checks agree"""

    def __init__(self):
        self.now = datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(scope="session")
def rsa_private_key():
    """RSA key for signed client assertions and request objects."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def rsa_public_pem(rsa_private_key) -> str:
    return rsa_private_key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")


@pytest.fixture
def test_config() -> ProviderConfig:
    """Create test configuration."""
    return ProviderConfig(
        issuer=ISSUER,
        environment="testing",
        signing=SigningConfig(algorithm="HS256", secret=TEST_SIGNING_SECRET),
        storage=StorageConfig(type="memory"),
        logging=LoggingConfig(level="DEBUG"),
    )


@pytest.fixture
def web():
    return web_client("web", "s3cr3t", redirect_uris=[WEB_REDIRECT],
                      post_logout_redirect_uris=[WEB_LOGOUT_REDIRECT])


@pytest.fixture
def native():
    return native_client("native", redirect_uris=[NATIVE_REDIRECT])


@pytest.fixture
def service(rsa_public_pem):
    return Client(
        id="service",
        redirect_uris=frozenset({SERVICE_REDIRECT}),
        auth_methods=frozenset({AuthMethod.PRIVATE_KEY_JWT}),
        public_keys=[rsa_public_pem],
    )


@pytest.fixture
def registry(web, native, service) -> ClientRegistry:
    return ClientRegistry([web, native, service])


@pytest.fixture
def storage():
    return InMemoryStorage(timeout=1.0)


@pytest.fixture
def audit():
    return SecurityAuditLogger(logger_name="security_audit.test")


@pytest.fixture
def signing_keys(test_config) -> SigningKeys:
    return SigningKeys.from_config(test_config.signing)


@pytest.fixture
def provider(test_config, registry, storage, signing_keys, audit, clock) -> OpenIDProvider:
    """Provider wired to in-memory storage and a controllable clock."""
    return OpenIDProvider(test_config, registry, storage=storage, keys=signing_keys, audit=audit, clock=clock)


@pytest.fixture
def pkce():
    return PKCEVerifier.create_pkce_challenge()


@pytest.fixture
def test_server(test_config, provider):
    return OpenIDProviderHTTPServer(test_config, provider)


@pytest.fixture
def test_client(test_server):
    """Create test client for HTTP server."""
    return TestClient(test_server.app)


# Helpers

def basic_auth(client_id: str, secret: str) -> str:
    raw = f"{client_id}:{secret}".encode()
    return "Basic " + base64.b64encode(raw).decode("ascii")


def query_params(url: str) -> Dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlsplit(url).query).items()}


def authorization_params(client_id: str = "web", redirect_uri: str = WEB_REDIRECT, **overrides) -> Dict[str, Any]:
    """Generate authorization request parameters."""
    params = {
        "response_type": "code",
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "scope": "openid",
        "state": "xyz",
    }
    params.update(overrides)
    return {k: v for k, v in params.items() if v is not None}


def obtain_code(provider: OpenIDProvider, subject: str = "alice", **params) -> str:
    """Run authorize + login completion and return the issued code."""
    response = provider.authorize(authorization_params(**params))
    assert response.request_id, response.error
    location = provider.complete_authorization(response.request_id, subject)
    return query_params(location)["code"]


def client_assertion(private_key, client_id: str = "service", audience: str = TOKEN_ENDPOINT,
                     lifetime: int = 60, jti: str = None, **claims) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "iss": client_id,
        "sub": client_id,
        "aud": audience,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=lifetime)).timestamp()),
        "jti": jti or str(uuid.uuid4()),
    }
    payload.update(claims)
    return jwt.encode(payload, private_key, algorithm="RS256")
