"""
Unit tests for client definitions, the client registry and protocol errors
"""

import json

import pytest
from pydantic import ValidationError

from oidc_op.auth import ClientRegistry, ClientRegistryError, native_client, web_client
from oidc_op.errors import AccessDenied, InvalidClient, InvalidGrant, InvalidRequest, ServerError
from oidc_op.models import AuthMethod, Client, ClientType, GrantType, TokenResponse


class TestClientModel:
    """Test client profile validation"""

    def test_web_client_defaults(self):
        client = web_client("web", "s3cr3t", redirect_uris=["https://app.example.com/cb"])

        assert client.type == ClientType.CONFIDENTIAL
        assert client.auth_methods == {AuthMethod.BASIC, AuthMethod.POST}
        assert GrantType.REFRESH_TOKEN in client.grant_types
        assert not client.is_public

    def test_native_client(self):
        client = native_client("native", redirect_uris=["http://127.0.0.1/cb"])

        assert client.is_public
        assert client.auth_methods == {AuthMethod.NONE}
        assert client.secret is None

    def test_public_client_cannot_hold_secret(self):
        with pytest.raises(ValidationError):
            Client(id="spa", type=ClientType.PUBLIC, secret="x", auth_methods=frozenset({AuthMethod.NONE}))

    def test_confidential_client_cannot_use_none(self):
        with pytest.raises(ValidationError):
            Client(id="svc", auth_methods=frozenset({AuthMethod.NONE}))

    def test_secret_methods_require_secret(self):
        with pytest.raises(ValidationError):
            Client(id="svc", auth_methods=frozenset({AuthMethod.BASIC}))

    def test_private_key_jwt_requires_keys(self):
        with pytest.raises(ValidationError):
            Client(id="svc", auth_methods=frozenset({AuthMethod.PRIVATE_KEY_JWT}))

    def test_clients_are_immutable(self):
        client = web_client("web", "s3cr3t")
        with pytest.raises(ValidationError):
            client.secret = "changed"


class TestClientRegistry:
    """Test registration and lookup"""

    def test_lookup(self, registry):
        assert registry.get("web").secret == "s3cr3t"
        assert registry.get("ghost") is None
        assert registry.get(None) is None
        assert "native" in registry
        assert len(registry) == 3

    def test_duplicate_rejected(self, web):
        with pytest.raises(ClientRegistryError):
            ClientRegistry([web, web])

    def test_frozen_registry(self, registry, web):
        registry.freeze()
        with pytest.raises(ClientRegistryError):
            registry.register(web_client("late", "s3cr3t"))

    def test_from_json_file(self, tmp_path):
        path = tmp_path / "clients.json"
        path.write_text(json.dumps([
            {"id": "web", "secret": "s3cr3t", "redirect_uris": ["https://app.example.com/cb"],
             "auth_methods": ["client_secret_basic"]},
            {"id": "native", "type": "public", "redirect_uris": ["http://127.0.0.1/cb"],
             "auth_methods": ["none"]},
        ]))

        registry = ClientRegistry.from_json_file(str(path))

        assert registry.get("web").auth_methods == {AuthMethod.BASIC}
        assert registry.get("native").is_public
        with pytest.raises(ClientRegistryError):
            registry.register(web_client("late", "s3cr3t"))

    def test_from_json_file_requires_list(self, tmp_path):
        path = tmp_path / "clients.json"
        path.write_text(json.dumps({"id": "web"}))

        with pytest.raises(ClientRegistryError):
            ClientRegistry.from_json_file(str(path))


class TestErrors:
    """Test protocol error rendering"""

    def test_to_dict(self):
        assert InvalidGrant("Code expired").to_dict() == {
            "error": "invalid_grant", "error_description": "Code expired"
        }
        assert InvalidRequest().to_dict() == {"error": "invalid_request"}

    def test_status_codes(self):
        assert InvalidGrant().status_code == 400
        assert InvalidClient().status_code == 401
        assert AccessDenied().status_code == 403
        assert ServerError().status_code == 500

    def test_redirect_binding(self):
        error = InvalidRequest("bad")
        assert not error.redirectable

        error.with_redirect("https://app.example.com/cb", "xyz")

        assert error.redirectable
        assert error.state == "xyz"


class TestTokenResponse:

    def test_optional_fields_omitted(self):
        body = TokenResponse(access_token="at", expires_in=3600, scope="profile").to_dict()
        assert body == {"access_token": "at", "token_type": "Bearer", "expires_in": 3600, "scope": "profile"}
