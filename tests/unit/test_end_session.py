"""
Unit tests for RP-initiated logout
"""

import logging
from datetime import timedelta

import pytest

from oidc_op.auth import SigningKeys
from oidc_op.config import SigningConfig
from oidc_op.errors import InvalidRequest

from tests.conftest import ISSUER, WEB_LOGOUT_REDIRECT, query_params


def id_token(keys, clock, aud="web", sub="alice", iss=ISSUER, ttl=3600):
    issued = clock.now
    return keys.sign({
        "iss": iss,
        "sub": sub,
        "aud": aud,
        "iat": int(issued.timestamp()),
        "exp": int((issued + timedelta(seconds=ttl)).timestamp()),
    })


class TestEndSession:
    """Test where the user agent is sent after logout"""

    def test_registered_redirect_with_client_id(self, provider):
        location = provider.end_session({
            "client_id": "web",
            "post_logout_redirect_uri": WEB_LOGOUT_REDIRECT,
            "state": "s-1",
        })

        assert location.startswith(WEB_LOGOUT_REDIRECT + "?")
        assert query_params(location) == {"state": "s-1"}

    def test_registered_redirect_with_id_token_hint(self, provider, signing_keys, clock):
        location = provider.end_session({
            "id_token_hint": id_token(signing_keys, clock),
            "post_logout_redirect_uri": WEB_LOGOUT_REDIRECT,
        })

        assert location == WEB_LOGOUT_REDIRECT

    def test_expired_hint_still_identifies_client(self, provider, signing_keys, clock):
        hint = id_token(signing_keys, clock, ttl=60)
        clock.advance(3600)

        location = provider.end_session({"id_token_hint": hint, "post_logout_redirect_uri": WEB_LOGOUT_REDIRECT})

        assert location == WEB_LOGOUT_REDIRECT

    def test_no_redirect_uses_default_page(self, provider):
        assert provider.end_session({}) == "/logged-out"
        assert provider.end_session({"client_id": "web"}) == "/logged-out"

    def test_unregistered_redirect_uses_default_page(self, provider, caplog):
        with caplog.at_level(logging.INFO, logger="security_audit.test"):
            location = provider.end_session({
                "client_id": "web",
                "post_logout_redirect_uri": "https://evil.example.com/",
                "state": "s-1",
            })

        assert location == "/logged-out"
        assert any("logout_redirect_rejected" in r.getMessage() for r in caplog.records)

    def test_redirect_registered_by_another_client(self, provider):
        location = provider.end_session({
            "client_id": "native",
            "post_logout_redirect_uri": WEB_LOGOUT_REDIRECT,
        })

        assert location == "/logged-out"

    def test_redirect_without_client_uses_default_page(self, provider):
        assert provider.end_session({"post_logout_redirect_uri": WEB_LOGOUT_REDIRECT}) == "/logged-out"

    def test_unknown_client_uses_default_page(self, provider):
        location = provider.end_session({
            "client_id": "nobody",
            "post_logout_redirect_uri": WEB_LOGOUT_REDIRECT,
        })

        assert location == "/logged-out"

    def test_configured_default_page(self, provider, test_config):
        provider.logout.config = test_config.model_copy(update={
            "default_logout_redirect_uri": "https://www.example.com/bye"
        })

        assert provider.end_session({}) == "https://www.example.com/bye"

    def test_hint_for_other_client(self, provider, signing_keys, clock):
        with pytest.raises(InvalidRequest):
            provider.end_session({
                "id_token_hint": id_token(signing_keys, clock, aud="native"),
                "client_id": "web",
                "post_logout_redirect_uri": WEB_LOGOUT_REDIRECT,
            })

    def test_hint_from_other_issuer(self, provider, signing_keys, clock):
        with pytest.raises(InvalidRequest):
            provider.end_session({"id_token_hint": id_token(signing_keys, clock, iss="https://other.example.com")})

    def test_hint_signed_by_other_key(self, provider, clock):
        other = SigningKeys.from_config(SigningConfig(algorithm="HS256", secret="another-signing-secret-0123456789"))

        with pytest.raises(InvalidRequest):
            provider.end_session({"id_token_hint": id_token(other, clock)})

    def test_malformed_hint(self, provider):
        with pytest.raises(InvalidRequest):
            provider.end_session({"id_token_hint": "not-a-jwt"})
