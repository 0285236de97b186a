"""
Unit tests for client authentication
"""

import pytest

from oidc_op.auth import ClientAuthenticator, ClientCredentials
from oidc_op.auth.client_authenticator import ClientAuthStrategy
from oidc_op.config import ClientAuthConfig
from oidc_op.errors import InvalidClient
from oidc_op.models import AuthMethod
from oidc_op.security.validators import JWT_BEARER_ASSERTION

from tests.conftest import ISSUER, TOKEN_ENDPOINT, basic_auth, client_assertion


@pytest.fixture
def authenticator(registry, storage, audit, clock):
    return ClientAuthenticator(registry, storage, issuer=ISSUER, token_endpoint=TOKEN_ENDPOINT,
                               config=ClientAuthConfig(), audit=audit, clock=clock)


def assertion_form(assertion, **extra):
    form = {"client_assertion_type": JWT_BEARER_ASSERTION, "client_assertion": assertion}
    form.update(extra)
    return form


class TestClientCredentials:
    """Test extraction of the presented credential form"""

    def test_basic_header(self):
        credentials = ClientCredentials.from_request({}, basic_auth("web", "s3cr3t"))

        assert credentials.method == AuthMethod.BASIC
        assert credentials.client_id == "web"
        assert credentials.client_secret == "s3cr3t"

    def test_basic_header_is_form_decoded(self):
        credentials = ClientCredentials.from_request({}, basic_auth("web", "p%40ss+word"))
        assert credentials.client_secret == "p@ss word"

    def test_post_body(self):
        credentials = ClientCredentials.from_request({"client_id": "web", "client_secret": "s3cr3t"})
        assert credentials.method == AuthMethod.POST

    def test_public_client(self):
        credentials = ClientCredentials.from_request({"client_id": "native"})
        assert credentials.method == AuthMethod.NONE

    def test_assertion_without_client_id(self, rsa_private_key):
        credentials = ClientCredentials.from_request(assertion_form(client_assertion(rsa_private_key)))

        assert credentials.method == AuthMethod.PRIVATE_KEY_JWT
        assert credentials.client_id == "service"

    def test_multiple_methods_rejected(self):
        with pytest.raises(InvalidClient):
            ClientCredentials.from_request({"client_id": "web", "client_secret": "s3cr3t"},
                                           basic_auth("web", "s3cr3t"))

    def test_mismatched_client_id_rejected(self):
        with pytest.raises(InvalidClient):
            ClientCredentials.from_request({"client_id": "other"}, basic_auth("web", "s3cr3t"))

    def test_no_credentials(self):
        with pytest.raises(InvalidClient):
            ClientCredentials.from_request({})

    def test_unsupported_assertion_type(self):
        with pytest.raises(InvalidClient):
            ClientCredentials.from_request({"client_assertion_type": "urn:other", "client_assertion": "x.y.z"})


class TestSharedSecret:
    """Test client_secret_basic and client_secret_post"""

    def test_valid_secret(self, authenticator):
        context = authenticator.authenticate_client(ClientCredentials.from_request({}, basic_auth("web", "s3cr3t")))

        assert context.client_id == "web"
        assert context.auth_method == AuthMethod.BASIC

    def test_wrong_secret(self, authenticator):
        with pytest.raises(InvalidClient):
            authenticator.authenticate_client(ClientCredentials.from_request({}, basic_auth("web", "nope")))

    def test_unknown_client(self, authenticator):
        with pytest.raises(InvalidClient):
            authenticator.authenticate_client(ClientCredentials.from_request({}, basic_auth("ghost", "x")))

    def test_method_not_registered(self, authenticator):
        """Test a public client cannot authenticate with a secret"""
        with pytest.raises(InvalidClient):
            authenticator.authenticate_client(
                ClientCredentials.from_request({"client_id": "native", "client_secret": "x"})
            )

    def test_post_disabled_by_policy(self, registry, storage, audit, clock):
        authenticator = ClientAuthenticator(registry, storage, ISSUER, TOKEN_ENDPOINT,
                                            ClientAuthConfig(auth_method_post=False), audit, clock)
        with pytest.raises(InvalidClient):
            authenticator.authenticate_client(
                ClientCredentials.from_request({"client_id": "web", "client_secret": "s3cr3t"})
            )

    def test_confidential_client_without_credentials(self, authenticator):
        with pytest.raises(InvalidClient):
            authenticator.authenticate_client(ClientCredentials.from_request({"client_id": "web"}))


class TestPublicClient:

    def test_none_method(self, authenticator):
        context = authenticator.authenticate_client(ClientCredentials.from_request({"client_id": "native"}))
        assert context.client.is_public


class TestPrivateKeyJWT:
    """Test signed client assertions"""

    def authenticate(self, authenticator, assertion):
        return authenticator.authenticate_client(ClientCredentials.from_request(assertion_form(assertion)))

    def test_valid_assertion(self, authenticator, rsa_private_key):
        context = self.authenticate(authenticator, client_assertion(rsa_private_key, jti="a-1"))

        assert context.client_id == "service"
        assert context.metadata["jti"] == "a-1"

    def test_issuer_as_audience(self, authenticator, rsa_private_key):
        context = self.authenticate(authenticator, client_assertion(rsa_private_key, audience=ISSUER))
        assert context.client_id == "service"

    def test_replayed_jti_rejected(self, authenticator, rsa_private_key):
        self.authenticate(authenticator, client_assertion(rsa_private_key, jti="once"))
        with pytest.raises(InvalidClient) as exc_info:
            self.authenticate(authenticator, client_assertion(rsa_private_key, jti="once"))
        assert "already been used" in exc_info.value.description

    def test_wrong_audience(self, authenticator, rsa_private_key):
        with pytest.raises(InvalidClient):
            self.authenticate(authenticator, client_assertion(rsa_private_key, audience="https://elsewhere"))

    def test_expired_assertion(self, authenticator, rsa_private_key):
        with pytest.raises(InvalidClient):
            self.authenticate(authenticator, client_assertion(rsa_private_key, lifetime=-120))

    def test_lifetime_too_long(self, authenticator, rsa_private_key):
        with pytest.raises(InvalidClient):
            self.authenticate(authenticator, client_assertion(rsa_private_key, lifetime=3600))

    def test_subject_must_be_client(self, authenticator, rsa_private_key):
        with pytest.raises(InvalidClient):
            self.authenticate(authenticator, client_assertion(rsa_private_key, sub="someone-else"))

    def test_signed_with_unregistered_key(self, authenticator):
        from cryptography.hazmat.primitives.asymmetric import rsa

        other_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        with pytest.raises(InvalidClient):
            self.authenticate(authenticator, client_assertion(other_key))

    def test_missing_jti(self, authenticator, rsa_private_key):
        import jwt as pyjwt

        payload = pyjwt.decode(client_assertion(rsa_private_key), options={"verify_signature": False})
        del payload["jti"]
        with pytest.raises(InvalidClient):
            self.authenticate(authenticator, pyjwt.encode(payload, rsa_private_key, algorithm="RS256"))


class TestStrategies:

    def test_strategy_base_is_abstract(self):
        with pytest.raises(TypeError):
            ClientAuthStrategy()

    def test_every_method_has_a_strategy(self, authenticator):
        assert set(authenticator._strategies) == set(AuthMethod)
        assert all(isinstance(s, ClientAuthStrategy) for s in authenticator._strategies.values())
