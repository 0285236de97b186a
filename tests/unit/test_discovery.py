"""
Unit tests for signing keys and discovery metadata
"""

import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from oidc_op.auth import DiscoveryService, KeyConfigurationError, SigningKeys
from oidc_op.config import ClientAuthConfig, PKCEConfig, SigningConfig

from tests.conftest import ISSUER


class TestSigningKeys:
    """Test key setup and JWKS publication"""

    def test_short_hmac_secret_rejected(self):
        with pytest.raises(KeyConfigurationError):
            SigningKeys("HS256", "too-short")

    def test_small_rsa_key_rejected(self):
        key = rsa.generate_private_key(public_exponent=65537, key_size=1024)
        with pytest.raises(KeyConfigurationError):
            SigningKeys("RS256", key)

    def test_es256_requires_p256(self):
        with pytest.raises(KeyConfigurationError):
            SigningKeys("ES256", ec.generate_private_key(ec.SECP384R1()))

    def test_unsupported_algorithm(self):
        with pytest.raises(KeyConfigurationError):
            SigningKeys.from_config(SigningConfig(algorithm="none"))

    def test_load_pem_from_path(self, tmp_path, rsa_private_key):
        pem_path = tmp_path / "signing.pem"
        pem_path.write_bytes(rsa_private_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        ))

        keys = SigningKeys.from_config(SigningConfig(algorithm="RS256", private_key_path=str(pem_path),
                                                     key_id="key-1"))

        assert keys.key_id == "key-1"
        token = keys.sign({"sub": "alice", "iat": 0, "exp": 4102444800})
        assert jwt.decode(token, rsa_private_key.public_key(), algorithms=["RS256"])["sub"] == "alice"

    def test_rsa_jwks(self):
        keys = SigningKeys.from_config(SigningConfig(algorithm="RS256"))
        jwk = keys.jwks()["keys"][0]

        assert jwk["kty"] == "RSA"
        assert jwk["kid"] == keys.key_id
        assert jwk["alg"] == "RS256"
        assert jwk["use"] == "sig"
        assert "d" not in jwk

    def test_ec_jwks(self):
        keys = SigningKeys.from_config(SigningConfig(algorithm="ES256"))
        jwk = keys.jwks()["keys"][0]

        assert jwk["kty"] == "EC"
        assert jwk["crv"] == "P-256"
        assert "d" not in jwk

    def test_jwks_verifies_tokens(self):
        keys = SigningKeys.from_config(SigningConfig(algorithm="ES256"))
        public_key = jwt.PyJWK(keys.jwks()["keys"][0]).key

        token = keys.sign({"sub": "alice", "iat": 0, "exp": 4102444800})

        assert jwt.decode(token, public_key, algorithms=["ES256"])["sub"] == "alice"

    def test_symmetric_keys_are_not_published(self, signing_keys):
        assert signing_keys.is_symmetric
        assert signing_keys.jwks() == {"keys": []}


class TestDiscoveryService:
    """Test provider metadata"""

    def test_metadata(self, test_config, signing_keys):
        metadata = DiscoveryService(test_config, signing_keys).get_provider_metadata()

        assert metadata["issuer"] == ISSUER
        assert metadata["authorization_endpoint"] == f"{ISSUER}/authorize"
        assert metadata["token_endpoint"] == f"{ISSUER}/token"
        assert metadata["revocation_endpoint"] == f"{ISSUER}/revoke"
        assert metadata["jwks_uri"] == f"{ISSUER}/keys"
        assert metadata["end_session_endpoint"] == f"{ISSUER}/end_session"
        assert metadata["response_types_supported"] == ["code"]
        assert metadata["grant_types_supported"] == ["authorization_code", "refresh_token"]
        assert metadata["subject_types_supported"] == ["public"]
        assert metadata["id_token_signing_alg_values_supported"] == ["HS256"]
        assert metadata["code_challenge_methods_supported"] == ["S256"]
        assert metadata["token_endpoint_auth_methods_supported"] == [
            "none", "client_secret_basic", "client_secret_post", "private_key_jwt"
        ]
        assert metadata["request_parameter_supported"] is True
        assert "offline_access" in metadata["scopes_supported"]

    def test_metadata_follows_policy(self, test_config, signing_keys):
        config = test_config.model_copy(update={
            "pkce": PKCEConfig(allow_plain=True),
            "client_auth": ClientAuthConfig(auth_method_post=False, auth_method_private_key_jwt=False),
            "refresh_grant_enabled": False,
            "request_object_supported": False,
        })

        metadata = DiscoveryService(config, signing_keys).get_provider_metadata()

        assert metadata["code_challenge_methods_supported"] == ["S256", "plain"]
        assert metadata["token_endpoint_auth_methods_supported"] == ["none", "client_secret_basic"]
        assert metadata["grant_types_supported"] == ["authorization_code"]
        assert metadata["request_parameter_supported"] is False
        assert "token_endpoint_auth_signing_alg_values_supported" not in metadata
