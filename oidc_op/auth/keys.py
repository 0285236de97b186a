"""
Provider signing keys

Key material is created once at startup from configuration and shared
read-only by the token minter and the discovery service.
"""

import base64
import hashlib
import json
import logging
import secrets
from pathlib import Path
from typing import Any, Dict, List, Optional

import jwt
from jwt.algorithms import ECAlgorithm, RSAAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from ..config import SigningConfig

logger = logging.getLogger(__name__)

SUPPORTED_ALGORITHMS = ("HS256", "RS256", "ES256")
MIN_RSA_KEY_SIZE = 2048
MIN_HMAC_SECRET_LENGTH = 32


class KeyConfigurationError(Exception):
    pass


class SigningKeys:
    """Immutable signing key for one algorithm"""

    __slots__ = ("_algorithm", "_signing_key", "_verification_key", "_key_id")

    def __init__(self, algorithm: str, signing_key: Any, key_id: Optional[str] = None):
        if algorithm not in SUPPORTED_ALGORITHMS:
            raise KeyConfigurationError(f"Unsupported signing algorithm: {algorithm}")

        if algorithm == "HS256":
            if not isinstance(signing_key, (str, bytes)) or len(signing_key) < MIN_HMAC_SECRET_LENGTH:
                raise KeyConfigurationError(f"HS256 secret must be at least {MIN_HMAC_SECRET_LENGTH} bytes")
            verification_key = signing_key
        elif algorithm == "RS256":
            if not isinstance(signing_key, rsa.RSAPrivateKey):
                raise KeyConfigurationError("RS256 requires an RSA private key")
            if signing_key.key_size < MIN_RSA_KEY_SIZE:
                raise KeyConfigurationError(f"RSA keys must be at least {MIN_RSA_KEY_SIZE} bits")
            verification_key = signing_key.public_key()
        else:
            if not isinstance(signing_key, ec.EllipticCurvePrivateKey) or \
                    not isinstance(signing_key.curve, ec.SECP256R1):
                raise KeyConfigurationError("ES256 requires a P-256 private key")
            verification_key = signing_key.public_key()

        self._algorithm = algorithm
        self._signing_key = signing_key
        self._verification_key = verification_key
        self._key_id = key_id or self._derive_key_id(algorithm, verification_key)

    @classmethod
    def from_config(cls, config: SigningConfig) -> "SigningKeys":
        """
        Build the key from configuration, generating one when none is configured

        Generated keys only live for the process; tokens do not survive a restart.
        """
        algorithm = config.algorithm.upper()

        if algorithm == "HS256":
            secret = config.secret
            if not secret:
                logger.warning("No HS256 secret configured, generating an ephemeral one")
                secret = secrets.token_urlsafe(48)
            return cls(algorithm, secret, config.key_id)

        if config.private_key_path:
            pem = Path(config.private_key_path).read_bytes()
            private_key = serialization.load_pem_private_key(pem, password=None)
            logger.info(f"Loaded {algorithm} signing key from {config.private_key_path}")
        elif algorithm == "RS256":
            logger.warning("No RS256 key configured, generating an ephemeral 2048-bit key")
            private_key = rsa.generate_private_key(public_exponent=65537, key_size=MIN_RSA_KEY_SIZE)
        elif algorithm == "ES256":
            logger.warning("No ES256 key configured, generating an ephemeral P-256 key")
            private_key = ec.generate_private_key(ec.SECP256R1())
        else:
            raise KeyConfigurationError(f"Unsupported signing algorithm: {algorithm}")

        return cls(algorithm, private_key, config.key_id)

    @property
    def algorithm(self) -> str:
        return self._algorithm

    @property
    def key_id(self) -> str:
        return self._key_id

    @property
    def is_symmetric(self) -> bool:
        return self._algorithm == "HS256"

    def sign(self, claims: Dict[str, Any], token_type: Optional[str] = None) -> str:
        headers = {"kid": self._key_id}
        if token_type:
            headers["typ"] = token_type
        return jwt.encode(claims, self._signing_key, algorithm=self._algorithm, headers=headers)

    def verify(self, token: str, audience: Optional[str] = None,
               issuer: Optional[str] = None, verify_exp: bool = True) -> Dict[str, Any]:
        """
        Decode and verify a token signed by this provider

        Raises:
            jwt.InvalidTokenError: If the signature or a registered claim is invalid
        """
        return jwt.decode(
            token,
            self._verification_key,
            algorithms=[self._algorithm],
            audience=audience,
            issuer=issuer,
            options={"verify_aud": audience is not None, "verify_exp": verify_exp, "require": ["exp", "iat"]},
        )

    def jwks(self) -> Dict[str, List[Dict[str, Any]]]:
        """Public keys as a JWK Set; empty for shared-secret signing"""
        if self.is_symmetric:
            return {"keys": []}

        if self._algorithm == "RS256":
            jwk = json.loads(RSAAlgorithm.to_jwk(self._verification_key))
        else:
            jwk = json.loads(ECAlgorithm.to_jwk(self._verification_key))
        jwk.update({"kid": self._key_id, "use": "sig", "alg": self._algorithm})
        return {"keys": [jwk]}

    @staticmethod
    def _derive_key_id(algorithm: str, verification_key: Any) -> str:
        if algorithm == "HS256":
            return "hs256"
        der = verification_key.public_bytes(
            serialization.Encoding.DER,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        digest = hashlib.sha256(der).digest()
        return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")[:16]
