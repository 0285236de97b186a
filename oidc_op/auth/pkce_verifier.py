"""
PKCE (Proof Key for Code Exchange) Implementation

Implements RFC 7636:
- S256 challenge method; 'plain' only when provider policy allows it
- Cryptographically secure verifier generation
- Constant-time challenge comparison
"""

import base64
import hashlib
import re
import secrets
import string
from dataclasses import dataclass
from typing import Literal, Optional
import logging

logger = logging.getLogger(__name__)

S256 = "S256"
PLAIN = "plain"
SUPPORTED_METHODS = (S256, PLAIN)


@dataclass
class PKCEChallenge:
    """PKCE challenge data structure"""
    code_verifier: str
    code_challenge: str
    code_challenge_method: Literal["S256", "plain"]


class PKCEError(Exception):
    """PKCE-related errors"""
    pass


class PKCEVerifier:
    """
    PKCE verification per RFC 7636

    - code_verifier: 43-128 characters from A-Z, a-z, 0-9, "-", ".", "_", "~"
    - S256 code_challenge: base64url(SHA256(verifier)) without padding, 43 chars
    """

    VALID_CHARS = string.ascii_letters + string.digits + "-._~"
    S256_CHALLENGE = re.compile(r"^[A-Za-z0-9_-]{43}$")

    MIN_VERIFIER_LENGTH = 43
    MAX_VERIFIER_LENGTH = 128

    def __init__(self, allow_plain: bool = False):
        self.allow_plain = allow_plain

    @classmethod
    def generate_code_verifier(cls, length: int = 64) -> str:
        """
        Generate cryptographically secure code verifier

        Raises:
            PKCEError: If length is invalid
        """
        if not (cls.MIN_VERIFIER_LENGTH <= length <= cls.MAX_VERIFIER_LENGTH):
            raise PKCEError(
                f"Code verifier length must be between {cls.MIN_VERIFIER_LENGTH} "
                f"and {cls.MAX_VERIFIER_LENGTH} characters"
            )
        return ''.join(secrets.choice(cls.VALID_CHARS) for _ in range(length))

    @classmethod
    def generate_code_challenge(cls, code_verifier: str, method: str = S256) -> str:
        """
        Generate code challenge from code verifier

        Raises:
            PKCEError: If verifier is invalid or method unsupported
        """
        cls._validate_code_verifier(code_verifier)
        return cls._transform(code_verifier, method)

    @staticmethod
    def _transform(code_verifier: str, method: str) -> str:
        if method == S256:
            digest = hashlib.sha256(code_verifier.encode('utf-8')).digest()
            return base64.urlsafe_b64encode(digest).decode('ascii').rstrip('=')
        if method == PLAIN:
            return code_verifier
        raise PKCEError(f"Unsupported code challenge method: {method}")

    @classmethod
    def create_pkce_challenge(cls, verifier_length: int = 64, method: str = S256) -> PKCEChallenge:
        code_verifier = cls.generate_code_verifier(verifier_length)
        return PKCEChallenge(
            code_verifier=code_verifier,
            code_challenge=cls.generate_code_challenge(code_verifier, method),
            code_challenge_method=method  # type: ignore
        )

    def check_challenge(self, code_challenge: str, method: Optional[str]) -> str:
        """
        Validate challenge parameters of an authorization request

        Args:
            code_challenge: Challenge sent by the client
            method: Challenge method; RFC 7636 defaults it to 'plain'

        Returns:
            The effective challenge method

        Raises:
            PKCEError: If the method is unknown, disabled, or the challenge malformed
        """
        method = method or PLAIN
        if method not in SUPPORTED_METHODS:
            raise PKCEError(f"Unsupported code_challenge_method: {method}")
        if method == PLAIN and not self.allow_plain:
            raise PKCEError("code_challenge_method 'plain' is not allowed, use S256")

        if method == S256:
            if not self.S256_CHALLENGE.match(code_challenge):
                raise PKCEError("S256 code_challenge must be 43 base64url characters")
        else:
            self._validate_code_verifier(code_challenge)
        return method

    @classmethod
    def verify_code_challenge(cls, code_verifier: str, code_challenge: str, method: str) -> bool:
        """
        Verify that code verifier matches the challenge

        The verifier is transformed as given; length and charset rules apply
        to generation only.

        Returns:
            True if verification succeeds, False otherwise
        """
        try:
            if not code_challenge:
                logger.error("Empty code challenge provided")
                return False
            if not code_verifier:
                logger.warning("Empty code verifier provided")
                return False

            expected_challenge = cls._transform(code_verifier, method)
            is_valid = secrets.compare_digest(
                expected_challenge.encode('utf-8'), code_challenge.encode('utf-8')
            )

            if is_valid:
                logger.debug("PKCE verification successful")
            else:
                logger.warning("PKCE verification failed - challenge mismatch")
            return is_valid

        except PKCEError as e:
            logger.warning(f"PKCE verification error: {e}")
            return False

    @classmethod
    def _validate_code_verifier(cls, code_verifier: str) -> None:
        """
        Raises:
            PKCEError: If code verifier is invalid
        """
        if not code_verifier:
            raise PKCEError("Code verifier cannot be empty")

        if not (cls.MIN_VERIFIER_LENGTH <= len(code_verifier) <= cls.MAX_VERIFIER_LENGTH):
            raise PKCEError(
                f"Code verifier length must be between {cls.MIN_VERIFIER_LENGTH} "
                f"and {cls.MAX_VERIFIER_LENGTH} characters, got {len(code_verifier)}"
            )

        invalid_chars = set(code_verifier) - set(cls.VALID_CHARS)
        if invalid_chars:
            raise PKCEError(
                f"Code verifier contains invalid characters: {sorted(invalid_chars)}"
            )


def create_pkce_pair() -> PKCEChallenge:
    """Create PKCE challenge pair with secure defaults"""
    return PKCEVerifier.create_pkce_challenge(verifier_length=64, method=S256)
