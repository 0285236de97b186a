"""
Input Validation for OAuth 2.0 / OpenID Connect requests

Shape checks only: presence, length and character set of protocol
parameters. Policy decisions (registered redirect URIs, permitted scopes,
PKCE policy) belong to the protocol components.
"""

import base64
import binascii
import re
import logging
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import unquote_plus, urlparse

logger = logging.getLogger(__name__)

JWT_BEARER_ASSERTION = "urn:ietf:params:oauth:client-assertion-type:jwt-bearer"


class ValidationError(Exception):
    """Input validation error"""
    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


class InputValidator:
    """
    General input validation
    """

    # RFC 6749 appendix A character classes
    PATTERNS = {
        "client_id": re.compile(r"^[\x20-\x7e]{1,128}$"),
        "vschar": re.compile(r"^[\x20-\x7e]+$"),
        "scope": re.compile(r"^[\x21\x23-\x5b\x5d-\x7e]+( [\x21\x23-\x5b\x5d-\x7e]+)*$"),
        "jwt": re.compile(r"^[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]*$"),
        "base64url": re.compile(r"^[A-Za-z0-9_-]+$"),
    }

    @classmethod
    def validate_string(cls,
                        value: Any,
                        field_name: str,
                        pattern: Optional[str] = None,
                        min_length: int = 0,
                        max_length: int = 1000,
                        required: bool = True) -> Optional[str]:
        """
        Validate string input with pattern matching

        Returns:
            Validated string or None if optional and empty

        Raises:
            ValidationError: If validation fails
        """
        if value is None or value == "":
            if required:
                raise ValidationError(field_name, "Field is required")
            return None

        if not isinstance(value, str):
            raise ValidationError(field_name, f"Must be string, got {type(value).__name__}")

        if len(value) < min_length:
            raise ValidationError(field_name, f"Must be at least {min_length} characters")
        if len(value) > max_length:
            raise ValidationError(field_name, f"Must be at most {max_length} characters")

        if pattern:
            regex = cls.PATTERNS.get(pattern) or re.compile(pattern)
            if not regex.match(value):
                raise ValidationError(field_name, "Contains invalid characters")

        return value

    @classmethod
    def validate_url(cls, url: Any, field_name: str, required: bool = True) -> Optional[str]:
        """
        Validate an absolute URI without a fragment (RFC 6749 3.1.2)

        Raises:
            ValidationError: If the URI is malformed
        """
        url = cls.validate_string(url, field_name, max_length=2048, required=required)
        if url is None:
            return None

        parsed = urlparse(url)
        if not parsed.scheme or not (parsed.netloc or parsed.scheme not in ("http", "https")):
            raise ValidationError(field_name, "Must be an absolute URI")
        if parsed.fragment:
            raise ValidationError(field_name, "Must not contain a fragment")
        return url


class OAuthValidator:
    """
    OAuth 2.0 / OpenID Connect parameter validation
    """

    AUTHORIZATION_PARAMS = (
        "response_type", "client_id", "redirect_uri", "scope", "state",
        "nonce", "code_challenge", "code_challenge_method",
    )

    @staticmethod
    def parse_scope(scope: Optional[str]) -> List[str]:
        """Split a scope string, dropping duplicates but keeping order"""
        if not scope:
            return []
        return list(dict.fromkeys(scope.split()))

    @classmethod
    def validate_authorization_request(cls, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        Validate the shape of authorization request parameters

        ``client_id`` and ``redirect_uri`` are checked by the caller first
        because errors on them must never be redirected.

        Raises:
            ValidationError: If validation fails
        """
        validated = {}

        validated["response_type"] = InputValidator.validate_string(
            params.get("response_type"), "response_type", pattern="vschar", max_length=64
        )
        validated["scope"] = InputValidator.validate_string(
            params.get("scope"), "scope", pattern="scope", max_length=1024
        )
        validated["state"] = InputValidator.validate_string(
            params.get("state"), "state", pattern="vschar", max_length=512, required=False
        )
        validated["nonce"] = InputValidator.validate_string(
            params.get("nonce"), "nonce", pattern="vschar", max_length=512, required=False
        )
        validated["code_challenge"] = InputValidator.validate_string(
            params.get("code_challenge"), "code_challenge", max_length=128, required=False
        )
        validated["code_challenge_method"] = InputValidator.validate_string(
            params.get("code_challenge_method"), "code_challenge_method", max_length=16, required=False
        )
        if validated["code_challenge_method"] and not validated["code_challenge"]:
            raise ValidationError("code_challenge", "Required when code_challenge_method is sent")

        return validated

    @classmethod
    def validate_token_request(cls, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        Validate token request parameters for the supported grant types

        Raises:
            ValidationError: If validation fails
        """
        validated = {}
        grant_type = InputValidator.validate_string(params.get("grant_type"), "grant_type", max_length=64)
        validated["grant_type"] = grant_type

        if grant_type == "authorization_code":
            validated["code"] = InputValidator.validate_string(
                params.get("code"), "code", pattern="base64url", max_length=256
            )
            validated["redirect_uri"] = InputValidator.validate_url(
                params.get("redirect_uri"), "redirect_uri"
            )
            validated["code_verifier"] = InputValidator.validate_string(
                params.get("code_verifier"), "code_verifier", max_length=128, required=False
            )
        elif grant_type == "refresh_token":
            validated["refresh_token"] = InputValidator.validate_string(
                params.get("refresh_token"), "refresh_token", pattern="base64url", max_length=256
            )
            validated["scope"] = InputValidator.validate_string(
                params.get("scope"), "scope", pattern="scope", max_length=1024, required=False
            )

        return validated

    @classmethod
    def parse_basic_auth(cls, auth_header: str) -> Tuple[str, str]:
        """
        Decode an HTTP Basic client authentication header (RFC 6749 2.3.1)

        Returns:
            (client_id, client_secret)

        Raises:
            ValidationError: If the header is malformed
        """
        if not auth_header or not auth_header.startswith("Basic "):
            raise ValidationError("authorization", "Missing or invalid Basic auth header")

        try:
            decoded = base64.b64decode(auth_header[6:].strip(), validate=True).decode("utf-8")
            client_id, client_secret = decoded.split(":", 1)
        except (binascii.Error, UnicodeDecodeError, ValueError) as e:
            raise ValidationError("authorization", f"Invalid Basic auth: {e}")

        client_id = unquote_plus(client_id)
        client_secret = unquote_plus(client_secret)
        InputValidator.validate_string(client_id, "client_id", pattern="client_id")
        return client_id, client_secret
