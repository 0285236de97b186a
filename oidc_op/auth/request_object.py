"""
Signed authorization request objects (OpenID Connect Core 6.1)

The ``request`` parameter is a JWT signed by the client. Every
authorization parameter it carries must agree with the query string;
any disagreement fails the whole request.
"""

import logging
from typing import Any, Dict, Mapping

import jwt

from ..errors import InvalidRequestObject
from ..models import Client
from ..security.validators import OAuthValidator

logger = logging.getLogger(__name__)

ASYMMETRIC_ALGORITHMS = ["RS256", "ES256", "PS256"]


def _decode(request_jwt: str, client: Client) -> Dict[str, Any]:
    try:
        header = jwt.get_unverified_header(request_jwt)
    except jwt.InvalidTokenError as e:
        raise InvalidRequestObject(f"Malformed request object: {e}")

    alg = header.get("alg", "none")
    options = {"verify_aud": False}

    if alg == "HS256":
        if not client.secret:
            raise InvalidRequestObject("HS256 request objects require a client secret")
        try:
            return jwt.decode(request_jwt, client.secret, algorithms=["HS256"], options=options)
        except jwt.InvalidTokenError as e:
            raise InvalidRequestObject(f"Invalid request object: {e}")

    if alg not in ASYMMETRIC_ALGORITHMS:
        raise InvalidRequestObject(f"Request object algorithm not accepted: {alg}")

    for registered_key in client.public_keys:
        try:
            key = jwt.PyJWK(registered_key).key if isinstance(registered_key, dict) else registered_key
            return jwt.decode(request_jwt, key, algorithms=ASYMMETRIC_ALGORITHMS, options=options)
        except (jwt.InvalidSignatureError, jwt.exceptions.InvalidKeyError, jwt.exceptions.PyJWKError):
            continue
        except jwt.InvalidTokenError as e:
            raise InvalidRequestObject(f"Invalid request object: {e}")
    raise InvalidRequestObject("Request object signature does not match any registered key")


def _normalize(name: str, value: Any) -> Any:
    if value in (None, ""):
        return None
    if name == "scope":
        return frozenset(OAuthValidator.parse_scope(str(value)))
    return str(value)


def verify_request_object(request_jwt: str,
                          client: Client,
                          params: Mapping[str, Any],
                          issuer: str) -> Dict[str, Any]:
    """
    Verify a request object against the client's keys and the query parameters

    Args:
        request_jwt: Value of the ``request`` parameter
        client: Client the request is made for
        params: Query parameters of the authorization request
        issuer: This provider's issuer identifier

    Returns:
        Verified request object claims

    Raises:
        InvalidRequestObject: On a bad signature, bad iss/aud, or any mismatch
    """
    claims = _decode(request_jwt, client)

    if "iss" in claims and claims["iss"] != client.id:
        raise InvalidRequestObject("Request object iss must be the client_id")

    if "aud" in claims:
        audiences = claims["aud"] if isinstance(claims["aud"], list) else [claims["aud"]]
        if issuer not in audiences and issuer.rstrip("/") not in audiences:
            raise InvalidRequestObject("Request object aud must include the issuer")

    for name in OAuthValidator.AUTHORIZATION_PARAMS:
        if _normalize(name, claims.get(name)) != _normalize(name, params.get(name)):
            logger.warning(f"Request object mismatch on '{name}' for client {client.id}")
            raise InvalidRequestObject(f"Request object parameter '{name}' does not match the request")

    return claims
