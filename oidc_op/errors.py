"""
OAuth 2.0 / OpenID Connect protocol errors

Every error carries its wire ``error`` code and HTTP status. Errors raised
by the authorization endpoint after the redirect URI has been validated
also carry the redirect target, which is what makes them redirectable.
"""

from typing import Any, Dict, Optional


class OAuthError(Exception):
    """Base OAuth protocol error"""

    error = "invalid_request"
    status_code = 400

    def __init__(self, description: str = "", error_uri: str = ""):
        self.description = description
        self.error_uri = error_uri
        self.redirect_uri: Optional[str] = None
        self.state: Optional[str] = None
        super().__init__(f"{self.error}: {description}")

    @property
    def redirectable(self) -> bool:
        return self.redirect_uri is not None

    def with_redirect(self, redirect_uri: str, state: Optional[str]) -> "OAuthError":
        self.redirect_uri = redirect_uri
        self.state = state
        return self

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.error}
        if self.description:
            body["error_description"] = self.description
        if self.error_uri:
            body["error_uri"] = self.error_uri
        return body


class InvalidRequest(OAuthError):
    error = "invalid_request"


class InvalidRequestObject(InvalidRequest):
    error = "invalid_request_object"


class RequestNotSupported(InvalidRequest):
    error = "request_not_supported"


class InvalidClient(OAuthError):
    error = "invalid_client"
    status_code = 401


class InvalidScope(OAuthError):
    error = "invalid_scope"


class InvalidGrant(OAuthError):
    error = "invalid_grant"


class UnauthorizedClient(OAuthError):
    error = "unauthorized_client"


class UnsupportedGrantType(OAuthError):
    error = "unsupported_grant_type"


class UnsupportedResponseType(OAuthError):
    error = "unsupported_response_type"


class AccessDenied(OAuthError):
    error = "access_denied"
    status_code = 403


class ServerError(OAuthError):
    error = "server_error"
    status_code = 500


class InvalidToken(OAuthError):
    """Bearer token errors (RFC 6750)"""
    error = "invalid_token"
    status_code = 401
