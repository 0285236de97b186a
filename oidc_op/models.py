from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ClientType(str, Enum):
    CONFIDENTIAL = "confidential"
    PUBLIC = "public"


class AuthMethod(str, Enum):
    NONE = "none"
    BASIC = "client_secret_basic"
    POST = "client_secret_post"
    PRIVATE_KEY_JWT = "private_key_jwt"


class GrantType(str, Enum):
    AUTHORIZATION_CODE = "authorization_code"
    REFRESH_TOKEN = "refresh_token"


class AuthRequestStatus(str, Enum):
    PENDING = "pending"
    AUTHENTICATED = "authenticated"
    CONSUMED = "consumed"


class TokenType(str, Enum):
    ACCESS = "access_token"
    REFRESH = "refresh_token"


SECRET_METHODS = frozenset({AuthMethod.BASIC, AuthMethod.POST})


class Client(BaseModel):
    """
    Pre-registered client definition.

    Frozen: clients are registered once at startup and live for the
    lifetime of the process.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    type: ClientType = ClientType.CONFIDENTIAL
    secret: Optional[str] = None
    redirect_uris: FrozenSet[str] = frozenset()
    post_logout_redirect_uris: FrozenSet[str] = frozenset()
    auth_methods: FrozenSet[AuthMethod] = frozenset({AuthMethod.BASIC})
    public_keys: List[Union[str, Dict[str, Any]]] = Field(default_factory=list)
    allowed_scopes: FrozenSet[str] = frozenset({"openid", "profile", "email", "offline_access"})
    grant_types: FrozenSet[GrantType] = frozenset({GrantType.AUTHORIZATION_CODE, GrantType.REFRESH_TOKEN})
    response_types: FrozenSet[str] = frozenset({"code"})

    @model_validator(mode="after")
    def _check_profile(self) -> "Client":
        if not self.auth_methods:
            raise ValueError("client must allow at least one auth method")
        if self.type == ClientType.PUBLIC:
            if self.secret:
                raise ValueError("public clients cannot hold a secret")
            if self.auth_methods != frozenset({AuthMethod.NONE}):
                raise ValueError("public clients may only use auth method 'none'")
        elif AuthMethod.NONE in self.auth_methods:
            raise ValueError("confidential clients cannot use auth method 'none'")
        if self.auth_methods & SECRET_METHODS and not self.secret:
            raise ValueError("secret auth methods require a client secret")
        if AuthMethod.PRIVATE_KEY_JWT in self.auth_methods and not self.public_keys:
            raise ValueError("private_key_jwt requires at least one public key")
        return self

    @property
    def is_public(self) -> bool:
        return self.type == ClientType.PUBLIC


class AuthorizationRequest(BaseModel):
    """Pending authorization, resumed by the login UI via its id"""
    id: str
    client_id: str
    response_type: str = "code"
    scopes: List[str] = Field(default_factory=list)
    redirect_uri: str
    state: Optional[str] = None
    nonce: Optional[str] = None
    code_challenge: Optional[str] = None
    code_challenge_method: Optional[str] = None
    requested_at: datetime
    expires_at: datetime
    subject: Optional[str] = None
    auth_time: Optional[datetime] = None
    status: AuthRequestStatus = AuthRequestStatus.PENDING


class AuthorizationCode(BaseModel):
    code: str
    authorization_request_id: str
    client_id: str
    expires_at: datetime
    used: bool = False


class Token(BaseModel):
    """
    Persisted access or refresh token record.

    For signed access tokens ``value`` holds the ``jti`` claim; opaque
    tokens and refresh tokens store the token string itself.
    """
    value: str
    token_type: TokenType
    subject: str
    client_id: str
    scopes: List[str] = Field(default_factory=list)
    issued_at: datetime
    expires_at: datetime
    family_id: str
    rotated_from: Optional[str] = None
    revoked: bool = False
    auth_time: Optional[datetime] = None


@dataclass
class Grant:
    """Validated client + subject + scopes, derived per request and never stored"""
    client: Client
    subject: str
    scopes: List[str]
    family_id: str
    auth_time: Optional[datetime] = None
    nonce: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def scope(self) -> str:
        return " ".join(self.scopes)


@dataclass
class TokenResponse:
    access_token: str
    expires_in: int
    scope: str
    token_type: str = "Bearer"
    id_token: Optional[str] = None
    refresh_token: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        response: Dict[str, Any] = {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "expires_in": self.expires_in,
            "scope": self.scope,
        }
        if self.id_token:
            response["id_token"] = self.id_token
        if self.refresh_token:
            response["refresh_token"] = self.refresh_token
        return response
