"""
OpenID Provider Configuration

Configuration for the authorization server core: issuer, token lifetimes,
PKCE and client-authentication policy, signing keys, storage and logging.
"""

import os
from typing import List, Optional
from pydantic import BaseModel, Field
import logging

logger = logging.getLogger(__name__)


class TokenConfig(BaseModel):
    """Lifetimes (seconds) and formats of issued artifacts"""
    code_ttl: int = Field(default=60, description="Authorization code lifetime")
    auth_request_ttl: int = Field(default=1800, description="Time allowed for login to complete")
    access_token_ttl: int = Field(default=3600, description="Access token lifetime")
    id_token_ttl: int = Field(default=3600, description="Identity token lifetime")
    refresh_token_ttl: int = Field(default=30 * 24 * 3600, description="Refresh token lifetime")
    access_token_format: str = Field(default="jwt", description="Access token format (jwt/opaque)")


class PKCEConfig(BaseModel):
    required: bool = Field(default=False, description="Require PKCE for every client, not only public ones")
    allow_plain: bool = Field(default=False, description="Accept the 'plain' challenge method")


class ClientAuthConfig(BaseModel):
    """Token endpoint client authentication policy"""
    auth_method_post: bool = Field(default=True, description="Allow client_secret_post")
    auth_method_private_key_jwt: bool = Field(default=True, description="Allow private_key_jwt")
    assertion_max_lifetime: int = Field(default=300, description="Max seconds between now and assertion exp")
    clock_skew: int = Field(default=30, description="Leeway for exp/iat/nbf checks")


class SigningConfig(BaseModel):
    """Token signing key; initialized once at startup"""
    algorithm: str = Field(default="RS256", description="HS256, RS256 or ES256")
    key_id: Optional[str] = Field(default=None, description="Key id published in JWKS")
    private_key_path: Optional[str] = Field(default=None, description="PEM private key (RS256/ES256)")
    secret: Optional[str] = Field(default=None, description="Shared secret (HS256)")


class StorageConfig(BaseModel):
    type: str = Field(default="memory", description="Storage type (memory/sqlite)")
    path: Optional[str] = Field(default=None, description="SQLite database path")
    timeout: float = Field(default=5.0, description="Bound on any single storage call in seconds")
    retry_attempts: int = Field(default=3, description="Attempts for transient storage failures")
    retry_backoff: float = Field(default=0.05, description="Backoff between attempts in seconds")


class SecurityPolicyConfig(BaseModel):
    """Replay and compromise handling"""
    revoke_on_code_reuse: bool = Field(default=True, description="Revoke tokens issued from a reused code")
    revoke_family_on_refresh_reuse: bool = Field(
        default=True, description="Revoke the whole token family when a rotated refresh token is replayed"
    )


class ServerConfig(BaseModel):
    """HTTP front end configuration"""
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=9998, description="Server port")
    cors_origins: List[str] = Field(default=["*"], description="CORS allowed origins")
    cleanup_interval: int = Field(default=300, description="Seconds between expired record sweeps, 0 disables")
    clients_file: Optional[str] = Field(default=None, description="JSON file with client definitions")


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="text", description="Log format (json/text)")
    file_path: Optional[str] = Field(default=None, description="Log file path")
    max_size_mb: int = Field(default=10, description="Maximum log file size")
    backup_count: int = Field(default=3, description="Number of backup log files")
    audit_logging_enabled: bool = Field(default=True, description="Enable security audit logging")


class ProviderConfig(BaseModel):
    """
    Complete OpenID provider configuration

    Endpoint paths are deployment-configurable; the issuer is joined with
    them to build discovery metadata.
    """

    issuer: str = Field(default="http://localhost:9998", description="Issuer identifier")
    environment: str = Field(default="production", description="Environment (development/production)")
    login_url: str = Field(default="/login/username", description="Login UI entry point")
    default_logout_redirect_uri: str = Field(
        default="/logged-out", description="Where end_session sends the user without a registered redirect"
    )

    authorization_path: str = Field(default="/authorize")
    token_path: str = Field(default="/token")
    revocation_path: str = Field(default="/revoke")
    jwks_path: str = Field(default="/keys")
    end_session_path: str = Field(default="/end_session")

    supported_scopes: List[str] = Field(default=["openid", "profile", "email", "offline_access"])
    refresh_grant_enabled: bool = Field(default=True, description="Enable the refresh_token grant")
    request_object_supported: bool = Field(default=True, description="Accept signed 'request' objects")

    tokens: TokenConfig = Field(default_factory=TokenConfig)
    pkce: PKCEConfig = Field(default_factory=PKCEConfig)
    client_auth: ClientAuthConfig = Field(default_factory=ClientAuthConfig)
    signing: SigningConfig = Field(default_factory=SigningConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    security: SecurityPolicyConfig = Field(default_factory=SecurityPolicyConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def endpoint(self, path: str) -> str:
        return f"{self.issuer.rstrip('/')}{path}"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


def get_provider_config() -> ProviderConfig:
    """
    Load provider configuration from environment variables

    Environment Variables:
        OIDC_OP_ISSUER: Issuer URL
        OIDC_OP_LOGIN_URL: Login UI entry point
        OIDC_OP_END_SESSION_PATH: Path of the end_session endpoint
        OIDC_OP_DEFAULT_LOGOUT_REDIRECT_URI: Page shown after logout without a registered redirect
        OIDC_OP_SIGNING_ALGORITHM: HS256/RS256/ES256
        OIDC_OP_SIGNING_KEY_PATH: PEM private key path
        OIDC_OP_SIGNING_SECRET: HS256 secret
        OIDC_OP_STORAGE_TYPE: memory/sqlite
        OIDC_OP_STORAGE_PATH: SQLite database path
        OIDC_OP_LOG_LEVEL: Logging level
        OIDC_OP_CLIENTS_FILE: JSON file with client definitions

    Returns:
        ProviderConfig instance with loaded configuration
    """
    environment = os.getenv("OIDC_OP_ENVIRONMENT", "production")

    config = ProviderConfig(
        issuer=os.getenv("OIDC_OP_ISSUER", "http://localhost:9998"),
        environment=environment,
        login_url=os.getenv("OIDC_OP_LOGIN_URL", "/login/username"),
        default_logout_redirect_uri=os.getenv("OIDC_OP_DEFAULT_LOGOUT_REDIRECT_URI", "/logged-out"),
        end_session_path=os.getenv("OIDC_OP_END_SESSION_PATH", "/end_session"),
        refresh_grant_enabled=_env_bool("OIDC_OP_REFRESH_GRANT_ENABLED", "true"),
        request_object_supported=_env_bool("OIDC_OP_REQUEST_OBJECT_SUPPORTED", "true"),
        tokens=TokenConfig(
            code_ttl=int(os.getenv("OIDC_OP_CODE_TTL", "60")),
            access_token_ttl=int(os.getenv("OIDC_OP_ACCESS_TOKEN_TTL", "3600")),
            id_token_ttl=int(os.getenv("OIDC_OP_ID_TOKEN_TTL", "3600")),
            refresh_token_ttl=int(os.getenv("OIDC_OP_REFRESH_TOKEN_TTL", str(30 * 24 * 3600))),
            access_token_format=os.getenv("OIDC_OP_ACCESS_TOKEN_FORMAT", "jwt"),
        ),
        pkce=PKCEConfig(
            required=_env_bool("OIDC_OP_PKCE_REQUIRED", "false"),
            allow_plain=_env_bool("OIDC_OP_PKCE_ALLOW_PLAIN", "false"),
        ),
        client_auth=ClientAuthConfig(
            auth_method_post=_env_bool("OIDC_OP_AUTH_METHOD_POST", "true"),
            auth_method_private_key_jwt=_env_bool("OIDC_OP_AUTH_METHOD_PRIVATE_KEY_JWT", "true"),
        ),
        signing=SigningConfig(
            algorithm=os.getenv("OIDC_OP_SIGNING_ALGORITHM", "RS256"),
            key_id=os.getenv("OIDC_OP_SIGNING_KEY_ID"),
            private_key_path=os.getenv("OIDC_OP_SIGNING_KEY_PATH"),
            secret=os.getenv("OIDC_OP_SIGNING_SECRET"),
        ),
        storage=StorageConfig(
            type=os.getenv("OIDC_OP_STORAGE_TYPE", "memory"),
            path=os.getenv("OIDC_OP_STORAGE_PATH"),
            timeout=float(os.getenv("OIDC_OP_STORAGE_TIMEOUT", "5.0")),
            retry_attempts=int(os.getenv("OIDC_OP_STORAGE_RETRY_ATTEMPTS", "3")),
        ),
        security=SecurityPolicyConfig(
            revoke_on_code_reuse=_env_bool("OIDC_OP_REVOKE_ON_CODE_REUSE", "true"),
            revoke_family_on_refresh_reuse=_env_bool("OIDC_OP_REVOKE_FAMILY_ON_REFRESH_REUSE", "true"),
        ),
        server=ServerConfig(
            host=os.getenv("OIDC_OP_HOST", "0.0.0.0"),
            port=int(os.getenv("OIDC_OP_PORT", "9998")),
            cors_origins=os.getenv("OIDC_OP_CORS_ORIGINS", "*").split(","),
            cleanup_interval=int(os.getenv("OIDC_OP_CLEANUP_INTERVAL", "300")),
            clients_file=os.getenv("OIDC_OP_CLIENTS_FILE"),
        ),
        logging=LoggingConfig(
            level=os.getenv("OIDC_OP_LOG_LEVEL", "INFO"),
            format=os.getenv("OIDC_OP_LOG_FORMAT", "text"),
            file_path=os.getenv("OIDC_OP_LOG_FILE"),
            audit_logging_enabled=_env_bool("OIDC_OP_AUDIT_LOGGING", "true"),
        ),
    )

    logger.info(
        f"Provider configuration loaded: issuer={config.issuer}, env={environment}, "
        f"storage={config.storage.type}, alg={config.signing.algorithm}"
    )
    return config


def get_development_config() -> ProviderConfig:
    """Get development-friendly configuration (HS256, in-memory storage)"""
    return ProviderConfig(
        issuer="http://localhost:9998",
        environment="development",
        signing=SigningConfig(algorithm="HS256", secret="dev-signing-secret-change-me-0123456789"),
        storage=StorageConfig(type="memory"),
        logging=LoggingConfig(level="DEBUG"),
    )
