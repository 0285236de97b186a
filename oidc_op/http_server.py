"""
FastAPI HTTP front end for the OpenID provider

Maps the protocol endpoints onto OpenIDProvider:
- GET/POST /authorize
- POST /token
- POST /revoke
- GET /.well-known/openid-configuration and the JWKS endpoint
- GET/POST /end_session and the default logged-out page
- GET /health

The login UI is an external collaborator. In development a bare form
handler at the configured login URL completes requests without a password.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse

from .auth import ClientRegistry, OpenIDProvider, web_client
from .config import ProviderConfig, configure_logging, get_provider_config
from .errors import InvalidClient, OAuthError

logger = logging.getLogger(__name__)

NO_STORE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}


def error_response(error: OAuthError) -> JSONResponse:
    """Render a protocol error as the token and revocation endpoints expect"""
    headers = dict(NO_STORE_HEADERS)
    if isinstance(error, InvalidClient):
        headers["WWW-Authenticate"] = 'Basic realm="oidc-op"'
    return JSONResponse(status_code=error.status_code, content=error.to_dict(), headers=headers)


class OpenIDProviderHTTPServer:
    """HTTP server exposing the provider endpoints"""

    def __init__(self, config: ProviderConfig, provider: OpenIDProvider):
        self.config = config
        self.provider = provider
        self._cleanup_task: Optional[asyncio.Task] = None

        self.app = FastAPI(
            title="OpenID Provider",
            description="OpenID Connect / OAuth 2.0 authorization server",
            version="0.1.0",
            lifespan=self.lifespan
        )

        self._setup_middleware()
        self._setup_routes()

    @asynccontextmanager
    async def lifespan(self, app: FastAPI):
        """Manage application lifecycle"""
        logger.info(f"Starting OpenID provider for issuer {self.config.issuer}")
        if self.config.server.cleanup_interval > 0:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())
        yield
        logger.info("Shutting down OpenID provider...")

        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
        self.provider.close()

    async def _cleanup_loop(self):
        while True:
            await asyncio.sleep(self.config.server.cleanup_interval)
            try:
                await run_in_threadpool(self.provider.cleanup_expired)
            except OAuthError as e:
                logger.error(f"Expired record cleanup failed: {e}")

    def _setup_middleware(self):
        """Setup FastAPI middleware"""
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=self.config.server.cors_origins,
            allow_credentials=False,
            allow_methods=["GET", "POST"],
            allow_headers=["*"],
        )

    def _setup_routes(self):
        """Setup API routes"""

        @self.app.get("/health")
        async def health_check():
            """Health check endpoint"""
            return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}

        @self.app.get("/.well-known/openid-configuration")
        async def openid_configuration():
            return self.provider.discovery_document()

        @self.app.get(self.config.jwks_path)
        async def jwks():
            return self.provider.jwks()

        @self.app.api_route(self.config.authorization_path, methods=["GET", "POST"])
        async def authorize(request: Request):
            """Authorization endpoint"""
            params: Dict[str, Any] = dict(request.query_params)
            if request.method == "POST":
                params.update(dict(await request.form()))

            result = await run_in_threadpool(self.provider.authorize, params)
            if result.is_redirect:
                return RedirectResponse(result.location, status_code=status.HTTP_302_FOUND)
            return JSONResponse(status_code=result.status_code, content=result.error.to_dict(),
                                headers=NO_STORE_HEADERS)

        @self.app.post(self.config.token_path)
        async def token(request: Request):
            """Token endpoint"""
            form = dict(await request.form())
            try:
                body = await run_in_threadpool(
                    self.provider.token, form, request.headers.get("Authorization")
                )
            except OAuthError as e:
                logger.info(f"Token request rejected: {e.error}")
                return error_response(e)
            return JSONResponse(content=body, headers=NO_STORE_HEADERS)

        @self.app.post(self.config.revocation_path)
        async def revoke(request: Request):
            """Revocation endpoint (RFC 7009)"""
            form = dict(await request.form())
            try:
                await run_in_threadpool(self.provider.revoke, form, request.headers.get("Authorization"))
            except OAuthError as e:
                return error_response(e)
            return JSONResponse(content={}, headers=NO_STORE_HEADERS)

        @self.app.api_route(self.config.end_session_path, methods=["GET", "POST"])
        async def end_session(request: Request):
            """RP-initiated logout"""
            params: Dict[str, Any] = dict(request.query_params)
            if request.method == "POST":
                params.update(dict(await request.form()))
            try:
                location = await run_in_threadpool(self.provider.end_session, params)
            except OAuthError as e:
                return JSONResponse(status_code=e.status_code, content=e.to_dict())
            return RedirectResponse(location, status_code=status.HTTP_302_FOUND)

        if self.config.default_logout_redirect_uri.startswith("/"):
            @self.app.get(self.config.default_logout_redirect_uri)
            async def logged_out():
                return PlainTextResponse("signed out successfully")

        if self.config.environment == "development" and self.config.login_url.startswith("/"):
            self._setup_development_login()

    def _setup_development_login(self):
        logger.warning(f"Development login enabled at {self.config.login_url}; no password is checked")

        @self.app.post(self.config.login_url)
        async def development_login(request: Request):
            form = await request.form()
            request_id = form.get("authRequestID") or form.get("id")
            username = form.get("username")
            try:
                if form.get("deny"):
                    location = await run_in_threadpool(self.provider.deny_authorization, request_id)
                else:
                    location = await run_in_threadpool(
                        self.provider.complete_authorization, request_id, username
                    )
            except OAuthError as e:
                return JSONResponse(status_code=e.status_code, content=e.to_dict())
            return RedirectResponse(location, status_code=status.HTTP_302_FOUND)

    def run(self, host: Optional[str] = None, port: Optional[int] = None):
        """Run the HTTP server"""
        uvicorn.run(self.app, host=host or self.config.server.host, port=port or self.config.server.port)


def load_clients(config: ProviderConfig) -> ClientRegistry:
    """Client registry from the configured file, or a demo web client in development"""
    if config.server.clients_file:
        return ClientRegistry.from_json_file(config.server.clients_file)

    if config.environment != "development":
        raise ValueError("No clients configured; set OIDC_OP_CLIENTS_FILE")

    logger.warning("No clients file configured, registering the development client 'web'")
    return ClientRegistry([
        web_client("web", "secret", redirect_uris=["http://localhost:9999/auth/callback"]),
    ]).freeze()


def create_app(config: Optional[ProviderConfig] = None,
               registry: Optional[ClientRegistry] = None) -> FastAPI:
    """Create the FastAPI application"""
    config = config or get_provider_config()
    provider = OpenIDProvider(config, registry if registry is not None else load_clients(config))
    return OpenIDProviderHTTPServer(config, provider).app


def main():
    """Main entry point for HTTP server"""
    config = get_provider_config()
    configure_logging(config.logging)

    provider = OpenIDProvider(config, load_clients(config))
    server = OpenIDProviderHTTPServer(config, provider)

    logger.info(f"Starting OpenID provider on port {config.server.port}")
    server.run()


if __name__ == "__main__":
    main()
