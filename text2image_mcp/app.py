"""
Remote (multi-tenant) MCP server application.
/mcp for the protocol, /health for status, OAuth routes when auth is enabled.
"""
import logging
from contextlib import asynccontextmanager
from functools import partial

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from text2image_mcp import config
from text2image_mcp.adapter import ImageToolAdapter
from text2image_mcp.auth import SecretKeyOAuthProvider
from text2image_mcp.oauth_routes import router as oauth_router
from text2image_mcp.router import MCP_SESSION_ID_HEADER, McpEndpoint
from text2image_mcp.sessions import SessionReclaimer, SessionTable, TransportFactory
from text2image_mcp.transport import McpHttpTransport

logger = logging.getLogger(__name__)


def create_app(
    *,
    static_secret: str | None = config.GEMINI_API_KEY,
    auth_enabled: bool = config.AUTH_ENABLED,
    issuer: str = config.ISSUER,
    sessions: SessionTable | None = None,
    provider: SecretKeyOAuthProvider | None = None,
    sweep_interval: float = config.SESSION_SWEEP_INTERVAL_SECONDS,
    adapter_factory=None,
    transport_factory: TransportFactory | None = None,
) -> FastAPI:
    """
    Build the app with its own stores. A static secret wins over auth_enabled:
    with an operator key there is nothing for the OAuth flow to collect.
    """
    if sessions is None:
        sessions = SessionTable()
    use_oauth = auth_enabled and not static_secret
    if use_oauth and provider is None:
        provider = SecretKeyOAuthProvider()
    if not use_oauth:
        provider = None
    if adapter_factory is None:
        adapter_factory = partial(ImageToolAdapter, remote=True)
    if transport_factory is None:
        transport_factory = McpHttpTransport

    reclaimer = SessionReclaimer(sessions, interval=sweep_interval, provider=provider)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Start the idle-session sweep; on shutdown stop it, then close every session."""
        reclaimer.start()
        logger.info(
            "text2image-mcp remote server ready (auth=%s, static key=%s)",
            provider is not None,
            bool(static_secret),
        )
        try:
            yield
        finally:
            await reclaimer.stop()
            await sessions.close_all()

    app = FastAPI(title="text2image MCP", version="2.1.0", lifespan=lifespan)
    app.state.sessions = sessions
    app.state.oauth_provider = provider
    app.state.reclaimer = reclaimer
    app.state.issuer = issuer.rstrip("/")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=[MCP_SESSION_ID_HEADER, "WWW-Authenticate"],
    )

    endpoint = McpEndpoint(
        sessions,
        adapter_factory=adapter_factory,
        transport_factory=transport_factory,
        provider=provider,
        static_secret=static_secret,
        resource_metadata_url=f"{app.state.issuer}/.well-known/oauth-protected-resource" if provider else None,
    )
    app.state.mcp_endpoint = endpoint
    app.add_route("/mcp", endpoint, methods=["GET", "POST", "DELETE"])

    if provider is not None:
        app.include_router(oauth_router, tags=["oauth"])

    @app.get("/health")
    def health(request: Request):
        """Unauthenticated status: live session count and whether OAuth is on."""
        return {
            "status": "ok",
            "service": "text2image_mcp",
            "sessions": len(request.app.state.sessions),
            "auth_enabled": request.app.state.oauth_provider is not None,
        }

    return app
