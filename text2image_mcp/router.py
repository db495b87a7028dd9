"""
/mcp endpoint: decide per request whether it opens a session or belongs to one.
This is the only place typed failures from the auth engine and the session table
become HTTP responses.
"""
import json
import logging
from functools import partial
from typing import Any, Callable

from starlette.requests import Request
from starlette.responses import JSONResponse

from text2image_mcp.auth import SecretKeyOAuthProvider
from text2image_mcp.errors import (
    InvalidToken,
    MalformedRequest,
    MissingCredentials,
    SessionNotFound,
    TokenExpired,
)
from text2image_mcp.sessions import SessionTable, TransportFactory

logger = logging.getLogger(__name__)

MCP_SESSION_ID_HEADER = "mcp-session-id"


def is_initialize_request(body: Any) -> bool:
    """True for an initialize message, or a batch containing one."""
    if isinstance(body, list):
        return any(isinstance(msg, dict) and msg.get("method") == "initialize" for msg in body)
    return isinstance(body, dict) and body.get("method") == "initialize"


def bearer_token(request: Request) -> str | None:
    auth = request.headers.get("authorization") or ""
    scheme, _, value = auth.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return value.strip() or None


def _replay(body: bytes, receive):
    """receive() that hands the already-read body to the transport once, then defers to the socket."""
    sent = False

    async def _receive():
        nonlocal sent
        if not sent:
            sent = True
            return {"type": "http.request", "body": body, "more_body": False}
        return await receive()

    return _receive


class _Unauthorized(Exception):
    def __init__(self, error: str, description: str):
        super().__init__(description)
        self.error = error
        self.description = description


class McpEndpoint:
    """
    ASGI app for GET/POST/DELETE /mcp.

    Secret precedence for a new session: static operator key, then the key behind a
    verified bearer token (auth enabled), then the raw bearer value (auth disabled;
    trusted-network deployments only, nothing is verified).
    """

    def __init__(
        self,
        sessions: SessionTable,
        *,
        adapter_factory: Callable[[str], Any],
        transport_factory: TransportFactory,
        provider: SecretKeyOAuthProvider | None = None,
        static_secret: str | None = None,
        resource_metadata_url: str | None = None,
    ):
        self.sessions = sessions
        self.adapter_factory = adapter_factory
        self.transport_factory = transport_factory
        self.provider = provider if static_secret is None else None
        self.static_secret = static_secret
        self.resource_metadata_url = resource_metadata_url

    @property
    def auth_enabled(self) -> bool:
        return self.provider is not None

    async def __call__(self, scope, receive, send) -> None:
        request = Request(scope, receive)
        try:
            await self._dispatch(request, scope, receive, send)
            return
        except _Unauthorized as exc:
            response = self._unauthorized(exc.error, exc.description)
        except SessionNotFound:
            response = JSONResponse(
                {"error": "Session not found. Send an initialize request to start a new session."},
                status_code=404,
            )
        except MalformedRequest as exc:
            response = JSONResponse({"error": str(exc)}, status_code=400)
        except MissingCredentials as exc:
            response = self._unauthorized("invalid_request", str(exc))
        except Exception:
            logger.exception("Unhandled error on %s /mcp", request.method)
            response = JSONResponse({"error": "Internal server error"}, status_code=500)
        await response(scope, receive, send)

    def _unauthorized(self, error: str, description: str) -> JSONResponse:
        challenge = f'Bearer error="{error}", error_description="{description}"'
        if self.resource_metadata_url:
            challenge += f', resource_metadata="{self.resource_metadata_url}"'
        return JSONResponse(
            {"error": error, "error_description": description},
            status_code=401,
            headers={"WWW-Authenticate": challenge},
        )

    def _authenticate(self, request: Request) -> str | None:
        """With auth enabled, every request must carry a live token. Returns that token."""
        if not self.auth_enabled:
            return None
        token = bearer_token(request)
        if not token:
            raise _Unauthorized("invalid_token", "Authentication required")
        try:
            self.provider.verify_token(token)
        except TokenExpired:
            raise _Unauthorized("invalid_token", "Access token expired")
        except InvalidToken:
            raise _Unauthorized("invalid_token", "Invalid access token")
        return token

    def resolve_secret(self, request: Request, token: str | None) -> str:
        if self.static_secret:
            return self.static_secret
        if self.auth_enabled:
            secret = self.provider.resolve_secret(token) if token else None
        else:
            secret = bearer_token(request)
        if not secret:
            raise MissingCredentials(
                "Missing API key. Set GEMINI_API_KEY on the server, or send Authorization: Bearer <key>."
            )
        return secret

    async def _dispatch(self, request: Request, scope, receive, send) -> None:
        token = self._authenticate(request)
        session_id = request.headers.get(MCP_SESSION_ID_HEADER)

        if session_id:
            await self.sessions.route(session_id, scope, receive, send)
            if request.method == "DELETE":
                await self.sessions.close(session_id)
            return

        if request.method != "POST":
            raise MalformedRequest(f"Missing {MCP_SESSION_ID_HEADER} header.")
        body = await request.body()
        try:
            message = json.loads(body) if body else None
        except ValueError:
            raise MalformedRequest("Request body is not valid JSON.")
        if not is_initialize_request(message):
            raise MalformedRequest(f"Missing {MCP_SESSION_ID_HEADER} header. Send an initialize request first.")

        secret = self.resolve_secret(request, token)
        session = await self.sessions.create(self.transport_factory, partial(self.adapter_factory, secret))
        await session.transport.handle_request(scope, _replay(body, receive), send)
