"""
In-memory OAuth provider for the multi-tenant flow.
The user pastes their Gemini API key into the authorize form; the key rides on the
authorization code and then on the access token, and is handed back by resolve_secret().
All state is volatile: clients, pending codes and tokens are lost on restart.
"""
import html
import logging
import secrets
import time
import uuid
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Mapping
from urllib.parse import urlencode

from text2image_mcp.config import CODE_TTL_SECONDS, TOKEN_TTL_SECONDS
from text2image_mcp.errors import CodeNotFound, InvalidToken, TokenExpired, UnsupportedGrant

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegisteredClient:
    client_id: str
    client_id_issued_at: int
    metadata: Mapping[str, Any]

    @property
    def client_name(self) -> str:
        return self.metadata.get("client_name") or self.client_id

    @property
    def redirect_uris(self) -> list[str]:
        return [str(u) for u in self.metadata.get("redirect_uris") or []]

    def redirect_uri_allowed(self, uri: str) -> bool:
        return uri in self.redirect_uris

    def to_dict(self) -> dict:
        return {**self.metadata, "client_id": self.client_id, "client_id_issued_at": self.client_id_issued_at}


class ClientRegistry:
    """Dynamically registered clients, keyed by generated client_id."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clients: dict[str, RegisteredClient] = {}
        self._clock = clock

    def register(self, metadata: Mapping[str, Any]) -> RegisteredClient:
        blob = {k: v for k, v in metadata.items() if k not in ("client_id", "client_id_issued_at")}
        client = RegisteredClient(
            client_id=str(uuid.uuid4()),
            client_id_issued_at=int(self._clock()),
            metadata=MappingProxyType(blob),
        )
        self._clients[client.client_id] = client
        logger.info("Registered client %s (%s)", client.client_id, client.client_name)
        return client

    def get(self, client_id: str) -> RegisteredClient | None:
        return self._clients.get(client_id)

    def __len__(self) -> int:
        return len(self._clients)


@dataclass(frozen=True)
class AuthorizationParams:
    redirect_uri: str
    code_challenge: str
    state: str | None = None
    scopes: tuple[str, ...] = ()


@dataclass
class PendingAuthorization:
    code: str
    client_id: str
    params: AuthorizationParams
    secret: str
    created_at: float


@dataclass
class IssuedToken:
    token: str
    client_id: str
    scopes: list[str]
    expires_at: int
    secret: str = field(repr=False)


@dataclass(frozen=True)
class AuthInfo:
    token: str
    client_id: str
    scopes: list[str]
    expires_at: int


class SecretKeyOAuthProvider:
    """
    Authorization-code grant whose only "login" is typing an upstream API key.
    No client secrets, no consent screen; PKCE is checked by the token endpoint
    against get_code_challenge() before exchange_code() is called.
    """

    def __init__(
        self,
        clients: ClientRegistry | None = None,
        *,
        token_ttl: int = TOKEN_TTL_SECONDS,
        code_ttl: int = CODE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.clients = clients if clients is not None else ClientRegistry(clock=clock)
        self.token_ttl = token_ttl
        self.code_ttl = code_ttl
        self._clock = clock
        self._codes: dict[str, PendingAuthorization] = {}
        self._tokens: dict[str, IssuedToken] = {}

    @property
    def pending_count(self) -> int:
        return len(self._codes)

    @property
    def token_count(self) -> int:
        return len(self._tokens)

    # --- human-facing half ---

    def render_authorize_page(self, client: RegisteredClient, params: AuthorizationParams, error: str | None = None) -> str:
        """Form that carries the whole request as hidden fields; the key is the only input."""

        def e(s: str | None) -> str:
            return html.escape(s or "")

        state_field = f'<input type="hidden" name="state" value="{e(params.state)}">' if params.state else ""
        scope_field = (
            f'<input type="hidden" name="scope" value="{e(" ".join(params.scopes))}">' if params.scopes else ""
        )
        error_html = f'<p class="error">{e(error)}</p>' if error else ""
        return f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <title>Authorize - text2image MCP</title>
  <style>
    body {{ font-family: system-ui, sans-serif; background: #0f0f0f; color: #e0e0e0;
           display: flex; justify-content: center; align-items: center; min-height: 100vh; margin: 0; }}
    .card {{ background: #1a1a1a; border: 1px solid #333; border-radius: 12px; padding: 2rem; max-width: 420px; width: 100%; }}
    .client-name {{ color: #60a5fa; font-weight: 600; }}
    .error {{ color: #f87171; }}
    input[type="password"] {{ width: 100%; padding: 0.7rem; background: #111; border: 1px solid #444;
                              border-radius: 8px; color: #fff; box-sizing: border-box; }}
    button {{ width: 100%; margin-top: 1.5rem; padding: 0.75rem; background: #2563eb; color: #fff;
             border: none; border-radius: 8px; font-weight: 600; cursor: pointer; }}
  </style>
</head>
<body>
  <div class="card">
    <h1>text2image MCP</h1>
    <p><span class="client-name">{e(client.client_name)}</span> wants to connect.
      Enter your Gemini API key to authorize.</p>
    {error_html}
    <form method="post" action="/authorize/submit">
      <input type="hidden" name="client_id" value="{e(client.client_id)}">
      <input type="hidden" name="redirect_uri" value="{e(params.redirect_uri)}">
      <input type="hidden" name="code_challenge" value="{e(params.code_challenge)}">
      {state_field}
      {scope_field}
      <label for="gemini_api_key">Gemini API Key</label>
      <input type="password" id="gemini_api_key" name="gemini_api_key" placeholder="AIza..." required autocomplete="off">
      <p>Get a key at <a href="https://aistudio.google.com/apikey" target="_blank" rel="noopener">aistudio.google.com/apikey</a></p>
      <button type="submit">Authorize</button>
    </form>
  </div>
</body>
</html>"""

    def complete_authorization(self, client: RegisteredClient, params: AuthorizationParams, secret: str) -> str:
        """Store a single-use code carrying the secret; return the client redirect URL."""
        code = secrets.token_hex(32)
        self._codes[code] = PendingAuthorization(
            code=code,
            client_id=client.client_id,
            params=params,
            secret=secret,
            created_at=self._clock(),
        )
        query = {"code": code}
        if params.state:
            query["state"] = params.state
        redirect_url = params.redirect_uri
        redirect_url = f"{redirect_url}{'&' if '?' in redirect_url else '?'}{urlencode(query)}"
        logger.info("Issued authorization code for client %s", client.client_id)
        return redirect_url

    # --- machine-facing half ---

    def _live_code(self, code: str) -> PendingAuthorization | None:
        pending = self._codes.get(code)
        if pending is not None and self._clock() - pending.created_at > self.code_ttl:
            del self._codes[code]
            return None
        return pending

    def get_authorization(self, code: str) -> PendingAuthorization:
        """Read-only lookup for the token endpoint's checks. Does not consume the code."""
        pending = self._live_code(code)
        if pending is None:
            raise CodeNotFound("Unknown authorization code")
        return pending

    def get_code_challenge(self, code: str) -> str:
        return self.get_authorization(code).params.code_challenge

    def exchange_code(self, code: str, client_id: str | None = None) -> dict:
        """
        Consume the code and issue a bearer token. Lookup and delete are one step
        (dict.pop, no await in between) so two racing exchanges cannot both win.
        """
        pending = self._codes.pop(code, None)
        if pending is None or self._clock() - pending.created_at > self.code_ttl:
            raise CodeNotFound("Unknown authorization code")
        if client_id is not None and pending.client_id != client_id:
            raise CodeNotFound("Unknown authorization code")

        token = secrets.token_hex(48)
        expires_at = int(self._clock()) + self.token_ttl
        self._tokens[token] = IssuedToken(
            token=token,
            client_id=pending.client_id,
            scopes=list(pending.params.scopes),
            expires_at=expires_at,
            secret=pending.secret,
        )
        logger.info("Issued access token for client %s (expires_in=%s)", pending.client_id, self.token_ttl)
        return {
            "access_token": token,
            "token_type": "bearer",
            "expires_in": self.token_ttl,
            "scope": " ".join(pending.params.scopes),
        }

    def exchange_refresh_token(self, *args, **kwargs) -> dict:
        raise UnsupportedGrant("Refresh tokens not supported")

    def _live_token(self, token: str) -> IssuedToken | None:
        """Return the stored token, evicting it on first sight past expiry."""
        stored = self._tokens.get(token)
        if stored is None:
            return None
        if self._clock() > stored.expires_at:
            del self._tokens[token]
            raise TokenExpired("Access token expired")
        return stored

    def verify_token(self, token: str) -> AuthInfo:
        stored = self._live_token(token)
        if stored is None:
            raise InvalidToken("Invalid access token")
        return AuthInfo(
            token=token,
            client_id=stored.client_id,
            scopes=list(stored.scopes),
            expires_at=stored.expires_at,
        )

    def resolve_secret(self, token: str) -> str | None:
        try:
            stored = self._live_token(token)
        except TokenExpired:
            return None
        return stored.secret if stored is not None else None

    def purge_expired(self) -> int:
        """Drop stale pending codes and expired tokens. Returns how many records went."""
        now = self._clock()
        stale_codes = [c for c, p in self._codes.items() if now - p.created_at > self.code_ttl]
        for c in stale_codes:
            del self._codes[c]
        expired_tokens = [t for t, s in self._tokens.items() if now > s.expires_at]
        for t in expired_tokens:
            del self._tokens[t]
        if stale_codes or expired_tokens:
            logger.debug("Purged %d stale codes, %d expired tokens", len(stale_codes), len(expired_tokens))
        return len(stale_codes) + len(expired_tokens)
