"""
OAuth HTTP surface (mounted only when auth is enabled).
POST /register (RFC 7591), GET /authorize + POST /authorize/submit (key entry form),
POST /token (authorization_code + S256 PKCE), and the RFC 8414 / RFC 9728 metadata documents.
"""
import hashlib
import html
import logging
import re
from base64 import urlsafe_b64encode
from urllib.parse import urlencode, urlsplit

from fastapi import APIRouter, Body, Depends, Form, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from text2image_mcp.auth import AuthorizationParams, SecretKeyOAuthProvider
from text2image_mcp.errors import CodeNotFound, UnsupportedGrant

logger = logging.getLogger(__name__)
router = APIRouter()

# RFC 7636 section 4.1
_CODE_VERIFIER_RE = re.compile(r"[A-Za-z0-9\-._~]{43,128}")


def get_provider(request: Request) -> SecretKeyOAuthProvider:
    return request.app.state.oauth_provider


def get_issuer(request: Request) -> str:
    return request.app.state.issuer


def _oauth_error(error: str, description: str, status_code: int = 400) -> JSONResponse:
    return JSONResponse(
        {"error": error, "error_description": description},
        status_code=status_code,
        headers={"Cache-Control": "no-store"},
    )


def _redirect_error(redirect_uri: str, error: str, error_description: str, state: str | None) -> RedirectResponse:
    params = {"error": error, "error_description": error_description}
    if state:
        params["state"] = state
    sep = "&" if "?" in redirect_uri else "?"
    return RedirectResponse(url=f"{redirect_uri}{sep}{urlencode(params)}", status_code=302)


def _invalid_request_page(message: str) -> HTMLResponse:
    return HTMLResponse(f"<h1>Invalid request</h1><p>{html.escape(message)}</p>", status_code=400)


def _scopes(scope: str | None) -> tuple[str, ...]:
    return tuple(s for s in (scope or "").split() if s)


def _pkce_verify(code_verifier: str, code_challenge: str) -> bool:
    """S256 only; SHA256(verifier) base64url == challenge."""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    computed = urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return computed == code_challenge


# --- dynamic client registration ---


class ClientRegistrationRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    redirect_uris: list[str] = Field(..., min_length=1)
    client_name: str | None = None
    grant_types: list[str] = ["authorization_code"]
    response_types: list[str] = ["code"]
    scope: str | None = None

    @field_validator("redirect_uris")
    @classmethod
    def _absolute_uris(cls, uris: list[str]) -> list[str]:
        for uri in uris:
            parts = urlsplit(uri)
            if not parts.scheme or not (parts.netloc or parts.path):
                raise ValueError(f"redirect_uri must be absolute: {uri}")
        return uris


@router.post("/register", status_code=201)
def register(body: dict = Body(...), provider: SecretKeyOAuthProvider = Depends(get_provider)):
    """Register a public client. Client secrets are never issued (token_endpoint_auth_method=none)."""
    try:
        req = ClientRegistrationRequest.model_validate(body)
    except ValidationError as e:
        return _oauth_error("invalid_client_metadata", str(e.errors()[0].get("msg", "invalid metadata")))
    if "authorization_code" not in req.grant_types:
        return _oauth_error("invalid_client_metadata", "grant_types must include authorization_code")
    metadata = req.model_dump(exclude_none=True)
    metadata["token_endpoint_auth_method"] = "none"
    client = provider.clients.register(metadata)
    return JSONResponse(client.to_dict(), status_code=201)


# --- authorization (human step) ---


@router.get("/authorize", response_class=HTMLResponse)
def authorize_get(
    response_type: str | None = None,
    client_id: str | None = None,
    redirect_uri: str | None = None,
    scope: str | None = None,
    state: str | None = None,
    code_challenge: str | None = None,
    code_challenge_method: str | None = None,
    provider: SecretKeyOAuthProvider = Depends(get_provider),
):
    """
    Validate the request and render the key entry form.
    Errors before the redirect target is trusted are shown here; later ones go back to the client.
    """
    if not client_id:
        return _invalid_request_page("client_id is required.")
    client = provider.clients.get(client_id)
    if client is None:
        return _invalid_request_page("Unknown client_id.")

    if not redirect_uri and len(client.redirect_uris) == 1:
        redirect_uri = client.redirect_uris[0]
    if not redirect_uri or not client.redirect_uri_allowed(redirect_uri):
        return _invalid_request_page("redirect_uri not allowed.")

    if response_type != "code":
        return _redirect_error(redirect_uri, "unsupported_response_type", "response_type must be 'code'", state)
    if not code_challenge:
        return _redirect_error(redirect_uri, "invalid_request", "code_challenge is required", state)
    if code_challenge_method and code_challenge_method != "S256":
        return _redirect_error(redirect_uri, "invalid_request", "code_challenge_method must be S256", state)

    params = AuthorizationParams(
        redirect_uri=redirect_uri,
        code_challenge=code_challenge,
        state=state or None,
        scopes=_scopes(scope),
    )
    return HTMLResponse(provider.render_authorize_page(client, params))


@router.post("/authorize/submit")
def authorize_submit(
    client_id: str = Form(...),
    redirect_uri: str = Form(...),
    code_challenge: str = Form(...),
    gemini_api_key: str = Form(""),
    state: str | None = Form(None),
    scope: str = Form(""),
    provider: SecretKeyOAuthProvider = Depends(get_provider),
):
    """Form target: issue a code carrying the submitted key and redirect to the client."""
    client = provider.clients.get(client_id)
    if client is None:
        return _invalid_request_page("Unknown client.")
    if not client.redirect_uri_allowed(redirect_uri):
        return _invalid_request_page("redirect_uri not allowed.")

    params = AuthorizationParams(
        redirect_uri=redirect_uri,
        code_challenge=code_challenge,
        state=state or None,
        scopes=_scopes(scope),
    )
    if not gemini_api_key.strip():
        body = provider.render_authorize_page(client, params, error="Please enter your Gemini API key.")
        return HTMLResponse(body, status_code=400)

    # Key is passed through untouched; it must come back byte-for-byte from resolve_secret()
    url = provider.complete_authorization(client, params, gemini_api_key)
    return RedirectResponse(url=url, status_code=302)


# --- token (machine step) ---


@router.post("/token")
def token(
    grant_type: str = Form(...),
    code: str | None = Form(None),
    redirect_uri: str | None = Form(None),
    client_id: str | None = Form(None),
    code_verifier: str | None = Form(None),
    refresh_token: str | None = Form(None),
    provider: SecretKeyOAuthProvider = Depends(get_provider),
):
    """authorization_code only; refresh_token is answered with unsupported_grant_type."""
    if grant_type == "refresh_token":
        try:
            provider.exchange_refresh_token(refresh_token)
        except UnsupportedGrant as e:
            return _oauth_error("unsupported_grant_type", str(e))
    if grant_type != "authorization_code":
        return _oauth_error("unsupported_grant_type", "Only authorization_code is supported")

    if not code or not code_verifier:
        return _oauth_error("invalid_request", "code and code_verifier are required for authorization_code grant")

    if not _CODE_VERIFIER_RE.fullmatch(code_verifier):
        return _oauth_error("invalid_request", "code_verifier must be 43-128 characters of [A-Za-z0-9-._~]")

    try:
        pending = provider.get_authorization(code)
    except CodeNotFound:
        return _oauth_error("invalid_grant", "Invalid or expired authorization code")
    if redirect_uri is not None and redirect_uri != pending.params.redirect_uri:
        return _oauth_error("invalid_grant", "redirect_uri mismatch")
    challenge = pending.params.code_challenge
    if not _pkce_verify(code_verifier, challenge):
        return _oauth_error("invalid_grant", "PKCE verification failed")

    try:
        tokens = provider.exchange_code(code, client_id=client_id)
    except CodeNotFound:
        return _oauth_error("invalid_grant", "Invalid or expired authorization code")
    return JSONResponse(tokens, headers={"Cache-Control": "no-store", "Pragma": "no-cache"})


# --- discovery ---


@router.get("/.well-known/oauth-authorization-server")
def authorization_server_metadata(issuer: str = Depends(get_issuer)):
    """RFC 8414 metadata."""
    return {
        "issuer": issuer,
        "authorization_endpoint": f"{issuer}/authorize",
        "token_endpoint": f"{issuer}/token",
        "registration_endpoint": f"{issuer}/register",
        "response_types_supported": ["code"],
        "grant_types_supported": ["authorization_code"],
        "code_challenge_methods_supported": ["S256"],
        "token_endpoint_auth_methods_supported": ["none"],
    }


@router.get("/.well-known/oauth-protected-resource")
@router.get("/.well-known/oauth-protected-resource/mcp")
def protected_resource_metadata(issuer: str = Depends(get_issuer)):
    """RFC 9728 metadata for the /mcp resource."""
    return {
        "resource": f"{issuer}/mcp",
        "authorization_servers": [issuer],
        "bearer_methods_supported": ["header"],
    }
