"""
Server configuration from environment. No secrets in this file.
Modules use these as constructor defaults; tests pass their own values.
"""
import os


def _flag(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


HOST = os.environ.get("HOST", "0.0.0.0")
PORT = int(os.environ.get("PORT", "3000"))

# Operator-supplied key: single-tenant mode, bypasses OAuth entirely
GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY", "").strip() or None

# Multi-tenant OAuth flow (user pastes their own key into the authorize form)
AUTH_ENABLED = _flag("MCP_AUTH_ENABLED")

# Public base URL, used in OAuth metadata and WWW-Authenticate hints
ISSUER = os.environ.get("MCP_ISSUER_URL", f"http://127.0.0.1:{PORT}").rstrip("/")

# Sessions idle longer than this are reclaimed (30 minutes)
SESSION_TIMEOUT_SECONDS = int(os.environ.get("SESSION_TIMEOUT_SECONDS", "1800"))
SESSION_SWEEP_INTERVAL_SECONDS = int(os.environ.get("SESSION_SWEEP_INTERVAL_SECONDS", "60"))
# Upper bound on one transport close during sweeps and shutdown
SESSION_CLOSE_TIMEOUT_SECONDS = float(os.environ.get("SESSION_CLOSE_TIMEOUT_SECONDS", "5"))

# Access token lifetime (seconds); no refresh tokens
TOKEN_TTL_SECONDS = int(os.environ.get("TOKEN_TTL_SECONDS", "3600"))
# Pending authorization codes (they hold a plaintext key) are dropped after this
CODE_TTL_SECONDS = int(os.environ.get("CODE_TTL_SECONDS", "600"))

GEMINI_API_BASE = os.environ.get(
    "GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1beta"
).rstrip("/")
GEMINI_TIMEOUT_SECONDS = float(os.environ.get("GEMINI_TIMEOUT_SECONDS", "120"))

# uvicorn graceful shutdown bound (seconds)
SHUTDOWN_TIMEOUT_SECONDS = int(os.environ.get("SHUTDOWN_TIMEOUT_SECONDS", "10"))
