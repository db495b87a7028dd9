"""
Typed failures raised by the authorization engine and the session table.
HTTP boundaries (oauth_routes, router) translate these into responses; nothing else catches them.
"""


class Text2ImageError(Exception):
    """Base class for expected, caller-recoverable failures."""


class NotFound(Text2ImageError):
    pass


class CodeNotFound(NotFound):
    """Unknown, already consumed, or stale authorization code (never distinguished)."""


class InvalidToken(NotFound):
    pass


class SessionNotFound(NotFound):
    pass


class TokenExpired(Text2ImageError):
    pass


class UnsupportedGrant(Text2ImageError):
    pass


class MalformedRequest(Text2ImageError):
    pass


class MissingCredentials(Text2ImageError):
    pass
