"""
auth/errors.py -- Typed outcomes raised by the auth core.

The core never formats user-facing messages or picks status codes. It raises
one of these and the API layer maps it onto the error envelope.

Hierarchy:
  TokenError          -- token encode/decode failures
    EncodingFailed    -- signing failed (infrastructure fault)
    DecodingFailed    -- malformed or mis-signed token
    TokenExpired      -- valid signature, past exp
    TokenInvalid      -- correctly signed but unusable (wrong type, missing claims)
  StoreError          -- persistence collaborator failures
    NotFound
    Duplicate
    ConnectionFailed
    QueryFailed
  AuthError           -- session flow rejections (login, register, refresh, logout)

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Token errors
# ---------------------------------------------------------------------------


class TokenError(Exception):
    """Base class for token encode/decode failures."""


class EncodingFailed(TokenError):
    pass


class DecodingFailed(TokenError):
    pass


class TokenExpired(TokenError):
    def __init__(self, message: str = "Token has expired") -> None:
        super().__init__(message)


class TokenInvalid(TokenError):
    def __init__(self, message: str = "Invalid token") -> None:
        super().__init__(message)


# ---------------------------------------------------------------------------
# Store errors
# ---------------------------------------------------------------------------


class StoreError(Exception):
    """Base class for persistence failures. Also used for the uncategorized case."""


class NotFound(StoreError):
    def __init__(self, message: str = "Record not found") -> None:
        super().__init__(message)


class Duplicate(StoreError):
    """A unique constraint was violated. field names the offending column."""

    def __init__(self, field: str) -> None:
        self.field = field
        super().__init__(f"Duplicate value for field: {field}")


class ConnectionFailed(StoreError):
    pass


class QueryFailed(StoreError):
    pass


# ---------------------------------------------------------------------------
# Session flow errors
# ---------------------------------------------------------------------------


class AuthError(Exception):
    """A login/registration/refresh/logout rejection.

    code is a stable machine-readable identifier (e.g. "invalid_credentials").
    The API layer owns the human message and status code for each code.
    """

    def __init__(self, code: str) -> None:
        self.code = code
        super().__init__(code)
