"""
auth/gate.py -- Per-request authorization pipeline.

One pipeline, three variants:

  1. extract the bearer token          -> MISSING_TOKEN
  2. verify signature and expiry       -> INVALID_TOKEN (expired and malformed alike)
  3. check the jti blacklist           -> TOKEN_REVOKED
  4. admin variant: claims.is_admin    -> NOT_ADMIN
  5. capability variant: name in the   -> MISSING_CAPABILITY
     capability snapshot

Capability checks read the snapshot taken at issuance, not live account
state. A grant or removal takes effect once the holder's access token is
reissued, i.e. within one access TTL.

This module is framework-free. auth/dependencies.py adapts it to FastAPI.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from enum import Enum

from auth.errors import TokenError
from auth.models import Claims
from auth.tokens import TokenService, extract_bearer
from auth.validation import ValidationStore

logger = logging.getLogger("siteauth.auth")


class GateFailure(str, Enum):
    MISSING_TOKEN = "missing_token"
    INVALID_TOKEN = "invalid_token"
    TOKEN_REVOKED = "token_revoked"
    NOT_ADMIN = "not_admin"
    MISSING_CAPABILITY = "missing_capability"


class AccessDenied(Exception):
    """Raised by AuthorizationGate.check(). reason says which step rejected the request."""

    def __init__(self, reason: GateFailure, capability: str | None = None) -> None:
        self.reason = reason
        self.capability = capability
        if reason is GateFailure.MISSING_CAPABILITY:
            message = f"missing capability: {capability}"
        else:
            message = reason.value.replace("_", " ")
        super().__init__(message)

    @property
    def is_forbidden(self) -> bool:
        """True when the caller is authenticated but not allowed (403 rather than 401)."""
        return self.reason in (GateFailure.NOT_ADMIN, GateFailure.MISSING_CAPABILITY)


class AuthorizationGate:
    def __init__(self, tokens: TokenService, validation: ValidationStore) -> None:
        self.tokens = tokens
        self.validation = validation

    def verify(self, token: str) -> Claims:
        """Steps 2 and 3 for an already extracted token."""
        try:
            claims = self.tokens.verify_access(token)
        except TokenError as exc:
            logger.debug("Access token rejected: %s: %s", type(exc).__name__, exc)
            raise AccessDenied(GateFailure.INVALID_TOKEN) from exc
        if self.validation.is_blacklisted(claims.jti):
            raise AccessDenied(GateFailure.TOKEN_REVOKED)
        return claims

    def check(
        self,
        authorization: str | None,
        require_admin: bool = False,
        capability: str | None = None,
    ) -> Claims:
        """Run the full pipeline against an Authorization header value.

        Returns the verified Claims or raises AccessDenied.
        """
        token = extract_bearer(authorization)
        if token is None:
            raise AccessDenied(GateFailure.MISSING_TOKEN)
        claims = self.verify(token)
        if require_admin and not claims.is_admin:
            raise AccessDenied(GateFailure.NOT_ADMIN)
        if capability is not None and capability not in claims.capabilities:
            raise AccessDenied(GateFailure.MISSING_CAPABILITY, capability=capability)
        return claims
