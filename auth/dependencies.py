"""
auth/dependencies.py -- FastAPI Depends() helpers around the authorization gate.

All three helpers run the same pipeline in auth/gate.py against the
Authorization header and differ only in the final check:

  require_auth()                 any valid, unrevoked access token
  require_admin()                ... whose claims have is_admin=True
  require_capability("name")     ... whose capability snapshot contains "name"

On success the verified Claims are returned and also attached to
request.state.claims for downstream use. Failures become HTTPException with
the structured detail dict the API error envelope expects: 401 for missing,
invalid, expired or revoked tokens; 403 for not_admin / missing_capability.
Expired and malformed tokens produce the same response.

Layer rule: no imports from api/ or core/.
  This module may import from fastapi because it is part of the FastAPI
  dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import HTTPException, Request

from auth.gate import AccessDenied, AuthorizationGate, GateFailure
from auth.models import Claims

_MESSAGES = {
    GateFailure.MISSING_TOKEN: "Missing authorization header.",
    GateFailure.INVALID_TOKEN: "Invalid or expired token.",
    GateFailure.TOKEN_REVOKED: "Token has been revoked.",
    GateFailure.NOT_ADMIN: "Admin access required.",
}


def access_denied_to_http(exc: AccessDenied) -> HTTPException:
    message = _MESSAGES.get(exc.reason) or f"Missing required capability: {exc.capability}"
    headers = None if exc.is_forbidden else {"WWW-Authenticate": "Bearer"}
    return HTTPException(
        status_code=403 if exc.is_forbidden else 401,
        detail={"code": exc.reason.value, "message": message},
        headers=headers,
    )


def _authorize(request: Request, require_admin: bool = False, capability: str | None = None) -> Claims:
    gate: AuthorizationGate = request.app.state.gate
    try:
        claims = gate.check(
            request.headers.get("Authorization"),
            require_admin=require_admin,
            capability=capability,
        )
    except AccessDenied as exc:
        raise access_denied_to_http(exc) from exc
    request.state.claims = claims
    return claims


def require_auth(request: Request) -> Claims:
    """Require a valid access token.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(claims: Claims = Depends(require_auth)): ...
    """
    return _authorize(request)


def require_admin(request: Request) -> Claims:
    """Require an admin access token. 401 if unauthenticated, 403 if not admin."""
    return _authorize(request, require_admin=True)


def require_capability(name: str) -> Callable[[Request], Claims]:
    """Build a dependency that requires the named capability in the token snapshot.

    Use as a FastAPI dependency:
        @router.post("/emails")
        async def route(claims: Claims = Depends(require_capability("send_emails"))): ...
    """

    def dependency(request: Request) -> Claims:
        return _authorize(request, capability=name)

    dependency.__name__ = f"require_capability_{name}"
    return dependency
