"""
api/routes/v1/auth.py -- Session endpoints.

Routes:
  POST /api/v1/auth/register      -- create user + free/pending account (public)
  POST /api/v1/auth/login         -- password login; returns token pair (public)
  POST /api/v1/auth/admin/login   -- admin login; requires an admin record (public)
  POST /api/v1/auth/refresh       -- rotate a refresh token into a new pair (public)
  POST /api/v1/auth/logout        -- blacklist this token, revoke refresh records
  POST /api/v1/auth/logout-all    -- same, for every device
  GET  /api/v1/auth/me            -- the caller's claims snapshot

Security:
  Login routes are rate-limited per IP with the shared slowapi limiter.
  authenticate_user() (via SessionManager.login) equalizes timing between
  unknown emails and wrong passwords; both return invalid_credentials.
  Cache-Control: no-store on every response that carries tokens.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_limit
from api.models import (
    AccountInfo,
    LoginRequest,
    LoginResponse,
    LogoutResponse,
    MeResponse,
    RefreshRequest,
    RegisterRequest,
    RegisterResponse,
    UserProfile,
)
from auth.dependencies import require_auth
from auth.errors import AuthError
from auth.models import ADMIN_ROLE_WIRE_NAMES, STATUS_WIRE_NAMES, TIER_WIRE_NAMES, Claims
from auth.sessions import LoginResult, SessionManager

router = APIRouter()

# code -> (status, message)
_AUTH_ERRORS: dict[str, tuple[int, str]] = {
    "invalid_credentials": (401, "Invalid email or password."),
    "account_inactive": (403, "Account is not active."),
    "not_admin": (403, "User is not an admin."),
    "email_exists": (409, "Email already registered."),
    "username_exists": (409, "Username already taken."),
    "weak_password": (400, "Password must be at least 8 characters."),
    "invalid_email": (400, "Invalid email format."),
    "invalid_token": (401, "Invalid or expired token."),
    "token_revoked": (401, "Token has been revoked."),
}


def _auth_error(exc: AuthError) -> HTTPException:
    status, message = _AUTH_ERRORS.get(exc.code, (400, "Authentication failed."))
    return HTTPException(status_code=status, detail={"code": exc.code, "message": message})


def _login_response(result: LoginResult) -> JSONResponse:
    body = LoginResponse(
        access_token=result.tokens.access_token,
        refresh_token=result.tokens.refresh_token,
        token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
        expires_in=result.tokens.access_expires_in,
        refresh_expires_in=result.tokens.refresh_expires_in,
        user_profile=UserProfile.from_user(result.user),
        account_info=AccountInfo(
            tier=TIER_WIRE_NAMES[result.account.tier],
            status=STATUS_WIRE_NAMES[result.account.status],
            capabilities=sorted(result.capabilities),
        ),
        admin_role=ADMIN_ROLE_WIRE_NAMES[result.admin.role] if result.admin else None,
    )
    resp = JSONResponse(status_code=200, content=body.model_dump(mode="json"))
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _sessions(request: Request) -> SessionManager:
    return request.app.state.sessions


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=RegisterResponse, status_code=201)
async def register(request: Request, body: RegisterRequest) -> RegisterResponse:
    """Create a user and a free-tier account in pending status.

    The account must be activated before the user can log in.
    """
    try:
        user = _sessions(request).register(
            email=body.email,
            password=body.password,
            username=body.username,
            first_name=body.first_name,
            last_name=body.last_name,
        )
    except AuthError as exc:
        raise _auth_error(exc) from exc
    return RegisterResponse(
        success=True,
        message="Registration successful. Your account is pending activation.",
        user_id=user.id,
    )


@limiter.limit(login_limit)
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password and return a token pair.

    Unknown email and wrong password produce the same invalid_credentials error.
    """
    try:
        result = _sessions(request).login(body.email, body.password, device_info=body.device_info)
    except AuthError as exc:
        raise _auth_error(exc) from exc
    return _login_response(result)


@limiter.limit(login_limit)
@router.post("/auth/admin/login", response_model=LoginResponse)
def admin_login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate an admin and return an admin token pair (is_admin=True)."""
    try:
        result = _sessions(request).login(body.email, body.password, device_info=body.device_info, admin=True)
    except AuthError as exc:
        raise _auth_error(exc) from exc
    return _login_response(result)


@router.post("/auth/refresh", response_model=LoginResponse)
def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Exchange a refresh token for a new pair. The old refresh token stops working."""
    try:
        result = _sessions(request).refresh(body.refresh_token, device_info=body.device_info)
    except AuthError as exc:
        raise _auth_error(exc) from exc
    return _login_response(result)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=LogoutResponse)
def logout(request: Request, claims: Claims = Depends(require_auth)) -> LogoutResponse:
    """Revoke the presented access token and the user's persisted refresh tokens."""
    _sessions(request).logout(claims)
    return LogoutResponse(success=True, message="Successfully logged out.")


@router.post("/auth/logout-all", response_model=LogoutResponse)
def logout_all(request: Request, claims: Claims = Depends(require_auth)) -> LogoutResponse:
    """Revoke refresh tokens on every device and blacklist the presented access token."""
    _sessions(request).logout_all(claims)
    return LogoutResponse(success=True, message="Successfully logged out from all devices.")


@router.get("/auth/me", response_model=MeResponse)
async def me(claims: Claims = Depends(require_auth)) -> MeResponse:
    """Return the caller's token snapshot (as of issuance, not live account state)."""
    return MeResponse(
        user_id=claims.sub,
        email=claims.email,
        account_tier=TIER_WIRE_NAMES[claims.account_tier],
        account_status=STATUS_WIRE_NAMES[claims.account_status],
        capabilities=sorted(claims.capabilities),
        role=claims.role.value,
        is_admin=claims.is_admin,
        admin_role=ADMIN_ROLE_WIRE_NAMES[claims.admin_role] if claims.admin_role else None,
        expires_at=claims.exp,
    )
