"""
api/routes/v1/admin.py -- Admin-only endpoints.

Routes:
  GET    /api/v1/admin/system/status   -- database and revocation registry status
  GET    /api/v1/admin/users           -- 501 (user management not implemented)
  GET    /api/v1/admin/users/{id}      -- 501
  POST   /api/v1/admin/users           -- 501
  PUT    /api/v1/admin/users/{id}      -- 501
  DELETE /api/v1/admin/users/{id}      -- 501

Every route requires an admin access token (require_admin). The user
management routes are reserved: they authorize the caller and then answer
501 so clients can discover them without a 404.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.models import SystemStatusResponse
from auth.dependencies import require_admin
from auth.models import Claims

router = APIRouter(prefix="/admin")


def _not_implemented() -> HTTPException:
    return HTTPException(
        status_code=501,
        detail={"code": "not_implemented", "message": "This endpoint is not implemented yet."},
    )


@router.get("/system/status", response_model=SystemStatusResponse)
def system_status(request: Request, claims: Claims = Depends(require_admin)) -> JSONResponse:
    """Report database reachability and the current blacklist size.

    503 when the database does not answer.
    """
    healthy = request.app.state.user_store.health_check()
    body = SystemStatusResponse(
        status="operational" if healthy else "unavailable",
        database="ok" if healthy else "error",
        blacklisted_tokens=request.app.state.validation.blacklist_size(),
    )
    return JSONResponse(status_code=200 if healthy else 503, content=body.model_dump())


@router.get("/users")
async def list_users(claims: Claims = Depends(require_admin)) -> None:
    raise _not_implemented()


@router.get("/users/{user_id}")
async def get_user(user_id: str, claims: Claims = Depends(require_admin)) -> None:
    raise _not_implemented()


@router.post("/users")
async def create_user(claims: Claims = Depends(require_admin)) -> None:
    raise _not_implemented()


@router.put("/users/{user_id}")
async def update_user(user_id: str, claims: Claims = Depends(require_admin)) -> None:
    raise _not_implemented()


@router.delete("/users/{user_id}")
async def delete_user(user_id: str, claims: Claims = Depends(require_admin)) -> None:
    raise _not_implemented()
