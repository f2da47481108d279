from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from clausesync.database.schemas import Role
from clausesync.routes.dependencies import Services, bearer_token, error_response, get_services

router = APIRouter(
    prefix="/api/users",
    tags=["User Management"]
)


class RoleUpdate(BaseModel):
    role: Role


@router.get("")
async def list_users(token: Optional[str] = Depends(bearer_token), services: Services = Depends(get_services)):
    """Every profile, ordered by email (admin only)"""
    try:
        ctx = await services.registry.context_for(token)
        users = services.registry.list_users(ctx)
        return JSONResponse(content={
            "users": [u.model_dump(mode="json") for u in users],
            "total": len(users)
        })
    except Exception as e:
        return error_response(e)


@router.put("/{uid}/role")
async def update_role(
    uid: str,
    body: RoleUpdate,
    token: Optional[str] = Depends(bearer_token),
    services: Services = Depends(get_services)
):
    try:
        ctx = await services.registry.context_for(token)
        profile = services.registry.update_role(ctx, uid, body.role)
        return JSONResponse(content=profile.model_dump(mode="json"))
    except Exception as e:
        return error_response(e)
