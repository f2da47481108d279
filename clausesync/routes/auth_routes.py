from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from clausesync.routes.dependencies import Services, bearer_token, error_response, get_services

router = APIRouter(
    prefix="/api/auth",
    tags=["Authentication"]
)


class Credentials(BaseModel):
    email: str
    password: str


async def _session_payload(services: Services, token: str) -> dict:
    ctx = await services.registry.context_for(token)
    return {"token": token, "session": ctx.to_dict()}


@router.post("/signup")
async def signup(body: Credentials, services: Services = Depends(get_services)):
    """Create an account; the very first account becomes admin, later ones wait for approval"""
    try:
        result = await services.auth.sign_up(body.email, body.password)
        return JSONResponse(content=await _session_payload(services, result.token), status_code=201)
    except Exception as e:
        return error_response(e)


@router.post("/login")
async def login(body: Credentials, services: Services = Depends(get_services)):
    try:
        result = await services.auth.sign_in(body.email, body.password)
        return JSONResponse(content=await _session_payload(services, result.token))
    except Exception as e:
        return error_response(e)


@router.post("/logout")
async def logout(token: Optional[str] = Depends(bearer_token), services: Services = Depends(get_services)):
    try:
        await services.registry.context_for(token)
        await services.auth.sign_out(token)
        return JSONResponse(content={"status": "success", "message": "Signed out"})
    except Exception as e:
        return error_response(e)


@router.get("/me")
async def me(token: Optional[str] = Depends(bearer_token), services: Services = Depends(get_services)):
    """Current identity, role, capabilities and analysis status"""
    try:
        ctx = await services.registry.context_for(token)
        return JSONResponse(content=ctx.to_dict())
    except Exception as e:
        return error_response(e)
