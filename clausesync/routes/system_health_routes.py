from fastapi import APIRouter, Depends
from sqlalchemy import text

from clausesync.config.config import Config
from clausesync.routes.dependencies import Services, get_services

router = APIRouter(
    prefix="/api/System_Health",
    tags=["System Performance"]
)


@router.get("/health")
async def health_check(services: Services = Depends(get_services)):
    """Check system health and model status"""
    try:
        db = services.store.session_factory()
        try:
            db.execute(text("SELECT 1"))
            database = "connected"
        finally:
            db.close()
    except Exception as e:
        database = f"error: {e}"

    return {
        "status": "healthy" if database == "connected" else "degraded",
        "models": {
            "clause_extraction": Config.GEMINI_MODEL,
            "smart_search": Config.GEMINI_MODEL
        },
        "version": "1.0.0",
        "services": {
            "database": database,
            "extraction": "ready" if services.engine.driver else "disabled",
            "smart_search": "ready" if services.smart_search else "disabled",
            "migration": services.migration.state.get().value
        }
    }


@router.get("/")
async def root():
    return {
        "service": "ClauseSync Contract Clause Management",
        "version": "1.0.0",
        "endpoints": {
            "auth": {
                "signup": "/api/auth/signup",
                "login": "/api/auth/login",
                "logout": "/api/auth/logout",
                "me": "/api/auth/me"
            },
            "extraction": {
                "document": "/api/extraction/document",
                "dual": "/api/extraction/dual",
                "text": "/api/extraction/text"
            },
            "contracts": {
                "list": "/api/contracts",
                "activate": "/api/contracts/{contract_id}/activate",
                "clauses": "/api/contracts/active/clauses",
                "search": "/api/contracts/active/search",
                "import": "/api/contracts/import",
                "export": "/api/contracts/{contract_id}/export",
                "live": "ws /api/contracts/{contract_id}/live?token=..."
            },
            "users": {
                "list": "/api/users",
                "role": "/api/users/{uid}/role"
            },
            "system": {
                "health": "/api/System_Health/health",
                "docs": "/docs"
            }
        }
    }
