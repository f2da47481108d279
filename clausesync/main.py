from contextlib import asynccontextmanager
from datetime import datetime
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn
from dotenv import load_dotenv

from clausesync.config.config import Config
from clausesync.database.database import init_db
from clausesync.routes import auth_routes, contract_routes, extraction_routes, system_health_routes, user_routes
from clausesync.routes.dependencies import shutdown_services

load_dotenv()


def configure_logging():
    Config.LOG_DIR.mkdir(parents=True, exist_ok=True)
    log_filename = Config.LOG_DIR / f"clausesync_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"
    logging.basicConfig(
        level=getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO),
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_filename),
            logging.StreamHandler()  # Also print to console
        ]
    )


def print_banner():
    print("=" * 80)
    print("ClauseSync - Contract Clause Management v1.0")
    print("=" * 80)
    print("Features:")
    print("  - Clause extraction from PDFs and pasted text (Gemini)")
    print("  - General / particular conditions in paired page chunks")
    print("  - Cross-reference links between clauses")
    print("  - Dotted-number clause ordering")
    print("  - Shared clause store with live updates")
    print("  - Roles: admin, editor, viewer, pending")
    print("  - Legacy archive migration, backup import / export")
    print("  - Smart search")
    print("=" * 80)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    print_banner()
    Config.initialize()
    init_db()
    yield
    await shutdown_services()


def create_app(startup: bool = True) -> FastAPI:
    app = FastAPI(
        title="ClauseSync - Contract Clause Management",
        version="1.0.0",
        description="Clause extraction, ordering and live shared review of construction contracts",
        lifespan=lifespan if startup else None
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(auth_routes.router)
    app.include_router(contract_routes.router)
    app.include_router(extraction_routes.router)
    app.include_router(user_routes.router)
    app.include_router(system_health_routes.router)
    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("clausesync.main:app", host=Config.HOST, port=Config.PORT, reload=Config.DEBUG)
