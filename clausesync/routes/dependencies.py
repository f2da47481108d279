"""
Service wiring shared by every router

One Services container per process; tests swap it through
app.dependency_overrides[get_services].
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Header
from fastapi.responses import JSONResponse
from sqlalchemy.orm import sessionmaker

from clausesync.config.config import Config
from clausesync.database.database import SessionLocal
from clausesync.services.auth_service import AuthService
from clausesync.services.batch_extraction import BatchExtractionDriver
from clausesync.services.clause_extractor import ClauseExtractor
from clausesync.services.clause_store import ClauseStore
from clausesync.services.exceptions import ClauseSyncError
from clausesync.services.legacy_archive import LegacyArchive, MigrationStateStore
from clausesync.services.migration_service import MigrationService
from clausesync.services.pdf_text_extractor import PDFTextExtractor
from clausesync.services.reconciliation import ReconciliationEngine
from clausesync.services.session_controller import SessionRegistry
from clausesync.services.smart_search import SmartSearch
from clausesync.utils.file_handler import FileHandler

logger = logging.getLogger(__name__)


@dataclass
class Services:
    auth: AuthService
    store: ClauseStore
    archive: LegacyArchive
    migration: MigrationService
    engine: ReconciliationEngine
    registry: SessionRegistry
    file_handler: FileHandler
    smart_search: Optional[SmartSearch] = None


def build_services(
    session_factory: sessionmaker = SessionLocal,
    archive: LegacyArchive = None,
    state: MigrationStateStore = None,
    driver: Optional[BatchExtractionDriver] = None,
    smart_search: Optional[SmartSearch] = None,
    file_handler: FileHandler = None
) -> Services:
    auth = AuthService(session_factory)
    store = ClauseStore(session_factory)
    archive = archive or LegacyArchive()
    migration = MigrationService(archive, state or MigrationStateStore())
    engine = ReconciliationEngine(migration, driver)
    registry = SessionRegistry(auth, store, migration, engine)
    return Services(
        auth=auth,
        store=store,
        archive=archive,
        migration=migration,
        engine=engine,
        registry=registry,
        file_handler=file_handler or FileHandler(),
        smart_search=smart_search,
    )


def build_default_services() -> Services:
    """Production wiring; Gemini-backed parts only when a key is configured"""
    driver = smart_search = None
    if Config.GEMINI_API_KEY:
        driver = BatchExtractionDriver(ClauseExtractor(), PDFTextExtractor())
        smart_search = SmartSearch()
    else:
        logger.warning("[!] GEMINI_API_KEY not set - extraction and smart search disabled")
    return build_services(driver=driver, smart_search=smart_search)


_services: Optional[Services] = None


def get_services() -> Services:
    global _services
    if _services is None:
        _services = build_default_services()
    return _services


async def shutdown_services() -> None:
    """Let queued live deliveries finish, then end every open session"""
    global _services
    if _services is None:
        return
    await _services.store.feed.drain()
    _services.registry.close()
    _services = None
    logger.info("[OK] Services shut down")


def bearer_token(authorization: Optional[str] = Header(None)) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


def error_response(error: Exception) -> JSONResponse:
    """ClauseSyncError -> its status code; anything else is a 500"""
    if isinstance(error, ClauseSyncError):
        return JSONResponse(content={"error": error.message or str(error)}, status_code=error.status_code)
    logger.exception(f"[!] Unexpected error: {error}")
    return JSONResponse(content={"error": str(error)}, status_code=500)
