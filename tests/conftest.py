import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from clausesync.database.database import init_db
from clausesync.database.schemas import Clause, Identity, Role, UserProfile
from clausesync.services.batch_extraction import BatchExtractionDriver
from clausesync.services.clause_store import ClauseStore
from clausesync.services.legacy_archive import LegacyArchive, MigrationStateStore
from clausesync.services.migration_service import MigrationService
from clausesync.services.reconciliation import ReconciliationEngine
from clausesync.services.session_context import SessionContext


class FakeExtractor:
    """Returns one scripted clause list per call, in order"""

    def __init__(self, responses=None, error=None):
        self.responses = list(responses or [])
        self.error = error
        self.calls = []

    async def analyze(self, source):
        self.calls.append(source)
        if self.error:
            raise self.error
        if not self.responses:
            return []
        return [Clause.model_validate(item) if isinstance(item, dict) else item
                for item in self.responses.pop(0)]


class FakePageExtractor:
    """Documents are already lists of page texts"""

    async def extract_pages(self, document):
        return list(document)


def make_clause(number, title="", text="", condition_type="General", **extra):
    return Clause(
        clause_number=number,
        clause_title=title,
        clause_text=text or f"Body of provision {number}",
        condition_type=condition_type,
        **extra
    )


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    init_db(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def admin_identity():
    return Identity(uid="uid-admin", email="admin@example.com")


@pytest.fixture
def store(session_factory, admin_identity):
    return ClauseStore(session_factory, user=admin_identity)


@pytest.fixture
def archive(tmp_path):
    return LegacyArchive(tmp_path / "legacy_archive")


@pytest.fixture
def migration_state(tmp_path):
    return MigrationStateStore(tmp_path / "migration_state.json")


@pytest.fixture
def migration(archive, migration_state):
    return MigrationService(archive, migration_state)


@pytest.fixture
def extractor():
    return FakeExtractor()


@pytest.fixture
def driver(extractor):
    return BatchExtractionDriver(extractor, FakePageExtractor(), chunk_pages=2)


@pytest.fixture
def engine(migration, driver):
    return ReconciliationEngine(migration, driver)


@pytest.fixture
def make_ctx(store, admin_identity):
    """Signed-in session with the given role"""
    def _make(role=Role.ADMIN):
        return SessionContext(
            store=store,
            token="token-1",
            identity=admin_identity,
            profile=UserProfile(uid=admin_identity.uid, email=admin_identity.email, role=role),
        )
    return _make
