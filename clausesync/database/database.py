from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from clausesync.config.config import Config

DATABASE_URL = Config().DATABASE_URL


def build_engine(url: str):
    """Create an engine; SQLite gets thread-shared connections, servers get a pool"""
    if url.startswith("sqlite"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            echo=False
        )
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
        echo=False
    )


# Create engine
engine = build_engine(DATABASE_URL)

# SessionLocal class
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class
Base = declarative_base()

# Dependency for FastAPI
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def init_db(bind=None):
    """Initialize database - create all tables"""
    # Models must be imported so their tables are registered on Base
    from clausesync.database import models  # noqa: F401
    Base.metadata.create_all(bind=bind or engine)
    print("[DB] Database initialized successfully")


def drop_db(bind=None):
    """Drop all tables - use with caution!"""
    Base.metadata.drop_all(bind=bind or engine)
    print("[DB] All tables dropped successfully")
