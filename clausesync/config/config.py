import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

class Config:
    """Application configuration"""

    # API Configuration
    GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
    GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")

    # Rate Limiting Configuration
    GEMINI_REQUEST_DELAY = float(os.getenv("GEMINI_REQUEST_DELAY", "0.5"))  # seconds between requests
    MAX_RETRIES = int(os.getenv("MAX_RETRIES", "3"))
    RETRY_DELAY = int(os.getenv("RETRY_DELAY", "20"))  # initial retry delay in seconds
    EXPONENTIAL_BACKOFF = os.getenv("EXPONENTIAL_BACKOFF", "true").lower() == "true"

    # Server Configuration
    HOST = os.getenv("HOST", "0.0.0.0")
    PORT = int(os.getenv("PORT", "8000"))
    DEBUG = os.getenv("DEBUG", "true").lower() == "true"

    # File Upload Configuration
    MAX_UPLOAD_SIZE = int(os.getenv("MAX_UPLOAD_SIZE", "52428800"))  # 50MB
    UPLOAD_DIR = Path(os.getenv("UPLOAD_DIR", "uploads"))
    ALLOWED_EXTENSIONS = {'.pdf'}

    # Logging Configuration
    LOG_DIR = Path(os.getenv("LOG_DIR", "logs"))
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Legacy archive + migration flag (kept outside the clause store)
    LEGACY_ARCHIVE_DIR = Path(os.getenv("LEGACY_ARCHIVE_DIR", "legacy_archive"))
    MIGRATION_STATE_FILE = Path(os.getenv("MIGRATION_STATE_FILE", "migration_state.json"))

    # Contract / analysis behaviour
    DEFAULT_CONTRACT_ID = os.getenv("DEFAULT_CONTRACT_ID", "")
    CHUNK_PAGES = int(os.getenv("CHUNK_PAGES", "2"))
    SMART_SEARCH_LIMIT = int(os.getenv("SMART_SEARCH_LIMIT", "5"))

    # Database Configuration
    DB_HOST: str = os.getenv("DB_HOST", "localhost")
    DB_PORT: int = int(os.getenv("DB_PORT", "5432"))
    DB_NAME: str = os.getenv("DB_NAME", "")
    DB_USER: str = os.getenv("DB_USER", "")
    DB_PASSWORD: str = os.getenv("DB_PASSWORD", "")
    SQLITE_PATH: str = os.getenv("SQLITE_PATH", "clausesync.db")

    @property
    def DATABASE_URL(self) -> str:
        """Explicit DATABASE_URL, else PostgreSQL from DB_* parts, else local SQLite"""
        explicit = os.getenv("DATABASE_URL")
        if explicit:
            return explicit
        if not self.DB_NAME:
            return f"sqlite:///{self.SQLITE_PATH}"
        # Escape special characters in password
        import urllib.parse
        escaped_password = urllib.parse.quote_plus(self.DB_PASSWORD)
        return f"postgresql://{self.DB_USER}:{escaped_password}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    # Create necessary directories
    @classmethod
    def initialize(cls):
        """Create required directories"""
        cls.UPLOAD_DIR.mkdir(exist_ok=True)
        cls.LOG_DIR.mkdir(exist_ok=True)
        cls.LEGACY_ARCHIVE_DIR.mkdir(parents=True, exist_ok=True)
        print(f"✓ Upload directory: {cls.UPLOAD_DIR.absolute()}")
        print(f"✓ Log directory: {cls.LOG_DIR.absolute()}")
        print(f"✓ Legacy archive: {cls.LEGACY_ARCHIVE_DIR.absolute()}")

        if not cls.GEMINI_API_KEY:
            print("[!] GEMINI_API_KEY not set - extraction and smart search are disabled")
        else:
            print(f"✓ Gemini API Key configured")
        print(f"✓ Model: {cls.GEMINI_MODEL}")
        print(f"✓ Request Delay: {cls.GEMINI_REQUEST_DELAY}s")
        print(f"✓ Max Retries: {cls.MAX_RETRIES}")
