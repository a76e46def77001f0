from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # Database
    RAW_DATABASE_URL: str = "sqlite+aiosqlite:///./quotagate.db"

    # Supabase (token verification only)
    SUPABASE_URL: str = ""
    SUPABASE_ANON_KEY: str = ""

    # Enforcement
    # Every storage call made by the metering core is bounded by this timeout.
    STORAGE_TIMEOUT_SECONDS: float = 5.0

    # Blob storage for uploaded documents
    UPLOAD_DIR: str = "./uploads"
    MAX_UPLOAD_BYTES: int = 10 * 1024 * 1024

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "console"  # "console" or "json"

    @property
    def DATABASE_URL(self) -> str:
        # SQLAlchemy 2.0 requires the asyncpg driver for async operations
        if self.RAW_DATABASE_URL.startswith("postgresql://"):
            return self.RAW_DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://", 1)
        return self.RAW_DATABASE_URL

    @property
    def SYNC_DATABASE_URL(self) -> str:
        # Alembic needs a synchronous driver
        if self.RAW_DATABASE_URL.startswith("postgresql://"):
            return self.RAW_DATABASE_URL.replace("postgresql://", "postgresql+psycopg2://", 1)
        if self.RAW_DATABASE_URL.startswith("sqlite+aiosqlite://"):
            return self.RAW_DATABASE_URL.replace("sqlite+aiosqlite://", "sqlite://", 1)
        return self.RAW_DATABASE_URL

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
