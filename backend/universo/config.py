# @TASK P0-T0.2 - pydantic-settings based application settings

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Universo access service settings.

    All values are loaded from environment variables.
    A .env file in the backend directory is also supported.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # --- Database ---
    DATABASE_URL: str = "postgresql+asyncpg://universo:universo@db:5432/universo"
    DATABASE_ECHO: bool = False

    # --- JWT ---
    JWT_SECRET: str = "change-this-secret-key"
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # --- Listing limits ---
    MEMBER_LIST_DEFAULT_LIMIT: int = 100
    MEMBER_LIST_MAX_LIMIT: int = 1000
    CONTAINER_LIST_DEFAULT_LIMIT: int = 100
    CONTAINER_LIST_MAX_LIMIT: int = 1000

    # --- Global access ---
    GLOBAL_ADMIN_ENABLED: bool = True  # Holders of a global-access role bypass container membership

    # --- Publications ---
    PUBLISH_DELAY_SECONDS: float = 1.0  # Simulated build time before a publication goes live
    PUBLISH_BASE_URL: str = "https://example.com/published"

    # --- CORS ---
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    @property
    def async_database_url(self) -> str:
        """Ensure the database URL uses the asyncpg driver."""
        url = self.DATABASE_URL
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return url


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings singleton."""
    return Settings()
