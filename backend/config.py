"""
Configuration management for the application.
Loads settings from environment variables using Pydantic Settings.
"""

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Database Configuration
    DATABASE_URL: str = "sqlite:///./warrantyhub.sqlite"

    @property
    def database_url_async(self) -> str:
        """
        Transform DATABASE_URL to use the appropriate async driver.
        - PostgreSQL: postgresql+asyncpg://...
        - SQLite: sqlite+aiosqlite:///...
        """
        if self.DATABASE_URL.startswith("postgresql://"):
            return self.DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://", 1)
        elif self.DATABASE_URL.startswith("postgres://"):
            return self.DATABASE_URL.replace("postgres://", "postgresql+asyncpg://", 1)
        elif self.DATABASE_URL.startswith("sqlite://"):
            return self.DATABASE_URL.replace("sqlite://", "sqlite+aiosqlite://", 1)
        return self.DATABASE_URL

    # Security (signs the session cookies)
    SECRET_KEY: str = "change-me-in-production"
    ALGORITHM: str = "HS256"
    ADMIN_SESSION_DAYS: int = 7
    CUSTOMER_SESSION_DAYS: int = 30

    # Application
    APP_NAME: str = "WarrantyHub"
    ENVIRONMENT: str = "development"  # development | production
    DEBUG: bool = False
    CORS_ORIGINS: str = "http://localhost:3000"
    SEED_DEMO_DATA: bool = False

    # Tenant routing
    APP_DOMAIN: str = Field(
        default="aoowarranty.com",
        validation_alias=AliasChoices("APP_DOMAIN", "NEXT_PUBLIC_APP_DOMAIN"),
    )
    APP_URL: str = "http://localhost:3000"  # Base for OAuth callbacks and dev links
    DEV_HOST: str = "localhost:3000"

    # Warranty status
    DEFAULT_TIMEZONE: str = "Asia/Bangkok"
    EXPIRING_SOON_DAYS: int = 30

    # Cloudflare R2 Configuration (empty bucket/public URL = storage disabled)
    R2_ENDPOINT_URL: str = ""
    R2_ACCESS_KEY_ID: str = ""
    R2_SECRET_ACCESS_KEY: str = ""
    R2_BUCKET_NAME: str = ""
    R2_PUBLIC_URL: str | None = None

    # LINE Login
    LINE_CHANNEL_ID: str = ""
    LINE_CHANNEL_SECRET: str = ""

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    class Config:
        env_file = ".env"
        case_sensitive = True
        populate_by_name = True


# Singleton instance - import this in other modules
settings = Settings()
