"""
Centralized configuration management with validation.

All environment variables are loaded and validated here.
This ensures consistent configuration across the API, the worker and scripts.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import List, Optional
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    """Application settings with validation."""

    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

    # Database Configuration
    # DATABASE_URL wins when set (tests and one-off scripts use sqlite).
    DATABASE_URL: Optional[str] = Field(default=None)
    POSTGRES_USER: str = Field(default="postgres")
    POSTGRES_PASSWORD: str = Field(default="postgres")
    POSTGRES_DB: str = Field(default="spotmap")
    POSTGRES_HOST: str = Field(default="postgres")
    POSTGRES_PORT: int = Field(default=5432)

    # Database Pool Configuration
    DB_POOL_SIZE: int = Field(default=10)
    DB_MAX_OVERFLOW: int = Field(default=10)
    DB_POOL_TIMEOUT: int = Field(default=30)
    DB_POOL_RECYCLE: int = Field(default=3600)  # 1 hour

    # Celery Configuration
    CELERY_BROKER_URL: str = Field(default="redis://redis:6379/0")
    CELERY_RESULT_BACKEND: str = Field(default="redis://redis:6379/0")
    # Hard ceiling per sync run; progress is committed per placemark so a cut-off run keeps its work.
    SYNC_TASK_TIME_LIMIT_S: int = Field(default=9 * 60)
    SYNC_TASK_SOFT_TIME_LIMIT_S: int = Field(default=8 * 60 + 30)

    # JWT Authentication - REQUIRED for verifying admin/user tokens
    # Must be set via environment variable, never use default in production
    SECRET_KEY: str = Field(
        default=...,  # Required - no default
        description="JWT signing key. Must be cryptographically secure (32+ chars). "
                    "Generate with: python -c \"import secrets; print(secrets.token_urlsafe(32))\""
    )
    ADMIN_ROLES: List[str] = Field(default_factory=lambda: ["admin", "owner"])

    # Geocoding (Google Geocoding API)
    GOOGLE_MAPS_API_KEY: Optional[str] = Field(default=None)
    GEOCODING_API_URL: str = Field(default="https://maps.googleapis.com/maps/api/geocode/json")
    # Delay between serialized geocoding calls inside one sync run (quota contract).
    GEOCODING_DELAY_S: float = Field(default=0.1, ge=0)

    # Object storage (S3-compatible)
    S3_BUCKET_NAME: Optional[str] = Field(default=None)
    S3_ENDPOINT_URL: Optional[str] = Field(default=None)
    S3_REGION: Optional[str] = Field(default=None)
    S3_PUBLIC_BASE_URL: Optional[str] = Field(default=None)
    AWS_ACCESS_KEY_ID: Optional[str] = Field(default=None)
    AWS_SECRET_ACCESS_KEY: Optional[str] = Field(default=None)

    # Image processing
    IMAGE_MAX_DIMENSION: int = Field(default=1600, gt=0)
    IMAGE_JPEG_QUALITY: int = Field(default=85, ge=1, le=100)
    IMAGE_BATCH_SIZE: int = Field(default=3, ge=1)
    # Hosts that hand out short-lived links; never trust a URL-keyed cache entry for them.
    EPHEMERAL_IMAGE_HOSTS: List[str] = Field(
        default_factory=lambda: ["mymaps.usercontent.google.com", "lh3.googleusercontent.com"]
    )

    # Sync
    SYNC_CHUNK_SIZE: int = Field(default=200, ge=1)
    KMZ_MAX_EXTRACTED_BYTES: int = Field(default=100 * 1024 * 1024)

    # External API Configuration
    EXTERNAL_API_TIMEOUT: int = Field(default=30)

    # Ranked queries
    RANKED_QUERY_MAX_LIMIT: int = Field(default=200, ge=1)

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="json")  # json or text

    # Environment
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=False)

    # CORS - comma-separated list of allowed origins for production
    CORS_ORIGINS: Optional[str] = Field(default=None)

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql://{self.POSTGRES_USER}:"
            f"{self.POSTGRES_PASSWORD}@"
            f"{self.POSTGRES_HOST}:"
            f"{self.POSTGRES_PORT}/"
            f"{self.POSTGRES_DB}"
        )


# Global settings instance
settings = Settings()
