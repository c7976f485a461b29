"""Application configuration using Pydantic Settings"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
from typing import List, Optional
import secrets


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Database
    DATABASE_URL: str = "sqlite:///./data/smartops.db"

    # Security (tokens are issued by the tenant/auth layer, validated here)
    JWT_SECRET_KEY: str = secrets.token_urlsafe(32)  # Auto-generate if not set
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRATION_HOURS: int = 24

    # Application
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_DIR: Optional[str] = None  # Console-only logging when unset

    # API
    API_V1_PREFIX: str = "/api/v1"
    # Stored as string to avoid pydantic-settings JSON parsing; use cors_origins_list property
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:8000"

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS_ORIGINS from comma-separated string"""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    # Blob storage
    BLOB_STORAGE_DIR: str = "./data/blobs"
    MAX_UPLOAD_FILES: int = 10
    MAX_UPLOAD_FILE_BYTES: int = 25 * 1024 * 1024

    # Biometric template worker
    BIOMETRIC_WORKER_ENABLED: bool = True
    BIOMETRIC_WORKER_INTERVAL_SECONDS: float = 8.0
    BIOMETRIC_WORKER_BATCH_SIZE: int = 2
    BIOMETRIC_WORKER_MAX_PHOTOS: int = 4  # Mobile captures a profile photo plus 3 angles
    BIOMETRIC_WORKER_NO_PHOTOS_BACKOFF_TICKS: int = 15  # Ticks before an unreadable record is rescanned

    # Identification
    BIOMETRIC_MATCH_THRESHOLD: float = 0.90
    BIOMETRIC_REQUEST_LIST_LIMIT: int = 500

    @field_validator(
        'BIOMETRIC_WORKER_INTERVAL_SECONDS',
        'BIOMETRIC_WORKER_BATCH_SIZE',
        'BIOMETRIC_WORKER_MAX_PHOTOS',
        'BIOMETRIC_WORKER_NO_PHOTOS_BACKOFF_TICKS',
        'MAX_UPLOAD_FILES',
        'MAX_UPLOAD_FILE_BYTES',
        'BIOMETRIC_REQUEST_LIST_LIMIT',
        mode='after',
    )
    @classmethod
    def validate_positive(cls, v):
        """Worker cadence, batch sizes and upload limits must be positive."""
        if v <= 0:
            raise ValueError("value must be greater than zero")
        return v

    @field_validator('BIOMETRIC_MATCH_THRESHOLD', mode='after')
    @classmethod
    def validate_match_threshold(cls, v: float) -> float:
        """Cosine threshold must be within (0, 1]."""
        if not 0.0 < v <= 1.0:
            raise ValueError("BIOMETRIC_MATCH_THRESHOLD must be in (0, 1]")
        return v

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )


# Global settings instance
settings = Settings()
