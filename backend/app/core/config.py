"""
Application configuration management using Pydantic settings.
"""
import json
from typing import Optional, List
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

from app.core.exceptions import ConfigurationError


# Keys that must be present before the application accepts requests
REQUIRED_SETTINGS = ("DATABASE_URL", "STORAGE_PROVIDER")
REQUIRED_S3_SETTINGS = ("AWS_ACCESS_KEY_ID", "AWS_SECRET_ACCESS_KEY", "S3_BUCKET_NAME")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    APP_NAME: str = "Data Import & Quality Service"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "local"  # local, staging, production

    # API
    API_V1_PREFIX: str = "/api/v1"
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS_ORIGINS from environment variable.

        Supports:
        - JSON array: '["https://example.com","https://app.example.com"]'
        - Comma-separated: 'https://example.com,https://app.example.com'
        - Single string: 'https://example.com'
        """
        if isinstance(v, str):
            try:
                parsed = json.loads(v)
                if isinstance(parsed, list):
                    return parsed
            except json.JSONDecodeError:
                pass

            if ',' in v:
                return [origin.strip() for origin in v.split(',') if origin.strip()]

            return [v.strip()] if v.strip() else []

        return v

    # Database
    DATABASE_URL: str = "postgresql+asyncpg://postgres:postgres@db:5432/imports_db"
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 30

    # Source file storage (s3 or local)
    STORAGE_PROVIDER: str = "local"
    LOCAL_STORAGE_PATH: str = "/app/storage"
    AWS_ACCESS_KEY_ID: Optional[str] = None
    AWS_SECRET_ACCESS_KEY: Optional[str] = None
    AWS_REGION: str = "us-east-1"
    S3_BUCKET_NAME: Optional[str] = None

    # Import pipeline
    MAX_UPLOAD_SIZE_MB: int = 10
    PREVIEW_ROWS: int = 10
    SAMPLE_VALUES_LIMIT: int = 5
    TYPE_INFERENCE_SAMPLE_SIZE: int = 20  # 1 reproduces first-row inference
    STAGING_BATCH_SIZE: int = 500
    STATISTICS_PAGE_SIZE: int = 1000
    QUALITY_ISSUE_THRESHOLD: float = 0.95
    QUALITY_HIGH_SEVERITY_THRESHOLD: float = 0.8

    # Column name suggester (Azure OpenAI)
    AZURE_OPENAI_API_KEY: Optional[str] = None
    AZURE_OPENAI_ENDPOINT: Optional[str] = None
    AZURE_OPENAI_DEPLOYMENT: Optional[str] = None
    AZURE_OPENAI_API_VERSION: str = "2023-07-01-preview"
    SUGGESTER_TIMEOUT_SECONDS: float = 30.0

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"  # json or text

    # Monitoring
    ENABLE_METRICS: bool = True

    @property
    def max_upload_size_bytes(self) -> int:
        return self.MAX_UPLOAD_SIZE_MB * 1024 * 1024

    @property
    def suggester_configured(self) -> bool:
        return bool(
            self.AZURE_OPENAI_API_KEY
            and self.AZURE_OPENAI_ENDPOINT
            and self.AZURE_OPENAI_DEPLOYMENT
        )

    def missing_required(self) -> List[str]:
        """Return the names of required settings that are empty."""
        required = list(REQUIRED_SETTINGS)
        if self.STORAGE_PROVIDER.lower() == "s3":
            required.extend(REQUIRED_S3_SETTINGS)
        return [key for key in required if not getattr(self, key, None)]

    def validate_required(self) -> None:
        """
        Validate required configuration at startup.

        Raises:
            ConfigurationError: If any required key is missing
        """
        missing = self.missing_required()
        if missing:
            raise ConfigurationError(
                f"Missing required configuration: {', '.join(missing)}",
                details={"missing": missing}
            )
        if self.STORAGE_PROVIDER.lower() not in ("local", "s3"):
            raise ConfigurationError(
                f"Unsupported storage provider: {self.STORAGE_PROVIDER}"
            )


settings = Settings()
