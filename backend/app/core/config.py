"""
Configuration management using Pydantic Settings
"""
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env from project root
# config.py is at: backend/app/core/config.py
# Project root is: backend/app/core/../../../
_current_file = Path(__file__).resolve()
_backend_dir = _current_file.parent.parent.parent
_project_root = _backend_dir.parent
ENV_FILE = _project_root / ".env"
# Fallback: try in backend/ directory if not found in project root
if not ENV_FILE.exists():
    ENV_FILE = _backend_dir / ".env"
if ENV_FILE.exists():
    load_dotenv(ENV_FILE, override=False)

PROJECT_ROOT = _project_root


class Settings(BaseSettings):
    """Application settings"""

    # Application
    app_name: str = "Stoneyard"
    app_env: str = Field(default="development", description="Application environment")
    log_level: str = Field(default="INFO", description="Logging level")
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, ge=1, le=65535, description="API port")
    allowed_origins: str = Field(
        default="*",
        description="Allowed CORS origins (comma-separated)"
    )

    # Logging
    log_sqlalchemy: bool = Field(default=False, description="Enable SQLAlchemy query logging")
    log_uvicorn_access: bool = Field(default=False, description="Enable Uvicorn access logging")
    log_module_levels: Optional[str] = Field(
        default=None,
        description='Module-specific log levels (JSON string, e.g., {"app.services": "DEBUG"})'
    )
    log_format: str = Field(
        default="json",
        description="Log format: 'json' for structured logging, 'text' for plain text"
    )
    log_file_enabled: bool = Field(default=False, description="Enable file logging")
    log_file_path: str = Field(
        default="logs/stoneyard.log",
        description="Path to log file (relative to project root)"
    )
    log_file_retention: int = Field(
        default=30,
        ge=1,
        description="Number of days to keep log files"
    )
    log_sensitive_data: bool = Field(
        default=False,
        description="Enable logging of sensitive data (passwords, tokens) - NOT RECOMMENDED"
    )

    # Database
    database_url_override: Optional[str] = Field(
        default=None,
        validation_alias="DATABASE_URL",
        description="Full SQLAlchemy URL; takes precedence over the POSTGRES_* parts"
    )
    postgres_host: str = Field(default="localhost", description="PostgreSQL host")
    postgres_db: str = Field(default="stoneyard", description="PostgreSQL database name")
    postgres_user: str = Field(default="postgres", description="PostgreSQL user")
    postgres_password: str = Field(default="", description="PostgreSQL password")
    postgres_port: int = Field(default=5432, ge=1, le=65535, description="PostgreSQL port")
    database_pool_size: int = Field(default=20, ge=1, description="Database pool size")
    database_max_overflow: int = Field(default=10, ge=0, description="Database max overflow")

    # Blob storage (images and QR artifacts)
    blob_store_path: str = Field(
        default="uploads",
        description="Directory for stored blobs (relative to project root)"
    )
    max_image_bytes: int = Field(
        default=10 * 1024 * 1024,
        ge=1,
        description="Largest accepted block photo in bytes"
    )

    # Identity artifacts
    qr_scale: int = Field(default=5, ge=1, le=40, description="Pixels per QR module")
    qr_border: int = Field(default=1, ge=0, le=10, description="Quiet zone width in modules")

    # Inventory defaults
    default_grade: str = Field(default="Standard", description="Grade assigned when none is given")

    # Capability gate (roles asserted by the upstream auth gateway)
    enforce_roles: bool = Field(default=False, description="Check X-User-Role before mutating operations")
    role_header: str = Field(default="X-User-Role", description="Header carrying the caller's role")
    admin_roles: str = Field(default="admin", description="Roles with full access (comma-separated)")
    dispatcher_roles: str = Field(
        default="admin,dispatcher",
        description="Roles allowed to dispatch blocks (comma-separated)"
    )

    # Tracing
    enable_tracing: bool = Field(default=False, description="Enable OpenTelemetry tracing")
    tracing_service_name: str = Field(default="stoneyard", description="Service name for tracing")
    tracing_exporter: str = Field(
        default="console",
        description="Tracing exporter: 'console' or 'otlp'"
    )
    tracing_otlp_endpoint: Optional[str] = Field(
        default=None,
        description="OTLP endpoint URL (e.g., http://localhost:4318/v1/traces)"
    )

    @field_validator("default_grade")
    @classmethod
    def validate_default_grade(cls, v: str) -> str:
        """Default grade must be a usable label"""
        v = v.strip()
        if not v:
            raise ValueError("default_grade must not be empty")
        return v

    @property
    def database_url(self) -> str:
        """Construct database URL"""
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def blob_store_dir(self) -> Path:
        """Resolve blob store directory relative to project root"""
        path = Path(self.blob_store_path)
        if not path.is_absolute():
            path = PROJECT_ROOT / path
        return path

    @property
    def allowed_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string"""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    @property
    def role_map(self) -> Dict[str, List[str]]:
        """Parse role lists from comma-separated strings"""
        return {
            "admin": _split_csv(self.admin_roles),
            "dispatcher": _split_csv(self.dispatcher_roles),
        }

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE) if ENV_FILE.exists() else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_ignore_empty=True,
        populate_by_name=True,
    )


def _split_csv(value: str) -> List[str]:
    return [item.strip().lower() for item in value.split(",") if item.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
