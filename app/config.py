"""Application configuration using pydantic-settings."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Local testing mode - stores session content on disk instead of GCS
    local_mode: bool = False

    # API Keys
    google_api_key: Optional[str] = None
    gcs_bucket_name: str = "voxel-scene-sessions"

    # Optional - GCS credentials path
    google_application_credentials: Optional[str] = None

    # Session content path (used when local_mode=True)
    local_data_path: str = "local_data"

    # Optional with defaults
    max_upload_size_mb: int = 10
    allowed_origins: str = "http://localhost:3000"
    log_level: str = "INFO"

    # Gemini models
    image_model: str = "gemini-2.5-flash-image"
    scene_model: str = "gemini-3.1-pro-preview"
    request_timeout_ms: int = 300_000

    # Camera framing applied to every generated scene
    camera_position: tuple[float, float, float] = (30.0, 30.0, 30.0)
    camera_fov: float = 45.0

    # Bundled example scenes
    examples_base_url: str = "http://localhost:3000"
    examples_timeout_seconds: float = 10.0

    @property
    def max_upload_size_bytes(self) -> int:
        """Return max upload size in bytes."""
        return self.max_upload_size_mb * 1024 * 1024

    @property
    def cors_origins(self) -> list[str]:
        """Return list of allowed CORS origins."""
        return [origin.strip() for origin in self.allowed_origins.split(",")]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
