"""Configuration management for the QReport export engine."""

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_name: str = "QReport"

    # Photo processing
    photo_quality: int = Field(default=85, ge=1, le=100)
    photo_max_width: int = Field(default=800, gt=0)
    photos_per_row: int = Field(default=2, ge=1, le=4)
    max_photo_workers: int = Field(default=2, ge=1, le=4)
    watermark_margin: int = Field(default=20, ge=0)

    # Storage budget
    storage_safety_factor: float = Field(default=2.0, ge=2.0)
    base_document_overhead_bytes: int = 256 * 1024
    table_row_overhead_bytes: int = 512
    fallback_photo_size_bytes: int = 500 * 1024

    # Document layout
    note_max_chars: int = Field(default=120, gt=3)

    # Logging
    log_level: str = "INFO"

    class Config:
        env_prefix = "QREPORT_"
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
