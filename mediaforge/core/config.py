from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional
from urllib.parse import urlparse

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Centralised runtime configuration for the derived-file pipeline."""

    model_config = SettingsConfigDict(
        env_prefix="MEDIAFORGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "mediaforge"
    environment: str = Field(default="development", description="Deployment environment label.")
    log_level: str = Field(default="info")

    library_root: Path = Field(
        default_factory=lambda: Path("storage/medialibrary"),
        description="Root of the local media library (originals and conversions).",
    )
    temp_root: Path = Field(
        default_factory=lambda: Path("storage/medialibrary/temp"),
        description="Parent directory for per-run working directories.",
    )
    storage_backend: Literal["local"] = Field(default="local", description="Active storage implementation.")
    conversions_file: Path | None = Field(
        default=None,
        description="Optional JSON file with conversion definitions to register at start-up.",
    )

    job_queue_backend: Literal["immediate", "inline", "rq"] = Field(
        default="immediate",
        description="Backend for queued conversions (inline executes inline; rq schedules via Redis).",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis URL for queued conversions and the redis lock backend.",
    )
    queue_name: Optional[str] = Field(default=None, description="Queue name override for queued conversions.")

    office_bridge_url: str = Field(
        default="http://localhost:3000/convert",
        description="Address of the shared office-document to PDF conversion service.",
    )
    office_bridge_timeout_s: float = Field(default=120.0, description="Timeout for a single bridge request.")
    office_bridge_max_attempts: int = Field(default=10, ge=1, description="Total bridge attempts per document.")
    office_bridge_retry_delay_s: float = Field(default=5.5, ge=0, description="Fixed delay between bridge attempts.")
    office_bridge_min_bytes: int = Field(
        default=1000,
        description="Responses smaller than this are treated as a failed conversion.",
    )

    lock_backend: Literal["file", "redis"] = Field(default="file", description="Exclusive lock implementation.")
    lock_path: Path = Field(
        default_factory=lambda: Path("storage/medialibrary/office-bridge.lock"),
        description="Lock file used by the file lock backend.",
    )
    lock_name: str = Field(default="mediaforge:office-bridge", description="Key used by the redis lock backend.")
    lock_poll_interval_s: float = Field(default=2.0, gt=0, description="Poll interval while waiting for the lock.")
    lock_timeout_s: float | None = Field(default=600.0, description="Give up waiting for the lock after this long.")

    ffmpeg_binary: str = Field(default="ffmpeg")
    pdftoppm_binary: str = Field(default="pdftoppm")
    pdf_resolution_dpi: int = Field(default=150, ge=1)
    frame_timestamp_s: float = Field(default=1.0, ge=0, description="Offset of the extracted video frame.")
    process_timeout_s: float = Field(default=600.0, gt=0, description="Deadline for rasterizer invocations.")
    transcode_timeout_s: float = Field(default=1800.0, gt=0, description="Deadline for ffmpeg invocations.")

    notify_without_artifact: bool = Field(
        default=True,
        description="Publish ConversionCompleted for conversions that produced no image (audio, frameless video).",
    )
    isolate_conversion_failures: bool = Field(
        default=False,
        description="Keep running sibling conversions when one conversion's manipulations fail.",
    )

    @property
    def environment_lower(self) -> str:
        return self.environment.lower()

    @property
    def normalized_job_backend(self) -> str:
        if self.job_queue_backend == "inline":
            return "immediate"
        return self.job_queue_backend


@lru_cache()
def get_settings() -> Settings:
    load_dotenv(".env", override=False)

    _ENV_ALIAS_MAP = {
        "MEDIAFORGE_ENV": "MEDIAFORGE_ENVIRONMENT",
        "MEDIAFORGE_JOB_BACKEND": "MEDIAFORGE_JOB_QUEUE_BACKEND",
        "MEDIAFORGE_QUEUE": "MEDIAFORGE_QUEUE_NAME",
    }

    for source, target in _ENV_ALIAS_MAP.items():
        value = os.getenv(source)
        if value:
            os.environ[target] = value

    settings = Settings()

    if settings.environment_lower == "production":
        host = urlparse(settings.office_bridge_url).hostname
        if host in {"localhost", "127.0.0.1"}:
            raise ValueError("Production environment must point the office bridge at a shared service.")

    return settings


__all__ = ["Settings", "get_settings"]
