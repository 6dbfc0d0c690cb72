"""Application configuration loading."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from pdf_toolkit.core.utils import env_choice, env_float, env_int

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONTENT_LENGTH_MB = 50
DEFAULT_CLEANUP_DELAY_SECONDS = 1800.0  # 30 minutes
DEFAULT_STALE_FILE_MAX_AGE_SECONDS = 86400.0  # 24 hours
TRACKING_BACKENDS = ("none", "memory", "sqlite")


def _default_upload_folder() -> Path:
    return Path(os.environ.get("UPLOAD_FOLDER") or Path.cwd() / "uploads")


@dataclass(frozen=True)
class RuntimeConfig:
    """Runtime configuration values consumed by the pipeline and the Flask app."""

    upload_folder: Path = field(default_factory=_default_upload_folder)
    max_content_length: int = DEFAULT_MAX_CONTENT_LENGTH_MB * 1024 * 1024
    cleanup_delay_seconds: float = DEFAULT_CLEANUP_DELAY_SECONDS
    stale_file_max_age_seconds: float = DEFAULT_STALE_FILE_MAX_AGE_SECONDS
    tracking_backend: str = "none"
    tracking_db_path: Optional[Path] = None
    raster_dpi: int = 150
    raster_jpeg_quality: int = 80
    compress_raster_dpi: int = 72
    compress_jpeg_quality: int = 50
    default_quality: float = 0.7
    environment: str = "production"

    @property
    def include_error_detail(self) -> bool:
        """Diagnostic error text is only exposed outside production."""
        return self.environment != "production"


def _clamp_int(name: str, value: int, low: int, high: int) -> int:
    clamped = max(low, min(high, value))
    if clamped != value:
        logger.warning("[settings] %s=%s out of range; clamped to %s", name, value, clamped)
    return clamped


def _resolve_tracking_backend(db_path: Optional[Path]) -> str:
    default = "sqlite" if db_path else "none"
    backend = env_choice("TRACKING_BACKEND", default, TRACKING_BACKENDS)
    if backend == "sqlite" and db_path is None:
        logger.warning("[settings] TRACKING_BACKEND=sqlite without TRACKING_DB_PATH; tracking disabled")
        return "none"
    return backend


def load_runtime_config() -> RuntimeConfig:
    """Load runtime configuration from environment variables."""
    raw_db_path = (os.environ.get("TRACKING_DB_PATH") or "").strip()
    db_path = Path(raw_db_path) if raw_db_path else None

    max_mb = env_int("MAX_CONTENT_LENGTH_MB", DEFAULT_MAX_CONTENT_LENGTH_MB)
    if max_mb <= 0:
        logger.warning("[settings] Non-positive MAX_CONTENT_LENGTH_MB=%s; using default", max_mb)
        max_mb = DEFAULT_MAX_CONTENT_LENGTH_MB

    default_quality = env_float("DEFAULT_QUALITY", 0.7)
    default_quality = max(0.0, min(1.0, default_quality))

    return RuntimeConfig(
        upload_folder=_default_upload_folder(),
        max_content_length=max_mb * 1024 * 1024,
        cleanup_delay_seconds=max(0.0, env_float("CLEANUP_DELAY_SECONDS", DEFAULT_CLEANUP_DELAY_SECONDS)),
        stale_file_max_age_seconds=max(
            0.0, env_float("STALE_FILE_MAX_AGE_SECONDS", DEFAULT_STALE_FILE_MAX_AGE_SECONDS)
        ),
        tracking_backend=_resolve_tracking_backend(db_path),
        tracking_db_path=db_path,
        raster_dpi=_clamp_int("RASTER_DPI", env_int("RASTER_DPI", 150), 36, 600),
        raster_jpeg_quality=_clamp_int("RASTER_JPEG_QUALITY", env_int("RASTER_JPEG_QUALITY", 80), 10, 95),
        compress_raster_dpi=_clamp_int("COMPRESS_RASTER_DPI", env_int("COMPRESS_RASTER_DPI", 72), 36, 300),
        compress_jpeg_quality=_clamp_int(
            "COMPRESS_JPEG_QUALITY", env_int("COMPRESS_JPEG_QUALITY", 50), 10, 95
        ),
        default_quality=default_quality,
        environment=(os.environ.get("APP_ENV") or "production").strip().lower(),
    )
