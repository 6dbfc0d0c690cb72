"""Shared utility functions for the PDF toolkit.

Contains:
- env_* helpers: read typed values from the environment with defaults
- get_file_size: file size in bytes
- format_file_size: human readable sizes for API responses
- generate_unique_filename: collision-free artifact names
"""

import logging
import os
import time
import uuid
from pathlib import Path

from werkzeug.utils import secure_filename

logger = logging.getLogger(__name__)


def env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("[settings] Invalid %s=%s; using %s", name, raw, default)
        return default


def env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("[settings] Invalid %s=%s; using %s", name, raw, default)
        return default


def env_choice(name: str, default: str, allowed: tuple[str, ...]) -> str:
    raw = (os.environ.get(name) or "").strip().lower()
    return raw if raw in allowed else default


def get_file_size(path: Path) -> int:
    """Get file size in bytes."""
    return Path(path).stat().st_size


def format_file_size(size_bytes: int) -> str:
    """Format a byte count for display ("0 Bytes", "1.5 KB", "2.25 MB")."""
    if size_bytes <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    exponent = 0
    while size_bytes >= 1024 ** (exponent + 1) and exponent < len(units) - 1:
        exponent += 1
    value = round(size_bytes / (1024 ** exponent), 2)
    if value == int(value):
        value = int(value)
    return f"{value} {units[exponent]}"


def generate_unique_filename(original_name: str, suffix: str = "") -> str:
    """Build a unique artifact name from an uploaded file name.

    "report.pdf" with suffix "_compressed" becomes
    "report_compressed_<millis>_<random>.pdf". The name is passed through
    ``secure_filename`` so it is always accepted by the download route.
    """
    original = Path(secure_filename(original_name or "") or "document.pdf")
    stem = original.stem or "document"
    ext = original.suffix or ".pdf"
    timestamp = int(time.time() * 1000)
    token = uuid.uuid4().hex[:9]
    return f"{stem}{suffix}_{timestamp}_{token}{ext}"
