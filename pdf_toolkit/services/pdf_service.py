"""Flask views that turn HTTP requests into pipeline calls."""

import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from flask import current_app, jsonify, request, send_from_directory
from werkzeug.datastructures import FileStorage
from werkzeug.exceptions import HTTPException, NotFound, RequestEntityTooLarge
from werkzeug.utils import secure_filename

from pdf_toolkit.config import RuntimeConfig
from pdf_toolkit.core.exceptions import PDFToolkitError, ValidationError
from pdf_toolkit.core.utils import format_file_size, generate_unique_filename
from pdf_toolkit.engine.rasterize import normalize_format
from pdf_toolkit.services.pipeline import OperationPipeline, UploadedFile

# Config
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)

EXTENSION_KEY = "pdf_toolkit"
PDF_MIMETYPE = "application/pdf"


@dataclass
class ToolkitRuntime:
    """Per-app state: configuration plus the wired pipeline."""

    config: RuntimeConfig
    pipeline: OperationPipeline


def configure_app(app, runtime: ToolkitRuntime) -> None:
    """Apply Flask app config values required by this service layer."""
    app.config["MAX_CONTENT_LENGTH"] = runtime.config.max_content_length
    app.extensions[EXTENSION_KEY] = runtime


def get_runtime() -> ToolkitRuntime:
    return current_app.extensions[EXTENSION_KEY]


def register_error_handlers(app) -> None:
    """Register HTTP and framework error handlers."""
    app.register_error_handler(RequestEntityTooLarge, handle_large_file)
    app.register_error_handler(HTTPException, handle_http_exception)
    app.register_error_handler(PDFToolkitError, handle_toolkit_error)
    app.register_error_handler(Exception, handle_error)


def create_error_response(error: Exception, status_code: int = 500):
    """Standardized failure envelope.

    Returns both 'error' (short form) and 'error_type'/'error_message'.
    """
    include_detail = get_runtime().config.include_error_detail
    if isinstance(error, PDFToolkitError):
        structured = error.to_dict(include_detail)
        payload: Dict[str, Any] = {
            "success": False,
            "error": error.message,
            "error_type": structured["kind"],
            "error_message": error.message,
        }
        if "hint" in structured:
            payload["hint"] = structured["hint"]
        if "detail" in structured:
            payload["debug"] = structured["detail"]
        return jsonify(payload), status_code

    message = error.description if isinstance(error, HTTPException) else "Internal server error"
    payload = {
        "success": False,
        "error": message,
        "error_type": type(error).__name__ if isinstance(error, HTTPException) else "UnknownError",
        "error_message": message,
    }
    if include_detail and not isinstance(error, HTTPException):
        payload["debug"] = str(error)
    return jsonify(payload), status_code


def success_response(message: str, data: Dict[str, Any]):
    return jsonify({"success": True, "message": message, "data": data})


# Error handlers
def handle_large_file(e):
    max_mb = int(get_runtime().config.max_content_length / (1024 * 1024))
    message = f"File too large (max {max_mb}MB)"
    return jsonify({
        "success": False,
        "error": message,
        "error_type": "FileTooLarge",
        "error_message": message,
    }), 413


def handle_http_exception(e):
    if isinstance(e, NotFound):
        logger.info("404 %s %s", request.method, request.path)
    else:
        logger.warning("HTTP %s on %s %s: %s", e.code, request.method, request.path, e.description)
    return create_error_response(e, e.code or 400)


def handle_toolkit_error(e):
    if e.status_code >= 500:
        logger.error(f"{e.error_type} on {request.path}: {e.message}")
    else:
        logger.info(f"{e.error_type} on {request.path}: {e.message}")
    return create_error_response(e, e.status_code)


def handle_error(e):
    logger.exception("Unhandled error")
    return create_error_response(e, 500)


# Request parsing
def _is_pdf(storage: FileStorage) -> bool:
    name = (storage.filename or "").lower()
    return storage.mimetype == PDF_MIMETYPE or name.endswith(".pdf")


def save_upload(storage: FileStorage, upload_root: Path) -> UploadedFile:
    """Persist one multipart upload under the upload root."""
    original_name = storage.filename or "document.pdf"
    if not _is_pdf(storage):
        raise ValidationError(f"'{original_name}' is not a PDF file. Only PDF files are allowed.")

    safe_name = secure_filename(original_name) or "document.pdf"
    upload_root.mkdir(parents=True, exist_ok=True)
    path = upload_root / generate_unique_filename(safe_name)
    storage.save(str(path))
    size = path.stat().st_size
    logger.info(f"[upload] Saved {original_name} as {path.name} ({format_file_size(size)})")
    return UploadedFile(name=original_name, size=size, media_type=storage.mimetype or PDF_MIMETYPE, path=path)


def _single_upload(field: str = "pdf") -> Optional[UploadedFile]:
    storage = request.files.get(field)
    if storage is None or not storage.filename:
        return None
    return save_upload(storage, get_runtime().pipeline.upload_root)


def parse_pages(raw: Optional[str]) -> Optional[List[int]]:
    """Parse a page selection given as a JSON array or a comma separated list."""
    if raw is None or not raw.strip():
        return None
    text = raw.strip()
    if text.startswith("["):
        try:
            values = json.loads(text)
        except ValueError as e:
            raise ValidationError(f"Invalid page list: {raw}", original_error=e) from e
        if not isinstance(values, list):
            raise ValidationError(f"Invalid page list: {raw}")
    else:
        values = [part.strip() for part in text.split(",") if part.strip()]

    pages = []
    for value in values:
        if isinstance(value, bool):
            raise ValidationError(f"Invalid page number: {value}")
        try:
            number = int(value)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Invalid page number: {value}", original_error=e) from e
        if isinstance(value, float) and value != number:
            raise ValidationError(f"Invalid page number: {value}")
        pages.append(number)
    return pages or None


def parse_quality(raw: Optional[str]) -> Optional[float]:
    if raw is None or not raw.strip():
        return None
    try:
        return float(raw)
    except ValueError as e:
        raise ValidationError(f"Quality must be a number between 0 and 1, got '{raw}'", original_error=e) from e


# Routes
def merge():
    """Merge the uploaded PDFs (field ``pdfs``) in upload order."""
    pipeline = get_runtime().pipeline
    storages = [s for s in request.files.getlist("pdfs") if s and s.filename]
    if len(storages) < 2:
        raise ValidationError.too_few_files("merge", 2)
    for storage in storages:
        if not _is_pdf(storage):
            raise ValidationError(f"'{storage.filename}' is not a PDF file. Only PDF files are allowed.")
    uploads = [save_upload(s, pipeline.upload_root) for s in storages]

    result = pipeline.merge(uploads)
    result["result_size_formatted"] = format_file_size(result["result_size"])
    return success_response("PDFs merged successfully", result)


def split():
    """Split the uploaded PDF (field ``pdf``), optionally by ``pages``."""
    pages = parse_pages(request.form.get("pages"))
    upload = _single_upload()
    result = get_runtime().pipeline.split(upload, pages)
    for item in result["items"]:
        item["size_formatted"] = format_file_size(item["size"])
    return success_response(f"PDF split into {len(result['items'])} files", result)


def compress():
    """Compress the uploaded PDF (field ``pdf``) at ``quality``."""
    quality = parse_quality(request.form.get("quality"))
    upload = _single_upload()
    result = get_runtime().pipeline.compress(upload, quality)
    result["original_size_formatted"] = format_file_size(result["original_size"])
    result["compressed_size_formatted"] = format_file_size(result["compressed_size"])
    return success_response("PDF compressed successfully", result)


def convert():
    """Convert the uploaded PDF (field ``pdf``) to ``format`` images."""
    fmt = normalize_format(request.form.get("format") or "png")
    upload = _single_upload()
    result = get_runtime().pipeline.convert(upload, fmt)
    for item in result["items"]:
        item["size_formatted"] = format_file_size(item["size"])
    return success_response(
        f"PDF converted to {len(result['items'])} {result['format'].upper()} images", result
    )


def info():
    """Return metadata for the uploaded PDF (field ``pdf``)."""
    upload = _single_upload()
    result = get_runtime().pipeline.info(upload)
    result["file_size_formatted"] = format_file_size(result["file_size"])
    return success_response("PDF info retrieved successfully", result)


def download(filename):
    """Serve an artifact from the upload root.

    Artifacts disappear once their cleanup delay has elapsed.
    """
    root = get_runtime().pipeline.upload_root
    parts = [p for p in filename.split("/") if p]
    if not parts or any(secure_filename(p) != p for p in parts):
        logger.warning(f"[download] Invalid filename rejected: {filename}")
        return jsonify({"success": False, "error": "Invalid filename"}), 400

    file_path = root.joinpath(*parts)
    try:
        file_path.resolve().relative_to(root.resolve())
    except ValueError:
        logger.warning(f"[download] Path traversal attempt blocked: {filename}")
        return jsonify({"success": False, "error": "Invalid filename"}), 400

    if not file_path.is_file():
        logger.info(f"[download] File not found: {file_path}")
        return jsonify({"success": False, "error": "File not found"}), 404

    logger.info(f"[download] Serving file: {file_path.name} ({format_file_size(file_path.stat().st_size)})")
    return send_from_directory(str(root), "/".join(parts), as_attachment=True)


def health():
    """Health check with backend capability snapshot."""
    runtime = get_runtime()
    snapshot = runtime.pipeline.health()
    snapshot["status"] = "OK"
    snapshot["environment"] = runtime.config.environment
    snapshot["upload_folder"] = str(runtime.pipeline.upload_root)
    return jsonify(snapshot)
