"""Ghostscript helpers for lossless rewrites, lossy re-encodes and page rasters."""

import logging
import shutil
import subprocess
from pathlib import Path
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)

RASTER_DEVICES = {"png": "png16m", "jpg": "jpeg"}


def get_ghostscript_command() -> Optional[str]:
    """Get Ghostscript binary name for current platform."""
    for name in ["gs", "gswin64c", "gswin32c"]:
        if shutil.which(name):
            return name
    return None


def translate_ghostscript_error(stderr: str, return_code: int) -> str:
    """Translate Ghostscript stderr to a clear, user-friendly error message.

    Also logs the full stderr for debugging purposes.
    """
    logger.error(f"Ghostscript failed (exit code {return_code}). Full error:\n{stderr}")

    stderr_lower = (stderr or "").lower()

    if 'invalidfileaccess' in stderr_lower or 'password' in stderr_lower:
        return "PDF is password-protected or locked. Please remove the password and try again."

    if 'typecheck' in stderr_lower or 'rangecheck' in stderr_lower:
        return "PDF has corrupted internal data. Try re-saving it from the original program."

    if any(x in stderr_lower for x in ['undefined', 'ioerror', 'syntaxerror', 'eofread']):
        return "PDF is damaged or corrupted. Please use a different copy of the file."

    return f"PDF processing failed (Ghostscript exit code {return_code}). The file may be corrupted."


def _run(cmd: List[str], input_path: Path, output_path: Path, label: str) -> Tuple[bool, str]:
    """Run a Ghostscript pdfwrite command and report (success, message)."""
    try:
        file_mb = input_path.stat().st_size / (1024 * 1024)
        timeout = max(300, int(file_mb * 5))

        logger.info(f"{label} {input_path.name} ({file_mb:.1f}MB)")

        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)

        if result.returncode != 0:
            return False, translate_ghostscript_error(result.stderr, result.returncode)

        if not output_path.exists():
            return False, "Output file not created"

        out_mb = output_path.stat().st_size / (1024 * 1024)
        reduction = ((file_mb - out_mb) / file_mb) * 100 if file_mb > 0 else 0.0

        logger.info(f"{label}: {file_mb:.1f}MB -> {out_mb:.1f}MB ({reduction:.1f}% reduction)")

        return True, f"{reduction:.1f}% reduction"

    except subprocess.TimeoutExpired:
        return False, "Timeout exceeded"
    except OSError as e:
        return False, str(e)


def compress_pdf_lossless(input_path: Path, output_path: Path) -> Tuple[bool, str]:
    """Lossless PDF optimization (no downsampling, pass-through images)."""
    gs_cmd = get_ghostscript_command()
    if not gs_cmd:
        return False, "Ghostscript not installed"

    if not input_path.exists():
        return False, f"File not found: {input_path}"

    output_path.parent.mkdir(parents=True, exist_ok=True)

    cmd = lossless_command(gs_cmd, input_path, output_path)
    return _run(cmd, input_path, output_path, "Lossless optimize")


def lossless_command(gs_cmd: str, input_path: Path, output_path: Path) -> List[str]:
    """pdfwrite arguments that never re-encode image data lossily."""
    # AutoFilter would let /default pick DCT for Flate images; pin Flate.
    return [
        gs_cmd,
        "-sDEVICE=pdfwrite",
        "-dCompatibilityLevel=1.4",
        "-dPDFSETTINGS=/default",
        "-dNOPAUSE",
        "-dBATCH",
        "-dQUIET",
        "-dAutoFilterColorImages=false",
        "-dColorImageFilter=/FlateEncode",
        "-dAutoFilterGrayImages=false",
        "-dGrayImageFilter=/FlateEncode",
        "-dDownsampleColorImages=false",
        "-dDownsampleGrayImages=false",
        "-dDownsampleMonoImages=false",
        "-dPassThroughJPEGImages=true",
        "-dPassThroughJPXImages=true",
        "-dDetectDuplicateImages=true",
        "-dCompressFonts=true",
        "-dSubsetFonts=true",
        f"-sOutputFile={output_path}",
        str(input_path),
    ]


def compress_pdf_screen(input_path: Path, output_path: Path, jpeg_quality: int = 50) -> Tuple[bool, str]:
    """Re-encode every image as JPEG at 72 DPI using the /screen preset.

    Most size reduction, most loss. Text and vector content stay vector.
    """
    gs_cmd = get_ghostscript_command()
    if not gs_cmd:
        return False, "Ghostscript not installed"

    if not input_path.exists():
        return False, f"File not found: {input_path}"

    output_path.parent.mkdir(parents=True, exist_ok=True)

    cmd = [
        gs_cmd,
        "-sDEVICE=pdfwrite",
        "-dCompatibilityLevel=1.4",
        "-dPDFSETTINGS=/screen",
        "-dNOPAUSE",
        "-dBATCH",
        "-dQUIET",
        f"-dJPEGQ={int(jpeg_quality)}",
        # Force JPEG encoding (converts JPEG2000 to JPEG)
        "-dAutoFilterColorImages=false",
        "-dColorImageFilter=/DCTEncode",
        "-dAutoFilterGrayImages=false",
        "-dGrayImageFilter=/DCTEncode",
        "-dDownsampleColorImages=true",
        "-dColorImageDownsampleType=/Bicubic",
        "-dColorImageResolution=72",
        "-dColorImageDownsampleThreshold=1.0",
        "-dDownsampleGrayImages=true",
        "-dGrayImageDownsampleType=/Bicubic",
        "-dGrayImageResolution=72",
        "-dGrayImageDownsampleThreshold=1.0",
        "-dDownsampleMonoImages=true",
        "-dMonoImageDownsampleType=/Subsample",
        "-dMonoImageResolution=150",
        "-dMonoImageDownsampleThreshold=1.0",
        "-dDetectDuplicateImages=true",
        "-dCompressFonts=true",
        "-dSubsetFonts=true",
        f"-sOutputFile={output_path}",
        str(input_path),
    ]
    return _run(cmd, input_path, output_path, "Screen re-encode")


def render_page(
    gs_cmd: str,
    input_path: Path,
    page_number: int,
    output_path: Path,
    fmt: str,
    dpi: int,
    jpeg_quality: int = 80,
    timeout: int = 120,
) -> None:
    """Render a single 1-based page to an image file.

    Raises:
        RuntimeError: Ghostscript exited non-zero or wrote nothing.
        subprocess.TimeoutExpired: the page took longer than ``timeout``.
    """
    cmd = [
        gs_cmd,
        f"-sDEVICE={RASTER_DEVICES[fmt]}",
        "-dNOPAUSE",
        "-dBATCH",
        "-dQUIET",
        "-dSAFER",
        f"-r{int(dpi)}",
        f"-dFirstPage={page_number}",
        f"-dLastPage={page_number}",
        "-dTextAlphaBits=4",
        "-dGraphicsAlphaBits=4",
    ]
    if fmt == "jpg":
        cmd.append(f"-dJPEGQ={int(jpeg_quality)}")
    cmd += [f"-sOutputFile={output_path}", str(input_path)]

    result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    if result.returncode != 0:
        raise RuntimeError(translate_ghostscript_error(result.stderr, result.returncode))
    if not output_path.exists() or output_path.stat().st_size == 0:
        raise RuntimeError(f"Ghostscript produced no image for page {page_number}")
