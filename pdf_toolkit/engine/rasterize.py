"""PDF to image conversion through an ordered chain of rasterization backends.

The engine tries each backend in turn on the whole document. Inside a backend
every page is rendered independently: a failing page is logged and skipped,
and the backend succeeds as long as one page rendered. A backend that cannot
run, crashes, or renders nothing is discarded (including any files it wrote)
and the next one is tried. Results are never mixed across backends.
"""

import importlib
import logging
import shutil
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from pdf_toolkit.core.exceptions import (
    BackendUnavailableError,
    ConversionExhaustedError,
    ValidationError,
)
from pdf_toolkit.engine import ghostscript
from pdf_toolkit.engine.assembler import open_reader

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = {"png": "png", "jpg": "jpg", "jpeg": "jpg"}
PIL_FORMATS = {"png": "PNG", "jpg": "JPEG"}
CATEGORY_PRIORITY = (
    ConversionExhaustedError.MISSING_CAPABILITY,
    ConversionExhaustedError.TRANSIENT,
    ConversionExhaustedError.UNSUPPORTED,
)


def normalize_format(fmt: Optional[str]) -> str:
    """Map a requested image format to its canonical name ("png" or "jpg")."""
    key = (fmt or "").strip().lower()
    if key not in SUPPORTED_FORMATS:
        raise ValidationError(f"Unsupported image format '{fmt}'. Use png, jpg or jpeg.")
    return SUPPORTED_FORMATS[key]


def page_filename(page_number: int, fmt: str) -> str:
    return f"page-{page_number}.{fmt}"


def save_image(image: Any, output_path: Path, fmt: str, jpeg_quality: int) -> None:
    """Save a Pillow image as PNG or JPEG."""
    if fmt == "jpg":
        if image.mode != "RGB":
            image = image.convert("RGB")
        image.save(output_path, format=PIL_FORMATS[fmt], quality=int(jpeg_quality))
    else:
        image.save(output_path, format=PIL_FORMATS[fmt])


@dataclass
class RenderedPage:
    page_number: int
    path: Path


@dataclass
class BackendAttempt:
    """Outcome of one backend on one document."""

    backend: str
    pages: List[RenderedPage] = field(default_factory=list)
    failed_pages: List[int] = field(default_factory=list)
    error: Optional[Exception] = None
    category: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and bool(self.pages)


@dataclass
class RasterResult:
    backend: str
    pages: List[RenderedPage]
    failed_pages: List[int]
    attempts: List[BackendAttempt]


class RasterBackend:
    """Common shape of a rasterization backend.

    Subclasses implement ``check_available``, ``open``, ``page_count`` and
    ``render_page``; ``attempt`` drives them and never raises.
    """

    name = "backend"

    def __init__(self, dpi: int = 150, jpeg_quality: int = 80) -> None:
        self.dpi = dpi
        self.jpeg_quality = jpeg_quality

    def check_available(self) -> None:
        raise NotImplementedError

    def open(self, pdf_path: Path) -> Any:
        return pdf_path

    def page_count(self, handle: Any) -> int:
        raise NotImplementedError

    def render_page(self, handle: Any, page_number: int, output_path: Path, fmt: str) -> None:
        raise NotImplementedError

    def close(self, handle: Any) -> None:
        return None

    def is_available(self) -> bool:
        try:
            self.check_available()
        except BackendUnavailableError:
            return False
        return True

    def attempt(self, pdf_path: Path, output_dir: Path, fmt: str) -> BackendAttempt:
        result = BackendAttempt(backend=self.name)
        output_dir.mkdir(parents=True, exist_ok=True)

        try:
            self.check_available()
            handle = self.open(pdf_path)
        except BackendUnavailableError as e:
            result.error = e
            result.category = ConversionExhaustedError.MISSING_CAPABILITY
            return result
        except Exception as e:
            result.error = e
            result.category = ConversionExhaustedError.TRANSIENT
            return result

        try:
            total = self.page_count(handle)
            for page_number in range(1, total + 1):
                target = output_dir / page_filename(page_number, fmt)
                try:
                    self.render_page(handle, page_number, target, fmt)
                except Exception as e:
                    logger.warning(f"[raster] {self.name}: error converting page {page_number}/{total}: {e}")
                    result.failed_pages.append(page_number)
                    target.unlink(missing_ok=True)
                    continue
                result.pages.append(RenderedPage(page_number=page_number, path=target))
                logger.debug(f"[raster] {self.name}: converted page {page_number}/{total}")
        except BackendUnavailableError as e:
            result.error = e
            result.category = ConversionExhaustedError.MISSING_CAPABILITY
        except Exception as e:
            result.error = e
            result.category = ConversionExhaustedError.TRANSIENT
        finally:
            try:
                self.close(handle)
            except Exception as e:
                logger.debug(f"[raster] {self.name}: close failed: {e}")

        if result.error is None and not result.pages:
            result.error = RuntimeError("No pages could be converted to images")
            result.category = ConversionExhaustedError.UNSUPPORTED
        return result


class PopplerBackend(RasterBackend):
    """pdf2image on top of poppler's pdftoppm."""

    name = "poppler"

    def check_available(self) -> None:
        try:
            importlib.import_module("pdf2image")
        except ImportError as e:
            raise BackendUnavailableError("pdf2image is not installed", e) from e
        if not shutil.which("pdftoppm"):
            raise BackendUnavailableError("poppler (pdftoppm) is not installed")

    def open(self, pdf_path: Path) -> Any:
        pdf2image = importlib.import_module("pdf2image")
        try:
            info = pdf2image.pdfinfo_from_path(str(pdf_path))
        except pdf2image.exceptions.PDFInfoNotInstalledError as e:
            raise BackendUnavailableError("poppler (pdfinfo) is not installed", e) from e
        return {"path": str(pdf_path), "pages": int(info["Pages"]), "module": pdf2image}

    def page_count(self, handle: Any) -> int:
        return handle["pages"]

    def render_page(self, handle: Any, page_number: int, output_path: Path, fmt: str) -> None:
        images = handle["module"].convert_from_path(
            handle["path"],
            dpi=self.dpi,
            first_page=page_number,
            last_page=page_number,
        )
        if not images:
            raise RuntimeError(f"pdftoppm returned no image for page {page_number}")
        save_image(images[0], output_path, fmt, self.jpeg_quality)


class PdfiumBackend(RasterBackend):
    """pypdfium2 rendering into a Pillow image."""

    name = "pdfium"

    def check_available(self) -> None:
        try:
            importlib.import_module("pypdfium2")
            importlib.import_module("PIL.Image")
        except ImportError as e:
            raise BackendUnavailableError("pypdfium2 and Pillow are required for PDF rendering", e) from e

    def open(self, pdf_path: Path) -> Any:
        pdfium = importlib.import_module("pypdfium2")
        return pdfium.PdfDocument(str(pdf_path))

    def page_count(self, handle: Any) -> int:
        return len(handle)

    def render_page(self, handle: Any, page_number: int, output_path: Path, fmt: str) -> None:
        page = handle[page_number - 1]
        try:
            # PDF user space is 72 units per inch
            bitmap = page.render(scale=self.dpi / 72.0)
            save_image(bitmap.to_pil(), output_path, fmt, self.jpeg_quality)
        finally:
            page.close()

    def close(self, handle: Any) -> None:
        handle.close()


class GhostscriptBackend(RasterBackend):
    """Ghostscript png16m / jpeg output devices, one process per page."""

    name = "ghostscript"

    def check_available(self) -> None:
        if not ghostscript.get_ghostscript_command():
            raise BackendUnavailableError("Ghostscript not installed")

    def open(self, pdf_path: Path) -> Any:
        reader = open_reader(pdf_path)
        return {
            "command": ghostscript.get_ghostscript_command(),
            "path": Path(pdf_path),
            "pages": len(reader.pages),
        }

    def page_count(self, handle: Any) -> int:
        return handle["pages"]

    def render_page(self, handle: Any, page_number: int, output_path: Path, fmt: str) -> None:
        ghostscript.render_page(
            handle["command"],
            handle["path"],
            page_number,
            output_path,
            fmt,
            dpi=self.dpi,
            jpeg_quality=self.jpeg_quality,
        )


def default_backends(dpi: int = 150, jpeg_quality: int = 80) -> List[RasterBackend]:
    """The fixed fallback order: poppler, pdfium, ghostscript."""
    return [
        PopplerBackend(dpi=dpi, jpeg_quality=jpeg_quality),
        PdfiumBackend(dpi=dpi, jpeg_quality=jpeg_quality),
        GhostscriptBackend(dpi=dpi, jpeg_quality=jpeg_quality),
    ]


def dominant_category(attempts: Sequence[BackendAttempt]) -> str:
    counts = Counter(a.category for a in attempts if a.category)
    if not counts:
        return ConversionExhaustedError.UNSUPPORTED
    return max(CATEGORY_PRIORITY, key=lambda c: (counts[c], -CATEGORY_PRIORITY.index(c)))


class RasterizationEngine:
    """Convert every page of a PDF to an image using the first backend that works."""

    def __init__(
        self,
        output_root: Path,
        backends: Optional[Sequence[RasterBackend]] = None,
        dpi: int = 150,
        jpeg_quality: int = 80,
    ) -> None:
        self.output_root = Path(output_root)
        self.backends = list(backends) if backends is not None else default_backends(dpi, jpeg_quality)

    def backend_health(self) -> Dict[str, str]:
        return {b.name: "available" if b.is_available() else "unavailable" for b in self.backends}

    def rasterize(self, pdf_path: Path, output_dir: Optional[Path] = None, fmt: str = "png") -> RasterResult:
        """Render all pages of ``pdf_path`` into ``output_dir``.

        Returns:
            The pages rendered by the first successful backend, ascending.

        Raises:
            ValidationError: unsupported format.
            ConversionExhaustedError: every backend failed.
        """
        fmt = normalize_format(fmt)
        pdf_path = Path(pdf_path)
        output_dir = Path(output_dir) if output_dir else self.output_root
        output_dir.mkdir(parents=True, exist_ok=True)

        logger.info(f"[raster] Converting {pdf_path.name} to {fmt.upper()} via {[b.name for b in self.backends]}")

        attempts: List[BackendAttempt] = []
        for backend in self.backends:
            staging = output_dir / f".staging-{backend.name}"
            try:
                attempt = backend.attempt(pdf_path, staging, fmt)
                attempts.append(attempt)

                if not attempt.succeeded:
                    logger.warning(f"[raster] {backend.name} failed ({attempt.category}): {attempt.error}")
                    continue

                pages = []
                for rendered in sorted(attempt.pages, key=lambda p: p.page_number):
                    final_path = output_dir / rendered.path.name
                    shutil.move(str(rendered.path), str(final_path))
                    pages.append(RenderedPage(page_number=rendered.page_number, path=final_path))

                if attempt.failed_pages:
                    logger.warning(
                        f"[raster] {backend.name} skipped pages {attempt.failed_pages}; "
                        f"returning {len(pages)} images"
                    )
                logger.info(f"[raster] Successfully converted {len(pages)} pages using {backend.name}")
                return RasterResult(
                    backend=backend.name,
                    pages=pages,
                    failed_pages=list(attempt.failed_pages),
                    attempts=attempts,
                )
            finally:
                shutil.rmtree(staging, ignore_errors=True)

        category = dominant_category(attempts)
        last_error = next((a.error for a in reversed(attempts) if a.error is not None), None)
        logger.error(
            f"[raster] All conversion methods failed for {pdf_path.name}: "
            + "; ".join(f"{a.backend}={a.category}" for a in attempts)
        )
        raise ConversionExhaustedError.for_category(category, original_error=last_error)
