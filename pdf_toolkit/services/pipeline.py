"""Operation pipeline: validate, track, transform, seal, schedule cleanup.

Every operation follows the same shape:

1. validate parameters (``ValidationError`` before any record exists)
2. open an operation record in status "processing"
3. run the assembler / compression selector / rasterization engine
4. seal the record as completed or failed
5. hand every touched path to the cleanup scheduler

Failures are re-raised as ``PDFToolkitError`` subclasses so the serving
layer only ever sees a structured ``{kind, message}`` error.
"""

import logging
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Sequence, Set
from urllib.parse import quote

from pdf_toolkit.config import RuntimeConfig
from pdf_toolkit.core.exceptions import OperationError, PDFToolkitError, ValidationError
from pdf_toolkit.core.utils import generate_unique_filename, get_file_size
from pdf_toolkit.engine.assembler import DocumentAssembler
from pdf_toolkit.engine.compress import CompressionSelector, clamp_quality
from pdf_toolkit.engine.rasterize import RasterizationEngine, normalize_format
from pdf_toolkit.services.tracking import (
    FileDescriptor,
    Operation,
    OperationTracker,
    ResultFile,
    select_operation_store,
)
from pdf_toolkit.workers.cleanup import CleanupScheduler

logger = logging.getLogger(__name__)

DOWNLOAD_PREFIX = "/api/pdf/download"
MIN_MERGE_FILES = 2


@dataclass
class UploadedFile:
    """A file handed over by the serving layer, either on disk or in memory."""

    name: str
    size: int
    media_type: str = "application/pdf"
    path: Optional[Path] = None
    content: Optional[bytes] = None

    def descriptor(self) -> FileDescriptor:
        return FileDescriptor(filename=self.name, size=self.size, mimetype=self.media_type)


def build_download_url(relative_path: str) -> str:
    return f"{DOWNLOAD_PREFIX}/{quote(relative_path)}"


class OperationPipeline:
    """Runs merge/split/compress/convert operations end to end."""

    def __init__(
        self,
        upload_root: Path,
        assembler: DocumentAssembler,
        compressor: CompressionSelector,
        rasterizer: RasterizationEngine,
        tracker: OperationTracker,
        scheduler: CleanupScheduler,
        cleanup_delay: Optional[float] = None,
        default_quality: float = 0.7,
    ) -> None:
        self.upload_root = Path(upload_root)
        self.assembler = assembler
        self.compressor = compressor
        self.rasterizer = rasterizer
        self.tracker = tracker
        self.scheduler = scheduler
        self.cleanup_delay = cleanup_delay
        self.default_quality = default_quality

    @classmethod
    def from_config(cls, config: RuntimeConfig) -> "OperationPipeline":
        root = Path(config.upload_folder)
        root.mkdir(parents=True, exist_ok=True)
        rasterizer = RasterizationEngine(root, dpi=config.raster_dpi, jpeg_quality=config.raster_jpeg_quality)
        compressor = CompressionSelector(
            root,
            raster_dpi=config.compress_raster_dpi,
            jpeg_quality=config.compress_jpeg_quality,
        )
        store = select_operation_store(config.tracking_backend, config.tracking_db_path)
        logger.info(f"Upload folder resolved to: {root.resolve()} (tracking={store.name})")
        return cls(
            upload_root=root,
            assembler=DocumentAssembler(root),
            compressor=compressor,
            rasterizer=rasterizer,
            tracker=OperationTracker(store),
            scheduler=CleanupScheduler(root, default_delay=config.cleanup_delay_seconds),
            cleanup_delay=config.cleanup_delay_seconds,
            default_quality=config.default_quality,
        )

    # ------------------------------------------------------------------
    # helpers

    def _relative(self, path: Path) -> str:
        return Path(path).resolve().relative_to(self.upload_root.resolve()).as_posix()

    def _materialize(self, upload: UploadedFile, touched: Set[Path]) -> Path:
        """Return the on-disk path of an upload, writing in-memory content first."""
        if upload.path is not None:
            path = Path(upload.path)
        elif upload.content is not None:
            path = self.upload_root / generate_unique_filename(upload.name)
            path.write_bytes(upload.content)
        else:
            raise ValidationError(f"'{upload.name}' has no content")
        touched.add(path)
        return path

    def _work_dir(self, kind: str, touched: Set[Path]) -> Path:
        work_dir = self.upload_root / f"{kind}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"
        work_dir.mkdir(parents=True, exist_ok=True)
        touched.add(work_dir)
        return work_dir

    def _reject(self, uploads: Sequence[UploadedFile], error: ValidationError) -> ValidationError:
        """Schedule already-saved uploads for removal and return ``error`` to raise."""
        saved = {Path(u.path) for u in uploads if u is not None and u.path is not None}
        if saved:
            self.scheduler.schedule(saved, self.cleanup_delay)
        return error

    def _run(
        self,
        kind: str,
        verb: str,
        uploads: Sequence[UploadedFile],
        transform: Callable[[Operation, Set[Path], float], Dict[str, Any]],
    ) -> Dict[str, Any]:
        start = time.monotonic()
        touched: Set[Path] = set()
        operation = self.tracker.open(kind, [u.descriptor() for u in uploads])
        try:
            return transform(operation, touched, start)
        except Exception as e:
            error = e if isinstance(e, PDFToolkitError) else OperationError.for_operation(verb, e)
            logger.exception(f"[{operation.operation_id}] {kind} failed: {e}")
            self.tracker.fail(operation, error.message, self._elapsed_ms(start))
            if error is e:
                raise
            raise error from e
        finally:
            self.scheduler.schedule(touched, self.cleanup_delay)

    @staticmethod
    def _elapsed_ms(start: float) -> int:
        return int((time.monotonic() - start) * 1000)

    # ------------------------------------------------------------------
    # operations

    def merge(self, uploads: Sequence[UploadedFile]) -> Dict[str, Any]:
        """Merge the uploads, in order, into one PDF."""
        if len(uploads) < MIN_MERGE_FILES:
            raise self._reject(uploads, ValidationError.too_few_files("merge", MIN_MERGE_FILES))

        def transform(operation: Operation, touched: Set[Path], start: float) -> Dict[str, Any]:
            inputs = [self._materialize(u, touched) for u in uploads]
            output_path = self.upload_root / generate_unique_filename("merged.pdf")
            touched.add(output_path)

            self.assembler.merge(inputs, output_path)

            size = get_file_size(output_path)
            url = build_download_url(self._relative(output_path))
            elapsed = self._elapsed_ms(start)
            self.tracker.complete(
                operation,
                elapsed,
                result_file=ResultFile(filename=output_path.name, size=size, url=url),
            )
            return {
                "operation_id": operation.operation_id,
                "result_name": output_path.name,
                "result_size": size,
                "download_url": url,
                "processing_time_ms": elapsed,
            }

        return self._run("merge", "merge", uploads, transform)

    def split(self, upload: Optional[UploadedFile], pages: Optional[Sequence[int]] = None) -> Dict[str, Any]:
        """Split one PDF into single-page PDFs (all pages, or the selected ones)."""
        if upload is None:
            raise ValidationError.missing_file("split")
        selection = list(pages) if pages else None
        if selection is not None and any(not isinstance(n, int) or isinstance(n, bool) for n in selection):
            raise self._reject([upload], ValidationError("Page numbers must be whole numbers"))

        def transform(operation: Operation, touched: Set[Path], start: float) -> Dict[str, Any]:
            input_path = self._materialize(upload, touched)
            work_dir = self._work_dir("split", touched)

            parts = self.assembler.split(input_path, work_dir, selection)

            items = []
            for part in parts:
                touched.add(part.path)
                items.append(
                    {
                        "name": part.path.name,
                        "page": part.page_number,
                        "size": get_file_size(part.path),
                        "download_url": build_download_url(self._relative(part.path)),
                    }
                )
            elapsed = self._elapsed_ms(start)
            self.tracker.complete(
                operation,
                elapsed,
                result_items=[ResultFile(item["name"], item["size"], item["download_url"]) for item in items],
            )
            return {"operation_id": operation.operation_id, "items": items, "processing_time_ms": elapsed}

        return self._run("split", "split", [upload], transform)

    def compress(self, upload: Optional[UploadedFile], quality: Optional[float] = None) -> Dict[str, Any]:
        """Compress one PDF; the result is never larger than the input."""
        if upload is None:
            raise ValidationError.missing_file("compress")
        quality = clamp_quality(self.default_quality if quality is None else quality)

        def transform(operation: Operation, touched: Set[Path], start: float) -> Dict[str, Any]:
            input_path = self._materialize(upload, touched)
            output_path = self.upload_root / generate_unique_filename(upload.name, "_compressed")
            touched.add(output_path)

            outcome = self.compressor.compress(input_path, output_path, quality)

            url = build_download_url(self._relative(output_path))
            elapsed = self._elapsed_ms(start)
            self.tracker.complete(
                operation,
                elapsed,
                result_file=ResultFile(filename=output_path.name, size=outcome.compressed_size, url=url),
            )
            return {
                "operation_id": operation.operation_id,
                "result_name": output_path.name,
                "original_size": outcome.original_size,
                "compressed_size": outcome.compressed_size,
                "compression_ratio_percent": outcome.reduction_percent,
                "strategy": outcome.strategy,
                "download_url": url,
                "processing_time_ms": elapsed,
            }

        return self._run("compress", "compress", [upload], transform)

    def convert(self, upload: Optional[UploadedFile], fmt: Optional[str] = "png") -> Dict[str, Any]:
        """Rasterize every page of one PDF to PNG or JPEG images."""
        if upload is None:
            raise ValidationError.missing_file("convert")
        try:
            fmt = normalize_format(fmt or "png")
        except ValidationError as e:
            raise self._reject([upload], e)

        def transform(operation: Operation, touched: Set[Path], start: float) -> Dict[str, Any]:
            input_path = self._materialize(upload, touched)
            work_dir = self._work_dir("convert", touched)

            result = self.rasterizer.rasterize(input_path, work_dir, fmt)

            items = []
            for page in result.pages:
                touched.add(page.path)
                items.append(
                    {
                        "name": page.path.name,
                        "page": page.page_number,
                        "size": get_file_size(page.path),
                        "download_url": build_download_url(self._relative(page.path)),
                    }
                )
            elapsed = self._elapsed_ms(start)
            self.tracker.complete(
                operation,
                elapsed,
                result_items=[ResultFile(item["name"], item["size"], item["download_url"]) for item in items],
            )
            return {
                "operation_id": operation.operation_id,
                "items": items,
                "format": fmt,
                "backend": result.backend,
                "skipped_pages": result.failed_pages,
                "processing_time_ms": elapsed,
            }

        return self._run("convert", "convert", [upload], transform)

    def info(self, upload: Optional[UploadedFile]) -> Dict[str, Any]:
        """Descriptive metadata for one PDF. Not tracked as an operation."""
        if upload is None:
            raise ValidationError.missing_file("inspect")
        touched: Set[Path] = set()
        try:
            input_path = self._materialize(upload, touched)
            info = self.assembler.metadata(input_path)
            info["file_size"] = get_file_size(input_path)
            return info
        except PDFToolkitError:
            raise
        except Exception as e:
            raise OperationError("Failed to get PDF info", original_error=e) from e
        finally:
            self.scheduler.schedule(touched, self.cleanup_delay)

    def health(self) -> Dict[str, Any]:
        return {
            "rasterizers": self.rasterizer.backend_health(),
            "tracking": "connected" if self.tracker.store.is_available() else "disconnected",
            "tracking_backend": self.tracker.store.name,
            "pending_cleanup": self.scheduler.pending,
        }

