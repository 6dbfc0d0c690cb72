"""Tiered PDF compression with a never-larger guarantee.

Quality maps to one of three strategies:

    q <= 0.3        aggressive  rasterize / re-encode images at reduced fidelity
    0.3 < q <= 0.6  medium      lossless structural optimisation, page by page
    q > 0.6         light       plain structural re-serialization

Whatever the strategy does, the output is never larger than the input: when
a candidate is not smaller, or a strategy raises, the original bytes are
written unchanged.
"""

import logging
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Optional

from PIL import Image
from PyPDF2 import PdfWriter

from pdf_toolkit.core.exceptions import CompressionFallback
from pdf_toolkit.engine import ghostscript
from pdf_toolkit.engine.assembler import open_reader
from pdf_toolkit.engine.rasterize import RasterizationEngine

logger = logging.getLogger(__name__)

AGGRESSIVE = "aggressive"
MEDIUM = "medium"
LIGHT = "light"

AGGRESSIVE_MAX_QUALITY = 0.3
MEDIUM_MAX_QUALITY = 0.6


def clamp_quality(quality: float) -> float:
    """Clamp a quality factor into [0, 1]."""
    return max(0.0, min(1.0, float(quality)))


def select_strategy(quality: float) -> str:
    """Map a quality factor to a strategy name. Total over all floats."""
    q = clamp_quality(quality)
    if q <= AGGRESSIVE_MAX_QUALITY:
        return AGGRESSIVE
    if q <= MEDIUM_MAX_QUALITY:
        return MEDIUM
    return LIGHT


@dataclass
class CompressionOutcome:
    strategy: str
    original_size: int
    compressed_size: int
    fallback: bool = False
    reason: Optional[str] = None

    @property
    def reduction_percent(self) -> float:
        if self.original_size <= 0:
            return 0.0
        return round(((self.original_size - self.compressed_size) / self.original_size) * 100, 1)


def _rewrite(input_path: Path, output_path: Path, compress_streams: bool) -> None:
    reader = open_reader(input_path)
    writer = PdfWriter()
    for page in reader.pages:
        writer.add_page(page)
    if compress_streams:
        # Pages must be attached to the writer before their streams can be recompressed
        for page in writer.pages:
            page.compress_content_streams()
    info = reader.metadata
    if info:
        writer.add_metadata({key: str(info[key]) for key in info.keys()})
    with open(output_path, "wb") as f:
        writer.write(f)


class CompressionSelector:
    """Pick and run a compression strategy for a quality factor."""

    def __init__(
        self,
        work_root: Path,
        rasterizer: Optional[RasterizationEngine] = None,
        raster_dpi: int = 72,
        jpeg_quality: int = 50,
    ) -> None:
        self.work_root = Path(work_root)
        self.raster_dpi = raster_dpi
        self.jpeg_quality = jpeg_quality
        self.rasterizer = rasterizer or RasterizationEngine(
            self.work_root, dpi=raster_dpi, jpeg_quality=jpeg_quality
        )
        self._strategies: Dict[str, Callable[[Path, Path], None]] = {
            AGGRESSIVE: self._aggressive,
            MEDIUM: self._medium,
            LIGHT: self._light,
        }

    def _light(self, input_path: Path, output_path: Path) -> None:
        _rewrite(input_path, output_path, compress_streams=False)

    def _medium(self, input_path: Path, output_path: Path) -> None:
        if ghostscript.get_ghostscript_command():
            ok, message = ghostscript.compress_pdf_lossless(input_path, output_path)
            if ok:
                return
            logger.warning(f"[compress] Lossless Ghostscript pass failed ({message}); using PyPDF2 rewrite")
            output_path.unlink(missing_ok=True)
        _rewrite(input_path, output_path, compress_streams=True)

    def _aggressive(self, input_path: Path, output_path: Path) -> None:
        if ghostscript.get_ghostscript_command():
            ok, message = ghostscript.compress_pdf_screen(input_path, output_path, self.jpeg_quality)
            if ok:
                return
            logger.warning(f"[compress] Screen re-encode failed ({message}); rasterizing pages instead")
            output_path.unlink(missing_ok=True)

        self.work_root.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(prefix="compress_", dir=self.work_root) as tmp:
            result = self.rasterizer.rasterize(input_path, Path(tmp), fmt="jpg")
            if result.failed_pages:
                # A page-less re-encode would drop content
                raise CompressionFallback(
                    f"Rasterization skipped pages {result.failed_pages}; keeping original"
                )
            images = [Image.open(page.path).convert("RGB") for page in result.pages]
            try:
                first, rest = images[0], images[1:]
                first.save(
                    output_path,
                    format="PDF",
                    save_all=True,
                    append_images=rest,
                    resolution=float(self.raster_dpi),
                    quality=self.jpeg_quality,
                )
            finally:
                for image in images:
                    image.close()

    def compress(self, input_path: Path, output_path: Path, quality: float) -> CompressionOutcome:
        """Compress ``input_path`` into ``output_path``.

        Never raises for strategy problems; only reading the input or writing
        the output file can fail the call.
        """
        input_path = Path(input_path)
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        strategy = select_strategy(quality)
        original_size = input_path.stat().st_size
        candidate = output_path.with_name(f"{output_path.stem}.candidate{output_path.suffix}")

        logger.info(f"[compress] {input_path.name}: quality={quality} strategy={strategy} size={original_size}")

        try:
            self._strategies[strategy](input_path, candidate)
            if not candidate.exists():
                raise CompressionFallback("Strategy produced no output")
            candidate_size = candidate.stat().st_size
            if candidate_size >= original_size:
                raise CompressionFallback(
                    f"No compression benefit ({original_size} -> {candidate_size} bytes)"
                )
        except CompressionFallback as signal:
            logger.info(f"[compress] {signal.message}; keeping original file")
            return self._keep_original(input_path, output_path, candidate, strategy, original_size, signal.message)
        except Exception as e:
            logger.error(f"[compress] Strategy {strategy} failed: {e}")
            return self._keep_original(input_path, output_path, candidate, strategy, original_size, str(e))

        candidate.replace(output_path)
        logger.info(f"[compress] Compression successful: {original_size} -> {candidate_size} bytes")
        return CompressionOutcome(strategy=strategy, original_size=original_size, compressed_size=candidate_size)

    @staticmethod
    def _keep_original(
        input_path: Path,
        output_path: Path,
        candidate: Path,
        strategy: str,
        original_size: int,
        reason: str,
    ) -> CompressionOutcome:
        candidate.unlink(missing_ok=True)
        shutil.copyfile(input_path, output_path)
        return CompressionOutcome(
            strategy=strategy,
            original_size=original_size,
            compressed_size=output_path.stat().st_size,
            fallback=True,
            reason=reason,
        )
