"""Page-level PDF assembly: merge, split and metadata extraction.

Pages are always copied into fresh PdfWriter instances; source files are
only ever read.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from PyPDF2 import PdfReader, PdfWriter

from pdf_toolkit.core.exceptions import EncryptionError, StructureError
from pdf_toolkit.core.utils import generate_unique_filename

logger = logging.getLogger(__name__)

UNTITLED = "Untitled"
UNKNOWN = "Unknown"

_PDF_DATE = re.compile(
    r"^D?:?(\d{4})(\d{2})?(\d{2})?(\d{2})?(\d{2})?(\d{2})?"
    r"(?:(Z)|([+\-])(\d{2})'?(\d{2})?'?)?"
)


@dataclass(frozen=True)
class SplitPart:
    """One emitted single-page PDF and the source page it came from."""

    page_number: int
    path: Path


def open_reader(pdf_path: Path) -> PdfReader:
    """Open a PDF for reading, mapping parse failures to toolkit errors.

    Filesystem errors (missing file, permissions) propagate unchanged.
    """
    pdf_path = Path(pdf_path)
    try:
        reader = PdfReader(str(pdf_path), strict=False)
    except OSError:
        raise
    except Exception as e:
        raise StructureError.for_file(pdf_path.name, str(e), e) from e

    if reader.is_encrypted:
        try:
            decrypted = reader.decrypt("")
        except Exception as e:
            raise EncryptionError.for_file(pdf_path.name) from e
        if not decrypted:
            raise EncryptionError.for_file(pdf_path.name)

    try:
        len(reader.pages)
    except Exception as e:
        raise StructureError.for_file(pdf_path.name, str(e), e) from e

    return reader


def _write(writer: PdfWriter, output_path: Path) -> None:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "wb") as f:
        writer.write(f)


def parse_pdf_date(raw: Any) -> Optional[str]:
    """Convert a PDF date string ("D:20240131120000+01'00'") to ISO-8601.

    Unparsable values are returned as their string form.
    """
    if raw is None:
        return None
    text = str(raw).strip()
    if not text:
        return None
    match = _PDF_DATE.match(text)
    if not match:
        return text
    year, month, day, hour, minute, second, zulu, sign, off_h, off_m = match.groups()
    try:
        tz = timezone.utc if zulu else None
        if sign:
            offset = timedelta(hours=int(off_h), minutes=int(off_m or 0))
            tz = timezone(offset if sign == "+" else -offset)
        value = datetime(
            int(year),
            int(month or 1),
            int(day or 1),
            int(hour or 0),
            int(minute or 0),
            int(second or 0),
            tzinfo=tz,
        )
    except ValueError:
        return text
    return value.isoformat()


class DocumentAssembler:
    """Merge and split PDFs under a configured output root."""

    def __init__(self, output_root: Path) -> None:
        self.output_root = Path(output_root)

    def page_count(self, input_path: Path) -> int:
        return len(open_reader(input_path).pages)

    def merge(self, input_paths: Sequence[Path], output_path: Optional[Path] = None) -> Path:
        """Merge PDFs into one, pages concatenated in input order.

        Args:
            input_paths: PDFs to merge (at least one).
            output_path: Destination; defaults to a unique name under the root.

        Returns:
            Path to the merged PDF.
        """
        if not input_paths:
            raise ValueError("merge requires at least one input")

        output_path = Path(output_path) if output_path else self.output_root / generate_unique_filename("merged.pdf")

        writer = PdfWriter()
        total_pages = 0
        for path in input_paths:
            reader = open_reader(path)
            for page in reader.pages:
                writer.add_page(page)
            total_pages += len(reader.pages)
            logger.info(f"[merge] Added {len(reader.pages)} pages from {Path(path).name}")

        _write(writer, output_path)
        logger.info(f"[merge] Merged {len(input_paths)} PDFs ({total_pages} pages) into {output_path.name}")
        return output_path

    def split(
        self,
        input_path: Path,
        output_dir: Path,
        pages: Optional[Iterable[int]] = None,
    ) -> List[SplitPart]:
        """Split a PDF into single-page PDFs.

        With no page selection every page is emitted in ascending order.
        Otherwise pages are emitted in the requested order; numbers outside
        1..total and repeats are skipped without error.
        """
        input_path = Path(input_path)
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        reader = open_reader(input_path)
        total_pages = len(reader.pages)

        selection = list(pages) if pages else []
        if selection:
            wanted: List[int] = []
            for number in selection:
                if not 1 <= number <= total_pages:
                    logger.info(f"[split] Skipping page {number} (document has {total_pages} pages)")
                    continue
                if number in wanted:
                    continue
                wanted.append(number)
        else:
            wanted = list(range(1, total_pages + 1))

        parts = []
        for number in wanted:
            writer = PdfWriter()
            writer.add_page(reader.pages[number - 1])
            part_path = output_dir / f"page_{number}.pdf"
            _write(writer, part_path)
            parts.append(SplitPart(page_number=number, path=part_path))

        logger.info(f"[split] {input_path.name}: emitted {len(parts)} of {total_pages} pages")
        return parts

    def metadata(self, input_path: Path) -> Dict[str, Any]:
        """Descriptive metadata with defaults for absent fields."""
        reader = open_reader(input_path)
        info = reader.metadata

        def _text(value: Any, default: str) -> str:
            if value is None:
                return default
            text = str(value).strip()
            return text or default

        def _raw(key: str) -> Any:
            if info is None or key not in info:
                return None
            return info[key]

        return {
            "page_count": len(reader.pages),
            "title": _text(info.title if info else None, UNTITLED),
            "author": _text(info.author if info else None, UNKNOWN),
            "creator": _text(info.creator if info else None, UNKNOWN),
            "producer": _text(info.producer if info else None, UNKNOWN),
            "creation_date": parse_pdf_date(_raw("/CreationDate")),
            "modification_date": parse_pdf_date(_raw("/ModDate")),
        }
