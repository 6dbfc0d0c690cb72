from pathlib import Path

import pytest
from PyPDF2 import PdfReader, PdfWriter

from pdf_toolkit.core.exceptions import ConversionExhaustedError
from pdf_toolkit.engine import compress as compress_module
from pdf_toolkit.engine.compress import (
    AGGRESSIVE,
    LIGHT,
    MEDIUM,
    CompressionOutcome,
    CompressionSelector,
    clamp_quality,
    select_strategy,
)


def _make_pdf(path: Path, pages: int = 3) -> None:
    writer = PdfWriter()
    for _ in range(pages):
        writer.add_blank_page(width=612, height=792)
    with open(path, "wb") as handle:
        writer.write(handle)


@pytest.mark.parametrize(
    "quality, expected",
    [
        (-1.0, AGGRESSIVE),
        (0.0, AGGRESSIVE),
        (0.3, AGGRESSIVE),
        (0.31, MEDIUM),
        (0.6, MEDIUM),
        (0.61, LIGHT),
        (1.0, LIGHT),
        (7.5, LIGHT),
    ],
)
def test_select_strategy_tiers(quality, expected):
    assert select_strategy(quality) == expected


def test_clamp_quality_bounds():
    assert clamp_quality(-3) == 0.0
    assert clamp_quality(0.45) == 0.45
    assert clamp_quality(4) == 1.0


def test_reduction_percent():
    assert CompressionOutcome(LIGHT, 1000, 250).reduction_percent == 75.0
    assert CompressionOutcome(LIGHT, 0, 0).reduction_percent == 0.0


def test_light_output_is_never_larger(tmp_path):
    source = tmp_path / "in.pdf"
    target = tmp_path / "out.pdf"
    _make_pdf(source)

    outcome = CompressionSelector(tmp_path).compress(source, target, 0.9)

    assert outcome.strategy == LIGHT
    assert target.exists()
    assert outcome.compressed_size == target.stat().st_size
    assert outcome.compressed_size <= outcome.original_size
    assert len(PdfReader(str(target), strict=False).pages) == 3


def test_strategy_error_keeps_original_bytes(tmp_path):
    source = tmp_path / "in.pdf"
    target = tmp_path / "out.pdf"
    _make_pdf(source)
    selector = CompressionSelector(tmp_path)

    def _boom(input_path, output_path):
        raise RuntimeError("encoder crashed")

    selector._strategies[LIGHT] = _boom

    outcome = selector.compress(source, target, 0.9)

    assert outcome.fallback is True
    assert "encoder crashed" in outcome.reason
    assert target.read_bytes() == source.read_bytes()


def test_larger_candidate_is_discarded(tmp_path):
    source = tmp_path / "in.pdf"
    target = tmp_path / "out.pdf"
    _make_pdf(source)
    selector = CompressionSelector(tmp_path)

    def _grow(input_path, output_path):
        Path(output_path).write_bytes(Path(input_path).read_bytes() + b"\n" * 4096)

    selector._strategies[MEDIUM] = _grow

    outcome = selector.compress(source, target, 0.5)

    assert outcome.fallback is True
    assert outcome.compressed_size == outcome.original_size
    assert target.read_bytes() == source.read_bytes()
    assert not list(tmp_path.glob("*.candidate*"))


def test_smaller_candidate_is_kept(tmp_path):
    source = tmp_path / "in.pdf"
    target = tmp_path / "out.pdf"
    _make_pdf(source)
    selector = CompressionSelector(tmp_path)

    def _shrink(input_path, output_path):
        Path(output_path).write_bytes(b"%PDF-1.4 tiny")

    selector._strategies[AGGRESSIVE] = _shrink

    outcome = selector.compress(source, target, 0.1)

    assert outcome.fallback is False
    assert outcome.strategy == AGGRESSIVE
    assert target.read_bytes() == b"%PDF-1.4 tiny"
    assert outcome.reduction_percent > 0


def test_aggressive_without_any_renderer_keeps_original(tmp_path, monkeypatch):
    source = tmp_path / "in.pdf"
    target = tmp_path / "out.pdf"
    _make_pdf(source)

    class _NoRenderer:
        def rasterize(self, pdf_path, output_dir=None, fmt="png"):
            raise ConversionExhaustedError.for_category(ConversionExhaustedError.MISSING_CAPABILITY)

    monkeypatch.setattr(compress_module.ghostscript, "get_ghostscript_command", lambda: None)
    selector = CompressionSelector(tmp_path, rasterizer=_NoRenderer())

    outcome = selector.compress(source, target, 0.2)

    assert outcome.strategy == AGGRESSIVE
    assert outcome.fallback is True
    assert target.read_bytes() == source.read_bytes()


def test_medium_without_ghostscript_rewrites_with_pypdf2(tmp_path, monkeypatch):
    source = tmp_path / "in.pdf"
    target = tmp_path / "out.pdf"
    _make_pdf(source, pages=2)
    monkeypatch.setattr(compress_module.ghostscript, "get_ghostscript_command", lambda: None)

    outcome = CompressionSelector(tmp_path).compress(source, target, 0.5)

    assert outcome.strategy == MEDIUM
    assert outcome.compressed_size <= outcome.original_size
    assert len(PdfReader(str(target), strict=False).pages) == 2


def test_lossless_command_pins_flate_for_images(tmp_path):
    cmd = compress_module.ghostscript.lossless_command("gs", tmp_path / "in.pdf", tmp_path / "out.pdf")

    assert "-dAutoFilterColorImages=false" in cmd
    assert "-dColorImageFilter=/FlateEncode" in cmd
    assert "-dAutoFilterGrayImages=false" in cmd
    assert "-dGrayImageFilter=/FlateEncode" in cmd
    assert not any("DCTEncode" in arg for arg in cmd)
    assert "-dDownsampleColorImages=false" in cmd
