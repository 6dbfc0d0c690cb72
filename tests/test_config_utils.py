import dataclasses
import re
from pathlib import Path

import pytest

from pdf_toolkit.config import RuntimeConfig, load_runtime_config
from pdf_toolkit.core.exceptions import ConversionExhaustedError, OperationError, ValidationError
from pdf_toolkit.core.utils import env_int, format_file_size, generate_unique_filename


@pytest.mark.parametrize(
    "size, expected",
    [(0, "0 Bytes"), (512, "512 Bytes"), (1536, "1.5 KB"), (1024 * 1024, "1 MB"), (5 * 1024 ** 3, "5 GB")],
)
def test_format_file_size(size, expected):
    assert format_file_size(size) == expected


def test_generate_unique_filename_shape():
    name = generate_unique_filename("report.pdf", "_compressed")
    assert re.fullmatch(r"report_compressed_\d+_[0-9a-f]{9}\.pdf", name)
    assert generate_unique_filename("report.pdf") != generate_unique_filename("report.pdf")


def test_generate_unique_filename_without_extension():
    assert generate_unique_filename("scan").endswith(".pdf")


def test_env_helpers_fall_back_on_bad_values(monkeypatch):
    monkeypatch.setenv("SOME_INT", "lots")
    assert env_int("SOME_INT", 7) == 7
    assert env_int("UNSET_INT_FOR_TEST", 3) == 3


def test_load_runtime_config_defaults(monkeypatch, tmp_path):
    for name in (
        "TRACKING_BACKEND",
        "TRACKING_DB_PATH",
        "MAX_CONTENT_LENGTH_MB",
        "CLEANUP_DELAY_SECONDS",
        "RASTER_DPI",
        "DEFAULT_QUALITY",
        "APP_ENV",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("UPLOAD_FOLDER", str(tmp_path))

    config = load_runtime_config()

    assert config.upload_folder == Path(tmp_path)
    assert config.max_content_length == 50 * 1024 * 1024
    assert config.cleanup_delay_seconds == 1800.0
    assert config.tracking_backend == "none"
    assert config.raster_dpi == 150
    assert config.default_quality == 0.7
    assert config.include_error_detail is False


def test_load_runtime_config_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("UPLOAD_FOLDER", str(tmp_path))
    monkeypatch.setenv("TRACKING_DB_PATH", str(tmp_path / "ops.db"))
    monkeypatch.delenv("TRACKING_BACKEND", raising=False)
    monkeypatch.setenv("RASTER_DPI", "5000")
    monkeypatch.setenv("DEFAULT_QUALITY", "3")
    monkeypatch.setenv("MAX_CONTENT_LENGTH_MB", "-1")
    monkeypatch.setenv("APP_ENV", "Development")

    config = load_runtime_config()

    assert config.tracking_backend == "sqlite"
    assert config.raster_dpi == 600
    assert config.default_quality == 1.0
    assert config.max_content_length == 50 * 1024 * 1024
    assert config.include_error_detail is True


def test_sqlite_backend_without_path_disables_tracking(monkeypatch):
    monkeypatch.setenv("TRACKING_BACKEND", "sqlite")
    monkeypatch.delenv("TRACKING_DB_PATH", raising=False)
    assert load_runtime_config().tracking_backend == "none"


def test_runtime_config_is_frozen(tmp_path):
    config = RuntimeConfig(upload_folder=tmp_path)
    with pytest.raises(dataclasses.FrozenInstanceError):
        config.raster_dpi = 10


def test_error_dicts_hide_detail_in_production():
    error = OperationError.for_operation("split", OSError("disk"))
    assert error.to_dict() == {"kind": "OperationError", "message": "Failed to split PDF"}
    assert error.to_dict(include_detail=True)["detail"] == "disk"
    assert ValidationError("bad").status_code == 400


def test_conversion_exhausted_messages_by_category():
    transient = ConversionExhaustedError.for_category(ConversionExhaustedError.TRANSIENT)
    unsupported = ConversionExhaustedError.for_category("something-else")
    assert transient.message == "PDF conversion service temporarily unavailable"
    assert unsupported.message == "PDF conversion not supported in current environment"
    assert transient.to_dict()["category"] == "transient"


def test_generate_unique_filename_sanitizes_names():
    assert re.fullmatch(r"my_report_\d+_[0-9a-f]{9}\.pdf", generate_unique_filename("my report.pdf"))
    assert generate_unique_filename("résumé.pdf").startswith("resume_")
    assert generate_unique_filename("../../etc/passwd.pdf").startswith("etc_passwd_")
