import io

import pytest
from PyPDF2 import PdfWriter

from pdf_toolkit import bootstrap
from pdf_toolkit.config import RuntimeConfig
from pdf_toolkit.factory import create_app
from pdf_toolkit.services import pdf_service


def _pdf_bytes(pages=2):
    writer = PdfWriter()
    for index in range(pages):
        writer.add_blank_page(width=100 * (index + 1), height=72)
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


@pytest.fixture
def app(tmp_path, monkeypatch):
    monkeypatch.setattr("pdf_toolkit.factory.bootstrap.bootstrap_runtime", lambda runtime: None)
    config = RuntimeConfig(upload_folder=tmp_path / "uploads", environment="development")
    app = create_app(config)
    yield app
    app.extensions[pdf_service.EXTENSION_KEY].pipeline.scheduler.shutdown(drain=False)


@pytest.fixture
def client(app):
    return app.test_client()


def test_create_app_registers_expected_routes(app):
    rules = {rule.rule for rule in app.url_map.iter_rules()}
    expected = {
        "/health",
        "/api/pdf/merge",
        "/api/pdf/split",
        "/api/pdf/compress",
        "/api/pdf/convert",
        "/api/pdf/info",
        "/api/pdf/download/<path:filename>",
        "/api/pdf/health",
    }
    assert expected.issubset(rules)
    assert app.config["MAX_CONTENT_LENGTH"] == 50 * 1024 * 1024


def test_merge_with_single_file_is_bad_request(client):
    response = client.post(
        "/api/pdf/merge",
        data={"pdfs": [(io.BytesIO(_pdf_bytes()), "a.pdf")]},
        content_type="multipart/form-data",
    )

    assert response.status_code == 400
    body = response.get_json()
    assert body["success"] is False
    assert body["error_type"] == "ValidationError"
    assert body["error"] == body["error_message"]


def test_merge_then_download(client):
    response = client.post(
        "/api/pdf/merge",
        data={
            "pdfs": [
                (io.BytesIO(_pdf_bytes(1)), "a.pdf"),
                (io.BytesIO(_pdf_bytes(2)), "b.pdf"),
            ]
        },
        content_type="multipart/form-data",
    )

    assert response.status_code == 200
    body = response.get_json()
    assert body["success"] is True
    assert body["message"] == "PDFs merged successfully"
    assert body["data"]["result_size_formatted"]

    download = client.get(body["data"]["download_url"])
    assert download.status_code == 200
    assert download.data.startswith(b"%PDF")


@pytest.mark.parametrize("filename", ["my report.pdf", "scan (1).pdf", "résumé.pdf"])
def test_compress_then_download_with_unsafe_filename(client, filename):
    response = client.post(
        "/api/pdf/compress",
        data={"pdf": (io.BytesIO(_pdf_bytes(2)), filename), "quality": "0.9"},
        content_type="multipart/form-data",
    )

    assert response.status_code == 200
    download = client.get(response.get_json()["data"]["download_url"])
    assert download.status_code == 200
    assert download.data.startswith(b"%PDF")


def test_split_accepts_comma_separated_pages(client):
    response = client.post(
        "/api/pdf/split",
        data={"pdf": (io.BytesIO(_pdf_bytes(3)), "doc.pdf"), "pages": "3, 1"},
        content_type="multipart/form-data",
    )

    assert response.status_code == 200
    items = response.get_json()["data"]["items"]
    assert [item["page"] for item in items] == [3, 1]

    download = client.get(items[0]["download_url"])
    assert download.status_code == 200


def test_split_with_unparsable_pages_is_bad_request(client):
    response = client.post(
        "/api/pdf/split",
        data={"pdf": (io.BytesIO(_pdf_bytes(3)), "doc.pdf"), "pages": "first, last"},
        content_type="multipart/form-data",
    )
    assert response.status_code == 400
    assert response.get_json()["error_type"] == "ValidationError"


def test_compress_with_non_numeric_quality_is_bad_request(client):
    response = client.post(
        "/api/pdf/compress",
        data={"pdf": (io.BytesIO(_pdf_bytes()), "doc.pdf"), "quality": "high"},
        content_type="multipart/form-data",
    )
    assert response.status_code == 400


def test_compress_without_file_is_bad_request(client):
    response = client.post("/api/pdf/compress", data={}, content_type="multipart/form-data")
    assert response.status_code == 400
    assert response.get_json()["error_message"] == "Please upload a PDF file to compress"


def test_convert_with_unknown_format_is_bad_request(client):
    response = client.post(
        "/api/pdf/convert",
        data={"pdf": (io.BytesIO(_pdf_bytes()), "doc.pdf"), "format": "gif"},
        content_type="multipart/form-data",
    )
    assert response.status_code == 400


def test_non_pdf_upload_is_rejected(client):
    response = client.post(
        "/api/pdf/info",
        data={"pdf": (io.BytesIO(b"hello"), "notes.txt")},
        content_type="multipart/form-data",
    )
    assert response.status_code == 400


def test_info_returns_metadata(client):
    response = client.post(
        "/api/pdf/info",
        data={"pdf": (io.BytesIO(_pdf_bytes(2)), "doc.pdf")},
        content_type="multipart/form-data",
    )

    assert response.status_code == 200
    data = response.get_json()["data"]
    assert data["page_count"] == 2
    assert data["title"] == "Untitled"


def test_damaged_pdf_is_unprocessable_with_debug_detail(client):
    response = client.post(
        "/api/pdf/info",
        data={"pdf": (io.BytesIO(b"%PDF-1.4 truncated"), "broken.pdf")},
        content_type="multipart/form-data",
    )

    assert response.status_code == 422
    body = response.get_json()
    assert body["error_type"] == "StructureError"
    assert "debug" in body


def test_download_of_missing_file_is_not_found(client):
    response = client.get("/api/pdf/download/missing.pdf")
    assert response.status_code == 404


def test_health_endpoints(client):
    for path in ("/health", "/api/pdf/health"):
        response = client.get(path)
        assert response.status_code == 200
        body = response.get_json()
        assert body["status"] == "OK"
        assert set(body["rasterizers"]) == {"poppler", "pdfium", "ghostscript"}
        assert body["tracking"] == "disconnected"


@pytest.mark.parametrize(
    "raw, expected",
    [
        (None, None),
        ("", None),
        ("[2, 5, 1]", [2, 5, 1]),
        ("2, 5, 1", [2, 5, 1]),
        ("4", [4]),
    ],
)
def test_parse_pages(raw, expected):
    assert pdf_service.parse_pages(raw) == expected


@pytest.mark.parametrize("raw", ["[1, \"x\"]", "1, two", "{\"a\": 1}", "[true]", "[1.5]"])
def test_parse_pages_rejects_garbage(raw):
    with pytest.raises(pdf_service.ValidationError):
        pdf_service.parse_pages(raw)


class DummyScheduler:
    def __init__(self, calls):
        self.calls = calls

    def start(self):
        self.calls["start"] += 1

    def sweep_stale(self, max_age):
        self.calls["sweep"] += 1
        return 0

    def shutdown(self, drain=True):
        return 0


class DummyPipeline:
    def __init__(self, scheduler):
        self.scheduler = scheduler


class DummyRuntime:
    def __init__(self, scheduler, upload_folder):
        self.pipeline = DummyPipeline(scheduler)
        self.config = RuntimeConfig(upload_folder=upload_folder)


@pytest.fixture
def registered(monkeypatch):
    drains = []
    monkeypatch.setattr(bootstrap, "_bootstrapped_schedulers", set())
    monkeypatch.setattr(bootstrap.atexit, "register", lambda func, **kwargs: drains.append((func, kwargs)))
    return drains


def test_bootstrap_runtime_is_idempotent(registered, tmp_path):
    calls = {"start": 0, "sweep": 0}
    scheduler = DummyScheduler(calls)

    assert bootstrap.is_bootstrapped() is False
    bootstrap.bootstrap_runtime(DummyRuntime(scheduler, tmp_path))
    bootstrap.bootstrap_runtime(DummyRuntime(scheduler, tmp_path))

    assert calls == {"start": 1, "sweep": 1}
    assert registered == [(scheduler.shutdown, {"drain": True})]
    assert bootstrap.is_bootstrapped() is True


def test_every_app_scheduler_gets_its_own_exit_drain(registered, tmp_path):
    first = DummyScheduler({"start": 0, "sweep": 0})
    second = DummyScheduler({"start": 0, "sweep": 0})

    bootstrap.bootstrap_runtime(DummyRuntime(first, tmp_path))
    bootstrap.bootstrap_runtime(DummyRuntime(second, tmp_path))

    assert [func for func, _ in registered] == [first.shutdown, second.shutdown]
    assert second.calls["start"] == 1
