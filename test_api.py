"""
API tests for the Smart Resizer service.

Runs the real application (worker included) through FastAPI's TestClient with
a stub image generator, so no network access is needed.
"""

import json
import logging
import time
from io import BytesIO

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from smart_resizer.config import ResizerSettings
from smart_resizer.main import create_app
from smart_resizer.services.gemini_http_client import GenerationError, GenerationErrorCode

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _png(width: int, height: int) -> bytes:
    buffer = BytesIO()
    Image.new("RGB", (width, height), color=(240, 200, 20)).save(buffer, format="PNG")
    return buffer.getvalue()


class StubGenerator:
    def __init__(self, error=None):
        self.error = error
        self.calls = 0

    def generate(self, prompt, image, aspect_ratio, timeout, mime_type="image/png"):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return _png(1920, 1080)


@pytest.fixture
def settings(tmp_path):
    return ResizerSettings(
        storage_dir=tmp_path / "results",
        public_base_url="http://testserver/files",
        ai_retry_delay=0.0,
        ai_timeout_retry_delay=0.0,
    )


def _submit(client, formats, data=None):
    return client.post(
        "/api/v1/jobs",
        files={"master_image": ("master.png", data or _png(1200, 1200), "image/png")},
        data={"formats": json.dumps(formats), "client_id": "client-1", "user_id": "user-1"},
    )


def _wait_for_terminal(client, job_id, timeout=30.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        body = client.get(f"/api/v1/jobs/{job_id}").json()
        if body["status"] in ("completed", "failed"):
            return body
        time.sleep(0.1)
    raise AssertionError(f"Job {job_id} did not finish within {timeout}s")


def test_health_endpoints(settings):
    with TestClient(create_app(settings, generator=StubGenerator())) as client:
        assert client.get("/health").json() == {"status": "ok"}
        assert client.get("/api/v1/health").json() == {"status": "ok", "api_version": "v1"}


def test_list_formats(settings):
    with TestClient(create_app(settings, generator=StubGenerator())) as client:
        body = client.get("/api/v1/formats").json()
        assert body["total_count"] == 10
        assert body["formats"][0]["id"] == "square"
        assert body["formats"][0]["safe_zone"] == {"top": 0.0, "bottom": 0.0, "left": 0.0, "right": 0.0}
        assert set(body["packs"]) == {"social", "portrait", "landscape", "all"}

        filtered = client.get("/api/v1/formats", params={"platform": "meta"}).json()
        assert filtered["total_count"] == 0


def test_job_lifecycle(settings):
    generator = StubGenerator()
    with TestClient(create_app(settings, generator=generator)) as client:
        response = _submit(client, ["square", "medium_5_4", "widescreen", "square"])
        assert response.status_code == 201
        created = response.json()
        assert created["status"] == "pending"
        assert created["formats_requested"] == ["square", "medium_5_4", "widescreen"]
        assert created["master_aspect_ratio"] == "1:1"

        body = _wait_for_terminal(client, created["job_id"])
        assert body["status"] == "completed"
        assert body["completed_at"] is not None
        assert body["progress"] == {"total": 3, "completed": 3, "failed": 0, "pending": 0, "percent": 100}

        methods = {r["format_id"]: r["method"] for r in body["format_results"]}
        assert methods == {"square": "crop", "medium_5_4": "padding", "widescreen": "ai_regenerate"}
        assert generator.calls == 1

        square = next(r for r in body["format_results"] if r["format_id"] == "square")
        artifact = client.get(square["result_url"].replace("http://testserver", ""))
        assert artifact.status_code == 200
        with Image.open(BytesIO(artifact.content)) as image:
            assert image.size == (1080, 1080)

        summaries = client.get("/api/v1/jobs").json()
        assert summaries == [{"id": created["job_id"], "status": "completed"}]
        logger.info("✓ Job %s completed with %d formats", created["job_id"], len(methods))


def test_failed_ai_format_fails_job_but_keeps_siblings(settings):
    generator = StubGenerator(error=GenerationError(GenerationErrorCode.AUTH, "bad key", 401))
    with TestClient(create_app(settings, generator=generator)) as client:
        job_id = _submit(client, ["square", "widescreen"]).json()["job_id"]
        body = _wait_for_terminal(client, job_id)

    assert body["status"] == "failed"
    results = {r["format_id"]: r for r in body["format_results"]}
    assert results["square"]["status"] == "completed"
    assert results["square"]["result_url"]
    assert results["widescreen"]["status"] == "failed"
    assert results["widescreen"]["result_url"] is None
    assert "bad key" in results["widescreen"]["error_message"]
    assert body["progress"]["failed"] == 1
    assert generator.calls == 1


@pytest.mark.parametrize(
    "formats,data",
    [
        ([], None),
        (["square", "billboard"], None),
        (["square"], b"not an image"),
    ],
)
def test_invalid_submissions_return_422(settings, formats, data):
    with TestClient(create_app(settings, generator=StubGenerator())) as client:
        response = _submit(client, formats, data)
        assert response.status_code == 422
        assert client.get("/api/v1/jobs").json() == []


def test_malformed_formats_field(settings):
    with TestClient(create_app(settings, generator=StubGenerator())) as client:
        response = client.post(
            "/api/v1/jobs",
            files={"master_image": ("master.png", _png(100, 100), "image/png")},
            data={"formats": "square,widescreen", "client_id": "c", "user_id": "u"},
        )
        assert response.status_code == 422


def test_unknown_job_returns_404(settings):
    with TestClient(create_app(settings, generator=StubGenerator())) as client:
        assert client.get("/api/v1/jobs/does-not-exist").status_code == 404
