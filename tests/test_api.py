"""API endpoint tests."""

from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

from app.config import get_settings
from app.main import app
from app.models.schemas import Fragment, SceneRequest
from app.routers.generate import Services, get_services, stream_scene
from tests.helpers import IMAGE_DATA_URL, PNG_BYTES, SCENE_HTML, FakeLLM


@pytest.fixture
def services(settings, fake_llm):
    services = Services(settings)
    services.llm = fake_llm
    return services


@pytest.fixture
def client(settings, services):
    """Create test client with local storage and a scripted model."""
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_services] = lambda: services
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestInfo:
    """Test informational endpoints."""

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["health"] == "/api/v1/health"

    def test_health(self, client):
        response = client.get("/api/v1/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "version": "1.0.0"}

    def test_sample_prompts(self, client):
        data = client.get("/api/v1/prompts/samples").json()
        assert "A dragon guarding gold" in data["prompts"]
        assert data["aspect_ratios"] == ["1:1", "3:4", "4:3", "16:9", "9:16"]


class TestImages:
    """Test image generation and upload endpoints."""

    def test_generate_image(self, client):
        response = client.post(
            "/api/v1/images",
            json={"prompt": "A futuristic mars rover", "aspect_ratio": "16:9", "optimize": False},
        )
        assert response.status_code == 200
        assert response.json() == {"image": IMAGE_DATA_URL, "prompt_used": "A futuristic mars rover"}

    def test_generate_image_stores_session_content(self, client):
        response = client.post(
            "/api/v1/images",
            json={"prompt": "A cozy winter cabin", "session_id": "abc123"},
        )
        assert response.status_code == 200

        content = client.get("/api/v1/sessions/abc123/content").json()
        assert content["image"] == IMAGE_DATA_URL
        assert content["prompt"] == "A cozy winter cabin"
        assert content["voxel"] is None

    def test_invalid_aspect_ratio(self, client):
        response = client.post("/api/v1/images", json={"prompt": "A rover", "aspect_ratio": "2:1"})
        assert response.status_code == 400
        assert response.json()["detail"]["error_code"] == "INVALID_IMAGE_REQUEST"

    def test_invalid_session_id(self, client):
        response = client.post("/api/v1/images", json={"prompt": "A rover", "session_id": "../x"})
        assert response.status_code == 422

    def test_model_failure(self, client, fake_llm):
        fake_llm.generate_image.return_value = None

        response = client.post("/api/v1/images", json={"prompt": "A rover"})
        assert response.status_code == 502
        assert response.json()["detail"]["error_code"] == "IMAGE_GENERATION_FAILED"

    def test_upload_image(self, client):
        response = client.post(
            "/api/v1/images/upload",
            files={"file": ("cabin.png", PNG_BYTES, "image/png")},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["image"] == IMAGE_DATA_URL
        assert data["size_bytes"] == len(PNG_BYTES)

    def test_upload_unsupported_type(self, client):
        response = client.post(
            "/api/v1/images/upload",
            files={"file": ("notes.txt", b"hello", "text/plain")},
        )
        assert response.status_code == 400
        assert response.json()["detail"]["error_code"] == "UNSUPPORTED_FILE_TYPE"

    def test_upload_too_large(self, client, settings):
        settings.max_upload_size_mb = 0

        response = client.post(
            "/api/v1/images/upload",
            files={"file": ("cabin.png", PNG_BYTES, "image/png")},
        )
        assert response.status_code == 413
        assert response.json()["detail"]["error_code"] == "FILE_TOO_LARGE"


class TestScenes:
    """Test voxel scene endpoints."""

    def test_generate_scene(self, client):
        response = client.post("/api/v1/scenes", json={"image": IMAGE_DATA_URL})

        assert response.status_code == 200
        data = response.json()
        assert data["labels"] == ["Analyzing the image", "Building voxels"]
        assert "camera.position.set(30, 30, 30);" in data["html"]
        assert "<p data-embed-hidden>A cozy cabin</p>" in data["html"]

    def test_scene_is_attached_to_session(self, client):
        client.post("/api/v1/images", json={"prompt": "A cabin", "session_id": "s1"})
        scene = client.post("/api/v1/scenes", json={"image": IMAGE_DATA_URL, "session_id": "s1"})

        content = client.get("/api/v1/sessions/s1/content").json()
        assert content["voxel"] == scene.json()["html"]

        download = client.get("/api/v1/sessions/s1/scene")
        assert download.status_code == 200
        assert download.text == scene.json()["html"]
        assert download.headers["content-disposition"].startswith('attachment; filename="voxel-scene-')

    def test_scene_without_session_content_is_not_stored(self, client):
        response = client.post("/api/v1/scenes", json={"image": IMAGE_DATA_URL, "session_id": "s2"})
        assert response.status_code == 200

        assert client.get("/api/v1/sessions/s2/content").status_code == 404

    def test_invalid_image(self, client):
        response = client.post("/api/v1/scenes", json={"image": "data:image/png;base64,@@@"})
        assert response.status_code == 400
        assert response.json()["detail"]["error_code"] == "INVALID_IMAGE"

    def test_extraction_failure(self, client, settings, services):
        services.llm = FakeLLM(settings, batches=[[Fragment(text="No scene today.")]])

        response = client.post("/api/v1/scenes", json={"image": IMAGE_DATA_URL})
        assert response.status_code == 502
        assert response.json()["detail"]["error_code"] == "EXTRACTION_FAILED"

    def test_generation_failure(self, client, settings, services):
        services.llm = FakeLLM(settings, error=ConnectionError("reset"))

        response = client.post("/api/v1/scenes", json={"image": IMAGE_DATA_URL})
        assert response.status_code == 502
        assert response.json()["detail"]["error_code"] == "SCENE_GENERATION_FAILED"

    def test_stream_scene(self, client):
        response = client.post("/api/v1/scenes/stream", json={"image": IMAGE_DATA_URL})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        body = response.text
        assert 'event: progress\ndata: {"label":"Analyzing the image"}\n\n' in body
        assert 'event: progress\ndata: {"label":"Building voxels"}\n\n' in body
        assert body.count("event: complete") == 1
        assert body.index("Building voxels") < body.index("event: complete")

    def test_stream_scene_error_event(self, client, settings, services):
        services.llm = FakeLLM(settings, batches=[[Fragment(text="no document")]])

        body = client.post("/api/v1/scenes/stream", json={"image": IMAGE_DATA_URL}).text
        assert "event: error" in body
        assert '"error_code":"EXTRACTION_FAILED"' in body
        assert "event: complete" not in body

    def test_extract_scene(self, client):
        response = client.post(
            "/api/v1/scenes/extract",
            json={"text": f"Here you go:\n```html\n{SCENE_HTML}\n```"},
        )
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/html")
        assert response.text.startswith("<html><body><style data-embed-hidden-style>")

    def test_extract_scene_failure(self, client):
        response = client.post("/api/v1/scenes/extract", json={"text": "nothing here"})
        assert response.status_code == 422
        assert response.json()["detail"]["error_code"] == "EXTRACTION_FAILED"


class TestExamplesAndSessions:
    """Test example and session endpoints."""

    def test_list_examples(self, client):
        data = client.get("/api/v1/examples").json()
        assert [example["html"] for example in data] == [
            "/examples/example1.html",
            "/examples/example2.html",
            "/examples/example3.html",
        ]

    def test_example_scene(self, client, services):
        services._http = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, text=SCENE_HTML)),
            base_url="http://examples.test",
        )

        response = client.get("/api/v1/examples/0/scene")
        assert response.status_code == 200
        assert "camera.position.set(30, 30, 30);" in response.text

    def test_unknown_example(self, client):
        response = client.get("/api/v1/examples/7/scene")
        assert response.status_code == 404
        assert response.json()["detail"]["error_code"] == "EXAMPLE_NOT_FOUND"

    def test_unknown_session(self, client):
        response = client.get("/api/v1/sessions/nobody/content")
        assert response.status_code == 404
        assert response.json()["detail"]["error_code"] == "SESSION_NOT_FOUND"

    def test_session_without_scene(self, client):
        client.post("/api/v1/images", json={"prompt": "A cabin", "session_id": "s3"})

        response = client.get("/api/v1/sessions/s3/scene")
        assert response.status_code == 404
        assert response.json()["detail"]["error_code"] == "SCENE_NOT_FOUND"

    def test_invalid_session_path(self, client):
        response = client.get("/api/v1/sessions/bad.id/content")
        assert response.status_code == 400
        assert response.json()["detail"]["error_code"] == "INVALID_SESSION_ID"

    def test_unreadable_session_content(self, client, settings):
        sessions = Path(settings.local_data_path) / "sessions"
        sessions.mkdir(parents=True)
        (sessions / "broken.json").write_text("{not json", encoding="utf-8")

        response = client.get("/api/v1/sessions/broken/content")
        assert response.status_code == 500
        assert response.json()["detail"]["error_code"] == "STORAGE_FAILED"


class TestStreamDisconnect:
    """Test cleanup when the event stream consumer goes away."""

    @pytest.mark.asyncio
    async def test_closing_response_closes_model_stream(self, settings, services, fake_llm):
        response = await stream_scene(SceneRequest(image=IMAGE_DATA_URL), services, settings)

        first = await anext(response.body_iterator)
        await response.body_iterator.aclose()

        assert first.startswith("event: progress")
        assert fake_llm.closed
