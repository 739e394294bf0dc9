"""API router for image and voxel scene generation endpoints."""

import base64
import time
from contextlib import aclosing
from typing import Annotated, Optional

import httpx
import structlog
from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.responses import HTMLResponse, StreamingResponse

from app.config import Settings, get_settings
from app.models.schemas import (
    Example,
    ExtractRequest,
    HealthResponse,
    ImageRequest,
    ImageResponse,
    SamplePromptsResponse,
    SceneRequest,
    SceneResponse,
    UploadResponse,
    UserContent,
)
from app.services.examples import EXAMPLES, ExampleNotFoundError, load_example_scene
from app.services.html_extractor import ExtractionError, build_embeddable_document
from app.services.image_generator import (
    ImageGenerationError,
    InvalidImageRequestError,
    build_image_prompt,
    generate_image,
)
from app.services.scene_generator import (
    InvalidSceneRequestError,
    SceneGenerationError,
    generate_voxel_scene,
    stream_voxel_scene,
)
from app.utils.llm import LLM
from app.utils.storage import InvalidSessionIdError, SessionStore, StorageError

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1", tags=["generation"])

ALLOWED_MIME_TYPES = {
    "image/png",
    "image/jpeg",
    "image/webp",
    "image/heic",
    "image/heif",
}


class Services:
    """Container for shared service instances."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.llm = LLM(settings)
        self.store = SessionStore(settings)
        self._http: Optional[httpx.AsyncClient] = None

    @property
    def http(self) -> httpx.AsyncClient:
        """HTTP client for fetching example scenes."""
        if self._http is None:
            self._http = httpx.AsyncClient(
                base_url=self.settings.examples_base_url,
                timeout=self.settings.examples_timeout_seconds,
            )
        return self._http

    async def close(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None


_services: Services | None = None


def get_services(settings: Annotated[Settings, Depends(get_settings)]) -> Services:
    """Get or create services instance."""
    global _services
    if _services is None:
        _services = Services(settings)
    return _services


async def close_services() -> None:
    """Release resources held by the shared services."""
    global _services
    if _services is not None:
        await _services.close()
        _services = None


def _error(status_code: int, detail: str, error_code: str) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail={"detail": detail, "error_code": error_code},
    )


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Check service health status."""
    return HealthResponse(status="healthy", version="1.0.0")


@router.get("/prompts/samples", response_model=SamplePromptsResponse)
async def sample_prompts() -> SamplePromptsResponse:
    """List prompt suggestions and supported aspect ratios."""
    return SamplePromptsResponse()


@router.post("/images", response_model=ImageResponse)
async def create_image(
    request: ImageRequest,
    services: Annotated[Services, Depends(get_services)],
) -> ImageResponse:
    """Generate the source image for a voxel scene."""
    logger.info(
        "image_request",
        aspect_ratio=request.aspect_ratio,
        optimize=request.optimize,
        session_id=request.session_id,
    )

    try:
        image = await generate_image(
            request.prompt,
            services.llm,
            aspect_ratio=request.aspect_ratio,
            optimize=request.optimize,
        )
    except InvalidImageRequestError as e:
        raise _error(400, str(e), "INVALID_IMAGE_REQUEST")
    except ImageGenerationError as e:
        raise _error(502, str(e), "IMAGE_GENERATION_FAILED")

    if request.session_id:
        # A new image starts fresh user content; any earlier scene is dropped
        try:
            await services.store.save_user_content(
                request.session_id,
                UserContent(image=image, prompt=request.prompt),
            )
        except StorageError as e:
            raise _error(500, str(e), "STORAGE_FAILED")

    return ImageResponse(
        image=image,
        prompt_used=build_image_prompt(request.prompt.strip(), request.optimize),
    )


@router.post("/images/upload", response_model=UploadResponse)
async def upload_image(
    file: Annotated[UploadFile, File(description="Source image (PNG, JPEG, WEBP, HEIC, HEIF)")],
    settings: Annotated[Settings, Depends(get_settings)],
) -> UploadResponse:
    """Convert an uploaded image into a data URL usable as scene input."""
    logger.info("upload_request", filename=file.filename, content_type=file.content_type)

    if not file.content_type or file.content_type not in ALLOWED_MIME_TYPES:
        raise _error(
            400,
            f"Unsupported file type: {file.content_type}",
            "UNSUPPORTED_FILE_TYPE",
        )

    content = await file.read()
    if len(content) > settings.max_upload_size_bytes:
        raise _error(
            413,
            f"File too large. Maximum size: {settings.max_upload_size_mb}MB",
            "FILE_TOO_LARGE",
        )

    encoded = base64.b64encode(content).decode("utf-8")
    return UploadResponse(
        image=f"data:{file.content_type};base64,{encoded}",
        mime_type=file.content_type,
        size_bytes=len(content),
    )


@router.post("/scenes", response_model=SceneResponse)
async def create_scene(
    request: SceneRequest,
    services: Annotated[Services, Depends(get_services)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> SceneResponse:
    """Generate a voxel scene and return the embeddable document."""
    logger.info("scene_request", session_id=request.session_id)

    labels: list[str] = []
    try:
        html = await generate_voxel_scene(
            request.image,
            services.llm,
            on_progress=labels.append,
            camera_position=settings.camera_position,
            camera_fov=settings.camera_fov,
        )
    except InvalidSceneRequestError as e:
        raise _error(400, str(e), "INVALID_IMAGE")
    except ExtractionError as e:
        raise _error(502, str(e), "EXTRACTION_FAILED")
    except SceneGenerationError as e:
        raise _error(502, str(e), "SCENE_GENERATION_FAILED")

    if request.session_id:
        try:
            await services.store.attach_scene(request.session_id, html)
        except StorageError as e:
            raise _error(500, str(e), "STORAGE_FAILED")

    logger.info("scene_complete", labels=len(labels), html_size=len(html))
    return SceneResponse(html=html, labels=labels)


@router.post("/scenes/stream")
async def stream_scene(
    request: SceneRequest,
    services: Annotated[Services, Depends(get_services)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> StreamingResponse:
    """Generate a voxel scene as Server-Sent Events.

    Emits ``progress`` events while the model reasons, then one ``complete``
    event carrying the document or one ``error`` event.
    """
    logger.info("scene_stream_request", session_id=request.session_id)

    async def events():
        scene_events = stream_voxel_scene(
            request.image,
            services.llm,
            camera_position=settings.camera_position,
            camera_fov=settings.camera_fov,
        )
        async with aclosing(scene_events):
            async for event in scene_events:
                if event.event == "complete" and request.session_id:
                    try:
                        await services.store.attach_scene(request.session_id, event.html)
                    except StorageError as e:
                        logger.error(
                            "scene_attach_failed", session_id=request.session_id, error=str(e)
                        )
                yield event.to_sse()

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.post("/scenes/extract", response_class=HTMLResponse)
async def extract_scene(
    request: ExtractRequest,
    settings: Annotated[Settings, Depends(get_settings)],
) -> HTMLResponse:
    """Turn raw model output into an embeddable document."""
    try:
        html = build_embeddable_document(
            request.text,
            camera_position=settings.camera_position,
            camera_fov=settings.camera_fov,
        )
    except ExtractionError as e:
        raise _error(422, str(e), "EXTRACTION_FAILED")
    return HTMLResponse(content=html)


@router.get("/examples", response_model=list[Example])
async def list_examples() -> list[Example]:
    """List the bundled example scenes."""
    return EXAMPLES


@router.get("/examples/{index}/scene", response_class=HTMLResponse)
async def example_scene(
    index: int,
    services: Annotated[Services, Depends(get_services)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> HTMLResponse:
    """Return an example's embeddable document."""
    try:
        html = await load_example_scene(
            index,
            services.http,
            camera_position=settings.camera_position,
            camera_fov=settings.camera_fov,
        )
    except ExampleNotFoundError as e:
        raise _error(404, str(e), "EXAMPLE_NOT_FOUND")
    return HTMLResponse(content=html)


async def _load_user_content(services: Services, session_id: str) -> UserContent:
    try:
        content = await services.store.get_user_content(session_id)
    except InvalidSessionIdError as e:
        raise _error(400, str(e), "INVALID_SESSION_ID")
    except StorageError as e:
        raise _error(500, str(e), "STORAGE_FAILED")
    if content is None:
        raise _error(404, f"No content for session {session_id}", "SESSION_NOT_FOUND")
    return content


@router.get("/sessions/{session_id}/content", response_model=UserContent)
async def session_content(
    session_id: str,
    services: Annotated[Services, Depends(get_services)],
) -> UserContent:
    """Return a session's stored user content."""
    return await _load_user_content(services, session_id)


@router.get("/sessions/{session_id}/scene", response_class=HTMLResponse)
async def download_session_scene(
    session_id: str,
    services: Annotated[Services, Depends(get_services)],
) -> HTMLResponse:
    """Download a session's scene as a standalone HTML file."""
    content = await _load_user_content(services, session_id)
    if content.voxel is None:
        raise _error(404, f"No scene for session {session_id}", "SCENE_NOT_FOUND")

    filename = f"voxel-scene-{int(time.time() * 1000)}.html"
    return HTMLResponse(
        content=content.voxel,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
