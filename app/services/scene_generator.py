"""Voxel scene generation from a source image.

The code model streams its reasoning and the scene code together. Each
streamed chunk is fed to a ``StreamAggregator`` as one fragment batch: thought
fragments turn into progress labels, everything else accumulates into the raw
answer. Once the stream ends the raw answer goes through
``build_embeddable_document`` exactly once.
"""

import base64
import binascii
import re
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Optional

import structlog

from app.models.schemas import SceneEvent
from app.services.aggregator import ProgressSink, StreamAggregator
from app.services.html_extractor import (
    DEFAULT_CAMERA_FOV,
    DEFAULT_CAMERA_POSITION,
    ExtractionError,
    build_embeddable_document,
)
from app.utils.llm import LLM

logger = structlog.get_logger()

VOXEL_PROMPT = (
    "I have provided an image. Code a beautiful voxel art scene inspired by this image. "
    "Write threejs code as a single-page."
)

DATA_URL_PATTERN = re.compile(r"^data:(.*?);base64,")
DEFAULT_IMAGE_MIME = "image/jpeg"


class SceneGenerationError(Exception):
    """Raised when the streamed scene generation fails."""

    pass


class InvalidSceneRequestError(SceneGenerationError):
    """Raised when the source image cannot be decoded."""

    pass


def parse_image_data(image: str) -> tuple[bytes, str]:
    """Split a data URL (or bare base64) into bytes and MIME type.

    Raises:
        InvalidSceneRequestError: If the payload is empty or not base64
    """
    match = DATA_URL_PATTERN.match(image)
    mime_type = match.group(1) if match and match.group(1) else DEFAULT_IMAGE_MIME
    payload = image.split(",", 1)[1] if "," in image else image

    if not payload.strip():
        raise InvalidSceneRequestError("Image data is empty")

    try:
        return base64.b64decode(payload, validate=True), mime_type
    except (binascii.Error, ValueError) as e:
        raise InvalidSceneRequestError(f"Image data is not valid base64: {str(e)}") from e


async def _aggregate(image: str, llm: LLM, aggregator: StreamAggregator) -> AsyncIterator[None]:
    """Feed every streamed batch to ``aggregator``, yielding after each one.

    Failures of the streaming call are wrapped in ``SceneGenerationError``;
    failures raised while consuming (a throwing progress sink) propagate as-is.
    """
    image_bytes, mime_type = parse_image_data(image)
    stream = llm.stream_fragments(image_bytes, mime_type, VOXEL_PROMPT)
    batches = 0

    try:
        while True:
            try:
                batch = await anext(stream)
            except StopAsyncIteration:
                break
            except Exception as e:
                logger.error("scene_stream_failed", batches=batches, error=str(e))
                raise SceneGenerationError(f"Voxel scene generation failed: {str(e)}") from e

            batches += 1
            aggregator.consume_batch(batch)
            yield
    finally:
        await stream.aclose()

    logger.info("scene_stream_complete", batches=batches)


async def generate_voxel_scene(
    image: str,
    llm: LLM,
    on_progress: Optional[ProgressSink] = None,
    camera_position: tuple[float, float, float] = DEFAULT_CAMERA_POSITION,
    camera_fov: float = DEFAULT_CAMERA_FOV,
) -> str:
    """Generate an embeddable voxel scene document for an image.

    Args:
        image: Source image as a data URL or bare base64
        llm: LLM instance for generation
        on_progress: Called synchronously with each new progress label
        camera_position: Fixed vantage point applied to the scene camera
        camera_fov: Fixed field of view applied to the scene camera

    Returns:
        The embeddable HTML document

    Raises:
        ExtractionError: If the answer holds no embeddable document
        SceneGenerationError: If the streaming call fails
    """
    logger.info("generating_voxel_scene", model=llm.settings.scene_model)

    aggregator = StreamAggregator(on_progress=on_progress)
    async with aclosing(_aggregate(image, llm, aggregator)) as batches:
        async for _ in batches:
            pass

    raw = aggregator.finalize()
    html = build_embeddable_document(raw, camera_position=camera_position, camera_fov=camera_fov)
    logger.info("voxel_scene_complete", html_size=len(html), last_label=aggregator.label)
    return html


async def stream_voxel_scene(
    image: str,
    llm: LLM,
    camera_position: tuple[float, float, float] = DEFAULT_CAMERA_POSITION,
    camera_fov: float = DEFAULT_CAMERA_FOV,
) -> AsyncIterator[SceneEvent]:
    """Generate a voxel scene, yielding progress events as labels appear.

    Yields ``progress`` events in label order followed by exactly one
    ``complete`` or ``error`` event. Closing the generator early abandons the
    aggregator without finalizing it.
    """
    logger.info("scene_stream_started", model=llm.settings.scene_model)

    labels: list[str] = []
    aggregator = StreamAggregator(on_progress=labels.append)

    try:
        async with aclosing(_aggregate(image, llm, aggregator)) as batches:
            async for _ in batches:
                for label in labels:
                    yield SceneEvent(event="progress", label=label)
                labels.clear()

        raw = aggregator.finalize()
        html = build_embeddable_document(
            raw, camera_position=camera_position, camera_fov=camera_fov
        )
    except InvalidSceneRequestError as e:
        yield SceneEvent(event="error", detail=str(e), error_code="INVALID_IMAGE")
        return
    except ExtractionError as e:
        yield SceneEvent(event="error", detail=str(e), error_code="EXTRACTION_FAILED")
        return
    except SceneGenerationError as e:
        yield SceneEvent(event="error", detail=str(e), error_code="SCENE_GENERATION_FAILED")
        return

    logger.info("scene_stream_finished", html_size=len(html), last_label=aggregator.label)
    yield SceneEvent(event="complete", html=html)
