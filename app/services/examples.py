"""Bundled example scenes, prepared with the same pipeline as generated ones."""

import httpx
import structlog

from app.models.schemas import Example
from app.services.html_extractor import (
    DEFAULT_CAMERA_FOV,
    DEFAULT_CAMERA_POSITION,
    ExtractionError,
    build_embeddable_document,
)

logger = structlog.get_logger()

EXAMPLE_IMAGE_BASE = "https://www.gstatic.com/aistudio/starter-apps/image_to_voxel"

EXAMPLES = [
    Example(
        index=i,
        img=f"{EXAMPLE_IMAGE_BASE}/example{i + 1}.png",
        html=f"/examples/example{i + 1}.html",
    )
    for i in range(3)
]


class ExampleNotFoundError(Exception):
    """Raised when an example index is out of range."""

    pass


def get_example(index: int) -> Example:
    """Return the example at ``index``."""
    if not 0 <= index < len(EXAMPLES):
        raise ExampleNotFoundError(f"No example at index {index}")
    return EXAMPLES[index]


def placeholder_document(message: str) -> str:
    """Minimal document shown in place of an example that failed to load."""
    return f"<html><body><p>{message}</p></body></html>"


async def load_example_scene(
    index: int,
    client: httpx.AsyncClient,
    camera_position: tuple[float, float, float] = DEFAULT_CAMERA_POSITION,
    camera_fov: float = DEFAULT_CAMERA_FOV,
) -> str:
    """Fetch an example's raw scene and return its embeddable document.

    A missing example file or one without a document yields a placeholder
    document instead of an error.

    Raises:
        ExampleNotFoundError: If the index is out of range
    """
    example = get_example(index)
    logger.info("loading_example", index=index, path=example.html)

    try:
        response = await client.get(example.html)
    except httpx.HTTPError as e:
        logger.warning("example_fetch_failed", index=index, error=str(e))
        return placeholder_document("Error loading example scene.")

    if response.status_code != 200:
        logger.warning("example_not_found", index=index, status=response.status_code)
        return placeholder_document(f"{example.html} not found.")

    try:
        html = build_embeddable_document(
            response.text, camera_position=camera_position, camera_fov=camera_fov
        )
    except ExtractionError as e:
        logger.warning("example_extraction_failed", index=index, error=str(e))
        return placeholder_document("Error loading example scene.")

    logger.info("example_loaded", index=index, html_size=len(html))
    return html
