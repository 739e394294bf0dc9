"""Image generation service producing the source image for a voxel scene."""

import base64

import structlog

from app.models.schemas import ASPECT_RATIOS
from app.utils.llm import LLM

logger = structlog.get_logger()

IMAGE_SYSTEM_PROMPT = "Generate an isolated object/scene on a simple background."


class ImageGenerationError(Exception):
    """Raised when image generation fails."""

    pass


class InvalidImageRequestError(ImageGenerationError):
    """Raised when the image request itself is unusable."""

    pass


def build_image_prompt(prompt: str, optimize: bool = True) -> str:
    """Return the prompt actually sent to the image model."""
    if optimize:
        return f"{IMAGE_SYSTEM_PROMPT}\n\nSubject: {prompt}"
    return prompt


async def generate_image(
    prompt: str,
    llm: LLM,
    aspect_ratio: str = "1:1",
    optimize: bool = True,
) -> str:
    """Generate an image and return it as a data URL.

    Args:
        prompt: Subject of the image
        llm: LLM instance for generation
        aspect_ratio: One of the supported aspect ratios
        optimize: Wrap the subject in the isolated-object instruction

    Returns:
        ``data:<mime>;base64,<data>`` URL

    Raises:
        InvalidImageRequestError: If the prompt is empty or the ratio unsupported
        ImageGenerationError: If generation fails or returns no image
    """
    if not prompt.strip():
        raise InvalidImageRequestError("Prompt cannot be empty")
    if aspect_ratio not in ASPECT_RATIOS:
        raise InvalidImageRequestError(
            f"Unsupported aspect ratio: {aspect_ratio}. Expected one of {', '.join(ASPECT_RATIOS)}"
        )

    final_prompt = build_image_prompt(prompt.strip(), optimize)
    logger.info(
        "generating_image",
        aspect_ratio=aspect_ratio,
        optimize=optimize,
        prompt_chars=len(final_prompt),
    )

    try:
        result = await llm.generate_image(final_prompt, aspect_ratio)
    except Exception as e:
        logger.error("image_generation_failed", error=str(e))
        raise ImageGenerationError(f"Image generation failed: {str(e)}") from e

    if result is None:
        logger.error("image_generation_failed", error="no_inline_image")
        raise ImageGenerationError("No image generated.")

    image_bytes, mime_type = result
    logger.info("image_generation_complete", mime_type=mime_type, size_bytes=len(image_bytes))
    return f"data:{mime_type};base64,{base64.b64encode(image_bytes).decode('utf-8')}"
