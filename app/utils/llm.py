"""Gemini client abstraction for image and streamed code generation."""

from collections.abc import AsyncIterator
from typing import Any

import structlog
from google import genai
from google.genai import types

from app.config import Settings
from app.models.schemas import Fragment

logger = structlog.get_logger()


class LLM:
    """Wrapper around the google-genai client used by the generation services."""

    def __init__(self, settings: Settings):
        """Initialize the LLM with settings."""
        self.settings = settings
        self._client: Any = None

    def create_client(self) -> Any:
        """Create or return cached client instance."""
        if self._client is not None:
            return self._client

        if not self.settings.google_api_key:
            raise ValueError("GOOGLE_API_KEY is not configured")

        self._client = genai.Client(
            api_key=self.settings.google_api_key,
            http_options=types.HttpOptions(timeout=self.settings.request_timeout_ms),
        )
        logger.info(
            "llm_initialized",
            provider="google",
            image_model=self.settings.image_model,
            scene_model=self.settings.scene_model,
        )
        return self._client

    async def generate_image(self, prompt: str, aspect_ratio: str) -> tuple[bytes, str] | None:
        """Generate one image and return its bytes and MIME type.

        Returns None when the response carries no inline image.
        """
        client = self.create_client()
        response = await client.aio.models.generate_content(
            model=self.settings.image_model,
            contents=prompt,
            config=types.GenerateContentConfig(
                response_modalities=["IMAGE"],
                image_config=types.ImageConfig(aspect_ratio=aspect_ratio),
            ),
        )

        candidates = response.candidates or []
        if not candidates or candidates[0].content is None:
            return None
        for part in candidates[0].content.parts or []:
            if part.inline_data and part.inline_data.data:
                return part.inline_data.data, part.inline_data.mime_type or "image/png"
        return None

    async def stream_fragments(
        self, image_bytes: bytes, mime_type: str, prompt: str
    ) -> AsyncIterator[list[Fragment]]:
        """Stream a code generation with thoughts, one fragment batch per chunk."""
        client = self.create_client()
        stream = await client.aio.models.generate_content_stream(
            model=self.settings.scene_model,
            contents=[
                types.Part.from_bytes(data=image_bytes, mime_type=mime_type),
                types.Part.from_text(text=prompt),
            ],
            config=types.GenerateContentConfig(
                thinking_config=types.ThinkingConfig(include_thoughts=True),
            ),
        )
        async for chunk in stream:
            yield chunk_to_fragments(chunk)


def chunk_to_fragments(chunk: Any) -> list[Fragment]:
    """Convert one streamed response chunk into fragments.

    Only the first candidate is read. Parts without text (inline data,
    function calls) become empty fragments, which aggregation skips.
    """
    candidates = getattr(chunk, "candidates", None)
    if not candidates:
        return []

    content = getattr(candidates[0], "content", None)
    parts = getattr(content, "parts", None) if content is not None else None
    if not parts:
        return []

    return [
        Fragment(
            text=getattr(part, "text", None),
            is_thought=bool(getattr(part, "thought", False)),
        )
        for part in parts
    ]
