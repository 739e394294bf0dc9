"""Pydantic request/response models for API endpoints."""

from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, Field

SESSION_ID_PATTERN = r"^[A-Za-z0-9_-]{1,64}$"

ASPECT_RATIOS = ["1:1", "3:4", "4:3", "16:9", "9:16"]

SAMPLE_PROMPTS = [
    "A tree house under the sea",
    "A cyberpunk street food stall",
    "An ancient temple floating in the sky",
    "A cozy winter cabin with smoke",
    "A futuristic mars rover",
    "A dragon guarding gold",
]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "healthy"
    version: str = "1.0.0"


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
    error_code: Optional[str] = None


class Fragment(BaseModel):
    """One unit of streamed content from a generation call.

    ``is_thought`` tags reasoning/progress commentary; everything else is
    artifact text. A fragment without text carries nothing to aggregate.
    """

    text: Optional[str] = None
    is_thought: Optional[bool] = None


class SamplePromptsResponse(BaseModel):
    """Prompt suggestions and supported aspect ratios."""

    prompts: list[str] = Field(default_factory=lambda: list(SAMPLE_PROMPTS))
    aspect_ratios: list[str] = Field(default_factory=lambda: list(ASPECT_RATIOS))


class ImageRequest(BaseModel):
    """Request body for image generation."""

    prompt: str = Field(description="Subject of the image")
    aspect_ratio: str = Field(default="1:1", description="One of the supported aspect ratios")
    optimize: bool = Field(
        default=True, description="Wrap the subject in the isolated-object instruction"
    )
    session_id: Optional[str] = Field(
        default=None,
        pattern=SESSION_ID_PATTERN,
        description="Store the image as this session's user content",
    )


class ImageResponse(BaseModel):
    """Generated image as a data URL."""

    image: str
    prompt_used: str


class UploadResponse(BaseModel):
    """Uploaded image converted to a data URL."""

    image: str
    mime_type: str
    size_bytes: int


class SceneRequest(BaseModel):
    """Request body for voxel scene generation."""

    image: str = Field(description="Source image as a data URL or bare base64")
    session_id: Optional[str] = Field(
        default=None,
        pattern=SESSION_ID_PATTERN,
        description="Attach the scene to this session's user content",
    )


class SceneResponse(BaseModel):
    """Generated embeddable document plus the progress labels seen on the way."""

    html: str
    labels: list[str] = Field(default_factory=list)


class SceneEvent(BaseModel):
    """One server-sent event of a streamed scene generation."""

    event: Literal["progress", "complete", "error"]
    label: Optional[str] = None
    html: Optional[str] = None
    detail: Optional[str] = None
    error_code: Optional[str] = None

    def to_sse(self) -> str:
        """Render the event in text/event-stream framing."""
        data = self.model_dump_json(exclude_none=True, exclude={"event"})
        return f"event: {self.event}\ndata: {data}\n\n"


class ExtractRequest(BaseModel):
    """Raw model output to turn into an embeddable document."""

    text: str


class Example(BaseModel):
    """A bundled example: source image and its pre-generated scene."""

    index: int
    img: str
    html: str


class UserContent(BaseModel):
    """A session's own work, kept apart from the examples."""

    image: str
    voxel: Optional[str] = None
    prompt: str = ""
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
