"""Test doubles and sample payloads shared across test modules."""

import base64
from unittest.mock import AsyncMock

from app.models.schemas import Fragment

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-image"
IMAGE_DATA_URL = f"data:image/png;base64,{base64.b64encode(PNG_BYTES).decode('utf-8')}"

SCENE_HTML = (
    "<html><body><p>A cozy cabin</p><canvas></canvas>"
    "<script>const camera = new THREE.PerspectiveCamera(60, 1, 0.1, 100);"
    "camera.position.set(5, 5, 5);</script></body></html>"
)


class FakeLLM:
    """Stands in for ``app.utils.llm.LLM`` with scripted stream batches."""

    def __init__(self, settings, batches=None, error=None, fail_after=None):
        self.settings = settings
        self.batches = batches or []
        self.error = error
        self.fail_after = fail_after
        self.calls = []
        self.closed = False
        self.generate_image = AsyncMock(return_value=(PNG_BYTES, "image/png"))

    async def stream_fragments(self, image_bytes, mime_type, prompt):
        self.calls.append((image_bytes, mime_type, prompt))
        try:
            for index, batch in enumerate(self.batches):
                if self.fail_after is not None and index == self.fail_after:
                    raise self.error
                yield batch
            if self.error is not None and self.fail_after is None:
                raise self.error
        finally:
            self.closed = True


def scene_batches(html=SCENE_HTML):
    """Typical stream: thoughts with split headers, then the fenced answer."""
    return [
        [Fragment(text="**Analyzing the", is_thought=True)],
        [Fragment(text=" image**\nA small cabin in snow.", is_thought=True)],
        [
            Fragment(text="**Building voxels**", is_thought=True),
            Fragment(text="Here is your scene:\n```html\n"),
        ],
        [Fragment(text=html[:40]), Fragment(text=html[40:])],
        [Fragment(text="\n```\nEnjoy!"), Fragment()],
    ]
