"""Aggregation of streamed generation output into progress labels and raw text."""

import re
from collections.abc import Callable, Iterable
from typing import Optional

import structlog

from app.models.schemas import Fragment

logger = structlog.get_logger()

# Bold markdown header, no nested markers
BOLD_PATTERN = re.compile(r"\*\*([^*]+)\*\*")

ProgressSink = Callable[[str], None]


class AggregatorClosedError(Exception):
    """Raised when an aggregator is used after it was finalized."""

    pass


def extract_progress_label(text: str) -> Optional[str]:
    """Return the last bold-marked header in ``text``, stripped.

    A blank header such as ``** **`` yields an empty label. Returns None when
    no bold-marked header has been closed yet.
    """
    matches = BOLD_PATTERN.findall(text)
    if not matches:
        return None
    return matches[-1].strip()


class StreamAggregator:
    """Splits a fragment stream into thought labels and artifact text.

    One instance serves exactly one generation call. Fragments must be fed in
    arrival order; ``finalize`` is called once after the stream is exhausted.
    An aggregator whose stream was abandoned is discarded, never finalized.
    """

    def __init__(self, on_progress: Optional[ProgressSink] = None):
        """Initialize an empty aggregator with an optional progress sink."""
        self.on_progress = on_progress
        self._thoughts: list[str] = []
        self._artifact: list[str] = []
        self._label: Optional[str] = None
        self._finalized = False
        self.thought_count = 0
        self.artifact_count = 0

    @property
    def label(self) -> Optional[str]:
        """Last progress label emitted, if any."""
        return self._label

    @property
    def finalized(self) -> bool:
        return self._finalized

    def consume(self, fragment: Fragment) -> None:
        """Route one fragment to the thought buffer or the artifact text.

        Errors raised by the progress sink propagate to the caller.
        """
        if self._finalized:
            raise AggregatorClosedError("Aggregator already finalized")

        if not fragment.text:
            return

        if fragment.is_thought:
            self.thought_count += 1
            self._thoughts.append(fragment.text)
            self._update_label()
        else:
            self.artifact_count += 1
            self._artifact.append(fragment.text)

    def consume_batch(self, fragments: Iterable[Fragment]) -> None:
        """Consume one batch of fragments in order."""
        for fragment in fragments:
            self.consume(fragment)

    def finalize(self) -> str:
        """Return the accumulated artifact text and close the aggregator."""
        if self._finalized:
            raise AggregatorClosedError("Aggregator already finalized")

        self._finalized = True
        raw = "".join(self._artifact)
        logger.info(
            "aggregation_finalized",
            thought_fragments=self.thought_count,
            artifact_fragments=self.artifact_count,
            artifact_chars=len(raw),
            last_label=self._label,
        )
        return raw

    def _update_label(self) -> None:
        # Rescan the whole buffer so headers split across fragments are found
        candidate = extract_progress_label("".join(self._thoughts))
        if candidate is None or candidate == self._label:
            return

        self._label = candidate
        logger.debug("progress_label_emitted", label=candidate)
        if self.on_progress is not None:
            self.on_progress(candidate)
