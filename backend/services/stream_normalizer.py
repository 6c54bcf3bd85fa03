# SSE stream normalization
# services/stream_normalizer.py
"""
Turns a provider's raw SSE byte stream into the canonical event stream.

Callers only ever see ``data: {"content": "..."}`` events followed by a
single ``data: [DONE]`` sentinel, whichever upstream answered. The
normalizer holds at most one partial line; flow control is left to the
async iterator feeding it, so a slow consumer slows the upstream read.
"""

import codecs
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, List, Optional
import structlog

from providers.base import ProviderAdapter
from services.token_estimator import estimate_tokens


logger = structlog.get_logger()

DONE_EVENT = b"data: [DONE]\n\n"


def format_event(payload: Dict[str, Any]) -> bytes:
    """Render one canonical SSE event"""
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n".encode("utf-8")


class StreamPhase(str, Enum):
    BUFFERING = "buffering"
    LINE_READY = "line_ready"
    CLOSED = "closed"


@dataclass
class NormalizerState:
    """Mutable state of one normalization pass"""
    buffer: str = ""
    full_content: str = ""
    phase: StreamPhase = StreamPhase.BUFFERING
    fragments: int = 0
    lines_seen: int = 0
    done_emitted: bool = False


class StreamNormalizer:
    """
    Line-buffering transform driven by one provider adapter.

    ``on_complete`` fires exactly once, with the estimated output-token
    count, when the provider signals completion or the upstream ends.
    """

    def __init__(
        self,
        adapter: ProviderAdapter,
        on_complete: Optional[Callable[[int], None]] = None
    ):
        self.adapter = adapter
        self.on_complete = on_complete
        self.state = NormalizerState()
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    @property
    def closed(self) -> bool:
        return self.state.phase is StreamPhase.CLOSED

    @property
    def output_tokens(self) -> int:
        return estimate_tokens(self.state.full_content)

    def feed(self, chunk: bytes) -> List[bytes]:
        """Consume one upstream chunk and return the events it completes"""

        if self.closed:
            return []

        self.state.buffer += self._decoder.decode(chunk)
        lines = self.state.buffer.split("\n")
        self.state.buffer = lines.pop()

        events: List[bytes] = []
        for line in lines:
            self.state.phase = StreamPhase.LINE_READY
            events.extend(self._dispatch(line))
            if self.closed:
                break

        if not self.closed:
            self.state.phase = StreamPhase.BUFFERING
        return events

    def finish(self) -> List[bytes]:
        """Flush the partial line and close, if the provider never said done"""

        if self.closed:
            return []

        self.state.buffer += self._decoder.decode(b"", final=True)
        tail, self.state.buffer = self.state.buffer, ""

        events: List[bytes] = []
        if tail.strip():
            self.state.phase = StreamPhase.LINE_READY
            events.extend(self._dispatch(tail))

        if not self.closed:
            events.extend(self._close())
        return events

    async def normalize(self, source: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
        """Relay ``source`` as canonical events, stopping once closed"""

        async for chunk in source:
            for event in self.feed(chunk):
                yield event
            if self.closed:
                break

        for event in self.finish():
            yield event

    def _dispatch(self, line: str) -> List[bytes]:
        line = line.rstrip("\r")
        if not line.strip() or line.startswith(":"):
            return []

        self.state.lines_seen += 1
        chunk = self.adapter.parse_stream_line(line)

        events: List[bytes] = []
        if chunk.content:
            self.state.full_content += chunk.content
            self.state.fragments += 1
            events.append(format_event({"content": chunk.content}))
        if chunk.done:
            events.extend(self._close())
        return events

    def _close(self) -> List[bytes]:
        self.state.phase = StreamPhase.CLOSED
        self.state.buffer = ""
        self.state.done_emitted = True

        output_tokens = self.output_tokens
        logger.debug("Stream closed",
                     provider=self.adapter.name,
                     fragments=self.state.fragments,
                     output_tokens=output_tokens)

        if self.on_complete is not None:
            self.on_complete(output_tokens)
        return [DONE_EVENT]
