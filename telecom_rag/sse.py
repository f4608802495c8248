"""
Server-sent events: incremental decoder for provider chat streams and an
encoder for the frames sent to our own clients.

ChatStreamDecoder is transport-independent. Feed it raw bytes as they arrive
and it returns the events completed so far:

    decoder = ChatStreamDecoder()
    async for chunk in response.aiter_bytes():
        for event in decoder.feed(chunk):
            ...
    for event in decoder.close():
        ...

Reads may split UTF-8 sequences, lines and JSON payloads anywhere; incomplete
input stays buffered until the next feed().
"""
import codecs
import json
from dataclasses import dataclass

from telecom_rag.logging_config import get_logger

logger = get_logger(__name__)

DONE_MARKER = "[DONE]"


@dataclass(frozen=True)
class StreamEvent:
    kind: str  # "text" | "done"
    text: str = ""


class ChatStreamDecoder:
    """
    Decode an OpenAI-style chat completion stream into text deltas.

    Accepts SSE framing ("data: {...}" lines) as well as bare JSON lines.
    Emits exactly one "done" event: on the [DONE] marker, on
    finish_reason == "stop", or from close() at end of stream. Anything after
    the done event is ignored.
    """

    def __init__(self):
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.finished = False

    def feed(self, data: bytes) -> list[StreamEvent]:
        self._buffer += self._utf8.decode(data)
        events: list[StreamEvent] = []

        while not self.finished:
            newline = self._buffer.find("\n")
            if newline == -1:
                break
            line = self._buffer[:newline]
            self._buffer = self._buffer[newline + 1:]
            events.extend(self._process_line(line))

        return events

    def close(self) -> list[StreamEvent]:
        """Flush buffered input and emit the done event if not yet emitted."""
        events: list[StreamEvent] = []
        if not self.finished:
            self._buffer += self._utf8.decode(b"", final=True)
            remaining, self._buffer = self._buffer, ""
            for line in remaining.split("\n"):
                if self.finished:
                    break
                events.extend(self._process_line(line))
        if not self.finished:
            self.finished = True
            events.append(StreamEvent(kind="done"))
        return events

    def _process_line(self, line: str) -> list[StreamEvent]:
        line = line.strip()
        if not line or line.startswith(":"):
            return []

        if line.startswith("data:"):
            payload = line[5:].strip()
        elif line.startswith("{") or line == DONE_MARKER:
            payload = line
        else:
            # event:, id:, retry: and unknown fields carry no text
            return []

        if not payload:
            return []

        if payload == DONE_MARKER:
            self.finished = True
            return [StreamEvent(kind="done")]

        try:
            parsed = json.loads(payload)
        except json.JSONDecodeError:
            logger.warning(f"stream malformed_chunk | skipped | payload={payload[:120]!r}")
            return []

        return self._process_payload(parsed)

    def _process_payload(self, parsed) -> list[StreamEvent]:
        if parsed == DONE_MARKER:
            self.finished = True
            return [StreamEvent(kind="done")]
        if not isinstance(parsed, dict):
            return []

        events: list[StreamEvent] = []
        choices = parsed.get("choices")
        if not isinstance(choices, list):
            return events

        for choice in choices:
            if not isinstance(choice, dict):
                continue
            delta = choice.get("delta") or {}
            content = delta.get("content") if isinstance(delta, dict) else None
            if content:
                events.append(StreamEvent(kind="text", text=content))
            if choice.get("finish_reason") == "stop":
                self.finished = True
                events.append(StreamEvent(kind="done"))
                break
        return events


def format_sse(data: str, event: str | None = None) -> str:
    """
    Encode one SSE frame. Multi-line data is split across several data:
    lines, which clients join back with newlines.
    """
    lines = []
    if event:
        lines.append(f"event: {event}")
    for part in data.split("\n"):
        lines.append(f"data: {part}")
    return "\n".join(lines) + "\n\n"
