"""Server-Sent-Events messages for the research chat stream.

The producer side builds ``{"data": <json>}`` messages that
``EventSourceResponse`` frames as ``data: <json>\\n\\n``; the stream is
closed with ``data: [DONE]``. Each JSON payload carries a ``type`` tag.
The consumer side (:class:`SSELineParser`, :func:`collect_streamed_content`)
reads that wire format back and ignores tags and comment lines it does
not know.
"""

from __future__ import annotations

import codecs
import json
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Union

from rebar_agentic.services.errors import ChatStreamError

logger = logging.getLogger(__name__)

DONE_MESSAGE = {"data": "[DONE]"}

# Informational events a client may display but that carry no answer text.
INFO_EVENT_TYPES = frozenset(
    {"meta", "acknowledgment", "content_extraction", "accounts_added", "ping", "timeout", "done", "debug_prompt"}
)

Chunk = Union[str, bytes]


def event_message(payload: Dict[str, Any]) -> Dict[str, str]:
    return {"data": json.dumps(payload, default=str)}


class _Decoder:
    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def __call__(self, chunk: Chunk) -> str:
        if isinstance(chunk, bytes):
            return self._decoder.decode(chunk)
        return chunk


class SSELineParser:
    """Buffered ``data:`` line reader.

    ``feed`` returns the JSON payloads completed by ``chunk``; a trailing
    partial line stays buffered until the next call.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self._decode = _Decoder()
        self.done = False

    def feed(self, chunk: Chunk) -> List[Dict[str, Any]]:
        self._buffer += self._decode(chunk)
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        return [p for p in (self._parse_line(line) for line in lines) if p is not None]

    def flush(self) -> List[Dict[str, Any]]:
        rest, self._buffer = self._buffer, ""
        payload = self._parse_line(rest)
        return [payload] if payload is not None else []

    def _parse_line(self, line: str) -> Optional[Dict[str, Any]]:
        line = line.rstrip("\r")
        if not line.startswith("data: "):
            return None
        data = line[len("data: "):].strip()
        if not data:
            return None
        if data == "[DONE]":
            self.done = True
            return None
        try:
            payload = json.loads(data)
        except ValueError:
            logger.warning("Dropping malformed SSE payload: %s", data[:200])
            return None
        return payload if isinstance(payload, dict) else None


@dataclass
class WebSearchEvent:
    query: str
    sources: List[str] = field(default_factory=list)


@dataclass
class ChatStreamAccumulator:
    """Folds chat stream payloads into the final answer and its side channels."""

    content: str = ""
    reasoning: str = ""
    reasoning_progress: str = ""
    web_searches: List[WebSearchEvent] = field(default_factory=list)
    total_tokens: Optional[int] = None
    response_id: Optional[str] = None
    accounts_added: List[str] = field(default_factory=list)
    timed_out: bool = False
    started_at: float = field(default_factory=time.monotonic)
    first_delta_at: Optional[float] = None

    def _mark_first_delta(self) -> None:
        if self.first_delta_at is None:
            self.first_delta_at = time.monotonic()

    def apply(self, payload: Dict[str, Any]) -> None:
        kind = payload.get("type")
        if kind == "content" or kind == "response.output_text.delta":
            delta = payload.get("content") if kind == "content" else payload.get("delta")
            if isinstance(delta, str) and delta:
                self._mark_first_delta()
                self.content += delta
        elif kind == "reasoning":
            text = payload.get("content")
            if isinstance(text, str) and text:
                self._mark_first_delta()
                self.reasoning += text
        elif kind == "reasoning_progress":
            self.reasoning_progress = str(payload.get("content") or "")
        elif kind == "web_search":
            self._merge_search(str(payload.get("query") or ""), payload.get("sources") or [])
        elif kind == "response.completed":
            usage = (payload.get("response") or {}).get("usage") or {}
            self._record_tokens(usage.get("total_tokens"))
        elif kind == "response":
            self._record_tokens((payload.get("usage") or {}).get("total_tokens"))
        elif kind == "done":
            self.response_id = payload.get("response_id") or self.response_id
        elif kind == "accounts_added":
            companies = payload.get("companies") or []
            self.accounts_added.extend(str(c) for c in companies)
        elif kind == "timeout":
            self.timed_out = True
        elif kind == "error":
            raise ChatStreamError(str(payload.get("error") or payload.get("message") or "Chat stream error"))
        elif kind not in INFO_EVENT_TYPES:
            logger.debug("Ignoring unknown SSE event type %r", kind)

    def _merge_search(self, query: str, sources: List[Any]) -> None:
        urls = [str(s.get("url") if isinstance(s, dict) else s) for s in sources if s]
        for event in self.web_searches:
            if event.query == query:
                event.sources = urls or event.sources
                return
        self.web_searches.append(WebSearchEvent(query=query, sources=urls))

    def _record_tokens(self, value: Any) -> None:
        if isinstance(value, (int, float)):
            self.total_tokens = int(value)

    @property
    def credits_used(self) -> int:
        return math.ceil(self.total_tokens / 1000) if self.total_tokens else 0

    @property
    def time_to_first_delta(self) -> Optional[float]:
        if self.first_delta_at is None:
            return None
        return self.first_delta_at - self.started_at


def accumulate_stream(chunks: Iterable[Chunk]) -> ChatStreamAccumulator:
    parser = SSELineParser()
    acc = ChatStreamAccumulator()
    for chunk in chunks:
        for payload in parser.feed(chunk):
            acc.apply(payload)
        if parser.done:
            return acc
    for payload in parser.flush():
        acc.apply(payload)
    return acc


def collect_streamed_content(chunks: Iterable[Chunk], subject: str) -> str:
    """Aggregate ``content`` events of a chat stream, stopping at ``[DONE]``.

    Events are separated by blank lines. An ``error`` event raises
    :class:`ChatStreamError`.
    """

    decode = _Decoder()
    buffer = ""
    aggregated = ""
    for chunk in chunks:
        buffer += decode(chunk)
        while "\n\n" in buffer:
            raw_event, buffer = buffer.split("\n\n", 1)
            raw_event = raw_event.strip()
            if not raw_event:
                continue
            if raw_event in ("data: [DONE]", "[DONE]"):
                return aggregated.strip()
            if not raw_event.startswith("data:"):
                continue
            data = raw_event[len("data:"):].strip()
            if not data or data == "[DONE]":
                return aggregated.strip()
            try:
                parsed = json.loads(data)
            except ValueError:
                logger.error("Failed to parse chat SSE payload for %s: %s", subject, data[:200])
                continue
            if not isinstance(parsed, dict):
                continue
            if parsed.get("type") == "content" and isinstance(parsed.get("content"), str):
                aggregated += parsed["content"]
            elif parsed.get("type") == "error":
                raise ChatStreamError(parsed.get("error") or f"Chat endpoint returned an error for {subject}")
    return aggregated.strip()
