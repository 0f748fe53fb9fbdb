"""Incremental narrative delivery.

A stream source is any async iterator of :data:`StreamEvent`. The networked
backend builds one from a server-sent event body; the simulator builds one from
a locally generated narrative. :class:`NarrativeStream` wraps either source in
the same session semantics:

* the producer starts immediately; the stream object doubles as the
  cancellation handle and exists before the first byte arrives;
* exactly one terminal event (:class:`StreamCompleted` or
  :class:`StreamFailed`) is delivered, and nothing after it;
* :meth:`NarrativeStream.cancel` aborts the transport, discards anything not
  yet delivered and completes with ``user_cancelled``. It is idempotent and a
  no-op once the stream has finished.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, List, Optional, Union

import structlog

from therapynotes.errors import ApiError
from therapynotes.observability import STREAM_MALFORMED_EVENTS_TOTAL, STREAM_SESSIONS_TOTAL

logger = structlog.get_logger(__name__)

END_TURN = "end_turn"
USER_CANCELLED = "user_cancelled"

EVENT_DELIMITER = "\n\n"
DATA_PREFIX = "data:"


@dataclass(frozen=True)
class TextChunk:
    text: str


@dataclass(frozen=True)
class StreamCompleted:
    stop_reason: str = END_TURN


@dataclass(frozen=True)
class StreamFailed:
    message: str
    status: Optional[int] = None
    error: Optional[ApiError] = field(default=None, compare=False, repr=False)

    def as_error(self) -> ApiError:
        """The exception that ended the stream, or a generic one built from the event."""

        return self.error if self.error is not None else ApiError(self.message, self.status or 502)


StreamEvent = Union[TextChunk, StreamCompleted, StreamFailed]
TERMINAL_EVENTS = (StreamCompleted, StreamFailed)


class MalformedEventError(ValueError):
    """Raised for an event block that is not one of the three wire shapes."""


def parse_event(block: str) -> Optional[StreamEvent]:
    """Decode one delimited event block.

    Returns ``None`` for blocks without a ``data:`` line (comments, keep-alives)
    and for empty text chunks.
    """

    payload: Optional[str] = None
    for line in block.split("\n"):
        if line.startswith(DATA_PREFIX):
            payload = line[len(DATA_PREFIX):]
            if payload.startswith(" "):
                payload = payload[1:]
            break
    if payload is None:
        return None
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise MalformedEventError(f"invalid JSON payload: {exc}") from exc
    if not isinstance(data, dict):
        raise MalformedEventError("event payload is not an object")

    if "text" in data:
        text = data["text"]
        if not isinstance(text, str):
            raise MalformedEventError("text event carries a non-string value")
        return TextChunk(text) if text else None
    if data.get("done"):
        return StreamCompleted(str(data.get("stopReason") or END_TURN))
    if "error" in data:
        return StreamFailed(str(data["error"] or "Narrative generation failed"))
    raise MalformedEventError(f"unrecognised event keys: {sorted(data)}")


class SSEDecoder:
    """Splits a growing text buffer into events on the blank-line delimiter."""

    def __init__(self) -> None:
        self._buffer = ""

    @property
    def pending(self) -> str:
        return self._buffer

    def feed(self, text: str) -> List[StreamEvent]:
        self._buffer = (self._buffer + text).replace("\r\n", "\n")
        *blocks, self._buffer = self._buffer.split(EVENT_DELIMITER)
        return self._decode_all(blocks)

    def flush(self) -> List[StreamEvent]:
        """Give any undelimited remainder one final parse attempt."""

        remainder, self._buffer = self._buffer, ""
        if not remainder.strip():
            return []
        return self._decode_all([remainder])

    def _decode_all(self, blocks: List[str]) -> List[StreamEvent]:
        events: List[StreamEvent] = []
        for block in blocks:
            if not block.strip():
                continue
            try:
                event = parse_event(block)
            except MalformedEventError as exc:
                STREAM_MALFORMED_EVENTS_TOTAL.inc()
                logger.warning("stream_event_malformed", error=str(exc), size=len(block))
                continue
            if event is not None:
                events.append(event)
        return events


class _Signal:
    def __init__(self, name: str) -> None:
        self.name = name

    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return f"<{self.name}>"


_CANCELLED = _Signal("cancelled")
_EXHAUSTED = _Signal("exhausted")


class NarrativeStream:
    """A cancellable session over a stream source; iterate it for events."""

    def __init__(self, source: AsyncIterator[StreamEvent], *, mode: str = "simulated") -> None:
        self.mode = mode
        self.stop_reason: Optional[str] = None
        self.error: Optional[str] = None
        self._source = source
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue()
        self._cancel_requested = False
        self._finished = False
        self._producer = asyncio.get_running_loop().create_task(self._produce())

    @property
    def cancelled(self) -> bool:
        return self.stop_reason == USER_CANCELLED

    @property
    def finished(self) -> bool:
        return self._finished

    def cancel(self) -> None:
        if self._finished or self._cancel_requested:
            return
        self._cancel_requested = True
        logger.info("stream_cancel_requested", mode=self.mode)
        self._queue.put_nowait(_CANCELLED)
        if not self._producer.done():
            self._producer.cancel()

    async def _produce(self) -> None:
        try:
            async for event in self._source:
                self._queue.put_nowait(event)
                if isinstance(event, TERMINAL_EVENTS):
                    return
            self._queue.put_nowait(_EXHAUSTED)
        except asyncio.CancelledError:
            if not self._cancel_requested:
                raise
        except ApiError as exc:
            self._queue.put_nowait(StreamFailed(exc.message, exc.status, exc))
        except Exception as exc:
            logger.error("stream_source_failed", mode=self.mode, error=str(exc))
            self._queue.put_nowait(StreamFailed(str(exc) or exc.__class__.__name__))
        finally:
            aclose = getattr(self._source, "aclose", None)
            if aclose is not None:
                await aclose()

    def __aiter__(self) -> "NarrativeStream":
        return self

    async def __anext__(self) -> StreamEvent:
        if self._finished:
            raise StopAsyncIteration
        if self._cancel_requested:
            return self._terminate(StreamCompleted(USER_CANCELLED))
        item = await self._queue.get()
        if self._cancel_requested or item is _CANCELLED:
            return self._terminate(StreamCompleted(USER_CANCELLED))
        if item is _EXHAUSTED:
            logger.warning("stream_closed_without_terminal_event", mode=self.mode)
            return self._terminate(StreamCompleted(END_TURN))
        if isinstance(item, TERMINAL_EVENTS):
            return self._terminate(item)
        return item

    def _terminate(self, event: StreamEvent) -> StreamEvent:
        self._finished = True
        if isinstance(event, StreamCompleted):
            self.stop_reason = event.stop_reason
            outcome = "cancelled" if event.stop_reason == USER_CANCELLED else "completed"
        else:
            self.error = event.message  # type: ignore[union-attr]
            outcome = "errored"
        STREAM_SESSIONS_TOTAL.labels(mode=self.mode, outcome=outcome).inc()
        logger.info("stream_finished", mode=self.mode, outcome=outcome, stop_reason=self.stop_reason)
        if not self._producer.done():
            self._producer.cancel()
        return event

    async def collect(self) -> str:
        """Drain the stream and return the concatenated text."""

        parts: List[str] = []
        async for event in self:
            if isinstance(event, TextChunk):
                parts.append(event.text)
        return "".join(parts)


ChunkCallback = Callable[[str], None]
CompleteCallback = Callable[[str], None]
ErrorCallback = Callable[[ApiError], None]


class StreamHandle:
    """Returned by the callback-style API; ``abort()`` cancels the stream."""

    def __init__(self, stream: NarrativeStream, task: "asyncio.Task[None]") -> None:
        self.stream = stream
        self._task = task

    def abort(self) -> None:
        self.stream.cancel()

    @property
    def done(self) -> bool:
        return self._task.done()

    async def wait(self) -> None:
        await self._task


def deliver_to_callbacks(
    stream: NarrativeStream,
    on_chunk: ChunkCallback,
    on_complete: CompleteCallback,
    on_error: ErrorCallback,
) -> StreamHandle:
    """Dispatch *stream* events to the three callbacks from a detached task."""

    async def pump() -> None:
        try:
            async for event in stream:
                if isinstance(event, TextChunk):
                    on_chunk(event.text)
                elif isinstance(event, StreamCompleted):
                    on_complete(event.stop_reason)
                else:
                    on_error(event.as_error())
        finally:
            stream.cancel()

    task = asyncio.get_running_loop().create_task(pump())
    return StreamHandle(stream, task)


__all__ = [
    "END_TURN",
    "USER_CANCELLED",
    "MalformedEventError",
    "NarrativeStream",
    "SSEDecoder",
    "StreamCompleted",
    "StreamEvent",
    "StreamFailed",
    "StreamHandle",
    "TERMINAL_EVENTS",
    "TextChunk",
    "deliver_to_callbacks",
    "parse_event",
]
