"""Newline-delimited JSON framing for analysis streams.

``EventStream`` is the server side: it serialises events and refuses to
emit anything after the terminal event. ``StreamDecoder`` is the reader
side: it reassembles records split across network reads and drops records
that do not decode.
"""

from collections.abc import AsyncIterator, Iterable

from pydantic import BaseModel, ValidationError

from src.pipeline.exceptions import TransportError
from src.utils.logging import get_logger

from .events import CONTENT_TYPES, EVENT_ADAPTER, TERMINAL_TYPES

logger = get_logger(__name__)

RECORD_DELIMITER = b"\n"
MEDIA_TYPE = "application/x-ndjson"


def encode_event(event: BaseModel) -> bytes:
    """Serialise one event as a single delimited record."""
    return event.model_dump_json().encode("utf-8") + RECORD_DELIMITER


class EventStream:
    """Ordered, single-terminal event encoder for one request."""

    def __init__(self, request_id: str):
        self.request_id = request_id
        self.terminal_type: str | None = None
        self.content_started = False
        self.events_sent = 0

    @property
    def closed(self) -> bool:
        return self.terminal_type is not None

    def emit(self, event: BaseModel) -> bytes:
        """Encode ``event`` after checking stream ordering.

        Raises:
            TransportError: If the stream already ended, or metadata is sent
                after content has started.
        """
        event_type = getattr(event, "type", None)
        if self.closed:
            raise TransportError(
                f"cannot emit {event_type} after {self.terminal_type} on {self.request_id}"
            )
        if event_type == "metadata" and self.content_started:
            raise TransportError("metadata must precede content")

        if event_type in CONTENT_TYPES:
            self.content_started = True
        if event_type in TERMINAL_TYPES:
            self.terminal_type = event_type

        self.events_sent += 1
        return encode_event(event)


class StreamDecoder:
    """Incremental reader for an NDJSON event stream.

    Feed raw bytes as they arrive; complete records are decoded and
    returned, a trailing partial record stays buffered until the next feed.
    """

    def __init__(self) -> None:
        self._buffer = b""
        self.discarded = 0

    def feed(self, data: bytes) -> list[BaseModel]:
        self._buffer += data
        *records, self._buffer = self._buffer.split(RECORD_DELIMITER)
        return self._decode_all(records)

    def flush(self) -> list[BaseModel]:
        """Decode whatever is left once the stream has ended."""
        remainder, self._buffer = self._buffer, b""
        return self._decode_all([remainder])

    def _decode_all(self, records: Iterable[bytes]) -> list[BaseModel]:
        events = []
        for record in records:
            if not record.strip():
                continue
            event = self._decode(record)
            if event is not None:
                events.append(event)
        return events

    def _decode(self, record: bytes) -> BaseModel | None:
        try:
            return EVENT_ADAPTER.validate_json(record)
        except ValidationError:
            self.discarded += 1
            logger.debug("stream_record_discarded", record_preview=record[:200])
            return None


async def decode_stream(chunks: AsyncIterator[bytes]) -> AsyncIterator[BaseModel]:
    """Yield decoded events from an async iterator of raw byte chunks."""
    decoder = StreamDecoder()
    async for chunk in chunks:
        for event in decoder.feed(chunk):
            yield event
    for event in decoder.flush():
        yield event
