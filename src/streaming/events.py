"""Event records sent over the analysis stream.

Each record is one JSON object with a ``type`` discriminator. The union
``StreamEvent`` lists every kind the server can emit; decoding goes through
``EVENT_ADAPTER`` so an unknown ``type`` is rejected rather than guessed.
"""

from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, TypeAdapter

from src.transcripts.schemas import VideoMetadata


class StatusEvent(BaseModel):
    type: Literal["status"] = "status"
    message: str


class MetadataEvent(BaseModel):
    type: Literal["metadata"] = "metadata"
    video_metadata: VideoMetadata
    summary_id: str | None = None


class ContentEvent(BaseModel):
    """Token delta of a single-stage analysis."""

    type: Literal["content"] = "content"
    content: str


class VisionChunkEvent(BaseModel):
    type: Literal["vision_chunk"] = "vision_chunk"
    content: str


class MappingChunkEvent(BaseModel):
    type: Literal["mapping_chunk"] = "mapping_chunk"
    content: str


class ChatStartEvent(BaseModel):
    type: Literal["chat_start"] = "chat_start"


class ChatChunkEvent(BaseModel):
    type: Literal["chat_chunk"] = "chat_chunk"
    content: str


class ReadyForChatEvent(BaseModel):
    """Hands the transcript back so follow-up turns can resend it."""

    type: Literal["ready_for_chat"] = "ready_for_chat"
    transcript: str


class CompleteEvent(BaseModel):
    type: Literal["complete"] = "complete"
    summary_id: str | None = None
    credits_charged: str | None = None


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    error: str
    refunded: bool = False


StreamEvent = Annotated[
    StatusEvent
    | MetadataEvent
    | ContentEvent
    | VisionChunkEvent
    | MappingChunkEvent
    | ChatStartEvent
    | ChatChunkEvent
    | ReadyForChatEvent
    | CompleteEvent
    | ErrorEvent,
    Field(discriminator="type"),
]

EVENT_ADAPTER: TypeAdapter[Any] = TypeAdapter(StreamEvent)

TERMINAL_TYPES = frozenset({"complete", "error"})
CONTENT_TYPES = frozenset({"content", "vision_chunk", "mapping_chunk", "chat_chunk"})

# Which chunk event carries each pipeline stage's tokens
STAGE_EVENTS: dict[str, type[BaseModel]] = {
    "analysis": ContentEvent,
    "vision": VisionChunkEvent,
    "mapping": MappingChunkEvent,
    "chat": ChatChunkEvent,
}


def is_terminal(event: BaseModel) -> bool:
    return getattr(event, "type", None) in TERMINAL_TYPES


def chunk_event(stage: str, content: str) -> BaseModel:
    """Build the chunk event for a stage's token delta."""
    return STAGE_EVENTS[stage](content=content)
