"""Pydantic schemas shared by the orchestrator and the API."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field


class ChatTurn(BaseModel):
    """One conversation turn. The client keeps the history and resends it."""

    role: Literal["user", "assistant"]
    content: str


class UserPreferences(BaseModel):
    """Per-user settings passed explicitly into handlers."""

    user_id: str
    response_language: str | None = None


class RequestState(str, Enum):
    IDLE = "idle"
    ADMISSION_CHECK = "admission_check"
    DEBITED = "debited"
    ACQUIRING = "acquiring"
    GENERATING = "generating"
    PERSISTING = "persisting"
    COMPLETED = "completed"
    REFUNDING = "refunding"
    FAILED = "failed"


class RecordStatus(str, Enum):
    """Lifecycle of a ``summaries`` row, stored in its ``status`` column.

    Only ``PENDING`` rows are refundable: the request never reached the
    persisting step, so the user never received a finished result.
    """

    PENDING = "pending"
    PERSISTING = "persisting"
    COMPLETED = "completed"


class AnalysisRecord(BaseModel):
    """A row of the ``summaries`` table.

    ``summary == ""`` means the result is not available yet. Completion is
    tracked by ``status``, so an empty generated result is still a
    completed row.
    """

    id: str
    user_id: str
    youtube_url: str
    video_title: str | None = None
    thumbnail_url: str | None = None
    summary: str = ""
    status: RecordStatus = RecordStatus.PENDING
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == RecordStatus.PENDING


class SweepResult(BaseModel):
    """Outcome of one staleness sweep."""

    stale_rows: int = 0
    removed: int = 0
    refunded: int = 0
    credits_refunded: Decimal = Decimal("0")
    errors: list[str] = Field(default_factory=list)
