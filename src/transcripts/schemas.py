"""Pydantic schemas for transcript acquisition."""

from typing import Any

from pydantic import BaseModel, Field


class TranscriptSegment(BaseModel):
    """Single transcript segment with optional timing.

    Providers disagree on timing fields (``start``/``dur``, ``offset``/
    ``duration``, milliseconds or seconds); everything is normalised to
    seconds.
    """

    text: str
    start_seconds: float | None = None
    duration_seconds: float | None = None


class VideoMetadata(BaseModel):
    """Title and thumbnail shown to the user before any content streams."""

    title: str
    thumbnail_url: str = ""
    author: str = ""
    video_id: str | None = None


class TranscriptBundle(BaseModel):
    """Everything acquisition produces for one URL.

    Not persisted. Consumed by the LLM stages and, for chat follow-ups,
    echoed back to the client.
    """

    source_url: str
    video_id: str | None = None
    title: str
    thumbnail_url: str = ""
    text: str
    segments: list[TranscriptSegment] = Field(default_factory=list)
    chapters: list[dict[str, Any]] | None = None
    source: str = "apify"

    @property
    def segment_count(self) -> int:
        """Approximate segment count used for tier pricing.

        Uses the provider's segments when present; otherwise counts
        non-empty lines, and for a single unbroken block estimates one
        segment per twelve words.
        """
        if self.segments:
            return len(self.segments)
        lines = [line for line in self.text.splitlines() if line.strip()]
        if len(lines) > 1:
            return len(lines)
        words = len(self.text.split())
        return max(1, -(-words // 12)) if words else 0

    @property
    def metadata(self) -> VideoMetadata:
        return VideoMetadata(
            title=self.title,
            thumbnail_url=self.thumbnail_url,
            video_id=self.video_id,
        )
