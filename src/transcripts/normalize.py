"""Helpers that collapse provider-specific payloads into one shape."""

import re
from typing import Any

from .schemas import TranscriptSegment

YOUTUBE_ID_PATTERN = re.compile(
    r"(?:youtube\.com/(?:[^/]+/.+/|(?:v|e(?:mbed)?|shorts|live)/|.*[?&]v=)|youtu\.be/)"
    r"([^\"&?/\s]{11})"
)

SEGMENT_LIST_KEYS = ("transcript", "transcripts", "items", "segments", "subtitles", "captions")
TEXT_KEYS = ("transcriptText", "transcript", "captionsText", "text")

PLACEHOLDER_TITLE = "Untitled"


def extract_video_id(url: str) -> str | None:
    """Extract the 11-character YouTube video id from a URL.

    Examples:
        >>> extract_video_id("https://youtu.be/dQw4w9WgXcQ")
        'dQw4w9WgXcQ'
        >>> extract_video_id("https://example.com/page") is None
        True
    """
    if not url:
        return None
    match = YOUTUBE_ID_PATTERN.search(url)
    return match.group(1) if match else None


def thumbnail_for(video_id: str | None) -> str:
    if not video_id:
        return ""
    return f"https://img.youtube.com/vi/{video_id}/maxresdefault.jpg"


def _to_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def normalize_segment(raw: Any) -> TranscriptSegment | None:
    """Convert one provider segment into a TranscriptSegment.

    Accepts plain strings and dicts using ``start``/``dur``/``duration``
    (seconds) or ``offset``/``duration`` (milliseconds, Supadata style).
    """
    if isinstance(raw, str):
        return TranscriptSegment(text=raw) if raw.strip() else None
    if not isinstance(raw, dict):
        return None

    text = raw.get("text") or raw.get("content") or ""
    if not isinstance(text, str) or not text.strip():
        return None

    if "offset" in raw:
        offset_ms = _to_float(raw.get("offset"))
        duration_ms = _to_float(raw.get("duration"))
        return TranscriptSegment(
            text=text.strip(),
            start_seconds=offset_ms / 1000 if offset_ms is not None else None,
            duration_seconds=duration_ms / 1000 if duration_ms is not None else None,
        )

    return TranscriptSegment(
        text=text.strip(),
        start_seconds=_to_float(raw.get("start", raw.get("startTime"))),
        duration_seconds=_to_float(raw.get("dur", raw.get("duration"))),
    )


def first_item(payload: Any) -> dict[str, Any] | None:
    """Return the first dataset item from a list or ``{"items": [...]}`` body."""
    if isinstance(payload, list):
        return payload[0] if payload and isinstance(payload[0], dict) else None
    if isinstance(payload, dict):
        items = payload.get("items")
        # {"items": [...]} is a dataset wrapper unless the entries are segments
        if (
            isinstance(items, list)
            and items
            and isinstance(items[0], dict)
            and "text" not in items[0]
        ):
            return items[0]
        return payload
    return None


def extract_segments(item: dict[str, Any]) -> list[TranscriptSegment]:
    for key in SEGMENT_LIST_KEYS:
        value = item.get(key)
        if isinstance(value, list):
            segments = [normalize_segment(raw) for raw in value]
            return [segment for segment in segments if segment is not None]
    return []


def extract_text(item: dict[str, Any], segments: list[TranscriptSegment]) -> str:
    for key in TEXT_KEYS:
        value = item.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return " ".join(segment.text for segment in segments).strip()


def extract_title(item: dict[str, Any]) -> str:
    for key in ("title", "videoTitle", "name"):
        value = item.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def extract_thumbnail(item: dict[str, Any]) -> str:
    for key in ("thumbnail", "thumbnailUrl", "thumbnail_url"):
        value = item.get(key)
        if isinstance(value, str) and value:
            return value
    best = item.get("bestThumbnail")
    if isinstance(best, dict) and isinstance(best.get("url"), str):
        return best["url"]
    thumbnails = item.get("thumbnails")
    if isinstance(thumbnails, list) and thumbnails:
        last = thumbnails[-1]
        if isinstance(last, dict) and isinstance(last.get("url"), str):
            return last["url"]
    return ""


def extract_chapters(item: dict[str, Any]) -> list[dict[str, Any]] | None:
    chapters = item.get("chapters")
    return chapters if isinstance(chapters, list) else None
