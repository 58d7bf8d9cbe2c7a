"""Storage service for analysis records and per-user preferences in Supabase."""

from datetime import UTC, datetime
from typing import Any

from supabase import Client

from src.utils.logging import get_logger

from .exceptions import PersistenceError
from .schemas import AnalysisRecord, RecordStatus, UserPreferences

logger = get_logger(__name__)

SUMMARY_COLUMNS = (
    "id, user_id, youtube_url, video_title, thumbnail_url, summary, status, created_at, updated_at"
)


class SummaryStore:
    """Service for the ``summaries`` table and the ``profiles`` preferences.

    A row is inserted as ``pending`` with an empty ``summary`` as soon as
    credits are taken. It moves to ``persisting`` once generation has
    finished and to ``completed`` when the result is written. Whoever
    deletes a row (the failing request or the staleness sweep) owns its
    refund.
    """

    def __init__(self, client: Client):
        self.client = client

    async def create_pending(
        self,
        record_id: str,
        user_id: str,
        source_url: str,
        title: str | None = None,
        thumbnail_url: str | None = None,
    ) -> AnalysisRecord:
        """Insert an in-progress row with an empty result.

        Raises:
            PersistenceError: If the insert fails.
        """
        now = datetime.now(UTC).isoformat()
        data = {
            "id": record_id,
            "user_id": user_id,
            "youtube_url": source_url,
            "video_title": title,
            "thumbnail_url": thumbnail_url,
            "summary": "",
            "status": RecordStatus.PENDING.value,
            "created_at": now,
            "updated_at": now,
        }
        try:
            self.client.table("summaries").insert(data).execute()
        except Exception as e:
            logger.exception("summary_create_failed", summary_id=record_id, user_id=user_id)
            raise PersistenceError(record_id, str(e)) from e

        logger.info("summary_created", summary_id=record_id, user_id=user_id)
        return AnalysisRecord(**data)

    async def update_metadata(self, record_id: str, title: str, thumbnail_url: str) -> None:
        """Record the acquired title and thumbnail. Failures are only logged."""
        try:
            self.client.table("summaries").update(
                {
                    "video_title": title,
                    "thumbnail_url": thumbnail_url,
                    "updated_at": datetime.now(UTC).isoformat(),
                }
            ).eq("id", record_id).execute()
        except Exception:
            logger.warning("summary_metadata_update_failed", summary_id=record_id, exc_info=True)

    async def _set(self, record_id: str, values: dict[str, Any], event: str) -> None:
        values = {**values, "updated_at": datetime.now(UTC).isoformat()}
        try:
            response = (
                self.client.table("summaries").update(values).eq("id", record_id).execute()
            )
        except Exception as e:
            logger.exception(f"{event}_failed", summary_id=record_id)
            raise PersistenceError(record_id, str(e)) from e

        if not response.data:
            raise PersistenceError(record_id, "row no longer exists")

    async def mark_persisting(self, record_id: str) -> None:
        """Flag a row whose result has been delivered; it is no longer refundable.

        Raises:
            PersistenceError: If the update fails or the row is gone.
        """
        await self._set(
            record_id, {"status": RecordStatus.PERSISTING.value}, "summary_mark_persisting"
        )

    async def complete(self, record_id: str, result_text: str) -> None:
        """Write the final result text and mark the row completed.

        An empty ``result_text`` is a valid completed result.

        Raises:
            PersistenceError: If the update fails or the row is gone.
        """
        await self._set(
            record_id,
            {"summary": result_text, "status": RecordStatus.COMPLETED.value},
            "summary_complete",
        )
        logger.info("summary_completed", summary_id=record_id, length=len(result_text))

    async def restore(self, record: AnalysisRecord) -> None:
        """Re-insert a pending row that was claimed but could not be refunded.

        Raises:
            PersistenceError: If the insert fails.
        """
        data = record.model_dump(mode="json")
        data.update(summary="", status=RecordStatus.PENDING.value)
        try:
            self.client.table("summaries").insert(data).execute()
        except Exception as e:
            logger.exception("summary_restore_failed", summary_id=record.id)
            raise PersistenceError(record.id, str(e)) from e

        logger.info("summary_restored", summary_id=record.id)

    async def delete(self, record_id: str) -> bool:
        """Delete a row. Returns True only if this call removed it.

        Raises:
            PersistenceError: If the delete fails.
        """
        try:
            response = self.client.table("summaries").delete().eq("id", record_id).execute()
        except Exception as e:
            logger.exception("summary_delete_failed", summary_id=record_id)
            raise PersistenceError(record_id, str(e)) from e

        removed = bool(response.data)
        logger.info("summary_deleted", summary_id=record_id, removed=removed)
        return removed

    async def list_history(self, user_id: str, limit: int = 50) -> list[AnalysisRecord]:
        """Completed records for a user, newest first. Pending rows are hidden."""
        response = (
            self.client.table("summaries")
            .select(SUMMARY_COLUMNS)
            .eq("user_id", user_id)
            .eq("status", RecordStatus.COMPLETED.value)
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return [AnalysisRecord(**row) for row in response.data or []]

    async def find_stale(self, older_than: datetime) -> list[AnalysisRecord]:
        """Rows never completed that were created before ``older_than``."""
        response = (
            self.client.table("summaries")
            .select(SUMMARY_COLUMNS)
            .neq("status", RecordStatus.COMPLETED.value)
            .lt("created_at", older_than.isoformat())
            .execute()
        )
        return [AnalysisRecord(**row) for row in response.data or []]

    async def get_preferences(self, user_id: str) -> UserPreferences:
        """Load the user's response language; defaults when unavailable."""
        try:
            response = (
                self.client.table("profiles")
                .select("response_language_preference")
                .eq("user_id", user_id)
                .execute()
            )
        except Exception:
            logger.warning("preferences_read_failed", user_id=user_id, exc_info=True)
            return UserPreferences(user_id=user_id)

        row: dict[str, Any] = response.data[0] if response.data else {}
        return UserPreferences(
            user_id=user_id,
            response_language=row.get("response_language_preference"),
        )
