"""Transcript acquisition via Apify actors, Supadata and YouTube oEmbed."""

import asyncio
from typing import Any

import httpx
from supadata import Supadata

from src.pipeline.config import PipelineConfig
from src.pipeline.exceptions import (
    ConfigurationError,
    TranscriptProviderError,
    TranscriptUnavailableError,
)
from src.utils.logging import get_logger

from .normalize import (
    PLACEHOLDER_TITLE,
    extract_chapters,
    extract_segments,
    extract_text,
    extract_thumbnail,
    extract_title,
    extract_video_id,
    first_item,
    thumbnail_for,
)
from .schemas import TranscriptBundle, TranscriptSegment, VideoMetadata

logger = get_logger(__name__)

SUCCEEDED = "SUCCEEDED"
TERMINAL_FAILURES = frozenset({"FAILED", "ABORTING", "ABORTED", "TIMED-OUT", "TIMED_OUT"})

OEMBED_URL = "https://www.youtube.com/oembed"


class TranscriptStrategy:
    SYNC = "sync"
    JOB = "job"
    SUPADATA = "supadata"


class TranscriptService:
    """Resolve a video URL into a TranscriptBundle.

    Two Apify strategies are supported: the synchronous
    ``run-sync-get-dataset-items`` endpoint of the transcript actor, and an
    asynchronous run of the full scraper actor that is polled until it
    finishes. Supadata can replace the synchronous strategy. Missing titles
    and thumbnails fall back to oEmbed, then to placeholders.
    """

    def __init__(self, config: PipelineConfig, http_client: httpx.AsyncClient):
        """Initialize transcript service with configuration.

        Args:
            config: Pipeline configuration with provider credentials.
            http_client: Shared async HTTP client.
        """
        self.config = config
        self.http_client = http_client
        self._supadata: Supadata | None = None
        logger.info(
            "transcript_service_initialized",
            provider=config.transcript_provider,
            apify_key_present=bool(config.apify_api_key),
            supadata_key_present=bool(config.supadata_api_key),
        )

    @property
    def supadata(self) -> Supadata:
        if self._supadata is None:
            if not self.config.supadata_api_key:
                raise ConfigurationError("SUPADATA_API_KEY")
            self._supadata = Supadata(api_key=self.config.supadata_api_key)
        return self._supadata

    def default_strategy(self) -> str:
        if self.config.transcript_provider == "supadata":
            return TranscriptStrategy.SUPADATA
        return TranscriptStrategy.SYNC

    async def fetch_transcript(
        self, url: str, strategy: str | None = None
    ) -> TranscriptBundle:
        """Fetch transcript and metadata for a URL.

        Args:
            url: Video URL.
            strategy: One of TranscriptStrategy; defaults to the configured
                provider's synchronous strategy.

        Returns:
            Normalised TranscriptBundle.

        Raises:
            TranscriptUnavailableError: The video has no transcript.
            TranscriptProviderError: The provider failed.
        """
        strategy = strategy or self.default_strategy()
        logger.info("fetching_transcript", url=url, strategy=strategy)

        if strategy == TranscriptStrategy.SUPADATA:
            bundle = await self._fetch_supadata(url)
        elif strategy == TranscriptStrategy.JOB:
            item = await self._run_scraper_job(url)
            bundle = await self._build_bundle(url, item, source="apify-job")
        else:
            item = await self._run_sync_scrape(url)
            bundle = await self._build_bundle(url, item, source="apify")

        logger.info(
            "transcript_fetched",
            url=url,
            strategy=strategy,
            segments=bundle.segment_count,
            chars=len(bundle.text),
        )
        return bundle

    async def fetch_raw(self, url: str) -> dict[str, Any]:
        """Return the synchronous scrape item without normalising metadata."""
        item = await self._run_sync_scrape(url)
        segments = extract_segments(item)
        return {
            "transcript_text": extract_text(item, segments),
            "segments": [segment.model_dump() for segment in segments],
            "chapters": extract_chapters(item),
        }

    # ------------------------------------------------------------------
    # Apify
    # ------------------------------------------------------------------

    def _apify_token(self) -> str:
        if not self.config.apify_api_key:
            raise ConfigurationError("APIFY_API_KEY")
        return self.config.apify_api_key

    async def _run_sync_scrape(self, url: str) -> dict[str, Any]:
        token = self._apify_token()
        endpoint = (
            f"{self.config.apify_base_url}/acts/"
            f"{self.config.apify_transcript_actor}/run-sync-get-dataset-items"
        )
        try:
            response = await self.http_client.post(
                endpoint,
                params={"token": token},
                json={"url": url, "videoUrl": url, "videoUrls": [url], "startUrls": [url]},
                timeout=self.config.http_timeout_seconds,
            )
        except httpx.HTTPError as e:
            logger.exception("apify_sync_request_failed", url=url)
            raise TranscriptProviderError(f"Transcript provider unreachable: {e}", url) from e

        if response.status_code >= 400:
            logger.error(
                "apify_sync_error",
                url=url,
                status_code=response.status_code,
                response_text=response.text[:500],
            )
            raise TranscriptProviderError(
                f"Transcript provider returned {response.status_code}", url
            )

        try:
            payload = response.json()
        except ValueError as e:
            logger.exception("apify_sync_invalid_response", url=url)
            raise TranscriptProviderError("Transcript provider returned invalid JSON", url) from e

        item = first_item(payload)
        if not item:
            logger.warning("apify_sync_empty", url=url)
            raise TranscriptUnavailableError(
                "No transcript or captions available for this video.", url
            )
        return item

    async def _run_scraper_job(self, url: str) -> dict[str, Any]:
        token = self._apify_token()
        base = self.config.apify_base_url

        try:
            start = await self.http_client.post(
                f"{base}/acts/{self.config.apify_scraper_actor}/runs",
                params={"token": token},
                json={
                    "startUrls": [{"url": url}],
                    "maxResults": 1,
                    "includeTranscript": True,
                    "addRawCaptions": True,
                    "proxy": {"useApifyProxy": True},
                },
                timeout=self.config.http_timeout_seconds,
            )
            run = start.json().get("data") or {}
        except (httpx.HTTPError, ValueError) as e:
            logger.exception("apify_job_start_failed", url=url)
            raise TranscriptProviderError(f"Failed to start scraper run: {e}", url) from e

        run_id = run.get("id")
        if not run_id:
            raise TranscriptProviderError("Failed to start scraper run", url)

        logger.info("apify_job_started", url=url, run_id=run_id)
        run = await self._poll_run(run_id, run, url)

        dataset_id = run.get("defaultDatasetId")
        items_url = (
            f"{base}/datasets/{dataset_id}/items" if dataset_id else run.get("itemsUrl")
        )
        if not items_url:
            raise TranscriptProviderError("Scraper run has no dataset", url)

        try:
            items_response = await self.http_client.get(
                items_url,
                params={"token": token},
                timeout=self.config.http_timeout_seconds,
            )
            payload = items_response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.exception("apify_dataset_fetch_failed", url=url, run_id=run_id)
            raise TranscriptProviderError(f"Failed to read scraper results: {e}", url) from e

        item = first_item(payload)
        if not item:
            raise TranscriptUnavailableError("No data returned for this video.", url)
        return item

    async def _poll_run(
        self, run_id: str, run: dict[str, Any], url: str
    ) -> dict[str, Any]:
        """Poll an actor run until it succeeds, fails, or attempts run out."""
        endpoint = f"{self.config.apify_base_url}/actor-runs/{run_id}"

        for attempt in range(self.config.max_poll_attempts):
            try:
                response = await self.http_client.get(
                    endpoint,
                    params={"token": self._apify_token()},
                    timeout=self.config.http_timeout_seconds,
                )
                run = response.json().get("data") or run
            except (httpx.HTTPError, ValueError):
                # A single failed poll is not fatal; the attempt budget bounds it
                logger.warning("apify_poll_failed", run_id=run_id, attempt=attempt + 1)
                await asyncio.sleep(self.config.poll_interval_seconds)
                continue

            status = run.get("status")
            if status == SUCCEEDED:
                logger.info("apify_job_succeeded", run_id=run_id, attempts=attempt + 1)
                return run
            if status in TERMINAL_FAILURES:
                logger.error("apify_job_failed", run_id=run_id, status=status)
                raise TranscriptProviderError(f"Scraper run failed: {status}", url)

            await asyncio.sleep(self.config.poll_interval_seconds)

        logger.error(
            "apify_job_poll_exhausted",
            run_id=run_id,
            attempts=self.config.max_poll_attempts,
        )
        raise TranscriptProviderError(
            f"Scraper run did not finish after {self.config.max_poll_attempts} checks", url
        )

    # ------------------------------------------------------------------
    # Supadata
    # ------------------------------------------------------------------

    async def _fetch_supadata(self, url: str) -> TranscriptBundle:
        video_id = extract_video_id(url)
        if not video_id:
            raise TranscriptUnavailableError("Only YouTube URLs are supported.", url)

        try:
            response = await asyncio.to_thread(
                self.supadata.youtube.transcript, video_id=video_id, text=False
            )
        except Exception as e:
            error_str = str(e).lower()
            if "transcript-unavailable" in error_str or "206" in error_str:
                logger.warning("transcript_unavailable", video_id=video_id)
                raise TranscriptUnavailableError(
                    "No transcript or captions available for this video.", url
                ) from e
            logger.exception("supadata_fetch_error", video_id=video_id)
            raise TranscriptProviderError(f"Transcript provider error: {e}", url) from e

        segments = [
            TranscriptSegment(
                text=seg.text,
                start_seconds=int(seg.offset) / 1000,
                duration_seconds=int(seg.duration) / 1000,
            )
            for seg in response.content
            if seg.text and seg.text.strip()
        ]
        text = " ".join(segment.text for segment in segments).strip()
        if not text:
            raise TranscriptUnavailableError(
                "No transcript or captions available for this video.", url
            )

        metadata = await self.resolve_metadata(url, video_id=video_id)
        return TranscriptBundle(
            source_url=url,
            video_id=video_id,
            title=metadata.title,
            thumbnail_url=metadata.thumbnail_url,
            text=text,
            segments=segments,
            source="supadata",
        )

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    async def get_oembed_metadata(self, url: str) -> VideoMetadata | None:
        """Look up title and thumbnail through YouTube oEmbed.

        Returns None on any failure; callers degrade to placeholders.
        """
        try:
            response = await self.http_client.get(
                OEMBED_URL,
                params={"url": url, "format": "json"},
                timeout=10.0,
            )
            if response.status_code != 200:
                logger.warning("oembed_lookup_failed", url=url, status_code=response.status_code)
                return None
            data = response.json()
        except (httpx.HTTPError, ValueError):
            logger.warning("oembed_lookup_failed", url=url, exc_info=True)
            return None

        return VideoMetadata(
            title=data.get("title") or "",
            thumbnail_url=data.get("thumbnail_url") or "",
            author=data.get("author_name") or "",
        )

    async def resolve_metadata(
        self,
        url: str,
        title: str = "",
        thumbnail_url: str = "",
        video_id: str | None = None,
    ) -> VideoMetadata:
        """Fill missing title/thumbnail from oEmbed, then placeholders."""
        video_id = video_id or extract_video_id(url)
        author = ""

        if not title or not thumbnail_url:
            oembed = await self.get_oembed_metadata(url)
            if oembed:
                title = title or oembed.title
                thumbnail_url = thumbnail_url or oembed.thumbnail_url
                author = oembed.author

        return VideoMetadata(
            title=title or PLACEHOLDER_TITLE,
            thumbnail_url=thumbnail_url or thumbnail_for(video_id),
            author=author,
            video_id=video_id,
        )

    async def _build_bundle(
        self, url: str, item: dict[str, Any], source: str
    ) -> TranscriptBundle:
        segments = extract_segments(item)
        text = extract_text(item, segments)
        if not text:
            logger.warning("transcript_empty", url=url, keys=sorted(item.keys()))
            raise TranscriptUnavailableError(
                "No transcript or captions available for this video.", url
            )

        video_id = extract_video_id(url) or item.get("id") or item.get("videoId")
        metadata = await self.resolve_metadata(
            url,
            title=extract_title(item),
            thumbnail_url=extract_thumbnail(item),
            video_id=video_id,
        )
        return TranscriptBundle(
            source_url=url,
            video_id=video_id,
            title=metadata.title,
            thumbnail_url=metadata.thumbnail_url,
            text=text,
            segments=segments,
            chapters=extract_chapters(item),
            source=source,
        )
