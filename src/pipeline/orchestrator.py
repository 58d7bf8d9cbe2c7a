"""Request orchestrator: admission, acquisition, generation, persistence, refund.

Every credit-consuming handler follows the same path:

    IDLE -> ADMISSION_CHECK -> DEBITED -> ACQUIRING -> GENERATING -> PERSISTING -> COMPLETED

Admission and the debit happen in ``begin`` before any bytes are streamed,
so a rejected request is answered with a plain 402. Everything after the
debit runs inside ``_drive``; an exception from acquisition or generation
moves the request to REFUNDING, which claims the in-progress row, returns
the charged credits once and ends the stream with a single ``error`` event.
A failed result write is logged, the row is dropped without a refund and
the stream still completes.

The in-progress row is the refund token. The failing request and the
staleness sweep both claim it by deleting it, and only the side whose
delete removed the row refunds.
"""

import asyncio
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any

from pydantic import BaseModel

from src.credits.ledger import CreditLedger
from src.credits.pricing import adjustment_delta, initial_tier_charge, tier_for_segments
from src.credits.schemas import TransactionKind
from src.llm.agents import InsightAgents
from src.llm.config import get_model
from src.llm.prompts import (
    build_analysis_messages,
    build_extracted_chat_messages,
    build_mapping_messages,
    build_podcast_chat_messages,
    build_transcript_chat_messages,
    build_vision_messages,
)
from src.llm.stage_runner import Message, StageRunner
from src.streaming.events import (
    ChatStartEvent,
    CompleteEvent,
    ErrorEvent,
    MetadataEvent,
    ReadyForChatEvent,
    StatusEvent,
    chunk_event,
)
from src.streaming.transport import EventStream
from src.transcripts.schemas import TranscriptBundle
from src.transcripts.youtube_service import TranscriptService, TranscriptStrategy
from src.utils.logging import get_logger

from .config import PipelineConfig
from .exceptions import (
    AcquisitionError,
    ConfigurationError,
    GenerationError,
    InsufficientCreditsError,
    InvalidRequestError,
    LedgerError,
    PersistenceError,
    TranscriptUnavailableError,
)
from .schemas import (
    AnalysisRecord,
    ChatTurn,
    RequestState,
    SweepResult,
    UserPreferences,
)
from .storage_service import SummaryStore

logger = get_logger(__name__)

ZERO = Decimal("0")


@dataclass
class RequestContext:
    """Mutable per-request state. Never shared between requests."""

    request_id: str
    user_id: str
    operation: str
    charged: Decimal = ZERO
    record_id: str | None = None
    record: AnalysisRecord | None = None
    state: RequestState = RequestState.IDLE
    result_parts: list[str] = field(default_factory=list)

    def transition(self, state: RequestState) -> None:
        logger.info(
            "request_state_changed",
            request_id=self.request_id,
            operation=self.operation,
            from_state=self.state.value,
            to_state=state.value,
        )
        self.state = state

    @property
    def result_text(self) -> str:
        return "".join(self.result_parts)


def user_message(error: Exception) -> str:
    """Human-readable text for the terminal error event."""
    if isinstance(error, TranscriptUnavailableError):
        return error.message
    if isinstance(error, InsufficientCreditsError):
        return f"Insufficient credits ({error.required} required, {error.balance} available)"
    if isinstance(error, AcquisitionError):
        return "Could not fetch the transcript for this video. Please try again."
    if isinstance(error, GenerationError):
        return "The AI provider failed while generating the response."
    if isinstance(error, (ConfigurationError, InvalidRequestError)):
        return str(error)
    return "Unexpected error while processing the request."


class RequestOrchestrator:
    """Runs every analysis workflow as a compensating transaction."""

    def __init__(
        self,
        config: PipelineConfig,
        ledger: CreditLedger,
        store: SummaryStore,
        transcripts: TranscriptService,
        runner: StageRunner,
        agents: InsightAgents | None = None,
    ):
        self.config = config
        self.ledger = ledger
        self.store = store
        self.transcripts = transcripts
        self.runner = runner
        self.agents = agents

    # ==========================================================================
    # Admission
    # ==========================================================================

    async def begin(
        self,
        user_id: str,
        operation: str,
        amount: Decimal,
        kind: TransactionKind,
        description: str,
        source_url: str | None = None,
    ) -> RequestContext:
        """Check the balance, debit, and create the in-progress row.

        A row is created only when ``source_url`` is given. The debit is
        tagged with the request id, which is also the row id, so the sweep
        can find it later.

        Raises:
            InsufficientCreditsError: Balance below ``amount``. Nothing changed.
            LedgerError: The debit failed. Nothing changed.
            PersistenceError: The row could not be created; the debit was
                already refunded.
        """
        ctx = RequestContext(
            request_id=str(uuid.uuid4()),
            user_id=user_id,
            operation=operation,
        )
        if amount <= 0:
            return ctx

        ctx.transition(RequestState.ADMISSION_CHECK)
        balance = await self.ledger.get_balance(user_id)
        if balance < amount:
            logger.warning(
                "admission_rejected",
                request_id=ctx.request_id,
                user_id=user_id,
                operation=operation,
                balance=str(balance),
                required=str(amount),
            )
            raise InsufficientCreditsError(balance=balance, required=amount)

        await self.ledger.debit(
            user_id, amount, kind, description=description, reference_id=ctx.request_id
        )
        ctx.charged = amount
        ctx.transition(RequestState.DEBITED)

        if source_url is not None:
            try:
                ctx.record = await self.store.create_pending(
                    ctx.request_id, user_id, source_url
                )
            except PersistenceError:
                await self._refund(ctx, f"{description} - could not start, refunded")
                raise
            ctx.record_id = ctx.request_id

        return ctx

    # ==========================================================================
    # Stream driver and compensation
    # ==========================================================================

    async def _drive(
        self,
        ctx: RequestContext,
        body: AsyncIterator[BaseModel],
        trailer: list[BaseModel] | None = None,
    ) -> AsyncIterator[bytes]:
        """Relay ``body`` events, persist, and finish with one terminal event."""
        stream = EventStream(ctx.request_id)

        try:
            async for event in body:
                yield stream.emit(event)
        except (GeneratorExit, asyncio.CancelledError):
            # The row stays pending; the staleness sweep refunds it
            logger.warning(
                "client_disconnected",
                request_id=ctx.request_id,
                state=ctx.state.value,
                charged=str(ctx.charged),
            )
            raise
        except Exception as e:
            refunded = await self._compensate(ctx, e)
            if not stream.closed:
                message = user_message(e)
                if refunded:
                    message += " Your credits have been refunded."
                yield stream.emit(ErrorEvent(error=message, refunded=refunded))
            return

        await self._persist(ctx)
        for event in trailer or []:
            yield stream.emit(event)

        ctx.transition(RequestState.COMPLETED)
        yield stream.emit(
            CompleteEvent(
                summary_id=ctx.record_id,
                credits_charged=str(ctx.charged) if ctx.charged else None,
            )
        )

    async def _persist(self, ctx: RequestContext) -> None:
        if ctx.record_id is None:
            return
        ctx.transition(RequestState.PERSISTING)
        try:
            await self.store.mark_persisting(ctx.record_id)
            await self.store.complete(ctx.record_id, ctx.result_text)
        except PersistenceError:
            logger.exception(
                "result_persist_failed",
                request_id=ctx.request_id,
                summary_id=ctx.record_id,
                charged=str(ctx.charged),
            )
            await self._discard_unsaved(ctx)

    async def _discard_unsaved(self, ctx: RequestContext) -> None:
        """Drop the row of a delivered but unsaved result. The charge stands."""
        try:
            await self.store.delete(ctx.record_id)
        except PersistenceError:
            # A row still flagged PERSISTING is removed by the sweep without a refund
            logger.exception("unsaved_row_cleanup_failed", summary_id=ctx.record_id)

    async def _refund(self, ctx: RequestContext, description: str) -> bool:
        if ctx.charged <= 0:
            return False
        try:
            await self.ledger.refund(
                ctx.user_id, ctx.charged, description=description, reference_id=ctx.request_id
            )
        except LedgerError:
            logger.exception(
                "refund_failed",
                request_id=ctx.request_id,
                user_id=ctx.user_id,
                amount=str(ctx.charged),
            )
            return False
        ctx.charged = ZERO
        return True

    async def _claim_row(self, ctx: RequestContext) -> bool:
        """Delete the in-progress row. False means the sweep already owns the refund."""
        if ctx.record_id is None:
            return True
        try:
            return await self.store.delete(ctx.record_id)
        except PersistenceError:
            # The row may still exist; the sweep nets the ledger so it will not refund twice
            logger.exception("failed_row_cleanup_failed", summary_id=ctx.record_id)
            return True

    async def _restore_row(self, record: AnalysisRecord) -> None:
        try:
            await self.store.restore(record)
        except PersistenceError:
            logger.exception("refund_lost", summary_id=record.id, user_id=record.user_id)

    async def _compensate(self, ctx: RequestContext, error: Exception) -> bool:
        """Claim the in-progress row and refund once. Returns True if refunded.

        A refund that fails after the claim puts the row back so the sweep
        retries it.
        """
        logger.error(
            "request_failed",
            request_id=ctx.request_id,
            user_id=ctx.user_id,
            operation=ctx.operation,
            state=ctx.state.value,
            error_type=type(error).__name__,
            error=str(error),
            retryable=getattr(error, "retryable", None),
        )
        ctx.transition(RequestState.REFUNDING)
        refunded = False
        if not await self._claim_row(ctx):
            logger.warning(
                "refund_left_to_sweep",
                request_id=ctx.request_id,
                summary_id=ctx.record_id,
            )
        else:
            had_charge = ctx.charged > 0
            refunded = await self._refund(ctx, f"{ctx.operation} failed - refund")
            if had_charge and not refunded and ctx.record is not None:
                await self._restore_row(ctx.record)

        ctx.transition(RequestState.FAILED)
        return refunded

    async def _acquire(
        self, ctx: RequestContext, url: str, strategy: str | None = None
    ) -> TranscriptBundle:
        ctx.transition(RequestState.ACQUIRING)
        bundle = await self.transcripts.fetch_transcript(url, strategy=strategy)
        if ctx.record_id:
            await self.store.update_metadata(ctx.record_id, bundle.title, bundle.thumbnail_url)
        return bundle

    async def _stage(
        self,
        ctx: RequestContext,
        stage: str,
        model: str,
        messages: list[Message],
        collect: bool = True,
        **params: Any,
    ) -> AsyncIterator[BaseModel]:
        """Relay one stage's tokens as chunk events, optionally collecting them."""
        ctx.transition(RequestState.GENERATING)
        async for delta in self.runner.stream_stage(stage, model, messages, **params):
            if collect:
                ctx.result_parts.append(delta)
            yield chunk_event(stage, delta)

    # ==========================================================================
    # Workflows
    # ==========================================================================

    def summarize(
        self,
        ctx: RequestContext,
        url: str,
        analysis_type: str | None,
        custom_request: str | None,
        preferences: UserPreferences | None,
    ) -> AsyncIterator[bytes]:
        """Single-stage summary streamed as ``content`` events."""

        async def body() -> AsyncIterator[BaseModel]:
            yield StatusEvent(message="Fetching transcript...")
            bundle = await self._acquire(ctx, url)
            yield MetadataEvent(video_metadata=bundle.metadata, summary_id=ctx.record_id)

            yield StatusEvent(message="Analyzing content...")
            messages = build_analysis_messages(
                bundle.text,
                analysis_type=analysis_type,
                custom_request=custom_request,
                preferences=preferences,
                max_chars=self.config.max_transcript_chars,
            )
            async for event in self._stage(
                ctx,
                "analysis",
                self.config.analysis_model,
                messages,
                temperature=0.7,
                max_tokens=4000,
            ):
                yield event

        return self._drive(ctx, body())

    def analyze_tiered(
        self,
        ctx: RequestContext,
        url: str,
        analysis_type: str | None,
        custom_request: str | None,
        preferences: UserPreferences | None,
    ) -> AsyncIterator[bytes]:
        """Analysis priced by transcript length, reconciled after acquisition."""

        async def body() -> AsyncIterator[BaseModel]:
            yield StatusEvent(message="Fetching transcript...")
            bundle = await self._acquire(ctx, url)

            segment_count = bundle.segment_count
            delta = adjustment_delta(ctx.charged, segment_count)
            tier = tier_for_segments(segment_count)
            if delta > 0:
                await self.ledger.debit(
                    ctx.user_id,
                    delta,
                    TransactionKind.ADJUSTMENT,
                    description=f"Video analysis length adjustment: {tier.value}",
                    reference_id=ctx.request_id,
                )
                ctx.charged += delta
            elif delta < 0:
                await self.ledger.credit(
                    ctx.user_id,
                    -delta,
                    TransactionKind.ADJUSTMENT,
                    description=f"Video analysis length adjustment: {tier.value}",
                    reference_id=ctx.request_id,
                )
                ctx.charged += delta
            logger.info(
                "tier_reconciled",
                request_id=ctx.request_id,
                segments=segment_count,
                tier=tier.value,
                delta=str(delta),
                charged=str(ctx.charged),
            )

            yield MetadataEvent(video_metadata=bundle.metadata, summary_id=ctx.record_id)
            yield StatusEvent(message=f"Analyzing {tier.value} video ({ctx.charged} credits)...")
            messages = build_analysis_messages(
                bundle.text,
                analysis_type=analysis_type,
                custom_request=custom_request,
                preferences=preferences,
                max_chars=self.config.max_transcript_chars,
            )
            async for event in self._stage(
                ctx,
                "analysis",
                self.config.analysis_model,
                messages,
                temperature=0.7,
                max_tokens=4000,
            ):
                yield event

        return self._drive(ctx, body())

    def intelligent_start(
        self,
        ctx: RequestContext,
        url: str,
        preferences: UserPreferences | None,
    ) -> AsyncIterator[bytes]:
        """Scrape, then vision and mapping stages, then hand off for chat."""
        handoff: list[BaseModel] = []

        async def body() -> AsyncIterator[BaseModel]:
            yield StatusEvent(message="Scraping video...")
            bundle = await self._acquire(ctx, url, strategy=TranscriptStrategy.JOB)
            yield MetadataEvent(video_metadata=bundle.metadata, summary_id=ctx.record_id)

            yield StatusEvent(message="Analyzing thumbnail & title with vision...")
            ctx.result_parts.append("## Thumbnail & title\n\n")
            vision_start = len(ctx.result_parts)
            async for event in self._stage(
                ctx,
                "vision",
                self.config.vision_model,
                build_vision_messages(bundle.title, bundle.thumbnail_url, preferences),
            ):
                yield event
            vision_notes = "".join(ctx.result_parts[vision_start:])

            yield StatusEvent(message="Linking transcript to thumbnail/title...")
            ctx.result_parts.append("\n\n## Transcript mapping\n\n")
            async for event in self._stage(
                ctx,
                "mapping",
                self.config.chat_model,
                build_mapping_messages(
                    bundle.title,
                    bundle.text,
                    vision_notes,
                    preferences,
                    max_chars=self.config.max_transcript_chars,
                ),
            ):
                yield event

            handoff.append(ReadyForChatEvent(transcript=bundle.text))

        return self._drive(ctx, body(), trailer=handoff)

    def transcript_chat(
        self,
        ctx: RequestContext,
        transcript: str,
        turns: list[ChatTurn],
        preferences: UserPreferences | None,
    ) -> AsyncIterator[bytes]:
        """Follow-up turn: full transcript and history resent every call."""

        async def body() -> AsyncIterator[BaseModel]:
            yield ChatStartEvent()
            messages = build_transcript_chat_messages(
                transcript,
                turns,
                preferences,
                max_chars=self.config.max_transcript_chars,
            )
            async for event in self._stage(ctx, "chat", self.config.chat_model, messages):
                yield event

        return self._drive(ctx, body())

    def podcast_chat(
        self,
        ctx: RequestContext,
        transcript: str,
        history: list[ChatTurn],
        query: str,
        preferences: UserPreferences | None,
    ) -> AsyncIterator[bytes]:
        """Podcast Q&A over a client-supplied transcript."""

        async def body() -> AsyncIterator[BaseModel]:
            yield ChatStartEvent()
            messages = build_podcast_chat_messages(
                transcript,
                history,
                query,
                preferences,
                max_chars=self.config.max_transcript_chars,
            )
            async for event in self._stage(
                ctx,
                "chat",
                self.config.analysis_model,
                messages,
                temperature=0.7,
                max_tokens=2048,
            ):
                yield event

        return self._drive(ctx, body())

    # ==========================================================================
    # Non-streaming workflows
    # ==========================================================================

    async def extract_insights(
        self, ctx: RequestContext, url: str
    ) -> dict[str, Any]:
        """Expectation analysis plus relevant-content extraction, as one JSON body.

        Raises:
            AcquisitionError, GenerationError: after the charge is refunded.
        """
        if self.agents is None:
            raise ConfigurationError("LLM agents")

        try:
            bundle = await self._acquire(ctx, url)
            ctx.transition(RequestState.GENERATING)
            expectations = await self.agents.analyze_expectations(
                bundle.title, bundle.thumbnail_url
            )
            relevant = await self.agents.extract_relevant_content(bundle.text, expectations)
        except Exception as e:
            await self._compensate(ctx, e)
            raise

        ctx.result_parts = [
            "## Viewer expectations\n\n",
            expectations,
            "\n\n## Relevant content\n\n",
            relevant,
        ]
        await self._persist(ctx)
        ctx.transition(RequestState.COMPLETED)
        return {
            "summary_id": ctx.record_id,
            "title": bundle.title,
            "thumbnail": bundle.thumbnail_url,
            "analysis": expectations,
            "extracted_content": relevant,
            "full_transcript": bundle.text,
        }

    async def chat_reply(
        self,
        relevant_content: str,
        full_transcript: str | None,
        turns: list[ChatTurn],
        preferences: UserPreferences | None,
    ) -> str:
        """Free follow-up chat over previously extracted content."""
        messages = build_extracted_chat_messages(
            relevant_content, full_transcript, turns, preferences
        )
        return await self.runner.run_stage(
            "chat", self.config.analysis_model, messages, temperature=0.3
        )

    # ==========================================================================
    # Maintenance
    # ==========================================================================

    async def sweep_stale_requests(
        self,
        stale_after_minutes: int | None = None,
        dry_run: bool = False,
        now: datetime | None = None,
    ) -> SweepResult:
        """Remove abandoned rows and refund the charge still outstanding on them.

        A row is abandoned when it is not completed after the staleness
        window. Each row is claimed by deleting it before the ledger is
        read: a request failing at the same time either claimed it first, so
        the delete here removes nothing, or finds it gone and leaves the
        refund to the sweep. Only ``pending`` rows are refunded; a
        ``persisting`` row belongs to a request that delivered its result.
        The outstanding charge is the negated sum of every ledger entry
        tagged with the row id, which nets out tier adjustments and refunds
        already made.
        """
        minutes = stale_after_minutes or self.config.stale_after_minutes
        cutoff = (now or datetime.now(UTC)) - timedelta(minutes=minutes)
        stale = await self.store.find_stale(cutoff)
        result = SweepResult(stale_rows=len(stale))

        logger.info("stale_sweep_started", cutoff=cutoff.isoformat(), stale_rows=len(stale))

        for record in stale:
            if dry_run:
                await self._report_stale(record, result)
                continue

            try:
                if not await self.store.delete(record.id):
                    continue
            except PersistenceError as e:
                logger.exception("stale_row_cleanup_failed", summary_id=record.id)
                result.errors.append(f"{record.id}: {e}")
                continue

            if not record.is_pending:
                logger.info(
                    "stale_row_removed_without_refund",
                    summary_id=record.id,
                    status=record.status.value,
                )
                result.removed += 1
                continue

            try:
                outstanding = await self._outstanding(record.id)
                if outstanding > 0:
                    await self.ledger.refund(
                        record.user_id,
                        outstanding,
                        description="Abandoned request - refund",
                        reference_id=record.id,
                    )
            except LedgerError as e:
                logger.exception("stale_row_refund_failed", summary_id=record.id)
                result.errors.append(f"{record.id}: {e}")
                await self._restore_row(record)
                continue

            result.removed += 1
            if outstanding > 0:
                result.refunded += 1
                result.credits_refunded += outstanding

        logger.info(
            "stale_sweep_completed",
            removed=result.removed,
            refunded=result.refunded,
            credits_refunded=str(result.credits_refunded),
            errors=len(result.errors),
        )
        return result

    async def _outstanding(self, reference_id: str) -> Decimal:
        transactions = await self.ledger.find_transactions(reference_id)
        return -sum((tx.amount for tx in transactions), ZERO)

    async def _report_stale(self, record: AnalysisRecord, result: SweepResult) -> None:
        try:
            outstanding = await self._outstanding(record.id) if record.is_pending else ZERO
        except LedgerError as e:
            result.errors.append(f"{record.id}: {e}")
            return
        logger.info(
            "stale_row_found",
            summary_id=record.id,
            status=record.status.value,
            outstanding=str(outstanding),
        )


def build_orchestrator(
    config: PipelineConfig,
    supabase: Any,
    llm_client: Any,
    http_client: Any,
) -> RequestOrchestrator:
    """Wire the ledger, store, transcript service and LLM stages together."""
    return RequestOrchestrator(
        config=config,
        ledger=CreditLedger(supabase),
        store=SummaryStore(supabase),
        transcripts=TranscriptService(config, http_client),
        runner=StageRunner(llm_client),
        agents=InsightAgents(get_model(config)),
    )
