"""FastAPI application for the video analysis service.

Provides credit-metered streaming analysis endpoints with JWT authentication,
synchronous extraction and chat endpoints, and read endpoints for credits
and history.
"""

import os
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Literal, NoReturn

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Query, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from httpx import AsyncClient
from pydantic import BaseModel, Field

from src.credits.pricing import initial_tier_charge
from src.credits.schemas import TransactionKind
from src.pipeline.config import get_config
from src.pipeline.exceptions import (
    AcquisitionError,
    AuthenticationError,
    ConfigurationError,
    GenerationError,
    InsufficientCreditsError,
    InvalidRequestError,
    PipelineError,
    TranscriptUnavailableError,
)
from src.pipeline.orchestrator import RequestOrchestrator, build_orchestrator
from src.pipeline.schemas import ChatTurn, UserPreferences
from src.streaming.transport import MEDIA_TYPE
from src.transcripts.normalize import extract_video_id
from src.utils.clients import get_service_clients
from src.utils.logging import get_logger

logger = get_logger(__name__)

# Check if we're in production
is_production = os.getenv("ENVIRONMENT") == "production"

if not is_production:
    # Development: prioritize .env file
    project_root = Path(__file__).resolve().parent.parent.parent
    dotenv_path = project_root / ".env"
    load_dotenv(dotenv_path, override=True)
else:
    # Production: use cloud platform env vars only
    load_dotenv()

# Global clients initialized in lifespan
llm_client = None
supabase = None
http_client = None
orchestrator: RequestOrchestrator | None = None


# ==============================================================================
# Lifespan Management
# ==============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle manager for the FastAPI application.

    Handles initialization and cleanup of resources.
    """
    global llm_client, supabase, http_client, orchestrator

    logger.info("application_startup_started")

    try:
        config = get_config()
        llm_client, supabase = get_service_clients(config)
        http_client = AsyncClient(timeout=config.http_timeout_seconds)
        orchestrator = build_orchestrator(config, supabase, llm_client, http_client)

        logger.info(
            "application_startup_completed",
            clients=["llm", "supabase", "http", "orchestrator"],
        )

    except Exception:
        logger.exception("application_startup_failed")
        raise

    yield  # Application runs here

    logger.info("application_shutdown_started")

    if http_client:
        await http_client.aclose()

    logger.info("application_shutdown_completed")


# ==============================================================================
# FastAPI Application Setup
# ==============================================================================

app = FastAPI(
    title="Video Analysis API",
    description="Credit-metered YouTube and podcast analysis with streaming responses",
    version="1.0.0",
    lifespan=lifespan,
)

security = HTTPBearer()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ==============================================================================
# Authentication
# ==============================================================================


async def verify_token(
    credentials: HTTPAuthorizationCredentials = Security(security),
) -> dict[str, Any]:
    """Verify the JWT token from Supabase and return the user information.

    Args:
        credentials: The HTTP Authorization credentials containing the bearer token.

    Returns:
        User information from Supabase.

    Raises:
        HTTPException: If the token is invalid or the user cannot be verified.
    """
    logger.info("auth_verification_started")

    try:
        token = credentials.credentials

        global http_client  # noqa: PLW0602
        if not http_client:
            logger.error("auth_verification_failed", reason="http_client_not_initialized")
            raise HTTPException(status_code=500, detail="HTTP client not initialized")

        supabase_url = os.getenv("SUPABASE_URL")
        supabase_key = os.getenv("SUPABASE_SERVICE_KEY")

        response = await http_client.get(
            f"{supabase_url}/auth/v1/user",
            headers={"Authorization": f"Bearer {token}", "apikey": supabase_key},
        )

        if response.status_code != 200:
            logger.warning(
                "auth_verification_failed",
                status_code=response.status_code,
                response_text=response.text[:200],
            )
            raise AuthenticationError("Invalid authentication token")

        user_data = response.json()
        if not user_data.get("id"):
            raise AuthenticationError("Invalid authentication token")

        logger.info("auth_verification_completed", user_id=user_data.get("id"))

        return user_data

    except HTTPException:
        raise
    except AuthenticationError as e:
        raise_http_error(e)
    except Exception as e:
        logger.exception("auth_verification_error")
        raise HTTPException(status_code=401, detail=f"Authentication error: {str(e)}")


# ==============================================================================
# Request/Response Models
# ==============================================================================


class AnalyzeRequest(BaseModel):
    """Request model for the single-stage analysis endpoints."""

    source_url: str
    analysis_type: str | None = None
    user_request: str | None = None


class VideoAnalysisRequest(AnalyzeRequest):
    content_tier: str | None = None


class IntelligentRequest(BaseModel):
    """Start a vision + mapping analysis, or continue it in chat mode."""

    mode: Literal["start", "chat"] = "start"
    source_url: str | None = None
    messages: list[ChatTurn] = Field(default_factory=list)
    transcript: str | None = None


class PodcastChatRequest(BaseModel):
    transcript: str
    query: str
    history: list[ChatTurn] = Field(default_factory=list)


class ExtractRequest(BaseModel):
    source_url: str


class YouTubeChatRequest(BaseModel):
    relevant_content: str
    full_transcript: str | None = None
    messages: list[ChatTurn] = Field(default_factory=list)


class TranscriptRequest(BaseModel):
    source_url: str


# ==============================================================================
# Helper Functions
# ==============================================================================


def get_orchestrator() -> RequestOrchestrator:
    if orchestrator is None:
        logger.error("orchestrator_not_initialized")
        raise HTTPException(status_code=500, detail="Service not initialized")
    return orchestrator


def raise_http_error(error: PipelineError) -> NoReturn:
    """Map a pipeline error onto the HTTP status returned to the client."""
    if isinstance(error, InsufficientCreditsError):
        raise HTTPException(
            status_code=402,
            detail={
                "error": "Insufficient credits",
                "balance": str(error.balance),
                "required": str(error.required),
            },
        )
    if isinstance(error, AuthenticationError):
        raise HTTPException(status_code=401, detail=str(error))
    if isinstance(error, InvalidRequestError):
        raise HTTPException(status_code=400, detail=error.message)
    if isinstance(error, TranscriptUnavailableError):
        raise HTTPException(status_code=404, detail=error.message)
    if isinstance(error, (AcquisitionError, GenerationError)):
        raise HTTPException(status_code=502, detail={"error": "Upstream failure", "details": str(error)})
    if isinstance(error, ConfigurationError):
        raise HTTPException(status_code=500, detail=str(error))
    raise HTTPException(status_code=500, detail="Internal server error")


def require_video_url(url: str | None) -> str:
    if not url or not extract_video_id(url):
        raise HTTPException(status_code=400, detail="A valid YouTube URL is required")
    return url


async def load_preferences(service: RequestOrchestrator, user_id: str) -> UserPreferences:
    return await service.store.get_preferences(user_id)


# ==============================================================================
# API Endpoints
# ==============================================================================


@app.get("/health")
async def health_check():
    """Health check endpoint.

    Returns:
        Health status and timestamp.
    """
    return {
        "status": "healthy",
        "timestamp": datetime.now(UTC).isoformat(),
        "services": {
            "llm_client": llm_client is not None,
            "supabase": supabase is not None,
            "http_client": http_client is not None,
            "orchestrator": orchestrator is not None,
        },
    }


@app.post("/api/summarize")
async def summarize_endpoint(
    request: AnalyzeRequest,
    user: dict[str, Any] = Depends(verify_token),
):
    """Stream a single-stage analysis of a YouTube video (flat fee)."""
    service = get_orchestrator()
    url = require_video_url(request.source_url)
    user_id = user["id"]

    logger.info(
        "summarize_request_started",
        user_id=user_id,
        url=url,
        analysis_type=request.analysis_type,
    )

    preferences = await load_preferences(service, user_id)
    try:
        ctx = await service.begin(
            user_id,
            "summarize",
            service.config.summary_credits,
            TransactionKind.USAGE,
            description="YouTube video analysis",
            source_url=url,
        )
    except PipelineError as e:
        raise_http_error(e)

    return StreamingResponse(
        service.summarize(ctx, url, request.analysis_type, request.user_request, preferences),
        media_type=MEDIA_TYPE,
    )


@app.post("/api/video-analysis")
async def video_analysis_endpoint(
    request: VideoAnalysisRequest,
    user: dict[str, Any] = Depends(verify_token),
):
    """Stream an analysis priced by transcript length."""
    service = get_orchestrator()
    url = require_video_url(request.source_url)
    user_id = user["id"]
    tier, amount = initial_tier_charge(request.content_tier)

    logger.info(
        "video_analysis_request_started",
        user_id=user_id,
        url=url,
        initial_tier=tier.value,
        initial_credits=str(amount),
    )

    preferences = await load_preferences(service, user_id)
    try:
        ctx = await service.begin(
            user_id,
            "video_analysis",
            amount,
            TransactionKind.USAGE,
            description=f"Video analysis: {tier.value}",
            source_url=url,
        )
    except PipelineError as e:
        raise_http_error(e)

    return StreamingResponse(
        service.analyze_tiered(ctx, url, request.analysis_type, request.user_request, preferences),
        media_type=MEDIA_TYPE,
    )


@app.post("/api/intelligent")
async def intelligent_endpoint(
    request: IntelligentRequest,
    user: dict[str, Any] = Depends(verify_token),
):
    """Vision + mapping analysis (mode=start) or a free follow-up turn (mode=chat)."""
    service = get_orchestrator()
    user_id = user["id"]
    preferences = await load_preferences(service, user_id)

    logger.info(
        "intelligent_request_started",
        user_id=user_id,
        mode=request.mode,
        turns=len(request.messages),
    )

    if request.mode == "chat":
        if not request.transcript:
            raise HTTPException(status_code=400, detail="Missing transcript for chat")
        if not request.messages:
            raise HTTPException(status_code=400, detail="Missing messages for chat")
        try:
            ctx = await service.begin(
                user_id,
                "intelligent_chat",
                service.config.intelligent_chat_credits,
                TransactionKind.CHAT,
                description="Intelligent chat",
            )
        except PipelineError as e:
            raise_http_error(e)
        return StreamingResponse(
            service.transcript_chat(ctx, request.transcript, request.messages, preferences),
            media_type=MEDIA_TYPE,
        )

    url = require_video_url(request.source_url)
    try:
        ctx = await service.begin(
            user_id,
            "intelligent",
            service.config.intelligent_credits,
            TransactionKind.ANALYSIS,
            description="Intelligent analysis",
            source_url=url,
        )
    except PipelineError as e:
        raise_http_error(e)

    return StreamingResponse(
        service.intelligent_start(ctx, url, preferences),
        media_type=MEDIA_TYPE,
    )


@app.post("/api/podcast-chat")
async def podcast_chat_endpoint(
    request: PodcastChatRequest,
    user: dict[str, Any] = Depends(verify_token),
):
    """Stream an answer about a podcast transcript (charged per turn)."""
    service = get_orchestrator()
    user_id = user["id"]
    if not request.transcript.strip() or not request.query.strip():
        raise HTTPException(status_code=400, detail="Transcript and query are required")

    preferences = await load_preferences(service, user_id)
    try:
        ctx = await service.begin(
            user_id,
            "podcast_chat",
            service.config.podcast_chat_credits,
            TransactionKind.CHAT,
            description="Podcast chat",
        )
    except PipelineError as e:
        raise_http_error(e)

    return StreamingResponse(
        service.podcast_chat(ctx, request.transcript, request.history, request.query, preferences),
        media_type=MEDIA_TYPE,
    )


@app.post("/api/extract")
async def extract_endpoint(
    request: ExtractRequest,
    user: dict[str, Any] = Depends(verify_token),
):
    """Expectation analysis and relevant-content extraction as one JSON body."""
    service = get_orchestrator()
    url = require_video_url(request.source_url)
    user_id = user["id"]

    logger.info("extract_request_started", user_id=user_id, url=url)

    try:
        ctx = await service.begin(
            user_id,
            "extract",
            service.config.extract_credits,
            TransactionKind.ANALYSIS,
            description="Relevant content extraction",
            source_url=url,
        )
        return await service.extract_insights(ctx, url)
    except PipelineError as e:
        raise_http_error(e)


@app.post("/api/youtube-chat")
async def youtube_chat_endpoint(
    request: YouTubeChatRequest,
    user: dict[str, Any] = Depends(verify_token),
):
    """Free follow-up chat over extracted content."""
    service = get_orchestrator()
    if not request.messages:
        raise HTTPException(status_code=400, detail="Missing messages for chat")

    preferences = await load_preferences(service, user["id"])
    try:
        reply = await service.chat_reply(
            request.relevant_content,
            request.full_transcript,
            request.messages,
            preferences,
        )
    except PipelineError as e:
        raise_http_error(e)

    return {"reply": reply}


@app.post("/api/transcript")
async def transcript_endpoint(
    request: TranscriptRequest,
    user: dict[str, Any] = Depends(verify_token),
):
    """Return the raw transcript, segments and chapters of a video."""
    service = get_orchestrator()
    url = require_video_url(request.source_url)
    try:
        return await service.transcripts.fetch_raw(url)
    except PipelineError as e:
        raise_http_error(e)


@app.get("/api/credits")
async def credits_endpoint(
    limit: int = Query(default=20, ge=1, le=100),
    user: dict[str, Any] = Depends(verify_token),
):
    """Current balance and the most recent ledger entries."""
    service = get_orchestrator()
    user_id = user["id"]
    try:
        account = await service.ledger.get_account(user_id)
        transactions = await service.ledger.list_transactions(user_id, limit=limit)
    except PipelineError as e:
        raise_http_error(e)

    return {
        "balance": str(account.balance),
        "transactions": [tx.model_dump(mode="json") for tx in transactions],
    }


@app.get("/api/history")
async def history_endpoint(
    limit: int = Query(default=50, ge=1, le=200),
    user: dict[str, Any] = Depends(verify_token),
):
    """Completed analyses for the user, newest first."""
    service = get_orchestrator()
    records = await service.store.list_history(user["id"], limit=limit)
    return {"summaries": [record.model_dump(mode="json") for record in records]}
