"""Configuration module for the analysis pipeline."""

import os
from decimal import Decimal

from dotenv import load_dotenv
from pydantic import BaseModel, Field

# Load environment variables from .env file
load_dotenv()


class PipelineConfig(BaseModel):
    """Configuration for the transcript analysis pipeline.

    Holds provider credentials, polling limits, LLM model choices and the
    flat per-operation credit fees. All settings can be overridden via
    environment variables.
    """

    # Supabase (auth, ledger, summaries)
    supabase_url: str = Field(default_factory=lambda: os.getenv("SUPABASE_URL", ""))
    supabase_key: str = Field(
        default_factory=lambda: os.getenv("SUPABASE_SERVICE_KEY", "")
    )

    # Transcript providers
    transcript_provider: str = Field(
        default_factory=lambda: os.getenv("TRANSCRIPT_PROVIDER", "apify")
    )
    apify_api_key: str = Field(
        default_factory=lambda: os.getenv("APIFY_API_KEY")
        or os.getenv("APIFY_API_TOKEN", "")
    )
    apify_base_url: str = Field(
        default_factory=lambda: os.getenv("APIFY_BASE_URL", "https://api.apify.com/v2")
    )
    apify_transcript_actor: str = Field(
        default_factory=lambda: os.getenv(
            "APIFY_TRANSCRIPT_ACTOR", "pintostudio~youtube-transcript-scraper"
        )
    )
    apify_scraper_actor: str = Field(
        default_factory=lambda: os.getenv("APIFY_SCRAPER_ACTOR", "apify~youtube-scraper")
    )
    supadata_api_key: str = Field(
        default_factory=lambda: os.getenv("SUPADATA_API_KEY", "")
    )
    poll_interval_seconds: float = Field(
        default_factory=lambda: float(os.getenv("POLL_INTERVAL_SECONDS", "2"))
    )
    max_poll_attempts: int = Field(
        default_factory=lambda: int(os.getenv("MAX_POLL_ATTEMPTS", "60"))
    )
    http_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("HTTP_TIMEOUT_SECONDS", "120"))
    )

    # LLM settings
    llm_base_url: str = Field(
        default_factory=lambda: os.getenv("LLM_BASE_URL", "https://api.openai.com/v1")
    )
    llm_api_key: str = Field(default_factory=lambda: os.getenv("LLM_API_KEY", ""))
    analysis_model: str = Field(
        default_factory=lambda: os.getenv("LLM_CHOICE", "gpt-4o-mini")
    )
    vision_model: str = Field(
        default_factory=lambda: os.getenv("VISION_LLM_CHOICE", "o4-mini-2025-04-16")
    )
    chat_model: str = Field(
        default_factory=lambda: os.getenv("CHAT_LLM_CHOICE", "gpt-4.1-2025-04-14")
    )
    max_transcript_chars: int = Field(
        default_factory=lambda: int(os.getenv("MAX_TRANSCRIPT_CHARS", "120000"))
    )

    # Flat fees (credits)
    summary_credits: Decimal = Field(
        default_factory=lambda: Decimal(os.getenv("SUMMARY_CREDITS", "1"))
    )
    intelligent_credits: Decimal = Field(
        default_factory=lambda: Decimal(os.getenv("INTELLIGENT_CREDITS", "5"))
    )
    extract_credits: Decimal = Field(
        default_factory=lambda: Decimal(os.getenv("EXTRACT_CREDITS", "4"))
    )
    podcast_chat_credits: Decimal = Field(
        default_factory=lambda: Decimal(os.getenv("PODCAST_CHAT_CREDITS", "0.5"))
    )
    intelligent_chat_credits: Decimal = Field(
        default_factory=lambda: Decimal(os.getenv("INTELLIGENT_CHAT_CREDITS", "0"))
    )

    # Abandoned request cleanup
    stale_after_minutes: int = Field(
        default_factory=lambda: int(os.getenv("STALE_AFTER_MINUTES", "10"))
    )


def get_config() -> PipelineConfig:
    """Get validated configuration instance.

    Returns:
        PipelineConfig: Validated configuration object with all settings.

    Raises:
        ValidationError: If an environment variable holds an invalid value.
    """
    return PipelineConfig()
