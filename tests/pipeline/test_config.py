"""Unit tests for pipeline configuration."""

from decimal import Decimal

import pytest

from src.pipeline.config import PipelineConfig, get_config


@pytest.mark.unit
class TestPipelineConfig:
    """Test suite for PipelineConfig."""

    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        for key in (
            "TRANSCRIPT_PROVIDER",
            "POLL_INTERVAL_SECONDS",
            "MAX_POLL_ATTEMPTS",
            "STALE_AFTER_MINUTES",
            "SUMMARY_CREDITS",
            "INTELLIGENT_CREDITS",
            "EXTRACT_CREDITS",
            "PODCAST_CHAT_CREDITS",
        ):
            monkeypatch.delenv(key, raising=False)

        config = PipelineConfig()

        assert config.transcript_provider == "apify"
        assert config.poll_interval_seconds == 2.0
        assert config.max_poll_attempts == 60
        assert config.stale_after_minutes == 10
        assert config.summary_credits == Decimal("1")
        assert config.intelligent_credits == Decimal("5")
        assert config.extract_credits == Decimal("4")
        assert config.podcast_chat_credits == Decimal("0.5")

    def test_environment_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MAX_POLL_ATTEMPTS", "5")
        monkeypatch.setenv("PODCAST_CHAT_CREDITS", "0.25")
        monkeypatch.setenv("LLM_CHOICE", "gpt-4.1-mini")

        config = get_config()

        assert config.max_poll_attempts == 5
        assert config.podcast_chat_credits == Decimal("0.25")
        assert config.analysis_model == "gpt-4.1-mini"

    def test_apify_token_alias(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("APIFY_API_KEY", raising=False)
        monkeypatch.setenv("APIFY_API_TOKEN", "legacy-token")

        assert PipelineConfig().apify_api_key == "legacy-token"
