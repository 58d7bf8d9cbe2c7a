"""Unit tests for FastAPI application endpoints.

Endpoints run against a real orchestrator wired to the in-memory Supabase
double and stubbed LLM streams; authentication is overridden except in the
verify_token tests.
"""

import json
from datetime import datetime
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, Mock, patch

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from fastapi.testclient import TestClient

from src.api.main import app, verify_token
from src.pipeline.exceptions import TranscriptUnavailableError
from src.streaming.transport import MEDIA_TYPE

VIDEO_URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"


def ndjson(response) -> list[dict]:
    return [json.loads(line) for line in response.content.splitlines() if line.strip()]


@pytest.fixture
def client_for(fake_supabase, build, monkeypatch: pytest.MonkeyPatch):
    """Return a factory building a TestClient around an orchestrator."""

    def _client_for(*streams, agents=None) -> TestClient:
        orchestrator = build(*streams, agents=agents)
        monkeypatch.setattr("src.api.main.orchestrator", orchestrator)
        return TestClient(app)

    app.dependency_overrides[verify_token] = lambda: {"id": "user-1", "email": "u@example.com"}
    yield _client_for
    app.dependency_overrides.clear()


@pytest.mark.unit
class TestHealthEndpoint:
    """Test /health endpoint."""

    def test_health_check_returns_healthy_status(self) -> None:
        client = TestClient(app)
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        timestamp = datetime.fromisoformat(data["timestamp"].replace("Z", "+00:00"))
        assert isinstance(timestamp, datetime)

    def test_health_check_includes_services_status(self) -> None:
        client = TestClient(app)
        services = client.get("/health").json()["services"]

        assert set(services) == {"llm_client", "supabase", "http_client", "orchestrator"}
        for service_name, status in services.items():
            assert isinstance(status, bool), f"{service_name} status should be boolean"


@pytest.mark.unit
class TestVerifyToken:
    """Test authentication token verification."""

    @pytest.mark.asyncio
    async def test_verify_token_success(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SUPABASE_URL", "https://test.supabase.co")
        monkeypatch.setenv("SUPABASE_SERVICE_KEY", "test-service-key")
        mock_http_client = AsyncMock()
        mock_response = Mock()
        mock_response.status_code = 200
        mock_response.json = Mock(return_value={"id": "user123", "email": "test@example.com"})
        mock_http_client.get = AsyncMock(return_value=mock_response)
        credentials = HTTPAuthorizationCredentials(scheme="Bearer", credentials="valid-token")

        with patch("src.api.main.http_client", mock_http_client):
            result = await verify_token(credentials)

        assert result["id"] == "user123"
        url = mock_http_client.get.call_args.args[0]
        assert url == "https://test.supabase.co/auth/v1/user"

    @pytest.mark.asyncio
    async def test_verify_token_invalid_token(self, monkeypatch: pytest.MonkeyPatch) -> None:
        mock_http_client = AsyncMock()
        mock_response = Mock()
        mock_response.status_code = 401
        mock_response.text = "Invalid token"
        mock_http_client.get = AsyncMock(return_value=mock_response)
        credentials = HTTPAuthorizationCredentials(scheme="Bearer", credentials="invalid-token")

        with patch("src.api.main.http_client", mock_http_client):
            with pytest.raises(HTTPException) as exc_info:
                await verify_token(credentials)

        assert exc_info.value.status_code == 401
        assert "Invalid authentication token" in str(exc_info.value.detail)

    @pytest.mark.asyncio
    async def test_verify_token_without_user_id(self) -> None:
        mock_http_client = AsyncMock()
        mock_response = Mock()
        mock_response.status_code = 200
        mock_response.json = Mock(return_value={"email": "test@example.com"})
        mock_http_client.get = AsyncMock(return_value=mock_response)
        credentials = HTTPAuthorizationCredentials(scheme="Bearer", credentials="token")

        with patch("src.api.main.http_client", mock_http_client):
            with pytest.raises(HTTPException) as exc_info:
                await verify_token(credentials)

        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == "Authentication failed: Invalid authentication token"

    @pytest.mark.asyncio
    async def test_verify_token_http_client_not_initialized(self) -> None:
        credentials = HTTPAuthorizationCredentials(scheme="Bearer", credentials="test-token")

        with patch("src.api.main.http_client", None):
            with pytest.raises(HTTPException) as exc_info:
                await verify_token(credentials)

        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_verify_token_exception_handling(self) -> None:
        mock_http_client = AsyncMock()
        mock_http_client.get = AsyncMock(side_effect=Exception("Network error"))
        credentials = HTTPAuthorizationCredentials(scheme="Bearer", credentials="test-token")

        with patch("src.api.main.http_client", mock_http_client):
            with pytest.raises(HTTPException) as exc_info:
                await verify_token(credentials)

        assert exc_info.value.status_code == 401
        assert "Authentication error" in str(exc_info.value.detail)

    def test_endpoint_requires_authentication(self) -> None:
        client = TestClient(app)
        response = client.post("/api/summarize", json={"source_url": VIDEO_URL})

        # HTTPBearer answers 403 on older FastAPI releases, 401 on newer ones
        assert response.status_code in (401, 403)


@pytest.mark.unit
class TestSummarizeEndpoint:
    def test_streams_ndjson(self, fake_supabase, client_for, stream_of) -> None:
        fake_supabase.add_profile("user-1", 3)
        client = client_for(stream_of(["Great ", "video."]))

        response = client.post("/api/summarize", json={"source_url": VIDEO_URL})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith(MEDIA_TYPE)
        events = ndjson(response)
        assert [e["type"] for e in events] == [
            "status",
            "metadata",
            "status",
            "content",
            "content",
            "complete",
        ]
        assert fake_supabase.balance("user-1") == Decimal("2")

    def test_insufficient_credits_is_402(self, fake_supabase, client_for, stream_of) -> None:
        fake_supabase.add_profile("user-1", 0)
        client = client_for(stream_of(["unused"]))

        response = client.post("/api/summarize", json={"source_url": VIDEO_URL})

        assert response.status_code == 402
        detail = response.json()["detail"]
        assert detail["required"] == "1"
        assert detail["balance"] == "0"
        assert fake_supabase.tables["summaries"] == []

    def test_invalid_url_is_400(self, fake_supabase, client_for, stream_of) -> None:
        fake_supabase.add_profile("user-1", 5)
        client = client_for(stream_of(["unused"]))

        response = client.post("/api/summarize", json={"source_url": "https://example.com/x"})

        assert response.status_code == 400
        assert fake_supabase.transactions() == []

    def test_failure_after_debit_is_streamed_error(
        self, fake_supabase, client_for, stream_of
    ) -> None:
        fake_supabase.add_profile("user-1", 5)
        client = client_for(stream_of(["par", "tial"], fail_after=1))

        response = client.post("/api/summarize", json={"source_url": VIDEO_URL})

        events = ndjson(response)
        assert events[-1]["type"] == "error"
        assert events[-1]["refunded"] is True
        assert fake_supabase.balance("user-1") == Decimal("5")


@pytest.mark.unit
class TestOtherEndpoints:
    def test_intelligent_chat_requires_transcript(self, client_for, stream_of) -> None:
        client = client_for(stream_of(["unused"]))

        response = client.post(
            "/api/intelligent",
            json={"mode": "chat", "messages": [{"role": "user", "content": "hi"}]},
        )

        assert response.status_code == 400

    def test_intelligent_chat_is_free(self, fake_supabase, client_for, stream_of) -> None:
        client = client_for(stream_of(["Answer."]))

        response = client.post(
            "/api/intelligent",
            json={
                "mode": "chat",
                "transcript": "full transcript",
                "messages": [{"role": "user", "content": "What happens at 1:00?"}],
            },
        )

        assert [e["type"] for e in ndjson(response)] == ["chat_start", "chat_chunk", "complete"]
        assert fake_supabase.rpc_calls == []

    def test_video_analysis_uses_requested_tier(
        self, fake_supabase, client_for, stream_of
    ) -> None:
        fake_supabase.add_profile("user-1", 3)
        client = client_for(stream_of(["unused"]))

        response = client.post(
            "/api/video-analysis",
            json={"source_url": VIDEO_URL, "content_tier": "long"},
        )

        assert response.status_code == 402
        assert response.json()["detail"]["required"] == "4"

    def test_podcast_chat(self, fake_supabase, client_for, stream_of) -> None:
        fake_supabase.add_profile("user-1", 1)
        client = client_for(stream_of(["The host is Sam."]))

        response = client.post(
            "/api/podcast-chat",
            json={"transcript": "episode", "query": "Who hosts?", "history": []},
        )

        assert ndjson(response)[-1]["credits_charged"] == "0.5"

    def test_extract_returns_json(self, fake_supabase, client_for, stream_of) -> None:
        fake_supabase.add_profile("user-1", 4)
        agents = MagicMock()
        agents.analyze_expectations = AsyncMock(return_value="expectations")
        agents.extract_relevant_content = AsyncMock(return_value="relevant")
        client = client_for(stream_of(["unused"]), agents=agents)

        response = client.post("/api/extract", json={"source_url": VIDEO_URL})

        assert response.status_code == 200
        body = response.json()
        assert body["analysis"] == "expectations"
        assert body["extracted_content"] == "relevant"
        assert body["full_transcript"]

    def test_extract_without_transcript_is_404_and_refunded(
        self, fake_supabase, client_for, stream_of, transcripts
    ) -> None:
        fake_supabase.add_profile("user-1", 4)
        transcripts.fetch_transcript.side_effect = TranscriptUnavailableError(
            "No transcript or captions available for this video.", VIDEO_URL
        )
        client = client_for(stream_of(["unused"]), agents=MagicMock())

        response = client.post("/api/extract", json={"source_url": VIDEO_URL})

        assert response.status_code == 404
        assert fake_supabase.balance("user-1") == Decimal("4")

    def test_youtube_chat(self, client_for, stream_of) -> None:
        client = client_for(stream_of(["Here ", "it is."]))

        response = client.post(
            "/api/youtube-chat",
            json={
                "relevant_content": "relevant",
                "messages": [{"role": "user", "content": "more detail?"}],
            },
        )

        assert response.json() == {"reply": "Here it is."}

    def test_transcript(self, client_for, stream_of, transcripts) -> None:
        transcripts.fetch_raw = AsyncMock(
            return_value={"transcript_text": "hi", "segments": [], "chapters": None}
        )
        client = client_for(stream_of(["unused"]))

        response = client.post("/api/transcript", json={"source_url": VIDEO_URL})

        assert response.json()["transcript_text"] == "hi"

    def test_credits_and_history(self, fake_supabase, client_for, stream_of) -> None:
        fake_supabase.add_profile("user-1", 3)
        client = client_for(stream_of(["Summary text"]))
        client.post("/api/summarize", json={"source_url": VIDEO_URL})

        credits = client.get("/api/credits").json()
        history = client.get("/api/history").json()

        assert Decimal(credits["balance"]) == Decimal("2")
        assert credits["transactions"][0]["kind"] == "usage"
        assert [s["summary"] for s in history["summaries"]] == ["Summary text"]
