"""Unit tests for the single-shot expectation/extraction agents."""

from unittest.mock import AsyncMock, patch

import pytest
from pydantic_ai.models.test import TestModel as StubModel

from src.llm.agents import InsightAgents
from src.pipeline.exceptions import GenerationError


@pytest.mark.unit
class TestInsightAgents:
    @pytest.mark.asyncio
    async def test_expectations_returns_text(self) -> None:
        agents = InsightAgents(StubModel(custom_output_text="Viewers expect a tutorial."))

        result = await agents.analyze_expectations("How to bake bread", "")

        assert result == "Viewers expect a tutorial."

    @pytest.mark.asyncio
    async def test_extraction_returns_text(self) -> None:
        agents = InsightAgents(StubModel(custom_output_text="Step 1: knead."))

        result = await agents.extract_relevant_content("long transcript", "a tutorial")

        assert result == "Step 1: knead."

    @pytest.mark.asyncio
    async def test_failure_is_generation_error(self) -> None:
        agents = InsightAgents(StubModel())

        with patch.object(
            agents.extraction_agent, "run", AsyncMock(side_effect=RuntimeError("provider down"))
        ):
            with pytest.raises(GenerationError) as exc_info:
                await agents.extract_relevant_content("t", "e")

        assert exc_info.value.stage == "extraction"
