"""LLM client and model configuration.

Builds the AsyncOpenAI client used by the streaming stage runner and the
pydantic-ai model used by the single-shot agents. Both talk to any
OpenAI-compatible endpoint.
"""

from openai import AsyncOpenAI
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.providers.openai import OpenAIProvider

from src.pipeline.config import PipelineConfig, get_config


def get_llm_client(config: PipelineConfig | None = None) -> AsyncOpenAI:
    """Get the AsyncOpenAI client for streaming chat completions.

    Reads LLM_BASE_URL and LLM_API_KEY through PipelineConfig. A missing key
    falls back to "ollama" so local OpenAI-compatible servers work.

    Examples:
        >>> client = get_llm_client()
    """
    config = config or get_config()
    return AsyncOpenAI(
        base_url=config.llm_base_url,
        api_key=config.llm_api_key or "ollama",
    )


def get_model(config: PipelineConfig | None = None) -> OpenAIChatModel:
    """Get the pydantic-ai model for single-shot analysis agents.

    Uses LLM_CHOICE (default: gpt-4o-mini).

    Examples:
        >>> model = get_model()
    """
    config = config or get_config()
    provider = OpenAIProvider(
        base_url=config.llm_base_url,
        api_key=config.llm_api_key or "ollama",
    )
    return OpenAIChatModel(config.analysis_model, provider=provider)
