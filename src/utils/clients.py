"""Client initialization utilities.

Provides functions for initializing the external service clients
(Supabase, OpenAI-compatible LLM) shared by the API and the CLI.
"""

from openai import AsyncOpenAI
from supabase import Client, create_client

from src.llm.config import get_llm_client
from src.pipeline.config import PipelineConfig, get_config
from src.pipeline.exceptions import ConfigurationError


def get_supabase_client(config: PipelineConfig | None = None) -> Client:
    """Initialize the Supabase client with the service role key.

    Raises:
        ConfigurationError: If SUPABASE_URL or SUPABASE_SERVICE_KEY is missing.
    """
    config = config or get_config()
    if not config.supabase_url:
        raise ConfigurationError("SUPABASE_URL")
    if not config.supabase_key:
        raise ConfigurationError("SUPABASE_SERVICE_KEY")
    return create_client(config.supabase_url, config.supabase_key)


def get_service_clients(
    config: PipelineConfig | None = None,
) -> tuple[AsyncOpenAI, Client]:
    """Initialize and return the LLM and Supabase clients.

    Reads configuration from environment variables:
    - LLM_BASE_URL: OpenAI-compatible API base URL
    - LLM_API_KEY: API key for chat completions
    - SUPABASE_URL: Supabase project URL
    - SUPABASE_SERVICE_KEY: Supabase service role key

    Returns:
        Tuple of (AsyncOpenAI LLM client, Supabase client).

    Raises:
        ConfigurationError: If required Supabase settings are missing.

    Examples:
        >>> llm_client, supabase = get_service_clients()
    """
    config = config or get_config()
    return get_llm_client(config), get_supabase_client(config)
