"""Streaming execution of a single LLM stage.

A stage is one chat completion call. ``stream_stage`` yields each non-empty
content delta as soon as the provider sends it; ``run_stage`` drains the
same stream, optionally calling ``on_token`` per delta, and returns the
accumulated text. Multi-stage workflows call these one after another.
"""

from collections.abc import AsyncIterator, Callable
from typing import Any

import httpx
from openai import AsyncOpenAI, OpenAIError

from src.pipeline.exceptions import GenerationError
from src.utils.logging import get_logger

logger = get_logger(__name__)

# Role-tagged message; content is a string or a list of text/image_url blocks
Message = dict[str, Any]


def text_block(text: str) -> dict[str, Any]:
    return {"type": "text", "text": text}


def image_block(url: str) -> dict[str, Any]:
    return {"type": "image_url", "image_url": {"url": url}}


class StageRunner:
    """Run chat completion stages against an OpenAI-compatible provider."""

    def __init__(self, client: AsyncOpenAI):
        self.client = client

    async def stream_stage(
        self,
        stage: str,
        model: str,
        messages: list[Message],
        **params: Any,
    ) -> AsyncIterator[str]:
        """Yield content deltas of one streamed completion in arrival order.

        Args:
            stage: Stage name used in logs and errors (analysis, vision, ...).
            model: Provider model id.
            messages: Ordered role-tagged messages.
            **params: Extra completion parameters (temperature, max_tokens).

        Raises:
            GenerationError: If the request fails or the stream breaks.
        """
        logger.info(
            "stage_started",
            stage=stage,
            model=model,
            message_count=len(messages),
        )

        try:
            stream = await self.client.chat.completions.create(
                model=model,
                messages=messages,
                stream=True,
                **params,
            )
        except (OpenAIError, httpx.HTTPError) as e:
            logger.exception("stage_request_failed", stage=stage, model=model)
            raise GenerationError(stage, str(e)) from e

        if stream is None:
            raise GenerationError(stage, "provider returned no response body")

        chars = 0
        try:
            async for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta.content
                if delta:
                    chars += len(delta)
                    yield delta
        except (OpenAIError, httpx.HTTPError) as e:
            logger.exception("stage_stream_failed", stage=stage, model=model, chars=chars)
            raise GenerationError(stage, str(e)) from e

        logger.info("stage_completed", stage=stage, model=model, chars=chars)

    async def run_stage(
        self,
        stage: str,
        model: str,
        messages: list[Message],
        on_token: Callable[[str], None] | None = None,
        **params: Any,
    ) -> str:
        """Run one stage to completion and return the full text."""
        parts: list[str] = []
        async for delta in self.stream_stage(stage, model, messages, **params):
            if on_token is not None:
                on_token(delta)
            parts.append(delta)
        return "".join(parts)
