"""Single-shot pydantic-ai agents for the expectation/extraction workflow.

These stages are not streamed: the caller needs the whole expectation
analysis before extraction can start, and the endpoint answers with one
JSON document.
"""

from pydantic_ai import Agent, ImageUrl
from pydantic_ai.models import Model

from src.pipeline.exceptions import GenerationError
from src.utils.logging import get_logger

from .prompts import truncate

logger = get_logger(__name__)

# ==============================================================================
# System Prompts
# ==============================================================================

EXPECTATIONS_SYSTEM_PROMPT = (
    "You are an expert at understanding what viewers expect from YouTube videos "
    "based on thumbnails and titles. Analyze the thumbnail image and title to "
    "identify what the viewer is likely expecting to learn, see, or experience "
    "from this video. Be specific about the key promises or expectations this "
    "video creates."
)

EXTRACTION_SYSTEM_PROMPT = (
    "You are an expert at extracting the most relevant parts of video transcripts. "
    "Given viewer expectations and a full transcript, identify and extract the key "
    "segments that directly address what the viewer is expecting. Focus on "
    "actionable content, answers to implied questions, and fulfillment of promises "
    "made in the title/thumbnail."
)

EXTRACTION_TRANSCRIPT_LIMIT = 50000


class InsightAgents:
    """Expectation analysis (title + thumbnail) and relevant-content extraction."""

    def __init__(self, model: Model | str):
        self.expectations_agent = Agent(
            model,
            system_prompt=EXPECTATIONS_SYSTEM_PROMPT,
            retries=2,
        )
        self.extraction_agent = Agent(
            model,
            system_prompt=EXTRACTION_SYSTEM_PROMPT,
            retries=2,
        )

    async def analyze_expectations(self, title: str, thumbnail_url: str) -> str:
        """Describe what a viewer expects from the title and thumbnail.

        Raises:
            GenerationError: If the model call fails.
        """
        prompt = (
            f'Video title: "{title}"\n\n'
            "Based on this title and the thumbnail image, what are the main "
            "expectations a viewer would have? What are they hoping to learn or see?"
        )
        user_prompt: list = [prompt]
        if thumbnail_url:
            user_prompt.append(ImageUrl(url=thumbnail_url))

        try:
            result = await self.expectations_agent.run(user_prompt)
        except Exception as e:
            logger.exception("expectations_stage_failed", title=title)
            raise GenerationError("expectations", str(e)) from e

        logger.info("expectations_stage_completed", chars=len(result.output))
        return result.output

    async def extract_relevant_content(self, transcript: str, expectations: str) -> str:
        """Pull the transcript passages that answer the viewer's expectations.

        Raises:
            GenerationError: If the model call fails.
        """
        prompt = (
            f"VIEWER EXPECTATIONS:\n{expectations}\n\n"
            f"FULL TRANSCRIPT:\n{truncate(transcript, EXTRACTION_TRANSCRIPT_LIMIT)}\n\n"
            "Extract the most relevant transcript segments that directly address these "
            "expectations. Include enough context but focus on the parts that deliver "
            "what the viewer came for."
        )
        try:
            result = await self.extraction_agent.run(prompt)
        except Exception as e:
            logger.exception("extraction_stage_failed")
            raise GenerationError("extraction", str(e)) from e

        logger.info("extraction_stage_completed", chars=len(result.output))
        return result.output
