"""Prompt construction for every pipeline stage.

Each builder returns the complete message list for one stage. Nothing is
remembered between calls: chat builders take the transcript and the full
client-held history every time.
"""

from src.pipeline.schemas import ChatTurn, UserPreferences

from .stage_runner import Message, image_block, text_block

# ==============================================================================
# Single-stage analysis
# ==============================================================================

ANALYSIS_SYSTEM_PROMPT = (
    "You are an expert video content analyzer. Provide detailed, well-structured "
    "analysis based on the user's requirements. Use headings, bold text and "
    "bullet or numbered lists where they help the reader."
)

ANALYSIS_INSTRUCTIONS = {
    "summary": "Provide a comprehensive summary of the main points and key information covered in this video.",
    "key-takeaways": "Extract and list the most important key takeaways and insights from this video.",
    "step-by-step": "Break down all the steps, processes, or methodologies mentioned in this video in a detailed, sequential manner.",
    "general-explanation": "Provide a clear, simple explanation of the concepts and topics discussed in this video.",
    "tech-review": "Provide a technical analysis and review of the content, including technical details, pros/cons, and expert insights.",
}

DEFAULT_ANALYSIS_INSTRUCTION = "Provide a comprehensive analysis of this video content."

# ==============================================================================
# Intelligent workflow (vision -> mapping -> chat)
# ==============================================================================

VISION_SYSTEM_PROMPT = (
    "You are an expert on YouTube click-through psychology. Analyze the image and "
    "title to identify visual hooks, emotions, and clickbait techniques."
)

VISION_TASK = (
    "Task: Identify the visual elements in the thumbnail (layout, faces, expressions, "
    "text overlays, colors), the title hooks (promises, curiosity gaps), and who is "
    "the likely target viewer. Output concise bullet points."
)

MAPPING_SYSTEM_PROMPT = (
    "You map YouTube transcripts to thumbnail/title promises. Return clear, helpful "
    "output with timestamps and justification."
)

MAPPING_TASK = (
    "Task: 1) Key title hooks. 2) Thumbnail elements (from the visual analysis). "
    "3) For each hook/element, list 2-4 precise transcript moments with timestamps "
    "that justify it. 4) Clickbait integrity score (0-100) and explanation. "
    "5) 3 improved title suggestions."
)

INTELLIGENT_CHAT_PROMPT = (
    "You are Ohsara Intelligent. Answer strictly based on the provided full YouTube "
    "transcript. Be concise, cite timestamps (mm:ss) when relevant, and format "
    "clearly with short sections and bullets."
)

# ==============================================================================
# Podcast and extracted-content chat
# ==============================================================================

PODCAST_SYSTEM_PROMPT = """You are an AI assistant specialized in analyzing podcast content. You have access to the full transcript of a podcast and can answer detailed questions about it.

INSTRUCTIONS:
- Answer questions based ONLY on the content from this transcript
- Provide detailed, well-formatted responses
- Use bullet points and numbered lists when appropriate
- Reference specific quotes or sections when relevant
- If something is not covered in the transcript, clearly state that
- Maintain context from previous questions in this conversation"""

EXTRACTED_CHAT_PROMPT = (
    "You are Ohsara. Answer based on the provided relevant video content that was "
    "extracted to match viewer expectations. If they ask for more details or "
    "something not covered in the relevant content, you can reference the full "
    "transcript. Be helpful and conversational."
)

RELEVANT_CONTENT_LIMIT = 10000
FULL_TRANSCRIPT_LIMIT = 20000


def truncate(text: str, max_chars: int) -> str:
    if not text:
        return ""
    return text[:max_chars] if len(text) > max_chars else text


def language_instruction(preferences: UserPreferences | None) -> str:
    if preferences is None or not preferences.response_language:
        return ""
    return f"\n\nRespond in {preferences.response_language}."


def _history(turns: list[ChatTurn] | None) -> list[Message]:
    return [{"role": turn.role, "content": turn.content} for turn in turns or []]


def build_analysis_messages(
    transcript: str,
    analysis_type: str | None = None,
    custom_request: str | None = None,
    preferences: UserPreferences | None = None,
    max_chars: int = 120000,
) -> list[Message]:
    """Messages for the single-stage summary/analysis workflows."""
    if analysis_type == "custom" and custom_request:
        instruction = (
            f'Based on this specific request: "{custom_request}", '
            "please analyze the content accordingly."
        )
    elif custom_request and analysis_type not in ANALYSIS_INSTRUCTIONS:
        instruction = custom_request
    else:
        instruction = ANALYSIS_INSTRUCTIONS.get(
            analysis_type or "summary", DEFAULT_ANALYSIS_INSTRUCTION
        )

    prompt = (
        "Please analyze the following video transcript:\n\n"
        f"{truncate(transcript, max_chars)}\n\n{instruction}"
    )
    return [
        {"role": "system", "content": ANALYSIS_SYSTEM_PROMPT + language_instruction(preferences)},
        {"role": "user", "content": prompt},
    ]


def build_vision_messages(
    title: str,
    thumbnail_url: str | None,
    preferences: UserPreferences | None = None,
) -> list[Message]:
    """Multimodal messages: title text plus the thumbnail image when known."""
    content = [text_block(f"Title: {title}\n{VISION_TASK}")]
    if thumbnail_url:
        content.append(image_block(thumbnail_url))
    return [
        {"role": "system", "content": VISION_SYSTEM_PROMPT + language_instruction(preferences)},
        {"role": "user", "content": content},
    ]


def build_mapping_messages(
    title: str,
    transcript: str,
    vision_notes: str,
    preferences: UserPreferences | None = None,
    max_chars: int = 120000,
) -> list[Message]:
    """Messages correlating the vision stage output with the transcript."""
    prompt = (
        f"Title: {title}\n"
        f"Visual analysis of the thumbnail and title:\n{vision_notes}\n\n"
        "Transcript (use for evidence with timestamps):\n"
        f"{truncate(transcript, max_chars)}\n\n{MAPPING_TASK}"
    )
    return [
        {"role": "system", "content": MAPPING_SYSTEM_PROMPT + language_instruction(preferences)},
        {"role": "user", "content": prompt},
    ]


def build_transcript_chat_messages(
    transcript: str,
    turns: list[ChatTurn] | None,
    preferences: UserPreferences | None = None,
    max_chars: int = 120000,
) -> list[Message]:
    """System prompt, full transcript, then every prior turn in order."""
    return [
        {"role": "system", "content": INTELLIGENT_CHAT_PROMPT + language_instruction(preferences)},
        {"role": "system", "content": f"Full transcript:\n\n{truncate(transcript, max_chars)}"},
        *_history(turns),
    ]


def build_podcast_chat_messages(
    transcript: str,
    history: list[ChatTurn] | None,
    query: str,
    preferences: UserPreferences | None = None,
    max_chars: int = 120000,
) -> list[Message]:
    """Podcast Q&A: transcript and history resent, then the new question."""
    return [
        {"role": "system", "content": PODCAST_SYSTEM_PROMPT + language_instruction(preferences)},
        {"role": "system", "content": f'PODCAST TRANSCRIPT:\n"""\n{truncate(transcript, max_chars)}\n"""'},
        *_history(history),
        {"role": "user", "content": query},
    ]


def build_extracted_chat_messages(
    relevant_content: str,
    full_transcript: str | None,
    turns: list[ChatTurn] | None,
    preferences: UserPreferences | None = None,
) -> list[Message]:
    messages: list[Message] = [
        {"role": "system", "content": EXTRACTED_CHAT_PROMPT + language_instruction(preferences)},
        {
            "role": "system",
            "content": "RELEVANT CONTENT (extracted based on viewer expectations):\n"
            + truncate(relevant_content, RELEVANT_CONTENT_LIMIT),
        },
    ]
    if full_transcript:
        messages.append(
            {
                "role": "system",
                "content": "FULL TRANSCRIPT (for additional context if needed):\n"
                + truncate(full_transcript, FULL_TRANSCRIPT_LIMIT),
            }
        )
    messages.extend(_history(turns))
    return messages
