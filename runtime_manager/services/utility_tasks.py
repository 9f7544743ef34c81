"""
Utility tasks run on the background session.

Each task has a deterministic local fallback, so callers always get a
usable answer whether or not the session is available.
"""
import logging
import re

from ..core.schemas import DEFAULT_BACKGROUND_MODEL
from .background_session import BackgroundSession

logger = logging.getLogger(__name__)

TITLE_PROMPT = (
    "Generate a short title (5-8 words max) for a conversation that starts "
    "with this message. Return ONLY the title, no quotes, no explanation:\n\n{message}"
)
TITLE_INPUT_LIMIT = 500
TITLE_MAX_LENGTH = 100
FALLBACK_TITLE_LENGTH = 50
FALLBACK_MIN_WORD_BREAK = 20

_WRAPPING_QUOTES = re.compile(r"^[\"']|[\"']$")


def fallback_title(message: str) -> str:
    """
    Title made from the message itself: its first 50 characters, cut at
    a word boundary when one exists past character 20.
    """
    cleaned = message.replace("\n", " ").strip()
    if len(cleaned) <= FALLBACK_TITLE_LENGTH:
        return cleaned

    last_space = cleaned.rfind(" ", 0, FALLBACK_TITLE_LENGTH + 1)
    if last_space > FALLBACK_MIN_WORD_BREAK:
        return cleaned[:last_space] + "..."
    return cleaned[:FALLBACK_TITLE_LENGTH] + "..."


def clean_title(text: str) -> str:
    return _WRAPPING_QUOTES.sub("", text.strip()).strip()[:TITLE_MAX_LENGTH]


class UtilityTasks:
    """Small model-backed helpers that never fail."""

    def __init__(self, session: BackgroundSession) -> None:
        self._session = session

    async def generate_title(self, message: str) -> str:
        """Short conversation title for a first message."""
        if not self._session.is_ready():
            logger.info("Background session not ready for title generation, using fallback")
            return fallback_title(message)

        try:
            prompt = TITLE_PROMPT.format(message=message[:TITLE_INPUT_LIMIT])
            result = await self._session.query(prompt, model=DEFAULT_BACKGROUND_MODEL)
            if result.success and result.text:
                title = clean_title(result.text)
                if title:
                    return title
            elif not result.success:
                logger.warning(f"Title generation query failed: {result.error}")
        except Exception as e:
            logger.error(f"Title generation failed: {e}")

        return fallback_title(message)
