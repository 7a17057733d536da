import logging
import re
from typing import Mapping, Optional

from groq import APIError, AsyncGroq, RateLimitError
from pydantic import BaseModel

from ..config import get_settings
from ..errors import RateLimited, UpstreamUnavailable

logger = logging.getLogger(__name__)

_RETRY_IN = re.compile(r"try again in ((?:\d+h)?(?:\d+m)?\d+(?:\.\d+)?s)")


class TranscriptionResult(BaseModel):
    text: str
    language: Optional[str] = None
    duration: Optional[float] = None
    confidence: Optional[float] = None


class TranscriptionError(Exception):
    """Speech-to-text request failed for a reason other than throttling"""


def parse_retry_after(message: Optional[str], headers: Optional[Mapping[str, str]] = None) -> str:
    """Extract a human readable wait time from a rate-limit error.

    Groq puts it in the message ("Please try again in 7m12.5s"); fall back to
    the retry-after header (seconds), then to a vague hint.
    """
    match = _RETRY_IN.search(message or "")
    if match:
        return match.group(1)
    if headers:
        value = headers.get("retry-after")
        if value:
            return f"{value}s" if value.isdigit() else value
    return "a few minutes"


def rate_limit_message(retry_after: str) -> str:
    return (
        "Rate limit exceeded. Groq's free tier limits the seconds of audio per hour. "
        f"Please wait {retry_after} and try again, or upgrade your Groq account."
    )


class TranscriptionService:
    """Speech-to-text through Groq's hosted Whisper"""

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None,
                 language: Optional[str] = None, client: Optional[AsyncGroq] = None):
        settings = get_settings()
        self.model = model or settings.transcription_model
        self.language = language or settings.transcription_language
        if client is None:
            api_key = api_key or settings.groq_api_key
            if not api_key:
                logger.error("GROQ_API_KEY environment variable not set")
                raise UpstreamUnavailable(
                    "Groq API key is not configured. Please add GROQ_API_KEY to your environment variables."
                )
            client = AsyncGroq(api_key=api_key)
        self.client = client

    async def transcribe(self, audio: bytes, filename: str) -> TranscriptionResult:
        """Transcribe an audio payload, requesting verbose output"""
        logger.info(f"Submitting {len(audio)} bytes ({filename}) to {self.model}")
        try:
            result = await self.client.audio.transcriptions.create(
                file=(filename, audio),
                model=self.model,
                language=self.language,
                response_format="verbose_json",
            )
        except RateLimitError as e:
            retry_after = parse_retry_after(e.message, e.response.headers)
            logger.warning(f"Groq rate limit hit, retry after {retry_after}")
            raise RateLimited(rate_limit_message(retry_after), retry_after=retry_after)
        except APIError as e:
            logger.error(f"Groq API error: {e}", exc_info=True)
            raise TranscriptionError(f"Groq Whisper API failed: {e.message}")

        # verbose_json adds language and duration on top of text
        transcription = TranscriptionResult(
            text=result.text or "",
            language=getattr(result, "language", None),
            duration=getattr(result, "duration", None),
        )
        logger.info(
            f"Transcribed {filename}: lang={transcription.language} "
            f"duration={transcription.duration} chars={len(transcription.text)}"
        )
        return transcription


class MockTranscriptionService:
    """Offline stand-in used when TESTING=true"""

    async def transcribe(self, audio: bytes, filename: str) -> TranscriptionResult:
        if len(audio) == 0:
            raise TranscriptionError("Empty audio data")
        return TranscriptionResult(text="This is a test transcription.", language="en", duration=2.0)


def get_transcription_service():
    # Use mock service if in test environment
    if get_settings().testing:
        return MockTranscriptionService()
    return TranscriptionService()
