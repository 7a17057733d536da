import logging
from typing import List, Optional, Union

from pydantic import BaseModel, Field, field_validator
from pydantic_ai import Agent
from pydantic_ai.exceptions import ModelHTTPError
from pydantic_ai.models import Model
from pydantic_ai.models.groq import GroqModel
from pydantic_ai.providers.groq import GroqProvider

from ..config import get_settings
from ..errors import RateLimited, UpstreamUnavailable
from .transcription_service import parse_retry_after

logger = logging.getLogger(__name__)

ANALYSIS_PROMPT = """You are an expert meeting analyst. Analyze the meeting transcript and provide:
1. A concise summary (2-3 paragraphs)
2. Key decisions made
3. Participants mentioned
4. Action items with assignees, priority, and due dates if mentioned

Priority must be one of low, medium or high. Due dates use the YYYY-MM-DD format.
Leave the assignee or due date empty when the transcript does not mention one.
Be faithful to the transcript; do not invent details."""

PRIORITIES = ("low", "medium", "high")


class ActionItemDraft(BaseModel):
    """An action item as returned by the analysis model"""
    task: str
    assignee: Optional[str] = None
    priority: str = "medium"
    due_date: Optional[str] = None

    @field_validator("priority", mode="before")
    @classmethod
    def normalize_priority(cls, value):
        value = str(value or "").strip().lower()
        return value if value in PRIORITIES else "medium"

    @field_validator("assignee", "due_date", mode="before")
    @classmethod
    def blank_to_none(cls, value):
        if value is None:
            return None
        value = str(value).strip()
        return value if value and value.lower() not in ("null", "none", "n/a") else None


class MeetingAnalysis(BaseModel):
    """Structured result of analysing a transcript"""
    summary: str
    key_decisions: List[str] = Field(default_factory=list)
    participants: List[str] = Field(default_factory=list)
    action_items: List[ActionItemDraft] = Field(default_factory=list)


class SummarizationService:
    """Transcript analysis with a pydantic-ai agent on a Groq chat model"""

    def __init__(self, model: Optional[Union[Model, str]] = None, api_key: Optional[str] = None):
        settings = get_settings()
        if model is None:
            api_key = api_key or settings.groq_api_key
            if not api_key:
                logger.error("GROQ_API_KEY environment variable not set")
                raise UpstreamUnavailable(
                    "Groq API key is not configured. Please add GROQ_API_KEY to your environment variables."
                )
            model = GroqModel(settings.summarization_model, provider=GroqProvider(api_key=api_key))

        self.agent = Agent(
            model,
            output_type=MeetingAnalysis,
            system_prompt=ANALYSIS_PROMPT,
            retries=3,
        )

    async def analyze(self, transcript: str) -> MeetingAnalysis:
        """Extract summary, decisions, participants and action items from a transcript"""
        if not transcript or not transcript.strip():
            raise ValueError("Empty transcript text provided")

        logger.info(f"Analyzing transcript of length {len(transcript)}")
        try:
            result = await self.agent.run(
                f"Analyze this meeting transcript and extract key information:\n\n{transcript}",
                model_settings={"temperature": 0.3},
            )
        except ModelHTTPError as e:
            if e.status_code == 429:
                retry_after = parse_retry_after(str(e.body or e.message))
                logger.warning(f"Analysis model rate limited, retry after {retry_after}")
                raise RateLimited(
                    f"Rate limit exceeded. Please wait {retry_after} and try again.",
                    retry_after=retry_after,
                )
            raise

        analysis = result.output
        logger.info(
            f"Analysis produced {len(analysis.key_decisions)} decisions, "
            f"{len(analysis.action_items)} action items"
        )
        return analysis


class MockSummarizationService:
    """Offline stand-in used when TESTING=true"""

    async def analyze(self, transcript: str) -> MeetingAnalysis:
        if not transcript:
            raise ValueError("Empty transcript text provided")
        words = transcript.split()
        return MeetingAnalysis(
            summary=" ".join(words[:max(1, len(words) // 2)]) + "...",
            key_decisions=[],
            participants=[],
            action_items=[ActionItemDraft(task="Review the meeting notes")],
        )


def get_summarization_service():
    # Use mock service if in test environment
    if get_settings().testing:
        return MockSummarizationService()
    return SummarizationService()
