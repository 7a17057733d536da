from pydantic import BaseModel, ConfigDict
from typing import List, Optional
from datetime import date, datetime

from .models import ActionItemPriority, ActionItemStatus, MeetingStatus

class Meeting(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    audio_url: Optional[str] = None
    audio_filename: Optional[str] = None
    file_size: Optional[int] = None
    duration_seconds: Optional[int] = None
    status: MeetingStatus
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    created_at: datetime
    updated_at: datetime

class Transcript(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    meeting_id: str
    full_text: str
    language: str
    confidence_score: Optional[float] = None
    created_at: datetime

class Summary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    meeting_id: str
    summary_text: str
    key_decisions: List[str] = []
    participants: List[str] = []
    created_at: datetime

class ActionItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    meeting_id: str
    task_description: str
    assignee: Optional[str] = None
    due_date: Optional[date] = None
    priority: ActionItemPriority
    status: ActionItemStatus
    created_at: datetime

class MeetingDetail(BaseModel):
    """Aggregate read-only view of a meeting and its pipeline output"""
    meeting: Meeting
    transcript: Optional[Transcript] = None
    summary: Optional[Summary] = None
    action_items: List[ActionItem] = []

class StageRequest(BaseModel):
    """Request body for the transcribe and summarize triggers"""
    meeting_id: Optional[str] = None
