import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, Date, DateTime, Enum, Float, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class MeetingStatus(str, enum.Enum):
    UPLOADED = "uploaded"
    TRANSCRIBING = "transcribing"
    TRANSCRIBED = "transcribed"
    SUMMARIZING = "summarizing"
    COMPLETED = "completed"
    FAILED = "failed"


class ActionItemPriority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ActionItemStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


def _enum_column(enum_cls, **kwargs):
    # Stored as the lowercase value; anything outside the enum is rejected on assignment
    return Column(
        Enum(
            enum_cls,
            native_enum=False,
            create_constraint=True,
            validate_strings=True,
            length=20,
            values_callable=lambda members: [m.value for m in members],
        ),
        **kwargs,
    )


class Meeting(Base):
    __tablename__ = "meetings"

    id = Column(String(36), primary_key=True, default=_new_id)
    title = Column(String, index=True, nullable=False)
    audio_url = Column(String, nullable=True)
    audio_filename = Column(String, nullable=True)
    file_size = Column(Integer, nullable=True)
    duration_seconds = Column(Integer, nullable=True)
    status = _enum_column(MeetingStatus, nullable=False, default=MeetingStatus.UPLOADED)
    error_message = Column(Text, nullable=True)
    error_code = Column(String(32), nullable=True)
    created_at = Column(DateTime, default=_utcnow, index=True)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)


class Transcript(Base):
    __tablename__ = "transcripts"

    id = Column(String(36), primary_key=True, default=_new_id)
    meeting_id = Column(String(36), ForeignKey("meetings.id"), index=True, nullable=False)
    full_text = Column(Text, nullable=False)
    language = Column(String(16), nullable=False, default="en")
    confidence_score = Column(Float, nullable=True)
    created_at = Column(DateTime, default=_utcnow, index=True)


class Summary(Base):
    __tablename__ = "summaries"

    id = Column(String(36), primary_key=True, default=_new_id)
    meeting_id = Column(String(36), ForeignKey("meetings.id"), index=True, nullable=False)
    summary_text = Column(Text, nullable=False)
    key_decisions = Column(JSON, nullable=False, default=list)
    participants = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=_utcnow, index=True)


class ActionItem(Base):
    __tablename__ = "action_items"

    id = Column(String(36), primary_key=True, default=_new_id)
    meeting_id = Column(String(36), ForeignKey("meetings.id"), index=True, nullable=False)
    task_description = Column(Text, nullable=False)
    assignee = Column(String, nullable=True)
    due_date = Column(Date, nullable=True)
    priority = _enum_column(ActionItemPriority, nullable=False, default=ActionItemPriority.MEDIUM)
    status = _enum_column(ActionItemStatus, nullable=False, default=ActionItemStatus.PENDING)
    created_at = Column(DateTime, default=_utcnow)
