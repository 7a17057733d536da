import logging
from datetime import date, datetime, timezone
from typing import Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .models import ActionItem, Meeting, MeetingStatus, Summary, Transcript
from .state_machine import CLAIM_SOURCES, check_transition

logger = logging.getLogger(__name__)


class DatabaseManager:
    """Record store for meetings, transcripts, summaries and action items.

    Wraps a SQLAlchemy session. Every write that changes a meeting's status
    goes through ``check_transition`` so only legal transitions are persisted.
    """

    def __init__(self, session: Session):
        self.session = session

    # -- meetings ---------------------------------------------------------

    def create_meeting(self, title: str, audio_url: str, audio_filename: str,
                       file_size: Optional[int] = None) -> Meeting:
        """Create a meeting in the uploaded state"""
        meeting = Meeting(
            title=title,
            audio_url=audio_url,
            audio_filename=audio_filename,
            file_size=file_size,
            status=MeetingStatus.UPLOADED,
        )
        self.session.add(meeting)
        self.session.commit()
        self.session.refresh(meeting)
        logger.info(f"Created meeting {meeting.id} ({title!r})")
        return meeting

    def get_meeting(self, meeting_id: str) -> Optional[Meeting]:
        return self.session.get(Meeting, meeting_id)

    def list_meetings(self) -> List[Meeting]:
        stmt = select(Meeting).order_by(Meeting.created_at.desc())
        return list(self.session.scalars(stmt))

    def claim_stage(self, meeting_id: str, target: MeetingStatus) -> bool:
        """Atomically move a meeting into a stage's in-progress status.

        The UPDATE only matches while the status is still one of the claim
        sources, so of two concurrent callers at most one gets a row back.
        """
        sources = CLAIM_SOURCES[target]
        stmt = (
            update(Meeting)
            .where(Meeting.id == meeting_id, Meeting.status.in_(list(sources)))
            .values(status=target, error_message=None, error_code=None, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        self.session.commit()
        claimed = result.rowcount == 1
        if claimed:
            logger.info(f"Meeting {meeting_id} claimed for {target.value}")
        else:
            logger.warning(f"Meeting {meeting_id} could not be claimed for {target.value}")
        return claimed

    def transition(self, meeting: Meeting, target: MeetingStatus, commit: bool = True, **fields) -> Meeting:
        check_transition(meeting.status, target)
        previous = meeting.status
        meeting.status = target
        for key, value in fields.items():
            setattr(meeting, key, value)
        if commit:
            self.session.commit()
            self.session.refresh(meeting)
        logger.info(f"Meeting {meeting.id}: {MeetingStatus(previous).value} -> {target.value}")
        return meeting

    def mark_failed(self, meeting_id: str, message: str, code: Optional[str] = None) -> Optional[Meeting]:
        """Record a stage failure. Never raises; the stage error is what the caller sees."""
        try:
            self.session.rollback()
            meeting = self.get_meeting(meeting_id)
            if meeting is None:
                return None
            if meeting.status == MeetingStatus.FAILED:
                return meeting
            return self.transition(meeting, MeetingStatus.FAILED, error_message=message, error_code=code)
        except Exception as e:
            logger.error(f"Failed to update DB status to failed for {meeting_id}: {e}", exc_info=True)
            self.session.rollback()
            return None

    # -- transcripts ------------------------------------------------------

    def get_latest_transcript(self, meeting_id: str) -> Optional[Transcript]:
        stmt = (
            select(Transcript)
            .where(Transcript.meeting_id == meeting_id)
            .order_by(Transcript.created_at.desc())
            .limit(1)
        )
        return self.session.scalars(stmt).first()

    def save_transcript(self, meeting: Meeting, full_text: str, language: str,
                        duration_seconds: int, confidence_score: Optional[float] = None) -> Transcript:
        """Persist the transcript and move the meeting to transcribed in one commit"""
        transcript = Transcript(
            meeting_id=meeting.id,
            full_text=full_text,
            language=language,
            confidence_score=confidence_score,
        )
        self.session.add(transcript)
        self.transition(meeting, MeetingStatus.TRANSCRIBED, commit=False, duration_seconds=duration_seconds)
        self.session.commit()
        self.session.refresh(transcript)
        return transcript

    # -- summaries & action items -----------------------------------------

    def get_latest_summary(self, meeting_id: str) -> Optional[Summary]:
        stmt = (
            select(Summary)
            .where(Summary.meeting_id == meeting_id)
            .order_by(Summary.created_at.desc())
            .limit(1)
        )
        return self.session.scalars(stmt).first()

    def save_summary(self, meeting_id: str, summary_text: str, key_decisions: List[str],
                     participants: List[str]) -> Summary:
        summary = Summary(
            meeting_id=meeting_id,
            summary_text=summary_text,
            key_decisions=list(key_decisions),
            participants=list(participants),
        )
        self.session.add(summary)
        self.session.commit()
        self.session.refresh(summary)
        return summary

    def add_action_items(self, meeting_id: str, items: Iterable[dict]) -> int:
        """Insert action items in bulk.

        Returns the number stored. A failed insert is logged and rolled back
        rather than raised: a summary without its action items is still usable.
        """
        rows = [ActionItem(meeting_id=meeting_id, **item) for item in items]
        if not rows:
            return 0
        try:
            self.session.add_all(rows)
            self.session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to save action items for {meeting_id}: {e}", exc_info=True)
            self.session.rollback()
            return 0
        return len(rows)

    def get_action_items(self, meeting_id: str) -> List[ActionItem]:
        stmt = (
            select(ActionItem)
            .where(ActionItem.meeting_id == meeting_id)
            .order_by(ActionItem.created_at)
        )
        return list(self.session.scalars(stmt))


def parse_due_date(value: Optional[str]) -> Optional[date]:
    """Parse a YYYY-MM-DD due date, ignoring anything else"""
    if not value:
        return None
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        logger.warning(f"Ignoring unparsable due date: {value!r}")
        return None
