"""Pipeline stages: ingest, transcription, summarization and the results view.

Each stage is one sequential unit of work. Transcription and summarization
start by claiming the meeting (a conditional status update), make exactly one
external call, persist the result and advance the status. Anything that goes
wrong after the claim leaves the meeting ``failed`` with a message and is
re-raised as a labelled ``PipelineError``.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional

from fastapi.concurrency import run_in_threadpool

from .db import DatabaseManager, parse_due_date
from .errors import NotFound, PipelineError, StageConflict, StageFailed, ValidationFailed
from .models import ActionItem, ActionItemStatus, Meeting, MeetingStatus, Summary, Transcript
from .services.audio_service import AudioService

logger = logging.getLogger(__name__)


@dataclass
class TranscriptionOutcome:
    transcript: Transcript
    duration: float = 0.0
    already_existed: bool = False


@dataclass
class SummarizationOutcome:
    summary: Summary
    action_items: List[ActionItem] = field(default_factory=list)
    already_existed: bool = False


@dataclass
class MeetingResults:
    meeting: Meeting
    transcript: Optional[Transcript] = None
    summary: Optional[Summary] = None
    action_items: List[ActionItem] = field(default_factory=list)


def round_seconds(duration: Optional[float]) -> int:
    """Round half up to whole seconds"""
    return int(math.floor((duration or 0) + 0.5))


def ingest_audio(db: DatabaseManager, audio_service: AudioService, data: bytes, filename: str,
                 content_type: Optional[str], title: Optional[str] = None) -> Meeting:
    """Validate and store an upload, then create its meeting record"""
    audio_service.validate(content_type, len(data))
    _, audio_url = audio_service.store(data, filename)
    title = (title or "").strip() or filename
    return db.create_meeting(title=title, audio_url=audio_url, audio_filename=filename, file_size=len(data))


async def run_transcription(db: DatabaseManager, audio_service: AudioService, get_service,
                            meeting_id: str) -> TranscriptionOutcome:
    """Transcribe a meeting's audio.

    ``get_service`` builds the speech-to-text service; it is only called once
    the cheap preconditions pass so a short-circuit never needs credentials.
    """
    existing = db.get_latest_transcript(meeting_id)
    if existing is not None:
        logger.info(f"Transcript already exists for meeting {meeting_id}, skipping")
        meeting = db.get_meeting(meeting_id)
        duration = meeting.duration_seconds if meeting and meeting.duration_seconds else 0
        return TranscriptionOutcome(transcript=existing, duration=duration, already_existed=True)

    meeting = db.get_meeting(meeting_id)
    if meeting is None:
        raise NotFound("Meeting not found")
    if not meeting.audio_url:
        raise ValidationFailed("No audio file found for this meeting")

    service = get_service()

    if not db.claim_stage(meeting_id, MeetingStatus.TRANSCRIBING):
        raise StageConflict(f"Meeting is {MeetingStatus(meeting.status).value}; transcription cannot start")

    try:
        audio = await run_in_threadpool(audio_service.fetch, meeting.audio_url)
        result = await service.transcribe(audio, meeting.audio_filename or "audio.mp3")
        # An empty transcript would block summarization and every retry after it
        if not (result.text or "").strip():
            raise StageFailed("No speech detected in the audio. Please upload a recording with audible speech.")
        transcript = db.save_transcript(
            meeting,
            full_text=result.text,
            language=result.language or "en",
            duration_seconds=round_seconds(result.duration),
            confidence_score=result.confidence,
        )
    except PipelineError as e:
        logger.error(f"Transcription failed for meeting {meeting_id}: {e.message}")
        db.mark_failed(meeting_id, e.message, code=e.code)
        raise
    except Exception as e:
        logger.error(f"Transcription error for meeting {meeting_id}: {e}", exc_info=True)
        db.mark_failed(meeting_id, str(e) or "Transcription failed", code=StageFailed.code)
        raise StageFailed(str(e) or "Transcription failed") from e

    return TranscriptionOutcome(transcript=transcript, duration=result.duration or 0)


async def run_summarization(db: DatabaseManager, get_service, meeting_id: str) -> SummarizationOutcome:
    """Analyse a meeting's transcript into a summary and action items"""
    transcript = db.get_latest_transcript(meeting_id)
    if transcript is None:
        raise NotFound(
            "Transcript not found. The transcription may still be in progress or may have failed. "
            "Please wait a moment and try again."
        )

    existing = db.get_latest_summary(meeting_id)
    if existing is not None:
        logger.info(f"Summary already exists for meeting {meeting_id}, skipping")
        return SummarizationOutcome(
            summary=existing,
            action_items=db.get_action_items(meeting_id),
            already_existed=True,
        )

    meeting = db.get_meeting(meeting_id)
    if meeting is None:
        raise NotFound("Meeting not found")

    service = get_service()

    if not db.claim_stage(meeting_id, MeetingStatus.SUMMARIZING):
        raise StageConflict(f"Meeting is {MeetingStatus(meeting.status).value}; summarization cannot start")

    try:
        analysis = await service.analyze(transcript.full_text)
        summary = db.save_summary(
            meeting_id,
            summary_text=analysis.summary,
            key_decisions=analysis.key_decisions,
            participants=analysis.participants,
        )
    except PipelineError as e:
        logger.error(f"Summarization failed for meeting {meeting_id}: {e.message}")
        db.mark_failed(meeting_id, e.message, code=e.code)
        raise
    except Exception as e:
        logger.error(f"Summary generation error for meeting {meeting_id}: {e}", exc_info=True)
        message = str(e) or "Summary generation failed"
        db.mark_failed(meeting_id, message, code=StageFailed.code)
        raise StageFailed(message) from e

    stored = db.add_action_items(meeting_id, [
        {
            "task_description": item.task,
            "assignee": item.assignee,
            "priority": item.priority,
            "due_date": parse_due_date(item.due_date),
            "status": ActionItemStatus.PENDING,
        }
        for item in analysis.action_items
    ])
    if stored < len(analysis.action_items):
        logger.warning(f"Stored {stored}/{len(analysis.action_items)} action items for meeting {meeting_id}")

    try:
        db.transition(db.get_meeting(meeting_id), MeetingStatus.COMPLETED)
    except Exception as e:
        logger.error(f"Failed to complete meeting {meeting_id}: {e}", exc_info=True)
        db.mark_failed(meeting_id, str(e), code=StageFailed.code)
        raise StageFailed(str(e)) from e

    return SummarizationOutcome(summary=summary, action_items=db.get_action_items(meeting_id))


def assemble_results(db: DatabaseManager, meeting_id: str) -> MeetingResults:
    """Meeting plus its latest transcript, latest summary and action items"""
    meeting = db.get_meeting(meeting_id)
    if meeting is None:
        raise NotFound("Meeting not found")
    return MeetingResults(
        meeting=meeting,
        transcript=db.get_latest_transcript(meeting_id),
        summary=db.get_latest_summary(meeting_id),
        action_items=db.get_action_items(meeting_id),
    )
