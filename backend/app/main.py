from fastapi import Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.orm import Session
import uvicorn
from typing import Optional
import logging

from .config import get_settings
from .database import get_db, init_db
from .db import DatabaseManager
from .errors import PipelineError, ValidationFailed
from .pipeline import assemble_results, ingest_audio, run_summarization, run_transcription
from . import schemas
from .services.audio_service import AudioService, get_audio_service
from .services.summarization_service import get_summarization_service
from .services.transcription_service import get_transcription_service

settings = get_settings()

# Configure logger with line numbers and function names
formatter = logging.Formatter(
    '%(asctime)s - %(levelname)s - [%(filename)s:%(lineno)d - %(funcName)s()] - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
console_handler = logging.StreamHandler()
console_handler.setFormatter(formatter)

# Attach to the package logger so every app.* module shares the format
app_logger = logging.getLogger("app")
app_logger.setLevel(settings.log_level.upper())
if not app_logger.handlers:
    app_logger.addHandler(console_handler)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Meeting Summarizer API",
    description="Upload meeting recordings, transcribe them, and extract summaries and action items",
    version="1.0.0"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=3600,            # Cache preflight requests for 1 hour
)

# Stored audio is addressed by URL; serve it back from the recordings directory
app.mount("/audio", StaticFiles(directory=settings.recordings_dir, check_dir=False), name="audio")


# --- Dependencies ---

def get_manager(session: Session = Depends(get_db)) -> DatabaseManager:
    return DatabaseManager(session)

# Stages build their external service lazily, so these hand out factories
def transcription_service_factory():
    return get_transcription_service

def summarization_service_factory():
    return get_summarization_service


# --- Error handling ---

@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    problems = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error.get("loc", ())[1:]) or "body"
        problems.append(f"{field}: {error.get('msg', 'invalid value')}")
    logger.warning(f"Rejected malformed request to {request.url.path}: {problems}")
    return JSONResponse(
        status_code=400,
        content=ValidationFailed(f"Invalid request: {'; '.join(problems)}").to_dict(),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"error": "Internal server error", "code": "INTERNAL_ERROR"})


def _json(model) -> dict:
    return model.model_dump(mode="json")

def _require_meeting_id(body: schemas.StageRequest) -> str:
    if not body.meeting_id:
        raise ValidationFailed("Meeting ID is required")
    return body.meeting_id


# --- Endpoints ---

@app.get("/health")
def health():
    return {"status": "healthy"}


@app.post("/meetings", status_code=201)
async def create_meeting(
    audio: Optional[UploadFile] = File(None),
    title: Optional[str] = Form(None),
    db: DatabaseManager = Depends(get_manager),
    audio_service: AudioService = Depends(get_audio_service),
):
    """Upload a recording and create its meeting record"""
    if audio is None:
        raise ValidationFailed("No audio file provided")

    # Never buffer more than one byte past the ceiling
    audio_service.validate_type(audio.content_type)
    audio_service.validate_size(audio.size)
    data = await audio.read(audio_service.max_bytes + 1)
    logger.info(f"Upload received: {audio.filename} ({audio.content_type}, {len(data)} bytes)")
    meeting = await run_in_threadpool(
        ingest_audio,
        db,
        audio_service,
        data=data,
        filename=audio.filename or "audio",
        content_type=audio.content_type,
        title=title,
    )
    return JSONResponse(status_code=201, content={"meeting": _json(schemas.Meeting.model_validate(meeting))})


@app.get("/meetings")
def list_meetings(db: DatabaseManager = Depends(get_manager)):
    """List all meetings, newest first"""
    return [_json(schemas.Meeting.model_validate(m)) for m in db.list_meetings()]


@app.get("/meetings/{meeting_id}")
def get_meeting(meeting_id: str, db: DatabaseManager = Depends(get_manager)):
    """Meeting with its latest transcript, latest summary and action items"""
    results = assemble_results(db, meeting_id)
    detail = schemas.MeetingDetail(
        meeting=schemas.Meeting.model_validate(results.meeting),
        transcript=schemas.Transcript.model_validate(results.transcript) if results.transcript else None,
        summary=schemas.Summary.model_validate(results.summary) if results.summary else None,
        action_items=[schemas.ActionItem.model_validate(a) for a in results.action_items],
    )
    return _json(detail)


@app.post("/transcribe")
async def transcribe(
    body: schemas.StageRequest,
    db: DatabaseManager = Depends(get_manager),
    audio_service: AudioService = Depends(get_audio_service),
    service_factory=Depends(transcription_service_factory),
):
    """Run the transcription stage for a meeting"""
    meeting_id = _require_meeting_id(body)
    outcome = await run_transcription(db, audio_service, service_factory, meeting_id)
    transcript = _json(schemas.Transcript.model_validate(outcome.transcript))
    if outcome.already_existed:
        return {"success": True, "message": "Transcript already exists", "transcript": transcript}
    return {"success": True, "transcript": transcript, "duration": outcome.duration}


@app.post("/summarize")
async def summarize(
    body: schemas.StageRequest,
    db: DatabaseManager = Depends(get_manager),
    service_factory=Depends(summarization_service_factory),
):
    """Run the summarization stage for a meeting"""
    meeting_id = _require_meeting_id(body)
    outcome = await run_summarization(db, service_factory, meeting_id)
    response = {
        "success": True,
        "summary": _json(schemas.Summary.model_validate(outcome.summary)),
        "action_items": [_json(schemas.ActionItem.model_validate(a)) for a in outcome.action_items],
    }
    if outcome.already_existed:
        response["message"] = "Summary already exists"
    return response


@app.on_event("startup")
async def startup_event():
    logger.info("Initializing database")
    init_db()


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=5167)
