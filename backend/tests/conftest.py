import pytest
from fastapi.testclient import TestClient
import os
import tempfile
import shutil
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set testing environment variables before the app reads its settings
TEST_DB_URL = "sqlite:///:memory:"
os.environ["TESTING"] = "true"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ.pop("GROQ_API_KEY", None)

from app.main import app, summarization_service_factory, transcription_service_factory
from app.database import Base, get_db
from app.db import DatabaseManager
from app.services.audio_service import AudioService, get_audio_service
from app.services.summarization_service import ActionItemDraft, MeetingAnalysis
from app.services.transcription_service import TranscriptionResult

# Create test engine
engine = create_engine(
    TEST_DB_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Test SessionLocal
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Override the dependency
def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()

app.dependency_overrides[get_db] = override_get_db

TEST_BASE_URL = "http://testserver"


class FakeTranscriptionService:
    """Records calls; returns ``result`` or raises ``error``"""

    def __init__(self):
        self.calls = 0
        self.error = None
        self.result = TranscriptionResult(
            text="Alice: let's ship the release on Friday. Bob: I'll update the changelog.",
            language="en",
            duration=61.5,
        )

    async def transcribe(self, audio, filename):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.result


class FakeSummarizationService:
    def __init__(self):
        self.calls = 0
        self.error = None
        self.result = MeetingAnalysis(
            summary="The team agreed to ship the release on Friday.",
            key_decisions=["Ship the release on Friday"],
            participants=["Alice", "Bob"],
            action_items=[
                ActionItemDraft(task="Update the changelog", assignee="Bob", priority="High", due_date="2026-10-23"),
                ActionItemDraft(task="Announce the release", priority="urgent"),
            ],
        )

    async def analyze(self, transcript):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture(autouse=True)
def test_db():
    """Create test database tables"""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)

@pytest.fixture
def db_session():
    session = TestingSessionLocal()
    yield session
    session.close()

@pytest.fixture
def manager(db_session):
    return DatabaseManager(db_session)

@pytest.fixture
def recordings_dir():
    """Temporary directory for stored audio"""
    temp_dir = tempfile.mkdtemp()
    yield temp_dir
    shutil.rmtree(temp_dir)

@pytest.fixture
def audio_service(recordings_dir):
    return AudioService(recording_dir=recordings_dir, base_url=f"{TEST_BASE_URL}/audio")

@pytest.fixture
def transcriber():
    return FakeTranscriptionService()

@pytest.fixture
def summarizer():
    return FakeSummarizationService()

@pytest.fixture
def client(audio_service, transcriber, summarizer):
    """Test client wired to the fake services"""
    app.dependency_overrides[get_audio_service] = lambda: audio_service
    app.dependency_overrides[transcription_service_factory] = lambda: (lambda: transcriber)
    app.dependency_overrides[summarization_service_factory] = lambda: (lambda: summarizer)
    yield TestClient(app, base_url=TEST_BASE_URL)
    for dependency in (get_audio_service, transcription_service_factory, summarization_service_factory):
        app.dependency_overrides.pop(dependency, None)
