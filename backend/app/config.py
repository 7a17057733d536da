import os
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

# Load environment variables
load_dotenv()


class Settings(BaseModel):
    """Runtime configuration read from the environment (and .env)"""
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./meetings.db")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    testing: bool = os.getenv("TESTING") == "true"

    # External capabilities (Groq)
    groq_api_key: Optional[str] = os.getenv("GROQ_API_KEY")
    transcription_model: str = os.getenv("TRANSCRIPTION_MODEL", "whisper-large-v3-turbo")
    transcription_language: str = os.getenv("TRANSCRIPTION_LANGUAGE", "en")
    summarization_model: str = os.getenv("SUMMARIZATION_MODEL", "llama-3.3-70b-versatile")

    # Audio storage
    recordings_dir: str = os.getenv("RECORDINGS_DIR", "recordings")
    audio_base_url: str = os.getenv("AUDIO_BASE_URL", "http://localhost:5167/audio")
    max_upload_mb: int = int(os.getenv("MAX_UPLOAD_MB", "50"))
    audio_fetch_timeout: int = int(os.getenv("AUDIO_FETCH_TIMEOUT", "60"))

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_mb * 1024 * 1024


@lru_cache
def get_settings() -> Settings:
    return Settings()
