import logging
import os
import secrets
import time
from pathlib import Path
from typing import Optional, Tuple

import requests

from ..config import get_settings
from ..errors import PayloadTooLarge, StorageError, ValidationFailed

logger = logging.getLogger(__name__)

ALLOWED_AUDIO_TYPES = frozenset({
    "audio/mpeg",
    "audio/mp3",
    "audio/wav",
    "audio/wave",
    "audio/x-wav",
    "audio/m4a",
    "audio/mp4",
    "audio/x-m4a",
    "audio/aac",
    "audio/webm",
    "audio/ogg",
    "audio/flac",
})


class AudioService:
    """Validates uploaded audio and keeps it in a local directory.

    Stored files are addressed by URL (``<audio_base_url>/<key>``) so a meeting
    record only needs to remember where its audio lives. URLs under our own
    base are read straight from disk, anything else is downloaded.
    """

    def __init__(self, recording_dir: Optional[str] = None, base_url: Optional[str] = None,
                 max_bytes: Optional[int] = None, fetch_timeout: Optional[int] = None):
        settings = get_settings()
        self.recording_dir = Path(recording_dir or settings.recordings_dir).resolve()
        self.base_url = (base_url or settings.audio_base_url).rstrip("/")
        self.max_bytes = max_bytes or settings.max_upload_bytes
        self.fetch_timeout = fetch_timeout or settings.audio_fetch_timeout
        os.makedirs(self.recording_dir, exist_ok=True)

    def validate(self, content_type: Optional[str], size: int) -> None:
        self.validate_type(content_type)
        self.validate_size(size)

    def validate_type(self, content_type: Optional[str]) -> None:
        if content_type not in ALLOWED_AUDIO_TYPES:
            raise ValidationFailed(
                f"Invalid file type: {content_type}. Please upload an audio file (MP3, WAV, M4A, AAC, etc.)."
            )

    def validate_size(self, size: Optional[int]) -> None:
        if size is not None and size > self.max_bytes:
            limit_mb = self.max_bytes // (1024 * 1024)
            raise PayloadTooLarge(
                f"File too large. Maximum size is {limit_mb}MB. Please compress your audio file before uploading."
            )

    def generate_key(self, filename: str) -> str:
        ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else "bin"
        return f"meetings/{int(time.time() * 1000)}-{secrets.token_hex(4)}.{ext}"

    def store(self, data: bytes, filename: str) -> Tuple[str, str]:
        """Write the payload under a fresh key and return (key, url)"""
        key = self.generate_key(filename)
        dest = self.recording_dir / key
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            dest.write_bytes(data)
        except OSError as e:
            logger.error(f"Failed to store audio {filename!r}: {e}", exc_info=True)
            raise StorageError(f"Upload failed: {e}")
        logger.info(f"Stored {len(data)} bytes of audio at {key}")
        return key, f"{self.base_url}/{key}"

    def _local_path(self, url: str) -> Optional[Path]:
        if not url.startswith(self.base_url + "/"):
            return None
        key = url[len(self.base_url) + 1:]
        path = (self.recording_dir / key).resolve()
        # keys never escape the recordings directory
        if self.recording_dir not in path.parents:
            raise StorageError(f"Invalid audio location: {url}")
        return path

    def fetch(self, url: str) -> bytes:
        """Retrieve a stored payload by its URL"""
        path = self._local_path(url)
        if path is not None:
            try:
                return path.read_bytes()
            except OSError as e:
                raise StorageError(f"Failed to download audio file: {e}")

        try:
            response = requests.get(url, timeout=self.fetch_timeout)
        except requests.exceptions.RequestException as e:
            raise StorageError(f"Failed to download audio file: {e}")
        if not response.ok:
            logger.error(f"Audio download failed: {response.status_code} {response.reason}")
            raise StorageError(f"Failed to download audio file: {response.status_code} {response.reason}")
        return response.content


_audio_service: Optional[AudioService] = None


def get_audio_service() -> AudioService:
    global _audio_service
    if _audio_service is None:
        _audio_service = AudioService()
    return _audio_service
