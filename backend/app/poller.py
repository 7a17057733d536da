"""Client-side driver for the processing pipeline.

The server never advances a meeting on its own: a client watches the meeting
status and triggers the next stage when it sees the prerequisite state. This
module is that client. ``MeetingsClient`` speaks HTTP (any requests-compatible
session works, including FastAPI's TestClient) and ``StatusPoller`` runs the
observe-and-trigger loop.
"""

import logging
import re
import time
from typing import Callable, Optional

import requests

from .errors import RateLimited

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 2
DEFAULT_UPLOAD_TIMEOUT_SECONDS = 120
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30

# Stage triggers wait for the external call to finish
DEFAULT_STAGE_TIMEOUT_SECONDS = 600

RATE_LIMIT_CODE = RateLimited.code

# Rate-limit messages read "... Please wait <hint> and try again ..."
_WAIT_HINT = re.compile(r"[Pp]lease wait (\S+?) and try again")


class PipelineFailed(Exception):
    """The meeting ended up failed (or a stage trigger was rejected)"""

    def __init__(self, message: str, meeting_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.meeting_id = meeting_id


class RateLimitExceeded(PipelineFailed):
    """A stage was throttled by the external service"""

    def __init__(self, message: str, retry_after: str, meeting_id: Optional[str] = None):
        super().__init__(message, meeting_id)
        self.retry_after = retry_after

    @property
    def guidance(self) -> str:
        return "\n".join([
            f"1. Wait {self.retry_after} and try again",
            "2. Upgrade your Groq account at console.groq.com/settings/billing",
            "3. Use shorter audio files (under 10 minutes) to stay within limits",
        ])


class PollTimeout(PipelineFailed):
    """Gave up before the meeting reached a terminal status"""


class StageResponse:
    def __init__(self, status_code: int, body: dict):
        self.status_code = status_code
        self.body = body

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class MeetingsClient:
    """Thin HTTP client for the meeting endpoints"""

    def __init__(self, base_url: str, session=None,
                 upload_timeout: float = DEFAULT_UPLOAD_TIMEOUT_SECONDS,
                 request_timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
                 stage_timeout: float = DEFAULT_STAGE_TIMEOUT_SECONDS):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.upload_timeout = upload_timeout
        self.request_timeout = request_timeout
        self.stage_timeout = stage_timeout

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    @staticmethod
    def _body(response) -> dict:
        try:
            body = response.json()
        except ValueError:
            return {"error": response.text}
        return body if isinstance(body, dict) else {"data": body}

    def upload(self, path: str, content_type: str, title: Optional[str] = None) -> dict:
        """Upload an audio file and return the created meeting"""
        with open(path, "rb") as f:
            files = {"audio": (path.rsplit("/", 1)[-1], f, content_type)}
            data = {"title": title} if title else {}
            response = self.session.post(self._url("/meetings"), files=files, data=data,
                                         timeout=self.upload_timeout)
        body = self._body(response)
        if response.status_code != 201:
            raise PipelineFailed(body.get("error") or f"Upload failed ({response.status_code})")
        return body["meeting"]

    def get_meeting(self, meeting_id: str) -> dict:
        response = self.session.get(self._url(f"/meetings/{meeting_id}"), timeout=self.request_timeout)
        body = self._body(response)
        if response.status_code != 200:
            raise PipelineFailed(body.get("error") or f"Failed to fetch meeting status ({response.status_code})",
                                 meeting_id)
        return body

    def _trigger(self, path: str, meeting_id: str) -> StageResponse:
        response = self.session.post(self._url(path), json={"meeting_id": meeting_id},
                                     timeout=self.stage_timeout)
        return StageResponse(response.status_code, self._body(response))

    def transcribe(self, meeting_id: str) -> StageResponse:
        return self._trigger("/transcribe", meeting_id)

    def summarize(self, meeting_id: str) -> StageResponse:
        return self._trigger("/summarize", meeting_id)


class StatusPoller:
    """Poll a meeting and trigger each stage when its prerequisite status shows up.

    A stage is triggered once per status transition observed (seeing
    ``uploaded`` five times in a row triggers transcription once). Duplicate
    triggers across clients are absorbed by the server's idempotency checks.
    """

    def __init__(self, client: MeetingsClient, interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
                 max_attempts: Optional[int] = None,
                 on_status: Optional[Callable[[str, dict], None]] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.client = client
        self.interval = interval
        self.max_attempts = max_attempts
        self.on_status = on_status
        self.sleep = sleep

    def _check_trigger(self, meeting_id: str, stage: str, response: StageResponse) -> bool:
        """Raise for fatal trigger responses. Returns False if the trigger should be re-armed."""
        if response.ok:
            logger.info(f"{stage} finished for meeting {meeting_id}")
            return True
        body = response.body
        if response.status_code == 429:
            raise RateLimitExceeded(
                body.get("error", "Rate limit exceeded"),
                retry_after=body.get("retry_after", "a few minutes"),
                meeting_id=meeting_id,
            )
        if response.status_code == 409:
            # someone else holds the stage; keep watching
            logger.info(f"{stage} already running for meeting {meeting_id}")
            return True
        if stage == "summarization" and response.status_code == 404:
            logger.info(f"Transcript not visible yet for meeting {meeting_id}, will retry")
            return False
        raise PipelineFailed(body.get("error") or f"{stage} failed ({response.status_code})", meeting_id)

    @staticmethod
    def _failure(meeting_id: str, meeting: dict) -> PipelineFailed:
        """Error for a meeting observed in the failed state"""
        message = meeting.get("error_message") or "Processing failed. Please try again."
        if meeting.get("error_code") == RATE_LIMIT_CODE:
            match = _WAIT_HINT.search(message)
            retry_after = match.group(1) if match else "a few minutes"
            return RateLimitExceeded(message, retry_after=retry_after, meeting_id=meeting_id)
        return PipelineFailed(message, meeting_id)

    def run(self, meeting_id: str) -> dict:
        """Drive the meeting to a terminal status and return the final view"""
        last_status = None
        attempts = 0
        while True:
            view = self.client.get_meeting(meeting_id)
            meeting = view["meeting"]
            status = meeting["status"]

            if status != last_status:
                logger.info(f"Meeting {meeting_id} status: {status}")
                if self.on_status:
                    self.on_status(status, view)

            if status == "completed":
                return view
            if status == "failed":
                raise self._failure(meeting_id, meeting)

            if status != last_status:
                if status == "uploaded":
                    armed = self._check_trigger(meeting_id, "transcription", self.client.transcribe(meeting_id))
                elif status == "transcribed":
                    armed = self._check_trigger(meeting_id, "summarization", self.client.summarize(meeting_id))
                else:
                    armed = True
                if armed:
                    last_status = status

            attempts += 1
            if self.max_attempts is not None and attempts >= self.max_attempts:
                raise PollTimeout(f"Reached maximum polling attempts ({self.max_attempts}) without completion",
                                  meeting_id)
            self.sleep(self.interval)
