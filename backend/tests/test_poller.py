import pytest

from app.errors import RateLimited
from app.poller import MeetingsClient, PipelineFailed, PollTimeout, RateLimitExceeded, StageResponse, StatusPoller

from resources.test_audio import create_test_audio


class ScriptedClient:
    """Serves a fixed sequence of statuses and canned stage responses"""

    def __init__(self, statuses, transcribe=None, summarize=None, error_message=None, error_code=None):
        self.statuses = list(statuses)
        self.transcribe_responses = list(transcribe or [StageResponse(200, {"success": True})])
        self.summarize_responses = list(summarize or [StageResponse(200, {"success": True})])
        self.error_message = error_message
        self.error_code = error_code
        self.triggered = []

    def get_meeting(self, meeting_id):
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        meeting = {"id": meeting_id, "status": status, "error_message": None}
        if status == "failed":
            meeting["error_message"] = self.error_message
            meeting["error_code"] = self.error_code
        return {"meeting": meeting, "transcript": None, "summary": None, "action_items": []}

    def _next(self, responses):
        return responses.pop(0) if len(responses) > 1 else responses[0]

    def transcribe(self, meeting_id):
        self.triggered.append("transcribe")
        return self._next(self.transcribe_responses)

    def summarize(self, meeting_id):
        self.triggered.append("summarize")
        return self._next(self.summarize_responses)


def make_poller(client, **kwargs):
    kwargs.setdefault("max_attempts", 20)
    return StatusPoller(client, interval=0, sleep=lambda seconds: None, **kwargs)


class TestStatusPoller:
    def test_triggers_each_stage_once(self):
        client = ScriptedClient([
            "uploaded", "uploaded", "transcribing", "transcribing",
            "transcribed", "transcribed", "summarizing", "completed",
        ])
        seen = []
        view = make_poller(client, on_status=lambda status, view: seen.append(status)).run("m1")

        assert view["meeting"]["status"] == "completed"
        assert client.triggered == ["transcribe", "summarize"]
        assert seen == ["uploaded", "transcribing", "transcribed", "summarizing", "completed"]

    def test_failed_meeting(self):
        client = ScriptedClient(["uploaded", "transcribing", "failed"], error_message="bad audio")
        with pytest.raises(PipelineFailed) as exc:
            make_poller(client).run("m1")
        assert exc.value.message == "bad audio"
        assert exc.value.meeting_id == "m1"

    def test_failed_without_message(self):
        client = ScriptedClient(["failed"])
        with pytest.raises(PipelineFailed, match="Processing failed"):
            make_poller(client).run("m1")

    def test_rate_limit_stops_polling(self):
        client = ScriptedClient(
            ["uploaded", "uploaded"],
            transcribe=[StageResponse(429, {"error": "Rate limit exceeded", "retry_after": "7m12.5s"})],
        )
        with pytest.raises(RateLimitExceeded) as exc:
            make_poller(client).run("m1")
        assert exc.value.retry_after == "7m12.5s"
        assert "Wait 7m12.5s" in exc.value.guidance
        assert client.triggered == ["transcribe"]

    def test_observed_rate_limit_failure(self):
        # another client triggered the stage; this one only sees the failed meeting
        client = ScriptedClient(
            ["transcribing", "failed"],
            error_message="Rate limit exceeded. Please wait 7m12.5s and try again, or upgrade your Groq account.",
            error_code="RATE_LIMIT_EXCEEDED",
        )
        with pytest.raises(RateLimitExceeded) as exc:
            make_poller(client).run("m1")
        assert exc.value.retry_after == "7m12.5s"
        assert exc.value.meeting_id == "m1"
        assert client.triggered == []

    def test_observed_rate_limit_without_hint(self):
        client = ScriptedClient(["failed"], error_message="Rate limit exceeded", error_code="RATE_LIMIT_EXCEEDED")
        with pytest.raises(RateLimitExceeded) as exc:
            make_poller(client).run("m1")
        assert exc.value.retry_after == "a few minutes"

    def test_other_failure_codes_stay_generic(self):
        client = ScriptedClient(["failed"], error_message="bad audio", error_code="STAGE_FAILED")
        with pytest.raises(PipelineFailed) as exc:
            make_poller(client).run("m1")
        assert not isinstance(exc.value, RateLimitExceeded)

    def test_conflict_keeps_watching(self):
        client = ScriptedClient(
            ["uploaded", "transcribing", "transcribed", "completed"],
            transcribe=[StageResponse(409, {"error": "Meeting is transcribing"})],
        )
        assert make_poller(client).run("m1")["meeting"]["status"] == "completed"

    def test_missing_transcript_rearms_summarization(self):
        client = ScriptedClient(
            ["transcribed", "transcribed", "summarizing", "completed"],
            summarize=[StageResponse(404, {"error": "Transcript not found"}), StageResponse(200, {})],
        )
        make_poller(client).run("m1")
        assert client.triggered == ["summarize", "summarize"]

    def test_stage_error(self):
        client = ScriptedClient(["uploaded"], transcribe=[StageResponse(500, {"error": "Groq Whisper API failed"})])
        with pytest.raises(PipelineFailed, match="Groq Whisper API failed"):
            make_poller(client).run("m1")

    def test_timeout(self):
        client = ScriptedClient(["transcribing"])
        with pytest.raises(PollTimeout):
            make_poller(client, max_attempts=3).run("m1")


class TestEndToEnd:
    def test_upload_and_poll(self, client, tmp_path):
        audio_path = tmp_path / "standup.wav"
        audio_path.write_bytes(create_test_audio(0.5))

        meetings = MeetingsClient("http://testserver", session=client)
        meeting = meetings.upload(str(audio_path), "audio/wav", title="Standup")
        assert meeting["status"] == "uploaded"

        statuses = []
        view = make_poller(meetings, on_status=lambda status, view: statuses.append(status)).run(meeting["id"])

        assert view["meeting"]["status"] == "completed"
        assert view["meeting"]["duration_seconds"] == 62
        assert view["summary"]["participants"] == ["Alice", "Bob"]
        assert len(view["action_items"]) == 2
        assert statuses == ["uploaded", "transcribed", "completed"]

    def test_rate_limited_run(self, client, transcriber, tmp_path):
        transcriber.error = RateLimited("Rate limit exceeded", retry_after="3m")
        audio_path = tmp_path / "standup.mp3"
        audio_path.write_bytes(b"\xff\xfb" + b"\x00" * 64)

        meetings = MeetingsClient("http://testserver", session=client)
        meeting = meetings.upload(str(audio_path), "audio/mpeg")
        assert meeting["title"] == "standup.mp3"

        with pytest.raises(RateLimitExceeded) as exc:
            make_poller(meetings).run(meeting["id"])
        assert exc.value.retry_after == "3m"

    def test_observes_rate_limited_meeting(self, client, transcriber, tmp_path):
        transcriber.error = RateLimited("Rate limit exceeded. Please wait 3m and try again.", retry_after="3m")
        audio_path = tmp_path / "standup.wav"
        audio_path.write_bytes(create_test_audio(0.2))

        meetings = MeetingsClient("http://testserver", session=client)
        meeting = meetings.upload(str(audio_path), "audio/wav")
        # a different caller ran the stage
        assert meetings.transcribe(meeting["id"]).status_code == 429

        with pytest.raises(RateLimitExceeded) as exc:
            make_poller(meetings).run(meeting["id"])
        assert exc.value.retry_after == "3m"
        assert transcriber.calls == 1

    def test_upload_rejected(self, client, tmp_path):
        path = tmp_path / "notes.txt"
        path.write_text("not audio")
        with pytest.raises(PipelineFailed, match="Invalid file type"):
            MeetingsClient("http://testserver", session=client).upload(str(path), "text/plain")
