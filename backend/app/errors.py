from typing import Optional


class PipelineError(Exception):
    """Base class for errors surfaced to API callers"""
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class ValidationFailed(PipelineError):
    status_code = 400
    code = "VALIDATION_ERROR"


class PayloadTooLarge(PipelineError):
    status_code = 413
    code = "PAYLOAD_TOO_LARGE"


class NotFound(PipelineError):
    status_code = 404
    code = "NOT_FOUND"


class StageConflict(PipelineError):
    """Another caller already holds the stage for this meeting"""
    status_code = 409
    code = "STAGE_CONFLICT"


class UpstreamUnavailable(PipelineError):
    """External capability is misconfigured (e.g. missing API key)"""
    status_code = 500
    code = "UPSTREAM_UNAVAILABLE"


class StageFailed(PipelineError):
    status_code = 500
    code = "STAGE_FAILED"


class StorageError(PipelineError):
    status_code = 500
    code = "STORAGE_ERROR"


class RateLimited(PipelineError):
    """External capability throttled the request; the caller decides when to retry"""
    status_code = 429
    code = "RATE_LIMIT_EXCEEDED"

    def __init__(self, message: str, retry_after: Optional[str] = None):
        super().__init__(message)
        self.retry_after = retry_after or "a few minutes"

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["retry_after"] = self.retry_after
        return body
