from __future__ import annotations

from typing import Any


class AppError(Exception):
    """Base class for all application errors."""

    code = "internal_error"

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class InvalidRequestError(AppError):
    """A generation request failed local validation before being sent."""

    code = "invalid_request"


class InvalidStateError(AppError):
    """A generation job was asked to leave a terminal state."""

    code = "invalid_state"


class ConfigurationError(AppError):
    """Required configuration is missing or malformed. Fatal for the whole run."""

    code = "configuration_error"


class ExternalServiceError(AppError):
    """Upstream service failed or returned an invalid response."""

    code = "external_service_error"


class SubmissionError(ExternalServiceError):
    """The generation endpoint rejected the request (non-2xx, not retryable)."""

    code = "submission_failed"

    def __init__(self, detail: str, *, status_code: int, body: Any = None) -> None:
        super().__init__(detail)
        self.status_code = status_code
        self.body = body


class MissingIdentifierError(ExternalServiceError):
    """The generation endpoint accepted the request but returned no job id."""

    code = "missing_generation_id"

    def __init__(self, detail: str, *, body: Any = None) -> None:
        super().__init__(detail)
        self.body = body


class RateLimitedError(ExternalServiceError):
    """Retries against 429/5xx responses were exhausted."""

    code = "rate_limited"

    def __init__(self, detail: str, *, status_code: int | None = None) -> None:
        super().__init__(detail)
        self.status_code = status_code


class GenerationFailedError(ExternalServiceError):
    """The remote job reported that generation failed."""

    code = "generation_failed"

    def __init__(self, detail: str, *, job_id: str, payload: Any = None) -> None:
        super().__init__(detail)
        self.job_id = job_id
        self.payload = payload


class PollTimeoutError(ExternalServiceError):
    """The job did not reach a terminal state within the attempt budget."""

    code = "poll_timeout"

    def __init__(self, detail: str, *, job_id: str, attempts: int, throttled: bool = False) -> None:
        super().__init__(detail)
        self.job_id = job_id
        self.attempts = attempts
        self.throttled = throttled


class DownloadError(ExternalServiceError):
    """An export file could not be downloaded."""

    code = "download_failed"
