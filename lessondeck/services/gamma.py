from __future__ import annotations

import asyncio
import http.client
import json
import logging
import random
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.parse import quote
from urllib.request import Request, urlopen

from lessondeck.core.config import ClientConfig
from lessondeck.core.constants import (
    BACKOFF_BASE_SECONDS_DEFAULT,
    BACKOFF_CAP_SECONDS_DEFAULT,
    BACKOFF_JITTER_SECONDS_DEFAULT,
    FAILURE_STATUSES,
    GAMMA_API_KEY_HEADER,
    GENERATIONS_PATH,
    POLL_INTERVAL_SECONDS_DEFAULT,
    POLL_MAX_ATTEMPTS_DEFAULT,
    SUBMIT_MAX_ATTEMPTS_DEFAULT,
    SUCCESS_STATUSES,
)
from lessondeck.core.errors import (
    ExternalServiceError,
    GenerationFailedError,
    InvalidRequestError,
    MissingIdentifierError,
    PollTimeoutError,
    RateLimitedError,
    SubmissionError,
)
from lessondeck.schemas.generations import GenerationJob, GenerationOptions, GenerationRequest, JsonValue
from lessondeck.services.backoff import (
    BackoffPolicy,
    Classified,
    JitterFn,
    SleepFn,
    Verdict,
    parse_retry_after,
    with_backoff,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GammaResponse:
    status_code: int
    body: JsonValue
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def throttled(self) -> bool:
        return self.status_code == 429 or self.status_code >= 500

    @property
    def retry_after(self) -> float | None:
        for key, value in self.headers.items():
            if key.lower() == "retry-after":
                return parse_retry_after(value)
        return None


Transport = Callable[..., GammaResponse]


def _decode_body(raw: str) -> JsonValue:
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return {"raw": raw}


def send_request(
    method: str,
    url: str,
    *,
    headers: Mapping[str, str],
    payload: Mapping[str, Any] | None = None,
    timeout: float,
) -> GammaResponse:
    """Blocking HTTP call. Non-2xx statuses are returned, not raised."""
    data = json.dumps(payload).encode("utf-8") if payload is not None else None
    request = Request(url=url, method=method.upper(), data=data, headers=dict(headers))

    try:
        with urlopen(request, timeout=timeout) as response:
            raw = response.read().decode("utf-8", errors="replace")
            return GammaResponse(
                status_code=response.status,
                body=_decode_body(raw),
                headers=dict(response.headers.items()),
            )
    except HTTPError as exc:
        raw_error = exc.read().decode("utf-8", errors="replace")
        return GammaResponse(
            status_code=exc.code,
            body=_decode_body(raw_error),
            headers=dict(exc.headers.items()) if exc.headers else {},
        )
    except URLError as exc:
        raise ExternalServiceError(f"Gamma API is unreachable: {exc.reason}") from exc
    except (TimeoutError, OSError, http.client.HTTPException) as exc:
        raise ExternalServiceError(f"Gamma API connection failed: {exc!r}") from exc


def _read(body: JsonValue, *keys: str) -> JsonValue:
    """Look a key up at the top level, then inside the `data` envelope."""
    scopes = [body]
    if isinstance(body, Mapping) and isinstance(body.get("data"), Mapping):
        scopes.append(body["data"])
    for scope in scopes:
        if not isinstance(scope, Mapping):
            continue
        for key in keys:
            value = scope.get(key)
            if value not in (None, ""):
                return value
    return None


def extract_generation_id(body: JsonValue) -> str | None:
    value = _read(body, "id", "generationId")
    if isinstance(value, (str, int)) and str(value).strip():
        return str(value).strip()
    return None


def read_job_status(body: JsonValue) -> str:
    value = _read(body, "status")
    return value.strip().lower() if isinstance(value, str) else ""


def is_completed(body: JsonValue) -> bool:
    if read_job_status(body) in SUCCESS_STATUSES:
        return True
    if isinstance(_read(body, "result"), Mapping):
        return True
    # A finished deck URL means done, whatever the status says.
    return isinstance(_read(body, "gammaUrl", "url", "publicUrl"), str)


def is_failed(body: JsonValue) -> bool:
    return read_job_status(body) in FAILURE_STATUSES


def _error_message(body: JsonValue) -> str:
    value = _read(body, "message", "error", "detail", "raw")
    if isinstance(value, str) and value.strip():
        return value.strip()[:300]
    if isinstance(value, Mapping):
        return _error_message(value)
    return "no error message"


class GammaClient:
    """Submits generations to the Gamma API and polls them to a terminal state."""

    def __init__(
        self,
        config: ClientConfig,
        *,
        transport: Transport = send_request,
        sleep: SleepFn = asyncio.sleep,
        jitter: JitterFn = random.uniform,
        submit_max_attempts: int = SUBMIT_MAX_ATTEMPTS_DEFAULT,
        backoff_base_seconds: float = BACKOFF_BASE_SECONDS_DEFAULT,
        backoff_cap_seconds: float = BACKOFF_CAP_SECONDS_DEFAULT,
        backoff_jitter_seconds: float = BACKOFF_JITTER_SECONDS_DEFAULT,
    ) -> None:
        self.config = config
        self._transport = transport
        self._sleep = sleep
        self._jitter = jitter
        self.submit_max_attempts = max(1, submit_max_attempts)
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_cap_seconds = backoff_cap_seconds
        self.backoff_jitter_seconds = backoff_jitter_seconds

    @property
    def _headers(self) -> dict[str, str]:
        return {
            GAMMA_API_KEY_HEADER: self.config.api_key,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _call(self, method: str, path: str, payload: Mapping[str, Any] | None = None) -> GammaResponse:
        return await asyncio.to_thread(
            self._transport,
            method,
            f"{self.config.api_base}{path}",
            headers=self._headers,
            payload=payload,
            timeout=self.config.timeout_seconds,
        )

    def _policy(self, max_attempts: int, retry_interval_seconds: float) -> BackoffPolicy:
        return BackoffPolicy(
            max_attempts=max(1, max_attempts),
            base_seconds=self.backoff_base_seconds,
            cap_seconds=self.backoff_cap_seconds,
            jitter_seconds=self.backoff_jitter_seconds,
            retry_interval_seconds=retry_interval_seconds,
        )

    async def submit(self, source_text: str, title: str, options: GenerationOptions | None = None) -> str:
        """POST a generation and return the job id assigned by Gamma."""
        if not source_text or not source_text.strip():
            raise InvalidRequestError("Lesson text is empty; nothing to generate.")

        request = GenerationRequest.build(source_text, title, options or GenerationOptions())
        payload = request.to_payload()

        def classify(response: GammaResponse) -> Classified:
            if response.ok:
                return Classified(Verdict.DONE)
            if response.throttled:
                return Classified(Verdict.THROTTLED, retry_after=response.retry_after)
            raise SubmissionError(
                f"Gamma rejected the generation request ({response.status_code}): {_error_message(response.body)}",
                status_code=response.status_code,
                body=response.body,
            )

        def exhausted(response: GammaResponse, _throttled: bool, attempts: int) -> Exception:
            return RateLimitedError(
                f"Gamma kept throttling the generation request after {attempts} attempts.",
                status_code=response.status_code,
            )

        step_start = time.perf_counter()
        response = await with_backoff(
            lambda: self._call("POST", GENERATIONS_PATH, payload),
            classify=classify,
            policy=self._policy(self.submit_max_attempts, 0.0),
            on_exhausted=exhausted,
            sleep=self._sleep,
            jitter=self._jitter,
            label="submit_generation",
        )

        generation_id = extract_generation_id(response.body)
        if not generation_id:
            raise MissingIdentifierError("Gamma response did not include a generation id.", body=response.body)

        logger.info(
            "submit_generation %.2fms generation_id=%s format=%s theme=%s export_as=%s",
            (time.perf_counter() - step_start) * 1000,
            generation_id,
            request.format,
            request.theme,
            request.export_format or "-",
        )
        return generation_id

    async def fetch(self, generation_id: str) -> GammaResponse:
        return await self._call("GET", f"{GENERATIONS_PATH}/{quote(generation_id, safe='')}")

    async def poll_until_terminal(
        self,
        generation_id: str,
        max_attempts: int = POLL_MAX_ATTEMPTS_DEFAULT,
        base_delay: float = POLL_INTERVAL_SECONDS_DEFAULT,
    ) -> GenerationJob:
        """
        Poll GET /generations/{id} until the job completes.

        Raises GenerationFailedError when Gamma reports failure and
        PollTimeoutError when `max_attempts` status requests pass without a
        terminal status. `base_delay` is the sleep between pending responses.
        """
        job = GenerationJob(id=generation_id)

        def classify(response: GammaResponse) -> Classified:
            job.attempts += 1
            if response.throttled:
                return Classified(Verdict.THROTTLED, retry_after=response.retry_after)
            if not response.ok:
                raise ExternalServiceError(
                    f"Gamma status request failed ({response.status_code}): {_error_message(response.body)}"
                )

            if is_failed(response.body):
                job.transition("failed", response.body)
                raise GenerationFailedError(
                    f"Gamma generation {generation_id} failed: {_error_message(response.body)}",
                    job_id=generation_id,
                    payload=response.body,
                )
            if is_completed(response.body):
                job.transition("completed", response.body)
                return Classified(Verdict.DONE)

            job.transition("pending", response.body)
            logger.info("generation pending generation_id=%s status=%s", generation_id, read_job_status(response.body))
            return Classified(Verdict.RETRY)

        def exhausted(_response: GammaResponse, throttled: bool, attempts: int) -> Exception:
            job.transition("timed_out")
            reason = "throttled" if throttled else "still pending"
            return PollTimeoutError(
                f"Gamma generation {generation_id} was {reason} after {attempts} status requests.",
                job_id=generation_id,
                attempts=attempts,
                throttled=throttled,
            )

        step_start = time.perf_counter()
        await with_backoff(
            lambda: self.fetch(generation_id),
            classify=classify,
            policy=self._policy(max_attempts, base_delay),
            on_exhausted=exhausted,
            sleep=self._sleep,
            jitter=self._jitter,
            label="poll_generation",
        )
        logger.info(
            "poll_generation %.2fms generation_id=%s attempts=%s",
            (time.perf_counter() - step_start) * 1000,
            generation_id,
            job.attempts,
        )
        return job
