from __future__ import annotations

import asyncio
import json
import logging
import pathlib
import time
from collections.abc import Sequence

from lessondeck.core.config import ClientConfig, Settings
from lessondeck.core.constants import DOWNLOADS_DIRNAME, STATUS_SNAPSHOT_FILENAME
from lessondeck.core.errors import (
    AppError,
    ConfigurationError,
    DownloadError,
    GenerationFailedError,
    PollTimeoutError,
)
from lessondeck.core.logging import log_context
from lessondeck.schemas.generations import GenerationOptions, LessonResult, LessonSource, LessonStatus
from lessondeck.services.downloader import download_export, export_filename
from lessondeck.services.extractor import extract
from lessondeck.services.gamma import GammaClient
from lessondeck.services.lessons import load_lessons
from lessondeck.services.pages import write_site

logger = logging.getLogger(__name__)


def _log_step(label: str, *, duration_ms: float, **fields: object) -> None:
    field_text = " ".join(f"{key}={value}" for key, value in fields.items())
    if field_text:
        logger.info("%s %.2fms %s", label, duration_ms, field_text)
    else:
        logger.info("%s %.2fms", label, duration_ms)


def _extract_error(exc: Exception) -> tuple[LessonStatus, str, str]:
    if isinstance(exc, GenerationFailedError):
        return "failed", exc.code, exc.detail
    if isinstance(exc, PollTimeoutError):
        return ("throttled" if exc.throttled else "timeout"), exc.code, exc.detail
    if isinstance(exc, AppError):
        return "error", exc.code, exc.detail
    return "error", "internal_error", str(exc) or "Unhandled error."


def build_client(settings: Settings) -> GammaClient:
    return GammaClient(
        ClientConfig.from_settings(settings),
        submit_max_attempts=settings.submit_max_attempts,
        backoff_base_seconds=settings.backoff_base_seconds,
        backoff_cap_seconds=settings.backoff_cap_seconds,
        backoff_jitter_seconds=settings.backoff_jitter_seconds,
    )


def lesson_options(lesson: LessonSource, settings: Settings) -> GenerationOptions:
    return GenerationOptions(
        format=lesson.format or settings.deck_format,
        theme=lesson.theme or settings.theme_name,
        export_format=lesson.export_format or settings.export_as,
        language=settings.deck_language,
    )


def write_status_snapshot(results: Sequence[LessonResult], output_dir: pathlib.Path) -> pathlib.Path:
    output_dir.mkdir(parents=True, exist_ok=True)
    snapshot_path = output_dir / STATUS_SNAPSHOT_FILENAME
    snapshot = {
        "lessons": [result.model_dump(mode="json") for result in results],
        "completed": sum(1 for result in results if result.status == "completed"),
        "total": len(results),
    }
    snapshot_path.write_text(json.dumps(snapshot, indent=2), encoding="utf-8")
    return snapshot_path


async def _download(
    *,
    lesson: LessonSource,
    generation_id: str,
    file_url: str,
    export_format: str | None,
    output_dir: pathlib.Path,
) -> str | None:
    target = output_dir / DOWNLOADS_DIRNAME / export_filename(lesson.slug, generation_id, export_format)
    step_start = time.perf_counter()
    try:
        path = await asyncio.to_thread(download_export, file_url, target)
    except DownloadError as exc:
        logger.warning("export download failed generation_id=%s error=%s", generation_id, exc.detail)
        return None
    _log_step("download_export", duration_ms=(time.perf_counter() - step_start) * 1000, path=path)
    return str(path)


async def process_lesson(
    lesson: LessonSource,
    *,
    client: GammaClient,
    settings: Settings,
) -> LessonResult:
    """Generate one deck. Raises on failure; the batch loop downgrades everything but ConfigurationError."""
    options = lesson_options(lesson, settings)
    generation_id = await client.submit(lesson.markdown, lesson.title, options)

    with log_context(generation_id=generation_id):
        job = await client.poll_until_terminal(
            generation_id,
            max_attempts=settings.poll_max_attempts,
            base_delay=settings.poll_interval_seconds,
        )
        extracted = extract(job.payload, options.export_format)
        if not extracted.share_url:
            logger.warning("completed generation has no share url")

        download_path = None
        if settings.download_exports and extracted.file_url:
            download_path = await _download(
                lesson=lesson,
                generation_id=generation_id,
                file_url=extracted.file_url,
                export_format=options.export_format,
                output_dir=pathlib.Path(settings.output_dir),
            )

    return LessonResult(
        slug=lesson.slug,
        title=lesson.title,
        status="completed",
        generation_id=generation_id,
        share_url=extracted.share_url,
        file_url=extracted.file_url,
        download_path=download_path,
        markdown=lesson.markdown,
    )


async def run_lessons(
    lessons: Sequence[LessonSource],
    *,
    client: GammaClient,
    settings: Settings,
) -> list[LessonResult]:
    """Process lessons one at a time; a failing lesson never stops the batch."""
    output_dir = pathlib.Path(settings.output_dir)
    results: list[LessonResult] = []

    for position, lesson in enumerate(lessons, start=1):
        lesson_start = time.perf_counter()
        with log_context(lesson=lesson.slug):
            logger.info("lesson start %s/%s title=%s", position, len(lessons), lesson.title)
            try:
                result = await process_lesson(lesson, client=client, settings=settings)
            except ConfigurationError:
                raise
            except Exception as exc:
                status, error_code, error_message = _extract_error(exc)
                if isinstance(exc, AppError):
                    logger.error("lesson %s error_code=%s error=%s", status, error_code, error_message)
                else:
                    logger.exception("lesson %s error_code=%s", status, error_code)
                result = LessonResult(
                    slug=lesson.slug,
                    title=lesson.title,
                    status=status,
                    generation_id=getattr(exc, "job_id", None),
                    error_code=error_code,
                    error_message=error_message,
                    markdown=lesson.markdown,
                )

            results.append(result)
            write_status_snapshot(results, output_dir)
            _log_step(
                "lesson complete",
                duration_ms=(time.perf_counter() - lesson_start) * 1000,
                status=result.status,
            )

    return results


async def run_batch(settings: Settings, client: GammaClient | None = None) -> list[LessonResult]:
    """Load lessons, generate every deck, then write the snapshot and HTML pages."""
    client = client or build_client(settings)
    lessons = load_lessons(settings)
    if not lessons:
        logger.warning("no lessons found lessons_dir=%s batch_csv=%s", settings.lessons_dir, settings.batch_csv)

    results = await run_lessons(lessons, client=client, settings=settings)

    output_dir = pathlib.Path(settings.output_dir)
    write_status_snapshot(results, output_dir)
    index_path = write_site(results, output_dir)

    completed = sum(1 for result in results if result.status == "completed")
    logger.info("batch complete completed=%s total=%s index=%s", completed, len(results), index_path)
    return results
