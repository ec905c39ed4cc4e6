from __future__ import annotations

import csv
import pathlib
import re

from lessondeck.core.config import Settings
from lessondeck.core.constants import DECK_FORMATS, EXPORT_FORMATS, HOST_PLACEHOLDER
from lessondeck.core.errors import ConfigurationError
from lessondeck.schemas.generations import LessonSource

_HEADING_RE = re.compile(r"^#\s+(.+?)\s*#*\s*$", re.MULTILINE)
_SLUG_STRIP_RE = re.compile(r"[^a-z0-9]+")


def slugify(value: str) -> str:
    slug = _SLUG_STRIP_RE.sub("-", value.lower()).strip("-")
    return slug or "lesson"


def unique_slug(slug: str, seen: set[str]) -> str:
    """Return `slug`, or the first free `slug-N` (N >= 2), and mark it as taken."""
    candidate = slug
    suffix = 2
    while candidate in seen:
        candidate = f"{slug}-{suffix}"
        suffix += 1
    seen.add(candidate)
    return candidate


def derive_title(markdown_text: str, fallback: str) -> str:
    match = _HEADING_RE.search(markdown_text)
    if match:
        return match.group(1).strip()
    words = re.sub(r"[-_]+", " ", fallback).strip()
    return words.title() if words else "Untitled lesson"


def substitute_host(markdown_text: str, host: str) -> str:
    return markdown_text.replace(HOST_PLACEHOLDER, host.rstrip("/"))


def read_lesson(path: pathlib.Path, host: str) -> LessonSource:
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"Could not read lesson file {path}: {exc.strerror}") from exc
    except UnicodeDecodeError as exc:
        raise ConfigurationError(f"Lesson file {path} is not valid UTF-8.") from exc

    markdown_text = substitute_host(raw, host)
    return LessonSource(
        slug=slugify(path.stem),
        title=derive_title(markdown_text, path.stem),
        path=str(path),
        markdown=markdown_text,
    )


def load_lessons_from_dir(lessons_dir: pathlib.Path, host: str) -> list[LessonSource]:
    if not lessons_dir.is_dir():
        raise ConfigurationError(f"LESSONS_DIR {lessons_dir} does not exist or is not a directory.")
    lessons = [read_lesson(path, host) for path in sorted(lessons_dir.glob("*.md"))]
    seen_slugs: set[str] = set()
    return [lesson.model_copy(update={"slug": unique_slug(lesson.slug, seen_slugs)}) for lesson in lessons]


def _cell(row: dict[str, str | None], key: str) -> str | None:
    value = row.get(key)
    if value is None:
        return None
    return value.strip() or None


def _choice(value: str | None, allowed: tuple[str, ...], column: str, line: int) -> str | None:
    if value is None:
        return None
    normalized = value.lower()
    if normalized not in allowed:
        raise ConfigurationError(f"BATCH_CSV line {line}: {column} must be one of {', '.join(allowed)}.")
    return normalized


def load_lessons_from_csv(
    csv_path: pathlib.Path,
    *,
    lessons_dir: pathlib.Path,
    default_file: str,
    host: str,
) -> list[LessonSource]:
    """
    Build one lesson per CSV row.

    Columns (case-insensitive): title, format, theme, exportAs and optional
    file. Rows without a file use `default_file`; blank cells keep defaults.
    """
    if not csv_path.is_file():
        raise ConfigurationError(f"BATCH_CSV {csv_path} does not exist.")

    with open(csv_path, encoding="utf-8", newline="") as handle:
        reader = csv.DictReader(handle)
        if reader.fieldnames:
            reader.fieldnames = [name.strip().lower() for name in reader.fieldnames]
        rows = list(reader)

    lessons: list[LessonSource] = []
    seen_slugs: set[str] = set()
    for line, row in enumerate(rows, start=2):
        if not any((value or "").strip() for value in row.values() if isinstance(value, str)):
            continue

        file_name = _cell(row, "file") or default_file
        file_path = pathlib.Path(file_name)
        if not file_path.is_absolute():
            file_path = lessons_dir / file_path
        lesson = read_lesson(file_path, host)

        title = _cell(row, "title") or lesson.title
        slug = unique_slug(slugify(title), seen_slugs)

        lessons.append(
            lesson.model_copy(
                update={
                    "slug": slug,
                    "title": title,
                    "format": _choice(_cell(row, "format"), DECK_FORMATS, "format", line),
                    "theme": _cell(row, "theme"),
                    "export_format": _choice(_cell(row, "exportas"), EXPORT_FORMATS, "exportAs", line),
                }
            )
        )
    return lessons


def load_lessons(settings: Settings) -> list[LessonSource]:
    host = settings.require_host()
    lessons_dir = pathlib.Path(settings.lessons_dir)
    if settings.batch_csv:
        return load_lessons_from_csv(
            pathlib.Path(settings.batch_csv),
            lessons_dir=lessons_dir,
            default_file=settings.deck_file,
            host=host,
        )
    return load_lessons_from_dir(lessons_dir, host)
