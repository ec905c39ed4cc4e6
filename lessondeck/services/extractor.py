"""Best-effort URL extraction from terminal generation payloads."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from lessondeck.schemas.generations import ExtractedResult, JsonValue

Path = tuple[str, ...]

SHARE_URL_PATHS: tuple[Path, ...] = (
    ("gammaUrl",),
    ("url",),
    ("publicUrl",),
    ("shareUrl",),
    ("result", "urls", "share"),
    ("result", "url"),
    ("result", "gammaUrl"),
)

FILE_URL_PATHS: tuple[Path, ...] = (
    ("exportUrl",),
    ("pdfUrl",),
    ("pptxUrl",),
    ("result", "urls", "export"),
    ("result", "exportUrl"),
)

FILES_PATHS: tuple[Path, ...] = (
    ("files",),
    ("result", "files"),
)


def _lookup(value: JsonValue, path: Path) -> JsonValue:
    current: Any = value
    for key in path:
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current


def _lookup_str(value: JsonValue, path: Path) -> str | None:
    found = _lookup(value, path)
    if isinstance(found, str) and found.strip():
        return found.strip()
    return None


def _scopes(payload: JsonValue) -> list[JsonValue]:
    """The payload root first, then its `data` envelope when present."""
    scopes = [payload]
    data = _lookup(payload, ("data",))
    if isinstance(data, Mapping):
        scopes.append(data)
    return scopes


def _first_str(scopes: Iterable[JsonValue], paths: Sequence[Path]) -> str | None:
    for scope in scopes:
        for path in paths:
            found = _lookup_str(scope, path)
            if found:
                return found
    return None


def _file_entries(scopes: Iterable[JsonValue]) -> list[Mapping[str, Any]]:
    for scope in scopes:
        for path in FILES_PATHS:
            files = _lookup(scope, path)
            if isinstance(files, list):
                entries = [entry for entry in files if isinstance(entry, Mapping)]
                if entries:
                    return entries
    return []


def _pick_file_url(entries: Sequence[Mapping[str, Any]], hint: str | None) -> str | None:
    wanted = (hint or "").strip().lower()
    if wanted:
        for entry in entries:
            entry_type = entry.get("type")
            if isinstance(entry_type, str) and entry_type.strip().lower() == wanted:
                url = _lookup_str(entry, ("url",))
                if url:
                    return url

    for entry in entries:
        url = _lookup_str(entry, ("url",))
        if url:
            return url
    return None


def _file_paths_for(hint: str | None) -> tuple[Path, ...]:
    wanted = (hint or "").strip().lower()
    if not wanted:
        return FILE_URL_PATHS
    hinted: Path = (f"{wanted}Url",)
    return (FILE_URL_PATHS[0], hinted, *(path for path in FILE_URL_PATHS[1:] if path != hinted))


def extract(payload: JsonValue, export_format_hint: str | None = None) -> ExtractedResult:
    """
    Pull the share URL and export-file URL out of a terminal payload.

    Never raises: unknown shapes just produce empty fields.
    """
    scopes = _scopes(payload)
    share_url = _first_str(scopes, SHARE_URL_PATHS)

    file_url = _pick_file_url(_file_entries(scopes), export_format_hint)
    if file_url is None:
        file_url = _first_str(scopes, _file_paths_for(export_format_hint))

    return ExtractedResult(share_url=share_url, file_url=file_url)
