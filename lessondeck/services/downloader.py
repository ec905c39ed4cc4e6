from __future__ import annotations

import pathlib
import shutil
from http.client import HTTPException
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from lessondeck.core.constants import EXPORT_FORMATS
from lessondeck.core.errors import DownloadError


def export_filename(slug: str, generation_id: str, export_format: str | None) -> str:
    ext = export_format if export_format in EXPORT_FORMATS else "pdf"
    return f"{slug}_{generation_id}.{ext}"


def download_export(file_url: str, output_path: pathlib.Path, *, timeout: float = 60.0) -> pathlib.Path:
    """Stream `file_url` into `output_path` via a .part file; no partial file survives a failure."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    partial_path = output_path.with_name(output_path.name + ".part")

    request = Request(url=file_url, method="GET")
    try:
        with urlopen(request, timeout=timeout) as response:
            if response.status != 200:
                raise DownloadError(f"Export download returned HTTP {response.status}.")
            with open(partial_path, "wb") as handle:
                shutil.copyfileobj(response, handle)
    except HTTPError as exc:
        raise DownloadError(f"Export download returned HTTP {exc.code}.") from exc
    except URLError as exc:
        raise DownloadError(f"Export file is unreachable: {exc.reason}") from exc
    except (OSError, HTTPException) as exc:
        partial_path.unlink(missing_ok=True)
        raise DownloadError(f"Export download to {output_path} failed: {exc!r}") from exc

    partial_path.replace(output_path)
    return output_path
