from __future__ import annotations

import html
import os
import pathlib
from collections.abc import Sequence
from datetime import UTC, datetime
from urllib.parse import urlparse, urlunparse

from markdown import markdown

from lessondeck.core.constants import INDEX_FILENAME, LESSON_PAGES_DIRNAME, SITE_TITLE
from lessondeck.schemas.generations import LessonResult

STATUS_LABELS = {
    "completed": "Ready",
    "failed": "Generation failed",
    "timeout": "Timed out",
    "throttled": "Rate limited",
    "error": "Error",
}

PAGE_STYLE = """
    * { box-sizing: border-box; }
    body {
      font-family: "Inter", -apple-system, BlinkMacSystemFont, "Segoe UI", sans-serif;
      line-height: 1.6;
      color: #1e293b;
      margin: 0 auto;
      max-width: 960px;
      padding: 40px 24px;
    }
    h1, h2, h3 { color: #0f172a; line-height: 1.3; }
    a { color: #3b82f6; text-decoration: none; }
    table { width: 100%; border-collapse: collapse; margin: 1.5em 0; }
    th { text-align: left; border-bottom: 2px solid #cbd5e1; padding: 0.6em 0.8em; }
    td { border-bottom: 1px solid #e2e8f0; padding: 0.6em 0.8em; }
    .badge { display: inline-block; border-radius: 999px; padding: 0.1em 0.7em; font-size: 0.85em; }
    .badge-completed { background: #dcfce7; color: #166534; }
    .badge-failed, .badge-error { background: #fee2e2; color: #991b1b; }
    .badge-timeout, .badge-throttled { background: #fef3c7; color: #92400e; }
    .links a { margin-right: 1em; }
    .deck { width: 100%; aspect-ratio: 16 / 10; border: 1px solid #e2e8f0; border-radius: 8px; }
    .error { background: #fef2f2; border-left: 4px solid #ef4444; padding: 0.75em 1em; }
    .outline { margin-top: 2em; border-top: 1px solid #e2e8f0; }
    code { background: #f1f5f9; padding: 0.15em 0.4em; border-radius: 3px; }
    footer { margin-top: 3em; font-size: 0.85em; color: #64748b; }
"""

PAGE_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1" />
  <title>{title}</title>
  <style>{style}</style>
</head>
<body>
{body}
  <footer>Generated {date}</footer>
</body>
</html>
"""


def _page(title: str, body: str) -> str:
    return PAGE_TEMPLATE.format(
        title=html.escape(title),
        style=PAGE_STYLE,
        body=body,
        date=datetime.now(UTC).strftime("%B %d, %Y %H:%M UTC"),
    )


def _badge(status: str) -> str:
    label = STATUS_LABELS.get(status, status)
    return f'<span class="badge badge-{html.escape(status)}">{html.escape(label)}</span>'


def _link(href: str | None, label: str) -> str:
    if not href:
        return ""
    return f'<a href="{html.escape(href, quote=True)}">{html.escape(label)}</a>'


def embed_url(share_url: str) -> str:
    """Map a Gamma /docs/ share URL to its /embed/ form; other URLs pass through."""
    parsed = urlparse(share_url)
    if parsed.path.startswith("/docs/"):
        return urlunparse(parsed._replace(path="/embed/" + parsed.path[len("/docs/") :]))
    return share_url


def lesson_page_path(slug: str) -> str:
    return f"{LESSON_PAGES_DIRNAME}/{slug}.html"


def render_lesson_page(result: LessonResult, *, download_href: str | None = None) -> str:
    parts = [
        f"  <p><a href=\"../{INDEX_FILENAME}\">&larr; All lessons</a></p>",
        f"  <h1>{html.escape(result.title)}</h1>",
        f"  <p>{_badge(result.status)}</p>",
    ]

    links = " ".join(
        link
        for link in (
            _link(result.share_url, "Open deck"),
            _link(result.file_url, "Export file"),
            _link(download_href, "Downloaded copy"),
        )
        if link
    )
    if links:
        parts.append(f'  <p class="links">{links}</p>')

    if result.status == "completed" and result.share_url:
        parts.append(
            f'  <iframe class="deck" src="{html.escape(embed_url(result.share_url), quote=True)}" '
            f'title="{html.escape(result.title, quote=True)}" allowfullscreen></iframe>'
        )
    elif result.status != "completed":
        message = result.error_message or "The deck could not be generated."
        parts.append(f'  <p class="error">{html.escape(message)}</p>')

    if result.markdown:
        outline = markdown(result.markdown, extensions=["extra", "sane_lists"])
        parts.append(f'  <section class="outline">\n  <h2>Lesson outline</h2>\n{outline}\n  </section>')

    return _page(result.title, "\n".join(parts))


def render_index_page(results: Sequence[LessonResult]) -> str:
    rows = []
    for result in results:
        deck_link = _link(result.share_url, "Deck") or "&ndash;"
        file_link = _link(result.file_url, "Export") or "&ndash;"
        rows.append(
            "    <tr>"
            f"<td>{_link(lesson_page_path(result.slug), result.title)}</td>"
            f"<td>{_badge(result.status)}</td>"
            f"<td>{deck_link}</td>"
            f"<td>{file_link}</td>"
            "</tr>"
        )

    completed = sum(1 for result in results if result.status == "completed")
    body = "\n".join(
        [
            f"  <h1>{html.escape(SITE_TITLE)}</h1>",
            f"  <p>{completed} of {len(results)} decks ready.</p>",
            "  <table>",
            "    <thead><tr><th>Lesson</th><th>Status</th><th>Deck</th><th>Export</th></tr></thead>",
            "    <tbody>",
            *rows,
            "    </tbody>",
            "  </table>",
        ]
    )
    return _page(SITE_TITLE, body)


def write_site(results: Sequence[LessonResult], output_dir: pathlib.Path) -> pathlib.Path:
    """Write index.html and one viewer page per lesson; return the index path."""
    pages_dir = output_dir / LESSON_PAGES_DIRNAME
    pages_dir.mkdir(parents=True, exist_ok=True)

    for result in results:
        page_path = output_dir / lesson_page_path(result.slug)
        download_href = None
        if result.download_path:
            download_href = pathlib.Path(os.path.relpath(result.download_path, page_path.parent)).as_posix()
        page_path.write_text(render_lesson_page(result, download_href=download_href), encoding="utf-8")

    index_path = output_dir / INDEX_FILENAME
    index_path.write_text(render_index_page(results), encoding="utf-8")
    return index_path
