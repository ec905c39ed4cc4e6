import json
import pathlib

import pytest
from conftest import FakeTransport, make_settings, response

from lessondeck.core.config import ClientConfig
from lessondeck.core.errors import ConfigurationError
from lessondeck.core.logging import get_log_context, log_context
from lessondeck.orchestration import runner
from lessondeck.orchestration.runner import lesson_options, run_batch
from lessondeck.schemas.generations import LessonSource
from lessondeck.services.gamma import GammaClient


def _lesson(tmp_path: pathlib.Path, name: str, text: str) -> None:
    lessons_dir = tmp_path / "lessons"
    lessons_dir.mkdir(parents=True, exist_ok=True)
    (lessons_dir / name).write_text(text, encoding="utf-8")


def _client(transport: FakeTransport, sleeper) -> GammaClient:
    return GammaClient(
        ClientConfig(api_key="test-key", api_base="https://gamma.test/v0.2"),
        transport=transport,
        sleep=sleeper,
        jitter=lambda _low, _high: 0.0,
    )


@pytest.mark.anyio
async def test_one_failing_lesson_does_not_abort_the_batch(tmp_path: pathlib.Path, transport, sleeper) -> None:
    _lesson(tmp_path, "01-good.md", "# Good lesson\n\nSee {{HOST}}/good")
    _lesson(tmp_path, "02-bad.md", "# Bad lesson")
    _lesson(tmp_path, "03-rejected.md", "# Rejected lesson")
    _lesson(tmp_path, "04-slow.md", "# Slow lesson")
    transport.queue(
        response(200, {"generationId": "gen-good"}),
        response(200, {"status": "pending"}),
        response(200, {"status": "completed", "gammaUrl": "https://gamma.app/docs/good", "pdfUrl": "https://x/g.pdf"}),
        response(200, {"generationId": "gen-bad"}),
        response(200, {"status": "failed", "message": "bad input"}),
        response(422, {"message": "inputText too long"}),
        response(200, {"generationId": "gen-slow"}),
        response(200, {"status": "pending"}),
        response(200, {"status": "pending"}),
    )
    settings = make_settings(tmp_path, POLL_MAX_ATTEMPTS=2)

    results = await run_batch(settings, client=_client(transport, sleeper))

    assert [result.status for result in results] == ["completed", "failed", "error", "timeout"]
    good, bad, rejected, slow = results
    assert good.share_url == "https://gamma.app/docs/good"
    assert good.file_url == "https://x/g.pdf"
    assert good.generation_id == "gen-good"
    assert transport.calls[0]["payload"]["inputText"].endswith("https://learn.example.com/good")
    assert bad.generation_id == "gen-bad"
    assert bad.error_code == "generation_failed"
    assert rejected.error_code == "submission_failed"
    assert slow.generation_id == "gen-slow"
    assert slow.error_code == "poll_timeout"

    site = tmp_path / "site"
    snapshot = json.loads((site / "status.json").read_text(encoding="utf-8"))
    assert snapshot["completed"] == 1
    assert snapshot["total"] == 4
    assert [lesson["slug"] for lesson in snapshot["lessons"]] == ["01-good", "02-bad", "03-rejected", "04-slow"]
    assert "markdown" not in snapshot["lessons"][0]
    assert (site / "index.html").exists()
    assert (site / "lessons" / "02-bad.html").exists()


@pytest.mark.anyio
async def test_downloads_exports_when_enabled(tmp_path: pathlib.Path, transport, sleeper, monkeypatch) -> None:
    _lesson(tmp_path, "deck.md", "# Deck")
    transport.queue(
        response(200, {"id": "gen-1"}),
        response(200, {"data": {"status": "completed", "files": [{"type": "pptx", "url": "https://x/d.pptx"}]}}),
    )
    downloaded: list[tuple[str, pathlib.Path]] = []

    def fake_download(file_url: str, output_path: pathlib.Path) -> pathlib.Path:
        downloaded.append((file_url, output_path))
        return output_path

    monkeypatch.setattr(runner, "download_export", fake_download)
    settings = make_settings(tmp_path, DOWNLOAD_EXPORTS="true", EXPORT_AS="pptx")

    results = await run_batch(settings, client=_client(transport, sleeper))

    assert transport.calls[0]["payload"]["exportAs"] == "pptx"
    assert downloaded == [("https://x/d.pptx", tmp_path / "site" / "downloads" / "deck_gen-1.pptx")]
    assert results[0].download_path == str(tmp_path / "site" / "downloads" / "deck_gen-1.pptx")


def test_lesson_overrides_win_over_settings(tmp_path: pathlib.Path) -> None:
    settings = make_settings(tmp_path, THEME_NAME="Oasis", EXPORT_AS="pdf", DECK_LANGUAGE="fr")
    lesson = LessonSource(slug="a", title="A", path="a.md", markdown="# A", theme="Chisel", format="webpage")

    options = lesson_options(lesson, settings)

    assert options.theme == "Chisel"
    assert options.format == "webpage"
    assert options.export_format == "pdf"
    assert options.language == "fr"


@pytest.mark.anyio
async def test_missing_api_key_aborts_before_any_lesson(tmp_path: pathlib.Path) -> None:
    _lesson(tmp_path, "deck.md", "# Deck")

    with pytest.raises(ConfigurationError):
        await run_batch(make_settings(tmp_path, GAMMA_KEY=""))


def test_log_context_nests_and_resets() -> None:
    with log_context(lesson="a"):
        with log_context(generation_id="gen-1"):
            assert get_log_context() == {"lesson": "a", "generation_id": "gen-1"}
        assert get_log_context() == {"lesson": "a"}
    assert get_log_context() == {}


@pytest.mark.anyio
async def test_unanswered_requests_are_recorded_as_errors(tmp_path: pathlib.Path, silent_url: str, sleeper) -> None:
    _lesson(tmp_path, "01-a.md", "# A")
    _lesson(tmp_path, "02-b.md", "# B")
    client = GammaClient(
        ClientConfig(api_key="test-key", api_base=silent_url, timeout_seconds=0.3),
        sleep=sleeper,
        jitter=lambda _low, _high: 0.0,
    )

    results = await run_batch(make_settings(tmp_path), client=client)

    assert [result.status for result in results] == ["error", "error"]
    assert {result.error_code for result in results} == {"external_service_error"}
    assert (tmp_path / "site" / "index.html").exists()


@pytest.mark.anyio
async def test_unexpected_exception_is_recorded_as_internal_error(tmp_path: pathlib.Path, sleeper) -> None:
    _lesson(tmp_path, "01-a.md", "# A")
    _lesson(tmp_path, "02-b.md", "# B")
    calls: list[str] = []

    def exploding_transport(method: str, url: str, **_kwargs) -> None:
        calls.append(url)
        raise RuntimeError("connection reset")

    client = GammaClient(
        ClientConfig(api_key="test-key", api_base="https://gamma.test/v0.2"),
        transport=exploding_transport,
        sleep=sleeper,
        jitter=lambda _low, _high: 0.0,
    )

    results = await run_batch(make_settings(tmp_path), client=client)

    assert len(calls) == 2
    assert [result.status for result in results] == ["error", "error"]
    assert results[0].error_code == "internal_error"
    assert results[0].error_message == "connection reset"
