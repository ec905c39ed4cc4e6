import pathlib

import pytest
from conftest import make_settings

from lessondeck import __main__ as cli
from lessondeck.core.config import ClientConfig, load_settings
from lessondeck.core.errors import ConfigurationError

_ENV_VARS = (
    "GAMMA_KEY",
    "HOST",
    "GAMMA_API_BASE",
    "DECK_FORMAT",
    "EXPORT_AS",
    "BATCH_CSV",
    "LESSONS_DIR",
    "OUTPUT_DIR",
    "THEME_NAME",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: pathlib.Path) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(cli, "setup_logging", lambda **_kwargs: None)
    monkeypatch.setattr(cli, "load_dotenv", lambda _path: False)


def test_defaults_and_normalisation(tmp_path: pathlib.Path) -> None:
    settings = make_settings(tmp_path, DECK_FORMAT=" Webpage ", EXPORT_AS="PDF", BATCH_CSV="  ", POLL_MAX_ATTEMPTS=0)

    assert settings.deck_format == "webpage"
    assert settings.export_as == "pdf"
    assert settings.batch_csv is None
    assert settings.poll_max_attempts == 1
    assert settings.theme_name == "Oasis"
    assert settings.require_host() == "https://learn.example.com"


def test_client_config_requires_api_key(tmp_path: pathlib.Path) -> None:
    with pytest.raises(ConfigurationError):
        ClientConfig.from_settings(make_settings(tmp_path, GAMMA_KEY="  "))

    config = ClientConfig.from_settings(make_settings(tmp_path, GAMMA_API_BASE="https://gamma.test/v1/"))
    assert config.api_base == "https://gamma.test/v1"
    assert config.api_key == "test-key"


def test_client_config_rejects_relative_api_base(tmp_path: pathlib.Path) -> None:
    with pytest.raises(ConfigurationError):
        ClientConfig.from_settings(make_settings(tmp_path, GAMMA_API_BASE="gamma.test"))


def test_invalid_env_value_is_a_configuration_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DECK_FORMAT", "poster")

    with pytest.raises(ConfigurationError):
        load_settings()


def test_cli_exits_non_zero_without_api_key(monkeypatch: pytest.MonkeyPatch, tmp_path: pathlib.Path) -> None:
    monkeypatch.setenv("HOST", "https://learn.example.com")

    assert cli.main(["--env-file", str(tmp_path / "missing.env")]) == 1


def test_cli_completes_even_when_lessons_fail(monkeypatch: pytest.MonkeyPatch, tmp_path: pathlib.Path) -> None:
    seen: dict[str, object] = {}

    async def fake_run_batch(settings) -> list:
        seen["settings"] = settings
        return []

    monkeypatch.setenv("GAMMA_KEY", "k")
    monkeypatch.setenv("HOST", "https://learn.example.com")
    monkeypatch.setattr(cli, "run_batch", fake_run_batch)

    exit_code = cli.main(["--output-dir", str(tmp_path / "out"), "--theme", "Chisel", "--export-as", "pptx"])

    assert exit_code == 0
    settings = seen["settings"]
    assert settings.output_dir == str(tmp_path / "out")
    assert settings.theme_name == "Chisel"
    assert settings.export_as == "pptx"


def test_backoff_jitter_is_clamped_to_base(tmp_path: pathlib.Path) -> None:
    settings = make_settings(tmp_path, BACKOFF_BASE_SECONDS=1, BACKOFF_JITTER_SECONDS=3)
    assert settings.backoff_jitter_seconds == 1.0

    settings = make_settings(tmp_path, BACKOFF_BASE_SECONDS=2, BACKOFF_JITTER_SECONDS=0.5)
    assert settings.backoff_jitter_seconds == 0.5
