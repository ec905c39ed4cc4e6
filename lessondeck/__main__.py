from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence

from dotenv import load_dotenv

from lessondeck.core.config import load_settings
from lessondeck.core.errors import ConfigurationError
from lessondeck.core.logging import setup_logging
from lessondeck.orchestration.runner import run_batch

logger = logging.getLogger("lessondeck.cli")

# CLI flags and the env vars they override.
_FLAG_ENV = {
    "lessons_dir": "LESSONS_DIR",
    "batch_csv": "BATCH_CSV",
    "output_dir": "OUTPUT_DIR",
    "export_as": "EXPORT_AS",
    "theme": "THEME_NAME",
    "format": "DECK_FORMAT",
}


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="lessondeck",
        description="Generate Gamma decks from Markdown lessons and write a static HTML index.",
    )
    parser.add_argument("--lessons-dir", help="Directory of Markdown lessons (LESSONS_DIR).")
    parser.add_argument("--batch-csv", help="CSV with title,format,theme,exportAs[,file] rows (BATCH_CSV).")
    parser.add_argument("--output-dir", help="Where HTML pages and status.json are written (OUTPUT_DIR).")
    parser.add_argument("--export-as", choices=("pdf", "pptx"), help="Request an export file (EXPORT_AS).")
    parser.add_argument("--theme", help="Gamma theme name (THEME_NAME).")
    parser.add_argument("--format", choices=("presentation", "webpage"), help="Deck format (DECK_FORMAT).")
    parser.add_argument("--env-file", default=".env", help="Dotenv file to load before reading settings.")
    parser.add_argument("--log-level", help="Override LOG_LEVEL.")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    load_dotenv(args.env_file)
    setup_logging(log_level=args.log_level)

    overrides = {env_name: getattr(args, attr) for attr, env_name in _FLAG_ENV.items() if getattr(args, attr)}
    try:
        settings = load_settings(**overrides)
        asyncio.run(run_batch(settings))
    except ConfigurationError as exc:
        logger.error("configuration error: %s", exc.detail)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
