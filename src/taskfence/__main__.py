"""taskfence CLI entry point."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from taskfence.config import DEFAULT_TRIGGER_PHRASE, load_settings
from taskfence.outputs import EXCEPTION, OutputWriter
from taskfence.sanitizer import OUTPUT_SIZE_LIMITS, sanitize_agent_output, truncate_output

logger = logging.getLogger("taskfence")

# httpx logs every request URL at INFO, signed attachment URLs included
NOISY_HTTP_LOGGERS = ("httpx", "httpcore")


def quiet_http_loggers() -> None:
    for name in NOISY_HTTP_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _prepare(args) -> int:
    from taskfence.pipeline import prepare

    output_file = os.environ.get("GITHUB_OUTPUT")
    try:
        settings = load_settings(config_file=args.config)
        result = asyncio.run(prepare(settings))
    except Exception as e:
        logger.exception("Prepare step failed with error: %s", e)
        OutputWriter(output_file).set(EXCEPTION, str(e))
        return 1
    logger.info("Pipeline finished: %s", result.outcome.value)
    return 0


def _sanitize_output(args) -> int:
    if args.file:
        text = args.file.read_text(encoding="utf-8")
    else:
        text = sys.stdin.read()
    trigger_phrase = args.trigger_phrase or os.environ.get("TRIGGER_PHRASE", DEFAULT_TRIGGER_PHRASE)
    sanitized = sanitize_agent_output(text, trigger_phrase)
    if args.kind:
        sanitized = truncate_output(sanitized, OUTPUT_SIZE_LIMITS[args.kind])
    sys.stdout.write(sanitized)
    return 0


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="taskfence",
        description="taskfence: assemble a trusted agent task from a GitHub event",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Load environment variables from this .env file (default: ./.env if present)",
    )

    subparsers = parser.add_subparsers(dest="command")

    # taskfence prepare
    prepare_parser = subparsers.add_parser(
        "prepare", help="Resolve the event, build the task and write step outputs"
    )
    prepare_parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional YAML file layered under the environment",
    )

    # taskfence sanitize-output
    sanitize_parser = subparsers.add_parser(
        "sanitize-output", help="Sanitize agent output read from stdin or --file"
    )
    sanitize_parser.add_argument("--file", type=Path, help="Read from this file instead of stdin")
    sanitize_parser.add_argument(
        "--trigger-phrase",
        default=None,
        help="Trigger phrase to neutralise (default: $TRIGGER_PHRASE or @taskfence)",
    )
    sanitize_parser.add_argument(
        "--kind",
        choices=sorted(OUTPUT_SIZE_LIMITS),
        help="Truncate to the size limit for this kind of output",
    )

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    quiet_http_loggers()
    load_dotenv(args.env_file)

    if args.command == "prepare":
        sys.exit(_prepare(args))
    sys.exit(_sanitize_output(args))


if __name__ == "__main__":
    main()
