from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import List, Optional

from dotenv import load_dotenv  # type: ignore
from rich.console import Console
from rich.text import Text

from .analysis import Oracle
from .config import Settings
from .executor import ProcessExecutor
from .graph import CommandEngine
from .llm import LangChainOracle, OracleError, get_llm
from .ux import Reporter, exit_code_for

LOGGER = logging.getLogger(__name__)

_stderr = Console(stderr=True, highlight=False)


def _positive_int(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value!r}") from exc
    if parsed <= 0:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value!r}")
    return parsed


def _positive_float(value: str) -> float:
    try:
        parsed = float(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected a number of seconds, got {value!r}") from exc
    if parsed <= 0:
        raise argparse.ArgumentTypeError(f"expected a positive number of seconds, got {value!r}")
    return parsed


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="aish", description="Generate and execute shell commands using AI")
    p.add_argument("query", nargs="+", help="natural language description of what you want to do")
    p.add_argument("-t", "--timeout", type=_positive_float, help="timeout in seconds (no timeout by default)")
    p.add_argument("--tty", action="store_true", help="force interactive/TTY mode for the command")
    p.add_argument("-v", "--verbose", action="store_true", help="show detailed explanations and context")
    p.add_argument("-y", "--yes", action="store_true", help="auto-approve and run commands without prompting")
    p.add_argument(
        "--max-tries",
        type=_positive_int,
        default=None,
        help="maximum failed attempts before aborting (default 3)",
    )
    p.add_argument("--json", action="store_true", help="output final result summary as JSON")
    p.add_argument("--provider", help="AI provider to use (overrides default)")
    p.add_argument("--model", help="model to use (overrides provider's preferred model)")
    return p.parse_args(argv)


def configure_logging() -> None:
    name = (os.getenv("AISH_LOG_LEVEL") or "WARNING").upper()
    level = getattr(logging, name, logging.WARNING)
    if not isinstance(level, int):
        level = logging.WARNING
    # stderr only, so --json output on stdout stays machine-readable
    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def settings_from_args(args: argparse.Namespace) -> Settings:
    return Settings.from_sources(
        provider=args.provider,
        model=args.model,
        timeout=args.timeout,
        force_tty=args.tty,
        verbose=args.verbose,
        auto_approve=args.yes,
        max_tries=args.max_tries,
        json_mode=args.json,
    )


def build_engine(settings: Settings, oracle: Oracle) -> CommandEngine:
    executor = ProcessExecutor(
        timeout=settings.timeout,
        force_tty=settings.force_tty,
        shell=settings.shell,
        max_capture=settings.max_capture,
    )
    return CommandEngine(
        oracle,
        executor=executor,
        reporter=Reporter(verbose=settings.verbose, json_mode=settings.json_mode),
        max_tries=settings.max_tries,
        auto_approve=settings.auto_approve,
        json_mode=settings.json_mode,
        step_limit=settings.step_limit,
    )


def _print_error(exc: BaseException) -> None:
    _stderr.print(Text(f"❌ Error: {exc}", style="red"), soft_wrap=True)


def main(argv: Optional[List[str]] = None) -> int:
    # Load .env from the working directory before reading any settings
    load_dotenv()
    args = parse_args(argv)
    configure_logging()
    settings = settings_from_args(args)
    query = " ".join(args.query)

    try:
        llm = get_llm(settings.provider, settings.model)
    except OracleError as exc:
        _print_error(exc)
        return 1

    engine = build_engine(settings, LangChainOracle(llm, timeout_seconds=settings.llm_timeout))
    try:
        final = engine.run(query)
    except KeyboardInterrupt:
        _stderr.print(Text("\n\n👋 Goodbye!", style="yellow"))
        return 130
    return exit_code_for(final)
