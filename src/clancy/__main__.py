"""CLI entrypoint for Clancy."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from clancy import __version__
from clancy.agent_runner import create_runner
from clancy.config import (
    DEFAULT_CONFIG_FILENAME,
    ConfigError,
    PromptError,
    format_duration,
    generate_config,
    load_config,
)
from clancy.display import ConsoleReporter
from clancy.loop import run_loop

logger = logging.getLogger(__name__)

_PREFIX = ">>> [Clancy]"


def _load_dotenv() -> None:
    """Load .env from cwd or its parent so agent commands inherit it."""
    for dir_ in (Path.cwd(), Path.cwd().parent):
        env_file = dir_ / ".env"
        if env_file.is_file():
            load_dotenv(env_file)
            logger.debug("Loaded environment from %s", env_file)
            return


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="clancy",
        description="Run an agent command in a loop until it prints its stop phrase.",
    )
    p.add_argument(
        "config",
        nargs="?",
        default=DEFAULT_CONFIG_FILENAME,
        help=f"Path to configuration file (default: {DEFAULT_CONFIG_FILENAME}).",
    )
    p.add_argument(
        "--new",
        action="store_true",
        help="Generate a new configuration file in the current directory.",
    )
    p.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    p.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging.",
    )
    return p


def main(argv: list[str] | None = None) -> int:
    """Parse arguments, load the configuration and run the loop."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    # -- Logging setup --------------------------------------------------------
    # INFO chatter would interleave with the live agent stream, so the
    # default level only surfaces warnings.
    level = logging.DEBUG if args.verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
        datefmt="%H:%M:%S",
    )

    if args.new:
        return _generate(Path.cwd())

    _load_dotenv()
    try:
        config = load_config(args.config)
    except ConfigError as exc:
        print(f"Error loading config file '{args.config}': {exc}", file=sys.stderr)
        return 1

    try:
        prompt = config.resolve_prompt()
    except PromptError as exc:
        print(f"Error resolving prompt: {exc}", file=sys.stderr)
        return 1

    try:
        runner = create_runner(config.agent.runner)
    except KeyError as exc:
        print(f"Error loading config file '{args.config}': {exc.args[0]}", file=sys.stderr)
        return 1

    policy = config.policy()
    print(
        f"{_PREFIX} Starting loop. Config: {args.config}, Steps: {policy.max_steps}, "
        f"Timeout: {format_duration(policy.timeout_seconds)}",
        file=sys.stderr,
    )

    outcome = run_loop(
        policy,
        config.agent_spec(),
        prompt,
        runner,
        reporter=ConsoleReporter(),
    )
    if not outcome.success:
        print(f"{_PREFIX} Failed: {outcome.reason}", file=sys.stderr)
        return 1

    print(f"{_PREFIX} Success.", file=sys.stderr)
    return 0


def _generate(directory: Path) -> int:
    try:
        path = generate_config(directory)
    except OSError as exc:
        print(f"Error generating config: {exc}", file=sys.stderr)
        return 1
    print(f"Generated configuration file: {path.name}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
