"""
Entry point for running portguard via `python -m portguard`.

Usage: python -m portguard [options] -- command [args...]
"""

import argparse
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from . import __version__
from .config import Config
from .errors import ConfigError
from .supervisor import run_supervisor

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger("portguard")


def configure_logging(config: Config) -> None:
    """Console logging, plus a rotating log file when one is configured."""
    log_formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(log_formatter)
    handlers: list[logging.Handler] = [console_handler]

    if config.log_file:
        config.log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            config.log_file,
            maxBytes=config.log_max_bytes,
            backupCount=config.log_backup_count,
        )
        file_handler.setFormatter(log_formatter)
        handlers.append(file_handler)

    logging.basicConfig(level=config.log_level, handlers=handlers, force=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="portguard",
        description="Free a TCP port, then run and supervise a command that binds it.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-p", "--port", type=int, help="TCP port to reclaim (default 8787)")
    parser.add_argument(
        "--settle-delay", type=float, help="seconds to wait after killing port owners"
    )
    parser.add_argument(
        "--discovery-timeout", type=float, help="seconds allowed for the port lookup"
    )
    parser.add_argument(
        "--kill-timeout", type=float, help="seconds to wait for each killed process to exit"
    )
    parser.add_argument(
        "--shutdown-timeout",
        type=float,
        help="kill the child this many seconds after relaying a signal (default: never)",
    )
    parser.add_argument("--shell", action="store_true", help="run the command through the shell")
    parser.add_argument(
        "--skip-reclaim", action="store_true", help="launch without freeing the port first"
    )
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR")
    parser.add_argument("--log-file", type=Path, help="also log to this rotating file")
    parser.add_argument("command", nargs=argparse.REMAINDER, help="command to supervise")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Parse arguments, run the supervisor and return its exit code."""
    parser = build_parser()
    options = parser.parse_args(argv)

    command = list(options.command)
    if command and command[0] == "--":
        command = command[1:]
    if not command:
        parser.error("a command to supervise is required")

    try:
        config = Config().with_overrides(
            port=options.port,
            settle_delay=options.settle_delay,
            discovery_timeout=options.discovery_timeout,
            kill_timeout=options.kill_timeout,
            shutdown_timeout=options.shutdown_timeout,
            log_level=options.log_level.upper() if options.log_level else None,
            log_file=options.log_file,
        ).validate()
    except ConfigError as e:
        parser.error(str(e))

    configure_logging(config)
    logger.debug(f"Configuration: {config}")

    return run_supervisor(
        config,
        command[0],
        command[1:],
        shell=options.shell,
        reclaim=not options.skip_reclaim,
    )


if __name__ == "__main__":
    sys.exit(main())
