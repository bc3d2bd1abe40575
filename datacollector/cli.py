"""Command-line entry point for the data collector service."""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import threading
from datetime import datetime, timezone
from typing import Optional, Sequence, Union

from .config import ConfigError, load_config
from .server import Server

VERSION = "dev"
LOGGER_NAME = "datacollector"

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}
_LEVEL_NAMES = {logging.WARNING: "WARN"}


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "time": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": _LEVEL_NAMES.get(record.levelno, record.levelname),
            "msg": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def create_logger(level: Union[int, str]) -> logging.Logger:
    """Return the service logger writing JSON lines to stdout at ``level``.

    ``level`` may be a logging level or one of ``debug``, ``info``, ``warn``
    and ``error``; any other name means ``info``.
    """
    if isinstance(level, str):
        level = _LEVELS.get(level, logging.INFO)
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_JsonFormatter())
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
    return logger


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the collector until interrupted; return the exit status."""
    parser = argparse.ArgumentParser(prog="datacollector", description="Collect device data.")
    parser.add_argument("--env-file", default=".env", help="path of the .env configuration file")
    parser.add_argument("--version", action="version", version=VERSION)
    args = parser.parse_args(argv)

    logger = create_logger(logging.INFO)
    logger.info("Data Collector Server Version version=%s", VERSION)

    try:
        config = load_config(args.env_file)
    except ConfigError as exc:
        logger.error("%s", exc)
        return 1

    logger.info("setting logger level level=%s", config.log_level)
    logger = create_logger(config.log_level)

    stop_event = threading.Event()

    def _on_signal(signum: int, frame: object) -> None:
        logger.info("Ctrl+C pressed, cancelling context...")
        stop_event.set()

    previous = {}
    if threading.current_thread() is threading.main_thread():
        for signum in (signal.SIGINT, signal.SIGTERM):
            previous[signum] = signal.signal(signum, _on_signal)
    try:
        server = Server(stop_event, config, None, logger)
        server.start()
        while not stop_event.wait(0.5):
            pass
        server.stop()
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)
    return 0


if __name__ == "__main__":
    sys.exit(main())