"""
Centralized logging configuration for the chit fund engine.

All loggers hang off the ``chitfund`` root so one call configures every
subsystem (auction, settlement, ledger, ranking, storage, service, sinks).
Console output goes to stderr so command output on stdout stays clean.
"""

import logging
import sys
from pathlib import Path
from typing import IO, Optional

import colorlog

ROOT_LOGGER = "chitfund"
LOG_FILE_NAME = "chitfund.log"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

LOG_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "red,bg_white",
}


def _console_handler(level: int, stream: Optional[IO[str]]) -> logging.Handler:
    handler = colorlog.StreamHandler(stream or sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(colorlog.ColoredFormatter(
        "%(log_color)s%(asctime)s %(levelname)-8s%(reset)s %(blue)s%(name)s%(reset)s %(message)s",
        datefmt=DATE_FORMAT,
        log_colors=LOG_COLORS,
    ))
    return handler


def _file_handler(log_dir: Path, level: int) -> logging.Handler:
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_dir / LOG_FILE_NAME, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)-8s %(name)s %(message)s",
        datefmt=DATE_FORMAT,
    ))
    return handler


class ChitFundLogger:
    """Owns the handlers attached to the ``chitfund`` root logger."""

    _initialized = False

    @classmethod
    def setup(
        cls,
        level: int = logging.INFO,
        log_dir: Optional[str] = None,
        log_to_file: bool = False,
        stream: Optional[IO[str]] = None,
    ):
        """
        Configure the root logger once.

        Args:
            level: Logging level for every handler
            log_dir: Directory for chitfund.log (default ./logs)
            log_to_file: Also write plain-text records to a file
            stream: Console stream (default stderr)
        """
        if cls._initialized:
            return

        root = logging.getLogger(ROOT_LOGGER)
        root.setLevel(level)
        root.handlers.clear()
        root.addHandler(_console_handler(level, stream))

        if log_to_file:
            directory = Path(log_dir) if log_dir else Path("logs")
            root.addHandler(_file_handler(directory, level))

        cls._initialized = True

    @classmethod
    def reset(cls):
        """Detach and close handlers so the next setup() starts over."""
        root = logging.getLogger(ROOT_LOGGER)
        for handler in list(root.handlers):
            root.removeHandler(handler)
            handler.close()
        cls._initialized = False

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        """Logger for one subsystem, e.g. 'auction' -> chitfund.auction."""
        if not cls._initialized:
            cls.setup()
        return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def get_logger(name: str) -> logging.Logger:
    return ChitFundLogger.get_logger(name)


def setup_logging(
    level: int = logging.INFO,
    log_dir: Optional[str] = None,
    log_to_file: bool = False,
    stream: Optional[IO[str]] = None,
):
    """Setup logging configuration"""
    ChitFundLogger.setup(level=level, log_dir=log_dir, log_to_file=log_to_file, stream=stream)


def configure_from(config, debug: bool = False):
    """
    (Re)configure logging from an EngineConfig.

    Used by entry points that may run several times in one process, such
    as CLI invocations under a test runner.
    """
    ChitFundLogger.reset()
    setup_logging(
        level=logging.DEBUG if debug else config.logging_level,
        log_dir=str(config.log_dir),
        log_to_file=config.log_to_file,
    )
