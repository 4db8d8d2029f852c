"""Logging configuration for the controller manager.

Example:
    from capc.observability.logging import LogConfig, setup_logging

    handler_ids = setup_logging(LogConfig(level="DEBUG", file="capc.log"))
    ...
    teardown_logging(handler_ids)
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from capc.observability.logger import ROOT_LOGGER_NAME, logger

type LogLevel = Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR"]

_CONTEXT_KEYS = (
    "component", "controller", "provider", "key",
    "cluster", "machine", "instance_id", "network_id",
)

FILE_FORMAT = (
    "%(asctime)s.%(msecs)03d | %(levelname)-8s | "
    "%(name)s:%(funcName)s:%(lineno)d%(ctx)s - %(message)s"
)


class ContextFilter(logging.Filter):
    """Render bound values as `` [k=v ...]`` on ``record.ctx``."""

    def filter(self, record: logging.LogRecord) -> bool:
        extras: dict[str, object] = getattr(record, "extras", {})
        parts = [f"{k}={extras[k]}" for k in _CONTEXT_KEYS if k in extras]
        record.ctx = f" [{' '.join(parts)}]" if parts else ""
        return True


class _ConsoleFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        return f"{record.getMessage()}{getattr(record, 'ctx', '')}"


@dataclass(frozen=True, slots=True)
class LogConfig:
    """Logging configuration for the manager process.

    Attributes:
        level: Minimum log level for the console.
        file: Path to a log file. Empty disables file output.
        console: Whether to log to stderr.
        rotation: Rotate the file at this size (e.g. "50 MB").
        retention: Number of rotated files to keep.
    """

    level: LogLevel = "INFO"
    file: str = ""
    console: bool = True
    rotation: str = "50 MB"
    retention: int = 10


def setup_logging(config: LogConfig) -> list[int]:
    """Install handlers for ``config`` and return their ids for teardown."""
    logger.remove()
    logger.enable(ROOT_LOGGER_NAME)
    context = ContextFilter()
    handler_ids: list[int] = []

    if config.console:
        handler_ids.append(logger.add(
            sys.stderr,
            level=config.level,
            formatter=_ConsoleFormatter(),
            filters=(context,),
        ))

    if config.file:
        Path(config.file).parent.mkdir(parents=True, exist_ok=True)
        handler_ids.append(logger.add(
            config.file,
            level="DEBUG",
            formatter=logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"),
            filters=(context,),
            rotation=config.rotation,
            retention=config.retention,
        ))

    return handler_ids


def teardown_logging(handler_ids: list[int]) -> None:
    for hid in handler_ids:
        logger.remove(hid)
