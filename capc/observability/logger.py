"""Loguru-style logger backed by stdlib logging + rich.

Usage::

    from capc.observability.logger import logger

    log = logger.bind(controller="contabomachine", key="default/worker-0")
    log.info("Instance {instance_id} is {status}", instance_id=42, status="running")

Bound values travel on the LogRecord (``record.extras``) so handlers can
render them; see ``capc.observability.logging`` for the formats.
"""

from __future__ import annotations

import gzip
import inspect
import logging
import logging.handlers
import os
import shutil
import sys
from types import FrameType
from typing import TextIO

from rich.logging import RichHandler

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

ROOT_LOGGER_NAME = "capc"

_root = logging.getLogger(ROOT_LOGGER_NAME)
_root.setLevel(TRACE)
_root.propagate = False

_DEFAULT_MAX_BYTES = 50 * 1024 * 1024


def _format_message(msg: str, args: tuple[object, ...], kwargs: dict[str, object]) -> str:
    if kwargs:
        return msg.format(**kwargs)
    if args:
        return msg.format(*args)
    return msg


def _caller_frame() -> FrameType:
    frame = sys._getframe(1)
    while frame.f_back is not None and frame.f_globals.get("__name__") == __name__:
        frame = frame.f_back
    return frame


class BoundLogger:
    __slots__ = ("_extras",)

    def __init__(self, extras: dict[str, object] | None = None) -> None:
        self._extras = extras or {}

    @property
    def extras(self) -> dict[str, object]:
        return dict(self._extras)

    def bind(self, **kwargs: object) -> BoundLogger:
        return BoundLogger({**self._extras, **kwargs})

    def _log(self, level: int, message: str, /, *args: object, **kwargs: object) -> None:
        exc_info = kwargs.pop("exc_info", False)
        frame = _caller_frame()
        target = logging.getLogger(frame.f_globals.get("__name__", ROOT_LOGGER_NAME))
        if not target.isEnabledFor(level):
            return
        info = inspect.getframeinfo(frame, context=0)
        record = target.makeRecord(
            name=target.name,
            level=level,
            fn=info.filename,
            lno=info.lineno,
            msg=_format_message(message, args, kwargs),
            args=(),
            exc_info=sys.exc_info() if exc_info else None,
            func=info.function,
        )
        record.filename = os.path.basename(info.filename)
        record.extras = self._extras  # type: ignore[attr-defined]
        target.handle(record)

    def trace(self, message: str, /, *args: object, **kwargs: object) -> None:
        self._log(TRACE, message, *args, **kwargs)

    def debug(self, message: str, /, *args: object, **kwargs: object) -> None:
        self._log(logging.DEBUG, message, *args, **kwargs)

    def info(self, message: str, /, *args: object, **kwargs: object) -> None:
        self._log(logging.INFO, message, *args, **kwargs)

    def warning(self, message: str, /, *args: object, **kwargs: object) -> None:
        self._log(logging.WARNING, message, *args, **kwargs)

    def error(self, message: str, /, *args: object, **kwargs: object) -> None:
        self._log(logging.ERROR, message, *args, **kwargs)

    def exception(self, message: str, /, *args: object, **kwargs: object) -> None:
        kwargs["exc_info"] = True
        self._log(logging.ERROR, message, *args, **kwargs)


# ─── Handlers ────────────────────────────────────────────────────────


def _gzip_namer(name: str) -> str:
    return name + ".gz"


def _gzip_rotator(source: str, dest: str) -> None:
    with open(source, "rb") as f_in, gzip.open(dest, "wb") as f_out:
        shutil.copyfileobj(f_in, f_out)
    os.remove(source)


def parse_rotation(rotation: str | None) -> int:
    """Parse a size such as ``"50 MB"`` or ``"512 KB"`` into bytes."""
    if not rotation:
        return _DEFAULT_MAX_BYTES
    match rotation.strip().split():
        case [num, unit] if unit.upper() == "KB":
            return int(num) * 1024
        case [num, unit] if unit.upper() == "MB":
            return int(num) * 1024 * 1024
        case [num, unit] if unit.upper() == "GB":
            return int(num) * 1024 * 1024 * 1024
        case _:
            return _DEFAULT_MAX_BYTES


def _file_handler(path: str, *, level: int, rotation: str | None, retention: int) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=parse_rotation(rotation),
        backupCount=retention,
    )
    handler.namer = _gzip_namer
    handler.rotator = _gzip_rotator
    handler.setLevel(level)
    return handler


def _console_handler(level: int, stream: TextIO | None) -> logging.Handler:
    from rich.console import Console

    handler = RichHandler(
        level=level,
        console=Console(file=stream) if stream is not None else None,
        show_time=True,
        show_level=True,
        show_path=True,
        markup=False,
        rich_tracebacks=True,
    )
    handler.setLevel(level)
    return handler


class LoguruCompat:
    def __init__(self) -> None:
        self._bound = BoundLogger()
        self._handlers: dict[int, logging.Handler] = {}
        self._next_id = 0

    def bind(self, **kwargs: object) -> BoundLogger:
        return self._bound.bind(**kwargs)

    def trace(self, message: str, /, *args: object, **kwargs: object) -> None:
        self._bound.trace(message, *args, **kwargs)

    def debug(self, message: str, /, *args: object, **kwargs: object) -> None:
        self._bound.debug(message, *args, **kwargs)

    def info(self, message: str, /, *args: object, **kwargs: object) -> None:
        self._bound.info(message, *args, **kwargs)

    def warning(self, message: str, /, *args: object, **kwargs: object) -> None:
        self._bound.warning(message, *args, **kwargs)

    def error(self, message: str, /, *args: object, **kwargs: object) -> None:
        self._bound.error(message, *args, **kwargs)

    def exception(self, message: str, /, *args: object, **kwargs: object) -> None:
        self._bound.exception(message, *args, **kwargs)

    def add(
        self,
        sink: str | TextIO,
        *,
        level: str = "DEBUG",
        formatter: logging.Formatter | None = None,
        filters: tuple[logging.Filter, ...] = (),
        rotation: str | None = None,
        retention: int = 10,
    ) -> int:
        """Attach a sink: a file path gets a rotating gzip handler, a stream gets rich."""
        numeric_level = logging.getLevelName(level.upper())
        if not isinstance(numeric_level, int):
            numeric_level = logging.DEBUG

        match sink:
            case str() as path:
                handler = _file_handler(path, level=numeric_level, rotation=rotation, retention=retention)
            case stream:
                handler = _console_handler(numeric_level, stream)

        if formatter is not None:
            handler.setFormatter(formatter)
        for f in filters:
            handler.addFilter(f)

        _root.addHandler(handler)
        self._next_id += 1
        self._handlers[self._next_id] = handler
        return self._next_id

    def remove(self, handler_id: int | None = None) -> None:
        if handler_id is None:
            for h in self._handlers.values():
                _root.removeHandler(h)
                h.close()
            self._handlers.clear()
            return
        if h := self._handlers.pop(handler_id, None):
            _root.removeHandler(h)
            h.close()

    def enable(self, name: str = ROOT_LOGGER_NAME) -> None:
        logging.getLogger(name).disabled = False

    def disable(self, name: str = ROOT_LOGGER_NAME) -> None:
        logging.getLogger(name).disabled = True


logger = LoguruCompat()
