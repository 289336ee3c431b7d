"""Project logger for **SiteMirror**.

Every module logs through the ``SiteMirror`` logger::

    from site_mirror.logger import logger
    logger.info("Asset Resource: %s", url)

Records go to stdout, optionally to a rotating log file, and always to an
in-memory ring buffer. When a run is interrupted the buffer is dumped to
``progress.log`` next to the mirror (:func:`save_progress`).
"""
from __future__ import annotations

import logging
import sys
from collections import deque
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Deque, Final, Union

_DEFAULT_FORMAT: Final[str] = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_LOGGER_NAME: Final[str] = "SiteMirror"
_PROGRESS_LINES: Final[int] = 20_000
_ROTATE_BYTES: Final[int] = 5 * 1024 * 1024

_Level = Union[int, str]


class ProgressBuffer(logging.Handler):
    """Keeps the last formatted records of the run in memory."""

    def __init__(self, capacity: int = _PROGRESS_LINES) -> None:
        super().__init__()
        self.lines: Deque[str] = deque(maxlen=capacity)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.lines.append(self.format(record))
        except Exception:  # pragma: no cover
            self.handleError(record)

    def dump(self) -> str:
        return "\n".join(self.lines) + ("\n" if self.lines else "")


progress_buffer: Final[ProgressBuffer] = ProgressBuffer()


def _with_format(handler: logging.Handler, fmt: str) -> logging.Handler:
    handler.setFormatter(logging.Formatter(fmt))
    return handler


def configure(
    *,
    level: _Level = "INFO",
    log_file: str | Path | None = None,
    log_format: str = _DEFAULT_FORMAT,
    replace_handlers: bool = True,
) -> logging.Logger:
    """Attach the console, file and progress handlers to the project logger.

    ``replace_handlers=False`` keeps handlers installed earlier (for example
    by an embedding application) and only adds the new ones.
    """
    lg = logging.getLogger(_LOGGER_NAME)
    lg.setLevel(level)
    if replace_handlers:
        lg.handlers.clear()

    lg.addHandler(_with_format(logging.StreamHandler(sys.stdout), log_format))
    if log_file is not None:
        rotating = RotatingFileHandler(
            filename=str(log_file),
            maxBytes=_ROTATE_BYTES,
            backupCount=3,
            encoding="utf-8",
        )
        lg.addHandler(_with_format(rotating, log_format))

    _with_format(progress_buffer, log_format)
    if progress_buffer not in lg.handlers:
        lg.addHandler(progress_buffer)

    lg.propagate = False
    return lg


def init_logging(
    level: _Level = "INFO",
    log_file: str | Path | None = None,
    log_format: str = _DEFAULT_FORMAT,
) -> logging.Logger:
    """Shortcut used by the CLI: configure from scratch."""
    return configure(level=level, log_file=log_file, log_format=log_format, replace_handlers=True)


def save_progress(path: str | Path) -> Path:
    """Write the buffered log of the current run to *path* (``progress.log``)."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(progress_buffer.dump(), encoding="utf-8")
    return target


logger: logging.Logger = init_logging()

__all__ = ["logger", "configure", "init_logging", "progress_buffer", "save_progress"]
