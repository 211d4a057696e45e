"""
Local terminal helpers: window size discovery and raw mode.
"""

from __future__ import annotations
import logging
import os
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Mapping, Optional

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == 'win32'

if not IS_WINDOWS:
    import termios
    import tty

DEFAULT_COLS = 80
DEFAULT_ROWS = 24

MIN_COLS, MIN_ROWS = 10, 2
MAX_COLS, MAX_ROWS = 1000, 1000


@dataclass(frozen=True)
class TerminalSize:
    cols: int = DEFAULT_COLS
    rows: int = DEFAULT_ROWS

    def clamped(self) -> TerminalSize:
        return TerminalSize(
            min(max(self.cols, MIN_COLS), MAX_COLS),
            min(max(self.rows, MIN_ROWS), MAX_ROWS),
        )

    def __str__(self) -> str:
        return f"{self.cols}x{self.rows}"


def _from_stream(stream) -> Optional[TerminalSize]:
    try:
        size = os.get_terminal_size(stream.fileno())
    except (AttributeError, ValueError, OSError):
        return None
    if size.columns <= 0 or size.lines <= 0:
        return None
    return TerminalSize(size.columns, size.lines)


def _from_environ(environ: Mapping[str, str]) -> Optional[TerminalSize]:
    try:
        cols = int(environ["COLUMNS"])
        rows = int(environ["LINES"])
    except (KeyError, ValueError):
        return None
    return TerminalSize(cols, rows)


def terminal_size(
    cols: Optional[int] = None,
    rows: Optional[int] = None,
    stream=None,
    environ: Optional[Mapping[str, str]] = None,
) -> TerminalSize:
    """
    Determine the size to request for the remote PTY.

    Order: explicit values, the controlling terminal behind ``stream``
    (stdout by default), ``COLUMNS``/``LINES``, then 80x24. A partial
    explicit value fills in from the discovered size. Every source is
    clamped to 10x2 .. 1000x1000.
    """
    environ = os.environ if environ is None else environ
    stream = sys.stdout if stream is None else stream

    discovered = (
        _from_stream(stream)
        or _from_environ(environ)
        or TerminalSize(DEFAULT_COLS, DEFAULT_ROWS)
    )

    size = TerminalSize(
        cols if cols else discovered.cols,
        rows if rows else discovered.rows,
    ).clamped()
    logger.debug(f"Terminal size: {size}")
    return size


def is_tty(stream) -> bool:
    try:
        return stream.isatty()
    except (AttributeError, ValueError):
        return False


@contextmanager
def raw_mode(stream) -> Iterator[bool]:
    """
    Put a TTY into raw mode for the duration of the block.

    Yields whether raw mode was entered. Non-TTY streams (pipes, files,
    in-memory buffers) are left alone.
    """
    if IS_WINDOWS or not is_tty(stream):
        yield False
        return

    fd = stream.fileno()
    saved = termios.tcgetattr(fd)
    try:
        tty.setraw(fd)
        logger.debug("Local terminal in raw mode")
        yield True
    finally:
        termios.tcsetattr(fd, termios.TCSADRAIN, saved)
        logger.debug("Local terminal restored")
