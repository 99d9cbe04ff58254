"""
Raw terminal input and screen helpers (POSIX).

The dashboard reads single keystrokes in cbreak mode and redraws the whole
screen with plain ANSI sequences.
"""

from __future__ import annotations

import os
import select
import sys
import termios
import tty
from contextlib import contextmanager
from typing import Callable, Iterator, TextIO

CLEAR_SCREEN = "\033[2J\033[H"
HIDE_CURSOR = "\033[?25l"
SHOW_CURSOR = "\033[?25h"
ALT_SCREEN_ON = "\033[?1049h"
ALT_SCREEN_OFF = "\033[?1049l"

ESCAPE_SEQUENCES = {
    "\x1b[A": "up",
    "\x1b[B": "down",
    "\x1b[C": "right",
    "\x1b[D": "left",
    "\x1bOA": "up",
    "\x1bOB": "down",
    "\x1bOC": "right",
    "\x1bOD": "left",
}

CONTROL_KEYS = {
    "\r": "enter",
    "\n": "enter",
    "\t": "tab",
    "\x7f": "backspace",
    "\x08": "backspace",
    "\x03": "ctrl+c",
    "\x1b": "esc",
}


def decode_key(raw: str) -> str:
    """
    Turn raw terminal input into a key name.

    Args:
        raw: One keystroke as read from the terminal

    Returns:
        "up", "down", "enter", "esc", ... or the character itself
    """
    if raw in ESCAPE_SEQUENCES:
        return ESCAPE_SEQUENCES[raw]
    if raw in CONTROL_KEYS:
        return CONTROL_KEYS[raw]
    if raw.startswith("\x1b"):
        # Unrecognised sequence (function keys etc.)
        return ""
    return raw[:1]


class KeyReader:
    """
    Blocking key reader over a terminal file descriptor.

    Use inside cbreak_mode(); escape sequences are collected with a short
    timeout so a lone Escape is still reported.
    """

    def __init__(self, stream: TextIO | None = None, escape_timeout: float = 0.05):
        self.fd = (stream or sys.stdin).fileno()
        self.escape_timeout = escape_timeout

    def _read_char(self) -> str:
        data = os.read(self.fd, 1)
        if not data:
            raise EOFError("terminal closed")
        return data.decode(errors="replace")

    def _pending(self) -> bool:
        ready, _, _ = select.select([self.fd], [], [], self.escape_timeout)
        return bool(ready)

    def read_raw(self) -> str:
        ch = self._read_char()
        if ch != "\x1b":
            return ch
        sequence = ch
        while self._pending() and len(sequence) < 8:
            sequence += self._read_char()
            if sequence[-1].isalpha() or sequence[-1] == "~":
                break
        return sequence

    def read_key(self) -> str:
        return decode_key(self.read_raw())

    def __iter__(self) -> Iterator[str]:
        while True:
            try:
                key = self.read_key()
            except EOFError:
                return
            if key:
                yield key


@contextmanager
def cbreak_mode(stream: TextIO | None = None) -> Iterator[None]:
    """Put the terminal in cbreak mode (no echo, no line buffering, no ISIG)."""
    fd = (stream or sys.stdin).fileno()
    saved = termios.tcgetattr(fd)
    try:
        tty.setcbreak(fd)
        # Ctrl+C arrives as a key, not SIGINT
        attrs = termios.tcgetattr(fd)
        attrs[3] &= ~termios.ISIG
        termios.tcsetattr(fd, termios.TCSADRAIN, attrs)
        yield
    finally:
        termios.tcsetattr(fd, termios.TCSADRAIN, saved)


@contextmanager
def dashboard_screen(out: TextIO | None = None) -> Iterator[Callable[[str], None]]:
    """
    Switch to the alternate screen for the session's lifetime.

    Yields:
        draw(text) function that replaces the screen contents
    """
    out = out or sys.stdout

    def draw(text: str) -> None:
        out.write(CLEAR_SCREEN + text)
        out.flush()

    out.write(ALT_SCREEN_ON + HIDE_CURSOR)
    out.flush()
    try:
        yield draw
    finally:
        out.write(SHOW_CURSOR + ALT_SCREEN_OFF)
        out.flush()


def terminal_width(default: int = 100) -> int:
    try:
        return os.get_terminal_size().columns
    except OSError:
        return default


def is_interactive() -> bool:
    return sys.stdin.isatty() and sys.stdout.isatty()
