"""Spinner shown on the current line while the model has not answered yet.

It is drawn with a carriage return and an ANSI erase-to-end-of-line, so it
must be cleared before the first streamed fragment is written.  Nothing is
drawn when the output is not a terminal.
"""

import itertools
import shutil
import sys
import threading
import time
from typing import Optional, TextIO

FRAMES = "⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏"
TICK_SECONDS = 0.12

DIM = "\033[2m"
CYAN = "\033[36m"
RESET = "\033[0m"
ERASE_LINE = "\033[K"


def format_elapsed(seconds: float) -> str:
    if seconds < 1:
        return ""
    if seconds < 60:
        return f"{seconds:.0f}s"
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}m{secs:02d}s"


class StatusLine:
    """Animated one-line status, e.g. ``⠹ Thinking... │ 4s``.

    ``update`` shows or changes the text and starts the animation thread;
    ``clear`` stops it and erases the line.  Both are no-ops when disabled.
    """

    def __init__(self, enabled: bool = True, stream: Optional[TextIO] = None):
        self._out = stream or sys.stdout
        self._enabled = enabled and self._out.isatty()
        self._lock = threading.Lock()
        self._frames = itertools.cycle(FRAMES)
        self._text = ""
        self._started_at: Optional[float] = None
        self._drawn = False
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def enabled(self) -> bool:
        return self._enabled

    def update(self, text: str) -> None:
        if not self._enabled:
            return
        with self._lock:
            self._text = text
            if self._started_at is None:
                self._started_at = time.monotonic()
            self._draw()
        if self._thread is None or not self._thread.is_alive():
            self._stop.clear()
            self._thread = threading.Thread(target=self._animate, daemon=True)
            self._thread.start()

    def clear(self) -> None:
        if not self._enabled:
            return
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=0.5)
            self._thread = None
        with self._lock:
            if self._drawn:
                width = shutil.get_terminal_size().columns
                self._out.write("\r" + " " * width + "\r")
                self._out.flush()
                self._drawn = False
            self._text = ""
            self._started_at = None

    def _draw(self) -> None:
        # Caller holds the lock
        elapsed = format_elapsed(time.monotonic() - (self._started_at or time.monotonic()))
        line = f" {CYAN}{next(self._frames)}{RESET}{DIM} {self._text}"
        if elapsed:
            line += f" │ {elapsed}"
        self._out.write(f"\r{DIM}{line}{RESET}{ERASE_LINE}")
        self._out.flush()
        self._drawn = True

    def _animate(self) -> None:
        while not self._stop.wait(TICK_SECONDS):
            with self._lock:
                if self._text:
                    self._draw()
