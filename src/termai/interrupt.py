"""Soft Ctrl+C while a model response is streaming.

Inside ``interrupt_guard`` the first SIGINT only raises a flag, which the
stream callback polls to stop reading and keep the partial answer.  A
second SIGINT inside the same guard is a real KeyboardInterrupt.
"""

import signal
import threading
from contextlib import contextmanager
from typing import Iterator


class StreamInterrupt:
    """A one-shot stop request, raised from a signal handler or directly."""

    def __init__(self):
        self._event = threading.Event()
        self.source = ""

    @property
    def requested(self) -> bool:
        return self._event.is_set()

    def request(self, source: str = "user") -> None:
        self.source = source
        self._event.set()

    def clear(self) -> None:
        self.source = ""
        self._event.clear()


_current = StreamInterrupt()


def current_interrupt() -> StreamInterrupt:
    return _current


def is_interrupted() -> bool:
    """Has a stop been requested since the guard was entered?"""
    return _current.requested


def request_interrupt(source: str = "user") -> None:
    _current.request(source)


def _on_sigint(signum, frame):
    if _current.requested:
        raise KeyboardInterrupt()
    _current.request("ctrl-c")


@contextmanager
def interrupt_guard() -> Iterator[StreamInterrupt]:
    """Clear the flag and route SIGINT to it until the block exits.

    Signal handlers can only be installed from the main thread; elsewhere
    the flag is still cleared but SIGINT keeps its normal behaviour.
    """
    _current.clear()
    if threading.current_thread() is not threading.main_thread():
        yield _current
        return

    previous = signal.signal(signal.SIGINT, _on_sigint)
    try:
        yield _current
    finally:
        signal.signal(signal.SIGINT, previous)
