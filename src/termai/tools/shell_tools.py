"""Shell command execution with live output."""

import codecs
import os
import signal
import subprocess
import sys
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator, Optional

from ..errors import SpawnError
from ..logger import get_logger, truncate

_log = get_logger("tools.shell")

READ_SIZE = 4096

OutputSink = Callable[[str], None]


def write_to_stdout(text: str) -> None:
    """Default sink: echo straight to the terminal, unbuffered."""
    sys.stdout.write(text)
    sys.stdout.flush()


@dataclass
class ShellResult:
    """Result of a shell command execution."""

    output: str
    return_code: int

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "output": self.output,
            "return_code": self.return_code,
        }


@contextmanager
def parent_ignores_sigint() -> Iterator[None]:
    """Ignore SIGINT in this process only, for the duration of the block.

    The child was already spawned with the default disposition, so Ctrl+C
    from the terminal still reaches it while the parent keeps draining.
    """
    if threading.current_thread() is not threading.main_thread():
        yield
        return
    previous = signal.signal(signal.SIGINT, signal.SIG_IGN)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def resolve_shell(shell: Optional[str] = None) -> str:
    """Pick the interpreter: explicit value, then $SHELL, then /bin/sh."""
    return shell or os.environ.get("SHELL") or "/bin/sh"


def run_shell_command(
    command: str,
    shell: Optional[str] = None,
    cwd: Optional[str] = None,
    on_output: Optional[OutputSink] = write_to_stdout,
) -> ShellResult:
    """Run ``<shell> -c <command>`` with stdout and stderr merged into one pipe.

    Each chunk read from the pipe is passed to ``on_output`` as soon as it
    arrives and is also accumulated into the result.  The pipe is drained
    to EOF before the exit status is collected, so no output is lost.  A
    non-zero exit status is reported, not raised.

    Args:
        command: The command line to run.
        shell: Interpreter path (falls back to $SHELL, then /bin/sh).
        cwd: Working directory for the child.
        on_output: Receives decoded output as it is produced.

    Returns:
        ShellResult with the combined output and the exit code.

    Raises:
        SpawnError: The interpreter could not be started.
    """
    interpreter = resolve_shell(shell)
    _log.info("Spawning: %s -c %s (cwd=%s)", interpreter, truncate(command, 120), cwd)
    try:
        process = subprocess.Popen(
            [interpreter, "-c", command],
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            cwd=cwd,
        )
    except OSError as e:
        _log.warning("Spawn failed: %s", e)
        raise SpawnError(command, str(e)) from e

    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    parts = []
    with parent_ignores_sigint():
        try:
            _drain(process, decoder, parts, on_output)
        finally:
            return_code = process.wait()

    output = "".join(parts)
    _log.info("Command exited: code=%d output_len=%d", return_code, len(output))
    return ShellResult(output=output, return_code=return_code)


def _drain(process, decoder, parts, on_output) -> None:
    """Read the merged pipe to EOF, then close it."""
    try:
        fd = process.stdout.fileno()
        while True:
            data = os.read(fd, READ_SIZE)
            if not data:
                break
            text = decoder.decode(data)
            if text:
                parts.append(text)
                if on_output:
                    on_output(text)
        tail = decoder.decode(b"", final=True)
        if tail:
            parts.append(tail)
            if on_output:
                on_output(tail)
    finally:
        process.stdout.close()
