"""Extraction of action directives from a completed model response.

Two fenced blocks are recognised::

    ```execute
    ls -la
    ```

    ```write:hello.py
    print("hi")
    ```

Only the first block of each kind is honoured, so a response yields at most
one command and at most one file write.  A write body may itself contain
fenced code (a Markdown file, say): a fence that opens a line with a
language tag nests, and only the matching bare fence closes it.

Extraction runs on the complete text only; the live display never acts on
partial output.
"""

import re
from dataclasses import dataclass
from typing import Iterator, Optional, Union

from .logger import get_logger, truncate

_log = get_logger("directives")

EXECUTE_RE = re.compile(r"```execute\s*([\s\S]*?)\s*```")
WRITE_OPEN_RE = re.compile(r"```write:(\S+)[ \t]*")
FENCE_RE = re.compile(r"```([^\s`]*)")


@dataclass(frozen=True)
class ExecuteDirective:
    """Run a command through the user's shell."""
    command: str
    position: int = 0


@dataclass(frozen=True)
class WriteDirective:
    """Write ``content`` verbatim to ``filename``."""
    filename: str
    content: str
    position: int = 0


ActionDirective = Union[ExecuteDirective, WriteDirective]


@dataclass(frozen=True)
class ExtractedActions:
    """The directives found in one response."""
    execute: Optional[ExecuteDirective] = None
    write: Optional[WriteDirective] = None

    def __bool__(self) -> bool:
        return self.execute is not None or self.write is not None

    def __iter__(self) -> Iterator[ActionDirective]:
        """Yield present directives in the order they appear in the text."""
        present = [d for d in (self.execute, self.write) if d is not None]
        return iter(sorted(present, key=lambda d: d.position))


def _find_write_end(text: str, start: int) -> int:
    """Index of the fence that closes a write body starting at ``start``, or -1."""
    depth = 0
    for fence in FENCE_RE.finditer(text, start):
        at_line_start = fence.start() == 0 or text[fence.start() - 1] == "\n"
        if at_line_start and fence.group(1):
            depth += 1
        elif depth:
            depth -= 1
        else:
            return fence.start()
    return -1


def _trim_one_newline(content: str) -> str:
    """Drop exactly one leading and one trailing newline, keeping inner whitespace."""
    if content.startswith("\r\n"):
        content = content[2:]
    elif content.startswith("\n"):
        content = content[1:]
    if content.endswith("\r\n"):
        content = content[:-2]
    elif content.endswith("\n"):
        content = content[:-1]
    return content


def extract_actions(text: str) -> ExtractedActions:
    """Find the first execute block and the first write block in ``text``."""
    execute = None
    match = EXECUTE_RE.search(text)
    if match:
        command = match.group(1).strip()
        if command:
            execute = ExecuteDirective(command=command, position=match.start())

    write = None
    match = WRITE_OPEN_RE.search(text)
    if match:
        end = _find_write_end(text, match.end())
        if end != -1:
            write = WriteDirective(
                filename=match.group(1),
                content=_trim_one_newline(text[match.end():end]),
                position=match.start(),
            )

    if execute or write:
        _log.info(
            "Extracted directives: execute=%s write=%s",
            truncate(execute.command, 80) if execute else None,
            write.filename if write else None,
        )
    return ExtractedActions(execute=execute, write=write)
