"""Live terminal rendering of classified response fragments."""

from typing import Optional

from rich.console import Console
from rich.text import Text

from .stream_parser import StreamSegmentKind

REASONING_STYLE = "dim italic"
GUTTER = "│ "


class StreamDisplay:
    """Write fragments to the console as they arrive.

    Reasoning text goes under a "Thinking:" header with a gutter on every
    line, skipping blank lines at the start of a region.  Narrative text is
    written as-is.  The markers themselves never reach the screen.
    """

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console(highlight=False)
        self.reset()

    def reset(self) -> None:
        self._kind: Optional[StreamSegmentKind] = None
        self._line_start = True
        self._region_has_text = False
        self.wrote_anything = False
        self.ends_with_newline = True

    def on_fragment(self, kind: StreamSegmentKind, text: str) -> None:
        if kind is not self._kind:
            self._switch(kind)
        if kind is StreamSegmentKind.REASONING:
            self._write_reasoning(text)
        else:
            if not self._region_has_text:
                text = text.lstrip("\n")
                if not text:
                    return
                self._region_has_text = True
            self._write(Text(text))

    def finish(self) -> None:
        """Terminate the last line so the next output starts cleanly."""
        if self.wrote_anything and not self.ends_with_newline:
            self._write(Text("\n"))

    def _switch(self, kind: StreamSegmentKind) -> None:
        if self._kind is StreamSegmentKind.REASONING:
            # Close the reasoning block with a blank line
            if not self._line_start:
                self._write(Text("\n"))
            self._write(Text("\n"))
        self._kind = kind
        self._line_start = True
        self._region_has_text = False
        if kind is StreamSegmentKind.REASONING:
            if self.wrote_anything and not self.ends_with_newline:
                self._write(Text("\n"))
            self._write(Text("Thinking:\n", style=REASONING_STYLE))

    def _write_reasoning(self, text: str) -> None:
        out = Text()
        for line in text.splitlines(keepends=True):
            if self._line_start:
                if not self._region_has_text and not line.strip():
                    continue
                out.append(GUTTER, style="dim")
                self._line_start = False
            out.append(line, style=REASONING_STYLE)
            if line.strip():
                self._region_has_text = True
            if line.endswith("\n"):
                self._line_start = True
        self._write(out)

    def _write(self, text: Text) -> None:
        if not text.plain:
            return
        self.console.print(text, end="", soft_wrap=True)
        self.wrote_anything = True
        self.ends_with_newline = text.plain.endswith("\n")
