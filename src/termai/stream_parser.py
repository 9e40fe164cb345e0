"""Incremental reconstruction and classification of streamed model output.

Bytes arrive from the transport in arbitrary chunks.  ``ChunkBuffer`` turns
them into NDJSON records, ``TagStateMachine`` splits the text tokens into
reasoning and narrative fragments while the stream is still live, and
``StreamingResponseParser`` ties both together and keeps the raw text for
directive extraction once the stream is over.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .errors import MalformedRecord, TransportError
from .logger import get_logger, truncate

_log = get_logger("stream")

THINK_OPEN = "<think>"
THINK_CLOSE = "</think>"

# Fields of the final record worth keeping for usage reporting
USAGE_FIELDS = (
    "prompt_eval_count",
    "eval_count",
    "total_duration",
    "load_duration",
    "prompt_eval_duration",
    "eval_duration",
)


class StreamSegmentKind(Enum):
    """Semantic class of a piece of display text."""
    REASONING = "reasoning"
    NARRATIVE = "narrative"


@dataclass
class StreamRecord:
    """One parsed line of the response stream."""
    content: str = ""
    done: bool = False
    usage: Dict[str, int] = field(default_factory=dict)


def parse_record(line: bytes) -> StreamRecord:
    """Parse a single NDJSON line.

    Accepts the chat shape (``message.content``) as well as a flat
    ``content`` or ``response`` field.  Raises ``MalformedRecord`` when the
    line is not a JSON object and ``TransportError`` when the server
    reports an error in-stream.
    """
    try:
        data = json.loads(line.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedRecord(str(e)) from e
    if not isinstance(data, dict):
        raise MalformedRecord(f"expected object, got {type(data).__name__}")

    error = data.get("error")
    if error:
        raise TransportError(f"Model error: {error}")

    content: Any = None
    message = data.get("message")
    if isinstance(message, dict):
        content = message.get("content")
    if content is None:
        content = data.get("content", data.get("response"))
    if not isinstance(content, str):
        content = ""

    done = data.get("done") is True
    usage: Dict[str, int] = {}
    if done:
        for key in USAGE_FIELDS:
            value = data.get(key)
            if isinstance(value, int) and not isinstance(value, bool):
                usage[key] = value
    return StreamRecord(content=content, done=done, usage=usage)


class ChunkBuffer:
    """Accumulate raw transport chunks into complete newline-terminated records.

    The unterminated tail of each chunk is kept and prefixed to the next one,
    so a record (or a multi-byte character) split across chunks is only
    parsed once complete.  Malformed lines are skipped.  Once a record with
    ``done`` set is seen, nothing further is emitted.
    """

    def __init__(self):
        self._tail = b""
        self.done = False
        self.malformed = 0

    def feed(self, chunk: bytes) -> List[StreamRecord]:
        """Feed a chunk and return the records it completed."""
        if self.done:
            return []
        data = self._tail + chunk
        lines = data.split(b"\n")
        self._tail = lines.pop()
        return self._parse_lines(lines)

    def finish(self) -> List[StreamRecord]:
        """Flush the retained tail at end of stream.

        A tail that does not parse is a partial final record and is dropped.
        """
        tail, self._tail = self._tail, b""
        if self.done or not tail.strip():
            return []
        try:
            record = parse_record(tail.strip())
        except MalformedRecord:
            _log.debug("Dropping partial final record: %s", truncate(repr(tail)))
            return []
        self.done = record.done
        return [record]

    def _parse_lines(self, lines: List[bytes]) -> List[StreamRecord]:
        records: List[StreamRecord] = []
        for line in lines:
            line = line.strip()
            if not line:
                continue
            try:
                record = parse_record(line)
            except MalformedRecord as e:
                self.malformed += 1
                _log.debug("Skipping malformed record (%s): %s", e, truncate(repr(line)))
                continue
            records.append(record)
            if record.done:
                self.done = True
                self._tail = b""
                break
        return records


Fragment = Tuple[StreamSegmentKind, str]


class TagStateMachine:
    """Classify streamed tokens as reasoning or narrative text.

    ``<think>`` opens a reasoning region and ``</think>`` closes it.  Regions
    do not nest: an opening marker inside a region is ordinary text.  A
    marker may be split across tokens, so a trailing piece of text that could
    still become the active marker is held back until the next token decides.
    The markers themselves are never emitted.
    """

    def __init__(self, open_marker: str = THINK_OPEN, close_marker: str = THINK_CLOSE):
        self.open_marker = open_marker
        self.close_marker = close_marker
        self.in_reasoning = False
        self._pending = ""

    @property
    def kind(self) -> StreamSegmentKind:
        if self.in_reasoning:
            return StreamSegmentKind.REASONING
        return StreamSegmentKind.NARRATIVE

    @property
    def active_marker(self) -> str:
        return self.close_marker if self.in_reasoning else self.open_marker

    def classify(self, token: str) -> List[Fragment]:
        """Split a token into (kind, text) fragments, preserving order."""
        text = self._pending + token
        self._pending = ""
        fragments: List[Fragment] = []

        while text:
            marker = self.active_marker
            idx = text.find(marker)
            if idx == -1:
                break
            if idx:
                fragments.append((self.kind, text[:idx]))
            self.in_reasoning = not self.in_reasoning
            text = text[idx + len(marker):]

        if text:
            hold = self._partial_marker_length(text, self.active_marker)
            if hold:
                self._pending = text[-hold:]
                text = text[:-hold]
            if text:
                fragments.append((self.kind, text))
        return fragments

    def flush(self) -> List[Fragment]:
        """Emit any held-back text as plain text of the current kind."""
        pending, self._pending = self._pending, ""
        if not pending:
            return []
        return [(self.kind, pending)]

    @staticmethod
    def _partial_marker_length(text: str, marker: str) -> int:
        """Length of the longest suffix of ``text`` that is a proper prefix of ``marker``."""
        for size in range(min(len(text), len(marker) - 1), 0, -1):
            if marker.startswith(text[-size:]):
                return size
        return 0


# Callback receives each fragment; returning False cancels the stream
FragmentCallback = Callable[[StreamSegmentKind, str], Optional[bool]]


@dataclass
class ParsedResponse:
    """Outcome of consuming one response stream."""
    text: str
    cancelled: bool = False
    completed: bool = False
    usage: Dict[str, int] = field(default_factory=dict)
    malformed_records: int = 0

    @property
    def tokens_per_second(self) -> Optional[float]:
        count = self.usage.get("eval_count")
        duration_ns = self.usage.get("eval_duration")
        if not count or not duration_ns:
            return None
        return count / (duration_ns / 1e9)


class StreamingResponseParser:
    """Compose ChunkBuffer and TagStateMachine over a raw chunk stream.

    Every classified fragment is passed to ``on_fragment`` as soon as it is
    known.  The raw text of all tokens, markers included, is accumulated for
    the assistant turn and for directive extraction.
    """

    def __init__(self, on_fragment: Optional[FragmentCallback] = None):
        self.on_fragment = on_fragment
        self.buffer = ChunkBuffer()
        self.tags = TagStateMachine()
        self._parts: List[str] = []
        self.usage: Dict[str, int] = {}
        self.cancelled = False

    @property
    def text(self) -> str:
        return "".join(self._parts)

    @property
    def done(self) -> bool:
        return self.buffer.done

    def feed(self, chunk: bytes) -> bool:
        """Process one raw chunk.  Returns False once no more input is wanted."""
        if self.cancelled:
            return False
        for record in self.buffer.feed(chunk):
            if not self._consume_record(record):
                return False
        return not self.buffer.done

    def finish(self) -> ParsedResponse:
        """Flush buffered state and return the reconstructed response."""
        if not self.cancelled:
            for record in self.buffer.finish():
                if not self._consume_record(record):
                    break
        if not self.cancelled:
            self._emit(self.tags.flush())
        return ParsedResponse(
            text=self.text,
            cancelled=self.cancelled,
            completed=self.buffer.done,
            usage=dict(self.usage),
            malformed_records=self.buffer.malformed,
        )

    def consume(self, chunks: Iterable[bytes]) -> ParsedResponse:
        """Drain a chunk iterable, stopping early on cancel or end of stream."""
        iterator = iter(chunks)
        try:
            for chunk in iterator:
                if not self.feed(chunk):
                    break
        finally:
            # Abandon the connection when stopping early
            close = getattr(iterator, "close", None)
            if close is not None:
                close()
        result = self.finish()
        _log.info(
            "Stream finished: chars=%d cancelled=%s completed=%s malformed=%d",
            len(result.text), result.cancelled, result.completed, result.malformed_records,
        )
        return result

    def _consume_record(self, record: StreamRecord) -> bool:
        if record.usage:
            self.usage.update(record.usage)
        if record.content:
            self._parts.append(record.content)
            if not self._emit(self.tags.classify(record.content)):
                return False
        return True

    def _emit(self, fragments: List[Fragment]) -> bool:
        for kind, fragment in fragments:
            if self.on_fragment is None:
                continue
            if self.on_fragment(kind, fragment) is False:
                self.cancelled = True
                return False
        return True
