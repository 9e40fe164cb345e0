"""File operation tools."""

from pathlib import Path

from ..errors import ActionIOError
from ..logger import get_logger

_log = get_logger("tools.file")


def write_file(file_path: str, content: str) -> str:
    """Write content to a file, truncating any existing contents.

    The content is written exactly as given; newline translation is
    disabled so the bytes on disk match the text.

    Args:
        file_path: Path to the file to write.
        content: Content to write.

    Returns:
        Success message.

    Raises:
        ActionIOError: The file could not be opened or written.
    """
    path = Path(file_path).expanduser()
    try:
        with open(path, "w", encoding="utf-8", newline="") as f:
            f.write(content)
    except OSError as e:
        _log.warning("Write failed for %s: %s", path, e)
        raise ActionIOError(file_path, e.strerror or str(e)) from e

    _log.info("Wrote %d chars to %s", len(content), path)
    return f"Wrote {len(content)} characters to {file_path}"
