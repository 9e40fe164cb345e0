"""Session log for termai.

Everything the agent does (model requests, extracted directives, commands
and their exit codes, file writes, mode switches) is appended to a rotating
file, by default ~/.termai/logs/termai.log.  Set TERMAI_LOG_DIR to move it
and TERMAI_DEBUG to also see the records on stderr.

Modules grab a logger at import time:
    from .logger import get_logger
    log = get_logger("agent")
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

NAMESPACE = "termai"
LOG_FILE_NAME = "termai.log"
MAX_BYTES = 5 * 1024 * 1024
BACKUP_COUNT = 5

_configured = False


def default_log_dir() -> Path:
    """Where the log file goes unless told otherwise (not created here)."""
    override = os.environ.get("TERMAI_LOG_DIR")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".termai" / "logs"


def _formatter() -> logging.Formatter:
    return logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d | %(levelname)-5s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _file_handler(log_dir: Path) -> logging.Handler:
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        return RotatingFileHandler(
            str(log_dir / LOG_FILE_NAME),
            maxBytes=MAX_BYTES,
            backupCount=BACKUP_COUNT,
            encoding="utf-8",
        )
    except OSError:
        # No writable log location; keep going without a file
        return logging.NullHandler()


def init_logging(log_dir: Optional[str] = None, level: int = logging.DEBUG) -> None:
    """Attach the file handler to the ``termai`` logger.  Later calls are no-ops."""
    global _configured
    if _configured:
        return
    _configured = True

    root = logging.getLogger(NAMESPACE)
    root.setLevel(level)
    root.propagate = False
    if root.handlers:
        return

    directory = Path(log_dir).expanduser() if log_dir else default_log_dir()
    handlers = [_file_handler(directory)]
    if os.environ.get("TERMAI_DEBUG"):
        handlers.append(logging.StreamHandler(sys.stderr))
    for handler in handlers:
        handler.setFormatter(_formatter())
        root.addHandler(handler)

    root.info("--- session start: pid=%d python=%s log_dir=%s",
              os.getpid(), sys.version.split()[0], directory)


def get_logger(name: str) -> logging.Logger:
    """Return ``termai.<name>``, configuring logging on first use."""
    if not _configured:
        init_logging()
    prefix = NAMESPACE + "."
    if name.startswith(prefix):
        name = name[len(prefix):]
    return logging.getLogger(prefix + name)


def truncate(text: str, max_len: int = 200) -> str:
    """Shorten ``text`` to one log-friendly line."""
    if not text:
        return "(empty)"
    text = text.replace("\n", "\\n")
    if len(text) <= max_len:
        return text
    return f"{text[:max_len]}...[{len(text)} chars]"
