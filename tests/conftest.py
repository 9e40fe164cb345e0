"""Shared pytest setup: import from src/ and keep logs out of the home directory."""

import os
import sys
import tempfile
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

# Must be set before termai is imported: logging initialises on first use
os.environ.setdefault("TERMAI_LOG_DIR", tempfile.mkdtemp(prefix="termai-test-logs-"))
