#!/usr/bin/env python3
"""termai entry point for running from a checkout."""

import os
import sys

# Force unbuffered output so streamed tokens appear immediately
os.environ['PYTHONUNBUFFERED'] = '1'
sys.stdout.reconfigure(write_through=True)

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), "src"))

from termai.cli import main


if __name__ == "__main__":
    sys.exit(main())
