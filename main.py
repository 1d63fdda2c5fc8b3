#!/usr/bin/env python3
"""
Main entry point for the Anvesha crawler.

Equivalent to the installed `anvesha` command.
"""

import sys
from pathlib import Path

# Allow running from a source checkout without installing
sys.path.insert(0, str(Path(__file__).parent / 'src'))

from anvesha.cli import main


if __name__ == '__main__':
    sys.exit(main())
