#!/usr/bin/env python3
"""Main entry point for sage-vbranch when run from a source checkout."""

import sys
from pathlib import Path

# Add the project root to Python path
sys.path.insert(0, str(Path(__file__).parent))

if __name__ == "__main__":
    from sage_vbranch.cli import main

    sys.exit(main())
