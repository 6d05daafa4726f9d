"""
Entry point for running genflow as a module.

Usage:
    python -m genflow <command>
"""

import sys

from genflow.main import main

if __name__ == "__main__":
    sys.exit(main())
