#!/usr/bin/env python3
"""
Human Milk Bank - Entry point.

Run `python main.py --help` for the available commands.
"""
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from milkbank.cli import main  # noqa: E402

if __name__ == "__main__":
    sys.exit(main())
