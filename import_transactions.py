#!/usr/bin/env python3
"""Statement import tool.

This is the main entry point script for the transaction importer.
It wraps the package CLI for convenient execution.

Usage:
    python import_transactions.py checking.csv savings.csv

For full documentation and options:
    python import_transactions.py --help
"""

import sys
from pathlib import Path

# Add src to path for development installs
src_path = Path(__file__).parent / "src"
if src_path.exists():
    sys.path.insert(0, str(src_path))

from transaction_importer.cli import main

if __name__ == "__main__":
    sys.exit(main())
