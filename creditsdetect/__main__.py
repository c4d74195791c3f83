#!/usr/bin/env python3
"""Main entry point for creditsdetect package."""

import sys
from creditsdetect.cli import main

if __name__ == "__main__":
    sys.exit(main())
