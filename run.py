#!/usr/bin/env python3
"""Convenience runner for the FitMatch command line.

Usage:
    python run.py --data seed.json --user u1 nearby
"""
import sys

from fitmatch.main import main

if __name__ == "__main__":
    sys.exit(main())
