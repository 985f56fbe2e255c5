#!/usr/bin/env python3
"""
CLI entry point for streamdelay.cli module.

This allows running: python -m streamdelay.cli
"""

from .main import cli

if __name__ == "__main__":
    cli()
