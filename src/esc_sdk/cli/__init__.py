"""
ESC SDK Command-Line Interface
==============================

This package provides the command-line tool for the ESC SDK:

- **esclink**: Read, edit, back up and restore ESC settings over the
  bootloader serial link

The tool is implemented as a Click-based CLI application with
comprehensive help and error reporting.
"""

__all__ = ["esclink"]
