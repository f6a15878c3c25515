"""Command-line interface for recurbook."""

from .commands import main

__all__ = ["main"]
