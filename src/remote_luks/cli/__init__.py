"""Command line interface for remote-luks."""

from .dispatcher import main

__all__ = ["main"]
