"""Command line interface for lvsnap-backup."""

from .dispatcher import main

__all__ = ["main"]
