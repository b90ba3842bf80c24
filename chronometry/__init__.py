"""Chronometry: offline-first process time tracking."""

__version__ = "1.0.0"
