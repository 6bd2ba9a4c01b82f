"""Periodic exchange price snapshots with retrying fetches and poll metrics."""

__version__ = "0.1.0"
