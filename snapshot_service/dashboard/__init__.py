"""HTTP API for tracked symbols, stored prices, and service health."""

from .app import create_app, run_dashboard

__all__ = ["create_app", "run_dashboard"]
