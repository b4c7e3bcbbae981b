"""Logging setup."""

from deepticker.observability.logging import setup_logging

__all__ = ["setup_logging"]
