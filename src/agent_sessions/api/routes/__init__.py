"""API routes."""

from . import sessions

__all__ = ["sessions"]
