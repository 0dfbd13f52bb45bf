"""HTTP API for starting, inspecting and cancelling agent sessions."""

from .main import create_app, run_server

__all__ = ["create_app", "run_server"]
