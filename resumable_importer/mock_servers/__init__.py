"""Mock listing API for local runs and integration tests."""

from .app import create_app, create_mock_app, run_server

__all__ = ["create_app", "create_mock_app", "run_server"]
