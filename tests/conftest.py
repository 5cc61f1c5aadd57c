"""Pytest configuration and shared fixtures."""

import pytest

from resumable_importer.models.config import ImporterConfig


@pytest.fixture
def sample_config(tmp_path):
    """Provide a fast configuration writing into a temporary directory."""
    return ImporterConfig(
        base_url="http://mock.test",
        username="alice",
        access_token="test-token",
        max_concurrent=2,
        request_timeout=5.0,
        default_retry_after=0.01,
        max_retries=3,
        base_backoff=0.01,
        max_backoff=0.05,
        auto_save_interval=60.0,
        page_size=50,
        fetch_limit=1000,
        max_items=1000,
        checkpoint_directory=str(tmp_path / "state"),
        output_directory=str(tmp_path / "imported"),
        log_level="WARNING",
    )
