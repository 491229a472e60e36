"""Shared pytest fixtures."""

import pytest
import structlog


@pytest.fixture(autouse=True)
def reset_structlog():
    """Undo logging configuration done by a test so capsys keeps working."""
    yield
    structlog.reset_defaults()
