"""
Shared test setup: puts ``src`` on sys.path so tests import the package
without installing it, and provides common fixtures.
"""

import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add the src directory to PYTHONPATH
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))


def make_llm(*replies):
    """Mock chat model whose ainvoke returns ``replies`` in order."""
    llm = MagicMock()
    llm.ainvoke = AsyncMock(side_effect=[MagicMock(content=r) for r in replies])
    return llm


class StatusError(Exception):
    """Provider exception carrying an HTTP status like the SDK errors do."""

    def __init__(self, status_code: int):
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


@pytest.fixture
def no_sleep():
    return AsyncMock()
