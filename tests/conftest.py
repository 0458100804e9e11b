"""
Shared fixtures for the Cornell notes test suite.
"""

import os
import sys

import pytest

# Add backend to Python path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../backend"))

from domains.cornell_core.settings import SyncSettings  # noqa: E402
from domains.cornell_hub.hosts import MemoryHost  # noqa: E402


@pytest.fixture
def fast_settings():
    """Runtime settings with all waits shrunk to zero."""
    return SyncSettings(
        debounce_seconds=0.05,
        release_grace_seconds=0,
        restore_delay_seconds=0,
        batch_retry_limit=1,
        batch_progress_interval=2,
        highlight_duration_seconds=0.05,
    )


@pytest.fixture
def lecture_host():
    """A host holding one Source note with two footnotes."""
    return MemoryHost({
        "notes/lecture.md": "## MAIN\nSee [^1] and [^2].\n\n[^1]: alpha\n[^2]: beta\n",
    })
