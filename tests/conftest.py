"""
Pytest config.

Local imports like `import kdiag` rely on the repo root being on sys.path. When invoking a
global `pytest` entrypoint without installing the project that doesn't happen reliably during
collection, so we pin the behavior here.
"""

from __future__ import annotations

import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()


@pytest.fixture
def fake_provider():
    from fakes import FakeK8sProvider

    return FakeK8sProvider()


@pytest.fixture
def now() -> datetime:
    """Fixed "gathered at" instant, one hour after the builders' creationTimestamp."""
    return datetime(2024, 5, 1, 11, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    from kdiag.config import load_settings

    load_settings.cache_clear()
    yield
    load_settings.cache_clear()
