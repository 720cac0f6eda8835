"""Pytest configuration shared across the suite."""

try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import pytest

from site_auth.clients.sqlite_store import SQLiteStore


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO-powered tests to run against asyncio backend only."""
    return "asyncio"


@pytest.fixture
def sqlite_store(tmp_path) -> SQLiteStore:
    """Fresh on-disk record store per test."""
    return SQLiteStore(str(tmp_path / "records.db"))
