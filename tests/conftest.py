"""Pytest configuration and shared fixtures."""

import logging
from pathlib import Path

import pytest

from src.core.config import settings


logger = logging.getLogger(__name__)


@pytest.fixture
def sqlite_db_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the database layer at a throwaway SQLite file for one test."""
    db_path = tmp_path / "wastesync_test.db"
    monkeypatch.setattr(settings, "sqlite_db_path", str(db_path))
    logger.info("Using test database", extra={"db_path": str(db_path)})
    return db_path
