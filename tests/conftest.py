"""Pytest fixtures for mcpdx tests."""

import logging
from collections.abc import Generator
from pathlib import Path

import pytest
import structlog

from mcpdx.core.config import ENV_ENCRYPTION_KEY, PatternStoreConfig
from mcpdx.learning.store import SQLitePatternStore
from tests.helpers import TEST_KEY


@pytest.fixture(autouse=True)
def reset_logging_state() -> Generator[None, None, None]:
    """Reset structlog and root handlers around each test."""
    structlog.reset_defaults()

    root_logger = logging.getLogger()
    original_handlers = root_logger.handlers[:]
    original_level = root_logger.level
    for handler in original_handlers:
        root_logger.removeHandler(handler)

    yield

    structlog.reset_defaults()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in original_handlers:
        root_logger.addHandler(handler)
    root_logger.setLevel(original_level)


@pytest.fixture(autouse=True)
def no_env_key(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep a developer's real key out of key-resolution tests."""
    monkeypatch.delenv(ENV_ENCRYPTION_KEY, raising=False)


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "patterns.db"


@pytest.fixture
def store(db_path: Path) -> SQLitePatternStore:
    """Store on a temp database with a fixed key."""
    return SQLitePatternStore(db_path, encryption_key=TEST_KEY)


@pytest.fixture
def store_config(db_path: Path) -> PatternStoreConfig:
    return PatternStoreConfig(db_path=db_path, encryption_key=TEST_KEY, environment="test")

