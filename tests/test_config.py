"""Tests for mcpdx.core.config module."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from mcpdx.core.config import (
    DEFAULT_PATTERN_DB_PATH,
    ENV_DB_PATH,
    ENV_ENCRYPTION_KEY,
    ENV_ENVIRONMENT,
    PatternStoreConfig,
)
from tests.helpers import TEST_KEY


class TestPatternStoreConfig:
    """Tests for PatternStoreConfig model."""

    def test_defaults(self):
        """Test default values are applied."""
        config = PatternStoreConfig()
        assert config.db_path == DEFAULT_PATTERN_DB_PATH
        assert config.encryption_key is None
        assert config.environment == "development"
        assert config.similarity_threshold == 0.6
        assert config.log_decrypt_failures is True
        assert config.require_key is False

    def test_production_requires_key(self):
        """Test production mode flags the key as mandatory."""
        assert PatternStoreConfig(environment="production").require_key is True

    def test_invalid_key_rejected(self):
        """Test keys that are not 64 hex chars fail validation."""
        with pytest.raises(ValidationError):
            PatternStoreConfig(encryption_key="deadbeef")
        with pytest.raises(ValidationError):
            PatternStoreConfig(encryption_key="z" * 64)

    def test_key_not_in_repr(self):
        """Test the key never appears in the model repr."""
        config = PatternStoreConfig(encryption_key=TEST_KEY)
        assert TEST_KEY not in repr(config)

    @pytest.mark.parametrize("threshold", [-0.01, 1.01])
    def test_threshold_bounds(self, threshold):
        """Test similarity threshold must be within [0, 1]."""
        with pytest.raises(ValidationError):
            PatternStoreConfig(similarity_threshold=threshold)

    def test_unknown_environment_rejected(self):
        """Test environment is restricted to known values."""
        with pytest.raises(ValidationError):
            PatternStoreConfig(environment="staging")


class TestFromEnv:
    """Tests for PatternStoreConfig.from_env()."""

    def test_empty_environment_gives_defaults(self):
        """Test that no variables yields the default config."""
        assert PatternStoreConfig.from_env({}) == PatternStoreConfig()

    def test_reads_all_variables(self, tmp_path: Path):
        """Test each supported variable is honoured."""
        config = PatternStoreConfig.from_env(
            {
                ENV_DB_PATH: str(tmp_path / "p.db"),
                ENV_ENCRYPTION_KEY: TEST_KEY,
                ENV_ENVIRONMENT: "PRODUCTION",
            }
        )
        assert config.db_path == tmp_path / "p.db"
        assert config.encryption_key == TEST_KEY
        assert config.environment == "production"

    def test_reads_process_environment(self, monkeypatch, tmp_path: Path):
        """Test os.environ is used when no mapping is passed."""
        monkeypatch.setenv(ENV_DB_PATH, str(tmp_path / "env.db"))
        monkeypatch.setenv(ENV_ENVIRONMENT, "test")
        config = PatternStoreConfig.from_env()
        assert config.db_path == tmp_path / "env.db"
        assert config.environment == "test"

    def test_invalid_env_key_rejected(self):
        """Test a malformed key in the environment fails validation."""
        with pytest.raises(ValidationError):
            PatternStoreConfig.from_env({ENV_ENCRYPTION_KEY: "short"})
