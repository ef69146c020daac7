"""Configuration for the resolution pattern store.

Defines a Pydantic v2 model for the store's settings and a loader that reads
them from the process environment.

Environment variables:
    MCPDX_PATTERN_DB: Path to the SQLite database file.
    MCPDX_PATTERN_KEY: 64-character hex AES-256 key for patterns at rest.
    MCPDX_ENV: ``development`` (default), ``test`` or ``production``.
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator

DEFAULT_PATTERN_DB_PATH = Path.home() / ".mcpdx" / "patterns.db"

ENV_DB_PATH = "MCPDX_PATTERN_DB"
ENV_ENCRYPTION_KEY = "MCPDX_PATTERN_KEY"
ENV_ENVIRONMENT = "MCPDX_ENV"

HEX_KEY_RE = re.compile(r"^[0-9a-fA-F]{64}$")


class PatternStoreConfig(BaseModel):
    """Settings for ``SQLitePatternStore``."""

    db_path: Path = Field(
        default=DEFAULT_PATTERN_DB_PATH,
        description="SQLite database file holding patterns, feedback and common issues.",
    )
    encryption_key: str | None = Field(
        default=None,
        description="Hex-encoded 32-byte key. When unset, the cipher falls back to "
        "MCPDX_PATTERN_KEY and finally to a per-process ephemeral key.",
        repr=False,
    )
    environment: Literal["development", "test", "production"] = Field(
        default="development",
        description="Deployment environment. Production refuses to run without a key "
        "because ephemeral keys make persisted patterns unreadable after restart.",
    )
    similarity_threshold: float = Field(
        default=0.6,
        ge=0.0,
        le=1.0,
        description="Default Jaccard threshold used by find_similar().",
    )
    log_decrypt_failures: bool = Field(
        default=True,
        description="Log (once per pattern id) when a stored payload cannot be decrypted.",
    )

    @field_validator("encryption_key")
    @classmethod
    def _validate_key(cls, value: str | None) -> str | None:
        if value is not None and not HEX_KEY_RE.match(value):
            raise ValueError("encryption_key must be a 64 character hex string (32 bytes)")
        return value

    @property
    def require_key(self) -> bool:
        """Whether an explicit or environment key is mandatory."""
        return self.environment == "production"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> PatternStoreConfig:
        """Build a config from environment variables.

        Args:
            environ: Mapping to read from. Defaults to ``os.environ``.
        """
        env = os.environ if environ is None else environ
        values: dict[str, object] = {}
        if env.get(ENV_DB_PATH):
            values["db_path"] = Path(env[ENV_DB_PATH]).expanduser()
        if env.get(ENV_ENCRYPTION_KEY):
            values["encryption_key"] = env[ENV_ENCRYPTION_KEY]
        if env.get(ENV_ENVIRONMENT):
            values["environment"] = env[ENV_ENVIRONMENT].lower()
        return cls.model_validate(values)


__all__ = [
    "DEFAULT_PATTERN_DB_PATH",
    "ENV_DB_PATH",
    "ENV_ENCRYPTION_KEY",
    "ENV_ENVIRONMENT",
    "HEX_KEY_RE",
    "PatternStoreConfig",
]
