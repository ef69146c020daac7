"""Base class for SQLitePatternStore with connection, schema and payload codec.

This module provides the foundational `PatternStoreBase` class that handles:
- aiosqlite connection management with foreign keys enabled
- Lazy schema creation and version tracking
- Encoding patterns for storage (anonymize, serialize, encrypt)
- Decoding stored payloads into a tagged result, with legacy fallback

Mixins inherit from this base to add domain-specific operations.
"""

from __future__ import annotations

import asyncio
import json
import math
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import replace
from pathlib import Path
from typing import Any

import aiosqlite

from mcpdx.core.config import PatternStoreConfig
from mcpdx.core.logging import get_logger
from mcpdx.learning.anonymizer import anonymize_text, anonymize_value, hash_identifier
from mcpdx.learning.cipher import EphemeralKey, PatternCipher, is_envelope
from mcpdx.learning.errors import CipherError, EnvelopeFormatError
from mcpdx.learning.store.models import (
    Decoded,
    DecodeResult,
    FeedbackEntry,
    LegacyPlaintext,
    ResolutionPattern,
    Unrecoverable,
    unreadable_solution,
)
from mcpdx.utils.time import utc_now

# Module-level logger for the pattern store
_logger = get_logger("learning.pattern_store")

# Bind parameter types accepted by sqlite
SQLParam = str | int | float | bytes | None


class WhereBuilder:
    """Accumulates SQL WHERE clauses and their bound parameters.

    Clauses are joined with AND::

        wb = WhereBuilder()
        wb.add("confidence >= ?", 0.5)
        where_sql, params = wb.build()
        await db.execute(f"SELECT * FROM patterns WHERE {where_sql}", params)
    """

    __slots__ = ("_clauses", "_params")

    def __init__(self) -> None:
        self._clauses: list[str] = []
        self._params: list[SQLParam] = []

    def add(self, clause: str, *params: SQLParam) -> None:
        """Append a WHERE clause with its bound parameters."""
        self._clauses.append(clause)
        self._params.extend(params)

    def build(self) -> tuple[str, tuple[SQLParam, ...]]:
        """Return the combined WHERE fragment and parameter tuple.

        Returns ``("1=1", ())`` when no clauses have been added.
        """
        if not self._clauses:
            return "1=1", ()
        return " AND ".join(self._clauses), tuple(self._params)


def _json_dumps(data: Any) -> str:
    return json.dumps(data, separators=(",", ":"))


def _json_loads(text: str | None, default: Any) -> Any:
    """Parse a JSON column, returning ``default`` for NULL or malformed text."""
    if not text:
        return default
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        _logger.warning("json_column_malformed", preview=text[:40])
        return default


def _parse_legacy(raw: str) -> dict[str, Any] | None:
    """Parse a pre-encryption plaintext payload, or None if it is not one."""
    if not raw.lstrip().startswith("{"):
        return None
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return payload if isinstance(payload, dict) else None


def _feedback_from_payload(payload: dict[str, Any]) -> list[FeedbackEntry]:
    """Feedback snapshot from a payload, without user ids.

    Payloads written by older versions may still carry raw ``userId`` values;
    they are dropped here. The ``feedback`` table holds the hashed ids.
    """
    entries: list[FeedbackEntry] = []
    for item in payload.get("userFeedback") or []:
        if not isinstance(item, dict):
            continue
        try:
            entry = FeedbackEntry.from_dict(item)
        except (TypeError, ValueError):
            _logger.debug("payload_feedback_skipped", entry=str(item)[:40])
            continue
        entries.append(replace(entry, user_id=None))
    return entries


def _clamp_confidence(value: Any) -> float:
    try:
        confidence = float(value or 0.0)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(confidence):
        return 0.0
    return min(max(confidence, 0.0), 1.0)


def _floor_count(value: Any) -> int:
    try:
        return max(int(value or 0), 0)
    except (TypeError, ValueError):
        return 0


class PatternStoreBase:
    """SQLite pattern store base class.

    Owns the database path, the cipher and schema lifecycle. Every operation
    opens its own connection, so independent calls may run concurrently;
    SQLite serializes the writes.

    Attributes:
        db_path: Path to the SQLite database file.
        config: Effective store configuration.
        _logger: Module logger instance for consistent logging.
    """

    SCHEMA_VERSION = 2

    def __init__(
        self,
        db_path: str | Path | None = None,
        encryption_key: str | None = None,
        *,
        config: PatternStoreConfig | None = None,
        cipher: PatternCipher | None = None,
        ephemeral_key: EphemeralKey | None = None,
    ) -> None:
        """Initialize the pattern store.

        No I/O happens here beyond creating the parent directory; the schema
        is created on the first operation.

        Args:
            db_path: SQLite file. Defaults to ``config.db_path``.
            encryption_key: Hex key. Defaults to ``config.encryption_key``.
            config: Store settings. Defaults to ``PatternStoreConfig()``.
            cipher: Prebuilt cipher, overriding key resolution entirely.
            ephemeral_key: Fallback key handle used when no key is configured.

        Raises:
            KeyConfigurationError: Malformed key, or none in production.
        """
        self.config = config or PatternStoreConfig()
        self.db_path = Path(db_path) if db_path is not None else self.config.db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._cipher = cipher or PatternCipher(
            encryption_key or self.config.encryption_key,
            ephemeral=ephemeral_key,
            require_key=self.config.require_key,
        )
        self._logger = _logger
        self._initialized = False
        self._init_lock = asyncio.Lock()
        self._reported_decrypt_failures: set[str] = set()
        self._reported_repairs: set[str] = set()

        self._logger.debug(
            "pattern_store_created",
            db_path=str(self.db_path),
            key_source=getattr(self._cipher, "key_source", "custom"),
        )

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[aiosqlite.Connection]:
        """Yield a connection with foreign keys on; commit on success.

        Any exception rolls the transaction back and propagates. SQLite errors
        are logged first.
        """
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            await db.execute("PRAGMA foreign_keys=ON")
            try:
                yield db
                await db.commit()
            except aiosqlite.Error as e:
                await db.rollback()
                self._logger.warning(
                    "pattern_store_db_error",
                    db_path=str(self.db_path),
                    error_type=type(e).__name__,
                    error=str(e),
                )
                raise
            except Exception:
                await db.rollback()
                raise

    async def _ensure_initialized(self) -> None:
        """Ensure the schema exists. Safe to call from concurrent coroutines."""
        if self._initialized:
            return

        async with self._init_lock:
            if self._initialized:
                return

            async with self._connect() as db:
                await self._run_migrations(db)
            self._initialized = True

    async def _get_schema_version(self, db: aiosqlite.Connection) -> int:
        try:
            cursor = await db.execute(
                "SELECT version FROM schema_version ORDER BY version DESC LIMIT 1"
            )
            row = await cursor.fetchone()
            return row[0] if row else 0
        except aiosqlite.OperationalError:
            # Table doesn't exist yet
            return 0

    async def _run_migrations(self, db: aiosqlite.Connection) -> None:
        current_version = await self._get_schema_version(db)
        if current_version < 1:
            await self._migrate_v1(db)
            self._logger.info("schema_migrated", from_version=current_version, to_version=1)
        if current_version < 2:
            await self._migrate_v2(db)
            self._logger.info(
                "schema_migrated", from_version=max(current_version, 1), to_version=2
            )

    async def _migrate_v1(self, db: aiosqlite.Connection) -> None:
        """Initial schema.

        ``CREATE ... IF NOT EXISTS`` throughout. Tables that predate version
        tracking are kept; their column differences are handled by v2.
        """
        await db.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TEXT NOT NULL
            )
        """)
        await self._create_patterns_table(db)
        await self._create_feedback_table(db)
        await self._create_common_issues_table(db)
        await db.execute(
            "INSERT OR REPLACE INTO schema_version (version, applied_at) VALUES (?, ?)",
            (1, utc_now().isoformat()),
        )

    async def _migrate_v2(self, db: aiosqlite.Connection) -> None:
        """Bring an older ``feedback`` table to the current column layout.

        Tables written before hashing kept a raw ``user_id`` column; those
        values are hashed into ``user_id_hash`` and the raw column is
        cleared. Tables that named the context column ``context_data`` have
        it copied into ``context``. Idempotent: columns are checked before
        each ALTER.
        """
        columns = await self._get_existing_columns(db, "feedback")

        for column_name in ("user_id_hash", "context"):
            if column_name not in columns:
                await db.execute(f"ALTER TABLE feedback ADD COLUMN {column_name} TEXT")
                self._logger.info(
                    "schema_column_added", table="feedback", column=column_name
                )

        if "user_id" in columns:
            cursor = await db.execute(
                "SELECT id, user_id FROM feedback WHERE user_id IS NOT NULL"
            )
            rows = await cursor.fetchall()
            await db.executemany(
                "UPDATE feedback SET user_id_hash = ?, user_id = NULL WHERE id = ?",
                [(hash_identifier(str(row["user_id"])), row["id"]) for row in rows],
            )
            if rows:
                self._logger.info("feedback_user_ids_hashed", count=len(rows))

        if "context_data" in columns:
            await db.execute(
                "UPDATE feedback SET context = context_data "
                "WHERE context IS NULL AND context_data IS NOT NULL"
            )

        await db.execute(
            "INSERT OR IGNORE INTO schema_version (version, applied_at) VALUES (?, ?)",
            (2, utc_now().isoformat()),
        )

    @staticmethod
    async def _get_existing_columns(db: aiosqlite.Connection, table_name: str) -> set[str]:
        cursor = await db.execute(f"PRAGMA table_info({table_name})")
        return {row["name"] for row in await cursor.fetchall()}

    @staticmethod
    async def _create_patterns_table(db: aiosqlite.Connection) -> None:
        await db.execute("""
            CREATE TABLE IF NOT EXISTS patterns (
                id TEXT PRIMARY KEY,
                problem_type TEXT NOT NULL,
                problem_signature TEXT NOT NULL,
                solution_data TEXT NOT NULL,
                success_count INTEGER DEFAULT 0,
                failure_count INTEGER DEFAULT 0,
                average_resolution_time REAL DEFAULT 0,
                last_used INTEGER NOT NULL,
                confidence REAL DEFAULT 0,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL
            )
        """)
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_problem_type ON patterns(problem_type)"
        )
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_confidence ON patterns(confidence DESC)"
        )
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_last_used ON patterns(last_used DESC)"
        )

    @staticmethod
    async def _create_feedback_table(db: aiosqlite.Connection) -> None:
        await db.execute("""
            CREATE TABLE IF NOT EXISTS feedback (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                pattern_id TEXT NOT NULL,
                timestamp INTEGER NOT NULL,
                user_id_hash TEXT,
                rating INTEGER NOT NULL,
                successful INTEGER NOT NULL,
                comments TEXT,
                context TEXT,
                FOREIGN KEY (pattern_id) REFERENCES patterns(id) ON DELETE CASCADE
            )
        """)
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_feedback_pattern ON feedback(pattern_id)"
        )

    @staticmethod
    async def _create_common_issues_table(db: aiosqlite.Connection) -> None:
        await db.execute("""
            CREATE TABLE IF NOT EXISTS common_issues (
                signature TEXT PRIMARY KEY,
                occurrences INTEGER DEFAULT 1,
                solutions TEXT,
                contexts TEXT,
                first_seen INTEGER NOT NULL,
                last_seen INTEGER NOT NULL
            )
        """)
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_common_occurrences "
            "ON common_issues(occurrences DESC)"
        )

    # =========================================================================
    # Payload codec
    # =========================================================================

    def _encode_pattern(self, pattern: ResolutionPattern) -> tuple[str, str]:
        """Anonymize and encrypt a pattern.

        User ids are left out of the payload's feedback snapshot; only the
        ``feedback`` table keeps them, hashed.

        Returns:
            ``(anonymized_signature, envelope)``. The signature column and the
            encrypted payload carry the same anonymized signature.
        """
        anonymized = replace(
            pattern,
            problem_signature=anonymize_text(pattern.problem_signature),
            solution=anonymize_value(pattern.solution),
            user_feedback=[replace(entry, user_id=None) for entry in pattern.user_feedback],
        )
        envelope = self._cipher.encrypt(_json_dumps(anonymized.to_dict()))
        return anonymized.problem_signature, envelope

    def _decode_payload(self, pattern_id: str, raw: str) -> DecodeResult:
        """Decrypt a stored payload without raising.

        Values that are not envelopes skip decryption and go straight to the
        legacy plaintext check.
        """
        try:
            if not is_envelope(raw):
                raise EnvelopeFormatError("stored payload is not an encrypted envelope")
            plaintext = self._cipher.decrypt(raw)
        except CipherError as e:
            self._report_decrypt_failure(pattern_id, e)
            legacy = _parse_legacy(raw)
            if legacy is not None:
                return LegacyPlaintext(legacy)
            return Unrecoverable(f"{type(e).__name__}: {e}")

        try:
            payload = json.loads(plaintext)
        except json.JSONDecodeError as e:
            return Unrecoverable(f"decrypted payload is not JSON: {e}")
        if not isinstance(payload, dict):
            return Unrecoverable("decrypted payload is not a JSON object")
        return Decoded(payload)

    def _report_decrypt_failure(self, pattern_id: str, error: CipherError) -> None:
        if not self.config.log_decrypt_failures:
            return
        if pattern_id in self._reported_decrypt_failures:
            return
        self._reported_decrypt_failures.add(pattern_id)
        self._logger.warning(
            "pattern_decrypt_failed",
            pattern_id=pattern_id,
            error_type=type(error).__name__,
            error=str(error),
        )

    def _row_to_pattern(self, row: aiosqlite.Row) -> ResolutionPattern:
        """Convert a ``patterns`` row into a ResolutionPattern.

        The row's columns are authoritative for id, type, signature, counters,
        timing and confidence; the payload only contributes the solution and
        the feedback snapshot taken at save time.
        """
        pattern_id = row["id"]
        result = self._decode_payload(pattern_id, row["solution_data"])

        if isinstance(result, Decoded):
            solution = result.payload.get("solution") or {}
            feedback = _feedback_from_payload(result.payload)
        elif isinstance(result, LegacyPlaintext):
            # Written before anonymization was enforced
            solution = anonymize_value(result.payload.get("solution") or {})
            feedback = _feedback_from_payload(result.payload)
        elif isinstance(result, Unrecoverable):
            solution = unreadable_solution(pattern_id)
            feedback = []
        else:
            raise TypeError(f"Unhandled decode result: {result!r}")

        success_count = _floor_count(row["success_count"])
        failure_count = _floor_count(row["failure_count"])
        confidence = _clamp_confidence(row["confidence"])
        if (
            success_count != (row["success_count"] or 0)
            or failure_count != (row["failure_count"] or 0)
            or confidence != (row["confidence"] or 0.0)
        ):
            self._report_repair(pattern_id, row)

        return ResolutionPattern(
            id=pattern_id,
            problem_type=row["problem_type"],
            problem_signature=row["problem_signature"],
            solution=solution,
            success_count=success_count,
            failure_count=failure_count,
            average_resolution_time=row["average_resolution_time"] or 0.0,
            last_used=row["last_used"],
            confidence=confidence,
            user_feedback=feedback,
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _report_repair(self, pattern_id: str, row: aiosqlite.Row) -> None:
        if pattern_id in self._reported_repairs:
            return
        self._reported_repairs.add(pattern_id)
        self._logger.warning(
            "pattern_row_repaired",
            pattern_id=pattern_id,
            success_count=row["success_count"],
            failure_count=row["failure_count"],
            confidence=row["confidence"],
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def clear_all(self) -> None:
        """Delete every pattern, feedback entry and common issue.

        Primarily for tests.
        """
        await self._ensure_initialized()
        async with self._connect() as db:
            await db.execute("DELETE FROM feedback")
            await db.execute("DELETE FROM patterns")
            await db.execute("DELETE FROM common_issues")
        self._reported_decrypt_failures.clear()
        self._reported_repairs.clear()
        self._logger.info("pattern_store_cleared", db_path=str(self.db_path))

    async def close(self) -> None:
        """Release resources. Connections are per-operation, so nothing is held."""
        self._logger.debug("pattern_store_closed", db_path=str(self.db_path))


__all__ = [
    "PatternStoreBase",
    "SQLParam",
    "WhereBuilder",
]
