"""Authenticated encryption for pattern payloads at rest.

Payloads are sealed with AES-256-GCM. The envelope format is three hex
segments joined by colons::

    <nonce hex>:<tag hex>:<ciphertext hex>

A fresh 16-byte nonce is drawn for every encryption. The format matches what
earlier versions of the store wrote, so existing databases stay readable.

Key resolution, first match wins:
    1. the key passed to ``PatternCipher``
    2. the ``MCPDX_PATTERN_KEY`` environment variable
    3. an ephemeral key from an ``EphemeralKey`` handle (process-wide by default)

Ephemeral keys vanish with the process, so anything they encrypted is
unreadable after a restart. Production configurations must supply a key.
"""

from __future__ import annotations

import os
import secrets
import threading

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from mcpdx.core.config import ENV_ENCRYPTION_KEY, HEX_KEY_RE
from mcpdx.core.logging import get_logger
from mcpdx.learning.errors import (
    AuthenticationError,
    EnvelopeFormatError,
    KeyConfigurationError,
)

_logger = get_logger("learning.cipher")

KEY_BYTES = 32
NONCE_BYTES = 16
TAG_BYTES = 16
ENVELOPE_SEPARATOR = ":"


class EphemeralKey:
    """Lazily generated key shared by every cipher that holds this handle.

    The key is created on first ``get()`` and never changes afterwards.
    ``EphemeralKey.shared()`` returns the handle used when a cipher is built
    without one, so keyless ciphers in the same process stay compatible.
    """

    _shared: EphemeralKey | None = None
    _shared_lock = threading.Lock()

    def __init__(self) -> None:
        self._key: bytes | None = None
        self._lock = threading.Lock()

    @classmethod
    def shared(cls) -> EphemeralKey:
        """Return the process-wide handle, creating it on first call."""
        with cls._shared_lock:
            if cls._shared is None:
                cls._shared = cls()
            return cls._shared

    @property
    def generated(self) -> bool:
        return self._key is not None

    def get(self) -> bytes:
        with self._lock:
            if self._key is None:
                self._key = secrets.token_bytes(KEY_BYTES)
                _logger.warning(
                    "ephemeral_pattern_key_in_use",
                    hint=f"Set {ENV_ENCRYPTION_KEY} or stored patterns will be "
                    "unreadable after restart",
                )
            return self._key


def _parse_hex_key(key: str, source: str) -> bytes:
    if not HEX_KEY_RE.match(key):
        raise KeyConfigurationError(
            f"Encryption key from {source} must be a 64 character hex string (32 bytes)"
        )
    return bytes.fromhex(key)


def is_envelope(value: str) -> bool:
    """Return True if ``value`` looks like a ``nonce:tag:ciphertext`` envelope."""
    parts = value.split(ENVELOPE_SEPARATOR)
    if len(parts) != 3 or not parts[0] or not parts[1]:
        return False
    try:
        for part in parts:
            bytes.fromhex(part)
    except ValueError:
        return False
    return True


class PatternCipher:
    """AES-256-GCM cipher producing hex envelopes.

    Args:
        key: Hex-encoded 32-byte key. Takes priority over the environment.
        ephemeral: Handle supplying the fallback key when no key is
            configured. Defaults to ``EphemeralKey.shared()``.
        require_key: Refuse to fall back to an ephemeral key.

    Raises:
        KeyConfigurationError: If a configured key is malformed, or no key is
            configured while ``require_key`` is set.
    """

    def __init__(
        self,
        key: str | None = None,
        *,
        ephemeral: EphemeralKey | None = None,
        require_key: bool = False,
    ) -> None:
        env_key = os.environ.get(ENV_ENCRYPTION_KEY)
        if key:
            self._key = _parse_hex_key(key, "argument")
            self.key_source = "explicit"
        elif env_key:
            self._key = _parse_hex_key(env_key, ENV_ENCRYPTION_KEY)
            self.key_source = "environment"
        elif require_key:
            raise KeyConfigurationError(
                f"{ENV_ENCRYPTION_KEY} is required for persistent pattern storage in production"
            )
        else:
            self._key = (ephemeral or EphemeralKey.shared()).get()
            self.key_source = "ephemeral"
        self._aead = AESGCM(self._key)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt ``plaintext`` into a ``nonce:tag:ciphertext`` envelope."""
        nonce = secrets.token_bytes(NONCE_BYTES)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
        return ENVELOPE_SEPARATOR.join((nonce.hex(), tag.hex(), ciphertext.hex()))

    def decrypt(self, envelope: str) -> str:
        """Decrypt an envelope produced by ``encrypt``.

        Raises:
            EnvelopeFormatError: Wrong segment count, empty or non-hex segment.
            AuthenticationError: Tag mismatch (tampered data or wrong key).
        """
        parts = envelope.split(ENVELOPE_SEPARATOR)
        if len(parts) != 3:
            raise EnvelopeFormatError(
                f"Invalid encrypted data format: expected 3 segments, got {len(parts)}"
            )
        nonce_hex, tag_hex, ciphertext_hex = parts
        if not nonce_hex or not tag_hex:
            raise EnvelopeFormatError("Invalid encrypted data format: empty nonce or tag")
        try:
            nonce = bytes.fromhex(nonce_hex)
            tag = bytes.fromhex(tag_hex)
            ciphertext = bytes.fromhex(ciphertext_hex)
        except ValueError as e:
            raise EnvelopeFormatError(f"Invalid encrypted data format: {e}") from e
        if len(tag) != TAG_BYTES:
            raise EnvelopeFormatError(
                f"Invalid encrypted data format: tag must be {TAG_BYTES} bytes"
            )

        try:
            plaintext = self._aead.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as e:
            raise AuthenticationError(
                "Authentication tag mismatch: data corrupted or encrypted with another key"
            ) from e
        except ValueError as e:
            # Nonce length outside what AES-GCM accepts
            raise EnvelopeFormatError(f"Invalid encrypted data format: {e}") from e
        return plaintext.decode("utf-8")


__all__ = [
    "EphemeralKey",
    "KEY_BYTES",
    "NONCE_BYTES",
    "PatternCipher",
    "TAG_BYTES",
    "is_envelope",
]
