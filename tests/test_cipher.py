"""Tests for mcpdx.learning.cipher."""

from __future__ import annotations

import pytest

from mcpdx.core.config import ENV_ENCRYPTION_KEY
from mcpdx.learning.cipher import (
    NONCE_BYTES,
    TAG_BYTES,
    EphemeralKey,
    PatternCipher,
    is_envelope,
)
from mcpdx.learning.errors import (
    AuthenticationError,
    CipherError,
    EnvelopeFormatError,
    KeyConfigurationError,
)
from tests.helpers import OTHER_KEY, TEST_KEY


class TestRoundTrip:
    """Encrypt/decrypt behaviour with a fixed key."""

    def test_round_trip(self) -> None:
        cipher = PatternCipher(TEST_KEY)
        plaintext = '{"solution": {"description": "restart"}}'
        assert cipher.decrypt(cipher.encrypt(plaintext)) == plaintext

    def test_unicode_round_trip(self) -> None:
        cipher = PatternCipher(TEST_KEY)
        assert cipher.decrypt(cipher.encrypt("délai dépassé ✓")) == "délai dépassé ✓"

    def test_empty_round_trip(self) -> None:
        cipher = PatternCipher(TEST_KEY)
        assert cipher.decrypt(cipher.encrypt("")) == ""

    def test_envelope_shape(self) -> None:
        envelope = PatternCipher(TEST_KEY).encrypt("hello")
        nonce_hex, tag_hex, ciphertext_hex = envelope.split(":")
        assert len(bytes.fromhex(nonce_hex)) == NONCE_BYTES
        assert len(bytes.fromhex(tag_hex)) == TAG_BYTES
        assert len(bytes.fromhex(ciphertext_hex)) == len("hello")
        assert is_envelope(envelope)

    def test_fresh_nonce_per_encryption(self) -> None:
        cipher = PatternCipher(TEST_KEY)
        assert cipher.encrypt("same") != cipher.encrypt("same")

    def test_uppercase_key_accepted(self) -> None:
        lower = PatternCipher("ab" * 32)
        upper = PatternCipher("AB" * 32)
        assert upper.decrypt(lower.encrypt("x")) == "x"


class TestDecryptFailures:
    """Malformed, tampered and foreign envelopes."""

    def test_wrong_key_fails_authentication(self) -> None:
        envelope = PatternCipher(TEST_KEY).encrypt("secret payload")
        with pytest.raises(AuthenticationError):
            PatternCipher(OTHER_KEY).decrypt(envelope)

    def test_tampered_ciphertext_fails_authentication(self) -> None:
        cipher = PatternCipher(TEST_KEY)
        nonce_hex, tag_hex, ciphertext_hex = cipher.encrypt("secret payload").split(":")
        flipped = format(int(ciphertext_hex[:2], 16) ^ 0x01, "02x") + ciphertext_hex[2:]
        with pytest.raises(AuthenticationError):
            cipher.decrypt(f"{nonce_hex}:{tag_hex}:{flipped}")

    def test_tampered_tag_fails_authentication(self) -> None:
        cipher = PatternCipher(TEST_KEY)
        nonce_hex, tag_hex, ciphertext_hex = cipher.encrypt("payload").split(":")
        bad_tag = ("0" if tag_hex[0] != "0" else "1") + tag_hex[1:]
        with pytest.raises(AuthenticationError):
            cipher.decrypt(f"{nonce_hex}:{bad_tag}:{ciphertext_hex}")

    @pytest.mark.parametrize(
        "envelope",
        [
            '{"legacy": true}',
            "a:b",
            "a:b:c:d",
            ":" + "00" * 16 + ":00",
            "zz:" + "00" * 16 + ":00",
            "00" * 16 + ":" + "00" * 8 + ":00",
        ],
    )
    def test_malformed_envelopes(self, envelope: str) -> None:
        with pytest.raises(EnvelopeFormatError):
            PatternCipher(TEST_KEY).decrypt(envelope)

    def test_errors_share_base(self) -> None:
        assert issubclass(EnvelopeFormatError, CipherError)
        assert issubclass(AuthenticationError, CipherError)


class TestIsEnvelope:
    """Shape detection without decryption."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("00:11:22", True),
            ("00:11:", True),
            ('{"a": 1}', False),
            ("00:11", False),
            (":11:22", False),
            ("0g:11:22", False),
        ],
    )
    def test_is_envelope(self, value: str, expected: bool) -> None:
        assert is_envelope(value) is expected


class TestKeyResolution:
    """Explicit key, environment key, ephemeral fallback."""

    def test_explicit_key_wins_over_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(ENV_ENCRYPTION_KEY, OTHER_KEY)
        cipher = PatternCipher(TEST_KEY)
        assert cipher.key_source == "explicit"
        assert PatternCipher(TEST_KEY).decrypt(cipher.encrypt("x")) == "x"

    def test_environment_key_used(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(ENV_ENCRYPTION_KEY, OTHER_KEY)
        cipher = PatternCipher()
        assert cipher.key_source == "environment"
        assert PatternCipher(OTHER_KEY).decrypt(cipher.encrypt("x")) == "x"

    def test_malformed_explicit_key_rejected(self) -> None:
        with pytest.raises(KeyConfigurationError):
            PatternCipher("not-hex")

    def test_short_key_rejected(self) -> None:
        with pytest.raises(KeyConfigurationError):
            PatternCipher("ab" * 16)

    def test_malformed_environment_key_rejected(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(ENV_ENCRYPTION_KEY, "xyz")
        with pytest.raises(KeyConfigurationError, match=ENV_ENCRYPTION_KEY):
            PatternCipher()

    def test_require_key_refuses_ephemeral(self) -> None:
        with pytest.raises(KeyConfigurationError):
            PatternCipher(require_key=True)

    def test_require_key_satisfied_by_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(ENV_ENCRYPTION_KEY, TEST_KEY)
        assert PatternCipher(require_key=True).key_source == "environment"

    def test_ephemeral_handle_shared_between_ciphers(self) -> None:
        handle = EphemeralKey()
        assert not handle.generated
        first = PatternCipher(ephemeral=handle)
        second = PatternCipher(ephemeral=handle)
        assert handle.generated
        assert first.key_source == "ephemeral"
        assert second.decrypt(first.encrypt("converge")) == "converge"

    def test_separate_ephemeral_handles_do_not_interoperate(self) -> None:
        first = PatternCipher(ephemeral=EphemeralKey())
        second = PatternCipher(ephemeral=EphemeralKey())
        with pytest.raises(AuthenticationError):
            second.decrypt(first.encrypt("isolated"))

    def test_shared_handle_is_singleton(self) -> None:
        assert EphemeralKey.shared() is EphemeralKey.shared()
        assert PatternCipher().key_source == "ephemeral"
