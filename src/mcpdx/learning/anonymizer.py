"""Anonymization of problem signatures and solution payloads.

Everything the pattern store persists passes through this module first.
Text is rewritten by an ordered table of redaction rules; structured values
(dicts, lists, scalars) are walked recursively and every string leaf goes
through the same rules. Dict entries whose key names a credential are
replaced outright.

Rule order matters: URLs are replaced before bare domains, and emails and IP
addresses before domains, otherwise fragments of them would be rewritten to
``example.com`` first. Every replacement sentinel is a fixed point of the
whole chain, so anonymizing twice gives the same result as anonymizing once.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from functools import singledispatch
from typing import Any

URL_SENTINEL = "https://example.com/mcp"
DOMAIN_SENTINEL = "example.com"
REDACTED = "[REDACTED]"

# Substrings that mark a dict key as holding a credential
CREDENTIAL_KEY_NAMES = ("password", "secret", "token", "key", "credential")


@dataclass(frozen=True)
class RedactionRule:
    """A single text rewrite: every match of ``pattern`` becomes ``replacement``."""

    name: str
    pattern: re.Pattern[str]
    replacement: str

    def apply(self, text: str) -> str:
        return self.pattern.sub(self.replacement, text)


REDACTION_RULES: tuple[RedactionRule, ...] = (
    RedactionRule(
        "url",
        re.compile(r"https?://[^\s]+", re.IGNORECASE),
        URL_SENTINEL,
    ),
    RedactionRule(
        "bearer_token",
        re.compile(r"bearer\s+[A-Za-z0-9._-]+", re.IGNORECASE),
        "bearer [TOKEN_REMOVED]",
    ),
    RedactionRule(
        "api_key",
        re.compile(r"\b(?:sk|pk|api)_[a-z]+_[A-Za-z0-9]{20,}\b", re.IGNORECASE),
        "[API_KEY_REMOVED]",
    ),
    RedactionRule(
        "email",
        re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}"),
        "[EMAIL_REMOVED]",
    ),
    RedactionRule(
        "ipv4",
        re.compile(r"\b(?:\d{1,3}\.){3}\d{1,3}\b"),
        "[IP_REMOVED]",
    ),
    # The lookbehinds leave the host inside the URL sentinel alone.
    RedactionRule(
        "domain",
        re.compile(
            r"(?<![\w.@-])(?<!://)(?:www\.)?(?:[a-z0-9-]+\.)+[a-z]{2,}\b",
            re.IGNORECASE,
        ),
        DOMAIN_SENTINEL,
    ),
    # Values that are already a sentinel are left in place.
    RedactionRule(
        "credential_pair",
        re.compile(
            r"(password|pwd|pass|secret|token|key|credential)\s*[:=]\s*"
            r"(?!\[(?:REDACTED|TOKEN_REMOVED|API_KEY_REMOVED|EMAIL_REMOVED|IP_REMOVED)\])"
            r"[^\s;]+",
            re.IGNORECASE,
        ),
        r"\1=" + REDACTED,
    ),
)


def anonymize_text(text: str) -> str:
    """Apply every redaction rule, in order, to ``text``."""
    if not text:
        return ""
    for rule in REDACTION_RULES:
        text = rule.apply(text)
    return text


def is_credential_key(key: str) -> bool:
    """Return True if a dict key names a credential (case-insensitive substring)."""
    lowered = key.lower()
    return any(name in lowered for name in CREDENTIAL_KEY_NAMES)


@singledispatch
def anonymize_value(value: Any) -> Any:
    """Return ``value`` with the same shape and sensitive content removed.

    Numbers, booleans and None pass through unchanged.
    """
    return value


@anonymize_value.register
def _(value: str) -> str:
    return anonymize_text(value)


@anonymize_value.register(list)
@anonymize_value.register(tuple)
def _(value: list[Any] | tuple[Any, ...]) -> list[Any]:
    return [anonymize_value(item) for item in value]


@anonymize_value.register
def _(value: dict) -> dict[str, Any]:  # type: ignore[type-arg]
    result: dict[str, Any] = {}
    for key, item in value.items():
        if is_credential_key(str(key)):
            result[key] = REDACTED
        else:
            result[key] = anonymize_value(item)
    return result


def hash_identifier(identifier: str) -> str:
    """One-way hash for user identifiers: first 16 hex chars of SHA-256."""
    return hashlib.sha256(identifier.encode()).hexdigest()[:16]


__all__ = [
    "CREDENTIAL_KEY_NAMES",
    "DOMAIN_SENTINEL",
    "REDACTED",
    "REDACTION_RULES",
    "RedactionRule",
    "URL_SENTINEL",
    "anonymize_text",
    "anonymize_value",
    "hash_identifier",
    "is_credential_key",
]
