"""Mnemonic and secret helpers shared by the wallet lifecycles."""

from __future__ import annotations

import secrets

from mnemonic import Mnemonic

from spectre_tipbot.errors import ErrorKind, TipError

_MNEMONIC = Mnemonic("english")

MNEMONIC_STRENGTH_BITS = 128  # 12 words
VALID_WORD_COUNTS = (12, 24)


def generate_mnemonic() -> str:
    """Return a fresh 12-word BIP39 phrase."""
    return _MNEMONIC.generate(strength=MNEMONIC_STRENGTH_BITS)


def normalize_mnemonic(phrase: str) -> str:
    """Validate a user supplied BIP39 phrase and return it whitespace-normalised.

    Raises ``INVALID_MNEMONIC`` for a wrong word count, unknown words or a
    bad checksum. The phrase itself never appears in the error message.
    """
    words = (phrase or "").split()
    if len(words) not in VALID_WORD_COUNTS:
        raise TipError(ErrorKind.INVALID_MNEMONIC, "Mnemonic must be 12 or 24 words")
    normalized = " ".join(word.lower() for word in words)
    if not _MNEMONIC.check(normalized):
        raise TipError(ErrorKind.INVALID_MNEMONIC, "Invalid mnemonic phrase")
    return normalized


def check_secret(secret: str, min_length: int) -> None:
    if secret is None or len(secret) < min_length:
        raise TipError(
            ErrorKind.INVALID_SECRET,
            f"Secret must be at least {min_length} characters long",
        )


def generate_transition_secret() -> str:
    """Random unlock secret for a system-controlled escrow wallet."""
    return secrets.token_urlsafe(32)
