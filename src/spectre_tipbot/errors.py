"""Error taxonomy for the tip wallet core.

Every failure surfaced to callers is a :class:`TipError` carrying an
:class:`ErrorKind`. The chat layer matches on ``kind`` and shows
``user_message``; the wrapped library exception stays available as
``cause`` for logging.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    ALREADY_EXISTS = "already_exists"
    NOT_FOUND = "not_found"
    NOT_INITIATED = "not_initiated"
    NOT_OPEN = "not_open"
    WALLET_DECRYPT = "wallet_decrypt"
    PERSISTENCE_IO = "persistence_io"
    SERIALIZATION = "serialization"
    INVALID_AMOUNT = "invalid_amount"
    INVALID_SECRET = "invalid_secret"
    INVALID_MNEMONIC = "invalid_mnemonic"
    INVALID_ADDRESS = "invalid_address"
    DUPLICATE_KEY = "duplicate_key"
    DUPLICATE_ESCROW_KEY = "duplicate_escrow_key"
    NO_FUNDS_TO_CLAIM = "no_funds_to_claim"
    SEND_FAILED = "send_failed"
    NODE_UNAVAILABLE = "node_unavailable"
    ENGINE = "engine"


_USER_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.ALREADY_EXISTS: "A wallet already exists for this account.",
    ErrorKind.NOT_FOUND: "The requested record was not found.",
    ErrorKind.NOT_INITIATED: "No wallet has been created for this account yet.",
    ErrorKind.NOT_OPEN: "The wallet is not opened.",
    ErrorKind.WALLET_DECRYPT: "The password is wrong.",
    ErrorKind.PERSISTENCE_IO: "Wallet storage is unavailable, please try again later.",
    ErrorKind.SERIALIZATION: "Wallet storage is corrupted, please contact the operators.",
    ErrorKind.INVALID_AMOUNT: "The amount is not valid.",
    ErrorKind.INVALID_SECRET: "The password does not meet the requirements.",
    ErrorKind.INVALID_MNEMONIC: "The mnemonic phrase is not valid.",
    ErrorKind.INVALID_ADDRESS: "The address is not a valid Spectre address.",
    ErrorKind.DUPLICATE_KEY: "A record with the same key already exists.",
    ErrorKind.DUPLICATE_ESCROW_KEY: "An escrow wallet already exists for this pair.",
    ErrorKind.NO_FUNDS_TO_CLAIM: "There are no funds to claim.",
    ErrorKind.SEND_FAILED: "The transaction could not be sent.",
    ErrorKind.NODE_UNAVAILABLE: "The Spectre node is not ready.",
    ErrorKind.ENGINE: "An unexpected wallet error occurred.",
}


class TipError(Exception):
    """A core failure tagged with its :class:`ErrorKind`.

    ``message`` is meant for logs and must never contain secrets or
    mnemonic phrases; ``user_message`` is the fixed, safe text for chat
    replies.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str | None = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        self.kind = kind
        self.message = message or _USER_MESSAGES[kind]
        self.cause = cause
        super().__init__(self.message)
        if cause is not None:
            self.__cause__ = cause

    @property
    def user_message(self) -> str:
        return _USER_MESSAGES[self.kind]

    def __repr__(self) -> str:
        return f"TipError(kind={self.kind.value!r}, message={self.message!r})"


def wrap_engine_error(exc: BaseException, context: str = "") -> TipError:
    """Map a wallet engine exception onto the taxonomy.

    Wrong-secret failures become ``WALLET_DECRYPT``; everything else is
    passed through opaquely as ``ENGINE``.
    """
    from spectre_tipbot.engine.base import WalletDecryptError

    if isinstance(exc, TipError):
        return exc
    prefix = f"{context}: " if context else ""
    if isinstance(exc, WalletDecryptError):
        return TipError(ErrorKind.WALLET_DECRYPT, f"{prefix}wallet decryption failed", exc)
    return TipError(ErrorKind.ENGINE, f"{prefix}{type(exc).__name__}: {exc}", exc)
