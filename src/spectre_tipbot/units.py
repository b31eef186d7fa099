"""Amount conversion, address checks and explorer links for the Spectre network."""

from __future__ import annotations

import re
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Final

from spectre_tipbot.errors import ErrorKind, TipError

SOMPI_PER_SPECTRE: Final[int] = 100_000_000
SPECTRE_DECIMALS: Final[int] = 8
MAX_SOMPI: Final[int] = 2**64 - 1

_ONE_SOMPI = Decimal(1).scaleb(-SPECTRE_DECIMALS)

# network type -> (address prefix, currency suffix, explorer base url)
_NETWORKS: Final[dict[str, tuple[str, str, str]]] = {
    "mainnet": ("spectre", "SPR", "https://explorer.spectre-network.org/txs/"),
    "testnet": ("spectretest", "TSPR", "https://explorer-tn.spectre-network.org/txs/"),
    "devnet": ("spectredev", "DSPR", ""),
    "simnet": ("spectresim", "SSPR", ""),
}

_ADDRESS_RE = re.compile(r"^(spectre|spectretest|spectredev|spectresim):[qpzry9x8gf2tvdw0s3jn54khce6mua7l]{61,63}$")


def network_type(network_id: str) -> str:
    """Return the network type of an id such as ``"testnet-10"``."""
    base = network_id.lower().split("-", 1)[0]
    if base not in _NETWORKS:
        raise ValueError(f"Unknown Spectre network '{network_id}'. Available: {list(_NETWORKS)}")
    return base


def parse_spectre_amount(amount: str | None) -> int:
    """Parse a display-denomination amount (e.g. ``"10.5"``) into sompi.

    Digits beyond the eighth decimal place are truncated. Raises
    :class:`TipError` with ``INVALID_AMOUNT`` for missing, non-numeric,
    negative, zero or out-of-range amounts (above ``MAX_SOMPI``).
    """
    if amount is None or not str(amount).strip():
        raise TipError(ErrorKind.INVALID_AMOUNT, "Missing Spectre amount")

    text = str(amount).strip()
    try:
        value = Decimal(text)
    except InvalidOperation as exc:
        raise TipError(
            ErrorKind.INVALID_AMOUNT, f"Supplied Spectre amount is not valid: '{text}'", exc
        ) from exc

    if not value.is_finite() or value < 0:
        raise TipError(ErrorKind.INVALID_AMOUNT, f"Supplied Spectre amount is not valid: '{text}'")

    try:
        sompi = int(value.quantize(_ONE_SOMPI, rounding=ROUND_DOWN) * SOMPI_PER_SPECTRE)
    except InvalidOperation as exc:
        raise TipError(
            ErrorKind.INVALID_AMOUNT, f"Supplied Spectre amount is too large: '{text}'", exc
        ) from exc
    if sompi > MAX_SOMPI:
        raise TipError(ErrorKind.INVALID_AMOUNT, f"Supplied Spectre amount is too large: '{text}'")
    if sompi == 0:
        raise TipError(
            ErrorKind.INVALID_AMOUNT,
            f"Supplied required Spectre amount must not be a zero: '{text}'",
        )
    return sompi


def sompi_to_spectre(sompi: int) -> Decimal:
    return (Decimal(sompi) / SOMPI_PER_SPECTRE).quantize(_ONE_SOMPI)


def format_sompi(sompi: int, network_id: str = "mainnet") -> str:
    """Render sompi as e.g. ``"10.50000000 SPR"``."""
    suffix = _NETWORKS[network_type(network_id)][1]
    return f"{sompi_to_spectre(sompi)} {suffix}"


def validate_address(address: str, network_id: str | None = None) -> str:
    """Check the shape of a Spectre address and return it normalised.

    When ``network_id`` is given the prefix must match that network.
    """
    candidate = (address or "").strip().lower()
    if not _ADDRESS_RE.match(candidate):
        raise TipError(ErrorKind.INVALID_ADDRESS, "Invalid Spectre address")
    if network_id is not None:
        expected = _NETWORKS[network_type(network_id)][0]
        if candidate.split(":", 1)[0] != expected:
            raise TipError(
                ErrorKind.INVALID_ADDRESS,
                f"Address does not belong to the {network_type(network_id)} network",
            )
    return candidate


def tx_explorer_url(tx_id: str, network_id: str = "mainnet") -> str:
    """Return an explorer link for ``tx_id``, or an empty string when none exists."""
    base = _NETWORKS[network_type(network_id)][2]
    return f"{base}{tx_id}" if base else ""
