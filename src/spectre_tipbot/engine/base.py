"""Capability interfaces the core consumes from the wallet engine and node client.

The core never touches key material, UTXOs or the node wire protocol
itself; it only drives objects satisfying these protocols.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Protocol, runtime_checkable


# ---------------------------------------------------------------------------
# Engine exceptions
# ---------------------------------------------------------------------------

class EngineError(Exception):
    """Base class for failures raised by a wallet engine or node client."""


class WalletDecryptError(EngineError):
    """The supplied secret does not decrypt the wallet's key material."""


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------

class FeePolicy(str, Enum):
    SENDER_PAYS = "sender_pays"
    RECEIVER_PAYS = "receiver_pays"


@dataclass(frozen=True)
class PaymentOutput:
    address: str
    amount: int  # sompi


@dataclass(frozen=True)
class Balance:
    mature: int = 0
    pending: int = 0
    mature_utxo_count: int = 0
    pending_utxo_count: int = 0


@dataclass(frozen=True)
class FeeEstimate:
    """Outcome of a fee estimation for a set of outputs.

    ``final_transaction_amount`` is what the recipient would receive once
    network fees are deducted, or ``None`` when the engine could not build
    the transaction.
    """

    final_transaction_amount: Optional[int] = None
    fees: Optional[int] = None


@dataclass(frozen=True)
class SendSummary:
    summary: str
    tx_ids: tuple[str, ...]

    @property
    def tx_id(self) -> str:
        """The final transaction id (the payment itself)."""
        return self.tx_ids[-1] if self.tx_ids else ""


@dataclass(frozen=True)
class ConnectOptions:
    url: Optional[str] = None
    network_id: str = "mainnet"
    timeout_seconds: float = 5.0
    block_async_connect: bool = True


@dataclass(frozen=True)
class ServerInfo:
    is_synced: bool
    version: str
    network_id: str
    has_utxo_index: bool


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------

@runtime_checkable
class WalletEngine(Protocol):
    """A single wallet handle.

    One instance manages at most one wallet file at a time; the core
    asks the factory for a fresh instance for every create/open/restore.
    """

    async def create_wallet(self, secret: str, wallet_id: str, mnemonic: str) -> None: ...

    async def open_wallet(self, secret: str, wallet_id: str) -> None: ...

    async def restore_wallet(self, secret: str, mnemonic: str, wallet_id: str) -> None: ...

    async def close_wallet(self) -> None: ...

    def receive_address(self) -> str: ...

    async def balance(self) -> Balance: ...

    async def send(
        self, outputs: list[PaymentOutput], fee_policy: FeePolicy, secret: str
    ) -> SendSummary: ...

    async def estimate_fee(self, outputs: list[PaymentOutput]) -> FeeEstimate: ...

    async def sweep(self, secret: str) -> SendSummary: ...

    async def change_secret(self, old_secret: str, new_secret: str) -> None: ...

    async def export_mnemonic(self, secret: str) -> str: ...


@runtime_checkable
class NodeConnection(Protocol):
    """A connected (or connectable) Spectre node RPC client."""

    async def connect(self, options: ConnectOptions) -> None: ...

    async def get_server_info(self) -> ServerInfo: ...


WalletEngineFactory = Callable[[], WalletEngine]
