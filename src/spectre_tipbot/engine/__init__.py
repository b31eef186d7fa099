"""Wallet engine and node capability interfaces.

The tip core drives an external wallet engine (key derivation, encryption
at rest, UTXO scanning, signing, broadcast) and a node RPC client through
the small protocols defined here.
"""

from spectre_tipbot.engine.base import (
    Balance,
    ConnectOptions,
    EngineError,
    FeeEstimate,
    FeePolicy,
    NodeConnection,
    PaymentOutput,
    SendSummary,
    ServerInfo,
    WalletDecryptError,
    WalletEngine,
    WalletEngineFactory,
)

__all__ = [
    "Balance",
    "ConnectOptions",
    "EngineError",
    "FeeEstimate",
    "FeePolicy",
    "NodeConnection",
    "PaymentOutput",
    "SendSummary",
    "ServerInfo",
    "WalletDecryptError",
    "WalletEngine",
    "WalletEngineFactory",
]
