"""TipContext - the composition root shared by every wallet operation."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import weakref
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from spectre_tipbot.config import (
    ClaimConfig,
    SecurityConfig,
    TipBotConfig,
    owned_store_path,
    transition_store_path,
)
from spectre_tipbot.engine.base import NodeConnection, WalletEngine, WalletEngineFactory
from spectre_tipbot.locks import ReadWriteLock
from spectre_tipbot.storage.metadata_store import MetadataStore
from spectre_tipbot.storage.models import OwnedWalletMetadata, TransitionWalletMetadata

if TYPE_CHECKING:
    from spectre_tipbot.core.owned_wallet import OwnedWallet

logger = logging.getLogger("spectre_tipbot.context")


class TipContext:
    """Registry of opened wallets plus the stores and capabilities they need.

    One instance is built at startup and passed explicitly to every
    lifecycle operation; there is no module-level singleton, so tests can
    create as many isolated contexts as they like.

    The opened-wallet registry only guarantees map consistency. Removing
    an entry never closes the engine handle; callers sequence that
    themselves.
    """

    def __init__(
        self,
        network_id: str,
        node: Optional[NodeConnection],
        wallet_factory: WalletEngineFactory,
        owned_wallet_metadata_store: MetadataStore[OwnedWalletMetadata],
        transition_wallet_metadata_store: MetadataStore[TransitionWalletMetadata],
        wallet_data_path: Path,
        security: SecurityConfig | None = None,
        claim: ClaimConfig | None = None,
    ) -> None:
        self.network_id = network_id
        self.node = node
        self.wallet_factory = wallet_factory
        self.owned_wallet_metadata_store = owned_wallet_metadata_store
        self.transition_wallet_metadata_store = transition_wallet_metadata_store
        self.wallet_data_path = Path(wallet_data_path)
        self.security = security or SecurityConfig()
        self.claim = claim or ClaimConfig()
        self._opened_owned_wallets: dict[str, OwnedWallet] = {}
        self._registry_lock = ReadWriteLock()
        self._escrow_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    @classmethod
    async def create(
        cls,
        config: TipBotConfig,
        node: Optional[NodeConnection],
        wallet_factory: WalletEngineFactory,
    ) -> TipContext:
        """Open both metadata stores under ``config.wallet_data_path``."""
        owned_path = owned_store_path(config)
        transition_path = transition_store_path(config)

        logger.info(f"Using {owned_path} as owned wallet metadata store")
        logger.info(f"Using {transition_path} as transition wallet metadata store")

        transition_store = await MetadataStore.open(
            transition_path, TransitionWalletMetadata, "identifier"
        )
        owned_store = await MetadataStore.open(
            owned_path, OwnedWalletMetadata, "owner_identifier"
        )

        return cls(
            network_id=config.network,
            node=node,
            wallet_factory=wallet_factory,
            owned_wallet_metadata_store=owned_store,
            transition_wallet_metadata_store=transition_store,
            wallet_data_path=Path(config.wallet_data_path),
            security=config.security,
            claim=config.claim,
        )

    # ------------------------------------------------------------------
    # Opened wallet registry
    # ------------------------------------------------------------------

    async def exists_open(self, identifier: str) -> bool:
        async with self._registry_lock.read():
            return identifier in self._opened_owned_wallets

    async def get_open(self, identifier: str) -> Optional[OwnedWallet]:
        """Return a copy of the registered wrapper, sharing its engine handle."""
        async with self._registry_lock.read():
            wallet = self._opened_owned_wallets.get(identifier)
        return dataclasses.replace(wallet) if wallet is not None else None

    async def put_open(self, identifier: str, wallet: OwnedWallet) -> OwnedWallet:
        async with self._registry_lock.write():
            self._opened_owned_wallets[identifier] = wallet
        return wallet

    async def remove_open(self, identifier: str) -> Optional[OwnedWallet]:
        """Unregister ``identifier``; the engine handle is left open."""
        async with self._registry_lock.write():
            return self._opened_owned_wallets.pop(identifier, None)

    async def opened_identifiers(self) -> list[str]:
        async with self._registry_lock.read():
            return list(self._opened_owned_wallets)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def is_initiated(self, identifier: str) -> bool:
        """Whether an owned wallet metadata record exists for ``identifier``."""
        return await self.owned_wallet_metadata_store.contains(identifier)

    def escrow_lock(self, wallet_identifier: str) -> asyncio.Lock:
        """Lock serialising escrow creation for one (initiator, target) pair."""
        lock = self._escrow_locks.get(wallet_identifier)
        if lock is None:
            lock = asyncio.Lock()
            self._escrow_locks[wallet_identifier] = lock
        return lock

    def new_wallet(self) -> WalletEngine:
        """Return a fresh, unopened wallet engine handle."""
        return self.wallet_factory()

    def wallet_file(self, wallet_identifier: str) -> Path:
        """Location of the persisted key material of ``wallet_identifier``."""
        return self.wallet_data_path / f"{wallet_identifier}.wallet"
