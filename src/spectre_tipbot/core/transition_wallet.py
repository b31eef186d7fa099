"""Escrow ("transition") wallets for recipients without a wallet of their own.

An escrow wallet is keyed by the directional (initiator, target) pair and
unlocked by a random secret stored next to its metadata, so any process
sharing the metadata store can reopen it later.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from spectre_tipbot.core.context import TipContext
from spectre_tipbot.core.mnemonics import generate_mnemonic, generate_transition_secret
from spectre_tipbot.engine.base import Balance, WalletEngine
from spectre_tipbot.errors import ErrorKind, TipError, wrap_engine_error
from spectre_tipbot.storage.models import TransitionWalletMetadata

logger = logging.getLogger("spectre_tipbot.transition_wallet")

TRANSITION_ID_PREFIX = "transition-"


def identifier_for(initiator_identifier: str, target_identifier: str) -> str:
    """Deterministic wallet identifier of the escrow from initiator to target.

    Stable across restarts and directional: swapping the arguments yields a
    different identifier.
    """
    digest = hashlib.sha256(
        f"{target_identifier}:{initiator_identifier}".encode("utf-8")
    ).hexdigest()
    return f"{TRANSITION_ID_PREFIX}{digest}"


@dataclass
class TransitionWallet:
    """An opened escrow wallet. Not tracked by the registry."""

    initiator_identifier: str
    target_identifier: str
    wallet: WalletEngine
    receive_address: str
    opened_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    closed: bool = field(default=False, repr=False, compare=False)

    @property
    def identifier(self) -> str:
        return identifier_for(self.initiator_identifier, self.target_identifier)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            await self.wallet.close_wallet()
        except Exception as exc:
            raise wrap_engine_error(exc, f"closing escrow {self.identifier}") from exc


# ------------------------------------------------------------------
# Create / open
# ------------------------------------------------------------------

async def create_transition_wallet(
    ctx: TipContext, initiator_identifier: str, target_identifier: str
) -> TransitionWallet:
    """Create and persist the escrow wallet for (initiator, target).

    Raises ``DUPLICATE_ESCROW_KEY`` when the pair already has one. Callers
    racing on the same pair should treat that as "use the existing escrow";
    :func:`find_or_create_transition_wallet` does exactly that.
    """
    wallet_identifier = identifier_for(initiator_identifier, target_identifier)
    if await ctx.transition_wallet_metadata_store.contains(wallet_identifier):
        raise TipError(
            ErrorKind.DUPLICATE_ESCROW_KEY,
            f"Transition wallet {initiator_identifier} -> {target_identifier} already exists",
        )

    secret = generate_transition_secret()
    wallet = ctx.new_wallet()
    try:
        await wallet.create_wallet(secret, wallet_identifier, generate_mnemonic())
        receive_address = wallet.receive_address()
    except Exception as exc:
        await _release(wallet, wallet_identifier)
        raise wrap_engine_error(exc, f"creating escrow {wallet_identifier}") from exc

    try:
        await ctx.transition_wallet_metadata_store.add(
            TransitionWalletMetadata(
                identifier=wallet_identifier,
                target_identifier=target_identifier,
                initiator_identifier=initiator_identifier,
                receive_address=receive_address,
                secret=secret,
            )
        )
    except TipError as exc:
        await _release(wallet, wallet_identifier)
        if exc.kind is ErrorKind.DUPLICATE_KEY:
            raise TipError(
                ErrorKind.DUPLICATE_ESCROW_KEY,
                f"Transition wallet {initiator_identifier} -> {target_identifier} already exists",
                exc,
            ) from exc
        raise

    logger.info(
        f"Transition wallet created for {initiator_identifier} -> {target_identifier} "
        f"({receive_address})"
    )
    return TransitionWallet(initiator_identifier, target_identifier, wallet, receive_address)


async def open_transition_wallet(
    ctx: TipContext, secret: str, initiator_identifier: str, target_identifier: str
) -> TransitionWallet:
    """Open the escrow wallet of (initiator, target) with its unlock secret."""
    wallet_identifier = identifier_for(initiator_identifier, target_identifier)
    wallet = ctx.new_wallet()
    try:
        await wallet.open_wallet(secret, wallet_identifier)
        receive_address = wallet.receive_address()
    except Exception as exc:
        await _release(wallet, wallet_identifier)
        raise wrap_engine_error(exc, f"opening escrow {wallet_identifier}") from exc
    return TransitionWallet(initiator_identifier, target_identifier, wallet, receive_address)


async def open_from_metadata(ctx: TipContext, metadata: TransitionWalletMetadata) -> TransitionWallet:
    return await open_transition_wallet(
        ctx, metadata.secret, metadata.initiator_identifier, metadata.target_identifier
    )


# ------------------------------------------------------------------
# Lookups
# ------------------------------------------------------------------

async def find_transition_metadata(
    ctx: TipContext, initiator_identifier: str, target_identifier: str
) -> Optional[TransitionWalletMetadata]:
    return await ctx.transition_wallet_metadata_store.get(
        identifier_for(initiator_identifier, target_identifier)
    )


async def find_or_create_transition_wallet(
    ctx: TipContext, initiator_identifier: str, target_identifier: str
) -> TransitionWalletMetadata:
    """Return the escrow record for the pair, creating the escrow if needed.

    Concurrent calls for the same pair within one context are serialised,
    so exactly one escrow wallet is created.
    """
    async with ctx.escrow_lock(identifier_for(initiator_identifier, target_identifier)):
        existing = await find_transition_metadata(ctx, initiator_identifier, target_identifier)
        if existing is not None:
            return existing

        try:
            created = await create_transition_wallet(ctx, initiator_identifier, target_identifier)
        except TipError as exc:
            if exc.kind is not ErrorKind.DUPLICATE_ESCROW_KEY:
                raise
            # created meanwhile by a direct create_transition_wallet call
            existing = await find_transition_metadata(ctx, initiator_identifier, target_identifier)
            if existing is None:
                raise
            return existing

    try:
        await created.close()
    except TipError as exc:
        logger.warning(f"Failed to close new escrow {created.identifier}: {exc}")
    return await ctx.transition_wallet_metadata_store.find_by_key(created.identifier)


async def escrows_for(ctx: TipContext, target_identifier: str) -> list[TransitionWalletMetadata]:
    """Every escrow record addressed to ``target_identifier``."""
    return await ctx.transition_wallet_metadata_store.find_where(
        lambda m: m.target_identifier == target_identifier
    )


# ------------------------------------------------------------------
# Balance aggregation
# ------------------------------------------------------------------

@dataclass(frozen=True)
class EscrowBalance:
    """Balance read of one escrow, or the reason it could not be read."""

    identifier: str
    initiator_identifier: str
    balance: Optional[Balance] = None
    error: Optional[TipError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def mature(self) -> int:
        return self.balance.mature if self.balance is not None else 0


@dataclass(frozen=True)
class EscrowBalanceReport:
    entries: tuple[EscrowBalance, ...]

    @property
    def total_mature(self) -> int:
        """Sum of the balances that could be read."""
        return sum(e.mature for e in self.entries if e.ok)

    @property
    def failures(self) -> tuple[EscrowBalance, ...]:
        return tuple(e for e in self.entries if not e.ok)


async def read_escrow_balance(
    ctx: TipContext, metadata: TransitionWalletMetadata
) -> EscrowBalance:
    """Open one escrow, read its balance and close it again.

    Failures are captured in the returned entry rather than raised.
    """
    try:
        escrow = await open_from_metadata(ctx, metadata)
    except TipError as exc:
        logger.warning(f"Cannot open escrow {metadata.identifier}: {exc}")
        return EscrowBalance(metadata.identifier, metadata.initiator_identifier, error=exc)

    try:
        balance = await escrow.wallet.balance()
    except Exception as exc:
        error = wrap_engine_error(exc, f"reading balance of escrow {metadata.identifier}")
        logger.warning(str(error))
        return EscrowBalance(metadata.identifier, metadata.initiator_identifier, error=error)
    finally:
        await _release(escrow.wallet, metadata.identifier)

    return EscrowBalance(metadata.identifier, metadata.initiator_identifier, balance=balance)


async def read_escrow_balances(ctx: TipContext, target_identifier: str) -> EscrowBalanceReport:
    """Read every escrow addressed to ``target_identifier`` concurrently."""
    records = await escrows_for(ctx, target_identifier)
    semaphore = asyncio.Semaphore(ctx.claim.max_concurrency)

    async def _bounded(metadata: TransitionWalletMetadata) -> EscrowBalance:
        async with semaphore:
            return await read_escrow_balance(ctx, metadata)

    entries = await asyncio.gather(*(_bounded(m) for m in records))
    return EscrowBalanceReport(tuple(entries))


async def _release(wallet: WalletEngine, wallet_identifier: str) -> None:
    try:
        await wallet.close_wallet()
    except Exception as exc:
        logger.warning(f"Failed to release escrow handle {wallet_identifier}: {exc}")
