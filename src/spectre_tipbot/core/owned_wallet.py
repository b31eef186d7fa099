"""Lifecycle of a user's own (durable, secret-protected) wallet.

State per owner identity::

    unknown -> initiated -> open -> initiated (closed) | destroyed

"Initiated" means an :class:`OwnedWalletMetadata` record exists on disk;
"open" means a live engine handle is registered in the :class:`TipContext`.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from spectre_tipbot.core.context import TipContext
from spectre_tipbot.core.mnemonics import check_secret, generate_mnemonic, normalize_mnemonic
from spectre_tipbot.engine.base import WalletEngine
from spectre_tipbot.errors import ErrorKind, TipError, wrap_engine_error
from spectre_tipbot.storage.models import OwnedWalletMetadata

logger = logging.getLogger("spectre_tipbot.owned_wallet")


@dataclass
class OwnedWallet:
    """An opened owned wallet as held by the registry."""

    owner_identifier: str
    wallet: WalletEngine
    receive_address: str
    opened_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


# ------------------------------------------------------------------
# Create / open / restore
# ------------------------------------------------------------------

async def create_owned_wallet(
    ctx: TipContext, secret: str, owner_identifier: str
) -> tuple[OwnedWallet, str]:
    """Create a fresh wallet for ``owner_identifier`` protected by ``secret``.

    Returns the opened wallet and its mnemonic phrase. The phrase is only
    ever handed out here; it is not persisted in cleartext.

    Raises
    ------
    TipError
        ``INVALID_SECRET`` for a too-short secret, ``ALREADY_EXISTS`` when
        the owner already has an open or initiated wallet, ``ENGINE`` or a
        store error kind otherwise.
    """
    check_secret(secret, ctx.security.min_secret_length)

    if await ctx.exists_open(owner_identifier) or await ctx.is_initiated(owner_identifier):
        raise TipError(ErrorKind.ALREADY_EXISTS, f"Owned wallet for {owner_identifier} already exists")

    mnemonic = generate_mnemonic()
    wallet = ctx.new_wallet()
    try:
        await wallet.create_wallet(secret, owner_identifier, mnemonic)
        receive_address = wallet.receive_address()
    except Exception as exc:
        await _release(wallet, owner_identifier)
        raise wrap_engine_error(exc, f"creating wallet for {owner_identifier}") from exc

    try:
        await ctx.owned_wallet_metadata_store.add(
            OwnedWalletMetadata(owner_identifier=owner_identifier, receive_address=receive_address)
        )
    except TipError as exc:
        await _release(wallet, owner_identifier)
        if exc.kind is ErrorKind.DUPLICATE_KEY:
            raise TipError(
                ErrorKind.ALREADY_EXISTS, f"Owned wallet for {owner_identifier} already exists", exc
            ) from exc
        raise

    owned = await ctx.put_open(
        owner_identifier, OwnedWallet(owner_identifier, wallet, receive_address)
    )
    logger.info(f"Owned wallet created for {owner_identifier} ({receive_address})")
    return owned, mnemonic


async def open_owned_wallet(ctx: TipContext, secret: str, owner_identifier: str) -> OwnedWallet:
    """Open the wallet of ``owner_identifier``, or return it if already open.

    A wrong secret raises ``WALLET_DECRYPT`` and leaves both the registry
    and the metadata store untouched.
    """
    existing = await ctx.get_open(owner_identifier)
    if existing is not None:
        return existing

    if not await ctx.is_initiated(owner_identifier):
        raise TipError(ErrorKind.NOT_INITIATED, f"No wallet initiated for {owner_identifier}")

    wallet = ctx.new_wallet()
    try:
        await wallet.open_wallet(secret, owner_identifier)
        receive_address = wallet.receive_address()
    except Exception as exc:
        await _release(wallet, owner_identifier)
        error = wrap_engine_error(exc, f"opening wallet of {owner_identifier}")
        if error.kind is ErrorKind.WALLET_DECRYPT:
            logger.info(f"Wrong secret supplied for wallet of {owner_identifier}")
        raise error from exc

    owned = await ctx.put_open(
        owner_identifier, OwnedWallet(owner_identifier, wallet, receive_address)
    )
    logger.info(f"Owned wallet opened for {owner_identifier}")
    return owned


async def restore_owned_wallet(
    ctx: TipContext, secret: str, mnemonic: str, owner_identifier: str
) -> OwnedWallet:
    """Rebuild the wallet of ``owner_identifier`` from ``mnemonic``.

    Destructive: any wallet previously registered for the owner is closed
    and its metadata replaced, whatever state it was in. Confirmation is
    the calling layer's job.
    """
    check_secret(secret, ctx.security.min_secret_length)
    phrase = normalize_mnemonic(mnemonic)

    previous = await ctx.remove_open(owner_identifier)
    if previous is not None:
        await _release(previous.wallet, owner_identifier)

    store = ctx.owned_wallet_metadata_store
    await store.remove_by_key(owner_identifier)

    wallet = ctx.new_wallet()
    try:
        await wallet.restore_wallet(secret, phrase, owner_identifier)
        receive_address = wallet.receive_address()
    except Exception as exc:
        await _release(wallet, owner_identifier)
        raise wrap_engine_error(exc, f"restoring wallet of {owner_identifier}") from exc

    try:
        await store.add(
            OwnedWalletMetadata(owner_identifier=owner_identifier, receive_address=receive_address)
        )
    except TipError:
        await _release(wallet, owner_identifier)
        raise

    owned = await ctx.put_open(
        owner_identifier, OwnedWallet(owner_identifier, wallet, receive_address)
    )
    logger.info(f"Owned wallet restored for {owner_identifier} ({receive_address})")
    return owned


# ------------------------------------------------------------------
# Close / destroy
# ------------------------------------------------------------------

async def close_owned_wallet(ctx: TipContext, owner_identifier: str) -> bool:
    """Unregister and close the wallet. Returns ``False`` if it was not open."""
    owned = await ctx.remove_open(owner_identifier)
    if owned is None:
        return False
    try:
        await owned.wallet.close_wallet()
    except Exception as exc:
        raise wrap_engine_error(exc, f"closing wallet of {owner_identifier}") from exc
    logger.info(f"Owned wallet closed for {owner_identifier}")
    return True


async def destroy_owned_wallet(ctx: TipContext, owner_identifier: str) -> None:
    """Close the wallet, delete its metadata and its key file. Irreversible."""
    if not await ctx.is_initiated(owner_identifier):
        raise TipError(
            ErrorKind.NOT_INITIATED,
            f"Cannot destroy a non-existing wallet for {owner_identifier}",
        )

    await close_owned_wallet(ctx, owner_identifier)
    await ctx.owned_wallet_metadata_store.remove_by_key(owner_identifier)

    wallet_file = ctx.wallet_file(owner_identifier)
    try:
        await asyncio.to_thread(wallet_file.unlink, missing_ok=True)
    except OSError as exc:
        raise TipError(ErrorKind.PERSISTENCE_IO, f"Cannot delete {wallet_file}: {exc}", exc) from exc
    logger.info(f"Owned wallet destroyed for {owner_identifier}")


# ------------------------------------------------------------------
# Secret management
# ------------------------------------------------------------------

async def change_owned_wallet_secret(
    ctx: TipContext, owner_identifier: str, old_secret: str, new_secret: str
) -> None:
    """Re-encrypt the opened wallet's key material under ``new_secret``."""
    owned = await _require_open(ctx, owner_identifier)
    check_secret(new_secret, ctx.security.min_secret_length)
    try:
        await owned.wallet.change_secret(old_secret, new_secret)
    except Exception as exc:
        raise wrap_engine_error(exc, f"changing secret of {owner_identifier}") from exc
    logger.info(f"Secret changed for wallet of {owner_identifier}")


async def export_owned_wallet_mnemonic(
    ctx: TipContext, owner_identifier: str, secret: str
) -> str:
    """Decrypt and return the mnemonic phrase of the opened wallet."""
    if not await ctx.is_initiated(owner_identifier):
        raise TipError(ErrorKind.NOT_INITIATED, f"No wallet initiated for {owner_identifier}")
    owned = await _require_open(ctx, owner_identifier)
    try:
        return await owned.wallet.export_mnemonic(secret)
    except Exception as exc:
        raise wrap_engine_error(exc, f"exporting wallet of {owner_identifier}") from exc


async def _require_open(ctx: TipContext, owner_identifier: str) -> OwnedWallet:
    owned = await ctx.get_open(owner_identifier)
    if owned is None:
        raise TipError(ErrorKind.NOT_OPEN, f"Wallet of {owner_identifier} is not opened")
    return owned


async def _release(wallet: WalletEngine, owner_identifier: str) -> None:
    """Close a handle on an error path; the original failure takes precedence."""
    try:
        await wallet.close_wallet()
    except Exception as exc:
        logger.warning(f"Failed to release wallet handle of {owner_identifier}: {exc}")
