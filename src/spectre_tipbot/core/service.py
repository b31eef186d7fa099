"""High-level tip service used by the chat command layer.

Every identity argument is an opaque chat-platform user id; every amount
is a decimal string in SPR, converted to sompi before reaching the engine.
All failures are raised as :class:`~spectre_tipbot.errors.TipError`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from spectre_tipbot.config import TipBotConfig
from spectre_tipbot.core.claim import ClaimReport, claim
from spectre_tipbot.core.context import TipContext
from spectre_tipbot.core.owned_wallet import (
    OwnedWallet,
    change_owned_wallet_secret,
    close_owned_wallet,
    create_owned_wallet,
    destroy_owned_wallet,
    export_owned_wallet_mnemonic,
    open_owned_wallet,
    restore_owned_wallet,
)
from spectre_tipbot.core.transition_wallet import (
    find_or_create_transition_wallet,
    read_escrow_balances,
)
from spectre_tipbot.engine.base import FeePolicy, PaymentOutput, SendSummary
from spectre_tipbot.engine.loader import load_node_connection, load_wallet_factory
from spectre_tipbot.engine.node import check_node_status, connect_node
from spectre_tipbot.errors import ErrorKind, TipError, wrap_engine_error
from spectre_tipbot.units import parse_spectre_amount, tx_explorer_url, validate_address

logger = logging.getLogger("spectre_tipbot.service")


@dataclass(frozen=True)
class CreatedWallet:
    receive_address: str
    mnemonic: str = field(repr=False)


@dataclass(frozen=True)
class WalletStatus:
    is_open: bool
    is_initiated: bool
    mature_balance: int = 0
    pending_balance: int = 0
    mature_utxo_count: int = 0
    pending_utxo_count: int = 0
    pending_escrow_balance: int = 0
    escrow_failures: tuple[str, ...] = ()  # escrow ids whose balance could not be read


@dataclass(frozen=True)
class SendResult:
    summary: str
    tx_id: str
    amount: int
    recipient_address: str
    via_escrow: bool
    explorer_url: str = ""


class TipService:
    """Facade over the wallet lifecycles, one instance per running bot."""

    def __init__(self, ctx: TipContext) -> None:
        self.ctx = ctx

    @classmethod
    async def from_config(cls, config: TipBotConfig) -> TipService:
        """Connect to the configured node and open the metadata stores."""
        node = load_node_connection(config)
        await connect_node(node, config)
        await check_node_status(node, config)
        wallet_factory = load_wallet_factory(config)
        ctx = await TipContext.create(config, node, wallet_factory)
        return cls(ctx)

    async def shutdown(self) -> None:
        """Close every opened wallet."""
        for identifier in await self.ctx.opened_identifiers():
            try:
                await close_owned_wallet(self.ctx, identifier)
            except TipError as exc:
                logger.error(f"Failed to close wallet of {identifier} on shutdown: {exc}")

    # ------------------------------------------------------------------
    # Wallet lifecycle
    # ------------------------------------------------------------------

    async def create(self, secret: str, owner_id: str) -> CreatedWallet:
        owned, mnemonic = await create_owned_wallet(self.ctx, secret, owner_id)
        return CreatedWallet(owned.receive_address, mnemonic)

    async def open(self, secret: str, owner_id: str) -> str:
        owned = await open_owned_wallet(self.ctx, secret, owner_id)
        return owned.receive_address

    async def close(self, owner_id: str) -> None:
        await close_owned_wallet(self.ctx, owner_id)

    async def restore(self, secret: str, mnemonic: str, owner_id: str) -> str:
        owned = await restore_owned_wallet(self.ctx, secret, mnemonic, owner_id)
        return owned.receive_address

    async def destroy(self, owner_id: str) -> None:
        await destroy_owned_wallet(self.ctx, owner_id)

    async def change_secret(self, owner_id: str, old_secret: str, new_secret: str) -> None:
        await change_owned_wallet_secret(self.ctx, owner_id, old_secret, new_secret)

    async def export(self, owner_id: str, secret: str) -> str:
        return await export_owned_wallet_mnemonic(self.ctx, owner_id, secret)

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    async def status(self, owner_id: str) -> WalletStatus:
        """Report wallet state; balances are only read for an opened wallet."""
        owned = await self.ctx.get_open(owner_id)
        if owned is None:
            return WalletStatus(
                is_open=False, is_initiated=await self.ctx.is_initiated(owner_id)
            )

        try:
            balance = await owned.wallet.balance()
        except Exception as exc:
            raise wrap_engine_error(exc, f"reading balance of {owner_id}") from exc

        escrows = await read_escrow_balances(self.ctx, owner_id)
        return WalletStatus(
            is_open=True,
            is_initiated=True,
            mature_balance=balance.mature,
            pending_balance=balance.pending,
            mature_utxo_count=balance.mature_utxo_count,
            pending_utxo_count=balance.pending_utxo_count,
            pending_escrow_balance=escrows.total_mature,
            escrow_failures=tuple(e.identifier for e in escrows.failures),
        )

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    async def send(
        self, from_owner_id: str, to_recipient_id: str, amount: str, secret: str
    ) -> SendResult:
        """Tip ``to_recipient_id``, escrowing the funds if they have no wallet."""
        amount_sompi = parse_spectre_amount(amount)
        owned = await self._require_open(from_owner_id)

        recipient = await self.ctx.owned_wallet_metadata_store.get(to_recipient_id)
        if recipient is not None:
            recipient_address, via_escrow = recipient.receive_address, False
        else:
            escrow = await find_or_create_transition_wallet(self.ctx, from_owner_id, to_recipient_id)
            recipient_address, via_escrow = escrow.receive_address, True

        sent = await self._send(
            owned,
            [PaymentOutput(recipient_address, amount_sompi)],
            FeePolicy.SENDER_PAYS,
            secret,
        )
        logger.info(
            f"{from_owner_id} sent {amount_sompi} sompi to {to_recipient_id}"
            f"{' (escrow)' if via_escrow else ''}: {sent.tx_id}"
        )
        return SendResult(
            summary=sent.summary,
            tx_id=sent.tx_id,
            amount=amount_sompi,
            recipient_address=recipient_address,
            via_escrow=via_escrow,
            explorer_url=tx_explorer_url(sent.tx_id, self.ctx.network_id),
        )

    async def withdraw(self, owner_id: str, address: str, amount: str, secret: str) -> SendResult:
        """Send to an external address; network fees are taken from ``amount``."""
        recipient_address = validate_address(address, self.ctx.network_id)
        amount_sompi = parse_spectre_amount(amount)
        owned = await self._require_open(owner_id)

        try:
            estimate = await owned.wallet.estimate_fee([PaymentOutput(recipient_address, amount_sompi)])
        except Exception as exc:
            raise wrap_engine_error(exc, f"estimating withdrawal fees of {owner_id}") from exc
        net_amount = estimate.final_transaction_amount
        if net_amount is None or net_amount <= 0:
            raise TipError(
                ErrorKind.SEND_FAILED,
                "While estimating the transaction fees, final_transaction_amount is None",
            )

        sent = await self._send(
            owned, [PaymentOutput(recipient_address, net_amount)], FeePolicy.RECEIVER_PAYS, secret
        )
        logger.info(f"{owner_id} withdrew {net_amount} sompi to {recipient_address}: {sent.tx_id}")
        return SendResult(
            summary=sent.summary,
            tx_id=sent.tx_id,
            amount=net_amount,
            recipient_address=recipient_address,
            via_escrow=False,
            explorer_url=tx_explorer_url(sent.tx_id, self.ctx.network_id),
        )

    async def compound(self, owner_id: str, secret: str) -> SendSummary:
        """Merge the wallet's UTXOs into one."""
        owned = await self._require_open(owner_id)
        try:
            return await owned.wallet.sweep(secret)
        except Exception as exc:
            raise wrap_engine_error(exc, f"compounding wallet of {owner_id}") from exc

    async def claim(self, owner_id: str) -> ClaimReport:
        return await claim(self.ctx, owner_id)

    def explorer_url(self, tx_id: str) -> str:
        return tx_explorer_url(tx_id, self.ctx.network_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _require_open(self, owner_id: str) -> OwnedWallet:
        owned = await self.ctx.get_open(owner_id)
        if owned is not None:
            return owned
        if not await self.ctx.is_initiated(owner_id):
            raise TipError(ErrorKind.NOT_INITIATED, f"Wallet of {owner_id} not initiated yet")
        raise TipError(ErrorKind.NOT_OPEN, f"Wallet of {owner_id} not opened")

    async def _send(
        self,
        owned: OwnedWallet,
        outputs: list[PaymentOutput],
        fee_policy: FeePolicy,
        secret: str,
    ) -> SendSummary:
        try:
            return await owned.wallet.send(outputs, fee_policy, secret)
        except Exception as exc:
            error = wrap_engine_error(exc, f"sending from {owned.owner_identifier}")
            if error.kind is ErrorKind.WALLET_DECRYPT:
                raise error from exc
            raise TipError(ErrorKind.SEND_FAILED, f"Transaction failed: {error.message}", exc) from exc
