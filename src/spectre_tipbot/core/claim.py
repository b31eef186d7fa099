"""Consolidate escrow balances into the recipient's own wallet.

Each escrow addressed to the target is handled independently: one escrow
failing to open, estimate or send never aborts its siblings, and the
outcome of every escrow is reported back to the caller.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from spectre_tipbot.core.context import TipContext
from spectre_tipbot.core.transition_wallet import (
    TransitionWallet,
    escrows_for,
    open_from_metadata,
)
from spectre_tipbot.engine.base import FeePolicy, PaymentOutput
from spectre_tipbot.errors import ErrorKind, TipError, wrap_engine_error
from spectre_tipbot.storage.models import TransitionWalletMetadata

logger = logging.getLogger("spectre_tipbot.claim")


class ClaimStatus(str, Enum):
    CLAIMED = "claimed"
    SKIPPED = "skipped"   # nothing mature to move
    FAILED = "failed"


@dataclass(frozen=True)
class ClaimOutcome:
    """Result of consolidating a single escrow wallet."""

    source_identifier: str
    initiator_identifier: str
    status: ClaimStatus
    balance: int = 0
    amount: int = 0
    fee: int = 0
    tx_id: Optional[str] = None
    summary: Optional[str] = None
    error: Optional[TipError] = None

    @property
    def reason(self) -> str:
        return self.error.message if self.error is not None else ""


@dataclass(frozen=True)
class ClaimReport:
    target_identifier: str
    receive_address: str
    outcomes: tuple[ClaimOutcome, ...]

    def _with(self, status: ClaimStatus) -> tuple[ClaimOutcome, ...]:
        return tuple(o for o in self.outcomes if o.status is status)

    @property
    def claimed(self) -> tuple[ClaimOutcome, ...]:
        return self._with(ClaimStatus.CLAIMED)

    @property
    def failed(self) -> tuple[ClaimOutcome, ...]:
        return self._with(ClaimStatus.FAILED)

    @property
    def skipped(self) -> tuple[ClaimOutcome, ...]:
        return self._with(ClaimStatus.SKIPPED)

    @property
    def total_balance(self) -> int:
        return sum(o.balance for o in self.outcomes)

    @property
    def total_claimed(self) -> int:
        return sum(o.amount for o in self.claimed)

    @property
    def fully_claimed(self) -> bool:
        return not self.failed


async def claim(ctx: TipContext, target_identifier: str) -> ClaimReport:
    """Move every mature escrow balance addressed to ``target_identifier``
    into the target's opened wallet.

    Escrows are processed concurrently, at most ``ctx.claim.max_concurrency``
    at a time. Escrows still in flight when ``ctx.claim.timeout_seconds``
    elapses are cancelled and reported as failed; a transaction already
    broadcast by then stays broadcast. Cancelling the claim itself cancels
    every escrow not yet finished before the cancellation propagates.

    Raises
    ------
    TipError
        ``NOT_OPEN`` if the target's wallet is not opened,
        ``NO_FUNDS_TO_CLAIM`` if every escrow could be read and none holds
        a mature balance. Nothing is sent in either case.
    """
    owned = await ctx.get_open(target_identifier)
    if owned is None:
        raise TipError(ErrorKind.NOT_OPEN, f"Wallet of {target_identifier} is not opened")

    records = await escrows_for(ctx, target_identifier)
    semaphore = asyncio.Semaphore(ctx.claim.max_concurrency)

    submitted: dict[str, int] = {}  # escrow identifier -> mature balance being sent

    async def _bounded(metadata: TransitionWalletMetadata) -> ClaimOutcome:
        async with semaphore:
            return await _claim_source(ctx, metadata, owned.receive_address, submitted)

    results = await _gather_until(
        {m.identifier: _bounded(m) for m in records}, ctx.claim.timeout_seconds or None
    )
    outcomes = tuple(
        result
        if isinstance(result, ClaimOutcome)
        else _unfinished(metadata, result, submitted.get(metadata.identifier))
        for metadata, result in ((m, results[m.identifier]) for m in records)
    )

    if all(o.status is ClaimStatus.SKIPPED for o in outcomes):
        raise TipError(
            ErrorKind.NO_FUNDS_TO_CLAIM,
            f"No coins stored in the transition wallets of {target_identifier}",
        )

    report = ClaimReport(target_identifier, owned.receive_address, outcomes)
    logger.info(
        f"Claim for {target_identifier}: {len(report.claimed)} claimed, "
        f"{len(report.skipped)} skipped, {len(report.failed)} failed, "
        f"{report.total_claimed} sompi forwarded"
    )
    return report


async def _claim_source(
    ctx: TipContext,
    metadata: TransitionWalletMetadata,
    receive_address: str,
    submitted: dict[str, int],
) -> ClaimOutcome:
    """Open one escrow, read its mature balance and forward it."""
    try:
        escrow = await open_from_metadata(ctx, metadata)
    except TipError as exc:
        logger.warning(f"Cannot open escrow {metadata.identifier}: {exc}")
        return _failed(metadata, exc)

    try:
        try:
            balance = await escrow.wallet.balance()
        except Exception as exc:
            error = wrap_engine_error(exc, f"reading balance of escrow {metadata.identifier}")
            logger.warning(str(error))
            return _failed(metadata, error)

        if balance.mature <= 0:
            return ClaimOutcome(
                metadata.identifier, metadata.initiator_identifier, ClaimStatus.SKIPPED
            )
        return await _forward(escrow, metadata, balance.mature, receive_address, submitted)
    finally:
        await _release(escrow)


async def _forward(
    escrow: TransitionWallet,
    metadata: TransitionWalletMetadata,
    mature: int,
    receive_address: str,
    submitted: dict[str, int],
) -> ClaimOutcome:
    wallet = escrow.wallet
    try:
        estimate = await wallet.estimate_fee([PaymentOutput(receive_address, mature)])
    except Exception as exc:
        error = wrap_engine_error(exc, f"estimating fees of escrow {metadata.identifier}")
        logger.warning(str(error))
        return _failed(metadata, error, mature)

    forward_amount = estimate.final_transaction_amount
    if forward_amount is None:
        return _failed(
            metadata,
            TipError(
                ErrorKind.SEND_FAILED,
                "While estimating the transaction fees, final_transaction_amount is None",
            ),
            mature,
        )
    if forward_amount <= 0:
        return _failed(
            metadata,
            TipError(ErrorKind.SEND_FAILED, "Escrow balance does not cover the network fee"),
            mature,
        )

    logger.info(f"sending {forward_amount} sompi from {escrow.receive_address} to {receive_address}")
    submitted[metadata.identifier] = mature
    try:
        sent = await wallet.send(
            [PaymentOutput(receive_address, forward_amount)],
            FeePolicy.SENDER_PAYS,
            metadata.secret,
        )
    except Exception as exc:
        cause = wrap_engine_error(exc, f"sending from escrow {metadata.identifier}")
        logger.warning(str(cause))
        return _failed(metadata, TipError(ErrorKind.SEND_FAILED, cause.message, exc), mature)

    return ClaimOutcome(
        metadata.identifier,
        metadata.initiator_identifier,
        ClaimStatus.CLAIMED,
        balance=mature,
        amount=forward_amount,
        fee=mature - forward_amount,
        tx_id=sent.tx_id,
        summary=sent.summary,
    )


async def _gather_until(coros: dict, timeout: float | None) -> dict:
    """Run ``coros`` concurrently for at most ``timeout`` seconds.

    Returns each key's result, the exception it raised, an
    ``asyncio.TimeoutError`` for tasks still running when time ran out
    (those are cancelled) or an ``asyncio.CancelledError`` for tasks that
    ended cancelled. If the caller is cancelled, every unfinished task is
    cancelled and awaited before the cancellation propagates.
    """
    tasks = {key: asyncio.ensure_future(coro) for key, coro in coros.items()}
    if not tasks:
        return {}

    try:
        _, pending = await asyncio.wait(tasks.values(), timeout=timeout)
    except asyncio.CancelledError:
        await _cancel_all(tasks.values())
        raise
    await _cancel_all(pending)

    results: dict = {}
    for key, task in tasks.items():
        if task in pending:
            results[key] = asyncio.TimeoutError()
        elif task.cancelled():
            results[key] = asyncio.CancelledError()
        elif task.exception() is not None:
            results[key] = task.exception()
        else:
            results[key] = task.result()
    return results


async def _cancel_all(tasks) -> None:
    unfinished = [task for task in tasks if not task.done()]
    for task in unfinished:
        task.cancel()
    if unfinished:
        await asyncio.gather(*unfinished, return_exceptions=True)


def _unfinished(
    metadata: TransitionWalletMetadata, error: BaseException, submitted: Optional[int]
) -> ClaimOutcome:
    """Outcome of an escrow that timed out, was cancelled or raised."""
    if isinstance(error, (asyncio.TimeoutError, asyncio.CancelledError)):
        stopped = "Timed out" if isinstance(error, asyncio.TimeoutError) else "Cancelled"
        if submitted is None:
            message = f"{stopped} waiting for the escrow wallet"
        else:
            message = f"{stopped} after the transaction was submitted; it may have been broadcast"
        logger.warning(f"Escrow {metadata.identifier}: {message}")
        return _failed(metadata, TipError(ErrorKind.SEND_FAILED, message), submitted or 0)
    return _failed(metadata, error)


def _failed(
    metadata: TransitionWalletMetadata, error: BaseException, balance: int = 0
) -> ClaimOutcome:
    tip_error = error if isinstance(error, TipError) else wrap_engine_error(error)
    return ClaimOutcome(
        metadata.identifier,
        metadata.initiator_identifier,
        ClaimStatus.FAILED,
        balance=balance,
        error=tip_error,
    )


async def _release(escrow: TransitionWallet) -> None:
    try:
        await escrow.close()
    except TipError as exc:
        logger.warning(str(exc))
