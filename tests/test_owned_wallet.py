import asyncio

import pytest
from mnemonic import Mnemonic

from spectre_tipbot.core.owned_wallet import (
    change_owned_wallet_secret,
    close_owned_wallet,
    create_owned_wallet,
    destroy_owned_wallet,
    export_owned_wallet_mnemonic,
    open_owned_wallet,
    restore_owned_wallet,
)
from spectre_tipbot.errors import ErrorKind, TipError

from conftest import OTHER_SECRET, SECRET, FakeWalletEngine


async def _expect(kind, coro):
    with pytest.raises(TipError) as excinfo:
        await coro
    assert excinfo.value.kind is kind
    return excinfo.value


# ------------------------------------------------------------------
# create
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_registers_and_persists(ctx, chain):
    owned, mnemonic = await create_owned_wallet(ctx, SECRET, "alice")

    assert Mnemonic("english").check(mnemonic)
    assert len(mnemonic.split()) == 12
    assert owned.receive_address == chain.wallets["alice"]["address"]
    assert await ctx.exists_open("alice")
    metadata = await ctx.owned_wallet_metadata_store.find_by_key("alice")
    assert metadata.receive_address == owned.receive_address


@pytest.mark.asyncio
async def test_create_twice_fails_without_touching_state(ctx, chain):
    first, _ = await create_owned_wallet(ctx, SECRET, "alice")

    await _expect(ErrorKind.ALREADY_EXISTS, create_owned_wallet(ctx, SECRET, "alice"))

    assert len(ctx.owned_wallet_metadata_store) == 1
    assert (await ctx.get_open("alice")).wallet is first.wallet


@pytest.mark.asyncio
async def test_create_fails_for_initiated_but_closed_wallet(ctx):
    await create_owned_wallet(ctx, SECRET, "alice")
    await close_owned_wallet(ctx, "alice")

    await _expect(ErrorKind.ALREADY_EXISTS, create_owned_wallet(ctx, SECRET, "alice"))


@pytest.mark.asyncio
async def test_create_rejects_short_secret(ctx, chain):
    await _expect(ErrorKind.INVALID_SECRET, create_owned_wallet(ctx, "short", "alice"))
    assert chain.wallets == {}


@pytest.mark.asyncio
async def test_create_engine_failure_leaves_no_trace(ctx, chain):
    chain.fail_create = True

    error = await _expect(ErrorKind.ENGINE, create_owned_wallet(ctx, SECRET, "alice"))

    assert "storage unavailable" in error.message
    assert not await ctx.exists_open("alice")
    assert not await ctx.is_initiated("alice")
    assert chain.open_handles == {}


# ------------------------------------------------------------------
# open / close
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_open_after_close(ctx, chain):
    created, _ = await create_owned_wallet(ctx, SECRET, "alice")
    assert await close_owned_wallet(ctx, "alice") is True
    assert not await ctx.exists_open("alice")

    opened = await open_owned_wallet(ctx, SECRET, "alice")

    assert opened.receive_address == created.receive_address
    assert await ctx.exists_open("alice")


@pytest.mark.asyncio
async def test_open_unknown_owner(ctx):
    await _expect(ErrorKind.NOT_INITIATED, open_owned_wallet(ctx, SECRET, "nobody"))


@pytest.mark.asyncio
async def test_open_with_wrong_secret(ctx, chain):
    await create_owned_wallet(ctx, SECRET, "alice")
    await close_owned_wallet(ctx, "alice")

    await _expect(ErrorKind.WALLET_DECRYPT, open_owned_wallet(ctx, "wrong secret!!", "alice"))

    assert not await ctx.exists_open("alice")
    assert await ctx.is_initiated("alice")
    assert chain.open_handles == {}


@pytest.mark.asyncio
async def test_open_twice_returns_existing_handle(ctx):
    created, _ = await create_owned_wallet(ctx, SECRET, "alice")

    again = await open_owned_wallet(ctx, SECRET, "alice")

    assert again.wallet is created.wallet


@pytest.mark.asyncio
async def test_close_not_open_is_noop(ctx):
    assert await close_owned_wallet(ctx, "alice") is False


@pytest.mark.asyncio
async def test_concurrent_opens_for_different_owners_overlap(ctx, monkeypatch):
    for owner in ("alice", "bob", "carol"):
        await create_owned_wallet(ctx, SECRET, owner)
        await close_owned_wallet(ctx, owner)

    in_flight = 0
    peak = 0
    original_open = FakeWalletEngine.open_wallet

    async def slow_open(self, secret, wallet_id):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.02)
        in_flight -= 1
        await original_open(self, secret, wallet_id)

    monkeypatch.setattr(FakeWalletEngine, "open_wallet", slow_open)
    await asyncio.gather(*(open_owned_wallet(ctx, SECRET, o) for o in ("alice", "bob", "carol")))

    assert peak == 3
    assert sorted(await ctx.opened_identifiers()) == ["alice", "bob", "carol"]


# ------------------------------------------------------------------
# restore
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_restore_recovers_same_address(ctx, chain):
    created, mnemonic = await create_owned_wallet(ctx, SECRET, "alice")
    await destroy_owned_wallet(ctx, "alice")

    restored = await restore_owned_wallet(ctx, OTHER_SECRET, mnemonic, "alice")

    assert restored.receive_address == created.receive_address
    assert await ctx.exists_open("alice")
    assert (await ctx.owned_wallet_metadata_store.find_by_key("alice")).receive_address == created.receive_address
    assert chain.wallets["alice"]["secret"] == OTHER_SECRET


@pytest.mark.asyncio
async def test_restore_replaces_open_wallet(ctx, chain):
    first, _ = await create_owned_wallet(ctx, SECRET, "alice")
    other_phrase = Mnemonic("english").generate(strength=128)

    restored = await restore_owned_wallet(ctx, SECRET, f"  {other_phrase.upper()} ", "alice")

    assert restored.receive_address != first.receive_address
    assert first.wallet.wallet_id is None  # previous handle closed
    assert len(ctx.owned_wallet_metadata_store) == 1
    assert (await ctx.owned_wallet_metadata_store.find_by_key("alice")).receive_address == restored.receive_address
    assert chain.wallets["alice"]["mnemonic"] == other_phrase


@pytest.mark.asyncio
async def test_restore_rejects_invalid_mnemonic(ctx, chain):
    created, _ = await create_owned_wallet(ctx, SECRET, "alice")

    await _expect(
        ErrorKind.INVALID_MNEMONIC,
        restore_owned_wallet(ctx, SECRET, " ".join(["abandon"] * 12), "alice"),
    )
    await _expect(ErrorKind.INVALID_MNEMONIC, restore_owned_wallet(ctx, SECRET, "abandon abandon", "alice"))

    assert (await ctx.get_open("alice")).wallet is created.wallet


# ------------------------------------------------------------------
# destroy
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_destroy_removes_everything(ctx, chain):
    await create_owned_wallet(ctx, SECRET, "alice")
    wallet_file = ctx.wallet_file("alice")
    wallet_file.parent.mkdir(parents=True, exist_ok=True)
    wallet_file.write_bytes(b"encrypted")

    await destroy_owned_wallet(ctx, "alice")

    assert not await ctx.exists_open("alice")
    assert not await ctx.is_initiated("alice")
    assert not wallet_file.exists()
    assert chain.open_handles == {}
    await _expect(ErrorKind.NOT_INITIATED, open_owned_wallet(ctx, SECRET, "alice"))


@pytest.mark.asyncio
async def test_destroy_unknown_owner(ctx):
    await _expect(ErrorKind.NOT_INITIATED, destroy_owned_wallet(ctx, "nobody"))


@pytest.mark.asyncio
async def test_destroy_closed_wallet_without_key_file(ctx):
    await create_owned_wallet(ctx, SECRET, "alice")
    await close_owned_wallet(ctx, "alice")

    await destroy_owned_wallet(ctx, "alice")

    assert not await ctx.is_initiated("alice")


# ------------------------------------------------------------------
# secret management
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_change_secret(ctx, chain):
    await create_owned_wallet(ctx, SECRET, "alice")

    await change_owned_wallet_secret(ctx, "alice", SECRET, OTHER_SECRET)
    await close_owned_wallet(ctx, "alice")

    await _expect(ErrorKind.WALLET_DECRYPT, open_owned_wallet(ctx, SECRET, "alice"))
    await open_owned_wallet(ctx, OTHER_SECRET, "alice")


@pytest.mark.asyncio
async def test_change_secret_requires_open_wallet_and_valid_secrets(ctx):
    await _expect(ErrorKind.NOT_OPEN, change_owned_wallet_secret(ctx, "alice", SECRET, OTHER_SECRET))

    await create_owned_wallet(ctx, SECRET, "alice")
    await _expect(ErrorKind.INVALID_SECRET, change_owned_wallet_secret(ctx, "alice", SECRET, "short"))
    await _expect(
        ErrorKind.WALLET_DECRYPT, change_owned_wallet_secret(ctx, "alice", "wrong secret!!", OTHER_SECRET)
    )


@pytest.mark.asyncio
async def test_export_mnemonic(ctx):
    _, mnemonic = await create_owned_wallet(ctx, SECRET, "alice")

    assert await export_owned_wallet_mnemonic(ctx, "alice", SECRET) == mnemonic
    await _expect(ErrorKind.WALLET_DECRYPT, export_owned_wallet_mnemonic(ctx, "alice", "wrong secret!!"))

    await close_owned_wallet(ctx, "alice")
    await _expect(ErrorKind.NOT_OPEN, export_owned_wallet_mnemonic(ctx, "alice", SECRET))
    await _expect(ErrorKind.NOT_INITIATED, export_owned_wallet_mnemonic(ctx, "bob", SECRET))
