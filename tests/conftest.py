"""
Test configuration and fixtures
"""
import asyncio
from pathlib import Path

import pytest

from spectre_tipbot.config import ClaimConfig, SecurityConfig, TipBotConfig
from spectre_tipbot.core.context import TipContext
from spectre_tipbot.engine.base import (
    Balance,
    EngineError,
    FeeEstimate,
    FeePolicy,
    ServerInfo,
    SendSummary,
    WalletDecryptError,
)
from spectre_tipbot.storage.metadata_store import MetadataStore
from spectre_tipbot.storage.models import OwnedWalletMetadata, TransitionWalletMetadata

SECRET = "correct horse battery"
OTHER_SECRET = "another long secret"
NETWORK_FEE = 2_000


class FakeChain:
    """In-memory stand-in for the wallet files and the ledger behind them."""

    def __init__(self):
        self.wallets = {}           # wallet id -> {"secret", "mnemonic", "address"}
        self.balances = {}          # address -> mature sompi
        self.pending = {}           # address -> pending sompi
        self.addresses = {}         # mnemonic -> address
        self.sends = []             # (wallet id, outputs, fee policy)
        self.estimate_calls = 0
        self.sweeps = []
        self.open_handles = {}      # handle id -> wallet id
        self.fail_open = set()
        self.fail_balance = set()
        self.fail_send = set()
        self.fail_create = False
        self.balance_delay = {}     # wallet id -> seconds
        self.send_delay = 0.0
        self.concurrent_balance_reads = 0
        self.max_concurrent_balance_reads = 0
        self._tx_counter = 0

    def address_for(self, mnemonic):
        if mnemonic not in self.addresses:
            self.addresses[mnemonic] = f"spectre:fakeaddr{len(self.addresses):04d}"
        return self.addresses[mnemonic]

    def next_tx_id(self):
        self._tx_counter += 1
        return f"{self._tx_counter:064x}"

    def open_wallet_ids(self):
        return sorted(self.open_handles.values())


class FakeWalletEngine:
    """Wallet engine handle backed by a :class:`FakeChain`."""

    def __init__(self, chain):
        self.chain = chain
        self.wallet_id = None

    def _attach(self, wallet_id):
        self.wallet_id = wallet_id
        self.chain.open_handles[id(self)] = wallet_id

    def _require(self, secret):
        if self.wallet_id is None:
            raise EngineError("wallet is not open")
        if self.chain.wallets[self.wallet_id]["secret"] != secret:
            raise WalletDecryptError("Invalid password")

    @property
    def address(self):
        return self.chain.wallets[self.wallet_id]["address"]

    async def create_wallet(self, secret, wallet_id, mnemonic):
        await asyncio.sleep(0)
        if self.chain.fail_create:
            raise EngineError("storage unavailable")
        if wallet_id in self.chain.wallets:
            raise EngineError(f"wallet {wallet_id} already exists")
        self.chain.wallets[wallet_id] = {
            "secret": secret,
            "mnemonic": mnemonic,
            "address": self.chain.address_for(mnemonic),
        }
        self._attach(wallet_id)

    async def open_wallet(self, secret, wallet_id):
        await asyncio.sleep(0)
        if wallet_id in self.chain.fail_open:
            raise EngineError("wallet file unreadable")
        if wallet_id not in self.chain.wallets:
            raise EngineError(f"wallet {wallet_id} not found")
        if self.chain.wallets[wallet_id]["secret"] != secret:
            raise WalletDecryptError("Invalid password")
        self._attach(wallet_id)

    async def restore_wallet(self, secret, mnemonic, wallet_id):
        await asyncio.sleep(0)
        self.chain.wallets[wallet_id] = {
            "secret": secret,
            "mnemonic": mnemonic,
            "address": self.chain.address_for(mnemonic),
        }
        self._attach(wallet_id)

    async def close_wallet(self):
        self.chain.open_handles.pop(id(self), None)
        self.wallet_id = None

    def receive_address(self):
        return self.address

    async def balance(self):
        chain = self.chain
        chain.concurrent_balance_reads += 1
        chain.max_concurrent_balance_reads = max(
            chain.max_concurrent_balance_reads, chain.concurrent_balance_reads
        )
        try:
            await asyncio.sleep(chain.balance_delay.get(self.wallet_id, 0))
            if self.wallet_id in chain.fail_balance:
                raise EngineError("utxo processor not ready")
            return Balance(
                mature=chain.balances.get(self.address, 0),
                pending=chain.pending.get(self.address, 0),
                mature_utxo_count=1 if chain.balances.get(self.address, 0) else 0,
            )
        finally:
            chain.concurrent_balance_reads -= 1

    async def estimate_fee(self, outputs):
        self.chain.estimate_calls += 1
        total = sum(o.amount for o in outputs)
        return FeeEstimate(final_transaction_amount=total - NETWORK_FEE, fees=NETWORK_FEE)

    async def send(self, outputs, fee_policy, secret):
        self._require(secret)
        await asyncio.sleep(self.chain.send_delay)
        if self.wallet_id in self.chain.fail_send:
            raise EngineError("transaction rejected by node")

        total = sum(o.amount for o in outputs)
        debit = total + NETWORK_FEE if fee_policy is FeePolicy.SENDER_PAYS else total
        available = self.chain.balances.get(self.address, 0)
        if debit > available:
            raise EngineError(f"insufficient funds: {available} < {debit}")

        self.chain.balances[self.address] = available - debit
        for output in outputs:
            credited = output.amount if fee_policy is FeePolicy.SENDER_PAYS else output.amount - NETWORK_FEE
            self.chain.balances[output.address] = self.chain.balances.get(output.address, 0) + credited
        self.chain.sends.append((self.wallet_id, list(outputs), fee_policy))
        tx_id = self.chain.next_tx_id()
        return SendSummary(summary=f"sent {total} sompi", tx_ids=(tx_id,))

    async def sweep(self, secret):
        self._require(secret)
        self.chain.sweeps.append(self.wallet_id)
        return SendSummary(summary="compounded", tx_ids=(self.chain.next_tx_id(),))

    async def change_secret(self, old_secret, new_secret):
        self._require(old_secret)
        self.chain.wallets[self.wallet_id]["secret"] = new_secret

    async def export_mnemonic(self, secret):
        self._require(secret)
        return self.chain.wallets[self.wallet_id]["mnemonic"]


class FakeNode:
    def __init__(self, network_id="mainnet", is_synced=True, has_utxo_index=True):
        self.network_id = network_id
        self.info = ServerInfo(
            is_synced=is_synced,
            version="0.3.16",
            network_id=network_id,
            has_utxo_index=has_utxo_index,
        )
        self.connected_with = None
        self.connect_delay = 0.0
        self.connect_error = None

    async def connect(self, options):
        await asyncio.sleep(self.connect_delay)
        if self.connect_error is not None:
            raise self.connect_error
        self.connected_with = options

    async def get_server_info(self):
        return self.info


# Factories referenced by dotted path from loader and CLI tests.
_CHAINS = {}


def fake_wallet_factory():
    return FakeWalletEngine(_CHAINS.setdefault("default", FakeChain()))


def fake_node_factory(network_id):
    return FakeNode(network_id)


@pytest.fixture(autouse=True)
def _reset_shared_chains():
    _CHAINS.clear()
    yield
    _CHAINS.clear()


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def config(tmp_path):
    return TipBotConfig(
        network="mainnet",
        wallet_data_path=tmp_path / "wallets",
        security=SecurityConfig(min_secret_length=10),
        claim=ClaimConfig(max_concurrency=4, timeout_seconds=5.0),
    )


def make_context(config: TipBotConfig, chain: FakeChain, node=None) -> TipContext:
    data_path = Path(config.wallet_data_path)
    return TipContext(
        network_id=config.network,
        node=node,
        wallet_factory=lambda: FakeWalletEngine(chain),
        owned_wallet_metadata_store=MetadataStore(
            data_path / "owned.json", OwnedWalletMetadata, "owner_identifier", []
        ),
        transition_wallet_metadata_store=MetadataStore(
            data_path / "transitions.json", TransitionWalletMetadata, "identifier", []
        ),
        wallet_data_path=data_path,
        security=config.security,
        claim=config.claim,
    )


@pytest.fixture
def ctx(config, chain):
    return make_context(config, chain, FakeNode())
