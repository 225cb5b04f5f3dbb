from __future__ import annotations

from datetime import datetime, timezone

import base58
import pytest
from nacl.signing import SigningKey
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from tumo_backend.ledger import PointLedger
from tumo_backend.nonces import MemoryNonceStore
from tumo_backend.settlement import EmissionResolver, SettlementEngine
from tumo_backend.solana_rpc import KeypairSigner
from tumo_backend.store import SqliteStore

DAY = "2024-01-01"
DAY_NOON = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc).timestamp()
# the instant DAY closes
DAY_CLOSED = DAY_NOON + 12 * 3600


class FakeClock:
    def __init__(self, t: float = DAY_NOON):
        self.t = float(t)

    def __call__(self) -> float:
        return self.t

    def advance(self, sec: float) -> None:
        self.t += sec


class FakeRpc:
    """Stands in for SolanaLedger: fixed blockhash, configurable existing accounts."""

    def __init__(self, existing=()):
        self.existing = set(existing)
        self.blockhash = Hash.new_unique()
        self.lookups = []

    def latest_blockhash(self) -> Hash:
        return self.blockhash

    def account_exists(self, pubkey: Pubkey) -> bool:
        self.lookups.append(pubkey)
        return pubkey in self.existing


class Wallet:
    def __init__(self):
        self.sk = SigningKey.generate()
        self.pk = base58.b58encode(bytes(self.sk.verify_key)).decode()

    def sign(self, msg: bytes) -> bytes:
        return self.sk.sign(msg).signature


def new_wallet() -> str:
    return str(Keypair().pubkey())


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def store(tmp_path):
    s = SqliteStore(str(tmp_path / "mining.db"))
    s.init()
    return s


@pytest.fixture()
def nonces(clock):
    return MemoryNonceStore(ttl_sec=300, clock=clock)


@pytest.fixture()
def ledger(store, clock):
    # Limits off; rate limiting has its own tests.
    return PointLedger(store, min_interval_sec=0, daily_cap=0, max_points_per_tick=0, clock=clock)


@pytest.fixture()
def engine(store, ledger):
    return SettlementEngine(store, ledger, EmissionResolver(fixed="1000"), decimals=2, clock=FakeClock(DAY_CLOSED))


@pytest.fixture()
def rpc():
    return FakeRpc()


@pytest.fixture()
def signer():
    return KeypairSigner(Keypair())


@pytest.fixture()
def mint():
    return str(Pubkey.new_unique())
