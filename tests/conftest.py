"""Shared fixtures: controllable clock, scripted oracle and payout targets."""

import os

os.environ.setdefault("LOG_FILE", "off")

import pytest

from vrf_raffle.raffle.engine import RaffleEngine
from vrf_raffle.raffle.event_manager import MemoryStore
from vrf_raffle.raffle.ledger import InMemoryLedger
from vrf_raffle.raffle.models import RaffleConfig
from vrf_raffle.utils.common import normalize_address

ENTRANCE_FEE = 10**16
INTERVAL = 30
COORDINATOR = normalize_address("0x" + "c0" * 20)

ALICE = normalize_address("0x" + "11" * 20)
BOB = normalize_address("0x" + "22" * 20)
CAROL = normalize_address("0x" + "33" * 20)


class FakeClock:
    def __init__(self, start: int = 1_700_000_000):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


class ScriptedOracle:
    """Hands out sequential request ids and records every request."""

    def __init__(self, first_id: int = 100):
        self.next_id = first_id
        self.requests = []
        self.fail_with = None

    def request_random_words(self, request):
        if self.fail_with is not None:
            raise self.fail_with
        self.requests.append(request)
        request_id = self.next_id
        self.next_id += 1
        return request_id


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def oracle():
    return ScriptedOracle()


@pytest.fixture
def ledger():
    return InMemoryLedger()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def raffle_config():
    return RaffleConfig(
        entrance_fee=ENTRANCE_FEE,
        interval=INTERVAL,
        coordinator=COORDINATOR,
        draw_timeout=600,
    )


@pytest.fixture
def engine(raffle_config, oracle, ledger, store, clock):
    return RaffleEngine(raffle_config, oracle, ledger, notifier=store.notify, clock=clock)


@pytest.fixture
def calculating_engine(engine, clock):
    """Engine with ALICE and BOB entered and a draw in flight (request 100)."""
    engine.enter(ALICE, ENTRANCE_FEE)
    engine.enter(BOB, ENTRANCE_FEE)
    clock.advance(INTERVAL + 1)
    engine.trigger_draw()
    return engine
