"""Tests for application wiring in local oracle mode."""

import asyncio

import pytest

from vrf_raffle.main import RaffleKeeperApp
from vrf_raffle.raffle.models import RaffleState

from tests.conftest import ALICE


def local_config(**oracle):
    return {
        "raffle": {"network": "local", "entrance_fee": 10, "interval": 0},
        "oracle": {"mode": "local", **oracle},
        "server": {"live_feed_max_entries": 5},
    }


def test_local_mode_wiring_settles_a_round():
    app = RaffleKeeperApp(local_config())

    async def scenario():
        await app.initialize()
        app.engine.enter(ALICE, 10)
        request_id = app.engine.trigger_draw()
        return app.local_oracle.fulfill(request_id)

    winner = asyncio.run(scenario())

    assert winner == ALICE
    assert app.engine.config.coordinator == app.local_oracle.address
    assert app.ledger.balance_of(ALICE) == 10
    assert app.engine.get_raffle_state() == RaffleState.OPEN
    assert app.store.get_event_count("WinnerPicked") == 1
    assert app.bridge is None


def test_fixed_signing_key_is_used():
    seed = "11" * 32
    app = RaffleKeeperApp(local_config(signing_key=seed))

    asyncio.run(app.initialize())

    expected = RaffleKeeperApp(local_config(signing_key=seed))
    asyncio.run(expected.initialize())
    assert app.local_oracle.prover.public_key_hex() == expected.local_oracle.prover.public_key_hex()


def test_unknown_oracle_mode_rejected():
    app = RaffleKeeperApp(local_config(mode="carrier-pigeon"))
    with pytest.raises(ValueError):
        asyncio.run(app.initialize())


def test_store_capacities_come_from_server_config():
    config = local_config()
    config["server"]["round_history_max"] = 1
    app = RaffleKeeperApp(config)

    for round_number in range(1, 8):
        app.store.notify("WinnerPicked", {"winner": ALICE, "round": round_number, "requestId": round_number})

    assert len(app.store.get_live_feed()) == 5
    assert [s.round_number for s in app.store.get_round_history()] == [7]
