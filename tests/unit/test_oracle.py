"""Tests for randomness proofs, the local oracle and the coordinator bridge."""

import asyncio

import pytest

from vrf_raffle.blockchain.client import FulfillmentEvent
from vrf_raffle.raffle.engine import RaffleEngine
from vrf_raffle.raffle.errors import TransferFailed, UnrecognizedRequest
from vrf_raffle.raffle.models import RaffleConfig, RaffleState, RandomnessRequest
from vrf_raffle.raffle.oracle import (
    ChainRandomnessOracle,
    LocalRandomnessOracle,
    OracleBridge,
    OracleError,
)
from vrf_raffle.utils.crypto import (
    RandomnessProofError,
    RandomnessProver,
    expand_words,
    request_seed,
    verify_randomness,
)

from tests.conftest import ALICE, BOB, CAROL, COORDINATOR, ENTRANCE_FEE, INTERVAL


SEED_HEX = "9d61b19deffd5a60ba844af492ec2cc44449c5697b326919703bac031cae7f60"


class TestRandomnessProofs:
    def test_proof_verifies_and_reproduces_words(self):
        prover = RandomnessProver.from_seed_hex(SEED_HEX)
        seed = request_seed(1, "0x" + "ab" * 32, ALICE)

        proof, words = prover.prove(seed, 3)

        assert len(words) == 3
        assert all(0 <= word < 2**256 for word in words)
        assert verify_randomness(prover.public_key_hex(), seed, proof, 3) == words

    def test_same_key_same_seed_same_words(self):
        seed = request_seed(7, "0x00", BOB)
        first = RandomnessProver.from_seed_hex(SEED_HEX).prove(seed)
        second = RandomnessProver.from_seed_hex("0x" + SEED_HEX).prove(seed)
        assert first == second

    def test_seed_bound_to_request(self):
        assert request_seed(1, "0x00", ALICE) != request_seed(2, "0x00", ALICE)
        assert request_seed(1, "0x00", ALICE) == request_seed(1, "0x00", ALICE.lower())

    def test_tampered_proof_rejected(self):
        prover = RandomnessProver()
        seed = request_seed(1, "0x00", ALICE)
        proof, _ = prover.prove(seed)
        tampered = bytes([proof[0] ^ 0x01]) + proof[1:]

        with pytest.raises(RandomnessProofError):
            verify_randomness(prover.public_key_hex(), seed, tampered)

    def test_words_are_independent(self):
        words = expand_words(b"\x01" * 64, 2)
        assert words[0] != words[1]


@pytest.fixture
def local_setup(ledger, clock):
    oracle = LocalRandomnessOracle(prover=RandomnessProver.from_seed_hex(SEED_HEX))
    config = RaffleConfig(
        entrance_fee=ENTRANCE_FEE, interval=INTERVAL, coordinator=oracle.address, draw_timeout=600
    )
    engine = RaffleEngine(config, oracle, ledger, clock=clock)
    oracle.attach(engine.on_randomness_fulfilled, "raffle-engine")
    engine.enter(ALICE, ENTRANCE_FEE)
    engine.enter(BOB, ENTRANCE_FEE)
    clock.advance(INTERVAL)
    return oracle, engine


class TestLocalRandomnessOracle:
    def test_request_ids_are_sequential(self, local_setup, clock):
        oracle, engine = local_setup
        assert engine.trigger_draw() == 1
        assert oracle.pending_requests() == [1]

    def test_fulfill_settles_round_with_proved_words(self, local_setup, ledger):
        oracle, engine = local_setup
        request_id = engine.trigger_draw()

        winner = oracle.fulfill(request_id)

        proof = oracle.get_proof(request_id)
        expected = verify_randomness(
            proof.public_key, bytes.fromhex(proof.seed), bytes.fromhex(proof.proof), 1
        )
        assert winner == [ALICE, BOB][expected[0] % 2]
        assert ledger.balance_of(winner) == 2 * ENTRANCE_FEE
        assert engine.get_raffle_state() == RaffleState.OPEN
        assert oracle.pending_requests() == []
        assert proof.to_dict()["randomWords"] == [str(expected[0])]

    def test_unknown_request_rejected(self, local_setup):
        oracle, _ = local_setup
        with pytest.raises(OracleError):
            oracle.fulfill(42)

    def test_fulfill_without_consumer_rejected(self):
        with pytest.raises(OracleError):
            LocalRandomnessOracle().fulfill(1)

    def test_failed_payout_keeps_request_pending(self, local_setup, ledger):
        oracle, engine = local_setup
        request_id = engine.trigger_draw()
        ledger.block(ALICE)
        ledger.block(BOB)

        with pytest.raises(TransferFailed):
            oracle.fulfill(request_id)
        assert oracle.pending_requests() == [request_id]
        first_proof = oracle.get_proof(request_id)

        ledger.unblock(ALICE)
        ledger.unblock(BOB)
        oracle.fulfill(request_id)

        assert oracle.get_proof(request_id) is first_proof
        assert engine.get_rounds_settled() == 1

    def test_auto_fulfill_on_bound_loop(self, local_setup):
        oracle, engine = local_setup
        oracle.auto_fulfill_delay = 0

        async def scenario():
            oracle.bind_loop(asyncio.get_running_loop())
            engine.trigger_draw()
            for _ in range(20):
                await asyncio.sleep(0.01)
                if engine.get_raffle_state() == RaffleState.OPEN:
                    break

        asyncio.run(scenario())
        assert engine.get_rounds_settled() == 1

    def test_request_dropped_once_consumer_rejects_it(self, local_setup, clock):
        oracle, engine = local_setup
        request_id = engine.trigger_draw()
        clock.advance(600)
        engine.reopen_stalled_draw()

        with pytest.raises(UnrecognizedRequest):
            oracle.fulfill(request_id)

        assert oracle.pending_requests() == []
        assert oracle.get_proof(request_id) is None
        with pytest.raises(OracleError):
            oracle.fulfill(request_id)

    def test_only_newest_proofs_kept(self, local_setup, clock):
        oracle, engine = local_setup
        oracle.proof_capacity = 1
        first = engine.trigger_draw()
        oracle.fulfill(first)

        engine.enter(CAROL, ENTRANCE_FEE)
        clock.advance(INTERVAL)
        second = engine.trigger_draw()
        oracle.fulfill(second)

        assert oracle.get_proof(first) is None
        assert oracle.get_proof(second).request_id == second


class FakeCoordinatorClient:
    """Serves queued fulfillment events once each."""

    def __init__(self, latest_block=1000):
        self.latest_block = latest_block
        self.queued = []
        self.queried_from = []

    async def get_latest_block(self):
        return self.latest_block

    async def get_fulfillment_events(self, from_block):
        self.queried_from.append(from_block)
        events, self.queued = self.queued, []
        return events


class FlakyCoordinatorClient(FakeCoordinatorClient):
    """Fails the next fetch when asked to."""

    fail_next = False

    async def get_fulfillment_events(self, from_block):
        if self.fail_next:
            self.fail_next = False
            raise ConnectionError("rpc unavailable")
        return await super().get_fulfillment_events(from_block)


def fulfillment(request_id, words, sender=COORDINATOR, block=1001):
    return FulfillmentEvent(
        request_id=request_id,
        random_words=words,
        sender=sender,
        block_number=block,
        transaction_hash="0x" + "ee" * 32,
    )


class TestOracleBridge:
    def test_initialize_starts_behind_latest_block(self, calculating_engine):
        client = FakeCoordinatorClient(latest_block=1000)
        bridge = OracleBridge(client, calculating_engine, {"oracle": {"start_block_offset": 100}})

        asyncio.run(bridge.initialize())
        asyncio.run(bridge.poll_once())

        assert client.queried_from == [900]

    def test_delivers_matching_fulfillment(self, calculating_engine, ledger):
        client = FakeCoordinatorClient()
        client.queued = [fulfillment(100, [1])]
        bridge = OracleBridge(client, calculating_engine, {})

        settled = asyncio.run(bridge.poll_once())

        assert settled == 1
        assert bridge.delivered == 1
        assert ledger.balance_of(BOB) == 2 * ENTRANCE_FEE

    def test_foreign_and_stale_fulfillments_dropped(self, calculating_engine):
        client = FakeCoordinatorClient()
        client.queued = [fulfillment(100, [1], sender=CAROL), fulfillment(55, [1])]
        bridge = OracleBridge(client, calculating_engine, {})

        settled = asyncio.run(bridge.poll_once())

        assert settled == 0
        assert bridge.rejected == 2
        assert calculating_engine.get_raffle_state() == RaffleState.CALCULATING

    def test_failed_payout_replayed_on_next_poll(self, calculating_engine, ledger):
        client = FakeCoordinatorClient()
        client.queued = [fulfillment(100, [1], block=1005)]
        bridge = OracleBridge(client, calculating_engine, {})
        ledger.block(BOB)

        assert asyncio.run(bridge.poll_once()) == 0
        assert calculating_engine.get_pending_request_id() == 100

        ledger.unblock(BOB)
        assert asyncio.run(bridge.poll_once()) == 1
        assert ledger.balance_of(BOB) == 2 * ENTRANCE_FEE
        assert client.queried_from[-1] == 1006

    def test_failed_fetch_keeps_pending_replays(self, calculating_engine, ledger):
        client = FlakyCoordinatorClient()
        client.queued = [fulfillment(100, [1], block=1005)]
        bridge = OracleBridge(client, calculating_engine, {})
        ledger.block(BOB)
        assert asyncio.run(bridge.poll_once()) == 0

        ledger.unblock(BOB)
        client.fail_next = True
        with pytest.raises(ConnectionError):
            asyncio.run(bridge.poll_once())
        assert calculating_engine.get_pending_request_id() == 100

        assert asyncio.run(bridge.poll_once()) == 1
        assert ledger.balance_of(BOB) == 2 * ENTRANCE_FEE
        assert calculating_engine.get_raffle_state() == RaffleState.OPEN


class TestChainRandomnessOracle:
    def test_request_forwarded_to_coordinator(self, raffle_config):
        class RecordingClient:
            coordinator_address = COORDINATOR

            def __init__(self):
                self.calls = []

            def request_random_words(self, *args):
                self.calls.append(args)
                return 77

        client = RecordingClient()
        oracle = ChainRandomnessOracle(client)

        request_id = oracle.request_random_words(RandomnessRequest.from_config(raffle_config))

        assert request_id == 77
        assert oracle.address == COORDINATOR
        assert client.calls == [(raffle_config.key_hash, 0, 3, 500000, 1)]
