"""
Randomness oracle integrations.

``LocalRandomnessOracle`` answers requests in-process with signed randomness
proofs. ``ChainRandomnessOracle`` submits requests to an on-chain coordinator
and ``OracleBridge`` polls that coordinator for fulfillments and hands each
payload, unchanged, to the engine callback.
"""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Dict, List, Optional

from vrf_raffle.blockchain.client import BlockchainClient, FulfillmentEvent
from vrf_raffle.raffle.engine import RaffleEngine
from vrf_raffle.raffle.errors import (
    OnlyCoordinatorCanFulfill,
    RaffleError,
    TransferFailed,
    UnrecognizedRequest,
)
from vrf_raffle.raffle.models import RandomnessRequest
from vrf_raffle.utils.common import normalize_address
from vrf_raffle.utils.crypto import RandomnessProver, request_seed
from vrf_raffle.utils.logger import get_logger

logger = get_logger(__name__)

# Well-known address the local oracle signs its deliveries with.
LOCAL_COORDINATOR_ADDRESS = "0x000000000000000000000000000000000000f1F0"

Consumer = Callable[[int, List[int], str], Any]


class OracleError(Exception):
    """Raised by an oracle for requests it cannot serve."""


@dataclass
class FulfillmentProof:
    request_id: int
    seed: str
    proof: str
    random_words: List[int]
    public_key: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "requestId": self.request_id,
            "seed": self.seed,
            "proof": self.proof,
            "randomWords": [str(word) for word in self.random_words],
            "publicKey": self.public_key,
        }


class LocalRandomnessOracle:
    """In-process oracle with Ed25519-backed randomness.

    Requests stay pending until ``fulfill`` is called, either by hand or,
    when ``auto_fulfill_delay`` is set, by a timer on the bound event loop.
    A request whose delivery raises stays pending so it can be replayed,
    unless the consumer rejected it outright. Only the newest
    ``proof_capacity`` proofs are kept.
    """

    def __init__(
        self,
        prover: Optional[RandomnessProver] = None,
        address: str = LOCAL_COORDINATOR_ADDRESS,
        auto_fulfill_delay: Optional[float] = None,
        proof_capacity: int = 256,
    ):
        self.prover = prover or RandomnessProver()
        self.address = normalize_address(address)
        self.auto_fulfill_delay = auto_fulfill_delay
        self.proof_capacity = proof_capacity
        self._lock = Lock()
        self._next_request_id = 1
        self._pending: Dict[int, RandomnessRequest] = {}
        self._proofs: "OrderedDict[int, FulfillmentProof]" = OrderedDict()
        self._consumer: Optional[Consumer] = None
        self._consumer_address = ""
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def attach(self, consumer: Consumer, consumer_address: str = "") -> None:
        """Register the callback that receives fulfillments."""
        self._consumer = consumer
        self._consumer_address = consumer_address
        logger.info("Local oracle %s delivering to %s", self.address, consumer_address or "engine")

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def request_random_words(self, request: RandomnessRequest) -> int:
        with self._lock:
            request_id = self._next_request_id
            self._next_request_id += 1
            self._pending[request_id] = request
        logger.info("Local oracle accepted request %s (%s words)", request_id, request.num_words)

        if self.auto_fulfill_delay is not None:
            if self._loop is None:
                logger.warning("Auto fulfillment requested but no event loop bound; request %s stays pending", request_id)
            else:
                self._loop.call_soon_threadsafe(
                    self._loop.call_later, self.auto_fulfill_delay, self._dispatch_auto_fulfill, request_id
                )
        return request_id

    def fulfill(self, request_id: int) -> Any:
        """Generate the words for ``request_id`` and deliver them."""
        if self._consumer is None:
            raise OracleError("no consumer attached")
        with self._lock:
            request = self._pending.get(request_id)
        if request is None:
            raise OracleError(f"unknown request {request_id}")

        proof = self._proofs.get(request_id)
        if proof is None:
            seed = request_seed(request_id, request.key_hash, self._consumer_address)
            signature, words = self.prover.prove(seed, request.num_words)
            proof = FulfillmentProof(
                request_id=request_id,
                seed=seed.hex(),
                proof=signature.hex(),
                random_words=words,
                public_key=self.prover.public_key_hex(),
            )
            with self._lock:
                self._proofs[request_id] = proof
                while len(self._proofs) > self.proof_capacity:
                    self._proofs.popitem(last=False)

        try:
            result = self._consumer(request_id, list(proof.random_words), self.address)
        except (UnrecognizedRequest, OnlyCoordinatorCanFulfill):
            # the consumer will never accept this request again
            with self._lock:
                self._pending.pop(request_id, None)
                self._proofs.pop(request_id, None)
            logger.warning("Local oracle dropped request %s, consumer rejected it", request_id)
            raise
        with self._lock:
            self._pending.pop(request_id, None)
        logger.info("Local oracle fulfilled request %s", request_id)
        return result

    def _dispatch_auto_fulfill(self, request_id: int) -> None:
        # delivery takes the engine lock; keep it off the event loop
        self._loop.run_in_executor(None, self._auto_fulfill, request_id)

    def _auto_fulfill(self, request_id: int) -> None:
        try:
            self.fulfill(request_id)
        except (RaffleError, OracleError) as exc:
            logger.error("Automatic fulfillment of request %s failed: %s", request_id, exc)

    def pending_requests(self) -> List[int]:
        with self._lock:
            return sorted(self._pending)

    def get_proof(self, request_id: int) -> Optional[FulfillmentProof]:
        return self._proofs.get(request_id)


class ChainRandomnessOracle:
    """Submits randomness requests to the on-chain coordinator."""

    def __init__(self, client: BlockchainClient):
        self._client = client
        self.address = client.coordinator_address

    def request_random_words(self, request: RandomnessRequest) -> int:
        return self._client.request_random_words(
            request.key_hash,
            request.subscription_id,
            request.request_confirmations,
            request.callback_gas_limit,
            request.num_words,
        )


class OracleBridge:
    """Polls coordinator fulfillments and delivers them to the engine.

    Deliveries that fail with ``TransferFailed`` are kept and replayed on the
    next poll; rejected (foreign or stale) deliveries are logged and dropped.
    """

    def __init__(self, client: BlockchainClient, engine: RaffleEngine, config: Optional[Dict[str, Any]] = None):
        self.client = client
        self.engine = engine
        oracle_cfg = (config or {}).get("oracle", {})
        self._poll_interval = float(oracle_cfg.get("poll_interval_sec", 2.0))
        self._start_block_offset = int(oracle_cfg.get("start_block_offset", 500))
        self._from_block: Optional[int] = None
        self._retry: Dict[int, FulfillmentEvent] = {}
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self.delivered = 0
        self.rejected = 0

    async def initialize(self) -> None:
        latest = await self.client.get_latest_block()
        self._from_block = max(0, latest - self._start_block_offset)
        logger.info("Oracle bridge starting from block %s", self._from_block)

    async def start(self) -> None:
        if self._task is not None:
            logger.warning("Oracle bridge already running")
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run(), name="oracle-bridge")

    async def stop(self) -> None:
        self._stop_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Oracle bridge stopped")

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error("Oracle bridge poll failed: %s", exc)
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._poll_interval)
            except asyncio.TimeoutError:
                pass

    async def poll_once(self) -> int:
        """Fetch new fulfillments and deliver them; returns how many settled."""
        if self._from_block is None:
            await self.initialize()
        # fetch before draining: a failed fetch must leave the replay queue intact
        fetched = await self.client.get_fulfillment_events(self._from_block)
        events = list(self._retry.values())
        self._retry.clear()
        events.extend(fetched)

        settled = 0
        for event in events:
            self._from_block = max(self._from_block, event.block_number + 1)
            if await self._deliver(event):
                settled += 1
        return settled

    async def _deliver(self, event: FulfillmentEvent) -> bool:
        try:
            await asyncio.to_thread(
                self.engine.on_randomness_fulfilled,
                event.request_id,
                event.random_words,
                event.sender,
            )
        except (UnrecognizedRequest, OnlyCoordinatorCanFulfill) as exc:
            self.rejected += 1
            logger.warning("Fulfillment %s from block %s rejected: %s", event.request_id, event.block_number, exc)
            return False
        except TransferFailed as exc:
            self._retry[event.request_id] = event
            logger.error("Fulfillment %s kept for replay: %s", event.request_id, exc)
            return False
        self.delivered += 1
        return True
