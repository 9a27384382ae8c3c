"""
Raffle Engine - round state machine, oracle handshake and payout
"""

import time
from contextlib import contextmanager
from threading import RLock
from typing import Any, Callable, Dict, Iterator, List, Optional, Protocol, Sequence, Tuple

from vrf_raffle.raffle.errors import (
    DrawNotStalled,
    NotEnoughFunds,
    OnlyCoordinatorCanFulfill,
    OracleRequestFailed,
    PayoutPending,
    RaffleNotOpen,
    SettlementInProgress,
    TransferFailed,
    UnrecognizedRequest,
    UpkeepNotNeeded,
)
from vrf_raffle.raffle.models import (
    EligibilityDiagnostic,
    RaffleConfig,
    RaffleState,
    RandomnessRequest,
)
from vrf_raffle.utils.common import normalize_address, shorten_eth_address
from vrf_raffle.utils.logger import get_logger

logger = get_logger(__name__)

Notifier = Callable[[str, Dict[str, Any]], None]


class RandomnessOracle(Protocol):
    def request_random_words(self, request: RandomnessRequest) -> int:
        ...


class FundsTransfer(Protocol):
    def transfer(self, destination: str, amount: int) -> bool:
        ...


class RaffleEngine:
    """Recurring raffle driven by an external randomness oracle.

    Entries are accepted while OPEN. ``trigger_draw`` moves the round to
    CALCULATING and asks the oracle for randomness; the oracle later calls
    ``on_randomness_fulfilled`` with the request id it was given, which picks
    the winner, pays out the pool and reopens the raffle.

    Every mutating call runs under one re-entrant lock and either completes or
    leaves the round untouched.
    """

    _ROUND_FIELDS = (
        "_participants",
        "_pool_balance",
        "_state",
        "_pending_request_id",
        "_draw_requested_at",
        "_last_draw_timestamp",
        "_recent_winner",
    )

    def __init__(
        self,
        config: RaffleConfig,
        oracle: RandomnessOracle,
        funds: FundsTransfer,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], float] = time.time,
    ):
        if config.entrance_fee < 0:
            raise ValueError("entrance_fee must not be negative")
        if config.interval < 0:
            raise ValueError("interval must not be negative")
        if config.num_words < 1:
            raise ValueError("num_words must be at least 1")

        self.config = config
        self._oracle = oracle
        self._funds = funds
        self._notifier = notifier
        self._clock = clock

        self._lock = RLock()
        self._settling = False

        self._participants: List[str] = []
        self._pool_balance = 0
        self._state = RaffleState.OPEN
        self._pending_request_id: Optional[int] = None
        self._draw_requested_at: Optional[int] = None
        self._last_draw_timestamp = self._now()
        self._recent_winner: Optional[str] = None
        self._rounds_settled = 0

        logger.info(
            "Raffle engine initialized (entrance fee %s wei, interval %ss)",
            config.entrance_fee,
            config.interval,
        )

    # =============== ENTRY ===============

    def enter(self, participant: str, fee_paid: int) -> None:
        """Add ``participant`` to the current round for ``fee_paid``."""
        player = normalize_address(participant)
        with self._guard():
            if fee_paid < self.config.entrance_fee:
                raise NotEnoughFunds(fee_paid, self.config.entrance_fee)
            if self._state != RaffleState.OPEN:
                raise RaffleNotOpen(self._state)

            self._participants.append(player)
            self._pool_balance += fee_paid
            logger.info(
                "Entry from %s (%s wei), %s players, pool %s wei",
                shorten_eth_address(player),
                fee_paid,
                len(self._participants),
                self._pool_balance,
            )
            self._notify("EnteredRaffle", {"player": player, "amount": fee_paid})

    # =============== DRAW ===============

    def check_eligibility(self) -> Tuple[bool, EligibilityDiagnostic]:
        """Return whether a draw may start now, with the values checked."""
        with self._lock:
            diagnostic = self._evaluate()
        return diagnostic.eligible, diagnostic

    def trigger_draw(self) -> int:
        """Request randomness for the current round and return the request id."""
        with self._guard():
            diagnostic = self._evaluate()
            if not diagnostic.eligible:
                raise UpkeepNotNeeded(
                    diagnostic.balance, diagnostic.participant_count, diagnostic.state
                )

            self._state = RaffleState.CALCULATING
            request = RandomnessRequest.from_config(self.config)
            try:
                request_id = int(self._oracle.request_random_words(request))
            except Exception as exc:
                self._state = RaffleState.OPEN
                logger.error("Randomness request failed: %s", exc)
                raise OracleRequestFailed(f"randomness request failed: {exc}") from exc

            self._pending_request_id = request_id
            self._draw_requested_at = self._now()
            logger.info(
                "Draw requested: request %s for %s players, pool %s wei",
                request_id,
                len(self._participants),
                self._pool_balance,
            )
            self._notify("RequestedRaffleWinner", {"requestId": request_id})
            return request_id

    def on_randomness_fulfilled(
        self,
        request_id: int,
        random_values: Sequence[int],
        sender: Optional[str] = None,
    ) -> str:
        """Settle the round for the pending request; returns the winner.

        If the payout fails nothing is committed: the round stays CALCULATING
        with the same pending request so the delivery can be replayed. A payout
        that raises ``PayoutPending`` was already sent, so the settlement stays
        committed and the notification carries the transaction hash.
        """
        with self._guard():
            coordinator = self.config.coordinator
            if coordinator and (sender is None or sender.lower() != coordinator.lower()):
                logger.warning("Fulfillment from %s rejected, coordinator is %s", sender, coordinator)
                raise OnlyCoordinatorCanFulfill(str(sender), coordinator)

            if self._state != RaffleState.CALCULATING or request_id != self._pending_request_id:
                logger.warning(
                    "Rejected fulfillment for request %s (pending %s, state %s)",
                    request_id,
                    self._pending_request_id,
                    self._state.name,
                )
                raise UnrecognizedRequest(request_id, self._pending_request_id)

            values = list(random_values)
            if not values:
                raise UnrecognizedRequest(
                    request_id, self._pending_request_id, "fulfillment carried no random values"
                )

            index = int(values[0]) % len(self._participants)
            winner = self._participants[index]
            prize = self._pool_balance
            player_count = len(self._participants)
            saved = self._capture()

            self._recent_winner = winner
            self._participants = []
            self._pool_balance = 0
            self._last_draw_timestamp = self._now()
            self._state = RaffleState.OPEN
            self._pending_request_id = None
            self._draw_requested_at = None

            payout_tx = None
            self._settling = True
            try:
                delivered = self._funds.transfer(winner, prize)
            except PayoutPending as exc:
                # sent already; the settlement stays committed
                delivered = True
                payout_tx = exc.tx_hash
                logger.error("Payout to %s unconfirmed (%s); round kept settled", winner, exc.tx_hash)
            except Exception as exc:
                self._restore(saved)
                logger.error("Payout of %s wei to %s raised: %s", prize, winner, exc)
                raise TransferFailed(winner, prize) from exc
            finally:
                self._settling = False

            if not delivered:
                self._restore(saved)
                logger.error("Payout of %s wei to %s was refused", prize, winner)
                raise TransferFailed(winner, prize)

            self._rounds_settled += 1
            logger.info(
                "Round %s settled: winner %s (slot %s of %s), prize %s wei",
                self._rounds_settled,
                winner,
                index,
                player_count,
                prize,
            )
            self._notify(
                "WinnerPicked",
                {
                    "winner": winner,
                    "prizeAmount": prize,
                    "requestId": request_id,
                    "participantCount": player_count,
                    "round": self._rounds_settled,
                    "payoutPending": payout_tx is not None,
                    "payoutTx": payout_tx,
                },
            )
            return winner

    def reopen_stalled_draw(self) -> int:
        """Abandon a request the oracle never answered and reopen entries.

        Participants and pool are kept. A late callback for the abandoned id
        is rejected like any other unknown request.
        """
        with self._guard():
            if self._state != RaffleState.CALCULATING or self._draw_requested_at is None:
                raise DrawNotStalled(None, self.config.draw_timeout)
            pending_for = self._now() - self._draw_requested_at
            if self.config.draw_timeout <= 0 or pending_for < self.config.draw_timeout:
                raise DrawNotStalled(pending_for, self.config.draw_timeout)

            abandoned = self._pending_request_id
            self._state = RaffleState.OPEN
            self._pending_request_id = None
            self._draw_requested_at = None
            logger.warning("Request %s pending for %ss, raffle reopened", abandoned, pending_for)
            self._notify("DrawReopened", {"requestId": abandoned, "pendingFor": pending_for})
            return abandoned

    # =============== QUERIES ===============

    def get_entrance_fee(self) -> int:
        return self.config.entrance_fee

    def get_interval(self) -> int:
        return self.config.interval

    def get_raffle_state(self) -> RaffleState:
        with self._lock:
            return self._state

    def get_player(self, index: int) -> str:
        with self._lock:
            if index < 0 or index >= len(self._participants):
                raise IndexError(f"no player at index {index}")
            return self._participants[index]

    def get_players(self) -> List[str]:
        with self._lock:
            return list(self._participants)

    def get_number_of_players(self) -> int:
        with self._lock:
            return len(self._participants)

    def get_last_timestamp(self) -> int:
        with self._lock:
            return self._last_draw_timestamp

    def get_recent_winner(self) -> Optional[str]:
        with self._lock:
            return self._recent_winner

    def get_pool_balance(self) -> int:
        with self._lock:
            return self._pool_balance

    def get_pending_request_id(self) -> Optional[int]:
        with self._lock:
            return self._pending_request_id

    def get_rounds_settled(self) -> int:
        with self._lock:
            return self._rounds_settled

    def get_status(self) -> Dict[str, Any]:
        """Consistent view of the round for status endpoints."""
        with self._lock:
            diagnostic = self._evaluate()
            return {
                "state": self._state.value,
                "stateLabel": self._state.name,
                "entranceFee": self.config.entrance_fee,
                "interval": self.config.interval,
                "poolBalance": self._pool_balance,
                "playerCount": len(self._participants),
                "lastTimestamp": self._last_draw_timestamp,
                "recentWinner": self._recent_winner,
                "pendingRequestId": self._pending_request_id,
                "drawRequestedAt": self._draw_requested_at,
                "roundsSettled": self._rounds_settled,
                "eligibility": diagnostic.to_dict(),
            }

    # =============== INTERNALS ===============

    @contextmanager
    def _guard(self) -> Iterator[None]:
        with self._lock:
            if self._settling:
                raise SettlementInProgress()
            yield

    def _now(self) -> int:
        return int(self._clock())

    def _evaluate(self) -> EligibilityDiagnostic:
        elapsed = self._now() - self._last_draw_timestamp
        is_open = self._state == RaffleState.OPEN
        time_passed = elapsed >= self.config.interval
        has_players = len(self._participants) > 0
        has_balance = self._pool_balance > 0
        return EligibilityDiagnostic(
            eligible=is_open and time_passed and has_players and has_balance,
            balance=self._pool_balance,
            participant_count=len(self._participants),
            state=self._state,
            time_passed=time_passed,
            seconds_since_last_draw=elapsed,
        )

    def _capture(self) -> Dict[str, Any]:
        saved = {name: getattr(self, name) for name in self._ROUND_FIELDS}
        saved["_participants"] = list(self._participants)
        return saved

    def _restore(self, saved: Dict[str, Any]) -> None:
        for name, value in saved.items():
            setattr(self, name, value)

    def _notify(self, event_type: str, details: Dict[str, Any]) -> None:
        if self._notifier is None:
            return
        payload = dict(details)
        payload.setdefault("timestamp", self._now())
        payload.setdefault("round", self._rounds_settled + 1)
        self._notifier(event_type, payload)
