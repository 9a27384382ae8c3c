"""Raffle error taxonomy.

Every failure the engine reports is a ``RaffleError`` subclass. Each one carries
the values a caller needs to decide what to do next, and ``to_dict`` renders
them for the HTTP layer.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from vrf_raffle.raffle.models import RaffleState


class RaffleError(Exception):
    """Base class for raffle failures."""

    def to_dict(self) -> Dict[str, Any]:
        return {"error": type(self).__name__, "detail": str(self)}


class NotEnoughFunds(RaffleError):
    def __init__(self, fee_paid: int, entrance_fee: int):
        self.fee_paid = fee_paid
        self.entrance_fee = entrance_fee
        super().__init__(f"fee {fee_paid} is below entrance fee {entrance_fee}")

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(feePaid=self.fee_paid, entranceFee=self.entrance_fee)
        return data


class RaffleNotOpen(RaffleError):
    def __init__(self, state: RaffleState):
        self.state = state
        super().__init__(f"raffle is {state.name}, not accepting entries")


class UpkeepNotNeeded(RaffleError):
    """Draw attempted while ineligible; carries the values that were checked."""

    def __init__(self, balance: int, participant_count: int, state: RaffleState):
        self.balance = balance
        self.participant_count = participant_count
        self.state = state
        super().__init__(
            f"upkeep not needed (balance={balance}, players={participant_count}, state={state.name})"
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(
            balance=self.balance,
            participantCount=self.participant_count,
            state=self.state.value,
        )
        return data


class UnrecognizedRequest(RaffleError):
    """Fulfillment that does not belong to the pending request."""

    def __init__(self, request_id: Any, pending_request_id: Optional[int], reason: Optional[str] = None):
        self.request_id = request_id
        self.pending_request_id = pending_request_id
        super().__init__(reason or f"request {request_id} is not the pending request")


class OnlyCoordinatorCanFulfill(RaffleError):
    def __init__(self, sender: str, coordinator: str):
        self.sender = sender
        self.coordinator = coordinator
        super().__init__(f"{sender} is not the coordinator {coordinator}")


class TransferFailed(RaffleError):
    """Payout could not be delivered; the round was rolled back."""

    def __init__(self, winner: str, amount: int):
        self.winner = winner
        self.amount = amount
        super().__init__(f"transfer of {amount} to {winner} failed")

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(winner=self.winner, amount=self.amount)
        return data


class OracleRequestFailed(RaffleError):
    pass


class SettlementInProgress(RaffleError):
    def __init__(self) -> None:
        super().__init__("settlement in progress, recursive call rejected")


class DrawNotStalled(RaffleError):
    def __init__(self, seconds_pending: Optional[int], draw_timeout: int):
        self.seconds_pending = seconds_pending
        self.draw_timeout = draw_timeout
        if seconds_pending is None:
            message = "no draw is pending"
        elif draw_timeout <= 0:
            message = "stalled draw recovery is disabled"
        else:
            message = f"draw pending for {seconds_pending}s, timeout is {draw_timeout}s"
        super().__init__(message)


class PayoutPending(RaffleError):
    """Payout was broadcast but its outcome is unknown; it must not be resent."""

    def __init__(self, winner: str, amount: int, tx_hash: str):
        self.winner = winner
        self.amount = amount
        self.tx_hash = tx_hash
        super().__init__(f"transfer of {amount} to {winner} sent in {tx_hash}, receipt not confirmed")

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(winner=self.winner, amount=self.amount, txHash=self.tx_hash)
        return data
