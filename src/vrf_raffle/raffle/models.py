"""Core data models for the raffle keeper."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from typing import Any, Dict, Optional


class RaffleState(IntEnum):
    """Round states; values match the on-chain Raffle enum."""

    OPEN = 0
    CALCULATING = 1


@dataclass(frozen=True)
class RaffleConfig:
    """Per-deployment settings, fixed once the engine is built."""

    entrance_fee: int
    interval: int
    key_hash: str = "0x" + "00" * 32
    subscription_id: int = 0
    request_confirmations: int = 3
    callback_gas_limit: int = 500000
    num_words: int = 1
    draw_timeout: int = 0
    coordinator: Optional[str] = None


@dataclass(frozen=True)
class RandomnessRequest:
    """Parameters handed to the oracle for one draw."""

    key_hash: str
    subscription_id: int
    request_confirmations: int
    callback_gas_limit: int
    num_words: int

    @classmethod
    def from_config(cls, config: RaffleConfig) -> "RandomnessRequest":
        return cls(
            key_hash=config.key_hash,
            subscription_id=config.subscription_id,
            request_confirmations=config.request_confirmations,
            callback_gas_limit=config.callback_gas_limit,
            num_words=config.num_words,
        )


@dataclass(frozen=True)
class EligibilityDiagnostic:
    """Snapshot of the values that decide whether a draw may start."""

    eligible: bool
    balance: int
    participant_count: int
    state: RaffleState
    time_passed: bool
    seconds_since_last_draw: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "eligible": self.eligible,
            "balance": self.balance,
            "participantCount": self.participant_count,
            "state": self.state.value,
            "stateLabel": self.state.name,
            "timePassed": self.time_passed,
            "secondsSinceLastDraw": self.seconds_since_last_draw,
        }


@dataclass
class RoundSnapshot:
    """Historical record of a settled round."""

    round_number: int
    request_id: int
    winner: str
    prize_amount: int
    participant_count: int
    finished_at: int


@dataclass
class LiveFeedItem:
    """Notification entry kept in the activity feed."""

    event_type: str
    message: str
    details: Dict[str, Any]
    event_time: int
    created_at: datetime = field(default_factory=datetime.utcnow)

    def get_item_id(self) -> str:
        return f"{self.details.get('round', 0)}-{self.event_time}-{self.event_type}"


@dataclass
class OperatorStatus:
    """Operational metrics for the upkeep loop."""

    is_running: bool = False
    checks_performed: int = 0
    draws_triggered: int = 0
    last_check: Optional[datetime] = None
    last_draw_attempt: Optional[datetime] = None
    last_request_id: Optional[int] = None
    consecutive_draw_failures: int = 0
    last_error: Optional[str] = None

    def record_check(self) -> None:
        self.checks_performed += 1
        self.last_check = datetime.utcnow()

    def record_draw_attempt(self) -> None:
        self.last_draw_attempt = datetime.utcnow()

    def reset_draw_failures(self) -> None:
        self.consecutive_draw_failures = 0

    def increment_draw_failures(self, error: str) -> None:
        self.consecutive_draw_failures += 1
        self.last_error = error
