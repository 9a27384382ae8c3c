"""In-memory notification store for the raffle keeper."""

from __future__ import annotations

import time
from collections import defaultdict, deque
from threading import Lock
from typing import Any, Callable, Dict, List, Optional

from vrf_raffle.raffle.models import LiveFeedItem, RoundSnapshot
from vrf_raffle.utils.common import shorten_eth_address
from vrf_raffle.utils.logger import get_logger

logger = get_logger(__name__)

Listener = Callable[[Optional[dict]], None]


class MemoryStore:
    """Volatile storage for raffle notifications, live feed and round history.

    The engine hands every notification to ``notify``. Listeners registered by
    event name receive the serialized payload; the web server uses them to
    push updates to WebSocket clients.
    """

    def __init__(self, *, feed_capacity: int = 100, history_capacity: int = 20) -> None:
        self._lock = Lock()
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)
        self._live_feed: deque[LiveFeedItem] = deque(maxlen=feed_capacity)
        self._history: deque[RoundSnapshot] = deque(maxlen=history_capacity)
        self._event_counts: Dict[str, int] = defaultdict(int)

    # ------------------------------------------------------------------
    # Listener management
    # ------------------------------------------------------------------
    def add_listener(self, event_type: str, callback: Listener) -> None:
        with self._lock:
            self._listeners[event_type].append(callback)
        logger.debug("Added listener for event_type=%s", event_type)

    def _emit(self, event_type: str, payload: dict | None) -> None:
        with self._lock:
            listeners = list(self._listeners.get(event_type, []))
        for callback in listeners:
            try:
                callback(payload)
            except Exception as exc:  # pragma: no cover
                logger.error("Listener for %s failed: %s", event_type, exc)

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------
    def notify(self, event_type: str, details: Dict[str, Any]) -> None:
        """Record a raffle notification and fan it out to listeners."""
        safe_details = dict(details or {})
        event_time = int(safe_details.get("timestamp") or time.time())
        item = LiveFeedItem(
            event_type=event_type,
            message=self._describe(event_type, safe_details),
            details=safe_details,
            event_time=event_time,
        )

        snapshot = None
        with self._lock:
            self._live_feed.append(item)
            self._event_counts[event_type] += 1
            if event_type == "WinnerPicked":
                snapshot = RoundSnapshot(
                    round_number=int(safe_details.get("round", 0)),
                    request_id=int(safe_details.get("requestId", 0)),
                    winner=safe_details["winner"],
                    prize_amount=int(safe_details.get("prizeAmount", 0)),
                    participant_count=int(safe_details.get("participantCount", 0)),
                    finished_at=event_time,
                )
                self._history.append(snapshot)

        logger.info("[MemoryStore] %s", item.message)
        self._emit(event_type, safe_details)
        self._emit("live_feed", self.serialize_feed_item(item))
        if snapshot is not None:
            self._emit("history_update", self.serialize_history())

    @staticmethod
    def _describe(event_type: str, details: Dict[str, Any]) -> str:
        if event_type == "EnteredRaffle":
            return f"{shorten_eth_address(details.get('player', ''))} entered the raffle"
        if event_type == "RequestedRaffleWinner":
            return f"Randomness requested (request {details.get('requestId')})"
        if event_type == "WinnerPicked":
            return (
                f"{shorten_eth_address(details.get('winner', ''))} won "
                f"{details.get('prizeAmount', 0)} wei"
            )
        if event_type == "DrawReopened":
            return f"Stalled request {details.get('requestId')} abandoned, raffle reopened"
        return event_type

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    def get_round_history(self, limit: Optional[int] = None) -> List[RoundSnapshot]:
        with self._lock:
            items = list(self._history)
        if limit is not None:
            return items[-limit:]
        return items

    def get_live_feed(self, limit: Optional[int] = None, event_type: Optional[str] = None) -> List[LiveFeedItem]:
        with self._lock:
            items = list(self._live_feed)
        if event_type is not None:
            items = [item for item in items if item.event_type == event_type]
        if limit is not None:
            return items[-limit:]
        return items

    def get_event_count(self, event_type: str) -> int:
        with self._lock:
            return self._event_counts.get(event_type, 0)

    # ------------------------------------------------------------------
    # Serialization helpers
    # ------------------------------------------------------------------
    def serialize_feed_item(self, item: LiveFeedItem) -> dict:
        return {
            "id": item.get_item_id(),
            "type": item.event_type,
            "message": item.message,
            "details": item.details,
            "timestamp": item.event_time,
        }

    def serialize_history(self) -> dict:
        rounds = [
            {
                "round": snapshot.round_number,
                "requestId": snapshot.request_id,
                "winner": snapshot.winner,
                "prizeAmount": snapshot.prize_amount,
                "participantCount": snapshot.participant_count,
                "finishedAt": snapshot.finished_at,
            }
            for snapshot in self.get_round_history()
        ]
        rounds.sort(key=lambda x: x["round"], reverse=True)
        return {"rounds": rounds}
