"""
In-memory funds ledger used as the payout target when no chain is configured
"""

from collections import defaultdict
from threading import Lock
from typing import Dict, Iterable, Set

from vrf_raffle.utils.common import normalize_address
from vrf_raffle.utils.logger import get_logger

logger = get_logger(__name__)


class InMemoryLedger:
    """Tracks external balances credited by raffle payouts."""

    def __init__(self, blocked: Iterable[str] = ()):
        self._lock = Lock()
        self._balances: Dict[str, int] = defaultdict(int)
        self._blocked: Set[str] = {normalize_address(addr) for addr in blocked}
        self.transfer_count = 0

    def transfer(self, destination: str, amount: int) -> bool:
        """Credit ``amount`` to ``destination``; blocked addresses refuse payment."""
        address = normalize_address(destination)
        if amount < 0:
            raise ValueError("amount must not be negative")
        with self._lock:
            if address in self._blocked:
                logger.warning("Ledger refused transfer of %s wei to %s", amount, address)
                return False
            self._balances[address] += amount
            self.transfer_count += 1
        logger.info("Ledger credited %s wei to %s", amount, address)
        return True

    def balance_of(self, address: str) -> int:
        with self._lock:
            return self._balances.get(normalize_address(address), 0)

    def block(self, address: str) -> None:
        with self._lock:
            self._blocked.add(normalize_address(address))

    def unblock(self, address: str) -> None:
        with self._lock:
            self._blocked.discard(normalize_address(address))
