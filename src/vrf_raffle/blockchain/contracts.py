"""
Coordinator contract interface
"""

import json
from pathlib import Path
from typing import Dict, List, Optional

from vrf_raffle.utils.logger import get_logger

logger = get_logger(__name__)

# Coordinator interface the keeper talks to. Chain mode needs a relay
# coordinator with this shape: the five-argument requestRandomWords and a
# RandomWordsFulfilled(uint256 indexed, uint256[]) event carrying the words.
COORDINATOR_ABI: List[Dict] = [
    {
        "type": "function",
        "name": "requestRandomWords",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "keyHash", "type": "bytes32"},
            {"name": "subId", "type": "uint256"},
            {"name": "minimumRequestConfirmations", "type": "uint16"},
            {"name": "callbackGasLimit", "type": "uint32"},
            {"name": "numWords", "type": "uint32"},
        ],
        "outputs": [{"name": "requestId", "type": "uint256"}],
    },
    {
        "type": "event",
        "name": "RandomWordsRequested",
        "anonymous": False,
        "inputs": [
            {"name": "keyHash", "type": "bytes32", "indexed": True},
            {"name": "requestId", "type": "uint256", "indexed": False},
            {"name": "preSeed", "type": "uint256", "indexed": False},
            {"name": "subId", "type": "uint256", "indexed": True},
            {"name": "minimumRequestConfirmations", "type": "uint16", "indexed": False},
            {"name": "callbackGasLimit", "type": "uint32", "indexed": False},
            {"name": "numWords", "type": "uint32", "indexed": False},
            {"name": "sender", "type": "address", "indexed": True},
        ],
    },
    {
        "type": "event",
        "name": "RandomWordsFulfilled",
        "anonymous": False,
        "inputs": [
            {"name": "requestId", "type": "uint256", "indexed": True},
            {"name": "randomWords", "type": "uint256[]", "indexed": False},
        ],
    },
]

FULFILLED_EVENT_SIGNATURE = "RandomWordsFulfilled(uint256,uint256[])"


def load_coordinator_abi(abi_path: Optional[str] = None) -> List[Dict]:
    """Return the coordinator ABI, from ``abi_path`` when one is configured."""
    if not abi_path:
        return COORDINATOR_ABI
    path = Path(abi_path)
    logger.info("Loading coordinator ABI from %s", path)
    with path.open("r", encoding="utf-8") as handle:
        data = json.load(handle)
    # compiler artifacts wrap the ABI
    if isinstance(data, dict) and "abi" in data:
        data = data["abi"]
    logger.info("Loaded ABI with %d items", len(data))
    return data
