"""Blockchain client for the raffle keeper: payouts and VRF coordinator access."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional

from eth_account import Account
from web3 import Web3
from web3.contract import Contract

from vrf_raffle.blockchain.contracts import FULFILLED_EVENT_SIGNATURE, load_coordinator_abi
from vrf_raffle.raffle.errors import PayoutPending
from vrf_raffle.utils.common import normalize_address
from vrf_raffle.utils.logger import get_logger

logger = get_logger(__name__)

NATIVE_TRANSFER_GAS = 21000


@dataclass
class FulfillmentEvent:
    """Decoded ``RandomWordsFulfilled`` log."""

    request_id: int
    random_words: List[int]
    sender: str
    block_number: int
    transaction_hash: str


class BlockchainClient:
    """Wrapper around web3.py for raffle payouts and randomness requests.

    ``transfer`` and ``request_random_words`` block until the transaction is
    mined; the async helpers run their RPC work in a worker thread.
    """

    def __init__(self, config: Dict[str, Any]):
        self._config = config

        blockchain_cfg = config.get("blockchain", {})
        self.rpc_url: str = blockchain_cfg.get("rpc_url", "http://127.0.0.1:8545")
        try:
            self.rpc_timeout: float = float(blockchain_cfg.get("rpc_timeout", 10.0))
        except (TypeError, ValueError):
            self.rpc_timeout = 10.0
        self.chain_id: int = int(blockchain_cfg.get("chain_id", 31337))
        self.tx_timeout: int = int(blockchain_cfg.get("tx_timeout_seconds", 180))
        self.coordinator_address: Optional[str] = blockchain_cfg.get("coordinator_address")
        self._abi_path: Optional[str] = blockchain_cfg.get("coordinator_abi_path")

        self._w3: Optional[Web3] = None
        self._coordinator: Optional[Contract] = None

        private_key = blockchain_cfg.get("operator_private_key")
        self.account = Account.from_key(private_key) if private_key else None
        if self.account:
            logger.info("Operator account loaded: %s", self.account.address)

        gas_price_setting = blockchain_cfg.get("gas_price")
        self._gas_price_override: Optional[int] = None
        if gas_price_setting:
            try:
                self._gas_price_override = Web3.to_wei(Decimal(str(gas_price_setting)), "gwei")
            except (ArithmeticError, ValueError) as exc:
                logger.warning("Unable to parse gas price '%s': %s", gas_price_setting, exc)

        self._gas_multiplier = float(blockchain_cfg.get("gas_multiplier", 1.15))
        self._latest_block: Optional[int] = None

    async def initialize(self) -> None:
        """Connect to the RPC endpoint and bind the coordinator contract."""
        self._w3 = Web3(Web3.HTTPProvider(self.rpc_url, request_kwargs={"timeout": self.rpc_timeout}))
        connected = await asyncio.to_thread(self._w3.is_connected)
        if not connected:  # pragma: no cover - depends on live RPC
            raise ConnectionError(f"Failed to connect to RPC at {self.rpc_url}")
        logger.info("Connected to RPC %s (chain id %s)", self.rpc_url, self.chain_id)

        actual_chain_id = await asyncio.to_thread(lambda: self._w3.eth.chain_id)
        if actual_chain_id != self.chain_id:
            logger.warning("Chain ID mismatch: expected %s, got %s", self.chain_id, actual_chain_id)

        if self.coordinator_address:
            self.bind_coordinator(self._w3)
        else:
            logger.warning("No coordinator address configured; randomness requests disabled")

    def bind_coordinator(self, w3: Web3) -> None:
        self._w3 = w3
        self._coordinator = w3.eth.contract(
            address=normalize_address(self.coordinator_address),
            abi=load_coordinator_abi(self._abi_path),
        )
        logger.info("Coordinator bound at %s", self._coordinator.address)

    async def close(self) -> None:
        self._coordinator = None
        self._w3 = None

    # ------------------------------------------------------------------
    # FundsTransfer
    # ------------------------------------------------------------------
    def transfer(self, destination: str, amount: int) -> bool:
        """Send ``amount`` wei to ``destination``; True when the receipt succeeds.

        Failures before the transaction is broadcast propagate unchanged. Once
        it is broadcast, a missing receipt raises ``PayoutPending`` with the
        transaction hash instead, so callers never send the payout again.
        """
        w3 = self._ensure_web3()
        account = self._ensure_account()
        txn = {
            "to": normalize_address(destination),
            "value": int(amount),
            "gas": NATIVE_TRANSFER_GAS,
            "gasPrice": self._gas_price_override or w3.eth.gas_price,
            "nonce": w3.eth.get_transaction_count(account.address, "pending"),
            "chainId": self.chain_id,
        }
        tx_hash = self._sign_and_send(txn)
        try:
            receipt = self.wait_for_transaction(tx_hash)
        except Exception as exc:
            logger.error("No receipt for payout %s to %s: %s", tx_hash, destination, exc)
            raise PayoutPending(destination, int(amount), tx_hash) from exc
        ok = receipt["status"] == 1
        logger.info("Payout %s to %s: %s", tx_hash, destination, "ok" if ok else "reverted")
        return ok

    # ------------------------------------------------------------------
    # Randomness requests
    # ------------------------------------------------------------------
    def request_random_words(
        self,
        key_hash: str,
        subscription_id: int,
        request_confirmations: int,
        callback_gas_limit: int,
        num_words: int,
    ) -> int:
        """Submit ``requestRandomWords`` and return the id from the mined receipt."""
        w3 = self._ensure_web3()
        account = self._ensure_account()
        coordinator = self._ensure_coordinator()

        tx_function = coordinator.functions.requestRandomWords(
            Web3.to_bytes(hexstr=key_hash),
            subscription_id,
            request_confirmations,
            callback_gas_limit,
            num_words,
        )
        gas_estimate = tx_function.estimate_gas({"from": account.address})
        txn = tx_function.build_transaction(
            {
                "from": account.address,
                "gas": int(gas_estimate * self._gas_multiplier),
                "gasPrice": self._gas_price_override or w3.eth.gas_price,
                "nonce": w3.eth.get_transaction_count(account.address, "pending"),
                "chainId": self.chain_id,
            }
        )
        tx_hash = self._sign_and_send(txn)
        receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.tx_timeout)
        if int(receipt["status"]) != 1:
            raise RuntimeError(f"requestRandomWords reverted in {tx_hash}")

        events = coordinator.events.RandomWordsRequested().process_receipt(receipt)
        if not events:
            raise RuntimeError(f"no RandomWordsRequested event in {tx_hash}")
        request_id = int(events[0]["args"]["requestId"])
        logger.info("Randomness request %s submitted in %s", request_id, tx_hash)
        return request_id

    async def get_fulfillment_events(self, from_block: int) -> List[FulfillmentEvent]:
        """Fetch and decode fulfillment logs from ``from_block`` to the chain head."""
        w3 = self._ensure_web3()
        coordinator = self._ensure_coordinator()
        topic = Web3.keccak(text=FULFILLED_EVENT_SIGNATURE)

        def _fetch() -> List[FulfillmentEvent]:
            latest = int(w3.eth.block_number)
            self._latest_block = latest
            if from_block > latest:
                return []
            raw_logs = w3.eth.get_logs(
                {
                    "fromBlock": from_block,
                    "toBlock": latest,
                    "address": coordinator.address,
                    "topics": [topic],
                }
            )
            collected: List[FulfillmentEvent] = []
            for raw in raw_logs:
                decoded = coordinator.events.RandomWordsFulfilled().process_log(raw)
                collected.append(
                    FulfillmentEvent(
                        request_id=int(decoded["args"]["requestId"]),
                        random_words=[int(word) for word in decoded["args"]["randomWords"]],
                        sender=decoded["address"],
                        block_number=int(decoded["blockNumber"]),
                        transaction_hash=Web3.to_hex(decoded["transactionHash"]),
                    )
                )
            collected.sort(key=lambda evt: (evt.block_number, evt.transaction_hash))
            return collected

        events = await asyncio.wait_for(asyncio.to_thread(_fetch), timeout=max(15.0, self.rpc_timeout * 5))
        if events:
            logger.info("Decoded %d fulfillment events from block %s", len(events), from_block)
        return events

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def wait_for_transaction(self, tx_hash: str) -> Dict[str, Any]:
        w3 = self._ensure_web3()
        receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.tx_timeout)
        return {
            "status": int(receipt["status"]),
            "blockNumber": int(receipt["blockNumber"]),
            "transactionHash": Web3.to_hex(receipt["transactionHash"]),
            "gasUsed": int(receipt["gasUsed"]),
        }

    async def get_latest_block(self) -> int:
        w3 = self._ensure_web3()
        self._latest_block = await asyncio.to_thread(lambda: int(w3.eth.block_number))
        return self._latest_block

    async def health_check(self) -> Dict[str, Any]:
        try:
            latest_block = await self.get_latest_block()
            return {"status": "healthy", "latestBlock": latest_block}
        except Exception as exc:  # pragma: no cover - health failures are diagnostic
            logger.exception("Blockchain health check failed")
            return {"status": "error", "detail": str(exc)}

    def get_client_status(self) -> Dict[str, Any]:
        return {
            "rpcUrl": self.rpc_url,
            "chainId": self.chain_id,
            "coordinator": self.coordinator_address,
            "operator": self.account.address if self.account else None,
        }

    def _sign_and_send(self, txn: Dict[str, Any]) -> str:
        w3 = self._ensure_web3()
        signed = self._ensure_account().sign_transaction(txn)
        # eth-account renamed rawTransaction to raw_transaction
        raw = getattr(signed, "raw_transaction", None) or getattr(signed, "rawTransaction")
        tx_hash = w3.eth.send_raw_transaction(raw)
        return Web3.to_hex(tx_hash)

    def _ensure_web3(self) -> Web3:
        if self._w3 is None:
            raise RuntimeError("Blockchain client not initialized")
        return self._w3

    def _ensure_account(self):
        if not self.account:
            raise ValueError("Operator account not configured")
        return self.account

    def _ensure_coordinator(self) -> Contract:
        if self._coordinator is None:
            raise RuntimeError("Coordinator contract not loaded")
        return self._coordinator
