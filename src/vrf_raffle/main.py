#!/usr/bin/env python3
"""
Raffle Keeper Application

Entry point that wires configuration, the raffle engine, its randomness oracle
and payout target, the upkeep operator and the web server, then runs until a
shutdown signal arrives.
"""

import asyncio
import signal
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from vrf_raffle.blockchain.client import BlockchainClient
from vrf_raffle.raffle.engine import RaffleEngine
from vrf_raffle.raffle.event_manager import MemoryStore
from vrf_raffle.raffle.ledger import InMemoryLedger
from vrf_raffle.raffle.operator import UpkeepOperator
from vrf_raffle.raffle.oracle import ChainRandomnessOracle, LocalRandomnessOracle, OracleBridge
from vrf_raffle.utils.config import build_raffle_config, get_config_value, load_config
from vrf_raffle.utils.crypto import RandomnessProver
from vrf_raffle.web_server import RaffleWebServer
from vrf_raffle.utils.logger import get_logger

logger = get_logger(__name__)


class RaffleKeeperApp:
    """Builds and runs every component of the raffle keeper."""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or load_config()
        self.mode = get_config_value(self.config, "oracle.mode", "local")
        self.store = MemoryStore(
            feed_capacity=int(get_config_value(self.config, "server.live_feed_max_entries", 200)),
            history_capacity=int(get_config_value(self.config, "server.round_history_max", 50)),
        )
        self.blockchain_client: Optional[BlockchainClient] = None
        self.local_oracle: Optional[LocalRandomnessOracle] = None
        self.ledger: Optional[InMemoryLedger] = None
        self.bridge: Optional[OracleBridge] = None
        self.engine: Optional[RaffleEngine] = None
        self.operator: Optional[UpkeepOperator] = None
        self.web_server: Optional[RaffleWebServer] = None
        self.running = True

    def _display_config_summary(self) -> None:
        logger.info("=" * 60)
        logger.info("CONFIGURATION SUMMARY")
        logger.info("=" * 60)
        logger.info(f"Network: {get_config_value(self.config, 'raffle.network')}")
        logger.info(f"Oracle mode: {self.mode}")
        logger.info(f"Entrance fee: {get_config_value(self.config, 'raffle.entrance_fee')} wei")
        logger.info(f"Interval: {get_config_value(self.config, 'raffle.interval')}s")
        if self.mode == "chain":
            logger.info(f"RPC URL: {get_config_value(self.config, 'blockchain.rpc_url', 'Not configured')}")
            logger.info(f"Coordinator: {get_config_value(self.config, 'blockchain.coordinator_address', 'Not configured')}")
        logger.info(f"Server: {get_config_value(self.config, 'server.host', '0.0.0.0')}:{get_config_value(self.config, 'server.port', 6080)}")
        logger.info("=" * 60)

    async def initialize(self) -> None:
        """Create the oracle, payout target, engine, operator and web server."""
        self._display_config_summary()
        raffle_config = build_raffle_config(self.config)

        if self.mode == "chain":
            logger.info("Initializing blockchain client...")
            self.blockchain_client = BlockchainClient(self.config)
            await self.blockchain_client.initialize()
            oracle = ChainRandomnessOracle(self.blockchain_client)
            funds = self.blockchain_client
        elif self.mode == "local":
            seed_hex = get_config_value(self.config, "oracle.signing_key")
            prover = RandomnessProver.from_seed_hex(seed_hex) if seed_hex else RandomnessProver()
            delay = get_config_value(self.config, "oracle.auto_fulfill_delay")
            self.local_oracle = LocalRandomnessOracle(
                prover=prover,
                auto_fulfill_delay=float(delay) if delay not in (None, "") else None,
            )
            self.local_oracle.bind_loop(asyncio.get_running_loop())
            self.ledger = InMemoryLedger()
            oracle = self.local_oracle
            funds = self.ledger
            if not raffle_config.coordinator:
                raffle_config = replace(raffle_config, coordinator=self.local_oracle.address)
        else:
            raise ValueError(f"Unknown oracle mode '{self.mode}'")

        self.engine = RaffleEngine(raffle_config, oracle, funds, notifier=self.store.notify)

        if self.local_oracle:
            self.local_oracle.attach(self.engine.on_randomness_fulfilled, "raffle-engine")
        if self.blockchain_client:
            self.bridge = OracleBridge(self.blockchain_client, self.engine, self.config)
            await self.bridge.initialize()

        self.operator = UpkeepOperator(self.engine, self.config)
        self.web_server = RaffleWebServer(
            self.config,
            self.engine,
            self.store,
            operator=self.operator,
            local_oracle=self.local_oracle,
            ledger=self.ledger,
            blockchain_client=self.blockchain_client,
        )
        logger.info("Raffle keeper initialization completed")

    async def start(self) -> None:
        """Start services and run until a shutdown signal is received."""
        try:
            await self.initialize()
            await self.operator.start()
            if self.bridge:
                await self.bridge.start()

            host = get_config_value(self.config, "server.host", "0.0.0.0")
            port = int(get_config_value(self.config, "server.port", 6080))
            server_task = asyncio.create_task(self.web_server.start(host=host, port=port))
            await asyncio.sleep(0.2)
            if server_task.done() and server_task.exception():
                raise server_task.exception()

            logger.info(f"Raffle API: http://{host}:{port}/api/raffle/status")
            logger.info(f"WebSocket: ws://{host}:{port}/ws/raffle")

            while self.running:
                await asyncio.sleep(1)
            logger.info("Shutdown signal received, stopping application...")
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Stop all services in reverse start order."""
        self.running = False
        for name in ("web_server", "bridge", "operator", "blockchain_client"):
            component = getattr(self, name, None)
            if component is None:
                continue
            try:
                if name == "blockchain_client":
                    await component.close()
                else:
                    await component.stop()
                logger.info(f"{name} stopped")
            except Exception as e:
                logger.error(f"Error stopping {name}: {e}")
        logger.info("Raffle keeper stopped")

    def _handle_signal(self, signum, frame) -> None:
        logger.info(f"Received signal {signum}, initiating graceful shutdown...")
        self.running = False


async def main() -> None:
    """Main entry point for the raffle keeper"""
    load_dotenv(Path.cwd() / ".env")
    app = RaffleKeeperApp()

    signal.signal(signal.SIGINT, app._handle_signal)
    signal.signal(signal.SIGTERM, app._handle_signal)

    try:
        await app.start()
    except KeyboardInterrupt:
        logger.info("Raffle keeper interrupted by user")
    except Exception:
        logger.exception("Raffle keeper failed")
        sys.exit(1)


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
