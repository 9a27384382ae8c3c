"""FastAPI web server for the raffle keeper."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional, Set, Tuple

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from vrf_raffle.blockchain.client import BlockchainClient
from vrf_raffle.raffle.engine import RaffleEngine
from vrf_raffle.raffle.errors import (
    DrawNotStalled,
    NotEnoughFunds,
    OnlyCoordinatorCanFulfill,
    OracleRequestFailed,
    RaffleError,
    RaffleNotOpen,
    SettlementInProgress,
    TransferFailed,
    UnrecognizedRequest,
    UpkeepNotNeeded,
)
from vrf_raffle.raffle.event_manager import MemoryStore
from vrf_raffle.raffle.ledger import InMemoryLedger
from vrf_raffle.raffle.operator import UpkeepOperator
from vrf_raffle.raffle.oracle import LocalRandomnessOracle, OracleError
from vrf_raffle.utils.logger import get_logger

logger = get_logger(__name__)

ERROR_STATUS = {
    NotEnoughFunds: 400,
    RaffleNotOpen: 409,
    UpkeepNotNeeded: 409,
    DrawNotStalled: 409,
    SettlementInProgress: 409,
    UnrecognizedRequest: 403,
    OnlyCoordinatorCanFulfill: 403,
    TransferFailed: 502,
    OracleRequestFailed: 502,
}

BROADCAST_EVENTS = (
    "EnteredRaffle",
    "RequestedRaffleWinner",
    "WinnerPicked",
    "DrawReopened",
    "history_update",
)


class EnterRequest(BaseModel):
    player: str
    amount: int = Field(..., ge=0, description="Fee paid in wei")


class RaffleWebServer:
    """HTTP and WebSocket gateway for the raffle engine."""

    def __init__(
        self,
        config: Dict[str, Any],
        engine: RaffleEngine,
        store: MemoryStore,
        operator: Optional[UpkeepOperator] = None,
        local_oracle: Optional[LocalRandomnessOracle] = None,
        ledger: Optional[InMemoryLedger] = None,
        blockchain_client: Optional[BlockchainClient] = None,
    ) -> None:
        self.config = config
        self.engine = engine
        self.operator = operator
        self.local_oracle = local_oracle
        self.ledger = ledger
        self.blockchain_client = blockchain_client
        self._store = store

        self.app = FastAPI(
            title="VRF Raffle API",
            description="Entry, draw and status API for the recurring VRF raffle",
            version="1.0.0",
        )

        self._server = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._broadcast_queue: Optional[asyncio.Queue[Tuple[str, Dict[str, Any] | None]]] = None
        self._broadcast_task: Optional[asyncio.Task[None]] = None
        self._ws_lock: Optional[asyncio.Lock] = None
        self._listeners_registered = False
        self._websockets: Set[WebSocket] = set()

        self._setup_middleware()
        self._setup_error_handlers()
        self._setup_routes()

    # ------------------------------------------------------------------
    # FastAPI scaffolding
    # ------------------------------------------------------------------
    def _setup_middleware(self) -> None:
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    def _setup_error_handlers(self) -> None:
        @self.app.exception_handler(RaffleError)
        async def raffle_error_handler(request, exc: RaffleError) -> JSONResponse:
            status_code = ERROR_STATUS.get(type(exc), 400)
            logger.info("%s %s -> %s %s", request.method, request.url.path, status_code, type(exc).__name__)
            return JSONResponse(status_code=status_code, content=exc.to_dict())

    def _setup_routes(self) -> None:  # noqa: C901
        # ------------------------------------------------------------------
        # Health & status
        # ------------------------------------------------------------------
        @self.app.get("/api/health")
        async def health_check() -> Dict[str, Any]:
            blockchain_health: Dict[str, Any] | None = None
            if self.blockchain_client:
                blockchain_health = await self.blockchain_client.health_check()
            return {
                "status": "ok",
                "timestamp": datetime.utcnow().isoformat(),
                "components": {
                    "web": True,
                    "operator": self.operator.get_status()["status"] if self.operator else "disabled",
                    "oracle": "local" if self.local_oracle else "chain",
                    "blockchain": blockchain_health or {"status": "unavailable"},
                },
            }

        @self.app.get("/api/raffle/status")
        async def raffle_status() -> Dict[str, Any]:
            return {
                "raffle": await asyncio.to_thread(self.engine.get_status),
                "operator": self.operator.get_status() if self.operator else None,
                "blockchain": self.blockchain_client.get_client_status() if self.blockchain_client else None,
                "websocket_connections": len(self._websockets),
                "timestamp": datetime.utcnow().isoformat(),
            }

        @self.app.get("/api/raffle/eligibility")
        async def raffle_eligibility() -> Dict[str, Any]:
            _, diagnostic = await asyncio.to_thread(self.engine.check_eligibility)
            return diagnostic.to_dict()

        @self.app.get("/api/raffle/players")
        async def raffle_players() -> Dict[str, Any]:
            players = await asyncio.to_thread(self.engine.get_players)
            return {"players": players, "count": len(players)}

        @self.app.get("/api/raffle/players/{index}")
        async def raffle_player(index: int) -> Dict[str, Any]:
            try:
                player = await asyncio.to_thread(self.engine.get_player, index)
            except IndexError:
                raise HTTPException(status_code=404, detail=f"No player at index {index}")
            return {"index": index, "player": player}

        @self.app.get("/api/history")
        async def round_history(limit: int = 50) -> Dict[str, Any]:
            limit = max(1, min(limit, 200))
            rounds = self._store.serialize_history()["rounds"][:limit]
            return {
                "rounds": rounds,
                "summary": {
                    "total_rounds": len(rounds),
                    "total_paid_wei": sum(r["prizeAmount"] for r in rounds),
                },
            }

        @self.app.get("/api/activities")
        async def live_feed(limit: int = 50, event_type: Optional[str] = None) -> Dict[str, Any]:
            limit = max(1, min(limit, 200))
            feed = self._store.get_live_feed(limit=limit, event_type=event_type)
            return {"activities": [self._store.serialize_feed_item(item) for item in reversed(feed)]}

        @self.app.get("/api/ledger/{address}")
        async def ledger_balance(address: str) -> Dict[str, Any]:
            if self.ledger is None:
                raise HTTPException(status_code=404, detail="Ledger not enabled")
            try:
                balance = self.ledger.balance_of(address)
            except ValueError as exc:
                raise HTTPException(status_code=400, detail=str(exc))
            return {"address": address, "balance": balance}

        # ------------------------------------------------------------------
        # Raffle operations
        # ------------------------------------------------------------------
        @self.app.post("/api/raffle/enter")
        async def enter_raffle(request: EnterRequest) -> Dict[str, Any]:
            try:
                await asyncio.to_thread(self.engine.enter, request.player, request.amount)
            except ValueError as exc:
                raise HTTPException(status_code=400, detail=str(exc))
            status = await asyncio.to_thread(self.engine.get_status)
            return {
                "status": "entered",
                "playerCount": status["playerCount"],
                "poolBalance": status["poolBalance"],
            }

        @self.app.post("/api/raffle/draw")
        async def trigger_draw() -> Dict[str, Any]:
            request_id = await asyncio.to_thread(self.engine.trigger_draw)
            return {"status": "requested", "requestId": request_id}

        @self.app.post("/api/raffle/reopen")
        async def reopen_stalled() -> Dict[str, Any]:
            abandoned = await asyncio.to_thread(self.engine.reopen_stalled_draw)
            return {"status": "reopened", "abandonedRequestId": abandoned}

        @self.app.post("/api/oracle/fulfill/{request_id}")
        async def fulfill_local(request_id: int) -> Dict[str, Any]:
            if self.local_oracle is None:
                raise HTTPException(status_code=404, detail="Local oracle not enabled")
            try:
                winner = await asyncio.to_thread(self.local_oracle.fulfill, request_id)
            except OracleError as exc:
                raise HTTPException(status_code=404, detail=str(exc))
            proof = self.local_oracle.get_proof(request_id)
            return {"status": "fulfilled", "winner": winner, "proof": proof.to_dict() if proof else None}

        @self.app.get("/api/oracle/proof/{request_id}")
        async def oracle_proof(request_id: int) -> Dict[str, Any]:
            proof = self.local_oracle.get_proof(request_id) if self.local_oracle else None
            if proof is None:
                raise HTTPException(status_code=404, detail=f"No proof for request {request_id}")
            return proof.to_dict()

        # ------------------------------------------------------------------
        # WebSocket endpoint
        # ------------------------------------------------------------------
        @self.app.websocket("/ws/raffle")
        async def websocket_endpoint(websocket: WebSocket) -> None:
            await websocket.accept()
            if self._ws_lock is None:
                self._ws_lock = asyncio.Lock()
            async with self._ws_lock:
                self._websockets.add(websocket)
            logger.info("WebSocket client connected (%s total)", len(self._websockets))
            try:
                snapshot = await asyncio.to_thread(self._build_snapshot)
                await websocket.send_json({"type": "snapshot", "payload": snapshot})
                while True:
                    try:
                        await websocket.receive_text()
                    except WebSocketDisconnect:
                        break
            finally:
                async with self._ws_lock:
                    self._websockets.discard(websocket)
                logger.info("WebSocket client disconnected (%s remaining)", len(self._websockets))

    # ------------------------------------------------------------------
    # Lifecycle management
    # ------------------------------------------------------------------
    async def start(self, host: str = "0.0.0.0", port: int = 6080) -> None:
        import uvicorn

        logger.info("Starting raffle web server on %s:%s", host, port)
        self._loop = asyncio.get_running_loop()
        if self._broadcast_queue is None:
            self._broadcast_queue = asyncio.Queue()
        if self._ws_lock is None:
            self._ws_lock = asyncio.Lock()
        self._register_store_listeners()
        if self._broadcast_task is None:
            self._broadcast_task = asyncio.create_task(self._broadcast_loop(), name="raffle-web-broadcast")

        config = uvicorn.Config(self.app, host=host, port=port, log_level="info", access_log=True)
        self._server = uvicorn.Server(config)
        try:
            await self._server.serve()
        finally:
            logger.info("Raffle web server stopped")

    async def stop(self) -> None:
        logger.info("Stopping raffle web server")
        if self._server is not None:
            self._server.should_exit = True
        if self._broadcast_task:
            self._broadcast_task.cancel()
            try:
                await self._broadcast_task
            except asyncio.CancelledError:
                pass
            self._broadcast_task = None
        if self._ws_lock is None:
            self._ws_lock = asyncio.Lock()
        async with self._ws_lock:
            for websocket in list(self._websockets):
                try:
                    await websocket.close(code=1001, reason="Server shutdown")
                except Exception as exc:  # pragma: no cover
                    logger.debug("Error closing websocket: %s", exc)
            self._websockets.clear()

    # ------------------------------------------------------------------
    # Store listeners & broadcasting
    # ------------------------------------------------------------------
    def _register_store_listeners(self) -> None:
        if self._listeners_registered:
            return
        for event in BROADCAST_EVENTS:
            self._store.add_listener(event, lambda payload, evt=event: self._enqueue_broadcast(evt, payload))
        self._listeners_registered = True

    def _enqueue_broadcast(self, event_type: str, payload: Dict[str, Any] | None) -> None:
        if not self._broadcast_queue or not self._loop:
            return
        try:
            self._loop.call_soon_threadsafe(self._broadcast_queue.put_nowait, (event_type, payload))
        except RuntimeError:  # pragma: no cover - loop already closing
            logger.debug("Failed to enqueue broadcast for %s", event_type)

    async def _broadcast_loop(self) -> None:
        assert self._broadcast_queue is not None
        while True:
            try:
                event_type, payload = await self._broadcast_queue.get()
                await self._broadcast_to_clients(event_type, payload)
            except asyncio.CancelledError:
                break
            except Exception as exc:  # pragma: no cover
                logger.exception("Broadcast loop error: %s", exc)

    async def _broadcast_to_clients(self, event_type: str, payload: Dict[str, Any] | None) -> None:
        if self._ws_lock is None:
            self._ws_lock = asyncio.Lock()
        message = {"type": event_type, "payload": payload, "timestamp": datetime.utcnow().isoformat()}
        async with self._ws_lock:
            if not self._websockets:
                return
            to_remove: List[WebSocket] = []
            for websocket in self._websockets:
                try:
                    await websocket.send_json(message)
                except Exception as exc:  # pragma: no cover
                    logger.debug("WebSocket send failed: %s", exc)
                    to_remove.append(websocket)
            for websocket in to_remove:
                self._websockets.discard(websocket)

    def _build_snapshot(self) -> Dict[str, Any]:
        feed = self._store.get_live_feed(limit=20)
        return {
            "raffle": self.engine.get_status(),
            "players": self.engine.get_players(),
            "history": self._store.serialize_history()["rounds"][:10],
            "live_feed": [self._store.serialize_feed_item(item) for item in reversed(feed)],
            "operator": self.operator.get_status() if self.operator else None,
        }
