# chicken_run_backend/chickenrun/ws_manager.py

import asyncio
import logging

from fastapi import WebSocket

from chickenrun.clickhouse_logger import log_event, log_round
from chickenrun.formatting import decorate_snapshot, format_money
from chickenrun.round_engine import RoundEngine

logger = logging.getLogger("uvicorn.error")


class WebSocketManager:
    """Manages WebSocket connections, relays player intents to the engine and broadcasts state."""

    def __init__(self, engine: RoundEngine):
        self.active_connections: dict[str, WebSocket] = {}
        self.engine = engine
        self._tasks: set[asyncio.Task] = set()

    async def connect(self, websocket: WebSocket, client_id: str):
        self.active_connections[client_id] = websocket
        await self.send_to_client(client_id, self.state_message())

    def disconnect(self, client_id: str):
        """Removes a client's connection."""
        if client_id in self.active_connections:
            del self.active_connections[client_id]
        logger.info(f"Cleaned up connection {client_id}")

    async def send_to_client(self, client_id: str, message: dict):
        """Sends a JSON message to a specific client."""
        if client_id in self.active_connections:
            try:
                await self.active_connections[client_id].send_json(message)
            except Exception as e:
                logger.warning(f"Failed to send message to {client_id}: {e}. Disconnecting.")
                self.disconnect(client_id)

    async def broadcast(self, message: dict):
        """Sends a JSON message to all connected clients."""
        for client_id, connection in list(self.active_connections.items()):
            try:
                await connection.send_json(message)
            except Exception as e:
                logger.warning(f"Failed to broadcast to {client_id}: {e}. Disconnecting.")
                self.disconnect(client_id)

    def state_message(self) -> dict:
        return {"type": "state", "data": decorate_snapshot(self.engine.snapshot())}

    def balance_message(self) -> dict:
        return {"type": "balance_update", "data": {"balance": self.engine.session.balance}}

    async def handle_message(self, client_id: str, data: dict):
        msg_type = data.get("type")
        if msg_type == "place_bet":
            await self.place_bet(client_id, data.get("amount"))
        elif msg_type == "cash_out":
            await self.cash_out(client_id)
        elif msg_type == "reset":
            self.engine.reset_progress()
            await self.broadcast(self.state_message())
        elif msg_type == "add_balance":
            self.engine.add_test_balance()
            await self.broadcast(self.balance_message())
        else:
            await self.send_to_client(client_id, {"type": "error", "data": {"message": f"Unknown message type: {msg_type!r}"}})

    async def place_bet(self, client_id: str, amount):
        result = self.engine.place_bet(amount)
        if not result.accepted:
            await self.send_to_client(client_id, {"type": "bet_error", "data": {"reason": result.reason.value}})
            return
        await self.send_to_client(client_id, {"type": "bet_confirm", "data": {"amount": result.amount}})
        await self.broadcast(self.balance_message())

    async def cash_out(self, client_id: str):
        result = self.engine.cash_out()
        if not result.accepted:
            await self.send_to_client(client_id, {"type": "cashout_error", "data": {"reason": result.reason.value}})
            return
        await self.send_to_client(client_id, {
            "type": "cashout_confirm",
            "data": {
                "winAmount": round(result.amount, 2),
                "cashedOutAt": result.multiplier,
                "message": f"+${format_money(result.amount)}",
            },
        })
        await self.broadcast(self.balance_message())

    def on_engine_event(self, event_type: str, payload: dict):
        """Engine callback: ships events to analytics without blocking the round."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._spawn(loop, log_event(event_type=event_type, payload=payload))
        if event_type == "round_settled":
            self._spawn(loop, log_round(**payload))

    def _spawn(self, loop: asyncio.AbstractEventLoop, coro):
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
