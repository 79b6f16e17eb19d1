# backend/firewatch/websocket.py
from fastapi import WebSocket
from typing import List, Dict
import logging
import asyncio
from collections import defaultdict

logger = logging.getLogger(__name__)

# Pushed as soon as they happen; everything else waits for the next flush
URGENT_TYPES = ("alert", "market_status")


class ConnectionManager:
    """
    Dashboard push channel.
    - alert: new fire/fault ledger entry
    - market_status: a market changed Normal/Fire/Error
    - reception: raw packet echo, latest per receiver/repeater, sent as batch_update
    """

    def __init__(self, flush_interval: float = 0.5):
        self.clients: List[WebSocket] = []
        self.flush_interval = flush_interval
        self.pending_receptions: Dict[str, dict] = {}
        self.flush_task = None
        self.sent_counts = defaultdict(int)

    @property
    def active_connections(self) -> List[WebSocket]:
        return self.clients

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.clients.append(websocket)
        logger.info(f"📡 Dashboard client connected ({len(self.clients)} open)")

        if self.flush_task is None or self.flush_task.done():
            self.flush_task = asyncio.create_task(self._flush_loop())

    def disconnect(self, websocket: WebSocket):
        if websocket not in self.clients:
            return
        self.clients.remove(websocket)
        logger.info(f"📴 Dashboard client gone ({len(self.clients)} open)")

    async def broadcast(self, message: dict):
        msg_type = message.get("type")

        if msg_type in URGENT_TYPES:
            await self._push(message)
        elif msg_type == "reception":
            key = f"{message.get('receiver_id')}/{message.get('repeater_id') or '-'}"
            self.pending_receptions[key] = message
        else:
            logger.debug(f"Dropping unknown message type {msg_type!r}")

    async def flush(self):
        if not self.pending_receptions:
            return
        batch = list(self.pending_receptions.values())
        self.pending_receptions.clear()
        await self._push({"type": "batch_update", "data": batch})

    async def _flush_loop(self):
        # Ends by itself once the last client leaves
        while self.clients:
            await asyncio.sleep(self.flush_interval)
            try:
                await self.flush()
            except Exception as e:
                logger.error(f"❌ Reception flush failed: {e}")

    async def _push(self, message: dict):
        dead = []
        for client in list(self.clients):
            try:
                await client.send_json(message)
            except Exception as e:
                logger.warning(f"⚠️ Dropping dashboard client after send error: {e}")
                dead.append(client)
            else:
                self.sent_counts[message.get("type")] += 1

        for client in dead:
            self.disconnect(client)

    async def close(self):
        if self.flush_task is not None and not self.flush_task.done():
            self.flush_task.cancel()
        self.flush_task = None


manager = ConnectionManager()
