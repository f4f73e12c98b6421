"""
WebSocket event hub.

Clients connect to /ws and receive every backend event as
{"event": name, "data": {...}}. Dead connections are dropped on the next
broadcast.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Set

from fastapi import WebSocket

COUNT_UPDATED = "count_updated"
ENTRY_EXIT_RECORDED = "entry_exit_recorded"


class EventHub:
    def __init__(self):
        self._connections: Set[WebSocket] = set()
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket) -> None:
        # Register under the lock so no broadcast can slip in between
        async with self._lock:
            await websocket.accept()
            self._connections.add(websocket)
            logging.info(f"WebSocket client connected, total: {len(self._connections)}")

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._connections.discard(websocket)
        logging.debug("WebSocket client disconnected")

    async def broadcast(self, event: str, data: Dict[str, Any]) -> None:
        async with self._lock:
            clients = list(self._connections)
        if not clients:
            return

        message = json.dumps({"event": event, "data": data})
        dead_clients = []
        for websocket in clients:
            try:
                await websocket.send_text(message)
            except Exception:
                dead_clients.append(websocket)

        if dead_clients:
            async with self._lock:
                for ws in dead_clients:
                    self._connections.discard(ws)

    @property
    def client_count(self) -> int:
        return len(self._connections)
