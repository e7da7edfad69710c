"""Prahari — WebSocket Findings Push.

Each client holds a minimum alert priority (default: low, i.e. everything).
Clients change it by sending {"action": "subscribe", "min_priority": "high"}.
"""

import json
import logging
from typing import Any

from fastapi import WebSocket

from backend.models import AlertPriority, UnifiedAlert

logger = logging.getLogger("prahari.ws")

# Lower rank = more urgent
PRIORITY_RANK = {
    AlertPriority.CRITICAL: 0,
    AlertPriority.HIGH: 1,
    AlertPriority.MEDIUM: 2,
    AlertPriority.LOW: 3,
}


class ConnectionManager:
    """Tracks findings subscribers and their priority filters."""

    def __init__(self):
        self._clients: dict[WebSocket, AlertPriority] = {}

    @property
    def connection_count(self) -> int:
        return len(self._clients)

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self._clients[websocket] = AlertPriority.LOW
        logger.info("[ws] Client connected (%d total)", len(self._clients))

    def disconnect(self, websocket: WebSocket):
        self._clients.pop(websocket, None)
        logger.info("[ws] Client disconnected (%d remaining)", len(self._clients))

    def handle_message(self, websocket: WebSocket, raw: str) -> bool:
        """Apply a client control message. Returns False if it was not understood."""
        try:
            message: Any = json.loads(raw)
        except ValueError:
            return False
        if not isinstance(message, dict) or message.get("action") != "subscribe":
            return False
        try:
            priority = AlertPriority(message.get("min_priority", "low"))
        except ValueError:
            return False
        if websocket in self._clients:
            self._clients[websocket] = priority
            logger.debug("[ws] Client filter set to %s", priority.value)
        return True

    def min_priority(self, websocket: WebSocket) -> AlertPriority:
        return self._clients.get(websocket, AlertPriority.LOW)

    @staticmethod
    def visible(alerts: list[UnifiedAlert], min_priority: AlertPriority) -> list[UnifiedAlert]:
        limit = PRIORITY_RANK[min_priority]
        return [a for a in alerts if PRIORITY_RANK[a.priority] <= limit]

    async def send_to(self, websocket: WebSocket, message: dict) -> bool:
        try:
            await websocket.send_text(json.dumps(message, default=str))
            return True
        except Exception as e:
            logger.debug("[ws] Send failed, dropping client: %s", e)
            self.disconnect(websocket)
            return False

    async def broadcast_findings(self, alerts: list[UnifiedAlert], counts: dict[str, int]):
        """Push changed alerts, filtered per client; clients with nothing visible are skipped."""
        for websocket, min_priority in list(self._clients.items()):
            shown = self.visible(alerts, min_priority)
            if not shown:
                continue
            await self.send_to(websocket, {
                "action": "findings_updated",
                "alerts": [a.model_dump(mode="json") for a in shown],
                "counts": counts,
            })
