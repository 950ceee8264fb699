"""
Real-time order notifications.

At-most-once, unordered broadcast of order documents to connected dashboards,
partitioned by branch.  Events are hints to refetch or merge; clients that
miss one recover through their periodic resync (``GET /orders/updates``).
"""
import logging
from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from fastapi import WebSocket, status

logger = logging.getLogger(__name__)


class OrderEventType(str, Enum):
    """Order event names, as emitted on the wire"""
    CREATED = "order:created"
    UPDATED = "order:updated"
    DELETED = "order:deleted"


@dataclass
class OrderEvent:
    """Standard order event envelope"""
    event: str
    data: Dict[str, Any]
    branch_id: str
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["branchId"] = payload.pop("branch_id")
        return payload


class ConnectionManager:
    """Manages dashboard WebSocket connections, one channel per branch."""

    MAX_CONNECTIONS_PER_CHANNEL = 1000

    def __init__(self):
        self.active_connections: Dict[str, List[WebSocket]] = {}
        self.stats = {"messages_sent": 0, "send_failures": 0}

    async def connect(self, websocket: WebSocket, channel: str) -> bool:
        """Accept a connection into ``channel``; False if the channel is full."""
        if len(self.active_connections.get(channel, [])) >= self.MAX_CONNECTIONS_PER_CHANNEL:
            logger.warning(f"WebSocket connection rejected: channel '{channel}' at capacity")
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return False

        await websocket.accept()
        self.active_connections.setdefault(channel, []).append(websocket)
        logger.debug(f"WebSocket connected to channel '{channel}'")
        return True

    def disconnect(self, websocket: WebSocket, channel: str):
        connections = self.active_connections.get(channel)
        if connections and websocket in connections:
            connections.remove(websocket)
        logger.debug(f"WebSocket disconnected from channel '{channel}'")

    async def broadcast(self, message: Dict[str, Any], channel: str):
        """Send to every connection in a channel, dropping the ones that fail."""
        disconnected = []
        for connection in list(self.active_connections.get(channel, [])):
            try:
                await connection.send_json(message)
                self.stats["messages_sent"] += 1
            except Exception as e:
                logger.debug(f"WebSocket send failed: {e}")
                self.stats["send_failures"] += 1
                disconnected.append(connection)

        for conn in disconnected:
            self.disconnect(conn, channel)

    def get_connection_count(self, channel: Optional[str] = None) -> int:
        if channel:
            return len(self.active_connections.get(channel, []))
        return sum(len(conns) for conns in self.active_connections.values())


class OrderNotifier:
    """Publishes order events to the dashboards of the order's branch."""

    def __init__(self, manager: ConnectionManager):
        self.manager = manager

    async def publish(self, event_type: OrderEventType, document: Dict[str, Any]) -> None:
        """Fire-and-forget: failures are logged, never raised to the writer."""
        branch_id = document.get("branchId")
        event = OrderEvent(event=event_type.value, data=document, branch_id=branch_id)
        try:
            await self.manager.broadcast(event.to_dict(), channel=branch_id)
        except Exception as e:
            logger.warning(f"Failed to publish {event_type.value} for order {document.get('id')}: {e}")


# Global instances
ws_manager = ConnectionManager()
order_notifier = OrderNotifier(ws_manager)
