"""Change feed: pushes committed row changes to WebSocket subscribers."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder

from .services.tables import FEED_NAMES, get_table

logger = logging.getLogger(__name__)

SUBSCRIBABLE_TABLES = frozenset(FEED_NAMES.values())


@dataclass
class Change:
    """One committed row change. `old`/`new` are read-shaped rows."""
    table: str
    type: str
    old: Optional[dict] = None
    new: Optional[dict] = None

    def message(self, kind: Optional[str] = None, old=..., new=...) -> dict:
        return jsonable_encoder({
            "table": self.table,
            "type": kind or self.type,
            "old": self.old if old is ... else old,
            "new": self.new if new is ... else new,
        })


class ChangeFeed:
    """Manages WebSocket connections and their table subscriptions."""

    def __init__(self):
        # All active connections
        self.active_connections: list[WebSocket] = []
        # Table subscriptions: table name -> set of websockets
        self.table_subscriptions: dict[str, set[WebSocket]] = {}
        # Connection metadata
        self.connection_info: dict[WebSocket, dict] = {}

    async def connect(self, websocket: WebSocket, user_id: Optional[str] = None) -> None:
        """Accept a new WebSocket connection for `user_id` (None when signed out)."""
        await websocket.accept()
        self.active_connections.append(websocket)
        self.connection_info[websocket] = {
            "user_id": user_id,
            "connected_at": datetime.now(timezone.utc),
            "subscriptions": set(),
        }
        logger.info(f"Feed connected. Total: {len(self.active_connections)}")

    def disconnect(self, websocket: WebSocket) -> None:
        """Handle WebSocket disconnection."""
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)

        info = self.connection_info.pop(websocket, {})
        for table in info.get("subscriptions", set()):
            self.table_subscriptions.get(table, set()).discard(websocket)
        logger.info(f"Feed disconnected. Total: {len(self.active_connections)}")

    def subscribe(self, websocket: WebSocket, table: str) -> None:
        self.table_subscriptions.setdefault(table, set()).add(websocket)
        if websocket in self.connection_info:
            self.connection_info[websocket]["subscriptions"].add(table)
        logger.debug(f"Subscribed to {table}")

    def unsubscribe(self, websocket: WebSocket, table: str) -> None:
        self.table_subscriptions.get(table, set()).discard(websocket)
        if websocket in self.connection_info:
            self.connection_info[websocket]["subscriptions"].discard(table)
        logger.debug(f"Unsubscribed from {table}")

    def subscriber_count(self, table: str) -> int:
        return len(self.table_subscriptions.get(table, set()))

    def message_for(self, user_id: Optional[str], change: Change) -> Optional[dict]:
        """
        The message `user_id` should receive for `change`, or None.

        An update that makes a row visible arrives as an insert; one that hides
        it arrives as a delete.
        """
        policy = get_table(change.table).policy
        old_visible = change.old is not None and policy.can_see(user_id, change.old)
        new_visible = change.new is not None and policy.can_see(user_id, change.new)

        if change.type == "insert":
            return change.message() if new_visible else None
        if change.type == "delete":
            return change.message() if old_visible else None
        if old_visible and new_visible:
            return change.message()
        if new_visible:
            return change.message(kind="insert", old=None)
        if old_visible:
            return change.message(kind="delete", new=None)
        return None

    async def publish(self, change: Change) -> None:
        """Send `change` to every subscriber allowed to see it."""
        subscribers = list(self.table_subscriptions.get(change.table, set()))
        disconnected = []

        for websocket in subscribers:
            user_id = self.connection_info.get(websocket, {}).get("user_id")
            message = self.message_for(user_id, change)
            if message is None:
                continue
            try:
                await websocket.send_json(message)
            except Exception as e:
                logger.warning(f"Failed to send to websocket: {e}")
                disconnected.append(websocket)

        # Clean up disconnected
        for ws in disconnected:
            self.disconnect(ws)


# Singleton change feed
feed = ChangeFeed()


def get_feed() -> ChangeFeed:
    """Dependency for the process-wide change feed."""
    return feed
