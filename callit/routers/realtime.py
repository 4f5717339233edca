import json
import logging
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from sqlmodel import Session

from ..config import SESSION_COOKIE_NAME
from ..database import get_session
from ..realtime import ChangeFeed, SUBSCRIBABLE_TABLES, get_feed
from ..services.auth import get_user_by_session_token

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


@router.websocket("/realtime")
async def realtime(
    websocket: WebSocket,
    db: Session = Depends(get_session),
    feed: ChangeFeed = Depends(get_feed)
):
    """
    Change feed. Clients send {"action": "subscribe"|"unsubscribe", "table": name}
    and then receive {"table", "type", "old", "new"} for every visible change.
    """
    session_token = websocket.cookies.get(SESSION_COOKIE_NAME)
    user = get_user_by_session_token(db, session_token) if session_token else None
    await feed.connect(websocket, user.id if user else None)

    try:
        while True:
            data = await websocket.receive_text()

            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                await websocket.send_json({"type": "error", "detail": "Invalid JSON"})
                continue
            if not isinstance(message, dict):
                await websocket.send_json({"type": "error", "detail": "Messages must be JSON objects"})
                continue

            action = message.get("action")
            table = message.get("table")

            if not isinstance(table, str) or table not in SUBSCRIBABLE_TABLES:
                await websocket.send_json({"type": "error", "detail": f"Unknown table: {table}"})
            elif action == "subscribe":
                feed.subscribe(websocket, table)
                await websocket.send_json({"type": "subscribed", "table": table})
            elif action == "unsubscribe":
                feed.unsubscribe(websocket, table)
                await websocket.send_json({"type": "unsubscribed", "table": table})
            else:
                await websocket.send_json({"type": "error", "detail": f"Unknown action: {action}"})
    except WebSocketDisconnect:
        logger.debug("Feed client disconnected")
    finally:
        feed.disconnect(websocket)
