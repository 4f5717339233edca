"""
HTTP client for the backend service: identity, the generic table API and the
WebSocket change feed.
"""

import asyncio
import json
import logging
from typing import Dict, Iterable, List, Optional

import httpx
import websockets
from pydantic import ValidationError

from ..config import SESSION_COOKIE_NAME
from .errors import BackendError
from .records import ChangeEvent, ChangeType

logger = logging.getLogger(__name__)

CHANGE_TYPES = {change_type.value for change_type in ChangeType}


class FeedSubscription:
    """
    One message channel per subscribed collection. The transport puts decoded
    events in; consumers await them per table.
    """

    def __init__(self, tables: Iterable[str]):
        self.tables = tuple(tables)
        self.channels: Dict[str, asyncio.Queue] = {table: asyncio.Queue() for table in self.tables}
        self._task: Optional[asyncio.Task] = None
        self.closed = False

    def start(self, transport) -> None:
        """Run `transport` (a coroutine feeding this subscription) in the background."""
        self._task = asyncio.create_task(transport)
        self._task.add_done_callback(self._transport_done)

    def _transport_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning(f"Change feed stopped: {error}")

    def put(self, event: ChangeEvent) -> None:
        channel = self.channels.get(event.table)
        if channel is None or self.closed:
            return
        channel.put_nowait(event)

    def dispatch(self, message: dict) -> None:
        """Route one raw feed message; acknowledgements and errors are only logged."""
        if message.get("type") in CHANGE_TYPES:
            self.put(ChangeEvent.model_validate(message))
        elif message.get("type") == "error":
            logger.warning(f"Change feed error: {message.get('detail')}")
        else:
            logger.debug(f"Change feed: {message}")

    def receive(self, raw) -> None:
        """Decode and route one feed frame. Malformed frames are logged and skipped."""
        try:
            message = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Ignoring undecodable feed frame: {raw!r}")
            return
        if not isinstance(message, dict):
            logger.warning(f"Ignoring feed frame that is not an object: {raw!r}")
            return
        try:
            self.dispatch(message)
        except ValidationError as e:
            logger.warning(f"Ignoring malformed change event: {e}")

    async def get(self, table: str) -> ChangeEvent:
        return await self.channels[table].get()

    async def close(self) -> None:
        self.closed = True
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass


def _filters(eq: Optional[dict] = None, is_null: Iterable[str] = ()) -> List[tuple]:
    params = []
    for column, value in (eq or {}).items():
        if isinstance(value, bool):
            value = "true" if value else "false"
        params.append((column, f"eq.{value}"))
    for column in is_null:
        params.append((column, "is.null"))
    return params


def _error_detail(response: httpx.Response) -> str:
    try:
        detail = response.json().get("detail")
    except (ValueError, AttributeError):
        detail = None
    return detail if isinstance(detail, str) else f"Request failed with status {response.status_code}"


def feed_url_for(base_url: str) -> str:
    url = httpx.URL(base_url)
    scheme = "wss" if url.scheme == "https" else "ws"
    return str(url.copy_with(scheme=scheme, path="/realtime"))


class HttpBackend:
    """
    Backend service client.

    Relational operations take a table name and equality filters; results are
    plain row dicts. Every failure is raised as BackendError.
    """

    def __init__(
        self,
        base_url: str,
        http: Optional[httpx.AsyncClient] = None,
        feed_url: Optional[str] = None,
        timeout: float = 30.0
    ):
        self.http = http or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self.feed_url = feed_url or feed_url_for(base_url)

    async def _request(self, method: str, path: str, **kwargs):
        try:
            response = await self.http.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise BackendError(_error_detail(e.response), e.response.status_code) from e
        except httpx.RequestError as e:
            raise BackendError(f"Network error: {e}") from e
        return response.json()

    # Identity

    async def sign_up(self, email: str, password: str, display_name: Optional[str] = None) -> dict:
        payload = {"email": email, "password": password, "display_name": display_name}
        return await self._request("POST", "/auth/register", json=payload)

    async def sign_in(self, email: str, password: str) -> dict:
        return await self._request("POST", "/auth/login", json={"email": email, "password": password})

    async def sign_out(self) -> None:
        await self._request("POST", "/auth/logout")

    async def current_user(self) -> Optional[dict]:
        """The signed-in user, or None when there is no valid session."""
        try:
            return await self._request("GET", "/auth/me")
        except BackendError as e:
            if e.status_code == 401:
                return None
            raise

    # Relational store

    async def select(
        self,
        table: str,
        *,
        eq: Optional[dict] = None,
        is_null: Iterable[str] = (),
        order: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[dict]:
        params = _filters(eq, is_null)
        if order:
            params.append(("order", order))
        if limit is not None:
            params.append(("limit", str(limit)))
        return await self._request("GET", f"/rest/{table}", params=params)

    async def insert(self, table: str, row: dict) -> dict:
        return await self._request("POST", f"/rest/{table}", json=row)

    async def update(self, table: str, values: dict, *, eq: dict) -> List[dict]:
        return await self._request("PATCH", f"/rest/{table}", params=_filters(eq), json=values)

    async def delete(self, table: str, *, eq: dict) -> List[dict]:
        return await self._request("DELETE", f"/rest/{table}", params=_filters(eq))

    # Change feed

    async def subscribe(self, tables: Iterable[str]) -> FeedSubscription:
        subscription = FeedSubscription(tables)
        subscription.start(self._run_feed(subscription))
        return subscription

    async def _run_feed(self, subscription: FeedSubscription) -> None:
        headers = {}
        session_token = self.http.cookies.get(SESSION_COOKIE_NAME)
        if session_token:
            headers["Cookie"] = f"{SESSION_COOKIE_NAME}={session_token}"

        async with websockets.connect(self.feed_url, additional_headers=headers) as websocket:
            for table in subscription.tables:
                await websocket.send(json.dumps({"action": "subscribe", "table": table}))
            logger.info(f"Change feed subscribed to {', '.join(subscription.tables)}")
            async for raw in websocket:
                subscription.receive(raw)

    async def aclose(self) -> None:
        await self.http.aclose()
