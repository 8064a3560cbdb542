"""Live feed of messages inserted for a user, over the realtime websocket."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from typing import Any, Awaitable, Callable, Optional, Union
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed

from .errors import MalformedMessageError
from .models import Message

logger = logging.getLogger(__name__)

REALTIME_PATH = "/realtime/v1/websocket"
MESSAGES_TOPIC = "realtime:public:messages"
HEARTBEAT_INTERVAL = 30

MessageCallback = Callable[[Message], Union[Awaitable[None], None]]


def realtime_url(base_url: str, api_key: str) -> str:
    base = base_url.rstrip("/")
    if base.startswith("https://"):
        base = "wss://" + base[len("https://"):]
    elif base.startswith("http://"):
        base = "ws://" + base[len("http://"):]
    return f"{base}{REALTIME_PATH}?{urlencode({'apikey': api_key, 'vsn': '1.0.0'})}"


def build_join_frame(user_id: str, access_token: Optional[str] = None, ref: str = "1") -> dict:
    payload: dict[str, Any] = {
        "config": {
            "broadcast": {"self": False},
            "presence": {"key": ""},
            "postgres_changes": [
                {
                    "event": "INSERT",
                    "schema": "public",
                    "table": "messages",
                    "filter": f"receiver_id=eq.{user_id}",
                }
            ],
        }
    }
    if access_token:
        payload["access_token"] = access_token
    return {"topic": MESSAGES_TOPIC, "event": "phx_join", "payload": payload, "ref": ref}


def build_heartbeat_frame(ref: str) -> dict:
    return {"topic": "phoenix", "event": "heartbeat", "payload": {}, "ref": ref}


def parse_change_frame(raw: Union[str, bytes]) -> Optional[Message]:
    """Return the inserted message carried by ``raw``, if there is one."""

    try:
        frame = json.loads(raw)
    except ValueError:
        logger.warning("Ignoring undecodable realtime frame: %r", raw[:200])
        return None
    if not isinstance(frame, dict):
        return None

    event = frame.get("event")
    payload = frame.get("payload") or {}
    if not isinstance(payload, dict):
        logger.warning("Ignoring realtime %s frame with a non-object payload", event)
        return None
    if event == "phx_reply" and payload.get("status") == "error":
        logger.warning("Realtime channel rejected the join: %s", payload.get("response"))
        return None
    if event != "postgres_changes":
        return None

    data = payload.get("data") or {}
    if not isinstance(data, dict):
        logger.warning("Ignoring realtime change with non-object data: %r", data)
        return None
    if data.get("type") != "INSERT":
        return None
    try:
        return Message.from_row(data.get("record"))
    except MalformedMessageError as exc:
        logger.warning("Skipping realtime record: %s", exc)
        return None


class RealtimeListener:
    def __init__(self, base_url: str, api_key: str, access_token: Optional[str] = None):
        self.base_url = base_url
        self.api_key = api_key
        self.access_token = access_token

    async def listen(self, user_id: str, on_message: MessageCallback) -> None:
        """Call ``on_message`` for each message inserted for ``user_id``.

        Returns when the connection closes. Cancel the task to stop earlier.
        """

        url = realtime_url(self.base_url, self.api_key)
        async with websockets.connect(url) as websocket:
            await websocket.send(json.dumps(build_join_frame(user_id, self.access_token)))
            heartbeat = asyncio.create_task(self._heartbeat(websocket))
            try:
                while True:
                    try:
                        raw = await websocket.recv()
                    except ConnectionClosed:
                        break
                    message = parse_change_frame(raw)
                    if message is None:
                        continue
                    result = on_message(message)
                    if inspect.isawaitable(result):
                        await result
            finally:
                heartbeat.cancel()

    async def _heartbeat(self, websocket) -> None:
        ref = 1
        while True:
            await asyncio.sleep(HEARTBEAT_INTERVAL)
            ref += 1
            try:
                await websocket.send(json.dumps(build_heartbeat_frame(str(ref))))
            except ConnectionClosed:
                break
