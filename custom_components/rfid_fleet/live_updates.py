"""
LiveUpdateChannel - optional push channel from the fleet backend.

Responsibilities:
- Hold one websocket connection open and translate each push message into
  the cache topics it invalidates.
- Reconnect after a drop with 2^n second delays, giving up after
  WS_MAX_RECONNECT_ATTEMPTS consecutive failures; a successful connect resets
  the counter.

Messages never carry data the rollup uses directly: they only mark cache keys
stale, and the coordinator re-fetches. The on_message callback is synchronous
and must not block.
"""
from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import aiohttp

from .const import IGNORED_MESSAGE_TYPES, MESSAGE_TOPICS, WS_MAX_RECONNECT_ATTEMPTS

_LOGGER = logging.getLogger(__name__)

WS_HEARTBEAT = 30  # seconds between protocol-level pings


@dataclasses.dataclass(frozen=True)
class LiveMessage:
    """One push message that invalidates at least one topic."""

    type: str
    topics: tuple[str, ...]
    data: Any = None


def parse_message(raw: str | bytes | dict) -> LiveMessage | None:
    """
    Decode a {"type": ..., "data": ...} push message.

    Returns None for malformed payloads and for message types that carry
    nothing for the rollup (welcome, pong, weather).
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError:
            _LOGGER.warning("Discarding non-JSON push message: %.100r", raw)
            return None
    if not isinstance(raw, dict):
        _LOGGER.warning("Discarding push message that is not an object: %.100r", raw)
        return None

    msg_type = raw.get("type")
    if msg_type in IGNORED_MESSAGE_TYPES:
        _LOGGER.debug("Ignoring push message of type %s", msg_type)
        return None
    topics = MESSAGE_TOPICS.get(msg_type)
    if topics is None:
        _LOGGER.debug("Unknown push message type %r", msg_type)
        return None
    return LiveMessage(type=msg_type, topics=topics, data=raw.get("data"))


class LiveUpdateChannel:
    """Websocket reader with bounded exponential reconnect."""

    def __init__(
        self,
        ws_url: str,
        headers: dict,
        on_message: Callable[[LiveMessage], None],
        max_attempts: int = WS_MAX_RECONNECT_ATTEMPTS,
        session_factory: Callable[[], aiohttp.ClientSession] = aiohttp.ClientSession,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._ws_url = ws_url
        self._headers = headers
        self._on_message = on_message
        self._max_attempts = max_attempts
        self._session_factory = session_factory
        self._sleep = sleep
        self._task: asyncio.Task | None = None
        self._stopping = False
        self.connected = False
        self.attempts = 0
        self.gave_up = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stopping = False
        self.gave_up = False
        self._task = asyncio.ensure_future(self._run())

    async def stop(self) -> None:
        self._stopping = True
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        self.connected = False

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        self.attempts = 0
        while not self._stopping:
            try:
                async with self._session_factory() as session:
                    async with session.ws_connect(
                        self._ws_url, headers=self._headers, heartbeat=WS_HEARTBEAT
                    ) as ws:
                        self.connected = True
                        self.attempts = 0
                        _LOGGER.info("Live update channel connected to %s", self._ws_url)
                        await self._read(ws)
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
                _LOGGER.warning("Live update channel error: %s", exc)
            finally:
                self.connected = False

            if self._stopping:
                return
            if self.attempts >= self._max_attempts:
                self.gave_up = True
                _LOGGER.error(
                    "Live update channel gave up after %s reconnect attempts, polling only",
                    self.attempts,
                )
                return
            delay = 2 ** self.attempts
            self.attempts += 1
            _LOGGER.debug("Reconnecting live update channel in %ss (attempt %s)", delay, self.attempts)
            await self._sleep(delay)

    async def _read(self, ws) -> None:
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                message = parse_message(msg.data)
                if message is not None:
                    self._dispatch(message)
            elif msg.type == aiohttp.WSMsgType.ERROR:
                _LOGGER.warning("Live update channel closed with error: %s", ws.exception())
                break
        _LOGGER.debug("Live update channel disconnected")

    def _dispatch(self, message: LiveMessage) -> None:
        try:
            self._on_message(message)
        except Exception:  # noqa: BLE001
            _LOGGER.exception("Live update handler failed for message type %s", message.type)
