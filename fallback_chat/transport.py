"""
Transport strategies used by the chat page to obtain a reply.

`DirectTransport` calls the completion API through the `ResponseFetcher`.
`RelayTransport` forwards the text over a Socket.IO connection to an external
relay server and waits for its answer. Both expose the same coroutine API so
the web layer picks one at startup and never branches on it afterwards.
"""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any, Deque, Dict, Optional

import socketio
from socketio.exceptions import ConnectionError as RelayConnectionError

from .fetcher import ResponseFetcher
from .settings import ConfigurationError, resolve_api_key


logger = logging.getLogger("fallback_chat.transport")

RELAY_EVENT = "message"


class TransportError(RuntimeError):
    """Raised when a transport cannot deliver a message or obtain a reply."""


class Transport:
    name = "base"

    async def start(self) -> None:
        return None

    async def stop(self) -> None:
        return None

    async def send(self, text: str) -> str:  # pragma: no cover - interface
        raise NotImplementedError


class DirectTransport(Transport):
    name = "direct"

    def __init__(self, fetcher: ResponseFetcher) -> None:
        self.fetcher = fetcher

    async def send(self, text: str) -> str:
        return await self.fetcher.fetch_reply(text)


class RelayTransport(Transport):
    """
    Relay chat messages through a Socket.IO server.

    Replies are matched to requests in arrival order. A request that timed
    out keeps its slot, so its late reply is dropped instead of being handed
    to the next request. The connection is retried on `send` if it is down.
    """

    name = "relay"

    def __init__(
        self,
        url: str,
        *,
        reply_timeout: float = 60,
        client: Optional[Any] = None,
    ) -> None:
        self.url = url
        self.reply_timeout = reply_timeout
        self.client = client if client is not None else socketio.AsyncClient()
        self._waiting: Deque[asyncio.Future] = deque()
        self.client.on("connect", self._on_connect)
        self.client.on("disconnect", self._on_disconnect)
        self.client.on(RELAY_EVENT, self._on_message)

    @property
    def connected(self) -> bool:
        return bool(getattr(self.client, "connected", False))

    async def start(self) -> None:
        if self.connected:
            return
        try:
            await self.client.connect(self.url)
        except RelayConnectionError:
            logger.exception("Could not connect to relay server at %s", self.url)

    async def stop(self) -> None:
        for future in self._waiting:
            if not future.done():
                future.set_exception(TransportError("Relay connection closed."))
        self._waiting.clear()
        if self.connected:
            await self.client.disconnect()

    async def send(self, text: str) -> str:
        if not self.connected:
            await self.start()
        if not self.connected:
            raise TransportError(f"Not connected to relay server at {self.url}.")
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._waiting.append(future)
        try:
            await self.client.emit(RELAY_EVENT, text)
        except Exception:
            self._waiting.remove(future)
            raise
        try:
            return await asyncio.wait_for(future, timeout=self.reply_timeout)
        except asyncio.TimeoutError as exc:
            # The cancelled future stays queued until its late reply arrives.
            raise TransportError(
                f"No reply from relay server within {self.reply_timeout} seconds."
            ) from exc

    async def _on_connect(self) -> None:
        logger.info("Connected to relay server %s", self.url)

    async def _on_disconnect(self, *_: Any) -> None:
        logger.info("Disconnected from relay server %s", self.url)

    async def _on_message(self, data: Any) -> None:
        if not self._waiting:
            logger.warning("Dropping relay reply with no pending request: %r", data)
            return
        future = self._waiting.popleft()
        if future.done():
            logger.warning("Dropping late relay reply for a timed-out request: %r", data)
            return
        future.set_result(data if isinstance(data, str) else str(data))


def build_transport(settings: Dict[str, Any]) -> Transport:
    """
    Compose the transport named by `settings["transport"]`.

    The direct transport resolves the API key here, so a missing credential
    fails at startup rather than on the first message.
    """
    kind = settings.get("transport", "direct")
    if kind == "direct":
        fetcher = ResponseFetcher.from_settings(settings, resolve_api_key(settings))
        return DirectTransport(fetcher)
    if kind == "relay":
        relay = settings.get("relay") or {}
        if not relay.get("url"):
            raise ConfigurationError("relay.url is required for the relay transport.")
        return RelayTransport(
            relay["url"],
            reply_timeout=float(relay.get("reply_timeout", 60)),
        )
    raise ConfigurationError(f"Unknown transport '{kind}'.")
