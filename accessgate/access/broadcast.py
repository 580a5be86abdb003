"""
Cross-document reauthorize signals.

BroadcastBus tags messages with the publisher origin and only delivers matching ones.
Transports: LocalBroadcastHub (in-process documents) and RedisBroadcastChannel (pub/sub).
A document never receives its own broadcast.
"""
from __future__ import annotations

import asyncio
import inspect
import json
import logging
import secrets
from collections.abc import Callable, Mapping
from typing import Any

import redis
import redis.asyncio as aioredis

from accessgate.access.models import REAUTHORIZE_MESSAGE_TYPE, ReauthorizeMessage
from accessgate.access.ports import BroadcastChannel, Unlisten
from accessgate.core.config import settings

logger = logging.getLogger(__name__)

MessageHandler = Callable[[Mapping[str, Any]], Any]


class _HandlerSet:
    """Subscribers of one channel endpoint; awaitable results are kept alive until done."""

    def __init__(self) -> None:
        self._handlers: list[MessageHandler] = []
        self._pending: set[asyncio.Future] = set()

    def add(self, handler: MessageHandler) -> Unlisten:
        self._handlers.append(handler)

        def unlisten() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unlisten

    def dispatch(self, message: Mapping[str, Any]) -> None:
        for handler in list(self._handlers):
            result = handler(dict(message))
            if inspect.isawaitable(result):
                future = asyncio.ensure_future(result)
                self._pending.add(future)
                future.add_done_callback(self._pending.discard)


class LocalBroadcastHub:
    """Connects the documents of one viewer session living in the same process."""

    def __init__(self) -> None:
        self._endpoints: list[LocalBroadcastChannel] = []

    def channel(self) -> LocalBroadcastChannel:
        endpoint = LocalBroadcastChannel(self)
        self._endpoints.append(endpoint)
        return endpoint

    def _deliver(self, sender: LocalBroadcastChannel, message: Mapping[str, Any]) -> None:
        for endpoint in list(self._endpoints):
            if endpoint is not sender:
                endpoint._handlers.dispatch(message)


class LocalBroadcastChannel(BroadcastChannel):
    def __init__(self, hub: LocalBroadcastHub) -> None:
        self._hub = hub
        self._handlers = _HandlerSet()

    async def publish(self, message: Mapping[str, Any]) -> None:
        self._hub._deliver(self, message)

    def subscribe(self, handler: MessageHandler) -> Unlisten:
        return self._handlers.add(handler)


class RedisBroadcastChannel(BroadcastChannel):
    """
    Redis pub/sub endpoint for one document.
    Messages are wrapped with a sender id so the publisher skips its own echo.
    Redis failures are logged and do not break the access flow.
    """

    def __init__(
        self,
        channel_name: str | None = None,
        client: aioredis.Redis | None = None,
        sender_id: str | None = None,
    ) -> None:
        self.channel_name = channel_name or settings.broadcast_channel
        self.client = client or aioredis.Redis.from_url(settings.redis_url, decode_responses=True)
        self.sender_id = sender_id or secrets.token_hex(8)
        self._handlers = _HandlerSet()
        self._listener: asyncio.Task | None = None

    async def publish(self, message: Mapping[str, Any]) -> None:
        envelope = json.dumps({"sender": self.sender_id, "message": dict(message)})
        try:
            await self.client.publish(self.channel_name, envelope)
        except redis.RedisError as e:
            logger.warning("access_broadcast_redis_error", extra={"error": str(e)})

    def subscribe(self, handler: MessageHandler) -> Unlisten:
        unlisten = self._handlers.add(handler)
        self.start_listener()
        return unlisten

    def start_listener(self) -> None:
        if self._listener is not None and not self._listener.done():
            return
        self._listener = asyncio.ensure_future(self._listen_loop())

    async def stop_listener(self) -> None:
        if self._listener is None:
            return
        self._listener.cancel()
        try:
            await self._listener
        except asyncio.CancelledError:
            pass
        self._listener = None

    async def _listen_loop(self) -> None:
        pubsub = self.client.pubsub()
        try:
            await pubsub.subscribe(self.channel_name)
            async for msg in pubsub.listen():
                if msg.get("type") == "message":
                    self.handle_raw(msg.get("data"))
        except redis.RedisError as e:
            logger.warning("access_broadcast_redis_error", extra={"error": str(e)})
        finally:
            await pubsub.aclose()

    def handle_raw(self, raw: Any) -> None:
        try:
            envelope = json.loads(raw)
        except (TypeError, json.JSONDecodeError):
            logger.warning("access_broadcast_malformed")
            return
        if not isinstance(envelope, dict) or envelope.get("sender") == self.sender_id:
            return
        message = envelope.get("message")
        if isinstance(message, dict):
            self._handlers.dispatch(message)


class BroadcastBus:
    def __init__(self, channel: BroadcastChannel, origin: str) -> None:
        self.channel = channel
        self.origin = origin

    async def broadcast_reauthorize(self) -> None:
        message = ReauthorizeMessage(origin=self.origin)
        logger.debug("access_broadcast_reauthorize", extra={"origin": self.origin})
        await self.channel.publish(message.model_dump())

    def on_reauthorize_received(self, handler: Callable[[], Any]) -> Unlisten:
        """handler runs for reauthorize signals from other documents of the same publisher origin."""

        def on_message(message: Mapping[str, Any]) -> Any:
            if message.get("type") != REAUTHORIZE_MESSAGE_TYPE or message.get("origin") != self.origin:
                return None
            logger.info("access_reauthorize_received", extra={"origin": self.origin})
            return handler()

        return self.channel.subscribe(on_message)
