"""Carry execution events from the Celery worker to the API process over Redis pub/sub.

Scheduled runs execute in the worker, while SSE listeners live in the API's
ExecutionNotifier. The worker's orchestrator is handed a RedisEventPublisher
as its notifier; the API runs a RedisEventRelay that subscribes to the same
channel and hands every payload to its notifier. Both sides are best-effort,
like the notifier itself: a Redis outage drops events but never fails a job.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from answerwatch.core.config import settings
from answerwatch.services.notifier import ExecutionEvent, ExecutionNotifier

logger = logging.getLogger(__name__)


def _connect(redis_url: str | None) -> aioredis.Redis:
    return aioredis.from_url(redis_url or settings.redis_url, decode_responses=True)


def encode_event(business_id: int, event: ExecutionEvent) -> str:
    return json.dumps({"businessId": business_id, "payload": event.to_payload()})


class RedisEventPublisher:
    """Notifier stand-in for worker processes: every event goes to the Redis channel."""

    def __init__(self, redis_url: str | None = None, channel: str | None = None, client: aioredis.Redis | None = None):
        self.redis_url = redis_url
        self.channel = channel or settings.realtime_channel
        self._client = client

    def _get_client(self) -> aioredis.Redis:
        if self._client is None:
            self._client = _connect(self.redis_url)
        return self._client

    def has_listener(self, business_id: int) -> bool:
        # Listeners are registered in the API process; the worker cannot see them.
        return True

    async def publish(self, business_id: int, event: ExecutionEvent) -> bool:
        try:
            receivers = await self._get_client().publish(self.channel, encode_event(business_id, event))
        except (RedisError, OSError) as e:
            logger.warning("Could not relay %s event for business %d (non-fatal): %s", event.status, business_id, e)
            return False
        return bool(receivers)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class RedisEventRelay:
    """Subscribes to the event channel and republishes each payload through an ExecutionNotifier."""

    def __init__(
        self,
        notifier: ExecutionNotifier,
        redis_url: str | None = None,
        channel: str | None = None,
        client: aioredis.Redis | None = None,
        reconnect_delay: float | None = None,
    ):
        self.notifier = notifier
        self.redis_url = redis_url
        self.channel = channel or settings.realtime_channel
        self.reconnect_delay = (
            reconnect_delay if reconnect_delay is not None else settings.realtime_reconnect_seconds
        )
        self._client = client

    async def handle_message(self, message: dict[str, Any]) -> bool:
        """Deliver one pub/sub message. Subscribe confirmations and unreadable data are ignored."""
        if message.get("type") != "message":
            return False
        try:
            envelope = json.loads(message["data"])
            business_id = int(envelope["businessId"])
            payload = envelope["payload"]
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Ignoring unreadable realtime message on %s: %s", self.channel, e)
            return False
        if not isinstance(payload, dict):
            logger.warning("Ignoring realtime message for business %d without a payload object", business_id)
            return False
        return await self.notifier.deliver(business_id, payload)

    async def run(self) -> None:
        """Relay until cancelled, resubscribing after connection errors."""
        if self._client is None:
            self._client = _connect(self.redis_url)
        while True:
            pubsub = self._client.pubsub()
            try:
                await pubsub.subscribe(self.channel)
                logger.info("Relaying worker execution events from %s", self.channel)
                async for message in pubsub.listen():
                    await self.handle_message(message)
            except (RedisError, OSError) as e:
                logger.warning("Realtime relay lost Redis (%s), retrying in %.0fs", e, self.reconnect_delay)
                await asyncio.sleep(self.reconnect_delay)
            finally:
                await pubsub.aclose()

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
