"""Realtime Notifier: in-process fan-out of per-job events to one listener per business.

The registry is owned by one ExecutionNotifier instance that is handed to the
orchestrator and to whichever transport streams updates (the SSE endpoint).
Events from jobs run in the Celery worker reach it through the Redis relay
in answerwatch.services.event_relay.
Delivery is best-effort: no buffering when nobody listens, and a listener
that raises is logged and otherwise ignored.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Protocol

logger = logging.getLogger(__name__)


@dataclass
class ExecutionEvent:
    status: str  # completed | failed
    prompt_id: int
    platform_id: int
    result: str | None = None
    completed_at: datetime | None = None
    refresh_date: date | None = None
    brand_mentions: int = 0
    competitors_mentioned: list[str] = field(default_factory=list)
    analysis_confidence: float | None = None
    business_visibility: int = 0
    share_of_voice: float = 0.0
    competitor_share_of_voice: dict[str, float] = field(default_factory=dict)
    execution_count: int = 0
    error: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload = {
            "status": self.status,
            "promptId": self.prompt_id,
            "platformId": self.platform_id,
            "result": self.result,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
            "refreshDate": self.refresh_date.isoformat() if self.refresh_date else None,
            "brandMentions": self.brand_mentions,
            "competitorsMentioned": list(self.competitors_mentioned),
            "analysisConfidence": self.analysis_confidence,
            "businessVisibility": self.business_visibility,
            "shareOfVoice": self.share_of_voice,
            "competitorShareOfVoice": dict(self.competitor_share_of_voice),
            "executionCount": self.execution_count,
        }
        if self.error is not None:
            payload["error"] = self.error
        return payload


Listener = Callable[[dict[str, Any]], "Awaitable[None] | None"]


class EventSink(Protocol):
    """What the orchestrator publishes to: the in-process notifier or a cross-process publisher."""

    def has_listener(self, business_id: int) -> bool: ...

    async def publish(self, business_id: int, event: ExecutionEvent) -> bool: ...


class ExecutionNotifier:
    def __init__(self):
        self._listeners: dict[int, Listener] = {}

    def register(self, business_id: int, listener: Listener) -> None:
        """Attach *listener* for a business, replacing any previous one."""
        self._listeners[business_id] = listener

    def unregister(self, business_id: int, listener: Listener | None = None) -> None:
        """Detach the business's listener. With *listener*, only if it is still the registered one."""
        if listener is not None and self._listeners.get(business_id) is not listener:
            return
        self._listeners.pop(business_id, None)

    def has_listener(self, business_id: int) -> bool:
        return business_id in self._listeners

    async def publish(self, business_id: int, event: ExecutionEvent) -> bool:
        """Deliver *event* to the current listener. Returns whether anyone received it."""
        return await self.deliver(business_id, event.to_payload())

    async def deliver(self, business_id: int, payload: dict[str, Any]) -> bool:
        """Hand an already-serialized event payload to the current listener."""
        listener = self._listeners.get(business_id)
        if listener is None:
            return False
        try:
            outcome = listener(payload)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.warning("Realtime listener for business %d failed (non-fatal): %s", business_id, e)
            return False
        return True
