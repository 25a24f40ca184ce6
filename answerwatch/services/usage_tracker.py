"""Token and cost accounting for provider and analysis calls.

Nothing here may fail the call being described: every error is logged and
dropped.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone

from answerwatch.providers.base import TokenUsage
from answerwatch.services.repository import ExecutionRepository

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UsageTracker:
    def __init__(self, repository: ExecutionRepository, clock: Callable[[], datetime] = _utcnow):
        self._repo = repository
        self._clock = clock

    async def record_call(
        self,
        *,
        business_id: int,
        platform_id: int | None,
        execution_id: int | None,
        call_type: str,
        provider: str | None,
        model: str | None,
        usage: TokenUsage,
        cost_usd: float,
        duration_ms: int,
        success: bool,
        error_message: str | None = None,
    ) -> None:
        try:
            await self._repo.insert_api_call_log(
                business_id=business_id,
                platform_id=platform_id,
                execution_id=execution_id,
                call_type=call_type,
                provider=provider,
                model=model,
                prompt_tokens=usage.prompt_tokens,
                completion_tokens=usage.completion_tokens,
                total_tokens=usage.total_tokens,
                estimated_cost_usd=cost_usd,
                duration_ms=duration_ms,
                success=success,
                error_message=error_message[:2000] if error_message else None,
            )
        except Exception as e:
            logger.warning("Failed to write API call log (non-fatal): %s", e)

        if not success or platform_id is None:
            return
        try:
            await self._repo.upsert_usage(business_id, platform_id, self._clock().date(), usage, cost_usd)
        except Exception as e:
            logger.warning("Failed to update platform usage (non-fatal): %s", e)
