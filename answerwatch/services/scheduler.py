"""Scheduler: run every due business, then push its next due time forward.

``next_execution_time`` is only advanced after a business's run returns, so a
crash mid-run leaves the business due and the next tick picks it up again.
The orchestrator's per-day idempotency makes that retry cheap: jobs already
completed (or still running) today are skipped without a provider call.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from answerwatch.core.metrics import SCHEDULER_CHECKS
from answerwatch.services.orchestrator import JobOrchestrator
from answerwatch.services.repository import ExecutionRepository

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CheckSummary:
    due: int = 0
    completed: list[int] = field(default_factory=list)
    errors: dict[int, str] = field(default_factory=dict)


class Scheduler:
    def __init__(
        self,
        repository: ExecutionRepository,
        orchestrator: JobOrchestrator,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.repo = repository
        self.orchestrator = orchestrator
        self._clock = clock

    async def check_and_execute(self) -> CheckSummary:
        """Run all due businesses one after another. One failure never stops the rest."""
        businesses = await self.repo.list_due_businesses(self._clock())
        summary = CheckSummary(due=len(businesses))
        if not businesses:
            logger.debug("Scheduler tick: no businesses due")
            return summary

        logger.info("Scheduler tick: %d businesses due", len(businesses))
        for business in businesses:
            try:
                results = await self.orchestrator.execute_all_prompts(business.id)
                next_time = self._clock() + timedelta(days=max(business.refresh_period_days or 1, 1))
                await self.repo.set_next_execution(business.id, next_time)
            except Exception as e:
                SCHEDULER_CHECKS.labels(status="error").inc()
                logger.error("Scheduled run failed for business %d: %s", business.id, e)
                summary.errors[business.id] = str(e)
                continue

            SCHEDULER_CHECKS.labels(status="completed").inc()
            summary.completed.append(business.id)
            logger.info(
                "Business %d ran %d jobs, next execution at %s",
                business.id,
                len(results),
                next_time.isoformat(),
            )
        return summary
