"""Record access for the execution pipeline.

Every operation opens its own short session from the injected factory, so
concurrent jobs never share a session and each write is one small
transaction keyed by id.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from answerwatch.analysis.types import ExecutionSourceData
from answerwatch.analysis.visibility import VisibilityMetrics
from answerwatch.models.business import Business
from answerwatch.models.competitor import Competitor
from answerwatch.models.execution import Execution, ExecutionSource, ExecutionStatus
from answerwatch.models.platform import Platform
from answerwatch.models.prompt import Prompt
from answerwatch.models.usage import ApiCallLog, UsageRecord
from answerwatch.providers.base import TokenUsage

logger = logging.getLogger(__name__)

# Statuses a job may (re)claim. completed and running are left alone.
_CLAIMABLE = (ExecutionStatus.PENDING.value, ExecutionStatus.FAILED.value)


class ExecutionRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # ── Businesses ────────────────────────────────────────────────

    async def get_business(self, business_id: int) -> Business | None:
        async with self._session_factory() as db:
            return await db.get(Business, business_id)

    async def list_due_businesses(self, now: datetime) -> list[Business]:
        """Businesses whose next run is at or before *now*, or never scheduled."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(Business)
                .where(or_(Business.next_execution_time.is_(None), Business.next_execution_time <= now))
                .order_by(Business.id)
            )
            return list(result.scalars().all())

    async def set_next_execution(self, business_id: int, when: datetime) -> None:
        async with self._session_factory() as db:
            await db.execute(update(Business).where(Business.id == business_id).values(next_execution_time=when))
            await db.commit()

    # ── Prompts, platforms, competitors ───────────────────────────

    async def list_prompts(self, business_id: int) -> list[Prompt]:
        async with self._session_factory() as db:
            result = await db.execute(select(Prompt).where(Prompt.business_id == business_id).order_by(Prompt.id))
            return list(result.scalars().all())

    async def get_prompt(self, business_id: int, prompt_id: int) -> Prompt | None:
        async with self._session_factory() as db:
            result = await db.execute(select(Prompt).where(Prompt.id == prompt_id, Prompt.business_id == business_id))
            return result.scalar_one_or_none()

    async def prompt_exists(self, prompt_id: int) -> bool:
        async with self._session_factory() as db:
            result = await db.execute(select(Prompt.id).where(Prompt.id == prompt_id))
            return result.scalar_one_or_none() is not None

    async def list_active_platforms(self, business_id: int, platform_id: int | None = None) -> list[Platform]:
        async with self._session_factory() as db:
            stmt = select(Platform).where(
                Platform.business_id == business_id,
                Platform.is_active == True,  # noqa: E712
            )
            if platform_id is not None:
                stmt = stmt.where(Platform.id == platform_id)
            result = await db.execute(stmt.order_by(Platform.id))
            return list(result.scalars().all())

    async def get_platform_by_key(self, business_id: int, platform_key: str) -> Platform | None:
        async with self._session_factory() as db:
            result = await db.execute(
                select(Platform)
                .where(Platform.business_id == business_id, Platform.platform_key == platform_key)
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def list_competitors(self, business_id: int) -> list[Competitor]:
        """Tracked competitors. A NULL is_active counts as active."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(Competitor)
                .where(
                    Competitor.business_id == business_id,
                    or_(Competitor.is_active == True, Competitor.is_active.is_(None)),  # noqa: E712
                )
                .order_by(Competitor.id)
            )
            return list(result.scalars().all())

    # ── Executions ────────────────────────────────────────────────

    async def find_execution(
        self, business_id: int, prompt_id: int, platform_id: int, execution_date: date
    ) -> Execution | None:
        async with self._session_factory() as db:
            result = await db.execute(
                select(Execution).where(
                    Execution.business_id == business_id,
                    Execution.prompt_id == prompt_id,
                    Execution.platform_id == platform_id,
                    Execution.execution_date == execution_date,
                )
            )
            return result.scalar_one_or_none()

    async def create_execution(
        self, business_id: int, prompt_id: int, platform_id: int, execution_date: date
    ) -> Execution:
        """Insert a pending row. Raises IntegrityError if the day key is taken."""
        async with self._session_factory() as db:
            execution = Execution(
                business_id=business_id,
                prompt_id=prompt_id,
                platform_id=platform_id,
                execution_date=execution_date,
                status=ExecutionStatus.PENDING.value,
            )
            db.add(execution)
            await db.commit()
            return execution

    async def mark_running(self, execution_id: int, now: datetime) -> bool:
        """Claim a pending or failed row. False if another worker got there first."""
        async with self._session_factory() as db:
            result = await db.execute(
                update(Execution)
                .where(Execution.id == execution_id, Execution.status.in_(_CLAIMABLE))
                .values(status=ExecutionStatus.RUNNING.value, started_at=now, error_message=None)
            )
            await db.commit()
            return result.rowcount == 1

    async def mark_failed(self, execution_id: int, error: str, now: datetime | None = None) -> None:
        async with self._session_factory() as db:
            await db.execute(
                update(Execution)
                .where(Execution.id == execution_id)
                .values(
                    status=ExecutionStatus.FAILED.value,
                    error_message=error,
                    completed_at=now or datetime.now(timezone.utc),
                )
            )
            await db.commit()

    async def complete_execution(
        self,
        execution_id: int,
        *,
        result: str,
        usage: TokenUsage,
        brand_mentions: int,
        competitors_mentioned: list[str],
        mention_analysis: dict,
        confidence: float,
        metrics: VisibilityMetrics,
        sources: list[ExecutionSourceData],
        now: datetime,
    ) -> None:
        async with self._session_factory() as db:
            await db.execute(
                update(Execution)
                .where(Execution.id == execution_id)
                .values(
                    status=ExecutionStatus.COMPLETED.value,
                    result=result,
                    error_message=None,
                    prompt_tokens=usage.prompt_tokens,
                    completion_tokens=usage.completion_tokens,
                    total_tokens=usage.total_tokens,
                    completed_at=now,
                    **_analysis_values(brand_mentions, competitors_mentioned, mention_analysis, confidence, metrics),
                )
            )
            await _replace_sources(db, execution_id, sources)
            await db.commit()

    async def update_analysis(
        self,
        execution_id: int,
        *,
        brand_mentions: int,
        competitors_mentioned: list[str],
        mention_analysis: dict,
        confidence: float,
        metrics: VisibilityMetrics,
        sources: list[ExecutionSourceData],
    ) -> None:
        """Overwrite analysis, metrics and sources. Status and day key stay as they are."""
        async with self._session_factory() as db:
            await db.execute(
                update(Execution)
                .where(Execution.id == execution_id)
                .values(**_analysis_values(brand_mentions, competitors_mentioned, mention_analysis, confidence, metrics))
            )
            await _replace_sources(db, execution_id, sources)
            await db.commit()

    async def count_completed(self, business_id: int) -> int:
        async with self._session_factory() as db:
            result = await db.execute(
                select(func.count(Execution.id)).where(
                    Execution.business_id == business_id,
                    Execution.status == ExecutionStatus.COMPLETED.value,
                )
            )
            return result.scalar_one()

    async def list_executions_in_range(self, business_id: int, start: date, end: date) -> list[Execution]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(Execution)
                .options(selectinload(Execution.sources))
                .where(
                    Execution.business_id == business_id,
                    Execution.execution_date >= start,
                    Execution.execution_date <= end,
                )
                .order_by(Execution.execution_date.desc(), Execution.id)
            )
            return list(result.scalars().all())

    async def list_executions_for_reanalysis(self, business_id: int, force_all: bool = False) -> list[Execution]:
        """Completed executions with an answer; unless *force_all*, only unanalyzed or fallback ones."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(Execution)
                .options(selectinload(Execution.sources))
                .where(
                    Execution.business_id == business_id,
                    Execution.status == ExecutionStatus.COMPLETED.value,
                    Execution.result.is_not(None),
                )
                .order_by(Execution.id)
            )
            executions = list(result.scalars().all())
        if force_all:
            return executions
        return [e for e in executions if not e.mention_analysis or e.mention_analysis.get("fallbackUsed")]

    # ── Accounting ────────────────────────────────────────────────

    async def upsert_usage(
        self,
        business_id: int,
        platform_id: int,
        usage_date: date,
        usage: TokenUsage,
        cost_usd: float,
    ) -> None:
        """Add one request's tokens and cost to the (business, platform, day) row."""
        async with self._session_factory() as db:
            insert = pg_insert if db.get_bind().dialect.name == "postgresql" else sqlite_insert
            stmt = insert(UsageRecord).values(
                business_id=business_id,
                platform_id=platform_id,
                usage_date=usage_date,
                prompt_tokens=usage.prompt_tokens,
                completion_tokens=usage.completion_tokens,
                total_tokens=usage.total_tokens,
                request_count=1,
                estimated_cost_usd=cost_usd,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["business_id", "platform_id", "usage_date"],
                set_={
                    "prompt_tokens": UsageRecord.prompt_tokens + stmt.excluded.prompt_tokens,
                    "completion_tokens": UsageRecord.completion_tokens + stmt.excluded.completion_tokens,
                    "total_tokens": UsageRecord.total_tokens + stmt.excluded.total_tokens,
                    "request_count": UsageRecord.request_count + 1,
                    "estimated_cost_usd": UsageRecord.estimated_cost_usd + stmt.excluded.estimated_cost_usd,
                },
            )
            await db.execute(stmt)
            await db.commit()

    async def insert_api_call_log(self, **values) -> None:
        async with self._session_factory() as db:
            db.add(ApiCallLog(**values))
            await db.commit()


def _analysis_values(
    brand_mentions: int,
    competitors_mentioned: list[str],
    mention_analysis: dict,
    confidence: float,
    metrics: VisibilityMetrics,
) -> dict:
    return {
        "brand_mentions": brand_mentions,
        "competitors_mentioned": competitors_mentioned,
        "mention_analysis": mention_analysis,
        "analysis_confidence": confidence,
        "business_visibility": metrics.business_visibility,
        "competitor_visibilities": metrics.competitor_visibilities,
        "share_of_voice": metrics.share_of_voice,
        "competitor_share_of_voice": metrics.competitor_share_of_voice,
    }


async def _replace_sources(db: AsyncSession, execution_id: int, sources: list[ExecutionSourceData]) -> None:
    await db.execute(delete(ExecutionSource).where(ExecutionSource.execution_id == execution_id))
    for source in sources:
        db.add(
            ExecutionSource(
                execution_id=execution_id,
                domain=source.domain,
                url=source.url,
                category=source.category,
                page_type=source.page_type,
                citations=source.citations,
                associated_brands=source.associated_brands or None,
            )
        )
