"""Job Orchestrator: prompt x platform fan-out with per-day idempotency.

Per job, strictly in order:
  1. Idempotency check on (business, prompt, platform, today)
  2. Re-validate the prompt, then claim the row (pending/failed -> running)
  3. Provider call
  4. Source extraction and best-effort page metadata
  5. Combined analysis (never raises, falls back to text matching)
  6. Visibility and share of voice
  7. Persist, then notify

Jobs run under an asyncio.Semaphore of ``max_concurrent_jobs``. "Today" is
taken once per run from the injected clock.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import date, datetime, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from answerwatch.analysis.engine import (
    AnalysisClient,
    AnalysisEngine,
    MentionAnalysis,
    OpenAiAnalysisClient,
    categorize_sources,
)
from answerwatch.analysis.page_metadata import fetch_many_metadata
from answerwatch.analysis.source_extractor import classify_owner, extract_candidates
from answerwatch.analysis.types import SourceCandidate, TrackedCompetitor
from answerwatch.analysis.visibility import VisibilityMetrics, calculate_metrics
from answerwatch.core.config import settings
from answerwatch.core.encryption import decrypt_value
from answerwatch.core.exceptions import BusinessNotFoundError, PromptNotFoundError
from answerwatch.core.logging import job_context
from answerwatch.core.metrics import EXECUTION_JOBS
from answerwatch.models.business import Business
from answerwatch.models.competitor import Competitor
from answerwatch.models.execution import Execution, ExecutionStatus
from answerwatch.models.platform import Platform
from answerwatch.models.prompt import Prompt
from answerwatch.providers.base import TokenUsage
from answerwatch.providers.caller import ProviderCaller
from answerwatch.providers.registry import ANALYSIS_PLATFORM_KEY
from answerwatch.services.notifier import EventSink, ExecutionEvent
from answerwatch.services.repository import ExecutionRepository
from answerwatch.services.usage_tracker import UsageTracker

logger = logging.getLogger(__name__)

SKIPPED_ALREADY_EXECUTED = "Skipped - already executed today"
PROMPT_DELETED = "Prompt no longer exists"

MetadataFetcher = Callable[[list[SourceCandidate]], Awaitable[dict]]
AnalysisClientFactory = Callable[[int, "int | None"], Awaitable["AnalysisClient | None"]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class JobResult:
    prompt_id: int
    platform_id: int
    status: str  # completed | failed | skipped
    execution_id: int | None = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.status != ExecutionStatus.FAILED.value


@dataclass
class _AnalysisOutcome:
    brand_mentions: int
    competitors_mentioned: list[str]
    details: dict
    confidence: float
    metrics: VisibilityMetrics
    sources: list


class JobOrchestrator:
    def __init__(
        self,
        repository: ExecutionRepository,
        *,
        caller: ProviderCaller | None = None,
        engine: AnalysisEngine | None = None,
        notifier: EventSink | None = None,
        usage_tracker: UsageTracker | None = None,
        analysis_client_factory: AnalysisClientFactory | None = None,
        metadata_fetcher: MetadataFetcher = fetch_many_metadata,
        clock: Callable[[], datetime] = _utcnow,
        max_concurrent: int | None = None,
    ):
        self.repo = repository
        self.usage_tracker = usage_tracker
        self.caller = caller or ProviderCaller(usage_tracker)
        self.engine = engine or AnalysisEngine()
        self.notifier = notifier
        self._analysis_client_factory = analysis_client_factory or self._default_analysis_client
        self._fetch_metadata = metadata_fetcher
        self._clock = clock
        self.max_concurrent = max_concurrent or settings.max_concurrent_jobs

    # ── Public operations ─────────────────────────────────────────

    async def execute_prompt(
        self, business_id: int, prompt_id: int, platform_id: int | None = None
    ) -> list[JobResult]:
        """Run one prompt on every active platform, or only on *platform_id*."""
        business = await self.repo.get_business(business_id)
        if business is None:
            raise BusinessNotFoundError(business_id)
        prompt = await self.repo.get_prompt(business_id, prompt_id)
        if prompt is None:
            raise PromptNotFoundError(prompt_id)

        platforms = await self.repo.list_active_platforms(business_id, platform_id)
        return await self._run_jobs(business, [(prompt, p) for p in platforms])

    async def execute_all_prompts(self, business_id: int) -> list[JobResult]:
        business = await self.repo.get_business(business_id)
        if business is None:
            raise BusinessNotFoundError(business_id)

        prompts = await self.repo.list_prompts(business_id)
        platforms = await self.repo.list_active_platforms(business_id)
        jobs = [(prompt, platform) for prompt in prompts for platform in platforms]
        if not jobs:
            logger.info(
                "Business %d has nothing to run (%d prompts, %d active platforms)",
                business_id,
                len(prompts),
                len(platforms),
            )
        return await self._run_jobs(business, jobs)

    async def reanalyze_executions(self, business_id: int, force_all: bool = False) -> dict[str, int]:
        """Re-run analysis over stored answers. No provider calls, status untouched."""
        business = await self.repo.get_business(business_id)
        if business is None:
            raise BusinessNotFoundError(business_id)

        competitors = await self.repo.list_competitors(business_id)
        executions = await self.repo.list_executions_for_reanalysis(business_id, force_all=force_all)
        logger.info(
            "Re-analyzing %d executions for business %d (force_all=%s)", len(executions), business_id, force_all
        )

        counts = {"success": 0, "failed": 0}
        for execution in executions:
            try:
                candidates = _stored_candidates(execution, business, competitors)
                outcome = await self._analyze(
                    business,
                    competitors,
                    execution.result or "",
                    candidates,
                    execution_id=execution.id,
                    max_retries=settings.reanalysis_max_retries,
                )
                await self.repo.update_analysis(
                    execution.id,
                    brand_mentions=outcome.brand_mentions,
                    competitors_mentioned=outcome.competitors_mentioned,
                    mention_analysis=outcome.details,
                    confidence=outcome.confidence,
                    metrics=outcome.metrics,
                    sources=outcome.sources,
                )
                counts["success"] += 1
            except Exception as e:
                logger.error("Re-analysis failed for execution %d: %s", execution.id, e)
                counts["failed"] += 1

        logger.info("Re-analysis for business %d done: %s", business_id, counts)
        return counts

    # ── Job runner ────────────────────────────────────────────────

    async def _run_jobs(self, business: Business, jobs: list[tuple[Prompt, Platform]]) -> list[JobResult]:
        if not jobs:
            return []

        today = self._clock().date()
        competitors = await self.repo.list_competitors(business.id)
        sem = asyncio.Semaphore(self.max_concurrent)

        async def _bounded(prompt: Prompt, platform: Platform) -> JobResult:
            async with sem:
                return await self._execute_job(business, prompt, platform, competitors, today)

        logger.info(
            "Running %d jobs for business %d (max %d concurrent, day %s)",
            len(jobs),
            business.id,
            self.max_concurrent,
            today,
        )
        raw = await asyncio.gather(*(_bounded(p, pl) for p, pl in jobs), return_exceptions=True)

        results: list[JobResult] = []
        for (prompt, platform), outcome in zip(jobs, raw):
            if isinstance(outcome, BaseException):
                logger.error("Job prompt=%d platform=%d crashed: %s", prompt.id, platform.id, outcome)
                results.append(JobResult(prompt.id, platform.id, ExecutionStatus.FAILED.value, message=str(outcome)))
            else:
                results.append(outcome)

        summary = {s: sum(1 for r in results if r.status == s) for s in ("completed", "failed", "skipped")}
        logger.info("Business %d run finished: %s", business.id, summary)
        return results

    async def _execute_job(
        self,
        business: Business,
        prompt: Prompt,
        platform: Platform,
        competitors: list[Competitor],
        today: date,
    ) -> JobResult:
        existing = await self.repo.find_execution(business.id, prompt.id, platform.id, today)
        if existing is not None and existing.status in (ExecutionStatus.COMPLETED.value, ExecutionStatus.RUNNING.value):
            return self._skipped(prompt, platform, existing.id)

        if existing is None:
            try:
                existing = await self.repo.create_execution(business.id, prompt.id, platform.id, today)
            except IntegrityError as e:
                return await self._resolve_insert_conflict(business, prompt, platform, today, e)
        execution_id = existing.id

        try:
            if not await self.repo.prompt_exists(prompt.id):
                return await self._fail(business, prompt, platform, execution_id, PROMPT_DELETED, today)

            if not await self.repo.mark_running(execution_id, self._clock()):
                return self._skipped(prompt, platform, execution_id)

            response = await self.caller.call(
                platform, prompt.text, business_id=business.id, execution_id=execution_id
            )
            candidates = extract_candidates(
                response.text,
                response.sources,
                business_website=business.website,
                competitors=_tracked(competitors),
            )
            outcome = await self._analyze(
                business, competitors, response.text, candidates, execution_id=execution_id
            )

            completed_at = self._clock()
            await self.repo.complete_execution(
                execution_id,
                result=response.text,
                usage=response.usage,
                brand_mentions=outcome.brand_mentions,
                competitors_mentioned=outcome.competitors_mentioned,
                mention_analysis=outcome.details,
                confidence=outcome.confidence,
                metrics=outcome.metrics,
                sources=outcome.sources,
                now=completed_at,
            )
        except Exception as e:
            logger.error(
                "Execution %d failed (business=%d prompt=%d platform=%s): %s",
                execution_id,
                business.id,
                prompt.id,
                platform.platform_key,
                e,
                extra=job_context(business.id, prompt.id, platform.platform_key, execution_id),
            )
            return await self._fail(business, prompt, platform, execution_id, str(e) or type(e).__name__, today)

        EXECUTION_JOBS.labels(status="completed").inc()
        logger.info(
            "Execution %d completed: business=%d prompt=%d platform=%s visibility=%d sov=%.1f",
            execution_id,
            business.id,
            prompt.id,
            platform.platform_key,
            outcome.metrics.business_visibility,
            outcome.metrics.share_of_voice,
            extra=job_context(business.id, prompt.id, platform.platform_key, execution_id),
        )
        await self._publish(
            business.id,
            ExecutionEvent(
                status=ExecutionStatus.COMPLETED.value,
                prompt_id=prompt.id,
                platform_id=platform.id,
                result=response.text,
                completed_at=completed_at,
                refresh_date=today,
                brand_mentions=outcome.brand_mentions,
                competitors_mentioned=outcome.competitors_mentioned,
                analysis_confidence=outcome.confidence,
                business_visibility=outcome.metrics.business_visibility,
                share_of_voice=outcome.metrics.share_of_voice,
                competitor_share_of_voice=outcome.metrics.competitor_share_of_voice,
            ),
        )
        return JobResult(prompt.id, platform.id, ExecutionStatus.COMPLETED.value, execution_id)

    async def _resolve_insert_conflict(
        self,
        business: Business,
        prompt: Prompt,
        platform: Platform,
        today: date,
        error: IntegrityError,
    ) -> JobResult:
        """The day-key insert was rejected: a concurrent trigger won, or a referenced row is gone."""
        existing = await self.repo.find_execution(business.id, prompt.id, platform.id, today)
        if existing is not None:
            return self._skipped(prompt, platform, existing.id)
        if not await self.repo.prompt_exists(prompt.id):
            return await self._fail(business, prompt, platform, None, PROMPT_DELETED, today)
        logger.error(
            "Could not create execution (business=%d prompt=%d platform=%d): %s",
            business.id,
            prompt.id,
            platform.id,
            error.orig,
        )
        return await self._fail(business, prompt, platform, None, str(error.orig), today)

    # ── Steps ─────────────────────────────────────────────────────

    async def _analyze(
        self,
        business: Business,
        competitors: list[Competitor],
        answer_text: str,
        candidates: list[SourceCandidate],
        *,
        execution_id: int | None,
        max_retries: int | None = None,
    ) -> _AnalysisOutcome:
        tracked = _tracked(competitors)
        metadata = await self._fetch_metadata(candidates)
        client = await self._analysis_client_factory(business.id, execution_id)
        analysis: MentionAnalysis = await self.engine.analyze_combined(
            business.name,
            business.website,
            tracked,
            answer_text,
            candidates,
            metadata,
            client=client,
            max_retries=max_retries,
        )

        # Visibility follows the text, whatever any earlier stage concluded
        found = self.engine.matcher.text_contains_brand(answer_text, business.name)
        brand_mentions = 1 if found else 0
        details = dict(analysis.details)
        if "brandMentioned" in details:
            details["brandMentioned"] = found

        tracked_names = [c.name for c in tracked]
        return _AnalysisOutcome(
            brand_mentions=brand_mentions,
            competitors_mentioned=analysis.competitors_mentioned,
            details=details,
            confidence=analysis.confidence,
            metrics=calculate_metrics(brand_mentions, analysis.competitors_mentioned, tracked_names),
            sources=categorize_sources(candidates, analysis, known_brands=[business.name, *tracked_names]),
        )

    async def _default_analysis_client(self, business_id: int, execution_id: int | None) -> AnalysisClient | None:
        """OpenAI client paid by the business's ChatGPT platform, else the service key."""
        platform = await self.repo.get_platform_by_key(business_id, ANALYSIS_PLATFORM_KEY)
        api_key = decrypt_value(platform.api_key) if platform is not None else ""
        api_key = api_key or settings.openai_api_key
        if not api_key:
            logger.warning("No OpenAI key for business %d, combined analysis will use text fallback", business_id)
            return None

        platform_id = platform.id if platform is not None else None
        model = settings.analysis_model

        async def _record(usage: TokenUsage, cost: float, duration_ms: int, success: bool, error: str | None):
            if self.usage_tracker is None:
                return
            await self.usage_tracker.record_call(
                business_id=business_id,
                platform_id=platform_id,
                execution_id=execution_id,
                call_type="combined_analysis",
                provider="openai",
                model=model,
                usage=usage,
                cost_usd=cost,
                duration_ms=duration_ms,
                success=success,
                error_message=error,
            )

        return OpenAiAnalysisClient(api_key, model, on_usage=_record)

    async def _fail(
        self,
        business: Business,
        prompt: Prompt,
        platform: Platform,
        execution_id: int | None,
        error: str,
        today: date,
    ) -> JobResult:
        now = self._clock()
        if execution_id is not None:
            try:
                await self.repo.mark_failed(execution_id, error, now)
            except Exception as e:
                logger.error("Could not mark execution %d failed: %s", execution_id, e)
        EXECUTION_JOBS.labels(status="failed").inc()
        await self._publish(
            business.id,
            ExecutionEvent(
                status=ExecutionStatus.FAILED.value,
                prompt_id=prompt.id,
                platform_id=platform.id,
                completed_at=now,
                refresh_date=today,
                error=error,
            ),
        )
        return JobResult(prompt.id, platform.id, ExecutionStatus.FAILED.value, execution_id, error)

    def _skipped(self, prompt: Prompt, platform: Platform, execution_id: int | None) -> JobResult:
        EXECUTION_JOBS.labels(status="skipped").inc()
        logger.info("Prompt %d on platform %d already handled today, skipping", prompt.id, platform.id)
        return JobResult(prompt.id, platform.id, "skipped", execution_id, SKIPPED_ALREADY_EXECUTED)

    async def _publish(self, business_id: int, event: ExecutionEvent) -> None:
        if self.notifier is None or not self.notifier.has_listener(business_id):
            return
        try:
            event.execution_count = await self.repo.count_completed(business_id)
        except Exception as e:
            logger.warning("Could not count executions for business %d (non-fatal): %s", business_id, e)
        await self.notifier.publish(business_id, event)


def _tracked(competitors: list[Competitor]) -> list[TrackedCompetitor]:
    return [TrackedCompetitor(name=c.name, website=c.website) for c in competitors]


def _stored_candidates(
    execution: Execution, business: Business, competitors: list[Competitor]
) -> list[SourceCandidate]:
    """Candidates from the stored answer, plus previously persisted sources the text no longer yields."""
    candidates = extract_candidates(
        execution.result or "",
        business_website=business.website,
        competitors=_tracked(competitors),
    )
    seen = {c.url for c in candidates}
    for source in execution.sources:
        if source.url in seen:
            continue
        seen.add(source.url)
        candidates.append(
            SourceCandidate(
                url=source.url,
                domain=source.domain,
                citations=source.citations or 1,
                owner=classify_owner(source.domain, business.website, _tracked(competitors)),
            )
        )
    return candidates


def build_orchestrator(
    session_factory: async_sessionmaker[AsyncSession],
    notifier: EventSink | None = None,
) -> JobOrchestrator:
    """Wire repository, accounting and provider caller around one session factory."""
    repository = ExecutionRepository(session_factory)
    usage_tracker = UsageTracker(repository)
    return JobOrchestrator(
        repository,
        caller=ProviderCaller(usage_tracker),
        usage_tracker=usage_tracker,
        notifier=notifier,
    )
