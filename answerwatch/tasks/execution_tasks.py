"""Celery tasks driving the Scheduler and Orchestrator.

Each task runs its coroutine on a fresh event loop with a fresh engine, and
disposes the engine afterwards. Job events go to the API process over Redis
so that open realtime streams see scheduled runs too.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from answerwatch.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


def _run_async(coro):
    """Run an async coroutine from sync Celery task context.

    Creates a fresh event loop each time to avoid conflicts with
    the module-level SQLAlchemy engine (which may be bound to a
    different loop created by uvicorn).
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _make_session_factory():
    """Create a fresh async engine + session factory for Celery worker context.

    The module-level engine from answerwatch.db.postgres is bound to uvicorn's
    event loop and cannot be reused in a new event loop created by _run_async().
    """
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

    from answerwatch.core.config import settings

    engine = create_async_engine(
        settings.postgres_url,
        echo=False,
        pool_size=settings.max_concurrent_jobs * 2,
        max_overflow=10,
        pool_pre_ping=True,
    )
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False), engine


def _job_summary(results) -> dict:
    summary = {"completed": 0, "failed": 0, "skipped": 0}
    for r in results:
        summary[r.status] = summary.get(r.status, 0) + 1
    return summary


@asynccontextmanager
async def _worker_orchestrator():
    """Orchestrator on a fresh engine, publishing its events to the API through Redis."""
    from answerwatch.services.event_relay import RedisEventPublisher
    from answerwatch.services.orchestrator import build_orchestrator

    session_factory, engine = _make_session_factory()
    publisher = RedisEventPublisher()
    try:
        yield build_orchestrator(session_factory, notifier=publisher)
    finally:
        await publisher.close()
        await engine.dispose()


async def _check_due_businesses_async() -> dict:
    from answerwatch.services.scheduler import Scheduler

    async with _worker_orchestrator() as orchestrator:
        scheduler = Scheduler(orchestrator.repo, orchestrator)
        summary = await scheduler.check_and_execute()
        return {"due": summary.due, "completed": summary.completed, "errors": summary.errors}


async def _execute_business_prompts_async(business_id: int) -> dict:
    async with _worker_orchestrator() as orchestrator:
        results = await orchestrator.execute_all_prompts(business_id)
        return {"business_id": business_id, **_job_summary(results)}


async def _execute_prompt_async(business_id: int, prompt_id: int, platform_id: int | None) -> dict:
    async with _worker_orchestrator() as orchestrator:
        results = await orchestrator.execute_prompt(business_id, prompt_id, platform_id)
        return {"business_id": business_id, "prompt_id": prompt_id, **_job_summary(results)}


async def _reanalyze_async(business_id: int, force_all: bool) -> dict:
    async with _worker_orchestrator() as orchestrator:
        counts = await orchestrator.reanalyze_executions(business_id, force_all=force_all)
        return {"business_id": business_id, **counts}


@celery_app.task(name="check_due_businesses")
def check_due_businesses_task():
    """Beat entry point: run every business whose next execution time has passed."""
    try:
        return _run_async(_check_due_businesses_async())
    except Exception:
        logger.exception("Due-business check failed")
        raise


@celery_app.task(name="execute_business_prompts")
def execute_business_prompts_task(business_id: int):
    logger.info("Executing all prompts for business %d", business_id)
    try:
        return _run_async(_execute_business_prompts_async(business_id))
    except Exception:
        logger.exception("Execution run failed for business %d", business_id)
        raise


@celery_app.task(name="execute_prompt")
def execute_prompt_task(business_id: int, prompt_id: int, platform_id: int | None = None):
    try:
        return _run_async(_execute_prompt_async(business_id, prompt_id, platform_id))
    except Exception:
        logger.exception("Prompt %d execution failed for business %d", prompt_id, business_id)
        raise


@celery_app.task(name="reanalyze_executions")
def reanalyze_executions_task(business_id: int, force_all: bool = False):
    """Re-run combined analysis over stored answers without calling providers."""
    try:
        return _run_async(_reanalyze_async(business_id, force_all))
    except Exception:
        logger.exception("Re-analysis failed for business %d", business_id)
        raise
