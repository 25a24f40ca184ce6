"""Executions API: run-now triggers, history, realtime stream, re-analysis."""

import asyncio
import json
import logging
from datetime import date, datetime, timedelta, timezone

from fastapi import APIRouter, BackgroundTasks, HTTPException, Query, Request
from fastapi.responses import StreamingResponse

from answerwatch.core.exceptions import AnswerWatchError
from answerwatch.schemas.execution import (
    ExecutionListResponse,
    ExecutionResponse,
    ReanalysisAcceptedResponse,
    RunAcceptedResponse,
)
from answerwatch.services.notifier import ExecutionNotifier
from answerwatch.services.orchestrator import JobOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/businesses/{business_id}/executions", tags=["executions"])

STREAM_KEEPALIVE_SECONDS = 15


def _orchestrator(request: Request) -> JobOrchestrator:
    return request.app.state.orchestrator


def _notifier(request: Request) -> ExecutionNotifier:
    return request.app.state.notifier


def _utc_today() -> date:
    # Execution days are UTC days, whatever the server timezone
    return datetime.now(timezone.utc).date()


async def _require_business(orchestrator: JobOrchestrator, business_id: int) -> None:
    if await orchestrator.repo.get_business(business_id) is None:
        raise HTTPException(status_code=404, detail="Business not found")


async def _run_in_background(coro, description: str) -> None:
    try:
        await coro
    except AnswerWatchError as e:
        logger.error("%s failed: %s", description, e)
    except Exception:
        logger.exception("%s crashed", description)


@router.post("", status_code=202, response_model=RunAcceptedResponse)
async def run_all_prompts(business_id: int, request: Request, background_tasks: BackgroundTasks):
    """Run every prompt on every active platform now. Already-executed pairs are skipped."""
    orchestrator = _orchestrator(request)
    await _require_business(orchestrator, business_id)
    background_tasks.add_task(
        _run_in_background,
        orchestrator.execute_all_prompts(business_id),
        f"Run-now for business {business_id}",
    )
    return RunAcceptedResponse(business_id=business_id)


@router.post("/prompts/{prompt_id}", status_code=202, response_model=RunAcceptedResponse)
async def run_prompt(
    business_id: int,
    prompt_id: int,
    request: Request,
    background_tasks: BackgroundTasks,
    platform_id: int | None = Query(None, description="Only this platform (default: all active)"),
):
    orchestrator = _orchestrator(request)
    await _require_business(orchestrator, business_id)
    if await orchestrator.repo.get_prompt(business_id, prompt_id) is None:
        raise HTTPException(status_code=404, detail="Prompt not found")
    background_tasks.add_task(
        _run_in_background,
        orchestrator.execute_prompt(business_id, prompt_id, platform_id),
        f"Prompt {prompt_id} run for business {business_id}",
    )
    return RunAcceptedResponse(business_id=business_id, prompt_id=prompt_id, platform_id=platform_id)


@router.get("", response_model=ExecutionListResponse)
async def list_executions(
    business_id: int,
    request: Request,
    start: date | None = Query(None, description="First day (default: 30 days ago)"),
    end: date | None = Query(None, description="Last day (default: today)"),
):
    orchestrator = _orchestrator(request)
    await _require_business(orchestrator, business_id)
    end = end or _utc_today()
    start = start or end - timedelta(days=30)
    if start > end:
        raise HTTPException(status_code=400, detail="start must not be after end")

    executions = await orchestrator.repo.list_executions_in_range(business_id, start, end)
    items = [ExecutionResponse.model_validate(e) for e in executions]
    return ExecutionListResponse(items=items, total=len(items))


@router.get("/stream")
async def stream_executions(business_id: int, request: Request):
    """Server-Sent Events: one event per finished job while this connection is open.

    A new connection for the same business replaces the previous listener.
    """
    orchestrator = _orchestrator(request)
    await _require_business(orchestrator, business_id)
    notifier = _notifier(request)
    queue: asyncio.Queue[dict] = asyncio.Queue()

    def _listener(payload: dict) -> None:
        queue.put_nowait(payload)

    notifier.register(business_id, _listener)

    async def _events():
        try:
            yield "event: connected\ndata: {}\n\n"
            while True:
                if await request.is_disconnected():
                    break
                try:
                    payload = await asyncio.wait_for(queue.get(), timeout=STREAM_KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                yield f"event: execution\ndata: {json.dumps(payload, ensure_ascii=False)}\n\n"
        finally:
            notifier.unregister(business_id, _listener)

    return StreamingResponse(
        _events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.post("/reanalyze", status_code=202, response_model=ReanalysisAcceptedResponse)
async def reanalyze(
    business_id: int,
    request: Request,
    force_all: bool = Query(False, description="Re-analyze every completed execution, not just fallback ones"),
):
    from answerwatch.tasks.execution_tasks import reanalyze_executions_task

    await _require_business(_orchestrator(request), business_id)
    task = reanalyze_executions_task.delay(business_id, force_all)
    logger.info("Queued re-analysis for business %d (force_all=%s): task %s", business_id, force_all, task.id)
    return ReanalysisAcceptedResponse(business_id=business_id, force_all=force_all, task_id=str(task.id))
