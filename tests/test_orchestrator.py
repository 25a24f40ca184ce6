"""Tests for the job orchestrator against a real (SQLite) repository."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import delete

from answerwatch.analysis.engine import AnalysisEngine
from answerwatch.core.exceptions import BusinessNotFoundError, PromptNotFoundError, ProviderError
from answerwatch.models import Prompt
from answerwatch.services.notifier import ExecutionNotifier
from answerwatch.services.orchestrator import PROMPT_DELETED, SKIPPED_ALREADY_EXECUTED, JobOrchestrator
from tests.conftest import FIXED_NOW, FakeAnalysisClient, FakeCaller, analysis_factory, no_metadata

TODAY = FIXED_NOW.date()

ANSWER = "Tailscale is great. See https://tailscale.com/kb/1017/install"


def _payload(**overrides) -> dict:
    payload = {
        "rankings": [{"position": 1, "company": "Tailscale", "reason": "easy", "sentiment": "positive"}],
        "brandMentioned": True,
        "brandPosition": 1,
        "brandSentiment": "positive",
        "brandSentimentScore": 90,
        "brandContext": "Tailscale is great.",
        "competitors": [],
        "competitorSentiments": [],
        "overallSentiment": "positive",
        "sentimentScore": 80,
        "confidence": 95,
        "sources": [],
    }
    payload.update(overrides)
    return payload


class FailingCaller:
    def __init__(self, error: Exception):
        self.error = error
        self.calls = 0

    async def call(self, platform, prompt, *, business_id, execution_id=None, **kwargs):
        self.calls += 1
        raise self.error


class CountingCaller(FakeCaller):
    """Tracks how many calls are in flight at once."""

    def __init__(self):
        super().__init__()
        self.in_flight = 0
        self.peak = 0

    async def call(self, platform, prompt, **kwargs):
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            await asyncio.sleep(0.01)
            return await super().call(platform, prompt, **kwargs)
        finally:
            self.in_flight -= 1


def _orchestrator(repo, *, caller=None, client=None, notifier=None, max_concurrent=5):
    return JobOrchestrator(
        repo,
        caller=caller or FakeCaller(),
        engine=AnalysisEngine(backoff_seconds=0),
        notifier=notifier,
        analysis_client_factory=analysis_factory(client),
        metadata_fetcher=no_metadata,
        clock=lambda: FIXED_NOW,
        max_concurrent=max_concurrent,
    )


async def _rows(repo, business_id):
    return await repo.list_executions_in_range(business_id, TODAY, TODAY)


class TestExecuteAllPrompts:
    @pytest.mark.asyncio
    async def test_completes_every_job(self, repo, seed):
        ids = await seed(prompts=2, platforms=("chatgpt", "perplexity"))
        orch = _orchestrator(repo, client=FakeAnalysisClient(_payload()))

        results = await orch.execute_all_prompts(ids["business_id"])

        assert len(results) == 4
        assert all(r.status == "completed" for r in results)
        rows = await _rows(repo, ids["business_id"])
        assert len(rows) == 4
        assert {r.status for r in rows} == {"completed"}
        assert all(r.total_tokens == 30 for r in rows)
        assert all(r.business_visibility == 1 for r in rows)

    @pytest.mark.asyncio
    async def test_unknown_business(self, repo):
        with pytest.raises(BusinessNotFoundError):
            await _orchestrator(repo).execute_all_prompts(999)

    @pytest.mark.asyncio
    async def test_nothing_to_run(self, repo, seed):
        ids = await seed(prompts=0)
        assert await _orchestrator(repo).execute_all_prompts(ids["business_id"]) == []

    @pytest.mark.asyncio
    async def test_second_run_same_day_is_skipped(self, repo, seed):
        ids = await seed()
        caller = FakeCaller()
        orch = _orchestrator(repo, caller=caller)

        first = await orch.execute_all_prompts(ids["business_id"])
        second = await orch.execute_all_prompts(ids["business_id"])

        assert first[0].status == "completed"
        assert second[0].status == "skipped"
        assert second[0].message == SKIPPED_ALREADY_EXECUTED
        assert second[0].execution_id == first[0].execution_id
        assert len(caller.calls) == 1
        assert len(await _rows(repo, ids["business_id"])) == 1

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, repo, seed):
        ids = await seed(prompts=23)
        caller = CountingCaller()
        orch = _orchestrator(repo, caller=caller, max_concurrent=5)

        results = await orch.execute_all_prompts(ids["business_id"])

        assert len(results) == 23
        assert all(r.ok for r in results)
        assert caller.peak <= 5
        assert len(caller.calls) == 23


class TestExecutePrompt:
    @pytest.mark.asyncio
    async def test_single_platform(self, repo, seed):
        ids = await seed(platforms=("chatgpt", "perplexity"))
        caller = FakeCaller()
        orch = _orchestrator(repo, caller=caller)

        results = await orch.execute_prompt(ids["business_id"], ids["prompt_ids"][0], ids["platform_ids"][1])

        assert [r.platform_id for r in results] == [ids["platform_ids"][1]]
        assert [c[0] for c in caller.calls] == [ids["platform_ids"][1]]

    @pytest.mark.asyncio
    async def test_prompt_of_other_business(self, repo, seed):
        first = await seed()
        second = await seed(name="Other")
        with pytest.raises(PromptNotFoundError):
            await _orchestrator(repo).execute_prompt(first["business_id"], second["prompt_ids"][0])

    @pytest.mark.asyncio
    async def test_prompt_deleted_mid_run(self, repo, seed):
        ids = await seed()
        caller = FakeCaller()
        orch = _orchestrator(repo, caller=caller)

        with patch.object(orch.repo, "prompt_exists", AsyncMock(return_value=False)):
            results = await orch.execute_all_prompts(ids["business_id"])

        assert results[0].status == "failed"
        assert results[0].message == PROMPT_DELETED
        assert caller.calls == []
        row = (await _rows(repo, ids["business_id"]))[0]
        assert row.status == "failed"
        assert row.error_message == PROMPT_DELETED

    @pytest.mark.asyncio
    async def test_prompt_deleted_before_row_created(self, repo, seed, session_factory):
        ids = await seed()
        prompt_id = ids["prompt_ids"][0]
        notifier = ExecutionNotifier()
        events = []
        notifier.register(ids["business_id"], events.append)
        caller = FakeCaller()
        orch = _orchestrator(repo, caller=caller, notifier=notifier)
        find_execution = repo.find_execution

        async def _delete_prompt_then_find(*args):
            async with session_factory() as db:
                await db.execute(delete(Prompt).where(Prompt.id == prompt_id))
                await db.commit()
            return await find_execution(*args)

        with patch.object(orch.repo, "find_execution", side_effect=_delete_prompt_then_find):
            results = await orch.execute_all_prompts(ids["business_id"])

        assert results[0].status == "failed"
        assert results[0].message == PROMPT_DELETED
        assert results[0].execution_id is None
        assert caller.calls == []
        assert await _rows(repo, ids["business_id"]) == []
        assert [(e["status"], e["error"]) for e in events] == [("failed", PROMPT_DELETED)]

    @pytest.mark.asyncio
    async def test_row_created_by_concurrent_trigger_is_skipped(self, repo, seed):
        ids = await seed()
        caller = FakeCaller()
        orch = _orchestrator(repo, caller=caller)
        key = (ids["business_id"], ids["prompt_ids"][0], ids["platform_ids"][0], TODAY)
        find_execution = repo.find_execution
        lookups = []

        async def _miss_once_after_other_insert(*args):
            lookups.append(args)
            if len(lookups) == 1:
                await repo.create_execution(*key)
                return None
            return await find_execution(*args)

        with patch.object(orch.repo, "find_execution", side_effect=_miss_once_after_other_insert):
            results = await orch.execute_all_prompts(ids["business_id"])

        assert results[0].status == "skipped"
        assert results[0].execution_id is not None
        assert caller.calls == []


class TestFailures:
    @pytest.mark.asyncio
    async def test_provider_error_marks_failed_and_notifies(self, repo, seed):
        ids = await seed()
        notifier = ExecutionNotifier()
        events = []
        notifier.register(ids["business_id"], events.append)
        orch = _orchestrator(repo, caller=FailingCaller(ProviderError("openai", "HTTP 500")), notifier=notifier)

        results = await orch.execute_all_prompts(ids["business_id"])

        assert results[0].status == "failed"
        row = (await _rows(repo, ids["business_id"]))[0]
        assert row.status == "failed"
        assert "HTTP 500" in row.error_message
        assert len(events) == 1
        assert events[0]["status"] == "failed"
        assert "HTTP 500" in events[0]["error"]
        assert events[0]["executionCount"] == 0

    @pytest.mark.asyncio
    async def test_failed_job_is_retried_same_day(self, repo, seed):
        ids = await seed()
        orch = _orchestrator(repo, caller=FailingCaller(ProviderError("openai", "timeout")))
        failed = await orch.execute_all_prompts(ids["business_id"])

        orch.caller = FakeCaller()
        retried = await orch.execute_all_prompts(ids["business_id"])

        assert retried[0].status == "completed"
        assert retried[0].execution_id == failed[0].execution_id
        row = (await _rows(repo, ids["business_id"]))[0]
        assert row.status == "completed"
        assert row.error_message is None

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_siblings(self, repo, seed):
        ids = await seed(platforms=("chatgpt", "perplexity"))
        bad_platform = ids["platform_ids"][0]

        class SelectiveCaller(FakeCaller):
            async def call(self, platform, prompt, **kwargs):
                if platform.id == bad_platform:
                    raise ProviderError("openai", "boom")
                return await super().call(platform, prompt, **kwargs)

        results = await _orchestrator(repo, caller=SelectiveCaller()).execute_all_prompts(ids["business_id"])

        assert sorted(r.status for r in results) == ["completed", "failed"]


class TestAnalysisOutcome:
    @pytest.mark.asyncio
    async def test_fallback_still_completes(self, repo, seed):
        ids = await seed()
        client = FakeAnalysisClient(ValueError("bad json"))
        results = await _orchestrator(repo, client=client).execute_all_prompts(ids["business_id"])

        assert results[0].status == "completed"
        row = (await _rows(repo, ids["business_id"]))[0]
        assert row.status == "completed"
        assert row.mention_analysis["fallbackUsed"] is True
        assert row.analysis_confidence == 30
        assert row.brand_mentions == 1
        assert row.business_visibility == 1
        assert [(s.domain, s.category) for s in row.sources] == [("tailscale.com", "You")]

    @pytest.mark.asyncio
    async def test_no_analysis_client_uses_fallback(self, repo, seed):
        ids = await seed()
        await _orchestrator(repo, client=None).execute_all_prompts(ids["business_id"])
        row = (await _rows(repo, ids["business_id"]))[0]
        assert row.mention_analysis["fallbackUsed"] is True

    @pytest.mark.asyncio
    async def test_claimed_brand_absent_from_text(self, repo, seed):
        ids = await seed()
        caller = FakeCaller(text="Netbird leads the pack for self-hosting.")
        client = FakeAnalysisClient(_payload(competitors=["Netbird"]))
        await _orchestrator(repo, caller=caller, client=client).execute_all_prompts(ids["business_id"])

        row = (await _rows(repo, ids["business_id"]))[0]
        assert row.brand_mentions == 0
        assert row.business_visibility == 0
        assert row.mention_analysis["brandMentioned"] is False
        assert row.competitors_mentioned == ["Netbird"]
        assert row.share_of_voice == 0
        assert row.competitor_share_of_voice == {"Netbird": 100.0}

    @pytest.mark.asyncio
    async def test_missed_brand_is_restored(self, repo, seed):
        ids = await seed()
        client = FakeAnalysisClient(_payload(brandMentioned=False, brandPosition=None))
        await _orchestrator(repo, client=client).execute_all_prompts(ids["business_id"])

        row = (await _rows(repo, ids["business_id"]))[0]
        assert row.business_visibility == 1
        assert row.mention_analysis["brandMentioned"] is True
        assert row.share_of_voice == 100.0

    @pytest.mark.asyncio
    async def test_competitor_missed_by_model_is_added(self, repo, seed):
        ids = await seed()
        caller = FakeCaller(text="Tailscale and Netbird both work well.")
        client = FakeAnalysisClient(_payload(competitors=[]))
        await _orchestrator(repo, caller=caller, client=client).execute_all_prompts(ids["business_id"])

        row = (await _rows(repo, ids["business_id"]))[0]
        assert row.competitors_mentioned == ["Netbird"]
        assert row.competitor_visibilities == {"Netbird": 1}
        assert row.share_of_voice == 50.0
        assert row.share_of_voice + sum(row.competitor_share_of_voice.values()) == pytest.approx(100)

    @pytest.mark.asyncio
    async def test_invented_sources_not_persisted(self, repo, seed):
        ids = await seed()
        client = FakeAnalysisClient(
            _payload(
                sources=[
                    {
                        "domain": "tailscale.com",
                        "url": "https://tailscale.com/kb/1017/install",
                        "type": "You",
                        "pageType": "Article",
                        "associatedBrands": ["Tailscale", "Somebody Else"],
                    },
                    {"domain": "invented.io", "url": "https://invented.io/review", "type": "Editorial"},
                ]
            )
        )
        await _orchestrator(repo, client=client).execute_all_prompts(ids["business_id"])

        row = (await _rows(repo, ids["business_id"]))[0]
        assert len(row.sources) == 1
        source = row.sources[0]
        assert source.url == "https://tailscale.com/kb/1017/install"
        assert source.category == "You"
        assert source.page_type == "Article"
        assert source.associated_brands == ["Tailscale"]

    @pytest.mark.asyncio
    async def test_completion_event_payload(self, repo, seed):
        ids = await seed()
        notifier = ExecutionNotifier()
        events = []
        notifier.register(ids["business_id"], events.append)
        orch = _orchestrator(repo, client=FakeAnalysisClient(_payload()), notifier=notifier)

        await orch.execute_all_prompts(ids["business_id"])

        assert len(events) == 1
        event = events[0]
        assert event["status"] == "completed"
        assert event["promptId"] == ids["prompt_ids"][0]
        assert event["refreshDate"] == TODAY.isoformat()
        assert event["businessVisibility"] == 1
        assert event["shareOfVoice"] == 100.0
        assert event["executionCount"] == 1
        assert "error" not in event


class TestReanalysis:
    @pytest.mark.asyncio
    async def test_only_fallback_rows_unless_forced(self, repo, seed):
        ids = await seed()
        await _orchestrator(repo, client=None).execute_all_prompts(ids["business_id"])

        client = FakeAnalysisClient(
            _payload(
                sources=[
                    {
                        "domain": "tailscale.com",
                        "url": "https://tailscale.com/kb/1017/install",
                        "type": "You",
                        "pageType": "How-To Guide",
                    }
                ]
            )
        )
        caller = FakeCaller()
        orch = _orchestrator(repo, caller=caller, client=client)

        counts = await orch.reanalyze_executions(ids["business_id"])
        assert counts == {"success": 1, "failed": 0}
        assert caller.calls == []

        row = (await _rows(repo, ids["business_id"]))[0]
        assert row.status == "completed"
        assert "fallbackUsed" not in row.mention_analysis
        assert row.analysis_confidence == 95
        assert [(s.category, s.page_type) for s in row.sources] == [("You", "How-To Guide")]

        assert await orch.reanalyze_executions(ids["business_id"]) == {"success": 0, "failed": 0}
        assert await orch.reanalyze_executions(ids["business_id"], force_all=True) == {"success": 1, "failed": 0}

    @pytest.mark.asyncio
    async def test_unknown_business(self, repo):
        with pytest.raises(BusinessNotFoundError):
            await _orchestrator(repo).reanalyze_executions(42)
