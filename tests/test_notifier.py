"""Tests for the realtime execution notifier."""

from datetime import date, datetime, timezone

import pytest

from answerwatch.services.notifier import ExecutionEvent, ExecutionNotifier


def _event(**kwargs):
    return ExecutionEvent(status="completed", prompt_id=1, platform_id=2, **kwargs)


def test_payload_uses_camel_case():
    payload = _event(
        completed_at=datetime(2026, 3, 14, 9, 30, tzinfo=timezone.utc),
        refresh_date=date(2026, 3, 14),
        competitor_share_of_voice={"Netbird": 50.0},
    ).to_payload()

    assert payload["promptId"] == 1
    assert payload["platformId"] == 2
    assert payload["completedAt"] == "2026-03-14T09:30:00+00:00"
    assert payload["refreshDate"] == "2026-03-14"
    assert payload["competitorShareOfVoice"] == {"Netbird": 50.0}
    assert "error" not in payload


def test_error_included_only_when_set():
    assert _event(error="boom").to_payload()["error"] == "boom"


@pytest.mark.asyncio
async def test_no_listener_drops_event():
    assert await ExecutionNotifier().publish(1, _event()) is False


@pytest.mark.asyncio
async def test_sync_and_async_listeners():
    notifier = ExecutionNotifier()
    received = []

    async def async_listener(payload):
        received.append(("async", payload["status"]))

    notifier.register(1, received.append)
    assert await notifier.publish(1, _event()) is True

    notifier.register(1, async_listener)
    assert await notifier.publish(1, _event()) is True

    assert received[0]["status"] == "completed"
    assert received[1] == ("async", "completed")


@pytest.mark.asyncio
async def test_listener_error_is_contained():
    notifier = ExecutionNotifier()

    def broken(payload):
        raise RuntimeError("socket closed")

    notifier.register(1, broken)
    assert await notifier.publish(1, _event()) is False


def test_unregister_only_removes_own_listener():
    notifier = ExecutionNotifier()

    def first(payload):
        pass

    def second(payload):
        pass

    notifier.register(1, first)
    notifier.register(1, second)
    notifier.unregister(1, first)
    assert notifier.has_listener(1)

    notifier.unregister(1, second)
    assert not notifier.has_listener(1)


def test_listeners_are_per_business():
    notifier = ExecutionNotifier()
    notifier.register(1, print)
    assert notifier.has_listener(1)
    assert not notifier.has_listener(2)
