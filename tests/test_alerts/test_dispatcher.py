"""Tests for per-channel fan-out and delivery outcome recording."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from src.alerts.channels import NotificationChannel
from src.alerts.dispatcher import NotificationDispatcher
from src.alerts.errors import DeliveryError
from factories import make_threshold


@pytest.fixture
def alerts():
    return [
        make_threshold("r1", status="resolved", minutes=5),
        make_threshold("r2", status="resolved", minutes=6, grouping_key="host-b"),
    ]


def _channel(name: str, fail: bool = False) -> AsyncMock:
    ch = AsyncMock(spec=NotificationChannel)
    ch.channel_type = "webhook"
    ch.name = name
    if fail:
        ch.notify.side_effect = DeliveryError(name, f"https://{name}.example.com", attempts=3)
    return ch


def _gauge(registry, name: str) -> float | None:
    return registry.get_sample_value("notify_fail", {"type": "webhook", "name": name})


class TestFanOut:

    @pytest.mark.asyncio
    async def test_every_channel_gets_full_batch(self, metrics, alerts):
        ch1, ch2 = _channel("a"), _channel("b")
        dispatcher = NotificationDispatcher([ch1, ch2], metrics=metrics)

        tasks = dispatcher.dispatch(alerts)
        await asyncio.gather(*tasks)

        assert len(tasks) == 2
        ch1.notify.assert_awaited_once_with(tuple(alerts))
        ch2.notify.assert_awaited_once_with(tuple(alerts))

    @pytest.mark.asyncio
    async def test_empty_batch_spawns_nothing(self, metrics):
        ch = _channel("a")
        dispatcher = NotificationDispatcher([ch], metrics=metrics)

        assert dispatcher.dispatch([]) == []
        ch.notify.assert_not_called()

    @pytest.mark.asyncio
    async def test_dispatch_does_not_wait_for_delivery(self, metrics, alerts):
        release = asyncio.Event()

        async def slow_notify(batch):
            await release.wait()

        ch = _channel("slow")
        ch.notify.side_effect = slow_notify
        dispatcher = NotificationDispatcher([ch], metrics=metrics)

        tasks = dispatcher.dispatch(alerts)
        await asyncio.sleep(0)

        assert not tasks[0].done()
        assert dispatcher.in_flight == 1
        assert dispatcher.outcomes() == {}

        release.set()
        await asyncio.gather(*tasks)

        assert dispatcher.in_flight == 0
        assert dispatcher.outcomes() == {("webhook", "slow"): True}


class TestChannelIsolation:

    @pytest.mark.asyncio
    async def test_failing_channel_does_not_affect_other(self, metrics, registry, alerts):
        bad, good = _channel("bad", fail=True), _channel("good")
        dispatcher = NotificationDispatcher([bad, good], metrics=metrics)

        results = await asyncio.gather(*dispatcher.dispatch(alerts))

        assert results == [False, True]
        assert _gauge(registry, "bad") == 1.0
        assert _gauge(registry, "good") == 0.0
        assert dispatcher.outcomes() == {
            ("webhook", "bad"): False,
            ("webhook", "good"): True,
        }

    @pytest.mark.asyncio
    async def test_unexpected_error_recorded_as_failure(self, metrics, registry, alerts):
        ch = _channel("boom")
        ch.notify.side_effect = RuntimeError("unexpected")
        dispatcher = NotificationDispatcher([ch], metrics=metrics)

        results = await asyncio.gather(*dispatcher.dispatch(alerts))

        assert results == [False]
        assert _gauge(registry, "boom") == 1.0

    @pytest.mark.asyncio
    async def test_last_attempt_wins(self, metrics, registry, alerts):
        ch = _channel("flaky")
        ch.notify.side_effect = [DeliveryError("flaky", "https://flaky"), None]
        dispatcher = NotificationDispatcher([ch], metrics=metrics)

        await asyncio.gather(*dispatcher.dispatch(alerts))
        assert _gauge(registry, "flaky") == 1.0

        await asyncio.gather(*dispatcher.dispatch(alerts))
        assert _gauge(registry, "flaky") == 0.0


class TestDrain:

    @pytest.mark.asyncio
    async def test_drain_waits_for_in_flight(self, metrics, alerts):
        release = asyncio.Event()

        async def slow_notify(batch):
            await release.wait()

        ch = _channel("slow")
        ch.notify.side_effect = slow_notify
        dispatcher = NotificationDispatcher([ch], metrics=metrics)
        dispatcher.dispatch(alerts)

        asyncio.get_running_loop().call_later(0.01, release.set)
        await dispatcher.drain(timeout=5)

        assert dispatcher.in_flight == 0
        assert dispatcher.outcomes() == {("webhook", "slow"): True}

    @pytest.mark.asyncio
    async def test_drain_with_nothing_in_flight(self, metrics):
        dispatcher = NotificationDispatcher([], metrics=metrics)
        await dispatcher.drain(timeout=0.1)
