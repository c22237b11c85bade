"""Tests for notification fan-out."""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from stockwatch.detect.state_tracker import EventReason, NotificationEvent
from stockwatch.notify.base import AlertKind, NotificationChannel, OperatorAlert, RecipientGroups
from stockwatch.notify.dispatcher import NotificationDispatcher


class SlowChannel(NotificationChannel):
    name = "slow"

    async def send(self, message, recipients):
        await asyncio.sleep(3600)


class BrokenChannel(NotificationChannel):
    name = "broken"

    async def send(self, message, recipients):
        raise RuntimeError("unexpected")


@pytest.fixture
def event(make_link):
    link = make_link()
    return NotificationEvent(
        target=link.target,
        link_url=link.url,
        brand=link.brand,
        series=link.series,
        model=link.model,
        price=Decimal("699.99"),
        timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
        reason=EventReason.IN_STOCK,
        link=link,
    )


@pytest.mark.asyncio
async def test_one_failing_channel_does_not_affect_others(recording_channel, event):
    first = recording_channel("first")
    failing = recording_channel("failing", fail=True)
    third = recording_channel("third")
    dispatcher = NotificationDispatcher([first, failing, third])

    reports = await dispatcher.dispatch(event)

    assert [r.channel for r in reports] == ["first", "failing", "third"]
    assert [r.success for r in reports] == [True, False, True]
    assert "simulated failure" in reports[1].error
    assert len(first.sent) == 1
    assert len(third.sent) == 1

    message, _ = first.sent[0]
    assert message.url == event.link_url
    assert "founders edition" in message.title


@pytest.mark.asyncio
async def test_series_override_replaces_default_recipients(recording_channel, event):
    channel = recording_channel(
        "chat",
        recipients=RecipientGroups(default=["@everyone"], by_series={"3080": ["@3080-watchers"]}),
    )
    dispatcher = NotificationDispatcher([channel])

    await dispatcher.dispatch(event)

    assert channel.sent[0][1] == ["@3080-watchers"]


@pytest.mark.asyncio
async def test_default_recipients_without_override(recording_channel, event):
    channel = recording_channel(
        "chat",
        recipients=RecipientGroups(default=["@everyone"], by_series={"3070": ["@3070"]}),
    )
    dispatcher = NotificationDispatcher([channel])

    await dispatcher.dispatch(event)

    assert channel.sent[0][1] == ["@everyone"]


@pytest.mark.asyncio
async def test_channel_series_filter_suppresses(recording_channel, event):
    only_3070 = recording_channel("only_3070", series=["3070"])
    everything = recording_channel("everything")
    dispatcher = NotificationDispatcher([only_3070, everything])

    reports = await dispatcher.dispatch(event)

    assert reports[0].suppressed
    assert not only_3070.sent
    assert reports[1].success


@pytest.mark.asyncio
async def test_timeout_and_unexpected_errors_are_isolated(recording_channel, event):
    good = recording_channel("good")
    dispatcher = NotificationDispatcher([SlowChannel(), BrokenChannel(), good], channel_timeout=0.05)

    reports = await dispatcher.dispatch(event)

    assert "timed out" in reports[0].error
    assert "RuntimeError" in reports[1].error
    assert reports[2].success


@pytest.mark.asyncio
async def test_no_channels(event):
    assert await NotificationDispatcher([]).dispatch(event) == []


@pytest.mark.asyncio
async def test_operator_alerts_go_to_operator_channels_only(recording_channel):
    ops = recording_channel("ops", recipients=RecipientGroups(default=["oncall"]))
    public = recording_channel("public")
    dispatcher = NotificationDispatcher([ops, public], operator_channels=["ops"])
    alert = OperatorAlert(
        kind=AlertKind.BLOCKED_STREAK,
        target="shop",
        link_url="https://shop.example/gpu-1",
        detail="blocked 5 times",
        streak=5,
    )

    reports = await dispatcher.dispatch_operator_alert(alert)

    assert [r.channel for r in reports] == ["ops"]
    message, recipients = ops.sent[0]
    assert recipients == ["oncall"]
    assert "blocked 5 times in a row" in message.title
    assert not public.sent


@pytest.mark.asyncio
async def test_operator_alert_without_operator_channels(recording_channel):
    dispatcher = NotificationDispatcher([recording_channel("public")])
    alert = OperatorAlert(kind=AlertKind.CAPTCHA, target="shop", link_url="u", detail="captcha")
    assert await dispatcher.dispatch_operator_alert(alert) == []
