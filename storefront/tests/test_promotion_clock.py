"""Tests for promotion window evaluation and the countdown timer."""

import asyncio
import logging
from datetime import datetime, timedelta, timezone

import pytest

from storefront.features.promotions.clock import evaluate, format_countdown
from storefront.features.promotions.countdown import CountdownSlot, PromotionCountdown
from storefront.tests.mocks import membership

NOW = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def test_no_membership_means_no_promotion():
    state = evaluate(None, 17, NOW)
    assert state.active is False
    assert state.remaining_seconds == 0


def test_membership_without_promotion():
    assert evaluate(membership(), 17, NOW).active is False


def test_future_expiry_is_active_with_whole_seconds():
    m = membership(promotion_expires_at=NOW + timedelta(minutes=5, seconds=30, milliseconds=400))
    state = evaluate(m, 17, NOW)
    assert state.active is True
    assert state.remaining_seconds == 330
    assert state.percentage == 17
    assert state.applies is True


def test_past_expiry_is_inactive():
    m = membership(promotion_expires_at=NOW - timedelta(seconds=1))
    state = evaluate(m, 17, NOW)
    assert state.active is False
    assert state.remaining_seconds == 0


def test_active_window_with_zero_percentage_does_not_apply():
    m = membership(promotion_expires_at=NOW + timedelta(minutes=5))
    state = evaluate(m, 0, NOW)
    assert state.active is True
    assert state.applies is False


def test_naive_expiry_is_treated_as_utc():
    m = membership(promotion_expires_at=datetime(2026, 1, 1, 12, 1, 0))
    assert evaluate(m, 10, NOW).remaining_seconds == 60


@pytest.mark.parametrize("seconds,text", [(0, "00:00"), (59, "00:59"), (61, "01:01"), (5400, "90:00"), (-3, "00:00")])
def test_format_countdown(seconds, text):
    assert format_countdown(seconds) == text


@pytest.mark.asyncio
async def test_countdown_ticks_and_expires_once():
    ticks = []
    expired = asyncio.Event()
    expirations = []

    def on_expire():
        expirations.append(True)
        expired.set()

    countdown = PromotionCountdown(3, on_expire=on_expire, on_tick=ticks.append, interval=0.01)
    countdown.start()
    await asyncio.wait_for(expired.wait(), timeout=1)
    await asyncio.sleep(0.05)

    assert ticks == [2, 1, 0]
    assert expirations == [True]
    assert countdown.running is False


@pytest.mark.asyncio
async def test_countdown_awaits_coroutine_expiry():
    done = asyncio.Event()

    async def on_expire():
        done.set()

    PromotionCountdown(1, on_expire=on_expire, interval=0.01).start()
    await asyncio.wait_for(done.wait(), timeout=1)


@pytest.mark.asyncio
async def test_cancelled_countdown_never_fires():
    fired = []
    countdown = PromotionCountdown(1, on_expire=lambda: fired.append(True), interval=0.01)
    countdown.start()
    countdown.cancel()
    await asyncio.sleep(0.05)
    assert fired == []


@pytest.mark.asyncio
async def test_slot_replaces_rather_than_stacks():
    first_ticks, second_ticks = [], []
    slot = CountdownSlot()

    first = PromotionCountdown(100, on_expire=lambda: None, on_tick=first_ticks.append, interval=0.01)
    slot.replace(first)
    await asyncio.sleep(0.035)

    second = PromotionCountdown(100, on_expire=lambda: None, on_tick=second_ticks.append, interval=0.01)
    slot.replace(second)
    ticks_at_replace = len(first_ticks)
    await asyncio.sleep(0.035)

    assert first.cancelled is True
    assert first.running is False
    assert len(first_ticks) == ticks_at_replace
    assert second_ticks
    assert slot.current is second

    slot.clear()
    assert second.cancelled is True
    assert slot.current is None


@pytest.mark.asyncio
async def test_failed_expiry_reload_is_logged(caplog):
    done = asyncio.Event()

    async def on_expire():
        done.set()
        raise RuntimeError("reload failed")

    with caplog.at_level(logging.ERROR, logger="storefront"):
        countdown = PromotionCountdown(1, on_expire=on_expire, interval=0.01)
        countdown.start()
        await asyncio.wait_for(done.wait(), timeout=1)
        await asyncio.sleep(0.01)

    assert countdown.expired is True
    record = next(r for r in caplog.records if r.getMessage() == "promotion.countdown.callback_failed")
    assert record.exc_info[0] is RuntimeError
