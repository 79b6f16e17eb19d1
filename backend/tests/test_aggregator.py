import asyncio
from datetime import datetime, timedelta

import pytest

from firewatch.aggregator import MarketStatusAggregator
from firewatch.schemas import MarketRef, MarketStatus, Severity, UsageStatus

T0 = datetime(2024, 5, 10, 9, 0, 0)
T1 = T0 + timedelta(minutes=5)


@pytest.fixture
def aggregator():
    agg = MarketStatusAggregator()
    agg.register(1, "부평자유시장")
    agg.register(2, "남동시장")
    return agg


async def test_fault_then_older_recovery_stays_error(aggregator):
    await aggregator.update(1, Severity.FAULT, T1)
    status = await aggregator.update(1, Severity.RECOVERED, T0)
    assert status == MarketStatus.ERROR


async def test_recovery_with_same_timestamp_does_not_clear(aggregator):
    await aggregator.update(1, Severity.FIRE, T0)
    assert await aggregator.update(1, Severity.RECOVERED, T0) == MarketStatus.FIRE


async def test_later_recovery_clears_fire(aggregator):
    await aggregator.update(1, Severity.FIRE, T0)
    assert await aggregator.update(1, Severity.RECOVERED, T1) == MarketStatus.NORMAL


@pytest.mark.parametrize("first, second", [
    (Severity.FAULT, Severity.FIRE),
    (Severity.FIRE, Severity.FAULT),
])
async def test_fire_wins_over_fault(aggregator, first, second):
    await aggregator.update(1, first, T0)
    assert await aggregator.update(1, second, T1) == MarketStatus.FIRE


async def test_fault_keeps_fire_from_clearing(aggregator):
    await aggregator.update(1, Severity.FIRE, T0)
    await aggregator.update(1, Severity.FAULT, T1)
    # Newer than the fire but older than the fault
    assert await aggregator.update(1, Severity.RECOVERED, T0 + timedelta(minutes=1)) == MarketStatus.FIRE


async def test_normal_event_is_a_no_op(aggregator):
    await aggregator.update(1, Severity.FAULT, T0)
    assert await aggregator.update(1, Severity.NORMAL, T1) == MarketStatus.ERROR


async def test_markets_are_independent(aggregator):
    await aggregator.update(1, Severity.FIRE, T0)
    assert aggregator.status_of(2) == MarketStatus.NORMAL


async def test_concurrent_updates_on_one_market(aggregator):
    updates = []
    for i in range(50):
        updates.append(aggregator.update(1, Severity.FIRE, T1 + timedelta(seconds=i)))
        updates.append(aggregator.update(1, Severity.RECOVERED, T0 + timedelta(seconds=i)))
    await asyncio.gather(*updates)
    assert aggregator.status_of(1) == MarketStatus.FIRE


async def test_unknown_market_is_registered_on_first_event():
    agg = MarketStatusAggregator()
    await agg.update(9, Severity.FAULT, T0, market_name="신포시장")
    assert agg.status_of_name("신포시장") == MarketStatus.ERROR


def test_status_of_name(aggregator):
    assert aggregator.status_of_name("부평자유시장") == MarketStatus.NORMAL
    assert aggregator.status_of_name("없는시장") is None


async def test_shared_name_reports_most_severe(aggregator):
    aggregator.register(3, "남동시장")
    await aggregator.update(3, Severity.FAULT, T0)
    assert aggregator.status_of_name("남동시장") == MarketStatus.ERROR


async def test_restore_keeps_alarms_across_restart():
    agg = MarketStatusAggregator()
    agg.restore([
        MarketRef(id=1, name="부평자유시장", status=MarketStatus.FIRE, status_updated_at=T1),
        MarketRef(id=2, name="남동시장"),
    ])
    assert agg.status_of(1) == MarketStatus.FIRE

    # A recovery reported before the persisted alarm is stale
    assert await agg.update(1, Severity.RECOVERED, T0) == MarketStatus.FIRE
    assert await agg.update(1, Severity.RECOVERED, T1 + timedelta(seconds=1)) == MarketStatus.NORMAL


def test_snapshot_active_only(aggregator):
    aggregator.register(3, "폐쇄시장", UsageStatus.INACTIVE)

    assert [v.market_id for v in aggregator.snapshot()] == [1, 2, 3]
    assert [v.market_id for v in aggregator.snapshot(active_only=True)] == [1, 2]


async def test_on_change_runs_only_for_transitions(aggregator):
    changes = []

    async def record(status, at):
        changes.append((status, at))

    await aggregator.update(1, Severity.FIRE, T0, on_change=record)
    await aggregator.update(1, Severity.FAULT, T0, on_change=record)
    await aggregator.update(1, Severity.RECOVERED, T1, on_change=record)

    assert changes == [(MarketStatus.FIRE, T0), (MarketStatus.NORMAL, T1)]


async def test_on_change_holds_the_market_lock(aggregator):
    writes = []

    async def slow_write(status, at):
        if status == MarketStatus.FIRE:
            await asyncio.sleep(0.02)
        writes.append(status)

    await asyncio.gather(
        aggregator.update(1, Severity.FIRE, T0, on_change=slow_write),
        aggregator.update(1, Severity.RECOVERED, T1, on_change=slow_write),
    )

    assert writes == [MarketStatus.FIRE, MarketStatus.NORMAL]
