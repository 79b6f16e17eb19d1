import asyncio
import logging
from datetime import date, datetime, timedelta

import pytest

from firewatch.errors import DeviceIntegrityError, NotFoundError, ValidationError
from firewatch.repositories.memory import (
    MemoryDataReceptionRepository,
    MemoryFireHistoryRepository,
)
from firewatch.schemas import (
    DeviceType,
    EventClass,
    FalseAlarmStatus,
    FireHistoryFilter,
    LogType,
    MarketStatus,
    ProcessStatus,
    RawEvent,
)
from firewatch.service import FireWatchService

CLOSED_MAC = "CC-CC-CC"
MAY = dict(start_date=date(2024, 5, 1), end_date=date(2024, 5, 31))


async def test_fire_event_creates_one_registered_entry(service, make_event, fire_history):
    result = await service.ingest(make_event())

    assert result.ledger_entry_id is not None
    assert result.market_status == MarketStatus.FIRE
    assert result.severity == "fire"
    assert list(fire_history.rows) == [result.ledger_entry_id]
    assert fire_history.rows[result.ledger_entry_id].false_alarm_status == FalseAlarmStatus.REGISTERED
    assert await service.get_market_status("부평자유시장") == MarketStatus.FIRE


async def test_later_recovery_clears_fire(service, make_event, clock, devices):
    await service.ingest(make_event())

    clock.now += timedelta(minutes=3)
    result = await service.ingest(make_event(
        receiver_status_code="11", repeater_id=None, repeater_status_code=None,
    ))

    assert result.ledger_entry_id is None
    assert result.market_status == MarketStatus.NORMAL
    assert await service.get_market_status("부평자유시장") == MarketStatus.NORMAL
    assert devices.markets[1].status == MarketStatus.NORMAL


async def test_stale_recovery_keeps_error(service, make_event):
    t1 = datetime(2024, 5, 10, 10, 0)
    await service.ingest(make_event(
        receiver_status_code="04", repeater_id=None, repeater_status_code=None, timestamp=t1,
    ))
    await service.ingest(make_event(
        receiver_status_code="11", repeater_id=None, repeater_status_code=None,
        timestamp=t1 - timedelta(minutes=1),
    ))

    assert await service.get_market_status("부평자유시장") == MarketStatus.ERROR


async def test_status_writes_follow_update_order(service, make_event, devices, monkeypatch):
    set_status = devices.set_market_status

    async def slow_fire_write(market_id, status, at):
        if status == MarketStatus.FIRE:
            await asyncio.sleep(0.05)
        await set_status(market_id, status, at)

    monkeypatch.setattr(devices, "set_market_status", slow_fire_write)

    await asyncio.gather(
        service.ingest(make_event(timestamp=datetime(2024, 5, 10, 8, 0))),
        service.ingest(make_event(
            receiver_status_code="11", repeater_id=None, repeater_status_code=None,
            timestamp=datetime(2024, 5, 10, 8, 5),
        )),
    )

    assert service.aggregator.status_of(1) == MarketStatus.NORMAL
    assert devices.markets[1].status == MarketStatus.NORMAL
    assert devices.markets[1].status_updated_at == datetime(2024, 5, 10, 8, 5)


async def test_every_event_is_audited(service, make_event, reception):
    await service.ingest(make_event(receiver_status_code="99", repeater_id=None, repeater_status_code=None))

    rows = list(reception.rows.values())
    assert len(rows) == 1
    assert rows[0].market_id == 1
    assert rows[0].log_type == LogType.STATUS


async def test_normal_event_leaves_no_ledger_entry(service, make_event, fire_history):
    result = await service.ingest(make_event(receiver_status_code="99", repeater_id=None, repeater_status_code=None))

    assert result.severity == "normal"
    assert result.ledger_entry_id is None
    assert not fire_history.rows


async def test_invalid_event_is_audited_then_rejected(service, reception):
    with pytest.raises(ValidationError):
        await service.ingest(RawEvent(receiver_mac="001A", received_data="raw"))

    (row,) = reception.rows.values()
    assert row.log_type == LogType.CLASSIFY_FAILED
    assert row.received_data == "raw"


async def test_unknown_receiver(service, make_event, reception):
    with pytest.raises(NotFoundError):
        await service.ingest(make_event(receiver_mac="FFFF"))

    (row,) = reception.rows.values()
    assert row.market_id is None
    assert row.log_type == LogType.CLASSIFY_FAILED


async def test_receiver_registered_in_two_markets(service, make_event, devices):
    devices.add_receiver(2, "00:1a")

    with pytest.raises(DeviceIntegrityError):
        await service.ingest(make_event())


async def test_unregistered_repeater_is_logged_and_ingested(service, make_event, caplog):
    with caplog.at_level(logging.WARNING):
        result = await service.ingest(make_event(repeater_id="05"))

    assert result.market_status == MarketStatus.FIRE
    assert "Unregistered repeater" in caplog.text


async def test_batch_isolates_failures(service, make_event):
    outcomes = await service.ingest_batch([
        make_event(),
        RawEvent(receiver_mac="001A"),
        make_event(receiver_mac="AABBCCDDEEFF", receiver_status_code="04", repeater_id=None, repeater_status_code=None),
    ])

    assert [o.ok for o in outcomes] == [True, False, True]
    assert outcomes[1].error_type == "ValidationError"
    assert outcomes[2].result.market_status == MarketStatus.ERROR


async def test_registrar_defaults_to_system(service, make_event, fire_history):
    await service.ingest(make_event())
    await service.ingest(make_event(), registrar="관리자")

    assert [r.registrar for r in fire_history.rows.values()] == ["system", "관리자"]


async def test_notifications(service, make_event, notifier):
    await service.ingest(make_event(detector_id="3"))
    await service.ingest(make_event())

    assert len(notifier.of_type("reception")) == 2
    # Status only changed once
    assert len(notifier.of_type("market_status")) == 1
    alerts = notifier.of_type("alert")
    assert len(alerts) == 2
    assert alerts[0]["stores"] == ["행복상회"]
    assert alerts[0]["event_class"] == EventClass.FIRE


async def test_fire_history_labels_and_reconcile(service, make_event):
    result = await service.ingest(make_event())

    (row,) = await service.query_fire_history(FireHistoryFilter(**MAY))
    assert row.receiver_status_name == "화재알람"
    assert row.repeater_status_name == "정상"

    reconciled = await service.reconcile_fire_history(result.ledger_entry_id, FalseAlarmStatus.FALSE_ALARM, "점검 중")
    assert reconciled.false_alarm_status == FalseAlarmStatus.FALSE_ALARM
    assert reconciled.receiver_status_name == "화재알람"

    deleted = await service.delete_fire_history([result.ledger_entry_id, 999])
    assert deleted.deleted == [result.ledger_entry_id]
    assert deleted.not_found == [999]


async def test_market_status_reads(service, make_event):
    await service.ingest(make_event(receiver_mac=CLOSED_MAC))

    with pytest.raises(NotFoundError):
        await service.get_market_status("없는시장")

    everything = await service.get_all_market_statuses()
    assert everything == {
        "부평자유시장": MarketStatus.NORMAL,
        "남동시장": MarketStatus.NORMAL,
        "폐쇄시장": MarketStatus.FIRE,
    }
    assert "폐쇄시장" not in await service.get_all_market_statuses(active_only=True)


async def test_market_added_after_start(service, devices):
    devices.add_market("신포시장", market_id=7)
    assert await service.get_market_status("신포시장") == MarketStatus.NORMAL


async def test_dashboard_snapshot(service, make_event):
    fire = await service.ingest(make_event())
    await service.ingest(make_event(
        receiver_mac="AABBCCDDEEFF", receiver_status_code="04", repeater_id=None, repeater_status_code=None,
    ))
    await service.ingest(make_event(
        receiver_mac="AABBCCDDEEFF", receiver_status_code="35", repeater_id=None, repeater_status_code=None,
    ))
    await service.ingest(make_event(receiver_mac=CLOSED_MAC))

    snapshot = await service.dashboard_snapshot()

    assert {s.type: s.value for s in snapshot.stats} == {"fire": 1, "fault": 1, "error": 1}
    assert snapshot.fire_events[0].code == "10"
    assert snapshot.fire_events[0].code_name == "화재알람"
    assert snapshot.comm_events[0].code_name == "통신단선"
    assert [m.market_name for m in snapshot.markets] == ["부평자유시장", "남동시장"]

    await service.reconcile_fire_history(fire.ledger_entry_id, FalseAlarmStatus.FALSE_ALARM, None)
    snapshot = await service.dashboard_snapshot()
    assert {s.type: s.value for s in snapshot.stats}["fire"] == 0


async def test_device_fault_processing(service, make_event, fire_history):
    result = await service.ingest(make_event(receiver_status_code="00", repeater_status_code="35", detector_id="03"))

    row = fire_history.rows[result.ledger_entry_id]
    assert (row.device_type, row.device_id, row.error_code) == (DeviceType.DETECTOR, "03", "35")
    assert row.process_status == ProcessStatus.PENDING

    snapshot = await service.dashboard_snapshot()
    assert snapshot.fault_events[0].detail == "감지기 03 에러"
    assert snapshot.fault_events[0].code_name == "감지기고장"

    done = await service.process_device_fault(result.ledger_entry_id, ProcessStatus.DONE, "감지기 교체")
    assert done.process_status == ProcessStatus.DONE
    assert done.repeater_status_name == "감지기고장"

    snapshot = await service.dashboard_snapshot()
    assert {s.type: s.value for s in snapshot.stats}["fault"] == 0

    fire = await service.ingest(make_event())
    with pytest.raises(ValidationError):
        await service.process_device_fault(fire.ledger_entry_id, ProcessStatus.DONE, None)


async def test_dashboard_prefers_the_alarming_code(service, make_event):
    await service.ingest(make_event(receiver_status_code="00", repeater_status_code="10"))

    snapshot = await service.dashboard_snapshot()
    assert snapshot.fire_events[0].code == "10"


async def test_reload_and_resolve_codes(service, codes):
    codes.put("50", "화재경보", severity="fire")
    assert service.resolve_code("50").name == "50"

    code_map = await service.reload_codes()

    assert code_map["50"] == "화재경보"
    assert service.resolve_code("50").severity.label == "fire"


async def test_start_with_code_table_down(devices, broken_codes, test_settings, clock, make_event):
    svc = FireWatchService(
        devices, broken_codes, MemoryFireHistoryRepository(), MemoryDataReceptionRepository(),
        config=test_settings, clock=clock,
    )
    await svc.start()

    assert svc.resolve_code("10").name == "10"
    result = await svc.ingest(make_event())
    assert result.degraded


async def test_check_integrity(service, devices):
    assert await service.check_integrity() == []

    devices.add_link("alarm", 2, "001A", "01")
    devices.add_link("transmitter", 1, "FFFF", "02")

    issues = await service.check_integrity()
    assert {(i.kind, i.problem) for i in issues} == {
        ("alarm", "receiver_in_other_market"),
        ("transmitter", "receiver_missing"),
    }



def test_seeded_market_ids_never_collide(devices):
    added = devices.add_market("신포시장")
    assert added.id not in (1, 2, 3)
    assert devices.markets[1].name == "부평자유시장"

    with pytest.raises(ValueError):
        devices.add_market("중복시장", market_id=2)
