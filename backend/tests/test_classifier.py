from datetime import datetime, timezone

import pytest

from firewatch.classifier import EventClassifier
from firewatch.errors import ValidationError
from firewatch.registry import StatusCodeRegistry
from firewatch.schemas import (
    DeviceType,
    EventClass,
    FalseAlarmStatus,
    ProcessStatus,
    RawEvent,
    ReceiverRef,
    Severity,
)


@pytest.fixture
async def classifier(codes):
    registry = StatusCodeRegistry(codes)
    await registry.load()
    return EventClassifier(registry)


async def test_validate_requires_receiver_mac(classifier):
    with pytest.raises(ValidationError) as exc:
        classifier.validate(RawEvent(receiver_status_code="10"))
    assert exc.value.field == "receiverMac"


async def test_validate_requires_a_status_code(classifier):
    with pytest.raises(ValidationError):
        classifier.validate(RawEvent(receiver_mac="001A", receiver_status_code="  "))


async def test_validate_rejects_unknown_code_format(classifier):
    with pytest.raises(ValidationError) as exc:
        classifier.validate(RawEvent(receiver_mac="001A", receiver_status_code="1-0"))
    assert exc.value.field == "receiverStatusCode"


@pytest.mark.parametrize("repeater_id", ["0", "21", "A1", "123"])
async def test_validate_rejects_repeater_out_of_range(classifier, repeater_id):
    with pytest.raises(ValidationError):
        classifier.validate(RawEvent(
            receiver_mac="001A", repeater_id=repeater_id, repeater_status_code="10",
        ))


async def test_validate_repeater_code_needs_repeater_id(classifier):
    with pytest.raises(ValidationError) as exc:
        classifier.validate(RawEvent(receiver_mac="001A", repeater_status_code="10"))
    assert exc.value.field == "repeaterId"


async def test_validate_normalises_ids(classifier):
    event = classifier.validate(RawEvent(
        receiver_mac=" 001A ", receiver_status_code=10, repeater_id=1, repeater_status_code="00", detector_id="3",
    ))
    assert event.receiver_mac == "001A"
    assert event.receiver_status_code == "10"
    assert event.repeater_id == "01"
    assert event.detector_id == "03"


def test_aware_timestamp_becomes_local_naive():
    event = RawEvent(receiver_mac="001A", timestamp=datetime(2024, 5, 10, 0, 0, tzinfo=timezone.utc))
    assert event.timestamp.tzinfo is None


async def test_fault_and_fire_combine_to_fire(classifier):
    classified = classifier.classify(classifier.validate(RawEvent(
        receiver_mac="001A", receiver_status_code="04", repeater_id="01", repeater_status_code="10",
    )))
    assert classified.severity == Severity.FIRE
    assert classified.event_class == EventClass.FIRE
    assert classified.creates_ledger_entry


async def test_recovery_codes_do_not_create_ledger_entries(classifier):
    classified = classifier.classify(classifier.validate(RawEvent(
        receiver_mac="001A", receiver_status_code="11", repeater_id="01", repeater_status_code="00",
    )))
    assert classified.severity == Severity.RECOVERED
    assert classified.event_class is None
    assert not classified.creates_ledger_entry


async def test_unknown_code_is_normal(classifier):
    classified = classifier.classify(classifier.validate(RawEvent(receiver_mac="001A", receiver_status_code="99")))
    assert classified.severity == Severity.NORMAL
    assert classified.degraded


async def test_keyword_fault_is_degraded(classifier):
    classified = classifier.classify(classifier.validate(RawEvent(receiver_mac="001A", receiver_status_code="35")))
    assert classified.severity == Severity.FAULT
    assert classified.degraded


async def test_build_ledger_entry(classifier):
    at = datetime(2024, 5, 10, 8, 30)
    classified = classifier.classify(classifier.validate(RawEvent(
        receiver_mac="001A", receiver_status_code="10", repeater_id="1", repeater_status_code="00",
        detector_id="3", detector_chamber="연기 80%", timestamp=at,
    )))
    receiver = ReceiverRef(market_id=1, market_name="부평자유시장", mac_address="00:1A")

    entry = classifier.build_ledger_entry(classified, receiver, "system", datetime(2024, 5, 10, 9, 0))

    assert entry.id is None
    assert entry.market_id == 1
    assert entry.market_name == "부평자유시장"
    assert entry.repeater_id == "01"
    assert entry.detector_id == "03"
    assert entry.detector_info_chamber == "연기 80%"
    assert entry.event_class == EventClass.FIRE
    assert entry.false_alarm_status == FalseAlarmStatus.REGISTERED
    assert entry.registered_at == at
    assert entry.process_status is None
    assert entry.device_type is None


RECEIVER = ReceiverRef(market_id=1, market_name="부평자유시장", mac_address="001A")


@pytest.mark.parametrize("fields, device_type, device_id, code", [
    (dict(receiver_status_code="00", repeater_id="1", repeater_status_code="35", detector_id="3"),
     DeviceType.DETECTOR, "03", "35"),
    (dict(receiver_status_code="00", repeater_id="2", repeater_status_code="04"), DeviceType.REPEATER, "02", "04"),
    (dict(receiver_status_code="04", repeater_id="2", repeater_status_code="00"), DeviceType.RECEIVER, "001A", "04"),
])
async def test_fault_entry_names_the_failing_device(classifier, fields, device_type, device_id, code):
    classified = classifier.classify(classifier.validate(RawEvent(receiver_mac="001A", **fields)))

    entry = classifier.build_ledger_entry(classified, RECEIVER, "system", datetime(2024, 5, 10, 9, 0))

    assert entry.event_class == EventClass.FAULT
    assert (entry.device_type, entry.device_id, entry.error_code) == (device_type, device_id, code)
    assert entry.process_status == ProcessStatus.PENDING
