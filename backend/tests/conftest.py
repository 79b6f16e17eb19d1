from datetime import datetime

import pytest

from firewatch.config import Settings
from firewatch.errors import StorageError
from firewatch.repositories.base import CodeRepository
from firewatch.repositories.memory import (
    MemoryCodeRepository,
    MemoryDataReceptionRepository,
    MemoryDeviceRepository,
    MemoryFireHistoryRepository,
)
from firewatch.schemas import RawEvent, UsageStatus
from firewatch.service import FireWatchService

BUPYEONG_MAC = "001A"
NAMDONG_MAC = "AA:BB:CC:DD:EE:FF"
CLOSED_MAC = "CC-CC-CC"


class BrokenCodeRepository(CodeRepository):
    async def list_codes(self):
        raise StorageError("common_codes unreachable")


class RecordingNotifier:
    def __init__(self):
        self.messages = []

    async def broadcast(self, message):
        self.messages.append(message)

    def of_type(self, msg_type):
        return [m for m in self.messages if m["type"] == msg_type]


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def test_settings():
    return Settings(_env_file=None, STORAGE_BACKEND="memory")


@pytest.fixture
def codes():
    repo = MemoryCodeRepository()
    repo.put("10", "화재알람", severity="fire")
    repo.put("11", "화재해소", severity="recovered")
    repo.put("00", "정상")
    repo.put("04", "통신단선", severity="fault")
    repo.put("35", "감지기고장")
    return repo


@pytest.fixture
def broken_codes():
    return BrokenCodeRepository()


@pytest.fixture
def devices():
    repo = MemoryDeviceRepository()
    bupyeong = repo.add_market("부평자유시장", market_id=1)
    repo.add_receiver(bupyeong.id, BUPYEONG_MAC)
    repo.add_repeater(bupyeong.id, BUPYEONG_MAC, "01")
    repo.add_detector(bupyeong.id, BUPYEONG_MAC, "01", "03", store_names=["행복상회"])

    namdong = repo.add_market("남동시장", market_id=2)
    repo.add_receiver(namdong.id, NAMDONG_MAC)

    closed = repo.add_market("폐쇄시장", usage_status=UsageStatus.INACTIVE, market_id=3)
    repo.add_receiver(closed.id, CLOSED_MAC)
    return repo


@pytest.fixture
def clock():
    return Clock(datetime(2024, 5, 10, 9, 0, 0))


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def fire_history():
    return MemoryFireHistoryRepository()


@pytest.fixture
def reception():
    return MemoryDataReceptionRepository()


@pytest.fixture
async def service(devices, codes, fire_history, reception, test_settings, notifier, clock):
    svc = FireWatchService(
        devices, codes, fire_history, reception,
        config=test_settings, notifier=notifier, clock=clock,
    )
    await svc.start()
    return svc


@pytest.fixture
def make_event():
    """Fire packet from 부평자유시장 unless overridden."""
    def _make(**overrides):
        fields = {
            "receiver_mac": BUPYEONG_MAC,
            "receiver_status_code": "10",
            "repeater_id": "01",
            "repeater_status_code": "00",
        }
        fields.update(overrides)
        return RawEvent(**fields)
    return _make
