#backend/firewatch/schemas.py
from datetime import date, datetime
from enum import Enum, IntEnum
from typing import Optional, Dict, List

from pydantic import BaseModel, Field, field_serializer, field_validator
from pydantic.alias_generators import to_camel


class Severity(IntEnum):
    """Ordered so that max() gives the combined severity: Fire > Fault > Recovered > Normal."""
    NORMAL = 0
    RECOVERED = 1
    FAULT = 2
    FIRE = 3

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def from_label(cls, value: Optional[str]) -> Optional["Severity"]:
        if not value:
            return None
        try:
            return cls[value.strip().upper()]
        except KeyError:
            return None


class MarketStatus(str, Enum):
    NORMAL = "Normal"
    FIRE = "Fire"
    ERROR = "Error"


class FalseAlarmStatus:
    REGISTERED = "등록"
    FIRE = "화재"
    FALSE_ALARM = "오탐"

    DECISIONS = (FIRE, FALSE_ALARM)


class EventClass:
    FIRE = "fire"
    FAULT = "fault"


class ProcessStatus:
    """Maintenance workflow on fault rows; fire rows never carry one."""
    PENDING = "미처리"
    DONE = "처리"

    DECISIONS = (DONE, PENDING)


class DeviceType:
    RECEIVER = "수신기"
    REPEATER = "중계기"
    DETECTOR = "감지기"


class UsageStatus:
    ACTIVE = "사용"
    INACTIVE = "미사용"


class LogType:
    STATUS = "STATUS"
    CLASSIFY_FAILED = "CLASSIFY_FAILED"


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


# ============================================================================
# RAW DEVICE EVENTS
# ============================================================================
class RawEvent(CamelModel):
    """
    One packet as reported by a receiver. Everything is optional here so that
    malformed packets still reach the reception log; the classifier decides
    what is required.
    """
    receiver_mac: Optional[str] = None
    receiver_status_code: Optional[str] = None
    repeater_id: Optional[str] = None
    repeater_status_code: Optional[str] = None
    detector_id: Optional[str] = None
    detector_chamber: Optional[str] = None
    detector_temp: Optional[str] = None
    timestamp: Optional[datetime] = None

    log_type: Optional[str] = None
    received_data: Optional[str] = None
    comm_status: Optional[str] = None
    battery_status: Optional[str] = None
    chamber_status: Optional[str] = None

    @field_validator(
        "receiver_mac", "receiver_status_code", "repeater_id", "repeater_status_code",
        "detector_id", "detector_chamber", "detector_temp",
        mode="before",
    )
    @classmethod
    def _stringify(cls, value):
        # Devices send ids and codes as bare numbers as often as strings
        if value is None:
            return None
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("timestamp")
    @classmethod
    def _local_naive(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is not None:
            return value.astimezone().replace(tzinfo=None)
        return value


class BatchIngestRequest(CamelModel):
    events: List[RawEvent]
    registrar: Optional[str] = None


class IngestResult(CamelModel):
    ledger_entry_id: Optional[int] = None
    reception_id: Optional[int] = None
    market_id: Optional[int] = None
    market_name: Optional[str] = None
    market_status: Optional[MarketStatus] = None
    severity: str
    degraded: bool = False


class IngestOutcome(CamelModel):
    index: int
    ok: bool
    result: Optional[IngestResult] = None
    error: Optional[str] = None
    error_type: Optional[str] = None


# ============================================================================
# DEVICE IDENTITY
# ============================================================================
class MarketRef(CamelModel):
    id: int
    name: str
    usage_status: str = UsageStatus.ACTIVE
    status: MarketStatus = MarketStatus.NORMAL
    status_updated_at: Optional[datetime] = None


class ReceiverRef(CamelModel):
    id: Optional[int] = None
    market_id: int
    market_name: str
    mac_address: str


class RepeaterRef(CamelModel):
    id: Optional[int] = None
    market_id: int
    receiver_mac: str
    repeater_id: str


class DetectorRef(CamelModel):
    id: Optional[int] = None
    market_id: int
    receiver_mac: str
    repeater_id: str
    detector_id: str
    mode: Optional[str] = None
    store_names: List[str] = []


class DeviceLink(CamelModel):
    """A repeater/detector/transmitter/alarm row as seen by the integrity check."""
    kind: str
    id: int
    market_id: int
    receiver_mac: str
    repeater_id: Optional[str] = None


class IntegrityIssue(CamelModel):
    kind: str
    device_id: int
    market_id: int
    receiver_mac: str
    problem: str


# ============================================================================
# STATUS CODES
# ============================================================================
class CodeRecord(CamelModel):
    code: str
    name: str
    group_code: Optional[str] = None
    status: Optional[str] = None
    severity: Optional[str] = None


class CodeClassification(CamelModel):
    code: str
    name: str
    severity: Severity
    degraded: bool = False

    @field_serializer("severity")
    def _severity_label(self, value: Severity) -> str:
        return value.label


# ============================================================================
# FIRE HISTORY
# ============================================================================
class FireHistoryItem(CamelModel):
    id: Optional[int] = None
    market_id: Optional[int] = None
    market_name: str
    receiver_mac: str
    receiver_status: Optional[str] = None
    repeater_id: Optional[str] = None
    repeater_status: Optional[str] = None
    detector_id: Optional[str] = None
    detector_info_chamber: Optional[str] = None
    detector_info_temp: Optional[str] = None
    event_class: str
    registrar: str
    registered_at: datetime
    false_alarm_status: str = FalseAlarmStatus.REGISTERED
    note: Optional[str] = None

    # Fault rows only: which device reported which code, and whether it has been dealt with
    device_type: Optional[str] = None
    device_id: Optional[str] = None
    error_code: Optional[str] = None
    process_status: Optional[str] = None

    # Display labels resolved against the current code table
    receiver_status_name: Optional[str] = None
    repeater_status_name: Optional[str] = None


class FireHistoryFilter(CamelModel):
    start_date: date
    end_date: date
    market_name: Optional[str] = None
    market_id: Optional[int] = None
    fire_only: bool = False
    fault_only: bool = False
    false_alarm_status: Optional[str] = None
    process_status: Optional[str] = None

    @property
    def event_class(self) -> Optional[str]:
        if self.fire_only:
            return EventClass.FIRE
        if self.fault_only:
            return EventClass.FAULT
        return None


class ReconcileRequest(CamelModel):
    decision: str
    note: Optional[str] = None


class ProcessRequest(CamelModel):
    decision: str
    note: Optional[str] = None


class BulkDeleteRequest(CamelModel):
    ids: List[int] = Field(default_factory=list)


class BulkDeleteResult(CamelModel):
    deleted: List[int] = []
    not_found: List[int] = []
    failed: Dict[int, str] = {}

    @property
    def ok(self) -> bool:
        return not self.failed


# ============================================================================
# DATA RECEPTION
# ============================================================================
class DataReceptionItem(CamelModel):
    id: Optional[int] = None
    market_id: Optional[int] = None
    market_name: Optional[str] = None
    log_type: str
    receiver_id: str
    repeater_id: Optional[str] = None
    received_data: Optional[str] = None
    comm_status: Optional[str] = None
    battery_status: Optional[str] = None
    chamber_status: Optional[str] = None
    registered_at: datetime


class DataReceptionFilter(CamelModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    market_name: Optional[str] = None
    receiver_id: Optional[str] = None


# ============================================================================
# MARKET STATUS / DASHBOARD
# ============================================================================
class MarketStatusView(CamelModel):
    market_id: int
    market_name: str
    status: MarketStatus
    usage_status: str = UsageStatus.ACTIVE
    updated_at: Optional[datetime] = None


class DashboardStat(CamelModel):
    label: str
    value: int
    type: str


class DashboardEvent(CamelModel):
    id: int
    market_id: Optional[int] = None
    market_name: str
    receiver_mac: str
    repeater_id: Optional[str] = None
    code: Optional[str] = None
    code_name: Optional[str] = None
    detail: Optional[str] = None
    time: datetime


class DashboardSnapshot(CamelModel):
    generated_at: datetime
    stats: List[DashboardStat]
    fire_events: List[DashboardEvent]
    fault_events: List[DashboardEvent]
    comm_events: List[DashboardEvent]
    markets: List[MarketStatusView]
