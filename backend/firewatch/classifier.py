# backend/firewatch/classifier.py
import logging
import re
from datetime import datetime
from typing import Optional, Tuple

from pydantic import BaseModel

from .errors import ValidationError
from .identity import MAX_REPEATER_ID, normalize_device_id, normalize_mac
from .registry import StatusCodeRegistry
from .schemas import (
    CodeClassification,
    DeviceType,
    EventClass,
    FalseAlarmStatus,
    FireHistoryItem,
    ProcessStatus,
    RawEvent,
    ReceiverRef,
    Severity,
)

logger = logging.getLogger(__name__)

# Status codes are short tokens such as "10", "35", "4A"
_CODE_FORMAT = re.compile(r"^[0-9A-Za-z]{1,8}$")


class ClassifiedEvent(BaseModel):
    event: RawEvent
    receiver: Optional[CodeClassification] = None
    repeater: Optional[CodeClassification] = None
    severity: Severity
    degraded: bool = False

    @property
    def event_class(self) -> Optional[str]:
        if self.severity == Severity.FIRE:
            return EventClass.FIRE
        if self.severity == Severity.FAULT:
            return EventClass.FAULT
        return None

    @property
    def creates_ledger_entry(self) -> bool:
        return self.severity >= Severity.FAULT

    def faulting_device(self) -> Tuple[str, str, Optional[str]]:
        """(device type, device id, code) of the part that carried the fault."""
        event = self.event
        if self.repeater is not None and event.repeater_id and (
            self.receiver is None or self.repeater.severity >= self.receiver.severity
        ):
            if event.detector_id:
                return DeviceType.DETECTOR, event.detector_id, self.repeater.code
            return DeviceType.REPEATER, event.repeater_id, self.repeater.code
        code = self.receiver.code if self.receiver else None
        return DeviceType.RECEIVER, event.receiver_mac, code


class EventClassifier:
    def __init__(self, registry: StatusCodeRegistry):
        self.registry = registry

    # =========================================================================
    # 1. VALIDATION
    # =========================================================================
    def validate(self, event: RawEvent) -> RawEvent:
        """Return a normalised copy of ``event`` or raise ValidationError."""
        mac = (event.receiver_mac or "").strip()
        if not mac or not normalize_mac(mac):
            raise ValidationError("receiverMac is required", field="receiverMac")

        receiver_code = self._check_code(event.receiver_status_code, "receiverStatusCode")
        repeater_code = self._check_code(event.repeater_status_code, "repeaterStatusCode")
        if receiver_code is None and repeater_code is None:
            raise ValidationError("receiverStatusCode or repeaterStatusCode is required", field="receiverStatusCode")

        repeater_id = normalize_device_id(event.repeater_id, "repeaterId", upper=MAX_REPEATER_ID)
        if repeater_code is not None and repeater_id is None:
            raise ValidationError("repeaterStatusCode requires repeaterId", field="repeaterId")
        detector_id = normalize_device_id(event.detector_id, "detectorId")

        return event.model_copy(update={
            "receiver_mac": mac,
            "receiver_status_code": receiver_code,
            "repeater_id": repeater_id,
            "repeater_status_code": repeater_code,
            "detector_id": detector_id,
        })

    def _check_code(self, code: Optional[str], field: str) -> Optional[str]:
        if code is None:
            return None
        code = code.strip()
        if code == "":
            return None
        if not _CODE_FORMAT.match(code):
            raise ValidationError(f"{field} has an unknown code format: {code!r}", field=field)
        return code

    # =========================================================================
    # 2. CLASSIFICATION
    # =========================================================================
    def classify(self, event: RawEvent) -> ClassifiedEvent:
        """``event`` must already be validated."""
        receiver = self.registry.classify_code(event.receiver_status_code) if event.receiver_status_code else None
        repeater = self.registry.classify_code(event.repeater_status_code) if event.repeater_status_code else None

        parts = [c for c in (receiver, repeater) if c is not None]
        severity = max(c.severity for c in parts)
        degraded = any(c.degraded for c in parts)
        if degraded and severity >= Severity.FAULT:
            logger.warning(
                f"⚠️ [{event.receiver_mac}] {severity.label.upper()} derived from code names "
                f"({', '.join(f'{c.code}={c.name}' for c in parts)}), no explicit severity registered"
            )

        return ClassifiedEvent(
            event=event,
            receiver=receiver,
            repeater=repeater,
            severity=severity,
            degraded=degraded,
        )

    # =========================================================================
    # 3. LEDGER ENTRY
    # =========================================================================
    def build_ledger_entry(
        self,
        classified: ClassifiedEvent,
        receiver: ReceiverRef,
        registrar: str,
        received_at: datetime,
    ) -> FireHistoryItem:
        event = classified.event
        item = FireHistoryItem(
            market_id=receiver.market_id,
            market_name=receiver.market_name,
            receiver_mac=event.receiver_mac,
            receiver_status=event.receiver_status_code,
            repeater_id=event.repeater_id,
            repeater_status=event.repeater_status_code,
            detector_id=event.detector_id,
            detector_info_chamber=event.detector_chamber,
            detector_info_temp=event.detector_temp,
            event_class=classified.event_class,
            registrar=registrar,
            registered_at=event.timestamp or received_at,
            false_alarm_status=FalseAlarmStatus.REGISTERED,
        )
        if classified.event_class == EventClass.FAULT:
            device_type, device_id, code = classified.faulting_device()
            item.device_type = device_type
            item.device_id = device_id
            item.error_code = code
            item.process_status = ProcessStatus.PENDING
        return item
