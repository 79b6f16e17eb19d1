#backend/processors/packet_processor.py
import json
import logging
from typing import Optional, Dict, Any

from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from firewatch.schemas import RawEvent

logger = logging.getLogger(__name__)

# Field name variants seen from receiver firmware, first match wins
FIELD_ALIASES = {
    "receiver_mac": ("receiverMac", "receiver_mac", "mac", "target"),
    "receiver_status_code": ("receiverStatusCode", "receiverStatus", "receiver_status"),
    "repeater_id": ("repeaterId", "repeater_id", "repeater"),
    "repeater_status_code": ("repeaterStatusCode", "repeaterStatus", "repeater_status"),
    "detector_id": ("detectorId", "detector_id", "detector"),
    "detector_chamber": ("detectorChamber", "chamber"),
    "detector_temp": ("detectorTemp", "temp", "temperature"),
    "comm_status": ("commStatus", "comm_status"),
    "battery_status": ("batteryStatus", "battery_status", "battery"),
    "chamber_status": ("chamberStatus", "chamber_status"),
    "timestamp": ("timestamp", "time", "ts"),
}

# Packet types that never carry device status
IGNORED_TYPES = {"AUTH", "FIRE_RESET", "PING"}


class PacketEngine:
    def __init__(self):
        self.decoded = 0
        self.ignored = 0
        self.rejected = 0

    def process(self, payload: str, topic_mac: Optional[str] = None) -> Optional[RawEvent]:
        """
        Decode one JSON packet into a RawEvent.
        Returns None for non-status packets and undecodable payloads.
        """
        try:
            data = json.loads(payload)
        except (ValueError, TypeError) as e:
            self.rejected += 1
            logger.warning(f"⚠️ Undecodable packet ({e}): {payload[:80]!r}")
            return None

        if not isinstance(data, dict):
            self.rejected += 1
            logger.warning(f"⚠️ Packet is not a JSON object: {payload[:80]!r}")
            return None

        packet_type = str(data.get("type") or "STATUS").upper()
        if packet_type in IGNORED_TYPES:
            self.ignored += 1
            logger.debug(f"Ignoring {packet_type} packet from {data.get('target') or topic_mac}")
            return None

        fields = self._pick_fields(data)
        if not fields.get("receiver_mac") and topic_mac:
            fields["receiver_mac"] = topic_mac

        try:
            event = RawEvent(
                **fields,
                log_type=packet_type,
                received_data=payload,
            )
        except PydanticValidationError as e:
            # Drop only the offending fields; a bad timestamp must not cost the status codes
            bad = {err["loc"][0] for err in e.errors() if err.get("loc")}
            logger.warning(f"⚠️ Packet fields rejected {sorted(map(str, bad))}, keeping the rest")
            kept = {name: value for name, value in fields.items() if name not in bad and to_camel(name) not in bad}
            try:
                event = RawEvent(**kept, log_type=packet_type, received_data=payload)
            except PydanticValidationError:
                event = RawEvent(
                    receiver_mac=str(fields.get("receiver_mac") or "") or None,
                    log_type=packet_type,
                    received_data=payload,
                )

        self.decoded += 1
        return event

    def _pick_fields(self, data: Dict[str, Any]) -> Dict[str, Any]:
        fields = {}
        for name, aliases in FIELD_ALIASES.items():
            for alias in aliases:
                if data.get(alias) not in (None, ""):
                    fields[name] = data[alias]
                    break
        return fields
