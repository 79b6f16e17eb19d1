# backend/firewatch/identity.py
import logging
import re
from collections import defaultdict
from typing import Dict, List, Optional, TYPE_CHECKING

from .errors import NotFoundError, DeviceIntegrityError, ValidationError
from .schemas import DetectorRef, IntegrityIssue, MarketRef, ReceiverRef, RepeaterRef

if TYPE_CHECKING:
    from .repositories.base import DeviceRepository

logger = logging.getLogger(__name__)

MAX_REPEATER_ID = 20
_TWO_DIGIT = re.compile(r"^\d{1,2}$")


def normalize_mac(mac: Optional[str]) -> str:
    """'00:1a-2b' -> '001A2B'. Receivers report MACs with and without separators."""
    if not mac:
        return ""
    return mac.strip().replace(":", "").replace("-", "").upper()


def normalize_device_id(value: Optional[str], field: str, upper: Optional[int] = None) -> Optional[str]:
    """Zero-pad a 1-2 digit device id ('1' -> '01'); None passes through."""
    if value is None or str(value).strip() == "":
        return None
    value = str(value).strip()
    if not _TWO_DIGIT.match(value):
        raise ValidationError(f"{field} must be a 1-2 digit number, got {value!r}", field=field)
    number = int(value)
    if upper is not None and not (1 <= number <= upper):
        raise ValidationError(f"{field} must be between 01 and {upper:02d}, got {value!r}", field=field)
    return f"{number:02d}"


class DeviceDirectory:
    """
    Read side of the device chain market -> receiver -> repeater -> detector.

    Market resolution goes through receiverMac -> marketId; market names are
    display values only.
    """

    def __init__(self, repository: "DeviceRepository"):
        self.repository = repository

    async def resolve_receiver(self, receiver_mac: str) -> ReceiverRef:
        matches = await self.repository.find_receivers(receiver_mac)
        if not matches:
            raise NotFoundError(f"등록되지 않은 수신기입니다: {receiver_mac}", field="receiverMac")

        market_ids = {r.market_id for r in matches}
        if len(market_ids) > 1:
            logger.error(f"❌ Receiver {receiver_mac} is registered in markets {sorted(market_ids)}")
            raise DeviceIntegrityError(
                f"수신기 {receiver_mac} 가 여러 현장에 등록되어 있습니다: {sorted(market_ids)}",
                field="receiverMac",
            )
        return matches[0]

    async def resolve_repeater(self, receiver_mac: str, repeater_id: str) -> Optional[RepeaterRef]:
        return await self.repository.find_repeater(receiver_mac, repeater_id)

    async def resolve_detector(self, receiver_mac: str, repeater_id: str, detector_id: str) -> Optional[DetectorRef]:
        return await self.repository.find_detector(receiver_mac, repeater_id, detector_id)

    async def list_markets(self) -> List[MarketRef]:
        return await self.repository.list_markets()

    async def find_markets(self, name: str) -> List[MarketRef]:
        return [m for m in await self.repository.list_markets() if m.name == name]

    async def check_integrity(self) -> List[IntegrityIssue]:
        """Every repeater/detector/transmitter/alarm must hang off a receiver of its own market."""
        receivers_by_mac: Dict[str, set] = defaultdict(set)
        for r in await self.repository.list_receivers():
            receivers_by_mac[normalize_mac(r.mac_address)].add(r.market_id)

        issues: List[IntegrityIssue] = []
        for link in await self.repository.list_device_links():
            owners = receivers_by_mac.get(normalize_mac(link.receiver_mac))
            if not owners:
                problem = "receiver_missing"
            elif link.market_id not in owners:
                problem = "receiver_in_other_market"
            else:
                continue
            issues.append(IntegrityIssue(
                kind=link.kind,
                device_id=link.id,
                market_id=link.market_id,
                receiver_mac=link.receiver_mac,
                problem=problem,
            ))

        if issues:
            logger.warning(f"⚠️ Device integrity check found {len(issues)} orphaned reference(s)")
        return issues
