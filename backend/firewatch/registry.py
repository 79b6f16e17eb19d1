# backend/firewatch/registry.py
import logging
from typing import Dict, Optional, TYPE_CHECKING

from .errors import FireWatchError, RegistryUnavailableError
from .schemas import CodeClassification, CodeRecord, Severity

if TYPE_CHECKING:
    from .repositories.base import CodeRepository

logger = logging.getLogger(__name__)

# Keyword table for names without an explicit severity, checked in priority order
SEVERITY_KEYWORDS = (
    (Severity.FIRE, ("화재",)),
    (Severity.FAULT, ("고장", "단선", "오류")),
    (Severity.RECOVERED, ("해소", "정상", "복구")),
)


def _first_hit(name: str, words) -> int:
    positions = [name.find(w) for w in words if w in name]
    return min(positions) if positions else -1


def classify_name(name: Optional[str]) -> Severity:
    """
    Keyword match on a resolved code name.

    A recovery word placed after the condition it clears ("화재해소",
    "단선복구") reads as a recovery. Any other combination of classes is
    resolved by priority Fire > Fault > Recovered and logged as a
    data-quality warning.
    """
    if not name:
        return Severity.NORMAL

    hits = {severity: _first_hit(name, words) for severity, words in SEVERITY_KEYWORDS}
    matched = [severity for severity, _ in SEVERITY_KEYWORDS if hits[severity] >= 0]
    if not matched:
        return Severity.NORMAL

    recovery_at = hits[Severity.RECOVERED]
    conditions = [hits[s] for s in (Severity.FIRE, Severity.FAULT) if hits[s] >= 0]
    if recovery_at >= 0 and conditions and recovery_at > max(conditions):
        return Severity.RECOVERED

    if len(matched) > 1:
        logger.warning(
            f"⚠️ Code name {name!r} matches several classes {[s.label for s in matched]}, "
            f"using {matched[0].label}"
        )
    return matched[0]


class StatusCodeRegistry:
    def __init__(self, repository: "CodeRepository"):
        self.repository = repository
        self._codes: Dict[str, CodeRecord] = {}
        self.loaded = False

    async def load(self) -> Dict[str, str]:
        """Fetch the whole code table. The previous map is kept if the store is unreachable."""
        try:
            records = await self.repository.list_codes()
        except FireWatchError as e:
            raise RegistryUnavailableError(f"공통코드를 불러올 수 없습니다: {e.message}") from e
        except OSError as e:
            raise RegistryUnavailableError(f"공통코드를 불러올 수 없습니다: {e}") from e

        self._codes = {r.code: r for r in records}
        self.loaded = True
        logger.info(f"✓ Status code registry loaded ({len(self._codes)} codes)")
        return self.code_map()

    async def load_or_degrade(self) -> bool:
        """load(), but a failure only logs; resolve() then passes raw codes through."""
        try:
            await self.load()
            return True
        except RegistryUnavailableError as e:
            logger.warning(f"⚠️ {e.message} - falling back to raw status codes")
            return False

    def code_map(self) -> Dict[str, str]:
        return {code: record.name for code, record in self._codes.items()}

    def resolve(self, code: Optional[str]) -> Optional[str]:
        if code is None:
            return None
        record = self._codes.get(code)
        return record.name if record else code

    def classify(self, name: Optional[str]) -> Severity:
        return classify_name(name)

    def classify_code(self, code: Optional[str]) -> CodeClassification:
        if code is None:
            return CodeClassification(code="", name="", severity=Severity.NORMAL)

        record = self._codes.get(code)
        if record is not None:
            explicit = Severity.from_label(record.severity)
            if explicit is not None:
                return CodeClassification(code=code, name=record.name, severity=explicit)
            if record.severity:
                logger.warning(f"⚠️ Code {code} has unknown severity {record.severity!r}, using keywords")

        # Keyword fallback: legacy rows without a severity, or codes not registered yet
        name = self.resolve(code)
        return CodeClassification(code=code, name=name, severity=classify_name(name), degraded=True)
