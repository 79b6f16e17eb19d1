# backend/firewatch/aggregator.py
import asyncio
import logging
from collections import defaultdict
from datetime import datetime
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

from .schemas import MarketRef, MarketStatus, MarketStatusView, Severity, UsageStatus

logger = logging.getLogger(__name__)

_STATUS_RANK = {MarketStatus.NORMAL: 0, MarketStatus.ERROR: 1, MarketStatus.FIRE: 2}


class _MarketState:
    __slots__ = ("market_id", "name", "usage_status", "status", "last_alarm_at", "updated_at")

    def __init__(self, market_id: int, name: str, usage_status: str = UsageStatus.ACTIVE):
        self.market_id = market_id
        self.name = name
        self.usage_status = usage_status
        self.status = MarketStatus.NORMAL
        # Timestamp of the latest fire/fault seen; recoveries must be newer to clear
        self.last_alarm_at: Optional[datetime] = None
        self.updated_at: Optional[datetime] = None

    def view(self) -> MarketStatusView:
        return MarketStatusView(
            market_id=self.market_id,
            market_name=self.name,
            status=self.status,
            usage_status=self.usage_status,
            updated_at=self.updated_at,
        )


class MarketStatusAggregator:
    """
    Live Normal/Fire/Error per market, keyed by market id.

    Reads are synchronous dictionary lookups. Updates for one market are
    serialised by a per-market lock; different markets never wait on each other.
    """

    def __init__(self):
        self._states: Dict[int, _MarketState] = {}
        self._locks: Dict[int, asyncio.Lock] = defaultdict(asyncio.Lock)

    # =========================================================================
    # SEEDING
    # =========================================================================
    def register(self, market_id: int, name: str, usage_status: str = UsageStatus.ACTIVE) -> None:
        state = self._states.get(market_id)
        if state is None:
            self._states[market_id] = _MarketState(market_id, name, usage_status)
        else:
            state.name = name
            state.usage_status = usage_status

    def restore(self, markets: Iterable[MarketRef]) -> None:
        """Seed from persisted Market rows so a restart keeps active alarms."""
        for m in markets:
            self.register(m.id, m.name, m.usage_status)
            state = self._states[m.id]
            state.status = m.status
            state.updated_at = m.status_updated_at
            if m.status != MarketStatus.NORMAL:
                state.last_alarm_at = m.status_updated_at
        logger.info(f"✓ Market status restored for {len(self._states)} markets")

    # =========================================================================
    # UPDATE
    # =========================================================================
    async def update(
        self,
        market_id: int,
        severity: Severity,
        timestamp: datetime,
        market_name: Optional[str] = None,
        on_change: Optional[Callable[[MarketStatus, datetime], Awaitable[None]]] = None,
    ) -> MarketStatus:
        """
        Fold one classified event into the market's status and return the new status.

        ``on_change(status, at)`` is awaited while the market lock is still held,
        so writes of the status land in the same order as the updates.
        """
        async with self._locks[market_id]:
            state = self._states.get(market_id)
            if state is None:
                state = _MarketState(market_id, market_name or str(market_id))
                self._states[market_id] = state
            elif market_name:
                state.name = market_name
            previous = state.status

            if severity == Severity.FIRE:
                self._mark_alarm(state, MarketStatus.FIRE, timestamp)

            elif severity == Severity.FAULT:
                if state.status != MarketStatus.FIRE:
                    self._mark_alarm(state, MarketStatus.ERROR, timestamp)
                else:
                    state.last_alarm_at = _latest(state.last_alarm_at, timestamp)

            elif severity == Severity.RECOVERED:
                if state.status != MarketStatus.NORMAL:
                    if state.last_alarm_at is None or timestamp > state.last_alarm_at:
                        logger.info(f"✅ [{state.name}] {state.status.value} cleared by recovery at {timestamp}")
                        state.status = MarketStatus.NORMAL
                        state.updated_at = timestamp
                    else:
                        logger.warning(
                            f"⚠️ [{state.name}] Stale recovery at {timestamp} ignored, "
                            f"last alarm at {state.last_alarm_at}"
                        )

            # Severity.NORMAL neither escalates nor clears
            if on_change is not None and state.status != previous:
                await on_change(state.status, timestamp)
            return state.status

    def _mark_alarm(self, state: _MarketState, status: MarketStatus, timestamp: datetime) -> None:
        if state.status != status:
            logger.warning(f"🚨 [{state.name}] status {state.status.value} -> {status.value}")
        state.status = status
        state.last_alarm_at = _latest(state.last_alarm_at, timestamp)
        state.updated_at = timestamp

    # =========================================================================
    # READS
    # =========================================================================
    def status_of(self, market_id: int) -> MarketStatus:
        state = self._states.get(market_id)
        return state.status if state else MarketStatus.NORMAL

    def status_of_name(self, name: str) -> Optional[MarketStatus]:
        """Most severe status among markets sharing ``name``; None if no market has it."""
        states = [s for s in self._states.values() if s.name == name]
        if not states:
            return None
        if len(states) > 1:
            logger.warning(f"⚠️ Market name {name!r} is shared by ids {[s.market_id for s in states]}")
        return max((s.status for s in states), key=_STATUS_RANK.__getitem__)

    def view_of(self, market_id: int) -> Optional[MarketStatusView]:
        state = self._states.get(market_id)
        return state.view() if state else None

    def snapshot(self, active_only: bool = False) -> List[MarketStatusView]:
        return [
            s.view() for s in sorted(self._states.values(), key=lambda s: s.market_id)
            if not active_only or s.usage_status == UsageStatus.ACTIVE
        ]


def _latest(current: Optional[datetime], candidate: datetime) -> datetime:
    return candidate if current is None or candidate > current else current
