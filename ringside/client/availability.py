from __future__ import annotations

import calendar
from datetime import date as date_cls
from typing import Dict, Iterable, Optional, Set

from loguru import logger

from ..errors import ApiError, NetworkError
from ..helpers import can_purchase_for_date, js_weekday
from ..model.booking import TicketConfig
from .api import BookingApi


def cache_key(stadium_id: str, date: str) -> str:
    return f"{stadium_id}-{date}"


class AvailabilityCache:
    """Per-page memo of "does this stadium sell anything on this date".

    Lives as long as the page; `clear()` when it goes away.
    """

    def __init__(self, api: BookingApi) -> None:
        self.api = api
        self._results: Dict[str, bool] = {}
        self._volatile: Set[str] = set()

    def mark_volatile(self, stadium_id: str, date: str) -> None:
        # special and daily-adjusted nights change under us, never memoize
        self._volatile.add(cache_key(stadium_id, date))

    def cached(self, stadium_id: str, date: str) -> Optional[bool]:
        return self._results.get(cache_key(stadium_id, date))

    async def check(self, stadium_id: str, date: str,
                    force: bool = False) -> bool:
        key = cache_key(stadium_id, date)
        if not force and key not in self._volatile and key in self._results:
            return self._results[key]
        try:
            ok = await self.api.check_availability(stadium_id, date)
        except (ApiError, NetworkError) as e:
            # unknown, not sold out: leave it uncached so the next look retries
            logger.warning("availability check failed {}: {}", key, e)
            return False
        if key not in self._volatile:
            self._results[key] = ok
        return ok

    async def prefetch_month(self, stadium_id: str, year: int, month: int,
                             schedule_days: Iterable[int],
                             today: date_cls) -> Dict[str, bool]:
        days = set(schedule_days)
        out = {}
        _, ndays = calendar.monthrange(year, month)
        for day in range(1, ndays + 1):
            d = date_cls(year, month, day)
            if d < today or js_weekday(d) not in days:
                continue
            iso = d.isoformat()
            out[iso] = await self.check(stadium_id, iso)
        return out

    def is_sold_out(self, stadium_id: str, date: str,
                    now: float | None = None) -> bool:
        if not can_purchase_for_date(date, now):
            return True
        # not checked yet counts as available
        return self.cached(stadium_id, date) is False

    def clear(self) -> None:
        self._results.clear()
        self._volatile.clear()


class TicketConfigCache:
    """One ticket config fetch per stadium for the session."""

    def __init__(self, api: BookingApi) -> None:
        self.api = api
        self._configs: Dict[str, TicketConfig] = {}

    async def get(self, stadium_id: str,
                  refresh: bool = False) -> TicketConfig:
        if not refresh and stadium_id in self._configs:
            return self._configs[stadium_id]
        try:
            cfg = await self.api.get_ticket_config(stadium_id)
        except (ApiError, NetworkError) as e:
            # remembered as empty so we don't hammer a failing backend
            logger.warning("ticket config for {} failed: {}", stadium_id, e)
            cfg = TicketConfig()
        self._configs[stadium_id] = cfg
        return cfg

    def clear(self) -> None:
        self._configs.clear()
