# ledger.py
import time
from typing import Callable, Dict, Optional

try:
    from .day_utils import day_key, day_window
    from .errors import RateLimited, ValidationError
    from .siws import is_wallet
except ImportError:
    from day_utils import day_key, day_window  # type: ignore
    from errors import RateLimited, ValidationError  # type: ignore
    from siws import is_wallet  # type: ignore

TICK_REASON = "timer"


class PointLedger:
    """Append-only point events plus windowed aggregates.

    Limits of 0 are disabled. Over-limit ticks are rejected, never trimmed.
    """

    def __init__(
        self,
        store,
        min_interval_sec: float = 0.9,
        daily_cap: int = 86400,
        max_points_per_tick: int = 10,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.min_interval_sec = float(min_interval_sec)
        self.daily_cap = int(daily_cap)
        self.max_points_per_tick = int(max_points_per_tick)
        self._clock = clock

    def record_tick(self, wallet: str, points: int, reason: str = TICK_REASON) -> None:
        wallet = (wallet or "").strip()
        if not is_wallet(wallet):
            raise ValidationError("bad wallet")
        if isinstance(points, bool) or not isinstance(points, int) or points <= 0:
            raise ValidationError("points must be a positive integer")
        if self.max_points_per_tick and points > self.max_points_per_tick:
            raise ValidationError(f"points per tick above {self.max_points_per_tick}")

        ts = self._clock()
        start, end = day_window(day_key(ts))
        user_id = self.store.upsert_user(wallet)
        self.store.append_event(
            user_id, points, reason, ts, start, end,
            check=self._limits(ts, points),
        )

    def _limits(self, ts: float, points: int) -> Optional[Callable[[Optional[float], int], None]]:
        if not self.min_interval_sec and not self.daily_cap:
            return None

        def check(last_ts: Optional[float], points_today: int) -> None:
            if self.min_interval_sec and last_ts is not None and ts - last_ts < self.min_interval_sec:
                raise RateLimited("tick too soon")
            if self.daily_cap and points_today + points > self.daily_cap:
                raise RateLimited("daily cap reached")

        return check

    def points_in_window(self, from_ts: float, to_ts: float) -> Dict[int, int]:
        return self.store.points_by_user(from_ts, to_ts)

    def sum_in_window(self, from_ts: float, to_ts: float) -> int:
        return self.store.sum_points(from_ts, to_ts)

    def points_for_user(self, user_id: int, from_ts: float, to_ts: float) -> int:
        return self.store.points_for_user(user_id, from_ts, to_ts)
