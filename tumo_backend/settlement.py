# settlement.py
import json
import time
from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Any, Callable, Dict, Optional, Tuple

try:
    from .day_utils import day_window, parse_day
    from .errors import UpstreamError, ValidationError
except ImportError:
    from day_utils import day_window, parse_day  # type: ignore
    from errors import UpstreamError, ValidationError  # type: ignore


def to_base_units(amount: Decimal, decimals: int) -> int:
    return int((Decimal(amount) * (Decimal(10) ** decimals)).to_integral_value(rounding=ROUND_DOWN))


def from_base_units(raw: int, decimals: int) -> Decimal:
    return Decimal(int(raw)).scaleb(-decimals)


def split_pool(e_day: Decimal, points: Dict[int, int], decimals: int) -> Dict[int, Decimal]:
    """Proportional share of e_day per user, truncated to `decimals`.

    Integer math on base units: floor(E * 10^d * p / T) / 10^d, so the sum
    never exceeds e_day. Users with no points get nothing.
    """
    total = sum(p for p in points.values() if p > 0)
    if total <= 0:
        return {}
    e_base = to_base_units(e_day, decimals)
    out: Dict[int, Decimal] = {}
    for uid, p in points.items():
        if p <= 0:
            continue
        out[uid] = from_base_units(e_base * p // total, decimals)
    return out


class EmissionResolver:
    """E for a day: fixed value, else per-day schedule file, else default."""

    def __init__(self, fixed: Optional[str] = None, default: str = "10000", schedule_path: Optional[str] = None):
        self.fixed = _decimal_or_none(fixed)
        self.default = _decimal_or_none(default) or Decimal("10000")
        self.schedule_path = schedule_path
        self.schedule = load_emission_schedule(schedule_path) if schedule_path else {}

    def resolve(self, day: str) -> Tuple[Decimal, Dict[str, Any]]:
        if self.fixed is not None:
            return self.fixed, {"fixed": True}
        if day in self.schedule:
            return self.schedule[day], {"schedule": self.schedule_path}
        return self.default, {"default": True}


def _decimal_or_none(v: Any) -> Optional[Decimal]:
    if v is None or str(v).strip() == "":
        return None
    try:
        d = Decimal(str(v).strip())
    except InvalidOperation:
        raise ValueError(f"bad emission value: {v!r}")
    if d <= 0:
        return None
    return d


def load_emission_schedule(path: str) -> Dict[str, Decimal]:
    """Load {"YYYY-MM-DD": amount} from a JSON file; missing file means no schedule."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError("emission schedule must be a JSON object")
    except FileNotFoundError:
        print(f"[settle] emission schedule '{path}' not found; using fixed/default emission.")
        return {}
    out: Dict[str, Decimal] = {}
    for day, amount in data.items():
        parse_day(day)
        d = _decimal_or_none(amount)
        if d is not None:
            out[day] = d
    return out


@dataclass(frozen=True)
class SettlementReport:
    day: str
    e_day: Decimal
    source: Dict[str, Any]
    total_points: int
    users: int
    distributed: Decimal
    frozen: int


class SettlementEngine:
    def __init__(
        self,
        store,
        ledger,
        emission: EmissionResolver,
        decimals: int,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.ledger = ledger
        self.emission = emission
        self.decimals = int(decimals)
        self._clock = clock

    def settle(self, day: str) -> SettlementReport:
        """Idempotent: rerunning a day recomputes unclaimed rows only.

        Claimed amounts are frozen and come off the pool first; what is left
        of E is split over the users who have not claimed yet, so the day's
        claimables never add up to more than E.
        """
        try:
            start, end = day_window(day)
        except ValueError as e:
            raise ValidationError(str(e))
        if end > self._clock():
            raise ValidationError(f"day {day} is not over yet")

        e_day, source = self.emission.resolve(day)
        total = self.ledger.sum_in_window(start, end)
        per_user = self.ledger.points_in_window(start, end)
        if sum(per_user.values()) != total:
            raise UpstreamError(
                f"aggregate mismatch for {day}: total={total} per_user={sum(per_user.values())}",
                status_code=500,
            )

        # Pool first; a rerun keeps the E stored by the first run.
        pool = self.store.ensure_pool(day, e_day, source)
        claimed = {c.user_id: c.amount for c in self.store.claimables_for_day(day) if c.claimed}
        paid = sum(claimed.values(), Decimal(0))
        remaining = max(pool.e_day - paid, Decimal(0))
        open_points = {uid: p for uid, p in per_user.items() if uid not in claimed}
        amounts = split_pool(remaining, open_points, self.decimals)
        self.store.upsert_claimables(day, amounts)

        report = SettlementReport(
            day=day,
            e_day=pool.e_day,
            source=pool.source,
            total_points=total,
            users=len(amounts) + len(claimed),
            distributed=sum(amounts.values(), paid),
            frozen=len(claimed),
        )
        print(
            f"[settle] day={day} e_day={report.e_day} total_points={total} users={report.users} "
            f"distributed={report.distributed} frozen={report.frozen}"
        )
        return report
