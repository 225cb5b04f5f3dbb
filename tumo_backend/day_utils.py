# day_utils.py
import base64
import hashlib
import hmac
import time
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Tuple

DAY_SEC = 86400


def now_ts() -> float:
    return time.time()


def day_key(ts: Optional[float] = None) -> str:
    # UTC day key YYYY-MM-DD
    ts = now_ts() if ts is None else ts
    return time.strftime("%Y-%m-%d", time.gmtime(ts))


def parse_day(day: str) -> date:
    """Parse a strict ISO calendar date; raises ValueError otherwise."""
    day = (day or "").strip()
    if len(day) != 10 or day[4] != "-" or day[7] != "-":
        raise ValueError(f"bad day: {day!r}")
    return date.fromisoformat(day)


def day_window(day: str) -> Tuple[float, float]:
    """Half-open window [00:00:00Z, +24h) for a UTC day, as unix seconds."""
    d = parse_day(day)
    start = datetime(d.year, d.month, d.day, tzinfo=timezone.utc).timestamp()
    return start, start + DAY_SEC


def previous_day(ts: Optional[float] = None) -> str:
    ts = now_ts() if ts is None else ts
    return day_key(ts - DAY_SEC)


def ts_to_iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def iso_to_ts(value: str) -> float:
    # PostgREST renders timestamptz as e.g. 2024-01-01T00:00:01.5+00:00
    s = str(value).strip().replace("Z", "+00:00")
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


# ---------------------------
# Helpers: encoding / HMAC
# ---------------------------
def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def hmac_sha256(key: bytes, msg: str) -> str:
    return b64url(hmac.new(key, msg.encode(), hashlib.sha256).digest())


def consteq(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode(), b.encode())
