# rest_store.py
#
# Table store reached through a PostgREST (Supabase) REST interface.
# Needs the DDL and RPC functions in sql/supabase_schema.sql.
import json
from decimal import Decimal
from typing import Any, Dict, List, Optional

import requests

try:
    from .day_utils import iso_to_ts, ts_to_iso
    from .errors import UpstreamError
    from .records import Claimable, ClaimRecord, DailyPool
    from .store import TickCheck
except ImportError:
    from day_utils import iso_to_ts, ts_to_iso  # type: ignore
    from errors import UpstreamError  # type: ignore
    from records import Claimable, ClaimRecord, DailyPool  # type: ignore
    from store import TickCheck  # type: ignore


def http_detail(resp: requests.Response) -> str:
    """Best-effort error string from a PostgREST or FastAPI error response."""
    try:
        j = resp.json()
        if isinstance(j, dict):
            return str(j.get("detail") or j.get("message") or j.get("details") or json.dumps(j))
        return json.dumps(j)
    except Exception:
        return (resp.text or "").strip()[:300]


class PostgrestStore:
    def __init__(
        self,
        base_url: str,
        service_key: str,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "apikey": service_key,
            "Authorization": "Bearer " + service_key,
            "Content-Type": "application/json",
        })

    def _call(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        body: Any = None,
        prefer: Optional[str] = None,
    ) -> Any:
        url = f"{self.base_url}/rest/v1/{path.lstrip('/')}"
        headers = {"Prefer": prefer} if prefer else None
        try:
            resp = self.session.request(
                method, url, params=params, json=body, headers=headers, timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise UpstreamError(f"storage request failed: {e}", status_code=503) from e
        if resp.status_code >= 400:
            raise UpstreamError(f"storage http {resp.status_code}: {http_detail(resp)}")
        if resp.status_code == 204 or not (resp.content or b"").strip():
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise UpstreamError("storage returned non-json body") from e

    def _rpc(self, fn: str, args: Dict[str, Any]) -> Any:
        return self._call("POST", f"rpc/{fn}", body=args)

    def init(self) -> None:
        # Schema is managed in the database (sql/supabase_schema.sql).
        return None

    # ---------------------------
    # Users
    # ---------------------------
    def upsert_user(self, wallet: str) -> int:
        rows = self._call(
            "POST", "users",
            params={"on_conflict": "wallet", "select": "id"},
            body={"wallet": wallet},
            prefer="resolution=merge-duplicates,return=representation",
        )
        if not rows:
            raise UpstreamError("user upsert returned no row")
        return int(rows[0]["id"])

    def find_user_id(self, wallet: str) -> Optional[int]:
        rows = self._call("GET", "users", params={"wallet": f"eq.{wallet}", "select": "id", "limit": 1})
        return int(rows[0]["id"]) if rows else None

    # ---------------------------
    # Mining events
    # ---------------------------
    def append_event(
        self,
        user_id: int,
        points: int,
        reason: str,
        ts: float,
        day_start: float,
        day_end: float,
        check: Optional[TickCheck] = None,
    ) -> None:
        # Not atomic across requests here; the limits are best-effort on this backend.
        if check is not None:
            rows = self._call(
                "GET", "mining_events",
                params={"user_id": f"eq.{user_id}", "select": "ts", "order": "ts.desc", "limit": 1},
            )
            last_ts = iso_to_ts(rows[0]["ts"]) if rows else None
            check(last_ts, self.points_for_user(user_id, day_start, day_end))
        self._call(
            "POST", "mining_events",
            body={"user_id": user_id, "points": int(points), "reason": reason, "ts": ts_to_iso(ts)},
            prefer="return=minimal",
        )

    def points_for_user(self, user_id: int, from_ts: float, to_ts: float) -> int:
        res = self._rpc("user_points", {
            "p_user_id": user_id, "from_ts": ts_to_iso(from_ts), "to_ts": ts_to_iso(to_ts),
        })
        return int(res or 0)

    def points_by_user(self, from_ts: float, to_ts: float) -> Dict[int, int]:
        rows = self._rpc("points_by_user", {"from_ts": ts_to_iso(from_ts), "to_ts": ts_to_iso(to_ts)}) or []
        return {int(r["user_id"]): int(r["points"]) for r in rows}

    def sum_points(self, from_ts: float, to_ts: float) -> int:
        rows = self._rpc("sum_points", {"from_ts": ts_to_iso(from_ts), "to_ts": ts_to_iso(to_ts)}) or []
        if not rows:
            return 0
        return int(rows[0].get("sum_points") or 0)

    # ---------------------------
    # Daily pools / claimables
    # ---------------------------
    def ensure_pool(self, day: str, e_day: Decimal, source: dict) -> DailyPool:
        self._call(
            "POST", "daily_pools",
            params={"on_conflict": "day"},
            body={"day": day, "e_day": str(e_day), "source": source},
            prefer="resolution=ignore-duplicates,return=minimal",
        )
        pool = self.get_pool(day)
        if pool is None:
            raise UpstreamError(f"daily pool {day} missing after upsert")
        return pool

    def get_pool(self, day: str) -> Optional[DailyPool]:
        rows = self._call("GET", "daily_pools", params={"day": f"eq.{day}", "select": "day,e_day,source", "limit": 1})
        if not rows:
            return None
        r = rows[0]
        return DailyPool(day=str(r["day"]), e_day=Decimal(str(r["e_day"])), source=r.get("source") or {})

    def upsert_claimables(self, day: str, amounts: Dict[int, Decimal]) -> int:
        if not amounts:
            return 0
        res = self._rpc("upsert_claimables", {
            "p_day": day,
            "p_rows": [{"user_id": int(uid), "amount": str(amt)} for uid, amt in sorted(amounts.items())],
        })
        return int(res or 0)

    def get_claimable(self, day: str, user_id: int) -> Optional[Claimable]:
        rows = self._call("GET", "claimables", params={
            "day": f"eq.{day}", "user_id": f"eq.{user_id}", "select": "day,user_id,amount,claimed", "limit": 1,
        })
        return _claimable(rows[0]) if rows else None

    def claimables_for_day(self, day: str) -> List[Claimable]:
        rows = self._call("GET", "claimables", params={
            "day": f"eq.{day}", "select": "day,user_id,amount,claimed", "order": "user_id.asc",
        }) or []
        return [_claimable(r) for r in rows]

    def claimables_for_user(self, user_id: int, limit: int = 30) -> List[Claimable]:
        limit = max(1, min(366, int(limit)))
        rows = self._call("GET", "claimables", params={
            "user_id": f"eq.{user_id}", "select": "day,user_id,amount,claimed", "order": "day.desc", "limit": limit,
        }) or []
        return [_claimable(r) for r in rows]

    # ---------------------------
    # Claims
    # ---------------------------
    def mark_claimed(self, user_id: int, day: str, sig: str) -> bool:
        # Conditional flip plus claim insert run in one database transaction.
        res = self._rpc("claim_confirm", {"p_day": day, "p_user_id": int(user_id), "p_sig": sig})
        return res is True

    def get_claim(self, user_id: int, day: str) -> Optional[ClaimRecord]:
        rows = self._call("GET", "claims", params={
            "user_id": f"eq.{user_id}", "day": f"eq.{day}", "select": "user_id,day,sig", "limit": 1,
        })
        if not rows:
            return None
        r = rows[0]
        return ClaimRecord(user_id=int(r["user_id"]), day=str(r["day"]), sig=str(r["sig"]))


def _claimable(r: Dict[str, Any]) -> Claimable:
    return Claimable(
        day=str(r["day"]),
        user_id=int(r["user_id"]),
        amount=Decimal(str(r["amount"])),
        claimed=bool(r["claimed"]),
    )
