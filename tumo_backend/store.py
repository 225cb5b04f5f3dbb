# store.py
import json
import sqlite3
from contextlib import contextmanager
from decimal import Decimal
from typing import Callable, Dict, Iterator, List, Optional

try:
    from .errors import UpstreamError
    from .records import Claimable, ClaimRecord, DailyPool
except ImportError:
    from errors import UpstreamError  # type: ignore
    from records import Claimable, ClaimRecord, DailyPool  # type: ignore

# check(last_event_ts, points_in_day) raises to reject a tick
TickCheck = Callable[[Optional[float], int], None]


class SqliteStore:
    """Local table store. One connection per operation, WAL, autocommit."""

    def __init__(self, db_path: str):
        self.db_path = db_path

    def db(self) -> sqlite3.Connection:
        con = sqlite3.connect(self.db_path, timeout=30, isolation_level=None)  # autocommit
        con.execute("PRAGMA journal_mode=WAL;")
        con.execute("PRAGMA synchronous=NORMAL;")
        con.execute("PRAGMA foreign_keys=ON;")
        return con

    @contextmanager
    def _con(self) -> Iterator[sqlite3.Connection]:
        try:
            con = self.db()
        except sqlite3.Error as e:
            raise UpstreamError(f"storage unavailable: {e}", status_code=503) from e
        try:
            yield con
        except sqlite3.Error as e:
            raise UpstreamError(f"storage error: {e}") from e
        finally:
            con.close()

    @contextmanager
    def _tx(self) -> Iterator[sqlite3.Connection]:
        with self._con() as con:
            con.execute("BEGIN IMMEDIATE;")
            try:
                yield con
            except BaseException:
                con.execute("ROLLBACK;")
                raise
            con.execute("COMMIT;")

    def init(self) -> None:
        with self._con() as con:
            con.execute("""
            CREATE TABLE IF NOT EXISTS users (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              wallet TEXT NOT NULL UNIQUE
            );
            """)
            con.execute("""
            CREATE TABLE IF NOT EXISTS mining_events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              user_id INTEGER NOT NULL REFERENCES users(id),
              points INTEGER NOT NULL CHECK (points > 0),
              reason TEXT NOT NULL,
              ts REAL NOT NULL
            );
            """)
            con.execute("CREATE INDEX IF NOT EXISTS idx_mining_events_ts ON mining_events(ts, user_id);")
            con.execute("CREATE INDEX IF NOT EXISTS idx_mining_events_user ON mining_events(user_id, ts);")
            con.execute("""
            CREATE TABLE IF NOT EXISTS daily_pools (
              day TEXT PRIMARY KEY,
              e_day TEXT NOT NULL,
              source TEXT NOT NULL
            );
            """)
            con.execute("""
            CREATE TABLE IF NOT EXISTS claimables (
              day TEXT NOT NULL,
              user_id INTEGER NOT NULL REFERENCES users(id),
              amount TEXT NOT NULL,
              claimed INTEGER NOT NULL DEFAULT 0,
              PRIMARY KEY(day, user_id)
            );
            """)
            con.execute("""
            CREATE TABLE IF NOT EXISTS claims (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              user_id INTEGER NOT NULL REFERENCES users(id),
              day TEXT NOT NULL,
              sig TEXT NOT NULL,
              UNIQUE(user_id, day)
            );
            """)

    # ---------------------------
    # Users
    # ---------------------------
    def upsert_user(self, wallet: str) -> int:
        with self._con() as con:
            con.execute("INSERT INTO users(wallet) VALUES(?) ON CONFLICT(wallet) DO NOTHING", (wallet,))
            row = con.execute("SELECT id FROM users WHERE wallet=?", (wallet,)).fetchone()
            return int(row[0])

    def find_user_id(self, wallet: str) -> Optional[int]:
        with self._con() as con:
            row = con.execute("SELECT id FROM users WHERE wallet=?", (wallet,)).fetchone()
            return int(row[0]) if row else None

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
        # Check and insert under one write lock so parallel ticks cannot both pass.
        with self._tx() as con:
            if check is not None:
                row = con.execute(
                    "SELECT MAX(ts) FROM mining_events WHERE user_id=?", (user_id,)
                ).fetchone()
                last_ts = float(row[0]) if row and row[0] is not None else None
                today = self._user_points(con, user_id, day_start, day_end)
                check(last_ts, today)
            con.execute(
                "INSERT INTO mining_events(user_id, points, reason, ts) VALUES(?,?,?,?)",
                (user_id, int(points), reason, float(ts)),
            )

    @staticmethod
    def _user_points(con: sqlite3.Connection, user_id: int, from_ts: float, to_ts: float) -> int:
        row = con.execute(
            "SELECT COALESCE(SUM(points), 0) FROM mining_events WHERE user_id=? AND ts>=? AND ts<?",
            (user_id, from_ts, to_ts),
        ).fetchone()
        return int(row[0])

    def points_for_user(self, user_id: int, from_ts: float, to_ts: float) -> int:
        with self._con() as con:
            return self._user_points(con, user_id, from_ts, to_ts)

    def points_by_user(self, from_ts: float, to_ts: float) -> Dict[int, int]:
        with self._con() as con:
            rows = con.execute(
                """
                SELECT user_id, SUM(points)
                FROM mining_events
                WHERE ts >= ? AND ts < ?
                GROUP BY user_id
                """,
                (from_ts, to_ts),
            ).fetchall()
            return {int(uid): int(pts) for uid, pts in rows}

    def sum_points(self, from_ts: float, to_ts: float) -> int:
        with self._con() as con:
            row = con.execute(
                "SELECT COALESCE(SUM(points), 0) FROM mining_events WHERE ts >= ? AND ts < ?",
                (from_ts, to_ts),
            ).fetchone()
            return int(row[0])

    # ---------------------------
    # Daily pools / claimables
    # ---------------------------
    def ensure_pool(self, day: str, e_day: Decimal, source: dict) -> DailyPool:
        """Insert the pool if absent and return the stored one (E never changes)."""
        with self._tx() as con:
            con.execute(
                "INSERT INTO daily_pools(day, e_day, source) VALUES(?,?,?) ON CONFLICT(day) DO NOTHING",
                (day, str(e_day), json.dumps(source, sort_keys=True)),
            )
            row = con.execute("SELECT day, e_day, source FROM daily_pools WHERE day=?", (day,)).fetchone()
        return DailyPool(day=str(row[0]), e_day=Decimal(str(row[1])), source=json.loads(row[2] or "{}"))

    def get_pool(self, day: str) -> Optional[DailyPool]:
        with self._con() as con:
            row = con.execute("SELECT day, e_day, source FROM daily_pools WHERE day=?", (day,)).fetchone()
        if not row:
            return None
        return DailyPool(day=str(row[0]), e_day=Decimal(str(row[1])), source=json.loads(row[2] or "{}"))

    def upsert_claimables(self, day: str, amounts: Dict[int, Decimal]) -> int:
        """Write amounts for the day; rows already claimed are left untouched.

        Returns the number of rows written.
        """
        if not amounts:
            return 0
        with self._tx() as con:
            cur = con.executemany(
                """
                INSERT INTO claimables(day, user_id, amount, claimed) VALUES(?,?,?,0)
                ON CONFLICT(day, user_id) DO UPDATE SET amount=excluded.amount
                WHERE claimables.claimed = 0
                """,
                [(day, int(uid), str(amt)) for uid, amt in sorted(amounts.items())],
            )
            return int(cur.rowcount)

    def get_claimable(self, day: str, user_id: int) -> Optional[Claimable]:
        with self._con() as con:
            row = con.execute(
                "SELECT day, user_id, amount, claimed FROM claimables WHERE day=? AND user_id=?",
                (day, user_id),
            ).fetchone()
        return _claimable(row) if row else None

    def claimables_for_day(self, day: str) -> List[Claimable]:
        with self._con() as con:
            rows = con.execute(
                "SELECT day, user_id, amount, claimed FROM claimables WHERE day=? ORDER BY user_id",
                (day,),
            ).fetchall()
        return [_claimable(r) for r in rows]

    def claimables_for_user(self, user_id: int, limit: int = 30) -> List[Claimable]:
        limit = max(1, min(366, int(limit)))
        with self._con() as con:
            rows = con.execute(
                "SELECT day, user_id, amount, claimed FROM claimables WHERE user_id=? ORDER BY day DESC LIMIT ?",
                (user_id, limit),
            ).fetchall()
        return [_claimable(r) for r in rows]

    # ---------------------------
    # Claims
    # ---------------------------
    def mark_claimed(self, user_id: int, day: str, sig: str) -> bool:
        """Flip claimed false -> true for exactly (day, user) and record the claim.

        Returns False when no unclaimed row matched.
        """
        with self._tx() as con:
            cur = con.execute(
                "UPDATE claimables SET claimed=1 WHERE day=? AND user_id=? AND claimed=0",
                (day, user_id),
            )
            if cur.rowcount != 1:
                return False
            con.execute(
                "INSERT INTO claims(user_id, day, sig) VALUES(?,?,?)",
                (user_id, day, sig),
            )
            return True

    def get_claim(self, user_id: int, day: str) -> Optional[ClaimRecord]:
        with self._con() as con:
            row = con.execute(
                "SELECT user_id, day, sig FROM claims WHERE user_id=? AND day=?",
                (user_id, day),
            ).fetchone()
        if not row:
            return None
        return ClaimRecord(user_id=int(row[0]), day=str(row[1]), sig=str(row[2]))


def _claimable(row) -> Claimable:
    day, user_id, amount, claimed = row
    return Claimable(day=str(day), user_id=int(user_id), amount=Decimal(str(amount)), claimed=bool(claimed))


def make_store(settings):
    """SQLite unless a Supabase/PostgREST endpoint is configured."""
    if settings.use_rest_store:
        try:
            from .rest_store import PostgrestStore
        except ImportError:
            from rest_store import PostgrestStore  # type: ignore
        print(f"[store] postgrest at {settings.supabase_url}")
        return PostgrestStore(settings.supabase_url, settings.supabase_key, timeout=settings.http_timeout_sec)
    print(f"[store] sqlite at {settings.db_path}")
    return SqliteStore(settings.db_path)
