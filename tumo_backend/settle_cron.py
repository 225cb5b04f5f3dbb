#!/usr/bin/env python3
"""
Daily settlement trigger for the mining backend.

Run once per day after 00:00 UTC, e.g. from cron:

    5 0 * * *  python -m tumo_backend.settle_cron
    5 0 * * *  python -m tumo_backend.settle_cron --http https://mine.example.org

Without --http the configured store is settled in-process. With --http the
server's /cron/settle endpoint is called with X-Admin-Token (ADMIN_TOKEN env).
Settlement is idempotent, so rerunning a day is safe.
"""
import argparse
import json
import os
import sys
from typing import Optional

import requests
from dotenv import load_dotenv

try:
    from .day_utils import parse_day, previous_day
    from .errors import MiningError
    from .ledger import PointLedger
    from .rest_store import http_detail
    from .settings import load_settings
    from .settlement import EmissionResolver, SettlementEngine
    from .store import make_store
except ImportError:
    from day_utils import parse_day, previous_day  # type: ignore
    from errors import MiningError  # type: ignore
    from ledger import PointLedger  # type: ignore
    from rest_store import http_detail  # type: ignore
    from settings import load_settings  # type: ignore
    from settlement import EmissionResolver, SettlementEngine  # type: ignore
    from store import make_store  # type: ignore


def settle_local(day: str) -> dict:
    settings = load_settings()
    store = make_store(settings)
    store.init()
    engine = SettlementEngine(
        store,
        PointLedger(store),
        EmissionResolver(
            fixed=settings.e_day_fixed,
            default=settings.e_day_default,
            schedule_path=settings.emission_schedule_path,
        ),
        settings.decimals,
    )
    r = engine.settle(day)
    return {
        "ok": True,
        "day": r.day,
        "e_day": str(r.e_day),
        "total_points": r.total_points,
        "users": r.users,
        "distributed": str(r.distributed),
        "frozen": r.frozen,
    }


def settle_http(base_url: str, day: str, admin_token: Optional[str], timeout: float = 60) -> dict:
    headers = {"X-Admin-Token": admin_token} if admin_token else {}
    r = requests.post(
        f"{base_url.rstrip('/')}/cron/settle",
        params={"day": day},
        headers=headers,
        timeout=timeout,
    )
    if r.status_code != 200:
        raise RuntimeError(f"settle failed {r.status_code}: {http_detail(r)}")
    return r.json()


def main(argv=None) -> int:
    ap = argparse.ArgumentParser(description="Settle one UTC day of mining points.")
    ap.add_argument("--env", default=None, help="Optional .env file to load first")
    ap.add_argument("--day", default=None, help="YYYY-MM-DD (default: previous UTC day)")
    ap.add_argument("--http", default=None, help="Base URL of a running server; settle via /cron/settle")
    args = ap.parse_args(argv)

    if args.env:
        load_dotenv(args.env, override=True)

    day = args.day or previous_day()
    try:
        parse_day(day)
    except ValueError:
        print(f"[settle] bad --day {day!r}", file=sys.stderr)
        return 2

    try:
        if args.http:
            out = settle_http(args.http, day, os.getenv("ADMIN_TOKEN"))
        else:
            out = settle_local(day)
    except (MiningError, RuntimeError, requests.RequestException) as e:
        print(f"[settle] day={day} failed: {e}", file=sys.stderr)
        return 1

    print(json.dumps(out))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
