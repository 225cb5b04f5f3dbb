# client_mining_demo.py
#
# Minimal Python client to:
#   1) sign in with a Solana keypair (nonce -> ed25519 signature -> verify)
#   2) record mining ticks, one per second
#   3) optionally run the claim flow for a settled day:
#      prepare -> add the user signature -> broadcast -> confirm
#
# Requirements:
#   pip install requests solana solders python-dotenv
#
# Server assumptions:
#   - FastAPI app (tumo_backend.app) running at BASE_URL
#   - DEMO_KEYPAIR: base58 64-byte secret; a throwaway keypair is generated if unset

import argparse
import base64
import os
import time
from typing import Optional

import requests
from dotenv import load_dotenv
from solana.rpc.api import Client
from solders.keypair import Keypair
from solders.transaction import Transaction

load_dotenv()

# ---------------------------
# Config
# ---------------------------
BASE_URL = os.getenv("MINING_BASE_URL", "http://127.0.0.1:8000").rstrip("/")
RPC_URL = os.getenv("RPC_URL", "https://api.devnet.solana.com")
VERBOSE = True


def load_keypair() -> Keypair:
    secret = (os.getenv("DEMO_KEYPAIR") or "").strip()
    if secret:
        return Keypair.from_base58_string(secret)
    kp = Keypair()
    print(f"[demo] generated throwaway wallet {kp.pubkey()}")
    return kp


def _check(r: requests.Response, what: str) -> dict:
    if r.status_code != 200:
        raise RuntimeError(f"{what} failed {r.status_code}: {r.text}")
    return r.json()


# ---------------------------
# API calls
# ---------------------------
def sign_in(kp: Keypair) -> str:
    """Returns a session token for the wallet."""
    pk = str(kp.pubkey())
    data = _check(requests.get(f"{BASE_URL}/siws/nonce", params={"pk": pk}, timeout=15), "nonce")
    sig = kp.sign_message(data["message"].encode("utf-8"))
    out = _check(requests.post(
        f"{BASE_URL}/siws/verify",
        json={"pk": pk, "sig": list(bytes(sig)), "nonce": data["nonce"]},
        timeout=15,
    ), "verify")
    print(f"[signin] wallet={pk} session expires_at={out['expires_at']}")
    return out["session"]


def record_ticks(kp: Keypair, session: str, count: int, interval: float = 1.0) -> int:
    headers = {"Authorization": f"Bearer {session}"}
    earned = 0
    for i in range(count):
        r = requests.post(
            f"{BASE_URL}/mine/tick",
            json={"wallet": str(kp.pubkey()), "points": 1},
            headers=headers,
            timeout=15,
        )
        if r.status_code == 200:
            earned += 1
        elif VERBOSE:
            print(f"[tick] {i}: {r.status_code} {r.text}")
        time.sleep(interval)
    print(f"[tick] earned={earned}")
    return earned


def claim(kp: Keypair, session: str, day: str, rpc: Optional[Client] = None) -> str:
    headers = {"Authorization": f"Bearer {session}"}
    wallet = str(kp.pubkey())
    prep = _check(requests.post(
        f"{BASE_URL}/claim/prepare", json={"wallet": wallet, "day": day}, headers=headers, timeout=30,
    ), "prepare")
    print(f"[claim] day={day} amount={prep['amount']} create_ata={prep['creates_account']}")

    tx = Transaction.from_bytes(base64.b64decode(prep["tx"]))
    # Same blockhash, so the treasury co-signature is kept.
    tx.partial_sign([kp], tx.message.recent_blockhash)

    rpc = rpc or Client(RPC_URL)
    sig = str(rpc.send_raw_transaction(bytes(tx)).value)
    print(f"[claim] broadcast sig={sig}")

    _check(requests.post(
        f"{BASE_URL}/claim/confirm",
        json={"wallet": wallet, "day": day, "sig": sig},
        headers=headers,
        timeout=30,
    ), "confirm")
    print(f"[claim] confirmed {sig}")
    return sig


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--ticks", type=int, default=10)
    ap.add_argument("--claim-day", default=None, help="YYYY-MM-DD to claim after ticking")
    args = ap.parse_args()

    kp = load_keypair()
    session = sign_in(kp)
    if args.ticks > 0:
        record_ticks(kp, session, args.ticks)
    if args.claim_day:
        claim(kp, session, args.claim_day)


if __name__ == "__main__":
    main()
