from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from solders.signature import Signature

from conftest import DAY, Wallet
from tumo_backend.app import create_app
from tumo_backend.settings import Settings

ADMIN = {"X-Admin-Token": "adm"}


def _settings(tmp_path, mint, **kw):
    base = dict(
        db_path=str(tmp_path / "api.db"),
        mint=mint,
        decimals=2,
        e_day_fixed="1000",
        tick_min_interval_sec=0,
        max_points_per_tick=100,
        admin_token="adm",
        session_hmac_key=b"test-key",
    )
    base.update(kw)
    return Settings(**base)


@pytest.fixture()
def make_client(tmp_path, store, nonces, rpc, signer, mint, clock):
    def build(**kw):
        app = create_app(
            _settings(tmp_path, mint, **kw),
            store=store, nonces=nonces, rpc=rpc, signer=signer, clock=clock,
        )
        return TestClient(app)
    return build


@pytest.fixture()
def client(make_client):
    return make_client()


def sign_in(client, wallet: Wallet) -> dict:
    r = client.get("/siws/nonce", params={"pk": wallet.pk})
    assert r.status_code == 200
    body = r.json()
    assert body["message"] == "Sign-In With Solana: " + body["nonce"]
    sig = list(wallet.sign(body["message"].encode()))
    r = client.post("/siws/verify", json={"pk": wallet.pk, "sig": sig, "nonce": body["nonce"]})
    assert r.status_code == 200, r.text
    return r.json()


def test_full_day_flow(client, clock):
    a, b = Wallet(), Wallet()
    sign_in(client, a)
    sign_in(client, b)

    assert client.post("/mine/tick", json={"wallet": a.pk, "points": 30}).status_code == 200
    assert client.post("/mine/tick", json={"wallet": b.pk, "points": 70}).status_code == 200

    # next day: default settles yesterday
    clock.advance(86400)
    r = client.post("/cron/settle", headers=ADMIN)
    assert r.status_code == 200, r.text
    assert r.json() == {
        "ok": True, "day": DAY, "e_day": "1000", "total_points": 100,
        "users": 2, "distributed": "1000.00", "frozen": 0,
    }

    me = client.get("/me", params={"wallet": a.pk}).json()
    assert me["claimables"] == [{"day": DAY, "amount": "300.00", "claimed": False}]

    r = client.post("/claim/prepare", json={"wallet": a.pk, "day": DAY})
    assert r.status_code == 200, r.text
    assert r.json()["amount"] == "300.00"
    assert r.json()["raw_amount"] == 30000

    sig = str(Signature.new_unique())
    r = client.post("/claim/confirm", json={"wallet": a.pk, "day": DAY, "sig": sig})
    assert r.json() == {"ok": True, "day": DAY, "already_claimed": False}
    r = client.post("/claim/confirm", json={"wallet": a.pk, "day": DAY, "sig": sig})
    assert r.json()["already_claimed"] is True

    r = client.post("/claim/confirm", json={"wallet": a.pk, "day": DAY, "sig": str(Signature.new_unique())})
    assert r.status_code == 409
    assert client.post("/claim/prepare", json={"wallet": a.pk, "day": DAY}).status_code == 409

    me = client.get("/me", params={"wallet": a.pk}).json()
    assert me["claimables"][0]["claimed"] is True


def test_verify_replay_rejected(client):
    w = Wallet()
    body = client.get("/siws/nonce", params={"pk": w.pk}).json()
    payload = {"pk": w.pk, "sig": list(w.sign(body["message"].encode())), "nonce": body["nonce"]}
    assert client.post("/siws/verify", json=payload).status_code == 200
    r = client.post("/siws/verify", json=payload)
    assert r.status_code == 400
    assert r.json() == {"detail": "bad nonce"}


def test_verify_bad_signature(client):
    w, other = Wallet(), Wallet()
    body = client.get("/siws/nonce", params={"pk": w.pk}).json()
    r = client.post("/siws/verify", json={
        "pk": w.pk, "sig": list(other.sign(body["message"].encode())), "nonce": body["nonce"],
    })
    assert r.status_code == 401


def test_nonce_requires_pk(client):
    assert client.get("/siws/nonce").status_code == 400


def test_malformed_body_is_400(client):
    r = client.post("/mine/tick", json={"points": 1})
    assert r.status_code == 400
    assert "wallet" in r.json()["detail"]


def test_bad_tick(client):
    r = client.post("/mine/tick", json={"wallet": Wallet().pk, "points": 0})
    assert r.status_code == 400
    r = client.post("/mine/tick", json={"wallet": Wallet().pk, "points": 101})
    assert r.status_code == 400


def test_rate_limited_tick(make_client):
    client = make_client(tick_min_interval_sec=0.9)
    w = Wallet()
    assert client.post("/mine/tick", json={"wallet": w.pk}).status_code == 200
    r = client.post("/mine/tick", json={"wallet": w.pk})
    assert r.status_code == 429
    assert r.json() == {"detail": "tick too soon"}


def test_settle_requires_admin_token(client, clock):
    clock.advance(86400)
    assert client.post("/cron/settle", params={"day": DAY}).status_code == 401
    assert client.get("/cron/settle", params={"day": DAY}, headers={"X-Admin-Token": "nope"}).status_code == 401
    assert client.get("/cron/settle", params={"day": DAY}, headers=ADMIN).status_code == 200


def test_settle_bad_day(client):
    assert client.post("/cron/settle", params={"day": "2024-13-01"}, headers=ADMIN).status_code == 400


def test_settle_open_day_rejected(client):
    r = client.post("/cron/settle", params={"day": DAY}, headers=ADMIN)
    assert r.status_code == 400
    assert r.json() == {"detail": f"day {DAY} is not over yet"}


def test_claim_errors(client):
    w = Wallet()
    assert client.post("/claim/prepare", json={"wallet": w.pk, "day": DAY}).status_code == 404
    sign_in(client, w)
    r = client.post("/claim/prepare", json={"wallet": w.pk, "day": DAY})
    assert r.status_code == 400
    assert r.json() == {"detail": "nothing to claim"}


def test_me_unknown_user(client):
    assert client.get("/me", params={"wallet": Wallet().pk}).status_code == 404


def test_config(client, mint):
    cfg = client.get("/config").json()
    assert cfg["decimals"] == 2
    assert cfg["mint"] == mint
    assert cfg["claims_enabled"] is True
    assert cfg["emission"] == {"fixed": "1000"}


def test_session_required(make_client):
    client = make_client(require_session=True)
    w = Wallet()
    assert client.post("/mine/tick", json={"wallet": w.pk}).status_code == 401

    session = sign_in(client, w)["session"]
    auth = {"Authorization": f"Bearer {session}"}
    assert client.post("/mine/tick", json={"wallet": w.pk}, headers=auth).status_code == 200
    # a session only covers its own wallet
    assert client.post("/mine/tick", json={"wallet": Wallet().pk}, headers=auth).status_code == 401
