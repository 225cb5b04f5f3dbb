from __future__ import annotations

import time
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Local imports (support running as `app:app` and as `tumo_backend.app:app`)
try:
    from .claims import ClaimCoordinator
    from .day_utils import consteq, day_key, day_window, previous_day
    from .errors import AuthenticationFailure, MiningError, NotFoundError, ValidationError
    from .ledger import PointLedger
    from .models import (
        ClaimConfirmIn,
        ClaimConfirmOut,
        ClaimPrepareIn,
        ClaimPrepareOut,
        ClaimableOut,
        ConfigOut,
        MeOut,
        NonceOut,
        OkOut,
        SettleOut,
        TickIn,
        VerifyIn,
        VerifyOut,
    )
    from .nonces import make_nonce_store
    from .settings import Settings, load_settings
    from .settlement import EmissionResolver, SettlementEngine
    from .siws import AuthVerifier, make_session, parse_session
    from .solana_rpc import SolanaLedger, load_treasury_signer
    from .store import make_store
except ImportError:
    from claims import ClaimCoordinator  # type: ignore
    from day_utils import consteq, day_key, day_window, previous_day  # type: ignore
    from errors import AuthenticationFailure, MiningError, NotFoundError, ValidationError  # type: ignore
    from ledger import PointLedger  # type: ignore
    from models import (  # type: ignore
        ClaimConfirmIn,
        ClaimConfirmOut,
        ClaimPrepareIn,
        ClaimPrepareOut,
        ClaimableOut,
        ConfigOut,
        MeOut,
        NonceOut,
        OkOut,
        SettleOut,
        TickIn,
        VerifyIn,
        VerifyOut,
    )
    from nonces import make_nonce_store  # type: ignore
    from settings import Settings, load_settings  # type: ignore
    from settlement import EmissionResolver, SettlementEngine  # type: ignore
    from siws import AuthVerifier, make_session, parse_session  # type: ignore
    from solana_rpc import SolanaLedger, load_treasury_signer  # type: ignore
    from store import make_store  # type: ignore


def create_app(
    settings: Optional[Settings] = None,
    store=None,
    nonces=None,
    rpc=None,
    signer=None,
    clock: Callable[[], float] = time.time,
) -> FastAPI:
    """Build the API with every collaborator injected; missing ones come from settings."""
    settings = settings or load_settings()
    store = store if store is not None else make_store(settings)
    nonces = nonces if nonces is not None else make_nonce_store(settings.redis_url, settings.nonce_ttl_sec)
    rpc = rpc if rpc is not None else SolanaLedger(settings.rpc_url, timeout=settings.http_timeout_sec)
    if signer is None:
        signer = load_treasury_signer(settings.treasury_secret, settings.treasury_keypair_path)
    if signer is None:
        print("[warn] no treasury signer configured; /claim/prepare is disabled")
    if not settings.admin_token:
        print("[warn] ADMIN_TOKEN not set; /cron/settle is unauthenticated")

    verifier = AuthVerifier(nonces, prefix=settings.siws_prefix)
    ledger = PointLedger(
        store,
        min_interval_sec=settings.tick_min_interval_sec,
        daily_cap=settings.daily_point_cap,
        max_points_per_tick=settings.max_points_per_tick,
        clock=clock,
    )
    emission = EmissionResolver(
        fixed=settings.e_day_fixed,
        default=settings.e_day_default,
        schedule_path=settings.emission_schedule_path,
    )
    engine = SettlementEngine(store, ledger, emission, settings.decimals, clock=clock)
    coordinator = ClaimCoordinator(
        store,
        rpc,
        signer,
        mint=settings.mint,
        decimals=settings.decimals,
        treasury_token_account=settings.treasury_ata,
    )

    app = FastAPI(title="TUMO mining backend")
    app.state.settings = settings
    app.state.store = store
    app.state.ledger = ledger
    app.state.engine = engine
    app.state.claims = coordinator

    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.on_event("startup")
    def _startup():
        store.init()

    @app.exception_handler(MiningError)
    def _mining_error(req: Request, exc: MiningError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    @app.exception_handler(RequestValidationError)
    def _bad_body(req: Request, exc: RequestValidationError):
        # Malformed bodies are plain 400s for the widget.
        errs = exc.errors()
        first = errs[0] if errs else {}
        where = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        return JSONResponse(status_code=400, content={"detail": f"bad body: {where or 'request'}"})

    def auth_wallet(req: Request, wallet: str) -> None:
        # Header: Authorization: Bearer <session>
        if not settings.require_session:
            return
        auth = req.headers.get("authorization", "")
        if not auth.lower().startswith("bearer "):
            raise AuthenticationFailure("missing bearer token")
        token = auth.split(" ", 1)[1].strip()
        owner = parse_session(settings.session_hmac_key, token, now=clock)
        if owner is None:
            raise AuthenticationFailure("bad or expired session")
        if owner != (wallet or "").strip():
            raise AuthenticationFailure("session wallet mismatch")

    def require_admin(req: Request) -> None:
        if not settings.admin_token:
            return
        token = (req.headers.get("x-admin-token") or "").strip()
        if not token or not consteq(token, settings.admin_token):
            raise AuthenticationFailure("bad admin token")

    # ---------------------------
    # Sign-In With Solana
    # ---------------------------
    @app.get("/siws/nonce", response_model=NonceOut)
    def siws_nonce(pk: str = ""):
        pk = pk.strip()
        if not pk:
            raise ValidationError("missing pk")
        nonce = nonces.issue(pk)
        return NonceOut(nonce=nonce, message=verifier.message(nonce).decode("utf-8"))

    @app.post("/siws/verify", response_model=VerifyOut)
    def siws_verify(data: VerifyIn):
        pk = data.pk.strip()
        verifier.check(pk, data.nonce, data.sig)
        store.upsert_user(pk)
        session, exp = make_session(settings.session_hmac_key, pk, settings.session_ttl_sec, now=clock)
        return VerifyOut(ok=True, wallet=pk, session=session, expires_at=exp)

    # ---------------------------
    # Mining ticks
    # ---------------------------
    @app.post("/mine/tick", response_model=OkOut)
    def mine_tick(data: TickIn, req: Request):
        auth_wallet(req, data.wallet)
        ledger.record_tick(data.wallet, data.points)
        return OkOut(ok=True)

    # ---------------------------
    # Claims
    # ---------------------------
    @app.post("/claim/prepare", response_model=ClaimPrepareOut)
    def claim_prepare(data: ClaimPrepareIn, req: Request):
        auth_wallet(req, data.wallet)
        p = coordinator.prepare(data.wallet, data.day)
        return ClaimPrepareOut(
            day=p.day,
            tx=p.tx,
            amount=str(p.amount),
            raw_amount=p.raw_amount,
            blockhash=p.blockhash,
            creates_account=p.creates_account,
        )

    @app.post("/claim/confirm", response_model=ClaimConfirmOut)
    def claim_confirm(data: ClaimConfirmIn, req: Request):
        auth_wallet(req, data.wallet)
        r = coordinator.confirm(data.wallet, data.day, data.sig)
        return ClaimConfirmOut(ok=True, day=r.day, already_claimed=r.already_claimed)

    # ---------------------------
    # Settlement (scheduler entry point)
    # ---------------------------
    @app.api_route("/cron/settle", methods=["GET", "POST"], response_model=SettleOut)
    def cron_settle(req: Request, day: Optional[str] = None):
        require_admin(req)
        day = (day or "").strip() or previous_day(clock())
        r = engine.settle(day)
        return SettleOut(
            ok=True,
            day=r.day,
            e_day=str(r.e_day),
            total_points=r.total_points,
            users=r.users,
            distributed=str(r.distributed),
            frozen=r.frozen,
        )

    # ---------------------------
    # Public config / account info
    # ---------------------------
    @app.get("/config", response_model=ConfigOut)
    def get_config():
        """Public parameters so the widget does not hardcode them."""
        e_source = {"fixed": str(emission.fixed)} if emission.fixed is not None else {"default": str(emission.default)}
        return ConfigOut(
            siws_prefix=settings.siws_prefix,
            nonce_ttl_sec=settings.nonce_ttl_sec,
            tick_min_interval_sec=settings.tick_min_interval_sec,
            daily_point_cap=settings.daily_point_cap,
            max_points_per_tick=settings.max_points_per_tick,
            decimals=settings.decimals,
            mint=settings.mint,
            require_session=settings.require_session,
            claims_enabled=signer is not None and settings.mint is not None,
            emission=e_source,
        )

    @app.get("/me", response_model=MeOut)
    def get_me(wallet: str, req: Request, limit: int = 30):
        auth_wallet(req, wallet)
        wallet = wallet.strip()
        uid = store.find_user_id(wallet)
        if uid is None:
            raise NotFoundError("no user")
        now = clock()
        today = day_key(now)
        start, end = day_window(today)
        rows = store.claimables_for_user(uid, limit=limit)
        return MeOut(
            wallet=wallet,
            day=today,
            points_today=ledger.points_for_user(uid, start, end),
            daily_point_cap=settings.daily_point_cap,
            claimables=[ClaimableOut(day=c.day, amount=str(c.amount), claimed=c.claimed) for c in rows],
            server_time=int(now),
        )

    return app


app = create_app()
