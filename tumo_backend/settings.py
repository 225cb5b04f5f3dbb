# settings.py
import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _opt(name: str) -> Optional[str]:
    v = (os.getenv(name) or "").strip()
    return v or None


def _flag(name: str, default: str = "0") -> bool:
    return (os.getenv(name, default) or "").strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    # Storage: SQLite by default, PostgREST/Supabase when SUPABASE_URL is set
    db_path: str = "mining.db"
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None

    # Solana / token
    rpc_url: str = "https://api.mainnet-beta.solana.com"
    mint: Optional[str] = None
    decimals: int = 6
    treasury_secret: Optional[str] = None        # base58 64-byte keypair (never logged)
    treasury_keypair_path: Optional[str] = None  # solana-cli JSON keypair file
    treasury_ata: Optional[str] = None           # derived from treasury owner + mint if unset

    # Emission per settled day
    e_day_fixed: Optional[str] = None
    e_day_default: str = "10000"
    emission_schedule_path: Optional[str] = None

    # Sign-In With Solana
    siws_prefix: str = "Sign-In With Solana: "
    nonce_ttl_sec: int = 300
    redis_url: Optional[str] = None
    session_hmac_key: bytes = b"change-me-session-key"
    session_ttl_sec: int = 86400
    require_session: bool = False

    # Tick limits (0 disables)
    tick_min_interval_sec: float = 0.9
    daily_point_cap: int = 86400
    max_points_per_tick: int = 10

    admin_token: Optional[str] = None
    cors_origins: List[str] = field(default_factory=list)
    http_timeout_sec: float = 10.0

    @property
    def use_rest_store(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)


def load_settings() -> Settings:
    origins = [o.strip() for o in (os.getenv("CORS_ORIGINS") or "").split(",") if o.strip()]
    return Settings(
        db_path=os.getenv("MINING_DB", "mining.db"),
        supabase_url=_opt("SUPABASE_URL"),
        supabase_key=_opt("SUPABASE_SERVICE_ROLE"),
        rpc_url=os.getenv("RPC_URL", "https://api.mainnet-beta.solana.com"),
        mint=_opt("TMO_MINT"),
        decimals=int(os.getenv("DECIMALS", "6")),
        treasury_secret=_opt("TREASURY_SECRET"),
        treasury_keypair_path=_opt("TREASURY_KEYPAIR_PATH"),
        treasury_ata=_opt("TREASURY_ATA"),
        e_day_fixed=_opt("E_DAY_FIXED"),
        e_day_default=os.getenv("E_DAY_DEFAULT", "10000"),
        emission_schedule_path=_opt("EMISSION_SCHEDULE_PATH"),
        nonce_ttl_sec=int(os.getenv("NONCE_TTL_SEC", "300")),
        redis_url=_opt("REDIS_URL"),
        session_hmac_key=os.getenv("SESSION_HMAC_KEY", "change-me-session-key").encode(),
        session_ttl_sec=int(os.getenv("SESSION_TTL_SEC", "86400")),
        require_session=_flag("REQUIRE_SESSION"),
        tick_min_interval_sec=float(os.getenv("TICK_MIN_INTERVAL_SEC", "0.9")),
        daily_point_cap=int(os.getenv("DAILY_POINT_CAP", "86400")),
        max_points_per_tick=int(os.getenv("MAX_POINTS_PER_TICK", "10")),
        admin_token=_opt("ADMIN_TOKEN"),
        cors_origins=origins,
        http_timeout_sec=float(os.getenv("HTTP_TIMEOUT_SEC", "10")),
    )
