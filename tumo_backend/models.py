# models.py
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field


# Input models
class VerifyIn(BaseModel):
    pk: str
    sig: Union[List[int], str]   # Uint8Array from the wallet, or base58
    nonce: str


class TickIn(BaseModel):
    wallet: str
    points: int = 1


class ClaimPrepareIn(BaseModel):
    wallet: str
    day: str


class ClaimConfirmIn(BaseModel):
    wallet: str
    day: str
    sig: str


# Output models
class NonceOut(BaseModel):
    nonce: str
    message: str


class VerifyOut(BaseModel):
    ok: bool
    wallet: str
    session: str
    expires_at: int


class OkOut(BaseModel):
    ok: bool = True


class ClaimPrepareOut(BaseModel):
    day: str
    tx: str
    amount: str
    raw_amount: int
    blockhash: str
    creates_account: bool


class ClaimConfirmOut(BaseModel):
    ok: bool
    day: str
    already_claimed: bool


class SettleOut(BaseModel):
    ok: bool
    day: str
    e_day: str
    total_points: int
    users: int
    distributed: str
    frozen: int


class ClaimableOut(BaseModel):
    day: str
    amount: str
    claimed: bool


class MeOut(BaseModel):
    wallet: str
    day: str
    points_today: int
    daily_point_cap: int
    claimables: List[ClaimableOut] = Field(default_factory=list)
    server_time: int


# Config model for public API
class ConfigOut(BaseModel):
    siws_prefix: str
    nonce_ttl_sec: int
    tick_min_interval_sec: float
    daily_point_cap: int
    max_points_per_tick: int
    decimals: int
    mint: Optional[str] = None
    require_session: bool
    claims_enabled: bool
    emission: Dict[str, Any] = Field(default_factory=dict)
