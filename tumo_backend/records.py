# records.py
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict


@dataclass(frozen=True)
class DailyPool:
    day: str
    e_day: Decimal
    source: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Claimable:
    day: str
    user_id: int
    amount: Decimal
    claimed: bool


@dataclass(frozen=True)
class ClaimRecord:
    user_id: int
    day: str
    sig: str
