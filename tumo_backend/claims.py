# claims.py
import base64
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import (
    TransferCheckedParams,
    create_associated_token_account,
    get_associated_token_address,
    transfer_checked,
)

try:
    from .day_utils import parse_day
    from .errors import ConflictError, NotFoundError, NothingToClaim, UpstreamError, ValidationError
    from .settlement import to_base_units
except ImportError:
    from day_utils import parse_day  # type: ignore
    from errors import ConflictError, NotFoundError, NothingToClaim, UpstreamError, ValidationError  # type: ignore
    from settlement import to_base_units  # type: ignore


@dataclass(frozen=True)
class PreparedClaim:
    day: str
    wallet: str
    amount: Decimal
    raw_amount: int
    tx: str  # base64, fee-payer signature still outstanding
    blockhash: str
    creates_account: bool


@dataclass(frozen=True)
class ConfirmResult:
    day: str
    wallet: str
    sig: str
    already_claimed: bool


class ClaimCoordinator:
    """
    Two-phase claim: prepare() builds a treasury-co-signed transfer that the
    user signs and broadcasts; confirm() finalizes exactly once.
    Nothing here broadcasts.
    """

    def __init__(
        self,
        store,
        ledger,
        signer,
        mint: Optional[str],
        decimals: int,
        treasury_token_account: Optional[str] = None,
    ):
        self.store = store
        self.ledger = ledger
        self.signer = signer
        self.mint = Pubkey.from_string(mint) if mint else None
        self.decimals = int(decimals)
        self._treasury_ata = Pubkey.from_string(treasury_token_account) if treasury_token_account else None

    @property
    def treasury_token_account(self) -> Optional[Pubkey]:
        if self._treasury_ata is not None:
            return self._treasury_ata
        if self.signer is None or self.mint is None:
            return None
        return get_associated_token_address(self.signer.pubkey(), self.mint)

    def _user_id(self, wallet: str) -> int:
        uid = self.store.find_user_id(wallet)
        if uid is None:
            raise NotFoundError("no user")
        return uid

    def prepare(self, wallet: str, day: str) -> PreparedClaim:
        wallet, day = _clean(wallet, day)
        uid = self._user_id(wallet)

        row = self.store.get_claimable(day, uid)
        if row is None:
            raise NothingToClaim()
        if row.claimed:
            raise ConflictError()
        raw = to_base_units(row.amount, self.decimals)
        if raw <= 0:
            raise NothingToClaim()

        if self.signer is None or self.mint is None:
            raise UpstreamError("claims disabled: treasury signer or mint not configured", status_code=503)

        try:
            owner = Pubkey.from_string(wallet)
        except Exception:
            raise ValidationError("bad wallet")
        user_ata = get_associated_token_address(owner, self.mint)

        ixs = []
        creates = not self.ledger.account_exists(user_ata)
        if creates:
            # User pays rent for their own token account.
            ixs.append(create_associated_token_account(owner, owner, self.mint))
        ixs.append(transfer_checked(TransferCheckedParams(
            program_id=TOKEN_PROGRAM_ID,
            source=self.treasury_token_account,
            mint=self.mint,
            dest=user_ata,
            owner=self.signer.pubkey(),
            amount=raw,
            decimals=self.decimals,
        )))

        blockhash = self.ledger.latest_blockhash()
        tx = Transaction.new_unsigned(Message.new_with_blockhash(ixs, owner, blockhash))
        self.signer.sign(tx, blockhash)

        print(f"[claim] prepared day={day} wallet={wallet} amount={row.amount} raw={raw} create_ata={creates}")
        return PreparedClaim(
            day=day,
            wallet=wallet,
            amount=row.amount,
            raw_amount=raw,
            tx=base64.b64encode(bytes(tx)).decode(),
            blockhash=str(blockhash),
            creates_account=creates,
        )

    def confirm(self, wallet: str, day: str, sig: str) -> ConfirmResult:
        wallet, day = _clean(wallet, day)
        uid = self._user_id(wallet)
        sig = (sig or "").strip()
        try:
            Signature.from_string(sig)
        except Exception:
            raise ValidationError("bad transaction signature")

        if self.store.mark_claimed(uid, day, sig):
            print(f"[claim] confirmed day={day} wallet={wallet} sig={sig}")
            return ConfirmResult(day=day, wallet=wallet, sig=sig, already_claimed=False)

        row = self.store.get_claimable(day, uid)
        if row is None:
            raise NothingToClaim()
        prior = self.store.get_claim(uid, day)
        if prior is not None and prior.sig == sig:
            return ConfirmResult(day=day, wallet=wallet, sig=sig, already_claimed=True)
        print(f"[warn] conflicting confirm day={day} wallet={wallet} sig={sig}")
        raise ConflictError()


def _clean(wallet: str, day: str):
    wallet = (wallet or "").strip()
    day = (day or "").strip()
    if not wallet or not day:
        raise ValidationError("bad body")
    try:
        parse_day(day)
    except ValueError:
        raise ValidationError("bad day")
    return wallet, day
