# solana_rpc.py
#
# Ledger RPC boundary (blockhash, account lookups) and the treasury
# key-management boundary. Treasury key material lives only in env or a
# keypair file and is never printed.
import json
from pathlib import Path
from typing import Optional

from solana.rpc.api import Client
from solana.rpc.commitment import Confirmed
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import Transaction

try:
    from .errors import UpstreamError
except ImportError:
    from errors import UpstreamError  # type: ignore


class SolanaLedger:
    def __init__(self, rpc_url: str, timeout: float = 10.0):
        self.rpc_url = rpc_url
        self.client = Client(rpc_url, commitment=Confirmed, timeout=timeout)

    def latest_blockhash(self) -> Hash:
        try:
            return self.client.get_latest_blockhash().value.blockhash
        except Exception as e:
            raise UpstreamError(f"rpc getLatestBlockhash failed: {type(e).__name__}: {str(e)[:300]}") from e

    def account_exists(self, pubkey: Pubkey) -> bool:
        try:
            return self.client.get_account_info(pubkey).value is not None
        except Exception as e:
            raise UpstreamError(f"rpc getAccountInfo failed: {type(e).__name__}: {str(e)[:300]}") from e


class KeypairSigner:
    """Treasury co-signer. Callers see the public key and a sign() capability only."""

    def __init__(self, keypair: Keypair):
        self._kp = keypair

    def pubkey(self) -> Pubkey:
        return self._kp.pubkey()

    def sign(self, tx: Transaction, recent_blockhash: Hash) -> None:
        tx.partial_sign([self._kp], recent_blockhash)

    def __repr__(self) -> str:
        return f"KeypairSigner(pubkey={self.pubkey()})"


def load_treasury_signer(secret: Optional[str] = None, keypair_path: Optional[str] = None) -> Optional[KeypairSigner]:
    """
    Build the treasury signer from either:
    - secret: base58 64-byte ed25519 keypair (Phantom / web3.js export), or
    - keypair_path: solana-cli JSON array keypair file.

    Returns None if neither is configured.
    """
    if secret:
        try:
            return KeypairSigner(Keypair.from_base58_string(secret.strip()))
        except Exception as e:
            raise ValueError(f"TREASURY_SECRET is not a valid base58 keypair ({type(e).__name__})") from None
    if keypair_path:
        path = Path(keypair_path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = json.load(f)
            return KeypairSigner(Keypair.from_bytes(bytes(raw)))
        except FileNotFoundError:
            raise ValueError(f"treasury keypair file '{path}' not found") from None
        except Exception as e:
            raise ValueError(f"treasury keypair file '{path}' is invalid ({type(e).__name__})") from None
    return None
