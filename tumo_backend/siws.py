# siws.py
"""Sign-In With Solana: nonce challenge, ed25519 verification, session stamps."""
import secrets
import time
from typing import Callable, List, Optional, Tuple, Union

import base58
from nacl.exceptions import BadSignatureError
from nacl.signing import VerifyKey

try:
    from .day_utils import b64url, consteq, hmac_sha256
    from .errors import BadNonce, BadSignature
except ImportError:
    from day_utils import b64url, consteq, hmac_sha256  # type: ignore
    from errors import BadNonce, BadSignature  # type: ignore

SIWS_PREFIX = "Sign-In With Solana: "

SignatureInput = Union[bytes, List[int], str]


def decode_public_key(pk: str) -> Optional[bytes]:
    """base58 -> 32 raw bytes, or None if it is not an ed25519 public key."""
    try:
        raw = base58.b58decode((pk or "").strip())
    except ValueError:
        return None
    return raw if len(raw) == 32 else None


def is_wallet(pk: str) -> bool:
    return decode_public_key(pk) is not None


def decode_signature(sig: SignatureInput) -> Optional[bytes]:
    # Wallets hand back Uint8Array (a JSON int list); base58 text is accepted too.
    try:
        if isinstance(sig, (bytes, bytearray)):
            raw = bytes(sig)
        elif isinstance(sig, str):
            raw = base58.b58decode(sig.strip())
        else:
            raw = bytes(sig)
    except (ValueError, TypeError):
        return None
    return raw if len(raw) == 64 else None


class AuthVerifier:
    def __init__(self, nonces, prefix: str = SIWS_PREFIX):
        self.nonces = nonces
        self.prefix = prefix

    def message(self, nonce: str) -> bytes:
        return (self.prefix + nonce).encode("utf-8")

    def check(self, public_key: str, nonce: str, signature: SignatureInput) -> None:
        # Consume first: a stale or foreign nonce fails whatever the signature,
        # and a bad signature still burns the nonce.
        if not self.nonces.consume(public_key, nonce):
            raise BadNonce()
        pk = decode_public_key(public_key)
        sig = decode_signature(signature)
        if pk is None or sig is None:
            raise BadSignature()
        try:
            VerifyKey(pk).verify(self.message(nonce), sig)
        except (BadSignatureError, ValueError, TypeError):
            raise BadSignature()

    def verify(self, public_key: str, nonce: str, signature: SignatureInput) -> bool:
        try:
            self.check(public_key, nonce, signature)
        except (BadNonce, BadSignature):
            return False
        return True


# ---------------------------
# Session stamps (stateless, HMAC-signed)
# ---------------------------
def make_session(
    key: bytes, wallet: str, ttl_sec: int, now: Callable[[], float] = time.time
) -> Tuple[str, int]:
    exp = int(now()) + int(ttl_sec)
    rnd = b64url(secrets.token_bytes(12))
    stamp = f"v1|wallet={wallet}|exp={exp}|rand={rnd}"
    return f"{stamp}.{hmac_sha256(key, stamp)}", exp


def parse_session(key: bytes, token: str, now: Callable[[], float] = time.time) -> Optional[str]:
    """Return the wallet a valid, unexpired session token was issued to."""
    if not token or "." not in token:
        return None
    stamp, sig = token.rsplit(".", 1)
    if not consteq(hmac_sha256(key, stamp), sig):
        return None
    parts = stamp.split("|")
    if not parts or parts[0] != "v1":
        return None
    kv = {}
    for p in parts[1:]:
        if "=" in p:
            k, v = p.split("=", 1)
            kv[k] = v
    try:
        exp = int(kv["exp"])
        wallet = kv["wallet"]
    except (KeyError, ValueError):
        return None
    if exp < int(now()):
        return None
    return wallet
