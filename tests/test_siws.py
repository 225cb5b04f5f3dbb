from __future__ import annotations

import pytest

from conftest import Wallet
from tumo_backend.errors import BadNonce, BadSignature
from tumo_backend.siws import AuthVerifier, decode_signature, make_session, parse_session


@pytest.fixture()
def verifier(nonces):
    return AuthVerifier(nonces)


def test_verify_succeeds_exactly_once(verifier, nonces):
    w = Wallet()
    n = nonces.issue(w.pk)
    sig = w.sign(verifier.message(n))

    assert verifier.verify(w.pk, n, sig) is True
    # Replay of the same (nonce, signature)
    assert verifier.verify(w.pk, n, sig) is False


def test_message_has_siws_prefix(verifier):
    assert verifier.message("abc") == b"Sign-In With Solana: abc"


def test_signature_as_int_list_and_base58(verifier, nonces):
    import base58

    w = Wallet()
    n = nonces.issue(w.pk)
    assert verifier.verify(w.pk, n, list(w.sign(verifier.message(n)))) is True

    n = nonces.issue(w.pk)
    assert verifier.verify(w.pk, n, base58.b58encode(w.sign(verifier.message(n))).decode()) is True


def test_never_issued_nonce_fails(verifier):
    w = Wallet()
    sig = w.sign(verifier.message("made-up"))
    with pytest.raises(BadNonce):
        verifier.check(w.pk, "made-up", sig)


def test_foreign_nonce_fails_even_with_valid_signature(verifier, nonces):
    a, b = Wallet(), Wallet()
    n = nonces.issue(a.pk)
    assert verifier.verify(b.pk, n, b.sign(verifier.message(n))) is False
    # a's challenge is still pending
    assert verifier.verify(a.pk, n, a.sign(verifier.message(n))) is True


def test_bad_signature_burns_nonce(verifier, nonces):
    w, other = Wallet(), Wallet()
    n = nonces.issue(w.pk)
    with pytest.raises(BadSignature):
        verifier.check(w.pk, n, other.sign(verifier.message(n)))
    # Correct signature afterwards cannot reuse it
    with pytest.raises(BadNonce):
        verifier.check(w.pk, n, w.sign(verifier.message(n)))


@pytest.mark.parametrize("sig", [b"\x00" * 10, [1, 2, 3], [256] * 64, "0OIl"])
def test_malformed_signature_is_false_not_error(verifier, nonces, sig):
    w = Wallet()
    n = nonces.issue(w.pk)
    assert verifier.verify(w.pk, n, sig) is False


def test_malformed_public_key(verifier, nonces):
    n = nonces.issue("not-a-key")
    assert verifier.verify("not-a-key", n, b"\x00" * 64) is False


def test_decode_signature_lengths():
    assert decode_signature(b"\x01" * 64) == b"\x01" * 64
    assert decode_signature(b"\x01" * 63) is None


def test_session_roundtrip_and_expiry():
    key = b"k"
    token, exp = make_session(key, "wallet1", 60, now=lambda: 1000.0)
    assert exp == 1060
    assert parse_session(key, token, now=lambda: 1059.0) == "wallet1"
    assert parse_session(key, token, now=lambda: 1061.0) is None
    assert parse_session(b"other", token, now=lambda: 1000.0) is None
    assert parse_session(key, token.replace("wallet1", "wallet2"), now=lambda: 1000.0) is None
