# errors.py
from typing import Optional


class MiningError(Exception):
    """Base class for errors that map onto an HTTP status."""

    status_code = 500
    default_detail = "internal error"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class ValidationError(MiningError):
    status_code = 400
    default_detail = "bad request"


class RateLimited(ValidationError):
    status_code = 429
    default_detail = "rate limited"


class AuthenticationFailure(MiningError):
    status_code = 401
    default_detail = "authentication failed"


class BadNonce(AuthenticationFailure):
    status_code = 400
    default_detail = "bad nonce"


class BadSignature(AuthenticationFailure):
    status_code = 401
    default_detail = "verify fail"


class NotFoundError(MiningError):
    status_code = 404
    default_detail = "not found"


class NothingToClaim(NotFoundError):
    # Reported as a bad request, matching the legacy worker contract.
    status_code = 400
    default_detail = "nothing to claim"


class ConflictError(MiningError):
    status_code = 409
    default_detail = "already claimed"


class UpstreamError(MiningError):
    """Storage or ledger RPC failure. Safe to retry."""

    status_code = 502
    default_detail = "upstream failure"

    def __init__(self, detail: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(detail)
        if status_code is not None:
            self.status_code = status_code
