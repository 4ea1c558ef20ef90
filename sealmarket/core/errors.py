"""
Error taxonomy for the settlement engine.

Every error carries an HTTP-style status so request handlers (and the CLI)
can report it without a translation table:

    DecodeError        422  recovered locally: the offending choice is skipped
    TallyMismatch      500  fatal: decoded totals disagree with the ledger
    PreconditionError  400  client-facing rejection (not yet eligible)
    AlreadyFinalized   409
    InvalidRequest     400
    AlreadyClaimed     409  terminal, never retried
    MarketExists       409  market or its metadata already registered
    NotFound           404  no metadata / market / account record
    InvalidKeyError    500  stored key malformed
    LedgerUnavailable  503  transient, safe to retry
"""

from typing import Any, Dict, Optional


class SettlementError(Exception):
    """Base class for all engine errors."""

    status: int = 500

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = status

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        return {"ok": False, "error": self.message, "kind": self.kind, "status": self.status}


class DecodeError(SettlementError):
    """A sealed choice could not be opened or failed validation."""

    status = 422


class TallyMismatch(SettlementError):
    """Decoded totals disagree with the ledger's recorded totals."""

    status = 500


class PreconditionError(SettlementError):
    status = 400


class AlreadyFinalized(PreconditionError):
    status = 409


class InvalidRequest(PreconditionError):
    status = 400


class AlreadyClaimed(SettlementError):
    status = 409


class NotFound(SettlementError):
    status = 404


class InvalidKeyError(SettlementError):
    status = 500


class LedgerUnavailable(SettlementError):
    status = 503


class MarketExists(SettlementError):
    """Market records are written once and never replaced."""

    status = 409
