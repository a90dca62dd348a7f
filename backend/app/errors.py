"""
errors.py — AppError base class, error code registry and ledger diagnostics.

Two kinds of problems exist in the ledger engine:

  - Programmer errors (a caller breaking a function's contract, e.g. handing
    the debt simplifier balances in two currencies). These raise AppError.
  - Data problems in individual records (unknown participant, NaN amount,
    leftover imbalance). These NEVER raise. They are collected as Diagnostic
    values and returned next to the result, because ledger views must still
    render from partial, live data.

Rules:
  - Error and warning codes are a versioned contract. They do not change once
    published.
  - Messages are human-readable prose. They may be improved at any time.
"""

from __future__ import annotations

from dataclasses import dataclass


class AppError(Exception):

    def __init__(
            self,
            code: str,
            message: str,
            http_status: int,
            field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code        = code
        self.message     = message
        self.http_status = http_status
        self.field       = field  # which request field caused the error

    def to_dict(self) -> dict:
        payload = {
            "code":    self.code,
            "message": self.message,
        }
        if self.field is not None:
            payload["field"] = self.field
        return {"error": payload}

    def __repr__(self) -> str:
        return (
            f"AppError(code={self.code!r}, "
            f"http_status={self.http_status}, "
            f"message={self.message!r})"
        )


# ── Error Code Registry ────────────────────────────────────────────────────
#
# Values are the literal `error.code` strings clients switch on.
# ──────────────────────────────────────────────────────────────────────────

class ErrorCode:

    # ── Schema / Input Errors (400) ────────────────────────────────────────
    MISSING_FIELD              = "MISSING_FIELD"
    INVALID_FIELD              = "INVALID_FIELD"
    INVALID_EXPENSE_KIND       = "INVALID_EXPENSE_KIND"
    INVALID_REQUEST            = "INVALID_REQUEST"     # also 404/405 from routing

    # ── Caller Contract Violations (422) ──────────────────────────────────
    # Raised by engine functions when misused; never caused by record data.
    CURRENCY_MISMATCH          = "CURRENCY_MISMATCH"
    VIEWER_REQUIRED            = "VIEWER_REQUIRED"

    # ── System Errors (500) ────────────────────────────────────────────────
    INTERNAL_ERROR             = "INTERNAL_ERROR"


# ── Warning Code Registry ──────────────────────────────────────────────────
#
# Carried by Diagnostic.code and surfaced in the `warnings` array of a 200.
# ──────────────────────────────────────────────────────────────────────────

class WarningCode:

    # A record references a participant id missing from the roster.
    # That record's contribution (or that split entry) is skipped.
    UNRESOLVABLE_PARTICIPANT  = "UNRESOLVABLE_PARTICIPANT"

    # Non-finite, non-numeric or negative amount. Treated as zero contribution.
    INVALID_AMOUNT            = "INVALID_AMOUNT"

    # Record carries no currency code and cannot be placed in any ledger.
    MISSING_CURRENCY          = "MISSING_CURRENCY"

    # Debt simplification finished with balances still beyond epsilon.
    RESIDUAL_IMBALANCE        = "RESIDUAL_IMBALANCE"

    # Percentage share asked for across more than one currency.
    MIXED_CURRENCY_PERCENTAGE = "MIXED_CURRENCY_PERCENTAGE"


@dataclass(frozen=True)
class Diagnostic:
    """A non-fatal data-quality finding attached to an engine result."""

    code: str
    message: str
    record_id: str | None = None

    def to_dict(self) -> dict:
        payload = {
            "code":    self.code,
            "message": self.message,
        }
        if self.record_id is not None:
            payload["record_id"] = self.record_id
        return payload
