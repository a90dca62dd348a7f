"""
services/split_service.py — Resolves one expense into per-participant obligations.

Every other ledger computation (balances, cost analytics) goes through
resolve_obligations(). The precedence between the split representations is
decided here and nowhere else.

Precedence (first match wins, no merging):
  1. ExplicitSplits    — used as-is; malformed entries dropped, not rebalanced.
  2. ByParticipantIds  — equal split over the listed participants.
  3. ByUserIds         — equal split over participants looked up by user_id.
  4. NoSplit           — the payer owes the whole amount themselves.

Layer rules:
  - No Flask imports. Pure functions over plain records.
  - Never raises for bad record data; problems become Diagnostic values.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import ROUND_DOWN, Decimal, InvalidOperation

from backend.app.errors import Diagnostic, WarningCode
from backend.app.models.ledger import (
    ByParticipantIds,
    ByUserIds,
    ExplicitSplits,
    Expense,
    Obligation,
    Roster,
    coerce_amount,
)

logger = logging.getLogger(__name__)

DEFAULT_MINOR_UNIT = Decimal("0.01")


@dataclass(frozen=True)
class SplitResolution:
    """
    Outcome of resolving one expense.

    payer_id is None when the payer is not in the roster or the amount is
    unusable; obligations are then empty and diagnostics say why.
    """

    expense_id: str
    payer_id: str | None
    amount: Decimal | None
    obligations: tuple[Obligation, ...] = ()
    diagnostics: tuple[Diagnostic, ...] = field(default_factory=tuple)

    @property
    def resolved(self) -> bool:
        return self.payer_id is not None

    def share_of(self, participant_id: str) -> Decimal | None:
        """Sum of obligations for one participant, or None if they have none."""
        shares = [o.amount for o in self.obligations if o.participant_id == participant_id]
        if not shares:
            return None
        return sum(shares, Decimal("0"))


# ── Equal split ────────────────────────────────────────────────────────────

def _equal_shares(
        amount: Decimal,
        participant_ids: list[str],
        payer_id: str,
        minor_unit: Decimal,
) -> list[Obligation]:
    """
    Divides amount evenly, rounding each share down to minor_unit.

    The leftover is handed out one minor unit at a time, payer first, then in
    list order; any sub-unit residue goes to the first recipient. Every share
    stays within one minor unit of amount / n and the shares sum to amount
    exactly.

    Example: 10.00 among [payer, b, c] → 3.34, 3.33, 3.33
    """
    n = len(participant_ids)
    base = (amount / Decimal(n)).quantize(minor_unit, rounding=ROUND_DOWN)
    shares = {pid: base for pid in participant_ids}

    order = list(participant_ids)
    if payer_id in shares:
        order.remove(payer_id)
        order.insert(0, payer_id)

    remainder = amount - base * n
    whole_units = int(remainder / minor_unit)
    for pid in order[:whole_units]:
        shares[pid] += minor_unit

    residue = remainder - minor_unit * whole_units
    if residue:
        shares[order[0]] += residue

    return [Obligation(pid, shares[pid]) for pid in participant_ids]


def _distinct(ids) -> list[str]:
    seen: set[str] = set()
    ordered = []
    for pid in ids:
        if pid not in seen:
            seen.add(pid)
            ordered.append(pid)
    return ordered


# ── Resolution ─────────────────────────────────────────────────────────────

def resolve_obligations(
        expense: Expense,
        roster: Roster,
        *,
        minor_unit: Decimal = DEFAULT_MINOR_UNIT,
) -> SplitResolution:
    """
    Returns who owes how much of one expense.

    Income records resolve to no obligations: income credits nobody and
    creates no debtors.
    """
    diagnostics: list[Diagnostic] = []

    amount = coerce_amount(expense.amount)
    if amount is None or amount < 0:
        diagnostic = Diagnostic(
            WarningCode.INVALID_AMOUNT,
            f"Expense {expense.id} has an unusable amount {expense.amount!r}; "
            "treated as zero.",
            expense.id,
        )
        logger.warning("%s: %s", diagnostic.code, diagnostic.message)
        return SplitResolution(expense.id, None, None, (), (diagnostic,))

    if expense.payer_id not in roster:
        diagnostic = Diagnostic(
            WarningCode.UNRESOLVABLE_PARTICIPANT,
            f"Expense {expense.id} was paid by unknown participant "
            f"{expense.payer_id!r}.",
            expense.id,
        )
        logger.warning("%s: %s", diagnostic.code, diagnostic.message)
        return SplitResolution(expense.id, None, amount, (), (diagnostic,))

    if expense.is_income:
        return SplitResolution(expense.id, expense.payer_id, amount)

    split = expense.split

    if isinstance(split, ExplicitSplits):
        obligations = []
        for entry in split.entries:
            share = coerce_amount(entry.amount)
            if share is None or share <= 0:
                diagnostics.append(Diagnostic(
                    WarningCode.INVALID_AMOUNT,
                    f"Expense {expense.id}: split for {entry.participant_id!r} "
                    f"has an unusable amount {entry.amount!r}; dropped.",
                    expense.id,
                ))
                continue
            if entry.participant_id not in roster:
                diagnostics.append(Diagnostic(
                    WarningCode.UNRESOLVABLE_PARTICIPANT,
                    f"Expense {expense.id}: split references unknown participant "
                    f"{entry.participant_id!r}; dropped.",
                    expense.id,
                ))
                continue
            obligations.append(Obligation(entry.participant_id, share))
        # Dropped entries are reported, not rebalanced.

    elif isinstance(split, (ByParticipantIds, ByUserIds)):
        if isinstance(split, ByParticipantIds):
            candidates = [(pid, roster.get(pid)) for pid in split.participant_ids]
        else:
            candidates = [(uid, roster.by_user_id(uid)) for uid in split.user_ids]

        known = []
        for raw_id, participant in candidates:
            if participant is None:
                diagnostics.append(Diagnostic(
                    WarningCode.UNRESOLVABLE_PARTICIPANT,
                    f"Expense {expense.id}: cannot resolve {raw_id!r} to a "
                    "participant; excluded from the equal split.",
                    expense.id,
                ))
                continue
            known.append(participant.id)

        known = _distinct(known)
        if known:
            try:
                obligations = _equal_shares(amount, known, expense.payer_id, minor_unit)
            except InvalidOperation:
                # Share would need more digits than the decimal context holds.
                diagnostics.append(Diagnostic(
                    WarningCode.INVALID_AMOUNT,
                    f"Expense {expense.id}: {amount} cannot be split into units "
                    f"of {minor_unit}; treated as zero.",
                    expense.id,
                ))
                for diagnostic in diagnostics:
                    logger.warning("%s: %s", diagnostic.code, diagnostic.message)
                return SplitResolution(expense.id, None, None, (), tuple(diagnostics))
        else:
            # Nobody left to share with; same as "I spent this on myself".
            obligations = [Obligation(expense.payer_id, amount)]

    else:
        obligations = [Obligation(expense.payer_id, amount)]

    for diagnostic in diagnostics:
        logger.warning("%s: %s", diagnostic.code, diagnostic.message)

    return SplitResolution(
        expense.id,
        expense.payer_id,
        amount,
        tuple(obligations),
        tuple(diagnostics),
    )
