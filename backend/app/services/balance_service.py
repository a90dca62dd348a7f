"""
services/balance_service.py — Balance computation.

This file is the SINGLE SOURCE OF TRUTH for how net balances are computed.
The canonical formula must not be reimplemented elsewhere in the codebase.

Layer rules:
  - No Flask imports. No current_app, request, g, or HTTP knowledge.
  - Receives plain records (expenses, settlements, participants) as arguments.
  - Returns plain Python dicts and dataclasses.
  - Never raises for malformed individual records. It runs against live,
    possibly incomplete data; bad records are skipped and reported as
    diagnostics.

Conservation guarantee:
  compute_balances() produces, for every currency, a sum within epsilon of
  zero (exactly zero when no explicit split was dropped). Each expense credits
  its payer and debits the obligations from split_service, which sum to the
  expense amount; each settlement moves the same amount in both directions.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable

from backend.app.errors import Diagnostic, WarningCode
from backend.app.models.ledger import (
    Balance,
    BalanceMap,
    Expense,
    Participant,
    Roster,
    Settlement,
    coerce_amount,
)
from backend.app.services.split_service import DEFAULT_MINOR_UNIT, resolve_obligations

logger = logging.getLogger(__name__)

EPSILON = Decimal("0.01")
_CENT = Decimal("0.01")


@dataclass
class LedgerResult:
    balances: BalanceMap
    diagnostics: list[Diagnostic] = field(default_factory=list)


@dataclass
class GroupLedger:
    groups: dict[str, LedgerResult]
    overall: BalanceMap
    diagnostics: list[Diagnostic] = field(default_factory=list)


# ── Record filtering helpers ───────────────────────────────────────────────

def _in_scope(record, group_id: str | None) -> bool:
    """No group_id means "overall" mode: every record counts."""
    return group_id is None or record.group_id == group_id


def _warn(diagnostics: list[Diagnostic], code: str, message: str, record_id: str) -> None:
    diagnostic = Diagnostic(code, message, record_id)
    logger.warning("%s: %s", code, message)
    diagnostics.append(diagnostic)


def _settlement_amount(
        settlement: Settlement,
        roster: Roster,
        diagnostics: list[Diagnostic],
) -> Decimal | None:
    """
    Validates one settlement. Returns its amount, or None (after recording a
    diagnostic) when the settlement cannot contribute.
    """
    if not settlement.currency:
        _warn(
            diagnostics,
            WarningCode.MISSING_CURRENCY,
            f"Settlement {settlement.id} has no currency; skipped.",
            settlement.id,
        )
        return None

    amount = coerce_amount(settlement.amount)
    if amount is None or amount < 0:
        _warn(
            diagnostics,
            WarningCode.INVALID_AMOUNT,
            f"Settlement {settlement.id} has an unusable amount "
            f"{settlement.amount!r}; treated as zero.",
            settlement.id,
        )
        return None

    for party in (settlement.from_participant_id, settlement.to_participant_id):
        if party not in roster:
            _warn(
                diagnostics,
                WarningCode.UNRESOLVABLE_PARTICIPANT,
                f"Settlement {settlement.id} references unknown participant "
                f"{party!r}; skipped.",
                settlement.id,
            )
            return None

    return amount


# ── Core algorithm ─────────────────────────────────────────────────────────

def compute_balances(
        expenses: Iterable[Expense],
        settlements: Iterable[Settlement],
        participants: Iterable[Participant],
        *,
        group_id: str | None = None,
        minor_unit: Decimal = DEFAULT_MINOR_UNIT,
) -> LedgerResult:
    """
    Canonical balance computation.

    Returns {(participant_id, currency): net_balance} for every pair that
    appears in an in-scope expense or settlement. Positive means the
    participant is owed money; negative means they owe.

    Algorithm:
      1. Credit each payer for the full expense amount they fronted.
      2. Debit each obligor for their share (split_service precedence).
         A payer who is also an obligor nets out their own share.
      3. Net settlements: the payer's debt shrinks, the receiver's credit
         shrinks.

    Income records are left out entirely. Amounts are exact Decimal sums;
    no rounding happens here (see outstanding_balances() for display).
    """
    roster = participants if isinstance(participants, Roster) else Roster(participants)
    balances: BalanceMap = defaultdict(Decimal)
    diagnostics: list[Diagnostic] = []

    # Steps 1 and 2: expenses.
    for expense in expenses:
        if not _in_scope(expense, group_id) or expense.is_income:
            continue

        if not expense.currency:
            _warn(
                diagnostics,
                WarningCode.MISSING_CURRENCY,
                f"Expense {expense.id} has no currency; skipped.",
                expense.id,
            )
            continue

        resolution = resolve_obligations(expense, roster, minor_unit=minor_unit)
        diagnostics.extend(resolution.diagnostics)
        if not resolution.resolved:
            continue

        currency = expense.currency
        balances[(resolution.payer_id, currency)] += resolution.amount
        for obligation in resolution.obligations:
            balances[(obligation.participant_id, currency)] -= obligation.amount

    # Step 3: settlements.
    for settlement in settlements:
        if not _in_scope(settlement, group_id):
            continue

        amount = _settlement_amount(settlement, roster, diagnostics)
        if amount is None:
            continue

        currency = settlement.currency
        balances[(settlement.from_participant_id, currency)] += amount
        balances[(settlement.to_participant_id, currency)] -= amount

    logger.debug(
        "Computed %d balance entries (group=%s, diagnostics=%d)",
        len(balances), group_id, len(diagnostics),
    )
    return LedgerResult(dict(balances), diagnostics)


def compute_group_balances(
        expenses: Iterable[Expense],
        settlements: Iterable[Settlement],
        participants: Iterable[Participant],
        *,
        minor_unit: Decimal = DEFAULT_MINOR_UNIT,
) -> GroupLedger:
    """
    Per-group balance maps plus the overall map across all groups.

    The overall map is the unscoped computation: the sum of the per-group
    maps plus any records that carry no group_id.
    """
    expenses = list(expenses)
    settlements = list(settlements)
    roster = Roster(participants)

    group_ids = sorted(
        {e.group_id for e in expenses if e.group_id is not None}
        | {s.group_id for s in settlements if s.group_id is not None}
    )

    groups = {}
    for gid in group_ids:
        result = compute_balances(
            expenses, settlements, roster, group_id=gid, minor_unit=minor_unit,
        )
        groups[gid] = result

    overall = compute_balances(expenses, settlements, roster, minor_unit=minor_unit)
    return GroupLedger(groups, overall.balances, overall.diagnostics)


def compute_viewer_balances(
        expenses: Iterable[Expense],
        settlements: Iterable[Settlement],
        participants: Iterable[Participant],
        viewer_participant_id: str,
        *,
        group_id: str | None = None,
        minor_unit: Decimal = DEFAULT_MINOR_UNIT,
) -> LedgerResult:
    """
    Viewer-relative ledger: how every other participant stands against the
    viewer alone.

    Positive means that participant owes the viewer; negative means the viewer
    owes them. Only expenses and settlements directly between the two count:

      - viewer paid, other shares      → other owes viewer their share
      - other paid, viewer shares      → viewer owes other the viewer's share
      - viewer paid other a settlement → other's standing rises
      - other paid viewer a settlement → other's standing falls

    The viewer never appears in the result.
    """
    roster = participants if isinstance(participants, Roster) else Roster(participants)
    relative: BalanceMap = defaultdict(Decimal)
    diagnostics: list[Diagnostic] = []

    if viewer_participant_id not in roster:
        _warn(
            diagnostics,
            WarningCode.UNRESOLVABLE_PARTICIPANT,
            f"Viewer {viewer_participant_id!r} is not a known participant.",
            viewer_participant_id,
        )
        return LedgerResult({}, diagnostics)

    for expense in expenses:
        if not _in_scope(expense, group_id) or expense.is_income or not expense.currency:
            continue

        resolution = resolve_obligations(expense, roster, minor_unit=minor_unit)
        diagnostics.extend(resolution.diagnostics)
        if not resolution.resolved:
            continue

        currency = expense.currency
        if resolution.payer_id == viewer_participant_id:
            for obligation in resolution.obligations:
                if obligation.participant_id != viewer_participant_id:
                    relative[(obligation.participant_id, currency)] += obligation.amount
        else:
            viewer_share = resolution.share_of(viewer_participant_id)
            if viewer_share is not None:
                relative[(resolution.payer_id, currency)] -= viewer_share

    for settlement in settlements:
        if not _in_scope(settlement, group_id):
            continue
        if viewer_participant_id not in (
                settlement.from_participant_id, settlement.to_participant_id):
            continue

        amount = _settlement_amount(settlement, roster, diagnostics)
        if amount is None:
            continue

        currency = settlement.currency
        if settlement.from_participant_id == viewer_participant_id:
            other = settlement.to_participant_id
            if other != viewer_participant_id:
                relative[(other, currency)] += amount
        else:
            relative[(settlement.from_participant_id, currency)] -= amount

    return LedgerResult(dict(relative), diagnostics)


# ── Projections ────────────────────────────────────────────────────────────

def currencies(balance_map: BalanceMap) -> list[str]:
    return sorted({currency for _, currency in balance_map})


def balances_for_currency(balance_map: BalanceMap, currency: str) -> list[Balance]:
    """The slice of a BalanceMap for one currency, ordered by participant id."""
    return [
        Balance(pid, cur, amount)
        for (pid, cur), amount in sorted(balance_map.items())
        if cur == currency
    ]


def to_balance_list(balance_map: BalanceMap) -> list[Balance]:
    """Every entry as a Balance, ordered by currency then participant id."""
    return [
        Balance(pid, currency, amount)
        for (pid, currency), amount in sorted(
            balance_map.items(), key=lambda item: (item[0][1], item[0][0]),
        )
    ]


def outstanding_balances(
        balance_map: BalanceMap,
        *,
        epsilon: Decimal = EPSILON,
) -> list[Balance]:
    """
    Display view of a BalanceMap: amounts rounded half-up to cents and
    entries whose rounded magnitude is within epsilon dropped as settled.
    """
    outstanding = []
    for balance in to_balance_list(balance_map):
        try:
            rounded = balance.amount.quantize(_CENT, rounding=ROUND_HALF_UP)
        except InvalidOperation:
            # Too many digits to show in cents; shown unrounded.
            logger.warning(
                "Balance %s/%s of %s cannot be rounded to cents; left unrounded.",
                balance.participant_id, balance.currency, balance.amount,
            )
            rounded = balance.amount
        if abs(rounded) > epsilon:
            outstanding.append(Balance(balance.participant_id, balance.currency, rounded))
    return outstanding
