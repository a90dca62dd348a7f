"""
services/analytics_service.py — Descriptive cost aggregates for reporting views.

Answers "what did each person's share of the group's spending come to?".
There is no payer or debt logic here: a participant's cost is the plain sum of
their obligations from split_service. Balances and settlements belong to
balance_service.

Percentages only make sense inside one currency. When a group mixes
currencies every percentage is None ("not applicable"); totals are never
blended across currencies.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable

from backend.app.errors import AppError, Diagnostic, ErrorCode, WarningCode
from backend.app.models.ledger import Balance, Expense, Participant, Roster
from backend.app.services.split_service import DEFAULT_MINOR_UNIT, resolve_obligations

logger = logging.getLogger(__name__)

_HUNDRED = Decimal("100")


@dataclass
class ParticipantCost:
    totals: dict[str, Decimal]
    percentage: Decimal | None = None


@dataclass
class CostReport:
    entries: dict[str, ParticipantCost]
    group_totals: dict[str, Decimal]
    diagnostics: list[Diagnostic] = field(default_factory=list)

    @property
    def percentage_applicable(self) -> bool:
        return len(self.group_totals) <= 1


@dataclass(frozen=True)
class ExpenseShare:
    """One row of the viewer's own expense history."""

    expense: Expense
    share: Decimal | None
    is_payer: bool
    net_receivable: Decimal | None


def _scoped(expenses: Iterable[Expense], group_id: str | None):
    for expense in expenses:
        if expense.is_income:
            continue
        if group_id is not None and expense.group_id != group_id:
            continue
        yield expense


def compute_cost_breakdown(
        expenses: Iterable[Expense],
        participants: Iterable[Participant],
        *,
        group_id: str | None = None,
        minor_unit: Decimal = DEFAULT_MINOR_UNIT,
) -> CostReport:
    """
    Per-participant, per-currency cost totals with percentage shares.

    Entries are ordered by the participant's summed totals, largest first,
    then by participant id. The summed value is only used for ordering.
    """
    roster = participants if isinstance(participants, Roster) else Roster(participants)
    totals: dict[str, dict[str, Decimal]] = defaultdict(lambda: defaultdict(Decimal))
    diagnostics: list[Diagnostic] = []

    for expense in _scoped(expenses, group_id):
        if not expense.currency:
            diagnostics.append(Diagnostic(
                WarningCode.MISSING_CURRENCY,
                f"Expense {expense.id} has no currency; left out of cost totals.",
                expense.id,
            ))
            continue
        resolution = resolve_obligations(expense, roster, minor_unit=minor_unit)
        diagnostics.extend(resolution.diagnostics)
        for obligation in resolution.obligations:
            totals[obligation.participant_id][expense.currency] += obligation.amount

    group_totals: dict[str, Decimal] = defaultdict(Decimal)
    for per_currency in totals.values():
        for currency, amount in per_currency.items():
            group_totals[currency] += amount

    ordered = sorted(
        totals.items(),
        key=lambda item: (-sum(item[1].values(), Decimal("0")), item[0]),
    )

    mixed = len(group_totals) > 1
    if mixed:
        message = (
            "Costs span several currencies "
            f"({', '.join(sorted(group_totals))}); percentages not applicable."
        )
        logger.info("%s: %s", WarningCode.MIXED_CURRENCY_PERCENTAGE, message)
        diagnostics.append(Diagnostic(WarningCode.MIXED_CURRENCY_PERCENTAGE, message))

    entries = {}
    for participant_id, per_currency in ordered:
        percentage = None
        if not mixed:
            currency, group_total = next(iter(group_totals.items()))
            own = per_currency.get(currency, Decimal("0"))
            percentage = Decimal("0") if group_total == 0 else own / group_total * _HUNDRED
        entries[participant_id] = ParticipantCost(dict(per_currency), percentage)

    return CostReport(entries, dict(group_totals), diagnostics)


def my_cost(report: CostReport, participant_id: str) -> dict[str, Decimal]:
    """The viewer's own cost per currency; empty if they share in nothing."""
    entry = report.entries.get(participant_id)
    return dict(entry.totals) if entry is not None else {}


def my_expense_breakdown(
        expenses: Iterable[Expense],
        participants: Iterable[Participant],
        viewer_participant_id: str,
        *,
        group_id: str | None = None,
        minor_unit: Decimal = DEFAULT_MINOR_UNIT,
) -> list[ExpenseShare]:
    """
    Expenses the viewer paid for or shares in, with their share of each.

    net_receivable is what others owe the viewer for an expense they paid:
    the amount minus the viewer's own share.
    """
    roster = participants if isinstance(participants, Roster) else Roster(participants)
    rows = []
    for expense in _scoped(expenses, group_id):
        resolution = resolve_obligations(expense, roster, minor_unit=minor_unit)
        if not resolution.resolved:
            continue

        share = resolution.share_of(viewer_participant_id)
        is_payer = resolution.payer_id == viewer_participant_id
        if not is_payer and share is None:
            continue

        net_receivable = None
        if is_payer:
            net_receivable = resolution.amount - (share or Decimal("0"))
        rows.append(ExpenseShare(expense, share, is_payer, net_receivable))
    return rows


def outstanding_totals(balances: Iterable[Balance], direction: str) -> dict[str, Decimal]:
    """
    Per-currency sum of magnitudes for one side of a balance list.

    direction:
        "owe"  — negative balances (what the viewer has to pay)
        "owed" — positive balances (what the viewer is due)
    """
    if direction not in ("owe", "owed"):
        raise AppError(
            ErrorCode.INVALID_FIELD,
            f"direction must be 'owe' or 'owed', got {direction!r}.",
            400,
            field="direction",
        )

    totals: dict[str, Decimal] = defaultdict(Decimal)
    for balance in balances:
        if direction == "owe" and balance.amount < 0:
            totals[balance.currency] += -balance.amount
        elif direction == "owed" and balance.amount > 0:
            totals[balance.currency] += balance.amount
    return dict(totals)
