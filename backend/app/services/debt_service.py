"""
services/debt_service.py — Greedy debt simplification.

Turns one currency's net balances into a short list of "A pays B" payments
that bring every balance to within epsilon of zero.

Repeatedly matches the largest debtor with the largest creditor. For N
non-zero balances it produces at most N-1 payments. This is a deterministic
approximation; the true minimum-payment problem is NP-hard.

Layer rules:
  - No Flask imports. Pure functions over plain records.
  - Input balances are never mutated; the walk works on private copies, so
    repeated calls on the same snapshot return identical results.
  - A leftover imbalance is a data problem and becomes a diagnostic.
    Mixing currencies in one call is a caller bug and raises AppError.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable

from backend.app.errors import AppError, Diagnostic, ErrorCode, WarningCode
from backend.app.models.ledger import Balance, BalanceMap, DebtEdge, Settlement
from backend.app.services.balance_service import EPSILON, balances_for_currency, currencies

logger = logging.getLogger(__name__)


@dataclass
class SimplificationResult:
    currency: str | None
    edges: list[DebtEdge]
    diagnostics: list[Diagnostic] = field(default_factory=list)


def _single_currency(balances: list[Balance]) -> str | None:
    found = {b.currency for b in balances}
    if len(found) > 1:
        raise AppError(
            ErrorCode.CURRENCY_MISMATCH,
            "Debt simplification runs on one currency at a time; got "
            f"{', '.join(sorted(found))}.",
            422,
        )
    return next(iter(found), None)


def _fold_by_participant(balances: list[Balance], currency: str | None) -> list[Balance]:
    """One Balance per participant; repeated entries are summed, first-seen order kept."""
    totals: dict[str, Decimal] = defaultdict(Decimal)
    for b in balances:
        totals[b.participant_id] += b.amount
    return [Balance(pid, currency, amount) for pid, amount in totals.items()]


def _with_viewer(
        balances: list[Balance],
        viewer_id: str,
        currency: str | None,
        epsilon: Decimal,
) -> list[Balance]:
    """
    Completes a viewer-relative list by adding the viewer's own balance,
    inferred as the negated sum of everyone else's.

    The viewer is only added when that inferred amount is beyond epsilon and
    the viewer is not already listed.
    """
    if currency is None:
        return balances
    if any(b.participant_id == viewer_id for b in balances):
        return balances

    inferred = -sum((b.amount for b in balances), Decimal("0"))
    if abs(inferred) <= epsilon:
        return balances
    return balances + [Balance(viewer_id, currency, inferred)]


def simplify_debts(
        balances: Iterable[Balance],
        *,
        viewer_id: str | None = None,
        viewer_relative: bool = False,
        epsilon: Decimal = EPSILON,
) -> SimplificationResult:
    """
    Greedy minimum cash flow debt simplification for ONE currency.

    Args:
        balances:        Balance records, all in the same currency. Expected to
                         sum to zero; a non-zero sum shows up as a
                         RESIDUAL_IMBALANCE diagnostic. Entries repeating a
                         participant id are summed first.
        viewer_id:       Participant the list is relative to (viewer mode only).
        viewer_relative: The list omits the viewer and expresses everyone
                         relative to them. The viewer's balance is
                         reconstructed before simplifying. Never inferred
                         from the shape of the input.
        epsilon:         Balances with magnitude within epsilon are settled.

    Returns:
        SimplificationResult with edges in emission order. An empty edge list
        means all balances are already settled.

    Raises:
        AppError(CURRENCY_MISMATCH, 422) -- balances span several currencies.
        AppError(VIEWER_REQUIRED, 422)   -- viewer_relative without viewer_id.
    """
    snapshot = list(balances)
    currency = _single_currency(snapshot)
    snapshot = _fold_by_participant(snapshot, currency)

    if viewer_relative:
        if viewer_id is None:
            raise AppError(
                ErrorCode.VIEWER_REQUIRED,
                "viewer_relative=True requires the viewer's participant id.",
                422,
                field="viewer_participant_id",
            )
        snapshot = _with_viewer(snapshot, viewer_id, currency, epsilon)

    # Working copies: [participant_id, remaining_amount].
    # Debtors: most negative first. Creditors: most positive first.
    # Ties break on participant id so the output is deterministic.
    debtors = sorted(
        ([b.participant_id, b.amount] for b in snapshot if b.amount < -epsilon),
        key=lambda d: (d[1], d[0]),
    )
    creditors = sorted(
        ([b.participant_id, b.amount] for b in snapshot if b.amount > epsilon),
        key=lambda c: (-c[1], c[0]),
    )

    edges: list[DebtEdge] = []
    i = j = 0

    while i < len(debtors) and j < len(creditors):
        debtor = debtors[i]
        creditor = creditors[j]

        transfer = min(abs(debtor[1]), creditor[1])
        edges.append(DebtEdge(debtor[0], creditor[0], transfer, currency))

        debtor[1] += transfer
        creditor[1] -= transfer

        if abs(debtor[1]) < epsilon:
            i += 1
        if abs(creditor[1]) < epsilon:
            j += 1

    diagnostics: list[Diagnostic] = []
    leftover = [d for d in debtors[i:] if abs(d[1]) >= epsilon]
    leftover += [c for c in creditors[j:] if abs(c[1]) >= epsilon]
    if leftover:
        residual = sum((amount for _, amount in leftover), Decimal("0"))
        message = (
            f"{currency}: balances did not close after simplification; "
            f"{len(leftover)} participant(s) left with a net {residual}."
        )
        logger.warning("%s: %s", WarningCode.RESIDUAL_IMBALANCE, message)
        diagnostics.append(Diagnostic(WarningCode.RESIDUAL_IMBALANCE, message))

    logger.debug("Simplified %s balances into %d payments", currency, len(edges))
    return SimplificationResult(currency, edges, diagnostics)


def simplify_balance_map(
        balance_map: BalanceMap,
        *,
        epsilon: Decimal = EPSILON,
) -> dict[str, SimplificationResult]:
    """Runs simplify_debts() independently for every currency in the map."""
    return {
        currency: simplify_debts(
            balances_for_currency(balance_map, currency), epsilon=epsilon,
        )
        for currency in currencies(balance_map)
    }


def apply_edges_as_settlements(edges: Iterable[DebtEdge]) -> list[Settlement]:
    """
    Turns suggested payments into Settlement records, as if each had been paid.

    Feeding these back into compute_balances() brings every balance within
    epsilon of zero.
    """
    return [
        Settlement(
            id=f"suggested-{index}",
            from_participant_id=edge.from_participant_id,
            to_participant_id=edge.to_participant_id,
            amount=edge.amount,
            currency=edge.currency,
        )
        for index, edge in enumerate(edges, start=1)
    ]
