"""
tests/unit/test_compute_balances.py — Unit tests for balance_service.

What this file proves:
  - Payer is credited the full expense amount; each obligor is debited their share
  - A payer who is also in the split nets their own share to zero
  - Settlements are netted (payer's debt shrinks, receiver's credit shrinks)
  - Balances are kept per currency and never mixed
  - Income records are left out of the ledger
  - group_id narrows the computation; no group_id means "overall"
  - Malformed records are skipped with diagnostics, never raised
  - Viewer-relative ledger, per-group ledger and the rounded display view

Unit test constraints:
  - No Flask, no database. Records are plain dataclasses.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from backend.app.errors import WarningCode
from backend.app.models.ledger import (
    Balance,
    ByParticipantIds,
    ExplicitSplits,
    Expense,
    ExpenseKind,
    NoSplit,
    Participant,
    Settlement,
    SplitEntry,
)
from backend.app.services.balance_service import (
    balances_for_currency,
    compute_balances,
    compute_group_balances,
    compute_viewer_balances,
    currencies,
    outstanding_balances,
    to_balance_list,
)


# ── Record factories ───────────────────────────────────────────────────────

PEOPLE = [Participant("A"), Participant("B"), Participant("C"), Participant("D")]


def _expense(eid, amount, payer, among=None, currency="USD", **kwargs) -> Expense:
    split = ByParticipantIds(tuple(among)) if among else NoSplit()
    return Expense(eid, Decimal(amount), currency, payer, split=split, **kwargs)


def _settlement(sid, frm, to, amount, currency="USD", **kwargs) -> Settlement:
    return Settlement(sid, frm, to, Decimal(amount), currency, **kwargs)


def _sum(balances: dict, currency: str) -> Decimal:
    return sum(
        (amount for (_, cur), amount in balances.items() if cur == currency),
        Decimal("0"),
    )


# ── Core formula ───────────────────────────────────────────────────────────

def test_equal_split_scenario():
    """A pays 90 USD split among A, B, C → A=+60, B=-30, C=-30."""
    result = compute_balances(
        [_expense("e1", "90.00", "A", among=["A", "B", "C"])], [], PEOPLE,
    )

    assert result.balances == {
        ("A", "USD"): Decimal("60.00"),
        ("B", "USD"): Decimal("-30.00"),
        ("C", "USD"): Decimal("-30.00"),
    }
    assert result.diagnostics == []


def test_settlement_scenario():
    """After the split above, B pays A 30 USD → A=+30, B=0, C=-30."""
    result = compute_balances(
        [_expense("e1", "90.00", "A", among=["A", "B", "C"])],
        [_settlement("s1", "B", "A", "30.00")],
        PEOPLE,
    )

    assert result.balances[("A", "USD")] == Decimal("30.00")
    assert result.balances[("B", "USD")] == Decimal("0.00")
    assert result.balances[("C", "USD")] == Decimal("-30.00")


def test_explicit_split_payer_credited_obligors_debited():
    """A pays 100, split 60 A / 40 B. A = +100 - 60 = +40; B = -40."""
    expense = Expense(
        "e1", Decimal("100.00"), "USD", "A",
        split=ExplicitSplits((SplitEntry("A", Decimal("60.00")), SplitEntry("B", Decimal("40.00")))),
    )
    result = compute_balances([expense], [], PEOPLE)

    assert result.balances == {("A", "USD"): Decimal("40.00"), ("B", "USD"): Decimal("-40.00")}


def test_self_expense_leaves_payer_at_zero():
    result = compute_balances([_expense("e1", "25.00", "B")], [], PEOPLE)
    assert result.balances == {("B", "USD"): Decimal("0.00")}


def test_currencies_are_kept_apart():
    result = compute_balances(
        [
            _expense("e1", "40.00", "A", among=["A", "B"], currency="USD"),
            _expense("e2", "30.00", "B", among=["A", "B"], currency="EUR"),
        ],
        [],
        PEOPLE,
    )

    assert result.balances[("A", "USD")] == Decimal("20.00")
    assert result.balances[("B", "USD")] == Decimal("-20.00")
    assert result.balances[("A", "EUR")] == Decimal("-15.00")
    assert result.balances[("B", "EUR")] == Decimal("15.00")
    assert currencies(result.balances) == ["EUR", "USD"]


def test_income_excluded_from_ledger():
    income = _expense("i1", "500.00", "A", among=["A", "B"], kind=ExpenseKind.INCOME)
    result = compute_balances([income], [], PEOPLE)

    assert result.balances == {}


def test_balance_sum_zero_multiple_expenses_and_settlements():
    result = compute_balances(
        [
            _expense("e1", "90.00", "A", among=["A", "B", "C"]),
            _expense("e2", "10.00", "B", among=["A", "B", "C"]),
            _expense("e3", "61.17", "D", among=["A", "B", "C", "D"]),
        ],
        [_settlement("s1", "C", "A", "12.34")],
        PEOPLE,
    )

    assert _sum(result.balances, "USD") == Decimal("0")


# ── Scope ──────────────────────────────────────────────────────────────────

def test_group_scope_filters_records():
    expenses = [
        _expense("e1", "20.00", "A", among=["A", "B"], group_id="g1"),
        _expense("e2", "50.00", "C", among=["C", "D"], group_id="g2"),
    ]
    settlements = [_settlement("s1", "B", "A", "5.00", group_id="g1")]

    g1 = compute_balances(expenses, settlements, PEOPLE, group_id="g1")
    overall = compute_balances(expenses, settlements, PEOPLE)

    assert g1.balances == {("A", "USD"): Decimal("5.00"), ("B", "USD"): Decimal("-5.00")}
    assert overall.balances[("C", "USD")] == Decimal("25.00")
    assert overall.balances[("A", "USD")] == Decimal("5.00")


def test_compute_group_balances_overall_is_sum_of_groups():
    expenses = [
        _expense("e1", "20.00", "A", among=["A", "B"], group_id="g1"),
        _expense("e2", "30.00", "A", among=["A", "C"], group_id="g2"),
    ]
    ledger = compute_group_balances(expenses, [], PEOPLE)

    assert list(ledger.groups) == ["g1", "g2"]
    assert ledger.groups["g1"].balances[("A", "USD")] == Decimal("10.00")
    assert ledger.groups["g2"].balances[("A", "USD")] == Decimal("15.00")
    assert ledger.overall[("A", "USD")] == Decimal("25.00")


# ── Malformed records ──────────────────────────────────────────────────────

def test_unknown_payer_contributes_nothing():
    result = compute_balances(
        [
            _expense("e1", "90.00", "ghost", among=["A", "B"]),
            _expense("e2", "10.00", "A", among=["A", "B"]),
        ],
        [],
        PEOPLE,
    )

    assert result.balances == {("A", "USD"): Decimal("5.00"), ("B", "USD"): Decimal("-5.00")}
    assert [d.code for d in result.diagnostics] == [WarningCode.UNRESOLVABLE_PARTICIPANT]
    assert result.diagnostics[0].record_id == "e1"


@pytest.mark.parametrize("bad_amount", ["NaN", "Infinity", "-3.00"])
def test_invalid_settlement_amount_is_zero_contribution(bad_amount):
    settlement = Settlement("s1", "B", "A", Decimal(bad_amount), "USD")
    result = compute_balances([], [settlement], PEOPLE)

    assert result.balances == {}
    assert [d.code for d in result.diagnostics] == [WarningCode.INVALID_AMOUNT]


def test_settlement_with_unknown_party_skipped():
    result = compute_balances([], [_settlement("s1", "B", "nobody", "10.00")], PEOPLE)

    assert result.balances == {}
    assert result.diagnostics[0].code == WarningCode.UNRESOLVABLE_PARTICIPANT


def test_missing_currency_skipped():
    result = compute_balances(
        [_expense("e1", "10.00", "A", among=["A", "B"], currency="")],
        [_settlement("s1", "B", "A", "1.00", currency=None)],
        PEOPLE,
    )

    assert result.balances == {}
    assert [d.code for d in result.diagnostics] == [
        WarningCode.MISSING_CURRENCY,
        WarningCode.MISSING_CURRENCY,
    ]


def test_oversized_amounts_skipped_not_raised():
    result = compute_balances(
        [
            _expense("e1", "1e30", "A", among=["A", "B", "C"]),
            _expense("e2", "9.00", "A", among=["A", "B", "C"]),
        ],
        [_settlement("s1", "B", "A", "1e30")],
        PEOPLE,
    )

    assert result.balances == {
        ("A", "USD"): Decimal("6.00"),
        ("B", "USD"): Decimal("-3.00"),
        ("C", "USD"): Decimal("-3.00"),
    }
    assert [d.code for d in result.diagnostics] == [
        WarningCode.INVALID_AMOUNT,
        WarningCode.INVALID_AMOUNT,
    ]


def test_inputs_are_not_mutated():
    expenses = [_expense("e1", "90.00", "A", among=["A", "B", "C"])]
    settlements = [_settlement("s1", "B", "A", "30.00")]
    before = (list(expenses), list(settlements))

    compute_balances(expenses, settlements, PEOPLE)

    assert (expenses, settlements) == before


# ── Viewer-relative ledger ─────────────────────────────────────────────────

def test_viewer_balances_only_count_direct_dealings():
    """
    A pays 90 among A, B, C. C pays 40 among B, C. B pays A 10.
    Viewer A: B owes 30 - 10 = 20, C owes 30. The B/C expense is none of A's business.
    """
    expenses = [
        _expense("e1", "90.00", "A", among=["A", "B", "C"]),
        _expense("e2", "40.00", "C", among=["B", "C"]),
    ]
    settlements = [_settlement("s1", "B", "A", "10.00")]

    result = compute_viewer_balances(expenses, settlements, PEOPLE, "A")

    assert result.balances == {
        ("B", "USD"): Decimal("20.00"),
        ("C", "USD"): Decimal("30.00"),
    }


def test_viewer_owes_payer_their_share():
    result = compute_viewer_balances(
        [_expense("e1", "60.00", "B", among=["A", "B", "C"])], [], PEOPLE, "A",
    )
    assert result.balances == {("B", "USD"): Decimal("-20.00")}


def test_viewer_settlement_paid_to_other_raises_their_standing():
    result = compute_viewer_balances(
        [_expense("e1", "60.00", "B", among=["A", "B"])],
        [_settlement("s1", "A", "B", "30.00")],
        PEOPLE,
        "A",
    )
    assert result.balances == {("B", "USD"): Decimal("0.00")}


def test_unknown_viewer_returns_empty_with_diagnostic():
    result = compute_viewer_balances([], [], PEOPLE, "nobody")

    assert result.balances == {}
    assert result.diagnostics[0].code == WarningCode.UNRESOLVABLE_PARTICIPANT


# ── Projections ────────────────────────────────────────────────────────────

def test_balances_for_currency_and_list_are_ordered():
    balance_map = {
        ("B", "USD"): Decimal("-1"),
        ("A", "USD"): Decimal("1"),
        ("A", "EUR"): Decimal("0"),
    }

    assert balances_for_currency(balance_map, "USD") == [
        Balance("A", "USD", Decimal("1")),
        Balance("B", "USD", Decimal("-1")),
    ]
    assert [(b.currency, b.participant_id) for b in to_balance_list(balance_map)] == [
        ("EUR", "A"), ("USD", "A"), ("USD", "B"),
    ]


def test_outstanding_balances_round_and_drop_settled():
    balance_map = {
        ("A", "USD"): Decimal("3.3349"),
        ("B", "USD"): Decimal("-3.3349"),
        ("C", "USD"): Decimal("0.004"),
        ("D", "USD"): Decimal("0.01"),
    }

    assert outstanding_balances(balance_map) == [
        Balance("A", "USD", Decimal("3.33")),
        Balance("B", "USD", Decimal("-3.33")),
    ]


def test_outstanding_balances_leave_unroundable_amounts_as_is():
    huge = Decimal("1e30")
    balance_map = {("A", "USD"): huge, ("B", "USD"): -huge}

    assert outstanding_balances(balance_map) == [
        Balance("A", "USD", huge),
        Balance("B", "USD", -huge),
    ]
