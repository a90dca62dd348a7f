"""
models/ledger.py — Plain record types consumed and produced by the ledger engine.

These are snapshots of rows already fetched by the persistence layer. The
engine never mutates them; every dataclass here is frozen.

Money rule: amounts are decimal.Decimal. Floats are accepted at the edge by
coerce_amount() and converted through str() so 0.1 stays 0.1.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Iterable, Union


class ExpenseKind(str, enum.Enum):
    EXPENSE = "expense"
    INCOME  = "income"


# ── Records ────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Participant:
    """
    A person with standing in a group's ledger.

    user_id is None for invited members who have not created an account yet.
    """

    id: str
    user_id: str | None = None
    display_name: str | None = None
    email: str | None = None
    group_id: str | None = None


@dataclass(frozen=True)
class SplitEntry:
    participant_id: str
    amount: object  # raw value; validated by the split resolver


# ── Split representations ──────────────────────────────────────────────────
# An expense carries at most one of these. split_spec_from_fields() picks it.

@dataclass(frozen=True)
class ExplicitSplits:
    entries: tuple[SplitEntry, ...]


@dataclass(frozen=True)
class ByParticipantIds:
    participant_ids: tuple[str, ...]


@dataclass(frozen=True)
class ByUserIds:
    user_ids: tuple[str, ...]


@dataclass(frozen=True)
class NoSplit:
    pass


SplitSpec = Union[ExplicitSplits, ByParticipantIds, ByUserIds, NoSplit]


def split_spec_from_fields(
        splits: Iterable[SplitEntry] | None = None,
        participant_ids: Iterable[str] | None = None,
        user_ids: Iterable[str] | None = None,
) -> SplitSpec:
    """
    Collapses the three optional split fields of a raw expense into one
    SplitSpec. The first non-empty representation wins; they are never merged.
    """
    entries = tuple(splits or ())
    if entries:
        return ExplicitSplits(entries)

    by_participant = tuple(participant_ids or ())
    if by_participant:
        return ByParticipantIds(by_participant)

    by_user = tuple(user_ids or ())
    if by_user:
        return ByUserIds(by_user)

    return NoSplit()


@dataclass(frozen=True)
class Expense:
    id: str
    amount: object
    currency: str
    payer_id: str
    kind: ExpenseKind = ExpenseKind.EXPENSE
    split: SplitSpec = field(default_factory=NoSplit)
    group_id: str | None = None
    description: str | None = None

    @property
    def is_income(self) -> bool:
        return self.kind == ExpenseKind.INCOME


@dataclass(frozen=True)
class Settlement:
    id: str
    from_participant_id: str
    to_participant_id: str
    amount: object
    currency: str
    timestamp: datetime | None = None
    group_id: str | None = None


# ── Derived values ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Obligation:
    participant_id: str
    amount: Decimal


@dataclass(frozen=True)
class Balance:
    """Net amount a participant is owed (positive) or owes (negative)."""

    participant_id: str
    currency: str
    amount: Decimal


@dataclass(frozen=True)
class DebtEdge:
    from_participant_id: str
    to_participant_id: str
    amount: Decimal
    currency: str


# (participant_id, currency) -> signed net amount
BalanceMap = dict[tuple[str, str], Decimal]


class Roster:
    """Lookup of participants by participant id and by account user id."""

    def __init__(self, participants: Iterable[Participant]) -> None:
        self._by_id: dict[str, Participant] = {}
        self._by_user_id: dict[str, Participant] = {}
        for participant in participants:
            self._by_id[participant.id] = participant
            if participant.user_id is not None:
                self._by_user_id.setdefault(participant.user_id, participant)

    def __contains__(self, participant_id: object) -> bool:
        return participant_id in self._by_id

    def __len__(self) -> int:
        return len(self._by_id)

    def get(self, participant_id: str) -> Participant | None:
        return self._by_id.get(participant_id)

    def by_user_id(self, user_id: str) -> Participant | None:
        return self._by_user_id.get(user_id)


# ── Amount coercion ────────────────────────────────────────────────────────

# Largest magnitude the engine accepts. Keeps cent-quantized amounts and their
# running sums well inside the default 28-digit decimal context.
MAX_AMOUNT = Decimal("1e15")


def coerce_amount(value: object) -> Decimal | None:
    """
    Converts a raw amount into a finite Decimal.

    Returns None for anything that is not a usable number: None, booleans,
    non-numeric strings, NaN, infinities and magnitudes of MAX_AMOUNT or more.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, float, str)):
        try:
            amount = Decimal(str(value).strip())
        except InvalidOperation:
            return None
    else:
        return None

    if not amount.is_finite() or abs(amount) >= MAX_AMOUNT:
        return None
    return amount
