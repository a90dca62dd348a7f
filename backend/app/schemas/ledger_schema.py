"""
schemas/ledger_schema.py — Marshmallow schemas for ledger computation requests.

Validation responsibility:
  - This file: record SHAPE only. Required ids, string types, the expense
    kind enum, list structure. A shape error is a 400 for the whole request.
  - services/: record CONTENT. Amount values are loaded raw on purpose so a
    NaN, "abc" or negative amount reaches the engine, which treats it as a
    zero contribution and reports a diagnostic instead of rejecting the
    request. Unknown participant ids are the engine's concern too.

Records come straight from the persistence layer and usually carry extra
columns (created_at, notes, ...). Unknown keys are ignored.

IMPORTANT: Inherits from marshmallow.Schema directly, so schemas can be
           instantiated in unit tests without a Flask app context.
"""

from __future__ import annotations

from marshmallow import EXCLUDE, Schema, fields, post_load, validate

from backend.app.errors import ErrorCode
from backend.app.models.ledger import (
    Balance,
    Expense,
    ExpenseKind,
    Participant,
    Settlement,
    SplitEntry,
    split_spec_from_fields,
)


class Identifier(fields.Field):
    """
    Accepts string or integer ids and normalises them to str.

    Rows fetched from different sources disagree on id types (UUID strings
    versus integer keys); the engine compares ids as strings.
    """

    default_error_messages = {
        "invalid": "Not a valid identifier.",
        "empty": "Identifier must not be empty.",
    }

    def _deserialize(self, value, attr, data, **kwargs):
        if isinstance(value, bool) or not isinstance(value, (str, int)):
            raise self.make_error("invalid")
        text = str(value).strip()
        if not text:
            raise self.make_error("empty")
        return text

    def _serialize(self, value, attr, obj, **kwargs):
        return None if value is None else str(value)


class _RecordSchema(Schema):
    class Meta:
        unknown = EXCLUDE


# ── Record schemas ─────────────────────────────────────────────────────────

class ParticipantSchema(_RecordSchema):
    id           = Identifier(required=True)
    user_id      = Identifier(load_default=None, allow_none=True)
    display_name = fields.Str(load_default=None, allow_none=True)
    email        = fields.Str(load_default=None, allow_none=True)
    group_id     = Identifier(load_default=None, allow_none=True)

    @post_load
    def make_participant(self, data, **kwargs) -> Participant:
        return Participant(**data)


class SplitEntrySchema(_RecordSchema):
    participant_id = Identifier(required=True)
    # Raw: validated (and possibly dropped) by split_service.
    amount         = fields.Raw(required=True, allow_none=True)

    @post_load
    def make_entry(self, data, **kwargs) -> SplitEntry:
        return SplitEntry(**data)


class ExpenseSchema(_RecordSchema):
    """
    One expense or income record.

    At most one split representation is used; split_spec_from_fields()
    applies the precedence (splits, then participant ids, then user ids).
    """

    id       = Identifier(required=True)
    amount   = fields.Raw(required=True, allow_none=True)
    currency = fields.Str(load_default=None, allow_none=True)
    payer_id = Identifier(required=True)
    kind     = fields.Str(
        load_default=ExpenseKind.EXPENSE.value,
        validate=validate.OneOf(
            [k.value for k in ExpenseKind],
            error=ErrorCode.INVALID_EXPENSE_KIND,
        ),
    )
    splits = fields.List(
        fields.Nested(SplitEntrySchema),
        load_default=None,
        allow_none=True,
    )
    split_among_participant_ids = fields.List(
        Identifier(), load_default=None, allow_none=True,
    )
    split_among_user_ids = fields.List(
        Identifier(), load_default=None, allow_none=True,
    )
    group_id    = Identifier(load_default=None, allow_none=True)
    description = fields.Str(load_default=None, allow_none=True)

    @post_load
    def make_expense(self, data, **kwargs) -> Expense:
        split = split_spec_from_fields(
            data.pop("splits"),
            data.pop("split_among_participant_ids"),
            data.pop("split_among_user_ids"),
        )
        return Expense(
            kind=ExpenseKind(data.pop("kind")),
            split=split,
            **data,
        )


class SettlementSchema(_RecordSchema):
    id                  = Identifier(required=True)
    from_participant_id = Identifier(required=True)
    to_participant_id   = Identifier(required=True)
    amount              = fields.Raw(required=True, allow_none=True)
    currency            = fields.Str(load_default=None, allow_none=True)
    timestamp           = fields.DateTime(load_default=None, allow_none=True)
    group_id            = Identifier(load_default=None, allow_none=True)

    @post_load
    def make_settlement(self, data, **kwargs) -> Settlement:
        return Settlement(**data)


class BalanceSchema(_RecordSchema):
    """A derived balance handed back for simplification. Amount must be numeric."""

    participant_id = Identifier(required=True)
    currency       = fields.Str(required=True, validate=validate.Length(min=1))
    amount         = fields.Decimal(required=True, allow_nan=False)

    @post_load
    def make_balance(self, data, **kwargs) -> Balance:
        return Balance(**data)


# ── Request schemas ────────────────────────────────────────────────────────

class LedgerRequestSchema(Schema):
    """
    POST /ledger/balances, /ledger/groups, /ledger/costs

    group_id narrows the computation to one group; absent means "overall".
    viewer_participant_id adds the viewer-relative views to the response.
    """

    participants = fields.List(fields.Nested(ParticipantSchema), required=True)
    expenses     = fields.List(fields.Nested(ExpenseSchema), load_default=list)
    settlements  = fields.List(fields.Nested(SettlementSchema), load_default=list)
    group_id     = Identifier(load_default=None, allow_none=True)
    viewer_participant_id = Identifier(load_default=None, allow_none=True)


class SimplifyRequestSchema(Schema):
    """
    POST /ledger/simplify

    viewer_relative must be set explicitly when the balance list leaves the
    viewer out; it is never guessed from the list.
    """

    balances = fields.List(fields.Nested(BalanceSchema), required=True)
    viewer_participant_id = Identifier(load_default=None, allow_none=True)
    viewer_relative = fields.Bool(load_default=False)
