"""
routes/ledger.py — Ledger computation route handlers.

Layer rules:
  - Parse, validate, call the services, return envelope.
  - No business logic. Stateless: every response is a pure function of the
    request body. Records arrive already fetched by the caller.
  - Data problems in records come back in the `warnings` array with a 200.
    Only malformed request shapes (400) and caller contract violations (422)
    produce error responses.

Endpoints (base url_prefix=/api/v1/ledger):
  POST /balances  → 200  net balances, display view, simplified debts
  POST /groups    → 200  per-group balances plus overall balances
  POST /simplify  → 200  suggested payments for one currency's balances
  POST /costs     → 200  cost breakdown with percentage shares
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable

from flask import Blueprint, current_app, jsonify, request

from backend.app.errors import Diagnostic
from backend.app.models.ledger import Balance, DebtEdge
from backend.app.schemas.ledger_schema import LedgerRequestSchema, SimplifyRequestSchema
from backend.app.services import analytics_service, balance_service, debt_service

ledger_bp = Blueprint("ledger", __name__)

_PERCENT_PLACES = Decimal("0.01")


# ── Serialization helpers ──────────────────────────────────────────────────

def _serialize_balance(b: Balance) -> dict:
    return {
        "participant_id": b.participant_id,
        "currency": b.currency,
        "amount": str(b.amount),  # Decimal → string, never a JS number
    }


def _serialize_edge(e: DebtEdge) -> dict:
    return {
        "from_participant_id": e.from_participant_id,
        "to_participant_id": e.to_participant_id,
        "amount": str(e.amount),
        "currency": e.currency,
    }


def _serialize_totals(totals: dict[str, Decimal]) -> dict[str, str]:
    return {currency: str(amount) for currency, amount in sorted(totals.items())}


def _warnings(*groups: Iterable[Diagnostic]) -> list[dict]:
    """Flattens diagnostic lists, dropping repeats, in first-seen order."""
    seen = dict.fromkeys(d for group in groups for d in group)
    return [d.to_dict() for d in seen]


def _ledger_settings() -> tuple[Decimal, Decimal]:
    return (
        current_app.config["LEDGER_EPSILON"],
        current_app.config["LEDGER_MINOR_UNIT"],
    )


# ── Route handlers ─────────────────────────────────────────────────────────

@ledger_bp.route("/balances", methods=["POST"])
def post_balances():
    """
    POST /ledger/balances

    Returns exact balances, the rounded display view, per-currency sums and
    simplified debts for every currency. When viewer_participant_id is given,
    also returns the viewer-relative ledger.
    """
    data = LedgerRequestSchema().load(request.get_json(force=True) or {})
    epsilon, minor_unit = _ledger_settings()

    ledger = balance_service.compute_balances(
        data["expenses"],
        data["settlements"],
        data["participants"],
        group_id=data["group_id"],
        minor_unit=minor_unit,
    )
    simplified = debt_service.simplify_balance_map(ledger.balances, epsilon=epsilon)

    balance_sums = {
        currency: sum(
            (b.amount for b in balance_service.balances_for_currency(ledger.balances, currency)),
            Decimal("0"),
        )
        for currency in balance_service.currencies(ledger.balances)
    }

    result = {
        "group_id": data["group_id"],
        "balances": [_serialize_balance(b) for b in balance_service.to_balance_list(ledger.balances)],
        "outstanding": [
            _serialize_balance(b)
            for b in balance_service.outstanding_balances(ledger.balances, epsilon=epsilon)
        ],
        "balance_sums": _serialize_totals(balance_sums),
        "simplified_debts": {
            currency: [_serialize_edge(e) for e in outcome.edges]
            for currency, outcome in simplified.items()
        },
    }
    diagnostics = [ledger.diagnostics] + [o.diagnostics for o in simplified.values()]

    viewer_id = data["viewer_participant_id"]
    if viewer_id is not None:
        relative = balance_service.compute_viewer_balances(
            data["expenses"],
            data["settlements"],
            data["participants"],
            viewer_id,
            group_id=data["group_id"],
            minor_unit=minor_unit,
        )
        viewer_view = balance_service.outstanding_balances(relative.balances, epsilon=epsilon)
        result["viewer_balances"] = [_serialize_balance(b) for b in viewer_view]
        result["viewer_totals"] = {
            "owe": _serialize_totals(analytics_service.outstanding_totals(viewer_view, "owe")),
            "owed": _serialize_totals(analytics_service.outstanding_totals(viewer_view, "owed")),
        }
        diagnostics.append(relative.diagnostics)

    return jsonify({"data": result, "warnings": _warnings(*diagnostics)}), 200


@ledger_bp.route("/groups", methods=["POST"])
def post_group_balances():
    """
    POST /ledger/groups

    Balances split out per group (by the records' group_id) plus the overall
    balances across every group. group_id in the body is ignored here.
    """
    data = LedgerRequestSchema().load(request.get_json(force=True) or {})
    epsilon, minor_unit = _ledger_settings()

    ledger = balance_service.compute_group_balances(
        data["expenses"],
        data["settlements"],
        data["participants"],
        minor_unit=minor_unit,
    )

    result = {
        "group_balances": [
            {
                "group_id": group_id,
                "balances": [
                    _serialize_balance(b)
                    for b in balance_service.outstanding_balances(outcome.balances, epsilon=epsilon)
                ],
            }
            for group_id, outcome in ledger.groups.items()
        ],
        "overall_balances": [
            _serialize_balance(b)
            for b in balance_service.outstanding_balances(ledger.overall, epsilon=epsilon)
        ],
    }
    return jsonify({"data": result, "warnings": _warnings(ledger.diagnostics)}), 200


@ledger_bp.route("/simplify", methods=["POST"])
def post_simplify():
    """
    POST /ledger/simplify

    All balances must share one currency (CURRENCY_MISMATCH, 422 otherwise).
    viewer_relative=true requires viewer_participant_id (VIEWER_REQUIRED, 422).
    """
    data = SimplifyRequestSchema().load(request.get_json(force=True) or {})
    epsilon, _ = _ledger_settings()

    outcome = debt_service.simplify_debts(
        data["balances"],
        viewer_id=data["viewer_participant_id"],
        viewer_relative=data["viewer_relative"],
        epsilon=epsilon,
    )
    result = {
        "currency": outcome.currency,
        "edges": [_serialize_edge(e) for e in outcome.edges],
    }
    return jsonify({"data": result, "warnings": _warnings(outcome.diagnostics)}), 200


@ledger_bp.route("/costs", methods=["POST"])
def post_costs():
    """
    POST /ledger/costs

    percentage is null for every entry when costs span several currencies.
    With viewer_participant_id, also returns the viewer's own cost and the
    expenses they paid for or share in.
    """
    data = LedgerRequestSchema().load(request.get_json(force=True) or {})
    _, minor_unit = _ledger_settings()

    report = analytics_service.compute_cost_breakdown(
        data["expenses"],
        data["participants"],
        group_id=data["group_id"],
        minor_unit=minor_unit,
    )

    result = {
        "group_id": data["group_id"],
        "group_totals": _serialize_totals(report.group_totals),
        "percentage_applicable": report.percentage_applicable,
        "entries": [
            {
                "participant_id": participant_id,
                "totals": _serialize_totals(entry.totals),
                "percentage": (
                    None if entry.percentage is None
                    else str(entry.percentage.quantize(_PERCENT_PLACES))
                ),
            }
            for participant_id, entry in report.entries.items()
        ],
    }

    viewer_id = data["viewer_participant_id"]
    if viewer_id is not None:
        result["my_cost"] = _serialize_totals(analytics_service.my_cost(report, viewer_id))
        result["my_expenses"] = [
            {
                "expense_id": row.expense.id,
                "currency": row.expense.currency,
                "amount": str(row.expense.amount),
                "share": None if row.share is None else str(row.share),
                "is_payer": row.is_payer,
                "net_receivable": (
                    None if row.net_receivable is None else str(row.net_receivable)
                ),
            }
            for row in analytics_service.my_expense_breakdown(
                data["expenses"],
                data["participants"],
                viewer_id,
                group_id=data["group_id"],
                minor_unit=minor_unit,
            )
        ]

    return jsonify({"data": result, "warnings": _warnings(report.diagnostics)}), 200
