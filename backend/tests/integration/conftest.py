"""
tests/integration/conftest.py — Fixtures and helpers for all integration tests.

Design:
  - The app is created once per session using create_app("testing").
  - The ledger API is stateless: every response is computed from the request
    body, so there is no database to create or clean between tests.

Helper functions (not fixtures) are provided for common operations:
  - participant(...)   → participant record dict
  - expense(...)       → expense record dict
  - settlement(...)    → settlement record dict
  - post_ledger(...)   → HTTP response from a POST /api/v1/ledger/<endpoint>

These are plain functions (not pytest fixtures) so they can be called with
arbitrary arguments in any test without fixture parameterization overhead.
"""

from __future__ import annotations

import pytest

from backend.app import create_app


# ═══════════════════════════════════════════════════════════════════════════
# Session-scoped app fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="session")
def app():
    """Creates the Flask application in 'testing' mode once for the entire test session."""
    return create_app("testing")


@pytest.fixture
def client(app):
    """Flask test client. Each test gets a fresh client (function-scoped)."""
    return app.test_client()


# ═══════════════════════════════════════════════════════════════════════════
# Shared helper functions (not fixtures)
# ═══════════════════════════════════════════════════════════════════════════

def participant(pid: str, **extra) -> dict:
    return {"id": pid, **extra}


def expense(
    eid: str,
    amount,
    payer_id: str,
    among: list | None = None,
    currency: str | None = "USD",
    **extra,
) -> dict:
    """
    Builds an expense record. `among` becomes split_among_participant_ids;
    pass splits=[...] or split_among_user_ids=[...] through **extra instead.
    """
    record = {"id": eid, "amount": amount, "payer_id": payer_id, **extra}
    if currency is not None:
        record["currency"] = currency
    if among is not None:
        record["split_among_participant_ids"] = among
    return record


def settlement(sid: str, from_id: str, to_id: str, amount, currency: str = "USD", **extra) -> dict:
    return {
        "id": sid,
        "from_participant_id": from_id,
        "to_participant_id": to_id,
        "amount": amount,
        "currency": currency,
        **extra,
    }


def post_ledger(client, endpoint: str, body: dict):
    """POSTs a JSON body to /api/v1/ledger/<endpoint> and returns the response."""
    return client.post(f"/api/v1/ledger/{endpoint}", json=body)
