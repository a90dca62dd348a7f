"""
app/__init__.py — HTTP wrapper around the ledger engine.

create_app(config_name) builds a fresh app on every call; importing this
module has no side effects, so each test session gets its own instance.

The factory:
  - picks the config class from config_by_name and applies LOG_LEVEL
  - mounts the ledger blueprint at /api/v1/ledger
  - installs the error handlers that produce the {"error": {...}} envelope
  - swaps in a JSON provider that writes Decimal as a string, so money
    never turns into a float on the wire

The ledger services themselves import nothing from Flask; this package only
wraps them in HTTP.
"""

from __future__ import annotations

import traceback
from decimal import Decimal

from flask import Flask, jsonify, request
from flask.json.provider import DefaultJSONProvider
from marshmallow import ValidationError
from werkzeug.exceptions import HTTPException

from backend.config import config_by_name, validate_production_config


# ── JSON ───────────────────────────────────────────────────────────────────

class DecimalJSONProvider(DefaultJSONProvider):
    """Writes Decimal("33.34") as "33.34", keeping every digit the engine produced."""

    def default(self, o):
        if isinstance(o, Decimal):
            return str(o)
        return super().default(o)


# ── Application factory ────────────────────────────────────────────────────

def create_app(config_name: str = "development") -> Flask:
    """
    Builds the ledger API.

    Unknown config names fall back to "development". "production" runs the
    fail-fast config guard before anything is registered.
    """
    app = Flask(__name__)
    app.json_provider_class = DecimalJSONProvider
    app.json = DecimalJSONProvider(app)

    # ── Configuration ──────────────────────────────────────────────────────
    config_class = config_by_name.get(config_name, config_by_name["development"])
    app.config.from_object(config_class)

    if config_name == "production":
        validate_production_config(app)

    # app.logger is the "backend.app" logger; the service module loggers
    # (backend.app.services.*) inherit this level.
    app.logger.setLevel(app.config["LOG_LEVEL"])

    _register_blueprints(app)
    _register_error_handlers(app)
    _register_cors(app)

    return app


def _register_blueprints(app: Flask) -> None:
    from backend.app.routes.ledger import ledger_bp

    app.register_blueprint(ledger_bp, url_prefix="/api/v1/ledger")


def _register_error_handlers(app: Flask) -> None:
    """
    Maps every failure onto the error envelope:

      AppError        → its own code and status (422 for engine contract misuse)
      ValidationError → 400, MISSING_FIELD / INVALID_FIELD / registered code
      HTTPException   → INVALID_REQUEST with the routing status
      Exception       → 500 INTERNAL_ERROR, traceback to the app logger only
    """
    from backend.app.errors import AppError, ErrorCode

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        """Routes never catch AppError; it propagates here."""
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        """
        Reports the first schema error only. Nested record errors are reported
        with a dotted field path, e.g. "expenses.2.payer_id".
        """
        field, raw_message = _first_error(error.messages)

        if raw_message in vars(ErrorCode).values():
            code = raw_message
            message = _code_to_message(code)
        elif str(raw_message).startswith("Missing data for required field"):
            code = ErrorCode.MISSING_FIELD
            message = raw_message
        else:
            code = ErrorCode.INVALID_FIELD
            message = raw_message

        response_body = {"error": {"code": code, "message": message}}
        if field is not None:
            response_body["error"]["field"] = field

        return jsonify(response_body), 400

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):
        """Unknown routes, wrong methods and unparseable JSON bodies."""
        return jsonify({
            "error": {
                "code": ErrorCode.INVALID_REQUEST,
                "message": error.description or error.name,
            }
        }), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        app.logger.error(
            "Unhandled exception: %s\n%s",
            str(error),
            traceback.format_exc(),
        )
        return jsonify({
            "error": {
                "code": ErrorCode.INTERNAL_ERROR,
                "message": "An unexpected error occurred. Please try again later.",
            }
        }), 500


def _register_cors(app: Flask) -> None:
    """Open CORS for DEBUG/TESTING so a locally served screen can POST records."""

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allow_all = bool(app.config.get("DEBUG") or app.config.get("TESTING"))

        if allow_all:
            response.headers["Access-Control-Allow-Origin"] = origin if origin else "*"
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Methods"] = "POST, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = "Content-Type"

        return response


def _first_error(messages, path: tuple = ()) -> tuple[str | None, str]:
    """
    Walks marshmallow's nested messages to the first leaf message.

    Returns (dotted_field_path or None, message).
    """
    if isinstance(messages, dict):
        for key, value in messages.items():
            if key == "_schema":
                return _first_error(value, path)
            return _first_error(value, path + (str(key),))
    elif isinstance(messages, list):
        if messages:
            return _first_error(messages[0], path)
    else:
        return (".".join(path) or None), str(messages)

    return (".".join(path) or None), "Invalid input."


def _code_to_message(code: str) -> str:
    """
    Returns a human-readable default message for a known error code.
    Used when a ValidationError message IS the error code constant itself.
    """
    _messages = {
        "INVALID_EXPENSE_KIND": "kind must be 'expense' or 'income'.",
    }
    return _messages.get(code, "Invalid input.")
