import os
from decimal import Decimal, InvalidOperation
from pathlib import Path

from dotenv import load_dotenv


_BACKEND_DIR = Path(__file__).resolve().parent
_PROJECT_ROOT = _BACKEND_DIR.parent

# Root .env is canonical; backend/.env remains a fallback.
load_dotenv(_PROJECT_ROOT / ".env")
load_dotenv(_BACKEND_DIR / ".env")


def _first_non_empty_env(*names: str, default: str) -> str:
    """Returns the first non-empty env var value from `names`, else `default`."""
    for name in names:
        value = os.getenv(name)
        if value is not None and value != "":
            return value
    return default


def _parse_decimal_env(*names: str, default: str) -> Decimal:
    """Parses the first non-empty env var in `names` as Decimal, else returns `default`."""
    raw = _first_non_empty_env(*names, default=default)
    try:
        value = Decimal(raw)
    except (InvalidOperation, TypeError, ValueError):
        return Decimal(default)
    if not value.is_finite():
        return Decimal(default)
    return value


class BaseConfig:

    SECRET_KEY: str = _first_non_empty_env(
        "SECRET_KEY",
        default="change-me-in-production",
    )

    JSON_SORT_KEYS: bool = False

    # Balances with magnitude below this are treated as settled.
    LEDGER_EPSILON: Decimal = _parse_decimal_env(
        "LEDGER_EPSILON",
        default="0.01",
    )

    # Granularity of equal-split shares (one cent by default).
    LEDGER_MINOR_UNIT: Decimal = _parse_decimal_env(
        "LEDGER_MINOR_UNIT",
        default="0.01",
    )

    LOG_LEVEL: str = _first_non_empty_env("LOG_LEVEL", default="INFO")


class DevelopmentConfig(BaseConfig):
    DEBUG:   bool = True
    TESTING: bool = False

    LOG_LEVEL: str = _first_non_empty_env("LOG_LEVEL", default="DEBUG")


class TestingConfig(BaseConfig):

    DEBUG:   bool = True
    TESTING: bool = True

    LEDGER_EPSILON:    Decimal = Decimal("0.01")
    LEDGER_MINOR_UNIT: Decimal = Decimal("0.01")


class ProductionConfig(BaseConfig):

    DEBUG:   bool = False
    TESTING: bool = False


def validate_production_config(app) -> None:
    """
    Refuses to start a production app on placeholder or nonsensical settings.

    A zero or negative epsilon would let every rounding crumb count as debt,
    and a non-positive minor unit cannot cut equal shares. Raises ValueError.
    """
    if app.config.get("SECRET_KEY") == "change-me-in-production":
        raise ValueError(
            "SECRET_KEY is still the placeholder; set a real secret before "
            "running with the production config."
        )
    if app.config.get("LEDGER_EPSILON", Decimal("0")) <= Decimal("0"):
        raise ValueError(
            "LEDGER_EPSILON must be a positive decimal value."
        )
    if app.config.get("LEDGER_MINOR_UNIT", Decimal("0")) <= Decimal("0"):
        raise ValueError(
            "LEDGER_MINOR_UNIT must be a positive decimal value."
        )


# ── Config selector ────────────────────────────────────────────────────────
# create_app(config_name) looks the class up here.

config_by_name: dict[str, type[BaseConfig]] = {
    "development": DevelopmentConfig,
    "testing":     TestingConfig,
    "production":  ProductionConfig,
}

# FLASK_ENV, falling back to development.
ActiveConfig: type[BaseConfig] = config_by_name.get(
    os.getenv("FLASK_ENV", "development"),
    DevelopmentConfig,
)
