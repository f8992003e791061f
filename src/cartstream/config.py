"""Runtime settings for the cart pipeline.

Values come from environment variables (optionally loaded from a ``.env``
file at the project root). ``CARTSTREAM_ENV`` selects the overlay:

    - "development" → file database next to the project, console logs
    - "test"        → file database in the working directory, console logs
    - "production"  → JSON logs; ``DATABASE_URL`` is expected to be set
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).resolve().parents[2]
load_dotenv(dotenv_path=ROOT_DIR / ".env")

DEFAULT_TAX_RATE = 0.13

_ENV_DEFAULTS = {
    "development": {
        "database_url": f"sqlite+aiosqlite:///{ROOT_DIR / 'cartstream.db'}",
        "log_format": "console",
    },
    "test": {
        "database_url": "sqlite+aiosqlite:///./cartstream-test.db",
        "log_format": "console",
    },
    "production": {
        "database_url": f"sqlite+aiosqlite:///{ROOT_DIR / 'cartstream.db'}",
        "log_format": "json",
    },
}


def _get_env(*keys: str, default: str | None = None) -> str | None:
    for k in keys:
        v = os.getenv(k)
        if v is not None and str(v).strip() != "":
            return v.strip()
    return default


def _get_float(*keys: str, default: float) -> float:
    v = _get_env(*keys, default=None)
    if v is None:
        return default
    return float(v)


def _get_int(*keys: str, default: int) -> int:
    v = _get_env(*keys, default=None)
    if v is None:
        return default
    return int(v)


def _get_bool(*keys: str, default: bool = False) -> bool:
    v = _get_env(*keys, default=None)
    if v is None:
        return default
    return v.lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    env: str
    database_url: str
    default_tax_rate: float
    default_shipping: float
    keepalive_seconds: float
    subscriber_buffer: int
    log_level: str
    log_format: str
    echo_sql: bool


def load_settings(**overrides) -> Settings:
    """Build settings from the environment, then apply keyword overrides."""
    env = _get_env("CARTSTREAM_ENV", default="development") or "development"
    if env not in _ENV_DEFAULTS:
        raise RuntimeError(f"Unknown CARTSTREAM_ENV: {env!r} (expected one of {sorted(_ENV_DEFAULTS)})")
    defaults = _ENV_DEFAULTS[env]

    settings = Settings(
        env=env,
        database_url=_get_env("DATABASE_URL", "CARTSTREAM_DATABASE_URL", default=defaults["database_url"]),
        default_tax_rate=_get_float("CART_TAX_RATE", default=DEFAULT_TAX_RATE),
        default_shipping=_get_float("CART_SHIPPING", default=0.0),
        keepalive_seconds=_get_float("EVENTS_KEEPALIVE_SECONDS", default=15.0),
        subscriber_buffer=_get_int("EVENTS_SUBSCRIBER_BUFFER", default=100),
        log_level=_get_env("LOG_LEVEL", default="INFO") or "INFO",
        log_format=_get_env("LOG_FORMAT", default=defaults["log_format"]) or "console",
        echo_sql=_get_bool("ECHO_SQL"),
    )
    if overrides:
        settings = replace(settings, **overrides)

    if not 0 <= settings.default_tax_rate < 1:
        raise RuntimeError("CART_TAX_RATE must be a fraction in [0, 1)")
    if settings.default_shipping < 0:
        raise RuntimeError("CART_SHIPPING must not be negative")
    return settings
