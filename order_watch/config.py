"""
CONFIG.PY: SINGLE SOURCE OF TRUTH (SSOT)

This module is the ONLY place allowed to read environment variables.

Values are read from the process environment, with a ``.env`` file at the
project root loaded first (OS env overrides it). Every value has a default so
that a bare checkout can run ``python -m order_watch monitor``; invalid values
fail early with ``ConfigError``.

Config is parsed ONCE into an immutable ``Config`` object. Components receive
it explicitly:

    from order_watch.config import load_config

    config = load_config()

Do not call os.getenv from any other module.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Mapping

from dotenv import load_dotenv


PROJECT_ROOT = Path(__file__).resolve().parents[1]

load_dotenv(PROJECT_ROOT / ".env")

if os.getenv("DEBUG_CONFIG") == "1":
    print("[CONFIG] Loaded .env from:", PROJECT_ROOT / ".env")


logger = logging.getLogger(__name__)

DEFAULT_LOGIN_URL = "https://partner.demae-can.com/merchant-admin/login"
DEFAULT_ORDER_LIST_URL = "https://partner.demae-can.com/merchant-admin/order/order-list"

DEFAULTS: dict[str, str] = {
    "PORTAL_LOGIN_URL": DEFAULT_LOGIN_URL,
    "PORTAL_ORDER_LIST_URL": DEFAULT_ORDER_LIST_URL,
    "PORTAL_EMAIL": "",
    "PORTAL_PASSWORD": "",
    "BROWSER_HEADLESS": "false",
    "BROWSER_SLOW_MO_MS": "200",
    "BROWSER_EXECUTABLE": "",
    "NAV_TIMEOUT_MS": "30000",
    "LIST_WAIT_TIMEOUT_MS": "5000",
    "DETAIL_WAIT_TIMEOUT_MS": "15000",
    "POLL_INTERVAL_SECONDS": "3",
    "ERROR_BACKOFF_SECONDS": "5",
    "NAV_RETRY_ATTEMPTS": "3",
    "NAV_RETRY_DELAY_SECONDS": "2",
    "ROW_OPEN_ATTEMPTS": "3",
    "ROW_OPEN_RETRY_DELAY_SECONDS": "1",
    "MAX_CONSECUTIVE_ERRORS": "5",
    "MAX_RELAUNCH_ATTEMPTS": "3",
    "ROW_FAILURE_LIMIT": "3",
    "DATABASE_URL": "sqlite+aiosqlite:///orders.db",
    "ALEMBIC_CONFIG": "alembic.ini",
    "JSON_LOG_FILE": "",
}

TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}


class ConfigError(RuntimeError):
    """Raised when configuration cannot be loaded."""


def _read(environ: Mapping[str, str], key: str) -> str:
    value = environ.get(key)
    if value is None:
        return DEFAULTS[key]
    return value.strip()


def _parse_bool(value: str, *, key: str) -> bool:
    normalized = value.strip().lower()
    if normalized in TRUE_VALUES:
        return True
    if normalized in FALSE_VALUES:
        return False
    message = f"Config key {key} must be a boolean string; got {value!r}"
    logger.error(message)
    raise ConfigError(message)


def _parse_int(value: str, *, key: str, minimum: int = 0) -> int:
    try:
        parsed = int(value.strip())
    except (TypeError, ValueError):
        message = f"Config key {key} must be an integer; got {value!r}"
        logger.error(message)
        raise ConfigError(message)
    if parsed < minimum:
        message = f"Config key {key} must be >= {minimum}; got {parsed}"
        logger.error(message)
        raise ConfigError(message)
    return parsed


def _parse_float(value: str, *, key: str) -> float:
    try:
        parsed = float(value.strip())
    except (TypeError, ValueError):
        message = f"Config key {key} must be a number; got {value!r}"
        logger.error(message)
        raise ConfigError(message)
    if parsed < 0:
        message = f"Config key {key} cannot be negative; got {parsed}"
        logger.error(message)
        raise ConfigError(message)
    return parsed


def _clean_url(value: str, *, key: str) -> str:
    stripped = value.strip().rstrip("/")
    if not stripped:
        message = f"Config key {key} cannot be blank"
        logger.error(message)
        raise ConfigError(message)
    if not re.match(r"^https?://", stripped, re.IGNORECASE):
        message = f"Config key {key} must be an http(s) URL; got {value!r}"
        logger.error(message)
        raise ConfigError(message)
    return stripped


@dataclass(slots=True, frozen=True)
class Config:
    login_url: str
    order_list_url: str
    portal_email: str
    portal_password: str

    browser_headless: bool
    browser_slow_mo_ms: int
    browser_executable: str

    nav_timeout_ms: int
    list_wait_timeout_ms: int
    detail_wait_timeout_ms: int
    poll_interval_seconds: float
    error_backoff_seconds: float
    nav_retry_attempts: int
    nav_retry_delay_seconds: float
    row_open_attempts: int
    row_open_retry_delay_seconds: float
    max_consecutive_errors: int
    max_relaunch_attempts: int
    row_failure_limit: int

    database_url: str
    alembic_config: str
    json_log_file: str

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Config:
        env = os.environ if environ is None else environ
        values = {key: _read(env, key) for key in DEFAULTS}

        return cls(
            login_url=_clean_url(values["PORTAL_LOGIN_URL"], key="PORTAL_LOGIN_URL"),
            order_list_url=_clean_url(values["PORTAL_ORDER_LIST_URL"], key="PORTAL_ORDER_LIST_URL"),
            portal_email=values["PORTAL_EMAIL"],
            portal_password=values["PORTAL_PASSWORD"],
            browser_headless=_parse_bool(values["BROWSER_HEADLESS"], key="BROWSER_HEADLESS"),
            browser_slow_mo_ms=_parse_int(values["BROWSER_SLOW_MO_MS"], key="BROWSER_SLOW_MO_MS"),
            browser_executable=values["BROWSER_EXECUTABLE"],
            nav_timeout_ms=_parse_int(values["NAV_TIMEOUT_MS"], key="NAV_TIMEOUT_MS", minimum=1),
            list_wait_timeout_ms=_parse_int(
                values["LIST_WAIT_TIMEOUT_MS"], key="LIST_WAIT_TIMEOUT_MS", minimum=1
            ),
            detail_wait_timeout_ms=_parse_int(
                values["DETAIL_WAIT_TIMEOUT_MS"], key="DETAIL_WAIT_TIMEOUT_MS", minimum=1
            ),
            poll_interval_seconds=_parse_float(
                values["POLL_INTERVAL_SECONDS"], key="POLL_INTERVAL_SECONDS"
            ),
            error_backoff_seconds=_parse_float(
                values["ERROR_BACKOFF_SECONDS"], key="ERROR_BACKOFF_SECONDS"
            ),
            nav_retry_attempts=_parse_int(
                values["NAV_RETRY_ATTEMPTS"], key="NAV_RETRY_ATTEMPTS", minimum=1
            ),
            nav_retry_delay_seconds=_parse_float(
                values["NAV_RETRY_DELAY_SECONDS"], key="NAV_RETRY_DELAY_SECONDS"
            ),
            row_open_attempts=_parse_int(
                values["ROW_OPEN_ATTEMPTS"], key="ROW_OPEN_ATTEMPTS", minimum=1
            ),
            row_open_retry_delay_seconds=_parse_float(
                values["ROW_OPEN_RETRY_DELAY_SECONDS"], key="ROW_OPEN_RETRY_DELAY_SECONDS"
            ),
            max_consecutive_errors=_parse_int(
                values["MAX_CONSECUTIVE_ERRORS"], key="MAX_CONSECUTIVE_ERRORS", minimum=1
            ),
            max_relaunch_attempts=_parse_int(
                values["MAX_RELAUNCH_ATTEMPTS"], key="MAX_RELAUNCH_ATTEMPTS", minimum=1
            ),
            row_failure_limit=_parse_int(
                values["ROW_FAILURE_LIMIT"], key="ROW_FAILURE_LIMIT", minimum=1
            ),
            database_url=values["DATABASE_URL"],
            alembic_config=values["ALEMBIC_CONFIG"],
            json_log_file=values["JSON_LOG_FILE"],
        )


@lru_cache(maxsize=1)
def load_config() -> Config:
    return Config.from_env()
