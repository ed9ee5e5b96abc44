"""Configuration loader.

Reads environment variables and `.env` to configure the service.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, List, Optional

import pytz
from dotenv import load_dotenv

# Load variables from a .env file if present (project root).
load_dotenv(dotenv_path=Path(__file__).resolve().parents[1] / ".env")


class ConfigValidationError(ValueError):
    """Raised when a configuration value (at startup or at runtime) is invalid."""


def _get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(name, default)


def _parse_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes")


def _parse_int(value: Optional[str], default: int) -> int:
    try:
        return int(value) if value is not None else default
    except ValueError:
        return default


def _get_list(name: str, default: str = "") -> List[str]:
    raw = _get_env(name, default) or ""
    return [s.strip() for s in raw.split(",") if s.strip()]


# ---- Twilio / SMS ------------------------------------------------------------

TWILIO_ACCOUNT_SID: Optional[str] = _get_env("TWILIO_ACCOUNT_SID")
TWILIO_AUTH_TOKEN: Optional[str] = _get_env("TWILIO_AUTH_TOKEN")
TWILIO_PHONE_FROM: Optional[str] = _get_env("TWILIO_PHONE_FROM")
PHONE_TO: Optional[str] = _get_env("PHONE_TO")
TWILIO_API_BASE: str = _get_env("TWILIO_API_BASE", "https://api.twilio.com/2010-04-01")

# ---- Preferred product -------------------------------------------------------

PRODUCT_NAME: str = _get_env("PRODUCT_NAME", "iPhone 17 Pro Max")
PRODUCT_STORAGE: str = _get_env("PRODUCT_STORAGE", "256GB")
PRODUCT_COLOR: str = _get_env("PRODUCT_COLOR", "Silver")
PRODUCT_SKU: str = _get_env("PRODUCT_SKU", "MZ7C3ZP/A")

# Buy page (used as Referer, purchase link and browser entry point).
BASE_URL: str = _get_env("BASE_URL", "https://www.apple.com/sg/shop/buy-iphone/iphone-17-pro")
AVAILABILITY_URL: str = _get_env(
    "AVAILABILITY_URL", "https://www.apple.com/sg/shop/retail/pickup-message"
)

# Every SKU polled each cycle: sku -> (model, storage, color).
ALL_VARIANTS: Dict[str, tuple[str, str, str]] = {
    # Pro Max 256GB
    "MZ7C3ZP/A": ("Pro Max", "256GB", "Silver"),
    "MZ7E3ZP/A": ("Pro Max", "256GB", "Graphite"),
    "MZ7J3ZP/A": ("Pro Max", "256GB", "Gold"),
    "MZ7G3ZP/A": ("Pro Max", "256GB", "Deep Purple"),
    # Pro Max 512GB
    "MZ7L3ZP/A": ("Pro Max", "512GB", "Silver"),
    "MZ7N3ZP/A": ("Pro Max", "512GB", "Graphite"),
    "MZ7T3ZP/A": ("Pro Max", "512GB", "Gold"),
    "MZ7Q3ZP/A": ("Pro Max", "512GB", "Deep Purple"),
    # Pro Max 1TB
    "MZ7V3ZP/A": ("Pro Max", "1TB", "Silver"),
    "MZ7X3ZP/A": ("Pro Max", "1TB", "Graphite"),
    "MZ833ZP/A": ("Pro Max", "1TB", "Gold"),
    "MZ803ZP/A": ("Pro Max", "1TB", "Deep Purple"),
    # Pro 128GB
    "MZ533ZP/A": ("Pro", "128GB", "Silver"),
    "MZ553ZP/A": ("Pro", "128GB", "Graphite"),
    "MZ593ZP/A": ("Pro", "128GB", "Gold"),
    "MZ573ZP/A": ("Pro", "128GB", "Deep Purple"),
    # Pro 256GB
    "MZ5C3ZP/A": ("Pro", "256GB", "Silver"),
    "MZ5E3ZP/A": ("Pro", "256GB", "Graphite"),
    "MZ5J3ZP/A": ("Pro", "256GB", "Gold"),
    "MZ5G3ZP/A": ("Pro", "256GB", "Deep Purple"),
    # Pro 512GB
    "MZ5L3ZP/A": ("Pro", "512GB", "Silver"),
    "MZ5N3ZP/A": ("Pro", "512GB", "Graphite"),
    "MZ5T3ZP/A": ("Pro", "512GB", "Gold"),
    "MZ5Q3ZP/A": ("Pro", "512GB", "Deep Purple"),
    # Pro 1TB
    "MZ5V3ZP/A": ("Pro", "1TB", "Silver"),
    "MZ5X3ZP/A": ("Pro", "1TB", "Graphite"),
    "MZ633ZP/A": ("Pro", "1TB", "Gold"),
    "MZ603ZP/A": ("Pro", "1TB", "Deep Purple"),
}

# ---- Stores (Singapore Apple retail) -----------------------------------------

STORE_IDS: List[str] = _get_list("STORE_IDS", "R669,R673,R676")

STORE_NAMES: Dict[str, str] = {
    "R669": "Apple Orchard Road",
    "R673": "Apple Marina Bay Sands",
    "R676": "Apple Jewel Changi Airport",
}

STORE_ADDRESSES: Dict[str, str] = {
    "R669": "270 Orchard Road, Singapore 238857",
    "R673": "2 Bayfront Avenue, Singapore 018972",
    "R676": "78 Airport Boulevard, Singapore 819666",
}

# ---- Checking ----------------------------------------------------------------

MIN_INTERVAL_MINUTES = 1
MAX_INTERVAL_MINUTES = 60

# Minutes between scheduled checks.
CHECK_INTERVAL_MINUTES: int = _parse_int(_get_env("CHECK_INTERVAL", "1"), 1)

# Start the scheduler automatically on boot.
CHECK_ENABLED: bool = _parse_bool(_get_env("CHECK_ENABLED", "false"), False)

FETCH_TIMEOUT_SECONDS: int = _parse_int(_get_env("FETCH_TIMEOUT_SECONDS", "5"), 5)

# Insert the headless-browser scrape between the API query and the
# "all unavailable" default.
SCRAPE_FALLBACK_ENABLED: bool = _parse_bool(_get_env("SCRAPE_FALLBACK_ENABLED", "false"), False)
BROWSER_TIMEOUT_MS: int = _parse_int(_get_env("BROWSER_TIMEOUT_MS", "30000"), 30000)

# ---- Notification limits -----------------------------------------------------

COOLDOWN_MINUTES: int = _parse_int(_get_env("COOLDOWN_MINUTES", "30"), 30)
MAX_NOTIFICATIONS_PER_DAY: int = _parse_int(_get_env("MAX_NOTIFICATIONS_PER_DAY", "10"), 10)

# Alert timestamps are shown in the stores' zone, not the host's.
ALERT_TIMEZONE: str = _get_env("ALERT_TIMEZONE", "Asia/Singapore")

# ---- Control server ----------------------------------------------------------

HOST: str = _get_env("HOST", "127.0.0.1")
PORT: int = _parse_int(_get_env("PORT", "3000"), 3000)

# Logging level: DEBUG, INFO, WARNING, ERROR.
LOG_LEVEL: str = _get_env("LOG_LEVEL", "INFO")

# ---- Validation --------------------------------------------------------------


def validate_interval(minutes) -> int:
    """Return ``minutes`` as an int if it lies within the allowed range."""
    if isinstance(minutes, bool):
        raise ConfigValidationError("Invalid interval. Must be between 1 and 60 minutes.")
    try:
        value = int(minutes)
    except (TypeError, ValueError):
        raise ConfigValidationError("Invalid interval. Must be between 1 and 60 minutes.") from None
    if value != minutes and not isinstance(minutes, str):
        # reject 2.5 and friends rather than silently truncating
        raise ConfigValidationError("Invalid interval. Must be between 1 and 60 minutes.")
    if not MIN_INTERVAL_MINUTES <= value <= MAX_INTERVAL_MINUTES:
        raise ConfigValidationError("Invalid interval. Must be between 1 and 60 minutes.")
    return value


def validate() -> None:
    """Validate required configuration parameters."""
    validate_interval(CHECK_INTERVAL_MINUTES)
    if not STORE_IDS:
        raise ConfigValidationError("STORE_IDS must list at least one store id.")
    if PRODUCT_SKU not in ALL_VARIANTS:
        raise ConfigValidationError(
            f"PRODUCT_SKU {PRODUCT_SKU!r} is not in the variant catalog."
        )
    if COOLDOWN_MINUTES < 0:
        raise ConfigValidationError("COOLDOWN_MINUTES must not be negative.")
    if MAX_NOTIFICATIONS_PER_DAY < 0:
        raise ConfigValidationError("MAX_NOTIFICATIONS_PER_DAY must not be negative.")
    try:
        pytz.timezone(ALERT_TIMEZONE)
    except pytz.UnknownTimeZoneError:
        raise ConfigValidationError(f"ALERT_TIMEZONE {ALERT_TIMEZONE!r} is not a known time zone.") from None


__all__ = [
    # Twilio
    "TWILIO_ACCOUNT_SID",
    "TWILIO_AUTH_TOKEN",
    "TWILIO_PHONE_FROM",
    "PHONE_TO",
    "TWILIO_API_BASE",
    # Product
    "PRODUCT_NAME",
    "PRODUCT_STORAGE",
    "PRODUCT_COLOR",
    "PRODUCT_SKU",
    "BASE_URL",
    "AVAILABILITY_URL",
    "ALL_VARIANTS",
    # Stores
    "STORE_IDS",
    "STORE_NAMES",
    "STORE_ADDRESSES",
    # Checking
    "MIN_INTERVAL_MINUTES",
    "MAX_INTERVAL_MINUTES",
    "CHECK_INTERVAL_MINUTES",
    "CHECK_ENABLED",
    "FETCH_TIMEOUT_SECONDS",
    "SCRAPE_FALLBACK_ENABLED",
    "BROWSER_TIMEOUT_MS",
    # Notifications
    "COOLDOWN_MINUTES",
    "MAX_NOTIFICATIONS_PER_DAY",
    "ALERT_TIMEZONE",
    # Server
    "HOST",
    "PORT",
    "LOG_LEVEL",
    # Helpers
    "ConfigValidationError",
    "validate",
    "validate_interval",
]
