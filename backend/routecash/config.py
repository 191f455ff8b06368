# backend/routecash/config.py
from __future__ import annotations

import json
import os


def _category_limits_from_env() -> dict:
    raw = os.environ.get("DISCOUNT_CATEGORY_LIMITS_JSON")
    if not raw:
        # Discount policy v1.0 defaults
        return {
            "nimco": "5",
            "snacks": "5",
            "peanuts": "5",
            "sweets": "5",
            "bulk": "10",
            "other": "5",
        }
    return json.loads(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored next to the instance folder unless DATABASE_URL is set
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///routecash.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Discount authorization policy (percent values, stored as strings so they
    # parse into Decimal without float noise)
    DISCOUNT_DEFAULT_MAX_PERCENT = os.environ.get("DISCOUNT_DEFAULT_MAX_PERCENT", "5")
    DISCOUNT_CATEGORY_LIMITS = _category_limits_from_env()

    # Document numbering
    ORDER_NUMBER_PREFIX = os.environ.get("ORDER_NUMBER_PREFIX", "ORD")
    RETURN_NUMBER_PREFIX = os.environ.get("RETURN_NUMBER_PREFIX", "RET")
    DOCUMENT_NUMBER_PAD = int(os.environ.get("DOCUMENT_NUMBER_PAD", "5"))
