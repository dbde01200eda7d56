# backend/orderflow/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/orderflow.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///orderflow.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Order totals (decimal strings, parsed by checkout_service)
    SHIPPING_CHARGE = os.environ.get("SHIPPING_CHARGE", "0")
    FREE_SHIPPING_THRESHOLD = os.environ.get("FREE_SHIPPING_THRESHOLD", "0")
    TAX_RATE_PERCENT = os.environ.get("TAX_RATE_PERCENT", "0")
    COUPON_MAX_DISCOUNT_PERCENT = os.environ.get("COUPON_MAX_DISCOUNT_PERCENT", "90")
    ORDER_NUMBER_PREFIX = os.environ.get("ORDER_NUMBER_PREFIX", "ORD")

    # Returns
    RETURNS_ENABLED = os.environ.get("RETURNS_ENABLED", "1") == "1"
    RETURN_WINDOW_DAYS = int(os.environ.get("RETURN_WINDOW_DAYS", "7"))

    # External collaborators
    PAYMENT_GATEWAY = os.environ.get("PAYMENT_GATEWAY", "disabled")
    CARRIER_ENABLED = os.environ.get("CARRIER_ENABLED", "0") == "1"
    # "thread" runs carrier calls on a worker pool after commit; "inline" runs them
    # synchronously after commit (tests, CLI)
    CARRIER_DISPATCH = os.environ.get("CARRIER_DISPATCH", "thread")
    CARRIER_DISPATCH_WORKERS = int(os.environ.get("CARRIER_DISPATCH_WORKERS", "4"))
