# -*- coding: utf-8 -*-
import os
from typing import Dict


def _env_flag(name: str, default: bool = False) -> bool:
    return os.getenv(name, str(default)).strip().lower() in ("1", "true", "yes")


def normalize_db_url(url: str) -> str:
    """
    Normalize DATABASE_URL so SQLAlchemy loads the right DBAPI.
    We standardize on the psycopg v3 driver ('+psycopg').
    """
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)
    if url.startswith("postgresql://") and "+psycopg://" not in url:
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


def parse_plan_catalog(raw: str) -> Dict[str, str]:
    """Parse "price_abc=premium,price_def=business" into a price -> plan map."""
    catalog = {}
    for pair in (raw or "").split(","):
        pair = pair.strip()
        if not pair or "=" not in pair:
            continue
        price_id, plan = pair.split("=", 1)
        if price_id.strip() and plan.strip():
            catalog[price_id.strip()] = plan.strip()
    return catalog


def _default_db_url() -> str:
    db_url = os.environ.get("DATABASE_URL")
    if db_url:
        return normalize_db_url(db_url)
    db_path = os.path.join(os.path.dirname(__file__), "..", "instance", "billsync.db")
    os.makedirs(os.path.dirname(db_path), exist_ok=True)
    return f"sqlite:///{os.path.abspath(db_path)}"


class Config:
    """Environment-driven settings. Instantiate to snapshot the current environment."""

    def __init__(self):
        self.SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key")
        self.JWT_SECRET_KEY = os.environ.get("JWT_SECRET_KEY", self.SECRET_KEY)
        self.JWT_ALGORITHM = "HS256"

        self.SQLALCHEMY_DATABASE_URI = _default_db_url()
        self.SQLALCHEMY_TRACK_MODIFICATIONS = False

        # --- Payment processor ---
        self.STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "").strip()
        self.STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "").strip()
        self.STRIPE_WEBHOOK_TOLERANCE = int(os.getenv("STRIPE_WEBHOOK_TOLERANCE", "300"))
        self.STRIPE_API_TIMEOUT = int(os.getenv("STRIPE_API_TIMEOUT", "10"))
        self.STRIPE_MAX_NETWORK_RETRIES = int(os.getenv("STRIPE_MAX_NETWORK_RETRIES", "2"))

        # --- Plans and sessions ---
        self.BILLSYNC_PLAN_CATALOG = parse_plan_catalog(os.getenv("BILLSYNC_PLAN_CATALOG", ""))
        self.BILLSYNC_DEFAULT_PLAN = os.getenv("BILLSYNC_DEFAULT_PLAN", "premium")
        self.BILLSYNC_TRIAL_PERIOD_DAYS = int(os.getenv("BILLSYNC_TRIAL_PERIOD_DAYS", "0"))
        self.BILLSYNC_CHECKOUT_RETURN_URL = os.getenv("BILLSYNC_CHECKOUT_RETURN_URL", "").strip()
        self.BILLSYNC_PORTAL_RETURN_URL = os.getenv("BILLSYNC_PORTAL_RETURN_URL", "").strip()

        # --- Reconciliation ---
        self.BILLSYNC_REJECT_STALE_EVENTS = _env_flag("BILLSYNC_REJECT_STALE_EVENTS")
        self.BILLSYNC_DB_AUTOCREATE = _env_flag("BILLSYNC_DB_AUTOCREATE")

        # --- Observability ---
        self.BILLSYNC_LOG_JSON = _env_flag("BILLSYNC_LOG_JSON", True)
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self.BILLSYNC_METRICS_ENABLED = _env_flag("BILLSYNC_METRICS_ENABLED", True)

        cors = os.getenv("CORS_ALLOWED_ORIGINS", "http://localhost:3000,http://localhost:5173")
        self.CORS_ALLOWED_ORIGINS = [o.strip() for o in cors.split(",") if o.strip()]

    def as_dict(self) -> dict:
        return {k: v for k, v in vars(self).items() if k.isupper()}
