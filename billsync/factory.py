# -*- coding: utf-8 -*-
from typing import Any, Dict, Optional

from flask import Flask
from flask_cors import CORS
from flask_jwt_extended import JWTManager

from billsync.config import Config, normalize_db_url
from billsync.database import db

# Observability imports
from billsync.services.metrics import init_metrics
from billsync.services.request_context import init_request_context
from billsync.services.structured_logging import init_logging

from billsync.middleware.errors import register_error_handlers
from billsync.services.context import EXTENSION_KEY, build_context
from billsync.services.processor import StripeProcessor


def create_app(config: Optional[Dict[str, Any]] = None) -> Flask:
    app = Flask(__name__)
    app.url_map.strict_slashes = False

    # --- Config: environment snapshot, then explicit overrides ---
    app.config.update(Config().as_dict())
    if config:
        app.config.update(config)
    app.config["SQLALCHEMY_DATABASE_URI"] = normalize_db_url(app.config["SQLALCHEMY_DATABASE_URI"])

    db.init_app(app)
    JWTManager(app)

    # --- CORS ---
    CORS(app, resources={
        r"/api/*": {
            "origins": app.config["CORS_ALLOWED_ORIGINS"],
            "methods": ["GET", "POST", "OPTIONS"],
            "allow_headers": ["Content-Type", "Authorization", "X-Request-ID"],
            "supports_credentials": False,
            "max_age": 600,
        }}
    )

    # --- Initialize observability ---
    init_logging(app)
    init_request_context(app)
    metrics = init_metrics(app)

    register_error_handlers(app)

    # --- Billing collaborators ---
    app.extensions[EXTENSION_KEY] = build_context(
        app.config, db, StripeProcessor.from_config(app.config), metrics=metrics)
    if not app.config.get("STRIPE_SECRET_KEY"):
        app.logger.warning("STRIPE_SECRET_KEY not configured; session endpoints will answer 501")
    if not app.config.get("STRIPE_WEBHOOK_SECRET"):
        app.logger.warning("STRIPE_WEBHOOK_SECRET not configured; webhooks will answer 500")

    # --- Mount blueprints ---
    from billsync.routes import billing, health, stripe_webhooks, subscription
    app.register_blueprint(health.health_bp)
    app.register_blueprint(stripe_webhooks.stripe_webhooks_bp)
    app.register_blueprint(billing.billing_bp)
    app.register_blueprint(subscription.subscription_bp)

    # --- DB init ---
    with app.app_context():
        # Only auto-create tables in testing or if explicitly enabled
        if app.config.get("TESTING") or app.config.get("BILLSYNC_DB_AUTOCREATE"):
            db.create_all()

    return app
