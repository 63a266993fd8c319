# -*- coding: utf-8 -*-
from billsync.infra.db import db
from billsync.models.subscription import utcnow


class ProcessedWebhookEvent(db.Model):
    """Dedup ledger: one row per processor event id that was handled."""
    __tablename__ = "processed_webhook_events"

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.String(255), unique=True, nullable=False, index=True)
    event_type = db.Column(db.String(100), nullable=False)
    outcome = db.Column(db.String(32), nullable=False)
    processed_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    def __str__(self):
        return self.event_id
