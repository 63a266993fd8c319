"""
Structured JSON logging for the billing service.

Provides structured logging with:
- JSON format output when enabled (BILLSYNC_LOG_JSON)
- Request context integration (request_id, user_id)
- Keyword context fields on every call: logger.info("...", event_id=...)
- Security and webhook event helpers
"""

import json
import logging
from datetime import datetime, timezone
from flask import Flask, has_request_context, request
from billsync.services.request_context import get_request_context, get_request_id


class StructuredFormatter(logging.Formatter):
    """Custom formatter for structured JSON logging."""

    def __init__(self, json_enabled: bool = True):
        super().__init__("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        self.json_enabled = json_enabled

    def format(self, record: logging.LogRecord) -> str:
        if not self.json_enabled:
            return super().format(record)

        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        if has_request_context():
            log_entry.update(get_request_context())

        if hasattr(record, 'extra_fields'):
            log_entry.update(record.extra_fields)

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class StructuredLogger:
    """Structured logger with request context integration."""

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def _log_with_context(self, level: int, message: str, exc_info=None, **kwargs):
        extra_fields = kwargs.copy()

        if 'request_id' not in extra_fields and has_request_context():
            extra_fields['request_id'] = get_request_id()

        self.logger.log(level, message, exc_info=exc_info, extra={'extra_fields': extra_fields})

    def debug(self, message: str, **kwargs):
        self._log_with_context(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs):
        self._log_with_context(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._log_with_context(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs):
        self._log_with_context(logging.ERROR, message, **kwargs)

    def exception(self, message: str, **kwargs):
        """Log at ERROR with the active exception's traceback."""
        self._log_with_context(logging.ERROR, message, exc_info=True, **kwargs)

    def critical(self, message: str, **kwargs):
        self._log_with_context(logging.CRITICAL, message, **kwargs)

    def log_security_event(self, event: str, severity: str = 'info', **kwargs):
        level_map = {
            'debug': logging.DEBUG,
            'info': logging.INFO,
            'warning': logging.WARNING,
            'error': logging.ERROR,
            'critical': logging.CRITICAL
        }
        level = level_map.get(severity.lower(), logging.INFO)

        self._log_with_context(
            level,
            f"Security event: {event}",
            event_type='security',
            security_event=event,
            severity=severity,
            **kwargs
        )

    def log_webhook_event(self, outcome: str, processor_event_type: str, **kwargs):
        """One line per handled processor event, whatever the outcome."""
        level = logging.WARNING if outcome in ('dropped', 'malformed') else logging.INFO
        self._log_with_context(
            level,
            f"Webhook {processor_event_type}: {outcome}",
            event_type='webhook',
            outcome=outcome,
            processor_event_type=processor_event_type,
            **kwargs
        )


def get_logger(name: str) -> StructuredLogger:
    """Get structured logger instance."""
    return StructuredLogger(name)


# Billing loggers pinned to LOG_LEVEL.
BILLING_LOGGERS = (
    'billsync.webhooks',
    'billsync.reconciliation',
    'billsync.sessions',
    'billsync.security',
)

# Probes and scrapes are not access-logged.
QUIET_PATHS = ('/health', '/healthz', '/readyz', '/metrics')


def configure_logging(app: Flask):
    """Install one console handler on the root logger with the structured formatter."""
    json_enabled = bool(app.config.get('BILLSYNC_LOG_JSON', True))
    level_name = str(app.config.get('LOG_LEVEL', 'INFO')).upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter(json_enabled=json_enabled))
    root_logger = logging.getLogger()
    root_logger.handlers[:] = [handler]
    root_logger.setLevel(level)

    app.logger.setLevel(level)
    for name in BILLING_LOGGERS:
        logging.getLogger(name).setLevel(level)

    get_logger('billsync.config').info("Logging configured", json_enabled=json_enabled,
                                       log_level=level_name)


def _log_response(response):
    """One access line per request; method, path, duration and user come from the request context."""
    if request.path not in QUIET_PATHS:
        get_logger('billsync.requests').info(
            f"{request.method} {request.path} {response.status_code}",
            event_type='request',
            status_code=response.status_code,
        )
    return response


def init_logging(app: Flask):
    """Initialize structured logging for Flask application."""
    configure_logging(app)
    app.after_request(_log_response)
    get_logger('billsync.startup').info("Application starting", debug=app.debug, testing=app.testing)


def log_signature_failure(reason: str, **kwargs):
    """Webhook signature mismatch: integrity issue or misconfigured secret."""
    get_logger('billsync.security').log_security_event(
        f"webhook_signature_invalid: {reason}",
        severity='warning',
        violation_type='webhook_signature_invalid',
        details=reason,
        **kwargs
    )


def log_ownership_violation(user_id: str, resource: str, **kwargs):
    """Caller tried to act on someone else's subscription or customer."""
    get_logger('billsync.security').log_security_event(
        f"ownership_violation: {resource}",
        severity='warning',
        violation_type='ownership_violation',
        user_id=user_id,
        resource=resource,
        **kwargs
    )
