# -*- coding: utf-8 -*-
"""
Test suite for structured logging and request context propagation.

Tests request_id generation, user context, the JSON formatter, and the
billing-specific log helpers.
"""

import pytest
import json
import uuid
import logging
import io
import sys
from flask import Flask

from billsync.services.request_context import (
    init_request_context, get_request_id, get_request_context, set_user_context
)
from billsync.services.structured_logging import (
    StructuredLogger, StructuredFormatter, init_logging, log_signature_failure
)


@pytest.fixture
def app():
    """Bare Flask app; only the request context middleware is installed."""
    app = Flask(__name__)
    app.config['TESTING'] = True
    init_request_context(app)
    return app


@pytest.fixture
def capture():
    """Attach a JSON handler to a logger and return the captured lines."""
    handlers = []

    def _capture(logger_name):
        stream = io.StringIO()
        handler = logging.StreamHandler(stream)
        handler.setFormatter(StructuredFormatter(json_enabled=True))
        logger = logging.getLogger(logger_name)
        logger.addHandler(handler)
        logger.setLevel(logging.DEBUG)
        handlers.append((logger, handler))
        return lambda: [json.loads(line) for line in stream.getvalue().strip().split('\n') if line]

    yield _capture

    for logger, handler in handlers:
        logger.removeHandler(handler)


class TestRequestContextMiddleware:
    """Test request context middleware functionality."""

    def test_request_id_in_response_headers(self, app):
        """Test that request_id is included in response headers."""

        @app.route('/test')
        def test_route():
            return {'request_id': get_request_id()}

        response = app.test_client().get('/test')

        request_id = response.headers['X-Request-ID']
        uuid.UUID(request_id)
        assert response.get_json()['request_id'] == request_id
        assert response.headers['X-Response-Time'].endswith('ms')

    def test_incoming_request_id_kept(self, app):
        """Test that a valid incoming X-Request-ID is propagated."""
        incoming = str(uuid.uuid4())

        @app.route('/test')
        def test_route():
            return {'request_id': get_request_id()}

        response = app.test_client().get('/test', headers={'X-Request-ID': incoming})

        assert response.get_json()['request_id'] == incoming

    def test_invalid_request_id_replaced(self, app):
        """Test that a non-UUID X-Request-ID is replaced."""

        @app.route('/test')
        def test_route():
            return {'request_id': get_request_id()}

        response = app.test_client().get('/test', headers={'X-Request-ID': 'not-a-uuid'})

        assert response.get_json()['request_id'] != 'not-a-uuid'

    def test_different_request_ids_for_different_requests(self, app):
        """Test that different requests get different request_ids."""

        @app.route('/test')
        def test_route():
            return {'request_id': get_request_id()}

        client = app.test_client()
        request_ids = {client.get('/test').get_json()['request_id'] for _ in range(5)}

        assert len(request_ids) == 5

    def test_user_context_integration(self, app):
        """Test that the authenticated user appears in the request context."""

        @app.route('/test', methods=['POST'])
        def test_route():
            before = dict(get_request_context())
            set_user_context('user-123')
            return {'before': before, 'after': get_request_context()}

        data = app.test_client().post('/test', json={}).get_json()

        assert 'user_id' not in data['before']
        assert data['after']['user_id'] == 'user-123'
        assert data['after']['method'] == 'POST'
        assert data['after']['path'] == '/test'


class TestStructuredFormatter:
    """Test structured logging formatter."""

    def _record(self, **kwargs):
        return logging.LogRecord(
            name='test.logger',
            level=logging.INFO,
            pathname='test.py',
            lineno=42,
            msg='Test message',
            args=(),
            exc_info=kwargs.get('exc_info')
        )

    def test_json_formatting_enabled(self):
        """Test JSON formatting when enabled."""
        data = json.loads(StructuredFormatter(json_enabled=True).format(self._record()))

        assert data['level'] == 'INFO'
        assert data['logger'] == 'test.logger'
        assert data['message'] == 'Test message'
        assert data['line'] == 42
        assert 'timestamp' in data

    def test_json_formatting_disabled(self):
        """Test plain text formatting when JSON is disabled."""
        formatted = StructuredFormatter(json_enabled=False).format(self._record())

        with pytest.raises(json.JSONDecodeError):
            json.loads(formatted)
        assert 'Test message' in formatted

    def test_extra_fields_included(self):
        """Test that extra fields are included in JSON output."""
        record = self._record()
        record.extra_fields = {'event_id': 'evt_1', 'outcome': 'applied'}

        data = json.loads(StructuredFormatter(json_enabled=True).format(record))

        assert data['event_id'] == 'evt_1'
        assert data['outcome'] == 'applied'

    def test_exception_formatting(self):
        """Test exception formatting in JSON logs."""
        try:
            raise ValueError("Test exception")
        except ValueError:
            record = self._record(exc_info=sys.exc_info())

        data = json.loads(StructuredFormatter(json_enabled=True).format(record))

        assert 'ValueError' in data['exception']
        assert 'Test exception' in data['exception']


class TestStructuredLogger:
    """Test structured logger functionality."""

    def test_keyword_fields(self, capture):
        """Test that keyword arguments become top-level JSON fields."""
        lines = capture('test.kwargs')
        StructuredLogger('test.kwargs').info('Applied', event_id='evt_1', user_id='u1')

        entry = lines()[0]
        assert entry['message'] == 'Applied'
        assert entry['event_id'] == 'evt_1'
        assert entry['user_id'] == 'u1'

    def test_webhook_event_levels(self, capture):
        """Test that dropped events log at WARNING and applied ones at INFO."""
        lines = capture('test.webhooks')
        logger = StructuredLogger('test.webhooks')

        logger.log_webhook_event('applied', 'invoice.paid', event_id='evt_1')
        logger.log_webhook_event('dropped', 'checkout.session.completed', event_id='evt_2')

        applied, dropped = lines()
        assert applied['level'] == 'INFO'
        assert applied['event_type'] == 'webhook'
        assert applied['processor_event_type'] == 'invoice.paid'
        assert dropped['level'] == 'WARNING'
        assert dropped['outcome'] == 'dropped'

    def test_signature_failure_is_security_event(self, capture):
        """Test that signature failures go to the security logger."""
        lines = capture('billsync.security')

        log_signature_failure('no matching signature')

        entry = lines()[0]
        assert entry['event_type'] == 'security'
        assert entry['violation_type'] == 'webhook_signature_invalid'
        assert entry['level'] == 'WARNING'

    def test_request_id_attached_inside_request(self, app, capture):
        """Test that log lines inside a request carry its request_id."""
        lines = capture('test.request')

        @app.route('/test')
        def test_route():
            StructuredLogger('test.request').info('inside')
            return {'request_id': get_request_id()}

        response = app.test_client().get('/test')

        assert lines()[0]['request_id'] == response.get_json()['request_id']


class TestAccessLog:
    """Per-request access line written by init_logging."""

    def test_one_line_per_request(self, capture):
        """Test that application requests are logged and health probes are not."""
        app = Flask(__name__)
        app.config['BILLSYNC_LOG_JSON'] = True
        init_request_context(app)
        init_logging(app)
        lines = capture('billsync.requests')

        @app.route('/api/thing', methods=['POST'])
        def thing():
            return {'ok': True}

        @app.route('/healthz')
        def healthz():
            return {'status': 'healthy'}

        client = app.test_client()
        client.post('/api/thing', json={})
        client.get('/healthz')

        entries = lines()
        assert len(entries) == 1
        assert entries[0]['event_type'] == 'request'
        assert entries[0]['status_code'] == 200
        assert entries[0]['path'] == '/api/thing'
        assert entries[0]['method'] == 'POST'
