"""
Form Wizard

A declarative multi-section form engine served as a JSON API.

Features:
- Forms described entirely by a JSON configuration
- Conditional visibility and per-field validation rules
- Gated section navigation and submission
- Remote option sources with per-session caching
- CSRF protection, rate limiting and security headers
- Hash-chained audit trail per session
"""

import os
from datetime import datetime, timedelta, timezone

import httpx
from flask import Flask, g, request
from flask_wtf.csrf import CSRFError

from formwizard.config_model import load_config
from formwizard.options import HttpxTransport
from formwizard.session import FormSession


DEFAULT_FORM_PATH = os.path.join(os.path.dirname(__file__), 'forms', 'example.json')


def _submit_sink(app):
    """Deliver submitted answers to the configured webhook, or log them."""
    url = app.config.get('SUBMIT_WEBHOOK_URL')

    def deliver(answers):
        if not url:
            app.logger.info(f'Form submitted with {len(answers)} answers')
            return
        response = httpx.post(url, json=answers, timeout=app.config['OPTIONS_HTTP_TIMEOUT'])
        response.raise_for_status()
        app.logger.info(f'Submission delivered to {url} ({response.status_code})')

    return deliver


def create_app(test_config=None):
    """Application factory pattern."""
    app = Flask(__name__, instance_relative_config=True)

    # Default configuration
    app.config.from_mapping(
        SECRET_KEY=os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production'),

        # Form settings
        FORM_CONFIG=None,
        FORM_CONFIG_PATH=os.environ.get('FORM_CONFIG_PATH', DEFAULT_FORM_PATH),
        OPTIONS_BASE_URL=os.environ.get('OPTIONS_BASE_URL', ''),
        OPTIONS_HTTP_TIMEOUT=float(os.environ.get('OPTIONS_HTTP_TIMEOUT', 10)),
        OPTIONS_TRANSPORT=None,
        PREFETCH_ON_NAVIGATION=True,
        SUBMIT_WEBHOOK_URL=os.environ.get('SUBMIT_WEBHOOK_URL', ''),
        MAX_SESSIONS=int(os.environ.get('MAX_SESSIONS', 1000)),
        SESSION_IDLE_TIMEOUT=int(os.environ.get('SESSION_IDLE_TIMEOUT', 3600)),

        # Session cookie settings
        SESSION_COOKIE_SECURE=os.environ.get('SESSION_COOKIE_SECURE', 'true').lower() == 'true',
        SESSION_COOKIE_HTTPONLY=True,
        SESSION_COOKIE_SAMESITE='Lax',
        PERMANENT_SESSION_LIFETIME=timedelta(hours=1),

        # CSRF settings
        WTF_CSRF_ENABLED=True,
        WTF_CSRF_TIME_LIMIT=3600,  # 1 hour
        WTF_CSRF_SSL_STRICT=False,  # Disabled for development

        # Rate limiting settings
        RATELIMIT_STORAGE_URI=os.environ.get('REDIS_URL', 'memory://'),
        RATELIMIT_STRATEGY='fixed-window',
        RATELIMIT_DEFAULT='100 per minute',
        RATELIMIT_HEADERS_ENABLED=True,
    )

    if test_config is None:
        # Load instance config if it exists
        app.config.from_pyfile('config.py', silent=True)
    else:
        # Load test config
        app.config.from_mapping(test_config)

    # A broken form configuration stops startup here
    form_config = load_config(app.config['FORM_CONFIG'] or app.config['FORM_CONFIG_PATH'])
    app.logger.info(
        f'Loaded form {form_config.title!r} with {form_config.section_count} sections'
    )

    transport = app.config['OPTIONS_TRANSPORT'] or HttpxTransport(
        timeout=app.config['OPTIONS_HTTP_TIMEOUT']
    )
    sink = _submit_sink(app)

    from formwizard.routes import SessionStore, api_bp

    def new_session(session_id):
        return FormSession(
            form_config,
            transport=transport,
            submit_sink=sink,
            session_id=session_id,
            base_url=app.config['OPTIONS_BASE_URL'] or None
        )

    app.extensions['formwizard'] = {
        'config': form_config,
        'sessions': SessionStore(
            new_session,
            max_sessions=app.config['MAX_SESSIONS'],
            idle_timeout=app.config['SESSION_IDLE_TIMEOUT']
        ),
    }

    from formwizard.security import add_security_headers, init_security
    init_security(app)

    # Register blueprints
    app.register_blueprint(api_bp)

    # Add security headers to all responses
    @app.after_request
    def after_request(response):
        """Add security headers to all responses."""
        return add_security_headers(response)

    # Request logging
    @app.before_request
    def before_request():
        """Log request start."""
        g.request_start_time = datetime.now(timezone.utc)

    @app.after_request
    def log_request(response):
        """Log request completion."""
        if hasattr(g, 'request_start_time'):
            duration = (datetime.now(timezone.utc) - g.request_start_time).total_seconds()
            app.logger.info(
                f'{request.method} {request.path} - {response.status_code} - {duration:.3f}s'
            )
        return response

    # Error handlers
    @app.errorhandler(404)
    def not_found(error):
        return {'ok': False, 'error': 'Not found'}, 404

    @app.errorhandler(CSRFError)
    def csrf_error(error):
        app.logger.warning(f'CSRF rejected: {request.path} - {error.description}')
        return {'ok': False, 'error': error.description}, 400

    @app.errorhandler(429)
    def rate_limited(error):
        app.logger.warning(f'Rate limit exceeded: {request.remote_addr} {request.path}')
        return {'ok': False, 'error': 'Too many requests'}, 429

    @app.errorhandler(500)
    def internal_error(error):
        """Handle internal errors."""
        app.logger.error(f'Internal error: {str(error)}')
        return {'ok': False, 'error': 'Internal server error'}, 500

    return app
