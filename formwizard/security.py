"""
Security hardening module.

Provides CSRF protection, rate limiting, security headers and input
sanitization for the form API.
"""

import re
from typing import Any

from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_wtf.csrf import CSRFProtect


# Initialize extensions at module level
csrf = CSRFProtect()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["1000 per day", "200 per hour"]
)


# Rate limit configurations
RATE_LIMITS = {
    'session_create': "30 per hour",
    'answers': "600 per hour",
    'navigation': "300 per hour",
    'options': "120 per hour",
    'import': "30 per hour",
}


def add_security_headers(response):
    """
    Add security headers to response.
    This is a standalone function that can be used as an after_request handler.
    """
    # Content Security Policy
    response.headers['Content-Security-Policy'] = "default-src 'none'; frame-ancestors 'none'"

    # Prevent MIME type sniffing
    response.headers['X-Content-Type-Options'] = 'nosniff'

    # Prevent clickjacking
    response.headers['X-Frame-Options'] = 'DENY'

    # Referrer policy
    response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'

    return response


def init_security(app):
    """Initialize security extensions with the app."""
    # Initialize CSRF protection
    csrf.init_app(app)

    # Initialize rate limiter
    limiter.init_app(app)


def rate_limit(kind: str):
    """Decorator applying the configured limit for an endpoint kind."""
    return limiter.limit(RATE_LIMITS[kind])


# Input sanitization
HTML_TAG_PATTERN = re.compile(r'<[^>]+>')
SCRIPT_PATTERN = re.compile(r'<script[^>]*>.*?</script>', re.DOTALL | re.IGNORECASE)
STYLE_PATTERN = re.compile(r'<style[^>]*>.*?</style>', re.DOTALL | re.IGNORECASE)
EVENT_HANDLER_PATTERN = re.compile(r'\son\w+\s*=\s*("[^"]*"|\'[^\']*\'|[^\s>]+)', re.IGNORECASE)
JS_URL_PATTERN = re.compile(r'(href|src)\s*=\s*("|\')?\s*javascript:[^"\'>\s]*("|\')?', re.IGNORECASE)
ALLOWED_TAGS = {'p', 'br', 'b', 'strong', 'i', 'em', 'u', 'ul', 'ol', 'li', 'a', 'h3', 'h4'}


def sanitize_string(value: Any, max_length: int = 10000) -> str:
    """
    Strip all markup from a string value.

    Args:
        value: Input string
        max_length: Maximum allowed length

    Returns:
        Sanitized string
    """
    if value is None:
        return ''

    if not isinstance(value, str):
        value = str(value)

    # Remove script tags
    value = SCRIPT_PATTERN.sub('', value)

    # Remove all HTML tags
    value = HTML_TAG_PATTERN.sub('', value)

    # Limit length
    value = value[:max_length]

    # Strip whitespace
    return value.strip()


def sanitize_rich_text(value: Any, max_length: int = 20000) -> str:
    """
    Sanitize rich text (section descriptions) for display.

    Script and style blocks, event handler attributes and javascript: urls
    are removed; tags outside a small formatting allow-list are dropped
    while their text is kept.
    """
    if value is None:
        return ''

    if not isinstance(value, str):
        value = str(value)

    value = SCRIPT_PATTERN.sub('', value)
    value = STYLE_PATTERN.sub('', value)
    value = EVENT_HANDLER_PATTERN.sub('', value)
    value = JS_URL_PATTERN.sub('', value)

    def _keep_allowed(match):
        tag = match.group(0)
        name = re.match(r'</?\s*([a-zA-Z0-9]+)', tag)
        if name and name.group(1).lower() in ALLOWED_TAGS:
            return tag
        return ''

    value = HTML_TAG_PATTERN.sub(_keep_allowed, value)
    return value[:max_length].strip()

