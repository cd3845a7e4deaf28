"""
Utility functions for date handling, input masks, hashing, and coercion.
"""

import hashlib
import json
from datetime import date, datetime, timedelta
from typing import Any, Optional


def calculate_sha256(data: bytes) -> str:
    """
    Calculate SHA256 hash of data.

    Args:
        data: Bytes to hash

    Returns:
        Hexadecimal hash string
    """
    return hashlib.sha256(data).hexdigest()


def canonical_json(value: Any) -> str:
    """Serialize a value deterministically (sorted keys, no whitespace)."""
    return json.dumps(value, sort_keys=True, separators=(',', ':'), default=str)


def parse_date(value: Any) -> Optional[date]:
    """
    Parse a date value into a ``date``.

    Args:
        value: ``date``, ``datetime``, ISO string (with or without time part)

    Returns:
        The parsed date, or None if the value cannot be parsed
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        return value.date()

    if isinstance(value, date):
        return value

    if not isinstance(value, str) or not value.strip():
        return None

    str_value = value.strip()

    # Try ISO format
    try:
        return datetime.fromisoformat(str_value.replace('Z', '+00:00')).date()
    except ValueError:
        pass

    # Try YYYY-MM-DD format on the leading part
    try:
        return datetime.strptime(str_value[:10], '%Y-%m-%d').date()
    except ValueError:
        return None


def resolve_date_bound(bound: Any, today: Optional[date] = None) -> Optional[date]:
    """
    Resolve a configured date bound to a concrete date.

    Args:
        bound: ``"today"``, an integer day offset from today, or an absolute date
        today: Evaluation instant (defaults to the current date)

    Returns:
        The resolved date, or None when the bound is unset or unparseable
    """
    if bound is None:
        return None

    if today is None:
        today = date.today()

    if isinstance(bound, str) and bound.strip().lower() == 'today':
        return today

    if isinstance(bound, int) and not isinstance(bound, bool):
        return today + timedelta(days=bound)

    return parse_date(bound)


def format_date(date_value: Any) -> str:
    """
    Format a date value into a display string (DD Month YYYY).

    Unparseable values are returned as-is.
    """
    if date_value is None:
        return ''

    parsed = parse_date(date_value)
    if parsed is None:
        return str(date_value)
    return parsed.strftime('%d %B %Y')


def apply_input_mask(pattern: str, raw: Any) -> str:
    """
    Fill the ``#`` slots of an input mask with the digits of ``raw``.

    Non-digit input characters are discarded. Unfilled slots become empty,
    so ``apply_input_mask('(###) ###-####', '0412')`` gives ``'(041) 2-'``.

    Args:
        pattern: Mask such as ``'###-###-####'``
        raw: User input

    Returns:
        The formatted string
    """
    digits = [ch for ch in str(raw or '') if ch.isdigit()]
    out = []
    position = 0
    for ch in pattern:
        if ch == '#':
            out.append(digits[position] if position < len(digits) else '')
            position += 1
        else:
            out.append(ch)
    return ''.join(out)


def coerce_to_float(value: Any) -> Optional[float]:
    """Coerce numbers and numeric strings to float; anything else gives None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def is_empty(value: Any) -> bool:
    """True for absent values, empty strings and empty lists."""
    if value is None:
        return True
    if isinstance(value, str):
        return value == ''
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    return False
