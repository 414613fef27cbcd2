"""Shared parsing helpers for blueprints and filters.

parse_date:           returns None on bad input
parse_date_input:     raises ValueError on bad input
parse_datetime_input: raises ValueError on bad input
get_actor:            audit actor from the ``X-Actor`` request header
"""
import logging
from datetime import date, datetime, timezone

from flask import request

logger = logging.getLogger(__name__)

DEFAULT_ACTOR = "system"


def parse_date(value):
    """Parse a date string (ISO or DD.MM.YYYY) to a date object.

    Returns None for empty/invalid input.
    """
    if not value:
        return None
    if isinstance(value, date):
        return value
    try:
        return parse_date_input(value)
    except (ValueError, TypeError):
        return None


def parse_date_input(value):
    """Parse a date string, raising ValueError on bad input.

    Supports: YYYY-MM-DD, YYYY-MM-DDTHH:MM:SS, DD.MM.YYYY, date objects.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    value = str(value)
    try:
        return date.fromisoformat(value)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(value).date()
    except ValueError:
        pass
    try:
        return datetime.strptime(value, "%d.%m.%Y").date()
    except ValueError as exc:
        raise ValueError(
            f"Invalid date {value!r}. Use YYYY-MM-DD or DD.MM.YYYY."
        ) from exc


def parse_datetime_input(value):
    """Parse an ISO timestamp to an aware UTC datetime.

    Naive values are taken as UTC.  A bare date (``YYYY-MM-DD`` or a
    ``date``) is returned as a ``date`` so range filters can treat it as
    the whole day.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        return value
    else:
        try:
            return date.fromisoformat(str(value))
        except ValueError:
            pass
        try:
            parsed = datetime.fromisoformat(str(value))
        except ValueError as exc:
            raise ValueError(
                f"Invalid timestamp {value!r}. Use ISO 8601 (YYYY-MM-DD[THH:MM:SS])."
            ) from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def get_actor():
    """Resolve the acting user for audit rows from the request."""
    actor = (request.headers.get("X-Actor") or "").strip()
    return actor[:150] or DEFAULT_ACTOR
