"""Shared request-parsing helpers for the ARP blueprint.

parse_date_input:  raises ValueError on bad input (blueprint maps it to 400)
parse_json_body:   the request's JSON object, or ValueError
"""
import logging
from datetime import date, datetime

from flask import request

logger = logging.getLogger(__name__)


def parse_date_input(value):
    """Parse a date string, raising ValueError on bad input.

    Supports: YYYY-MM-DD, YYYY-MM-DDTHH:MM:SS, DD.MM.YYYY, date objects.
    Returns None for empty input.
    """
    if not value:
        return None
    if isinstance(value, date):
        return value
    value = str(value).strip()
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
            "Invalid date format. Use YYYY-MM-DD or DD.MM.YYYY."
        ) from exc


def parse_json_body() -> dict:
    """Return the JSON object body; an empty body is an empty dict.

    Raises ValueError when the body is present but not a JSON object.
    """
    if not request.get_data(cache=True):
        return {}
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValueError("Request body must be a JSON object")
    return data
