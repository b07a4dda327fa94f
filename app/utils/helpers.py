"""Shared request/parsing helpers used by blueprints and services.

parse_datetime:    returns an aware UTC datetime or None
parse_pagination:  page / per_page from query args, clamped to MAX_PAGE_SIZE
json_body:         request JSON as a dict, never None
"""
import logging
from datetime import datetime, timezone

from flask import current_app, request

from app.core.exceptions import ValidationError

logger = logging.getLogger(__name__)


def parse_datetime(value):
    """Parse an ISO-8601 timestamp. Naive values are taken as UTC.

    Returns None for empty/invalid input.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        raw = str(value).strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_pagination(default_per_page=20):
    """Read ``page`` / ``per_page`` from the query string.

    Non-numeric values raise ValidationError; sizes are clamped to
    ``MAX_PAGE_SIZE`` so no caller can ask for an unbounded page.
    """
    try:
        page = int(request.args.get("page", 1))
        per_page = int(request.args.get("per_page", default_per_page))
    except (TypeError, ValueError):
        raise ValidationError("page and per_page must be integers", details={"page": "invalid"})
    max_size = current_app.config.get("MAX_PAGE_SIZE", 100)
    return max(page, 1), min(max(per_page, 1), max_size)


def parse_limit_offset(default_limit=50):
    try:
        limit = int(request.args.get("limit", default_limit))
        offset = int(request.args.get("offset", 0))
    except (TypeError, ValueError):
        raise ValidationError("limit and offset must be integers", details={"limit": "invalid"})
    max_size = current_app.config.get("MAX_PAGE_SIZE", 100)
    return min(max(limit, 1), max_size), max(offset, 0)


def json_body():
    """Request JSON as a dict; a non-object body is a ValidationError."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object", details={"body": "invalid"})
    return data


def query_bool(name, default=False):
    raw = request.args.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")
