"""
Notification Blueprint — a principal's own inbox.

Provides:
    - Listing (unread filter, limit/offset) and the derived unread count
    - Change version from the NotificationHub for re-poll decisions
    - Mark one / mark all as read

Notifications are created by the workflow emitters only; there is no
create or delete endpoint.
"""

import logging

from flask import Blueprint, jsonify

from app.auth import current_principal
from app.services.notification import NotificationService
from app.services.notification_hub import get_hub
from app.utils.helpers import parse_limit_offset, query_bool

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notification_bp", __name__, url_prefix="/api/v1")


@notification_bp.route("/notifications", methods=["GET"])
def list_notifications():
    """List the caller's notifications, newest first."""
    principal = current_principal()
    limit, offset = parse_limit_offset()
    items, total = NotificationService.list_for_recipient(
        principal.id, unread_only=query_bool("unread"), limit=limit, offset=offset,
    )
    return jsonify({
        "items": [n.to_dict() for n in items],
        "total": total,
        "unread_count": NotificationService.unread_count(principal.id),
    }), 200


@notification_bp.route("/notifications/unread-count", methods=["GET"])
def unread_count():
    principal = current_principal()
    return jsonify({"unread_count": NotificationService.unread_count(principal.id)}), 200


@notification_bp.route("/notifications/version", methods=["GET"])
def notification_version():
    """Clients re-fetch the list whenever this version moves."""
    principal = current_principal()
    hub = get_hub()
    version = hub.version(principal.id) if hub is not None else 0
    return jsonify({"version": version}), 200


@notification_bp.route("/notifications/<int:notification_id>/read", methods=["POST"])
def mark_read(notification_id):
    principal = current_principal()
    notif = NotificationService.mark_read(notification_id, principal.id)
    return jsonify(notif.to_dict()), 200


@notification_bp.route("/notifications/read-all", methods=["POST"])
def mark_all_read():
    principal = current_principal()
    count = NotificationService.mark_all_read(principal.id)
    return jsonify({"marked_read": count}), 200
