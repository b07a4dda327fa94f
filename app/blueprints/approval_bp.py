"""
Approval Blueprint — sequential report sign-off.

Routes:
  POST /api/v1/approvals/<report_id>/<role>/approve   — {comment?}
  POST /api/v1/approvals/<report_id>/<role>/reject    — {comment?}

Both return ``200 {message, newStatus, previousStatus, changed, projectTransition}``.
Error mapping (see ``register_error_handlers``):
  400 unknown role / action, 401 unauthenticated, 403 wrong or unapproved role,
  404 report missing or out of scope, 409 out of sequence / halted / draft / race.
"""

import logging

from flask import Blueprint, jsonify

from app.auth import current_principal
from app.services import approval_chain
from app.utils.helpers import json_body

logger = logging.getLogger(__name__)

approval_bp = Blueprint("approval_bp", __name__, url_prefix="/api/v1/approvals")


def _decide(report_id, role, action):
    principal = current_principal()
    data = json_body()
    result = approval_chain.decide(
        report_id, role, action, principal=principal, comment=data.get("comment"),
    )
    return jsonify(result), 200


@approval_bp.route("/<int:report_id>/<role>/approve", methods=["POST"])
def approve(report_id, role):
    return _decide(report_id, role, "approve")


@approval_bp.route("/<int:report_id>/<role>/reject", methods=["POST"])
def reject(report_id, role):
    return _decide(report_id, role, "reject")
