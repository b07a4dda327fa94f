"""
Admin Blueprint — principal administration.

Only ``superadmin`` and ``admin_lead`` may call these routes; every action is
written to the audit log by ``user_service``.

  GET    /api/v1/admin/users?status=pending   — list profiles
  POST   /api/v1/admin/users/<id>/approve     — {role?}
  POST   /api/v1/admin/users/<id>/reject      — {reason?}
  DELETE /api/v1/admin/users/<id>             — archive (soft delete)
"""

from flask import Blueprint, jsonify, request

from app.auth import require_role
from app.services import user_service
from app.services.role_resolver import USER_ADMIN_ROLES
from app.utils.helpers import json_body, parse_pagination

admin_bp = Blueprint("admin_bp", __name__, url_prefix="/api/v1/admin")


@admin_bp.route("/users", methods=["GET"])
def list_users():
    actor = require_role(*USER_ADMIN_ROLES)
    page, per_page = parse_pagination(default_per_page=50)
    result = user_service.list_profiles(
        actor, status=request.args.get("status"), page=page, per_page=per_page,
    )
    return jsonify(result), 200


@admin_bp.route("/users/<int:profile_id>/approve", methods=["POST"])
def approve_user(profile_id):
    actor = require_role(*USER_ADMIN_ROLES)
    data = json_body()
    profile = user_service.approve_profile(profile_id, actor, role=data.get("role"))
    return jsonify({"profile": profile.to_dict(), "message": "Profile approved"}), 200


@admin_bp.route("/users/<int:profile_id>/reject", methods=["POST"])
def reject_user(profile_id):
    actor = require_role(*USER_ADMIN_ROLES)
    data = json_body()
    profile = user_service.reject_profile(profile_id, actor, reason=data.get("reason"))
    return jsonify({"profile": profile.to_dict(), "message": "Profile rejected"}), 200


@admin_bp.route("/users/<int:profile_id>", methods=["DELETE"])
def delete_user(profile_id):
    actor = require_role(*USER_ADMIN_ROLES)
    profile = user_service.delete_profile(profile_id, actor)
    return jsonify({"profile": profile.to_dict(), "message": "Profile deleted"}), 200
