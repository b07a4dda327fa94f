"""
Project Blueprint — scoped listing, intake, status machine and team.

Endpoints:
    GET    /api/v1/projects                         — visible projects (scope filter)
    POST   /api/v1/projects                         — create (admin roles)
    GET    /api/v1/projects/<id>                    — read (scope filter)
    PATCH  /api/v1/projects/<id>                    — update building metadata
    POST   /api/v1/projects/<id>/status             — {status}
    GET    /api/v1/projects/<id>/team               — team assignments
    POST   /api/v1/projects/<id>/team               — {profile_id, team_role}
    DELETE /api/v1/projects/<id>/team/<member_id>

Layer contract:
    - Blueprint: parse input, resolve the principal, call the service.
    - NO db.session calls here — writes are owned by project_lifecycle.
"""

from flask import Blueprint, jsonify, request

from app.auth import current_principal, principal_role, require_approved_principal
from app.services import project_lifecycle
from app.services.role_resolver import ADMIN_ROLES
from app.services.scope_filter import get_visible_project, list_visible_projects
from app.utils.helpers import json_body, parse_pagination

project_bp = Blueprint("project_bp", __name__, url_prefix="/api/v1")


def _managed_project(principal, project_id):
    """Admins manage any project by id; everyone else goes through the scope filter."""
    if principal_role(principal) in ADMIN_ROLES:
        return project_lifecycle.get_project_or_404(project_id)
    return get_visible_project(principal, project_id)


# ── Projects ───────────────────────────────────────────────────────────────────


@project_bp.route("/projects", methods=["GET"])
def list_projects():
    principal = current_principal()
    page, per_page = parse_pagination()
    items, total = list_visible_projects(
        principal,
        page=page,
        per_page=per_page,
        status=request.args.get("status"),
        client_id=request.args.get("client_id", type=int),
        search=request.args.get("q"),
    )
    return jsonify({
        "items": [p.to_dict() for p in items],
        "total": total,
        "page": page,
        "per_page": per_page,
    }), 200


@project_bp.route("/projects", methods=["POST"])
def create_project():
    actor = require_approved_principal()
    project = project_lifecycle.create_project(json_body(), actor)
    return jsonify(project.to_dict(include_team=True)), 201


@project_bp.route("/projects/<int:project_id>", methods=["GET"])
def get_project(project_id):
    principal = current_principal()
    project = get_visible_project(principal, project_id)
    return jsonify(project.to_dict(include_team=True)), 200


@project_bp.route("/projects/<int:project_id>", methods=["PATCH"])
def update_project(project_id):
    actor = require_approved_principal()
    project = _managed_project(actor, project_id)
    project = project_lifecycle.update_project(project, json_body(), actor)
    return jsonify(project.to_dict()), 200


@project_bp.route("/projects/<int:project_id>/status", methods=["POST"])
def transition_status(project_id):
    """
    Body: { "status": "submitted" }

    Returns 200 {project_id, previous_status, new_status, phase, phase_name, progress}
    """
    actor = require_approved_principal()
    data = json_body()
    if "status" not in data:
        return jsonify({"error": "status is required", "code": "ERR_VALIDATION_REQUIRED"}), 400
    _managed_project(actor, project_id)
    result = project_lifecycle.transition_project(project_id, data["status"], actor=actor)
    return jsonify(result), 200


# ── Team ───────────────────────────────────────────────────────────────────────


@project_bp.route("/projects/<int:project_id>/team", methods=["GET"])
def list_team(project_id):
    principal = current_principal()
    project = _managed_project(principal, project_id)
    return jsonify([m.to_dict() for m in project_lifecycle.list_team(project)]), 200


@project_bp.route("/projects/<int:project_id>/team", methods=["POST"])
def add_team_member(project_id):
    actor = require_approved_principal()
    project = _managed_project(actor, project_id)
    data = json_body()
    member = project_lifecycle.add_team_member(
        project, data.get("profile_id"), data.get("team_role"), actor,
    )
    return jsonify({"member": member.to_dict(), "project_lead_id": project.project_lead_id}), 201


@project_bp.route("/projects/<int:project_id>/team/<int:member_id>", methods=["DELETE"])
def remove_team_member(project_id, member_id):
    actor = require_approved_principal()
    project = _managed_project(actor, project_id)
    project_lifecycle.remove_team_member(project, member_id, actor)
    return jsonify({"message": "Team member removed", "project_lead_id": project.project_lead_id}), 200
