"""
Inspection Blueprint — scheduling, field status, checklist and photos.

Endpoints:
    GET    /api/v1/projects/<id>/inspections
    POST   /api/v1/projects/<id>/inspections          — {inspector_id, scheduled_start, scheduled_end?}
    GET    /api/v1/inspections/<id>
    POST   /api/v1/inspections/<id>/transition        — {status, summary?}
    GET    /api/v1/inspections/<id>/checklist         — ?mine=true for own answers
    PUT    /api/v1/inspections/<id>/checklist         — one response or {"responses": [...]}
    GET    /api/v1/inspections/<id>/checklist/summary
    GET    /api/v1/inspections/<id>/photos
    POST   /api/v1/inspections/<id>/photos
    POST   /api/v1/photos                             — {inspection_id, storage_path, ...}
    GET    /api/v1/checklist-items                    — ?template=&category=
"""

from flask import Blueprint, jsonify, request

from app.auth import current_principal, principal_role, require_approved_principal
from app.core.exceptions import NotFoundError
from app.models.inspection import DEFAULT_CHECKLIST_TEMPLATE
from app.services import inspection_service
from app.services.project_lifecycle import STATUS_MANAGER_ROLES, get_project_or_404, lead_from_team
from app.services.scope_filter import can_view_project
from app.utils.helpers import json_body, query_bool

inspection_bp = Blueprint("inspection_bp", __name__, url_prefix="/api/v1")


def _readable_project(principal, project_id):
    project = get_project_or_404(project_id)
    if principal_role(principal) in STATUS_MANAGER_ROLES or lead_from_team(project.id) == principal.id:
        return project
    if can_view_project(principal, project.id):
        return project
    raise NotFoundError(resource="Project", resource_id=project_id)


def _readable_inspection(principal, inspection_id):
    """Assigned inspector, project lead, status managers or principals who see the project."""
    inspection = inspection_service.get_inspection_or_404(inspection_id)
    if inspection.inspector_id == principal.id:
        return inspection
    try:
        _readable_project(principal, inspection.project_id)
    except NotFoundError:
        raise NotFoundError(resource="Inspection", resource_id=inspection_id)
    return inspection


# ── Inspections ────────────────────────────────────────────────────────────────


@inspection_bp.route("/projects/<int:project_id>/inspections", methods=["GET"])
def list_inspections(project_id):
    principal = current_principal()
    project = _readable_project(principal, project_id)
    return jsonify([i.to_dict() for i in inspection_service.list_inspections(project)]), 200


@inspection_bp.route("/projects/<int:project_id>/inspections", methods=["POST"])
def schedule_inspection(project_id):
    actor = require_approved_principal()
    project = get_project_or_404(project_id)
    inspection = inspection_service.schedule_inspection(project, json_body(), actor)
    return jsonify(inspection.to_dict()), 201


@inspection_bp.route("/inspections/<int:inspection_id>", methods=["GET"])
def get_inspection(inspection_id):
    principal = current_principal()
    inspection = _readable_inspection(principal, inspection_id)
    result = inspection.to_dict()
    result["photo_count"] = inspection_service.photo_count(inspection)
    return jsonify(result), 200


@inspection_bp.route("/inspections/<int:inspection_id>/transition", methods=["POST"])
def transition_inspection(inspection_id):
    actor = require_approved_principal()
    data = json_body()
    if not data.get("status"):
        return jsonify({"error": "status is required", "code": "ERR_VALIDATION_REQUIRED"}), 400
    result = inspection_service.transition_inspection(
        inspection_id, data["status"], actor, summary=data.get("summary"),
    )
    return jsonify(result), 200


# ── Checklist ──────────────────────────────────────────────────────────────────


@inspection_bp.route("/checklist-items", methods=["GET"])
def list_checklist_items():
    current_principal()
    items = inspection_service.list_checklist_items(
        request.args.get("template", DEFAULT_CHECKLIST_TEMPLATE),
        category=request.args.get("category"),
    )
    return jsonify([i.to_dict() for i in items]), 200


@inspection_bp.route("/inspections/<int:inspection_id>/checklist", methods=["GET"])
def get_checklist(inspection_id):
    principal = current_principal()
    inspection = _readable_inspection(principal, inspection_id)
    responder_id = principal.id if query_bool("mine") else None
    responses = inspection_service.list_checklist_responses(inspection, responder_id=responder_id)
    return jsonify([r.to_dict() for r in responses]), 200


@inspection_bp.route("/inspections/<int:inspection_id>/checklist", methods=["PUT"])
def upsert_checklist(inspection_id):
    """
    Body: { "checklist_item_id": 3, "response": {...}, "notes": "...", "geotag": {...} }
       or { "responses": [ {...}, {...} ] }

    Returns 200 with the stored responses (one per item for this responder).
    """
    actor = require_approved_principal()
    data = json_body()
    entries = data["responses"] if "responses" in data else [data]
    if not isinstance(entries, list):
        return jsonify({"error": "responses must be a list", "code": "ERR_VALIDATION_INVALID"}), 400
    responses = inspection_service.upsert_checklist_responses(inspection_id, entries, actor)
    return jsonify([r.to_dict() for r in responses]), 200


@inspection_bp.route("/inspections/<int:inspection_id>/checklist/summary", methods=["GET"])
def checklist_summary(inspection_id):
    principal = current_principal()
    inspection = _readable_inspection(principal, inspection_id)
    return jsonify(inspection_service.checklist_summary(inspection)), 200


# ── Photos ─────────────────────────────────────────────────────────────────────


@inspection_bp.route("/inspections/<int:inspection_id>/photos", methods=["GET"])
def list_photos(inspection_id):
    principal = current_principal()
    inspection = _readable_inspection(principal, inspection_id)
    return jsonify([p.to_dict() for p in inspection_service.list_photos(inspection)]), 200


@inspection_bp.route("/inspections/<int:inspection_id>/photos", methods=["POST"])
def add_inspection_photo(inspection_id):
    actor = require_approved_principal()
    photo = inspection_service.add_photo(json_body(), actor, inspection_id=inspection_id)
    return jsonify(photo.to_dict()), 201


@inspection_bp.route("/photos", methods=["POST"])
def add_photo():
    """Photos without an inspection reference are rejected (400)."""
    actor = require_approved_principal()
    photo = inspection_service.add_photo(json_body(), actor)
    return jsonify(photo.to_dict()), 201
