"""
Document Blueprint — project documents and their verification.

Endpoints:
    GET    /api/v1/documents                          — visible documents (?status=&project_id=&category=)
    POST   /api/v1/projects/<id>/documents            — {name, storage_path, category?, mime_type?, file_size?}
    GET    /api/v1/projects/<id>/documents/summary
    GET    /api/v1/documents/<id>
    POST   /api/v1/documents/<id>/approve             — {notes?}
    POST   /api/v1/documents/<id>/reject              — {notes}
    POST   /api/v1/documents/<id>/revise              — {storage_path, name?, mime_type?, file_size?}
"""

from flask import Blueprint, jsonify, request

from app.auth import current_principal, principal_role, require_approved_principal
from app.core.exceptions import NotFoundError
from app.services import document_review
from app.services.project_lifecycle import get_project_or_404
from app.services.scope_filter import (
    DOCUMENT_QUEUE_ROLES,
    can_view_project,
    get_visible_document,
    list_visible_documents,
)
from app.utils.helpers import json_body, parse_pagination

document_bp = Blueprint("document_bp", __name__, url_prefix="/api/v1")


@document_bp.route("/documents", methods=["GET"])
def list_documents():
    principal = current_principal()
    page, per_page = parse_pagination()
    items, total = list_visible_documents(
        principal,
        page=page,
        per_page=per_page,
        status=request.args.get("status"),
        project_id=request.args.get("project_id", type=int),
        category=request.args.get("category"),
    )
    return jsonify({
        "items": [d.to_dict() for d in items],
        "total": total,
        "page": page,
        "per_page": per_page,
    }), 200


@document_bp.route("/projects/<int:project_id>/documents", methods=["POST"])
def upload_document(project_id):
    actor = require_approved_principal()
    document = document_review.upload_document(project_id, json_body(), actor)
    return jsonify(document.to_dict()), 201


@document_bp.route("/projects/<int:project_id>/documents/summary", methods=["GET"])
def document_summary(project_id):
    principal = require_approved_principal()
    project = get_project_or_404(project_id)
    if principal_role(principal) not in DOCUMENT_QUEUE_ROLES and not can_view_project(principal, project.id):
        raise NotFoundError(resource="Project", resource_id=project_id)
    return jsonify(document_review.document_summary(project)), 200


@document_bp.route("/documents/<int:document_id>", methods=["GET"])
def get_document(document_id):
    principal = current_principal()
    return jsonify(get_visible_document(principal, document_id).to_dict()), 200


def _review(document_id, action):
    principal = require_approved_principal()
    data = json_body()
    result = document_review.review_document(
        document_id, action, principal=principal, notes=data.get("notes"),
    )
    return jsonify(result), 200


@document_bp.route("/documents/<int:document_id>/approve", methods=["POST"])
def approve_document(document_id):
    return _review(document_id, "approve")


@document_bp.route("/documents/<int:document_id>/reject", methods=["POST"])
def reject_document(document_id):
    return _review(document_id, "reject")


@document_bp.route("/documents/<int:document_id>/revise", methods=["POST"])
def revise_document(document_id):
    actor = require_approved_principal()
    document = document_review.revise_document(document_id, json_body(), actor)
    return jsonify(document.to_dict()), 200
