"""
Report Blueprint — report drafting and lifecycle outside the approval decisions.

Endpoints:
    GET    /api/v1/reports                      — visible reports (scope filter)
    POST   /api/v1/reports                      — {project_id, title, inspection_id?, findings?, recommendations?}
    GET    /api/v1/reports/<id>
    PATCH  /api/v1/reports/<id>                 — edit while draft
    POST   /api/v1/reports/<id>/submit          — draft → submitted (author)
    POST   /api/v1/reports/<id>/issue           — <last>_approved → issued
    POST   /api/v1/reports/<id>/close           — *_rejected → closed
    POST   /api/v1/reports/<id>/resubmit        — new draft superseding a rejected report
    GET    /api/v1/reports/<id>/approvals       — approval log + derived status
"""

from flask import Blueprint, jsonify, request

from app.auth import current_principal, require_approved_principal
from app.services import approval_chain
from app.services.scope_filter import get_visible_report, list_visible_reports
from app.utils.helpers import json_body, parse_pagination

report_bp = Blueprint("report_bp", __name__, url_prefix="/api/v1")


@report_bp.route("/reports", methods=["GET"])
def list_reports():
    principal = current_principal()
    page, per_page = parse_pagination()
    items, total = list_visible_reports(
        principal,
        page=page,
        per_page=per_page,
        status=request.args.get("status"),
        project_id=request.args.get("project_id", type=int),
    )
    return jsonify({
        "items": [r.to_dict() for r in items],
        "total": total,
        "page": page,
        "per_page": per_page,
    }), 200


@report_bp.route("/reports", methods=["POST"])
def create_report():
    actor = require_approved_principal()
    report = approval_chain.create_report_and_commit(json_body(), actor)
    return jsonify(report.to_dict()), 201


@report_bp.route("/reports/<int:report_id>", methods=["GET"])
def get_report(report_id):
    principal = current_principal()
    report = get_visible_report(principal, report_id)
    return jsonify(report.to_dict()), 200


@report_bp.route("/reports/<int:report_id>", methods=["PATCH"])
def update_report(report_id):
    actor = require_approved_principal()
    report = approval_chain.update_report(report_id, json_body(), actor)
    return jsonify(report.to_dict()), 200


@report_bp.route("/reports/<int:report_id>/submit", methods=["POST"])
def submit_report(report_id):
    actor = require_approved_principal()
    return jsonify(approval_chain.submit_report(report_id, actor)), 200


@report_bp.route("/reports/<int:report_id>/issue", methods=["POST"])
def issue_report(report_id):
    actor = require_approved_principal()
    return jsonify(approval_chain.issue_report(report_id, actor)), 200


@report_bp.route("/reports/<int:report_id>/close", methods=["POST"])
def close_report(report_id):
    actor = require_approved_principal()
    return jsonify(approval_chain.close_report(report_id, actor)), 200


@report_bp.route("/reports/<int:report_id>/resubmit", methods=["POST"])
def resubmit_report(report_id):
    actor = require_approved_principal()
    new_report = approval_chain.resubmit_report(report_id, actor, json_body())
    return jsonify(new_report.to_dict()), 201


@report_bp.route("/reports/<int:report_id>/approvals", methods=["GET"])
def approval_history(report_id):
    principal = current_principal()
    report = get_visible_report(principal, report_id)
    return jsonify(approval_chain.get_approval_history(report)), 200
