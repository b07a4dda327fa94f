"""
Auth Blueprint — principal registration and landing route.

Sessions are issued by the external authentication provider; this blueprint
only pairs a new identity with a local profile and tells the front end where
a principal lands.

  POST /api/v1/auth/register    — create a pending profile
  GET  /api/v1/auth/me          — current profile
  GET  /api/v1/auth/landing     — {role, route, label} for the current principal
"""

from flask import Blueprint, jsonify

from app.auth import current_principal
from app.services import user_service
from app.services.role_resolver import resolve_landing
from app.utils.helpers import json_body

auth_bp = Blueprint("auth_bp", __name__, url_prefix="/api/v1/auth")


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/register
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/register", methods=["POST"])
def register():
    """
    Register a profile for a freshly created identity.

    Body: { "email": "...", "full_name": "...", "role": "inspector",
            "specialization": "...", "client_id": 3, "external_id": "..." }

    The profile stays ``pending`` until an administrator approves it.
    """
    data = json_body()
    profile = user_service.register_profile(
        email=data.get("email"),
        full_name=data.get("full_name"),
        role=data.get("role"),
        specialization=data.get("specialization"),
        client_id=data.get("client_id"),
        phone=data.get("phone"),
        external_id=data.get("external_id"),
    )
    return jsonify({"profile": profile.to_dict(), "message": "Registration received, awaiting approval"}), 201


# ═══════════════════════════════════════════════════════════════
# GET /api/v1/auth/me
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/me", methods=["GET"])
def me():
    profile = current_principal()
    return jsonify({"profile": profile.to_dict(), **resolve_landing(profile.role)}), 200


# ═══════════════════════════════════════════════════════════════
# GET /api/v1/auth/landing
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/landing", methods=["GET"])
def landing():
    """Where to send the principal after sign-in. Pending profiles may call this."""
    profile = current_principal()
    return jsonify(resolve_landing(profile.role)), 200
