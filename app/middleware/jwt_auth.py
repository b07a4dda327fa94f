"""
JWT Auth Middleware — Parses JWT from Authorization header, sets g.principal_id.

The hook never rejects a request by itself. It only attaches the caller's
profile id; endpoints that need a principal call ``current_principal()`` which
raises ``AuthenticationError`` (401) when nothing valid was attached.
"""

import logging

import jwt as pyjwt
from flask import g, request

from app.services.jwt_service import decode_access_token, principal_id_from_payload

logger = logging.getLogger(__name__)

# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/auth/register",
    "/api/v1/health",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.principal_id = None
        g.token_role = None
        g.principal = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]  # Strip "Bearer "

        try:
            payload = decode_access_token(token)
        except pyjwt.ExpiredSignatureError:
            logger.info("Expired access token", extra={"path": path})
            return
        except pyjwt.InvalidTokenError:
            logger.info("Invalid access token", extra={"path": path})
            return

        g.principal_id = principal_id_from_payload(payload)
        g.token_role = payload.get("role")
