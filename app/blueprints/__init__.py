"""
SLF Certification Workflow Platform
Blueprint registry and the single exception → HTTP mapping.
"""

import logging

from flask import g, request
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from app.core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    ConflictingTransitionError,
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from app.models import db
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def register_blueprints(app):
    from app.blueprints.admin_bp import admin_bp
    from app.blueprints.approval_bp import approval_bp
    from app.blueprints.auth_bp import auth_bp
    from app.blueprints.document_bp import document_bp
    from app.blueprints.health_bp import health_bp
    from app.blueprints.inspection_bp import inspection_bp
    from app.blueprints.notification_bp import notification_bp
    from app.blueprints.project_bp import project_bp
    from app.blueprints.report_bp import report_bp

    for bp in (health_bp, auth_bp, admin_bp, project_bp, inspection_bp,
               document_bp, report_bp, approval_bp, notification_bp):
        app.register_blueprint(bp)


def register_error_handlers(app):
    """Map the domain exception taxonomy to HTTP responses, once, app-wide."""

    def _ctx():
        return {
            "request_id": getattr(g, "request_id", None),
            "principal_id": getattr(g, "principal_id", None),
            "path": request.path,
        }

    @app.errorhandler(ValidationError)
    def _validation(error: ValidationError):
        return api_error(E.VALIDATION_INVALID, str(error), details=error.details or None)

    @app.errorhandler(AuthenticationError)
    def _unauthenticated(error: AuthenticationError):
        return api_error(E.UNAUTHENTICATED, str(error))

    @app.errorhandler(AuthorizationError)
    def _forbidden(error: AuthorizationError):
        # Denials are logged where they are raised, with the acting context
        db.session.rollback()
        return api_error(E.FORBIDDEN, str(error))

    @app.errorhandler(NotFoundError)
    def _not_found(error: NotFoundError):
        db.session.rollback()
        return api_error(E.NOT_FOUND, f"{error.resource} not found")

    @app.errorhandler(ConflictError)
    def _duplicate(error: ConflictError):
        db.session.rollback()
        return api_error(E.CONFLICT_DUPLICATE, str(error), details={"field": error.field})

    @app.errorhandler(InvalidTransitionError)
    def _invalid_transition(error: InvalidTransitionError):
        db.session.rollback()
        details = {"current_status": error.current_status}
        if error.target_status:
            details["target_status"] = error.target_status
        expected = getattr(error, "expected_role", None)
        if expected:
            details["expected_role"] = expected
        return api_error(error.code, str(error), details=details)

    @app.errorhandler(ConflictingTransitionError)
    def _conflicting(error: ConflictingTransitionError):
        db.session.rollback()
        logger.warning("Conflicting transition: %s", error,
                       extra={"event_type": "conflicting_transition", **_ctx()})
        return api_error(
            E.CONFLICTING_TRANSITION,
            "This record was changed by someone else. Refresh and try again.",
        )

    @app.errorhandler(PersistenceError)
    @app.errorhandler(SQLAlchemyError)
    def _persistence(error: Exception):
        db.session.rollback()
        logger.error("Persistence failure", exc_info=error,
                     extra={"error_code": E.DATABASE, **_ctx()})
        return api_error(E.DATABASE, "A storage error occurred. Please try again later.")

    @app.errorhandler(HTTPException)
    def _http(error: HTTPException):
        if not request.path.startswith("/api/"):
            return error
        code = {
            404: E.NOT_FOUND,
            405: "ERR_METHOD_NOT_ALLOWED",
            413: "ERR_PAYLOAD_TOO_LARGE",
            415: "ERR_UNSUPPORTED_MEDIA_TYPE",
            429: "ERR_RATE_LIMITED",
        }.get(error.code, E.INTERNAL if (error.code or 500) >= 500 else E.VALIDATION_INVALID)
        return api_error(code, error.description or error.name, status=error.code)

    @app.errorhandler(Exception)
    def _unexpected(error: Exception):
        db.session.rollback()
        logger.exception("Unhandled error at endpoint=%s", request.endpoint,
                         extra={"error_code": E.INTERNAL, **_ctx()})
        return api_error(E.INTERNAL, "Internal server error")
