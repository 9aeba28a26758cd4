"""
SDLC Traceability Service
Blueprint registry and shared service-error handlers.
"""

import logging

from flask import request
from werkzeug.exceptions import HTTPException

from app.core.exceptions import (
    ForbiddenError,
    NotFoundError,
    UnauthenticatedError,
    ValidationError,
)
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def register_service_error_handlers(bp):
    """Map the service exception hierarchy onto JSON error responses.

    Anything not listed (PersistenceError included) becomes a generic 500;
    the cause is logged, never returned.
    """

    @bp.errorhandler(UnauthenticatedError)
    def _handle_unauthenticated(error: UnauthenticatedError):
        return api_error(E.UNAUTHENTICATED, str(error))

    @bp.errorhandler(ForbiddenError)
    def _handle_forbidden(error: ForbiddenError):
        return api_error(E.FORBIDDEN, "Forbidden", details={"required": error.required})

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_INVALID, str(error), details=error.details)

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return error
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")

    return bp


def all_blueprints():
    """Blueprints in registration order."""
    from app.blueprints.audit_bp import audit_bp
    from app.blueprints.health_bp import health_bp
    from app.blueprints.requirement_bp import requirement_bp
    from app.blueprints.traceability_bp import traceability_bp

    return [health_bp, traceability_bp, requirement_bp, audit_bp]
