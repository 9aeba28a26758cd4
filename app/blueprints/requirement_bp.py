"""
SDLC Traceability Service
Requirement registration.

Endpoints:
    POST /api/v1/requirements  — create a requirement (optionally with linked ids)
"""

from flask import Blueprint, g, jsonify, request

from app.blueprints import register_service_error_handlers
from app.core.exceptions import ValidationError
from app.services import traceability as trace_svc

requirement_bp = Blueprint("requirement", __name__, url_prefix="/api/v1")
register_service_error_handlers(requirement_bp)


@requirement_bp.route("/requirements", methods=["POST"])
def create_requirement():
    """
    Body:
        {"title": "...", "description": "...", "priority": "High",
         "status": "Draft", "userStoryIds": [...], ...}

    Only ``title`` is required.
    """
    data = request.get_json(silent=True)
    if data is not None and not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return jsonify(trace_svc.create_requirement(g.caller, data or {})), 201
