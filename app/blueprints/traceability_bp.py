"""
SDLC Traceability Service
Traceability API — enriched requirement views, linking, risk report.

Endpoints:
    GET   /api/v1/traceability/matrix                    — all requirements, enriched
    GET   /api/v1/traceability/requirement/<id>          — one requirement, enriched
    POST  /api/v1/traceability/requirement/<id>/link     — merge artifact identifiers
    PATCH /api/v1/traceability/requirement/<id>/flags    — set risk flags
    GET   /api/v1/traceability/report                    — per-requirement risk rows

Authorization, auditing and persistence all happen in
``app.services.traceability``; this layer only parses bodies and maps
service exceptions onto status codes.
"""

import logging

from flask import Blueprint, g, jsonify, request

from app.blueprints import register_service_error_handlers
from app.core.exceptions import ValidationError
from app.models.requirement import ARTIFACT_ID_FIELDS
from app.services import traceability as trace_svc
from app.services.artifact_aggregator import KIND_FIELDS

logger = logging.getLogger(__name__)

traceability_bp = Blueprint("traceability", __name__, url_prefix="/api/v1/traceability")
register_service_error_handlers(traceability_bp)

# Request body key → artifact kind, e.g. "userStoryIds" → ArtifactKind.STORY
_PAYLOAD_KINDS = {ARTIFACT_ID_FIELDS[field]: kind for kind, (field, _) in KIND_FIELDS.items()}


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


@traceability_bp.route("/matrix", methods=["GET"])
def get_matrix():
    return jsonify(trace_svc.get_matrix(g.caller)), 200


@traceability_bp.route("/requirement/<requirement_id>", methods=["GET"])
def get_requirement(requirement_id):
    return jsonify(trace_svc.get_requirement(g.caller, requirement_id)), 200


@traceability_bp.route("/requirement/<requirement_id>/link", methods=["POST"])
def link_artifacts(requirement_id):
    """
    Merge identifiers into a requirement's artifact lists.

    Body (every key optional):
        {"userStoryIds": [...], "taskIds": [...], "testCaseIds": [...],
         "codeCommitIds": [...], "deploymentIds": [...]}

    Unknown keys are ignored.  Identifiers already linked are not duplicated.
    """
    data = _json_body()
    ids_by_kind = {kind: data[key] for key, kind in _PAYLOAD_KINDS.items() if key in data}
    return jsonify(trace_svc.link_artifacts(g.caller, requirement_id, ids_by_kind)), 200


@traceability_bp.route("/requirement/<requirement_id>/flags", methods=["PATCH"])
def update_flags(requirement_id):
    """
    Body: {"hasFailedTests": bool, "hasDeploymentRollback": bool} — either optional.
    """
    data = _json_body()
    result = trace_svc.update_flags(
        g.caller,
        requirement_id,
        has_failed_tests=data.get("hasFailedTests"),
        has_deployment_rollback=data.get("hasDeploymentRollback"),
    )
    return jsonify(result), 200


@traceability_bp.route("/report", methods=["GET"])
def generate_report():
    return jsonify(trace_svc.generate_report(g.caller)), 200
