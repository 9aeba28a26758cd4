"""
SDLC Traceability Service
Audit trail blueprint.

Endpoints:
    GET  /api/v1/audit                      — list / filter audit entries (needs ``audit``)
    GET  /api/v1/audit/export?format=json   — full trail as JSON or CSV (needs ``export``)

Reading the trail is itself audited.
"""

from flask import Blueprint, Response, g, jsonify, request

from app.blueprints import register_service_error_handlers
from app.core.exceptions import ValidationError
from app.middleware.permission_required import require_permissions
from app.services import audit_service
from app.services.audit_service import EXPORT_FORMATS, AuditKind

audit_bp = Blueprint("audit", __name__, url_prefix="/api/v1")
register_service_error_handlers(audit_bp)

_MIMETYPES = {"json": "application/json", "csv": "text/csv"}


# ── List / filter ────────────────────────────────────────────────────────────

@audit_bp.route("/audit", methods=["GET"])
@require_permissions("LIST_AUDIT_LOGS", "audit")
def list_audit_logs():
    """
    Return paginated audit entries, newest first.

    Query params:
        action    — filter by action string (prefix match)
        username  — filter by actor
        page      — page number (default 1)
        per_page  — items per page (default 50, max 200)
    """
    result = audit_service.list_entries(
        page=request.args.get("page", 1, type=int),
        per_page=request.args.get("per_page", 50, type=int),
        action=request.args.get("action"),
        username=request.args.get("username"),
    )
    audit_service.record(AuditKind.ACCESS, g.caller, "LIST_AUDIT_LOGS", {
        "page": result["page"],
        "count": len(result["audit_logs"]),
    })
    return jsonify(result)


# ── Export ───────────────────────────────────────────────────────────────────

@audit_bp.route("/audit/export", methods=["GET"])
@require_permissions("EXPORT_AUDIT_LOGS", "export")
def export_audit_logs():
    fmt = request.args.get("format", "json").lower()
    if fmt not in EXPORT_FORMATS:
        raise ValidationError(
            f"Unsupported export format: {fmt}",
            details={"format": f"expected one of {', '.join(EXPORT_FORMATS)}"},
        )

    body = audit_service.export(fmt)
    audit_service.record(AuditKind.ACCESS, g.caller, "EXPORT_AUDIT_LOGS", {"format": fmt})

    response = Response(body, mimetype=_MIMETYPES[fmt])
    response.headers["Content-Disposition"] = f"attachment; filename=audit_logs.{fmt}"
    return response
