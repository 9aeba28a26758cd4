"""
Audit Service — fail-open recording and compliance export of audit entries.

Every access to and modification of traceability data is recorded in two
independent sinks:

    1. durable store     — one ``AuditLog`` row (compliance export)
    2. diagnostic stream — the ``app.audit`` logger (operational monitoring)

``record()`` never raises.  A storage outage is logged and swallowed so it
cannot take down the primary traceability operation; audit completeness is
best-effort.  Writes are synchronous, so nothing is left pending when the
process shuts down.

Usage:
    from app.services.audit_service import AuditKind, record, export

    record(AuditKind.ACCESS, caller, "GET_TRACEABILITY_MATRIX", {"count": 12})
    csv_text = export("csv")
"""

import csv
import io
import json
import logging
from enum import Enum

from app.models import db
from app.models.audit import CSV_COLUMNS, AuditLog

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("app.audit")

EXPORT_FORMATS = ("json", "csv")


class AuditKind(str, Enum):
    ACCESS = "access"
    MODIFICATION = "modification"
    UNAUTHORIZED_ACCESS = "unauthorized_access"


def _request_origin() -> tuple[str | None, str | None]:
    """(remote_addr, path) of the current request, if there is one."""
    try:
        from flask import has_request_context, request
        if has_request_context():
            return request.remote_addr, request.path
    except Exception:
        # Never block the business flow on audit context enrichment.
        logger.debug("Could not read request context for audit entry", exc_info=True)
    return None, None


def _write_store(action, username, role, details_json, ip) -> None:
    try:
        db.session.add(AuditLog(
            action=action,
            username=username,
            role=role,
            details=details_json,
            ip=ip,
        ))
        db.session.commit()
    except Exception:
        logger.exception("Audit store write failed action=%s user=%s", action, username)
        try:
            db.session.rollback()
        except Exception:
            logger.exception("Audit store rollback failed action=%s", action)


def _write_stream(kind, action, username, role, details, ip) -> None:
    try:
        level = logging.WARNING if kind is AuditKind.UNAUTHORIZED_ACCESS else logging.INFO
        audit_logger.log(
            level,
            "AuditLog: %s - %s",
            kind.value, action,
            extra={
                "audit_kind": kind.value,
                "action": action,
                "username": username,
                "role": role,
                "details": details,
                "remote_addr": ip,
            },
        )
    except Exception:
        logger.exception("Audit stream write failed action=%s", action)


def record(kind: AuditKind, caller, action: str, details: dict | None = None) -> None:
    """Append one audit entry to both sinks.  Never raises.

    Args:
        kind: Access, modification or unauthorized-access event.
        caller: ``CallerContext`` of the actor, or ``None`` if unauthenticated.
        action: Action token, e.g. ``LINK_ARTIFACTS_TO_REQUIREMENT``.
        details: Optional JSON-serialisable payload.
    """
    try:
        kind = AuditKind(kind)
        username = getattr(caller, "username", None)
        role = getattr(getattr(caller, "role", None), "value", None)
        ip = getattr(caller, "source_address", None)

        remote_addr, path = _request_origin()
        ip = ip or remote_addr
        if kind is AuditKind.UNAUTHORIZED_ACCESS and path:
            details = {**(details or {}), "url": path}

        details_json = json.dumps(details, default=str) if details is not None else None
    except Exception:
        logger.exception("Audit entry could not be prepared action=%s", action)
        return

    _write_store(action, username, role, details_json, ip)
    _write_stream(kind, action, username, role, details, ip)


# ── Read side ────────────────────────────────────────────────────────────────


def _ordered_query():
    return AuditLog.query.order_by(AuditLog.timestamp.desc())


def export(fmt: str = "json") -> str:
    """Serialise every audit entry, newest first.

    ``json`` → pretty-printed array; ``csv`` → header plus one fully quoted
    row per entry with embedded quotes doubled.  Any failure returns an
    empty string and is logged.
    """
    try:
        logs = _ordered_query().all()
        if fmt == "csv":
            buf = io.StringIO()
            writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
            buf.write(",".join(CSV_COLUMNS) + "\n")
            for log in logs:
                writer.writerow(log.to_csv_row())
            return buf.getvalue()
        return json.dumps([log.to_dict() for log in logs], indent=2)
    except Exception:
        logger.exception("Audit export failed format=%s", fmt)
        return ""


def list_entries(
    page: int = 1,
    per_page: int = 50,
    *,
    action: str | None = None,
    username: str | None = None,
) -> dict:
    """Paginated audit entries, newest first, optionally filtered."""
    q = _ordered_query()
    if action:
        q = q.filter(AuditLog.action.startswith(action))
    if username:
        q = q.filter(AuditLog.username == username)

    page = max(1, page)
    per_page = min(200, max(1, per_page))
    paginated = q.paginate(page=page, per_page=per_page, error_out=False)

    return {
        "audit_logs": [log.to_dict() for log in paginated.items],
        "total": paginated.total,
        "page": paginated.page,
        "per_page": paginated.per_page,
        "pages": paginated.pages,
    }
