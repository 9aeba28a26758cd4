"""
Permission Decorators — RBAC decorators for route protection.

For routes whose whole body is a single permission-gated action (the audit
trail endpoints), the check can live on the route instead of in a service:

    @audit_bp.route("/audit/export", methods=["GET"])
    @require_permissions("EXPORT_AUDIT_LOGS", "export")
    def export_audit_logs():
        ...

The decorator delegates to ``authorization.require`` so a denial is
audited exactly like a denial inside a service.  The resulting
``UnauthenticatedError`` / ``ForbiddenError`` is turned into a 401 / 403
JSON response by the blueprint's error handlers.
"""

import functools

from flask import g

from app.services.authorization import require


def require_permissions(operation: str, *tokens: str):
    """
    Decorator: require the caller's role to grant every listed token.

    Args:
        operation: Operation name recorded on denial, e.g. "EXPORT_AUDIT_LOGS".
        tokens: Permission tokens, e.g. "audit", "export".
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            require(getattr(g, "caller", None), set(tokens), operation)
            return f(*args, **kwargs)
        return decorated
    return decorator
