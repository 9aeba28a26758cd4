"""
Authorization gate — decides whether a caller may perform an operation.

``authorize()`` is pure: it reads the permission table and returns an
``AuthDecision``.  ``require()`` wraps it for services: a denial is
recorded in the audit trail and raised, before any data is touched.

Usage:
    from app.services.authorization import CallerContext, authorize, require

    decision = authorize(caller, {"view", "report"})   # no side effects
    require(caller, {"link"}, "LINK_ARTIFACTS_TO_REQUIREMENT")  # audits + raises
"""

import logging
from dataclasses import dataclass, field

from app.core.exceptions import ForbiddenError, UnauthenticatedError
from app.services.audit_service import AuditKind, record
from app.services.permission_service import WILDCARD, Role, permissions_for

logger = logging.getLogger(__name__)

UNAUTHENTICATED = "unauthenticated"
INSUFFICIENT_PERMISSIONS = "insufficient_permissions"


@dataclass(frozen=True)
class CallerContext:
    """Already-authenticated identity for the lifetime of one operation."""

    username: str
    role: Role
    source_address: str | None = None

    def __post_init__(self):
        # Normalise string roles; unknown roles fail here, not at check time.
        object.__setattr__(self, "role", Role.parse(self.role))


@dataclass(frozen=True)
class AuthDecision:
    allowed: bool
    reason: str | None = None
    required: frozenset[str] = field(default_factory=frozenset)
    missing: frozenset[str] = field(default_factory=frozenset)

    def audit_details(self) -> dict:
        """Payload for the UNAUTHORIZED_ACCESS audit entry."""
        return {
            "reason": self.reason,
            "required": sorted(self.required),
            "missing": sorted(self.missing),
        }

    def raise_for_denial(self) -> None:
        if self.allowed:
            return
        if self.reason == UNAUTHENTICATED:
            raise UnauthenticatedError()
        raise ForbiddenError(required=self.required, missing=self.missing)


def authorize(caller: CallerContext | None, required) -> AuthDecision:
    """Evaluate *caller* against the set of *required* permission tokens."""
    required = frozenset(required or ())

    if caller is None:
        return AuthDecision(
            allowed=False, reason=UNAUTHENTICATED,
            required=required, missing=required,
        )

    granted = permissions_for(caller.role)
    if WILDCARD in granted:
        return AuthDecision(allowed=True, required=required)

    missing = required - granted
    if missing:
        return AuthDecision(
            allowed=False, reason=INSUFFICIENT_PERMISSIONS,
            required=required, missing=frozenset(missing),
        )
    return AuthDecision(allowed=True, required=required)


def require(caller: CallerContext | None, required, operation: str) -> None:
    """Authorize *caller*; on denial audit UNAUTHORIZED_ACCESS and raise.

    Raises:
        UnauthenticatedError: no caller.
        ForbiddenError: the caller's role lacks a required token.
    """
    decision = authorize(caller, required)
    if decision.allowed:
        return
    logger.warning(
        "Access denied: operation=%s user=%s reason=%s missing=%s",
        operation,
        getattr(caller, "username", None),
        decision.reason,
        sorted(decision.missing),
    )
    record(
        AuditKind.UNAUTHORIZED_ACCESS,
        caller,
        "UNAUTHORIZED_ACCESS",
        {"operation": operation, **decision.audit_details()},
    )
    decision.raise_for_denial()
