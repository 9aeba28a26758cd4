"""
Permission Service — static role → permission table.

Evaluation is table-driven: adding a role or a permission is a one-line
change to ``ROLE_PERMISSIONS``.  The table is read-only at runtime.

Usage:
    from app.services.permission_service import Role, permissions_for

    permissions_for(Role.DEVELOPER)   # frozenset({"view", "link", "report"})
"""

from enum import Enum
from types import MappingProxyType

WILDCARD = "*"

# Every token the platform checks somewhere.
PERMISSIONS = frozenset({"view", "export", "audit", "report", "link", "flag", "manage"})


class Role(str, Enum):
    ADMIN = "admin"
    COMPLIANCE = "compliance"
    STAKEHOLDER = "stakeholder"
    DEVELOPER = "developer"
    TESTER = "tester"
    VIEWER = "viewer"

    @classmethod
    def parse(cls, value) -> "Role":
        """Return the Role for *value*; unknown values raise ValueError."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise ValueError(f"Unknown role: {value!r}")
        return cls(value.strip().lower())


ROLE_PERMISSIONS = MappingProxyType({
    Role.ADMIN: frozenset({WILDCARD}),
    Role.COMPLIANCE: frozenset({"view", "export", "audit"}),
    Role.STAKEHOLDER: frozenset({"view", "report"}),
    Role.DEVELOPER: frozenset({"view", "link", "report"}),
    Role.TESTER: frozenset({"view", "report", "flag"}),
    Role.VIEWER: frozenset({"view"}),
})


def permissions_for(role: Role) -> frozenset[str]:
    return ROLE_PERMISSIONS[Role.parse(role)]
