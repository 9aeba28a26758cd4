"""
Permission table + authorization gate.

Covers:
  - role → permission table, including the admin wildcard
  - authorize(): pure decision, unauthenticated vs insufficient permissions
  - require(): a denial is audited once, then raised
  - role parsing at the identity boundary
"""

import json

import pytest

from app.core.exceptions import ForbiddenError, UnauthenticatedError
from app.models.audit import AuditLog
from app.services.authorization import (
    INSUFFICIENT_PERMISSIONS,
    UNAUTHENTICATED,
    CallerContext,
    authorize,
    require,
)
from app.services.permission_service import PERMISSIONS, ROLE_PERMISSIONS, Role, permissions_for


# ═══════════════════════════════════════════════════════════════
# Permission table
# ═══════════════════════════════════════════════════════════════

class TestPermissionTable:

    @pytest.mark.parametrize("role, expected", [
        (Role.COMPLIANCE, {"view", "export", "audit"}),
        (Role.STAKEHOLDER, {"view", "report"}),
        (Role.DEVELOPER, {"view", "link", "report"}),
        (Role.TESTER, {"view", "report", "flag"}),
        (Role.VIEWER, {"view"}),
    ])
    def test_role_grants(self, role, expected):
        assert permissions_for(role) == frozenset(expected)

    def test_every_role_is_in_the_table(self):
        assert set(ROLE_PERMISSIONS) == set(Role)

    def test_table_only_uses_known_tokens(self):
        for role, granted in ROLE_PERMISSIONS.items():
            if role is Role.ADMIN:
                continue
            assert granted <= PERMISSIONS

    def test_table_is_read_only(self):
        with pytest.raises(TypeError):
            ROLE_PERMISSIONS[Role.VIEWER] = frozenset({"link"})

    def test_permissions_for_accepts_role_value(self):
        assert permissions_for("tester") == permissions_for(Role.TESTER)


# ═══════════════════════════════════════════════════════════════
# authorize()
# ═══════════════════════════════════════════════════════════════

class TestAuthorize:

    def test_admin_wildcard_grants_everything(self, make_caller):
        decision = authorize(make_caller("admin"), PERMISSIONS)
        assert decision.allowed is True
        assert decision.missing == frozenset()

    def test_admin_wildcard_grants_unlisted_tokens(self, make_caller):
        assert authorize(make_caller("admin"), {"not-a-known-token"}).allowed is True
        assert authorize(make_caller("viewer"), {"not-a-known-token"}).allowed is False

    @pytest.mark.parametrize("role", list(Role))
    def test_every_role_can_view(self, make_caller, role):
        assert authorize(make_caller(role.value), {"view"}).allowed is True

    def test_missing_subset_is_reported(self, make_caller):
        decision = authorize(make_caller("compliance"), {"view", "report"})
        assert decision.allowed is False
        assert decision.reason == INSUFFICIENT_PERMISSIONS
        assert decision.missing == frozenset({"report"})
        assert decision.required == frozenset({"view", "report"})

    def test_no_caller_is_unauthenticated(self):
        decision = authorize(None, {"view"})
        assert decision.allowed is False
        assert decision.reason == UNAUTHENTICATED
        with pytest.raises(UnauthenticatedError):
            decision.raise_for_denial()

    def test_insufficient_raises_forbidden_with_sorted_lists(self, make_caller):
        decision = authorize(make_caller("viewer"), {"report", "link", "view"})
        with pytest.raises(ForbiddenError) as exc_info:
            decision.raise_for_denial()
        assert exc_info.value.missing == ["link", "report"]
        assert exc_info.value.required == ["link", "report", "view"]

    def test_authorize_has_no_side_effects(self, make_caller):
        authorize(make_caller("viewer"), {"link"})
        authorize(None, {"view"})
        assert AuditLog.query.count() == 0


# ═══════════════════════════════════════════════════════════════
# require()
# ═══════════════════════════════════════════════════════════════

class TestRequire:

    def test_allowed_records_nothing(self, make_caller):
        require(make_caller("developer"), {"link"}, "LINK_ARTIFACTS_TO_REQUIREMENT")
        assert AuditLog.query.count() == 0

    def test_denial_is_audited_then_raised(self, make_caller):
        caller = make_caller("viewer", username="vera")
        with pytest.raises(ForbiddenError):
            require(caller, {"link"}, "LINK_ARTIFACTS_TO_REQUIREMENT")

        logs = AuditLog.query.all()
        assert len(logs) == 1
        entry = logs[0]
        assert entry.action == "UNAUTHORIZED_ACCESS"
        assert entry.username == "vera"
        assert entry.role == "viewer"
        assert entry.ip == "10.0.0.7"
        details = json.loads(entry.details)
        assert details["operation"] == "LINK_ARTIFACTS_TO_REQUIREMENT"
        assert details["reason"] == INSUFFICIENT_PERMISSIONS
        assert details["missing"] == ["link"]

    def test_unauthenticated_denial_is_audited_without_user(self):
        with pytest.raises(UnauthenticatedError):
            require(None, {"view"}, "GET_TRACEABILITY_MATRIX")
        entry = AuditLog.query.one()
        assert entry.username is None
        assert entry.role is None
        assert entry.details_dict["reason"] == UNAUTHENTICATED


# ═══════════════════════════════════════════════════════════════
# Roles at the identity boundary
# ═══════════════════════════════════════════════════════════════

class TestRoleParsing:

    def test_parse_normalises_case_and_whitespace(self):
        assert Role.parse(" Developer ") is Role.DEVELOPER

    @pytest.mark.parametrize("value", ["root", "", None, 3])
    def test_unknown_role_rejected(self, value):
        with pytest.raises(ValueError):
            Role.parse(value)

    def test_caller_context_parses_role(self):
        caller = CallerContext(username="tess", role="tester")
        assert caller.role is Role.TESTER

    def test_caller_context_rejects_unknown_role(self):
        with pytest.raises(ValueError):
            CallerContext(username="mallory", role="auditor")
