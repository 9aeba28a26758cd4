"""
Traceability Service — enriched requirement views, linking, risk report.

Every public function takes the caller first and follows the same flow:

    authorize ─┬─ denied  → audit UNAUTHORIZED_ACCESS, raise 401/403 error
               └─ allowed → load → (mutate → persist) → audit → return

No requirement is loaded and no upstream system is called for a denied
caller.  Audit writes are fail-open; persistence failures are not.

Operations and required permissions:

    get_matrix          view
    get_requirement     view
    link_artifacts      link
    generate_report     view + report
    update_flags        flag
    create_requirement  manage

Usage:
    from app.services import traceability as trace_svc

    matrix = trace_svc.get_matrix(g.caller)
"""

import logging

from app.core.exceptions import NotFoundError, PersistenceError, ValidationError
from app.models.requirement import ARTIFACT_ID_FIELDS, REQUIREMENT_STATUSES, Requirement, merge_ids
from app.services.artifact_aggregator import KIND_FIELDS, ArtifactKind, get_aggregator
from app.services.audit_service import AuditKind, record
from app.services.authorization import require
from app.services.helpers import requirement_store

logger = logging.getLogger(__name__)

_REQUIREMENT_TEXT_LIMITS = {"title": 255, "priority": 50, "status": 50}


# ── Helpers ──────────────────────────────────────────────────────────────────


def _clean_ids(key: str, values) -> list[str]:
    if not isinstance(values, list):
        raise ValidationError(f"{key} must be a list", details={key: "expected a list of identifiers"})
    cleaned = []
    for value in values:
        if isinstance(value, bool) or not isinstance(value, (str, int)) or str(value).strip() == "":
            raise ValidationError(
                f"{key} contains an invalid identifier",
                details={key: f"invalid identifier {value!r}"},
            )
        cleaned.append(str(value).strip())
    return cleaned


def _payload_key(kind: ArtifactKind) -> str:
    field, _ = KIND_FIELDS[kind]
    return ARTIFACT_ID_FIELDS[field]


def _enrich(requirement: Requirement, aggregator) -> dict:
    return {**requirement.to_dict(), **aggregator.aggregate_requirement(requirement)}


def _load_or_not_found(caller, requirement_id, kind: AuditKind, not_found_action: str) -> Requirement:
    requirement = requirement_store.load_by_id(requirement_id)
    if requirement is None:
        record(kind, caller, not_found_action, {"id": requirement_id})
        raise NotFoundError("Requirement", requirement_id)
    return requirement


# ── Read operations ──────────────────────────────────────────────────────────


def get_matrix(caller) -> list[dict]:
    """Every requirement with its five artifact lists enriched."""
    require(caller, {"view"}, "GET_TRACEABILITY_MATRIX")

    requirements = requirement_store.load_all()
    aggregator = get_aggregator()
    matrix = [_enrich(req, aggregator) for req in requirements]

    record(AuditKind.ACCESS, caller, "GET_TRACEABILITY_MATRIX", {"count": len(requirements)})
    return matrix


def get_requirement(caller, requirement_id: str) -> dict:
    require(caller, {"view"}, "GET_REQUIREMENT_TRACEABILITY")

    requirement = _load_or_not_found(
        caller, requirement_id, AuditKind.ACCESS, "GET_REQUIREMENT_TRACEABILITY_NOT_FOUND",
    )
    enriched = _enrich(requirement, get_aggregator())

    record(AuditKind.ACCESS, caller, "GET_REQUIREMENT_TRACEABILITY", {"id": requirement_id})
    return enriched


def generate_report(caller) -> list[dict]:
    """One risk row per requirement: status, both flags, underlying evidence.

    Flags are stored OR observed.  Fresh evidence of a failure is written
    back to the stored flag so later reports cannot lose it; a stored
    ``True`` is never cleared here.
    """
    require(caller, {"view", "report"}, "GET_TRACEABILITY_REPORT")

    requirements = requirement_store.load_all()
    aggregator = get_aggregator()
    rows = []
    raised: list[tuple[Requirement, bool, bool]] = []

    for req in requirements:
        test_results = aggregator.test_results(req.artifact_ids("test_case_ids"))
        deployment_status = aggregator.deployment_statuses(req.artifact_ids("deployment_ids"))

        observed_failed = any(r.failed for r in test_results)
        observed_rollback = any(d.status == "rollback" for d in deployment_status)
        has_failed_tests = bool(req.has_failed_tests) or observed_failed
        has_rollback = bool(req.has_deployment_rollback) or observed_rollback

        if has_failed_tests != bool(req.has_failed_tests) or has_rollback != bool(req.has_deployment_rollback):
            raised.append((req, has_failed_tests, has_rollback))

        rows.append({
            "id": req.id,
            "title": req.title,
            "status": req.status,
            "hasFailedTests": has_failed_tests,
            "hasDeploymentRollback": has_rollback,
            "testResults": [r.to_dict() for r in test_results],
            "deploymentStatus": [d.to_dict() for d in deployment_status],
        })

    raised_ids = []
    for req, has_failed_tests, has_rollback in raised:
        req_id = req.id
        req.has_failed_tests = has_failed_tests
        req.has_deployment_rollback = has_rollback
        req.updated_by = caller.username
        try:
            requirement_store.save(req)
        except PersistenceError:
            # The row above already reports the flag; the next report re-derives it.
            logger.warning("Could not persist observed risk flags for requirement=%s", req_id)
            continue
        raised_ids.append(req_id)
        record(AuditKind.MODIFICATION, caller, "REPORT_FLAGS_RAISED", {
            "id": req_id,
            "hasFailedTests": has_failed_tests,
            "hasDeploymentRollback": has_rollback,
        })

    details = {"count": len(requirements)}
    if raised_ids:
        details["flagsRaised"] = raised_ids
    record(AuditKind.ACCESS, caller, "GET_TRACEABILITY_REPORT", details)
    return rows


# ── Mutations ────────────────────────────────────────────────────────────────


def link_artifacts(caller, requirement_id: str, ids_by_kind: dict) -> dict:
    """Merge identifier lists into a requirement (ordered set union).

    Args:
        ids_by_kind: {ArtifactKind | kind value: [identifier, ...]}; kinds
            not present are left untouched.

    The audit entry carries every submitted identifier, not only the ones
    that were new, so the caller's intent stays traceable.
    """
    require(caller, {"link"}, "LINK_ARTIFACTS_TO_REQUIREMENT")

    submitted: dict[ArtifactKind, list[str]] = {}
    for kind, values in (ids_by_kind or {}).items():
        try:
            kind = ArtifactKind(kind)
        except ValueError as exc:
            raise ValidationError(f"Unknown artifact kind: {kind}") from exc
        submitted[kind] = _clean_ids(_payload_key(kind), values)

    requirement = _load_or_not_found(
        caller, requirement_id, AuditKind.MODIFICATION, "LINK_ARTIFACTS_REQUIREMENT_NOT_FOUND",
    )

    for kind, values in submitted.items():
        field, _ = KIND_FIELDS[kind]
        setattr(requirement, field, merge_ids(requirement.artifact_ids(field), values))
    requirement.updated_by = caller.username

    requirement_store.save(requirement)
    result = requirement.to_dict()

    details = {"id": requirement_id}
    for kind, values in submitted.items():
        details[_payload_key(kind)] = values
    record(AuditKind.MODIFICATION, caller, "LINK_ARTIFACTS_TO_REQUIREMENT", details)
    return result


def update_flags(
    caller,
    requirement_id: str,
    has_failed_tests: bool | None = None,
    has_deployment_rollback: bool | None = None,
) -> dict:
    """Partial update of the two risk flags; ``None`` means "leave as is"."""
    require(caller, {"flag"}, "UPDATE_REQUIREMENT_FLAGS")

    for name, value in (("hasFailedTests", has_failed_tests),
                        ("hasDeploymentRollback", has_deployment_rollback)):
        if value is not None and not isinstance(value, bool):
            raise ValidationError(f"{name} must be a boolean", details={name: "expected true or false"})

    requirement = _load_or_not_found(
        caller, requirement_id, AuditKind.MODIFICATION, "UPDATE_FLAGS_REQUIREMENT_NOT_FOUND",
    )

    if has_failed_tests is not None:
        requirement.has_failed_tests = has_failed_tests
    if has_deployment_rollback is not None:
        requirement.has_deployment_rollback = has_deployment_rollback
    requirement.updated_by = caller.username

    requirement_store.save(requirement)
    result = requirement.to_dict()

    record(AuditKind.MODIFICATION, caller, "UPDATE_REQUIREMENT_FLAGS", {
        "id": requirement_id,
        "hasFailedTests": has_failed_tests,
        "hasDeploymentRollback": has_deployment_rollback,
    })
    return result


def create_requirement(caller, data: dict) -> dict:
    require(caller, {"manage"}, "CREATE_REQUIREMENT")

    data = data or {}
    title = data.get("title")
    if not isinstance(title, str) or not title.strip():
        raise ValidationError("title is required", details={"title": "required"})
    for key, limit in _REQUIREMENT_TEXT_LIMITS.items():
        value = data.get(key)
        if value is not None and (not isinstance(value, str) or len(value) > limit):
            raise ValidationError(f"{key} must be a string of at most {limit} characters")
    if data.get("status") and data["status"] not in REQUIREMENT_STATUSES:
        raise ValidationError(
            f"Unknown status: {data['status']}",
            details={"status": f"expected one of {', '.join(sorted(REQUIREMENT_STATUSES))}"},
        )

    requirement = Requirement(
        title=title.strip(),
        description=data.get("description"),
        priority=data.get("priority"),
        status=data.get("status") or "Draft",
        created_by=caller.username,
        updated_by=caller.username,
    )
    for field, key in ARTIFACT_ID_FIELDS.items():
        setattr(requirement, field, merge_ids([], _clean_ids(key, data.get(key) or [])))

    requirement_store.save(requirement)
    result = requirement.to_dict()

    record(AuditKind.MODIFICATION, caller, "CREATE_REQUIREMENT", {"id": result["id"], "title": result["title"]})
    return result
