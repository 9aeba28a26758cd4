"""
SDLC Traceability Service
Requirement domain model.

A Requirement is the anchor of the traceability chain.  It carries the
identifiers of artifacts that live in external delivery systems:

    user stories / tasks / test cases  → issue tracker
    code commits                       → source-control host
    deployments                        → build server

Identifier lists are ordered and duplicate-free; use :func:`merge_ids`
whenever new identifiers are added.
"""

import uuid
from datetime import datetime, timezone

from app.models import db


# ── Constants ────────────────────────────────────────────────────────────────

REQUIREMENT_STATUSES = {"Draft", "Approved", "In Progress", "Completed"}

# Column name → key used in API payloads and enriched views
ARTIFACT_ID_FIELDS = {
    "user_story_ids": "userStoryIds",
    "task_ids": "taskIds",
    "test_case_ids": "testCaseIds",
    "code_commit_ids": "codeCommitIds",
    "deployment_ids": "deploymentIds",
}


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def merge_ids(existing, incoming) -> list[str]:
    """Ordered set union: keep first occurrence, drop repeats."""
    merged: list[str] = []
    seen: set[str] = set()
    for value in list(existing or []) + list(incoming or []):
        value = str(value)
        if value in seen:
            continue
        seen.add(value)
        merged.append(value)
    return merged


class Requirement(db.Model):
    """Tracked unit of intended system behaviour."""

    __tablename__ = "requirements"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    title = db.Column(db.String(255), nullable=False, index=True)
    description = db.Column(db.Text, nullable=True)
    priority = db.Column(db.String(50), nullable=True)
    status = db.Column(db.String(50), nullable=False, default="Draft")

    # External artifact identifiers (JSON arrays of strings)
    user_story_ids = db.Column(db.JSON, nullable=False, default=list)
    task_ids = db.Column(db.JSON, nullable=False, default=list)
    test_case_ids = db.Column(db.JSON, nullable=False, default=list)
    code_commit_ids = db.Column(db.JSON, nullable=False, default=list)
    deployment_ids = db.Column(db.JSON, nullable=False, default=list)

    # Risk flags, set by administrative override or by report evidence
    has_failed_tests = db.Column(db.Boolean, nullable=False, default=False)
    has_deployment_rollback = db.Column(db.Boolean, nullable=False, default=False)

    created_by = db.Column(db.String(100), nullable=False)
    updated_by = db.Column(db.String(100), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow,
    )

    def artifact_ids(self, field: str) -> list[str]:
        return list(getattr(self, field) or [])

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "priority": self.priority,
            "status": self.status,
            "hasFailedTests": bool(self.has_failed_tests),
            "hasDeploymentRollback": bool(self.has_deployment_rollback),
            "createdBy": self.created_by,
            "updatedBy": self.updated_by,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }
        for field, key in ARTIFACT_ID_FIELDS.items():
            data[key] = self.artifact_ids(field)
        return data

    def __repr__(self):
        return f"<Requirement {self.id}: {self.title}>"
