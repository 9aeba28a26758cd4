"""
SDLC Traceability Service
Audit domain model.

Models:
    - AuditLog: immutable, append-only record of every access to and
      modification of traceability data.
"""

import json
import uuid
from datetime import datetime, timezone

from app.models import db


# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ACTIONS = {
    "UNAUTHORIZED_ACCESS",
    # Reads
    "GET_TRACEABILITY_MATRIX",
    "GET_REQUIREMENT_TRACEABILITY",
    "GET_REQUIREMENT_TRACEABILITY_NOT_FOUND",
    "GET_TRACEABILITY_REPORT",
    "LIST_AUDIT_LOGS",
    "EXPORT_AUDIT_LOGS",
    # Mutations
    "CREATE_REQUIREMENT",
    "LINK_ARTIFACTS_TO_REQUIREMENT",
    "LINK_ARTIFACTS_REQUIREMENT_NOT_FOUND",
    "UPDATE_REQUIREMENT_FLAGS",
    "UPDATE_FLAGS_REQUIREMENT_NOT_FOUND",
    "REPORT_FLAGS_RAISED",
}

CSV_COLUMNS = ("id", "action", "username", "role", "details", "ip", "timestamp")


class AuditLog(db.Model):
    """
    One row per recorded event.  Rows are never updated or deleted.

    ``details`` holds the JSON-serialised payload exactly as it was
    recorded so that exports reproduce it byte for byte.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_username", "username"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    action = db.Column(db.String(100), nullable=False)
    username = db.Column(db.String(100), nullable=True)
    role = db.Column(db.String(50), nullable=True)
    details = db.Column(db.Text, nullable=True)
    ip = db.Column(db.String(45), nullable=True)
    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def details_dict(self):
        """Deserialise *details*; ``None`` when absent or unreadable."""
        if not self.details:
            return None
        try:
            return json.loads(self.details)
        except (json.JSONDecodeError, TypeError):
            return None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "action": self.action,
            "username": self.username,
            "role": self.role,
            "details": self.details_dict,
            "ip": self.ip,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def to_csv_row(self) -> list[str]:
        return [
            self.id,
            self.action,
            self.username or "",
            self.role or "",
            self.details or "",
            self.ip or "",
            self.timestamp.isoformat() if self.timestamp else "",
        ]

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} by {self.username or 'anonymous'}>"
