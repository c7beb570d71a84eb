"""
Audit trail database models.

Each row records one significant workflow event together with a JSON
snapshot of the data behind it and a sha256 digest over the canonical form
of that row, so later tampering can be detected.
"""

from typing import Any, Dict

from sqlalchemy import JSON, Column, DateTime, Index, String

from .base import Base


class AuditEntryModel(Base):
    """Append-only audit entry."""

    __tablename__ = "audit_entries"

    # Primary key (ULID for sortability and uniqueness)
    id = Column(String(36), primary_key=True)

    workflow_id = Column(String(64), nullable=False, index=True)

    # Stored as UTC wall-clock time; SQLite drops tzinfo
    ts = Column(DateTime(timezone=True), nullable=False, index=True)

    event_type = Column(String(64), nullable=False, index=True)

    actor = Column(String(128), nullable=False, default="system")

    snapshot = Column(JSON, nullable=False)

    digest = Column(String(64), nullable=False)

    __table_args__ = (
        Index("ix_audit_entries_workflow_ts", "workflow_id", "ts"),
        Index("ix_audit_entries_type_ts", "event_type", "ts"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "ts": self.ts.isoformat() if self.ts else None,
            "event_type": self.event_type,
            "actor": self.actor,
            "snapshot": self.snapshot,
            "digest": self.digest,
        }
