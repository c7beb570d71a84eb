"""
Audit trail service.

Records review, execution and reward events for every workflow with a
tamper-evident digest per entry. Storage sits behind ``AuditStore`` so the
orchestrator can run against memory in tests and SQL in deployments.

Usage:
    trail = AuditTrail(SqlAuditStore())
    entry = trail.append(workflow.id, "code_review", {"resolved": 3})
    assert trail.verify(entry)
"""

import copy
import hashlib
import json
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel
from sqlalchemy import Engine, select
from sqlalchemy.orm import sessionmaker
from ulid import ULID

from .audit_models import AuditEntryModel
from .base import get_engine, get_session_local, init_database

logger = logging.getLogger(__name__)


def _json_default(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, datetime):
        return canonical_timestamp(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    if hasattr(value, "to_dict"):
        return value.to_dict()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def stable_json_dumps(payload: object) -> str:
    """Dump JSON with stable ordering for hashing."""
    return json.dumps(
        payload,
        ensure_ascii=True,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_default,
    )


def canonical_timestamp(ts: datetime) -> str:
    """ISO form of ``ts`` as naive UTC with microseconds."""
    if ts.tzinfo is not None:
        ts = ts.astimezone(timezone.utc).replace(tzinfo=None)
    return ts.isoformat(timespec="microseconds")


def normalize_snapshot(snapshot: Any) -> Dict[str, Any]:
    """Reduce a snapshot to plain JSON types."""
    if snapshot is None:
        return {}
    normalized = json.loads(stable_json_dumps(snapshot))
    if not isinstance(normalized, dict):
        return {"value": normalized}
    return normalized


def compute_digest(
    workflow_id: str, timestamp: datetime, event_type: str, snapshot: Dict[str, Any]
) -> str:
    """sha256 over the canonical form of one audit entry."""
    payload = {
        "workflow_id": workflow_id,
        "timestamp": canonical_timestamp(timestamp),
        "event_type": event_type,
        "snapshot": snapshot,
    }
    return hashlib.sha256(stable_json_dumps(payload).encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class AuditEntry:
    """One recorded event. Immutable once stored."""

    workflow_id: str
    event_type: str
    snapshot: Dict[str, Any]
    timestamp: datetime
    digest: str
    actor: str = "system"
    id: str = field(default_factory=lambda: str(ULID()))

    def expected_digest(self) -> str:
        return compute_digest(self.workflow_id, self.timestamp, self.event_type, self.snapshot)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "timestamp": canonical_timestamp(self.timestamp),
            "event_type": self.event_type,
            "actor": self.actor,
            "snapshot": self.snapshot,
            "digest": self.digest,
        }


class AuditStore(ABC):
    """Abstract interface for audit entry storage."""

    @abstractmethod
    def save(self, entry: AuditEntry) -> None:
        """Persist an entry."""
        pass

    @abstractmethod
    def get(self, entry_id: str) -> Optional[AuditEntry]:
        """Fetch an entry by id."""
        pass

    @abstractmethod
    def list(
        self, workflow_id: Optional[str] = None, event_type: Optional[str] = None
    ) -> List[AuditEntry]:
        """List entries oldest first, optionally filtered."""
        pass


class InMemoryAuditStore(AuditStore):
    """Process-local store. Entries go in and come out as deep copies."""

    def __init__(self) -> None:
        self._entries: List[AuditEntry] = []
        self._lock = threading.Lock()

    def save(self, entry: AuditEntry) -> None:
        with self._lock:
            self._entries.append(copy.deepcopy(entry))

    def get(self, entry_id: str) -> Optional[AuditEntry]:
        with self._lock:
            for entry in self._entries:
                if entry.id == entry_id:
                    return copy.deepcopy(entry)
        return None

    def list(
        self, workflow_id: Optional[str] = None, event_type: Optional[str] = None
    ) -> List[AuditEntry]:
        with self._lock:
            entries = copy.deepcopy(self._entries)
        if workflow_id is not None:
            entries = [e for e in entries if e.workflow_id == workflow_id]
        if event_type is not None:
            entries = [e for e in entries if e.event_type == event_type]
        return entries


class SqlAuditStore(AuditStore):
    """SQLAlchemy-backed store on the ``audit_entries`` table."""

    def __init__(self, engine: Optional[Engine] = None):
        self.engine = engine or get_engine()
        init_database(self.engine)
        self.session_factory: sessionmaker = get_session_local(self.engine)

    @staticmethod
    def _to_entry(row: AuditEntryModel) -> AuditEntry:
        return AuditEntry(
            id=row.id,
            workflow_id=row.workflow_id,
            event_type=row.event_type,
            snapshot=row.snapshot,
            timestamp=row.ts,
            digest=row.digest,
            actor=row.actor,
        )

    def save(self, entry: AuditEntry) -> None:
        with self.session_factory() as session:
            session.add(
                AuditEntryModel(
                    id=entry.id,
                    workflow_id=entry.workflow_id,
                    ts=entry.timestamp,
                    event_type=entry.event_type,
                    actor=entry.actor,
                    snapshot=entry.snapshot,
                    digest=entry.digest,
                )
            )
            session.commit()

    def get(self, entry_id: str) -> Optional[AuditEntry]:
        with self.session_factory() as session:
            row = session.get(AuditEntryModel, entry_id)
            return self._to_entry(row) if row is not None else None

    def list(
        self, workflow_id: Optional[str] = None, event_type: Optional[str] = None
    ) -> List[AuditEntry]:
        stmt = select(AuditEntryModel)
        if workflow_id is not None:
            stmt = stmt.where(AuditEntryModel.workflow_id == workflow_id)
        if event_type is not None:
            stmt = stmt.where(AuditEntryModel.event_type == event_type)
        stmt = stmt.order_by(AuditEntryModel.ts, AuditEntryModel.id)

        with self.session_factory() as session:
            return [self._to_entry(row) for row in session.scalars(stmt)]


class AuditTrail:
    """Append-only, verifiable record of workflow events."""

    def __init__(self, store: Optional[AuditStore] = None):
        self.store = store or InMemoryAuditStore()

    def append(
        self,
        workflow_id: str,
        event_type: str,
        snapshot: Any,
        actor: str = "system",
    ) -> Optional[AuditEntry]:
        """Record an event.

        A storage failure is logged and ``None`` returned; the workflow that
        produced the event carries on.
        """
        try:
            normalized = normalize_snapshot(snapshot)
            timestamp = datetime.now(timezone.utc)
            entry = AuditEntry(
                workflow_id=workflow_id,
                event_type=event_type,
                snapshot=normalized,
                timestamp=timestamp,
                digest=compute_digest(workflow_id, timestamp, event_type, normalized),
                actor=actor,
            )
            self.store.save(entry)
        except Exception:
            logger.exception(
                "Failed to append audit entry for workflow %s (%s)", workflow_id, event_type
            )
            return None

        logger.debug("Audit entry %s recorded for workflow %s", entry.id, workflow_id)
        return entry

    def verify(self, entry: Union[AuditEntry, str]) -> bool:
        """Recompute the digest of a stored entry and compare."""
        if isinstance(entry, str):
            found = self.store.get(entry)
            if found is None:
                return False
            entry = found
        return entry.expected_digest() == entry.digest

    def verify_all(self, workflow_id: Optional[str] = None) -> Dict[str, Any]:
        entries = self.store.list(workflow_id=workflow_id)
        failed = [entry.id for entry in entries if not self.verify(entry)]
        if failed:
            logger.warning("Audit verification failed for %d entries", len(failed))
        return {
            "total": len(entries),
            "verified": len(entries) - len(failed),
            "failed": len(failed),
            "failed_entries": failed,
        }

    def entries(
        self, workflow_id: Optional[str] = None, event_type: Optional[str] = None
    ) -> List[AuditEntry]:
        return self.store.list(workflow_id=workflow_id, event_type=event_type)
