"""
Database package: audit entry persistence.
"""

from .audit_models import AuditEntryModel
from .audit_service import (
    AuditEntry,
    AuditStore,
    AuditTrail,
    InMemoryAuditStore,
    SqlAuditStore,
    compute_digest,
)
from .base import Base, get_engine, init_database

__all__ = [
    "AuditEntry",
    "AuditEntryModel",
    "AuditStore",
    "AuditTrail",
    "Base",
    "InMemoryAuditStore",
    "SqlAuditStore",
    "compute_digest",
    "get_engine",
    "init_database",
]
