"""Data models for events, workflows, and stage payloads."""

from .events import AuditEventTypes, Event, EventPriority, EventTypes
from .workflows import (
    ChangedFile,
    CodeContext,
    CoveragePlan,
    ExecutionResult,
    GeneratedArtifact,
    NoChangeSet,
    PublishReceipt,
    ReasoningStep,
    ReviewComplete,
    ReviewFindings,
    ReviewOutcome,
    RewardRecord,
    Stage,
    TypeTally,
    Workflow,
    WorkflowStateError,
)

__all__ = [
    "AuditEventTypes",
    "ChangedFile",
    "CodeContext",
    "CoveragePlan",
    "Event",
    "EventPriority",
    "EventTypes",
    "ExecutionResult",
    "GeneratedArtifact",
    "NoChangeSet",
    "PublishReceipt",
    "ReasoningStep",
    "ReviewComplete",
    "ReviewFindings",
    "ReviewOutcome",
    "RewardRecord",
    "Stage",
    "TypeTally",
    "Workflow",
    "WorkflowStateError",
]
