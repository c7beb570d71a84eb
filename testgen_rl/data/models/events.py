"""
Event models for the test-generation reward pipeline.
"""

from typing import Dict, Any, Optional
from datetime import datetime, timezone
from enum import Enum
import uuid


class EventPriority(Enum):
    """Event priority levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Event:
    """
    A lifecycle announcement about one workflow.

    Events are published on the workflow's channel by the orchestrator and
    consumed by whatever is watching that workflow (dashboards, loggers,
    tests). They carry no behaviour of their own.
    """

    def __init__(
        self,
        event_type: str,
        workflow_id: str,
        data: Dict[str, Any],
        source: str = "orchestrator",
        priority: EventPriority = EventPriority.MEDIUM,
        tags: Optional[Dict[str, str]] = None
    ):
        self.id = str(uuid.uuid4())
        self.type = event_type
        self.workflow_id = workflow_id
        self.source = source
        self.data = data
        self.priority = priority
        self.tags = tags or {}
        self.created_at = datetime.now(timezone.utc)

    @property
    def channel(self) -> str:
        """Name of the per-workflow channel this event belongs to."""
        return f"workflow:{self.workflow_id}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert the event to a dictionary."""
        return {
            "id": self.id,
            "type": self.type,
            "workflow_id": self.workflow_id,
            "source": self.source,
            "data": self.data,
            "priority": self.priority.value,
            "tags": self.tags,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        """Create an event from a dictionary."""
        event = cls(
            event_type=data["type"],
            workflow_id=data["workflow_id"],
            data=data["data"],
            source=data.get("source", "orchestrator"),
            priority=EventPriority(data.get("priority", "medium")),
            tags=data.get("tags")
        )

        event.id = data["id"]
        event.created_at = datetime.fromisoformat(data["created_at"])
        return event

    def __str__(self) -> str:
        return (
            f"Event(id={self.id[:8]}, type={self.type}, "
            f"workflow={self.workflow_id}, priority={self.priority.value})"
        )

    def __repr__(self) -> str:
        return self.__str__()


class EventTypes:
    """Event types published on a workflow channel."""

    # Stage lifecycle
    STAGE_STARTED = "stage.started"
    STAGE_UPDATED = "stage.updated"
    STAGE_FAILED = "stage.failed"

    # Workflow lifecycle
    WORKFLOW_CREATED = "workflow.created"
    WORKFLOW_COMPLETED = "workflow.completed"
    WORKFLOW_FAILED = "workflow.failed"
    WORKFLOW_CANCELLED = "workflow.cancelled"

    # Reward signals
    REWARD_COMPUTED = "reward.computed"


class AuditEventTypes:
    """Event types recorded in the audit trail."""

    REVIEW = "code_review"
    TEST_EXECUTION = "test_execution"
    REWARD_COMPUTATION = "reward_computation"
    WORKFLOW_STATE_CHANGE = "workflow_state_change"
