"""
TestGen RL

Reward pipeline that turns test-generation workflow runs into scored,
auditable reinforcement-learning training data.
"""

import importlib.metadata

__version__ = importlib.metadata.version("testgen-rl")

from .core.broadcaster import EventBroadcaster
from .core.orchestrator import WorkflowOrchestrator
from .core.registry import InMemoryModelRegistry, ModelRegistry
from .data.models import (
    Event,
    EventPriority,
    EventTypes,
    RewardRecord,
    Stage,
    Workflow,
)
from .db.audit_service import AuditTrail
from .ports import Collaborators
from .rewards import FlakinessTracker, RewardEngine, RewardWeights

__all__ = [
    "AuditTrail",
    "Collaborators",
    "Event",
    "EventBroadcaster",
    "EventPriority",
    "EventTypes",
    "FlakinessTracker",
    "InMemoryModelRegistry",
    "ModelRegistry",
    "RewardEngine",
    "RewardRecord",
    "RewardWeights",
    "Stage",
    "Workflow",
    "WorkflowOrchestrator",
]
