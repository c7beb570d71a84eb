"""
Workflow models for the test-generation reward pipeline.

A ``Workflow`` is the aggregate root for one pipeline run. Stage payloads are
pydantic models so they can be snapshotted into the audit trail and handed to
collaborators without ad-hoc dict plumbing.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from ulid import ULID


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class Stage(str, Enum):
    """Workflow pipeline stages."""

    PENDING = "pending"
    FETCHING_CONTEXT = "fetching_context"
    REVIEWING = "reviewing"
    PLANNING = "planning"
    GENERATING = "generating"
    EXECUTING = "executing"
    SCORING_REWARD = "scoring_reward"
    PUBLISHING = "publishing"
    COMPLETED = "completed"
    FAILED = "failed"


# Fixed execution order of the working stages.
PIPELINE_STAGES: List[Stage] = [
    Stage.FETCHING_CONTEXT,
    Stage.REVIEWING,
    Stage.PLANNING,
    Stage.GENERATING,
    Stage.EXECUTING,
    Stage.SCORING_REWARD,
    Stage.PUBLISHING,
]

TERMINAL_STAGES = frozenset({Stage.COMPLETED, Stage.FAILED})

DEFAULT_HIGH_QUALITY_THRESHOLD = 0.75


class WorkflowStateError(Exception):
    """Raised when a mutation would break a workflow invariant."""

    def __init__(self, workflow_id: str, message: str):
        self.workflow_id = workflow_id
        self.message = message
        super().__init__(f"Workflow {workflow_id}: {message}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": "WORKFLOW_STATE_VIOLATION",
            "workflow_id": self.workflow_id,
            "message": self.message,
        }


# ---------------------------------------------------------------------------
# Stage payloads
# ---------------------------------------------------------------------------


class ChangedFile(BaseModel):
    """One file touched by a change-set."""

    model_config = ConfigDict(extra="forbid")

    filename: str = Field(..., min_length=1)
    additions: int = Field(0, ge=0)
    deletions: int = Field(0, ge=0)


class CodeContext(BaseModel):
    """Code artifact reference plus the diff or full-artifact payload."""

    model_config = ConfigDict(extra="forbid")

    reference: str = Field(..., min_length=1, description="PR or repository reference")
    has_change_set: bool = Field(..., description="False for a plain repository snapshot")
    diff: Optional[str] = Field(None, description="Unified diff when a change-set exists")
    full_artifact: Optional[Dict[str, Any]] = Field(
        None, description="Repository structure used for full-artifact analysis"
    )
    files: List[ChangedFile] = Field(default_factory=list)
    branch: Optional[str] = None
    commit_sha: Optional[str] = None
    simulated: bool = False


class ReviewFindings(BaseModel):
    """Issue counts reported by the code reviewer."""

    model_config = ConfigDict(extra="forbid")

    resolved: int = Field(0, ge=0)
    warnings: int = Field(0, ge=0)
    critical: int = Field(0, ge=0)
    minor_fixes: int = Field(0, ge=0)
    critical_issues: List[str] = Field(default_factory=list)
    warning_messages: List[str] = Field(default_factory=list)


class ReviewComplete(BaseModel):
    """The reviewer produced findings for a change-set."""

    model_config = ConfigDict(extra="forbid")

    kind: Literal["complete"] = "complete"
    findings: ReviewFindings
    simulated: bool = False

    @property
    def status(self) -> str:
        return "complete"


class NoChangeSet(BaseModel):
    """The artifact has no change-set, so there is nothing to review.

    A valid, non-error outcome: downstream stages switch to full-artifact
    analysis.
    """

    model_config = ConfigDict(extra="forbid")

    kind: Literal["no_diff_available"] = "no_diff_available"
    message: str = "Reviews apply to change-sets only; continuing with full-artifact analysis"
    simulated: bool = False

    @property
    def status(self) -> str:
        return "no_diff_available"


ReviewOutcome = Annotated[Union[ReviewComplete, NoChangeSet], Field(discriminator="kind")]


class ReasoningStep(BaseModel):
    """One structured step of the planner's reasoning trace."""

    model_config = ConfigDict(extra="forbid")

    title: str = Field(..., min_length=1)
    detail: str = ""
    impact: Literal["high", "medium", "low"] = "medium"


class CoveragePlan(BaseModel):
    """The planner's test plan together with its reasoning."""

    model_config = ConfigDict(extra="forbid")

    unit_tests: int = Field(0, ge=0)
    integration_tests: int = Field(0, ge=0)
    edge_cases: int = Field(0, ge=0)
    reasoning_steps: List[ReasoningStep] = Field(default_factory=list)
    reasoning_text: str = ""
    full_artifact_analysis: bool = False
    simulated: bool = False

    @property
    def planned_total(self) -> int:
        return self.unit_tests + self.integration_tests + self.edge_cases


class GeneratedArtifact(BaseModel):
    """Generated test source."""

    model_config = ConfigDict(extra="forbid")

    artifact_text: str
    language_tag: str = "javascript"
    framework: Optional[str] = None
    test_count: int = Field(0, ge=0)
    simulated: bool = False


class TypeTally(BaseModel):
    """Passed/failed counts for one category of tests."""

    model_config = ConfigDict(extra="forbid")

    passed: int = Field(0, ge=0)
    failed: int = Field(0, ge=0)


class ExecutionResult(BaseModel):
    """Outcome of executing (or heuristically scoring) a test artifact."""

    model_config = ConfigDict(extra="forbid")

    passed: int = Field(0, ge=0)
    failed: int = Field(0, ge=0)
    total: int = Field(0, ge=0)
    coverage_pct: float = Field(0.0, ge=0.0, le=100.0)
    breakdown: Dict[str, TypeTally] = Field(default_factory=dict)
    fingerprint: Optional[str] = None
    flakiness: Optional[float] = Field(None, ge=0.0, le=1.0)
    stability: Optional[float] = Field(None, ge=0.0, le=1.0)
    run_count: int = Field(1, ge=1)
    simulated: bool = False

    @property
    def pass_rate(self) -> float:
        return self.passed / self.total if self.total > 0 else 0.0


class PublishReceipt(BaseModel):
    """Reference to the ticket created by the publisher."""

    model_config = ConfigDict(extra="forbid")

    created_ref: str = Field(..., min_length=1)
    url: Optional[str] = None
    parent_ref: Optional[str] = None


class RewardRecord(BaseModel):
    """One immutable reward computation snapshot."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    timestamp: datetime = Field(default_factory=utc_now)
    code_quality: float = Field(..., ge=0.0, le=1.0)
    test_execution: float = Field(..., ge=0.0, le=1.0)
    reasoning: float = Field(..., ge=0.0, le=1.0)
    combined: float = Field(..., ge=0.0, le=1.0)
    diagnostic: Dict[str, Any]
    model_version_tag: str


# ---------------------------------------------------------------------------
# Aggregate root
# ---------------------------------------------------------------------------

PAYLOAD_SLOTS = (
    "context",
    "review",
    "test_plan",
    "generated_artifact",
    "execution_result",
    "publish_receipt",
)


class Workflow:
    """
    One pipeline run, from trigger to Completed or Failed.

    Only the orchestrator mutates a workflow. Payload slots are write-once,
    ``reward_history`` is append-only, and nothing changes after a terminal
    stage is reached.
    """

    def __init__(
        self,
        reference: str,
        parent_ticket_ref: Optional[str] = None,
        created_by: str = "system",
        workflow_id: Optional[str] = None,
    ):
        self.id = workflow_id or str(ULID())
        self.reference = reference
        self.parent_ticket_ref = parent_ticket_ref
        self.created_by = created_by
        self.stage = Stage.PENDING
        self.last_stage: Optional[Stage] = None
        self.error: Optional[str] = None
        self.simulated_stages: List[Stage] = []
        self.created_at = utc_now()
        self.updated_at = self.created_at
        self.completed_at: Optional[datetime] = None
        self._payloads: Dict[str, Any] = {}
        self._rewards: List[RewardRecord] = []

    # -- read access -----------------------------------------------------

    @property
    def context(self) -> Optional[CodeContext]:
        return self._payloads.get("context")

    @property
    def review(self) -> Optional[Union[ReviewComplete, NoChangeSet]]:
        return self._payloads.get("review")

    @property
    def test_plan(self) -> Optional[CoveragePlan]:
        return self._payloads.get("test_plan")

    @property
    def generated_artifact(self) -> Optional[GeneratedArtifact]:
        return self._payloads.get("generated_artifact")

    @property
    def execution_result(self) -> Optional[ExecutionResult]:
        return self._payloads.get("execution_result")

    @property
    def publish_receipt(self) -> Optional[PublishReceipt]:
        return self._payloads.get("publish_receipt")

    @property
    def reward_history(self) -> tuple:
        return tuple(self._rewards)

    @property
    def is_terminal(self) -> bool:
        return self.stage in TERMINAL_STAGES

    @property
    def latest_reward(self) -> Optional[RewardRecord]:
        return self._rewards[-1] if self._rewards else None

    @property
    def average_reward(self) -> float:
        if not self._rewards:
            return 0.0
        return sum(r.combined for r in self._rewards) / len(self._rewards)

    def is_high_quality(self, threshold: float = DEFAULT_HIGH_QUALITY_THRESHOLD) -> bool:
        """Whether the latest reward clears ``threshold``."""
        latest = self.latest_reward
        return latest is not None and latest.combined > threshold

    def has_payload(self, slot: str) -> bool:
        return slot in self._payloads

    # -- mutation (orchestrator only) -------------------------------------

    def _ensure_mutable(self) -> None:
        if self.is_terminal:
            raise WorkflowStateError(
                self.id, f"cannot mutate a workflow in terminal stage {self.stage.value}"
            )

    def _touch(self) -> None:
        self.updated_at = utc_now()

    def enter_stage(self, stage: Stage) -> None:
        """Move forward to ``stage``. Moving backwards is refused."""
        self._ensure_mutable()
        if stage not in PIPELINE_STAGES:
            raise WorkflowStateError(self.id, f"{stage.value} is not a working stage")
        if self.stage != Stage.PENDING and PIPELINE_STAGES.index(stage) < PIPELINE_STAGES.index(
            self.stage
        ):
            raise WorkflowStateError(
                self.id, f"cannot move back from {self.stage.value} to {stage.value}"
            )
        self.stage = stage
        self._touch()

    def attach(self, slot: str, payload: BaseModel) -> None:
        """Attach a stage payload. Settled payloads are never overwritten."""
        self._ensure_mutable()
        if slot not in PAYLOAD_SLOTS:
            raise WorkflowStateError(self.id, f"unknown payload slot {slot!r}")

        existing = self._payloads.get(slot)
        if existing is not None:
            if existing == payload:
                return
            raise WorkflowStateError(
                self.id, f"payload {slot!r} is already settled with a different value"
            )

        self._payloads[slot] = payload
        if getattr(payload, "simulated", False) and self.stage not in self.simulated_stages:
            self.simulated_stages.append(self.stage)
        self._touch()

    def append_reward(self, record: RewardRecord) -> None:
        self._ensure_mutable()
        self._rewards.append(record)
        self._touch()

    def complete(self) -> None:
        self._ensure_mutable()
        self.last_stage = self.stage
        self.stage = Stage.COMPLETED
        self.completed_at = utc_now()
        self._touch()

    def fail(self, error: str) -> None:
        """Mark the workflow Failed, remembering the stage it reached."""
        self._ensure_mutable()
        self.last_stage = self.stage
        self.stage = Stage.FAILED
        self.error = error
        self.completed_at = utc_now()
        self._touch()

    # -- views -------------------------------------------------------------

    def get_status(self, threshold: float = DEFAULT_HIGH_QUALITY_THRESHOLD) -> Dict[str, Any]:
        """Get the current status of the workflow, judged against ``threshold``."""
        latest = self.latest_reward
        return {
            "id": self.id,
            "reference": self.reference,
            "stage": self.stage.value,
            "last_stage": self.last_stage.value if self.last_stage else None,
            "error": self.error,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "simulated_stages": [s.value for s in self.simulated_stages],
            "review_status": self.review.status if self.review else None,
            "reward_count": len(self._rewards),
            "latest_reward": latest.combined if latest else None,
            "average_reward": self.average_reward,
            "high_quality": self.is_high_quality(threshold),
        }

    def __repr__(self) -> str:
        return f"Workflow(id={self.id}, stage={self.stage.value})"
