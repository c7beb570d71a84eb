"""
Collaborator ports.

The orchestrator reaches every external system (code host, reviewer,
planner, generator, executor, ticket system) through these narrow async
interfaces. Concrete HTTP clients live outside this package; tests and the
CLI plug in stubs or leave a port empty to take the fallback path.

Error taxonomy:
    - ``InvalidReference``, ``PublishRejected``, ``UnrecoverableStageError``:
      the workflow fails, nothing is retried.
    - ``CollaboratorUnavailable`` (or a timeout): retried up to the port's
      bound, then replaced by a simulated payload.
    - ``NoChangeSetAvailable``: not an error; review becomes ``NoChangeSet``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, Union, runtime_checkable

from ..data.models.workflows import (
    CodeContext,
    CoveragePlan,
    ExecutionResult,
    GeneratedArtifact,
    NoChangeSet,
    PublishReceipt,
    ReviewComplete,
    ReviewFindings,
)


class StageError(Exception):
    """Base class for errors raised by collaborators.

    Attributes:
        code: Stable error code for programmatic handling
        message: Human-readable error description
    """

    code = "stage_error"

    def __init__(self, message: str, code: Optional[str] = None):
        self.code = code or self.code
        self.message = message
        super().__init__(f"{self.code}: {message}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for JSON serialization."""
        return {"error": type(self).__name__, "code": self.code, "message": self.message}


class UnrecoverableStageError(StageError):
    """The stage cannot succeed; the workflow must fail."""

    code = "unrecoverable"


class InvalidReference(UnrecoverableStageError):
    """The trigger's code reference is malformed."""

    code = "invalid_reference"


class PublishRejected(UnrecoverableStageError):
    """The target ticket or project could not be resolved."""

    code = "publish_rejected"


class CollaboratorUnavailable(StageError):
    """Missing credentials, timeout or transient remote failure."""

    code = "collaborator_unavailable"


class NoChangeSetAvailable(StageError):
    """The artifact is a plain snapshot with no change-set to review."""

    code = "no_change_set"


@runtime_checkable
class CodeFetcher(Protocol):
    async def fetch_code_context(self, reference: str) -> CodeContext: ...


@runtime_checkable
class ArtifactReviewer(Protocol):
    async def review_artifact(self, reference: str) -> Union[ReviewFindings, ReviewComplete]: ...


@runtime_checkable
class CoveragePlanner(Protocol):
    async def plan_tests(
        self, context: CodeContext, review: Union[ReviewComplete, NoChangeSet]
    ) -> CoveragePlan: ...


@runtime_checkable
class ArtifactGenerator(Protocol):
    async def generate_test_artifact(
        self, plan: CoveragePlan, context: CodeContext
    ) -> GeneratedArtifact: ...


@runtime_checkable
class ArtifactExecutor(Protocol):
    async def execute_artifact(self, artifact_text: str) -> ExecutionResult: ...


@runtime_checkable
class ResultPublisher(Protocol):
    async def publish_result(
        self, parent_ticket_ref: Optional[str], summary: Dict[str, Any]
    ) -> PublishReceipt: ...


@dataclass
class Collaborators:
    """The set of ports one orchestrator talks to.

    A ``None`` port counts as unavailable. Each port may expose
    ``max_retries`` and ``timeout_seconds`` attributes to override the
    orchestrator defaults.
    """

    fetcher: Optional[CodeFetcher] = None
    reviewer: Optional[ArtifactReviewer] = None
    planner: Optional[CoveragePlanner] = None
    generator: Optional[ArtifactGenerator] = None
    executor: Optional[ArtifactExecutor] = None
    publisher: Optional[ResultPublisher] = None


__all__ = [
    "ArtifactExecutor",
    "ArtifactGenerator",
    "ArtifactReviewer",
    "CodeFetcher",
    "CollaboratorUnavailable",
    "Collaborators",
    "CoveragePlanner",
    "InvalidReference",
    "NoChangeSetAvailable",
    "PublishRejected",
    "ResultPublisher",
    "StageError",
    "UnrecoverableStageError",
]
