"""Test configuration and fixtures."""

import asyncio
from typing import Any, Callable, Dict, List, Optional

import pytest

from testgen_rl.config import Settings
from testgen_rl.core.broadcaster import EventBroadcaster
from testgen_rl.core.orchestrator import WorkflowOrchestrator
from testgen_rl.data.models.events import Event
from testgen_rl.data.models.workflows import (
    ChangedFile,
    CodeContext,
    CoveragePlan,
    ExecutionResult,
    GeneratedArtifact,
    PublishReceipt,
    ReasoningStep,
    ReviewFindings,
)
from testgen_rl.db.audit_service import AuditTrail
from testgen_rl.ports import Collaborators

PR_REFERENCE = "https://github.com/acme/shop/pull/42"
REPO_REFERENCE = "https://github.com/acme/shop"

ARTIFACT_TEXT = """import pytest


def test_checkout_total():
    assert checkout([1, 2]) == 3


def test_checkout_empty_cart_raises():
    with pytest.raises(ValueError):
        checkout([])
"""


class StubFetcher:
    """Fetcher returning a fixed context, optionally failing first."""

    def __init__(self, context: Optional[CodeContext] = None, errors: Optional[List[Exception]] = None):
        self.context = context
        self.errors = list(errors or [])
        self.calls = 0

    async def fetch_code_context(self, reference: str) -> CodeContext:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        if self.context is not None:
            return self.context
        return CodeContext(
            reference=reference,
            has_change_set=True,
            diff="diff --git a/shop/cart.py b/shop/cart.py\n+def checkout(items): ...",
            files=[ChangedFile(filename="shop/cart.py", additions=12, deletions=1)],
            branch="feature/checkout",
        )


class StubReviewer:
    def __init__(self, findings: Optional[ReviewFindings] = None, error: Optional[Exception] = None):
        self.findings = findings or ReviewFindings(resolved=14, warnings=2)
        self.error = error
        self.calls = 0

    async def review_artifact(self, reference: str) -> ReviewFindings:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.findings


class StubPlanner:
    def __init__(self):
        self.received: List[Any] = []

    async def plan_tests(self, context, review) -> CoveragePlan:
        self.received.append((context, review))
        return CoveragePlan(
            unit_tests=10,
            integration_tests=4,
            edge_cases=2,
            reasoning_steps=[
                ReasoningStep(title="Address review finding on totals", impact="high"),
                ReasoningStep(title="Empty cart edge case", impact="high"),
                ReasoningStep(title="Invalid item error path", impact="medium"),
            ],
            reasoning_text="The review finding flags totals; cover the empty edge case and invalid input.",
        )


class StubGenerator:
    def __init__(self, text: str = ARTIFACT_TEXT, test_count: int = 16):
        self.text = text
        self.test_count = test_count

    async def generate_test_artifact(self, plan, context) -> GeneratedArtifact:
        return GeneratedArtifact(
            artifact_text=self.text,
            language_tag="python",
            framework="pytest",
            test_count=self.test_count,
        )


class StubExecutor:
    """Executor replaying a list of (passed, total) outcomes."""

    def __init__(self, outcomes: Optional[List[tuple]] = None, coverage_pct: float = 87.0):
        self.outcomes = list(outcomes or [(16, 16)])
        self.coverage_pct = coverage_pct
        self.calls = 0

    async def execute_artifact(self, artifact_text: str) -> ExecutionResult:
        passed, total = self.outcomes[min(self.calls, len(self.outcomes) - 1)]
        self.calls += 1
        return ExecutionResult(
            passed=passed,
            failed=total - passed,
            total=total,
            coverage_pct=self.coverage_pct,
        )


class StubPublisher:
    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.summaries: List[Dict[str, Any]] = []

    async def publish_result(self, parent_ticket_ref, summary) -> PublishReceipt:
        self.summaries.append(summary)
        if self.error is not None:
            raise self.error
        return PublishReceipt(created_ref=f"TICKET-{len(self.summaries)}", parent_ref=parent_ticket_ref)


class BlockingFetcher:
    """Fetcher that waits until released."""

    def __init__(self):
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def fetch_code_context(self, reference: str) -> CodeContext:
        self.started.set()
        await self.release.wait()
        return CodeContext(reference=reference, has_change_set=True, diff="+x")


@pytest.fixture
def settings() -> Settings:
    """Settings with fast retries for tests."""
    return Settings(
        database_url="sqlite:///:memory:",
        retry_backoff_seconds=0.0,
        collaborator_timeout_seconds=2.0,
        collaborator_max_retries=2,
    )


@pytest.fixture
def full_collaborators() -> Collaborators:
    """Every port backed by a working stub."""
    return Collaborators(
        fetcher=StubFetcher(),
        reviewer=StubReviewer(),
        planner=StubPlanner(),
        generator=StubGenerator(),
        executor=StubExecutor(),
        publisher=StubPublisher(),
    )


@pytest.fixture
def make_orchestrator(settings) -> Callable[..., WorkflowOrchestrator]:
    """Factory building orchestrators with in-memory audit and test settings."""

    def _make(collaborators: Optional[Collaborators] = None, **kwargs: Any) -> WorkflowOrchestrator:
        kwargs.setdefault("audit", AuditTrail())
        kwargs.setdefault("broadcaster", EventBroadcaster())
        kwargs.setdefault("settings", settings)
        return WorkflowOrchestrator(
            collaborators=collaborators or Collaborators(publisher=StubPublisher()),
            **kwargs,
        )

    return _make


@pytest.fixture
def recorded_events():
    """A broadcaster plus the list of events it delivered."""
    broadcaster = EventBroadcaster()
    events: List[Event] = []
    broadcaster.subscribe_all(events.append)
    return broadcaster, events
