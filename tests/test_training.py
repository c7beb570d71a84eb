"""Tests for training-example collection and RL training metrics."""

import pytest

from testgen_rl.data.models.workflows import (
    ExecutionResult,
    GeneratedArtifact,
    RewardRecord,
    Stage,
    Workflow,
)
from testgen_rl.rewards.training import quality_tier, rl_metrics, version_metrics

from conftest import PR_REFERENCE, StubPublisher


def _finished(
    combined: float,
    version: str = "m-v1.0",
    passed: int = 8,
    total: int = 10,
    complete: bool = True,
) -> Workflow:
    workflow = Workflow("ref")
    workflow.enter_stage(Stage.GENERATING)
    workflow.attach(
        "generated_artifact",
        GeneratedArtifact(artifact_text="def test_a():\n    assert True\n", test_count=total),
    )
    workflow.enter_stage(Stage.EXECUTING)
    workflow.attach(
        "execution_result",
        ExecutionResult(passed=passed, failed=total - passed, total=total, coverage_pct=80.0),
    )
    workflow.enter_stage(Stage.SCORING_REWARD)
    workflow.append_reward(
        RewardRecord(
            code_quality=combined,
            test_execution=combined,
            reasoning=combined,
            combined=combined,
            diagnostic={},
            model_version_tag=version,
        )
    )
    if complete:
        workflow.complete()
    return workflow


class TestQualityTier:
    """Tests for quality_tier()."""

    def test_boundaries(self):
        assert quality_tier(0.76) == "high"
        assert quality_tier(0.75) == "medium"
        assert quality_tier(0.5) == "medium"
        assert quality_tier(0.49) == "low"

    def test_custom_thresholds(self):
        assert quality_tier(0.8, high_threshold=0.9, medium_threshold=0.7) == "medium"
        assert quality_tier(0.6, high_threshold=0.9, medium_threshold=0.7) == "low"


class TestVersionMetrics:
    """Tests for per model version averages."""

    def test_grouped_by_latest_tag(self):
        workflows = [
            _finished(0.6, "m-v1.0", passed=5),
            _finished(0.8, "m-v1.0", passed=10),
            _finished(0.9, "m-v1.1", passed=10),
        ]

        metrics = version_metrics(workflows)

        assert list(metrics) == ["m-v1.0", "m-v1.1"]
        assert metrics["m-v1.0"]["workflow_count"] == 2
        assert metrics["m-v1.0"]["average_reward"] == pytest.approx(0.7)
        assert metrics["m-v1.0"]["pass_rate_pct"] == pytest.approx(75.0)
        assert metrics["m-v1.0"]["average_test_count"] == pytest.approx(10.0)
        assert metrics["m-v1.1"]["average_reward"] == pytest.approx(0.9)

    def test_unrewarded_workflows_ignored(self):
        assert version_metrics([Workflow("ref")]) == {}


class TestRlMetrics:
    """Tests for rl_metrics()."""

    def test_empty(self):
        metrics = rl_metrics([])

        assert metrics["total_workflows"] == 0
        assert metrics["quality_mixture"] == {"high": 0, "medium": 0, "low": 0}
        assert metrics["improvement_pct"] == 0.0
        assert metrics["training_data_ready"] is False
        assert metrics["fine_tuning_ready"] is False

    def test_mixture_and_readiness(self):
        workflows = [_finished(0.9) for _ in range(3)] + [_finished(0.6), _finished(0.3)]

        metrics = rl_metrics(workflows)

        assert metrics["total_workflows"] == 5
        assert metrics["quality_mixture"] == {"high": 3, "medium": 1, "low": 1}
        assert metrics["high_quality_examples"] == 3
        assert metrics["mixture_strategy"] == {"high": 0.7, "medium": 0.2, "low": 0.1}
        assert metrics["training_data_ready"] is True
        assert metrics["fine_tuning_ready"] is False

    def test_fine_tuning_ready(self):
        metrics = rl_metrics([_finished(0.95) for _ in range(10)])
        assert metrics["fine_tuning_ready"] is True

    def test_only_completed_workflows_count(self):
        """A workflow that failed after scoring is not a training example."""
        failed = _finished(0.9, complete=False)
        failed.fail("publish rejected")

        metrics = rl_metrics([failed, _finished(0.9)])

        assert metrics["total_workflows"] == 1
        assert metrics["high_quality_examples"] == 1

    def test_improvement_between_versions(self):
        workflows = [_finished(0.6, "m-v1.0"), _finished(0.9, "m-v1.1")]

        metrics = rl_metrics(workflows)

        assert metrics["improvement_pct"] == pytest.approx(50.0)
        assert list(metrics["by_model_version"]) == ["m-v1.0", "m-v1.1"]


class TestOrchestratorMetrics:
    """Tests for the orchestrator's metric views."""

    @pytest.mark.asyncio
    async def test_rl_metrics(self, make_orchestrator, full_collaborators):
        orchestrator = make_orchestrator(full_collaborators)
        for _ in range(3):
            await orchestrator.start(PR_REFERENCE)

        metrics = orchestrator.rl_metrics()

        assert metrics["total_workflows"] == 3
        assert metrics["quality_mixture"]["high"] == 3
        assert metrics["training_data_ready"] is True
        assert list(metrics["by_model_version"]) == ["gemini-1.5-flash-v1.0"]

    @pytest.mark.asyncio
    async def test_configured_threshold_applies_everywhere(
        self, make_orchestrator, full_collaborators, settings
    ):
        """A stricter threshold is honoured by every status view."""
        strict = settings.model_copy(update={"high_quality_threshold": 0.98})
        orchestrator = make_orchestrator(full_collaborators, settings=strict)

        workflow = await orchestrator.start(PR_REFERENCE)

        assert workflow.latest_reward.combined < 0.98
        assert orchestrator.workflow_status(workflow)["high_quality"] is False
        assert orchestrator.get_status()["high_quality"] == 0
        assert orchestrator.rl_metrics()["quality_mixture"]["high"] == 0
        assert orchestrator.training_examples() == []

    @pytest.mark.asyncio
    async def test_failed_publish_not_counted(self, make_orchestrator, full_collaborators):
        full_collaborators.publisher = StubPublisher(error=RuntimeError("ticket service down"))
        orchestrator = make_orchestrator(full_collaborators)

        await orchestrator.start(PR_REFERENCE)

        assert orchestrator.rl_metrics()["total_workflows"] == 0
