"""Tests for the reward engine."""

import pytest

from testgen_rl.config import Settings
from testgen_rl.data.models.workflows import (
    CoveragePlan,
    ExecutionResult,
    NoChangeSet,
    ReasoningStep,
    ReviewComplete,
    ReviewFindings,
)
from testgen_rl.rewards.engine import RewardEngine, RewardWeights, combine


@pytest.fixture
def scenario_review() -> ReviewComplete:
    return ReviewComplete(findings=ReviewFindings(resolved=14, warnings=2, critical=0, minor_fixes=0))


@pytest.fixture
def scenario_execution() -> ExecutionResult:
    return ExecutionResult(passed=16, failed=0, total=16, coverage_pct=87, flakiness=0.0)


@pytest.fixture
def plan() -> CoveragePlan:
    return CoveragePlan(
        unit_tests=8,
        integration_tests=3,
        edge_cases=5,
        reasoning_steps=[
            ReasoningStep(title="Address review warnings", impact="high"),
            ReasoningStep(title="Boundary values", impact="medium"),
        ],
        reasoning_text="Use the review finding and cover the empty and invalid edge cases.",
    )


class TestRewardWeights:
    """Tests for RewardWeights."""

    def test_defaults(self):
        """Default weights are 0.5 / 0.4 / 0.1."""
        assert RewardWeights().to_dict() == {
            "code_quality": 0.5,
            "test_execution": 0.4,
            "reasoning": 0.1,
        }

    def test_negative_weight_rejected(self):
        """Weights must be non-negative."""
        with pytest.raises(ValueError):
            RewardWeights(code_quality=-0.1)

    def test_from_settings(self):
        """Weights come from configuration."""
        settings = Settings(reward_weight_code_quality=0.2, reward_weight_reasoning=0.4)
        weights = RewardWeights.from_settings(settings)
        assert weights.code_quality == 0.2
        assert weights.test_execution == 0.4
        assert weights.reasoning == 0.4

    def test_combine_clamps(self):
        """Overweighted inputs never exceed 1."""
        assert combine(1.0, 1.0, 1.0, RewardWeights(1.0, 1.0, 1.0)) == 1.0


class TestRewardEngine:
    """Tests for RewardEngine.compute()."""

    def test_scenario_components(self, scenario_review, scenario_execution, plan):
        """Scenario A and B inputs give the documented component scores."""
        record = RewardEngine().compute(scenario_review, scenario_execution, plan)

        assert record.code_quality == 1.0
        assert record.test_execution == pytest.approx(0.961)

    def test_combined_formula(self, scenario_review, scenario_execution, plan):
        """combined == clamp(0.5q + 0.4e + 0.1r)."""
        record = RewardEngine().compute(scenario_review, scenario_execution, plan)

        expected = 0.5 * record.code_quality + 0.4 * record.test_execution + 0.1 * record.reasoning
        assert record.combined == pytest.approx(min(1.0, max(0.0, expected)))

    def test_diagnostic_vector(self, scenario_review, scenario_execution, plan):
        """The diagnostic carries components, raw inputs, weights and metadata."""
        record = RewardEngine().compute(
            scenario_review,
            scenario_execution,
            plan,
            model_version_tag="model-v1.0",
            metadata={"workflow_id": "wf-1"},
        )
        diagnostic = record.diagnostic

        assert set(diagnostic) == {"components", "raw", "weights", "metadata"}
        assert diagnostic["components"]["code_quality"] == record.code_quality
        assert diagnostic["raw"]["review"] == {
            "resolved": 14,
            "warnings": 2,
            "critical": 0,
            "minor_fixes": 0,
        }
        assert diagnostic["raw"]["execution"]["total"] == 16
        assert diagnostic["raw"]["reasoning"]["step_count"] == 2
        assert diagnostic["metadata"]["test_pass_rate"] == 1.0
        assert diagnostic["metadata"]["test_coverage"] == 87
        assert diagnostic["metadata"]["review_status"] == "complete"
        assert diagnostic["metadata"]["flakiness_source"] == "tracked"
        assert diagnostic["metadata"]["reduced_confidence"] is False
        assert diagnostic["metadata"]["workflow_id"] == "wf-1"
        assert record.model_version_tag == "model-v1.0"

    def test_no_change_set_scores_neutral_quality(self, scenario_execution, plan):
        """A NoChangeSet review has no data and scores 0.5."""
        record = RewardEngine().compute(NoChangeSet(), scenario_execution, plan)

        assert record.code_quality == 0.5
        assert record.diagnostic["raw"]["review"] is None
        assert record.diagnostic["metadata"]["review_status"] == "no_diff_available"

    def test_heuristic_flakiness_marks_reduced_confidence(self, scenario_review, plan):
        """Without tracked flakiness the heuristic path is flagged."""
        execution = ExecutionResult(passed=5, failed=5, total=10, coverage_pct=90)
        record = RewardEngine().compute(scenario_review, execution, plan)

        assert record.diagnostic["metadata"]["flakiness_source"] == "heuristic"
        assert record.diagnostic["metadata"]["reduced_confidence"] is True

    def test_missing_payloads(self):
        """Nothing to score yields neutral quality, zero execution, neutral reasoning."""
        record = RewardEngine().compute(None, None, None)

        assert record.code_quality == 0.5
        assert record.test_execution == 0.0
        assert record.reasoning == 0.5
        assert record.combined == pytest.approx(0.3)

    def test_custom_weights(self, scenario_review, scenario_execution, plan):
        """Configured weights flow into the combined reward."""
        engine = RewardEngine(RewardWeights(code_quality=1.0, test_execution=0.0, reasoning=0.0))
        record = engine.compute(scenario_review, scenario_execution, plan)

        assert record.combined == pytest.approx(1.0)
        assert record.diagnostic["weights"]["code_quality"] == 1.0

    def test_record_is_frozen(self, scenario_review, scenario_execution, plan):
        """Reward records cannot be edited after creation."""
        record = RewardEngine().compute(scenario_review, scenario_execution, plan)
        with pytest.raises(Exception):
            record.combined = 0.0
