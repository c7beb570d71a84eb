"""Tests for the component reward scorers."""

import pytest

from testgen_rl.data.models.workflows import ReasoningStep
from testgen_rl.rewards.scorers import (
    conciseness_penalty,
    flakiness_penalty,
    score_execution,
    score_reasoning,
    score_review,
)


class TestReviewScorer:
    """Tests for score_review()."""

    def test_scenario_a_clips_to_perfect(self):
        """14 resolved and 2 warnings is 13 points, clipped to 10."""
        assert score_review(resolved=14, warnings=2, critical=0, minor_fixes=0) == 1.0

    def test_all_zero_counts_are_perfect(self):
        """A review that found nothing to fix scores 1.0."""
        assert score_review(0, 0, 0, 0) == 1.0

    def test_missing_data_is_neutral(self):
        """No review data at all scores 0.5."""
        assert score_review() == 0.5

    def test_linear_mapping(self):
        """Points in range map linearly onto [0, 1]."""
        # 2 + 0.2*5 - 0.5*2 - 2*1 = 0
        assert score_review(resolved=2, warnings=2, critical=1, minor_fixes=5) == pytest.approx(0.5)
        assert score_review(resolved=4) == pytest.approx(0.7)

    def test_many_critical_findings_floor_at_zero(self):
        """Critical findings push points below -10, clipped to 0."""
        assert score_review(resolved=0, warnings=0, critical=10) == 0.0

    @pytest.mark.parametrize(
        "counts",
        [(0, 0, 0, 1), (1, 40, 0, 0), (100, 0, 0, 100), (0, 3, 7, 2), (5, 5, 5, 5)],
    )
    def test_output_is_bounded(self, counts):
        """Output stays within [0, 1] for any non-negative counts."""
        assert 0.0 <= score_review(*counts) <= 1.0


class TestExecutionScorer:
    """Tests for score_execution()."""

    def test_scenario_b(self):
        """16/16 passing at 87% coverage with zero flakiness."""
        assert score_execution(16, 16, 87, flakiness=0.0) == pytest.approx(0.961)

    def test_no_tests_scores_zero(self):
        """total == 0 always scores 0."""
        assert score_execution(0, 0, 95, flakiness=0.0) == 0.0

    def test_tolerated_flakiness_has_no_penalty(self):
        """Flakiness up to 0.05 is free."""
        assert score_execution(16, 16, 87, flakiness=0.05) == pytest.approx(0.961)

    def test_tracked_flakiness_penalty(self):
        """Flakiness 0.3 gives a 0.5 penalty."""
        assert score_execution(16, 16, 87, flakiness=0.3) == pytest.approx(0.961 * 0.5)

    def test_heuristic_penalty_without_tracked_flakiness(self):
        """Low pass rate with high coverage is treated as likely flaky."""
        # base = 0.7*0.5 + 0.3*0.9 = 0.62, penalty = (0.8 - 0.5) * 0.5 = 0.15
        assert score_execution(5, 10, 90) == pytest.approx(0.62 * 0.85)

    def test_monotonic_in_pass_rate(self):
        """More passing tests never lowers the score."""
        scores = [score_execution(p, 20, 60, flakiness=0.1) for p in range(21)]
        assert scores == sorted(scores)

    def test_monotonic_in_coverage(self):
        """More coverage never lowers the score."""
        scores = [score_execution(15, 20, c, flakiness=0.1) for c in range(0, 101, 5)]
        assert scores == sorted(scores)

    def test_heuristic_penalty_breaks_coverage_monotonicity(self):
        """Without tracked flakiness, crossing 70% coverage can lower the score."""
        assert score_execution(5, 10, 70) == pytest.approx(0.56)
        assert score_execution(5, 10, 71) == pytest.approx(0.563 * 0.85)
        assert score_execution(5, 10, 71) < score_execution(5, 10, 70)


class TestFlakinessPenalty:
    """Tests for flakiness_penalty()."""

    def test_sources(self):
        """The penalty reports where its flakiness came from."""
        assert flakiness_penalty(1.0, 0.9, 0.0) == (0.0, "tracked")
        assert flakiness_penalty(0.5, 0.9, None)[1] == "heuristic"
        assert flakiness_penalty(0.9, 0.9, None) == (0.0, "none")


class TestReasoningScorer:
    """Tests for score_reasoning()."""

    def test_no_steps_is_neutral(self):
        """Without structured steps the score is 0.5."""
        assert score_reasoning([], has_findings=True, text="anything") == 0.5
        assert score_reasoning(None) == 0.5

    def test_structured_and_traditional_blend(self):
        """Five high-impact steps that use the findings and edge cases."""
        steps = [ReasoningStep(title=f"step {i}", impact="high") for i in range(5)]
        text = "Address review finding edge boundary"
        # structural = 0.5 + 0.3 * 2/3 + 0.2 = 0.9, traditional = 1.0
        assert score_reasoning(steps, has_findings=True, text=text) == pytest.approx(0.95)

    def test_findings_only_count_when_present(self):
        """Mentioning findings that do not exist earns nothing."""
        steps = [ReasoningStep(title=f"step {i}", impact="high") for i in range(5)]
        text = "Address review finding edge boundary"
        assert score_reasoning(steps, has_findings=False, text=text) == pytest.approx(0.7)

    def test_verbose_reasoning_is_penalised(self):
        """Reasoning over 500 words loses structural credit."""
        assert conciseness_penalty(400) == 0.0
        assert conciseness_penalty(600) == pytest.approx(0.1)
        assert conciseness_penalty(5000) == pytest.approx(0.3)

        steps = [ReasoningStep(title="only step", impact="low")]
        short = score_reasoning(steps, text="plan")
        verbose = score_reasoning(steps, text=" ".join(["plan"] * 900))
        assert verbose < short
