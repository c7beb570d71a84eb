"""
Reward engine.

Combines the three component scorers into one reward and keeps the full
diagnostic vector next to it, so an auditor can tell a genuinely good run
from one that games the formula.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from ..config import Settings
from ..data.models.workflows import (
    CoveragePlan,
    ExecutionResult,
    NoChangeSet,
    ReviewComplete,
    RewardRecord,
)
from .scorers import (
    clamp,
    flakiness_penalty,
    score_execution,
    score_reasoning,
    score_review,
)


@dataclass(frozen=True)
class RewardWeights:
    """Weights of the code-quality, test-execution and reasoning rewards."""

    code_quality: float = 0.5
    test_execution: float = 0.4
    reasoning: float = 0.1

    def __post_init__(self) -> None:
        for name in ("code_quality", "test_execution", "reasoning"):
            if getattr(self, name) < 0:
                raise ValueError(f"reward weight {name} must be non-negative")

    @classmethod
    def from_settings(cls, settings: Settings) -> "RewardWeights":
        return cls(
            code_quality=settings.reward_weight_code_quality,
            test_execution=settings.reward_weight_test_execution,
            reasoning=settings.reward_weight_reasoning,
        )

    def to_dict(self) -> Dict[str, float]:
        return {
            "code_quality": self.code_quality,
            "test_execution": self.test_execution,
            "reasoning": self.reasoning,
        }


def combine(
    code_quality: float, test_execution: float, reasoning: float, weights: RewardWeights
) -> float:
    return clamp(
        code_quality * weights.code_quality
        + test_execution * weights.test_execution
        + reasoning * weights.reasoning
    )


class RewardEngine:
    """Computes ``RewardRecord`` snapshots from stage payloads."""

    def __init__(self, weights: Optional[RewardWeights] = None):
        self.weights = weights or RewardWeights()

    def compute(
        self,
        review: Optional[Union[ReviewComplete, NoChangeSet]],
        execution: Optional[ExecutionResult],
        plan: Optional[CoveragePlan],
        model_version_tag: str = "unversioned",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> RewardRecord:
        """Score one workflow's payloads.

        Args:
            review: Review outcome; ``None`` or ``NoChangeSet`` scores neutral
            execution: Execution result, possibly carrying tracked flakiness
            plan: Test plan whose reasoning trace is scored
            model_version_tag: Tag of the model that produced the outputs
            metadata: Extra context merged into the diagnostic metadata

        Returns:
            RewardRecord with the mandatory diagnostic vector
        """
        findings = review.findings if isinstance(review, ReviewComplete) else None
        if findings is not None:
            code_quality = score_review(
                findings.resolved, findings.warnings, findings.critical, findings.minor_fixes
            )
        else:
            code_quality = score_review()

        if execution is not None:
            test_execution = score_execution(
                execution.passed, execution.total, execution.coverage_pct, execution.flakiness
            )
            _, flakiness_source = flakiness_penalty(
                execution.pass_rate, execution.coverage_pct / 100, execution.flakiness
            )
        else:
            test_execution = 0.0
            flakiness_source = "none"

        steps = plan.reasoning_steps if plan is not None else []
        reasoning_text = plan.reasoning_text if plan is not None else ""
        reasoning = score_reasoning(steps, has_findings=findings is not None, text=reasoning_text)

        combined = combine(code_quality, test_execution, reasoning, self.weights)

        diagnostic = {
            "components": {
                "code_quality": code_quality,
                "test_execution": test_execution,
                "reasoning": reasoning,
            },
            "raw": {
                "review": findings.model_dump(include={"resolved", "warnings", "critical", "minor_fixes"})
                if findings is not None
                else None,
                "execution": {
                    "passed": execution.passed,
                    "failed": execution.failed,
                    "total": execution.total,
                    "coverage_pct": execution.coverage_pct,
                    "flakiness": execution.flakiness,
                }
                if execution is not None
                else None,
                "reasoning": {
                    "step_count": len(steps),
                    "high_impact_steps": sum(1 for s in steps if s.impact == "high"),
                    "word_count": len(reasoning_text.split()),
                },
            },
            "weights": self.weights.to_dict(),
            "metadata": {
                "test_pass_rate": execution.pass_rate if execution is not None else 0.0,
                "test_coverage": execution.coverage_pct if execution is not None else 0.0,
                "test_total": execution.total if execution is not None else 0,
                "test_passed": execution.passed if execution is not None else 0,
                "flakiness_source": flakiness_source,
                "reduced_confidence": flakiness_source == "heuristic",
                "reasoning_length": len(reasoning_text),
                "review_status": review.status if review is not None else "unknown",
                **(metadata or {}),
            },
        }

        return RewardRecord(
            code_quality=code_quality,
            test_execution=test_execution,
            reasoning=reasoning,
            combined=combined,
            diagnostic=diagnostic,
            model_version_tag=model_version_tag,
        )
