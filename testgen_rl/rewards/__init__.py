"""Reward scoring, flakiness tracking and training-example extraction."""

from .engine import RewardEngine, RewardWeights, combine
from .flakiness import (
    ExecutionRunSample,
    FlakinessTracker,
    StabilityReport,
    fingerprint_artifact,
)
from .scorers import score_execution, score_reasoning, score_review
from .training import (
    collect_training_examples,
    format_training_example,
    quality_tier,
    rl_metrics,
    version_metrics,
)

__all__ = [
    "ExecutionRunSample",
    "FlakinessTracker",
    "RewardEngine",
    "RewardWeights",
    "StabilityReport",
    "collect_training_examples",
    "combine",
    "fingerprint_artifact",
    "format_training_example",
    "quality_tier",
    "rl_metrics",
    "score_execution",
    "score_reasoning",
    "score_review",
    "version_metrics",
]
