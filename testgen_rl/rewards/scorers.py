"""
Reward scorers.

Pure functions turning stage payload numbers into component rewards in
[0, 1]. They never raise on odd input; missing data maps to a neutral score.
"""

from __future__ import annotations

from typing import Optional, Sequence, Tuple

from ..data.models.workflows import ReasoningStep

NEUTRAL_SCORE = 0.5

# Review points are clipped to this symmetric range before mapping to [0, 1].
REVIEW_POINTS_LIMIT = 10.0

# Flakiness below this level is tolerated without penalty.
FLAKINESS_TOLERANCE = 0.05

FINDING_KEYWORDS = ("coderabbit", "review", "finding")
EDGE_CASE_KEYWORDS = (
    "edge",
    "boundary",
    "corner",
    "exception",
    "error",
    "invalid",
    "null",
    "empty",
)
EDGE_CASE_SATURATION = 3
VERBOSITY_WORD_LIMIT = 500
MAX_CONCISENESS_PENALTY = 0.3
THOROUGH_STEP_COUNT = 5


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def score_review(
    resolved: Optional[int] = None,
    warnings: Optional[int] = None,
    critical: Optional[int] = None,
    minor_fixes: Optional[int] = None,
) -> float:
    """Map review issue counts to a code-quality reward.

    ``points = resolved + 0.2*minor_fixes - 0.5*warnings - 2*critical`` is
    clipped to [-10, 10] and mapped linearly onto [0, 1]. A review with no
    issues at all is perfect (1.0); no review data at all is neutral (0.5).
    """
    counts = (resolved, warnings, critical, minor_fixes)
    if all(c is None for c in counts):
        return NEUTRAL_SCORE

    resolved, warnings, critical, minor_fixes = (c or 0 for c in counts)
    if resolved == 0 and warnings == 0 and critical == 0 and minor_fixes == 0:
        return 1.0

    points = 1.0 * resolved + 0.2 * minor_fixes - 0.5 * warnings - 2.0 * critical
    points_clipped = clamp(points, -REVIEW_POINTS_LIMIT, REVIEW_POINTS_LIMIT)
    return clamp((points_clipped + REVIEW_POINTS_LIMIT) / (2 * REVIEW_POINTS_LIMIT))


def flakiness_penalty(
    pass_rate: float, coverage: float, flakiness: Optional[float]
) -> Tuple[float, str]:
    """Return ``(penalty, source)`` for an execution reward.

    ``coverage`` is a fraction in [0, 1]. With a tracked flakiness value the
    penalty is ``max(0, (flakiness - 0.05) * 2)`` and the source is
    ``"tracked"``. Without one, a low pass rate combined with high coverage
    is taken as a hint of flaky tests; that guess is reported with source
    ``"heuristic"`` so consumers can discount it.
    """
    if flakiness is not None:
        return max(0.0, (flakiness - FLAKINESS_TOLERANCE) * 2), "tracked"
    if pass_rate < 0.8 and coverage > 0.7:
        return (0.8 - pass_rate) * 0.5, "heuristic"
    return 0.0, "none"


def score_execution(
    passed: int,
    total: int,
    coverage_pct: float,
    flakiness: Optional[float] = None,
) -> float:
    """Map test results to a test-execution reward.

    ``0.7*pass_rate + 0.3*coverage`` scaled down by the flakiness penalty.
    No tests at all earns nothing.

    With a known ``flakiness`` the score never drops as pass rate or coverage
    rise. Without one the heuristic penalty kicks in once coverage passes
    70%, so on that path the score can fall as coverage rises: 5/10 passing
    scores 0.56 at 70% coverage but about 0.479 at 71%.
    """
    if not total:
        return 0.0

    pass_rate = passed / total
    coverage = (coverage_pct or 0.0) / 100
    base = 0.7 * pass_rate + 0.3 * coverage
    penalty, _ = flakiness_penalty(pass_rate, coverage, flakiness)
    return clamp(base * (1 - penalty))


def references_findings(text: str, has_findings: bool) -> bool:
    if not has_findings or not text:
        return False
    lowered = text.lower()
    return any(keyword in lowered for keyword in FINDING_KEYWORDS)


def edge_case_hits(text: str) -> int:
    lowered = (text or "").lower()
    return sum(1 for keyword in EDGE_CASE_KEYWORDS if keyword in lowered)


def conciseness_penalty(word_count: int) -> float:
    if word_count <= VERBOSITY_WORD_LIMIT:
        return 0.0
    return min(MAX_CONCISENESS_PENALTY, (word_count - VERBOSITY_WORD_LIMIT) / 1000)


def score_reasoning(
    steps: Optional[Sequence[ReasoningStep]],
    has_findings: bool = False,
    text: str = "",
) -> float:
    """Score the planner's reasoning trace.

    Half structural (does it use the review findings, does it think about
    edge cases, is it concise) and half traditional (how many steps, how many
    of them are high impact). No structured steps is neutral.
    """
    if not steps:
        return NEUTRAL_SCORE

    text = text or ""
    uses_findings = 1.0 if references_findings(text, has_findings) else 0.0
    edge_case_score = min(1.0, edge_case_hits(text) / EDGE_CASE_SATURATION)
    verbosity = conciseness_penalty(len(text.split()))
    structural = 0.5 * uses_findings + 0.3 * edge_case_score + 0.2 * (1 - verbosity)

    step_count = len(steps)
    high_impact = sum(1 for step in steps if step.impact == "high")
    thoroughness = min(1.0, step_count / THOROUGH_STEP_COUNT)
    impact = high_impact / step_count
    traditional = 0.6 * thoroughness + 0.4 * impact

    return clamp(0.5 * structural + 0.5 * traditional)
