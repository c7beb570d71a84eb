"""
Heuristic test execution.

Nothing is actually run: the generated test source is analysed for quality
signals (assertions, error handling, edge cases, mocking, ...) and turned into
deterministic pass/fail counts and a coverage estimate. Results are always
flagged ``simulated``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, Optional

from ..data.models.workflows import ExecutionResult, TypeTally

_PYTHON_TEST = re.compile(r"def test_\w*")
_JS_TEST = re.compile(r"\b(?:test|it)\s*\(")
_DESCRIBE = re.compile(r"\bdescribe\s*\(")
_ASSERTION = re.compile(r"expect\(|assert[\s(]|should\.")


@dataclass
class QualityAnalysis:
    """Quality signals found in a test artifact."""

    pass_rate: float
    coverage_pct: float
    metrics: Dict[str, object] = field(default_factory=dict)


class HeuristicExecutor:
    """``ArtifactExecutor`` that scores test source instead of running it."""

    max_retries = 0

    # (metric, weight) pairs added to the 0.5 baseline when present.
    POSITIVE_SIGNALS = (
        ("has_error_handling", 0.08),
        ("has_finally_block", 0.02),
        ("has_async_tests", 0.05),
        ("has_promises", 0.03),
        ("has_strict_equality", 0.03),
        ("has_null_checks", 0.05),
        ("has_boundary_tests", 0.08),
        ("has_empty_input_tests", 0.04),
        ("has_mocking", 0.04),
        ("has_setup_teardown", 0.04),
        ("has_describe_blocks", 0.02),
    )
    NEGATIVE_SIGNALS = (
        ("has_hardcoded_values", 0.05),
        ("has_todo_comments", 0.03),
    )

    async def execute_artifact(
        self, artifact_text: str, framework: Optional[str] = None
    ) -> ExecutionResult:
        if not artifact_text or not artifact_text.strip():
            return ExecutionResult(
                passed=0,
                failed=0,
                total=0,
                coverage_pct=0.0,
                breakdown=self.breakdown_by_type("", 0, 0),
                simulated=True,
            )

        total = self.count_tests(artifact_text)
        analysis = self.analyze_quality(artifact_text)
        passed = int(total * analysis.pass_rate)
        failed = total - passed

        return ExecutionResult(
            passed=passed,
            failed=failed,
            total=total,
            coverage_pct=float(round(analysis.coverage_pct)),
            breakdown=self.breakdown_by_type(artifact_text, passed, failed),
            simulated=True,
        )

    def count_tests(self, code: str) -> int:
        """Count test functions; an artifact with none still counts as one."""
        python_tests = len(_PYTHON_TEST.findall(code))
        if python_tests:
            return python_tests
        js_tests = len(_JS_TEST.findall(code))
        if js_tests:
            return js_tests
        return max(1, len(_DESCRIBE.findall(code)))

    def analyze_quality(self, code: str) -> QualityAnalysis:
        assertion_count = len(_ASSERTION.findall(code))
        test_function_count = len(_JS_TEST.findall(code)) + len(_PYTHON_TEST.findall(code))
        metrics: Dict[str, object] = {
            "has_error_handling": bool(
                re.search(r"try\s*\{[\s\S]*?catch|try:[\s\S]*?except", code, re.IGNORECASE)
            ),
            "has_finally_block": bool(re.search(r"finally\s*[{:]", code)),
            "has_async_tests": bool(re.search(r"\basync\b|\bawait\b", code)),
            "has_promises": bool(re.search(r"\.then\(|\.catch\(|Promise\.", code)),
            "assertion_count": assertion_count,
            "has_strict_equality": bool(re.search(r"toEqual|toBe|toStrictEqual|==", code)),
            "has_null_checks": bool(re.search(r"null|undefined|None", code)),
            "has_boundary_tests": bool(
                re.search(r"edge|boundary|limit|max|min", code, re.IGNORECASE)
            ),
            "has_empty_input_tests": bool(re.search(r"empty|zero|blank", code, re.IGNORECASE)),
            "has_mocking": bool(re.search(r"mock|stub|spy|jest\.fn", code, re.IGNORECASE)),
            "has_setup_teardown": bool(
                re.search(
                    r"beforeEach|afterEach|beforeAll|afterAll|setUp|tearDown|fixture",
                    code,
                    re.IGNORECASE,
                )
            ),
            "has_describe_blocks": bool(_DESCRIBE.search(code)),
            "has_hardcoded_values": bool(
                re.search(r"\.toBe\(123|\.toEqual\(\"test\"", code, re.IGNORECASE)
            ),
            "has_todo_comments": bool(re.search(r"(//|#)\s*(TODO|FIXME)", code, re.IGNORECASE)),
            "test_function_count": test_function_count,
        }

        score = 0.5
        for name, weight in self.POSITIVE_SIGNALS:
            if metrics[name]:
                score += weight
        for name, weight in self.NEGATIVE_SIGNALS:
            if metrics[name]:
                score -= weight
        if assertion_count >= 3:
            score += 0.08
        if assertion_count >= 10:
            score += 0.04
        if test_function_count > 10:
            score += 0.05
        if test_function_count > 20:
            score += 0.05

        # A heuristic never claims a perfect run.
        score = max(0.4, min(0.95, score))
        coverage = max(40.0, min(85.0, 45 + (score - 0.5) * 60))
        return QualityAnalysis(pass_rate=score, coverage_pct=coverage, metrics=metrics)

    def breakdown_by_type(self, code: str, passed: int, failed: int) -> Dict[str, TypeTally]:
        lowered = code.lower()
        has_unit = any(token in lowered for token in ("unit", "function", "component", "def "))
        has_integration = any(token in lowered for token in ("integration", "api", "endpoint"))
        has_edge = any(token in lowered for token in ("edge", "boundary", "corner"))

        if not (has_unit or has_integration or has_edge):
            ratios = {"unit_tests": 0.6, "integration_tests": 0.3, "edge_cases": 0.1}
        else:
            ratios = {
                "unit_tests": 0.5 if has_unit else 0.3,
                "integration_tests": 0.3 if has_integration else 0.2,
                "edge_cases": 0.2 if has_edge else 0.1,
            }

        return {
            name: TypeTally(passed=int(passed * ratio), failed=int(failed * ratio))
            for name, ratio in ratios.items()
        }
