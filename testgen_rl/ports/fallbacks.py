"""
Deterministic stage substitutes.

Used when a collaborator is unavailable. Every payload built here carries
``simulated=True`` so the degradation stays visible downstream and in the
reward diagnostic.
"""

from __future__ import annotations

import re
from typing import Iterable, Optional, Union

from ..data.models.workflows import (
    ChangedFile,
    CodeContext,
    CoveragePlan,
    GeneratedArtifact,
    NoChangeSet,
    ReasoningStep,
    ReviewComplete,
    ReviewFindings,
)
from .heuristic_executor import HeuristicExecutor

_CHANGE_SET_REF = re.compile(r"/(pull|pulls|merge_requests)/\d+")

_EXTENSION_LANGUAGES = (
    (("js", "jsx", "ts", "tsx"), "javascript"),
    (("py",), "python"),
    (("java",), "java"),
)

_SIMULATED_DIFF = """diff --git a/src/auth.js b/src/auth.js
+ export function login(username, password) {
+   // Login logic
+ }
+ export function logout() {
+   // Logout logic
+ }"""

_PYTHON_TESTS = """import pytest


def test_login_valid_credentials():
    result = login('user@example.com', 'password123')
    assert result.success is True


def test_login_invalid_credentials():
    result = login('user@example.com', 'wrong')
    assert result.success is False


def test_login_empty_username_is_rejected():
    with pytest.raises(ValueError):
        login('', 'password123')


def test_logout_clears_session():
    login('user@example.com', 'password123')
    logout()
    assert get_session() is None
"""

_JAVASCRIPT_TESTS = """describe('Authentication', () => {
  describe('login', () => {
    it('should login with valid credentials', () => {
      const result = login('user@example.com', 'password123');
      expect(result.success).toBe(true);
    });

    it('should reject invalid credentials', () => {
      const result = login('user@example.com', 'wrong');
      expect(result.success).toBe(false);
    });

    it('should handle empty username', () => {
      const result = login('', 'password123');
      expect(result.error).toBe('Username required');
    });
  });

  describe('logout', () => {
    it('should clear session on logout', () => {
      login('user@example.com', 'password123');
      logout();
      expect(getSession()).toBeNull();
    });
  });
});
"""


def has_change_set_reference(reference: str) -> bool:
    """Whether ``reference`` points at a change-set rather than a repository."""
    return bool(_CHANGE_SET_REF.search(reference or ""))


def detect_language(filenames: Iterable[str]) -> str:
    """Guess the target language from changed file extensions."""
    extensions = {name.rsplit(".", 1)[-1].lower() for name in filenames if "." in name}
    for candidates, language in _EXTENSION_LANGUAGES:
        if extensions.intersection(candidates):
            return language
    return "javascript"


def simulated_context(reference: str) -> CodeContext:
    if has_change_set_reference(reference):
        return CodeContext(
            reference=reference,
            has_change_set=True,
            diff=_SIMULATED_DIFF,
            files=[
                ChangedFile(filename="src/auth.js", additions=25, deletions=0),
                ChangedFile(filename="src/utils.js", additions=10, deletions=5),
            ],
            branch="feature/add-auth",
            commit_sha="abc123def456",
            simulated=True,
        )

    return CodeContext(
        reference=reference,
        has_change_set=False,
        full_artifact={
            "categories": {
                "frontend": {"count": 1, "files": ["src/app.js"]},
                "backend": {"count": 2, "files": ["src/auth.js", "src/utils.js"]},
                "devops": {"count": 0, "files": []},
            }
        },
        files=[
            ChangedFile(filename="src/app.js"),
            ChangedFile(filename="src/auth.js"),
            ChangedFile(filename="src/utils.js"),
        ],
        branch="main",
        simulated=True,
    )


def simulated_review() -> ReviewComplete:
    return ReviewComplete(
        findings=ReviewFindings(
            resolved=14,
            warnings=2,
            critical=0,
            minor_fixes=0,
            warning_messages=[
                "Consider adding error handling for edge cases",
                "Test coverage could be improved for boundary conditions",
            ],
        ),
        simulated=True,
    )


def simulated_plan(
    context: CodeContext, review: Optional[Union[ReviewComplete, NoChangeSet]]
) -> CoveragePlan:
    full_artifact = isinstance(review, NoChangeSet) or not context.has_change_set
    steps = [
        ReasoningStep(
            title="Map the changed surface",
            detail="List public functions touched by the change",
            impact="medium",
        ),
        ReasoningStep(
            title="Cover error paths",
            detail="Invalid credentials and empty input must raise or return errors",
            impact="high",
        ),
        ReasoningStep(
            title="Exercise boundary conditions",
            detail="Session expiry and maximum lengths",
            impact="high",
        ),
        ReasoningStep(
            title="Integration between login and session store",
            impact="medium",
        ),
    ]

    if isinstance(review, ReviewComplete):
        steps.insert(
            0,
            ReasoningStep(
                title="Address review findings",
                detail=f"{review.findings.warnings} warnings, {review.findings.critical} critical",
                impact="high",
            ),
        )
        lead = "The review findings point at missing error handling, so those paths come first."
    else:
        lead = "No change-set is available, so the plan targets the full repository structure."

    reasoning = (
        f"{lead} We need unit tests for core functions, integration tests for component "
        "interactions, and edge case coverage for error handling, empty input and "
        "boundary conditions."
    )

    return CoveragePlan(
        unit_tests=8,
        integration_tests=3,
        edge_cases=5,
        reasoning_steps=steps,
        reasoning_text=reasoning,
        full_artifact_analysis=full_artifact,
        simulated=True,
    )


def simulated_artifact(plan: CoveragePlan, context: CodeContext) -> GeneratedArtifact:
    language = detect_language(f.filename for f in context.files)
    if language == "python":
        text, framework = _PYTHON_TESTS, "pytest"
    else:
        text, framework = _JAVASCRIPT_TESTS, "jest"
        language = "javascript"

    return GeneratedArtifact(
        artifact_text=text,
        language_tag=language,
        framework=framework,
        test_count=HeuristicExecutor().count_tests(text),
        simulated=True,
    )
