"""Training-example extraction from completed workflows."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List

from ..data.models.workflows import (
    DEFAULT_HIGH_QUALITY_THRESHOLD,
    ReviewComplete,
    Stage,
    Workflow,
)


def format_training_example(workflow: Workflow) -> Dict[str, Any]:
    """Shape one workflow as an (input, output, reward) training example."""
    context = workflow.context
    review = workflow.review
    plan = workflow.test_plan
    artifact = workflow.generated_artifact

    return {
        "input": {
            "code": (context.diff or "") if context else "",
            "ticket": workflow.parent_ticket_ref or "",
            "review_findings": review.findings.model_dump()
            if isinstance(review, ReviewComplete)
            else None,
            "review_status": review.status if review else None,
            "repo_structure": context.full_artifact if context else None,
        },
        "output": {
            "test_plan": plan.model_dump(include={"unit_tests", "integration_tests", "edge_cases"})
            if plan
            else None,
            "generated_code": artifact.artifact_text if artifact else "",
            "reasoning": plan.reasoning_text if plan else "",
        },
        "reward": workflow.latest_reward.combined if workflow.latest_reward else 0.0,
        "metadata": {
            "language": artifact.language_tag if artifact else None,
            "framework": artifact.framework if artifact else None,
            "model_version": workflow.latest_reward.model_version_tag
            if workflow.latest_reward
            else None,
            "simulated_stages": [s.value for s in workflow.simulated_stages],
            "timestamp": workflow.created_at.isoformat(),
            "workflow_id": workflow.id,
        },
    }


def collect_training_examples(
    workflows: Iterable[Workflow],
    threshold: float = DEFAULT_HIGH_QUALITY_THRESHOLD,
    limit: int = 50,
) -> List[Dict[str, Any]]:
    """Completed high-quality workflows as training examples, best first."""
    eligible = [
        wf
        for wf in workflows
        if wf.stage == Stage.COMPLETED and wf.is_high_quality(threshold)
    ]
    eligible.sort(key=lambda wf: wf.latest_reward.combined, reverse=True)
    return [format_training_example(wf) for wf in eligible[:limit]]


# Target share of each quality tier in a fine-tuning mixture.
TRAINING_MIXTURE = {"high": 0.7, "medium": 0.2, "low": 0.1}


def quality_tier(
    combined: float,
    high_threshold: float = DEFAULT_HIGH_QUALITY_THRESHOLD,
    medium_threshold: float = 0.5,
) -> str:
    if combined > high_threshold:
        return "high"
    if combined >= medium_threshold:
        return "medium"
    return "low"


def version_metrics(workflows: Iterable[Workflow]) -> Dict[str, Dict[str, Any]]:
    """Per model version averages, keyed by the tag of each workflow's latest reward.

    Versions appear in the order their first workflow is seen.
    """
    grouped: Dict[str, List[Workflow]] = {}
    for wf in workflows:
        if wf.latest_reward is not None:
            grouped.setdefault(wf.latest_reward.model_version_tag, []).append(wf)

    metrics: Dict[str, Dict[str, Any]] = {}
    for tag, members in grouped.items():
        rewards = [wf.latest_reward for wf in members]
        executed = [
            wf.execution_result
            for wf in members
            if wf.execution_result is not None and wf.execution_result.total > 0
        ]
        test_counts = [wf.generated_artifact.test_count for wf in members if wf.generated_artifact]
        metrics[tag] = {
            "version": tag,
            "workflow_count": len(members),
            "average_reward": sum(r.combined for r in rewards) / len(rewards),
            "average_code_quality": sum(r.code_quality for r in rewards) / len(rewards),
            "pass_rate_pct": sum(r.pass_rate for r in executed) / len(executed) * 100
            if executed
            else 0.0,
            "average_test_count": sum(test_counts) / len(members),
        }
    return metrics


def rl_metrics(
    workflows: Iterable[Workflow],
    high_threshold: float = DEFAULT_HIGH_QUALITY_THRESHOLD,
    medium_threshold: float = 0.5,
    training_ready_at: int = 3,
    fine_tuning_ready_at: int = 10,
) -> Dict[str, Any]:
    """
    Training-data health across completed, rewarded workflows.

    Each workflow is placed in a quality tier by its latest reward:
    ``high`` above ``high_threshold``, ``medium`` from ``medium_threshold``
    up to and including ``high_threshold``, ``low`` below that. Improvement
    compares the average reward of the newest model version against the
    first one seen.
    """
    completed = [
        wf for wf in workflows if wf.stage == Stage.COMPLETED and wf.latest_reward is not None
    ]

    mixture = {"high": 0, "medium": 0, "low": 0}
    for wf in completed:
        tier = quality_tier(wf.latest_reward.combined, high_threshold, medium_threshold)
        mixture[tier] += 1

    versions = version_metrics(completed)
    averages = [v["average_reward"] for v in versions.values()]
    improvement = 0.0
    if len(averages) > 1 and averages[0] > 0:
        improvement = (averages[-1] - averages[0]) / averages[0] * 100

    return {
        "total_workflows": len(completed),
        "high_quality_examples": mixture["high"],
        "quality_mixture": mixture,
        "mixture_strategy": dict(TRAINING_MIXTURE),
        "by_model_version": versions,
        "improvement_pct": improvement,
        "training_data_ready": mixture["high"] >= training_ready_at,
        "fine_tuning_ready": mixture["high"] >= fine_tuning_ready_at,
    }
