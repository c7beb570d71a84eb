"""
Core orchestration engine for the test-generation reward pipeline.

The orchestrator drives each workflow through the fixed stage sequence
(fetch context, review, plan, generate, execute, score reward, publish),
talks to collaborators through the ports in ``testgen_rl.ports``, and
degrades to simulated payloads when a collaborator is unavailable.
"""

import asyncio
import inspect
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import structlog

from ..config import Settings, get_settings
from ..data.models.events import AuditEventTypes, EventPriority, EventTypes
from ..data.models.workflows import (
    PIPELINE_STAGES,
    CodeContext,
    ExecutionResult,
    NoChangeSet,
    ReviewComplete,
    ReviewFindings,
    RewardRecord,
    Stage,
    Workflow,
)
from ..db.audit_service import AuditTrail
from ..ports import (
    Collaborators,
    InvalidReference,
    NoChangeSetAvailable,
    UnrecoverableStageError,
)
from ..ports.fallbacks import (
    simulated_artifact,
    simulated_context,
    simulated_plan,
    simulated_review,
)
from ..ports.heuristic_executor import HeuristicExecutor
from ..rewards.engine import RewardEngine, RewardWeights
from ..rewards.flakiness import FlakinessTracker, fingerprint_artifact
from ..rewards.training import collect_training_examples, rl_metrics
from .broadcaster import EventBroadcaster
from .registry import InMemoryModelRegistry, ModelRegistry

logger = structlog.get_logger()

# Output that marks each working stage as done.
STAGE_OUTPUTS: Dict[Stage, str] = {
    Stage.FETCHING_CONTEXT: "context",
    Stage.REVIEWING: "review",
    Stage.PLANNING: "test_plan",
    Stage.GENERATING: "generated_artifact",
    Stage.EXECUTING: "execution_result",
    Stage.SCORING_REWARD: "reward",
    Stage.PUBLISHING: "publish_receipt",
}

AUDITED_STAGES: Dict[Stage, str] = {
    Stage.REVIEWING: AuditEventTypes.REVIEW,
    Stage.EXECUTING: AuditEventTypes.TEST_EXECUTION,
    Stage.SCORING_REWARD: AuditEventTypes.REWARD_COMPUTATION,
}


def review_insights(review: Any) -> str:
    """Human-readable summary of a review outcome."""
    if isinstance(review, ReviewComplete):
        findings = review.findings
        text = (
            f"Review resolved {findings.resolved} issues with {findings.warnings} warnings "
            f"and {findings.critical} critical findings."
        )
        notes = findings.critical_issues + findings.warning_messages
        if notes:
            text += " " + " ".join(f"- {note}" for note in notes)
        return text
    if isinstance(review, NoChangeSet):
        return review.message
    return "No review available."


def build_publish_summary(workflow: Workflow, threshold: float) -> Dict[str, Any]:
    """Payload handed to the ticket publisher."""
    plan = workflow.test_plan
    artifact = workflow.generated_artifact
    execution = workflow.execution_result
    latest = workflow.latest_reward

    planned = plan.planned_total if plan else 0
    generated = artifact.test_count if artifact else 0
    coverage = min(100, round(generated / planned * 100)) if planned else 0

    if workflow.review is None:
        status = "Review unavailable"
    elif isinstance(workflow.review, NoChangeSet):
        status = "Full repository analysis (no change-set)"
    else:
        status = "Review complete"

    return {
        "title": f"Generated tests for {workflow.reference}",
        "workflow_id": workflow.id,
        "reference": workflow.reference,
        "test_code": artifact.artifact_text if artifact else "",
        "language": artifact.language_tag if artifact else None,
        "framework": artifact.framework if artifact else None,
        "test_count": generated,
        "planned_count": planned,
        "coverage_pct": coverage,
        "reasoning": plan.reasoning_text if plan else "",
        "review_insights": review_insights(workflow.review),
        "review_status": status,
        "execution": execution.model_dump(include={"passed", "failed", "total", "coverage_pct", "flakiness"})
        if execution
        else None,
        "reward": latest.combined if latest else None,
        "high_quality": workflow.is_high_quality(threshold),
        "model_version": latest.model_version_tag if latest else None,
        "simulated_stages": [s.value for s in workflow.simulated_stages],
    }


class WorkflowOrchestrator:
    """
    Drives workflows through the pipeline one stage at a time.

    The orchestrator manages:
    - stage ordering and the workflow state machine
    - collaborator calls with timeouts, retries and fallbacks
    - reward scoring, flakiness tracking and audit entries
    - lifecycle events on each workflow's channel
    """

    def __init__(
        self,
        collaborators: Optional[Collaborators] = None,
        settings: Optional[Settings] = None,
        engine: Optional[RewardEngine] = None,
        tracker: Optional[FlakinessTracker] = None,
        audit: Optional[AuditTrail] = None,
        broadcaster: Optional[EventBroadcaster] = None,
        registry: Optional[ModelRegistry] = None,
    ):
        self.settings = settings or get_settings()
        self.collaborators = collaborators or Collaborators()
        self.engine = engine or RewardEngine(RewardWeights.from_settings(self.settings))
        self.tracker = tracker or FlakinessTracker(
            capacity=self.settings.flakiness_history_capacity,
            window=self.settings.flakiness_window,
        )
        self.audit = audit or AuditTrail()
        self.broadcaster = broadcaster or EventBroadcaster()
        self.registry = registry or InMemoryModelRegistry(self.settings.initial_model_version)
        self.workflows: Dict[str, Workflow] = {}
        self._handlers: Dict[Stage, Callable[..., Any]] = {
            Stage.FETCHING_CONTEXT: self._fetch_context,
            Stage.REVIEWING: self._review,
            Stage.PLANNING: self._plan,
            Stage.GENERATING: self._generate,
            Stage.EXECUTING: self._execute,
            Stage.SCORING_REWARD: self._score_reward,
            Stage.PUBLISHING: self._publish,
        }

    # -- workflow lifecycle ------------------------------------------------

    def create_workflow(
        self,
        reference: str,
        parent_ticket_ref: Optional[str] = None,
        created_by: str = "system",
    ) -> Workflow:
        workflow = Workflow(
            reference=reference,
            parent_ticket_ref=parent_ticket_ref or self.settings.default_parent_ticket,
            created_by=created_by,
        )
        self.workflows[workflow.id] = workflow
        logger.info("workflow_created", workflow_id=workflow.id, reference=reference)
        self._emit(workflow, EventTypes.WORKFLOW_CREATED, {"reference": reference})
        return workflow

    def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        return self.workflows.get(workflow_id)

    async def run(self, workflow: Workflow) -> Workflow:
        """Advance ``workflow`` until it is Completed or Failed."""
        while not workflow.is_terminal:
            await self.advance(workflow)
        return workflow

    async def start(
        self, reference: str, parent_ticket_ref: Optional[str] = None, created_by: str = "system"
    ) -> Workflow:
        """Create a workflow and run it to completion."""
        return await self.run(self.create_workflow(reference, parent_ticket_ref, created_by))

    async def run_many(self, workflows: Iterable[Workflow]) -> List[Workflow]:
        """Run several workflows concurrently, bounded by configuration."""
        semaphore = asyncio.Semaphore(self.settings.max_concurrent_workflows)

        async def _bounded(workflow: Workflow) -> Workflow:
            async with semaphore:
                return await self.run(workflow)

        return list(await asyncio.gather(*(_bounded(wf) for wf in workflows)))

    def cancel(self, workflow: Workflow, reason: str = "cancelled") -> bool:
        """Mark a running workflow Failed; late collaborator results are discarded."""
        if workflow.is_terminal:
            return False
        workflow.fail(f"Cancelled: {reason}")
        logger.info("workflow_cancelled", workflow_id=workflow.id, reason=reason)
        self._record_terminal(workflow)
        self._emit(
            workflow,
            EventTypes.WORKFLOW_CANCELLED,
            {"reason": reason, "last_stage": workflow.last_stage.value},
            priority=EventPriority.HIGH,
        )
        return True

    def next_stage(self, workflow: Workflow) -> Optional[Stage]:
        """First working stage whose output is not settled yet."""
        for stage in PIPELINE_STAGES:
            slot = STAGE_OUTPUTS[stage]
            done = bool(workflow.reward_history) if slot == "reward" else workflow.has_payload(slot)
            if not done:
                return stage
        return None

    async def advance(self, workflow: Workflow) -> Workflow:
        """Run exactly one stage of ``workflow``."""
        if workflow.is_terminal:
            return workflow

        stage = self.next_stage(workflow)
        if stage is None:
            workflow.complete()
            self._finish(workflow)
            return workflow

        log = logger.bind(workflow_id=workflow.id, stage=stage.value)
        workflow.enter_stage(stage)
        self._emit(workflow, EventTypes.STAGE_STARTED, {"stage": stage.value})
        log.info("stage_started")

        try:
            payload = await self._handlers[stage](workflow, log)
        except UnrecoverableStageError as e:
            self._fail(workflow, e.message, log)
            return workflow

        if workflow.is_terminal:
            log.info("stage_result_discarded", reason="workflow already terminal")
            return workflow

        if stage == Stage.SCORING_REWARD:
            workflow.append_reward(payload)
            self._emit(
                workflow,
                EventTypes.REWARD_COMPUTED,
                {
                    "combined": payload.combined,
                    "high_quality": workflow.is_high_quality(self.settings.high_quality_threshold),
                    "model_version": payload.model_version_tag,
                },
            )
        else:
            workflow.attach(STAGE_OUTPUTS[stage], payload)

        if stage in AUDITED_STAGES:
            self.audit.append(workflow.id, AUDITED_STAGES[stage], payload.model_dump(mode="json"))

        simulated = getattr(payload, "simulated", False)
        log.info("stage_completed", simulated=simulated)
        self._emit(
            workflow, EventTypes.STAGE_UPDATED, {"stage": stage.value, "simulated": simulated}
        )

        if stage == Stage.PUBLISHING:
            workflow.complete()
            self._finish(workflow)
        return workflow

    # -- stage handlers ------------------------------------------------------

    async def _fetch_context(self, workflow: Workflow, log: Any) -> CodeContext:
        if not workflow.reference or not workflow.reference.strip():
            raise InvalidReference("Code reference must not be empty")
        return await self._call_collaborator(
            workflow,
            "fetcher",
            "fetch_code_context",
            (workflow.reference,),
            lambda: simulated_context(workflow.reference),
            log,
        )

    async def _review(self, workflow: Workflow, log: Any) -> Any:
        context = workflow.context
        if not context.has_change_set:
            log.info("review_skipped", reason="no change-set")
            return NoChangeSet()

        try:
            outcome = await self._call_collaborator(
                workflow,
                "reviewer",
                "review_artifact",
                (workflow.reference,),
                simulated_review,
                log,
            )
        except NoChangeSetAvailable as e:
            log.info("review_skipped", reason=e.message)
            return NoChangeSet()

        if isinstance(outcome, ReviewFindings):
            return ReviewComplete(findings=outcome)
        return outcome

    async def _plan(self, workflow: Workflow, log: Any) -> Any:
        return await self._call_collaborator(
            workflow,
            "planner",
            "plan_tests",
            (workflow.context, workflow.review),
            lambda: simulated_plan(workflow.context, workflow.review),
            log,
        )

    async def _generate(self, workflow: Workflow, log: Any) -> Any:
        return await self._call_collaborator(
            workflow,
            "generator",
            "generate_test_artifact",
            (workflow.test_plan, workflow.context),
            lambda: simulated_artifact(workflow.test_plan, workflow.context),
            log,
        )

    async def _execute(self, workflow: Workflow, log: Any) -> ExecutionResult:
        artifact_text = workflow.generated_artifact.artifact_text
        result: ExecutionResult = await self._call_collaborator(
            workflow,
            "executor",
            "execute_artifact",
            (artifact_text,),
            lambda: HeuristicExecutor().execute_artifact(artifact_text),
            log,
        )

        fingerprint = fingerprint_artifact(artifact_text)
        if result.total == 0 or workflow.is_terminal:
            return result.model_copy(update={"fingerprint": fingerprint})

        report = self.tracker.observe(fingerprint, result.pass_rate)
        log.debug("flakiness_observed", fingerprint=fingerprint[:12], **report.to_dict())
        return result.model_copy(
            update={
                "fingerprint": fingerprint,
                "flakiness": report.flakiness,
                "stability": report.stability,
                "run_count": report.run_count,
            }
        )

    async def _score_reward(self, workflow: Workflow, log: Any) -> RewardRecord:
        record = self.engine.compute(
            workflow.review,
            workflow.execution_result,
            workflow.test_plan,
            model_version_tag=self.registry.current_version(),
            metadata={
                "workflow_id": workflow.id,
                "simulated_stages": [s.value for s in workflow.simulated_stages],
            },
        )
        log.info(
            "reward_computed",
            combined=round(record.combined, 4),
            code_quality=round(record.code_quality, 4),
            test_execution=round(record.test_execution, 4),
            reasoning=round(record.reasoning, 4),
        )
        return record

    async def _publish(self, workflow: Workflow, log: Any) -> Any:
        summary = build_publish_summary(workflow, self.settings.high_quality_threshold)
        return await self._call_collaborator(
            workflow,
            "publisher",
            "publish_result",
            (workflow.parent_ticket_ref, summary),
            None,
            log,
        )

    # -- collaborator calls -------------------------------------------------

    async def _call_collaborator(
        self,
        workflow: Workflow,
        port_name: str,
        method_name: str,
        args: Tuple[Any, ...],
        fallback: Optional[Callable[[], Any]],
        log: Any,
    ) -> Any:
        """Call a port with timeout and retries, falling back when it stays unavailable.

        Unrecoverable errors and ``NoChangeSetAvailable`` propagate untouched.
        Without a fallback an unavailable port is itself unrecoverable.
        """
        port = getattr(self.collaborators, port_name)
        method = getattr(port, method_name, None) if port is not None else None
        last_error = "not configured"

        if method is not None:
            max_retries = getattr(port, "max_retries", self.settings.collaborator_max_retries)
            timeout = getattr(port, "timeout_seconds", self.settings.collaborator_timeout_seconds)
            attempts = 0

            while True:
                try:
                    return await asyncio.wait_for(method(*args), timeout=timeout)
                except (UnrecoverableStageError, NoChangeSetAvailable):
                    raise
                except asyncio.TimeoutError:
                    last_error = f"timed out after {timeout}s"
                except Exception as e:
                    last_error = str(e) or type(e).__name__

                if workflow.is_terminal or attempts >= max_retries:
                    break
                attempts += 1
                delay = self.settings.retry_backoff_seconds * (2 ** (attempts - 1))
                log.warning(
                    "collaborator_retry",
                    port=port_name,
                    attempt=attempts,
                    delay=delay,
                    error=last_error,
                )
                await asyncio.sleep(delay)

        log.warning("collaborator_unavailable", port=port_name, error=last_error)
        if fallback is None:
            raise UnrecoverableStageError(f"{port_name} unavailable: {last_error}")

        result = fallback()
        if inspect.isawaitable(result):
            result = await result
        return result

    # -- bookkeeping -------------------------------------------------------

    def _fail(self, workflow: Workflow, error: str, log: Any) -> None:
        if workflow.is_terminal:
            return
        workflow.fail(error)
        log.error("workflow_failed", error=error)
        self._record_terminal(workflow)
        self._emit(
            workflow,
            EventTypes.STAGE_FAILED,
            {"stage": workflow.last_stage.value, "error": error},
            priority=EventPriority.HIGH,
        )
        self._emit(
            workflow,
            EventTypes.WORKFLOW_FAILED,
            {"last_stage": workflow.last_stage.value, "error": error},
            priority=EventPriority.HIGH,
        )

    def _finish(self, workflow: Workflow) -> None:
        latest = workflow.latest_reward
        logger.info(
            "workflow_completed",
            workflow_id=workflow.id,
            reward=latest.combined if latest else None,
        )
        self._record_terminal(workflow)
        self._emit(
            workflow,
            EventTypes.WORKFLOW_COMPLETED,
            {
                "reward": latest.combined if latest else None,
                "high_quality": workflow.is_high_quality(self.settings.high_quality_threshold),
                "created_ref": workflow.publish_receipt.created_ref
                if workflow.publish_receipt
                else None,
            },
        )

    def _record_terminal(self, workflow: Workflow) -> None:
        self.audit.append(
            workflow.id,
            AuditEventTypes.WORKFLOW_STATE_CHANGE,
            {
                "from": workflow.last_stage.value if workflow.last_stage else None,
                "to": workflow.stage.value,
                "error": workflow.error,
            },
        )

    def _emit(
        self,
        workflow: Workflow,
        event_type: str,
        payload: Dict[str, Any],
        priority: EventPriority = EventPriority.MEDIUM,
    ) -> None:
        try:
            self.broadcaster.publish(workflow.id, event_type, payload, priority=priority)
        except Exception as e:
            logger.warning(
                "event_publish_failed", workflow_id=workflow.id, event_type=event_type, error=str(e)
            )

    # -- views -------------------------------------------------------------

    def training_examples(self, limit: int = 50) -> List[Dict[str, Any]]:
        return collect_training_examples(
            self.workflows.values(), threshold=self.settings.high_quality_threshold, limit=limit
        )

    def rl_metrics(self) -> Dict[str, Any]:
        """Quality mixture, per model version averages and training readiness."""
        return rl_metrics(
            self.workflows.values(),
            high_threshold=self.settings.high_quality_threshold,
            medium_threshold=self.settings.medium_quality_threshold,
            training_ready_at=self.settings.training_data_min_examples,
            fine_tuning_ready_at=self.settings.fine_tuning_min_examples,
        )

    def workflow_status(self, workflow: Workflow) -> Dict[str, Any]:
        return workflow.get_status(self.settings.high_quality_threshold)

    def get_status(self) -> Dict[str, Any]:
        """Get orchestrator status."""
        by_stage: Dict[str, int] = {}
        for workflow in self.workflows.values():
            by_stage[workflow.stage.value] = by_stage.get(workflow.stage.value, 0) + 1

        rewarded = [wf.latest_reward.combined for wf in self.workflows.values() if wf.latest_reward]
        return {
            "workflows": len(self.workflows),
            "by_stage": by_stage,
            "average_reward": sum(rewarded) / len(rewarded) if rewarded else 0.0,
            "high_quality": sum(
                1
                for wf in self.workflows.values()
                if wf.is_high_quality(self.settings.high_quality_threshold)
            ),
            "tracked_artifacts": len(self.tracker.fingerprints()),
            "model_version": self.registry.current_version(),
            "events_published": self.broadcaster.published_count,
        }
