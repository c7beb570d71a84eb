"""
Command Line Interface for the test-generation reward pipeline.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..config import get_settings
from ..core.orchestrator import WorkflowOrchestrator
from ..data.models.workflows import (
    CoveragePlan,
    ExecutionResult,
    PublishReceipt,
    ReviewComplete,
    ReviewFindings,
)
from ..db.audit_service import AuditTrail, SqlAuditStore
from ..db.base import create_db_engine
from ..ports import Collaborators
from ..rewards.engine import RewardEngine, RewardWeights

app = typer.Typer(help="TestGen RL - reward pipeline for test-generation models")
console = Console()


def _configure_logging(verbose: bool) -> None:
    settings = get_settings()
    level = logging.DEBUG if verbose else getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


class ConsolePublisher:
    """Publisher that prints the summary instead of creating a ticket."""

    def __init__(self) -> None:
        self.published = 0

    async def publish_result(
        self, parent_ticket_ref: Optional[str], summary: Dict[str, Any]
    ) -> PublishReceipt:
        self.published += 1
        console.print(
            Panel(
                f"[bold]{summary['title']}[/bold]\n\n"
                f"Tests: {summary['test_count']}/{summary['planned_count']} "
                f"({summary['coverage_pct']}% of plan)\n"
                f"Review: {summary['review_status']}\n"
                f"Reward: {summary['reward']:.3f}",
                title="📋 Publish summary",
                style="cyan",
            )
        )
        return PublishReceipt(
            created_ref=f"LOCAL-{self.published}",
            parent_ref=parent_ticket_ref,
        )


@app.command()
def run(
    reference: str = typer.Argument(..., help="Pull request or repository URL"),
    parent_ticket: Optional[str] = typer.Option(None, help="Ticket to attach results to"),
    database_url: Optional[str] = typer.Option(None, help="Persist audit entries to this database"),
    as_json: bool = typer.Option(False, "--json", help="Print the workflow status as JSON"),
    verbose: bool = typer.Option(False, help="Enable debug logging"),
):
    """Run one workflow with simulated collaborators."""
    _configure_logging(verbose)

    audit = AuditTrail(SqlAuditStore(create_db_engine(database_url))) if database_url else None
    orchestrator = WorkflowOrchestrator(
        collaborators=Collaborators(publisher=ConsolePublisher()),
        audit=audit,
    )

    workflow = asyncio.run(orchestrator.start(reference, parent_ticket_ref=parent_ticket))
    status = orchestrator.workflow_status(workflow)

    if as_json:
        typer.echo(json.dumps(status, indent=2))
    else:
        table = Table(title=f"Workflow {workflow.id}", show_header=True, header_style="bold magenta")
        table.add_column("Field", style="cyan")
        table.add_column("Value", style="green")
        for key, value in status.items():
            table.add_row(key, str(value))
        console.print(table)

    if workflow.error:
        console.print(f"❌ Workflow failed at {status['last_stage']}: {workflow.error}")
        raise typer.Exit(code=1)
    console.print(f"✅ Workflow completed with reward {workflow.latest_reward.combined:.3f}")


@app.command("verify-audit")
def verify_audit(
    workflow_id: Optional[str] = typer.Argument(None, help="Workflow to verify; all when omitted"),
    database_url: Optional[str] = typer.Option(None, help="Audit database URL"),
):
    """Recompute and check audit entry digests."""
    _configure_logging(False)
    trail = AuditTrail(SqlAuditStore(create_db_engine(database_url)))
    report = trail.verify_all(workflow_id)

    table = Table(title="Audit verification", show_header=True, header_style="bold cyan")
    table.add_column("Total", style="yellow")
    table.add_column("Verified", style="green")
    table.add_column("Failed", style="red")
    table.add_row(str(report["total"]), str(report["verified"]), str(report["failed"]))
    console.print(table)

    if report["failed"]:
        for entry_id in report["failed_entries"]:
            console.print(f"❌ Tampered entry: {entry_id}")
        raise typer.Exit(code=1)
    rprint("✅ All audit entries verified")


@app.command()
def score(
    resolved: int = typer.Option(0, help="Resolved review issues"),
    warnings: int = typer.Option(0, help="Review warnings"),
    critical: int = typer.Option(0, help="Critical review findings"),
    minor_fixes: int = typer.Option(0, help="Minor fixes"),
    passed: int = typer.Option(0, help="Passed tests"),
    total: int = typer.Option(0, help="Total tests"),
    coverage: float = typer.Option(0.0, help="Coverage percentage (0-100)"),
    flakiness: Optional[float] = typer.Option(None, help="Tracked flakiness (0-1)"),
):
    """Compute a reward from raw counts."""
    if passed > total:
        console.print("❌ passed cannot exceed total")
        raise typer.Exit(code=2)

    engine = RewardEngine(RewardWeights.from_settings(get_settings()))
    record = engine.compute(
        ReviewComplete(
            findings=ReviewFindings(
                resolved=resolved, warnings=warnings, critical=critical, minor_fixes=minor_fixes
            )
        ),
        ExecutionResult(
            passed=passed,
            failed=total - passed,
            total=total,
            coverage_pct=coverage,
            flakiness=flakiness,
        ),
        CoveragePlan(),
    )

    table = Table(title="Reward", show_header=True, header_style="bold magenta")
    table.add_column("Component", style="cyan")
    table.add_column("Score", style="green")
    table.add_row("code_quality", f"{record.code_quality:.4f}")
    table.add_row("test_execution", f"{record.test_execution:.4f}")
    table.add_row("reasoning", f"{record.reasoning:.4f}")
    table.add_row("combined", f"{record.combined:.4f}")
    console.print(table)

    if record.diagnostic["metadata"]["reduced_confidence"]:
        console.print("⚠️ Flakiness estimated heuristically; reduced confidence")


def main():
    """Main CLI entry point."""
    app()


if __name__ == "__main__":
    main()
