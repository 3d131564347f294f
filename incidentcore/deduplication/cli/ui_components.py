"""
Rich UI components for the deduplication CLI.

Renders consolidation plans, ingest results and errors.
"""

from typing import Any, Dict, Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ...errors import BaseIncidentError, SafetyGateError
from ..consolidation import ClusterOutcome, ConsolidationReport

STATUS_STYLES = {
    "planned": "yellow",
    "applied": "green",
    "failed": "red",
}


def _check(value: bool) -> str:
    return "✓" if value else "✗"


class UIComponents:
    """Collection of Rich UI components for the CLI."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def create_summary_panel(self, report: ConsolidationReport) -> Panel:
        """Create the run summary panel."""
        mode = "[yellow]DRY RUN[/yellow]" if report.dry_run else "[red]APPLY[/red]"
        content = f"""[bold cyan]Consolidation run {report.run_id}[/bold cyan]  {mode}

[yellow]Records scanned:[/yellow] {report.corpus_size}
[yellow]Buckets compared:[/yellow] {report.buckets} ({report.comparisons} comparisons)
[yellow]Duplicate clusters:[/yellow] {len(report.clusters)}
[yellow]Planned deletions:[/yellow] {report.planned_deletions}
[yellow]Applied deletions:[/yellow] {report.applied_deletions}
[yellow]Failed clusters:[/yellow] {len(report.failed_clusters)}
[dim]Completed in {report.processing_time:.2f}s[/dim]"""

        return Panel(
            content,
            title="Summary",
            border_style="yellow" if report.dry_run else "green",
            padding=(1, 2),
        )

    def create_cluster_table(self, index: int, outcome: ClusterOutcome) -> Table:
        """Per-member similarity breakdown against the cluster seed."""
        style = STATUS_STYLES.get(outcome.status, "white")
        table = Table(
            title=(
                f"Cluster {index}: {outcome.size} records → canonical {outcome.canonical_id} "
                f"[{style}]{outcome.status}[/{style}]"
            ),
            box=box.ROUNDED,
            show_header=True,
            header_style="bold cyan",
        )

        table.add_column("Record", style="cyan", no_wrap=True)
        table.add_column("Role", justify="center")
        table.add_column("Type", justify="center")
        table.add_column("Time", justify="center")
        table.add_column("Location", justify="center")
        table.add_column("Distance", justify="right")
        table.add_column("Perp.", justify="center")
        table.add_column("Casualties", justify="right")
        table.add_column("Description", justify="right")
        table.add_column("Total", justify="right", style="bold")

        for record_id in [outcome.seed_id, *outcome.similarities]:
            role = "canonical" if record_id == outcome.canonical_id else "absorbed"
            if record_id == outcome.seed_id:
                table.add_row(record_id, f"{role} (seed)", *["-"] * 8)
                continue

            sim: Dict[str, Any] = outcome.similarities[record_id]
            distance = sim.get("distance_m")
            table.add_row(
                record_id,
                role,
                _check(sim["same_type"]),
                _check(sim["within_time_window"]),
                f"{_check(sim['within_location_radius'])} ({sim['location_method']})",
                "-" if distance is None else f"{distance:,.0f} m",
                _check(sim["same_perpetrator"]),
                f"{sim['casualty_similarity']:.2f}",
                f"{sim['description_similarity']:.2f}",
                f"{sim['total']:.3f}",
            )

        if outcome.error:
            table.caption = f"[red]{outcome.error}[/red]"
        elif outcome.changed_fields:
            table.caption = f"Changes: {', '.join(outcome.changed_fields)}"
        return table

    def print_report(self, report: ConsolidationReport):
        self.console.print(self.create_summary_panel(report))
        if not report.clusters:
            self.console.print("[green]No duplicates found.[/green]")
            return
        for index, outcome in enumerate(report.clusters, 1):
            self.console.print(self.create_cluster_table(index, outcome))

    def create_batch_table(self, result: Dict[str, Any]) -> Table:
        table = Table(title="Ingest Results", box=box.ROUNDED, header_style="bold cyan")
        table.add_column("Outcome", style="cyan")
        table.add_column("Incident", no_wrap=True)
        table.add_column("Details")

        for item in result["created"]:
            table.add_row("[green]created[/green]", item["id"], "")
        for item in result["merged"]:
            match = item.get("match") or {}
            detail = match.get("match_type", "")
            if item.get("race"):
                detail += " (race)"
            table.add_row("[yellow]merged[/yellow]", item["id"], detail)
        for item in result["errors"]:
            table.add_row(
                "[red]error[/red]", f"item #{item['index']}",
                f"{item['error_type']}: {item['message']}",
            )
        return table

    def print_backfill(self, result: Dict[str, Any]):
        mode = "[yellow]DRY RUN[/yellow]" if result["dry_run"] else "[green]APPLIED[/green]"
        content = (
            f"{mode}\n\n"
            f"[yellow]Hashes computed:[/yellow] {len(result['hashed'])}\n"
            f"[yellow]Race duplicates merged:[/yellow] {len(result['race_merged'])}"
        )
        self.console.print(Panel(content, title="Content Hash Backfill", border_style="blue"))
        for item in result["race_merged"]:
            self.console.print(f"  🔗 {item['id']} → {item['merged_into']}")

    def print_gate_error(self, error: SafetyGateError):
        self.console.print(Panel(
            f"[bold red]{error.message}[/bold red]\n\n"
            f"Gate: {error.gate}\nLimit: {error.limit}\nActual: {error.actual}\n\n"
            "[dim]No records were changed.[/dim]",
            title="⛔ Safety gate tripped",
            border_style="red",
        ))

    def print_error(self, error: BaseIncidentError):
        self.console.print(f"[bold red]❌ {error.__class__.__name__}:[/bold red] {error.message}")
