"""
Rich console rendering.
Single responsibility: present summaries, previews and errors in the terminal.
"""

from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich import box

from ..core.orchestrator import ComparisonSummary


class ConsoleRenderer:
    """
    Render tablediff results with Rich.
    """

    def __init__(self, console: Optional[Console] = None):
        """
        Initialize renderer.

        Args:
            console: Rich console (stdout console when None)
        """
        self.console = console or Console()

    def show_summary(self, summary: ComparisonSummary):
        """
        Display one comparison summary.

        Args:
            summary: Orchestrator result
        """
        title = "Comparison Results"
        if summary.name:
            title = f"{title}: {summary.name}"

        if not summary.succeeded:
            self.log_error(summary.message, {"kind": summary.error_kind})
            return

        table = Table(title=title, box=box.ROUNDED)
        table.add_column("Metric", style="cyan", no_wrap=True)
        table.add_column("Value", style="magenta")
        table.add_column("Percentage", style="green")

        source_total = summary.source_row_count
        target_total = summary.target_row_count

        def pct(value: int, total: int) -> str:
            return f"{100 * value / total:.1f}%" if total else "—"

        metrics = [
            ("Source Rows", source_total, "—"),
            ("Target Rows", target_total, "—"),
            ("Matched Rows", summary.match_count, pct(summary.match_count, source_total)),
            ("Mismatched Rows", summary.mismatch_count,
             pct(summary.mismatch_count, source_total)),
            ("Source Only", summary.source_extra_count,
             pct(summary.source_extra_count, source_total)),
            ("Target Only", summary.target_extra_count,
             pct(summary.target_extra_count, target_total)),
        ]
        for metric, value, percentage in metrics:
            table.add_row(metric, f"{value:,}", percentage)

        self.console.print()
        self.console.print(table)

        if summary.source_database or summary.target_database:
            self.console.print(
                f"  Databases: {summary.source_database or '—'} → "
                f"{summary.target_database or '—'}",
                style="dim",
            )
        for warning in summary.warnings:
            self.log_warning(warning)

        self.log_success(f"Report: {summary.report_path}")
        self.show_timings(summary.timings, summary.execution_time)

    def show_timings(self, timings: Dict[str, float], total: float):
        table = Table(title="Performance Metrics", box=box.SIMPLE)
        table.add_column("Operation", style="cyan")
        table.add_column("Seconds", style="magenta")
        for name, seconds in timings.items():
            table.add_row(name, f"{seconds:.2f}")
        table.add_row("total", f"{total:.2f}")
        self.console.print(table)

    def show_batch(self, summaries: List[ComparisonSummary]):
        """
        Display one line per comparison of a batch run.
        """
        table = Table(title="Batch Summary", box=box.SIMPLE)
        table.add_column("Comparison", style="cyan")
        table.add_column("Status")
        table.add_column("Mismatched", style="magenta")
        table.add_column("Source Only", style="magenta")
        table.add_column("Target Only", style="magenta")
        table.add_column("Report", style="blue")

        for summary in summaries:
            ok = summary.succeeded
            table.add_row(
                summary.name or "—",
                Text("✓ SUCCESS" if ok else "✗ FAILED",
                     style="green" if ok else "red"),
                f"{summary.mismatch_count:,}" if ok else "—",
                f"{summary.source_extra_count:,}" if ok else "—",
                f"{summary.target_extra_count:,}" if ok else "—",
                summary.report_path or (summary.error_kind or ""),
            )
        self.console.print(table)

    def show_preview(self, preview: Dict[str, Any]):
        """
        Display preview rows returned by preview_query.
        """
        if preview.get("status") != "SUCCESS":
            self.log_error(preview.get("message", ""),
                           {"kind": preview.get("errorKind")})
            return

        table = Table(title=f"Preview ({preview.get('database')})", box=box.ROUNDED)
        for column in preview.get("columns", []):
            table.add_column(column)
        for row in preview.get("rows", []):
            table.add_row(*["" if v is None else str(v) for v in row.values()])

        self.console.print(table)
        self.console.print(preview.get("message", ""), style="dim")

    def show_connection(self, status: Dict[str, Any]):
        if status.get("status") == "SUCCESS":
            self.log_success(status.get("message", "Connected"))
        else:
            self.log_error(status.get("message", ""), {"kind": status.get("errorKind")})

    def log_error(self, message: str, details: Optional[Dict] = None):
        """
        Display error message.

        Args:
            message: Error message
            details: Additional error details
        """
        error_text = Text(f"✗ {message}", style="bold red")

        if details:
            panel = Panel(
                error_text,
                title="Error",
                border_style="red",
                expand=False
            )
            self.console.print(panel)

            for key, value in details.items():
                self.console.print(f"  {key}: {value}", style="dim")
        else:
            self.console.print(error_text)

    def log_warning(self, message: str):
        self.console.print(f"⚠ {message}", style="yellow")

    def log_success(self, message: str):
        self.console.print(f"✓ {message}", style="green")
