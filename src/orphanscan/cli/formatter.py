# src/orphanscan/cli/formatter.py
from typing import Any, Dict, Sequence

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from orphanscan.core.models import Chunk, CountMode, RunReport

# Initialize the Rich console for high-quality terminal output
console = Console()


def _format_bound(bound) -> str:
    return "{" + ", ".join(f"{name}: {value!r}" for name, value in bound) + "}"


class ReportFormatter:
    """
    ReportFormatter: renders reconciliation results for the terminal.
    One row per shard, grouped under its namespace, followed by a summary.
    """

    def __init__(self, out: Console = console):
        self.console = out

    def print_report(self, report: RunReport):
        """Builds the per-namespace / per-shard table shown at the end of a scan."""
        is_range = report.mode is CountMode.RANGE
        table = Table(title="OrphanScan Reconciliation Report", show_lines=True, header_style="bold magenta")
        table.add_column("Namespace", style="cyan")
        table.add_column("Shard", style="white")
        table.add_column("Reported", justify="right")
        table.add_column("Actual", justify="right")
        if is_range:
            table.add_column("In Range", justify="right")
        table.add_column("Orphans", justify="right", style="bold")

        for ns_report in report.namespaces:
            name = ns_report.namespace.name
            if ns_report.error:
                self.console.print(f"[bold red]Error in {name}:[/bold red] {ns_report.error}")
                table.add_row(name, "-", "-", "-", *(["-"] if is_range else []), "[red]FAILED[/red]")
                continue

            # Router row: the routing layer's own view of the namespace
            orphans = ns_report.orphans
            color = "red" if orphans else "green"
            table.add_row(
                name, "[dim]router[/dim]",
                str(ns_report.reported_count), str(ns_report.actual_count),
                *([str(ns_report.range_bounded_count)] if is_range else []),
                f"[{color}]{orphans}[/{color}]",
            )
            for result in ns_report.per_shard:
                shard_orphans = result.orphan_count(report.mode)
                color = "red" if shard_orphans else "green"
                table.add_row(
                    "", result.shard_name,
                    str(result.reported_count), str(result.actual_count),
                    *([str(result.range_bounded_count)] if is_range else []),
                    f"[{color}]{shard_orphans}[/{color}]",
                )

        self.console.print(table)

    def print_summary(self, summary: Dict[str, Any]):
        orphan_color = "red" if summary["total_orphans"] else "green"
        self.console.print(Panel(
            f"[bold white]Summary Report[/bold white]\n"
            f"════════════════════════════════════════\n"
            f"Mode:             {summary['mode']}\n"
            f"Namespaces:       {summary['total_namespaces']}\n"
            f"With Orphans:     {summary['namespaces_with_orphans']}\n"
            f"Total Orphans:   [{orphan_color}]{summary['total_orphans']}[/{orphan_color}]\n"
            f"Router Mismatch:  {summary['router_mismatches']}\n"
            f"Skipped:         [red]{summary['skipped']}[/red]\n"
            f"Elapsed:          {summary['elapsed_seconds']}s",
            border_style="dim"
        ))

    def print_chunks(self, chunks: Sequence[Chunk]):
        table = Table(title="Chunk Ownership", header_style="bold magenta")
        table.add_column("Shard", style="cyan")
        table.add_column("Lower (inclusive)")
        table.add_column("Upper (exclusive)")
        for chunk in chunks:
            table.add_row(chunk.shard, _format_bound(chunk.lower), _format_bound(chunk.upper))
        self.console.print(table)
