#!/usr/bin/env python3
"""
ORPHANSCAN CLI
--------------
Primary interface: translates user commands into engine runs and renders
the results (progress, report table, summary panel, optional report file).

Commands:
    scan    Reconcile every sharded namespace and report orphans
    chunks  List the chunk ranges of one namespace
    ping    Check connectivity to the router and every shard

Author: OrphanScan Team
Date: 2026-10-19
"""

import sys
import argparse
import logging
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import (
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
    BarColumn,
    TaskProgressColumn
)

from orphanscan.cli.formatter import ReportFormatter
from orphanscan.core.config import ScanConfig
from orphanscan.core.engine import generate_summary, run_reconciliation
from orphanscan.core.errors import OrphanScanError
from orphanscan.core.models import CountMode, Namespace
from orphanscan.report.exporter import ReportExporter
from orphanscan.store.connection import ConnectionFactory, open_shard_connections
from orphanscan.store.topology import MongoTopologyProvider

VERSION = "orphanscan v1.0.0"

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_ORPHANS_FOUND = 2

# Global console for consistent styling across the application
console = Console()


class OrphanScanCLI:
    """
    CLI wrapper that translates user commands into Engine actions.
    Never writes to the cluster: every command is read-only.
    """

    def __init__(self, out: Console = console):
        self.console = out
        self.formatter = ReportFormatter(out)
        self.parser = argparse.ArgumentParser(
            prog="orphanscan",
            description="OrphanScan - Orphaned document detection for sharded MongoDB clusters",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        self._setup_args()

    def _setup_args(self):
        """Configures the command-line flags and subcommands."""
        self.parser.add_argument("--version", action="version", version=VERSION)

        common = argparse.ArgumentParser(add_help=False)
        common.add_argument("-c", "--config", help="YAML configuration file")
        common.add_argument("--uri", help="Router (mongos) connection URI")
        common.add_argument("--connect-timeout", type=int, dest="connect_timeout_ms",
                            help="Connect/server selection timeout in milliseconds (default: 2000)")
        common.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

        subparsers = self.parser.add_subparsers(dest="command", metavar="Command")

        # 'scan' subcommand - the reconciliation run
        scan_parser = subparsers.add_parser("scan", parents=[common], help="🔍 Count documents and report orphans")
        scan_parser.add_argument("--mode", choices=[m.value for m in CountMode],
                                 help="simple: reported vs scanned; range: scanned vs owned chunk ranges")
        scan_parser.add_argument("-n", "--namespace", action="append", dest="namespaces",
                                 help="Only reconcile matching namespaces (repeatable, wildcards allowed)")
        scan_parser.add_argument("--workers", type=int, dest="max_workers",
                                 help="Max concurrent shard tasks per namespace")
        scan_parser.add_argument("--timeout", type=float, dest="shard_timeout",
                                 help="Seconds allowed for each namespace's shard fan-out")
        scan_parser.add_argument("--max-time-ms", type=int, dest="max_time_ms",
                                 help="Server-side time limit for each count")
        scan_parser.add_argument("--keep-going", action="store_true", default=None, dest="skip_failed",
                                 help="Record failed namespaces and continue instead of halting")
        scan_parser.add_argument("-o", "--output", help="Write the report to this file")
        scan_parser.add_argument("--format", choices=["yaml", "json"], dest="output_format",
                                 help="Report file format (default: from extension, else yaml)")
        scan_parser.add_argument("--fail-on-orphans", action="store_true",
                                 help=f"Exit with status {EXIT_ORPHANS_FOUND} when orphans are found")

        # 'chunks' subcommand - routing metadata listing
        chunks_parser = subparsers.add_parser("chunks", parents=[common], help="📦 List chunk ranges of a namespace")
        chunks_parser.add_argument("namespace", help="Namespace as <database>.<collection>")
        chunks_parser.add_argument("--shard", help="Only chunks owned by this shard")

        # 'ping' subcommand - connectivity check
        subparsers.add_parser("ping", parents=[common], help="📡 Check router and shard connectivity")

    def print_header(self, subtitle: str):
        self.console.print(Panel.fit(
            f"[bold cyan]{VERSION}[/bold cyan]",
            title=f"[bold white]{subtitle}[/bold white]",
            border_style="cyan"
        ))

    def configure_logging(self, verbose: bool):
        logging.basicConfig(
            level=logging.DEBUG if verbose else logging.WARNING,
            format="%(name)s: %(message)s",
            handlers=[RichHandler(console=self.console, show_path=False)],
            force=True,
        )

    def build_config(self, args: argparse.Namespace) -> ScanConfig:
        keys = ["uri", "connect_timeout_ms", "mode", "namespaces", "max_workers",
                "shard_timeout", "max_time_ms", "skip_failed", "output", "output_format"]
        overrides: Dict[str, Any] = {k: getattr(args, k, None) for k in keys}
        return ScanConfig.load(args.config, overrides)

    def _factory(self, config: ScanConfig) -> ConnectionFactory:
        return ConnectionFactory.from_uri(
            config.uri, timeout_ms=config.connect_timeout_ms, max_time_ms=config.max_time_ms
        )

    def cmd_scan(self, args: argparse.Namespace) -> int:
        config = self.build_config(args)
        self.print_header(f"Orphan Scan ({config.mode.value} mode)")

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(bar_width=40),
            TaskProgressColumn(),
            TimeElapsedColumn(),
            console=self.console
        ) as progress:
            task_id = progress.add_task("Reconciling namespaces...", total=None)

            def on_progress(done: int, total: int, namespace: Namespace):
                progress.update(task_id, completed=done, total=total, description=f"Checked: {namespace}")

            report = run_reconciliation(config, self._factory(config), on_progress)

        self.formatter.print_report(report)
        self.formatter.print_summary(generate_summary(report))

        if config.output:
            path = ReportExporter().write(report, config.output, config.resolved_output_format)
            self.console.print(f"[dim]Report written to {path}[/dim]")

        if report.skipped:
            return EXIT_ERROR
        if args.fail_on_orphans and report.total_orphans > 0:
            return EXIT_ORPHANS_FOUND
        return EXIT_OK

    def cmd_chunks(self, args: argparse.Namespace) -> int:
        config = self.build_config(args)
        try:
            namespace = Namespace.parse(args.namespace)
        except ValueError as e:
            self.console.print(f"[bold red]Error:[/bold red] {e}")
            return EXIT_ERROR

        with self._factory(config).connect(config.uri) as router:
            chunks = MongoTopologyProvider(router).list_chunks(namespace, shard=args.shard)

        if not chunks:
            self.console.print(f"[bold yellow]⚠️  No chunks found for {namespace}.[/bold yellow]")
            return EXIT_OK
        self.formatter.print_chunks(chunks)
        return EXIT_OK

    def cmd_ping(self, args: argparse.Namespace) -> int:
        config = self.build_config(args)
        factory = self._factory(config)
        with factory.connect(config.uri) as router:
            self.console.print(f"✅ Router reachable: [cyan]{config.uri}[/cyan]")
            shards = MongoTopologyProvider(router).list_shards()
            with open_shard_connections(factory, shards) as connections:
                for shard in shards:
                    if shard.name in connections:
                        self.console.print(f"✅ Shard reachable: [cyan]{shard.name}[/cyan] ({shard.host})")
        return EXIT_OK

    def run(self, argv: Optional[List[str]] = None) -> int:
        """Primary routing entry point."""
        args = self.parser.parse_args(argv)
        commands = {"scan": self.cmd_scan, "chunks": self.cmd_chunks, "ping": self.cmd_ping}
        if args.command not in commands:
            self.parser.print_help()
            return EXIT_OK

        self.configure_logging(args.verbose)
        try:
            return commands[args.command](args)
        except OrphanScanError as e:
            self.console.print(f"[bold red]CRITICAL ERROR:[/bold red] {e}")
            return EXIT_ERROR


def main():
    """Application entry point with interrupt handling."""
    try:
        sys.exit(OrphanScanCLI().run())
    except KeyboardInterrupt:
        console.print("\n[bold red]Terminated by user.[/bold red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
