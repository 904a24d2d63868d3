#!/usr/bin/env python3
"""
ORPHANSCAN ENGINE - Reconciliation Driver
-----------------------------------------
Walks every live sharded namespace in the cluster, hands each one to the
OrphanAggregator and collects the resulting NamespaceReports into a
RunReport. Namespaces are processed one after another; the shard fan-out
inside each namespace is the unit of concurrency.

run_reconciliation() owns the run's resources: the router connection and
one connection per shard, opened once and closed when the run ends.

Author: OrphanScan Team
Date: 2026-10-19
"""

import fnmatch
import logging
import time
from contextlib import ExitStack
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from orphanscan.core.config import ScanConfig
from orphanscan.core.errors import OrphanScanError, ReconcileError
from orphanscan.core.models import CountMode, Namespace, NamespaceEntry, NamespaceReport, RunReport
from orphanscan.counting.aggregator import OrphanAggregator, group_chunks_by_shard
from orphanscan.counting.predicate import check_key_pattern
from orphanscan.store.connection import Connection, ConnectionFactory, open_shard_connections
from orphanscan.store.topology import MongoTopologyProvider, TopologyProvider

logger = logging.getLogger("orphanscan.engine")

ProgressCallback = Callable[[int, int, Namespace], None]


class ReconciliationEngine:
    """
    Drives a full run over the cluster.

    Failure policy defaults to fail-fast: the first namespace that cannot
    be reconciled halts the run. With skip_failed the namespace is recorded
    with its error and the run moves on.
    """

    def __init__(self, topology: TopologyProvider, router: Connection,
                 shard_connections: Mapping[str, Connection],
                 mode: CountMode = CountMode.SIMPLE,
                 namespace_filter: Sequence[str] = (),
                 max_workers: Optional[int] = None,
                 shard_timeout: Optional[float] = None,
                 skip_failed: bool = False):
        self.topology = topology
        self.mode = CountMode.parse(mode)
        self.namespace_filter = list(namespace_filter)
        self.skip_failed = skip_failed
        self._entries: Dict[Namespace, NamespaceEntry] = {}
        self.aggregator = OrphanAggregator(
            router, shard_connections, self.mode,
            max_workers=max_workers, shard_timeout=shard_timeout,
        )

    def select_namespaces(self) -> List[Namespace]:
        """Live (non-dropped) namespaces matching the include filter, sorted."""
        selected = []
        for entry in self.topology.list_namespaces():
            if entry.dropped:
                logger.debug(f"Skipping dropped namespace {entry.namespace}")
                continue
            if self.namespace_filter and not any(
                fnmatch.fnmatchcase(entry.namespace.name, pattern) for pattern in self.namespace_filter
            ):
                continue
            self._entries[entry.namespace] = entry
            selected.append(entry.namespace)
        return sorted(set(selected))

    def reconcile_namespace(self, namespace: Namespace) -> NamespaceReport:
        # Simple mode never looks at ownership
        if self.mode is not CountMode.RANGE:
            return self.aggregator.reconcile(namespace, {})
        return self.aggregator.reconcile(namespace, self._chunks_by_shard(namespace))

    def _chunks_by_shard(self, namespace: Namespace):
        """Chunk ownership for range mode; metadata problems fail the namespace."""
        try:
            entry = self._entries.get(namespace)
            if entry is not None and entry.key:
                check_key_pattern(entry.key)
            chunks = self.topology.list_chunks(namespace)
        except (OrphanScanError, KeyError, TypeError, ValueError) as e:
            raise ReconcileError(namespace.name, None, f"Chunk metadata unusable: {e}") from e
        return group_chunks_by_shard(chunks)

    def run(self, progress_callback: Optional[ProgressCallback] = None) -> RunReport:
        report = RunReport(mode=self.mode)
        namespaces = self.select_namespaces()
        logger.info(f"Reconciling {len(namespaces)} namespace(s) in {self.mode.value} mode")

        for done, namespace in enumerate(namespaces, 1):
            try:
                report.namespaces.append(self.reconcile_namespace(namespace))
            except ReconcileError as e:
                if not self.skip_failed:
                    logger.error(f"Halting run: {e}")
                    raise
                logger.warning(f"Skipping {namespace}: {e}")
                report.namespaces.append(
                    NamespaceReport(namespace=namespace, mode=self.mode, error=str(e))
                )
            if progress_callback:
                progress_callback(done, len(namespaces), namespace)

        report.finished_at = time.time()
        return report


def generate_summary(report: RunReport) -> Dict[str, Any]:
    """Run-level totals for the CLI summary panel."""
    healthy = [r for r in report.namespaces if not r.error]
    elapsed = (report.finished_at or time.time()) - report.started_at
    return {
        "mode": report.mode.value,
        "total_namespaces": len(report.namespaces),
        "namespaces_with_orphans": sum(1 for r in healthy if r.orphans > 0),
        "skipped": len(report.skipped),
        "total_orphans": report.total_orphans,
        "router_mismatches": sum(1 for r in healthy if r.actual_count != r.shard_actual_total),
        "elapsed_seconds": round(elapsed, 2),
    }


def run_reconciliation(config: ScanConfig, factory: Optional[ConnectionFactory] = None,
                       progress_callback: Optional[ProgressCallback] = None) -> RunReport:
    """Connects to the cluster described by config and runs one full reconciliation."""
    factory = factory or ConnectionFactory.from_uri(
        config.uri, timeout_ms=config.connect_timeout_ms, max_time_ms=config.max_time_ms
    )
    with ExitStack() as stack:
        router = stack.enter_context(factory.connect(config.uri))
        topology = MongoTopologyProvider(router)
        shards = topology.list_shards()
        shard_connections = stack.enter_context(open_shard_connections(factory, shards))

        engine = ReconciliationEngine(
            topology, router, shard_connections,
            mode=config.mode,
            namespace_filter=config.namespaces,
            max_workers=config.max_workers,
            shard_timeout=config.shard_timeout,
            skip_failed=config.skip_failed,
        )
        return engine.run(progress_callback)
