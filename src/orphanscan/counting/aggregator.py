#!/usr/bin/env python3
"""
ORPHANSCAN ORPHAN AGGREGATOR
----------------------------
Reconciles one namespace across the cluster. The router's own view is
counted once, then every participating shard is counted concurrently
(one worker per shard) and the results are joined before anything is
reported.

Failure policy is fail-fast per namespace: the first failed shard cancels
its siblings (queued tasks are dropped, running scans stop at their next
check) and the namespace is reported as an error with no totals.

Author: OrphanScan Team
Date: 2026-10-19
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from concurrent.futures import TimeoutError as FuturesTimeout
from typing import Dict, List, Mapping, Optional, Sequence

from orphanscan.core.errors import (
    OrphanScanError, QueryError, ReconcileError, StoreConnectionError
)
from orphanscan.core.models import Chunk, CountMode, CountResult, Namespace, NamespaceReport
from orphanscan.counting.counter import ShardCounter
from orphanscan.store.connection import Connection

logger = logging.getLogger("orphanscan.aggregator")


def group_chunks_by_shard(chunks: Sequence[Chunk]) -> Dict[str, List[Chunk]]:
    grouped: Dict[str, List[Chunk]] = {}
    for chunk in chunks:
        grouped.setdefault(chunk.shard, []).append(chunk)
    return grouped


class OrphanAggregator:
    """
    Fans a namespace out to its shards and folds the results into a
    NamespaceReport.

    Args:
        router: Routing-aware entry point (mongos) for the namespace totals.
        shard_connections: Owned connection per shard name, opened by the caller.
        mode: CountMode for the whole run.
        max_workers: Upper bound on concurrent shard tasks (default: one per shard).
        shard_timeout: Seconds allowed for the whole shard fan-out (default: none).
    """

    def __init__(self, router: Connection, shard_connections: Mapping[str, Connection],
                 mode: CountMode = CountMode.SIMPLE, max_workers: Optional[int] = None,
                 shard_timeout: Optional[float] = None, counter: Optional[ShardCounter] = None):
        self.router = router
        self.shard_connections = shard_connections
        self.mode = CountMode.parse(mode)
        self.max_workers = max_workers
        self.shard_timeout = shard_timeout
        self.counter = counter or ShardCounter(self.mode)

    def reconcile(self, namespace: Namespace,
                  chunks_by_shard: Mapping[str, Sequence[Chunk]]) -> NamespaceReport:
        logger.info(f"Reconciling {namespace} ({self.mode.value} mode)")
        report = NamespaceReport(namespace=namespace, mode=self.mode)
        report.reported_count, report.actual_count = self._count_router(namespace)

        targets = self._dispatch_targets(namespace, chunks_by_shard)
        results = self._fan_out(namespace, targets, chunks_by_shard)
        report.per_shard = [results[name] for name in sorted(results)]
        return report

    def _count_router(self, namespace: Namespace):
        try:
            reported = self.router.count(namespace)
            actual = self.counter.scan_count(self.router, namespace)
        except OrphanScanError as e:
            raise ReconcileError(namespace.name, None, str(e)) from e
        logger.debug(f"{namespace} via router: reported={reported} actual={actual}")
        return reported, actual

    def _dispatch_targets(self, namespace: Namespace,
                          chunks_by_shard: Mapping[str, Sequence[Chunk]]) -> List[str]:
        if self.mode is not CountMode.RANGE:
            return sorted(self.shard_connections)

        targets = sorted(name for name, chunks in chunks_by_shard.items() if chunks)
        for name in targets:
            if name not in self.shard_connections:
                error = StoreConnectionError(name, "Shard owns chunks but has no open connection")
                raise ReconcileError(namespace.name, name, str(error)) from error
        return targets

    def _fan_out(self, namespace: Namespace, targets: List[str],
                 chunks_by_shard: Mapping[str, Sequence[Chunk]]) -> Dict[str, CountResult]:
        results: Dict[str, CountResult] = {}
        if not targets:
            return results

        cancel_event = threading.Event()
        failure: Optional[CountResult] = None
        executor = ThreadPoolExecutor(
            max_workers=self.max_workers or len(targets),
            thread_name_prefix="orphanscan-shard",
        )
        futures = {
            executor.submit(
                self.counter.count_shard,
                self.shard_connections[name], name, namespace,
                chunks_by_shard.get(name, ()), cancel_event,
            ): name
            for name in targets
        }

        def cancel_siblings():
            cancel_event.set()
            for future in futures:
                future.cancel()

        try:
            for future in as_completed(futures, timeout=self.shard_timeout):
                name = futures[future]
                if future.cancelled():
                    continue
                try:
                    result = future.result()
                except Exception as e:
                    result = CountResult(shard_name=name, error=QueryError(namespace.name, repr(e)))
                results[name] = result
                if not result.ok and failure is None:
                    failure = result
                    cancel_siblings()
        except FuturesTimeout:
            # Shards blocked inside the driver never see the cancel event;
            # their connections are closed at run end.
            cancel_siblings()
            executor.shutdown(wait=False, cancel_futures=True)
            pending = sorted(set(targets) - set(results))
            error = QueryError(
                namespace.name,
                f"shard(s) {', '.join(pending)} did not finish within {self.shard_timeout}s",
            )
            raise ReconcileError(namespace.name, pending[0], str(error)) from error
        except BaseException:
            cancel_siblings()
            executor.shutdown(wait=False, cancel_futures=True)
            raise

        executor.shutdown(wait=True)

        if failure is not None:
            raise ReconcileError(namespace.name, failure.shard_name, str(failure.error)) from failure.error

        return results
