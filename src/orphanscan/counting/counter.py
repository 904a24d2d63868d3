#!/usr/bin/env python3
"""
ORPHANSCAN SHARD COUNTER
------------------------
Computes the per-shard figures for one namespace:

1. reported_count      - the store's own (metadata) document count
2. actual_count        - exhaustive scan of every document identifier
3. range_bounded_count - range mode only: documents inside the chunk
                         ranges the shard is supposed to own

Failures never escape count_shard; they are attached to the CountResult
so that sibling shards running concurrently are unaffected.

Author: OrphanScan Team
Date: 2026-10-19
"""

import logging
import threading
from typing import Optional, Sequence

from orphanscan.core.errors import CountCancelled, OrphanScanError
from orphanscan.core.models import Chunk, CountMode, CountResult, Namespace
from orphanscan.counting.predicate import build_range_predicate
from orphanscan.store.connection import Connection

logger = logging.getLogger("orphanscan.counter")

# Number of identifiers scanned between two cancellation checks
CANCEL_CHECK_INTERVAL = 1000


class ShardCounter:
    """Counts one namespace on one shard in the run's single mode."""

    def __init__(self, mode: CountMode = CountMode.SIMPLE):
        self.mode = CountMode.parse(mode)

    def count_shard(self, connection: Connection, shard_name: str, namespace: Namespace,
                    chunks: Sequence[Chunk] = (),
                    cancel_event: Optional[threading.Event] = None) -> CountResult:
        result = CountResult(shard_name=shard_name)
        try:
            self._check_cancelled(cancel_event, shard_name)
            result.reported_count = connection.count(namespace)
            result.actual_count = self.scan_count(connection, namespace, cancel_event, shard_name)
            if self.mode is CountMode.RANGE:
                result.range_bounded_count = self.range_count(
                    connection, namespace, chunks, cancel_event, shard_name
                )
        except OrphanScanError as e:
            logger.error(f"Counting {namespace} on {shard_name} failed: {e}")
            result.error = e
            return result

        logger.debug(
            f"{namespace} on {shard_name}: reported={result.reported_count} "
            f"actual={result.actual_count} range={result.range_bounded_count}"
        )
        return result

    def scan_count(self, connection: Connection, namespace: Namespace,
                   cancel_event: Optional[threading.Event] = None, shard_name: str = "") -> int:
        """Exact count as of scan time, one identifier at a time."""
        total = 0
        for _ in connection.scan_identifiers(namespace):
            total += 1
            if total % CANCEL_CHECK_INTERVAL == 0:
                self._check_cancelled(cancel_event, shard_name)
        return total

    def range_count(self, connection: Connection, namespace: Namespace, chunks: Sequence[Chunk],
                    cancel_event: Optional[threading.Event] = None, shard_name: str = "") -> int:
        """Sum of per-chunk counts, each restricted to the chunk's own range."""
        total = 0
        for chunk in chunks:
            self._check_cancelled(cancel_event, shard_name)
            total += connection.count(namespace, build_range_predicate(chunk.lower, chunk.upper))
        return total

    @staticmethod
    def _check_cancelled(cancel_event: Optional[threading.Event], shard_name: str):
        if cancel_event is not None and cancel_event.is_set():
            raise CountCancelled(f"Count on {shard_name} cancelled after a sibling shard failed")
