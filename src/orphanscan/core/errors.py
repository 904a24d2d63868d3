#!/usr/bin/env python3
"""
ORPHANSCAN ERRORS
-----------------
Failure kinds raised by the reconciliation core. Every error the core
raises derives from OrphanScanError so callers can catch a single type.

Author: OrphanScan Team
Date: 2026-10-19
"""

from typing import Optional


class OrphanScanError(Exception):
    """Base class for every failure surfaced by OrphanScan."""


class StoreConnectionError(OrphanScanError):
    """The router or a shard could not be reached."""

    def __init__(self, target: str, message: str):
        self.target = target
        super().__init__(f"Could not connect to {target}: {message}")


class QueryError(OrphanScanError):
    """A count or scan failed on an otherwise reachable connection."""

    def __init__(self, namespace: str, message: str):
        self.namespace = namespace
        super().__init__(f"Query on {namespace} failed: {message}")


class InvalidChunkBoundary(OrphanScanError):
    """A chunk bound is empty or its fields do not line up."""


class CountCancelled(OrphanScanError):
    """A shard scan was stopped because a sibling shard failed."""


class ConfigError(OrphanScanError):
    """The configuration file or an override is invalid."""


class ReportWriteError(OrphanScanError):
    """The report file could not be written."""


class ReconcileError(OrphanScanError):
    """A namespace could not be reconciled because one of its shards failed."""

    def __init__(self, namespace: str, shard_name: Optional[str], message: str):
        self.namespace = namespace
        self.shard_name = shard_name
        where = f"shard {shard_name}" if shard_name else "router"
        super().__init__(f"{namespace} ({where}): {message}")
