#!/usr/bin/env python3
"""
ORPHANSCAN CORE MODELS
----------------------
Defines the fundamental data structures used across the OrphanScan engine:
the cluster topology (shards, namespaces, chunks) and the count results
derived from it on every run.

Author: OrphanScan Team
Date: 2026-10-19
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from orphanscan.core.errors import OrphanScanError

# A compound shard-key boundary: ordered (field name, value) pairs
Bound = Tuple[Tuple[str, Any], ...]


def orphans(expected_high: int, expected_low: int) -> int:
    """Orphan figure for a pair of counts. Clamped so it is never negative."""
    return max(0, expected_high - expected_low)


def to_bound(raw: Union[Mapping[str, Any], Sequence[Tuple[str, Any]]]) -> Bound:
    """Normalizes a chunk's min/max document (or a pair list) into a Bound."""
    if isinstance(raw, Mapping):
        return tuple((str(k), v) for k, v in raw.items())
    return tuple((str(k), v) for k, v in raw)


class CountMode(str, Enum):
    """Which question a run answers. Chosen once per run."""
    SIMPLE = "simple"  # reported vs scanned: bookkeeping drift
    RANGE = "range"    # scanned vs owned ranges: misplaced documents

    @classmethod
    def parse(cls, value: Union[str, "CountMode"]) -> "CountMode":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            choices = ", ".join(m.value for m in cls)
            raise ValueError(f"Unknown count mode '{value}' (expected one of: {choices})")


@dataclass(frozen=True, order=True)
class Namespace:
    """A single collection, addressed as '<database>.<collection>'."""
    name: str

    @classmethod
    def parse(cls, text: str) -> "Namespace":
        db, sep, coll = text.partition(".")
        if not sep or not db or not coll:
            raise ValueError(f"Invalid namespace '{text}': expected '<database>.<collection>'")
        return cls(text)

    @property
    def database(self) -> str:
        return self.name.split(".", 1)[0]

    @property
    def collection(self) -> str:
        # Collection names may contain dots; only the first one separates.
        return self.name.split(".", 1)[1]

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class Shard:
    """A data-owning member of the cluster, as listed in config.shards."""
    name: str
    host: str   # Connection target, e.g. 'rs0/h1:27018,h2:27018'

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "Shard":
        return cls(name=str(doc["_id"]), host=str(doc["host"]))


@dataclass(frozen=True)
class NamespaceEntry:
    """A sharded collection as recorded in config.collections."""
    namespace: Namespace
    dropped: bool = False
    key: Bound = ()
    uuid: Optional[Any] = None

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "NamespaceEntry":
        return cls(
            namespace=Namespace.parse(str(doc["_id"])),
            dropped=bool(doc.get("dropped", False)),
            key=to_bound(doc.get("key") or {}),
            uuid=doc.get("uuid"),
        )


@dataclass(frozen=True)
class Chunk:
    """
    A contiguous half-open key range [lower, upper) owned by one shard
    at the time it was read.
    """
    namespace: Namespace
    shard: str
    lower: Bound
    upper: Bound

    @classmethod
    def from_document(cls, doc: Mapping[str, Any], namespace: Namespace) -> "Chunk":
        return cls(
            namespace=namespace,
            shard=str(doc["shard"]),
            lower=to_bound(doc["min"]),
            upper=to_bound(doc["max"]),
        )


@dataclass
class CountResult:
    """Counts taken for one namespace on one shard during a single run."""
    shard_name: str
    reported_count: int = 0
    actual_count: int = 0
    range_bounded_count: Optional[int] = None
    error: Optional[OrphanScanError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def orphan_count(self, mode: CountMode) -> int:
        if mode is CountMode.RANGE:
            return orphans(self.actual_count, self.range_bounded_count or 0)
        return orphans(self.reported_count, self.actual_count)

    def to_dict(self, mode: CountMode) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "shard": self.shard_name,
            "reported_count": self.reported_count,
            "actual_count": self.actual_count,
        }
        if mode is CountMode.RANGE:
            data["range_bounded_count"] = self.range_bounded_count
        data["orphans"] = self.orphan_count(mode)
        if self.error is not None:
            data["error"] = str(self.error)
        return data


@dataclass
class NamespaceReport:
    """
    Reconciliation outcome for one namespace.

    reported_count and actual_count come from the router, not from the
    shard sum, so a disagreement with shard_actual_total is itself a signal.
    """
    namespace: Namespace
    mode: CountMode
    reported_count: int = 0
    actual_count: int = 0
    per_shard: List[CountResult] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def range_bounded_count(self) -> Optional[int]:
        if self.mode is not CountMode.RANGE or self.error:
            return None
        return sum(r.range_bounded_count or 0 for r in self.per_shard)

    @property
    def orphans(self) -> int:
        return sum(r.orphan_count(self.mode) for r in self.per_shard)

    @property
    def shard_actual_total(self) -> int:
        return sum(r.actual_count for r in self.per_shard)

    def to_dict(self) -> Dict[str, Any]:
        if self.error:
            return {"namespace": self.namespace.name, "error": self.error}
        data: Dict[str, Any] = {
            "namespace": self.namespace.name,
            "mode": self.mode.value,
            "reported_count": self.reported_count,
            "actual_count": self.actual_count,
        }
        if self.mode is CountMode.RANGE:
            data["range_bounded_count"] = self.range_bounded_count
        data["shard_actual_total"] = self.shard_actual_total
        data["orphans"] = self.orphans
        data["per_shard"] = [r.to_dict(self.mode) for r in self.per_shard]
        return data


@dataclass
class RunReport:
    """Everything produced by a single reconciliation run."""
    mode: CountMode
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None
    namespaces: List[NamespaceReport] = field(default_factory=list)

    @property
    def skipped(self) -> List[str]:
        return [r.namespace.name for r in self.namespaces if r.error]

    @property
    def total_orphans(self) -> int:
        return sum(r.orphans for r in self.namespaces if not r.error)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "started_at": time.strftime("%Y-%m-%dT%H:%M:%S", time.localtime(self.started_at)),
            "finished_at": (
                time.strftime("%Y-%m-%dT%H:%M:%S", time.localtime(self.finished_at))
                if self.finished_at else None
            ),
            "total_orphans": self.total_orphans,
            "skipped": self.skipped,
            "namespaces": [r.to_dict() for r in self.namespaces],
        }
