import os
import sys
import threading
import time
from typing import Any, Dict, Iterable, List, Optional

import pytest

# Ensure the 'src' directory is in the python path so we can import orphanscan
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '../src')))

from orphanscan.core.models import Chunk, Namespace, NamespaceEntry, Shard
from orphanscan.store.connection import Connection
from orphanscan.store.topology import TopologyProvider

_MISSING = object()


def _lookup(doc: Dict[str, Any], path: str):
    value: Any = doc
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            return _MISSING
        value = value[part]
    return value


def _compare(op: str, value: Any, operand: Any) -> bool:
    if value is _MISSING:
        return False
    try:
        if op == "$gt":
            return value > operand
        if op == "$gte":
            return value >= operand
        if op == "$lt":
            return value < operand
        if op == "$lte":
            return value <= operand
    except TypeError:
        return False
    raise AssertionError(f"Unsupported operator {op}")


def matches(predicate: Dict[str, Any], doc: Dict[str, Any]) -> bool:
    """Evaluates the subset of the MongoDB query language the range builder emits."""
    for key, condition in predicate.items():
        if key == "$and":
            if not all(matches(p, doc) for p in condition):
                return False
        elif key == "$or":
            if not any(matches(p, doc) for p in condition):
                return False
        elif isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
            value = _lookup(doc, key)
            if not all(_compare(op, value, operand) for op, operand in condition.items()):
                return False
        elif _lookup(doc, key) != condition:
            return False
    return True


class FakeConnection(Connection):
    """
    In-memory stand-in for a router or shard connection.

    Args:
        collections: namespace name -> list of documents.
        reported: namespace name -> store-reported count (defaults to len).
        fail: exception raised by every count/scan.
        gate: event the scan waits on before yielding anything.
        delay: seconds slept before a scan starts.
        on_done: callback(target) once a scan finished.
    """

    def __init__(self, collections: Optional[Dict[str, List[Dict[str, Any]]]] = None,
                 reported: Optional[Dict[str, int]] = None, fail: Optional[Exception] = None,
                 target: str = "fake", gate: Optional[threading.Event] = None,
                 delay: float = 0.0, barrier: Optional[threading.Barrier] = None,
                 on_done=None):
        self.collections = collections or {}
        self.reported = reported or {}
        self.fail = fail
        self.target = target
        self.gate = gate
        self.delay = delay
        self.barrier = barrier
        self.on_done = on_done
        self.count_calls: List[Optional[Dict[str, Any]]] = []
        self.scan_calls = 0
        self.closed = False

    def _docs(self, namespace: Namespace) -> List[Dict[str, Any]]:
        return self.collections.get(namespace.name, [])

    def count(self, namespace, predicate=None):
        self.count_calls.append(predicate)
        if self.fail:
            raise self.fail
        if predicate is None:
            return self.reported.get(namespace.name, len(self._docs(namespace)))
        return sum(1 for d in self._docs(namespace) if matches(predicate, d))

    def scan_identifiers(self, namespace):
        self.scan_calls += 1
        if self.barrier is not None:
            self.barrier.wait(timeout=5)
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.delay:
            time.sleep(self.delay)
        if self.fail:
            raise self.fail
        for doc in self._docs(namespace):
            yield doc["_id"]
        if self.on_done:
            self.on_done(self.target)

    def find(self, namespace, query=None, projection=None, sort=None):
        docs = [d for d in self._docs(namespace) if all(d.get(k) == v for k, v in (query or {}).items())]
        for key, direction in reversed(list(sort or [])):
            docs.sort(key=lambda d: repr(d.get(key)), reverse=direction < 0)
        return docs

    def ping(self):
        if self.fail:
            raise self.fail

    def close(self):
        self.closed = True


class FakeTopology(TopologyProvider):
    def __init__(self, shards: Iterable[Shard] = (), entries: Iterable[NamespaceEntry] = (),
                 chunks: Iterable[Chunk] = ()):
        self.shards = list(shards)
        self.entries = list(entries)
        self.chunks = list(chunks)

    def list_shards(self):
        return list(self.shards)

    def list_namespaces(self):
        return list(self.entries)

    def list_chunks(self, namespace, shard=None):
        return [c for c in self.chunks
                if c.namespace == namespace and (shard is None or c.shard == shard)]


def docs_with_keys(keys: Iterable[Any], field: str = "x", start_id: int = 0) -> List[Dict[str, Any]]:
    return [{"_id": start_id + i, field: k} for i, k in enumerate(keys)]


def chunk(ns: str, shard: str, lower: Any, upper: Any, field: str = "x") -> Chunk:
    return Chunk(Namespace(ns), shard, ((field, lower),), ((field, upper),))


@pytest.fixture
def orders_ns():
    return Namespace("db.orders")
