#!/usr/bin/env python3
"""
ORPHANSCAN CONNECTIONS
----------------------
The store access layer consumed by the counting core. A Connection knows
how to count, scan identifiers and run plain reads against one endpoint
(the router or a single shard). Driver failures are translated into
StoreConnectionError / QueryError so the core never sees pymongo types.

Author: OrphanScan Team
Date: 2026-10-19
"""

import logging
from contextlib import ExitStack, contextmanager
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from pymongo import MongoClient
from pymongo.errors import ConnectionFailure, PyMongoError
from pymongo.uri_parser import parse_uri

from orphanscan.core.errors import QueryError, StoreConnectionError
from orphanscan.core.models import Namespace, Shard

logger = logging.getLogger("orphanscan.connection")

DEFAULT_TIMEOUT_MS = 2000

# URI options carried over from the router URI to every shard connection
INHERITED_OPTIONS = (
    "username", "password", "authsource", "authmechanism",
    "tls", "tlscafile", "tlscertificatekeyfile", "tlsallowinvalidcertificates",
    "readpreference", "appname",
)


class Connection:
    """Interface the core counts through. One instance per endpoint."""

    target: str = ""

    def count(self, namespace: Namespace, predicate: Optional[Dict[str, Any]] = None) -> int:
        """Store-reported count when predicate is None, else a filtered count."""
        raise NotImplementedError

    def scan_identifiers(self, namespace: Namespace) -> Iterator[Any]:
        """Lazily yields every document identifier. Not restartable."""
        raise NotImplementedError

    def find(self, namespace: Namespace, query: Optional[Dict[str, Any]] = None,
             projection: Optional[Dict[str, Any]] = None,
             sort: Optional[Sequence[Tuple[str, int]]] = None) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def ping(self):
        raise NotImplementedError

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class MongoConnection(Connection):
    """Connection backed by a pymongo MongoClient."""

    def __init__(self, client: MongoClient, target: str, max_time_ms: Optional[int] = None):
        self.client = client
        self.target = target
        self.max_time_ms = max_time_ms

    def _collection(self, namespace: Namespace):
        return self.client[namespace.database][namespace.collection]

    def _translate(self, namespace: Namespace, error: PyMongoError) -> Exception:
        if isinstance(error, ConnectionFailure):
            return StoreConnectionError(self.target, str(error))
        return QueryError(namespace.name, f"{error} (on {self.target})")

    def count(self, namespace: Namespace, predicate: Optional[Dict[str, Any]] = None) -> int:
        options = {"maxTimeMS": self.max_time_ms} if self.max_time_ms else {}
        try:
            if predicate is None:
                return int(self._collection(namespace).estimated_document_count(**options))
            return int(self._collection(namespace).count_documents(predicate, **options))
        except PyMongoError as e:
            raise self._translate(namespace, e) from e

    def scan_identifiers(self, namespace: Namespace) -> Iterator[Any]:
        try:
            cursor = self._collection(namespace).find({}, {"_id": 1}, batch_size=10000)
            with cursor:
                for doc in cursor:
                    yield doc["_id"]
        except PyMongoError as e:
            raise self._translate(namespace, e) from e

    def find(self, namespace: Namespace, query: Optional[Dict[str, Any]] = None,
             projection: Optional[Dict[str, Any]] = None,
             sort: Optional[Sequence[Tuple[str, int]]] = None) -> List[Dict[str, Any]]:
        try:
            cursor = self._collection(namespace).find(query or {}, projection)
            if sort:
                cursor = cursor.sort(list(sort))
            return list(cursor)
        except PyMongoError as e:
            raise self._translate(namespace, e) from e

    def ping(self):
        try:
            self.client.admin.command("ping")
        except PyMongoError as e:
            raise StoreConnectionError(self.target, str(e)) from e

    def close(self):
        self.client.close()


def split_shard_host(host: str) -> Tuple[Optional[str], List[str]]:
    """
    Splits a config.shards host string into (replica set, seed list).
    'rs0/a:27018,b:27018' -> ('rs0', ['a:27018', 'b:27018'])
    """
    replica_set, sep, seeds = host.partition("/")
    if not sep:
        replica_set, seeds = None, host
    hosts = [h.strip() for h in seeds.split(",") if h.strip()]
    if not hosts:
        raise StoreConnectionError(host, "No hosts in connection target")
    return replica_set, hosts


class ConnectionFactory:
    """
    Opens connections to the router and to each shard. Shard connections
    reuse the router's credentials and TLS settings with the shard's own
    host list, mirroring how the cluster itself is addressed.
    """

    def __init__(self, base_options: Optional[Mapping[str, Any]] = None,
                 timeout_ms: int = DEFAULT_TIMEOUT_MS, max_time_ms: Optional[int] = None):
        self.base_options: Dict[str, Any] = dict(base_options or {})
        self.timeout_ms = timeout_ms
        self.max_time_ms = max_time_ms

    @classmethod
    def from_uri(cls, uri: str, timeout_ms: int = DEFAULT_TIMEOUT_MS,
                 max_time_ms: Optional[int] = None) -> "ConnectionFactory":
        """Derives base options (credentials, TLS, auth source) from the router URI."""
        try:
            parsed = parse_uri(uri)
        except (PyMongoError, ValueError) as e:
            raise StoreConnectionError(uri, f"Could not parse MongoDB URI: {e}") from e

        options: Dict[str, Any] = {}
        if parsed.get("username"):
            options["username"] = parsed["username"]
            options["password"] = parsed.get("password")
        for key, value in (parsed.get("options") or {}).items():
            if key.lower() in INHERITED_OPTIONS:
                options[key] = value
        return cls(options, timeout_ms=timeout_ms, max_time_ms=max_time_ms)

    def _client_options(self) -> Dict[str, Any]:
        options = dict(self.base_options)
        options.setdefault("serverSelectionTimeoutMS", self.timeout_ms)
        options.setdefault("connectTimeoutMS", self.timeout_ms)
        return options

    def connect(self, target: str) -> MongoConnection:
        """
        Opens and verifies a connection. Accepts a mongodb:// URI (router)
        or a config.shards host string.
        """
        options = self._client_options()
        if target.startswith(("mongodb://", "mongodb+srv://")):
            host: Any = target
        else:
            replica_set, host = split_shard_host(target)
            if replica_set:
                options["replicaSet"] = replica_set

        logger.info(f"Connecting to {target}")
        try:
            client = MongoClient(host, **options)
        except PyMongoError as e:
            raise StoreConnectionError(target, str(e)) from e

        connection = MongoConnection(client, target, max_time_ms=self.max_time_ms)
        try:
            connection.ping()
        except StoreConnectionError:
            connection.close()
            raise
        return connection


@contextmanager
def open_shard_connections(factory: ConnectionFactory, shards: Sequence[Shard]) -> Iterator[Dict[str, Connection]]:
    """
    Opens one connection per shard for the lifetime of the block and closes
    all of them on exit, whether the block succeeds or not.
    """
    with ExitStack() as stack:
        connections: Dict[str, Connection] = {}
        for shard in shards:
            logger.info(f"Connecting to {shard.name} ({shard.host})")
            connections[shard.name] = stack.enter_context(factory.connect(shard.host))
        yield connections
