#!/usr/bin/env python3
"""
ORPHANSCAN TOPOLOGY
-------------------
Reads the routing metadata (shards, sharded collections, chunk ownership)
from the cluster's config database through the router connection.

Author: OrphanScan Team
Date: 2026-10-19
"""

import logging
from typing import Dict, List, Optional

from orphanscan.core.models import Chunk, Namespace, NamespaceEntry, Shard
from orphanscan.store.connection import Connection

logger = logging.getLogger("orphanscan.topology")

SHARDS_NS = Namespace("config.shards")
COLLECTIONS_NS = Namespace("config.collections")
CHUNKS_NS = Namespace("config.chunks")


class TopologyProvider:
    """Interface for the authoritative record of shards, collections and chunks."""

    def list_shards(self) -> List[Shard]:
        raise NotImplementedError

    def list_namespaces(self) -> List[NamespaceEntry]:
        raise NotImplementedError

    def list_chunks(self, namespace: Namespace, shard: Optional[str] = None) -> List[Chunk]:
        raise NotImplementedError


class MongoTopologyProvider(TopologyProvider):
    """TopologyProvider over config.shards / config.collections / config.chunks."""

    def __init__(self, router: Connection):
        self.router = router
        self._entries: Dict[Namespace, NamespaceEntry] = {}

    def list_shards(self) -> List[Shard]:
        docs = self.router.find(SHARDS_NS, sort=[("_id", 1)])
        shards = [Shard.from_document(d) for d in docs]
        logger.debug(f"Found {len(shards)} shard(s): {[s.name for s in shards]}")
        return shards

    def list_namespaces(self) -> List[NamespaceEntry]:
        docs = self.router.find(COLLECTIONS_NS, sort=[("_id", 1)])
        entries = []
        for doc in docs:
            try:
                entry = NamespaceEntry.from_document(doc)
            except ValueError as e:
                logger.warning(f"Ignoring config.collections entry {doc.get('_id')!r}: {e}")
                continue
            self._entries[entry.namespace] = entry
            entries.append(entry)
        return entries

    def list_chunks(self, namespace: Namespace, shard: Optional[str] = None) -> List[Chunk]:
        query = {"ns": namespace.name}
        if shard is not None:
            query["shard"] = shard
        docs = self.router.find(CHUNKS_NS, query, sort=[("min", 1)])

        if not docs:
            # Newer servers key chunks by collection UUID instead of ns.
            uuid = self._collection_uuid(namespace)
            if uuid is not None:
                query.pop("ns")
                query["uuid"] = uuid
                docs = self.router.find(CHUNKS_NS, query, sort=[("min", 1)])

        return [Chunk.from_document(d, namespace) for d in docs]

    def _collection_uuid(self, namespace: Namespace):
        if namespace not in self._entries:
            self.list_namespaces()
        entry = self._entries.get(namespace)
        return entry.uuid if entry else None
