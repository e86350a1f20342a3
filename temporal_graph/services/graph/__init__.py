"""Graph store package.

Backends share the GraphStore contract in base.py:
- neo4j_store: production store (Neo4j, bulk UNWIND/MERGE statements)
- memory_store: in-process store for development, tests and single-process use

Select a backend with TG_GRAPH_BACKEND (neo4j | memory, default neo4j) and obtain
the shared instance through get_graph_store().
"""
import os
from typing import Optional

from temporal_graph.db.neo4j_connector import load_env_from_file

from .base import GraphStore, GraphWriter, canonical_pair, edge_row, node_row
from .memory_store import MemoryGraphStore
from .neo4j_store import Neo4jGraphStore
from .records import (
    DiffRecord,
    Edge,
    EntityState,
    Node,
    Snapshot,
    new_id,
    parse_ts,
    to_iso,
    utc_now,
)

BACKENDS = {
    "neo4j": Neo4jGraphStore,
    "memory": MemoryGraphStore,
}

_store_cache: Optional[GraphStore] = None


def create_graph_store(backend: Optional[str] = None) -> GraphStore:
    load_env_from_file()
    name = (backend or os.getenv("TG_GRAPH_BACKEND") or "neo4j").strip().lower()
    cls = BACKENDS.get(name)
    if cls is None:
        raise RuntimeError(
            f"Unknown TG_GRAPH_BACKEND '{name}'. Valid backends: {', '.join(sorted(BACKENDS))}"
        )
    return cls()


def get_graph_store() -> GraphStore:
    global _store_cache
    if _store_cache is None:
        _store_cache = create_graph_store()
    return _store_cache


def close_graph_store() -> None:
    global _store_cache
    if _store_cache is not None:
        _store_cache.close()
        _store_cache = None


__all__ = [
    # contract
    'GraphStore', 'GraphWriter', 'canonical_pair', 'edge_row', 'node_row',
    # backends
    'MemoryGraphStore', 'Neo4jGraphStore', 'BACKENDS',
    'create_graph_store', 'get_graph_store', 'close_graph_store',
    # records
    'DiffRecord', 'Edge', 'EntityState', 'Node', 'Snapshot',
    'new_id', 'parse_ts', 'to_iso', 'utc_now',
]
