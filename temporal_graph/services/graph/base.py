"""Graph store contract.

A store owns node, edge, snapshot and diff state per source. Writes of one
ingestion go through a GraphWriter obtained from `transaction(source_id)` and
commit together; upserts are increment-or-create operations applied by the
storage layer itself, never a read-then-write by the caller.

Each ingestion has an id (the id of the snapshot it appends). Upserted nodes
are stamped with it and `append_snapshot` records it as the source's latest
ingestion, which is how `load_entity_state` finds the previous batch without
relying on timestamps.

Row shapes used by the bulk writers:

    node row: {"key": ..., "type": ..., "value": ..., "id": <id to use if created>}
    edge row: {"a": <node id>, "b": <node id>, "id": <id to use if created>}

Edge rows are canonicalised so that "a" is the smaller node id.
"""
from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterator, List, Optional, Tuple

from .records import DiffRecord, Edge, EntityState, Node, Snapshot


def canonical_pair(a: str, b: str) -> Tuple[str, str]:
    return (a, b) if a < b else (b, a)


def node_row(key: str, type_: str, value: Optional[str], node_id: str) -> Dict[str, Optional[str]]:
    return {"key": key, "type": type_, "value": value, "id": node_id}


def edge_row(a: str, b: str, edge_id: str) -> Dict[str, str]:
    first, second = canonical_pair(a, b)
    return {"a": first, "b": second, "id": edge_id}


class GraphWriter:
    """Write side of one store transaction."""

    def upsert_nodes(
        self, source_id: str, rows: List[Dict], now: datetime, ingestion_id: Optional[str] = None
    ) -> Dict[str, str]:
        """Increment-or-create each node and stamp it with `ingestion_id`.

        Returns {entity_key: node_id} for applied rows.
        """
        raise NotImplementedError

    def upsert_edges(self, source_id: str, rows: List[Dict], now: datetime) -> int:
        """Increment-or-create each edge; returns the number of applied rows."""
        raise NotImplementedError

    def insert_diffs(self, source_id: str, diffs: List[DiffRecord]) -> int:
        raise NotImplementedError

    def append_snapshot(self, source_id: str, anomaly_count: int, now: datetime, snapshot_id: str) -> Snapshot:
        """Record aggregates and mark `snapshot_id` as the source's latest ingestion."""
        raise NotImplementedError

    def upsert_node(
        self,
        source_id: str,
        key: str,
        type_: str,
        value: Optional[str],
        now: datetime,
        node_id: str,
        ingestion_id: Optional[str] = None,
    ) -> Optional[str]:
        ids = self.upsert_nodes(source_id, [node_row(key, type_, value, node_id)], now, ingestion_id)
        return ids.get(key)

    def upsert_edge(self, source_id: str, a: str, b: str, now: datetime, edge_id: str) -> bool:
        return self.upsert_edges(source_id, [edge_row(a, b, edge_id)], now) == 1


class GraphStore:
    """Durable node/edge state plus append-only snapshots and diffs."""

    name: str = "base"

    def ensure_schema(self) -> None:
        """Create constraints/indexes where the backend has them."""

    def load_entity_state(self, source_id: str) -> Dict[str, EntityState]:
        """Entity state of the nodes stamped by the source's latest ingestion, keyed by entity key."""
        raise NotImplementedError

    @contextmanager
    def transaction(self, source_id: str) -> Iterator[GraphWriter]:
        raise NotImplementedError
        yield  # pragma: no cover

    def list_nodes(
        self, source_id: Optional[str] = None, since: Optional[datetime] = None, limit: Optional[int] = None
    ) -> List[Node]:
        """Nodes last seen at or after `since`, ordered by occurrence_count desc."""
        raise NotImplementedError

    def list_edges(
        self, source_id: Optional[str] = None, since: Optional[datetime] = None, limit: Optional[int] = None
    ) -> List[Edge]:
        """Edges last seen at or after `since`, ordered by weight desc."""
        raise NotImplementedError

    def list_snapshots(self, source_id: Optional[str] = None, since: Optional[datetime] = None) -> List[Snapshot]:
        """Snapshots created at or after `since`, oldest first."""
        raise NotImplementedError

    def list_diffs(
        self, source_id: Optional[str] = None, since: Optional[datetime] = None, limit: Optional[int] = None
    ) -> List[DiffRecord]:
        """Diffs created at or after `since`, newest first."""
        raise NotImplementedError

    def count_diffs(self, source_id: Optional[str] = None, since: Optional[datetime] = None) -> Dict[str, int]:
        raise NotImplementedError

    def close(self) -> None:
        pass
