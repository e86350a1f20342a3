"""In-process graph store.

Useful for development, tests and single-process deployments. Each source has
its own partition guarded by a re-entrant lock. A transaction works on a
staging area holding copies of the node and edge maps plus the diffs and
snapshots it adds; on success a new partition is swapped in that takes the
staged maps and appends the staged records to the shared history lists, which
are never copied. Readers work on whatever partition was current when they
looked.
"""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, Iterator, List, Optional, Tuple

from temporal_graph.errors import PartialBatchFailure

from .base import GraphStore, GraphWriter, canonical_pair
from .records import DiffRecord, Edge, EntityState, Node, Snapshot

logger = logging.getLogger(__name__)


@dataclass
class _Partition:
    nodes: Dict[str, Node] = field(default_factory=dict)
    edges: Dict[Tuple[str, str], Edge] = field(default_factory=dict)
    snapshots: List[Snapshot] = field(default_factory=list)
    diffs: List[DiffRecord] = field(default_factory=list)
    last_ingestion_id: Optional[str] = None


class _Staging:
    """Uncommitted state of one transaction."""

    def __init__(self, base: _Partition) -> None:
        self.nodes = {k: replace(n) for k, n in base.nodes.items()}
        self.edges = {k: replace(e) for k, e in base.edges.items()}
        self.snapshots: List[Snapshot] = []
        self.diffs: List[DiffRecord] = []
        self.last_ingestion_id = base.last_ingestion_id

    def commit(self, base: _Partition) -> _Partition:
        base.snapshots.extend(self.snapshots)
        base.diffs.extend(self.diffs)
        return _Partition(
            nodes=self.nodes,
            edges=self.edges,
            snapshots=base.snapshots,
            diffs=base.diffs,
            last_ingestion_id=self.last_ingestion_id,
        )


class _MemoryWriter(GraphWriter):
    def __init__(self, staging: _Staging) -> None:
        self._p = staging

    def upsert_nodes(
        self, source_id: str, rows: List[Dict], now: datetime, ingestion_id: Optional[str] = None
    ) -> Dict[str, str]:
        ids: Dict[str, str] = {}
        for row in rows:
            try:
                node = self._upsert_node_row(source_id, row, now)
            except PartialBatchFailure as exc:
                logger.warning("Skipping node row for source %s: %s", source_id, exc)
                continue
            node.last_ingestion_id = ingestion_id
            ids[node.entity_key] = node.id
        return ids

    def _upsert_node_row(self, source_id: str, row: Dict, now: datetime) -> Node:
        key = row.get("key")
        if not key:
            raise PartialBatchFailure("empty entity key", row=row)
        node = self._p.nodes.get(key)
        if node is not None:
            node.occurrence_count += 1
            node.last_seen_at = now
            node.entity_value = row.get("value")
            return node
        node = Node(
            id=row["id"],
            source_id=source_id,
            entity_key=key,
            entity_type=row.get("type") or "text",
            entity_value=row.get("value"),
            occurrence_count=1,
            first_seen_at=now,
            last_seen_at=now,
        )
        self._p.nodes[key] = node
        return node

    def upsert_edges(self, source_id: str, rows: List[Dict], now: datetime) -> int:
        known = {n.id for n in self._p.nodes.values()}
        applied = 0
        for row in rows:
            try:
                self._upsert_edge_row(source_id, row, now, known)
            except PartialBatchFailure as exc:
                logger.warning("Skipping edge row for source %s: %s", source_id, exc)
                continue
            applied += 1
        return applied

    def _upsert_edge_row(self, source_id: str, row: Dict, now: datetime, known: set) -> Edge:
        a, b = row.get("a"), row.get("b")
        if a not in known or b not in known:
            raise PartialBatchFailure(f"edge endpoint missing in source ({a}, {b})", row=row)
        if a == b:
            raise PartialBatchFailure(f"self-loop on node {a}", row=row)
        pair = canonical_pair(a, b)
        edge = self._p.edges.get(pair)
        if edge is not None:
            edge.weight += 1
            edge.last_seen_at = now
            return edge
        edge = Edge(
            id=row["id"],
            source_id=source_id,
            source_node_id=pair[0],
            target_node_id=pair[1],
            weight=1,
            first_seen_at=now,
            last_seen_at=now,
        )
        self._p.edges[pair] = edge
        return edge

    def insert_diffs(self, source_id: str, diffs: List[DiffRecord]) -> int:
        self._p.diffs.extend(diffs)
        return len(diffs)

    def append_snapshot(self, source_id: str, anomaly_count: int, now: datetime, snapshot_id: str) -> Snapshot:
        nodes = list(self._p.nodes.values())
        avg = sum(n.occurrence_count for n in nodes) / len(nodes) if nodes else 0.0
        snap = Snapshot(
            id=snapshot_id,
            source_id=source_id,
            node_count=len(nodes),
            edge_count=len(self._p.edges),
            anomaly_count=anomaly_count,
            avg_occurrence=round(avg, 2),
            created_at=now,
        )
        self._p.snapshots.append(snap)
        self._p.last_ingestion_id = snapshot_id
        return snap


class MemoryGraphStore(GraphStore):
    name = "memory"

    def __init__(self) -> None:
        self._partitions: Dict[str, _Partition] = {}
        self._locks: Dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, source_id: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(source_id)
            if lock is None:
                lock = self._locks[source_id] = threading.RLock()
            return lock

    def _selected(self, source_id: Optional[str]) -> List[_Partition]:
        if source_id is not None:
            p = self._partitions.get(source_id)
            return [p] if p is not None else []
        return list(self._partitions.values())

    def load_entity_state(self, source_id: str) -> Dict[str, EntityState]:
        p = self._partitions.get(source_id)
        if p is None or p.last_ingestion_id is None:
            return {}
        latest = p.last_ingestion_id
        return {
            n.entity_key: EntityState(
                value=n.entity_value, occurrence_count=n.occurrence_count, entity_type=n.entity_type
            )
            for n in p.nodes.values()
            if n.last_ingestion_id == latest
        }

    @contextmanager
    def transaction(self, source_id: str) -> Iterator[GraphWriter]:
        with self._lock_for(source_id):
            current = self._partitions.get(source_id) or _Partition()
            staging = _Staging(current)
            yield _MemoryWriter(staging)
            # Only reached when the body did not raise
            self._partitions[source_id] = staging.commit(current)

    def list_nodes(
        self, source_id: Optional[str] = None, since: Optional[datetime] = None, limit: Optional[int] = None
    ) -> List[Node]:
        nodes = [
            replace(n)
            for p in self._selected(source_id)
            for n in p.nodes.values()
            if since is None or n.last_seen_at >= since
        ]
        nodes.sort(key=lambda n: (-n.occurrence_count, n.entity_key))
        return nodes[:limit] if limit is not None else nodes

    def list_edges(
        self, source_id: Optional[str] = None, since: Optional[datetime] = None, limit: Optional[int] = None
    ) -> List[Edge]:
        edges = [
            replace(e)
            for p in self._selected(source_id)
            for e in p.edges.values()
            if since is None or e.last_seen_at >= since
        ]
        edges.sort(key=lambda e: (-e.weight, e.id))
        return edges[:limit] if limit is not None else edges

    def list_snapshots(self, source_id: Optional[str] = None, since: Optional[datetime] = None) -> List[Snapshot]:
        snaps = [
            s
            for p in self._selected(source_id)
            for s in p.snapshots
            if since is None or s.created_at >= since
        ]
        snaps.sort(key=lambda s: s.created_at)
        return snaps

    def list_diffs(
        self, source_id: Optional[str] = None, since: Optional[datetime] = None, limit: Optional[int] = None
    ) -> List[DiffRecord]:
        diffs = [
            d
            for p in self._selected(source_id)
            for d in p.diffs
            if since is None or d.created_at >= since
        ]
        diffs.sort(key=lambda d: d.created_at, reverse=True)
        return diffs[:limit] if limit is not None else diffs

    def count_diffs(self, source_id: Optional[str] = None, since: Optional[datetime] = None) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for d in self.list_diffs(source_id, since):
            counts[d.diff_type] = counts.get(d.diff_type, 0) + 1
        return counts
