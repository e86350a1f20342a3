"""Neo4j-backed graph store.

Layout:

    (:TGNode {id, source_id, entity_key, entity_type, entity_value,
              occurrence_count, first_seen_at, last_seen_at,
              last_ingestion_id})
    (:TGNode)-[:CO_OCCURS {id, source_id, weight, first_seen_at, last_seen_at}]->(:TGNode)
    (:TGSnapshot {...})   append-only
    (:TGDiff {...})       append-only
    (:TGSource {source_id, last_ingestion_id})   latest committed ingestion per source

Edges always point from the smaller node id to the larger one. Timestamps are
fixed-width UTC ISO strings (see records.to_iso), so range filters compare strings.

Every bulk write is a single UNWIND statement and increments happen in
`ON MATCH SET`, which Neo4j applies under the node/relationship write lock.
All statements of one ingestion share one explicit transaction.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

from neo4j.exceptions import DriverError, Neo4jError

from temporal_graph.db.neo4j_connector import get_database, get_driver, close_driver, run_cypher, store_errors

from .base import GraphStore, GraphWriter
from .records import DiffRecord, Edge, EntityState, Node, Snapshot, to_iso

logger = logging.getLogger(__name__)

SCHEMA_STATEMENTS = [
    "CREATE CONSTRAINT tg_node_identity IF NOT EXISTS FOR (n:TGNode) REQUIRE (n.source_id, n.entity_key) IS UNIQUE",
    "CREATE CONSTRAINT tg_node_id IF NOT EXISTS FOR (n:TGNode) REQUIRE n.id IS UNIQUE",
    "CREATE CONSTRAINT tg_source_id IF NOT EXISTS FOR (m:TGSource) REQUIRE m.source_id IS UNIQUE",
    "CREATE INDEX tg_node_last_seen IF NOT EXISTS FOR (n:TGNode) ON (n.source_id, n.last_seen_at)",
    "CREATE INDEX tg_snapshot_created IF NOT EXISTS FOR (s:TGSnapshot) ON (s.source_id, s.created_at)",
    "CREATE INDEX tg_diff_created IF NOT EXISTS FOR (d:TGDiff) ON (d.source_id, d.created_at)",
]

UPSERT_NODES = (
    "UNWIND $rows AS row "
    "MERGE (n:TGNode {source_id: $source_id, entity_key: row.key}) "
    "ON CREATE SET n.id = row.id, n.entity_type = row.type, n.occurrence_count = 1, n.first_seen_at = $now "
    "ON MATCH SET n.occurrence_count = n.occurrence_count + 1 "
    "SET n.entity_value = row.value, n.last_seen_at = $now, n.last_ingestion_id = $ingestion_id "
    "RETURN row.key AS key, n.id AS id"
)

UPSERT_EDGES = (
    "UNWIND $rows AS row "
    "MATCH (a:TGNode {source_id: $source_id, id: row.a}) "
    "MATCH (b:TGNode {source_id: $source_id, id: row.b}) "
    "MERGE (a)-[r:CO_OCCURS]->(b) "
    "ON CREATE SET r.id = row.id, r.source_id = $source_id, r.weight = 1, r.first_seen_at = $now "
    "ON MATCH SET r.weight = r.weight + 1 "
    "SET r.last_seen_at = $now "
    "RETURN count(r) AS applied"
)

INSERT_DIFFS = (
    "UNWIND $rows AS row "
    "CREATE (d:TGDiff) SET d = row "
    "RETURN count(d) AS inserted"
)

APPEND_SNAPSHOT = (
    "OPTIONAL MATCH (n:TGNode {source_id: $source_id}) "
    "WITH count(n) AS node_count, avg(n.occurrence_count) AS avg_occ "
    "OPTIONAL MATCH (:TGNode {source_id: $source_id})-[r:CO_OCCURS]->(:TGNode) "
    "WITH node_count, avg_occ, count(r) AS edge_count "
    "CREATE (s:TGSnapshot {id: $id, source_id: $source_id, node_count: node_count, edge_count: edge_count, "
    "anomaly_count: $anomaly_count, avg_occurrence: round(coalesce(avg_occ, 0.0) * 100) / 100.0, created_at: $now}) "
    "MERGE (m:TGSource {source_id: $source_id}) "
    "SET m.last_ingestion_id = s.id "
    "RETURN s {.*} AS snapshot"
)

LOAD_ENTITY_STATE = (
    "MATCH (m:TGSource {source_id: $source_id}) "
    "MATCH (n:TGNode {source_id: $source_id}) WHERE n.last_ingestion_id = m.last_ingestion_id "
    "RETURN n.entity_key AS key, n.entity_value AS value, n.occurrence_count AS occurrence_count, "
    "n.entity_type AS entity_type "
    "ORDER BY n.first_seen_at, n.entity_key"
)


def _where(conditions: Dict[str, str], params: Dict[str, Any]) -> str:
    """Build a WHERE clause from {param_name: condition} for params that are set."""
    parts = [cond for name, cond in conditions.items() if params.get(name) is not None]
    return (" WHERE " + " AND ".join(parts)) if parts else ""


def _limit(limit: Optional[int], params: Dict[str, Any]) -> str:
    if limit is None:
        return ""
    params["limit"] = int(limit)
    return " LIMIT $limit"


class _Neo4jWriter(GraphWriter):
    def __init__(self, tx) -> None:
        self._tx = tx

    def _run(self, query: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        return self._tx.run(query, params).data()

    def upsert_nodes(
        self, source_id: str, rows: List[Dict], now: datetime, ingestion_id: Optional[str] = None
    ) -> Dict[str, str]:
        valid = [r for r in rows if r.get("key")]
        if len(valid) < len(rows):
            logger.warning("Skipping %d node rows without entity key for source %s", len(rows) - len(valid), source_id)
        if not valid:
            return {}
        records = self._run(
            UPSERT_NODES,
            {"source_id": source_id, "now": to_iso(now), "ingestion_id": ingestion_id, "rows": valid},
        )
        return {r["key"]: r["id"] for r in records}

    def upsert_edges(self, source_id: str, rows: List[Dict], now: datetime) -> int:
        if not rows:
            return 0
        records = self._run(UPSERT_EDGES, {"source_id": source_id, "now": to_iso(now), "rows": rows})
        applied = int(records[0]["applied"]) if records else 0
        if applied < len(rows):
            logger.warning(
                "Skipped %d edge rows with endpoints missing in source %s", len(rows) - applied, source_id
            )
        return applied

    def insert_diffs(self, source_id: str, diffs: List[DiffRecord]) -> int:
        if not diffs:
            return 0
        records = self._run(INSERT_DIFFS, {"rows": [d.to_dict() for d in diffs]})
        return int(records[0]["inserted"]) if records else 0

    def append_snapshot(self, source_id: str, anomaly_count: int, now: datetime, snapshot_id: str) -> Snapshot:
        records = self._run(
            APPEND_SNAPSHOT,
            {"source_id": source_id, "anomaly_count": anomaly_count, "now": to_iso(now), "id": snapshot_id},
        )
        return Snapshot.from_row(records[0]["snapshot"])


class Neo4jGraphStore(GraphStore):
    name = "neo4j"

    def ensure_schema(self) -> None:
        for statement in SCHEMA_STATEMENTS:
            run_cypher(statement)

    def load_entity_state(self, source_id: str) -> Dict[str, EntityState]:
        rows = run_cypher(LOAD_ENTITY_STATE, {"source_id": source_id}) or []
        return {
            r["key"]: EntityState(
                value=r.get("value"),
                occurrence_count=int(r.get("occurrence_count") or 0),
                entity_type=r.get("entity_type"),
            )
            for r in rows
            if r.get("key")
        }

    @contextmanager
    def transaction(self, source_id: str) -> Iterator[GraphWriter]:
        driver = get_driver()
        with store_errors():
            with driver.session(database=get_database()) as session:
                tx = session.begin_transaction()
                try:
                    yield _Neo4jWriter(tx)
                except Exception:
                    try:
                        tx.rollback()
                    except (Neo4jError, DriverError) as exc:
                        logger.warning("Rollback failed for source %s: %s", source_id, exc)
                    raise
                tx.commit()

    def list_nodes(
        self, source_id: Optional[str] = None, since: Optional[datetime] = None, limit: Optional[int] = None
    ) -> List[Node]:
        params: Dict[str, Any] = {"source_id": source_id, "since": to_iso(since)}
        query = (
            "MATCH (n:TGNode)"
            + _where({"source_id": "n.source_id = $source_id", "since": "n.last_seen_at >= $since"}, params)
            + " RETURN n {.*} AS node ORDER BY n.occurrence_count DESC, n.entity_key"
            + _limit(limit, params)
        )
        return [Node.from_row(r["node"]) for r in run_cypher(query, params) or []]

    def list_edges(
        self, source_id: Optional[str] = None, since: Optional[datetime] = None, limit: Optional[int] = None
    ) -> List[Edge]:
        params: Dict[str, Any] = {"source_id": source_id, "since": to_iso(since)}
        query = (
            "MATCH (a:TGNode)-[r:CO_OCCURS]->(b:TGNode)"
            + _where({"source_id": "r.source_id = $source_id", "since": "r.last_seen_at >= $since"}, params)
            + " RETURN r {.*, source_node_id: a.id, target_node_id: b.id} AS edge ORDER BY r.weight DESC, r.id"
            + _limit(limit, params)
        )
        return [Edge.from_row(r["edge"]) for r in run_cypher(query, params) or []]

    def list_snapshots(self, source_id: Optional[str] = None, since: Optional[datetime] = None) -> List[Snapshot]:
        params: Dict[str, Any] = {"source_id": source_id, "since": to_iso(since)}
        query = (
            "MATCH (s:TGSnapshot)"
            + _where({"source_id": "s.source_id = $source_id", "since": "s.created_at >= $since"}, params)
            + " RETURN s {.*} AS snapshot ORDER BY s.created_at"
        )
        return [Snapshot.from_row(r["snapshot"]) for r in run_cypher(query, params) or []]

    def list_diffs(
        self, source_id: Optional[str] = None, since: Optional[datetime] = None, limit: Optional[int] = None
    ) -> List[DiffRecord]:
        params: Dict[str, Any] = {"source_id": source_id, "since": to_iso(since)}
        query = (
            "MATCH (d:TGDiff)"
            + _where({"source_id": "d.source_id = $source_id", "since": "d.created_at >= $since"}, params)
            + " RETURN d {.*} AS diff ORDER BY d.created_at DESC"
            + _limit(limit, params)
        )
        return [DiffRecord.from_row(r["diff"]) for r in run_cypher(query, params) or []]

    def count_diffs(self, source_id: Optional[str] = None, since: Optional[datetime] = None) -> Dict[str, int]:
        params: Dict[str, Any] = {"source_id": source_id, "since": to_iso(since)}
        query = (
            "MATCH (d:TGDiff)"
            + _where({"source_id": "d.source_id = $source_id", "since": "d.created_at >= $since"}, params)
            + " RETURN d.diff_type AS diff_type, count(d) AS count"
        )
        return {r["diff_type"]: int(r["count"]) for r in run_cypher(query, params) or [] if r.get("diff_type")}

    def close(self) -> None:
        close_driver()
