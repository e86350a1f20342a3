"""Graph ingestion pipeline: one scraped payload in, one graph update out.

    extracting -> capping -> diffing -> upserting -> snapshotting -> done
                                   (any step) -> failed

The previous entity state (the nodes stamped by the source's latest committed
ingestion) is read once up front; node upserts, edge upserts,
diff inserts and the snapshot then run inside a single store transaction, so a
failed run leaves nothing behind and the same payload can simply be retried.

Clock and id generator are injectable so runs are reproducible in tests.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from temporal_graph.errors import IngestionFailed, StoreUnavailable
from temporal_graph.services.diff_engine import compute_diff, summarize_diffs
from temporal_graph.services.extraction import extract_entities
from temporal_graph.services.graph import (
    GraphStore,
    Snapshot,
    edge_row,
    get_graph_store,
    new_id,
    node_row,
    utc_now,
)

logger = logging.getLogger(__name__)

# --- Per-scrape growth bounds ---
ENTITY_CAP = 200  # nodes touched per ingestion
EDGE_PAIR_CAP = 500  # co-occurrence pairs touched per ingestion
DIFF_CAP = 500  # diff records persisted per ingestion


class IngestionState(str, Enum):
    EXTRACTING = "extracting"
    CAPPING = "capping"
    DIFFING = "diffing"
    UPSERTING = "upserting"
    SNAPSHOTTING = "snapshotting"
    DONE = "done"
    FAILED = "failed"


@dataclass
class IngestionResult:
    source_id: str
    scrape_run_id: Optional[str] = None
    state: IngestionState = IngestionState.EXTRACTING
    entities_extracted: int = 0
    nodes_processed: int = 0
    edges_processed: int = 0
    diffs: Dict[str, int] = field(default_factory=lambda: {"new": 0, "disappeared": 0, "changed": 0})
    snapshot: Optional[Snapshot] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodesProcessed": self.nodes_processed,
            "edgesProcessed": self.edges_processed,
            "diffs": dict(self.diffs),
        }


def build_edge_rows(node_ids: List[str], id_factory: Callable[[], str], cap: int = EDGE_PAIR_CAP) -> List[Dict[str, str]]:
    """Pair node ids in order (i < j) until `cap` pairs; earlier nodes get paired first."""
    rows: List[Dict[str, str]] = []
    for i in range(len(node_ids)):
        if len(rows) >= cap:
            break
        for j in range(i + 1, len(node_ids)):
            if len(rows) >= cap:
                break
            rows.append(edge_row(node_ids[i], node_ids[j], id_factory()))
    return rows


def ingest_scrape(
    source_id: str,
    payload: Any,
    *,
    scrape_run_id: Optional[str] = None,
    store: Optional[GraphStore] = None,
    clock: Optional[Callable[[], datetime]] = None,
    id_factory: Optional[Callable[[], str]] = None,
) -> IngestionResult:
    """Fold one scraped payload into the source's temporal graph.

    Returns an IngestionResult in state DONE. Raises IngestionFailed (with the
    failed stage and the counts reached so far) when any step fails; nothing is
    committed in that case.
    """
    store = store or get_graph_store()
    clock = clock or utc_now
    id_factory = id_factory or new_id
    result = IngestionResult(source_id=source_id, scrape_run_id=scrape_run_id)

    def advance(state: IngestionState) -> None:
        logger.debug("Ingestion for source %s: %s -> %s", source_id, result.state.value, state.value)
        result.state = state

    try:
        entities = extract_entities(payload)
        result.entities_extracted = len(entities)
        if not entities:
            advance(IngestionState.DONE)
            logger.info("Ingestion for source %s: payload yielded no entities", source_id)
            return result

        advance(IngestionState.CAPPING)
        capped = entities[:ENTITY_CAP]
        if len(entities) > ENTITY_CAP:
            logger.debug("Capped %d entities to %d for source %s", len(entities), ENTITY_CAP, source_id)

        advance(IngestionState.DIFFING)
        now = clock()
        previous = store.load_entity_state(source_id)
        diffs = compute_diff(
            source_id, previous, capped, now=now, scrape_run_id=scrape_run_id, id_factory=id_factory
        )
        persisted_diffs = diffs[:DIFF_CAP]

        advance(IngestionState.UPSERTING)
        ingestion_id = id_factory()
        with store.transaction(source_id) as writer:
            rows = [node_row(e.key, e.type, e.value, id_factory()) for e in capped]
            node_ids = writer.upsert_nodes(source_id, rows, now, ingestion_id)
            result.nodes_processed = len(node_ids)

            ordered_ids = [node_ids[e.key] for e in capped if e.key in node_ids]
            edge_rows = build_edge_rows(ordered_ids, id_factory)
            result.edges_processed = writer.upsert_edges(source_id, edge_rows, now)

            writer.insert_diffs(source_id, persisted_diffs)
            result.diffs = summarize_diffs(persisted_diffs)

            advance(IngestionState.SNAPSHOTTING)
            result.snapshot = writer.append_snapshot(source_id, len(persisted_diffs), now, ingestion_id)
    except Exception as exc:
        stage = result.state
        result.state = IngestionState.FAILED
        retryable = isinstance(exc, StoreUnavailable) and exc.retryable
        logger.error(
            "Ingestion for source %s failed during %s (retryable=%s): %s",
            source_id,
            stage.value,
            retryable,
            exc,
        )
        raise IngestionFailed(
            source_id,
            stage.value,
            result.to_dict(),
            retryable=retryable,
            message=f"Ingestion for source '{source_id}' failed during {stage.value}: {exc}",
        ) from exc

    advance(IngestionState.DONE)
    logger.info(
        "Ingestion for source %s done: nodes=%d edges=%d diffs=%s",
        source_id,
        result.nodes_processed,
        result.edges_processed,
        result.diffs,
    )
    return result
