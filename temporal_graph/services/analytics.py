"""Analytics over the temporal graph.

Read-only. All heuristics are transparent and rule-based:

- Anomalies: z-score of occurrence_count against the population (mean and
  population standard deviation over every node in scope). Nodes first seen
  inside the window with a single occurrence are reported as `new_entity`;
  otherwise deviation > 2 is a `spike` (> 3 high, > 4 critical).
- Hubs: undirected degree over all edges in scope.
- Trends: occurrences per hour of lifespan for nodes seen more than once.
- Timeline: snapshots inside the window.

Public entrypoints: compute_analytics(...) (pure) and get_graph_analytics(...)
(loads from a store, then calls compute_analytics).
"""
from __future__ import annotations

import math
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from temporal_graph.services.graph import (
    DiffRecord,
    Edge,
    GraphStore,
    Node,
    Snapshot,
    get_graph_store,
    to_iso,
)

# --- Tunable thresholds ---
SPIKE_DEVIATION = 2.0
HIGH_DEVIATION = 3.0
CRITICAL_DEVIATION = 4.0
RISING_RATE = 1.0  # occurrences per hour
DECLINING_RATE = 0.1

ANOMALY_LIMIT = 50
TREND_LIMIT = 20
HUB_LIMIT = 10
DIFF_LIMIT = 50

SEVERITY_ORDER = {"critical": 0, "high": 1, "medium": 2, "low": 3}


def occurrence_stats(nodes: Sequence[Node]) -> tuple:
    """Return (mean, population stddev) of occurrence_count; (0, 0) when empty."""
    if not nodes:
        return 0.0, 0.0
    occurrences = [n.occurrence_count for n in nodes]
    mean = sum(occurrences) / len(occurrences)
    variance = sum((v - mean) ** 2 for v in occurrences) / len(occurrences)
    return mean, math.sqrt(variance)


def deviation_score(occurrence_count: int, mean: float, stddev: float) -> float:
    return (occurrence_count - mean) / stddev if stddev > 0 else 0.0


def spike_severity(deviation: float) -> Optional[str]:
    if deviation > CRITICAL_DEVIATION:
        return "critical"
    if deviation > HIGH_DEVIATION:
        return "high"
    if deviation > SPIKE_DEVIATION:
        return "medium"
    return None


def _label(node: Node) -> str:
    return node.entity_value or node.entity_key


def detect_anomalies(nodes: Sequence[Node], since: datetime) -> List[Dict[str, Any]]:
    """Return every anomaly sorted by severity (then deviation desc); callers cap the list."""
    mean, stddev = occurrence_stats(nodes)
    anomalies: List[Dict[str, Any]] = []
    for node in nodes:
        if node.first_seen_at >= since and node.occurrence_count == 1:
            anomalies.append({
                "node": node.to_dict(),
                "severity": "low",
                "type": "new_entity",
                "description": f'New entity "{_label(node)}" appeared for the first time',
                "deviation": 0.0,
            })
            continue
        deviation = deviation_score(node.occurrence_count, mean, stddev)
        severity = spike_severity(deviation)
        if severity:
            anomalies.append({
                "node": node.to_dict(),
                "severity": severity,
                "type": "spike",
                "description": f'"{_label(node)}" occurrence spiked {deviation:.1f}σ above average',
                "deviation": round(deviation, 4),
            })
    anomalies.sort(key=lambda a: (SEVERITY_ORDER[a["severity"]], -a["deviation"]))
    return anomalies


def detect_hubs(nodes: Sequence[Node], edges: Iterable[Edge], limit: int = HUB_LIMIT) -> List[Dict[str, Any]]:
    degree: Dict[str, int] = {}
    for e in edges:
        degree[e.source_node_id] = degree.get(e.source_node_id, 0) + 1
        degree[e.target_node_id] = degree.get(e.target_node_id, 0) + 1
    hubs = [{**n.to_dict(), "degree": degree.get(n.id, 0)} for n in nodes]
    hubs = [h for h in hubs if h["degree"] > 0]
    hubs.sort(key=lambda h: -h["degree"])
    return hubs[:limit]


def change_rate(node: Node) -> float:
    lifespan_hours = (node.last_seen_at - node.first_seen_at).total_seconds() / 3600.0
    return node.occurrence_count / max(lifespan_hours, 1.0)


def trend_direction(rate: float) -> str:
    if rate > RISING_RATE:
        return "rising"
    if rate < DECLINING_RATE:
        return "declining"
    return "stable"


def detect_trends(
    nodes: Sequence[Node], timeline: Sequence[Snapshot], limit: int = TREND_LIMIT
) -> List[Dict[str, Any]]:
    sparklines: Dict[str, List[int]] = {}
    for s in timeline:
        sparklines.setdefault(s.source_id, []).append(s.node_count)

    trends = []
    for n in nodes:
        if n.occurrence_count <= 1:
            continue
        rate = change_rate(n)
        trends.append({
            "node": n.to_dict(),
            "direction": trend_direction(rate),
            "changeRate": round(rate, 2),
            "sparkline": list(sparklines.get(n.source_id, [])),
        })
    trends.sort(key=lambda t: -t["changeRate"])
    return trends[:limit]


def empty_analytics(error: Optional[str] = None) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "anomalies": [],
        "trends": [],
        "hubs": [],
        "timeline": [],
        "diffs": [],
        "stats": {
            "totalNodes": 0,
            "totalEdges": 0,
            "anomalyCount": 0,
            "diffCounts": {},
            "lastUpdated": None,
        },
    }
    if error:
        out["error"] = error
    return out


def compute_analytics(
    nodes: Sequence[Node],
    edges: Sequence[Edge],
    timeline: Sequence[Snapshot],
    diffs: Sequence[DiffRecord],
    diff_counts: Dict[str, int],
    *,
    since: datetime,
) -> Dict[str, Any]:
    """Assemble the analytics payload from already-loaded graph state.

    nodes/edges: everything in scope (not windowed); timeline/diffs/diff_counts:
    already restricted to the window.
    """
    anomalies = detect_anomalies(nodes, since)
    recent_nodes = [n for n in nodes if n.last_seen_at >= since]
    recent_edges = [e for e in edges if e.last_seen_at >= since]
    last_updated = max((n.last_seen_at for n in nodes), default=None)

    return {
        "anomalies": anomalies[:ANOMALY_LIMIT],
        "trends": detect_trends(nodes, timeline),
        "hubs": detect_hubs(nodes, edges),
        "timeline": [s.to_dict() for s in timeline],
        "diffs": [d.to_dict() for d in list(diffs)[:DIFF_LIMIT]],
        "stats": {
            "totalNodes": len(recent_nodes),
            "totalEdges": len(recent_edges),
            "anomalyCount": len(anomalies),
            "diffCounts": dict(diff_counts),
            "lastUpdated": to_iso(last_updated),
        },
    }


def get_graph_analytics(
    since: datetime,
    source_id: Optional[str] = None,
    *,
    store: Optional[GraphStore] = None,
) -> Dict[str, Any]:
    """Load graph state for a source (or all sources) and compute analytics for the window."""
    store = store or get_graph_store()
    nodes = store.list_nodes(source_id=source_id)
    edges = store.list_edges(source_id=source_id)
    timeline = store.list_snapshots(source_id=source_id, since=since)
    diffs = store.list_diffs(source_id=source_id, since=since, limit=DIFF_LIMIT)
    diff_counts = store.count_diffs(source_id=source_id, since=since)
    return compute_analytics(nodes, edges, timeline, diffs, diff_counts, since=since)
