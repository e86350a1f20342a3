"""Read-side facade used by the API and the CLI.

get_temporal_graph(range, source_id) returns the envelope

    {"graph": {"nodes": [...], "edges": [...]},
     "analytics": {...},
     "meta": {"range": ..., "sourceId": ..., "generatedAt": ...}}

The graph read and the analytics computation run concurrently. Analytics are
bounded by a timeout (TG_ANALYTICS_TIMEOUT seconds, default 10) measured from
the moment both start, so a slow graph read eats into it. When they time out
or their reads fail, the envelope carries empty analytics with an `error` string
instead of failing the whole response.
"""
from __future__ import annotations

import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from temporal_graph.errors import ValidationError
from temporal_graph.services.analytics import empty_analytics, get_graph_analytics
from temporal_graph.services.graph import GraphStore, get_graph_store, to_iso, utc_now

logger = logging.getLogger(__name__)

TIME_RANGES: Dict[str, timedelta] = {
    "1h": timedelta(hours=1),
    "6h": timedelta(hours=6),
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}
DEFAULT_RANGE = "24h"

NODE_LIMIT = 150
EDGE_LIMIT = 300
DEFAULT_ANALYTICS_TIMEOUT = 10.0


def parse_time_range(token: Optional[str]) -> timedelta:
    """Map a range token onto its window length; unknown tokens raise ValidationError."""
    key = (token or DEFAULT_RANGE).strip()
    if key not in TIME_RANGES:
        raise ValidationError(f"Invalid range. Must be one of: {', '.join(TIME_RANGES)}")
    return TIME_RANGES[key]


def analytics_timeout() -> float:
    raw = os.getenv("TG_ANALYTICS_TIMEOUT")
    if not raw:
        return DEFAULT_ANALYTICS_TIMEOUT
    try:
        return max(float(raw), 0.0)
    except ValueError:
        logger.warning("Ignoring invalid TG_ANALYTICS_TIMEOUT=%r", raw)
        return DEFAULT_ANALYTICS_TIMEOUT


def get_temporal_graph_data(
    since: datetime,
    source_id: Optional[str] = None,
    *,
    store: Optional[GraphStore] = None,
) -> Dict[str, Any]:
    """Nodes and edges active in the window, capped for visualisation.

    Edges are kept only when both endpoints are among the returned nodes.
    """
    store = store or get_graph_store()
    nodes = store.list_nodes(source_id=source_id, since=since, limit=NODE_LIMIT)
    if not nodes:
        return {"nodes": [], "edges": []}
    visible = {n.id for n in nodes}
    edges = store.list_edges(source_id=source_id, since=since, limit=EDGE_LIMIT)
    edges = [e for e in edges if e.source_node_id in visible and e.target_node_id in visible]
    return {"nodes": [n.to_dict() for n in nodes], "edges": [e.to_dict() for e in edges]}


def get_temporal_graph(
    range_token: Optional[str] = DEFAULT_RANGE,
    source_id: Optional[str] = None,
    *,
    store: Optional[GraphStore] = None,
    clock: Optional[Callable[[], datetime]] = None,
    timeout: Optional[float] = None,
) -> Dict[str, Any]:
    """Graph data plus analytics for a time window and optional source filter.

    Raises ValidationError for an unknown range token. Graph read failures
    propagate; analytics failures degrade to empty analytics with an error flag.
    """
    window = parse_time_range(range_token)
    store = store or get_graph_store()
    now = (clock or utc_now)()
    since = now - window
    timeout = analytics_timeout() if timeout is None else timeout

    deadline = time.monotonic() + timeout
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="tg-analytics")
    try:
        analytics_future = executor.submit(get_graph_analytics, since, source_id, store=store)
        graph = get_temporal_graph_data(since, source_id, store=store)
        try:
            analytics = analytics_future.result(timeout=max(0.0, deadline - time.monotonic()))
        except FutureTimeout:
            logger.warning("Analytics timed out after %.1fs (source=%s, range=%s)", timeout, source_id, range_token)
            analytics = empty_analytics(error=f"Analytics timed out after {timeout:g}s")
        except Exception as exc:
            logger.exception("Analytics failed (source=%s, range=%s)", source_id, range_token)
            analytics = empty_analytics(error=f"Analytics unavailable: {exc}")
    finally:
        executor.shutdown(wait=False, cancel_futures=True)

    return {
        "graph": graph,
        "analytics": analytics,
        "meta": {
            "range": (range_token or DEFAULT_RANGE).strip(),
            "sourceId": source_id or None,
            "generatedAt": to_iso(now),
        },
    }
