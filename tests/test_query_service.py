import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from temporal_graph.errors import ValidationError
from temporal_graph.services import query_service
from temporal_graph.services.graph import MemoryGraphStore
from temporal_graph.services.ingestion import ingest_scrape
from temporal_graph.services.query_service import (
    analytics_timeout,
    get_temporal_graph,
    get_temporal_graph_data,
    parse_time_range,
)

NOW = datetime(2024, 5, 2, 12, 0, tzinfo=timezone.utc)


def test_parse_time_range():
    assert parse_time_range("1h") == timedelta(hours=1)
    assert parse_time_range("30d") == timedelta(days=30)
    assert parse_time_range(None) == timedelta(hours=24)
    with pytest.raises(ValidationError) as info:
        parse_time_range("2w")
    assert str(info.value) == "Invalid range. Must be one of: 1h, 6h, 24h, 7d, 30d"


def test_analytics_timeout_from_env(monkeypatch):
    monkeypatch.delenv("TG_ANALYTICS_TIMEOUT", raising=False)
    assert analytics_timeout() == 10.0
    monkeypatch.setenv("TG_ANALYTICS_TIMEOUT", "2.5")
    assert analytics_timeout() == 2.5
    monkeypatch.setenv("TG_ANALYTICS_TIMEOUT", "soon")
    assert analytics_timeout() == 10.0


def test_envelope_shape_and_meta():
    store = MemoryGraphStore()
    ingest_scrape("s1", {"title": "Acme", "link": "https://acme.example"}, store=store, clock=lambda: NOW)

    out = get_temporal_graph("6h", "s1", store=store, clock=lambda: NOW)
    assert set(out) == {"graph", "analytics", "meta"}
    assert out["meta"] == {"range": "6h", "sourceId": "s1", "generatedAt": "2024-05-02T12:00:00.000000+00:00"}
    assert len(out["graph"]["nodes"]) == 4
    assert len(out["graph"]["edges"]) == 6
    assert out["analytics"]["stats"]["totalNodes"] == 4
    assert "error" not in out["analytics"]


def test_window_excludes_stale_nodes():
    store = MemoryGraphStore()
    ingest_scrape("s1", {"old": "x"}, store=store, clock=lambda: NOW - timedelta(days=2))
    ingest_scrape("s1", {"fresh": "y"}, store=store, clock=lambda: NOW)

    keys = {n["entity_key"] for n in get_temporal_graph("24h", "s1", store=store, clock=lambda: NOW)["graph"]["nodes"]}
    assert keys == {"field:fresh", "text:y"}
    keys = {n["entity_key"] for n in get_temporal_graph("7d", "s1", store=store, clock=lambda: NOW)["graph"]["nodes"]}
    assert keys == {"field:old", "text:x", "field:fresh", "text:y"}


def test_source_filter_and_all_sources():
    store = MemoryGraphStore()
    ingest_scrape("s1", {"a": "x"}, store=store, clock=lambda: NOW)
    ingest_scrape("s2", {"b": "y"}, store=store, clock=lambda: NOW)
    assert len(get_temporal_graph("1h", "s2", store=store, clock=lambda: NOW)["graph"]["nodes"]) == 2
    everything = get_temporal_graph("1h", None, store=store, clock=lambda: NOW)
    assert len(everything["graph"]["nodes"]) == 4
    assert everything["meta"]["sourceId"] is None


def test_node_and_edge_caps_with_edge_filtering(monkeypatch):
    monkeypatch.setattr(query_service, "NODE_LIMIT", 3)
    store = MemoryGraphStore()
    ingest_scrape("s1", {"a": "1x", "b": "2x", "c": "3x"}, store=store, clock=lambda: NOW)

    graph = get_temporal_graph_data(NOW - timedelta(hours=1), "s1", store=store)
    assert len(graph["nodes"]) == 3
    visible = {n["id"] for n in graph["nodes"]}
    assert graph["edges"]
    assert all(e["source_node_id"] in visible and e["target_node_id"] in visible for e in graph["edges"])


def test_invalid_range_raises_before_reading():
    class ExplodingStore(MemoryGraphStore):
        def list_nodes(self, *args, **kwargs):  # pragma: no cover - must not be reached
            raise AssertionError("store should not be read")

    with pytest.raises(ValidationError):
        get_temporal_graph("forever", store=ExplodingStore())


def test_analytics_timeout_degrades_gracefully(monkeypatch):
    release = threading.Event()

    def slow_analytics(since, source_id=None, *, store=None):
        release.wait(5)
        return {}

    monkeypatch.setattr(query_service, "get_graph_analytics", slow_analytics)
    store = MemoryGraphStore()
    ingest_scrape("s1", {"a": "x"}, store=store, clock=lambda: NOW)
    try:
        out = get_temporal_graph("24h", "s1", store=store, clock=lambda: NOW, timeout=0.05)
    finally:
        release.set()

    assert out["analytics"]["error"].startswith("Analytics timed out")
    assert out["analytics"]["anomalies"] == []
    assert len(out["graph"]["nodes"]) == 2


def test_analytics_failure_degrades_gracefully(monkeypatch):
    def broken(since, source_id=None, *, store=None):
        raise RuntimeError("snapshot read failed")

    monkeypatch.setattr(query_service, "get_graph_analytics", broken)
    out = get_temporal_graph("24h", None, store=MemoryGraphStore(), clock=lambda: NOW)
    assert "snapshot read failed" in out["analytics"]["error"]
    assert out["graph"] == {"nodes": [], "edges": []}


def test_analytics_timeout_includes_the_graph_read(monkeypatch):
    release = threading.Event()

    def blocked_analytics(since, source_id=None, *, store=None):
        release.wait(5)
        return {}

    def slow_graph(since, source_id=None, *, store=None):
        time.sleep(0.3)
        return {"nodes": [], "edges": []}

    monkeypatch.setattr(query_service, "get_graph_analytics", blocked_analytics)
    monkeypatch.setattr(query_service, "get_temporal_graph_data", slow_graph)
    started = time.monotonic()
    try:
        out = get_temporal_graph("24h", None, store=MemoryGraphStore(), clock=lambda: NOW, timeout=0.3)
    finally:
        release.set()
    elapsed = time.monotonic() - started

    assert out["analytics"]["error"].startswith("Analytics timed out")
    # the wait after the graph read only spends what is left of the budget
    assert elapsed < 0.5
