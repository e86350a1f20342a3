from datetime import datetime, timedelta, timezone

from temporal_graph.services.analytics import (
    compute_analytics,
    deviation_score,
    detect_anomalies,
    detect_hubs,
    detect_trends,
    empty_analytics,
    get_graph_analytics,
    occurrence_stats,
    spike_severity,
    trend_direction,
)
from temporal_graph.services.graph import Edge, MemoryGraphStore, Node, Snapshot
from temporal_graph.services.ingestion import ingest_scrape

NOW = datetime(2024, 5, 2, 12, 0, tzinfo=timezone.utc)
SINCE = NOW - timedelta(hours=24)
LONG_AGO = NOW - timedelta(days=10)


def make_node(i, occ, first=LONG_AGO, last=NOW, source_id="s1"):
    return Node(
        id=f"n{i}",
        source_id=source_id,
        entity_key=f"text:{i}",
        entity_type="text",
        entity_value=f"value {i}",
        occurrence_count=occ,
        first_seen_at=first,
        last_seen_at=last,
    )


def make_edge(i, a, b, weight=1, last=NOW):
    return Edge(id=f"e{i}", source_id="s1", source_node_id=a, target_node_id=b, weight=weight,
                first_seen_at=LONG_AGO, last_seen_at=last)


def make_snapshot(i, node_count, source_id="s1"):
    return Snapshot(id=f"snap{i}", source_id=source_id, node_count=node_count, edge_count=0, anomaly_count=0,
                    avg_occurrence=1.0, created_at=SINCE + timedelta(hours=i))


def test_occurrence_stats_population_stddev():
    mean, stddev = occurrence_stats([make_node(1, 2), make_node(2, 4)])
    assert mean == 3.0
    assert stddev == 1.0
    assert occurrence_stats([]) == (0.0, 0.0)


def test_deviation_is_zero_without_spread():
    assert deviation_score(5, 5.0, 0.0) == 0.0


def test_severity_thresholds_are_exclusive():
    assert spike_severity(2.0) is None
    assert spike_severity(2.01) == "medium"
    assert spike_severity(3.0) == "medium"
    assert spike_severity(3.5) == "high"
    assert spike_severity(4.0) == "high"
    assert spike_severity(4.01) == "critical"


def test_severity_is_monotonic_in_deviation():
    rank = {None: 0, "medium": 1, "high": 2, "critical": 3}
    steps = [x / 10 for x in range(0, 60)]
    ranks = [rank[spike_severity(d)] for d in steps]
    assert ranks == sorted(ranks)


def test_spike_detected_among_steady_nodes():
    nodes = [make_node(i, 2) for i in range(30)] + [make_node(99, 50)]
    anomalies = detect_anomalies(nodes, SINCE)
    assert len(anomalies) == 1
    a = anomalies[0]
    assert a["type"] == "spike"
    assert a["severity"] == "critical"
    assert a["node"]["id"] == "n99"
    assert a["deviation"] > 4
    assert "σ above average" in a["description"]
    assert '"value 99"' in a["description"]


def test_new_entities_are_low_severity_and_sorted_last():
    nodes = [make_node(i, 2) for i in range(30)]
    nodes.append(make_node(50, 60))
    nodes.append(make_node(51, 1, first=NOW - timedelta(hours=1)))
    anomalies = detect_anomalies(nodes, SINCE)
    assert [a["type"] for a in anomalies] == ["spike", "new_entity"]
    assert anomalies[-1]["severity"] == "low"
    assert anomalies[-1]["deviation"] == 0.0
    assert anomalies[-1]["description"] == 'New entity "value 51" appeared for the first time'


def test_single_occurrence_from_before_the_window_is_not_new():
    anomalies = detect_anomalies([make_node(1, 1), make_node(2, 1)], SINCE)
    assert anomalies == []


def test_hubs_ranked_by_degree():
    nodes = [make_node(i, 1) for i in range(4)]
    edges = [make_edge(1, "n0", "n1"), make_edge(2, "n0", "n2"), make_edge(3, "n0", "n3"), make_edge(4, "n1", "n2")]
    hubs = detect_hubs(nodes, edges)
    assert hubs[0]["id"] == "n0"
    assert hubs[0]["degree"] == 3
    assert {h["id"] for h in hubs} == {"n0", "n1", "n2", "n3"}
    assert len(detect_hubs(nodes, edges, limit=2)) == 2


def test_isolated_nodes_are_not_hubs():
    assert detect_hubs([make_node(1, 3)], []) == []


def test_trend_directions():
    assert trend_direction(1.5) == "rising"
    assert trend_direction(1.0) == "stable"
    assert trend_direction(0.1) == "stable"
    assert trend_direction(0.05) == "declining"


def test_trends_use_lifespan_rate_and_source_sparkline():
    rising = make_node(1, 10, first=NOW - timedelta(hours=2))
    # 2 occurrences over 10 days -> ~0.008/h
    declining = make_node(2, 2)
    single = make_node(3, 1)
    timeline = [make_snapshot(1, 3), make_snapshot(2, 5), make_snapshot(3, 9, source_id="s2")]

    trends = detect_trends([declining, single, rising], timeline)
    assert [t["node"]["id"] for t in trends] == ["n1", "n2"]
    assert trends[0]["direction"] == "rising"
    assert trends[0]["changeRate"] == 5.0
    assert trends[1]["direction"] == "declining"
    assert trends[0]["sparkline"] == [3, 5]


def test_lifespan_under_an_hour_counts_as_one_hour():
    node = make_node(1, 3, first=NOW - timedelta(minutes=5))
    trends = detect_trends([node], [])
    assert trends[0]["changeRate"] == 3.0


def test_compute_analytics_stats_are_windowed():
    old = make_node(1, 2, last=NOW - timedelta(days=3))
    recent = make_node(2, 2)
    edges = [make_edge(1, "n1", "n2", last=NOW - timedelta(days=3))]
    out = compute_analytics([old, recent], edges, [], [], {"new": 2}, since=SINCE)
    assert out["stats"] == {
        "totalNodes": 1,
        "totalEdges": 0,
        "anomalyCount": 0,
        "diffCounts": {"new": 2},
        "lastUpdated": "2024-05-02T12:00:00.000000+00:00",
    }
    # hubs consider every edge in scope
    assert {h["id"] for h in out["hubs"]} == {"n1", "n2"}


def test_empty_analytics_shape():
    out = empty_analytics()
    assert out["anomalies"] == [] and out["stats"]["totalNodes"] == 0
    assert "error" not in out
    assert empty_analytics(error="timeout")["error"] == "timeout"


def test_get_graph_analytics_from_store():
    store = MemoryGraphStore()
    t0 = NOW - timedelta(hours=3)
    ingest_scrape("s1", {"title": "Acme"}, store=store, clock=lambda: t0)
    ingest_scrape("s1", {"title": "Acme", "extra": "x"}, store=store, clock=lambda: NOW)

    out = get_graph_analytics(SINCE, "s1", store=store)
    assert out["stats"]["totalNodes"] == 4
    assert out["stats"]["diffCounts"] == {"new": 4}
    assert len(out["timeline"]) == 2
    assert [s["node_count"] for s in out["timeline"]] == [2, 4]
    assert len(out["diffs"]) == 4
    assert get_graph_analytics(SINCE, "unknown", store=store)["stats"]["totalNodes"] == 0


def test_raising_a_count_never_lowers_its_deviation():
    others = [make_node(i, occ) for i, occ in enumerate([2, 3, 3, 5, 8, 2, 4])]
    previous = None
    for occ in range(1, 40):
        target = make_node(99, occ)
        mean, stddev = occurrence_stats(others + [target])
        deviation = deviation_score(target.occurrence_count, mean, stddev)
        if previous is not None:
            assert deviation >= previous - 1e-9
        previous = deviation
