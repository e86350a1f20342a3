from __future__ import annotations

import uuid
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, Dict, Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    """Fixed-width UTC ISO-8601 so that string order matches time order."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_ts(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    # neo4j.time.DateTime and friends
    if hasattr(value, "to_native"):
        return value.to_native()
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


@dataclass
class EntityState:
    value: Optional[str]
    occurrence_count: int
    entity_type: Optional[str] = None


@dataclass
class Node:
    id: str
    source_id: str
    entity_key: str
    entity_type: str
    entity_value: Optional[str]
    occurrence_count: int
    first_seen_at: datetime
    last_seen_at: datetime
    # id of the ingestion that last touched the node (its snapshot id)
    last_ingestion_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d.pop("last_ingestion_id")
        d["first_seen_at"] = to_iso(self.first_seen_at)
        d["last_seen_at"] = to_iso(self.last_seen_at)
        return d

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Node":
        return cls(
            id=row["id"],
            source_id=row["source_id"],
            entity_key=row["entity_key"],
            entity_type=row.get("entity_type") or "text",
            entity_value=row.get("entity_value"),
            occurrence_count=int(row.get("occurrence_count") or 1),
            first_seen_at=parse_ts(row.get("first_seen_at")),
            last_seen_at=parse_ts(row.get("last_seen_at")),
            last_ingestion_id=row.get("last_ingestion_id"),
        )


@dataclass
class Edge:
    id: str
    source_id: str
    source_node_id: str
    target_node_id: str
    weight: int
    first_seen_at: datetime
    last_seen_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["first_seen_at"] = to_iso(self.first_seen_at)
        d["last_seen_at"] = to_iso(self.last_seen_at)
        return d

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Edge":
        return cls(
            id=row["id"],
            source_id=row["source_id"],
            source_node_id=row["source_node_id"],
            target_node_id=row["target_node_id"],
            weight=int(row.get("weight") or 1),
            first_seen_at=parse_ts(row.get("first_seen_at")),
            last_seen_at=parse_ts(row.get("last_seen_at")),
        )


@dataclass(frozen=True)
class Snapshot:
    id: str
    source_id: str
    node_count: int
    edge_count: int
    anomaly_count: int
    avg_occurrence: float
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["created_at"] = to_iso(self.created_at)
        return d

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Snapshot":
        return cls(
            id=row["id"],
            source_id=row["source_id"],
            node_count=int(row.get("node_count") or 0),
            edge_count=int(row.get("edge_count") or 0),
            anomaly_count=int(row.get("anomaly_count") or 0),
            avg_occurrence=float(row.get("avg_occurrence") or 0.0),
            created_at=parse_ts(row.get("created_at")),
        )


@dataclass(frozen=True)
class DiffRecord:
    id: str
    source_id: str
    diff_type: str
    entity_key: str
    entity_type: Optional[str]
    old_value: Optional[str]
    new_value: Optional[str]
    occurrence_delta: int
    created_at: datetime
    scrape_run_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["created_at"] = to_iso(self.created_at)
        return d

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "DiffRecord":
        return cls(
            id=row["id"],
            source_id=row["source_id"],
            diff_type=row["diff_type"],
            entity_key=row["entity_key"],
            entity_type=row.get("entity_type"),
            old_value=row.get("old_value"),
            new_value=row.get("new_value"),
            occurrence_delta=int(row.get("occurrence_delta") or 0),
            created_at=parse_ts(row.get("created_at")),
            scrape_run_id=row.get("scrape_run_id"),
        )
