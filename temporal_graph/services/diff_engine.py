"""Change detection between consecutive ingestions of one source.

Pure map comparison, O(|previous| + |current|):

    current only              -> new          (old_value None, delta 1)
    both, value differs       -> changed      (delta 1)
    both, value identical     -> nothing      (stable is implicit and not stored)
    previous only             -> disappeared  (new_value None, delta 0)
"""
from __future__ import annotations

from datetime import datetime
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from temporal_graph.services.extraction import Entity
from temporal_graph.services.graph.records import DiffRecord, EntityState, new_id

DIFF_TYPES = ("new", "disappeared", "changed", "stable")


def compute_diff(
    source_id: str,
    previous_state: Mapping[str, EntityState],
    current_entities: Sequence[Entity],
    *,
    now: datetime,
    scrape_run_id: Optional[str] = None,
    id_factory: Callable[[], str] = new_id,
) -> List[DiffRecord]:
    """Return diff records in computation order: current entities first, then disappeared keys."""
    diffs: List[DiffRecord] = []
    current_keys = set()

    def record(diff_type: str, key: str, type_: Optional[str], old, new, delta: int) -> None:
        diffs.append(
            DiffRecord(
                id=id_factory(),
                source_id=source_id,
                diff_type=diff_type,
                entity_key=key,
                entity_type=type_,
                old_value=old,
                new_value=new,
                occurrence_delta=delta,
                created_at=now,
                scrape_run_id=scrape_run_id,
            )
        )

    for entity in current_entities:
        current_keys.add(entity.key)
        prev = previous_state.get(entity.key)
        if prev is None:
            record("new", entity.key, entity.type, None, entity.value, 1)
        elif prev.value != entity.value:
            record("changed", entity.key, entity.type, prev.value, entity.value, 1)

    for key, prev in previous_state.items():
        if key in current_keys:
            continue
        type_ = prev.entity_type or entity_type_from_key(key)
        record("disappeared", key, type_, prev.value, None, 0)

    return diffs


_KEY_PREFIXES: Dict[str, str] = {
    "field": "field",
    "url": "url",
    "date": "date",
    "text": "text",
    "num": "number",
}


def entity_type_from_key(key: str) -> Optional[str]:
    prefix = key.split(":", 1)[0]
    return _KEY_PREFIXES.get(prefix)


def summarize_diffs(diffs: Sequence[DiffRecord]) -> Dict[str, int]:
    """Count diffs per reported type (new, disappeared, changed)."""
    counts = {"new": 0, "disappeared": 0, "changed": 0}
    for d in diffs:
        if d.diff_type in counts:
            counts[d.diff_type] += 1
    return counts
