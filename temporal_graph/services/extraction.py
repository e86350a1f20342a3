"""Schema-free entity extraction from scraped payloads.

Walks an arbitrary JSON-like value and classifies what it finds into typed
entities. Every entity carries a canonical, type-prefixed key which becomes the
node identity within a source:

    field:<name>          structural vocabulary (every dict key, at any depth)
    url:<url>             strings starting with http:// or https://
    date:<value>          strings starting with YYYY-MM-DD
    text:<lowercased>     other short strings (<= TEXT_MAX_LENGTH after trimming)
    num:<path>:<value>    numbers, identified by location plus value

The walk is pure and total: unknown value types are stringified and classified
like strings, nothing raises.
"""
from __future__ import annotations

import math
import numbers
import re
from dataclasses import dataclass, asdict
from typing import Any, Dict, Iterable, List

TEXT_MAX_LENGTH = 100

URL_PATTERN = re.compile(r"^https?://")
DATE_PATTERN = re.compile(r"^[0-9]{4}-[0-9]{2}-[0-9]{2}")

ENTITY_TYPES = ("field", "url", "date", "text", "number")


@dataclass(frozen=True)
class Entity:
    key: str
    type: str
    value: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def extract_entities(payload: Any) -> List[Entity]:
    """Return the deduplicated entities of a payload in extraction-visit order."""
    return deduplicate_entities(_walk(payload, ""))


def deduplicate_entities(entities: Iterable[Entity]) -> List[Entity]:
    """Deduplicate by key, keeping the first occurrence."""
    seen: set = set()
    out: List[Entity] = []
    for e in entities:
        if e.key in seen:
            continue
        seen.add(e.key)
        out.append(e)
    return out


def classify_string(value: str) -> List[Entity]:
    """Classify one string value. Empty and over-long plain text yield nothing."""
    trimmed = value.strip()
    if not trimmed:
        return []
    if URL_PATTERN.match(trimmed):
        return [Entity(key=f"url:{trimmed}", type="url", value=trimmed)]
    if DATE_PATTERN.match(trimmed):
        return [Entity(key=f"date:{trimmed}", type="date", value=trimmed)]
    if len(trimmed) <= TEXT_MAX_LENGTH:
        return [Entity(key=f"text:{trimmed.lower()}", type="text", value=trimmed)]
    return []


def format_number(value: Any) -> str:
    """Render a number the way it reads in JSON (integral floats lose their '.0')."""
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        if math.isinf(value):
            return "Infinity" if value > 0 else "-Infinity"
        if value.is_integer():
            return str(int(value))
        return repr(value)
    return str(value)


def _is_number(value: Any) -> bool:
    return isinstance(value, numbers.Number) and not isinstance(value, bool)


def _is_container(value: Any) -> bool:
    return isinstance(value, (dict, list, tuple, set, frozenset))


def _sequence_items(value: Any) -> List[Any]:
    if isinstance(value, (set, frozenset)):
        # Sets have no order of their own; sort for determinism.
        return sorted(value, key=repr)
    return list(value)


def _walk(data: Any, prefix: str) -> List[Entity]:
    """Depth-first walk with an explicit stack; nesting depth is not bounded by the interpreter."""
    entities: List[Entity] = []
    stack: List[Any] = [(data, prefix)]
    while stack:
        item = stack.pop()
        if isinstance(item, Entity):
            entities.append(item)
            continue
        value, path = item
        # Reversed so that children are visited in document order
        stack.extend(reversed(_expand(value, path)))
    return entities


def _expand(data: Any, prefix: str) -> List[Any]:
    """One level of the walk: emitted Entities and (value, path) pairs still to visit, in order."""
    out: List[Any] = []

    if data is None:
        return out

    if isinstance(data, (list, tuple, set, frozenset)):
        for index, item in enumerate(_sequence_items(data)):
            out.append((item, f"{prefix}[{index}]"))
        return out

    if isinstance(data, dict):
        for raw_key, value in data.items():
            key = str(raw_key)
            full_key = f"{prefix}.{key}" if prefix else key

            # The key itself is structural vocabulary
            out.append(Entity(key=f"field:{key}", type="field", value=key))

            if value is None or isinstance(value, bool):
                continue
            if _is_container(value):
                out.append((value, full_key))
            elif isinstance(value, str):
                out.extend(classify_string(value))
            elif _is_number(value):
                rendered = format_number(value)
                out.append(Entity(key=f"num:{full_key}:{rendered}", type="number", value=rendered))
            else:
                out.extend(classify_string(str(value)))
        return out

    # Scalars at top level or directly inside a list
    if isinstance(data, str):
        trimmed = data.strip()
        if trimmed:
            out.append(Entity(key=f"text:{trimmed.lower()}", type="text", value=trimmed))
        return out
    if isinstance(data, bool) or _is_number(data):
        return out

    text = str(data).strip()
    if text:
        out.append(Entity(key=f"text:{text.lower()}", type="text", value=text))
    return out
