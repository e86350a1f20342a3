"""Error taxonomy for the temporal graph engine.

- ValidationError: caller input rejected before reaching the engine (bad time range).
- StoreUnavailable: persistence I/O failure; the whole ingestion is aborted.
- PartialBatchFailure: a single row of a bulk write could not be applied; backends
  log and skip it.
- IngestionFailed: what callers of the ingestion pipeline see when a run fails.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class TemporalGraphError(Exception):
    """Base class for engine errors."""


class ValidationError(TemporalGraphError, ValueError):
    pass


class StoreUnavailable(TemporalGraphError):
    def __init__(self, message: str, *, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class PartialBatchFailure(TemporalGraphError):
    def __init__(self, message: str, *, row: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.row = row or {}


class IngestionFailed(TemporalGraphError):
    """Raised by the ingestion pipeline; carries the failed stage and counts so far."""

    def __init__(
        self,
        source_id: str,
        stage: str,
        result: Dict[str, Any],
        *,
        retryable: bool = False,
        message: Optional[str] = None,
    ) -> None:
        super().__init__(message or f"Ingestion for source '{source_id}' failed during {stage}")
        self.source_id = source_id
        self.stage = stage
        self.result = result
        self.retryable = retryable

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": str(self),
            "source_id": self.source_id,
            "stage": self.stage,
            "retryable": self.retryable,
            "counts": self.result,
        }
