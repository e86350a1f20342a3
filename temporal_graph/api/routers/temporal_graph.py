import logging
from typing import Optional

from fastapi import APIRouter, HTTPException

from temporal_graph.errors import IngestionFailed, StoreUnavailable, ValidationError
from temporal_graph.models.temporal_graph import GraphQueryResponse, IngestRequest, IngestResponse
from temporal_graph.services.graph import get_graph_store
from temporal_graph.services.ingestion import ingest_scrape
from temporal_graph.services.query_service import get_temporal_graph

logger = logging.getLogger(__name__)

router = APIRouter(tags=["temporal-graph"])


@router.get("/temporal-graph", response_model=GraphQueryResponse)
def api_get_temporal_graph(range: str = "24h", source_id: Optional[str] = None):
    """Return graph data and analytics for a time window.

    Query params:
      - range: one of 1h, 6h, 24h, 7d, 30d (default 24h)
      - source_id: optional source filter
    """
    try:
        return get_temporal_graph(range, source_id or None, store=get_graph_store())
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except StoreUnavailable as exc:
        raise HTTPException(status_code=503, detail=f"Graph store unavailable: {exc}")
    except Exception as exc:
        logger.exception("Temporal graph query failed")
        raise HTTPException(status_code=500, detail=f"Failed to fetch temporal graph data: {exc}")


@router.post("/sources/{source_id}/ingest", status_code=201, response_model=IngestResponse)
def api_ingest_scrape(source_id: str, payload: IngestRequest):
    """Fold one scrape's payload into the source's temporal graph."""
    try:
        result = ingest_scrape(
            source_id,
            payload.payload,
            scrape_run_id=payload.scrape_run_id,
            store=get_graph_store(),
        )
    except IngestionFailed as exc:
        status = 503 if exc.retryable else 500
        raise HTTPException(status_code=status, detail=exc.to_dict())
    return result.to_dict()
