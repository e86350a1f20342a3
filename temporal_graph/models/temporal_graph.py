from pydantic import BaseModel, Field
from typing import Any, Dict, Optional


class IngestRequest(BaseModel):
    """One completed scrape for a source.

    `payload` is the extracted data as scraped: any JSON value (object, list,
    string, ...). `scrape_run_id` only tags the diff records of this run.
    """
    payload: Any = Field(None, description="Extracted scrape payload (arbitrary JSON)")
    scrape_run_id: Optional[str] = Field(None, description="Identifier of the scrape run")


class DiffCounts(BaseModel):
    new: int = 0
    disappeared: int = 0
    changed: int = 0


class IngestResponse(BaseModel):
    nodesProcessed: int
    edgesProcessed: int
    diffs: DiffCounts


class GraphQueryMeta(BaseModel):
    range: str
    sourceId: Optional[str] = None
    generatedAt: str


class GraphQueryResponse(BaseModel):
    graph: Dict[str, Any]
    analytics: Dict[str, Any]
    meta: GraphQueryMeta
