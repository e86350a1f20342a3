from contextlib import asynccontextmanager
from fastapi import FastAPI
from temporal_graph.services.graph import close_graph_store

# Routers
from temporal_graph.api.routers.temporal_graph import router as temporal_graph_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Ensure resources (like the Neo4j driver) are closed on shutdown."""
    try:
        yield
    finally:
        close_graph_store()


app = FastAPI(title="Temporal Entity Graph Engine", version="0.1", lifespan=lifespan)

app.include_router(temporal_graph_router)
