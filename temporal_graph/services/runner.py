"""Small operator CLI.

    python -m temporal_graph.services.runner ingest SOURCE_ID payload.json [--run-id RUN]
    python -m temporal_graph.services.runner ingest SOURCE_ID scrapes.jsonl
    python -m temporal_graph.services.runner query --range 7d [--source-id SOURCE_ID]
    python -m temporal_graph.services.runner init-schema

`.jsonl` files hold one payload per line and are ingested in order; any other
file is read as a single JSON document. The backend follows TG_GRAPH_BACKEND
unless --backend is given. The memory backend is per process, so its contents
are gone once a command exits.
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, Dict, Iterator, List, Optional, Tuple

from temporal_graph.errors import IngestionFailed, ValidationError
from temporal_graph.services.graph import GraphStore, BACKENDS, create_graph_store
from temporal_graph.services.ingestion import ingest_scrape
from temporal_graph.services.query_service import TIME_RANGES, get_temporal_graph

logger = logging.getLogger(__name__)


def iter_payloads(path: str) -> Iterator[Tuple[int, Any]]:
    """Yield (line_number, payload); line_number is 0 for a single JSON document."""
    with open(path, "r", encoding="utf-8") as f:
        if not path.endswith(".jsonl"):
            yield 0, json.load(f)
            return
        for lineno, line in enumerate(f, start=1):
            s = line.strip()
            if not s:
                continue
            try:
                yield lineno, json.loads(s)
            except json.JSONDecodeError as exc:
                logger.warning("Skipping malformed JSON on line %d of %s: %s", lineno, path, exc)


def ingest_file(
    source_id: str, path: str, *, store: GraphStore, scrape_run_id: Optional[str] = None
) -> Dict[str, Any]:
    """Ingest every payload of a file; returns a summary with per-payload results."""
    results: List[Dict[str, Any]] = []
    failed = 0
    for lineno, payload in iter_payloads(path):
        run_id = scrape_run_id
        if run_id and lineno:
            run_id = f"{scrape_run_id}:{lineno}"
        try:
            result = ingest_scrape(source_id, payload, scrape_run_id=run_id, store=store)
        except IngestionFailed as exc:
            failed += 1
            results.append({"line": lineno, **exc.to_dict()})
            if exc.retryable:
                # Store is down; later lines would fail the same way
                break
            continue
        results.append({"line": lineno, **result.to_dict()})
    return {"source_id": source_id, "processed": len(results), "failed": failed, "results": results}


def main(argv: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(description="Temporal entity graph operator tasks")
    parser.add_argument(
        "--backend",
        choices=sorted(BACKENDS),
        help=(
            "Graph store backend (default: TG_GRAPH_BACKEND). The memory backend lives only in this "
            "process and is discarded when the command exits, so a later query does not see an earlier ingest"
        ),
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="cmd", required=True)

    ing = sub.add_parser("ingest", help="Ingest a scraped payload (.json) or payloads (.jsonl) for a source")
    ing.add_argument("source_id", help="Source identifier (e.g., collector id)")
    ing.add_argument("path", help="JSON or JSONL file")
    ing.add_argument("--run-id", help="Scrape run id used to tag diff records")

    qry = sub.add_parser("query", help="Print graph data and analytics for a time window")
    qry.add_argument("--range", default="24h", help=f"One of: {', '.join(TIME_RANGES)}")
    qry.add_argument("--source-id", help="Restrict to one source")

    sub.add_parser("init-schema", help="Create store constraints and indexes")

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    store = create_graph_store(args.backend)
    if args.cmd == "query" and store.name == "memory":
        logger.warning("Querying the memory backend: it starts empty for every command and holds no earlier ingests")
    try:
        if args.cmd == "ingest":
            summary = ingest_file(args.source_id, args.path, store=store, scrape_run_id=args.run_id)
            print(json.dumps(summary, ensure_ascii=False, indent=2))
            return 1 if summary["failed"] else 0

        if args.cmd == "query":
            try:
                envelope = get_temporal_graph(args.range, args.source_id, store=store)
            except ValidationError as exc:
                parser.error(str(exc))
            print(json.dumps(envelope, ensure_ascii=False, indent=2))
            return 0

        if args.cmd == "init-schema":
            store.ensure_schema()
            print(f"Schema ready ({store.name})")
            return 0
    finally:
        store.close()

    parser.error("unknown command")
    return 2


if __name__ == "__main__":
    sys.exit(main())
