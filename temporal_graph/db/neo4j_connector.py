import os
from contextlib import contextmanager
from typing import Optional

from neo4j import GraphDatabase
from neo4j.exceptions import (
    DriverError,
    Neo4jError,
    ServiceUnavailable,
    SessionExpired,
    TransientError,
)

from temporal_graph.errors import StoreUnavailable

_driver = None

_RETRYABLE_ERRORS = (ServiceUnavailable, SessionExpired, TransientError)


def get_driver():
    """Return the shared Neo4j driver, creating it on first use."""
    global _driver
    if _driver is None:
        uri, user, pwd = _get_neo4j_config()
        try:
            _driver = GraphDatabase.driver(uri, auth=(user, pwd))
        except Exception as exc:
            raise RuntimeError(
                f"Failed to create Neo4j driver for URI '{uri}'. Check that the database is running and the credentials are correct.\nError: {exc}"
            ) from exc
    return _driver


def close_driver():
    global _driver
    if _driver is not None:
        _driver.close()
        _driver = None


def get_database() -> Optional[str]:
    load_env_from_file()
    return os.getenv("NEO4J_DATABASE") or None


def translate_error(exc: Exception) -> StoreUnavailable:
    """Map a driver/database error onto StoreUnavailable."""
    retryable = isinstance(exc, _RETRYABLE_ERRORS)
    return StoreUnavailable(f"Neo4j error: {type(exc).__name__}: {exc}", retryable=retryable)


@contextmanager
def store_errors():
    """Re-raise Neo4j driver errors as StoreUnavailable."""
    try:
        yield
    except (Neo4jError, DriverError) as exc:
        raise translate_error(exc) from exc


def run_cypher(query: str, parameters: dict = None):
    """Run a Cypher statement in an auto-commit transaction and return records as dicts.

    Driver errors surface as StoreUnavailable.
    """
    driver = get_driver()
    with store_errors():
        with driver.session(database=get_database()) as session:
            result = session.run(query, parameters or {})
            return [record.data() for record in result]


def load_env_from_file():
    """Load environment variables from a .env file at the project root if present.

    Only sets variables that aren't already present in the process environment.
    """
    try:
        root_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
        env_path = os.path.join(root_dir, ".env")
        if not os.path.isfile(env_path):
            return
        with open(env_path, "r", encoding="utf-8") as f:
            for line in f:
                s = line.strip()
                if not s or s.startswith("#"):
                    continue
                if "=" not in s:
                    continue
                key, val = s.split("=", 1)
                key = key.strip()
                val = val.strip().strip('"').strip("'")
                if key and (key not in os.environ or not os.environ[key]):
                    os.environ[key] = val
    except OSError:
        # .env is best-effort
        pass


def _get_neo4j_config():
    """Get Neo4j URI, user, and password, loading .env if necessary and applying defaults.

    Returns (uri, user, password). Raises a helpful RuntimeError when required values are missing.
    """
    load_env_from_file()

    uri = os.getenv("NEO4J_URI") or "bolt://localhost:7687"
    user = os.getenv("NEO4J_USER") or "neo4j"
    pwd = os.getenv("NEO4J_PASSWORD")

    missing = []
    if not pwd:
        missing.append("NEO4J_PASSWORD")

    if missing:
        hint = (
            "One or more Neo4j settings are missing: " + ", ".join(missing) +
            "\nDefine them in your environment or in a .env file at the project root.\n"
            "Example:\n"
            "export NEO4J_URI=bolt://localhost:7687 NEO4J_USER=neo4j NEO4J_PASSWORD=your_password\n"
            "Or run with TG_GRAPH_BACKEND=memory for an in-process store."
        )
        raise RuntimeError(hint)

    return uri, user, pwd
