"""
HTTP surface for keybinding queries and index sync.
"""

import re
from typing import List, Optional

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from .schemas import (
    QueryRequest,
    QueryResponse,
    IndexUpdateRequest,
    IndexUpdateResponse,
    HashRebuildResponse,
    IndexStatsResponse,
    HealthResponse,
    MetricsResponse,
)
from ..core import config
from ..core.db import health_check as db_health_check
from ..core.errors import ConsistencyError, DependencyError, InputError, KeybindRagError
from ..core.fingerprints import SQLiteFingerprintTable
from ..core.metrics import MetricsCollector
from ..core.models import KeybindingRecord
from ..pipeline import Pipeline, build_pipeline
from ..util.logging import logger

# Error codes returned in JSON error bodies
ERR_INVALID_REQUEST = 4000
ERR_INVALID_PARAMS = 4002
ERR_QUERY_TOO_LONG = 4003
ERR_INTERNAL = 5000
ERR_INDEX_UNAVAILABLE = 5001
ERR_SEARCH_FAILED = 5003
ERR_VECTORIZATION_FAILED = 5004
ERR_SYNC_FAILED = 5005

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


class APIError(Exception):
    """Error carrying a numeric code and HTTP status."""

    def __init__(self, code: int, message: str, status_code: int = 400, detail: Optional[str] = None):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.detail = detail
        super().__init__(message)


app = FastAPI(
    title="Keybinding Retrieval API",
    version=config.VERSION,
    description="Semantic keybinding search with incremental index sync",
    docs_url="/docs" if config.debug_enabled() else None,
    redoc_url="/redoc" if config.debug_enabled() else None
)

_pipeline: Optional[Pipeline] = None
metrics = MetricsCollector()


def get_pipeline() -> Pipeline:
    """Lazy initialization of the retrieval pipeline."""
    global _pipeline
    if _pipeline is None:
        _pipeline = build_pipeline()
    return _pipeline


def set_pipeline(pipeline: Optional[Pipeline]) -> None:
    """Replace the pipeline (tests, embedding in another process)."""
    global _pipeline
    _pipeline = pipeline


def sanitize_query(query: str) -> str:
    """Remove control characters and collapse whitespace."""
    cleaned = _CONTROL_CHARS.sub("", query)
    return " ".join(cleaned.split())


def _records(request: IndexUpdateRequest, max_records: int) -> List[KeybindingRecord]:
    if len(request.keybindings) > max_records:
        raise APIError(ERR_INVALID_PARAMS, f"At most {max_records} keybindings per request")
    return [item.to_record() for item in request.keybindings]


def _sync_error(exc: KeybindRagError) -> APIError:
    if isinstance(exc, ConsistencyError):
        return APIError(ERR_SYNC_FAILED, "Sync partially applied; rebuild the hash store", 500,
                        detail=f"{len(exc.committed_ids)} committed, {len(exc.pending_ids)} pending")
    if isinstance(exc, DependencyError) and exc.service == "inference":
        return APIError(ERR_VECTORIZATION_FAILED, "Vectorization failed", 503, detail=str(exc))
    if isinstance(exc, DependencyError):
        return APIError(ERR_INDEX_UNAVAILABLE, "Vector index unavailable", 503, detail=str(exc))
    return APIError(ERR_SYNC_FAILED, "Sync failed", 500, detail=str(exc))


@app.post("/query", response_model=QueryResponse)
def query_endpoint(request: QueryRequest):
    """Answer a natural-language keybinding query."""
    if len(request.query) > config.MAX_QUERY_LENGTH:
        raise APIError(ERR_QUERY_TOO_LONG, f"Query exceeds {config.MAX_QUERY_LENGTH} characters")

    limit = request.limit if request.limit is not None else config.MAX_SEARCH_RESULTS
    if limit < 1 or limit > config.MAX_QUERY_LIMIT:
        raise APIError(ERR_INVALID_PARAMS, f"limit must be between 1 and {config.MAX_QUERY_LIMIT}")

    result = get_pipeline().agent.process(sanitize_query(request.query), limit=limit)
    metrics.record_query(result.duration_ms, success=result.error is None)

    body = result.to_dict()
    if result.error is not None:
        body["error_code"] = ERR_SEARCH_FAILED
    return body


@app.post("/index/update", response_model=IndexUpdateResponse)
def index_update_endpoint(request: IndexUpdateRequest):
    """Incrementally sync the index to the given keybinding set."""
    records = _records(request, config.MAX_UPDATE_RECORDS)
    try:
        result = get_pipeline().vectorizer.incremental_update(records)
    except KeybindRagError as e:
        raise _sync_error(e)
    return result.to_dict()


@app.post("/index/sync", response_model=IndexUpdateResponse)
def index_sync_endpoint(request: IndexUpdateRequest):
    """Add-only full sync of every given keybinding."""
    records = _records(request, config.MAX_SYNC_RECORDS)
    try:
        result = get_pipeline().vectorizer.full_sync(records)
    except KeybindRagError as e:
        raise _sync_error(e)
    return result.to_dict()


@app.post("/index/rebuild-hashes", response_model=HashRebuildResponse)
def rebuild_hashes_endpoint(request: IndexUpdateRequest):
    """Rebuild the fingerprint table from a full record scan without touching the index."""
    records = _records(request, config.MAX_SYNC_RECORDS)
    return get_pipeline().vectorizer.rebuild_hash_store(records)


@app.get("/index/stats", response_model=IndexStatsResponse)
def index_stats_endpoint():
    return get_pipeline().vectorizer.get_stats()


@app.get("/health", response_model=HealthResponse)
def health_check_endpoint():
    """Check system health."""
    pipeline = get_pipeline()
    agent_health = pipeline.agent.health()

    table = pipeline.vectorizer.detector.table
    if isinstance(table, SQLiteFingerprintTable):
        fingerprint_ok = db_health_check(table.db_path)
    else:
        fingerprint_ok = True

    status = agent_health["status"]
    if not fingerprint_ok:
        status = "unhealthy"

    return HealthResponse(
        status=status,
        version=config.VERSION,
        index=agent_health["index"],
        inference=agent_health["inference"],
        fingerprint_store=fingerprint_ok,
        indexed_documents=agent_health["indexed_documents"],
        hash_store_size=len(table),
    )


@app.get("/metrics", response_model=MetricsResponse)
def metrics_endpoint():
    stats = get_pipeline().vectorizer.get_stats()
    snapshot = metrics.snapshot()
    snapshot["hash_store_size"] = stats["hash_store_size"]
    snapshot["last_sync_duration_ms"] = stats["last_sync_duration_ms"]
    return snapshot


@app.exception_handler(APIError)
async def api_error_handler(request, exc: APIError):
    logger.log_operation("api.error", "rejected" if exc.status_code < 500 else "failed",
                         {"code": exc.code, "message": exc.message})
    content = {"code": exc.code, "message": exc.message}
    if exc.detail:
        content["detail"] = exc.detail
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(InputError)
async def input_error_handler(request, exc: InputError):
    return JSONResponse(status_code=400, content={"code": ERR_INVALID_REQUEST, "message": str(exc)})


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Handle all unhandled exceptions."""
    logger.error(f"Unhandled exception: {exc}")
    content = {"code": ERR_INTERNAL, "message": "Internal server error"}
    if config.debug_enabled():
        content["detail"] = str(exc)
    return JSONResponse(status_code=500, content=content)
