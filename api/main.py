"""Quickwit datasource API: dashboard queries, resource proxy and service metrics."""

import logging
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, Response
from httpx import HTTPStatusError
from prometheus_client import CONTENT_TYPE_LATEST
from pydantic import BaseModel, ConfigDict, Field

import datasource
import index_metadata
import metrics
import quickwit_connector
from datasource import DatasourceInfo
from index_metadata import MetadataError

log = logging.getLogger(__name__)

app = FastAPI(title="Quickwit Datasource API", version="0.1.0")

_datasource = datasource.load_datasource_info()


def get_datasource() -> DatasourceInfo:
    return _datasource


class QueryDataRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    queries: list[dict[str, Any]] | None = None
    time_from: Any = Field(default=None, alias="from")
    time_to: Any = Field(default=None, alias="to")


@app.exception_handler(HTTPStatusError)
async def httpx_error_handler(request, exc):
    url = str(exc.request.url)
    status = exc.response.status_code
    if status == 404:
        return JSONResponse(
            status_code=404,
            content={"detail": f"Upstream resource not found: {url}"},
        )
    return JSONResponse(
        status_code=502,
        content={"detail": f"Upstream error {status}: {url}"},
    )


@app.exception_handler(MetadataError)
async def metadata_error_handler(request, exc):
    return JSONResponse(status_code=exc.status, content={"detail": exc.message})


# ── Health ────────────────────────────────────────────────────────────


@app.get("/health")
def health():
    return {"status": "ok", "message": "plugin is running"}


# ── Query data ────────────────────────────────────────────────────────


@app.post("/api/ds/query")
def api_query_data(body: QueryDataRequest, info: DatasourceInfo = Depends(get_datasource)):
    """Run dashboard panel queries; results are keyed by RefID."""
    if not body.queries:
        raise HTTPException(status_code=400, detail="query contains no queries")
    time_from = _epoch_ms(body.time_from, "from")
    time_to = _epoch_ms(body.time_to, "to")

    results = datasource.query_data(body.queries, time_from, time_to, info)
    return {
        "results": {
            ref_id: result.model_dump(mode="json", by_alias=True)
            for ref_id, result in results.items()
        }
    }


def _epoch_ms(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise HTTPException(status_code=400, detail=f"invalid '{name}' time: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    raise HTTPException(status_code=400, detail=f"invalid '{name}' time: {value!r}")


# ── Resources ─────────────────────────────────────────────────────────


@app.api_route("/api/resources/{path:path}", methods=["GET", "POST"])
async def api_resources(path: str, request: Request, info: DatasourceInfo = Depends(get_datasource)):
    """Relay read-only Quickwit calls (version, index metadata, msearch)."""
    body = await request.body() if request.method == "POST" else None
    try:
        upstream = await run_in_threadpool(
            quickwit_connector.proxy_resource,
            request.method,
            path,
            body=body,
            params=dict(request.query_params),
            base_url=info.url,
        )
    except ValueError as e:
        log.warning("Rejected resource call: %s", e)
        raise HTTPException(status_code=400, detail=str(e))
    upstream.raise_for_status()
    return Response(
        content=upstream.content,
        status_code=upstream.status_code,
        media_type=upstream.headers.get("content-type", "application/json"),
    )


@app.get("/api/timestamp-infos")
def api_timestamp_infos(info: DatasourceInfo = Depends(get_datasource)):
    """Timestamp field and output format discovered from the index metadata."""
    return index_metadata.get_timestamp_field_infos(info.index, base_url=info.url)


# ── Server config and metrics ─────────────────────────────────────────


@app.get("/api/config")
def api_config(info: DatasourceInfo = Depends(get_datasource)):
    """Return the effective datasource settings so the UI can display them."""
    return datasource.describe(info)


@app.get("/metrics")
def prometheus_metrics():
    return Response(content=metrics.generate(), media_type=CONTENT_TYPE_LATEST)
