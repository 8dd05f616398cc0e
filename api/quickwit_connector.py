"""Quickwit connector.

Encodes search requests into one `_elastic/_msearch` NDJSON batch, executes
it and proxies the read-only resource calls the query editor needs
(index listing, field mappings, terms lookups).
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx

import metrics
from config import HTTP_TIMEOUT, QUICKWIT_URL
from search_request import SearchRequest

if TYPE_CHECKING:
    from datasource import DatasourceInfo

log = logging.getLogger(__name__)

MSEARCH_PATH = "_elastic/_msearch"
NDJSON_CONTENT_TYPE = "application/x-ndjson"
DEFAULT_MAX_CONCURRENT_SHARD_REQUESTS = 5

# Default client for the docker-compose Quickwit (no auth)
_default_client = httpx.Client(timeout=HTTP_TIMEOUT, follow_redirects=True)


class QuickwitQueryError(Exception):
    """A whole multi-search batch was rejected by Quickwit."""

    def __init__(
        self,
        status: int,
        message: str,
        response_body: Any = None,
        query_param: str = "",
        request_body: list[dict] | None = None,
    ):
        self.status = status
        self.message = message
        self.response_body = response_body
        self.query_param = query_param
        self.request_body = request_body or []
        super().__init__(str(self))

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "message": self.message,
            "response_body": self.response_body,
            "query_param": self.query_param,
            "request_body": self.request_body,
        }

    def __str__(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))


@dataclass
class MultiSearchEntry:
    """One header/body pair of a multi-search batch."""

    header: dict
    body: dict
    interval_ms: int = 0


# ── Batch encoding ────────────────────────────────────────────────────


def format_duration(ms: int) -> str:
    """Render a millisecond interval the way dashboard interval strings read.

    `500ms`, `15s`, `1m0s`, `1h30m0s`, `1.5s`; zero is `0s`.
    """
    if ms == 0:
        return "0s"
    sign = "-" if ms < 0 else ""
    ms = abs(ms)
    if ms < 1000:
        return f"{sign}{ms}ms"

    hours, rest = divmod(ms, 3_600_000)
    minutes, rest = divmod(rest, 60_000)
    seconds, millis = divmod(rest, 1000)
    text = str(seconds)
    if millis:
        text += "." + f"{millis:03d}".rstrip("0")
    text += "s"
    if hours:
        return f"{sign}{hours}h{minutes}m{text}"
    if minutes:
        return f"{sign}{minutes}m{text}"
    return sign + text


def create_multisearch_entries(requests: list[SearchRequest]) -> list[MultiSearchEntry]:
    return [
        MultiSearchEntry(
            header={"ignore_unavailable": True, "index": list(request.index)},
            body=request.to_dict(),
            interval_ms=request.interval_ms,
        )
        for request in requests
    ]


def encode_batch_requests(entries: list[MultiSearchEntry]) -> bytes:
    """Encode entries as NDJSON, substituting interval placeholders in each body.

    Substitution runs on the serialized text; `$__interval_ms` goes first
    since `$__interval` is its prefix.
    """
    lines = []
    for entry in entries:
        lines.append(json.dumps(entry.header, separators=(",", ":")))
        body = json.dumps(entry.body, separators=(",", ":"))
        body = body.replace("$__interval_ms", str(entry.interval_ms))
        body = body.replace("$__interval", format_duration(entry.interval_ms))
        lines.append(body)
    return "".join(line + "\n" for line in lines).encode()


def multisearch_query_params(max_concurrent_shard_requests: int) -> str:
    if max_concurrent_shard_requests <= 0:
        max_concurrent_shard_requests = DEFAULT_MAX_CONCURRENT_SHARD_REQUESTS
    return f"max_concurrent_shard_requests={max_concurrent_shard_requests}"


# ── Public API ────────────────────────────────────────────────────────


def execute_multisearch(
    requests: list[SearchRequest],
    info: DatasourceInfo,
    client: httpx.Client | None = None,
) -> list[dict]:
    """Send one multi-search batch and return the per-search responses, in order.

    Raises `QuickwitQueryError` when Quickwit rejects the whole batch and
    lets `httpx.HTTPError` through on network failures.
    """
    client = client or _default_client
    entries = create_multisearch_entries(requests)
    payload = encode_batch_requests(entries)
    query_param = multisearch_query_params(info.max_concurrent_shard_requests)
    url = f"{info.url.rstrip('/')}/{MSEARCH_PATH}?{query_param}"

    log.info("Executing multisearch: %d search requests on %s", len(requests), info.index)
    log.debug("Encoded multisearch payload: %d bytes", len(payload))

    start = time.perf_counter()
    try:
        response = client.post(url, content=payload, headers={"Content-Type": NDJSON_CONTENT_TYPE})
    except httpx.HTTPError:
        metrics.record_msearch(metrics.OUTCOME_ERROR, time.perf_counter() - start, len(requests))
        raise
    elapsed = time.perf_counter() - start
    log.debug("Multisearch returned %d in %.3fs", response.status_code, elapsed)

    if response.status_code >= 400:
        metrics.record_msearch(metrics.OUTCOME_ERROR, elapsed, len(requests))
        error = QuickwitQueryError(
            status=response.status_code,
            message="Error on multisearch",
            response_body=_decode_body(response),
            query_param=query_param,
            request_body=[entry.body for entry in entries],
        )
        log.error("%s", error)
        raise error

    metrics.record_msearch(metrics.OUTCOME_OK, elapsed, len(requests))
    return response.json().get("responses", [])


def is_allowed_resource_path(path: str) -> bool:
    """Resource calls are limited to version, index metadata and msearch."""
    return path == "" or "indexes/" in path or path == MSEARCH_PATH


def proxy_resource(
    method: str,
    path: str,
    body: bytes | None = None,
    params: dict[str, str] | None = None,
    base_url: str = QUICKWIT_URL,
    client: httpx.Client | None = None,
) -> httpx.Response:
    """Forward a resource call to Quickwit and return its raw response.

    Raises ValueError for paths outside the allowed set; non-2xx responses
    are returned as-is for the caller to relay.
    """
    if not is_allowed_resource_path(path):
        raise ValueError(f"invalid resource URL: {path}")

    client = client or _default_client
    url = base_url.rstrip("/")
    if path:
        url = f"{url}/{path.lstrip('/')}"

    log.debug("Proxying %s %s", method, url)
    return client.request(method, url, content=body or None, params=params)


# ── Internal helpers ──────────────────────────────────────────────────


def _decode_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text
