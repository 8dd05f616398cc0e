"""Query-data orchestration.

Parses dashboard queries, builds one multi-search batch, executes it and
maps every outcome (frames or error) back onto the RefIDs of the request.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import httpx

import config
import index_metadata
import metrics
import quickwit_connector
from frames import QueryResult
from models import ConfiguredFields, QueryValidationError, parse_queries
from query_builder import build_search_requests, int_setting
from quickwit_connector import QuickwitQueryError
from response_parser import parse_response

log = logging.getLogger(__name__)


@dataclass
class DatasourceInfo:
    """Resolved per-datasource settings."""

    url: str
    index: str
    configured_fields: ConfiguredFields = field(default_factory=ConfiguredFields)
    max_concurrent_shard_requests: int = quickwit_connector.DEFAULT_MAX_CONCURRENT_SHARD_REQUESTS
    geohash_precision: int = config.GEOHASH_DEFAULT_PRECISION
    timestamp_discovered: bool = False


def load_datasource_info() -> DatasourceInfo:
    """Build the datasource settings from the environment configuration."""
    return DatasourceInfo(
        url=config.QUICKWIT_URL,
        index=config.QW_INDEX,
        configured_fields=ConfiguredFields(
            time_field=config.QW_TIME_FIELD,
            time_output_format=config.QW_TIME_OUTPUT_FORMAT,
            log_message_field=config.QW_LOG_MESSAGE_FIELD,
            log_level_field=config.QW_LOG_LEVEL_FIELD,
        ),
        max_concurrent_shard_requests=int_setting(
            config.MAX_CONCURRENT_SHARD_REQUESTS,
            quickwit_connector.DEFAULT_MAX_CONCURRENT_SHARD_REQUESTS,
        ),
        geohash_precision=config.GEOHASH_DEFAULT_PRECISION,
    )


def ensure_timestamp_fields(info: DatasourceInfo, client: httpx.Client | None = None) -> None:
    """Fill the time field and its format from index metadata, once per datasource.

    Explicitly configured values win over discovered ones.
    """
    fields = info.configured_fields
    if fields.time_field or info.timestamp_discovered:
        return
    discovered = index_metadata.get_timestamp_field_infos(info.index, base_url=info.url, client=client)
    info.configured_fields = fields.model_copy(update={
        "time_field": discovered.timestamp_field,
        "time_output_format": fields.time_output_format or discovered.timestamp_output_format,
    })
    info.timestamp_discovered = True


def query_data(
    data_queries: list[dict],
    time_from_ms: int,
    time_to_ms: int,
    info: DatasourceInfo,
    client: httpx.Client | None = None,
) -> dict[str, QueryResult]:
    """Run dashboard queries through Quickwit; one result per RefID.

    Only an empty query list raises; every other failure becomes an error
    result on the RefIDs it affects.
    """
    if not data_queries:
        raise ValueError("query contains no queries")

    ref_ids = [str(q.get("refId", "")) for q in data_queries]
    try:
        queries = parse_queries(data_queries, time_from_ms, time_to_ms)
    except ValueError as e:
        log.warning("Rejected %d queries: %s", len(ref_ids), e)
        return _error_results(ref_ids, str(e), 400, "validation")

    try:
        ensure_timestamp_fields(info, client=client)
    except index_metadata.MetadataError as e:
        return _error_results(ref_ids, str(e), e.status, "metadata")
    except httpx.HTTPError as e:
        log.error("Timestamp discovery failed for %s: %s", info.index, e)
        return _error_results(ref_ids, f"timestamp discovery failed: {e}", 502, "upstream")

    try:
        requests = build_search_requests(
            queries,
            info.configured_fields.time_field,
            info.index,
            geohash_precision=info.geohash_precision,
        )
    except QueryValidationError as e:
        log.warning("Invalid query in batch: %s", e)
        return _error_results(ref_ids, str(e), 400, "validation")

    try:
        responses = quickwit_connector.execute_multisearch(requests, info, client=client)
    except QuickwitQueryError as e:
        return _error_results(ref_ids, str(e), e.status, "upstream")
    except httpx.HTTPError as e:
        log.error("Multisearch transport failure: %s", e)
        return _error_results(ref_ids, f"error while querying quickwit: {e}", 502, "upstream")

    results = parse_response(responses, queries, info.configured_fields)
    failed = [ref_id for ref_id, result in results.items() if result.error is not None]
    if failed:
        log.warning("Queries %s returned errors", ", ".join(failed))
        metrics.record_query_error("response", len(failed))
    return results


def _error_results(ref_ids: list[str], message: str, status: int, kind: str) -> dict[str, QueryResult]:
    metrics.record_query_error(kind, len(ref_ids))
    return {ref_id: QueryResult(error=message, status=status) for ref_id in ref_ids}


def describe(info: DatasourceInfo) -> dict:
    """Effective settings, as exposed by the config endpoint."""
    return {
        "quickwit_url": info.url,
        "index": info.index,
        "time_field": info.configured_fields.time_field,
        "time_output_format": info.configured_fields.time_output_format,
        "log_message_field": info.configured_fields.log_message_field,
        "log_level_field": info.configured_fields.log_level_field,
        "max_concurrent_shard_requests": info.max_concurrent_shard_requests,
        "geohash_precision": info.geohash_precision,
    }
