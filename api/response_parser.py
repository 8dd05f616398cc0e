"""Multi-search response parsing.

Maps the per-search responses of one batch back onto the queries that
produced them, yielding a `QueryResult` per RefID. Document-shaped queries
(logs, raw_data, raw_document) read the hit list; everything else goes
through the aggregation walk in `aggregation_response`.
"""

from __future__ import annotations

from typing import Any

from aggregation_response import process_aggregation_response
from frames import VIS_TYPE_LOGS, FieldConfig, FieldType, Frame, FrameField, FrameMeta, QueryResult
from lucene import parse_lucene_query
from models import ConfiguredFields, Query
from parse_time import TimeParseError, ns_to_datetime, parse_time_ns, parse_to_time_ns
from query_builder import DEFAULT_SIZE, int_setting

DEFAULT_FLATTEN_DEPTH = 10
LOG_LINE_FIELD = "line"
LOG_LEVEL_FIELD = "level"
SOURCE_FIELD = "_source"
SORT_FIELD = "sort"
UNKNOWN_ERROR_REASON = "Unknown elasticsearch error response"


# ── Public API ────────────────────────────────────────────────────────


def parse_response(
    responses: list[dict],
    queries: list[Query],
    configured_fields: ConfiguredFields,
) -> dict[str, QueryResult]:
    """One result per query RefID; an error entry only affects its own query."""
    results: dict[str, QueryResult] = {}
    for i, query in enumerate(queries):
        if i >= len(responses) or not isinstance(responses[i], dict):
            results[query.ref_id] = QueryResult(error="missing response for query", status=500)
            continue
        response = responses[i]
        if response.get("error") is not None or _is_error_status(response.get("status")):
            results[query.ref_id] = error_result(response)
            continue
        results[query.ref_id] = QueryResult(frames=parse_query_response(response, query, configured_fields))
    return results


def parse_query_response(response: dict, query: Query, configured_fields: ConfiguredFields) -> list[Frame]:
    if query.is_logs_query():
        return [process_logs_response(response, query, configured_fields)]
    if query.is_raw_data_query():
        return [process_raw_data_response(response, configured_fields)]
    if query.is_raw_document_query():
        return [process_raw_document_response(response, query.ref_id)]
    return process_aggregation_response(response, query)


def _is_error_status(status: Any) -> bool:
    return isinstance(status, int) and not isinstance(status, bool) and status >= 400


def error_result(response: dict) -> QueryResult:
    status = response.get("status")
    if not isinstance(status, int) or isinstance(status, bool):
        status = 500
    return QueryResult(error=error_reason(response.get("error")), status=status)


def error_reason(error: Any) -> str:
    """Best reason text of an error entry: root cause, then reason, then caused_by."""
    if isinstance(error, str):
        return error
    if not isinstance(error, dict):
        return UNKNOWN_ERROR_REASON

    root_cause = error.get("root_cause")
    if isinstance(root_cause, list) and root_cause and isinstance(root_cause[0], dict):
        reason = root_cause[0].get("reason")
        if isinstance(reason, str) and reason:
            return reason
    reason = error.get("reason")
    if isinstance(reason, str) and reason:
        return reason
    caused_by = error.get("caused_by")
    if isinstance(caused_by, dict):
        reason = caused_by.get("reason")
        if isinstance(reason, str) and reason:
            return reason
    return UNKNOWN_ERROR_REASON


# ── Document responses ────────────────────────────────────────────────


def flatten(target: dict, max_depth: int = DEFAULT_FLATTEN_DEPTH) -> dict[str, Any]:
    """Dot-join nested object keys; objects deeper than `max_depth` stay as values.

    Lists and empty objects are leaf values.
    """
    output: dict[str, Any] = {}

    def step(obj: dict, prefix: str, depth: int) -> None:
        for key, value in obj.items():
            new_key = f"{prefix}.{key}" if prefix else key
            if isinstance(value, dict) and value and depth < max_depth:
                step(value, new_key, depth + 1)
            else:
                output[new_key] = value

    step(target, "", 0)
    return output


def process_raw_data_response(response: dict, configured_fields: ConfiguredFields) -> Frame:
    hits = _hits(response)
    docs = [_merged_document(hit) for hit in hits]
    names = _sorted_names(docs, configured_fields.time_field)
    return Frame(fields=_document_fields(docs, hits, names, configured_fields))


def process_raw_document_response(response: dict, ref_id: str) -> Frame:
    docs = [_merged_document(hit) for hit in _hits(response)]
    return Frame(fields=[
        FrameField(
            name=ref_id,
            type=FieldType.json,
            values=docs,
            config=FieldConfig(filterable=True),
        )
    ])


def process_logs_response(response: dict, query: Query, configured_fields: ConfiguredFields) -> Frame:
    hits = _hits(response)
    docs = []
    for hit in hits:
        source = _flattened_source(hit)
        doc: dict[str, Any] = {}
        for key, value in source.items():
            if configured_fields.log_level_field and key == configured_fields.log_level_field:
                doc[LOG_LEVEL_FIELD] = value
            elif configured_fields.log_message_field and key == configured_fields.log_message_field:
                doc[LOG_LINE_FIELD] = value
            else:
                doc[key] = value
        _merge_hit_fields(doc, hit)
        doc[SOURCE_FIELD] = source
        if SORT_FIELD in hit:
            doc[SORT_FIELD] = hit[SORT_FIELD]
        docs.append(doc)

    names = _sorted_names(docs, configured_fields.time_field, LOG_LINE_FIELD)
    frame = Frame(fields=_document_fields(docs, hits, names, configured_fields))
    frame.meta = FrameMeta(
        preferred_visualisation_type=VIS_TYPE_LOGS,
        custom={
            "searchWords": parse_lucene_query(query.raw_query),
            "limit": _logs_limit(query),
            "total": _total_hits(response),
        },
    )
    return frame


def document_time(doc: dict, hit: dict, configured_fields: ConfiguredFields):
    """Decoded time of a document, falling back on the hit's first sort value."""
    value = doc.get(configured_fields.time_field)
    if value is None:
        sort = hit.get(SORT_FIELD)
        if isinstance(sort, list) and sort and isinstance(sort[0], (int, float)):
            value = sort[0]
    if value is None or isinstance(value, bool):
        return None
    try:
        if configured_fields.time_output_format:
            ns = parse_time_ns(value, configured_fields.time_output_format)
        else:
            ns = parse_to_time_ns(value)
        return ns_to_datetime(ns)
    except (TimeParseError, TypeError, ValueError, OverflowError):
        return None


# ── Internal helpers ──────────────────────────────────────────────────


def _hits(response: dict) -> list[dict]:
    hits = response.get("hits")
    inner = hits.get("hits") if isinstance(hits, dict) else None
    return [hit for hit in inner or [] if isinstance(hit, dict)]


def _total_hits(response: dict) -> int:
    hits = response.get("hits")
    total = hits.get("total") if isinstance(hits, dict) else None
    if isinstance(total, dict):
        total = total.get("value")
    return total if isinstance(total, int) and not isinstance(total, bool) else 0


def _logs_limit(query: Query) -> int:
    settings = query.metrics[0].settings if query.metrics else {}
    return int_setting(settings.get("limit"), DEFAULT_SIZE)


def _flattened_source(hit: dict) -> dict[str, Any]:
    source = hit.get(SOURCE_FIELD)
    return flatten(source) if isinstance(source, dict) else {}


def _merge_hit_fields(doc: dict, hit: dict) -> None:
    fields = hit.get("fields")
    if isinstance(fields, dict):
        doc.update(fields)


def _merged_document(hit: dict) -> dict[str, Any]:
    doc = _flattened_source(hit)
    _merge_hit_fields(doc, hit)
    return doc


def _sorted_names(docs: list[dict], time_field: str, *leading: str) -> list[str]:
    """Column names: the time field, then `leading` names, then the rest sorted.

    The time field is always present for a non-empty hit list since its
    value can come from the hit sort.
    """
    seen = {name for doc in docs for name in doc}
    names = [time_field] if time_field and docs else []
    for name in (time_field, *leading):
        if name and name in seen and name not in names:
            names.append(name)
    names.extend(sorted(seen - set(names)))
    return names


def _document_fields(
    docs: list[dict],
    hits: list[dict],
    names: list[str],
    configured_fields: ConfiguredFields,
) -> list[FrameField]:
    fields = []
    for name in names:
        if configured_fields.time_field and name == configured_fields.time_field:
            column = FrameField(
                name=name,
                type=FieldType.time,
                values=[document_time(doc, hit, configured_fields) for doc, hit in zip(docs, hits)],
            )
        else:
            column = _typed_column(name, [doc.get(name) for doc in docs])
        column.config = FieldConfig(filterable=True)
        fields.append(column)
    return fields


def _typed_column(name: str, values: list[Any]) -> FrameField:
    """Column typed by its first non-null value; mismatching values become null."""
    first = next((v for v in values if v is not None), None)
    if isinstance(first, bool):
        return FrameField(name=name, type=FieldType.boolean, values=[
            v if isinstance(v, bool) else None for v in values
        ])
    if isinstance(first, (int, float)):
        return FrameField(name=name, type=FieldType.number, values=[
            float(v) if isinstance(v, (int, float)) and not isinstance(v, bool) else None
            for v in values
        ])
    if isinstance(first, str):
        return FrameField(name=name, type=FieldType.string, values=[
            v if isinstance(v, str) else None for v in values
        ])
    return FrameField(name=name, type=FieldType.json, values=values)
