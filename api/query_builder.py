"""Aggregation request builder — dashboard queries → Quickwit search requests.

Each `Query` becomes one `SearchRequest`. Logs and document queries fetch
hits sorted on the time field; every other query is aggregation-only: its
bucket aggregations nest one inside the next and the metrics hang off the
innermost bucket.
"""

from __future__ import annotations

import copy
import re
from typing import Any

import config
from models import (
    INLINE_SCRIPT_TYPES,
    BucketAgg,
    BucketAggType,
    MetricAgg,
    MetricType,
    Query,
    QueryValidationError,
    is_multi_bucket_path_type,
    is_pipeline_type,
)
from search_request import (
    EPOCH_NANOS_INT,
    SORT_ASC,
    SORT_DESC,
    Aggregation,
    DateHistogramAgg,
    FiltersAgg,
    GeoHashGridAgg,
    HistogramAgg,
    MetricAggregation,
    NestedAgg,
    PipelineAggregation,
    SearchRequest,
    TermsAgg,
)

DEFAULT_SIZE = 100
DEFAULT_HISTOGRAM_INTERVAL = 1000

# Substituted after serialization: `$__interval_ms` becomes the bucket width
# in milliseconds, so this renders as e.g. "500ms".
AUTO_INTERVAL = "$__interval_msms"

_METRIC_ID_RE = re.compile(r"^(\d+)")

# Bucket aggregations that may be built without a field
_FIELDLESS_BUCKET_TYPES = {
    BucketAggType.date_histogram.value,
    BucketAggType.filters.value,
}


# ── Public API ─────────────────────────────────────────────────────────


def build_search_requests(
    queries: list[Query],
    time_field: str,
    index: str,
    geohash_precision: int = config.GEOHASH_DEFAULT_PRECISION,
) -> list[SearchRequest]:
    """Translate queries into search requests, one per query, in order.

    Every query is validated before anything is built; the first invalid
    one raises `QueryValidationError`.
    """
    for query in queries:
        validate_query(query)
    return [
        build_search_request(query, time_field, index, geohash_precision)
        for query in queries
    ]


def validate_query(query: Query) -> None:
    if not query.bucket_aggs:
        if not query.metrics or not (query.is_logs_query() or query.is_document_query()):
            raise QueryValidationError("invalid query, missing metrics and aggregations")
        return

    for agg in query.bucket_aggs:
        if agg.type in _FIELDLESS_BUCKET_TYPES:
            continue
        if not agg.field:
            raise QueryValidationError(
                f"invalid query, bucket aggregation '{agg.id}' "
                f"(type: {agg.type}) is missing required field"
            )


def build_search_request(
    query: Query,
    time_field: str,
    index: str,
    geohash_precision: int = config.GEOHASH_DEFAULT_PRECISION,
) -> SearchRequest:
    request = SearchRequest(index=index.split(","), interval_ms=query.interval_ms)
    request.add_date_range_filter(time_field, query.range_from, query.range_to)
    request.add_query_string_filter(query.raw_query)

    if query.is_logs_query():
        _process_logs_query(query, request, time_field)
    elif query.is_document_query():
        _process_document_query(query, request, time_field)
    else:
        request.aggs = build_aggregations(query, time_field, geohash_precision)
    return request


def build_aggregations(
    query: Query,
    time_field: str,
    geohash_precision: int = config.GEOHASH_DEFAULT_PRECISION,
) -> list[Aggregation]:
    """Build the aggregation tree of a time-series query, outermost level first."""
    root: list[Aggregation] = []
    level = root

    for bucket in query.bucket_aggs:
        bucket = _with_coerced_min_doc_count(bucket)
        node: Aggregation | None
        if bucket.type == BucketAggType.date_histogram:
            node = date_histogram_agg(bucket, time_field, query.range_from, query.range_to)
        elif bucket.type == BucketAggType.histogram:
            node = histogram_agg(bucket)
        elif bucket.type == BucketAggType.terms:
            node = terms_agg(bucket, query.metrics)
        elif bucket.type == BucketAggType.filters:
            node = filters_agg(bucket)
        elif bucket.type == BucketAggType.geohash_grid:
            node = geohash_grid_agg(bucket, geohash_precision)
        elif bucket.type == BucketAggType.nested:
            node = NestedAgg(key=bucket.id, path=bucket.field)
        else:
            node = None

        if node is None:
            continue
        level.append(node)
        level = node.children

    for metric in query.metrics:
        node = metric_aggregation(metric, query)
        if node is not None:
            level.append(node)
    return root


# ── Setting coercions ─────────────────────────────────────────────────


def int_setting(value: Any, default: int, zero_is_default: bool = True) -> int:
    """Read an integer setting stored as a number or a numeric string.

    Anything unparseable falls back to `default`, and so does zero unless
    `zero_is_default` is false.
    """
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        parsed = value
    elif isinstance(value, float) and value.is_integer():
        parsed = int(value)
    elif isinstance(value, str):
        try:
            parsed = int(value.strip())
        except ValueError:
            return default
    else:
        return default

    if parsed == 0 and zero_is_default:
        return default
    return parsed


def _strict_int(value: Any) -> int | None:
    """Integer settings that must already be numbers in the query JSON."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def _string_setting(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _with_coerced_min_doc_count(bucket: BucketAgg) -> BucketAgg:
    # Quickwit rejects a quoted min_doc_count
    value = bucket.settings.get("min_doc_count")
    if not isinstance(value, str):
        return bucket
    try:
        count = int(value)
    except ValueError:
        return bucket
    return bucket.model_copy(update={"settings": {**bucket.settings, "min_doc_count": count}})


def _set_float(settings: dict, key: str) -> None:
    value = settings.get(key)
    if isinstance(value, str):
        number = _parse_float(value)
        if number is not None:
            settings[key] = number


def _parse_float(text: str) -> float | None:
    try:
        return float(text)
    except ValueError:
        return None


def _to_float(value: Any) -> float:
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def metric_settings(metric: MetricAgg) -> dict[str, Any]:
    """Settings of a metric as Quickwit expects them; the metric is left untouched."""
    settings = copy.deepcopy(metric.settings)

    if metric.type == MetricType.moving_avg:
        _set_float(settings, "window")
        _set_float(settings, "predict")
        model_settings = settings.get("settings")
        if isinstance(model_settings, dict):
            for key in ("alpha", "beta", "gamma", "period"):
                _set_float(model_settings, key)
    elif metric.type == MetricType.serial_diff:
        _set_float(settings, "lag")
    elif metric.type == MetricType.percentiles:
        percents = settings.get("percents")
        if isinstance(percents, list):
            settings["percents"] = [_to_float(p) for p in percents]

    if metric.type in INLINE_SCRIPT_TYPES:
        script = settings.get("script")
        # Older dashboards persisted `script: {inline: "..."}`
        if isinstance(script, dict) and isinstance(script.get("inline"), str):
            settings["script"] = script["inline"]

    return settings


# ── Bucket aggregations ───────────────────────────────────────────────


def date_histogram_agg(
    bucket: BucketAgg, time_field: str, time_from: int, time_to: int
) -> DateHistogramAgg:
    field = bucket.field or time_field
    if not field:
        raise QueryValidationError(
            f"date_histogram aggregation '{bucket.id}' has no field specified "
            "and datasource timeField is empty"
        )

    settings = bucket.settings
    interval = settings.get("interval")
    if not isinstance(interval, str):
        interval = "auto"
    if interval == "auto":
        interval = AUTO_INTERVAL

    time_zone = _string_setting(settings.get("timeZone"))
    return DateHistogramAgg(
        key=bucket.id,
        field=field,
        fixed_interval=interval,
        min_doc_count=int_setting(settings.get("min_doc_count"), 0, zero_is_default=False),
        extended_bounds=(time_from, time_to),
        offset=_string_setting(settings.get("offset")),
        missing=_string_setting(settings.get("missing")),
        time_zone=time_zone if time_zone != "utc" else None,
    )


def histogram_agg(bucket: BucketAgg) -> HistogramAgg:
    settings = bucket.settings
    return HistogramAgg(
        key=bucket.id,
        field=bucket.field,
        interval=int_setting(settings.get("interval"), DEFAULT_HISTOGRAM_INTERVAL),
        min_doc_count=int_setting(settings.get("min_doc_count"), 0, zero_is_default=False),
        missing=_strict_int(settings.get("missing")),
    )


def terms_agg(bucket: BucketAgg, metrics: list[MetricAgg]) -> TermsAgg:
    settings = bucket.settings
    agg = TermsAgg(
        key=bucket.id,
        field=bucket.field,
        size=int_setting(settings.get("size"), DEFAULT_SIZE),
        shard_size=int_setting(settings.get("shard_size"), DEFAULT_SIZE),
        min_doc_count=_strict_int(settings.get("min_doc_count")),
        missing=_string_setting(settings.get("missing")),
    )

    order_by = _string_setting(settings.get("orderBy"))
    if order_by is None:
        return agg
    order = settings.get("order")
    if not isinstance(order, str):
        order = SORT_DESC

    # Metric orderings look like `<metric id>` or `<metric id>[<path>]`
    match = _METRIC_ID_RE.match(order_by)
    if not match:
        agg.order[order_by] = order
        return agg

    for metric in metrics:
        if metric.id != match.group(1):
            continue
        if metric.type == MetricType.count:
            agg.order["_count"] = order
        else:
            agg.order[order_by] = order
            agg.children.append(
                MetricAggregation(key=metric.id, metric_type=metric.type, field=metric.field)
            )
        break
    return agg


def filters_agg(bucket: BucketAgg) -> FiltersAgg | None:
    filters: dict[str, str] = {}
    for entry in bucket.settings.get("filters") or []:
        if not isinstance(entry, dict):
            continue
        query = _string_setting(entry.get("query")) or ""
        label = _string_setting(entry.get("label")) or query
        filters[label] = query
    if not filters:
        return None
    return FiltersAgg(key=bucket.id, filters=filters)


def geohash_grid_agg(bucket: BucketAgg, default_precision: int) -> GeoHashGridAgg:
    precision = _strict_int(bucket.settings.get("precision"))
    return GeoHashGridAgg(
        key=bucket.id,
        field=bucket.field,
        precision=default_precision if precision is None else precision,
    )


# ── Metric and pipeline aggregations ──────────────────────────────────


def metric_aggregation(metric: MetricAgg, query: Query) -> Aggregation | None:
    """The aggregation computing `metric`, or None when nothing is requested."""
    if metric.type == MetricType.count:
        return None

    if not is_pipeline_type(metric.type):
        return MetricAggregation(
            key=metric.id,
            metric_type=metric.type,
            field=metric.field,
            settings=metric_settings(metric),
        )

    if is_multi_bucket_path_type(metric.type):
        buckets_path: dict[str, str] = {}
        for name, reference in metric.pipeline_variables.items():
            path = resolve_bucket_path(reference, query)
            if path is not None:
                buckets_path[name] = path
        if not buckets_path:
            return None
        return PipelineAggregation(
            key=metric.id,
            pipeline_type=metric.type,
            buckets_path=buckets_path,
            settings=metric_settings(metric),
        )

    path = resolve_bucket_path(metric.pipeline_agg_field, query)
    if path is None:
        return None
    return PipelineAggregation(
        key=metric.id,
        pipeline_type=metric.type,
        buckets_path=path,
        settings=metric_settings(metric),
    )


def resolve_bucket_path(reference: str, query: Query) -> str | None:
    """Bucket path for a pipeline reference to another metric of the query.

    References must be numeric metric ids; a reference to a count metric
    becomes the `_count` bucket statistic.
    """
    if not reference.isdigit():
        return None
    target = query.find_metric(reference)
    if target is None:
        return None
    if target.type == MetricType.count:
        return "_count"
    return reference


# ── Hit queries ───────────────────────────────────────────────────────


def _process_logs_query(query: Query, request: SearchRequest, time_field: str) -> None:
    settings = query.metrics[0].settings
    order = SORT_ASC if settings.get("sortDirection") == SORT_ASC else SORT_DESC
    request.add_sort(time_field, order, EPOCH_NANOS_INT)
    request.size = int_setting(settings.get("limit"), DEFAULT_SIZE)

    # Log context pages around a selected line
    search_after = settings.get("searchAfter")
    if isinstance(search_after, list) and search_after:
        request.search_after = list(search_after)


def _process_document_query(query: Query, request: SearchRequest, time_field: str) -> None:
    settings = query.metrics[0].settings
    request.add_sort(time_field, SORT_DESC, EPOCH_NANOS_INT)
    request.add_sort("_doc", SORT_DESC)
    request.size = int_setting(settings.get("size"), DEFAULT_SIZE)
