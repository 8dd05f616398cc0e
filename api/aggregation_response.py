"""Aggregation response walking.

Turns the nested bucket tree of one search response into frames: a
two-column time series per (label path, metric) when the innermost bucket
level is a date histogram, or a single table accumulated across the walk
for any other innermost bucket kind.

The walk carries its label stack and accumulators explicitly in a
`WalkState`; nothing here performs I/O.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from frames import FieldConfig, FieldType, Frame, FrameField, time_series_frame
from models import (
    BucketAgg,
    BucketAggType,
    MetricAgg,
    MetricType,
    Query,
    is_multi_bucket_path_type,
    is_pipeline_type,
)
from parse_time import ns_to_datetime
from query_builder import int_setting

METRIC_NAMES = {
    "count": "Count",
    "avg": "Average",
    "sum": "Sum",
    "max": "Max",
    "min": "Min",
    "extended_stats": "Extended Stats",
    "percentiles": "Percentiles",
    "cardinality": "Unique Count",
    "moving_avg": "Moving Average",
    "moving_fn": "Moving Function",
    "cumulative_sum": "Cumulative Sum",
    "derivative": "Derivative",
    "serial_diff": "Serial Difference",
    "bucket_script": "Bucket Script",
    "raw_document": "Raw Document",
    "raw_data": "Raw Data",
    "logs": "Logs",
    "top_metrics": "Top Metrics",
}

EXTENDED_STATS_NAMES = {
    "avg": "Avg",
    "min": "Min",
    "max": "Max",
    "sum": "Sum",
    "count": "Count",
    "std_deviation": "Std Dev",
    "std_deviation_bounds_upper": "Std Dev Upper",
    "std_deviation_bounds_lower": "Std Dev Lower",
}

FILTER_LABEL = "filter"
_ALIAS_RE = re.compile(r"{{([\s\S]+?)}}")


@dataclass
class Series:
    """One accumulated time series, named once the walk is over."""

    metric: MetricAgg
    metric_label: str
    field_label: str
    labels: dict[str, str]
    times: list[datetime] = field(default_factory=list)
    values: list[float | None] = field(default_factory=list)


@dataclass
class Table:
    columns: list[FrameField] = field(default_factory=list)

    def column(self, name: str) -> FrameField | None:
        for column in self.columns:
            if column.name == name:
                return column
        return None

    def add_value(self, name: str, value: float | None) -> None:
        column = self.column(name)
        if column is None:
            column = FrameField(name=name, type=FieldType.number)
            self.columns.append(column)
        column.values.append(value)


@dataclass
class WalkState:
    series: list[Series] = field(default_factory=list)
    table: Table | None = None


# ── Public API ────────────────────────────────────────────────────────


def process_aggregation_response(response: dict, query: Query) -> list[Frame]:
    """Frames for the `aggregations` section of one search response."""
    state = WalkState()
    aggregations = response.get("aggregations")
    if isinstance(aggregations, dict):
        process_buckets(aggregations, query, state, {}, 0)

    frames = name_series(state.series, query)
    trim = trim_edges(query)
    if trim > 0:
        frames = [_trimmed(frame, trim) for frame in frames]
    if state.table is not None:
        frames.append(Frame(fields=state.table.columns))
    return frames


def process_buckets(
    aggs: dict, query: Query, state: WalkState, labels: dict[str, str], depth: int
) -> None:
    """Recursive descent over one level of the bucket tree."""
    max_depth = len(query.bucket_aggs) - 1
    for agg_id in sorted(aggs):
        agg_def = query.find_bucket_agg(agg_id)
        agg_result = aggs[agg_id]
        if agg_def is None or not isinstance(agg_result, dict):
            continue

        if agg_def.type == BucketAggType.nested:
            process_buckets(agg_result, query, state, labels, depth + 1)
            continue

        if depth == max_depth:
            if agg_def.type == BucketAggType.date_histogram:
                state.series.extend(process_metrics(agg_result, query, labels))
            else:
                add_table_rows(agg_result, agg_def, query, labels, state)
            continue

        buckets = agg_result.get("buckets")
        if isinstance(buckets, list):
            for bucket in buckets:
                if not isinstance(bucket, dict):
                    continue
                child_labels = dict(labels)
                label = bucket_label(bucket)
                if label is not None:
                    child_labels[agg_def.field] = label
                process_buckets(bucket, query, state, child_labels, depth + 1)
        elif isinstance(buckets, dict):
            for key in sorted(buckets):
                bucket = buckets[key]
                if isinstance(bucket, dict):
                    process_buckets(bucket, query, state, {**labels, FILTER_LABEL: key}, depth + 1)


def bucket_label(bucket: dict) -> str | None:
    key_as_string = bucket.get("key_as_string")
    if isinstance(key_as_string, str):
        return key_as_string
    key = bucket.get("key")
    if isinstance(key, str):
        return key
    if isinstance(key, bool):
        return None
    if isinstance(key, int):
        return str(key)
    if isinstance(key, float):
        return str(int(key)) if key.is_integer() else str(key)
    return None


# ── Time series ───────────────────────────────────────────────────────


def process_metrics(agg_result: dict, query: Query, labels: dict[str, str]) -> list[Series]:
    """Series of every visible metric over the buckets of a date histogram."""
    buckets = [b for b in agg_result.get("buckets") or [] if isinstance(b, dict)]
    series: list[Series] = []
    for metric in query.metrics:
        if metric.hide:
            continue
        if metric.type == MetricType.count:
            s = Series(metric, "count", "", dict(labels))
            for bucket in buckets:
                _append_point(s, bucket, to_float(bucket.get("doc_count")))
            series.append(s)
        elif metric.type == MetricType.percentiles:
            series.extend(_percentile_series(metric, buckets, labels))
        elif metric.type == MetricType.top_metrics:
            series.extend(_top_metrics_series(metric, buckets, labels))
        elif metric.type == MetricType.extended_stats:
            series.extend(_extended_stats_series(metric, buckets, labels))
        else:
            field_label = metric.pipeline_agg_field if is_pipeline_type(metric.type) else metric.field
            s = Series(metric, metric.type, field_label, dict(labels))
            for bucket in buckets:
                value_obj = bucket.get(metric.id)
                if not isinstance(value_obj, dict):
                    continue
                if "normalized_value" in value_obj:
                    value = to_float(value_obj["normalized_value"])
                else:
                    value = to_float(value_obj.get("value"))
                _append_point(s, bucket, value)
            series.append(s)
    return series


def _percentile_series(metric: MetricAgg, buckets: list[dict], labels: dict[str, str]) -> list[Series]:
    if not buckets:
        return []
    first = buckets[0].get(metric.id) or {}
    percentiles = first.get("values") if isinstance(first, dict) else None
    if not isinstance(percentiles, dict):
        return []

    series = []
    for name in sorted(percentiles):
        s = Series(metric, f"p{name}", metric.field, dict(labels))
        for bucket in buckets:
            values = _path(bucket, metric.id, "values")
            value = values.get(name) if isinstance(values, dict) else None
            _append_point(s, bucket, to_float(value))
        series.append(s)
    return series


def _top_metrics_series(metric: MetricAgg, buckets: list[dict], labels: dict[str, str]) -> list[Series]:
    names = metric.settings.get("metrics")
    if not isinstance(names, list):
        return []

    series = []
    for name in names:
        s = Series(metric, MetricType.top_metrics.value, str(name), dict(labels))
        for bucket in buckets:
            _append_point(s, bucket, to_float(_top_metric_value(bucket, metric.id, name)))
        series.append(s)
    return series


def _extended_stats_series(metric: MetricAgg, buckets: list[dict], labels: dict[str, str]) -> list[Series]:
    series = []
    for stat in enabled_stats(metric):
        s = Series(metric, stat, metric.field, dict(labels))
        for bucket in buckets:
            _append_point(s, bucket, to_float(extended_stat_value(bucket, metric.id, stat)))
        series.append(s)
    return series


def _append_point(series: Series, bucket: dict, value: float | None) -> None:
    key = to_float(bucket.get("key"))
    if key is None:
        return
    series.times.append(ns_to_datetime(int(key) * 1_000_000))
    series.values.append(value)


# ── Series naming ─────────────────────────────────────────────────────


def name_series(series: list[Series], query: Query) -> list[Frame]:
    """Time-series frames with their display names resolved, in walk order."""
    metric_kinds = len({s.metric_label for s in series})
    frames = []
    owners: dict[str, str] = {}
    for s in series:
        name = series_name(s, query, metric_kinds)
        owner = owners.setdefault(name, s.metric.id)
        if owner != s.metric.id and s.metric.id:
            name = f"{name} {s.metric.id}"
        frames.append(time_series_frame(s.times, s.values, s.labels, name))
    return frames


def series_name(series: Series, query: Query, metric_kinds: int) -> str:
    metric_name = get_metric_name(series.metric_label)
    field_name = series.field_label

    if query.alias:
        return apply_alias(query.alias, series.labels, metric_name, field_name)

    metric_type = series.metric.type
    if is_pipeline_type(metric_type):
        if is_multi_bucket_path_type(metric_type):
            metric_name = describe_script(series.metric, query)
        elif field_name:
            referenced = query.find_metric(field_name)
            if referenced is not None:
                metric_name += " " + describe_metric(referenced.type, referenced.field)
            else:
                metric_name = "Unset"
    elif field_name:
        metric_name += " " + field_name

    if not series.labels:
        return metric_name

    name = " ".join(series.labels.values()).strip()
    if metric_kinds == 1:
        return name
    return f"{name} {metric_name}"


def apply_alias(alias: str, labels: dict[str, str], metric_name: str, field_name: str) -> str:
    """Fill `{{term x}}`, `{{x}}`, `{{metric}}` and `{{field}}` placeholders; leave the rest."""

    def replace(match: re.Match) -> str:
        group = match.group(1)
        if group.startswith("term ") and group[5:] in labels:
            return labels[group[5:]]
        if group in labels:
            return labels[group]
        if group == "metric":
            return metric_name
        if group == "field":
            return field_name
        return match.group(0)

    return _ALIAS_RE.sub(replace, alias)


def get_metric_name(metric: str) -> str:
    if metric in METRIC_NAMES:
        return METRIC_NAMES[metric]
    return EXTENDED_STATS_NAMES.get(metric, metric)


def describe_metric(metric_type: str, field_name: str) -> str:
    text = get_metric_name(metric_type)
    if metric_type == MetricType.count:
        return text
    return f"{text} {field_name}"


def describe_script(metric: MetricAgg, query: Query) -> str:
    """Script text with each `params.<var>` replaced by the metric it points at."""
    script = script_text(metric)
    # Longest names first so `params.var10` is not clobbered by `params.var1`
    for var in sorted(metric.pipeline_variables, key=len, reverse=True):
        referenced = query.find_metric(metric.pipeline_variables[var])
        if referenced is not None:
            script = script.replace(
                f"params.{var}", describe_metric(referenced.type, referenced.field)
            )
    return script


def script_text(metric: MetricAgg) -> str:
    script = metric.settings.get("script")
    if isinstance(script, dict):
        script = script.get("inline")
    return script if isinstance(script, str) else ""


# ── Tables ────────────────────────────────────────────────────────────


def add_table_rows(
    agg_result: dict,
    agg_def: BucketAgg,
    query: Query,
    labels: dict[str, str],
    state: WalkState,
) -> None:
    """Append one row per bucket of a non-time innermost aggregation."""
    buckets = agg_result.get("buckets")
    if not isinstance(buckets, list) or not buckets:
        return

    table = state.table
    if table is None:
        table = state.table = Table(
            columns=[FrameField(name=key, type=FieldType.string) for key in labels]
        )

    for bucket in buckets:
        if not isinstance(bucket, dict):
            continue
        for key, value in labels.items():
            column = table.column(key)
            if column is not None:
                column.values.append(value)

        key = bucket.get("key")
        key_column = table.column(agg_def.field)
        if key_column is None:
            key_column = FrameField(
                name=agg_def.field,
                type=FieldType.string if isinstance(key, str) else FieldType.number,
                config=FieldConfig(filterable=True),
            )
            table.columns.append(key_column)
        key_column.values.append(key if isinstance(key, str) else to_float(key))

        for metric in query.metrics:
            if metric.hide:
                continue
            _add_metric_columns(table, bucket, metric, query)


def _add_metric_columns(table: Table, bucket: dict, metric: MetricAgg, query: Query) -> None:
    if metric.type == MetricType.count:
        table.add_value(get_metric_name(metric.type), to_float(bucket.get("doc_count")))
    elif metric.type == MetricType.percentiles:
        values = _path(bucket, metric.id, "values")
        if isinstance(values, dict):
            for name in sorted(values):
                column = f"p{name} {metric.field}".strip()
                table.add_value(column, to_float(values[name]))
    elif metric.type == MetricType.extended_stats:
        for stat in enabled_stats(metric):
            column = f"{EXTENDED_STATS_NAMES.get(stat, stat)} {metric.field}".strip()
            table.add_value(column, to_float(extended_stat_value(bucket, metric.id, stat)))
    elif metric.type == MetricType.top_metrics:
        names = metric.settings.get("metrics")
        if not isinstance(names, list):
            return
        for name in names:
            column = get_metric_name(metric.type)
            if len(names) > 1:
                column += f" {name}"
            value = _top_metric_value(bucket, metric.id, name)
            if value is not None:
                table.add_value(column, to_float(value))
    else:
        table.add_value(_table_metric_name(metric, query), to_float(_path(bucket, metric.id, "value")))


def _table_metric_name(metric: MetricAgg, query: Query) -> str:
    name = get_metric_name(metric.type)
    same_type = [m for m in query.metrics if m.type == metric.type]
    if len(same_type) <= 1:
        return name
    if metric.type == MetricType.bucket_script:
        return script_text(metric)
    name += f" {metric.field}"
    if any(m.id != metric.id and m.field == metric.field for m in same_type):
        name += f" {metric.id}"
    return name


# ── Shared helpers ────────────────────────────────────────────────────


def enabled_stats(metric: MetricAgg) -> list[str]:
    return [stat for stat in sorted(metric.meta) if metric.meta[stat] is True]


def extended_stat_value(bucket: dict, metric_id: str, stat: str) -> Any:
    if stat == "std_deviation_bounds_upper":
        return _path(bucket, metric_id, "std_deviation_bounds", "upper")
    if stat == "std_deviation_bounds_lower":
        return _path(bucket, metric_id, "std_deviation_bounds", "lower")
    return _path(bucket, metric_id, stat)


def _top_metric_value(bucket: dict, metric_id: str, name: Any) -> Any:
    top = _path(bucket, metric_id, "top")
    if not isinstance(top, list) or not top or not isinstance(top[0], dict):
        return None
    top_metrics = top[0].get("metrics")
    return top_metrics.get(name) if isinstance(top_metrics, dict) else None


def to_float(value: Any) -> float | None:
    """Numbers and numeric strings as floats; anything else is null."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def trim_edges(query: Query) -> int:
    for agg in query.bucket_aggs:
        if agg.type == BucketAggType.date_histogram:
            return max(0, int_setting(agg.settings.get("trimEdges"), 0))
    return 0


def _trimmed(frame: Frame, trim: int) -> Frame:
    for column in frame.fields:
        column.values = column.values[trim:-trim] if len(column.values) > 2 * trim else []
    return frame


def _path(data: Any, *keys: str) -> Any:
    for key in keys:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data
