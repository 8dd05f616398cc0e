"""Dashboard query domain models — Pydantic.

A `Query` is the parsed form of one panel target as sent by the dashboard
frontend: a raw Lucene filter, an ordered list of bucket aggregations (each
one nesting the next) and an ordered list of metrics.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class QueryValidationError(ValueError):
    """A query cannot be translated into a search request."""


# ── Enums ──────────────────────────────────────────────────────────────

class BucketAggType(str, Enum):
    date_histogram = "date_histogram"
    histogram = "histogram"
    terms = "terms"
    filters = "filters"
    nested = "nested"
    geohash_grid = "geohash_grid"


class MetricType(str, Enum):
    count = "count"
    avg = "avg"
    sum = "sum"
    max = "max"
    min = "min"
    extended_stats = "extended_stats"
    percentiles = "percentiles"
    cardinality = "cardinality"
    top_metrics = "top_metrics"
    moving_avg = "moving_avg"
    moving_fn = "moving_fn"
    cumulative_sum = "cumulative_sum"
    derivative = "derivative"
    serial_diff = "serial_diff"
    bucket_script = "bucket_script"
    raw_document = "raw_document"
    raw_data = "raw_data"
    logs = "logs"


PIPELINE_TYPES = {
    MetricType.moving_avg.value,
    MetricType.moving_fn.value,
    MetricType.cumulative_sum.value,
    MetricType.derivative.value,
    MetricType.serial_diff.value,
    MetricType.bucket_script.value,
}

MULTI_BUCKET_PATH_TYPES = {MetricType.bucket_script.value}

INLINE_SCRIPT_TYPES = {
    MetricType.avg.value,
    MetricType.sum.value,
    MetricType.min.value,
    MetricType.max.value,
    MetricType.cardinality.value,
    MetricType.percentiles.value,
    MetricType.extended_stats.value,
    MetricType.bucket_script.value,
    MetricType.moving_fn.value,
}


def is_pipeline_type(metric_type: str) -> bool:
    return metric_type in PIPELINE_TYPES


def is_multi_bucket_path_type(metric_type: str) -> bool:
    return metric_type in MULTI_BUCKET_PATH_TYPES


# ── Query model ───────────────────────────────────────────────────────

class BucketAgg(BaseModel):
    id: str
    type: str
    field: str = ""
    settings: dict[str, Any] = Field(default_factory=dict)


class MetricAgg(BaseModel):
    id: str = ""
    type: str
    field: str = ""
    hide: bool = False
    pipeline_agg: str = Field(
        default="",
        description="Legacy single bucket-path reference, `field` takes precedence",
    )
    pipeline_variables: dict[str, str] = Field(
        default_factory=dict,
        description="Variable name -> metric id, for multi bucket-path pipelines",
    )
    settings: dict[str, Any] = Field(default_factory=dict)
    meta: dict[str, Any] = Field(default_factory=dict)

    @property
    def pipeline_agg_field(self) -> str:
        return self.field or self.pipeline_agg


class Query(BaseModel):
    ref_id: str = ""
    raw_query: str = ""
    bucket_aggs: list[BucketAgg] = Field(default_factory=list)
    metrics: list[MetricAgg] = Field(default_factory=list)
    alias: str = ""
    interval_ms: int = 0
    max_data_points: int = 0
    range_from: int = Field(default=0, description="Epoch milliseconds")
    range_to: int = Field(default=0, description="Epoch milliseconds")

    def _first_metric_type(self) -> str | None:
        return self.metrics[0].type if self.metrics else None

    def is_logs_query(self) -> bool:
        return self._first_metric_type() == MetricType.logs

    def is_raw_data_query(self) -> bool:
        return self._first_metric_type() == MetricType.raw_data

    def is_raw_document_query(self) -> bool:
        return self._first_metric_type() == MetricType.raw_document

    def is_document_query(self) -> bool:
        return self.is_raw_data_query() or self.is_raw_document_query()

    def find_bucket_agg(self, agg_id: str) -> BucketAgg | None:
        for agg in self.bucket_aggs:
            if agg.id == agg_id:
                return agg
        return None

    def find_metric(self, metric_id: str) -> MetricAgg | None:
        for metric in self.metrics:
            if metric.id == metric_id:
                return metric
        return None


class ConfiguredFields(BaseModel):
    time_field: str = ""
    time_output_format: str = ""
    log_message_field: str = ""
    log_level_field: str = ""


# ── Parsing from dashboard JSON ──────────────────────────────────────


def parse_queries(
    data_queries: list[dict],
    time_from: int,
    time_to: int,
) -> list[Query]:
    """Parse raw panel targets into Query objects sharing one time range (ms)."""
    return [parse_query(model, time_from, time_to) for model in data_queries]


def parse_query(model: dict, time_from: int, time_to: int) -> Query:
    return Query(
        ref_id=_as_str(model.get("refId")),
        raw_query=_as_str(model.get("query")),
        bucket_aggs=_parse_bucket_aggs(model),
        metrics=_parse_metrics(model),
        alias=_as_str(model.get("alias")),
        interval_ms=_as_int(model.get("intervalMs")),
        max_data_points=_as_int(model.get("maxDataPoints")),
        range_from=time_from,
        range_to=time_to,
    )


def _parse_bucket_aggs(model: dict) -> list[BucketAgg]:
    result = []
    for raw in model.get("bucketAggs") or []:
        if not isinstance(raw, dict):
            raise QueryValidationError("invalid query, bucket aggregation must be an object")
        if raw.get("type") is None or raw.get("id") is None:
            raise QueryValidationError(
                "invalid query, bucket aggregation must have both 'type' and 'id'"
            )
        result.append(BucketAgg(
            id=_as_str(raw["id"]),
            type=_as_str(raw["type"]),
            field=_as_str(raw.get("field")),
            settings=_as_dict(raw.get("settings")),
        ))
    return result


def _parse_metrics(model: dict) -> list[MetricAgg]:
    result = []
    for raw in model.get("metrics") or []:
        if not isinstance(raw, dict):
            raise QueryValidationError("invalid query, metric must be an object")
        if raw.get("type") is None:
            raise QueryValidationError("invalid query, metric must have a 'type'")
        metric_type = _as_str(raw["type"])

        # Legacy editors stored empty settings as the string "null"
        settings = {
            k: v for k, v in _as_dict(raw.get("settings")).items() if v != "null"
        }

        pipeline_variables = {}
        if is_multi_bucket_path_type(metric_type):
            for variable in raw.get("pipelineVariables") or []:
                if not isinstance(variable, dict):
                    continue
                name = _as_str(variable.get("name"))
                if name:
                    pipeline_variables[name] = _as_str(variable.get("pipelineAgg"))

        result.append(MetricAgg(
            id=_as_str(raw.get("id")),
            type=metric_type,
            field=_as_str(raw.get("field")),
            hide=bool(raw.get("hide", False)),
            pipeline_agg=_as_str(raw.get("pipelineAgg")),
            pipeline_variables=pipeline_variables,
            settings=settings,
            meta=_as_dict(raw.get("meta")),
        ))
    return result


def _as_dict(value: Any) -> dict:
    return dict(value) if isinstance(value, dict) else {}


def _as_str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0
