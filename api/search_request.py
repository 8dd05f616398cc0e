"""Search request model — the wire shape of one `_msearch` body.

Aggregations form a tree: bucket aggregations nest their children under
`aggs`, metric and pipeline aggregations are leaves. Every node serializes
itself with `to_dict()`; nothing here knows about the dashboard query model.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any, ClassVar

from parse_time import format_rfc3339_nano

SORT_ASC = "asc"
SORT_DESC = "desc"
EPOCH_NANOS_INT = "epoch_nanos_int"


# ── Aggregation tree ──────────────────────────────────────────────────


@dataclass(kw_only=True)
class Aggregation:
    """One node of the aggregation tree, keyed by its dashboard agg id."""

    key: str
    children: list[Aggregation] = dataclasses.field(default_factory=list)

    agg_type: ClassVar[str] = ""

    def type_name(self) -> str:
        return self.agg_type

    def body(self) -> dict:
        raise NotImplementedError

    def to_dict(self) -> dict:
        result: dict[str, Any] = {self.type_name(): self.body()}
        if self.children:
            result["aggs"] = aggs_to_dict(self.children)
        return result


@dataclass(kw_only=True)
class DateHistogramAgg(Aggregation):
    agg_type: ClassVar[str] = "date_histogram"

    field: str
    fixed_interval: str
    min_doc_count: int = 0
    extended_bounds: tuple[int, int] | None = None
    offset: str | None = None
    missing: str | None = None
    time_zone: str | None = None

    def body(self) -> dict:
        body: dict[str, Any] = {
            "field": self.field,
            "fixed_interval": self.fixed_interval,
            "min_doc_count": self.min_doc_count,
        }
        if self.extended_bounds is not None:
            body["extended_bounds"] = {
                "min": self.extended_bounds[0],
                "max": self.extended_bounds[1],
            }
        if self.offset:
            body["offset"] = self.offset
        if self.missing is not None:
            body["missing"] = self.missing
        if self.time_zone:
            body["time_zone"] = self.time_zone
        return body


@dataclass(kw_only=True)
class HistogramAgg(Aggregation):
    agg_type: ClassVar[str] = "histogram"

    field: str
    interval: int
    min_doc_count: int = 0
    missing: int | None = None

    def body(self) -> dict:
        body: dict[str, Any] = {
            "field": self.field,
            "interval": self.interval,
            "min_doc_count": self.min_doc_count,
        }
        if self.missing is not None:
            body["missing"] = self.missing
        return body


@dataclass(kw_only=True)
class TermsAgg(Aggregation):
    agg_type: ClassVar[str] = "terms"

    field: str
    size: int
    shard_size: int
    order: dict[str, str] = dataclasses.field(default_factory=dict)
    min_doc_count: int | None = None
    missing: str | None = None

    def body(self) -> dict:
        # `_term` is the pre-7.0 name of `_key`
        order = {("_key" if k == "_term" else k): v for k, v in self.order.items()}
        body: dict[str, Any] = {
            "field": self.field,
            "size": self.size,
            "shard_size": self.shard_size,
            "order": order,
        }
        if self.min_doc_count is not None:
            body["min_doc_count"] = self.min_doc_count
        if self.missing is not None:
            body["missing"] = self.missing
        return body


@dataclass(kw_only=True)
class FiltersAgg(Aggregation):
    agg_type: ClassVar[str] = "filters"

    filters: dict[str, str]

    def body(self) -> dict:
        return {
            "filters": {
                label: {"query_string": {"query": query, "analyze_wildcard": True}}
                for label, query in self.filters.items()
            }
        }


@dataclass(kw_only=True)
class NestedAgg(Aggregation):
    agg_type: ClassVar[str] = "nested"

    path: str

    def body(self) -> dict:
        return {"path": self.path}


@dataclass(kw_only=True)
class GeoHashGridAgg(Aggregation):
    agg_type: ClassVar[str] = "geohash_grid"

    field: str
    precision: int

    def body(self) -> dict:
        return {"field": self.field, "precision": self.precision}


@dataclass(kw_only=True)
class MetricAggregation(Aggregation):
    metric_type: str
    field: str = ""
    settings: dict[str, Any] = dataclasses.field(default_factory=dict)

    def type_name(self) -> str:
        return self.metric_type

    def body(self) -> dict:
        body: dict[str, Any] = {}
        if self.field:
            body["field"] = self.field
        body.update(self.settings)
        return body


@dataclass(kw_only=True)
class PipelineAggregation(Aggregation):
    pipeline_type: str
    buckets_path: str | dict[str, str]
    settings: dict[str, Any] = dataclasses.field(default_factory=dict)

    def type_name(self) -> str:
        return self.pipeline_type

    def body(self) -> dict:
        body: dict[str, Any] = {"buckets_path": self.buckets_path}
        body.update(self.settings)
        return body


def aggs_to_dict(aggs: list[Aggregation]) -> dict:
    """Serialize sibling aggregations; a later sibling with the same key wins."""
    return {agg.key: agg.to_dict() for agg in aggs}


# ── Query filters ─────────────────────────────────────────────────────


def date_range_filter(time_field: str, from_ms: int, to_ms: int) -> dict:
    """Inclusive time range; Quickwit only accepts RFC3339 bounds."""
    return {
        "range": {
            time_field: {
                "gte": format_rfc3339_nano(from_ms * 1_000_000),
                "lte": format_rfc3339_nano(to_ms * 1_000_000),
            }
        }
    }


def query_string_filter(query: str, default_operator: str = "AND") -> dict:
    return {
        "query_string": {
            "query": query,
            "analyze_wildcard": True,
            "default_operator": default_operator,
        }
    }


# ── Search request ────────────────────────────────────────────────────


@dataclass
class SearchRequest:
    """One search in a multi-search batch."""

    index: list[str]
    interval_ms: int = 0
    size: int = 0
    filters: list[dict] = dataclasses.field(default_factory=list)
    sort: list[dict] = dataclasses.field(default_factory=list)
    aggs: list[Aggregation] = dataclasses.field(default_factory=list)
    search_after: list[Any] | None = None

    def add_date_range_filter(self, time_field: str, from_ms: int, to_ms: int) -> None:
        self.filters.append(date_range_filter(time_field, from_ms, to_ms))

    def add_query_string_filter(self, query: str) -> None:
        """Add a Lucene filter; blank queries match everything and are skipped."""
        if not query or not query.strip():
            return
        self.filters.append(query_string_filter(query))

    def add_sort(self, field_name: str, order: str, format: str = "") -> None:
        if order not in (SORT_ASC, SORT_DESC):
            return
        spec: dict[str, Any] = {"order": order}
        if format:
            spec["format"] = format
        self.sort.append({field_name: spec})

    def to_dict(self) -> dict:
        body: dict[str, Any] = {
            "size": self.size,
            "query": {"bool": {"filter": list(self.filters)}},
        }
        if self.sort:
            body["sort"] = list(self.sort)
        if self.aggs:
            body["aggs"] = aggs_to_dict(self.aggs)
        if self.search_after is not None:
            body["search_after"] = list(self.search_after)
        return body
