"""Tests for aggregation_response.py: time-series naming, tables and edge trimming."""

from datetime import datetime, timezone

import pytest

from frames import FieldType


def _process(make_query, aggregations, **query_overrides):
    from aggregation_response import process_aggregation_response

    return process_aggregation_response({"aggregations": aggregations}, make_query(**query_overrides))


def _names(frames):
    return [frame.fields[1].config.display_name_from_ds for frame in frames]


def _histogram(*points, metric_id=None):
    buckets = []
    for key, doc_count, *value in points:
        bucket = {"key": key, "doc_count": doc_count}
        if metric_id is not None:
            bucket[metric_id] = {"value": value[0]}
        buckets.append(bucket)
    return {"buckets": buckets}


class TestCountSeries:
    def test_single_series(self, make_query):
        frames = _process(make_query, {"2": _histogram((1000, 10), (2000, 15))})

        assert len(frames) == 1
        time_field, value_field = frames[0].fields
        assert time_field.name == "Time"
        assert time_field.type == FieldType.time
        assert time_field.values == [
            datetime(1970, 1, 1, 0, 0, 1, tzinfo=timezone.utc),
            datetime(1970, 1, 1, 0, 0, 2, tzinfo=timezone.utc),
        ]
        assert value_field.name == "Value"
        assert value_field.values == [10.0, 15.0]
        assert value_field.config.display_name_from_ds == "Count"

    def test_time_serializes_as_epoch_millis(self, make_query):
        frames = _process(make_query, {"2": _histogram((1000, 10))})
        dumped = frames[0].model_dump(mode="json", by_alias=True)
        assert dumped["fields"][0]["values"] == [1000]
        assert dumped["fields"][1]["config"]["displayNameFromDS"] == "Count"

    def test_empty_aggregations(self, make_query):
        assert _process(make_query, {}) == []


class TestSeriesNaming:
    def test_count_and_average(self, make_query):
        frames = _process(
            make_query,
            {"3": _histogram((1000, 10, 88), (2000, 15, 99), metric_id="2")},
            metrics=[{"type": "count", "id": "1"}, {"type": "avg", "field": "value", "id": "2"}],
            bucketAggs=[{"type": "date_histogram", "field": "@timestamp", "id": "3"}],
        )
        assert _names(frames) == ["Count", "Average value"]
        assert frames[1].fields[1].values == [88.0, 99.0]

    def test_terms_with_two_metrics(self, make_query):
        frames = _process(
            make_query,
            {"2": {"buckets": [
                {"key": "server1", "doc_count": 4, "3": _histogram((1000, 1, 10), (2000, 3, 12), metric_id="4")},
                {"key": "server2", "doc_count": 10, "3": _histogram((1000, 2, 20), (2000, 8, 22), metric_id="4")},
            ]}},
            metrics=[{"type": "count", "id": "1"}, {"type": "avg", "field": "@value", "id": "4"}],
            bucketAggs=[
                {"type": "terms", "field": "host", "id": "2"},
                {"type": "date_histogram", "field": "@timestamp", "id": "3"},
            ],
        )
        assert _names(frames) == [
            "server1 Count", "server1 Average @value", "server2 Count", "server2 Average @value",
        ]
        assert frames[0].fields[1].labels == {"host": "server1"}

    def test_single_metric_is_named_by_labels_only(self, make_query):
        frames = _process(
            make_query,
            {"2": {"buckets": [
                {"key": "server1", "3": _histogram((1000, 1))},
                {"key": "server2", "3": _histogram((1000, 2))},
            ]}},
            bucketAggs=[
                {"type": "terms", "field": "host", "id": "2"},
                {"type": "date_histogram", "field": "@timestamp", "id": "3"},
            ],
        )
        assert _names(frames) == ["server1", "server2"]

    def test_labels_keep_nesting_order(self, make_query):
        frames = _process(
            make_query,
            {"2": {"buckets": [
                {"key": "val3", "3": {"buckets": [{"key": "info", "4": _histogram((1000, 5))}]}},
            ]}},
            bucketAggs=[
                {"type": "terms", "field": "label", "id": "2"},
                {"type": "terms", "field": "level", "id": "3"},
                {"type": "date_histogram", "field": "@timestamp", "id": "4"},
            ],
        )
        assert _names(frames) == ["val3 info"]

    def test_alias_pattern(self, make_query):
        frames = _process(
            make_query,
            {"2": {"buckets": [
                {"key": "server1", "3": _histogram((1000, 1))},
                {"key": 0, "3": _histogram((1000, 2))},
            ]}},
            alias="{{term @host}} {{metric}} and {{not_exist}} {{@host}}",
            bucketAggs=[
                {"type": "terms", "field": "@host", "id": "2"},
                {"type": "date_histogram", "field": "@timestamp", "id": "3"},
            ],
        )
        assert _names(frames) == [
            "server1 Count and {{not_exist}} server1",
            "0 Count and {{not_exist}} 0",
        ]

    def test_filters_buckets(self, make_query):
        frames = _process(
            make_query,
            {"2": {"buckets": {
                "@metric:logins.count": {"3": _histogram((1000, 2), (2000, 8))},
                "@metric:cpu": {"3": _histogram((1000, 1), (2000, 3))},
            }}},
            bucketAggs=[
                {"type": "filters", "id": "2", "settings": {"filters": [
                    {"query": "@metric:cpu"}, {"query": "@metric:logins.count"},
                ]}},
                {"type": "date_histogram", "field": "@timestamp", "id": "3"},
            ],
        )
        assert _names(frames) == ["@metric:cpu", "@metric:logins.count"]

    def test_percentiles(self, make_query):
        frames = _process(
            make_query,
            {"3": {"buckets": [
                {"1": {"values": {"75": 3.3, "90": 5.5}}, "doc_count": 10, "key": 1000},
                {"1": {"values": {"75": 2.3, "90": 4.5}}, "doc_count": 15, "key": 2000},
            ]}},
            metrics=[{"type": "percentiles", "settings": {"percents": [75, 90]}, "id": "1"}],
            bucketAggs=[{"type": "date_histogram", "field": "@timestamp", "id": "3"}],
        )
        assert _names(frames) == ["p75", "p90"]
        assert frames[1].fields[1].values == [5.5, 4.5]

    def test_extended_stats(self, make_query):
        def stats(max_value, upper, lower):
            return {"max": max_value, "min": 1, "std_deviation_bounds": {"upper": upper, "lower": lower}}

        frames = _process(
            make_query,
            {"3": {"buckets": [
                {"key": "server1", "4": {"buckets": [{"1": stats(10.2, 3, -2), "doc_count": 10, "key": 1000}]}},
                {"key": "server2", "4": {"buckets": [{"1": stats(15.5, 4, -1), "doc_count": 10, "key": 1000}]}},
            ]}},
            metrics=[{"type": "extended_stats", "id": "1", "meta": {
                "max": True, "std_deviation_bounds_upper": True, "std_deviation_bounds_lower": True,
            }}],
            bucketAggs=[
                {"type": "terms", "field": "host", "id": "3"},
                {"type": "date_histogram", "field": "@timestamp", "id": "4"},
            ],
        )
        assert _names(frames) == [
            "server1 Max", "server1 Std Dev Lower", "server1 Std Dev Upper",
            "server2 Max", "server2 Std Dev Lower", "server2 Std Dev Upper",
        ]
        assert [f.fields[1].values[0] for f in frames[:3]] == [10.2, -2.0, 3.0]

    def test_top_metrics(self, make_query):
        def bucket(key):
            return {"key": key, "1": {"top": [{"sort": [key], "metrics": {"@value": 1, "@anotherValue": 2}}]}}

        frames = _process(
            make_query,
            {"3": {"buckets": [bucket(1609459200000), bucket(1609459210000)]}},
            metrics=[{"type": "top_metrics", "id": "1", "settings": {
                "order": "desc", "orderBy": "@timestamp", "metrics": ["@value", "@anotherValue"],
            }}],
            bucketAggs=[{"type": "date_histogram", "field": "@timestamp", "id": "3"}],
        )
        assert _names(frames) == ["Top Metrics @value", "Top Metrics @anotherValue"]
        assert frames[0].fields[1].values == [1.0, 1.0]
        assert frames[1].fields[1].values == [2.0, 2.0]

    def test_bucket_script(self, make_query):
        frames = _process(
            make_query,
            {"2": {"buckets": [
                {"1": {"value": 2}, "3": {"value": 3}, "4": {"value": 6}, "doc_count": 60, "key": 1000},
                {"1": {"value": 3}, "3": {"value": 4}, "4": {"value": 12}, "doc_count": 60, "key": 2000},
            ]}},
            metrics=[
                {"id": "1", "type": "sum", "field": "@value"},
                {"id": "3", "type": "max", "field": "@value"},
                {"id": "4", "type": "bucket_script", "settings": {"script": "params.var1 * params.var2"},
                 "pipelineVariables": [{"name": "var1", "pipelineAgg": "1"}, {"name": "var2", "pipelineAgg": "3"}]},
            ],
            bucketAggs=[{"type": "date_histogram", "field": "@timestamp", "id": "2"}],
        )
        assert _names(frames) == ["Sum @value", "Max @value", "Sum @value * Max @value"]
        assert frames[2].fields[1].values == [6.0, 12.0]

    def test_derivative_names_its_source_metric(self, make_query):
        frames = _process(
            make_query,
            {"2": {"buckets": [
                {"1": {"value": 2}, "3": {"value": 1, "normalized_value": 0.5}, "key": 1000},
            ]}},
            metrics=[
                {"id": "1", "type": "avg", "field": "@value"},
                {"id": "3", "type": "derivative", "field": "1"},
            ],
            bucketAggs=[{"type": "date_histogram", "field": "@timestamp", "id": "2"}],
        )
        assert _names(frames) == ["Average @value", "Derivative Average @value"]
        assert frames[1].fields[1].values == [0.5]

    def test_hidden_metrics_are_skipped(self, make_query):
        frames = _process(
            make_query,
            {"2": _histogram((1000, 1, 5), metric_id="3")},
            metrics=[{"id": "1", "type": "count", "hide": True}, {"id": "3", "type": "sum", "field": "x"}],
        )
        assert _names(frames) == ["Sum x"]


class TestTables:
    def test_terms_without_date_histogram(self, make_query):
        frames = _process(
            make_query,
            {"2": {"buckets": [
                {"1": {"value": 1000}, "key": "server-1", "doc_count": 369},
                {"1": {"value": 2000}, "key": "server-2", "doc_count": 200},
            ]}},
            metrics=[{"type": "avg", "id": "1"}, {"type": "count"}],
            bucketAggs=[{"type": "terms", "field": "host", "id": "2"}],
        )
        assert len(frames) == 1
        fields = frames[0].fields
        assert [f.name for f in fields] == ["host", "Average", "Count"]
        assert fields[0].values == ["server-1", "server-2"]
        assert fields[0].config.filterable is True
        assert fields[1].values == [1000.0, 2000.0]
        assert fields[1].config is None
        assert fields[2].values == [369.0, 200.0]

    def test_same_type_metrics_on_different_fields(self, make_query):
        frames = _process(
            make_query,
            {"2": {"buckets": [{"1": {"value": 1000}, "2": {"value": 3000}, "key": "server-1", "doc_count": 369}]}},
            metrics=[{"type": "avg", "field": "test", "id": "1"}, {"type": "avg", "field": "test2", "id": "2"}],
            bucketAggs=[{"type": "terms", "field": "host", "id": "2"}],
        )
        assert [f.name for f in frames[0].fields] == ["host", "Average test", "Average test2"]
        assert frames[0].fields[2].values == [3000.0]

    def test_duplicated_metric_gets_its_id(self, make_query):
        frames = _process(
            make_query,
            {"3": {"buckets": [
                {"1": {"value": 88}, "4": {"value": 88}, "doc_count": 10, "key": "val1"},
                {"1": {"value": 99}, "4": {"value": 99}, "doc_count": 15, "key": "val2"},
            ]}},
            metrics=[{"type": "avg", "field": "value", "id": "1"}, {"type": "avg", "field": "value", "id": "4"}],
            bucketAggs=[{"type": "terms", "field": "label", "id": "3"}],
        )
        assert [f.name for f in frames[0].fields] == ["label", "Average value 1", "Average value 4"]

    def test_outer_labels_become_columns(self, make_query):
        frames = _process(
            make_query,
            {"2": {"buckets": [
                {"key": "server1", "3": {"buckets": [{"key": 1, "doc_count": 3}, {"key": 2, "doc_count": 4}]}},
                {"key": "server2", "3": {"buckets": [{"key": 1, "doc_count": 5}]}},
            ]}},
            bucketAggs=[
                {"type": "terms", "field": "host", "id": "2"},
                {"type": "histogram", "field": "bytes", "id": "3"},
            ],
        )
        fields = frames[0].fields
        assert [f.name for f in fields] == ["host", "bytes", "Count"]
        assert fields[0].values == ["server1", "server1", "server2"]
        assert fields[1].type == FieldType.number
        assert fields[1].values == [1.0, 2.0, 1.0]
        assert fields[2].values == [3.0, 4.0, 5.0]

    def test_extended_stats_columns(self, make_query):
        frames = _process(
            make_query,
            {"2": {"buckets": [{"key": "a", "1": {"avg": 2, "std_deviation_bounds": {"upper": 4, "lower": 0}}}]}},
            metrics=[{"type": "extended_stats", "field": "x", "id": "1",
                      "meta": {"avg": True, "std_deviation_bounds_upper": True}}],
            bucketAggs=[{"type": "terms", "field": "host", "id": "2"}],
        )
        fields = frames[0].fields
        assert [f.name for f in fields] == ["host", "Avg x", "Std Dev Upper x"]
        assert fields[2].values == [4.0]


class TestTrimEdges:
    @pytest.mark.parametrize("trim", [1, "1"])
    def test_drops_first_and_last_points(self, trim, make_query):
        frames = _process(
            make_query,
            {"2": {"buckets": [
                {"1": {"value": 1000}, "key": 1, "doc_count": 369},
                {"1": {"value": 2000}, "key": 2, "doc_count": 200},
                {"1": {"value": 2000}, "key": 3, "doc_count": 200},
            ]}},
            metrics=[{"type": "avg", "id": "1"}, {"type": "count"}],
            bucketAggs=[{"type": "date_histogram", "field": "@timestamp", "id": "2",
                         "settings": {"trimEdges": trim}}],
        )
        assert _names(frames) == ["Average", "Count"]
        for frame in frames:
            assert frame.row_count() == 1
        assert frames[1].fields[1].values == [200.0]

    def test_larger_trim_value(self, make_query):
        frames = _process(
            make_query,
            {"2": _histogram(*[(k * 1000, k * 10) for k in range(1, 10)])},
            metrics=[{"type": "count"}],
            bucketAggs=[{"type": "date_histogram", "field": "@timestamp", "id": "2",
                         "settings": {"trimEdges": "3"}}],
        )
        assert frames[0].fields[1].values == [40.0, 50.0, 60.0]
        assert len(frames[0].fields[0].values) == 3

    def test_trim_longer_than_series_empties_it(self, make_query):
        frames = _process(
            make_query,
            {"2": _histogram((1000, 1), (2000, 2))},
            bucketAggs=[{"type": "date_histogram", "field": "@timestamp", "id": "2",
                         "settings": {"trimEdges": 1}}],
        )
        assert frames[0].row_count() == 0


class TestHelpers:
    @pytest.mark.parametrize("value,expected", [
        (3, 3.0), ("2.5", 2.5), ("n/a", None), (None, None), (True, None),
    ])
    def test_to_float(self, value, expected):
        from aggregation_response import to_float

        assert to_float(value) == expected

    @pytest.mark.parametrize("bucket,label", [
        ({"key_as_string": "2021", "key": 1}, "2021"),
        ({"key": "web"}, "web"),
        ({"key": 5}, "5"),
        ({"key": 5.0}, "5"),
        ({"key": 5.5}, "5.5"),
        ({"key": True}, None),
    ])
    def test_bucket_label(self, bucket, label):
        from aggregation_response import bucket_label

        assert bucket_label(bucket) == label
