"""Tests for index_metadata.py: timestamp field discovery from index configs."""

import json

import pytest


def _index_config(timestamp_field="timestamp", field_mappings=None):
    if field_mappings is None:
        field_mappings = [{"name": "timestamp", "type": "datetime", "output_format": "unix_timestamp_secs"}]
    return {
        "index_config": {
            "doc_mapping": {"timestamp_field": timestamp_field, "field_mappings": field_mappings}
        }
    }


class TestFindTimestampFormat:
    def test_top_level_field(self):
        from index_metadata import FieldMappingEntry, find_timestamp_format

        mappings = [
            FieldMappingEntry(name="message", type="text"),
            FieldMappingEntry(name="timestamp", type="datetime", output_format="rfc3339"),
        ]
        assert find_timestamp_format("timestamp", mappings) == "rfc3339"

    def test_nested_object_field(self):
        from index_metadata import FieldMappingEntry, find_timestamp_format

        mappings = [
            FieldMappingEntry(name="sub", type="object", field_mappings=[
                FieldMappingEntry(name="other", type="object", field_mappings=[]),
                FieldMappingEntry(name="ts", type="datetime", output_format="unix_timestamp_millis"),
            ]),
        ]
        assert find_timestamp_format("sub.ts", mappings) == "unix_timestamp_millis"
        assert find_timestamp_format("ts", mappings) is None

    def test_non_datetime_field_does_not_match(self):
        from index_metadata import FieldMappingEntry, find_timestamp_format

        mappings = [FieldMappingEntry(name="timestamp", type="u64")]
        assert find_timestamp_format("timestamp", mappings) is None
        assert find_timestamp_format("timestamp", None) is None


class TestDecodeIndexConfigs:
    def test_single_config(self):
        from index_metadata import decode_timestamp_field_from_index_config

        info = decode_timestamp_field_from_index_config(json.dumps(_index_config()))
        assert info.timestamp_field == "timestamp"
        assert info.timestamp_output_format == "unix_timestamp_secs"

    def test_matching_configs(self):
        from index_metadata import decode_timestamp_field_from_index_configs

        body = json.dumps([_index_config(), _index_config()])
        info = decode_timestamp_field_from_index_configs(body)
        assert info.timestamp_field == "timestamp"

    def test_different_timestamp_fields(self):
        from index_metadata import MetadataError, decode_timestamp_field_from_index_configs

        other = _index_config("ts", [{"name": "ts", "type": "datetime", "output_format": "rfc3339"}])
        with pytest.raises(MetadataError) as exc:
            decode_timestamp_field_from_index_configs(json.dumps([_index_config(), other]))
        assert exc.value.status == 400
        assert exc.value.message == (
            "Index matching the pattern should have the same timestamp fields, two found: "
            "timestamp (unix_timestamp_secs) and ts (rfc3339)"
        )

    def test_undecodable_body(self):
        from index_metadata import MetadataError, decode_timestamp_field_from_index_configs

        with pytest.raises(MetadataError) as exc:
            decode_timestamp_field_from_index_configs(b"not json")
        assert exc.value.status == 500
        assert json.loads(str(exc.value))["status"] == 500

    def test_empty_listing(self):
        from index_metadata import decode_timestamp_field_from_index_configs

        info = decode_timestamp_field_from_index_configs("[]")
        assert info.timestamp_field == ""


class TestGetTimestampFieldInfos:
    def test_single_index(self, make_http_response, mock_http_client):
        from index_metadata import get_timestamp_field_infos

        mock_http_client.get.return_value = make_http_response(json=_index_config())
        info = get_timestamp_field_infos("logs", base_url="http://qw/api/v1")

        assert info.timestamp_output_format == "unix_timestamp_secs"
        mock_http_client.get.assert_called_once_with("http://qw/api/v1/indexes/logs", params=None)

    @pytest.mark.parametrize("index", ["logs-*", "logs-a,logs-b"])
    def test_pattern_lists_indexes(self, index, make_http_response, mock_http_client):
        from index_metadata import get_timestamp_field_infos

        mock_http_client.get.return_value = make_http_response(json=[_index_config()])
        info = get_timestamp_field_infos(index, base_url="http://qw/api/v1")

        assert info.timestamp_field == "timestamp"
        mock_http_client.get.assert_called_once_with(
            "http://qw/api/v1/indexes", params={"index_id_patterns": index},
        )

    def test_error_status(self, make_http_response, mock_http_client):
        from index_metadata import MetadataError, get_timestamp_field_infos

        mock_http_client.get.return_value = make_http_response(status_code=404, json={"message": "not found"})
        with pytest.raises(MetadataError) as exc:
            get_timestamp_field_infos("missing", base_url="http://qw/api/v1")
        assert exc.value.status == 404
        assert exc.value.message == "Error when calling url = http://qw/api/v1/indexes/missing"
