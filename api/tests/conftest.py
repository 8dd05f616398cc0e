"""Shared fixtures for the quickwit datasource test suite."""

import os
from unittest.mock import MagicMock, patch

import httpx
import pytest

# ---- Environment setup (MUST happen before any api module import) ----
os.environ.setdefault("QUICKWIT_URL", "http://quickwit-test:7280/api/v1")
os.environ.setdefault("QW_INDEX", "logs")

QW_URL = "http://quickwit-test:7280/api/v1"


# ── Query model factories ─────────────────────────────────────────────


@pytest.fixture
def make_query():
    """Factory for Query instances parsed from dashboard target JSON."""
    from models import parse_query

    def _factory(time_from=1_526_406_600_000, time_to=1_526_406_900_000, **overrides):
        defaults = dict(
            refId="A",
            query="",
            metrics=[{"type": "count", "id": "1"}],
            bucketAggs=[{"type": "date_histogram", "field": "@timestamp", "id": "2"}],
        )
        defaults.update(overrides)
        return parse_query(defaults, time_from, time_to)

    return _factory


@pytest.fixture
def make_configured_fields():
    """Factory for ConfiguredFields with a millisecond time field."""
    from models import ConfiguredFields

    def _factory(**overrides):
        defaults = dict(
            time_field="testtime",
            time_output_format="",
            log_message_field="line",
            log_level_field="lvl",
        )
        defaults.update(overrides)
        return ConfiguredFields(**defaults)

    return _factory


@pytest.fixture
def make_datasource_info(make_configured_fields):
    """Factory for DatasourceInfo pointing at the test Quickwit."""
    from datasource import DatasourceInfo

    def _factory(**overrides):
        defaults = dict(
            url=QW_URL,
            index="logs",
            configured_fields=make_configured_fields(
                time_field="timestamp", time_output_format="unix_timestamp_millis",
            ),
            max_concurrent_shard_requests=5,
        )
        defaults.update(overrides)
        return DatasourceInfo(**defaults)

    return _factory


# ── HTTP mocks ────────────────────────────────────────────────────────


@pytest.fixture
def make_http_response():
    """Factory for real httpx responses bound to a request (raise_for_status works)."""

    def _factory(status_code=200, json=None, text=None, method="GET", url=QW_URL):
        request = httpx.Request(method, url)
        if text is not None:
            return httpx.Response(status_code, text=text, request=request)
        return httpx.Response(status_code, json=json if json is not None else {}, request=request)

    return _factory


@pytest.fixture
def mock_http_client():
    """Patch the module-level httpx client shared by the connectors."""
    mock = MagicMock(spec=httpx.Client)
    with patch("quickwit_connector._default_client", mock):
        yield mock


# ── FastAPI TestClient ────────────────────────────────────────────────


@pytest.fixture
def test_client(make_datasource_info, mock_http_client):
    """FastAPI TestClient with a fixed datasource and a mocked Quickwit client."""
    from fastapi.testclient import TestClient
    from main import app, get_datasource

    info = make_datasource_info()
    app.dependency_overrides[get_datasource] = lambda: info
    client = TestClient(app)
    yield client, mock_http_client

    app.dependency_overrides.clear()
