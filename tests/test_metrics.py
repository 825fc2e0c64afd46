"""Tests for the internal health and Prometheus metrics endpoints."""

import pytest

from s3www.middleware.metrics import normalize_path

from conftest import make_settings


class TestMetricsEndpoint:
    """Tests for /_s3www/metrics endpoint."""

    def test_metrics_endpoint_returns_prometheus_format(self, client):
        """Test that /_s3www/metrics returns valid Prometheus text format."""
        client.get("/assets/app.js")

        response = client.get("/_s3www/metrics")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")

        content = response.text
        assert "s3www_requests_total" in content
        assert "s3www_request_duration_seconds" in content
        assert "s3www_bytes_served_total" in content
        assert "s3www_resolutions_total" in content

    def test_metrics_includes_service_info(self, client):
        """Test that metrics include service info."""
        content = client.get("/_s3www/metrics").text

        assert "s3www_service_info" in content
        assert 'bucket="site"' in content

    def test_request_count_labels_are_normalized(self, client):
        client.get("/assets/app.js")

        content = client.get("/_s3www/metrics").text

        assert 'endpoint="/{path}"' in content
        assert 'endpoint="/assets/app.js"' not in content


class TestNormalizePath:
    """Metrics label normalisation."""

    @pytest.mark.parametrize("path,expected", [
        ("/_s3www/health", "/_s3www/health"),
        ("/_s3www", "/_s3www"),
        ("/assets/app.js", "/{path}"),
        ("/_s3wwwx", "/{path}"),
        ("/docs/", "/{dir}/"),
        ("/", "/{dir}/"),
    ])
    def test_normalize(self, path, expected):
        assert normalize_path(path) == expected

    def test_custom_prefix(self):
        assert normalize_path("/status/health", "/status") == "/status/health"


class TestHealth:
    """Tests for the health endpoint."""

    def test_health(self, client):
        response = client.get("/_s3www/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["bucket"] == "site"
        assert data["root"] == ""
        assert data["cache_enabled"] is False

    def test_health_does_not_touch_the_store(self, client, store):
        client.get("/_s3www/health")

        assert store.probes == []

    def test_internal_prefix_is_configurable(self, store):
        from fastapi.testclient import TestClient
        from s3www.main import create_app

        client = TestClient(create_app(make_settings(internal_prefix="status/"), store=store))

        assert client.get("/status/health").status_code == 200
        # the old prefix is now an ordinary bucket path
        assert client.get("/_s3www/health").status_code == 404
