"""
End-to-end tests for the relay endpoints through the FastAPI app.

Tests cover:
- Missing url parameter and admission rejections
- CORS preflight and method restrictions
- HTML rewriting, pass-through and resource relaying headers
- Error status mapping for page and resource relays
"""

import socket
from unittest.mock import AsyncMock, patch
from urllib.parse import quote

import httpx
import pytest
from bs4 import BeautifulSoup
from fastapi.testclient import TestClient

from app.relay.fetcher import FetchedDocument


@pytest.fixture(scope="session")
def test_client():
    from app.server import app

    with TestClient(app) as client:
        yield client


@pytest.fixture
def page_fetch():
    with patch("app.relay.page.fetch_target", new_callable=AsyncMock) as fetch:
        yield fetch


@pytest.fixture
def resource_fetch():
    with patch("app.relay.resource.fetch_target", new_callable=AsyncMock) as fetch:
        yield fetch


def _document(status_code=200, content_type="text/html", body=b"", url="https://example.com/"):
    return FetchedDocument(url=url, status_code=status_code, content_type=content_type, body=body)


def _connect_error(message: str, cause: Exception) -> httpx.ConnectError:
    error = httpx.ConnectError(message)
    error.__cause__ = cause
    return error


@pytest.mark.parametrize("endpoint", ["/page", "/resource"])
class TestRequestValidation:
    def test_missing_url_parameter(self, test_client, endpoint):
        r = test_client.get(endpoint)

        assert r.status_code == 400
        assert r.json() == {"error": "URL parameter is required"}
        assert r.headers["access-control-allow-origin"] == "*"

    def test_empty_url_parameter(self, test_client, endpoint):
        r = test_client.get(f"{endpoint}?url=")

        assert r.status_code == 400
        assert r.json() == {"error": "URL parameter is required"}

    def test_preflight(self, test_client, endpoint):
        r = test_client.options(endpoint)

        assert r.status_code == 200
        assert r.content == b""
        assert r.headers["access-control-allow-origin"] == "*"
        assert r.headers["access-control-allow-methods"] == "GET, OPTIONS"
        assert r.headers["access-control-allow-headers"] == "Content-Type"

    @pytest.mark.parametrize("method", ["POST", "PUT", "DELETE", "PATCH"])
    def test_other_methods_not_allowed(self, test_client, endpoint, method):
        r = test_client.request(method, f"{endpoint}?url=https://example.com/")

        assert r.status_code == 405
        assert r.json() == {"error": "Method not allowed"}
        assert r.headers["access-control-allow-origin"] == "*"

    @pytest.mark.parametrize(
        "target,reason",
        [
            ("https://internal.example", "Domain not allowed"),
            ("http://127.0.0.1:8000/", "Domain not allowed"),
            ("ftp://example.com/file", "Only HTTP and HTTPS protocols allowed"),
            ("not a url", "Invalid URL format"),
        ],
    )
    def test_admission_rejections(
        self, test_client, endpoint, target, reason, page_fetch, resource_fetch
    ):
        r = test_client.get(endpoint, params={"url": target})

        assert r.status_code == 400
        assert r.json() == {"error": reason}
        page_fetch.assert_not_awaited()
        resource_fetch.assert_not_awaited()


class TestPageEndpoint:
    def test_html_rewritten_with_request_origin(self, test_client, page_fetch):
        page_fetch.return_value = _document(
            content_type="text/html; charset=utf-8",
            body=b'<html><head></head><body><a href="/foo">f</a>'
            b'<script src="/app.js"></script></body></html>',
        )

        r = test_client.get("/page", params={"url": "https://example.com/bar/"})

        assert r.status_code == 200
        assert r.headers["content-type"] == "text/html; charset=utf-8"
        assert r.headers["x-frame-options"] == "SAMEORIGIN"
        assert r.headers["x-content-type-options"] == "nosniff"
        assert r.headers["cache-control"] == "public, max-age=300"
        assert r.headers["access-control-allow-origin"] == "*"

        soup = BeautifulSoup(r.text, "html.parser")
        assert soup.a["href"] == "http://testserver/page?url=https%3A%2F%2Fexample.com%2Ffoo"
        assert soup.script["src"] == (
            "http://testserver/resource?url=https%3A%2F%2Fexample.com%2Fapp.js"
        )
        assert soup.head.base["href"] == "https://example.com/bar/"

    def test_forwarded_proto_used_for_relay_base(self, test_client, page_fetch):
        page_fetch.return_value = _document(body=b'<a href="https://example.com/x">x</a>')

        r = test_client.get(
            "/page",
            params={"url": "https://example.com/"},
            headers={"x-forwarded-proto": "https", "host": "relay.test"},
        )

        soup = BeautifulSoup(r.text, "html.parser")
        assert soup.a["href"] == "https://relay.test/page?url=" + quote(
            "https://example.com/x", safe=""
        )

    def test_public_url_overrides_request_origin(self, test_client, page_fetch, monkeypatch):
        monkeypatch.setattr("app.routes.PUBLIC_URL", "https://public.example.net")
        page_fetch.return_value = _document(body=b'<img src="a.png">')

        r = test_client.get("/page", params={"url": "https://example.com/"})

        soup = BeautifulSoup(r.text, "html.parser")
        assert soup.img["src"].startswith("https://public.example.net/resource?url=")

    def test_non_html_passes_through(self, test_client, page_fetch):
        page_fetch.return_value = _document(content_type="text/plain", body=b"plain /foo")

        r = test_client.get("/page", params={"url": "https://example.com/robots.txt"})

        assert r.status_code == 200
        assert r.content == b"plain /foo"
        assert r.headers["content-type"] == "text/plain"
        assert r.headers["cache-control"] == "public, max-age=3600"
        assert "x-frame-options" not in r.headers

    def test_percent_encoded_target_is_decoded_once(self, test_client, page_fetch):
        page_fetch.return_value = _document(content_type="application/json", body=b"{}")
        target = "https://example.com/search?q=a&b=c"

        r = test_client.get(f"/page?url={quote(target, safe='')}")

        assert r.status_code == 200
        assert page_fetch.await_args.args[0] == target

    def test_upstream_client_error_still_served(self, test_client, page_fetch):
        page_fetch.return_value = _document(status_code=404, body=b"<p>Not here</p>")

        r = test_client.get("/page", params={"url": "https://example.com/missing"})

        assert r.status_code == 200
        assert "Not here" in r.text

    @pytest.mark.parametrize(
        "failure,status,reason",
        [
            (
                _connect_error("dns", socket.gaierror(-2, "Name or service not known")),
                404,
                "Website not found",
            ),
            (
                _connect_error("refused", ConnectionRefusedError(111, "Connection refused")),
                502,
                "Connection refused by target server",
            ),
            (httpx.ReadTimeout("timed out"), 504, "Request timeout"),
            (httpx.TooManyRedirects("too many"), 500, "Proxy server error"),
        ],
    )
    def test_transport_error_mapping(self, test_client, page_fetch, failure, status, reason):
        page_fetch.side_effect = failure

        r = test_client.get("/page", params={"url": "https://example.com/"})

        assert r.status_code == status
        assert r.json() == {"error": reason}
        assert r.headers["access-control-allow-origin"] == "*"

    def test_upstream_server_error_mirrored(self, test_client, page_fetch):
        page_fetch.return_value = _document(status_code=503, body=b"maintenance")

        r = test_client.get("/page", params={"url": "https://example.com/"})

        assert r.status_code == 503
        assert r.json() == {"error": "Target server returned 503"}

    def test_unexpected_failure_is_proxy_error(self, test_client, page_fetch):
        page_fetch.side_effect = RuntimeError("boom")

        r = test_client.get("/page", params={"url": "https://example.com/"})

        assert r.status_code == 500
        assert r.json() == {"error": "Proxy server error"}


class TestResourceEndpoint:
    def test_binary_resource(self, test_client, resource_fetch):
        resource_fetch.return_value = _document(content_type="image/png", body=b"\x89PNG\x00\x01")

        r = test_client.get("/resource", params={"url": "https://example.com/logo.png"})

        assert r.status_code == 200
        assert r.content == b"\x89PNG\x00\x01"
        assert r.headers["content-type"] == "image/png"
        assert r.headers["cache-control"] == "public, max-age=86400"
        assert r.headers["access-control-allow-origin"] == "*"

    def test_default_content_type(self, test_client, resource_fetch):
        resource_fetch.return_value = _document(content_type="", body=b"\x00")

        r = test_client.get("/resource", params={"url": "https://example.com/blob"})

        assert r.headers["content-type"] == "application/octet-stream"

    @pytest.mark.parametrize(
        "failure",
        [
            _connect_error("dns", socket.gaierror(-2, "Name or service not known")),
            httpx.ReadTimeout("timed out"),
            RuntimeError("unexpected transport state"),
        ],
    )
    def test_failures_collapse_to_not_found(self, test_client, resource_fetch, failure):
        resource_fetch.side_effect = failure

        r = test_client.get("/resource", params={"url": "https://example.com/app.js"})

        assert r.status_code == 404
        assert r.json() == {"error": "Resource not found"}


def test_healthz(test_client):
    r = test_client.get("/healthz")

    assert r.status_code == 200
    assert r.text == "OK"


def test_metrics_exposed(test_client):
    r = test_client.get("/metrics")

    assert r.status_code == 200
    assert "fastapi_app_info" in r.text
