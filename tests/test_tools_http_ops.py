"""Tests for autoagent/tools/http_ops.py using httpx.MockTransport.

httpx.MockTransport replaces only the network layer; the real request
building, rate limiting and response decoding all run.
"""

from __future__ import annotations

import json

import httpx
import pytest

from autoagent.core.exceptions import ToolError
from autoagent.security.policy import RequestRateLimiter
from autoagent.tools.http_ops import USER_AGENT, make_api_call


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


class TestMakeApiCall:
    def test_get_json(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["User-Agent"] == USER_AGENT
            return httpx.Response(200, json={"items": [1, 2]})

        result = make_api_call("https://api.example.com/items", client=_client(handler))
        assert result["status"] == 200
        assert result["status_text"] == "OK"
        assert result["data"] == {"items": [1, 2]}
        assert result["method"] == "GET"

    def test_post_dict_body_is_json(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            seen["type"] = request.headers["content-type"]
            return httpx.Response(201, text="created")

        result = make_api_call(
            "https://api.example.com/items",
            method="post",
            body={"name": "x"},
            client=_client(handler),
        )
        assert seen["body"] == {"name": "x"}
        assert "application/json" in seen["type"]
        assert result["status"] == 201
        assert result["data"] == "created"

    def test_non_2xx_is_returned(self):
        result = make_api_call(
            "https://api.example.com/missing",
            client=_client(lambda r: httpx.Response(404, json={"error": "nope"})),
        )
        assert result["status"] == 404
        assert result["data"] == {"error": "nope"}

    def test_custom_headers(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text=request.headers.get("X-Token", ""))

        result = make_api_call("https://x.test", headers={"X-Token": "t"}, client=_client(handler))
        assert result["data"] == "t"

    def test_unsupported_method(self):
        with pytest.raises(ToolError, match="Unsupported HTTP method"):
            make_api_call("https://x.test", method="TRACE")

    def test_non_http_scheme(self):
        with pytest.raises(ToolError, match="http"):
            make_api_call("file:///etc/passwd")

    def test_timeout_applies_to_injected_client(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen.update(request.extensions["timeout"])
            return httpx.Response(204)

        make_api_call("https://x.test", timeout=3.5, client=_client(handler))
        assert seen["connect"] == 3.5
        assert seen["read"] == 3.5

    def test_timeout_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(ToolError, match="timed out after 2.0s"):
            make_api_call("https://x.test", timeout=2.0, client=_client(handler))

    def test_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(ToolError, match="API call failed"):
            make_api_call("https://x.test", client=_client(handler))

    def test_rate_limit_exhaustion_fails_immediately(self):
        limiter = RequestRateLimiter(max_per_minute=1, max_per_hour=10)
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            return httpx.Response(200, text="ok")

        client = _client(handler)
        make_api_call("https://x.test", rate_limiter=limiter, client=client)
        with pytest.raises(ToolError, match="Rate limit"):
            make_api_call("https://x.test", rate_limiter=limiter, client=client)
        assert calls["n"] == 1
