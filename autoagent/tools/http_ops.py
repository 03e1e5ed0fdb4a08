"""Outbound HTTP calls for AutoAgent.

Every call first takes a slot from the shared RequestRateLimiter; an
exhausted window fails the call immediately instead of queueing it.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from autoagent.core.exceptions import ToolError
from autoagent.security.policy import RequestRateLimiter

logger = logging.getLogger("autoagent.tools.http_ops")

USER_AGENT = "AutoAgent/0.1"
DEFAULT_TIMEOUT = 30.0
HTTP_METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH")
_BODY_METHODS = ("POST", "PUT", "PATCH")


def make_api_call(
    url: str,
    method: str = "GET",
    headers: Optional[dict[str, str]] = None,
    body: Any = None,
    timeout: float = DEFAULT_TIMEOUT,
    rate_limiter: Optional[RequestRateLimiter] = None,
    client: Optional[httpx.Client] = None,
) -> dict:
    """Perform one HTTP request and return status, headers and decoded body.

    Non-2xx responses are returned, not raised; the caller decides what a
    404 means. Transport failures and rate-limit exhaustion raise ToolError.
    """
    method = method.upper()
    if method not in HTTP_METHODS:
        raise ToolError(f"Unsupported HTTP method: {method}")
    if not url.startswith(("http://", "https://")):
        raise ToolError(f"Only http(s) URLs are supported: {url}")

    if rate_limiter is not None:
        reason = rate_limiter.acquire()
        if reason is not None:
            logger.warning("API call to %s refused: %s", url, reason)
            raise ToolError(reason)

    request_headers = {"User-Agent": USER_AGENT, **(headers or {})}
    kwargs: dict[str, Any] = {"headers": request_headers}
    if body is not None and method in _BODY_METHODS:
        if isinstance(body, (dict, list)):
            kwargs["json"] = body
        else:
            kwargs["content"] = str(body)

    owns_client = client is None
    http = client or httpx.Client(timeout=timeout)
    try:
        response = http.request(method, url, timeout=timeout, **kwargs)
    except httpx.TimeoutException as e:
        raise ToolError(f"API call timed out after {timeout}s: {url}") from e
    except httpx.HTTPError as e:
        raise ToolError(f"API call failed: {e}") from e
    finally:
        if owns_client:
            http.close()

    logger.info("%s %s -> %d", method, url, response.status_code)
    return {
        "url": url,
        "method": method,
        "status": response.status_code,
        "status_text": response.reason_phrase,
        "headers": dict(response.headers),
        "data": _decode_body(response),
    }


def _decode_body(response: httpx.Response) -> Any:
    content_type = response.headers.get("content-type", "")
    if "json" in content_type:
        try:
            return response.json()
        except ValueError:
            pass
    return response.text
