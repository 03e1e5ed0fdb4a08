"""Chat-completions client for AutoAgent.

Talks to any OpenAI-compatible endpoint over httpx: a local Ollama
server by default, or a hosted provider when an API key is configured.
Retries transient failures with exponential backoff.
"""

from __future__ import annotations

import json
import logging
import re
import time
from typing import Any, Optional

import httpx

from autoagent.core.config import LLMConfig
from autoagent.core.exceptions import (
    AuthenticationError,
    LLMError,
    ModelNotFoundError,
    RateLimitError,
    ResponseParseError,
)

logger = logging.getLogger("autoagent.llm")


class LLMMessage:
    """A single message in a conversation."""

    def __init__(self, role: str, content: str):
        self.role = role
        self.content = content

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}

    def __repr__(self) -> str:
        return f"LLMMessage(role={self.role!r}, content={self.content[:40]!r})"


class LLMResponse:
    """Parsed response from the LLM."""

    def __init__(
        self,
        content: str,
        model: str,
        tokens_used: int = 0,
        raw: Optional[dict] = None,
    ):
        self.content = content
        self.model = model
        self.tokens_used = tokens_used
        self.raw = raw or {}


class ChatClient:
    """Synchronous client for the /chat/completions endpoint."""

    def __init__(self, config: Optional[LLMConfig] = None):
        self.config = config or LLMConfig()
        self.api_key = self.config.api_key or ""
        self.base_url = self.config.base_url.rstrip("/")
        self._client: Optional[httpx.Client] = None

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                timeout=httpx.Timeout(self.config.timeout_seconds),
            )
        return self._client

    def complete(
        self,
        messages: list[LLMMessage],
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        response_format: Optional[dict] = None,
    ) -> LLMResponse:
        """Send a chat completion request.

        Args:
            messages: Conversation messages.
            model: Model id; defaults to the configured model.
            temperature: Sampling temperature (default from config).
            max_tokens: Max response tokens (default from config).
            response_format: Optional format constraint (e.g., {"type": "json_object"}).
        """
        payload: dict[str, Any] = {
            "model": model or self.config.model,
            "messages": [m.to_dict() for m in messages],
            "temperature": temperature if temperature is not None else self.config.default_temperature,
            "max_tokens": max_tokens or self.config.default_max_tokens,
            "stream": False,
        }
        if response_format:
            payload["response_format"] = response_format

        return self._request_with_retry(
            payload,
            self._headers(),
            max_retries=self.config.provider_retries + 1,
            backoff_base_seconds=self.config.provider_backoff_seconds,
        )

    def complete_json(
        self,
        messages: list[LLMMessage],
        model: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> dict[str, Any]:
        """Completion expecting a JSON object; strips markdown fences."""
        response = self.complete(
            messages=messages,
            model=model,
            temperature=temperature,
            response_format={"type": "json_object"},
        )
        return _parse_json_response(response.content)

    def _request_with_retry(
        self,
        payload: dict,
        headers: dict,
        max_retries: int = 3,
        backoff_base_seconds: float = 2.0,
    ) -> LLMResponse:
        """Execute request with exponential backoff on retryable errors."""
        last_error: Optional[Exception] = None

        for attempt in range(max_retries):
            try:
                resp = self.client.post(
                    f"{self.base_url}/chat/completions",
                    json=payload,
                    headers=headers,
                )

                if resp.status_code == 401:
                    raise AuthenticationError("Invalid API key")
                if resp.status_code == 404:
                    raise ModelNotFoundError(f"Model not found: {payload.get('model')}")
                if resp.status_code == 429 or resp.status_code >= 500:
                    last_error = (RateLimitError if resp.status_code == 429 else LLMError)(
                        f"HTTP {resp.status_code}"
                    )
                    if attempt == max_retries - 1:
                        break
                    delay = _backoff_delay(attempt, backoff_base_seconds)
                    logger.warning("Provider returned %d. Waiting %.1fs before retry %d",
                                   resp.status_code, delay, attempt + 1)
                    time.sleep(delay)
                    continue

                resp.raise_for_status()
                data = resp.json()

                content = data["choices"][0]["message"]["content"]
                model = data.get("model", payload.get("model", "unknown"))
                tokens = data.get("usage", {}).get("total_tokens", 0)

                logger.debug("LLM response: model=%s tokens=%d", model, tokens)
                return LLMResponse(content=content or "", model=model, tokens_used=tokens, raw=data)

            except (httpx.TimeoutException, httpx.ConnectError) as e:
                last_error = e
                if attempt == max_retries - 1:
                    break
                delay = _backoff_delay(attempt, backoff_base_seconds)
                logger.warning("Network error: %s. Waiting %.1fs", e, delay)
                time.sleep(delay)
            except (AuthenticationError, ModelNotFoundError):
                raise
            except (httpx.HTTPError, KeyError, IndexError, ValueError) as e:
                last_error = e
                if attempt == max_retries - 1:
                    break
                delay = _backoff_delay(attempt, backoff_base_seconds)
                logger.warning("Unexpected provider reply: %s. Waiting %.1fs", e, delay)
                time.sleep(delay)

        if isinstance(last_error, RateLimitError):
            raise RateLimitError(f"Rate limited after {max_retries} attempts")
        raise LLMError(f"Request failed after {max_retries} attempts: {last_error}")

    def list_models(self) -> list[str]:
        """Model ids the provider advertises at GET /models. No retries."""
        try:
            resp = self.client.get(f"{self.base_url}/models", headers=self._headers())
        except httpx.HTTPError as e:
            raise LLMError(f"Provider unreachable at {self.base_url}: {e}") from e
        if resp.status_code == 401:
            raise AuthenticationError("Invalid API key")
        if resp.status_code >= 400:
            raise LLMError(f"GET /models returned HTTP {resp.status_code}")
        try:
            data = resp.json()
        except ValueError as e:
            raise LLMError(f"GET /models returned non-JSON body: {e}") from e
        entries = data.get("data", []) if isinstance(data, dict) else []
        return [str(m["id"]) for m in entries if isinstance(m, dict) and m.get("id")]

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def close(self) -> None:
        if self._client:
            self._client.close()
            self._client = None


def _backoff_delay(attempt: int, base_seconds: float = 2.0) -> float:
    """Exponential backoff: 2s, 4s, 8s, ..."""
    return min(base_seconds * (2 ** attempt), 60)


def _parse_json_response(text: str) -> dict[str, Any]:
    """Parse JSON from LLM response, stripping markdown code fences if present."""
    cleaned = text.strip()

    fence_pattern = r"^```(?:json)?\s*\n?(.*?)\n?```$"
    match = re.match(fence_pattern, cleaned, re.DOTALL)
    if match:
        cleaned = match.group(1).strip()

    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ResponseParseError(f"Failed to parse JSON from LLM response: {e}\nRaw: {text[:500]}")
    if not isinstance(data, dict):
        raise ResponseParseError(f"Expected a JSON object, got {type(data).__name__}")
    return data
