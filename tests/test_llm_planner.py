"""Tests for autoagent/llm/planner.py and autoagent/llm/prompts.py.

The planner talks to a real ChatClient whose network layer is an
httpx.MockTransport serving scripted replies.
"""

from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest

from autoagent.core.config import LLMConfig, PromptLoader
from autoagent.core.exceptions import ResponseParseError
from autoagent.llm.client import ChatClient, LLMMessage
from autoagent.llm.planner import LLMPlanner
from autoagent.llm.prompts import TOOL_DESCRIPTIONS, PromptSet


class _ScriptedEndpoint:
    """Serves canned assistant replies in order and records requests."""

    def __init__(self, replies: list[str]):
        self.replies = list(replies)
        self.requests: list[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        content = self.replies.pop(0)
        return httpx.Response(200, json={"choices": [{"message": {"content": content}}], "model": "m"})


def _planner(endpoint: _ScriptedEndpoint, prompts: PromptSet | None = None) -> LLMPlanner:
    config = LLMConfig(provider_retries=0, provider_backoff_seconds=0.01)
    client = ChatClient(config)
    client._client = httpx.Client(transport=httpx.MockTransport(endpoint))
    return LLMPlanner(client, prompts=prompts or PromptSet(PromptLoader(Path("/nonexistent"))), workspace="/ws")


class TestPrompts:
    def test_system_prompt_lists_every_tool(self):
        endpoint = _ScriptedEndpoint([])
        prompt = _planner(endpoint).system_prompt()
        for tool in TOOL_DESCRIPTIONS:
            assert tool.value in prompt
        assert "/ws" in prompt
        assert '"completed": true' in prompt

    def test_file_override(self, tmp_path: Path):
        (tmp_path / "system.txt").write_text("Custom agent for {workspace}")
        prompts = PromptSet(PromptLoader(tmp_path))
        assert _planner(_ScriptedEndpoint([]), prompts).system_prompt() == "Custom agent for /ws"


class TestNextStep:
    def test_parses_action(self):
        endpoint = _ScriptedEndpoint([
            '{"thought": "t", "action": {"tool": "readFile", "parameters": {"path": "a"}}}'
        ])
        planner = _planner(endpoint)
        history = [LLMMessage("system", "s"), LLMMessage("user", "do it")]
        response = planner.next_step(history)
        assert response.action.tool == "readFile"
        assert endpoint.requests[0]["messages"][1] == {"role": "user", "content": "do it"}
        assert endpoint.requests[0]["temperature"] == 0.7

    def test_unparseable_reply_is_degraded(self):
        planner = _planner(_ScriptedEndpoint(["I'm not sure what to do."]))
        response = planner.next_step([LLMMessage("user", "x")])
        assert response.degraded
        assert response.action is None


class TestAnalysis:
    def test_analyze_task(self):
        reply = json.dumps({
            "objective": "Build a todo app",
            "projectType": "web",
            "steps": [{"id": 1, "description": "scaffold"}],
        })
        endpoint = _ScriptedEndpoint([f"Here you go:\n```json\n{reply}\n```"])
        analysis = _planner(endpoint).analyze_task("todo app please")
        assert analysis.objective == "Build a todo app"
        assert analysis.steps[0].id == 1
        assert "todo app please" in endpoint.requests[0]["messages"][0]["content"]
        assert endpoint.requests[0]["temperature"] == 0.3

    def test_analyze_error(self):
        endpoint = _ScriptedEndpoint([json.dumps({
            "errorType": "runtime",
            "solution": "create the directory first",
            "needsHumanIntervention": False,
        })])
        advice = _planner(endpoint).analyze_error("ENOENT", tool="writeFile", parameters={"path": "a/b"})
        assert advice.solution == "create the directory first"
        assert not advice.needs_human_intervention
        prompt = endpoint.requests[0]["messages"][0]["content"]
        assert "writeFile" in prompt
        assert "ENOENT" in prompt

    def test_malformed_analysis_raises(self):
        planner = _planner(_ScriptedEndpoint(['{"steps": "not a list"}']))
        with pytest.raises(ResponseParseError):
            planner.analyze_task("x")

    def test_non_json_analysis_raises(self):
        planner = _planner(_ScriptedEndpoint(["no idea"]))
        with pytest.raises(ResponseParseError):
            planner.analyze_error("boom")
