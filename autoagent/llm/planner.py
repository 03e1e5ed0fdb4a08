"""Planner: the language-model side of the execution loop."""

from __future__ import annotations

import json
import logging
from typing import Any, Optional, Protocol

from pydantic import ValidationError

from autoagent.core.config import LLMConfig
from autoagent.core.exceptions import ResponseParseError
from autoagent.core.models import PlannerResponse, RecoveryAdvice, TaskAnalysis
from autoagent.llm.client import ChatClient, LLMMessage
from autoagent.llm.prompts import PromptSet
from autoagent.llm.response_parser import parse_planner_response, require_json_object

logger = logging.getLogger("autoagent.llm.planner")


class Planner(Protocol):
    def system_prompt(self) -> str: ...

    def next_step(self, history: list[LLMMessage]) -> PlannerResponse: ...

    def analyze_error(
        self, error: str, tool: str = "unknown", parameters: Optional[dict[str, Any]] = None
    ) -> RecoveryAdvice: ...

    def analyze_task(self, request: str) -> TaskAnalysis: ...


class LLMPlanner:
    """Planner backed by a chat-completions endpoint."""

    def __init__(
        self,
        client: ChatClient,
        config: Optional[LLMConfig] = None,
        prompts: Optional[PromptSet] = None,
        workspace: str = "./workspace",
    ):
        self.client = client
        self.config = config or client.config
        self.prompts = prompts or PromptSet()
        self.workspace = workspace

    def system_prompt(self) -> str:
        return self.prompts.system.format(workspace=self.workspace)

    def next_step(self, history: list[LLMMessage]) -> PlannerResponse:
        response = self.client.complete(history, temperature=self.config.default_temperature)
        return parse_planner_response(response.content)

    def analyze_error(
        self, error: str, tool: str = "unknown", parameters: Optional[dict[str, Any]] = None
    ) -> RecoveryAdvice:
        prompt = self.prompts.error_analysis.format(
            tool=tool,
            parameters=json.dumps(parameters or {}, default=str),
            error=error,
        )
        data = self._ask_json(prompt)
        try:
            return RecoveryAdvice.model_validate(data)
        except ValidationError as e:
            raise ResponseParseError(f"Malformed error analysis: {e}") from e

    def analyze_task(self, request: str) -> TaskAnalysis:
        data = self._ask_json(self.prompts.task_analysis.format(request=request))
        try:
            return TaskAnalysis.model_validate(data)
        except ValidationError as e:
            raise ResponseParseError(f"Malformed task analysis: {e}") from e

    def _ask_json(self, prompt: str) -> dict[str, Any]:
        response = self.client.complete(
            [LLMMessage(role="user", content=prompt)],
            temperature=self.config.analysis_temperature,
        )
        return require_json_object(response.content)
