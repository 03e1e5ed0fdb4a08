"""Built-in prompt templates.

Each template can be overridden by a file of the same name under
config/prompts/ (see PromptLoader). Placeholders use str.format syntax;
literal braces in the JSON examples are doubled.
"""

from __future__ import annotations

from autoagent.core.config import PromptLoader
from autoagent.core.models import ToolName

SYSTEM_PROMPT_FILE = "system.txt"
TASK_ANALYSIS_PROMPT_FILE = "task_analysis.txt"
ERROR_ANALYSIS_PROMPT_FILE = "error_analysis.txt"

TOOL_DESCRIPTIONS: dict[ToolName, str] = {
    ToolName.READ_FILE: "read a file. params: path",
    ToolName.WRITE_FILE: "create or overwrite a file. params: path, content",
    ToolName.DELETE_FILE: "delete a file. params: path",
    ToolName.CREATE_DIRECTORY: "create a directory. params: path",
    ToolName.LIST_DIRECTORY: "list a directory. params: path, pattern?, recursive?",
    ToolName.EXECUTE_COMMAND: "run a shell command. params: command, cwd?, timeout?",
    ToolName.INSTALL_PACKAGES: "install packages. params: path, packages, manager (npm|pip), isDev?",
    ToolName.GIT_INIT: "initialize a git repository. params: path",
    ToolName.GIT_COMMIT: "stage and commit. params: path, message, files?",
    ToolName.GIT_STATUS: "show git status. params: path",
    ToolName.GIT_CREATE_BRANCH: "create a branch. params: path, branch, checkout?",
    ToolName.GIT_PUSH: "push to a remote. params: path, remote?, branch?",
    ToolName.MAKE_API_CALL: "HTTP request. params: url, method?, headers?, body?, timeout?",
    ToolName.DETECT_LANGUAGE: "detect a file's language. params: filename, content?",
    ToolName.ANALYZE_DEPENDENCIES: "list imports in source. params: content, language",
    ToolName.SUGGEST_PROJECT_STRUCTURE: (
        "suggest a layout. params: projectType (web-react|api-express|python-app|fullstack)"
    ),
}


def _tool_list() -> str:
    return "\n".join(f"- {name.value}: {desc}" for name, desc in TOOL_DESCRIPTIONS.items())


SYSTEM_PROMPT = """You are an autonomous software engineering agent working inside an assigned workspace.

Work in a loop: think about the situation, pick ONE tool call, then read its
result (the next user message) before deciding the next step.

AVAILABLE TOOLS:
""" + _tool_list().replace("{", "{{").replace("}", "}}") + """

RULES:
1. Stay inside the workspace: {workspace}
2. Every action is checked by a security policy. Denied or rejected actions come
   back as failed observations; adapt your plan instead of repeating them.
3. Set needsApproval to true for anything destructive or irreversible.
4. Commit with git regularly and test code before declaring it finished.

RESPONSE FORMAT. Reply with a single JSON object and nothing else.

To act:
{{
  "thought": "your reasoning",
  "action": {{"tool": "toolName", "parameters": {{ ... }}}},
  "needsApproval": false,
  "criticalityLevel": "low|medium|high"
}}

When the task is finished:
{{
  "thought": "final assessment",
  "completed": true,
  "summary": "what was done",
  "filesCreated": ["..."],
  "nextSteps": ["..."]
}}"""


TASK_ANALYSIS_PROMPT = """Analyze the following request and break it into actionable steps.

REQUEST: {request}

Reply with a single JSON object:
{{
  "objective": "clear main objective",
  "projectType": "web|python|fullstack|automation|other",
  "technologies": ["..."],
  "constraints": ["..."],
  "steps": [
    {{
      "id": 1,
      "description": "step description",
      "tool": "tool needed",
      "estimatedComplexity": "low|medium|high",
      "dependencies": [],
      "criticalityLevel": "low|medium|high"
    }}
  ],
  "estimatedFiles": ["..."],
  "risks": ["..."]
}}"""


ERROR_ANALYSIS_PROMPT = """An error occurred during execution.

TOOL: {tool}
PARAMETERS: {parameters}
ERROR: {error}

Analyze it and reply with a single JSON object:
{{
  "errorType": "permission|syntax|runtime|network|other",
  "rootCause": "root cause",
  "solution": "proposed fix",
  "alternativeApproach": "fallback if the fix does not work",
  "needsHumanIntervention": true
}}"""


class PromptSet:
    """Resolved templates: file overrides where present, built-ins otherwise."""

    def __init__(self, loader: PromptLoader | None = None):
        loader = loader or PromptLoader()
        self.system = loader.load(SYSTEM_PROMPT_FILE, SYSTEM_PROMPT)
        self.task_analysis = loader.load(TASK_ANALYSIS_PROMPT_FILE, TASK_ANALYSIS_PROMPT)
        self.error_analysis = loader.load(ERROR_ANALYSIS_PROMPT_FILE, ERROR_ANALYSIS_PROMPT)
