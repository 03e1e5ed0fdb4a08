"""Static dispatch from ToolName to a concrete tool call.

The router validates parameters against a per-tool pydantic model,
resolves filesystem paths the same way the PolicyEngine does and
normalizes every result or error into an ActionOutcome. It performs
no policy checks of its own and never retries.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from autoagent.core.config import ShellConfig
from autoagent.core.exceptions import ShellTimeoutError, ToolError
from autoagent.core.models import ActionOutcome, FailureKind, ToolName
from autoagent.security.policy import RequestRateLimiter
from autoagent.tools import analysis, file_ops, git_ops, http_ops, shell

logger = logging.getLogger("autoagent.tools.router")


# ---------------------------------------------------------------------------
# Parameter models
# ---------------------------------------------------------------------------

class PathParams(BaseModel):
    path: str = Field(min_length=1)


class ReadFileParams(PathParams):
    pass


class WriteFileParams(PathParams):
    content: str


class DeleteFileParams(PathParams):
    pass


class CreateDirectoryParams(PathParams):
    pass


class ListDirectoryParams(PathParams):
    pattern: str = "*"
    recursive: bool = False


class ExecuteCommandParams(BaseModel):
    command: str = Field(min_length=1)
    cwd: Optional[str] = None
    timeout: Optional[int] = Field(default=None, gt=0)


class InstallPackagesParams(PathParams):
    packages: list[str] = Field(min_length=1)
    manager: str = "npm"
    dev: bool = Field(default=False, alias="isDev")

    model_config = ConfigDict(populate_by_name=True)


class GitInitParams(PathParams):
    pass


class GitCommitParams(PathParams):
    message: str = Field(min_length=1)
    files: Optional[list[str]] = None


class GitStatusParams(PathParams):
    pass


class GitCreateBranchParams(PathParams):
    branch: str = Field(min_length=1, alias="branchName")
    checkout: bool = True

    model_config = ConfigDict(populate_by_name=True)


class GitPushParams(PathParams):
    remote: str = "origin"
    branch: Optional[str] = None


class MakeApiCallParams(BaseModel):
    url: str = Field(min_length=1)
    method: str = "GET"
    headers: dict[str, str] = Field(default_factory=dict)
    body: Any = None
    timeout: float = Field(default=http_ops.DEFAULT_TIMEOUT, gt=0)


class DetectLanguageParams(BaseModel):
    filename: str = Field(min_length=1)
    content: Optional[str] = None


class AnalyzeDependenciesParams(BaseModel):
    content: str
    language: str


class SuggestProjectStructureParams(BaseModel):
    project_type: str = Field(alias="projectType")

    model_config = ConfigDict(populate_by_name=True)


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------

Handler = Callable[[Any], ActionOutcome]


def _require_every_tool(handlers: dict) -> None:
    missing = sorted(t.value for t in set(ToolName) - set(handlers))
    if missing:
        raise RuntimeError(f"Tools without handlers: {', '.join(missing)}")


class ActionRouter:
    """Maps every ToolName to a handler. The mapping is total."""

    def __init__(
        self,
        workspace_dir: Path,
        base_dir: Optional[Path] = None,
        shell_config: Optional[ShellConfig] = None,
        rate_limiter: Optional[RequestRateLimiter] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        self.base_dir = (base_dir or Path.cwd()).resolve()
        self.workspace_dir = self._resolve(str(workspace_dir))
        self.shell_config = shell_config or ShellConfig()
        self.rate_limiter = rate_limiter
        self.http_client = http_client

        self._handlers: dict[ToolName, tuple[type[BaseModel], Handler]] = {
            ToolName.READ_FILE: (ReadFileParams, self._read_file),
            ToolName.WRITE_FILE: (WriteFileParams, self._write_file),
            ToolName.DELETE_FILE: (DeleteFileParams, self._delete_file),
            ToolName.CREATE_DIRECTORY: (CreateDirectoryParams, self._create_directory),
            ToolName.LIST_DIRECTORY: (ListDirectoryParams, self._list_directory),
            ToolName.EXECUTE_COMMAND: (ExecuteCommandParams, self._execute_command),
            ToolName.INSTALL_PACKAGES: (InstallPackagesParams, self._install_packages),
            ToolName.GIT_INIT: (GitInitParams, self._git_init),
            ToolName.GIT_COMMIT: (GitCommitParams, self._git_commit),
            ToolName.GIT_STATUS: (GitStatusParams, self._git_status),
            ToolName.GIT_CREATE_BRANCH: (GitCreateBranchParams, self._git_create_branch),
            ToolName.GIT_PUSH: (GitPushParams, self._git_push),
            ToolName.MAKE_API_CALL: (MakeApiCallParams, self._make_api_call),
            ToolName.DETECT_LANGUAGE: (DetectLanguageParams, self._detect_language),
            ToolName.ANALYZE_DEPENDENCIES: (AnalyzeDependenciesParams, self._analyze_dependencies),
            ToolName.SUGGEST_PROJECT_STRUCTURE: (
                SuggestProjectStructureParams, self._suggest_project_structure,
            ),
        }
        _require_every_tool(self._handlers)

    @property
    def tools(self) -> list[str]:
        return [t.value for t in self._handlers]

    def execute(self, tool: str, parameters: Optional[dict[str, Any]] = None) -> ActionOutcome:
        name = ToolName.lookup(tool)
        if name is None:
            return ActionOutcome.failure(f"Unknown tool: {tool}", FailureKind.UNKNOWN_TOOL)

        model, handler = self._handlers[name]
        try:
            params = model.model_validate(parameters or {})
        except ValidationError as e:
            return ActionOutcome.failure(
                f"Invalid parameters for {tool}: {_summarize_validation(e)}",
                FailureKind.INVALID_PARAMETERS,
            )

        logger.debug("Executing %s with %s", tool, parameters)
        try:
            return handler(params)
        except ToolError as e:
            logger.info("Tool %s failed: %s", tool, e)
            return ActionOutcome.failure(str(e))
        except Exception as e:
            logger.exception("Tool %s raised unexpectedly", tool)
            return ActionOutcome.failure(f"{type(e).__name__}: {e}")

    # -------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------

    def _read_file(self, p: ReadFileParams) -> ActionOutcome:
        return ActionOutcome.ok(file_ops.read_file(self._resolve(p.path)))

    def _write_file(self, p: WriteFileParams) -> ActionOutcome:
        return ActionOutcome.ok(file_ops.write_file(self._resolve(p.path), p.content))

    def _delete_file(self, p: DeleteFileParams) -> ActionOutcome:
        return ActionOutcome.ok(file_ops.delete_file(self._resolve(p.path)))

    def _create_directory(self, p: CreateDirectoryParams) -> ActionOutcome:
        return ActionOutcome.ok(file_ops.create_directory(self._resolve(p.path)))

    def _list_directory(self, p: ListDirectoryParams) -> ActionOutcome:
        return ActionOutcome.ok(
            file_ops.list_directory(self._resolve(p.path), p.pattern, p.recursive)
        )

    def _execute_command(self, p: ExecuteCommandParams) -> ActionOutcome:
        cwd = self._resolve(p.cwd) if p.cwd else self.workspace_dir
        cwd.mkdir(parents=True, exist_ok=True)
        try:
            result = shell.run_command(
                p.command,
                cwd=str(cwd),
                timeout=p.timeout or self.shell_config.default_timeout_seconds,
                safe_env_vars=self._safe_env(),
            )
        except ShellTimeoutError as e:
            return ActionOutcome.failure(str(e), data={"command": p.command, "killed": True})
        return _shell_outcome(result)

    def _install_packages(self, p: InstallPackagesParams) -> ActionOutcome:
        result = shell.install_packages(
            p.packages,
            cwd=str(self._resolve(p.path)),
            manager=p.manager,
            dev=p.dev,
            timeout=self.shell_config.install_timeout_seconds,
            safe_env_vars=self._safe_env(),
        )
        return _shell_outcome(result)

    def _git_init(self, p: GitInitParams) -> ActionOutcome:
        return ActionOutcome.ok(git_ops.init_repo(str(self._resolve(p.path))))

    def _git_commit(self, p: GitCommitParams) -> ActionOutcome:
        repo = str(self._resolve(p.path))
        commit_hash = git_ops.commit(repo, p.message, p.files)
        return ActionOutcome.ok({"path": repo, "commit": commit_hash, "committed": bool(commit_hash)})

    def _git_status(self, p: GitStatusParams) -> ActionOutcome:
        return ActionOutcome.ok(git_ops.get_status(str(self._resolve(p.path))))

    def _git_create_branch(self, p: GitCreateBranchParams) -> ActionOutcome:
        return ActionOutcome.ok(
            git_ops.create_branch(str(self._resolve(p.path)), p.branch, p.checkout)
        )

    def _git_push(self, p: GitPushParams) -> ActionOutcome:
        return ActionOutcome.ok(git_ops.push(str(self._resolve(p.path)), p.remote, p.branch))

    def _make_api_call(self, p: MakeApiCallParams) -> ActionOutcome:
        return ActionOutcome.ok(
            http_ops.make_api_call(
                p.url,
                method=p.method,
                headers=p.headers,
                body=p.body,
                timeout=p.timeout,
                rate_limiter=self.rate_limiter,
                client=self.http_client,
            )
        )

    def _detect_language(self, p: DetectLanguageParams) -> ActionOutcome:
        return ActionOutcome.ok(analysis.detect_language(p.filename, p.content))

    def _analyze_dependencies(self, p: AnalyzeDependenciesParams) -> ActionOutcome:
        return ActionOutcome.ok(analysis.analyze_dependencies(p.content, p.language))

    def _suggest_project_structure(self, p: SuggestProjectStructureParams) -> ActionOutcome:
        return ActionOutcome.ok(analysis.suggest_project_structure(p.project_type))

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------

    def _resolve(self, path: str) -> Path:
        p = Path(path).expanduser()
        if not p.is_absolute():
            p = self.base_dir / p
        return p.resolve()

    def _safe_env(self) -> Optional[list[str]]:
        return self.shell_config.safe_env_vars if self.shell_config.sanitize_env else None


def _shell_outcome(result: shell.ShellResult) -> ActionOutcome:
    if result.success:
        return ActionOutcome.ok(result.to_data())
    return ActionOutcome.failure(
        f"Command exited with code {result.return_code}", data=result.to_data()
    )


def _summarize_validation(error: ValidationError) -> str:
    parts = []
    for err in error.errors():
        loc = ".".join(str(x) for x in err["loc"]) or "(root)"
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)
