"""Security policy engine for AutoAgent.

Provides:
- A pure allow / deny / allow-with-approval decision for every action
- Path checks against deny-listed and allow-listed prefixes (deny wins)
- Extension and size ceilings for writes
- Command deny patterns, allow-list and capability toggles
- Sliding-window rate limiting for outbound API calls
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Protocol

from autoagent.core.config import PolicyConfig, RateLimits
from autoagent.core.models import ActionKind, CriticalityLevel, ToolName


class PolicyVerdict(StrEnum):
    ALLOW = "allow"
    DENY = "deny"
    ALLOW_WITH_APPROVAL = "allow_with_approval"


@dataclass(frozen=True)
class PolicyDecision:
    allowed: bool
    requires_approval: bool = False
    reason: str = ""

    @classmethod
    def allow(cls, reason: str = "allowed by policy") -> "PolicyDecision":
        return cls(allowed=True, requires_approval=False, reason=reason)

    @classmethod
    def deny(cls, reason: str) -> "PolicyDecision":
        return cls(allowed=False, requires_approval=False, reason=reason)

    @classmethod
    def gate(cls, reason: str) -> "PolicyDecision":
        return cls(allowed=True, requires_approval=True, reason=reason)

    @property
    def verdict(self) -> PolicyVerdict:
        if not self.allowed:
            return PolicyVerdict.DENY
        if self.requires_approval:
            return PolicyVerdict.ALLOW_WITH_APPROVAL
        return PolicyVerdict.ALLOW


class ActionLike(Protocol):
    tool: str
    parameters: dict[str, Any]


# Policy category of every known tool
ACTION_KINDS: dict[ToolName, ActionKind] = {
    ToolName.READ_FILE: ActionKind.PATH_READ,
    ToolName.LIST_DIRECTORY: ActionKind.PATH_READ,
    ToolName.WRITE_FILE: ActionKind.PATH_WRITE,
    ToolName.CREATE_DIRECTORY: ActionKind.PATH_WRITE,
    ToolName.DELETE_FILE: ActionKind.DELETE,
    ToolName.EXECUTE_COMMAND: ActionKind.EXECUTE,
    ToolName.INSTALL_PACKAGES: ActionKind.INSTALL_PACKAGE,
    ToolName.GIT_INIT: ActionKind.GIT,
    ToolName.GIT_COMMIT: ActionKind.GIT,
    ToolName.GIT_STATUS: ActionKind.GIT,
    ToolName.GIT_CREATE_BRANCH: ActionKind.GIT,
    ToolName.GIT_PUSH: ActionKind.GIT_PUSH,
    ToolName.MAKE_API_CALL: ActionKind.API_CALL,
    ToolName.DETECT_LANGUAGE: ActionKind.ANALYSIS,
    ToolName.ANALYZE_DEPENDENCIES: ActionKind.ANALYSIS,
    ToolName.SUGGEST_PROJECT_STRUCTURE: ActionKind.ANALYSIS,
}

# Parameters holding filesystem targets that must pass the path rules
PATH_PARAMETERS: dict[ToolName, tuple[str, ...]] = {
    ToolName.READ_FILE: ("path",),
    ToolName.WRITE_FILE: ("path",),
    ToolName.DELETE_FILE: ("path",),
    ToolName.CREATE_DIRECTORY: ("path",),
    ToolName.LIST_DIRECTORY: ("path",),
    ToolName.EXECUTE_COMMAND: ("cwd",),
    ToolName.INSTALL_PACKAGES: ("path",),
    ToolName.GIT_INIT: ("path",),
    ToolName.GIT_COMMIT: ("path",),
    ToolName.GIT_STATUS: ("path",),
    ToolName.GIT_CREATE_BRANCH: ("path",),
    ToolName.GIT_PUSH: ("path",),
}

_CRITICALITY: dict[ActionKind, CriticalityLevel] = {
    ActionKind.PATH_READ: CriticalityLevel.LOW,
    ActionKind.ANALYSIS: CriticalityLevel.LOW,
    ActionKind.PATH_WRITE: CriticalityLevel.MEDIUM,
    ActionKind.GIT: CriticalityLevel.MEDIUM,
    ActionKind.DELETE: CriticalityLevel.HIGH,
    ActionKind.EXECUTE: CriticalityLevel.HIGH,
    ActionKind.INSTALL_PACKAGE: CriticalityLevel.HIGH,
    ActionKind.GIT_PUSH: CriticalityLevel.HIGH,
    ActionKind.API_CALL: CriticalityLevel.HIGH,
}

_SUBSHELL_MARKERS = ("`", "$(", "${")


def criticality_for(tool: str) -> CriticalityLevel:
    """Derived criticality of a tool; unknown tools rank highest."""
    known = ToolName.lookup(tool)
    if known is None:
        return CriticalityLevel.HIGH
    return _CRITICALITY[ACTION_KINDS[known]]


class PolicyEngine:
    """Pure decision function over an immutable PolicyConfig snapshot.

    Relative paths (targets and configured prefixes alike) are resolved
    against ``base_dir``. The engine holds no mutable state, so one
    instance may serve any number of concurrent loops.
    """

    def __init__(self, config: PolicyConfig, base_dir: Optional[Path] = None):
        self.config = config
        self.base_dir = (base_dir or Path.cwd()).resolve()
        self._denied_roots = tuple(self._resolve(p) for p in config.denied_paths)
        self._allowed_roots = tuple(self._resolve(p) for p in config.allowed_paths)

    # -------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------

    def decide(self, action: ActionLike) -> PolicyDecision:
        tool = ToolName.lookup(action.tool)
        if tool is None:
            return PolicyDecision.deny(f"Unknown tool: {action.tool}")

        params: Mapping[str, Any] = action.parameters or {}

        for name in PATH_PARAMETERS.get(tool, ()):
            value = params.get(name)
            if value is None:
                continue
            path_decision = self.check_path(value)
            if not path_decision.allowed:
                return path_decision

        kind = ACTION_KINDS[tool]
        if kind in (ActionKind.PATH_READ, ActionKind.GIT, ActionKind.ANALYSIS):
            return PolicyDecision.allow()
        if kind == ActionKind.PATH_WRITE:
            if tool == ToolName.WRITE_FILE:
                return self._check_write(params)
            return PolicyDecision.allow()
        if kind == ActionKind.DELETE:
            return self._check_delete()
        if kind == ActionKind.EXECUTE:
            return self.check_command(str(params.get("command") or ""))
        if kind == ActionKind.INSTALL_PACKAGE:
            return self._check_install(params)
        if kind == ActionKind.GIT_PUSH:
            return self._check_git_push()
        return self._check_api_call()

    # -------------------------------------------------------------------
    # Individual rules
    # -------------------------------------------------------------------

    def check_path(self, path: Any) -> PolicyDecision:
        """Deny-listed prefixes first, then require an allow-listed root."""
        if not isinstance(path, (str, Path)) or str(path).strip() == "":
            return PolicyDecision.deny(f"Invalid path: {path!r}")

        raw = str(path)
        if "\x00" in raw:
            return PolicyDecision.deny("Access denied: path contains a null byte")
        lowered = raw.lower()
        if "..%2f" in lowered or "%2f.." in lowered:
            return PolicyDecision.deny(f"Access denied: encoded traversal in {raw}")

        resolved = self._resolve(raw)

        for denied_raw, denied in zip(self.config.denied_paths, self._denied_roots):
            if _starts_with_path(resolved, denied):
                return PolicyDecision.deny(
                    f"Access denied: {raw} is inside a denied path ({denied_raw})"
                )

        if not any(_starts_with_path(resolved, root) for root in self._allowed_roots):
            return PolicyDecision.deny(f"Access denied: {raw} is outside allowed roots")

        return PolicyDecision.allow()

    def check_extension(self, path: str) -> PolicyDecision:
        ext = _extension(path)
        if ext not in self.config.allowed_extensions:
            return PolicyDecision.deny(f"File extension not allowed: {ext or '(none)'}")
        return PolicyDecision.allow()

    def check_size(self, size_bytes: int) -> PolicyDecision:
        if size_bytes > self.config.max_file_size_bytes:
            return PolicyDecision.deny(
                f"File too large: {size_bytes / 1024 / 1024:.2f}MB "
                f"(max: {self.config.max_file_size_mb}MB)"
            )
        return PolicyDecision.allow()

    def check_command(self, command: str) -> PolicyDecision:
        """Deny patterns win, then the capability toggle, then the allow-list."""
        stripped = command.strip()
        if not stripped:
            return PolicyDecision.deny("Empty command")

        program = _base_command(_skip_env_assignments(stripped))
        for pattern in self.config.denied_commands:
            if pattern in stripped or program == pattern:
                return PolicyDecision.deny(f"Command denied by pattern: {pattern}")

        if not self.config.enable_command_execution:
            return PolicyDecision.deny("Command execution is disabled in the configuration")

        unlisted = _unlisted_programs(stripped, self.config.allowed_commands)
        if unlisted:
            return PolicyDecision.gate(
                f"Command not on the allow-list: {', '.join(unlisted)}. Approval required."
            )

        if self.config.require_approval_for_exec or self.config.critical_actions.execute:
            return PolicyDecision.gate("Command execution requires approval")

        return PolicyDecision.allow()

    def _check_write(self, params: Mapping[str, Any]) -> PolicyDecision:
        ext_decision = self.check_extension(str(params.get("path") or ""))
        if not ext_decision.allowed:
            return ext_decision
        content = params.get("content")
        size = len(content.encode("utf-8")) if isinstance(content, str) else 0
        return self.check_size(size)

    def _check_delete(self) -> PolicyDecision:
        if self.config.critical_actions.delete or self.config.require_approval_for_delete:
            return PolicyDecision.gate("File deletion requires approval")
        return PolicyDecision.allow()

    def _check_install(self, params: Mapping[str, Any]) -> PolicyDecision:
        if not self.config.enable_command_execution:
            return PolicyDecision.deny("Command execution is disabled in the configuration")
        if self.config.critical_actions.install_package:
            packages = params.get("packages") or []
            names = ", ".join(str(p) for p in packages) if isinstance(packages, list) else str(packages)
            return PolicyDecision.gate(f'Installing packages "{names}" requires approval')
        return PolicyDecision.allow()

    def _check_git_push(self) -> PolicyDecision:
        if self.config.critical_actions.git_push:
            return PolicyDecision.gate("Git push requires approval")
        return PolicyDecision.allow()

    def _check_api_call(self) -> PolicyDecision:
        if not self.config.enable_api_calls:
            return PolicyDecision.deny("API calls are disabled in the configuration")
        if self.config.critical_actions.api_call or self.config.require_approval_for_api:
            return PolicyDecision.gate("API call requires approval")
        return PolicyDecision.allow()

    def _resolve(self, path: str | Path) -> Path:
        p = Path(path).expanduser()
        if not p.is_absolute():
            p = self.base_dir / p
        return p.resolve()


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------

@dataclass
class RequestRateLimiter:
    """Sliding-window limiter over the last minute and the last hour.

    Shared by every loop in the process, so all access is locked.
    """

    max_per_minute: int = 60
    max_per_hour: int = 1000
    clock: Callable[[], float] = time.monotonic
    _timestamps: deque[float] = field(default_factory=deque)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @classmethod
    def from_config(cls, limits: RateLimits) -> "RequestRateLimiter":
        return cls(
            max_per_minute=limits.max_requests_per_minute,
            max_per_hour=limits.max_requests_per_hour,
        )

    def _prune(self, now: float) -> None:
        cutoff = now - 3600
        while self._timestamps and self._timestamps[0] <= cutoff:
            self._timestamps.popleft()

    def _exhausted_reason(self, now: float) -> Optional[str]:
        self._prune(now)
        last_minute = sum(1 for t in self._timestamps if t > now - 60)
        if last_minute >= self.max_per_minute:
            return f"Rate limit of {self.max_per_minute} requests/minute reached"
        if len(self._timestamps) >= self.max_per_hour:
            return f"Rate limit of {self.max_per_hour} requests/hour reached"
        return None

    def check(self) -> Optional[str]:
        """Return a denial reason if a request now would exceed a limit."""
        with self._lock:
            return self._exhausted_reason(self.clock())

    def acquire(self) -> Optional[str]:
        """Record a request if allowed; return a denial reason otherwise."""
        with self._lock:
            now = self.clock()
            reason = self._exhausted_reason(now)
            if reason is None:
                self._timestamps.append(now)
            return reason

    def count(self) -> int:
        with self._lock:
            self._prune(self.clock())
            return len(self._timestamps)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _unlisted_programs(command: str, allowed: tuple[str, ...]) -> list[str]:
    """Programs in any command segment that are not allow-listed.

    Subshell syntax cannot be attributed to a program and is reported as-is.
    """
    unlisted: list[str] = []
    if any(marker in command for marker in _SUBSHELL_MARKERS):
        unlisted.append("subshell")

    normalized = command
    for sep in ("&&", "||"):
        normalized = normalized.replace(sep, "\x00")
    for sep in ("\n", ";", "|"):
        normalized = normalized.replace(sep, "\x00")

    for segment in normalized.split("\x00"):
        base = _base_command(_skip_env_assignments(segment))
        if base and base not in allowed and base not in unlisted:
            unlisted.append(base)
    return unlisted


def _skip_env_assignments(command_segment: str) -> str:
    rest = command_segment.strip()
    while rest:
        parts = rest.split(maxsplit=1)
        word = parts[0]
        if "=" in word and (word[0].isalpha() or word[0] == "_"):
            rest = parts[1] if len(parts) > 1 else ""
            rest = rest.lstrip()
            continue
        return rest
    return ""


def _base_command(command_segment: str) -> str:
    if not command_segment.strip():
        return ""
    head = command_segment.split(maxsplit=1)[0]
    return Path(head).name


def _extension(path: str) -> str:
    # ".gitignore" and ".env" count as extensions of dot-files
    name = Path(path).name
    idx = name.rfind(".")
    return name[idx:].lower() if idx >= 0 else ""


def _starts_with_path(path: Path, prefix: Path) -> bool:
    try:
        path.relative_to(prefix)
        return True
    except ValueError:
        return False
