"""Custom exception hierarchy for AutoAgent.

All exceptions inherit from AutoAgentError so callers can catch broadly
or narrowly as needed. Expected failures inside the execution loop
(policy denials, rejected approvals, tool failures) are NOT exceptions;
they travel as ActionOutcome values tagged with a FailureKind.
"""


class AutoAgentError(Exception):
    """Base exception for all AutoAgent errors."""


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

class DatabaseError(AutoAgentError):
    """Failed database operation."""


class SchemaInitError(DatabaseError):
    """Failed to initialize database schema."""


class ConnectionError(DatabaseError):
    """Failed to connect to database."""


# ---------------------------------------------------------------------------
# LLM
# ---------------------------------------------------------------------------

class LLMError(AutoAgentError):
    """Failed LLM operation."""


class RateLimitError(LLMError):
    """Hit API rate limit."""


class AuthenticationError(LLMError):
    """Invalid API key or unauthorized."""


class ModelNotFoundError(LLMError):
    """Requested model not available."""


class ResponseParseError(LLMError):
    """Failed to parse LLM response."""


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------

class ToolError(AutoAgentError):
    """Tool execution failure."""


class ShellTimeoutError(ToolError):
    """Shell command exceeded timeout."""


class GitOperationError(ToolError):
    """Git operation failed."""


# ---------------------------------------------------------------------------
# Approvals
# ---------------------------------------------------------------------------

class ApprovalError(AutoAgentError):
    """Approval rendezvous failure."""


class ApprovalNotFoundError(ApprovalError):
    """No approval request exists with the given id."""

    def __init__(self, approval_id: object):
        self.approval_id = approval_id
        super().__init__(f"Approval request not found: {approval_id}")


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------

class TaskStateError(AutoAgentError):
    """Illegal task status transition."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class ConfigError(AutoAgentError):
    """Invalid or missing configuration."""
