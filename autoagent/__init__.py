"""AutoAgent: a policy-gated autonomous task executor."""

__version__ = "0.1.0"
