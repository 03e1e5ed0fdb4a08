"""Security primitives for AutoAgent."""

from autoagent.security.policy import (
    PolicyDecision,
    PolicyEngine,
    PolicyVerdict,
    RequestRateLimiter,
    criticality_for,
)

__all__ = [
    "PolicyDecision",
    "PolicyEngine",
    "PolicyVerdict",
    "RequestRateLimiter",
    "criticality_for",
]
