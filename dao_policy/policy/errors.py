"""
Policy Errors — Failure categories raised by the policy engine.

Two families matter to callers:

- PolicyConfigurationError: the policy itself is broken (missing role,
  unsized role, bad pattern, zero denominator). The whole governance
  transaction should be aborted.
- ProposalStateError: the caller asked for an evaluation out of protocol.
  Only the single evaluation is rejected.

PolicyFormatError covers decoding failures at the serialization boundary.
"""

from __future__ import annotations

from typing import Any


class PolicyError(Exception):
    """Base class for every error raised by the policy engine."""
    pass


class PolicyConfigurationError(PolicyError):
    """Raised when a policy cannot be evaluated as configured."""
    pass


class MissingRoleError(PolicyConfigurationError):
    """A RoleWeight vote policy names a role that does not exist."""

    def __init__(self, role: str) -> None:
        self.role = role
        super().__init__(f"Vote policy references missing role '{role}'")


class UnsupportedRoleError(PolicyConfigurationError):
    """A RoleWeight vote policy names a role whose kind has no finite size."""

    def __init__(self, role: str, kind: str) -> None:
        self.role = role
        self.kind = kind
        super().__init__(
            f"Role '{role}' of kind {kind} has no countable size and "
            f"cannot be used for role-weighted voting"
        )


class InvalidPatternError(PolicyConfigurationError):
    """A Regex role carries a pattern that does not compile."""

    def __init__(self, pattern: str, reason: str) -> None:
        self.pattern = pattern
        self.reason = reason
        super().__init__(f"Invalid account pattern {pattern!r}: {reason}")


class ZeroDenominatorError(PolicyConfigurationError, ZeroDivisionError):
    """A ratio threshold has a zero denominator."""

    def __init__(self, numerator: int) -> None:
        self.numerator = numerator
        super().__init__(f"Ratio {numerator}/0 has a zero denominator")


class ProposalStateError(PolicyError):
    """Status was evaluated on a proposal that is no longer in progress."""

    def __init__(self, status: Any) -> None:
        self.status = status
        label = getattr(status, "value", status)
        super().__init__(f"Proposal is not in progress (status: {label})")


class PolicyFormatError(PolicyError, ValueError):
    """Raised when encoded policy data has an unknown version or shape."""
    pass
