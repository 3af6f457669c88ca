"""
Policy Engine — Facade answering the two governance questions.

1. May this caller perform this action on this kind of proposal?
2. Do this in-progress proposal's votes cross the threshold, and if so,
   which terminal status does it reach?

The engine holds a single immutable Policy snapshot and the compiled
pattern cache derived from it. Governance replaces the policy wholesale
through ``replace_policy``; the cache is cleared at exactly that point so
cached pattern matching always agrees with the current snapshot.

The engine does no I/O and keeps no memory between calls beyond the
snapshot and its cache. Callers serialize evaluations against their own
ledger of state changes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from dao_policy.policy import permissions
from dao_policy.policy import tally as vote_tally
from dao_policy.policy.codec import policy_hash
from dao_policy.policy.roles import PatternCache, kind_name, role_size
from dao_policy.policy.schema import (
    Action,
    Policy,
    Proposal,
    ProposalKind,
    ProposalStatus,
    Ratio,
    RoleWeight,
    TokenWeight,
    UserInfo,
    VotePolicy,
    Weight,
    label_of,
)
from dao_policy.policy.tally import TallyResult

logger = logging.getLogger(__name__)


@dataclass
class PermissionCheckResult:
    """Result of checking an action against the caller's permissions."""

    allowed: bool
    account_id: str
    proposal_kind: str
    action: str
    matched_roles: list[str] = field(default_factory=list)
    granted_by: str | None = None

    @property
    def reason(self) -> str:
        if self.allowed:
            return (
                f"Action {self.action} on {self.proposal_kind} allowed for "
                f"'{self.account_id}' by permission '{self.granted_by}'"
            )
        if not self.matched_roles:
            return f"'{self.account_id}' matches no role"
        return (
            f"No role of '{self.account_id}' ({', '.join(self.matched_roles)}) "
            f"grants {self.proposal_kind}:{self.action}"
        )


class PolicyEngine:
    """
    Central policy evaluation engine.

    Usage:
        engine = PolicyEngine(default_policy("admin.near"))
        engine.can_execute(user, ProposalKind.TRANSFER, Action.VOTE_APPROVE)
        engine.proposal_status(proposal, total_supply)
    """

    def __init__(self, policy: Policy, pattern_cache_size: int | None = None) -> None:
        """
        Initialize with a policy snapshot.

        Args:
            policy: The policy to evaluate against.
            pattern_cache_size: Compiled pattern cache bound. Defaults to settings.
        """
        self._policy = policy
        self._patterns = PatternCache(pattern_cache_size)

    @property
    def policy(self) -> Policy:
        return self._policy

    @property
    def pattern_cache(self) -> PatternCache:
        return self._patterns

    def replace_policy(self, policy: Policy) -> None:
        """
        Install a new policy snapshot (governance action outcome).

        Clears the compiled pattern cache.
        """
        self._policy = policy
        self._patterns.clear()
        logger.info(
            "Policy replaced: hash=%s roles=%d", policy_hash(policy)[:16], len(policy.roles)
        )

    # ── Permissions ──────────────────────────────────────────

    def user_permissions(self, user: UserInfo) -> frozenset[str]:
        """All permissions ``user`` holds across the roles it matches."""
        return permissions.user_permissions(self._policy, user, self._patterns)

    def can_execute(
        self,
        user: UserInfo,
        proposal_kind: ProposalKind | str,
        action: Action | str,
    ) -> bool:
        """Whether ``user`` may perform ``action`` on proposals of ``proposal_kind``."""
        return permissions.can_execute(
            self._policy, user, proposal_kind, action, self._patterns
        )

    def check_permission(
        self,
        user: UserInfo,
        proposal_kind: ProposalKind | str,
        action: Action | str,
    ) -> PermissionCheckResult:
        """
        Check an action and explain the decision.

        Same decision as ``can_execute``, plus which roles matched and which
        permission string granted the action.
        """
        roles = permissions.matched_roles(self._policy, user, self._patterns)
        granted = permissions.granting_permission(
            self.user_permissions(user), proposal_kind, action
        )
        result = PermissionCheckResult(
            allowed=granted is not None,
            account_id=user.account_id,
            proposal_kind=label_of(proposal_kind),
            action=label_of(action),
            matched_roles=roles,
            granted_by=granted,
        )
        logger.debug("Permission check: %s", result.reason)
        return result

    # ── Votes ────────────────────────────────────────────────

    def is_token_weighted(self, proposal_kind: ProposalKind | str) -> bool:
        return vote_tally.is_token_weighted(self._policy, proposal_kind)

    def vote_policy_for(self, proposal_kind: ProposalKind | str) -> VotePolicy:
        return vote_tally.select_vote_policy(self._policy, proposal_kind)

    def tally(self, proposal: Proposal, total_supply: int) -> TallyResult:
        """Tally a proposal, returning the status and the threshold behind it."""
        result = vote_tally.tally(self._policy, proposal, total_supply)
        if result.is_terminal:
            logger.info(
                "Proposal transition: kind=%s %s -> %s (threshold=%d)",
                label_of(proposal.kind),
                proposal.status.value,
                result.status.value,
                result.threshold,
            )
        return result

    def proposal_status(self, proposal: Proposal, total_supply: int) -> ProposalStatus:
        """New status for an in-progress proposal."""
        return self.tally(proposal, total_supply).status


def _vote_policy_problems(policy: Policy, label: str, vote_policy: VotePolicy) -> list[str]:
    problems: list[str] = []
    weight_kind = vote_policy.weight_kind
    if isinstance(weight_kind, RoleWeight):
        role = policy.get_role(weight_kind.role)
        if role is None:
            problems.append(f"{label}: references missing role '{weight_kind.role}'")
        elif role_size(role.kind) is None:
            problems.append(
                f"{label}: role '{weight_kind.role}' is {kind_name(role.kind)}, "
                f"which has no countable size"
            )
    elif isinstance(weight_kind, TokenWeight):
        # Role-weighted thresholds are the role size; only token weights resolve the ratio
        threshold = vote_policy.threshold
        if isinstance(threshold, Ratio):
            if threshold.denominator == 0:
                problems.append(
                    f"{label}: ratio {threshold.numerator}/0 has a zero denominator"
                )
        elif not isinstance(threshold, Weight):
            raise TypeError(f"Unknown weight specification: {threshold!r}")
    else:
        raise TypeError(f"Unknown weight kind: {weight_kind!r}")
    return problems


def audit_policy(policy: Policy) -> list[str]:
    """
    Report configuration problems that would abort a tally.

    Checks every vote policy for RoleWeight references to missing or
    unsized roles and for zero-denominator ratios. Account patterns are not
    compiled here; an invalid pattern only fails when it is matched.

    Returns:
        Human-readable problem descriptions; empty if none were found.
    """
    problems = _vote_policy_problems(policy, "default vote policy", policy.default_vote_policy)
    for label in sorted(policy.vote_policy):
        problems.extend(
            _vote_policy_problems(policy, f"vote policy '{label}'", policy.vote_policy[label])
        )
    for problem in problems:
        logger.warning("Policy problem: %s", problem)
    return problems
