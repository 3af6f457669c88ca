"""
Vote Tally — Decide whether an in-progress proposal reaches a terminal status.

State machine over ProposalStatus. This module only ever moves a proposal
out of IN_PROGRESS into APPROVED, REJECTED or REMOVED, or leaves it where
it is:

1. Select the vote policy for the proposal's kind (override, else default).
2. Resolve the threshold to an absolute weight:
   - TokenWeight → the threshold applied to the total token supply
   - RoleWeight  → the size of the named Group role
3. Compare, in fixed precedence Approve → Reject → Remove, inclusively.

If several outcomes cross the threshold at once, Approve wins regardless
of relative magnitude.

Everything here is pure: persisting the new status and triggering the
effects of a transition belong to the proposal lifecycle manager.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from dao_policy.policy.errors import (
    MissingRoleError,
    ProposalStateError,
    UnsupportedRoleError,
)
from dao_policy.policy.roles import kind_name, role_size
from dao_policy.policy.schema import (
    Policy,
    Proposal,
    ProposalKind,
    ProposalStatus,
    RoleWeight,
    TokenWeight,
    Vote,
    VotePolicy,
    label_of,
)
from dao_policy.policy.weights import to_weight

logger = logging.getLogger(__name__)

# Order matters: the first outcome whose count reaches the threshold wins.
OUTCOME_PRECEDENCE: tuple[tuple[Vote, ProposalStatus], ...] = (
    (Vote.APPROVE, ProposalStatus.APPROVED),
    (Vote.REJECT, ProposalStatus.REJECTED),
    (Vote.REMOVE, ProposalStatus.REMOVED),
)


@dataclass(frozen=True)
class TallyResult:
    """Outcome of tallying a proposal, with the numbers behind it."""

    status: ProposalStatus
    threshold: int
    vote_policy: VotePolicy
    overridden: bool

    @property
    def is_terminal(self) -> bool:
        return self.status != ProposalStatus.IN_PROGRESS


def select_vote_policy(policy: Policy, proposal_kind: ProposalKind | str) -> VotePolicy:
    """Vote policy override for ``proposal_kind``, else the default."""
    return policy.vote_policy.get(label_of(proposal_kind), policy.default_vote_policy)


def is_token_weighted(policy: Policy, proposal_kind: ProposalKind | str) -> bool:
    """Whether votes on ``proposal_kind`` are weighted by token balance."""
    weight_kind = select_vote_policy(policy, proposal_kind).weight_kind
    if isinstance(weight_kind, TokenWeight):
        return True
    if isinstance(weight_kind, RoleWeight):
        return False
    raise TypeError(f"Unknown weight kind: {weight_kind!r}")


def resolve_threshold(policy: Policy, vote_policy: VotePolicy, total_supply: int) -> int:
    """
    Resolve a vote policy's threshold to an absolute weight.

    Raises:
        MissingRoleError: RoleWeight names a role that does not exist.
        UnsupportedRoleError: RoleWeight names a role without a countable size.
        ZeroDenominatorError: TokenWeight with a zero-denominator ratio.
    """
    weight_kind = vote_policy.weight_kind
    if isinstance(weight_kind, TokenWeight):
        return to_weight(vote_policy.threshold, total_supply)
    if isinstance(weight_kind, RoleWeight):
        role = policy.get_role(weight_kind.role)
        if role is None:
            raise MissingRoleError(weight_kind.role)
        size = role_size(role.kind)
        if size is None:
            raise UnsupportedRoleError(weight_kind.role, kind_name(role.kind))
        return size
    raise TypeError(f"Unknown weight kind: {weight_kind!r}")


def tally(policy: Policy, proposal: Proposal, total_supply: int) -> TallyResult:
    """
    Tally an in-progress proposal against the policy.

    Args:
        policy: Policy snapshot to evaluate against.
        proposal: The proposal's kind, status and vote counters.
        total_supply: Total token supply, used by token-weighted policies.

    Returns:
        TallyResult with the new status, the resolved threshold and the
        vote policy that produced it.

    Raises:
        ProposalStateError: The proposal is not IN_PROGRESS.
        PolicyConfigurationError: The vote policy cannot be resolved.
    """
    if proposal.status != ProposalStatus.IN_PROGRESS:
        raise ProposalStateError(proposal.status)

    kind = label_of(proposal.kind)
    vote_policy = select_vote_policy(policy, kind)
    threshold = resolve_threshold(policy, vote_policy, total_supply)

    status = proposal.status
    for vote, outcome in OUTCOME_PRECEDENCE:
        if proposal.count(vote) >= threshold:
            status = outcome
            break

    logger.debug(
        "Tally: kind=%s threshold=%d approve=%d reject=%d remove=%d -> %s",
        kind,
        threshold,
        proposal.count(Vote.APPROVE),
        proposal.count(Vote.REJECT),
        proposal.count(Vote.REMOVE),
        status.value,
    )

    return TallyResult(
        status=status,
        threshold=threshold,
        vote_policy=vote_policy,
        overridden=kind in policy.vote_policy,
    )


def proposal_status(policy: Policy, proposal: Proposal, total_supply: int) -> ProposalStatus:
    """
    New status for an in-progress proposal.

    Usually called after a vote changes the proposal's counters.
    """
    return tally(policy, proposal, total_supply).status
