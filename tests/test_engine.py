"""
Tests for the Policy Engine facade.

Validates:
- Permission checks and explanations
- Proposal status through the facade
- Policy replacement and pattern cache invalidation
- Static policy audit
"""

from __future__ import annotations

import pytest

from dao_policy.policy.codec import policy_hash
from dao_policy.policy.engine import PolicyEngine, audit_policy
from dao_policy.policy.errors import InvalidPatternError
from dao_policy.policy.schema import (
    Action,
    Everyone,
    Group,
    MemberBalance,
    Policy,
    Proposal,
    ProposalKind,
    ProposalStatus,
    Ratio,
    Regex,
    RolePermission,
    RoleWeight,
    TokenWeight,
    UserInfo,
    Vote,
    VotePolicy,
    Weight,
    default_policy,
)

ADMIN = UserInfo(account_id="admin.x")
GUEST = UserInfo(account_id="guest.x")
COUNCIL_1 = UserInfo(account_id="council-1.x")


def _regex_policy(pattern: str) -> Policy:
    return Policy(
        roles=(
            RolePermission(name="all", kind=Everyone(), permissions={"*:add_proposal"}),
            RolePermission(name="council", kind=Regex(pattern=pattern), permissions={"*:*"}),
        ),
        default_vote_policy=VotePolicy(
            weight_kind=TokenWeight(), threshold=Ratio(numerator=1, denominator=2)
        ),
    )


class TestPolicyEngine:
    """Facade over a single policy snapshot."""

    def setup_method(self):
        self.engine = PolicyEngine(default_policy("admin.x"))

    def test_admin_can_do_everything(self):
        assert self.engine.can_execute(ADMIN, ProposalKind.POLICY, Action.VOTE_APPROVE)
        assert self.engine.user_permissions(ADMIN) == frozenset({"*:add_proposal", "*:*"})

    def test_guest_can_only_propose(self):
        assert self.engine.can_execute(GUEST, ProposalKind.TRANSFER, Action.ADD_PROPOSAL)
        assert not self.engine.can_execute(GUEST, ProposalKind.TRANSFER, Action.FINALIZE)

    def test_check_permission_allowed(self):
        result = self.engine.check_permission(ADMIN, ProposalKind.CALL, Action.FINALIZE)
        assert result.allowed
        assert result.granted_by == "*:*"
        assert result.matched_roles == ["all", "council"]
        assert "allowed" in result.reason

    def test_check_permission_denied(self):
        result = self.engine.check_permission(GUEST, "call", "finalize")
        assert not result.allowed
        assert result.granted_by is None
        assert result.matched_roles == ["all"]
        assert result.proposal_kind == "call"
        assert "grants call:finalize" in result.reason

    def test_no_matching_role(self):
        engine = PolicyEngine(Policy())
        result = engine.check_permission(GUEST, "call", "finalize")
        assert not result.allowed
        assert "matches no role" in result.reason

    def test_check_permission_agrees_with_can_execute(self):
        for user in (ADMIN, GUEST):
            for kind in ProposalKind:
                for action in Action:
                    assert (
                        self.engine.check_permission(user, kind, action).allowed
                        == self.engine.can_execute(user, kind, action)
                    )

    def test_proposal_status(self):
        proposal = Proposal(kind=ProposalKind.TRANSFER, vote_counts={Vote.APPROVE: 1})
        assert self.engine.proposal_status(proposal, 0) == ProposalStatus.APPROVED

    def test_tally_details(self):
        proposal = Proposal(kind=ProposalKind.TRANSFER)
        result = self.engine.tally(proposal, 0)
        assert result.threshold == 1
        assert result.status == ProposalStatus.IN_PROGRESS
        assert result.vote_policy == VotePolicy()

    def test_is_token_weighted(self):
        assert not self.engine.is_token_weighted(ProposalKind.TRANSFER)
        assert self.engine.vote_policy_for(ProposalKind.TRANSFER) == VotePolicy()


class TestPolicyReplacement:
    """Replacing the policy swaps the snapshot and clears compiled patterns."""

    def test_replace_policy(self):
        engine = PolicyEngine(default_policy("admin.x"))
        assert not engine.can_execute(GUEST, ProposalKind.CALL, Action.FINALIZE)

        engine.replace_policy(default_policy("guest.x"))
        assert engine.can_execute(GUEST, ProposalKind.CALL, Action.FINALIZE)
        assert not engine.can_execute(ADMIN, ProposalKind.CALL, Action.FINALIZE)

    def test_cache_cleared_on_replace(self):
        engine = PolicyEngine(_regex_policy(r"^council-"))
        assert engine.can_execute(COUNCIL_1, ProposalKind.CALL, Action.FINALIZE)
        assert r"^council-" in engine.pattern_cache

        engine.replace_policy(_regex_policy(r"^admin\."))
        assert len(engine.pattern_cache) == 0
        assert not engine.can_execute(COUNCIL_1, ProposalKind.CALL, Action.FINALIZE)
        assert engine.can_execute(ADMIN, ProposalKind.CALL, Action.FINALIZE)

    def test_cached_engine_matches_uncached_functions(self):
        from dao_policy.policy.permissions import can_execute

        policy = _regex_policy(r"^council-\d+\.x$")
        engine = PolicyEngine(policy, pattern_cache_size=1)
        for user in (ADMIN, GUEST, COUNCIL_1):
            for action in Action:
                assert engine.can_execute(user, ProposalKind.VOTE, action) == can_execute(
                    policy, user, ProposalKind.VOTE, action
                )

    def test_invalid_pattern_fails_at_evaluation(self):
        engine = PolicyEngine(_regex_policy("(unclosed"))
        with pytest.raises(InvalidPatternError):
            engine.can_execute(GUEST, ProposalKind.CALL, Action.ADD_PROPOSAL)

    def test_replaced_policy_untouched(self):
        first = default_policy("admin.x")
        engine = PolicyEngine(first)
        engine.replace_policy(default_policy("guest.x"))
        assert first == default_policy("admin.x")
        assert engine.policy == default_policy("guest.x")

    def test_snapshot_cannot_be_patched(self):
        engine = PolicyEngine(default_policy("admin.x"))
        proposal = Proposal(kind=ProposalKind.TRANSFER, vote_counts={Vote.APPROVE: 1})
        before = policy_hash(engine.policy)
        with pytest.raises(TypeError):
            engine.policy.vote_policy["transfer"] = VotePolicy(
                weight_kind=TokenWeight(), threshold=Weight(value=5)
            )
        assert engine.proposal_status(proposal, 0) == ProposalStatus.APPROVED
        assert policy_hash(engine.policy) == before


class TestAuditPolicy:
    def test_default_policy_clean(self):
        assert audit_policy(default_policy("admin.x")) == []

    def test_missing_role(self):
        policy = Policy(default_vote_policy=VotePolicy(weight_kind=RoleWeight(role="council")))
        problems = audit_policy(policy)
        assert len(problems) == 1
        assert "missing role 'council'" in problems[0]

    def test_unsized_role(self):
        policy = Policy(
            roles=(RolePermission(name="whales", kind=MemberBalance(threshold=10)),),
            vote_policy={
                "transfer": VotePolicy(weight_kind=RoleWeight(role="whales")),
            },
            default_vote_policy=VotePolicy(weight_kind=TokenWeight(), threshold=Weight(value=1)),
        )
        problems = audit_policy(policy)
        assert len(problems) == 1
        assert "'transfer'" in problems[0]
        assert "MemberBalance" in problems[0]

    def test_zero_denominator(self):
        policy = Policy(
            default_vote_policy=VotePolicy(
                weight_kind=TokenWeight(), threshold=Ratio(numerator=1, denominator=0)
            )
        )
        problems = audit_policy(policy)
        assert problems == ["default vote policy: ratio 1/0 has a zero denominator"]

    def test_role_weighted_ratio_not_resolved(self):
        """Role-weighted thresholds never resolve their ratio, so 1/0 is harmless there."""
        policy = Policy(
            roles=(RolePermission(name="council", kind=Group(accounts={"a.x"})),),
            default_vote_policy=VotePolicy(
                weight_kind=RoleWeight(role="council"), threshold=Ratio(numerator=1, denominator=0)
            ),
        )
        assert audit_policy(policy) == []

    def test_patterns_not_compiled(self):
        assert audit_policy(_regex_policy("(unclosed")) == []
