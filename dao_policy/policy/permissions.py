"""
Permission Index — Aggregate a caller's permissions across every role.

A caller holds the union of the permission sets of all roles it matches.
An action ``A`` on a proposal of kind ``K`` is allowed when that union
contains ``K:A``, ``K:*``, ``*:A`` or ``*:*``.
"""

from __future__ import annotations

import logging

from dao_policy.policy.roles import PatternCache, matches
from dao_policy.policy.schema import (
    WILDCARD,
    Action,
    Policy,
    ProposalKind,
    UserInfo,
    label_of,
)

logger = logging.getLogger(__name__)


def matched_roles(
    policy: Policy, user: UserInfo, cache: PatternCache | None = None
) -> list[str]:
    """Names of the roles ``user`` matches, in policy order."""
    return [role.name for role in policy.roles if matches(role.kind, user, cache)]


def user_permissions(
    policy: Policy, user: UserInfo, cache: PatternCache | None = None
) -> frozenset[str]:
    """Union of the permissions of every role ``user`` matches."""
    result: set[str] = set()
    for role in policy.roles:
        if matches(role.kind, user, cache):
            result |= role.permissions
    return frozenset(result)


def candidate_permissions(
    proposal_kind: ProposalKind | str, action: Action | str
) -> tuple[str, str, str, str]:
    """The four permission strings that would allow ``action`` on ``proposal_kind``."""
    kind = label_of(proposal_kind)
    act = label_of(action)
    return (
        f"{kind}:{act}",
        f"{kind}:{WILDCARD}",
        f"{WILDCARD}:{act}",
        f"{WILDCARD}:{WILDCARD}",
    )


def granting_permission(
    permissions: frozenset[str] | set[str],
    proposal_kind: ProposalKind | str,
    action: Action | str,
) -> str | None:
    """Most specific permission in ``permissions`` that allows the action, if any."""
    for candidate in candidate_permissions(proposal_kind, action):
        if candidate in permissions:
            return candidate
    return None


def can_execute(
    policy: Policy,
    user: UserInfo,
    proposal_kind: ProposalKind | str,
    action: Action | str,
    cache: PatternCache | None = None,
) -> bool:
    """Whether ``user`` may perform ``action`` on proposals of ``proposal_kind``."""
    permissions = user_permissions(policy, user, cache)
    granted = granting_permission(permissions, proposal_kind, action)
    logger.debug(
        "Permission check: account=%s kind=%s action=%s granted_by=%s",
        user.account_id,
        label_of(proposal_kind),
        label_of(action),
        granted,
    )
    return granted is not None
