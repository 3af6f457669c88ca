"""
Role Matching — Decide whether a caller belongs to a role.

Role kinds are a closed set (Everyone, Member, MemberBalance, Group,
Regex). Every function here handles each variant explicitly and treats
anything else as a programming error.

Regex roles compile their pattern at match time. A PatternCache keeps the
compiled matchers keyed by pattern string; the engine owns one cache per
policy snapshot and clears it when the policy is replaced.
"""

from __future__ import annotations

import logging
import re
from collections import OrderedDict

from dao_policy.config import settings
from dao_policy.policy.errors import InvalidPatternError
from dao_policy.policy.schema import (
    Everyone,
    Group,
    Member,
    MemberBalance,
    Regex,
    RoleKind,
    UserInfo,
)

logger = logging.getLogger(__name__)


def compile_pattern(pattern: str) -> re.Pattern[str]:
    """Compile an account pattern, raising InvalidPatternError on failure."""
    try:
        return re.compile(pattern)
    except re.error as e:
        raise InvalidPatternError(pattern, str(e)) from e


class PatternCache:
    """
    Compiled account patterns keyed by pattern string.

    Bounded: once ``max_size`` patterns are held, the oldest one is evicted.
    Patterns that fail to compile are never stored, so they fail again on
    every lookup exactly as uncached matching would.
    """

    def __init__(self, max_size: int | None = None) -> None:
        self.max_size = settings.pattern_cache_size if max_size is None else max_size
        self._patterns: OrderedDict[str, re.Pattern[str]] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def get(self, pattern: str) -> re.Pattern[str]:
        compiled = self._patterns.get(pattern)
        if compiled is not None:
            self.hits += 1
            return compiled

        self.misses += 1
        compiled = compile_pattern(pattern)
        if self.max_size > 0:
            if len(self._patterns) >= self.max_size:
                evicted, _ = self._patterns.popitem(last=False)
                logger.debug("Pattern cache full, evicted %r", evicted)
            self._patterns[pattern] = compiled
        return compiled

    def clear(self) -> None:
        """Drop every compiled pattern (policy replaced)."""
        self._patterns.clear()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._patterns)

    def __contains__(self, pattern: object) -> bool:
        return pattern in self._patterns


def matches(kind: RoleKind, user: UserInfo, cache: PatternCache | None = None) -> bool:
    """
    Check whether ``user`` belongs to a role of the given kind.

    Args:
        kind: The role kind to test.
        user: The caller being evaluated.
        cache: Optional compiled-pattern cache for Regex roles.

    Returns:
        True if the user matches.

    Raises:
        InvalidPatternError: A Regex role's pattern does not compile.
    """
    if isinstance(kind, Everyone):
        return True
    if isinstance(kind, Member):
        return user.balance is not None
    if isinstance(kind, MemberBalance):
        return (user.balance or 0) >= kind.threshold
    if isinstance(kind, Group):
        return user.account_id in kind.accounts
    if isinstance(kind, Regex):
        matcher = cache.get(kind.pattern) if cache is not None else compile_pattern(kind.pattern)
        return matcher.search(user.account_id) is not None
    raise TypeError(f"Unknown role kind: {kind!r}")


def role_size(kind: RoleKind) -> int | None:
    """Number of accounts in a role, or None for kinds without a countable size."""
    if isinstance(kind, Group):
        return len(kind.accounts)
    if isinstance(kind, (Everyone, Member, MemberBalance, Regex)):
        return None
    raise TypeError(f"Unknown role kind: {kind!r}")


def kind_name(kind: RoleKind) -> str:
    """Display name of a role kind variant."""
    if isinstance(kind, (Everyone, Member, MemberBalance, Group, Regex)):
        return type(kind).__name__
    raise TypeError(f"Unknown role kind: {kind!r}")
