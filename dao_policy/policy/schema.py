"""
Policy Schema — Pydantic models for every DAO policy entity.

These models are the canonical data structures consumed by the policy
engine: who the caller is (UserInfo), which roles exist and what they may
do (RolePermission), how votes are weighted and thresholded (VotePolicy),
and the proposal counters handed in by the lifecycle manager (Proposal).

The three sum types (RoleKind, WeightOrRatio, WeightKind) are closed
tagged unions. Each variant is a frozen model with a literal ``tag`` field,
and each union validates from and serializes to the stable wire shape
described in ``dao_policy.policy.codec``.
"""

from __future__ import annotations

import enum
from collections.abc import Mapping
from datetime import timedelta
from types import MappingProxyType
from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    BeforeValidator,
    Field,
    PlainSerializer,
    field_serializer,
    field_validator,
    model_validator,
)

from dao_policy.config import settings

WILDCARD = "*"
MAX_U128 = 2**128 - 1
MAX_U64 = 2**64 - 1

# 128-bit balances travel as decimal strings so JSON consumers never lose precision.
U128 = Annotated[
    int,
    Field(ge=0, le=MAX_U128),
    PlainSerializer(str, return_type=str, when_used="json"),
]
U64 = Annotated[int, Field(ge=0, le=MAX_U64)]


# ════════════════════════════════════════════════════════════════
# Enumerations
# ════════════════════════════════════════════════════════════════


class ProposalKind(str, enum.Enum):
    """Proposal categories, by policy label."""

    CONFIG = "config"
    POLICY = "policy"
    ADD_MEMBER_TO_ROLE = "add_member_to_role"
    REMOVE_MEMBER_FROM_ROLE = "remove_member_from_role"
    CALL = "call"
    UPGRADE_SELF = "upgrade_self"
    UPGRADE_REMOTE = "upgrade_remote"
    TRANSFER = "transfer"
    SET_VOTE_TOKEN = "set_vote_token"
    ADD_BOUNTY = "add_bounty"
    BOUNTY_DONE = "bounty_done"
    VOTE = "vote"


class Action(str, enum.Enum):
    """Operations performable on a proposal, by policy label."""

    ADD_PROPOSAL = "add_proposal"
    REMOVE_PROPOSAL = "remove_proposal"
    VOTE_APPROVE = "vote_approve"
    VOTE_REJECT = "vote_reject"
    VOTE_REMOVE = "vote_remove"
    FINALIZE = "finalize"
    MOVE_TO_HUB = "move_to_hub"


class Vote(str, enum.Enum):
    """Vote outcomes a member can cast."""

    APPROVE = "Approve"
    REJECT = "Reject"
    REMOVE = "Remove"


class ProposalStatus(str, enum.Enum):
    """Proposal lifecycle states."""

    IN_PROGRESS = "InProgress"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    REMOVED = "Removed"
    EXPIRED = "Expired"  # managed by the lifecycle manager
    MOVED = "Moved"  # managed by the lifecycle manager


PROPOSAL_KIND_LABELS: frozenset[str] = frozenset(k.value for k in ProposalKind)
ACTION_LABELS: frozenset[str] = frozenset(a.value for a in Action)


def label_of(value: ProposalKind | Action | str) -> str:
    """Return the policy label for an enum member or a plain label string."""
    if isinstance(value, enum.Enum):
        return value.value
    return str(value)


def validate_permission(permission: str) -> str:
    """
    Check a ``"<proposal-kind>:<action>"`` permission string.

    Either side may be the wildcard. Raises ValueError for anything outside
    the closed label vocabulary.
    """
    parts = permission.split(":")
    if len(parts) != 2:
        raise ValueError(
            f"Permission {permission!r} must have the shape '<proposal_kind>:<action>'"
        )
    kind, action = parts
    if kind != WILDCARD and kind not in PROPOSAL_KIND_LABELS:
        raise ValueError(f"Unknown proposal kind label {kind!r} in permission {permission!r}")
    if action != WILDCARD and action not in ACTION_LABELS:
        raise ValueError(f"Unknown action label {action!r} in permission {permission!r}")
    return permission


class _Variant(BaseModel):
    model_config = {"frozen": True, "extra": "forbid"}


# ════════════════════════════════════════════════════════════════
# Role Kinds
# ════════════════════════════════════════════════════════════════


class Everyone(_Variant):
    """Matches every caller."""

    tag: Literal["everyone"] = "everyone"


class Member(_Variant):
    """Matches callers that hold any balance of the DAO token."""

    tag: Literal["member"] = "member"


class MemberBalance(_Variant):
    """Matches callers whose balance is at least ``threshold``."""

    tag: Literal["member_balance"] = "member_balance"
    threshold: U128


class Group(_Variant):
    """Explicit membership list. The only role kind with a countable size."""

    tag: Literal["group"] = "group"
    accounts: frozenset[str] = Field(default_factory=frozenset)


class Regex(_Variant):
    """Matches callers whose account id matches ``pattern``."""

    tag: Literal["regex"] = "regex"
    pattern: str


def _role_kind_from_wire(value: Any) -> Any:
    if isinstance(value, (Everyone, Member, MemberBalance, Group, Regex)):
        return value
    if value == "Everyone":
        return Everyone()
    if value == "Member":
        return Member()
    if isinstance(value, dict) and len(value) == 1:
        name, payload = next(iter(value.items()))
        if name == "MemberBalance":
            return MemberBalance(threshold=payload)
        if name == "Group":
            if not isinstance(payload, (list, tuple, set, frozenset)):
                raise ValueError("Group payload must be a list of account ids")
            return Group(accounts=payload)
        if name == "Regex":
            return Regex(pattern=payload)
    raise ValueError(f"Unrecognized role kind: {value!r}")


def _role_kind_to_wire(kind: Any) -> Any:
    if isinstance(kind, Everyone):
        return "Everyone"
    if isinstance(kind, Member):
        return "Member"
    if isinstance(kind, MemberBalance):
        return {"MemberBalance": str(kind.threshold)}
    if isinstance(kind, Group):
        return {"Group": sorted(kind.accounts)}
    if isinstance(kind, Regex):
        return {"Regex": kind.pattern}
    raise TypeError(f"Unknown role kind: {kind!r}")


RoleKind = Annotated[
    Union[Everyone, Member, MemberBalance, Group, Regex],
    BeforeValidator(_role_kind_from_wire),
    PlainSerializer(_role_kind_to_wire),
]


# ════════════════════════════════════════════════════════════════
# Weights
# ════════════════════════════════════════════════════════════════


class Weight(_Variant):
    """An absolute weight."""

    tag: Literal["weight"] = "weight"
    value: U128


class Ratio(_Variant):
    """A fraction of some total. A zero denominator fails at resolution time."""

    tag: Literal["ratio"] = "ratio"
    numerator: U64
    denominator: U64


def _weight_or_ratio_from_wire(value: Any) -> Any:
    if isinstance(value, (Weight, Ratio)):
        return value
    # bool is an int subclass; neither True nor False is a weight
    if isinstance(value, bool):
        raise ValueError("A boolean is not a weight")
    if isinstance(value, (int, str)):
        return Weight(value=value)
    if isinstance(value, (list, tuple)):
        if len(value) != 2:
            raise ValueError(f"A ratio must have exactly two components, got {len(value)}")
        return Ratio(numerator=value[0], denominator=value[1])
    raise ValueError(f"Unrecognized weight or ratio: {value!r}")


def _weight_or_ratio_to_wire(spec: Any) -> Any:
    if isinstance(spec, Weight):
        return str(spec.value)
    if isinstance(spec, Ratio):
        return [spec.numerator, spec.denominator]
    raise TypeError(f"Unknown weight specification: {spec!r}")


WeightOrRatio = Annotated[
    Union[Weight, Ratio],
    BeforeValidator(_weight_or_ratio_from_wire),
    PlainSerializer(_weight_or_ratio_to_wire),
]


class TokenWeight(_Variant):
    """Votes are weighted by token balance against total supply."""

    tag: Literal["token_weight"] = "token_weight"


class RoleWeight(_Variant):
    """One vote per member of the named Group role."""

    tag: Literal["role_weight"] = "role_weight"
    role: str


def _weight_kind_from_wire(value: Any) -> Any:
    if isinstance(value, (TokenWeight, RoleWeight)):
        return value
    if value == "TokenWeight":
        return TokenWeight()
    if isinstance(value, dict) and len(value) == 1 and "RoleWeight" in value:
        return RoleWeight(role=value["RoleWeight"])
    raise ValueError(f"Unrecognized weight kind: {value!r}")


def _weight_kind_to_wire(kind: Any) -> Any:
    if isinstance(kind, TokenWeight):
        return "TokenWeight"
    if isinstance(kind, RoleWeight):
        return {"RoleWeight": kind.role}
    raise TypeError(f"Unknown weight kind: {kind!r}")


WeightKind = Annotated[
    Union[TokenWeight, RoleWeight],
    BeforeValidator(_weight_kind_from_wire),
    PlainSerializer(_weight_kind_to_wire),
]


# ════════════════════════════════════════════════════════════════
# Policy Models
# ════════════════════════════════════════════════════════════════


class UserInfo(BaseModel):
    """The caller being evaluated. Supplied by the membership collaborator."""

    model_config = {"frozen": True}

    account_id: str
    balance: U128 | None = Field(
        default=None, description="Token balance, or None if the caller holds no tokens"
    )


class RolePermission(BaseModel):
    """
    A named role: a predicate over callers plus the permissions it grants.

    Permissions have the shape ``"<proposal_kind>:<action>"`` and either side
    may be ``*``.
    """

    model_config = {"frozen": True}

    name: str = Field(min_length=1, description="Role name, unique within a policy")
    kind: RoleKind
    permissions: frozenset[str] = Field(default_factory=frozenset)

    @field_validator("permissions")
    @classmethod
    def _check_permissions(cls, value: frozenset[str]) -> frozenset[str]:
        for permission in value:
            validate_permission(permission)
        return value

    @field_serializer("permissions")
    def _sorted_permissions(self, value: frozenset[str]) -> list[str]:
        return sorted(value)


class VotePolicy(BaseModel):
    """How votes on a proposal kind are weighted and when they pass."""

    model_config = {"frozen": True}

    weight_kind: WeightKind = Field(default_factory=lambda: RoleWeight(role="council"))
    threshold: WeightOrRatio = Field(
        default_factory=lambda: Ratio(numerator=1, denominator=2)
    )


class Policy(BaseModel):
    """
    The complete decision-making policy of a DAO.

    Immutable once constructed. Governance replaces a policy wholesale; the
    engine only ever reads a snapshot.
    """

    model_config = {"frozen": True}

    roles: tuple[RolePermission, ...] = Field(default_factory=tuple)
    default_vote_policy: VotePolicy = Field(default_factory=VotePolicy)
    vote_policy: dict[str, VotePolicy] = Field(
        default_factory=lambda: MappingProxyType({}),
        description="Per proposal-kind overrides of the default vote policy (read-only)",
    )
    bounty_bond: U128 = Field(default_factory=lambda: settings.default_bounty_bond)
    bounty_forgiveness_period: U64 = Field(
        default_factory=lambda: settings.default_forgiveness_period_ns,
        description="Nanoseconds during which giving up a bounty is not punished",
    )

    @field_validator("vote_policy", mode="before")
    @classmethod
    def _normalize_kind_keys(cls, value: Any) -> Any:
        if isinstance(value, Mapping):
            return {label_of(key): policy for key, policy in value.items()}
        return value

    @field_validator("vote_policy")
    @classmethod
    def _check_kind_keys(cls, value: dict[str, VotePolicy]) -> Mapping[str, VotePolicy]:
        unknown = sorted(set(value) - PROPOSAL_KIND_LABELS)
        if unknown:
            raise ValueError(f"Vote policy overrides for unknown proposal kinds: {unknown}")
        return MappingProxyType(value)

    @field_serializer("vote_policy", mode="wrap")
    def _overrides_as_dict(self, value: Mapping[str, VotePolicy], handler):
        return handler(dict(value))

    @field_serializer("bounty_forgiveness_period", when_used="json")
    def _period_as_string(self, value: int) -> str:
        return str(value)

    @model_validator(mode="after")
    def _check_unique_role_names(self) -> Policy:
        seen: set[str] = set()
        for role in self.roles:
            if role.name in seen:
                raise ValueError(f"Duplicate role name '{role.name}'")
            seen.add(role.name)
        return self

    @property
    def forgiveness_period(self) -> timedelta:
        return timedelta(microseconds=self.bounty_forgiveness_period // 1000)

    def get_role(self, name: str) -> RolePermission | None:
        """Retrieve a role by name."""
        for role in self.roles:
            if role.name == name:
                return role
        return None

    def role_names(self) -> list[str]:
        return [role.name for role in self.roles]

    def __hash__(self) -> int:
        return hash(
            (
                self.roles,
                self.default_vote_policy,
                tuple(sorted(self.vote_policy.items())),
                self.bounty_bond,
                self.bounty_forgiveness_period,
            )
        )


class Proposal(BaseModel):
    """
    The slice of a proposal the engine reads. Owned by the lifecycle manager.
    """

    model_config = {"frozen": True}

    kind: ProposalKind
    status: ProposalStatus = ProposalStatus.IN_PROGRESS
    vote_counts: dict[Vote, U128] = Field(default_factory=lambda: MappingProxyType({}))

    @field_validator("vote_counts")
    @classmethod
    def _freeze_counts(cls, value: dict[Vote, int]) -> Mapping[Vote, int]:
        return MappingProxyType(value)

    @field_serializer("vote_counts", mode="wrap")
    def _counts_as_dict(self, value: Mapping[Vote, int], handler):
        return handler(dict(value))

    def count(self, vote: Vote) -> int:
        """Accumulated weight for ``vote``; absent counters read as zero."""
        return self.vote_counts.get(vote, 0)

    def __hash__(self) -> int:
        counts = tuple(sorted((vote.value, n) for vote, n in self.vote_counts.items()))
        return hash((self.kind, self.status, counts))


# ════════════════════════════════════════════════════════════════
# Default Policy
# ════════════════════════════════════════════════════════════════


def default_policy(
    admin_account: str,
    bounty_bond: int | None = None,
    bounty_forgiveness_period: int | None = None,
) -> Policy:
    """
    Build the initial policy of a freshly created DAO.

    - everyone can add proposals
    - a ``council`` group consisting of ``admin_account`` can do everything
    - non token weighted voting, requiring half of the council
    - bond and forgiveness period from settings unless given

    Args:
        admin_account: Account that becomes the sole council member.
        bounty_bond: Bond for claiming a bounty, in yocto.
        bounty_forgiveness_period: Forgiveness period in nanoseconds.
    """
    if not admin_account:
        raise ValueError("An administrator account is required")
    return Policy(
        roles=(
            RolePermission(
                name="all",
                kind=Everyone(),
                permissions=frozenset({f"{WILDCARD}:{Action.ADD_PROPOSAL.value}"}),
            ),
            RolePermission(
                name="council",
                kind=Group(accounts=frozenset({admin_account})),
                permissions=frozenset({f"{WILDCARD}:{WILDCARD}"}),
            ),
        ),
        default_vote_policy=VotePolicy(),
        vote_policy={},
        bounty_bond=(
            settings.default_bounty_bond if bounty_bond is None else bounty_bond
        ),
        bounty_forgiveness_period=(
            settings.default_forgiveness_period_ns
            if bounty_forgiveness_period is None
            else bounty_forgiveness_period
        ),
    )
