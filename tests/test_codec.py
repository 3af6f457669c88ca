"""
Tests for the Policy Codec — the serialization boundary.

Validates:
- Wire shape of every sum-type variant
- Scalar weight vs two-component ratio discrimination
- Round-trips through the versioned envelope
- Content hash stability
"""

from __future__ import annotations

import json

import pytest

from dao_policy.policy.codec import (
    POLICY_FORMAT_VERSION,
    decode_policy,
    decode_role_kind,
    decode_weight_kind,
    decode_weight_or_ratio,
    dumps_policy,
    encode_policy,
    encode_role_kind,
    encode_weight_kind,
    encode_weight_or_ratio,
    loads_policy,
    policy_hash,
)
from dao_policy.policy.errors import PolicyFormatError
from dao_policy.policy.schema import (
    Everyone,
    Group,
    Member,
    MemberBalance,
    Policy,
    Ratio,
    Regex,
    RolePermission,
    RoleWeight,
    TokenWeight,
    VotePolicy,
    Weight,
    default_policy,
)

ROLE_KINDS = [
    Everyone(),
    Member(),
    MemberBalance(threshold=10**30),
    Group(accounts={"b.x", "a.x"}),
    Group(),
    Regex(pattern=r"^council-.*\.x$"),
]
WEIGHTS = [Weight(value=0), Weight(value=2**128 - 1), Ratio(numerator=1, denominator=2)]
WEIGHT_KINDS = [TokenWeight(), RoleWeight(role="council")]


class TestRoundTrip:
    """Every variant decodes back to an equal value."""

    @pytest.mark.parametrize("kind", ROLE_KINDS)
    def test_role_kind(self, kind):
        assert decode_role_kind(encode_role_kind(kind)) == kind

    @pytest.mark.parametrize("spec", WEIGHTS)
    def test_weight_or_ratio(self, spec):
        assert decode_weight_or_ratio(encode_weight_or_ratio(spec)) == spec

    @pytest.mark.parametrize("kind", WEIGHT_KINDS)
    def test_weight_kind(self, kind):
        assert decode_weight_kind(encode_weight_kind(kind)) == kind

    def test_through_json_text(self):
        for kind in ROLE_KINDS:
            assert decode_role_kind(json.loads(json.dumps(encode_role_kind(kind)))) == kind

    def test_policy(self):
        policy = Policy(
            roles=(
                RolePermission(name="all", kind=Everyone(), permissions={"*:add_proposal"}),
                RolePermission(
                    name="whales",
                    kind=MemberBalance(threshold=10**27),
                    permissions={"transfer:*", "call:vote_approve"},
                ),
                RolePermission(name="council", kind=Group(accounts={"a.x", "b.x"})),
            ),
            vote_policy={
                "transfer": VotePolicy(
                    weight_kind=TokenWeight(), threshold=Weight(value=10**25)
                ),
            },
            bounty_bond=10**24,
            bounty_forgiveness_period=3_600 * 10**9,
        )
        assert decode_policy(encode_policy(policy)) == policy
        assert loads_policy(dumps_policy(policy)) == policy

    def test_default_policy(self):
        policy = default_policy("admin.x")
        assert loads_policy(dumps_policy(policy)) == policy


class TestWireShapes:
    def test_role_kind_shapes(self):
        assert encode_role_kind(Everyone()) == "Everyone"
        assert encode_role_kind(Member()) == "Member"
        assert encode_role_kind(MemberBalance(threshold=5)) == {"MemberBalance": "5"}
        assert encode_role_kind(Group(accounts={"b.x", "a.x"})) == {"Group": ["a.x", "b.x"]}
        assert encode_role_kind(Regex(pattern="^a")) == {"Regex": "^a"}

    def test_weight_kind_shapes(self):
        assert encode_weight_kind(TokenWeight()) == "TokenWeight"
        assert encode_weight_kind(RoleWeight(role="council")) == {"RoleWeight": "council"}

    def test_weight_is_scalar_ratio_is_pair(self):
        assert encode_weight_or_ratio(Weight(value=100)) == "100"
        assert encode_weight_or_ratio(Ratio(numerator=1, denominator=2)) == [1, 2]

    def test_scalar_decodes_to_weight(self):
        assert decode_weight_or_ratio("100") == Weight(value=100)
        assert decode_weight_or_ratio(100) == Weight(value=100)

    def test_pair_decodes_to_ratio(self):
        assert decode_weight_or_ratio([1, 2]) == Ratio(numerator=1, denominator=2)
        assert decode_weight_or_ratio((2, 3)) == Ratio(numerator=2, denominator=3)

    def test_pair_of_equal_values_is_still_ratio(self):
        assert decode_weight_or_ratio([5, 5]) != decode_weight_or_ratio("5")

    def test_zero_denominator_decodes(self):
        """Zero denominators are a resolution-time error, not a decoding error."""
        assert decode_weight_or_ratio([1, 0]) == Ratio(numerator=1, denominator=0)

    @pytest.mark.parametrize(
        "data",
        [
            [1],
            [1, 2, 3],
            True,
            None,
            1.5,
            "half",
            {"Ratio": [1, 2]},
            [-1, 2],
            {"tag": "weight", "value": 1},
            {"tag": "ratio", "numerator": 1, "denominator": 2},
        ],
    )
    def test_malformed_weight_rejected(self, data):
        with pytest.raises(PolicyFormatError):
            decode_weight_or_ratio(data)

    @pytest.mark.parametrize(
        "data",
        [
            "Nobody",
            {"Group": "a.x"},
            {"Group": ["a.x"], "Regex": "x"},
            {"MemberBalance": "-1"},
            3,
            {"tag": "group", "accounts": ["a.x"]},
            {"tag": "everyone"},
        ],
    )
    def test_malformed_role_kind_rejected(self, data):
        with pytest.raises(PolicyFormatError):
            decode_role_kind(data)

    @pytest.mark.parametrize(
        "data",
        [None, "RoleWeight", {"TokenWeight": None}, {"tag": "role_weight", "role": "council"}],
    )
    def test_malformed_weight_kind_rejected(self, data):
        with pytest.raises(PolicyFormatError):
            decode_weight_kind(data)

    def test_policy_body(self):
        body = encode_policy(default_policy("admin.x"))["policy"]
        assert body["roles"][0] == {
            "name": "all",
            "kind": "Everyone",
            "permissions": ["*:add_proposal"],
        }
        assert body["roles"][1]["kind"] == {"Group": ["admin.x"]}
        assert body["default_vote_policy"] == {
            "weight_kind": {"RoleWeight": "council"},
            "threshold": [1, 2],
        }
        assert body["bounty_bond"] == str(10**24)
        assert body["bounty_forgiveness_period"] == str(86_400 * 10**9)


class TestEnvelope:
    def test_version(self):
        assert encode_policy(default_policy("admin.x"))["version"] == POLICY_FORMAT_VERSION

    def test_unknown_version_rejected(self):
        data = encode_policy(default_policy("admin.x"))
        data["version"] = POLICY_FORMAT_VERSION + 1
        with pytest.raises(PolicyFormatError, match="version"):
            decode_policy(data)

    def test_bare_policy_rejected(self):
        with pytest.raises(PolicyFormatError):
            decode_policy(encode_policy(default_policy("admin.x"))["policy"])

    def test_invalid_policy_body_rejected(self):
        data = encode_policy(default_policy("admin.x"))
        data["policy"]["roles"][1]["name"] = "all"
        with pytest.raises(PolicyFormatError):
            decode_policy(data)

    def test_internal_variant_form_rejected(self):
        """Only the documented version 1 shapes decode, not the in-memory variant fields."""
        data = encode_policy(default_policy("admin.x"))
        data["policy"]["roles"][1]["kind"] = {"tag": "group", "accounts": ["admin.x"]}
        with pytest.raises(PolicyFormatError):
            decode_policy(data)

    def test_invalid_json_rejected(self):
        with pytest.raises(PolicyFormatError):
            loads_policy("{not json")

    def test_format_error_is_value_error(self):
        assert issubclass(PolicyFormatError, ValueError)


class TestPolicyHash:
    def test_sha256_hex(self):
        assert len(policy_hash(default_policy("admin.x"))) == 64

    def test_equal_policies_hash_equal(self):
        assert policy_hash(default_policy("admin.x")) == policy_hash(default_policy("admin.x"))

    def test_different_policies_hash_differently(self):
        assert policy_hash(default_policy("a.x")) != policy_hash(default_policy("b.x"))

    def test_set_ordering_irrelevant(self):
        first = Policy(
            roles=(
                RolePermission(
                    name="council",
                    kind=Group(accounts=["a.x", "b.x", "c.x"]),
                    permissions=["transfer:*", "*:add_proposal"],
                ),
            )
        )
        second = Policy(
            roles=(
                RolePermission(
                    name="council",
                    kind=Group(accounts=["c.x", "a.x", "b.x"]),
                    permissions=["*:add_proposal", "transfer:*"],
                ),
            )
        )
        assert policy_hash(first) == policy_hash(second)

    def test_hash_survives_round_trip(self):
        policy = default_policy("admin.x")
        assert policy_hash(loads_policy(dumps_policy(policy))) == policy_hash(policy)
