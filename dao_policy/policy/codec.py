"""
Policy Codec — Stable, versioned wire encoding for policies.

Wire shapes (version 1):

    RoleKind       "Everyone" | "Member" | {"MemberBalance": "<u128>"}
                   | {"Group": ["<account>", ...]} | {"Regex": "<pattern>"}
    WeightOrRatio  "<u128>"  (absolute weight, a scalar)
                   | [numerator, denominator]  (ratio, a pair)
    WeightKind     "TokenWeight" | {"RoleWeight": "<role name>"}

Big integers (balances, weights, bond) are decimal strings; the bounty
forgiveness period is a decimal string of nanoseconds. Sets are emitted
sorted, so equal policies always encode to identical bytes and hash to
the same content hash.

A policy document is wrapped in an envelope::

    {"version": 1, "policy": {...}}
"""

from __future__ import annotations

import hashlib
import json
from typing import Any

from pydantic import TypeAdapter, ValidationError

from dao_policy.policy.errors import PolicyFormatError
from dao_policy.policy.schema import Policy, RoleKind, WeightKind, WeightOrRatio

POLICY_FORMAT_VERSION = 1

_ROLE_KIND = TypeAdapter(RoleKind)
_WEIGHT_OR_RATIO = TypeAdapter(WeightOrRatio)
_WEIGHT_KIND = TypeAdapter(WeightKind)


def _decode(adapter: TypeAdapter[Any], data: Any, what: str) -> Any:
    try:
        return adapter.validate_python(data)
    except ValidationError as e:
        raise PolicyFormatError(f"Malformed {what}: {e}") from e


# ════════════════════════════════════════════════════════════════
# Sum types
# ════════════════════════════════════════════════════════════════


def encode_role_kind(kind: RoleKind) -> Any:
    return _ROLE_KIND.dump_python(kind, mode="json")


def decode_role_kind(data: Any) -> RoleKind:
    return _decode(_ROLE_KIND, data, "role kind")


def encode_weight_or_ratio(spec: WeightOrRatio) -> Any:
    return _WEIGHT_OR_RATIO.dump_python(spec, mode="json")


def decode_weight_or_ratio(data: Any) -> WeightOrRatio:
    return _decode(_WEIGHT_OR_RATIO, data, "weight or ratio")


def encode_weight_kind(kind: WeightKind) -> Any:
    return _WEIGHT_KIND.dump_python(kind, mode="json")


def decode_weight_kind(data: Any) -> WeightKind:
    return _decode(_WEIGHT_KIND, data, "weight kind")


# ════════════════════════════════════════════════════════════════
# Policy documents
# ════════════════════════════════════════════════════════════════


def encode_policy(policy: Policy) -> dict[str, Any]:
    """Encode a policy into its versioned envelope."""
    return {
        "version": POLICY_FORMAT_VERSION,
        "policy": policy.model_dump(mode="json"),
    }


def decode_policy(data: Any) -> Policy:
    """
    Decode a versioned envelope back into a Policy.

    Raises:
        PolicyFormatError: Unknown version, missing envelope, or a policy
            body that does not validate.
    """
    if not isinstance(data, dict) or "policy" not in data:
        raise PolicyFormatError("Policy document must be an envelope with a 'policy' key")
    version = data.get("version")
    if version != POLICY_FORMAT_VERSION:
        raise PolicyFormatError(
            f"Unsupported policy format version {version!r} "
            f"(expected {POLICY_FORMAT_VERSION})"
        )
    try:
        return Policy.model_validate(data["policy"])
    except ValidationError as e:
        raise PolicyFormatError(f"Malformed policy: {e}") from e


def canonical_json(data: Any) -> str:
    """Canonical JSON text: sorted keys, no insignificant whitespace."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def dumps_policy(policy: Policy, indent: int | None = 2) -> str:
    """Serialize a policy envelope to JSON text for storage."""
    return json.dumps(encode_policy(policy), indent=indent, sort_keys=True, ensure_ascii=False)


def loads_policy(text: str | bytes) -> Policy:
    """Parse JSON text produced by ``dumps_policy``."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise PolicyFormatError(f"Policy document is not valid JSON: {e}") from e
    return decode_policy(data)


def policy_hash(policy: Policy) -> str:
    """
    SHA-256 content hash of a policy.

    Hash = SHA-256(canonical_json(envelope)). Independent of role
    permission ordering and group membership ordering.
    """
    return hashlib.sha256(
        canonical_json(encode_policy(policy)).encode("utf-8")
    ).hexdigest()
