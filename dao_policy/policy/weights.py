"""Weight resolution — turn an absolute-or-ratio threshold into an absolute weight."""

from __future__ import annotations

from dao_policy.policy.errors import ZeroDenominatorError
from dao_policy.policy.schema import Ratio, Weight, WeightOrRatio


def to_weight(spec: WeightOrRatio, total: int) -> int:
    """
    Resolve ``spec`` against ``total``.

    A Weight is returned unchanged. A Ratio(n, d) resolves to
    ``floor(n * total / d)``; Python integers are unbounded, so the product
    is exact for any 128-bit total.

    Raises:
        ZeroDenominatorError: The ratio's denominator is zero.
    """
    if isinstance(spec, Weight):
        return spec.value
    if isinstance(spec, Ratio):
        if spec.denominator == 0:
            raise ZeroDenominatorError(spec.numerator)
        return spec.numerator * total // spec.denominator
    raise TypeError(f"Unknown weight specification: {spec!r}")
