"""
Integer apportionment helpers shared by every allocation stage.

  - round_half_up: 2.5 → 3, never banker's rounding
  - largest_remainder: split an integer total by weights so the parts sum exactly
  - RunningApportionment: the same, repeated over weeks without drifting
  - StableDraw: reproducible weighted draws seeded from plan parameters
"""

from __future__ import annotations

import hashlib
from collections.abc import Sequence
from decimal import ROUND_HALF_UP, Decimal
from fractions import Fraction
from typing import TypeVar

T = TypeVar("T")


def round_half_up(value: Decimal | float) -> int:
    """Round to the nearest integer, halves away from zero."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def largest_remainder(total: int, weights: Sequence[float | int | Decimal | Fraction]) -> list[int]:
    """
    Apportion an integer total proportionally to weights (Hamilton method).

    Each entry gets the floor of its exact quota; the leftover units go to the
    largest fractional remainders, ties to the earliest entry. Negative weights
    count as zero. When every weight is zero nothing can be apportioned and all
    parts are zero; callers account for the shortfall themselves.
    """
    if total < 0:
        raise ValueError("total must be non-negative")
    exact = [Fraction(w) if w and w > 0 else Fraction(0) for w in weights]
    weight_sum = sum(exact, Fraction(0))
    if total == 0 or weight_sum == 0:
        return [0] * len(exact)

    quotas = [total * w / weight_sum for w in exact]
    parts = [q.numerator // q.denominator for q in quotas]
    leftover = total - sum(parts)
    order = sorted(range(len(quotas)), key=lambda i: (-(quotas[i] - parts[i]), i))
    for i in order[:leftover]:
        parts[i] += 1
    return parts


class RunningApportionment:
    """
    Split a sequence of integer totals by fixed weights, keeping every
    part's running sum close to its exact running share.

    Each split hands out floors first; the leftover units go to the parts
    furthest behind their exact cumulative share, ties to the earliest entry.
    """

    def __init__(self, weights: Sequence[float | int | Decimal | Fraction]):
        self.weights = [Fraction(w) if w and w > 0 else Fraction(0) for w in weights]
        self.weight_sum = sum(self.weights, Fraction(0))
        self.exact_total = [Fraction(0)] * len(self.weights)
        self.assigned_total = [0] * len(self.weights)

    def split(self, total: int) -> list[int]:
        if total < 0:
            raise ValueError("total must be non-negative")
        if total == 0 or self.weight_sum == 0:
            return [0] * len(self.weights)

        quotas = [total * w / self.weight_sum for w in self.weights]
        parts = [q.numerator // q.denominator for q in quotas]
        for i, quota in enumerate(quotas):
            self.exact_total[i] += quota
        shortfall = [self.exact_total[i] - self.assigned_total[i] - parts[i] for i in range(len(parts))]
        leftover = total - sum(parts)
        for i in sorted(range(len(parts)), key=lambda i: (-shortfall[i], i))[:leftover]:
            parts[i] += 1
        for i, part in enumerate(parts):
            self.assigned_total[i] += part
        return parts


def stable_seed(*parts: object) -> str:
    """Hex digest identifying a generation request; same inputs, same seed."""
    raw = "|".join(str(p) for p in parts)
    return hashlib.sha256(raw.encode()).hexdigest()[:16]


class StableDraw:
    """Deterministic weighted choice driven by sha256(seed:sequence)."""

    def __init__(self, seed: str):
        self.seed = seed
        self.sequence = 0

    def uniform(self) -> Fraction:
        digest = hashlib.sha256(f"{self.seed}:{self.sequence}".encode()).digest()
        self.sequence += 1
        return Fraction(int.from_bytes(digest[:8], "big"), 2**64)

    def choose(self, items: Sequence[T], weights: Sequence[float | int | Fraction]) -> T | None:
        """Pick one item with probability proportional to its weight, or None if all weights are zero."""
        exact = [Fraction(w) if w and w > 0 else Fraction(0) for w in weights]
        weight_sum = sum(exact, Fraction(0))
        if weight_sum == 0:
            return None
        target = self.uniform() * weight_sum
        cumulative = Fraction(0)
        for item, weight in zip(items, exact):
            if weight == 0:
                continue
            cumulative += weight
            if target < cumulative:
                return item
        # Unreachable with exact arithmetic; keeps the last positive-weight item.
        return next(item for item, weight in reversed(list(zip(items, exact))) if weight > 0)
