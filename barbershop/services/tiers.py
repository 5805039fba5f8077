"""Loyalty tiers. Derived from lifetime points earned, never from the balance."""

from typing import Iterable, Optional, Tuple

# (name, minimum lifetime points), ascending
TIERS = (
    ("Bronze", 0),
    ("Silver", 200),
    ("Gold", 500),
    ("Platinum", 1000),
)


def tier_for(lifetime_earned: int) -> str:
    current = TIERS[0][0]
    for name, minimum in TIERS:
        if lifetime_earned >= minimum:
            current = name
    return current


def next_tier(lifetime_earned: int) -> Optional[Tuple[str, int]]:
    """Return (tier name, points still needed) or None at the top tier."""
    for name, minimum in TIERS:
        if lifetime_earned < minimum:
            return name, minimum - lifetime_earned
    return None


def cheapest_reward_cost(costs: Iterable[int]) -> Optional[int]:
    positive = [c for c in costs if c and c > 0]
    return min(positive) if positive else None
