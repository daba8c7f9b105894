"""Tier inheritance, comparison and pricing metadata.

Provides:
- ``TIER_INHERITANCE`` — tier → tiers whose features it includes.
- ``expand_tiers()`` — resolve the inheritance closure.
- ``tier_satisfies()`` / ``role_satisfies()`` — requirement checks.
- ``feature_unlocked()`` — whether a tier includes one feature.
- ``tier_features()`` — features unlocked by a tier.
- ``TIER_DISPLAY_NAMES`` / ``TIER_PRICING`` — upgrade prompt metadata.
"""

from __future__ import annotations

from typing import Optional

from .constants import TenantRole, Tier
from .features import DEFAULT_REGISTRY, FeatureDescriptor, FeatureRegistry

# ── Tier Inheritance ────────────────────────────────────
# A tier includes every feature of the tiers listed for it.

TIER_INHERITANCE: dict[str, tuple[str, ...]] = {
    Tier.GOOGLE_ONLY: (),
    Tier.STARTER: (Tier.GOOGLE_ONLY,),
    Tier.PROFESSIONAL: (Tier.STARTER,),
    Tier.ENTERPRISE: (Tier.PROFESSIONAL,),
    Tier.ORGANIZATION: (Tier.PROFESSIONAL,),
    Tier.CHAIN_STARTER: (Tier.STARTER,),
    Tier.CHAIN_PROFESSIONAL: (Tier.CHAIN_STARTER, Tier.PROFESSIONAL),
    Tier.CHAIN_ENTERPRISE: (Tier.CHAIN_PROFESSIONAL, Tier.ENTERPRISE, Tier.ORGANIZATION),
}


def expand_tiers(tier: str) -> frozenset[str]:
    """Resolve every tier included by ``tier``, itself included.

    Unknown tiers expand to the empty set.

    Example::

        >>> sorted(expand_tiers("professional"))
        ['google_only', 'professional', 'starter']
    """
    if tier not in TIER_INHERITANCE:
        return frozenset()
    expanded: set[str] = {tier}
    queue = [tier]

    while queue:
        current = queue.pop()
        for parent in TIER_INHERITANCE.get(current, ()):
            if parent not in expanded:
                expanded.add(parent)
                queue.append(parent)

    return frozenset(expanded)


def tier_satisfies(tier: Optional[str], required_tier: str) -> bool:
    """Check whether a subscription ``tier`` meets ``required_tier``.

    ``organization`` is not above ``enterprise``: an organization tenant
    does not get enterprise features and an enterprise tenant does not
    get propagation.
    """
    if tier is None:
        return False
    return required_tier in expand_tiers(tier)


def feature_unlocked(tier: Optional[str], feature: FeatureDescriptor) -> bool:
    """Check whether ``tier`` includes ``feature`` by inheritance or ``also_tiers``."""
    if tier is None:
        return False
    included = expand_tiers(tier)
    return feature.required_tier in included or not included.isdisjoint(feature.also_tiers)


def role_satisfies(role: Optional[str], required_role: Optional[str]) -> bool:
    """Check whether a tenant ``role`` meets ``required_role``.

    No requirement is always satisfied. An owner-only requirement is met
    by ``TENANT_OWNER`` alone.
    """
    if required_role is None:
        return True
    return TenantRole.rank(role) >= TenantRole.rank(required_role) >= 0


def tier_features(tier: str, registry: FeatureRegistry = DEFAULT_REGISTRY) -> frozenset[str]:
    """Feature ids unlocked by ``tier`` through inheritance."""
    return frozenset(f.id for f in registry if feature_unlocked(tier, f))


def minimum_tiers(required_tier: str) -> tuple[str, ...]:
    """Tiers that satisfy ``required_tier``, cheapest first."""
    return tuple(
        sorted(
            (t for t in TIER_INHERITANCE if tier_satisfies(t, required_tier)),
            key=lambda t: (TIER_PRICING[t], t),
        )
    )


# ── Upgrade Prompt Metadata ─────────────────────────────

TIER_DISPLAY_NAMES: dict[str, str] = {
    Tier.GOOGLE_ONLY: "Google-Only",
    Tier.STARTER: "Starter",
    Tier.PROFESSIONAL: "Professional",
    Tier.ENTERPRISE: "Enterprise",
    Tier.ORGANIZATION: "Organization",
    Tier.CHAIN_STARTER: "Chain Starter",
    Tier.CHAIN_PROFESSIONAL: "Chain Professional",
    Tier.CHAIN_ENTERPRISE: "Chain Enterprise",
}

# Monthly price in USD.
TIER_PRICING: dict[str, int] = {
    Tier.GOOGLE_ONLY: 29,
    Tier.STARTER: 49,
    Tier.PROFESSIONAL: 499,
    Tier.ENTERPRISE: 999,
    Tier.ORGANIZATION: 999,
    Tier.CHAIN_STARTER: 199,
    Tier.CHAIN_PROFESSIONAL: 1999,
    Tier.CHAIN_ENTERPRISE: 4999,
}


def tier_display_name(tier: Optional[str]) -> str:
    if tier is None:
        return "None"
    return TIER_DISPLAY_NAMES.get(tier, tier)


def upgrade_cost(current_tier: Optional[str], required_tier: str) -> int:
    """Monthly price difference between ``required_tier`` and ``current_tier``."""
    current = TIER_PRICING.get(current_tier, 0) if current_tier else 0
    return max(TIER_PRICING.get(required_tier, 0) - current, 0)


__all__ = [
    "TIER_DISPLAY_NAMES",
    "TIER_INHERITANCE",
    "TIER_PRICING",
    "expand_tiers",
    "feature_unlocked",
    "minimum_tiers",
    "role_satisfies",
    "tier_display_name",
    "tier_features",
    "tier_satisfies",
    "upgrade_cost",
]
