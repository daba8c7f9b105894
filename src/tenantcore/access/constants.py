"""Role, tier and operation constants for tenant access control.

Provides:
- ``Tier`` — subscription tiers.
- ``TenantRole`` — per-tenant roles with their ordering.
- ``PlatformRole`` — platform-wide staff roles.
- ``Operation`` — read / write / admin granularity of a feature.
- ``ScopeKind`` — tenant / organization / platform propagation scope.
- ``SubscriptionStatus`` — lifecycle state of a tenant subscription.
"""

from __future__ import annotations


class Tier:
    """Subscription tier of a tenant.

    Two orderings exist side by side:

    - individual: ``google_only < starter < professional < enterprise``
    - chain: ``chain_starter < chain_professional < chain_enterprise``

    ``organization`` is a parallel multi-location tier. It is not ordered
    above ``enterprise`` but unlocks the propagation capability set.
    Inheritance between tiers lives in :data:`tenantcore.access.tiers.TIER_INHERITANCE`.
    """

    GOOGLE_ONLY = "google_only"
    STARTER = "starter"
    PROFESSIONAL = "professional"
    ENTERPRISE = "enterprise"
    ORGANIZATION = "organization"
    CHAIN_STARTER = "chain_starter"
    CHAIN_PROFESSIONAL = "chain_professional"
    CHAIN_ENTERPRISE = "chain_enterprise"

    INDIVIDUAL = ("google_only", "starter", "professional", "enterprise")
    CHAIN = ("chain_starter", "chain_professional", "chain_enterprise")

    ALL = frozenset(INDIVIDUAL + CHAIN + ("organization",))


class TenantRole:
    """Role of a user within one tenant.

    Hierarchy: ``TENANT_OWNER`` > ``TENANT_ADMIN`` > ``TENANT_MANAGER``
    > ``TENANT_MEMBER`` > ``TENANT_VIEWER``. A higher role satisfies any
    lower requirement. Ownership, billing and deletion require
    ``TENANT_OWNER`` exactly; ``TENANT_ADMIN`` is capped below it.
    """

    VIEWER = "TENANT_VIEWER"
    MEMBER = "TENANT_MEMBER"
    MANAGER = "TENANT_MANAGER"
    ADMIN = "TENANT_ADMIN"
    OWNER = "TENANT_OWNER"

    HIERARCHY = ("TENANT_VIEWER", "TENANT_MEMBER", "TENANT_MANAGER", "TENANT_ADMIN", "TENANT_OWNER")

    ALL = frozenset(HIERARCHY)

    @staticmethod
    def rank(role: str | None) -> int:
        """Position of ``role`` in :attr:`HIERARCHY`, ``-1`` when unknown or absent."""
        if role is None:
            return -1
        try:
            return TenantRole.HIERARCHY.index(role)
        except ValueError:
            return -1


class PlatformRole:
    """Platform staff role. At most one per principal."""

    ADMIN = "PLATFORM_ADMIN"  # Full bypass of tier and role checks
    SUPPORT = "PLATFORM_SUPPORT"  # Read everything, plus support_bypass features
    VIEWER = "PLATFORM_VIEWER"  # Read only

    ALL = frozenset({"PLATFORM_ADMIN", "PLATFORM_SUPPORT", "PLATFORM_VIEWER"})


class Operation:
    """Kind of action a feature performs.

    Hierarchy: ``admin`` > ``write`` > ``read``. Platform read-only roles
    are allowed only ``read`` operations.
    """

    READ = "read"  # Viewing, previews, dry runs
    WRITE = "write"  # Modifications to tenant data
    ADMIN = "admin"  # Destructive or ownership-level changes

    HIERARCHY = ("read", "write", "admin")


class ScopeKind:
    """Blast radius of a propagation request."""

    TENANT = "tenant"  # Peer-to-peer between sibling locations
    ORGANIZATION = "organization"  # Every member of one organization
    PLATFORM = "platform"  # Every tenant on the platform

    ALL = frozenset({"tenant", "organization", "platform"})


class SubscriptionStatus:
    """Lifecycle state of a tenant subscription.

    ``trial`` is a status, not a tier: it applies to whatever tier the
    tenant has selected.
    """

    TRIAL = "trial"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    EXPIRED = "expired"

    INACTIVE = frozenset({"canceled", "expired"})
    ALL = frozenset({"trial", "active", "past_due", "canceled", "expired"})


__all__ = [
    "Operation",
    "PlatformRole",
    "ScopeKind",
    "SubscriptionStatus",
    "TenantRole",
    "Tier",
]
