"""Acting-user snapshot and per-tenant feature overrides."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional

from .constants import PlatformRole, SubscriptionStatus, TenantRole, Tier


def _frozen(mapping: Optional[Mapping[str, str]]) -> Mapping[str, str]:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class Principal:
    """The acting user for one request.

    Computed per request by the authentication layer and trusted as-is.
    Never mutated by the core.

    Attributes:
        platform_role: One of :class:`PlatformRole`, or None for tenant users.
        tenant_roles: tenant id → :class:`TenantRole` (one role per tenant).
        subscription_tiers: tenant id → :class:`Tier`.
        subscription_statuses: tenant id → :class:`SubscriptionStatus`.
            Missing entries count as active.
        user_id: Identity recorded on propagation runs.
    """

    platform_role: Optional[str] = None
    tenant_roles: Mapping[str, str] = field(default_factory=dict)
    subscription_tiers: Mapping[str, str] = field(default_factory=dict)
    subscription_statuses: Mapping[str, str] = field(default_factory=dict)
    user_id: Optional[str] = None

    def __post_init__(self) -> None:
        if self.platform_role is not None and self.platform_role not in PlatformRole.ALL:
            raise ValueError(f"Unknown platform role: {self.platform_role}")
        for tenant_id, role in self.tenant_roles.items():
            if role not in TenantRole.ALL:
                raise ValueError(f"Unknown tenant role for {tenant_id}: {role}")
        for tenant_id, tier in self.subscription_tiers.items():
            if tier not in Tier.ALL:
                raise ValueError(f"Unknown subscription tier for {tenant_id}: {tier}")
        object.__setattr__(self, "tenant_roles", _frozen(self.tenant_roles))
        object.__setattr__(self, "subscription_tiers", _frozen(self.subscription_tiers))
        object.__setattr__(self, "subscription_statuses", _frozen(self.subscription_statuses))

    @property
    def is_platform_admin(self) -> bool:
        return self.platform_role == PlatformRole.ADMIN

    @property
    def tenant_ids(self) -> frozenset[str]:
        """Tenants on which the principal holds a role or a tier."""
        return frozenset(self.tenant_roles) | frozenset(self.subscription_tiers)

    def role_for(self, tenant_id: Optional[str]) -> Optional[str]:
        if tenant_id is None:
            return None
        return self.tenant_roles.get(tenant_id)

    def tier_for(self, tenant_id: Optional[str]) -> Optional[str]:
        if tenant_id is None:
            return None
        return self.subscription_tiers.get(tenant_id)

    def subscription_active(self, tenant_id: Optional[str]) -> bool:
        status = self.subscription_statuses.get(tenant_id or "", SubscriptionStatus.ACTIVE)
        return status not in SubscriptionStatus.INACTIVE

    @property
    def reference(self) -> str:
        """Stable label for audit records."""
        if self.user_id:
            return self.user_id
        if self.platform_role:
            return self.platform_role.lower()
        return "anonymous"

    def to_dict(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "platformRole": self.platform_role,
            "tenantRoles": dict(self.tenant_roles),
            "subscriptionTiers": dict(self.subscription_tiers),
        }

    @classmethod
    def platform(cls, role: str, user_id: Optional[str] = None) -> "Principal":
        """Build a platform staff principal."""
        return cls(platform_role=role, user_id=user_id)

    @classmethod
    def tenant_user(
        cls,
        tenant_id: str,
        role: str,
        tier: str,
        user_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> "Principal":
        """Build a principal holding one role on one tenant."""
        return cls(
            tenant_roles={tenant_id: role},
            subscription_tiers={tenant_id: tier},
            subscription_statuses={tenant_id: status} if status else {},
            user_id=user_id,
        )


@dataclass(frozen=True)
class FeatureOverride:
    """Per-tenant exception to the tier gate of one feature.

    ``enabled=True`` grants the feature regardless of tier; ``False``
    revokes it even when the tier includes it. Role requirements still
    apply either way.
    """

    tenant_id: str
    feature_id: str
    enabled: bool
    reason: str = ""


def find_override(
    overrides: tuple[FeatureOverride, ...] | list[FeatureOverride],
    tenant_id: Optional[str],
    feature_id: str,
) -> Optional[FeatureOverride]:
    """Last matching override wins."""
    match = None
    for override in overrides:
        if override.tenant_id == tenant_id and override.feature_id == feature_id:
            match = override
    return match


__all__ = [
    "FeatureOverride",
    "Principal",
    "find_override",
]
