"""Tier/role access evaluator.

``authorize()`` is a pure function of a :class:`Principal`, a feature
id, an optional propagation scope and the (immutable) feature registry.
It performs no I/O and never mutates anything, so route handlers may
call it freely before touching the database.

Resolution order, highest precedence first:

1. Unregistered feature id → deny ``unknown_feature`` (every principal).
2. ``PLATFORM_ADMIN`` → allow.
3. ``PLATFORM_SUPPORT`` → allow read operations and ``support_bypass`` features.
4. ``PLATFORM_VIEWER`` → allow read operations.
5. Tenant principal → subscription tier AND tenant role must both satisfy
   the feature, then the role must carry authority for the scope.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol, Sequence

from ..exceptions import AuthorizationError
from .constants import Operation, PlatformRole, ScopeKind, TenantRole
from .features import DEFAULT_REGISTRY, FeatureDescriptor, FeatureRegistry
from .principal import FeatureOverride, Principal, find_override
from .tiers import (
    TIER_PRICING,
    feature_unlocked,
    role_satisfies,
    tier_display_name,
    upgrade_cost,
)

logger = logging.getLogger(__name__)


class DenialReason:
    """Fixed denial reasons. Tier and role denials use generated text."""

    UNKNOWN_FEATURE = "unknown_feature"
    NO_ACCESS = "no_access"
    SUBSCRIPTION_INACTIVE = "subscription_inactive"
    FEATURE_DISABLED = "feature disabled for this tenant"
    PLATFORM_SUPPORT_READ_ONLY = "platform support may only view or use support features"
    PLATFORM_VIEWER_READ_ONLY = "platform viewer is read-only"
    PLATFORM_ADMIN_REQUIRED = "requires platform admin role"


# Minimum tenant role on the source tenant for each propagation scope.
SCOPE_AUTHORITY: dict[str, str] = {
    ScopeKind.TENANT: TenantRole.MANAGER,
    ScopeKind.ORGANIZATION: TenantRole.ADMIN,
}


class ScopeLike(Protocol):
    """What the evaluator reads from a propagation scope."""

    @property
    def scope_kind(self) -> str: ...

    @property
    def source_tenant_id(self) -> Optional[str]: ...

    @property
    def dry_run(self) -> bool: ...


@dataclass(frozen=True)
class Decision:
    """Outcome of :func:`authorize`.

    ``reason`` is specific enough to drive an upgrade or permission
    prompt (e.g. ``"requires professional tier or higher"``).
    """

    allowed: bool
    reason: str
    feature_id: str
    required_tier: Optional[str] = None
    required_role: Optional[str] = None
    source: str = ""
    tenant_id: Optional[str] = None
    current_tier: Optional[str] = None

    def __bool__(self) -> bool:
        return self.allowed

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "allowed": self.allowed,
            "reason": self.reason,
            "featureId": self.feature_id,
        }
        if self.required_tier:
            data["requiredTier"] = self.required_tier
        if self.required_role:
            data["requiredRole"] = self.required_role
        return data

    def upgrade_prompt(self) -> Optional[dict[str, Any]]:
        """Upgrade payload for tier denials, None otherwise."""
        if self.allowed or self.source != "tier" or not self.required_tier:
            return None
        required_name = tier_display_name(self.required_tier)
        return {
            "featureId": self.feature_id,
            "currentTier": self.current_tier,
            "currentTierName": tier_display_name(self.current_tier),
            "currentPrice": TIER_PRICING.get(self.current_tier or "", 0),
            "requiredTier": self.required_tier,
            "requiredTierName": required_name,
            "requiredPrice": TIER_PRICING.get(self.required_tier, 0),
            "upgradeCost": upgrade_cost(self.current_tier, self.required_tier),
            "message": f"This feature requires {required_name} tier or higher",
        }


def tier_denial_reason(required_tier: str) -> str:
    return f"requires {required_tier} tier or higher"


def role_denial_reason(required_role: str) -> str:
    """Human-readable role requirement.

    Example::

        role_denial_reason("TENANT_OWNER")    # "requires tenant owner role"
        role_denial_reason("TENANT_MANAGER")  # "requires tenant manager role or higher"
    """
    label = "tenant " + required_role.removeprefix("TENANT_").lower()
    if required_role == TenantRole.HIERARCHY[-1]:
        return f"requires {label} role"
    return f"requires {label} role or higher"


def _resolve_tenant(principal: Principal, scope: Optional[ScopeLike], tenant_id: Optional[str]) -> Optional[str]:
    if tenant_id:
        return tenant_id
    if scope is not None and scope.source_tenant_id:
        return scope.source_tenant_id
    tenants = principal.tenant_ids
    if len(tenants) == 1:
        return next(iter(tenants))
    return None


def _deny(feature: FeatureDescriptor | str, reason: str, source: str, **kwargs: Any) -> Decision:
    feature_id = feature if isinstance(feature, str) else feature.id
    decision = Decision(allowed=False, reason=reason, feature_id=feature_id, source=source, **kwargs)
    logger.debug("Access denied to %s: %s (%s)", feature_id, reason, source)
    return decision


def _allow(feature: FeatureDescriptor, source: str, tenant_id: Optional[str] = None) -> Decision:
    return Decision(allowed=True, reason="allowed", feature_id=feature.id, source=source, tenant_id=tenant_id)


def authorize(
    principal: Principal,
    feature_id: str,
    scope: Optional[ScopeLike] = None,
    *,
    tenant_id: Optional[str] = None,
    registry: FeatureRegistry = DEFAULT_REGISTRY,
    overrides: Sequence[FeatureOverride] = (),
) -> Decision:
    """Decide whether ``principal`` may use ``feature_id``.

    Args:
        principal: The acting user.
        feature_id: A :class:`Features` constant.
        scope: Propagation scope when authorizing a propagation request.
            Dry-run scopes are evaluated as read operations.
        tenant_id: Tenant in question. Defaults to the scope's source
            tenant, then to the principal's only tenant.
        registry: Feature registry built at startup.
        overrides: Per-tenant feature overrides.

    Returns:
        A :class:`Decision`. Never raises for denials.

    Example::

        decision = authorize(principal, Features.BARCODE_SCAN, tenant_id="t-001")
        if not decision:
            return upgrade_response(decision.upgrade_prompt())
    """
    feature = registry.get(feature_id)
    if feature is None:
        return _deny(feature_id, DenialReason.UNKNOWN_FEATURE, "registry")

    operation = feature.operation
    if scope is not None and scope.dry_run:
        operation = Operation.READ
    scope_kind = scope.scope_kind if scope is not None else None
    tenant = _resolve_tenant(principal, scope, tenant_id)

    if principal.platform_role == PlatformRole.ADMIN:
        return _allow(feature, "platform_admin", tenant)

    if scope_kind == ScopeKind.PLATFORM:
        return _deny(
            feature,
            DenialReason.PLATFORM_ADMIN_REQUIRED,
            "scope",
            required_role=PlatformRole.ADMIN,
            tenant_id=tenant,
        )

    if principal.platform_role == PlatformRole.SUPPORT:
        if operation == Operation.READ or feature.support_bypass:
            return _allow(feature, "platform_support", tenant)
        return _deny(feature, DenialReason.PLATFORM_SUPPORT_READ_ONLY, "platform_support", tenant_id=tenant)

    if principal.platform_role == PlatformRole.VIEWER:
        if operation == Operation.READ:
            return _allow(feature, "platform_viewer", tenant)
        return _deny(feature, DenialReason.PLATFORM_VIEWER_READ_ONLY, "platform_viewer", tenant_id=tenant)

    role = principal.role_for(tenant)
    tier = principal.tier_for(tenant)
    if role is None and tier is None:
        return _deny(feature, DenialReason.NO_ACCESS, "tenant", tenant_id=tenant)

    if not principal.subscription_active(tenant):
        return _deny(
            feature,
            DenialReason.SUBSCRIPTION_INACTIVE,
            "tenant",
            required_tier=feature.required_tier,
            tenant_id=tenant,
            current_tier=tier,
        )

    override = find_override(overrides, tenant, feature.id)
    if override is not None and not override.enabled:
        return _deny(feature, DenialReason.FEATURE_DISABLED, "override", tenant_id=tenant, current_tier=tier)
    if override is None and not feature_unlocked(tier, feature):
        return _deny(
            feature,
            tier_denial_reason(feature.required_tier),
            "tier",
            required_tier=feature.required_tier,
            tenant_id=tenant,
            current_tier=tier,
        )

    if not role_satisfies(role, feature.required_role):
        return _deny(
            feature,
            role_denial_reason(feature.required_role or ""),
            "role",
            required_role=feature.required_role,
            tenant_id=tenant,
            current_tier=tier,
        )

    if scope_kind is not None:
        authority = SCOPE_AUTHORITY[scope_kind]
        if not role_satisfies(role, authority):
            return _deny(
                feature,
                f"{role_denial_reason(authority)} for {scope_kind} scope",
                "scope",
                required_role=authority,
                tenant_id=tenant,
                current_tier=tier,
            )

    return _allow(feature, "override" if override is not None else "tenant", tenant)


def require_feature(
    principal: Principal,
    feature_id: str,
    scope: Optional[ScopeLike] = None,
    *,
    tenant_id: Optional[str] = None,
    registry: FeatureRegistry = DEFAULT_REGISTRY,
    overrides: Sequence[FeatureOverride] = (),
) -> Decision:
    """Like :func:`authorize` but raise on denial.

    Raises:
        AuthorizationError: carrying the denial decision.
    """
    decision = authorize(
        principal,
        feature_id,
        scope,
        tenant_id=tenant_id,
        registry=registry,
        overrides=overrides,
    )
    if not decision.allowed:
        raise AuthorizationError(decision=decision)
    return decision


__all__ = [
    "Decision",
    "DenialReason",
    "SCOPE_AUTHORITY",
    "ScopeLike",
    "authorize",
    "require_feature",
    "role_denial_reason",
    "tier_denial_reason",
]
