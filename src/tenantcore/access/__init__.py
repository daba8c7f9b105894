"""Tier/role access evaluation for tenant features.

Defines:
- Tier, TenantRole, PlatformRole, Operation, ScopeKind: access constants
- Features / FeatureRegistry: the single canonical feature table
- TIER_INHERITANCE / expand_tiers(): tier inclusion rules
- Principal / FeatureOverride: request-time inputs
- authorize() / require_feature(): the decision function
"""

from .catalog import build_feature_catalog
from .constants import Operation, PlatformRole, ScopeKind, SubscriptionStatus, TenantRole, Tier
from .evaluator import (
    SCOPE_AUTHORITY,
    Decision,
    DenialReason,
    authorize,
    require_feature,
    role_denial_reason,
    tier_denial_reason,
)
from .features import (
    DEFAULT_FEATURES,
    DEFAULT_REGISTRY,
    FeatureDescriptor,
    FeatureRegistry,
    Features,
    build_registry,
    get_feature,
)
from .principal import FeatureOverride, Principal
from .tiers import (
    TIER_DISPLAY_NAMES,
    TIER_INHERITANCE,
    TIER_PRICING,
    expand_tiers,
    feature_unlocked,
    role_satisfies,
    tier_features,
    tier_satisfies,
    upgrade_cost,
)

__all__ = [
    "DEFAULT_FEATURES",
    "DEFAULT_REGISTRY",
    "Decision",
    "DenialReason",
    "FeatureDescriptor",
    "FeatureOverride",
    "FeatureRegistry",
    "Features",
    "Operation",
    "PlatformRole",
    "Principal",
    "SCOPE_AUTHORITY",
    "ScopeKind",
    "SubscriptionStatus",
    "TIER_DISPLAY_NAMES",
    "TIER_INHERITANCE",
    "TIER_PRICING",
    "TenantRole",
    "Tier",
    "authorize",
    "build_feature_catalog",
    "build_registry",
    "expand_tiers",
    "feature_unlocked",
    "get_feature",
    "require_feature",
    "role_denial_reason",
    "role_satisfies",
    "tier_denial_reason",
    "tier_features",
    "tier_satisfies",
    "upgrade_cost",
]
