"""Canonical feature registry.

Every tier-gated capability is declared exactly once, here. Route
handlers, background workers and the generated client mirror (see
:mod:`tenantcore.access.catalog`) all import these ids, so no layer can
drift to a different name for the same capability.

Provides:
- ``FeatureDescriptor`` — one gated capability.
- ``Features`` — feature id constants.
- ``FeatureRegistry`` — immutable, versioned lookup table.
- ``DEFAULT_REGISTRY`` and ``build_registry()``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import TYPE_CHECKING, Iterable, Iterator, Mapping, Optional

from ..exceptions import ConfigurationError
from .constants import Operation, TenantRole, Tier

if TYPE_CHECKING:
    from ..config import AccessSettings


@dataclass(frozen=True)
class FeatureDescriptor:
    """A named capability gated by subscription tier and, optionally, role.

    Attributes:
        id: Canonical feature key (e.g. ``"barcode_scan"``).
        required_tier: Minimum subscription tier.
        required_role: Minimum tenant role, or None when any member may use it.
        also_tiers: Tiers outside the ``required_tier`` inheritance chain that
            also unlock the feature (e.g. ``api_access`` for ``organization``).
        operation: :class:`Operation` performed by the feature.
        support_bypass: PLATFORM_SUPPORT may use it even though it is not read-only.
        display_name: Label for upgrade prompts and UI gating.
    """

    id: str
    required_tier: str
    required_role: Optional[str] = None
    also_tiers: tuple[str, ...] = ()
    operation: str = Operation.WRITE
    support_bypass: bool = False
    display_name: str = ""

    @property
    def label(self) -> str:
        return self.display_name or self.id.replace("_", " ").title()

    @property
    def is_read_only(self) -> bool:
        return self.operation == Operation.READ

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "requiredTier": self.required_tier,
            "alsoTiers": list(self.also_tiers),
            "requiredRole": self.required_role,
            "operation": self.operation,
            "supportBypass": self.support_bypass,
            "displayName": self.label,
        }


class Features:
    """Canonical feature ids.

    Use the constants, never string literals::

        authorize(principal, Features.BARCODE_SCAN)
        Features.propagation("products")  # "propagation_products"
    """

    # ── Google-Only ─────────────────────────────────────
    GOOGLE_SHOPPING = "google_shopping"
    GOOGLE_MERCHANT_CENTER = "google_merchant_center"
    BASIC_PRODUCT_PAGES = "basic_product_pages"
    QR_CODES_512 = "qr_codes_512"
    PERFORMANCE_ANALYTICS = "performance_analytics"

    # ── Starter ─────────────────────────────────────────
    STOREFRONT = "storefront"
    PRODUCT_SEARCH = "product_search"
    MOBILE_RESPONSIVE = "mobile_responsive"
    ENHANCED_SEO = "enhanced_seo"
    BASIC_CATEGORIES = "basic_categories"

    # ── Professional ────────────────────────────────────
    QUICK_START_WIZARD = "quick_start_wizard"
    BARCODE_SCAN = "barcode_scan"
    GBP_INTEGRATION = "gbp_integration"
    CUSTOM_BRANDING = "custom_branding"
    BUSINESS_LOGO = "business_logo"
    QR_CODES_1024 = "qr_codes_1024"
    IMAGE_GALLERY_5 = "image_gallery_5"
    INTERACTIVE_MAPS = "interactive_maps"
    PRIVACY_MODE = "privacy_mode"
    CUSTOM_MARKETING_COPY = "custom_marketing_copy"
    PRIORITY_SUPPORT = "priority_support"

    # ── Enterprise ──────────────────────────────────────
    UNLIMITED_SKUS = "unlimited_skus"
    WHITE_LABEL = "white_label"
    CUSTOM_DOMAIN = "custom_domain"
    QR_CODES_2048 = "qr_codes_2048"
    IMAGE_GALLERY_10 = "image_gallery_10"
    API_ACCESS = "api_access"
    ADVANCED_ANALYTICS = "advanced_analytics"
    DEDICATED_ACCOUNT_MANAGER = "dedicated_account_manager"
    SLA_GUARANTEE = "sla_guarantee"
    CUSTOM_INTEGRATIONS = "custom_integrations"

    # ── Organization ────────────────────────────────────
    PROPAGATION_PRODUCTS = "propagation_products"
    PROPAGATION_CATEGORIES = "propagation_categories"
    PROPAGATION_BUSINESS_HOURS = "propagation_business_hours"
    PROPAGATION_BUSINESS_PROFILE = "propagation_business_profile"
    PROPAGATION_FEATURE_FLAGS = "propagation_feature_flags"
    PROPAGATION_USER_ROLES = "propagation_user_roles"
    PROPAGATION_BRAND_ASSETS = "propagation_brand_assets"
    PROPAGATION_GBP_CATEGORY_SYNC = "propagation_gbp_category_sync"
    PROPAGATION_ROLLBACK = "propagation_rollback"
    ORGANIZATION_DASHBOARD = "organization_dashboard"
    HERO_LOCATION = "hero_location"
    STRATEGIC_TESTING = "strategic_testing"
    UNLIMITED_LOCATIONS = "unlimited_locations"
    SHARED_SKU_POOL = "shared_sku_pool"
    CENTRALIZED_CONTROL = "centralized_control"

    # ── Chain ───────────────────────────────────────────
    MULTI_LOCATION_5 = "multi_location_5"
    MULTI_LOCATION_25 = "multi_location_25"
    BASIC_PROPAGATION = "basic_propagation"
    ADVANCED_PROPAGATION = "advanced_propagation"

    # ── Tenant administration (every tier) ──────────────
    INVENTORY_MANAGEMENT = "inventory_management"
    TENANT_SETTINGS = "tenant_settings"
    USER_MANAGEMENT = "user_management"
    BILLING_MANAGEMENT = "billing_management"
    OWNERSHIP_TRANSFER = "ownership_transfer"
    TENANT_DELETION = "tenant_deletion"

    @staticmethod
    def propagation(data_category: str) -> str:
        """Feature id guarding propagation of ``data_category``.

        Example::

            Features.propagation("business_hours")  # "propagation_business_hours"
        """
        return f"propagation_{data_category}"


def _feature(
    feature_id: str,
    tier: str,
    role: Optional[str] = None,
    operation: str = Operation.WRITE,
    support_bypass: bool = False,
    display_name: str = "",
    also_tiers: tuple[str, ...] = (),
) -> FeatureDescriptor:
    return FeatureDescriptor(
        id=feature_id,
        required_tier=tier,
        required_role=role,
        also_tiers=also_tiers,
        operation=operation,
        support_bypass=support_bypass,
        display_name=display_name,
    )


_R = Operation.READ
_A = Operation.ADMIN

DEFAULT_FEATURES: tuple[FeatureDescriptor, ...] = (
    # Google-Only
    _feature(Features.GOOGLE_SHOPPING, Tier.GOOGLE_ONLY),
    _feature(Features.GOOGLE_MERCHANT_CENTER, Tier.GOOGLE_ONLY),
    _feature(Features.BASIC_PRODUCT_PAGES, Tier.GOOGLE_ONLY, operation=_R),
    _feature(Features.QR_CODES_512, Tier.GOOGLE_ONLY, display_name="QR Codes (512px)"),
    _feature(Features.PERFORMANCE_ANALYTICS, Tier.GOOGLE_ONLY, operation=_R),
    # Starter
    _feature(Features.STOREFRONT, Tier.STARTER),
    _feature(Features.PRODUCT_SEARCH, Tier.STARTER, operation=_R),
    _feature(Features.MOBILE_RESPONSIVE, Tier.STARTER, operation=_R),
    _feature(Features.ENHANCED_SEO, Tier.STARTER, display_name="Enhanced SEO"),
    _feature(Features.BASIC_CATEGORIES, Tier.STARTER, TenantRole.MEMBER),
    # Professional
    _feature(Features.QUICK_START_WIZARD, Tier.PROFESSIONAL, TenantRole.MANAGER),
    _feature(Features.BARCODE_SCAN, Tier.PROFESSIONAL, TenantRole.MEMBER, display_name="Product Scanning"),
    _feature(Features.GBP_INTEGRATION, Tier.PROFESSIONAL, TenantRole.MANAGER, display_name="Google Business Profile"),
    _feature(Features.CUSTOM_BRANDING, Tier.PROFESSIONAL, TenantRole.ADMIN),
    _feature(Features.BUSINESS_LOGO, Tier.PROFESSIONAL, TenantRole.MANAGER),
    _feature(Features.QR_CODES_1024, Tier.PROFESSIONAL, display_name="QR Codes (1024px)"),
    _feature(Features.IMAGE_GALLERY_5, Tier.PROFESSIONAL, display_name="Image Gallery (5 photos)"),
    _feature(Features.INTERACTIVE_MAPS, Tier.PROFESSIONAL),
    _feature(Features.PRIVACY_MODE, Tier.PROFESSIONAL, TenantRole.ADMIN),
    _feature(Features.CUSTOM_MARKETING_COPY, Tier.PROFESSIONAL),
    _feature(Features.PRIORITY_SUPPORT, Tier.PROFESSIONAL, operation=_R),
    # Enterprise
    _feature(Features.UNLIMITED_SKUS, Tier.ENTERPRISE, display_name="Unlimited SKUs"),
    _feature(Features.WHITE_LABEL, Tier.ENTERPRISE, TenantRole.ADMIN),
    _feature(Features.CUSTOM_DOMAIN, Tier.ENTERPRISE, TenantRole.ADMIN),
    _feature(Features.QR_CODES_2048, Tier.ENTERPRISE, display_name="QR Codes (2048px)"),
    _feature(Features.IMAGE_GALLERY_10, Tier.ENTERPRISE, display_name="Image Gallery (10 photos)"),
    _feature(
        Features.API_ACCESS,
        Tier.ENTERPRISE,
        TenantRole.ADMIN,
        display_name="API Access",
        also_tiers=(Tier.ORGANIZATION,),
    ),
    _feature(Features.ADVANCED_ANALYTICS, Tier.ENTERPRISE, operation=_R),
    _feature(Features.DEDICATED_ACCOUNT_MANAGER, Tier.ENTERPRISE, operation=_R),
    _feature(Features.SLA_GUARANTEE, Tier.ENTERPRISE, operation=_R, display_name="SLA Guarantee"),
    _feature(Features.CUSTOM_INTEGRATIONS, Tier.ENTERPRISE, TenantRole.ADMIN),
    # Organization
    _feature(Features.PROPAGATION_PRODUCTS, Tier.ORGANIZATION, TenantRole.MANAGER),
    _feature(Features.PROPAGATION_CATEGORIES, Tier.ORGANIZATION, TenantRole.MANAGER),
    _feature(Features.PROPAGATION_BUSINESS_HOURS, Tier.ORGANIZATION, TenantRole.MANAGER),
    _feature(Features.PROPAGATION_BUSINESS_PROFILE, Tier.ORGANIZATION, TenantRole.MANAGER),
    _feature(Features.PROPAGATION_FEATURE_FLAGS, Tier.ORGANIZATION, TenantRole.MANAGER),
    _feature(Features.PROPAGATION_USER_ROLES, Tier.ORGANIZATION, TenantRole.MANAGER),
    _feature(Features.PROPAGATION_BRAND_ASSETS, Tier.ORGANIZATION, TenantRole.MANAGER),
    _feature(
        Features.PROPAGATION_GBP_CATEGORY_SYNC,
        Tier.ORGANIZATION,
        TenantRole.MANAGER,
        display_name="Propagation GBP Category Sync",
    ),
    _feature(Features.PROPAGATION_ROLLBACK, Tier.ORGANIZATION, TenantRole.ADMIN, operation=_A),
    _feature(Features.ORGANIZATION_DASHBOARD, Tier.ORGANIZATION, operation=_R),
    _feature(Features.HERO_LOCATION, Tier.ORGANIZATION, TenantRole.ADMIN),
    _feature(Features.STRATEGIC_TESTING, Tier.ORGANIZATION, TenantRole.MANAGER),
    _feature(Features.UNLIMITED_LOCATIONS, Tier.ORGANIZATION),
    _feature(Features.SHARED_SKU_POOL, Tier.ORGANIZATION, display_name="Shared SKU Pool"),
    _feature(Features.CENTRALIZED_CONTROL, Tier.ORGANIZATION, TenantRole.ADMIN),
    # Chain
    _feature(Features.MULTI_LOCATION_5, Tier.CHAIN_STARTER, display_name="Multi-Location (5)"),
    _feature(Features.MULTI_LOCATION_25, Tier.CHAIN_PROFESSIONAL, display_name="Multi-Location (25)"),
    _feature(Features.BASIC_PROPAGATION, Tier.CHAIN_PROFESSIONAL, TenantRole.MANAGER),
    _feature(Features.ADVANCED_PROPAGATION, Tier.CHAIN_ENTERPRISE, TenantRole.MANAGER),
    # Tenant administration
    _feature(Features.INVENTORY_MANAGEMENT, Tier.GOOGLE_ONLY, TenantRole.MEMBER, support_bypass=True),
    _feature(Features.TENANT_SETTINGS, Tier.GOOGLE_ONLY, TenantRole.ADMIN, support_bypass=True),
    _feature(Features.USER_MANAGEMENT, Tier.GOOGLE_ONLY, TenantRole.ADMIN),
    _feature(Features.BILLING_MANAGEMENT, Tier.GOOGLE_ONLY, TenantRole.OWNER, operation=_A),
    _feature(Features.OWNERSHIP_TRANSFER, Tier.GOOGLE_ONLY, TenantRole.OWNER, operation=_A),
    _feature(Features.TENANT_DELETION, Tier.GOOGLE_ONLY, TenantRole.OWNER, operation=_A),
)


class FeatureRegistry:
    """Immutable, versioned table of feature descriptors.

    Built once at process start and shared by every request. The
    ``version`` is a content hash, so two processes serving the same
    table report the same version (the generated client mirror carries
    it for drift detection).

    Raises:
        ConfigurationError: on duplicate ids or unknown tier/role/operation values.
    """

    __slots__ = ("_features", "_version")

    def __init__(self, features: Iterable[FeatureDescriptor]) -> None:
        table: dict[str, FeatureDescriptor] = {}
        for feature in features:
            _validate_descriptor(feature)
            if feature.id in table:
                raise ConfigurationError(f"Duplicate feature id '{feature.id}'", feature_id=feature.id)
            table[feature.id] = feature
        object.__setattr__(self, "_features", MappingProxyType(table))
        object.__setattr__(self, "_version", _content_hash(table.values()))

    def __setattr__(self, name: str, value: object) -> None:
        raise AttributeError("FeatureRegistry is immutable")

    @property
    def version(self) -> str:
        return self._version

    @property
    def features(self) -> Mapping[str, FeatureDescriptor]:
        return self._features

    def get(self, feature_id: str) -> Optional[FeatureDescriptor]:
        return self._features.get(feature_id)

    def ids(self) -> frozenset[str]:
        return frozenset(self._features)

    def __contains__(self, feature_id: object) -> bool:
        return feature_id in self._features

    def __iter__(self) -> Iterator[FeatureDescriptor]:
        return iter(self._features.values())

    def __len__(self) -> int:
        return len(self._features)

    def with_role_requirements(self, requirements: Mapping[str, Optional[str]]) -> "FeatureRegistry":
        """Return a new registry with per-deployment role requirements applied.

        A role of ``None`` or ``"NONE"`` removes the role requirement.

        Raises:
            ConfigurationError: if a feature id is not registered.
        """
        if not requirements:
            return self
        unknown = sorted(set(requirements) - set(self._features))
        if unknown:
            raise ConfigurationError(
                f"Role requirements reference unknown features: {', '.join(unknown)}",
                feature_ids=unknown,
            )
        updated = []
        for feature in self._features.values():
            if feature.id in requirements:
                role = requirements[feature.id]
                if role is not None and role.upper() == "NONE":
                    role = None
                feature = replace(feature, required_role=role)
            updated.append(feature)
        return FeatureRegistry(updated)

    def __repr__(self) -> str:
        return f"FeatureRegistry(features={len(self)}, version={self.version!r})"


def _validate_descriptor(feature: FeatureDescriptor) -> None:
    if feature.required_tier not in Tier.ALL:
        raise ConfigurationError(
            f"Feature '{feature.id}' has unknown tier '{feature.required_tier}'",
            feature_id=feature.id,
        )
    unknown = [t for t in feature.also_tiers if t not in Tier.ALL]
    if unknown:
        raise ConfigurationError(
            f"Feature '{feature.id}' has unknown tiers {unknown}",
            feature_id=feature.id,
        )
    if feature.required_role is not None and feature.required_role not in TenantRole.ALL:
        raise ConfigurationError(
            f"Feature '{feature.id}' has unknown role '{feature.required_role}'",
            feature_id=feature.id,
        )
    if feature.operation not in Operation.HIERARCHY:
        raise ConfigurationError(
            f"Feature '{feature.id}' has unknown operation '{feature.operation}'",
            feature_id=feature.id,
        )


def _content_hash(features: Iterable[FeatureDescriptor]) -> str:
    rows = sorted((f.to_dict() for f in features), key=lambda row: str(row["id"]))
    digest = hashlib.sha256(json.dumps(rows, sort_keys=True).encode("utf-8"))
    return digest.hexdigest()[:12]


DEFAULT_REGISTRY = FeatureRegistry(DEFAULT_FEATURES)


def build_registry(settings: Optional["AccessSettings"] = None) -> FeatureRegistry:
    """Build the process-wide registry from access settings.

    Call once at startup and pass the result to :func:`authorize` and
    the propagation engine.
    """
    if settings is None or not settings.role_requirements:
        return DEFAULT_REGISTRY
    return DEFAULT_REGISTRY.with_role_requirements(settings.role_requirements)


def get_feature(feature_id: str, registry: FeatureRegistry = DEFAULT_REGISTRY) -> Optional[FeatureDescriptor]:
    """Look up a feature descriptor, None when unregistered."""
    return registry.get(feature_id)


__all__ = [
    "DEFAULT_FEATURES",
    "DEFAULT_REGISTRY",
    "FeatureDescriptor",
    "FeatureRegistry",
    "Features",
    "build_registry",
    "get_feature",
]
