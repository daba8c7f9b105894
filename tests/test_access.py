"""Tests for tier/role access evaluation."""

from __future__ import annotations

import pytest

from tenantcore import AuthorizationError
from tenantcore.access import (
    DEFAULT_REGISTRY,
    DenialReason,
    FeatureDescriptor,
    FeatureOverride,
    FeatureRegistry,
    Features,
    Operation,
    PlatformRole,
    Principal,
    SubscriptionStatus,
    TenantRole,
    Tier,
    authorize,
    build_registry,
    expand_tiers,
    feature_unlocked,
    require_feature,
    role_satisfies,
    tier_features,
    tier_satisfies,
    upgrade_cost,
)
from tenantcore.config import AccessSettings
from tenantcore.exceptions import ConfigurationError
from tenantcore.propagation import DataCategory, ScopeDescriptor

ALL_PRINCIPALS = (
    Principal.platform(PlatformRole.ADMIN),
    Principal.platform(PlatformRole.SUPPORT),
    Principal.platform(PlatformRole.VIEWER),
    Principal.tenant_user("t-001", TenantRole.OWNER, Tier.CHAIN_ENTERPRISE),
    Principal(),
)


class TestTierInheritance:
    """Tests for expand_tiers and tier_satisfies."""

    def test_individual_ordering(self) -> None:
        """Test google_only < starter < professional < enterprise."""
        assert expand_tiers(Tier.PROFESSIONAL) == {Tier.GOOGLE_ONLY, Tier.STARTER, Tier.PROFESSIONAL}
        assert tier_satisfies(Tier.ENTERPRISE, Tier.GOOGLE_ONLY)
        assert not tier_satisfies(Tier.STARTER, Tier.PROFESSIONAL)

    def test_organization_is_parallel_to_enterprise(self) -> None:
        """Test that organization and enterprise do not include each other."""
        assert not tier_satisfies(Tier.ORGANIZATION, Tier.ENTERPRISE)
        assert not tier_satisfies(Tier.ENTERPRISE, Tier.ORGANIZATION)
        assert tier_satisfies(Tier.ORGANIZATION, Tier.PROFESSIONAL)

    def test_api_access_granted_to_organization(self) -> None:
        """Test that organization unlocks api_access without other enterprise features."""
        owner = Principal.tenant_user("t-001", TenantRole.OWNER, Tier.ORGANIZATION)
        assert authorize(owner, Features.API_ACCESS).allowed
        assert not authorize(owner, Features.WHITE_LABEL).allowed
        assert Features.API_ACCESS in tier_features(Tier.ORGANIZATION)
        assert Features.API_ACCESS not in tier_features(Tier.PROFESSIONAL)
        assert feature_unlocked(Tier.ENTERPRISE, DEFAULT_REGISTRY.get(Features.API_ACCESS))
        assert not feature_unlocked(None, DEFAULT_REGISTRY.get(Features.API_ACCESS))

    def test_chain_enterprise_includes_everything(self) -> None:
        """Test the top chain tier reaches every other tier."""
        assert expand_tiers(Tier.CHAIN_ENTERPRISE) == Tier.ALL

    def test_unknown_tier(self) -> None:
        """Test that unknown or missing tiers satisfy nothing."""
        assert expand_tiers("platinum") == frozenset()
        assert not tier_satisfies(None, Tier.GOOGLE_ONLY)

    @pytest.mark.parametrize("ordering", [Tier.INDIVIDUAL, Tier.CHAIN])
    def test_features_monotonic_in_tier(self, ordering: tuple[str, ...]) -> None:
        """Test that a higher tier never loses a feature of a lower tier."""
        for lower, higher in zip(ordering, ordering[1:]):
            assert tier_features(lower) <= tier_features(higher)

    @pytest.mark.parametrize("ordering", [Tier.INDIVIDUAL, Tier.CHAIN])
    def test_authorize_monotonic_in_tier(self, ordering: tuple[str, ...]) -> None:
        """Test that an allowed feature stays allowed at every higher tier."""
        for feature in DEFAULT_REGISTRY:
            allowed = False
            for tier in ordering:
                principal = Principal.tenant_user("t-001", TenantRole.OWNER, tier)
                decision = authorize(principal, feature.id)
                assert decision.allowed or not allowed, f"{feature.id} lost at {tier}"
                allowed = decision.allowed

    def test_upgrade_cost(self) -> None:
        """Test monthly price differences."""
        assert upgrade_cost(Tier.STARTER, Tier.PROFESSIONAL) == 450
        assert upgrade_cost(None, Tier.STARTER) == 49
        assert upgrade_cost(Tier.ENTERPRISE, Tier.STARTER) == 0


class TestRoleHierarchy:
    """Tests for role_satisfies."""

    def test_higher_role_satisfies_lower(self) -> None:
        """Test the role ordering."""
        assert role_satisfies(TenantRole.OWNER, TenantRole.VIEWER)
        assert role_satisfies(TenantRole.ADMIN, TenantRole.MANAGER)
        assert not role_satisfies(TenantRole.MEMBER, TenantRole.MANAGER)

    def test_owner_only(self) -> None:
        """Test that TENANT_ADMIN is capped below TENANT_OWNER."""
        assert not role_satisfies(TenantRole.ADMIN, TenantRole.OWNER)
        assert role_satisfies(TenantRole.OWNER, TenantRole.OWNER)

    def test_no_requirement(self) -> None:
        """Test that a missing requirement is always met."""
        assert role_satisfies(None, None)
        assert not role_satisfies(None, TenantRole.VIEWER)


class TestAuthorizeTenantPrincipal:
    """Tests for authorize() with tenant principals."""

    def test_tier_denial(self) -> None:
        """Starter tenant asking for barcode scanning gets an upgrade prompt."""
        principal = Principal.tenant_user("t-001", TenantRole.OWNER, Tier.STARTER)
        decision = authorize(principal, Features.BARCODE_SCAN)

        assert not decision
        assert decision.reason == "requires professional tier or higher"
        assert decision.required_tier == Tier.PROFESSIONAL
        assert decision.to_dict() == {
            "allowed": False,
            "reason": "requires professional tier or higher",
            "featureId": "barcode_scan",
            "requiredTier": "professional",
        }

    def test_upgrade_prompt(self) -> None:
        """Test the upgrade payload of a tier denial."""
        principal = Principal.tenant_user("t-001", TenantRole.OWNER, Tier.STARTER)
        prompt = authorize(principal, Features.BARCODE_SCAN).upgrade_prompt()

        assert prompt is not None
        assert prompt["currentTier"] == Tier.STARTER
        assert prompt["requiredTier"] == Tier.PROFESSIONAL
        assert prompt["upgradeCost"] == 450
        assert prompt["message"] == "This feature requires Professional tier or higher"

    def test_role_denial_owner_only(self) -> None:
        """TENANT_ADMIN may not delete the tenant."""
        principal = Principal.tenant_user("t-001", TenantRole.ADMIN, Tier.ENTERPRISE)
        decision = authorize(principal, Features.TENANT_DELETION, tenant_id="t-001")

        assert not decision.allowed
        assert decision.reason == "requires tenant owner role"
        assert decision.required_role == TenantRole.OWNER
        assert decision.upgrade_prompt() is None

    def test_role_denial_or_higher(self) -> None:
        """Test the wording of non-owner role requirements."""
        principal = Principal.tenant_user("t-001", TenantRole.MEMBER, Tier.PROFESSIONAL)
        decision = authorize(principal, Features.GBP_INTEGRATION)
        assert decision.reason == "requires tenant manager role or higher"

    def test_allowed(self) -> None:
        """Test that tier and role together allow the feature."""
        principal = Principal.tenant_user("t-001", TenantRole.MEMBER, Tier.PROFESSIONAL)
        decision = authorize(principal, Features.BARCODE_SCAN)
        assert decision.allowed
        assert decision.source == "tenant"
        assert decision.tenant_id == "t-001"

    def test_no_access_to_other_tenant(self) -> None:
        """Test that a principal without role or tier on a tenant is denied."""
        principal = Principal.tenant_user("t-001", TenantRole.OWNER, Tier.ENTERPRISE)
        decision = authorize(principal, Features.STOREFRONT, tenant_id="t-999")
        assert decision.reason == DenialReason.NO_ACCESS

    def test_anonymous_principal(self) -> None:
        """Test that an empty principal is denied."""
        assert authorize(Principal(), Features.STOREFRONT).reason == DenialReason.NO_ACCESS

    def test_inactive_subscription(self) -> None:
        """Test that canceled subscriptions deny every feature."""
        principal = Principal.tenant_user(
            "t-001",
            TenantRole.OWNER,
            Tier.ENTERPRISE,
            status=SubscriptionStatus.CANCELED,
        )
        decision = authorize(principal, Features.STOREFRONT)
        assert decision.reason == DenialReason.SUBSCRIPTION_INACTIVE

    def test_trial_is_active(self) -> None:
        """Test that trial status keeps the selected tier's features."""
        principal = Principal.tenant_user(
            "t-001",
            TenantRole.OWNER,
            Tier.PROFESSIONAL,
            status=SubscriptionStatus.TRIAL,
        )
        assert authorize(principal, Features.BARCODE_SCAN).allowed

    def test_multi_tenant_principal_requires_tenant(self) -> None:
        """Test that an ambiguous tenant resolves to no access."""
        principal = Principal(
            tenant_roles={"t-001": TenantRole.OWNER, "t-002": TenantRole.OWNER},
            subscription_tiers={"t-001": Tier.ENTERPRISE, "t-002": Tier.ENTERPRISE},
        )
        assert authorize(principal, Features.STOREFRONT).reason == DenialReason.NO_ACCESS
        assert authorize(principal, Features.STOREFRONT, tenant_id="t-002").allowed


class TestAuthorizePlatformRoles:
    """Tests for authorize() with platform staff."""

    def test_platform_admin_bypasses_everything(self) -> None:
        """PLATFORM_ADMIN is allowed every registered feature."""
        admin = Principal.platform(PlatformRole.ADMIN)
        for feature in DEFAULT_REGISTRY:
            decision = authorize(admin, feature.id)
            assert decision.allowed, feature.id
            assert decision.source == "platform_admin"

    def test_support_reads(self) -> None:
        """PLATFORM_SUPPORT may view but not modify."""
        support = Principal.platform(PlatformRole.SUPPORT)
        assert authorize(support, Features.ADVANCED_ANALYTICS).allowed
        decision = authorize(support, Features.CUSTOM_DOMAIN)
        assert decision.reason == DenialReason.PLATFORM_SUPPORT_READ_ONLY

    def test_support_bypass_features(self) -> None:
        """PLATFORM_SUPPORT may use support_bypass features."""
        support = Principal.platform(PlatformRole.SUPPORT)
        assert authorize(support, Features.INVENTORY_MANAGEMENT).allowed
        assert authorize(support, Features.TENANT_SETTINGS).allowed
        assert not authorize(support, Features.TENANT_DELETION).allowed

    def test_viewer_is_read_only(self) -> None:
        """PLATFORM_VIEWER may only use read operations."""
        viewer = Principal.platform(PlatformRole.VIEWER)
        for feature in DEFAULT_REGISTRY:
            assert authorize(viewer, feature.id).allowed is (feature.operation == Operation.READ), feature.id

    def test_support_dry_run_preview(self) -> None:
        """A dry-run scope is evaluated as a read operation."""
        support = Principal.platform(PlatformRole.SUPPORT)
        preview = ScopeDescriptor.tenant("t-001", ["t-002"], DataCategory.PRODUCTS, dry_run=True)
        live = ScopeDescriptor.tenant("t-001", ["t-002"], DataCategory.PRODUCTS)
        assert authorize(support, Features.PROPAGATION_PRODUCTS, preview).allowed
        assert not authorize(support, Features.PROPAGATION_PRODUCTS, live).allowed


class TestAuthorizeUnknownFeature:
    """Tests for unregistered feature ids."""

    @pytest.mark.parametrize("principal", ALL_PRINCIPALS)
    def test_unknown_feature_denied(self, principal: Principal) -> None:
        """Every principal, admin included, is denied an unknown feature."""
        decision = authorize(principal, "product_scanning")
        assert not decision.allowed
        assert decision.reason == DenialReason.UNKNOWN_FEATURE


class TestAuthorizeScopes:
    """Tests for propagation scope authority."""

    def test_platform_scope_requires_admin(self) -> None:
        """Only PLATFORM_ADMIN may use platform scope."""
        owner = Principal.tenant_user("t-001", TenantRole.OWNER, Tier.CHAIN_ENTERPRISE)
        scope = ScopeDescriptor.platform("t-001", DataCategory.PRODUCTS, confirm_platform_wide=True)
        decision = authorize(owner, Features.PROPAGATION_PRODUCTS, scope)
        assert decision.reason == DenialReason.PLATFORM_ADMIN_REQUIRED
        assert authorize(Principal.platform(PlatformRole.ADMIN), Features.PROPAGATION_PRODUCTS, scope).allowed

    def test_organization_scope_requires_admin_role(self) -> None:
        """A manager may propagate to siblings but not to the organization."""
        manager = Principal.tenant_user("t-001", TenantRole.MANAGER, Tier.ORGANIZATION)
        tenant_scope = ScopeDescriptor.tenant("t-001", ["t-002"], DataCategory.PRODUCTS)
        org_scope = ScopeDescriptor.organization("org-1", DataCategory.PRODUCTS, source_tenant_id="t-001")

        assert authorize(manager, Features.PROPAGATION_PRODUCTS, tenant_scope).allowed
        decision = authorize(manager, Features.PROPAGATION_PRODUCTS, org_scope)
        assert decision.reason == "requires tenant admin role or higher for organization scope"
        assert decision.required_role == TenantRole.ADMIN

    def test_enterprise_tier_cannot_propagate(self) -> None:
        """Test that propagation needs the organization tier."""
        owner = Principal.tenant_user("t-001", TenantRole.OWNER, Tier.ENTERPRISE)
        scope = ScopeDescriptor.tenant("t-001", ["t-002"], DataCategory.BUSINESS_HOURS)
        decision = authorize(owner, Features.PROPAGATION_BUSINESS_HOURS, scope)
        assert decision.reason == "requires organization tier or higher"


class TestOverrides:
    """Tests for per-tenant feature overrides."""

    def test_override_grants_feature(self) -> None:
        """An enabled override bypasses the tier gate."""
        principal = Principal.tenant_user("t-001", TenantRole.OWNER, Tier.STARTER)
        override = FeatureOverride("t-001", Features.BARCODE_SCAN, True, reason="pilot")
        decision = authorize(principal, Features.BARCODE_SCAN, overrides=[override])
        assert decision.allowed
        assert decision.source == "override"

    def test_override_keeps_role_check(self) -> None:
        """An enabled override does not bypass the role requirement."""
        principal = Principal.tenant_user("t-001", TenantRole.VIEWER, Tier.STARTER)
        override = FeatureOverride("t-001", Features.BARCODE_SCAN, True)
        decision = authorize(principal, Features.BARCODE_SCAN, overrides=[override])
        assert decision.reason == "requires tenant member role or higher"

    def test_override_revokes_feature(self) -> None:
        """A disabled override denies a feature the tier includes."""
        principal = Principal.tenant_user("t-001", TenantRole.OWNER, Tier.ENTERPRISE)
        override = FeatureOverride("t-001", Features.BARCODE_SCAN, False)
        decision = authorize(principal, Features.BARCODE_SCAN, overrides=[override])
        assert decision.reason == DenialReason.FEATURE_DISABLED

    def test_override_for_other_tenant_ignored(self) -> None:
        """Test that overrides apply to their own tenant only."""
        principal = Principal.tenant_user("t-001", TenantRole.OWNER, Tier.STARTER)
        override = FeatureOverride("t-002", Features.BARCODE_SCAN, True)
        assert not authorize(principal, Features.BARCODE_SCAN, overrides=[override]).allowed


class TestRequireFeature:
    """Tests for require_feature."""

    def test_raises_with_requirement(self) -> None:
        """Test that the denial is raised as AuthorizationError."""
        principal = Principal.tenant_user("t-001", TenantRole.OWNER, Tier.STARTER)
        with pytest.raises(AuthorizationError) as exc_info:
            require_feature(principal, Features.BARCODE_SCAN)
        assert exc_info.value.required_tier == Tier.PROFESSIONAL

    def test_returns_decision(self) -> None:
        """Test that allowed decisions are returned."""
        principal = Principal.tenant_user("t-001", TenantRole.OWNER, Tier.PROFESSIONAL)
        assert require_feature(principal, Features.BARCODE_SCAN).allowed


class TestFeatureRegistry:
    """Tests for the canonical feature registry."""

    def test_canonical_scanning_id(self) -> None:
        """Test that barcode scanning has exactly one id."""
        assert Features.BARCODE_SCAN in DEFAULT_REGISTRY
        assert "product_scanning" not in DEFAULT_REGISTRY
        assert DEFAULT_REGISTRY.get(Features.BARCODE_SCAN).required_tier == Tier.PROFESSIONAL

    def test_every_category_has_propagation_feature(self) -> None:
        """Test that each data category is guarded by a feature."""
        for category in DataCategory:
            assert Features.propagation(category.value) in DEFAULT_REGISTRY

    def test_immutable(self) -> None:
        """Test that the registry cannot be mutated."""
        with pytest.raises(AttributeError):
            DEFAULT_REGISTRY.extra = 1  # type: ignore[attr-defined]
        with pytest.raises(TypeError):
            DEFAULT_REGISTRY.features["new"] = DEFAULT_REGISTRY.get(Features.STOREFRONT)  # type: ignore[index]

    def test_duplicate_ids_rejected(self) -> None:
        """Test that a feature id can be declared only once."""
        feature = FeatureDescriptor("storefront", Tier.STARTER)
        with pytest.raises(ConfigurationError, match="Duplicate"):
            FeatureRegistry([feature, feature])

    def test_unknown_tier_rejected(self) -> None:
        """Test descriptor validation."""
        with pytest.raises(ConfigurationError, match="unknown tier"):
            FeatureRegistry([FeatureDescriptor("storefront", "platinum")])

    def test_unknown_also_tier_rejected(self) -> None:
        """Test that extra granting tiers are validated too."""
        with pytest.raises(ConfigurationError, match="unknown tiers"):
            FeatureRegistry([FeatureDescriptor("api_access", Tier.ENTERPRISE, also_tiers=("platinum",))])

    def test_version_is_content_hash(self) -> None:
        """Test that equal tables share a version."""
        assert FeatureRegistry(list(DEFAULT_REGISTRY)).version == DEFAULT_REGISTRY.version
        changed = DEFAULT_REGISTRY.with_role_requirements({Features.STOREFRONT: TenantRole.ADMIN})
        assert changed.version != DEFAULT_REGISTRY.version

    def test_with_role_requirements(self) -> None:
        """Test per-deployment role requirements."""
        registry = DEFAULT_REGISTRY.with_role_requirements(
            {Features.BARCODE_SCAN: TenantRole.MANAGER, Features.GBP_INTEGRATION: "NONE"}
        )
        assert registry.get(Features.BARCODE_SCAN).required_role == TenantRole.MANAGER
        assert registry.get(Features.GBP_INTEGRATION).required_role is None
        assert DEFAULT_REGISTRY.get(Features.BARCODE_SCAN).required_role == TenantRole.MEMBER

        member = Principal.tenant_user("t-001", TenantRole.MEMBER, Tier.PROFESSIONAL)
        decision = authorize(member, Features.BARCODE_SCAN, registry=registry)
        assert decision.reason == "requires tenant manager role or higher"

    def test_with_role_requirements_unknown_feature(self) -> None:
        """Test that role requirements must name registered features."""
        with pytest.raises(ConfigurationError):
            DEFAULT_REGISTRY.with_role_requirements({"product_scanning": TenantRole.MEMBER})

    def test_build_registry_from_settings(self) -> None:
        """Test building the registry from AccessSettings."""
        assert build_registry() is DEFAULT_REGISTRY
        settings = AccessSettings(role_requirements="barcode_scan=TENANT_ADMIN")
        registry = build_registry(settings)
        assert registry.get(Features.BARCODE_SCAN).required_role == TenantRole.ADMIN


class TestPrincipal:
    """Tests for Principal."""

    def test_unknown_role_rejected(self) -> None:
        """Test that invalid roles fail fast."""
        with pytest.raises(ValueError):
            Principal(platform_role="ROOT")
        with pytest.raises(ValueError):
            Principal(tenant_roles={"t-001": "TENANT_GOD"})

    def test_mappings_are_read_only(self) -> None:
        """Test that the principal cannot be mutated through its mappings."""
        principal = Principal.tenant_user("t-001", TenantRole.OWNER, Tier.STARTER)
        with pytest.raises(TypeError):
            principal.tenant_roles["t-002"] = TenantRole.OWNER  # type: ignore[index]

    def test_reference(self) -> None:
        """Test the audit label."""
        assert Principal.platform(PlatformRole.ADMIN, user_id="u-1").reference == "u-1"
        assert Principal.platform(PlatformRole.SUPPORT).reference == "platform_support"
        assert Principal().reference == "anonymous"
