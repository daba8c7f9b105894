"""Tests for scope descriptors and request parsing."""

from __future__ import annotations

import pytest
from pydantic import ValidationError as PydanticValidationError

from tenantcore import PropagationRequest, ScopeDescriptor, ValidationError
from tenantcore.propagation import (
    ConflictPolicy,
    DataCategory,
    OrganizationTargets,
    PlatformTargets,
    TenantTargets,
)


class TestScopeDescriptor:
    """Tests for ScopeDescriptor constructors and variants."""

    def test_tenant_scope(self) -> None:
        """Test the peer-to-peer constructor."""
        scope = ScopeDescriptor.tenant("t-001", ["t-002", "t-003"], DataCategory.PRODUCTS)
        assert isinstance(scope.target, TenantTargets)
        assert scope.scope_kind == "tenant"
        assert scope.target.target_tenant_ids == ("t-002", "t-003")
        assert scope.data_category == "products"

    def test_platform_confirmation(self) -> None:
        """Test that platform confirmation must be explicit."""
        assert not ScopeDescriptor.platform("t-001", "products").is_platform_confirmed
        assert ScopeDescriptor.platform("t-001", "products", confirm_platform_wide=True).is_platform_confirmed

    def test_discriminated_union(self) -> None:
        """Test parsing the tagged target variant."""
        scope = ScopeDescriptor.model_validate(
            {"target": {"kind": "organization", "organization_id": "org-77"}, "data_category": "business_hours"}
        )
        assert isinstance(scope.target, OrganizationTargets)
        assert scope.source_tenant_id is None

    def test_unknown_category_rejected(self) -> None:
        """Test that only known data categories are accepted."""
        with pytest.raises(PydanticValidationError):
            ScopeDescriptor.tenant("t-001", ["t-002"], "inventory_counts")

    def test_empty_organization_id_rejected(self) -> None:
        """Test that organization scope needs an id."""
        with pytest.raises(PydanticValidationError):
            OrganizationTargets(organization_id="")

    def test_frozen(self) -> None:
        """Test that scopes are immutable."""
        scope = ScopeDescriptor.tenant("t-001", ["t-002"], "products")
        with pytest.raises(PydanticValidationError):
            scope.dry_run = True  # type: ignore[misc]

    def test_with_source(self) -> None:
        """Test that with_source returns a copy."""
        scope = ScopeDescriptor.organization("org-77", "products")
        resolved = scope.with_source("t-hero")
        assert resolved.source_tenant_id == "t-hero"
        assert scope.source_tenant_id is None


class TestPropagationRequest:
    """Tests for PropagationRequest.from_payload."""

    def test_camel_case_payload(self) -> None:
        """Test parsing the API's camelCase body."""
        request = PropagationRequest.from_payload(
            {
                "scopeKind": "organization",
                "targetOrganizationId": "org-77",
                "dataCategory": "business_hours",
                "conflictPolicy": "merge",
                "dryRun": True,
            }
        )
        assert request.conflict_policy == ConflictPolicy.MERGE
        scope = request.to_scope()
        assert isinstance(scope.target, OrganizationTargets)
        assert scope.target.organization_id == "org-77"
        assert scope.dry_run is True

    def test_snake_case_payload(self) -> None:
        """Test that field names are accepted too."""
        request = PropagationRequest.from_payload(
            {
                "scope_kind": "tenant",
                "source_tenant_id": "t-001",
                "target_tenant_ids": ["t-002"],
                "data_category": "products",
            }
        )
        assert request.to_scope().target == TenantTargets(target_tenant_ids=("t-002",))

    def test_platform_without_confirmation_parses(self) -> None:
        """Missing confirmation is rejected at planning, not parsing."""
        request = PropagationRequest.from_payload(
            {"scopeKind": "platform", "sourceTenantId": "t-001", "dataCategory": "products"}
        )
        scope = request.to_scope()
        assert isinstance(scope.target, PlatformTargets)
        assert not scope.is_platform_confirmed

    def test_tenant_scope_requires_targets(self) -> None:
        """An omitted tenant list never means every tenant."""
        with pytest.raises(ValidationError) as exc_info:
            PropagationRequest.from_payload(
                {"scopeKind": "tenant", "sourceTenantId": "t-001", "dataCategory": "products"}
            )
        assert "targetTenantIds is required" in exc_info.value.message
        assert exc_info.value.details["kind"] == "invalid_scope"

    def test_organization_scope_rejects_tenant_list(self) -> None:
        """Test that scope kinds take only their own target fields."""
        with pytest.raises(ValidationError, match="not allowed for organization scope"):
            PropagationRequest.from_payload(
                {
                    "scopeKind": "organization",
                    "targetOrganizationId": "org-77",
                    "targetTenantIds": ["t-002"],
                    "dataCategory": "products",
                }
            )

    def test_confirmation_only_for_platform(self) -> None:
        """Test that confirmPlatformWide is rejected outside platform scope."""
        with pytest.raises(ValidationError, match="only valid for platform scope"):
            PropagationRequest.from_payload(
                {
                    "scopeKind": "tenant",
                    "sourceTenantId": "t-001",
                    "targetTenantIds": ["t-002"],
                    "dataCategory": "products",
                    "confirmPlatformWide": True,
                }
            )

    def test_unknown_fields_rejected(self) -> None:
        """Test that unknown keys are listed in the error."""
        with pytest.raises(ValidationError) as exc_info:
            PropagationRequest.from_payload(
                {
                    "scopeKind": "platform",
                    "sourceTenantId": "t-001",
                    "dataCategory": "products",
                    "allTenants": True,
                }
            )
        locs = [e["loc"] for e in exc_info.value.details["errors"]]
        assert "allTenants" in locs

    def test_unknown_scope_kind(self) -> None:
        """Test an invalid scope kind."""
        with pytest.raises(ValidationError):
            PropagationRequest.from_payload({"scopeKind": "galaxy", "dataCategory": "products"})
