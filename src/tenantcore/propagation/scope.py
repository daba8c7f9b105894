"""Propagation scope descriptors and inbound request parsing.

Scope is a tagged variant, never an optional tenant id::

    TenantTargets(target_tenant_ids=(...))       # explicit siblings
    OrganizationTargets(organization_id="org-77")  # every member location
    PlatformTargets(confirm_platform_wide=True)  # every tenant, confirmed

No combination of fields means "all tenants" implicitly: an omitted
tenant list is a parse error, and a platform target without its
separately-named confirmation is rejected by the planner.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Mapping, Optional, Union

from pydantic import BaseModel, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from ..access.constants import ScopeKind
from ..exceptions import ValidationError
from .policy import ConflictPolicy


class DataCategory(str, Enum):
    """Data categories that can be propagated."""

    PRODUCTS = "products"
    CATEGORIES = "categories"
    BUSINESS_HOURS = "business_hours"
    BUSINESS_PROFILE = "business_profile"
    FEATURE_FLAGS = "feature_flags"
    USER_ROLES = "user_roles"
    BRAND_ASSETS = "brand_assets"
    GBP_CATEGORY_SYNC = "gbp_category_sync"


class TenantTargets(BaseModel):
    """Peer-to-peer propagation to explicit sibling tenants."""

    model_config = {"frozen": True, "extra": "forbid"}

    kind: Literal["tenant"] = "tenant"
    target_tenant_ids: tuple[str, ...] = ()


class OrganizationTargets(BaseModel):
    """Propagation to every member tenant of an organization."""

    model_config = {"frozen": True, "extra": "forbid"}

    kind: Literal["organization"] = "organization"
    organization_id: str = Field(min_length=1)


class PlatformTargets(BaseModel):
    """Propagation to every tenant on the platform."""

    model_config = {"frozen": True, "extra": "forbid"}

    kind: Literal["platform"] = "platform"
    confirm_platform_wide: bool = False


ScopeTarget = Annotated[
    Union[TenantTargets, OrganizationTargets, PlatformTargets],
    Field(discriminator="kind"),
]


class ScopeDescriptor(BaseModel):
    """Blast radius of one propagation request.

    ``source_tenant_id`` may be omitted only for organization scope, in
    which case the organization's hero location is the source.
    """

    model_config = {"frozen": True, "extra": "forbid", "use_enum_values": True}

    target: ScopeTarget
    data_category: DataCategory
    source_tenant_id: Optional[str] = None
    dry_run: bool = False

    @property
    def scope_kind(self) -> str:
        return self.target.kind

    @property
    def is_platform_confirmed(self) -> bool:
        return isinstance(self.target, PlatformTargets) and self.target.confirm_platform_wide is True

    def with_source(self, source_tenant_id: str) -> "ScopeDescriptor":
        return self.model_copy(update={"source_tenant_id": source_tenant_id})

    @classmethod
    def tenant(
        cls,
        source_tenant_id: str,
        target_tenant_ids: list[str] | tuple[str, ...],
        data_category: str,
        *,
        dry_run: bool = False,
    ) -> "ScopeDescriptor":
        return cls(
            target=TenantTargets(target_tenant_ids=tuple(target_tenant_ids)),
            source_tenant_id=source_tenant_id,
            data_category=data_category,
            dry_run=dry_run,
        )

    @classmethod
    def organization(
        cls,
        organization_id: str,
        data_category: str,
        *,
        source_tenant_id: Optional[str] = None,
        dry_run: bool = False,
    ) -> "ScopeDescriptor":
        return cls(
            target=OrganizationTargets(organization_id=organization_id),
            source_tenant_id=source_tenant_id,
            data_category=data_category,
            dry_run=dry_run,
        )

    @classmethod
    def platform(
        cls,
        source_tenant_id: str,
        data_category: str,
        *,
        confirm_platform_wide: bool = False,
        dry_run: bool = False,
    ) -> "ScopeDescriptor":
        return cls(
            target=PlatformTargets(confirm_platform_wide=confirm_platform_wide),
            source_tenant_id=source_tenant_id,
            data_category=data_category,
            dry_run=dry_run,
        )


class PropagationRequest(BaseModel):
    """Inbound propagation request as parsed by HTTP route handlers.

    Accepts the camelCase JSON of the API (``scopeKind``,
    ``targetTenantIds``, ``confirmPlatformWide``...) or snake_case names.
    """

    model_config = {"frozen": True, "extra": "forbid", "populate_by_name": True, "use_enum_values": True}

    scope_kind: Literal["tenant", "organization", "platform"] = Field(alias="scopeKind")
    data_category: DataCategory = Field(alias="dataCategory")
    source_tenant_id: Optional[str] = Field(default=None, alias="sourceTenantId")
    target_tenant_ids: Optional[list[str]] = Field(default=None, alias="targetTenantIds")
    target_organization_id: Optional[str] = Field(default=None, alias="targetOrganizationId")
    confirm_platform_wide: bool = Field(default=False, alias="confirmPlatformWide")
    dry_run: bool = Field(default=False, alias="dryRun")
    conflict_policy: ConflictPolicy = Field(default=ConflictPolicy.OVERWRITE, alias="conflictPolicy")
    field_overrides: dict[str, Any] = Field(default_factory=dict, alias="fieldOverrides")
    prune: bool = False
    strict: bool = False

    @model_validator(mode="after")
    def check_scope_fields(self) -> "PropagationRequest":
        """Each scope kind accepts only its own target fields."""
        if self.scope_kind == ScopeKind.TENANT:
            if self.target_tenant_ids is None:
                raise ValueError("targetTenantIds is required for tenant scope")
            if self.target_organization_id is not None:
                raise ValueError("targetOrganizationId is not allowed for tenant scope")
            if not self.source_tenant_id:
                raise ValueError("sourceTenantId is required for tenant scope")
        elif self.scope_kind == ScopeKind.ORGANIZATION:
            if not self.target_organization_id:
                raise ValueError("targetOrganizationId is required for organization scope")
            if self.target_tenant_ids is not None:
                raise ValueError("targetTenantIds is not allowed for organization scope")
        else:
            if self.target_tenant_ids is not None or self.target_organization_id is not None:
                raise ValueError("platform scope does not take target tenants or organizations")
            if not self.source_tenant_id:
                raise ValueError("sourceTenantId is required for platform scope")
        if self.scope_kind != ScopeKind.PLATFORM and self.confirm_platform_wide:
            raise ValueError("confirmPlatformWide is only valid for platform scope")
        return self

    def to_scope(self) -> ScopeDescriptor:
        if self.scope_kind == ScopeKind.TENANT:
            target: Any = TenantTargets(target_tenant_ids=tuple(self.target_tenant_ids or ()))
        elif self.scope_kind == ScopeKind.ORGANIZATION:
            target = OrganizationTargets(organization_id=self.target_organization_id)
        else:
            target = PlatformTargets(confirm_platform_wide=self.confirm_platform_wide)
        return ScopeDescriptor(
            target=target,
            data_category=self.data_category,
            source_tenant_id=self.source_tenant_id,
            dry_run=self.dry_run,
        )

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "PropagationRequest":
        """Parse a request body.

        Raises:
            ValidationError: (kind ``invalid_scope``) listing every problem.
        """
        try:
            return cls.model_validate(dict(payload))
        except PydanticValidationError as e:
            errors = [
                {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"], "type": err["type"]}
                for err in e.errors()
            ]
            raise ValidationError(
                f"Invalid propagation request: {errors[0]['msg'] if errors else e}",
                errors=errors,
            ) from e


__all__ = [
    "DataCategory",
    "OrganizationTargets",
    "PlatformTargets",
    "PropagationRequest",
    "ScopeDescriptor",
    "ScopeTarget",
    "TenantTargets",
]
