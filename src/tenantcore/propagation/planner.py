"""Scope validation, authorization and target resolution.

``PropagationPlanner.plan()`` turns a scope and an actor into a
:class:`PropagationPlan`, or raises a :class:`RejectionError` before any
tenant data is read or written.

Checks run in this order:

1. Platform scope without ``confirm_platform_wide`` → ``missing_confirmation``.
2. Source tenant resolved (organization scope defaults to the hero location).
3. Actor authorized for ``propagation_{category}`` at the scope → ``unauthorized``.
4. Targets resolved; the source is never a target → ``invalid_scope`` when empty.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Sequence

from ..access import Features, FeatureOverride, FeatureRegistry, Principal, ScopeKind, authorize
from ..access.features import DEFAULT_REGISTRY
from ..exceptions import AuthorizationError, MissingConfirmationError, ValidationError
from ..interfaces import CategoryStore, TenantDirectory
from .models import PropagationPlan, TargetDiff
from .policy import DEFAULT_CATEGORY_RULES, CategoryRule, ConflictPolicy, diff_records
from .scope import OrganizationTargets, PlatformTargets, ScopeDescriptor, TenantTargets

logger = logging.getLogger(__name__)


class PropagationPlanner:
    """Validates propagation requests against the tenant directory."""

    def __init__(
        self,
        directory: TenantDirectory,
        categories: CategoryStore,
        *,
        registry: FeatureRegistry = DEFAULT_REGISTRY,
        rules: Optional[Mapping[str, CategoryRule]] = None,
    ) -> None:
        self._directory = directory
        self._categories = categories
        self._registry = registry
        self._rules = dict(rules or DEFAULT_CATEGORY_RULES)

    def rule_for(self, category: str) -> CategoryRule:
        rule = self._rules.get(category)
        if rule is None:
            raise ValidationError(f"No propagation rule for category '{category}'", data_category=category)
        return rule

    async def plan(
        self,
        scope: ScopeDescriptor,
        actor: Principal,
        *,
        conflict_policy: ConflictPolicy | str = ConflictPolicy.OVERWRITE,
        prune: bool = False,
        strict: bool = False,
        field_overrides: Optional[Mapping[str, Any]] = None,
        overrides: Sequence[FeatureOverride] = (),
    ) -> PropagationPlan:
        """Validate ``scope`` for ``actor`` and compute the diff preview.

        Raises:
            MissingConfirmationError: platform scope without confirmation.
            AuthorizationError: actor lacks tier, role or scope authority,
                or a tenant target belongs to another owner.
            ValidationError: unknown tenants/organization, no hero location,
                or no targets after resolution.
        """
        if isinstance(scope.target, PlatformTargets) and not scope.is_platform_confirmed:
            raise MissingConfirmationError(scope_kind=ScopeKind.PLATFORM)

        policy = ConflictPolicy(conflict_policy)
        rule = self.rule_for(scope.data_category)
        scope = await self._resolve_source(scope)
        source = await self._directory.get_tenant(scope.source_tenant_id)
        if source is None:
            raise ValidationError(
                f"Unknown source tenant '{scope.source_tenant_id}'",
                source_tenant_id=scope.source_tenant_id,
            )

        feature_id = Features.propagation(scope.data_category)
        decision = authorize(
            actor,
            feature_id,
            scope,
            tenant_id=source.tenant_id,
            registry=self._registry,
            overrides=overrides,
        )
        if not decision.allowed:
            raise AuthorizationError(decision=decision, scope_kind=scope.scope_kind)

        targets = await self._resolve_targets(scope, source.owner_id)
        if not targets:
            raise ValidationError(
                "No target tenants after resolution",
                reason="no_target_locations",
                scope_kind=scope.scope_kind,
            )

        source_records = await self._categories.load(source.tenant_id, scope.data_category)
        preview: dict[str, TargetDiff] = {}
        for tenant_id in targets:
            target_records = await self._categories.load(tenant_id, scope.data_category)
            preview[tenant_id] = TargetDiff(
                tenant_id=tenant_id,
                changes=diff_records(
                    policy,
                    rule,
                    source_records,
                    target_records,
                    prune=prune,
                    field_overrides=field_overrides,
                ),
            )

        plan = PropagationPlan(
            scope=scope,
            source_tenant_id=source.tenant_id,
            target_tenant_ids=tuple(targets),
            conflict_policy=policy,
            prune=prune,
            strict=strict,
            field_overrides=dict(field_overrides or {}),
            preview=preview,
            initiated_by=actor.reference,
            registry_version=self._registry.version,
        )
        logger.info(
            "Planned %s propagation of %s from %s to %d targets (dry_run=%s)",
            scope.scope_kind,
            scope.data_category,
            source.tenant_id,
            len(targets),
            scope.dry_run,
            extra={"plan_id": plan.id},
        )
        return plan

    async def _resolve_source(self, scope: ScopeDescriptor) -> ScopeDescriptor:
        if scope.source_tenant_id:
            return scope
        if not isinstance(scope.target, OrganizationTargets):
            raise ValidationError(
                f"source_tenant_id is required for {scope.scope_kind} scope",
                scope_kind=scope.scope_kind,
            )
        organization = await self._directory.get_organization(scope.target.organization_id)
        if organization is None:
            raise ValidationError(
                f"Unknown organization '{scope.target.organization_id}'",
                organization_id=scope.target.organization_id,
            )
        if not organization.hero_tenant_id:
            raise ValidationError(
                f"Organization '{organization.organization_id}' has no hero location",
                reason="no_hero_location",
                organization_id=organization.organization_id,
            )
        return scope.with_source(organization.hero_tenant_id)

    async def _resolve_targets(
        self,
        scope: ScopeDescriptor,
        source_owner_id: str,
    ) -> list[str]:
        source_id = scope.source_tenant_id
        target = scope.target

        if isinstance(target, OrganizationTargets):
            organization = await self._directory.get_organization(target.organization_id)
            if organization is None:
                raise ValidationError(
                    f"Unknown organization '{target.organization_id}'",
                    organization_id=target.organization_id,
                )
            if source_id not in organization.member_tenant_ids:
                raise ValidationError(
                    f"Source tenant '{source_id}' is not a member of '{target.organization_id}'",
                    source_tenant_id=source_id,
                    organization_id=target.organization_id,
                )
            return [t for t in dict.fromkeys(organization.member_tenant_ids) if t != source_id]

        if isinstance(target, TenantTargets):
            requested = [t for t in dict.fromkeys(target.target_tenant_ids) if t != source_id]
            unknown: list[str] = []
            foreign: list[str] = []
            for tenant_id in requested:
                info = await self._directory.get_tenant(tenant_id)
                if info is None:
                    unknown.append(tenant_id)
                elif info.owner_id != source_owner_id:
                    foreign.append(tenant_id)
            if unknown:
                raise ValidationError(
                    f"Unknown target tenants: {', '.join(unknown)}",
                    tenant_ids=unknown,
                )
            if foreign:
                raise AuthorizationError(
                    "Cross-owner propagation is not allowed",
                    feature_id=Features.propagation(scope.data_category),
                    reason="cross_owner_target",
                    tenant_ids=foreign,
                )
            return requested

        return [t for t in await self._directory.list_tenant_ids() if t != source_id]


__all__ = ["PropagationPlanner"]
