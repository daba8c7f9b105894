"""Conflict policy and per-category merge rules.

Provides:
- ``ConflictPolicy`` — the closed set overwrite / merge / skip_on_conflict.
- ``CategoryRule`` — how records of a data category are keyed and merged.
- ``DEFAULT_CATEGORY_RULES`` — rules for every data category.
- ``resolve_item()`` — the single implementation of the policy for one record.
- ``diff_records()`` — policy applied to a whole target.

Category differences are expressed only as :class:`CategoryRule`
configuration; no category re-implements the policy.
"""

from __future__ import annotations

import copy
from enum import Enum
from typing import Any, Mapping, Optional

from pydantic import BaseModel, Field

# Target records may list fields the location manages itself.
LOCAL_OVERRIDES_FIELD = "local_overrides"


class ConflictPolicy(str, Enum):
    """How an existing target record is handled."""

    OVERWRITE = "overwrite"
    MERGE = "merge"
    SKIP_ON_CONFLICT = "skip_on_conflict"


class ItemAction(str, Enum):
    """Outcome of one record on one target. Exactly one per record."""

    CREATE = "created"
    UPDATE = "updated"
    SKIP = "skipped"
    DELETE = "deleted"


class CollectionRule(BaseModel):
    """A list-valued field unioned under ``merge``.

    Example: GBP secondary categories, capped at 9 and never repeating
    the primary category.
    """

    model_config = {"frozen": True}

    field: str
    cap: Optional[int] = Field(default=None, ge=0)
    exclude_field: Optional[str] = Field(
        default=None,
        description="Scalar field of the merged record whose value may not appear in the collection",
    )


class CategoryRule(BaseModel):
    """Keying and merge configuration of one data category.

    Keyed categories hold many records per tenant (``key_field`` names
    the identity, e.g. ``sku``). Singleton categories hold one record
    per tenant stored under ``singleton_key``.
    """

    model_config = {"frozen": True}

    category: str
    key_field: Optional[str] = None
    singleton_key: Optional[str] = None
    collections: tuple[CollectionRule, ...] = ()

    @property
    def is_singleton(self) -> bool:
        return self.key_field is None

    def collection(self, field_name: str) -> Optional[CollectionRule]:
        for rule in self.collections:
            if rule.field == field_name:
                return rule
        return None

    def record_key(self, record: Mapping[str, Any]) -> str:
        """Identity of ``record`` within its tenant."""
        if self.key_field is None:
            return self.singleton_key or self.category
        try:
            return str(record[self.key_field])
        except KeyError:
            raise ValueError(f"{self.category} record is missing key field '{self.key_field}'") from None


DEFAULT_CATEGORY_RULES: dict[str, CategoryRule] = {
    "products": CategoryRule(
        category="products",
        key_field="sku",
        collections=(CollectionRule(field="image_gallery", cap=10),),
    ),
    "categories": CategoryRule(category="categories", key_field="slug"),
    "business_hours": CategoryRule(category="business_hours", singleton_key="hours"),
    "business_profile": CategoryRule(category="business_profile", singleton_key="profile"),
    "feature_flags": CategoryRule(category="feature_flags", key_field="flag"),
    "user_roles": CategoryRule(category="user_roles", key_field="user_id"),
    "brand_assets": CategoryRule(category="brand_assets", singleton_key="brand"),
    "gbp_category_sync": CategoryRule(
        category="gbp_category_sync",
        singleton_key="gbp",
        collections=(CollectionRule(field="secondary", cap=9, exclude_field="primary"),),
    ),
}


class ItemResolution(BaseModel):
    """Result of applying the policy to one record."""

    model_config = {"frozen": True}

    key: str
    action: ItemAction
    record: Optional[dict[str, Any]] = None
    conflict: bool = False
    detail: str = ""


def _union(first: list[Any], second: list[Any], rule: CollectionRule, record: Mapping[str, Any]) -> list[Any]:
    excluded = record.get(rule.exclude_field) if rule.exclude_field else None
    merged: list[Any] = []
    for item in list(first) + list(second):
        if item in merged or (excluded is not None and item == excluded):
            continue
        merged.append(item)
    if rule.cap is not None:
        merged = merged[: rule.cap]
    return merged


def _prepare_source(
    source: Mapping[str, Any],
    rule: CategoryRule,
    field_overrides: Optional[Mapping[str, Any]],
) -> dict[str, Any]:
    record = copy.deepcopy(dict(source))
    record.pop(LOCAL_OVERRIDES_FIELD, None)
    if field_overrides:
        record.update(copy.deepcopy(dict(field_overrides)))
    for collection in rule.collections:
        if isinstance(record.get(collection.field), list):
            record[collection.field] = _union(record[collection.field], [], collection, record)
    return record


def _merge(source: dict[str, Any], target: Mapping[str, Any], rule: CategoryRule) -> dict[str, Any]:
    merged = copy.deepcopy(dict(target))
    for field_name, value in source.items():
        if field_name in merged:
            collection = rule.collection(field_name)
            if collection is not None and isinstance(value, list) and isinstance(merged[field_name], list):
                continue
        merged[field_name] = copy.deepcopy(value)
    for collection in rule.collections:
        source_items = source.get(collection.field)
        target_items = target.get(collection.field)
        if isinstance(source_items, list) or isinstance(target_items, list):
            merged[collection.field] = _union(source_items or [], target_items or [], collection, merged)
    return merged


def _local_override_conflicts(source: Mapping[str, Any], target: Mapping[str, Any]) -> list[str]:
    protected = target.get(LOCAL_OVERRIDES_FIELD) or []
    return [f for f in protected if f in source and source[f] != target.get(f)]


def resolve_item(
    policy: ConflictPolicy | str,
    rule: CategoryRule,
    key: str,
    source: Optional[Mapping[str, Any]],
    target: Optional[Mapping[str, Any]],
    *,
    field_overrides: Optional[Mapping[str, Any]] = None,
) -> ItemResolution:
    """Apply ``policy`` to one record.

    ``source`` is None only when pruning a target-only record, which is
    deleted. ``target`` is None when the record is new to the target.
    """
    policy = ConflictPolicy(policy)

    if source is None:
        return ItemResolution(key=key, action=ItemAction.DELETE, detail="absent from source")

    prepared = _prepare_source(source, rule, field_overrides)

    if target is None:
        return ItemResolution(key=key, action=ItemAction.CREATE, record=prepared)

    if policy is ConflictPolicy.OVERWRITE:
        return ItemResolution(key=key, action=ItemAction.UPDATE, record=prepared)

    if policy is ConflictPolicy.SKIP_ON_CONFLICT:
        return ItemResolution(key=key, action=ItemAction.SKIP, conflict=True, detail="target record exists")

    protected = _local_override_conflicts(prepared, target)
    if protected:
        return ItemResolution(
            key=key,
            action=ItemAction.SKIP,
            conflict=True,
            detail=f"local override on {', '.join(protected)}",
        )

    merged = _merge(prepared, target, rule)
    if merged == dict(target):
        return ItemResolution(key=key, action=ItemAction.SKIP, detail="unchanged")
    return ItemResolution(key=key, action=ItemAction.UPDATE, record=merged)


def diff_records(
    policy: ConflictPolicy | str,
    rule: CategoryRule,
    source_records: Mapping[str, Mapping[str, Any]],
    target_records: Mapping[str, Mapping[str, Any]],
    *,
    prune: bool = False,
    field_overrides: Optional[Mapping[str, Any]] = None,
) -> list[ItemResolution]:
    """Resolve every source record (and, with ``prune``, every target-only record).

    Pruning applies under ``overwrite`` only: the other policies never
    remove target data.
    """
    resolutions = [
        resolve_item(policy, rule, key, source, target_records.get(key), field_overrides=field_overrides)
        for key, source in sorted(source_records.items())
    ]
    if prune and ConflictPolicy(policy) is ConflictPolicy.OVERWRITE:
        for key in sorted(set(target_records) - set(source_records)):
            resolutions.append(resolve_item(policy, rule, key, None, target_records[key]))
    return resolutions


__all__ = [
    "DEFAULT_CATEGORY_RULES",
    "LOCAL_OVERRIDES_FIELD",
    "CategoryRule",
    "CollectionRule",
    "ConflictPolicy",
    "ItemAction",
    "ItemResolution",
    "diff_records",
    "resolve_item",
]
