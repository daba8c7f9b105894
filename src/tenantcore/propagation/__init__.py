"""Multi-scope propagation of tenant data.

Defines:
- ScopeDescriptor / TenantTargets / OrganizationTargets / PlatformTargets: scope variants
- PropagationRequest: inbound request parsing
- ConflictPolicy / CategoryRule: the conflict policy and per-category rules
- PropagationPlanner: validation, authorization and target resolution
- PropagationEngine: execute, cancel and roll back runs
- Target locks and reference stores (in-memory, Redis)
"""

from .engine import PropagationEngine
from .locks import InMemoryTargetLocks, RedisTargetLocks, TargetLockManager, create_lock_manager
from .models import (
    RUN_TRANSITIONS,
    ConflictRecord,
    PropagationPlan,
    PropagationRun,
    PropagationSummary,
    RunSnapshot,
    RunStatus,
    SummaryCounts,
    TargetDiff,
    TargetError,
)
from .planner import PropagationPlanner
from .policy import (
    DEFAULT_CATEGORY_RULES,
    LOCAL_OVERRIDES_FIELD,
    CategoryRule,
    CollectionRule,
    ConflictPolicy,
    ItemAction,
    ItemResolution,
    diff_records,
    resolve_item,
)
from .scope import (
    DataCategory,
    OrganizationTargets,
    PlatformTargets,
    PropagationRequest,
    ScopeDescriptor,
    TenantTargets,
)
from .stores import InMemoryCategoryStore, InMemoryRunStore, InMemoryTenantDirectory, RedisRunStore

__all__ = [
    "DEFAULT_CATEGORY_RULES",
    "LOCAL_OVERRIDES_FIELD",
    "RUN_TRANSITIONS",
    "CategoryRule",
    "CollectionRule",
    "ConflictPolicy",
    "ConflictRecord",
    "DataCategory",
    "InMemoryCategoryStore",
    "InMemoryRunStore",
    "InMemoryTargetLocks",
    "InMemoryTenantDirectory",
    "ItemAction",
    "ItemResolution",
    "OrganizationTargets",
    "PlatformTargets",
    "PropagationEngine",
    "PropagationPlan",
    "PropagationPlanner",
    "PropagationRequest",
    "PropagationRun",
    "PropagationSummary",
    "RedisRunStore",
    "RedisTargetLocks",
    "RunSnapshot",
    "RunStatus",
    "ScopeDescriptor",
    "SummaryCounts",
    "TargetDiff",
    "TargetError",
    "TargetLockManager",
    "TenantTargets",
    "create_lock_manager",
    "diff_records",
    "resolve_item",
]
