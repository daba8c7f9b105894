"""Propagation plan, run record and summary types."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from ..exceptions import ConflictError, PartialFailureError, RunStateError, TotalFailureError
from .policy import ConflictPolicy, ItemAction, ItemResolution
from .scope import ScopeDescriptor


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


class RunStatus(str, Enum):
    """Lifecycle of a propagation run.

    ``pending → running → {completed | failed}``, ``completed → rolled_back``.
    Dry runs go ``pending → completed`` without writing.
    """

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


RUN_TRANSITIONS: dict[RunStatus, frozenset[RunStatus]] = {
    RunStatus.PENDING: frozenset({RunStatus.RUNNING, RunStatus.COMPLETED}),
    RunStatus.RUNNING: frozenset({RunStatus.COMPLETED, RunStatus.FAILED}),
    RunStatus.COMPLETED: frozenset({RunStatus.ROLLED_BACK}),
    RunStatus.FAILED: frozenset(),
    RunStatus.ROLLED_BACK: frozenset(),
}


class SummaryCounts(BaseModel):
    """Per-item outcome counts. Every item increments exactly one counter."""

    created: int = 0
    updated: int = 0
    skipped: int = 0
    deleted: int = 0

    @property
    def total(self) -> int:
        return self.created + self.updated + self.skipped + self.deleted

    def record(self, action: ItemAction | str) -> None:
        field_name = ItemAction(action).value
        setattr(self, field_name, getattr(self, field_name) + 1)

    def add(self, other: "SummaryCounts") -> None:
        self.created += other.created
        self.updated += other.updated
        self.skipped += other.skipped
        self.deleted += other.deleted

    @classmethod
    def from_changes(cls, changes: list[ItemResolution]) -> "SummaryCounts":
        counts = cls()
        for change in changes:
            counts.record(change.action)
        return counts


class ConflictRecord(BaseModel):
    """A skipped item reported in strict mode."""

    tenant_id: str
    key: str
    code: str = ConflictError.code
    detail: str = ""

    @classmethod
    def from_error(cls, error: ConflictError) -> "ConflictRecord":
        return cls(
            tenant_id=error.details["tenant_id"],
            key=error.details["key"],
            code=error.code,
            detail=error.message,
        )


class PropagationSummary(SummaryCounts):
    """Run-level counts with the per-target breakdown they are summed from."""

    per_target: dict[str, SummaryCounts] = Field(default_factory=dict)
    conflicts: list[ConflictRecord] = Field(default_factory=list)

    def add_target(self, tenant_id: str, counts: SummaryCounts) -> None:
        self.per_target[tenant_id] = counts
        self.add(counts)

    def reconciles(self) -> bool:
        """True when the run totals equal the sum of per-target totals."""
        return self.total == sum(c.total for c in self.per_target.values()) and all(
            getattr(self, f) == sum(getattr(c, f) for c in self.per_target.values())
            for f in ("created", "updated", "skipped", "deleted")
        )


class TargetDiff(BaseModel):
    """Planned changes for one target tenant."""

    tenant_id: str
    changes: list[ItemResolution] = Field(default_factory=list)

    @property
    def counts(self) -> SummaryCounts:
        return SummaryCounts.from_changes(self.changes)


class TargetError(BaseModel):
    """Why one target tenant failed."""

    tenant_id: str
    code: str
    message: str


class PropagationPlan(BaseModel):
    """Validated, resolved propagation, ready to execute.

    Holds the exact target tenant ids and a per-target diff preview.
    Nothing in a plan has been applied.
    """

    model_config = {"use_enum_values": True}

    id: str = Field(default_factory=lambda: new_id("plan"))
    scope: ScopeDescriptor
    source_tenant_id: str
    target_tenant_ids: tuple[str, ...]
    conflict_policy: ConflictPolicy = ConflictPolicy.OVERWRITE
    prune: bool = False
    strict: bool = False
    field_overrides: dict[str, Any] = Field(default_factory=dict)
    preview: dict[str, TargetDiff] = Field(default_factory=dict)
    initiated_by: str = "anonymous"
    registry_version: str = ""
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def dry_run(self) -> bool:
        return self.scope.dry_run

    @property
    def data_category(self) -> str:
        return self.scope.data_category

    @property
    def scope_kind(self) -> str:
        return self.scope.scope_kind

    def preview_summary(self) -> PropagationSummary:
        summary = PropagationSummary()
        for tenant_id in self.target_tenant_ids:
            diff = self.preview.get(tenant_id, TargetDiff(tenant_id=tenant_id))
            summary.add_target(tenant_id, diff.counts)
            if self.strict:
                summary.conflicts.extend(
                    ConflictRecord(tenant_id=tenant_id, key=c.key, detail=c.detail)
                    for c in diff.changes
                    if c.conflict
                )
        return summary


class RunSnapshot(BaseModel):
    """Pre-run value of every record a run changed, per target tenant.

    ``None`` marks a record that did not exist before the run.
    """

    run_id: str
    records: dict[str, dict[str, Optional[dict[str, Any]]]] = Field(default_factory=dict)


class PropagationRun(BaseModel):
    """Auditable record of one propagation execution."""

    model_config = {"use_enum_values": True, "validate_assignment": True}

    id: str = Field(default_factory=lambda: new_id("run"))
    plan_id: str
    scope: ScopeDescriptor
    source_tenant_id: str
    target_tenant_ids: tuple[str, ...]
    initiated_by: str
    conflict_policy: ConflictPolicy
    status: RunStatus = RunStatus.PENDING
    summary: PropagationSummary = Field(default_factory=PropagationSummary)
    target_errors: list[TargetError] = Field(default_factory=list)
    abandoned_tenant_ids: list[str] = Field(default_factory=list)
    error: Optional[str] = None
    cancelled: bool = False
    cancel_requested: bool = False
    created_at: datetime = Field(default_factory=utc_now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    rolled_back_at: Optional[datetime] = None

    @classmethod
    def from_plan(cls, plan: PropagationPlan) -> "PropagationRun":
        return cls(
            plan_id=plan.id,
            scope=plan.scope,
            source_tenant_id=plan.source_tenant_id,
            target_tenant_ids=plan.target_tenant_ids,
            initiated_by=plan.initiated_by,
            conflict_policy=plan.conflict_policy,
        )

    @property
    def dry_run(self) -> bool:
        return self.scope.dry_run

    @property
    def data_category(self) -> str:
        return self.scope.data_category

    @property
    def scope_kind(self) -> str:
        return self.scope.scope_kind

    @property
    def succeeded_tenant_ids(self) -> list[str]:
        return list(self.summary.per_target)

    @property
    def failed_tenant_ids(self) -> list[str]:
        return [e.tenant_id for e in self.target_errors]

    def transition(self, status: RunStatus | str) -> None:
        """Move to ``status``.

        Raises:
            RunStateError: if the state machine does not allow it.
        """
        current = RunStatus(self.status)
        target = RunStatus(status)
        if target not in RUN_TRANSITIONS[current]:
            raise RunStateError(
                f"Cannot move run {self.id} from {current.value} to {target.value}",
                run_id=self.id,
                status=current.value,
            )
        self.status = target

    def raise_for_status(self) -> None:
        """Raise when any target failed.

        Raises:
            TotalFailureError: the run failed.
            PartialFailureError: the run completed with failed targets.
        """
        if self.status == RunStatus.FAILED:
            raise TotalFailureError(self.error, run=self)
        if self.target_errors:
            raise PartialFailureError(run=self)


__all__ = [
    "RUN_TRANSITIONS",
    "ConflictRecord",
    "PropagationPlan",
    "PropagationRun",
    "PropagationSummary",
    "RunSnapshot",
    "RunStatus",
    "SummaryCounts",
    "TargetDiff",
    "TargetError",
    "new_id",
    "utc_now",
]
