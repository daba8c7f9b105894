"""Propagation engine: plan, execute, cancel and roll back runs.

Execution model:

- Targets are processed concurrently, at most ``max_concurrent_targets``
  at a time, each under the exclusive ``(tenant_id, data_category)`` lock.
- The per-target timeout bounds lock acquisition and the read of the
  target's records. Writing has its own, longer deadline; a target that
  misses it is recorded as failed and rollback restores its snapshot.
- Cancellation is checked again once a target holds its lock, so a
  target still waiting for the lock when the run is cancelled is
  abandoned without writing.
- Only ``execute()`` saves a running run.
- A failing target is recorded in ``run.target_errors``; the other
  targets carry on. The summary is computed after every target has
  finished (success, failure or abandonment).
- Organization and platform runs snapshot the pre-run value of every
  record they change, which ``rollback()`` restores exactly.

Example::

    engine = PropagationEngine(directory, categories, RedisRunStore(redis))
    plan = await engine.plan(scope, actor, conflict_policy="merge")
    run = await engine.execute(plan)
    run.raise_for_status()
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Mapping, Optional, Sequence

from ..access import Features, FeatureOverride, FeatureRegistry, Principal, ScopeKind, require_feature
from ..access.features import DEFAULT_REGISTRY
from ..config import PropagationSettings
from ..exceptions import (
    ConflictError,
    RollbackUnavailableError,
    RunNotFoundError,
    RunStateError,
    StorageError,
    TenantCoreError,
)
from ..interfaces import CategoryStore, RunStore, TenantDirectory
from ..logging import get_logger
from .locks import InMemoryTargetLocks, TargetLockManager
from .models import (
    ConflictRecord,
    PropagationPlan,
    PropagationRun,
    PropagationSummary,
    RunStatus,
    SummaryCounts,
    TargetError,
    utc_now,
)
from .planner import PropagationPlanner
from .policy import CategoryRule, ConflictPolicy, ItemAction, ItemResolution, diff_records
from .scope import ScopeDescriptor

logger = get_logger(__name__)

_SNAPSHOT_SCOPES = frozenset({ScopeKind.ORGANIZATION, ScopeKind.PLATFORM})


@dataclass
class _RunControl:
    run: PropagationRun
    cancelled: bool = False


@dataclass
class _TargetOutcome:
    tenant_id: str
    changes: list[ItemResolution] = field(default_factory=list)
    error: Optional[TargetError] = None
    abandoned: bool = False


class PropagationEngine:
    """Executes propagation plans against a category store."""

    def __init__(
        self,
        directory: TenantDirectory,
        categories: CategoryStore,
        runs: RunStore,
        *,
        locks: Optional[TargetLockManager] = None,
        settings: Optional[PropagationSettings] = None,
        registry: FeatureRegistry = DEFAULT_REGISTRY,
        rules: Optional[Mapping[str, CategoryRule]] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._categories = categories
        self._runs = runs
        self._locks = locks or InMemoryTargetLocks()
        self._settings = settings or PropagationSettings()
        self._registry = registry
        self._clock = clock
        self._planner = PropagationPlanner(directory, categories, registry=registry, rules=rules)
        self._active: dict[str, _RunControl] = {}

    @property
    def settings(self) -> PropagationSettings:
        return self._settings

    # ── Planning ────────────────────────────────────────

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
        """See :meth:`PropagationPlanner.plan`."""
        return await self._planner.plan(
            scope,
            actor,
            conflict_policy=conflict_policy,
            prune=prune,
            strict=strict,
            field_overrides=field_overrides,
            overrides=overrides,
        )

    # ── Execution ───────────────────────────────────────

    async def execute(self, plan: PropagationPlan) -> PropagationRun:
        """Apply ``plan`` and return the finished run.

        Dry-run plans complete immediately with the preview as summary
        and perform no writes.
        """
        run = PropagationRun.from_plan(plan)
        log = logger.bind(run_id=run.id)

        if plan.dry_run:
            run.summary = plan.preview_summary()
            run.transition(RunStatus.COMPLETED)
            run.started_at = run.completed_at = self._clock()
            await self._runs.save(run)
            log.info("Dry run completed: %d items across %d targets", run.summary.total, len(plan.target_tenant_ids))
            return run

        run.transition(RunStatus.RUNNING)
        run.started_at = self._clock()
        await self._runs.save(run)
        control = self._active[run.id] = _RunControl(run)
        log.info(
            "Run started: %s %s propagation from %s to %d targets",
            plan.scope_kind,
            plan.data_category,
            plan.source_tenant_id,
            len(plan.target_tenant_ids),
        )

        try:
            try:
                source_records = await self._categories.load(plan.source_tenant_id, plan.data_category)
            except Exception as e:
                run.error = f"Failed to read source records: {e}"
                run.transition(RunStatus.FAILED)
                run.completed_at = self._clock()
                await self._runs.save(run)
                log.error("Run failed reading source %s: %s", plan.source_tenant_id, e)
                return run

            rule = self._planner.rule_for(plan.data_category)
            semaphore = asyncio.Semaphore(self._settings.max_concurrent_targets)
            outcomes = await asyncio.gather(
                *(
                    self._apply_target(run, plan, rule, tenant_id, source_records, semaphore, control)
                    for tenant_id in plan.target_tenant_ids
                )
            )
            self._finish(run, plan, outcomes, control)
            await self._runs.save(run)
        finally:
            self._active.pop(run.id, None)

        if run.status == RunStatus.FAILED:
            log.error("Run failed: %s", run.error)
        elif run.target_errors:
            log.warning(
                "Run completed with %d failed targets: %s",
                len(run.target_errors),
                ", ".join(run.failed_tenant_ids),
            )
        else:
            log.info("Run completed: %s", run.summary.model_dump(exclude={"per_target", "conflicts"}))
        return run

    async def _apply_target(
        self,
        run: PropagationRun,
        plan: PropagationPlan,
        rule: CategoryRule,
        tenant_id: str,
        source_records: dict[str, dict[str, Any]],
        semaphore: asyncio.Semaphore,
        control: _RunControl,
    ) -> _TargetOutcome:
        async with semaphore:
            if control.cancelled:
                return _TargetOutcome(tenant_id=tenant_id, abandoned=True)
            try:
                changes = await self._write_target(run, plan, rule, tenant_id, source_records, control)
            except TenantCoreError as e:
                logger.warning("Target failed: [%s] %s", e.code, e.message, run_id=run.id, tenant_id=tenant_id)
                return _TargetOutcome(
                    tenant_id=tenant_id,
                    error=TargetError(tenant_id=tenant_id, code=e.code, message=e.message),
                )
            except Exception as e:
                logger.warning(
                    "Target failed: %s",
                    e,
                    run_id=run.id,
                    tenant_id=tenant_id,
                    exc_info=True,
                )
                return _TargetOutcome(
                    tenant_id=tenant_id,
                    error=TargetError(tenant_id=tenant_id, code=type(e).__name__, message=str(e)),
                )
            if changes is None:
                return _TargetOutcome(tenant_id=tenant_id, abandoned=True)
            return _TargetOutcome(tenant_id=tenant_id, changes=changes)

    async def _write_target(
        self,
        run: PropagationRun,
        plan: PropagationPlan,
        rule: CategoryRule,
        tenant_id: str,
        source_records: dict[str, dict[str, Any]],
        control: _RunControl,
    ) -> Optional[list[ItemResolution]]:
        """Diff and write one target under its lock. None if cancelled before writing."""
        category = plan.data_category
        timeout = self._settings.target_timeout_seconds
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        async with self._locks.hold(tenant_id, category, timeout):
            if control.cancelled:
                return None
            remaining = max(deadline - loop.time(), 0.0)
            try:
                target_records = await asyncio.wait_for(self._categories.load(tenant_id, category), timeout=remaining)
            except asyncio.TimeoutError as e:
                raise StorageError(
                    f"Timed out after {timeout}s reading {category} for {tenant_id}",
                    tenant_id=tenant_id,
                ) from e

            changes = diff_records(
                plan.conflict_policy,
                rule,
                source_records,
                target_records,
                prune=plan.prune,
                field_overrides=plan.field_overrides,
            )

            if plan.scope_kind in _SNAPSHOT_SCOPES:
                before = {
                    c.key: target_records.get(c.key)
                    for c in changes
                    if c.action != ItemAction.SKIP
                }
                await self._runs.save_target_snapshot(run.id, tenant_id, before)

            write_timeout = self._settings.write_timeout_seconds
            try:
                await asyncio.wait_for(self._apply_changes(tenant_id, category, changes), timeout=write_timeout)
            except asyncio.TimeoutError as e:
                raise StorageError(
                    f"Timed out after {write_timeout}s writing {category} for {tenant_id}",
                    tenant_id=tenant_id,
                ) from e
        return changes

    async def _apply_changes(self, tenant_id: str, category: str, changes: Sequence[ItemResolution]) -> None:
        for change in changes:
            if change.action in (ItemAction.CREATE, ItemAction.UPDATE):
                await self._categories.write(tenant_id, category, change.key, change.record or {})
            elif change.action == ItemAction.DELETE:
                await self._categories.delete(tenant_id, category, change.key)

    def _finish(
        self,
        run: PropagationRun,
        plan: PropagationPlan,
        outcomes: Sequence[_TargetOutcome],
        control: _RunControl,
    ) -> None:
        summary = PropagationSummary()
        for outcome in outcomes:
            if outcome.abandoned:
                run.abandoned_tenant_ids.append(outcome.tenant_id)
            elif outcome.error is not None:
                run.target_errors.append(outcome.error)
            else:
                summary.add_target(outcome.tenant_id, SummaryCounts.from_changes(outcome.changes))
                if plan.strict:
                    summary.conflicts.extend(
                        ConflictRecord.from_error(
                            ConflictError(c.detail or None, tenant_id=outcome.tenant_id, key=c.key)
                        )
                        for c in outcome.changes
                        if c.conflict
                    )
        run.summary = summary
        run.completed_at = self._clock()

        if control.cancelled:
            run.cancelled = True
            run.cancel_requested = True
            run.error = f"Cancelled; {len(run.abandoned_tenant_ids)} targets not started"
            run.transition(RunStatus.FAILED)
        elif summary.per_target:
            run.transition(RunStatus.COMPLETED)
        else:
            run.error = "No target succeeded"
            run.transition(RunStatus.FAILED)

    # ── Cancellation ────────────────────────────────────

    async def cancel(self, run_id: str) -> PropagationRun:
        """Stop a running run after its in-flight targets finish.

        Targets not yet started, or still waiting for their lock, are
        abandoned; committed targets are not reverted. The run ends
        ``failed`` with ``cancelled = True`` once ``execute()`` saves it.
        Returns a copy of the run as it stands when the request is taken.

        Raises:
            RunNotFoundError: unknown run id.
            RunStateError: the run is not running in this engine.
        """
        control = self._active.get(run_id)
        if control is None or control.run.status != RunStatus.RUNNING:
            run = control.run if control is not None else await self.get_run(run_id)
            raise RunStateError(
                f"Run {run_id} is not running ({run.status})",
                run_id=run_id,
                status=run.status,
            )
        control.cancelled = True
        control.run.cancel_requested = True
        logger.info("Cancellation requested", run_id=run_id)
        return control.run.model_copy(deep=True)

    # ── Rollback ────────────────────────────────────────

    async def rollback(self, run_id: str, actor: Optional[Principal] = None) -> PropagationRun:
        """Restore the pre-run state of every record a run changed.

        Raises:
            RunNotFoundError: unknown run id.
            AuthorizationError: ``actor`` may not use propagation_rollback.
            RollbackUnavailableError: dry run, tenant scope, not completed,
                outside the retention window, or no snapshot.
            StorageError: one or more targets could not be restored; the
                run stays ``completed`` so rollback can be retried.
        """
        run = await self.get_run(run_id)
        if actor is not None:
            require_feature(
                actor,
                Features.PROPAGATION_ROLLBACK,
                tenant_id=run.source_tenant_id,
                registry=self._registry,
            )

        self._check_rollback(run)
        snapshot = await self._runs.get_snapshot(run_id)
        if snapshot is None:
            raise RollbackUnavailableError(
                f"No snapshot recorded for run {run_id}",
                run_id=run_id,
                reason="snapshot_missing",
            )

        log = logger.bind(run_id=run_id)
        timeout = self._settings.target_timeout_seconds
        category = run.data_category

        async def restore(tenant_id: str, records: dict[str, Optional[dict[str, Any]]]) -> Optional[TargetError]:
            try:
                async with self._locks.hold(tenant_id, category, timeout):
                    for key, before in records.items():
                        if before is None:
                            await self._categories.delete(tenant_id, category, key)
                        else:
                            await self._categories.write(tenant_id, category, key, before)
            except TenantCoreError as e:
                return TargetError(tenant_id=tenant_id, code=e.code, message=e.message)
            except Exception as e:
                log.warning("Restore failed: %s", e, tenant_id=tenant_id, exc_info=True)
                return TargetError(tenant_id=tenant_id, code=type(e).__name__, message=str(e))
            return None

        results = await asyncio.gather(*(restore(t, r) for t, r in snapshot.records.items()))
        errors = [e for e in results if e is not None]
        if errors:
            raise StorageError(
                f"Rollback failed for {len(errors)} targets",
                run_id=run_id,
                failed_targets=[e.tenant_id for e in errors],
                errors=[e.model_dump() for e in errors],
            )

        run.transition(RunStatus.ROLLED_BACK)
        run.rolled_back_at = self._clock()
        await self._runs.save(run)
        await self._runs.delete_snapshot(run_id)
        log.info("Run rolled back across %d targets", len(snapshot.records))
        return run

    def _check_rollback(self, run: PropagationRun) -> None:
        reason = None
        if run.dry_run:
            reason = "dry_run"
        elif run.scope_kind not in _SNAPSHOT_SCOPES:
            reason = "tenant_scope"
        elif run.status != RunStatus.COMPLETED:
            reason = f"status_{RunStatus(run.status).value}"
        else:
            window = timedelta(days=self._settings.rollback_retention_days)
            if run.completed_at is None or self._clock() - run.completed_at > window:
                reason = "retention_expired"
        if reason is not None:
            raise RollbackUnavailableError(
                f"Run {run.id} cannot be rolled back: {reason}",
                run_id=run.id,
                reason=reason,
            )

    # ── Lookup ──────────────────────────────────────────

    async def get_run(self, run_id: str) -> PropagationRun:
        """Raises RunNotFoundError for unknown ids."""
        run = await self._runs.get(run_id)
        if run is None:
            raise RunNotFoundError(f"Propagation run '{run_id}' not found", run_id=run_id)
        return run


__all__ = ["PropagationEngine"]
