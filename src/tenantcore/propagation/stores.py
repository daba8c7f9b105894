"""Reference implementations of the collaborator interfaces.

In-memory stores back tests and single-process tools. ``RedisRunStore``
persists runs and rollback snapshots for the length of the rollback
retention window.
"""

from __future__ import annotations

import copy
import json
import logging
from typing import Any, Iterable, Optional

from ..config import PropagationSettings, SharedConfig
from ..exceptions import ConfigurationError
from ..interfaces import (
    CategoryStore,
    OrganizationInfo,
    Records,
    RunStore,
    TenantDirectory,
    TenantInfo,
)
from .models import PropagationRun, RunSnapshot

logger = logging.getLogger(__name__)


class InMemoryTenantDirectory(TenantDirectory):
    """Tenants and organizations held in dictionaries."""

    def __init__(
        self,
        tenants: Iterable[TenantInfo] = (),
        organizations: Iterable[OrganizationInfo] = (),
    ) -> None:
        self._tenants = {t.tenant_id: t for t in tenants}
        self._organizations = {o.organization_id: o for o in organizations}

    def add_tenant(self, tenant: TenantInfo) -> None:
        self._tenants[tenant.tenant_id] = tenant

    def add_organization(self, organization: OrganizationInfo) -> None:
        self._organizations[organization.organization_id] = organization

    async def get_tenant(self, tenant_id: str) -> Optional[TenantInfo]:
        return self._tenants.get(tenant_id)

    async def get_organization(self, organization_id: str) -> Optional[OrganizationInfo]:
        return self._organizations.get(organization_id)

    async def list_tenant_ids(self) -> list[str]:
        return sorted(self._tenants)


class InMemoryCategoryStore(CategoryStore):
    """Records per ``(tenant_id, category)``. Returns deep copies."""

    def __init__(self) -> None:
        self._data: dict[tuple[str, str], Records] = {}

    def seed(self, tenant_id: str, category: str, records: Records) -> None:
        self._data[(tenant_id, category)] = copy.deepcopy(dict(records))

    def snapshot(self, tenant_id: str, category: str) -> Records:
        return copy.deepcopy(self._data.get((tenant_id, category), {}))

    async def load(self, tenant_id: str, category: str) -> Records:
        return self.snapshot(tenant_id, category)

    async def write(self, tenant_id: str, category: str, key: str, record: dict[str, Any]) -> None:
        self._data.setdefault((tenant_id, category), {})[key] = copy.deepcopy(record)

    async def delete(self, tenant_id: str, category: str, key: str) -> None:
        self._data.get((tenant_id, category), {}).pop(key, None)


class InMemoryRunStore(RunStore):
    """Runs and snapshots kept as serialized copies."""

    def __init__(self) -> None:
        self._runs: dict[str, str] = {}
        self._snapshots: dict[str, dict[str, dict[str, Optional[dict[str, Any]]]]] = {}

    async def save(self, run: PropagationRun) -> None:
        self._runs[run.id] = run.model_dump_json()

    async def get(self, run_id: str) -> Optional[PropagationRun]:
        raw = self._runs.get(run_id)
        if raw is None:
            return None
        return PropagationRun.model_validate_json(raw)

    async def save_target_snapshot(
        self,
        run_id: str,
        tenant_id: str,
        records: dict[str, Optional[dict[str, Any]]],
    ) -> None:
        self._snapshots.setdefault(run_id, {})[tenant_id] = copy.deepcopy(records)

    async def get_snapshot(self, run_id: str) -> Optional[RunSnapshot]:
        records = self._snapshots.get(run_id)
        if records is None:
            return None
        return RunSnapshot(run_id=run_id, records=copy.deepcopy(records))

    async def delete_snapshot(self, run_id: str) -> None:
        self._snapshots.pop(run_id, None)


def _decode(value: Any) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else value


class RedisRunStore(RunStore):
    """Runs as JSON strings, snapshots as one hash per run (field = tenant id).

    Keys expire one day after the rollback retention window closes.
    """

    def __init__(
        self,
        client: Any,
        prefix: str = "tenantcore:runs",
        retention_days: int = 30,
    ) -> None:
        self._client = client
        self._prefix = prefix
        self._ttl = (retention_days + 1) * 86400

    @classmethod
    def from_config(cls, config: SharedConfig, client: Optional[Any] = None) -> "RedisRunStore":
        """Build from shared config, connecting to REDIS_URL when no client is given.

        Raises:
            ConfigurationError: no client and no REDIS_URL.
        """
        settings: PropagationSettings = config.propagation
        if client is None:
            if not config.redis_url:
                raise ConfigurationError("RedisRunStore requires REDIS_URL")
            import redis.asyncio as aioredis

            client = aioredis.from_url(config.redis_url, decode_responses=True)
        return cls(client, prefix=settings.run_key_prefix, retention_days=settings.rollback_retention_days)

    def _run_key(self, run_id: str) -> str:
        return f"{self._prefix}:{run_id}"

    def _snapshot_key(self, run_id: str) -> str:
        return f"{self._prefix}:{run_id}:snapshot"

    async def save(self, run: PropagationRun) -> None:
        await self._client.setex(self._run_key(run.id), self._ttl, run.model_dump_json())

    async def get(self, run_id: str) -> Optional[PropagationRun]:
        raw = await self._client.get(self._run_key(run_id))
        if raw is None:
            return None
        return PropagationRun.model_validate_json(_decode(raw))

    async def save_target_snapshot(
        self,
        run_id: str,
        tenant_id: str,
        records: dict[str, Optional[dict[str, Any]]],
    ) -> None:
        key = self._snapshot_key(run_id)
        await self._client.hset(key, tenant_id, json.dumps(records, default=str))
        await self._client.expire(key, self._ttl)

    async def get_snapshot(self, run_id: str) -> Optional[RunSnapshot]:
        raw = await self._client.hgetall(self._snapshot_key(run_id))
        if not raw:
            return None
        records = {_decode(tenant_id): json.loads(_decode(value)) for tenant_id, value in raw.items()}
        return RunSnapshot(run_id=run_id, records=records)

    async def delete_snapshot(self, run_id: str) -> None:
        await self._client.delete(self._snapshot_key(run_id))


__all__ = [
    "InMemoryCategoryStore",
    "InMemoryRunStore",
    "InMemoryTenantDirectory",
    "RedisRunStore",
]
