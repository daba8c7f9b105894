"""Collaborator contracts of the propagation engine.

The ORM, tenant directory and run persistence live outside tenantcore.
Host applications implement these ABCs over their own storage; the
package ships in-memory implementations (``tenantcore.propagation.stores``)
and a Redis-backed run store.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from .propagation.models import PropagationRun, RunSnapshot

# A category's records for one tenant, keyed by record key.
Records = dict[str, dict[str, Any]]


@dataclass(frozen=True)
class TenantInfo:
    """Directory entry of one tenant (location)."""

    tenant_id: str
    owner_id: str  # e.g. "user-42"; siblings share the owner
    organization_id: Optional[str] = None
    is_hero_location: bool = False


@dataclass(frozen=True)
class OrganizationInfo:
    """An organization (chain) and its member locations."""

    organization_id: str
    member_tenant_ids: tuple[str, ...] = ()
    hero_tenant_id: Optional[str] = None


class TenantDirectory(ABC):
    """Read-only view of tenants and organization membership."""

    @abstractmethod
    async def get_tenant(self, tenant_id: str) -> Optional[TenantInfo]:
        raise NotImplementedError

    @abstractmethod
    async def get_organization(self, organization_id: str) -> Optional[OrganizationInfo]:
        raise NotImplementedError

    @abstractmethod
    async def list_tenant_ids(self) -> list[str]:
        """Every tenant on the platform."""
        raise NotImplementedError


class CategoryStore(ABC):
    """Per-tenant storage of one data category's records.

    Implementations raise :class:`tenantcore.exceptions.StorageError`
    (or let driver errors propagate) on failure; the engine records the
    failure against the target and continues with the others.
    """

    @abstractmethod
    async def load(self, tenant_id: str, category: str) -> Records:
        raise NotImplementedError

    @abstractmethod
    async def write(self, tenant_id: str, category: str, key: str, record: dict[str, Any]) -> None:
        raise NotImplementedError

    @abstractmethod
    async def delete(self, tenant_id: str, category: str, key: str) -> None:
        raise NotImplementedError


class RunStore(ABC):
    """Persistence of propagation runs and their rollback snapshots."""

    @abstractmethod
    async def save(self, run: "PropagationRun") -> None:
        raise NotImplementedError

    @abstractmethod
    async def get(self, run_id: str) -> Optional["PropagationRun"]:
        raise NotImplementedError

    @abstractmethod
    async def save_target_snapshot(
        self,
        run_id: str,
        tenant_id: str,
        records: dict[str, Optional[dict[str, Any]]],
    ) -> None:
        """Store the pre-run value of every record a target is about to change.

        ``None`` marks a record that did not exist before the run.
        """
        raise NotImplementedError

    @abstractmethod
    async def get_snapshot(self, run_id: str) -> Optional["RunSnapshot"]:
        raise NotImplementedError

    @abstractmethod
    async def delete_snapshot(self, run_id: str) -> None:
        raise NotImplementedError


__all__ = [
    "CategoryStore",
    "OrganizationInfo",
    "Records",
    "RunStore",
    "TenantDirectory",
    "TenantInfo",
]
