"""
HRIS Core - Organization Directory Snapshot

Read-only, versioned snapshot of users and org units. Resolver calls take
a snapshot as a plain argument and never fetch on their own; the snapshot
is immutable and can be shared across concurrent requests.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from functools import cached_property
from typing import Dict, FrozenSet, List, Optional, Protocol, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hris_core.models.directory import (
    AccessScopeType,
    ActorStatus,
    DirectoryUser,
    OrgUnitKind,
    OrgUnitRecord,
    Role,
)
from hris_core.utils.error_handling import ActorNotFoundException, OrgUnitNotFoundException

logger = logging.getLogger(__name__)


# ===========================================
# SNAPSHOT VALUE TYPES
# ===========================================

@dataclass(frozen=True)
class AccessScope:
    """Baseline organizational reach of an actor."""
    type: AccessScopeType = AccessScopeType.HOME_ONLY
    # None means the allow-list was never set
    allowed_org_unit_ids: Optional[FrozenSet[str]] = None


@dataclass(frozen=True)
class Actor:
    """A directory user as seen by the access core."""
    id: str
    name: str
    role: Role
    business_unit_id: Optional[str] = None
    department_id: Optional[str] = None
    business_unit: Optional[str] = None
    department: Optional[str] = None
    manager_id: Optional[str] = None
    status: ActorStatus = ActorStatus.ACTIVE
    access_scope: Optional[AccessScope] = None
    
    @property
    def is_active(self) -> bool:
        return self.status == ActorStatus.ACTIVE


@dataclass(frozen=True)
class OrgUnit:
    """Business unit or department."""
    id: str
    name: str
    kind: OrgUnitKind = OrgUnitKind.BUSINESS_UNIT
    parent_id: Optional[str] = None


@dataclass(frozen=True)
class OrgDirectory:
    """Immutable directory snapshot with lookup indexes."""
    actors: Tuple[Actor, ...] = ()
    org_units: Tuple[OrgUnit, ...] = ()
    version: int = 0
    
    @classmethod
    def build(
        cls,
        actors: Sequence[Actor],
        org_units: Sequence[OrgUnit],
        version: int = 0,
    ) -> "OrgDirectory":
        return cls(actors=tuple(actors), org_units=tuple(org_units), version=version)
    
    @cached_property
    def _actors_by_id(self) -> Dict[str, Actor]:
        return {actor.id: actor for actor in self.actors}
    
    @cached_property
    def _units_by_id(self) -> Dict[str, OrgUnit]:
        return {unit.id: unit for unit in self.org_units}
    
    @cached_property
    def _reports_by_manager(self) -> Dict[str, Tuple[Actor, ...]]:
        index: Dict[str, List[Actor]] = {}
        for actor in self.actors:
            if actor.manager_id:
                index.setdefault(actor.manager_id, []).append(actor)
        return {manager_id: tuple(reports) for manager_id, reports in index.items()}
    
    @property
    def business_units(self) -> Tuple[OrgUnit, ...]:
        return tuple(u for u in self.org_units if u.kind == OrgUnitKind.BUSINESS_UNIT)
    
    @property
    def departments(self) -> Tuple[OrgUnit, ...]:
        return tuple(u for u in self.org_units if u.kind == OrgUnitKind.DEPARTMENT)
    
    def get_actor(self, actor_id: Optional[str]) -> Optional[Actor]:
        if actor_id is None:
            return None
        return self._actors_by_id.get(actor_id)
    
    def require_actor(self, actor_id: str) -> Actor:
        actor = self.get_actor(actor_id)
        if actor is None:
            raise ActorNotFoundException(actor_id)
        return actor
    
    def get_unit(self, unit_id: Optional[str]) -> Optional[OrgUnit]:
        if unit_id is None:
            return None
        return self._units_by_id.get(unit_id)
    
    def require_unit(self, unit_id: str) -> OrgUnit:
        unit = self.get_unit(unit_id)
        if unit is None:
            raise OrgUnitNotFoundException(unit_id)
        return unit
    
    def direct_reports(self, manager_id: str) -> Tuple[Actor, ...]:
        """Users whose manager_id is the given id (not transitive)."""
        return self._reports_by_manager.get(manager_id, ())


# ===========================================
# DIRECTORY SOURCES
# ===========================================

class DirectorySource(Protocol):
    """Read-only provider of directory data."""
    
    async def load_actors(self) -> List[Actor]: ...
    
    async def load_org_units(self) -> List[OrgUnit]: ...


def actor_from_record(user: DirectoryUser, units: Dict[str, OrgUnit]) -> Actor:
    """Map a directory row to an Actor, resolving unit names."""
    business_unit = units.get(user.business_unit_id) if user.business_unit_id else None
    department = units.get(user.department_id) if user.department_id else None
    
    access_scope = None
    if user.access_scope_type is not None:
        allowed = user.allowed_org_unit_ids
        access_scope = AccessScope(
            type=user.access_scope_type,
            allowed_org_unit_ids=frozenset(allowed) if allowed is not None else None,
        )
    
    return Actor(
        id=user.id,
        name=user.name,
        role=user.role,
        business_unit_id=user.business_unit_id,
        department_id=user.department_id,
        business_unit=business_unit.name if business_unit else None,
        department=department.name if department else None,
        manager_id=user.manager_id,
        status=user.status,
        access_scope=access_scope,
    )


class SqlDirectorySource:
    """Loads the directory from the synced hris_users / org_units tables."""
    
    def __init__(self, db: AsyncSession):
        self.db = db
    
    async def load_org_units(self) -> List[OrgUnit]:
        result = await self.db.execute(select(OrgUnitRecord).order_by(OrgUnitRecord.name))
        return [
            OrgUnit(id=row.id, name=row.name, kind=row.kind, parent_id=row.parent_id)
            for row in result.scalars().all()
        ]
    
    async def load_actors(self) -> List[Actor]:
        units = {unit.id: unit for unit in await self.load_org_units()}
        result = await self.db.execute(select(DirectoryUser).order_by(DirectoryUser.id))
        return [actor_from_record(user, units) for user in result.scalars().all()]


async def load_directory(source: DirectorySource, version: int = 0) -> OrgDirectory:
    """Take a snapshot from a directory source."""
    actors = await source.load_actors()
    org_units = await source.load_org_units()
    return OrgDirectory.build(actors, org_units, version=version)


class DirectoryCache:
    """
    Shares one snapshot across requests and rebuilds it once it is older
    than `ttl_seconds`. Each rebuild bumps the snapshot version.
    """
    
    def __init__(self, ttl_seconds: float, clock=time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._snapshot: Optional[OrgDirectory] = None
        self._loaded_at = 0.0
        self._version = 0
        self._lock = asyncio.Lock()
    
    def _is_fresh(self) -> bool:
        return (
            self._snapshot is not None
            and self._clock() - self._loaded_at < self.ttl_seconds
        )
    
    async def get(self, source: DirectorySource) -> OrgDirectory:
        if self._is_fresh():
            return self._snapshot
        async with self._lock:
            if not self._is_fresh():
                self._version += 1
                self._snapshot = await load_directory(source, version=self._version)
                self._loaded_at = self._clock()
                logger.info(
                    f"Directory snapshot v{self._version} loaded: "
                    f"{len(self._snapshot.actors)} users, {len(self._snapshot.org_units)} units"
                )
        return self._snapshot
    
    def invalidate(self) -> None:
        self._snapshot = None
