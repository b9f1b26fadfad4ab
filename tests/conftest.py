"""
HRIS Core - Test Configuration

Pytest fixtures and configuration.
"""

import os
from typing import AsyncGenerator, Dict, Optional

# Keep the application engine off PostgreSQL during tests
os.environ.setdefault("DATABASE_URL_ASYNC", "sqlite+aiosqlite:///./hris_core_test.db")
os.environ.setdefault("APP_ENV", "testing")

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

import hris_core.models  # noqa: F401
from hris_core.database import Base, get_async_session
from hris_core.dependencies import get_directory, get_notification_sink
from hris_core.models.directory import AccessScopeType, ActorStatus, OrgUnitKind, Role
from hris_core.services.case_store import InMemoryCaseStore
from hris_core.services.org_directory import AccessScope, Actor, OrgDirectory, OrgUnit
from hris_core.services.routing_engine import RoutingEngine
from hris_core.services.scope_resolver import ScopeResolver
from hris_core.utils.security import create_access_token
from main import app


# ===========================================
# DIRECTORY FIXTURES
# ===========================================

UNITS = [
    OrgUnit(id="bu-hq", name="Head Office"),
    OrgUnit(id="bu-north", name="North Luzon"),
    OrgUnit(id="bu-south", name="South Luzon"),
    OrgUnit(id="dept-hr", name="Human Resources", kind=OrgUnitKind.DEPARTMENT),
    OrgUnit(id="dept-ops", name="Operations", kind=OrgUnitKind.DEPARTMENT),
    OrgUnit(id="dept-fin", name="Finance", kind=OrgUnitKind.DEPARTMENT),
]

_UNIT_NAMES: Dict[str, str] = {unit.id: unit.name for unit in UNITS}

GLOBAL_SCOPE = AccessScope(type=AccessScopeType.GLOBAL)


def make_actor(
    actor_id: str,
    role: Role,
    business_unit_id: Optional[str] = None,
    department_id: Optional[str] = None,
    manager_id: Optional[str] = None,
    status: ActorStatus = ActorStatus.ACTIVE,
    access_scope: Optional[AccessScope] = None,
    name: Optional[str] = None,
) -> Actor:
    """Build an Actor with unit names resolved from the test org units."""
    return Actor(
        id=actor_id,
        name=name or actor_id,
        role=role,
        business_unit_id=business_unit_id,
        department_id=department_id,
        business_unit=_UNIT_NAMES.get(business_unit_id) if business_unit_id else None,
        department=_UNIT_NAMES.get(department_id) if department_id else None,
        manager_id=manager_id,
        status=status,
        access_scope=access_scope,
    )


ACTORS = [
    make_actor("u-admin", Role.ADMIN, "bu-hq", "dept-hr", access_scope=GLOBAL_SCOPE),
    make_actor("u-hr", Role.HR_MANAGER, "bu-hq", "dept-hr", access_scope=GLOBAL_SCOPE),
    make_actor(
        "u-hrstaff", Role.HR_STAFF, "bu-hq", "dept-hr",
        access_scope=AccessScope(AccessScopeType.SPECIFIC, frozenset({"bu-north"})),
    ),
    make_actor("u-bod1", Role.BOD, "bu-hq", access_scope=GLOBAL_SCOPE),
    make_actor("u-bod2", Role.BOD, "bu-hq", access_scope=GLOBAL_SCOPE),
    make_actor("u-gm", Role.GENERAL_MANAGER, "bu-hq", access_scope=GLOBAL_SCOPE),
    make_actor("u-bum", Role.BUSINESS_UNIT_MANAGER, "bu-north", "dept-ops"),
    make_actor("u-mgr", Role.MANAGER, "bu-north", "dept-ops"),
    make_actor("u-emp1", Role.EMPLOYEE, "bu-north", "dept-ops", manager_id="u-mgr"),
    make_actor("u-emp2", Role.EMPLOYEE, "bu-north", "dept-ops", manager_id="u-mgr"),
    make_actor("u-gone", Role.EMPLOYEE, "bu-north", "dept-ops", manager_id="u-emp1",
               status=ActorStatus.INACTIVE),
    make_actor("u-lead", Role.EMPLOYEE, "bu-south", "dept-ops"),
    make_actor("u-emp3", Role.EMPLOYEE, "bu-south", "dept-ops", manager_id="u-lead"),
    make_actor("u-finmgr", Role.MANAGER, "bu-south", "dept-fin"),
]


@pytest.fixture
def directory() -> OrgDirectory:
    """Directory snapshot shared by unit and API tests."""
    return OrgDirectory.build(ACTORS, UNITS, version=1)


@pytest.fixture
def resolver() -> ScopeResolver:
    return ScopeResolver(
        cross_functional_departments=["Marketing", "Finance", "Finance and Accounting", "Human Resources"],
        missing_field_permissive=True,
    )


@pytest.fixture
def store() -> InMemoryCaseStore:
    return InMemoryCaseStore()


@pytest.fixture
def engine(store: InMemoryCaseStore) -> RoutingEngine:
    return RoutingEngine(
        store,
        max_conflict_retries=3,
        cancel_pending_on_decline=False,
        allow_self_approval=False,
    )


class RecordingNotificationSink:
    """Captures notifications instead of delivering them."""
    
    def __init__(self):
        self.sent = []
    
    async def notify(self, user_id, title, message, link=None):
        self.sent.append({"user_id": user_id, "title": title, "message": message, "link": link})
    
    def recipients(self):
        return [n["user_id"] for n in self.sent]


@pytest.fixture
def notifier() -> RecordingNotificationSink:
    return RecordingNotificationSink()


# ===========================================
# DATABASE FIXTURES
# ===========================================

@pytest_asyncio.fixture(scope="function")
async def db_session(tmp_path) -> AsyncGenerator[AsyncSession, None]:
    """Fresh SQLite database per test."""
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'hris.db'}")
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    
    session_factory = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with session_factory() as session:
        yield session
    
    await test_engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def client(
    db_session: AsyncSession,
    directory: OrgDirectory,
    notifier: RecordingNotificationSink,
) -> AsyncGenerator[AsyncClient, None]:
    """Test client with the database session and directory snapshot overridden."""
    
    async def override_get_session():
        yield db_session
    
    async def override_get_directory():
        return directory
    
    app.dependency_overrides[get_async_session] = override_get_session
    app.dependency_overrides[get_directory] = override_get_directory
    app.dependency_overrides[get_notification_sink] = lambda: notifier
    
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    
    app.dependency_overrides.clear()


def auth_headers(user_id: str) -> Dict[str, str]:
    """Bearer header for a directory user."""
    token = create_access_token({"sub": user_id})
    return {"Authorization": f"Bearer {token}"}
