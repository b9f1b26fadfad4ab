"""
HRIS Core - FastAPI Dependencies

Shared dependencies for authentication, database sessions, and RBAC.

This module provides dependency injection for:
1. Database sessions and the shared directory snapshot
2. Current actor authentication
3. Case stores, the routing engine and per-kind case facades
"""

from functools import lru_cache
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from hris_core.config import settings
from hris_core.database import get_async_session
from hris_core.models.case import CaseKind
from hris_core.services.case_facades import CaseFacade, get_facade_config
from hris_core.services.case_store import CaseStore, SqlCaseStore
from hris_core.services.notifications import LoggingNotificationSink, NotificationSink
from hris_core.services.org_directory import (
    Actor,
    DirectoryCache,
    OrgDirectory,
    SqlDirectorySource,
)
from hris_core.services.permission_gate import PermissionGate
from hris_core.services.routing_engine import RoutingEngine
from hris_core.services.scope_resolver import ScopeResolver
from hris_core.utils.error_handling import (
    AccountDisabledException,
    AuthenticationException,
    TokenInvalidException,
)
from hris_core.utils.security import verify_access_token


# HTTP Bearer token security
security = HTTPBearer(auto_error=False)

directory_cache = DirectoryCache(ttl_seconds=settings.directory_cache_seconds)


async def get_directory(
    db: AsyncSession = Depends(get_async_session),
) -> OrgDirectory:
    """Shared, periodically refreshed directory snapshot."""
    return await directory_cache.get(SqlDirectorySource(db))


@lru_cache()
def get_permission_gate() -> PermissionGate:
    """Gate over the default table plus configured overrides (validated once)."""
    return PermissionGate()


@lru_cache()
def get_scope_resolver() -> ScopeResolver:
    return ScopeResolver()


def get_notification_sink() -> NotificationSink:
    return LoggingNotificationSink()


async def get_current_actor(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    directory: OrgDirectory = Depends(get_directory),
) -> Actor:
    """
    Get the current actor from the JWT token.
    
    Token can be provided via:
    1. Authorization: Bearer <token> header
    2. access_token cookie
    
    Raises:
        AuthenticationException: missing or invalid token, or unknown user
        AccountDisabledException: user is inactive in the directory
    """
    token = None
    if credentials:
        token = credentials.credentials
    else:
        token = request.cookies.get("access_token")
        if token and token.startswith("Bearer "):
            token = token[7:]
    
    if not token:
        raise AuthenticationException("Not authenticated")
    
    payload = verify_access_token(token)
    if not payload:
        raise TokenInvalidException("Invalid or expired token")
    
    user_id = payload.get("sub")
    if not user_id:
        raise TokenInvalidException("Invalid token payload")
    
    actor = directory.get_actor(str(user_id))
    if actor is None:
        raise AuthenticationException("User not found")
    
    if not actor.is_active:
        raise AccountDisabledException(actor.id)
    
    return actor


def get_case_store(
    db: AsyncSession = Depends(get_async_session),
) -> CaseStore:
    return SqlCaseStore(db)


def get_routing_engine(
    store: CaseStore = Depends(get_case_store),
) -> RoutingEngine:
    return RoutingEngine(store)


def get_case_facade(
    kind: CaseKind,
    engine: RoutingEngine = Depends(get_routing_engine),
    directory: OrgDirectory = Depends(get_directory),
    gate: PermissionGate = Depends(get_permission_gate),
    resolver: ScopeResolver = Depends(get_scope_resolver),
    notifier: NotificationSink = Depends(get_notification_sink),
) -> CaseFacade:
    """Facade for the case kind named in the request path."""
    return CaseFacade(
        get_facade_config(kind),
        engine,
        directory,
        gate=gate,
        resolver=resolver,
        notifier=notifier,
    )
