"""
HRIS Core - Access Router

Introspection of the caller's organizational reach and permissions.

Endpoints:
- GET /access/me - Accessible business units, visible employees, case capabilities
- GET /access/check - Whether the caller holds a permission on a resource
"""

from fastapi import APIRouter, Depends, Query

from hris_core.dependencies import (
    get_current_actor,
    get_directory,
    get_permission_gate,
    get_scope_resolver,
)
from hris_core.models.case import CaseKind
from hris_core.models.directory import AccessScopeType
from hris_core.schemas.access import (
    AccessSummaryResponse,
    ActorResponse,
    CaseCapabilitiesResponse,
    OrgUnitResponse,
    PermissionCheckResponse,
)
from hris_core.services.org_directory import Actor, OrgDirectory
from hris_core.services.permission_gate import PermissionGate
from hris_core.services.scope_resolver import ScopeResolver
from hris_core.utils.permissions import Permission, ResourceKind


router = APIRouter(prefix="/access", tags=["Access"])


@router.get("/me", response_model=AccessSummaryResponse)
async def get_my_access(
    actor: Actor = Depends(get_current_actor),
    directory: OrgDirectory = Depends(get_directory),
    resolver: ScopeResolver = Depends(get_scope_resolver),
):
    """Summarize what the caller can reach."""
    units = resolver.accessible_org_units(actor, directory.business_units)
    capabilities = {}
    for kind in CaseKind:
        caps = resolver.resolve_case_scope(actor, kind, directory)
        capabilities[kind.value] = CaseCapabilitiesResponse(
            can_request=caps.can_request,
            can_approve=caps.can_approve,
            can_view=caps.can_view,
            scope=caps.scope,
        )
    
    return AccessSummaryResponse(
        actor=ActorResponse.model_validate(actor),
        access_scope=actor.access_scope.type if actor.access_scope else AccessScopeType.HOME_ONLY,
        accessible_business_units=[OrgUnitResponse.model_validate(u) for u in units],
        visible_employee_ids=sorted(resolver.visible_employee_ids(actor, directory)),
        has_direct_reports=resolver.has_direct_reports(actor, directory),
        case_capabilities=capabilities,
    )


@router.get("/check", response_model=PermissionCheckResponse)
async def check_permission(
    resource: ResourceKind = Query(...),
    permission: Permission = Query(...),
    actor: Actor = Depends(get_current_actor),
    gate: PermissionGate = Depends(get_permission_gate),
):
    return PermissionCheckResponse(
        resource=resource,
        permission=permission,
        allowed=gate.can(actor, resource, permission),
    )
