"""
HRIS Core - Access Schemas

Pydantic schemas for scope and permission introspection.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from hris_core.models.directory import AccessScopeType, ActorStatus, Role
from hris_core.utils.permissions import Permission, ResourceKind, ScopeClass


class ActorResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    
    id: str
    name: str
    role: Role
    business_unit_id: Optional[str] = None
    department_id: Optional[str] = None
    business_unit: Optional[str] = None
    department: Optional[str] = None
    manager_id: Optional[str] = None
    status: ActorStatus


class OrgUnitResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    
    id: str
    name: str


class CaseCapabilitiesResponse(BaseModel):
    can_request: bool
    can_approve: bool
    can_view: bool
    scope: ScopeClass


class AccessSummaryResponse(BaseModel):
    """What the current actor can reach."""
    actor: ActorResponse
    access_scope: AccessScopeType
    accessible_business_units: List[OrgUnitResponse]
    visible_employee_ids: List[str]
    has_direct_reports: bool
    case_capabilities: Dict[str, CaseCapabilitiesResponse]


class PermissionCheckResponse(BaseModel):
    resource: ResourceKind
    permission: Permission
    allowed: bool


class ApproverCandidatesResponse(BaseModel):
    candidates: List[ActorResponse]
    total: int
