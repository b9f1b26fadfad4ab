"""
HRIS Core - Case Schemas

Pydantic schemas for case submission, decisions and case views.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from hris_core.models.case import CaseEventType, CaseKind, CaseStatus, StepStatus


# =============================================================================
# REQUESTS
# =============================================================================

class CaseSubmitRequest(BaseModel):
    """Submit a case about an employee to an ordered list of approvers."""
    subject_employee_id: str = Field(..., min_length=1, max_length=64)
    approver_ids: List[str] = Field(
        default_factory=list,
        description="Approver user ids in routing order",
    )
    business_unit_id: Optional[str] = Field(None, max_length=64)
    title: str = Field("", max_length=255)
    payload: Dict[str, Any] = Field(default_factory=dict)


class DecisionRequest(BaseModel):
    """Approve or decline the caller's pending step."""
    decision: StepStatus
    reason: Optional[str] = Field(None, max_length=2000)
    
    @field_validator("decision")
    @classmethod
    def decision_is_final(cls, value: StepStatus) -> StepStatus:
        if value not in (StepStatus.APPROVED, StepStatus.DECLINED):
            raise ValueError("decision must be Approved or Declined")
        return value


class ResubmitRequest(BaseModel):
    """Route a declined case again; omit approver_ids to reuse the last panel."""
    approver_ids: Optional[List[str]] = None


class CloseRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=2000)


# =============================================================================
# RESPONSES
# =============================================================================

class ApprovalStepResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    
    order: int
    cycle: int
    approver_user_id: str
    approver_role_at_assignment: str
    status: StepStatus
    decided_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    note: Optional[str] = None


class CaseEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    
    id: UUID
    event_type: CaseEventType
    cycle: int
    actor_id: Optional[str] = None
    reason: Optional[str] = None
    occurred_at: datetime


class CaseResponse(BaseModel):
    """Case with its current steps and full history."""
    model_config = ConfigDict(from_attributes=True)
    
    id: UUID
    kind: CaseKind
    title: str
    payload: Dict[str, Any]
    subject_employee_id: str
    business_unit_id: Optional[str] = None
    department_id: Optional[str] = None
    requested_by_id: str
    status: CaseStatus
    cycle: int
    sequential: bool
    version: int
    closure_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    steps: List[ApprovalStepResponse]
    previous_steps: List[ApprovalStepResponse] = []
    history: List[CaseEventResponse] = []


class CaseListResponse(BaseModel):
    cases: List[CaseResponse]
    total: int


class DecisionResponse(BaseModel):
    """Decision result with the hints used for notifications."""
    case: CaseResponse
    previous_status: CaseStatus
    new_status: CaseStatus
    satisfied_approver_id: Optional[str] = None
    became_approved: bool
    became_declined: bool
    next_approver_ids: List[str]
