"""
HRIS Core - Case Domain Types

Plain dataclasses shared by the routing engine, the case stores and the
facades. A Case carries its current routing cycle in `steps`; steps of
earlier cycles move to `previous_steps` on resubmission.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Optional

from hris_core.models.case import CaseEventType, CaseKind, CaseStatus, StepStatus


@dataclass
class ApprovalStep:
    """One approver's position within a routing cycle."""
    order: int
    approver_user_id: str
    approver_role_at_assignment: str
    cycle: int = 1
    status: StepStatus = StepStatus.PENDING
    decided_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    note: Optional[str] = None
    
    @property
    def is_pending(self) -> bool:
        return self.status == StepStatus.PENDING


@dataclass
class CaseEvent:
    """History entry. Events are appended, never edited."""
    event_type: CaseEventType
    cycle: int
    occurred_at: datetime
    actor_id: Optional[str] = None
    reason: Optional[str] = None
    id: uuid.UUID = field(default_factory=uuid.uuid4)


@dataclass
class Case:
    """A generic approval-bearing record."""
    kind: CaseKind
    subject_employee_id: str
    requested_by_id: str
    business_unit_id: Optional[str] = None
    department_id: Optional[str] = None
    title: str = ""
    payload: Dict[str, Any] = field(default_factory=dict)
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    status: CaseStatus = CaseStatus.DRAFT
    steps: List[ApprovalStep] = field(default_factory=list)
    previous_steps: List[ApprovalStep] = field(default_factory=list)
    history: List[CaseEvent] = field(default_factory=list)
    cycle: int = 1
    sequential: bool = False
    # 0 until first stored; the store bumps it on every save
    version: int = 0
    closure_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    
    @property
    def pending_steps(self) -> List[ApprovalStep]:
        return [step for step in self.steps if step.is_pending]
    
    def steps_for(self, user_id: str) -> List[ApprovalStep]:
        return [step for step in self.steps if step.approver_user_id == user_id]
    
    @property
    def approver_ids(self) -> List[str]:
        return [step.approver_user_id for step in self.steps]
    
    @property
    def rejection_reasons(self) -> List[CaseEvent]:
        """Every decline recorded on the case, across all cycles."""
        return [e for e in self.history if e.event_type == CaseEventType.STEP_DECLINED]


@dataclass(frozen=True)
class CaseQuery:
    """
    Listing filter understood by every case store.
    
    `subject_ids` of None means no subject restriction; an empty set
    matches nothing.
    """
    kind: Optional[CaseKind] = None
    subject_ids: Optional[FrozenSet[str]] = None
    statuses: Optional[FrozenSet[CaseStatus]] = None
    requested_by_id: Optional[str] = None
    approver_id: Optional[str] = None
    # With approver_id: only cases where that approver's step is still pending
    pending_only: bool = False
    
    def matches(self, case: Case) -> bool:
        if self.kind is not None and case.kind != self.kind:
            return False
        if self.subject_ids is not None and case.subject_employee_id not in self.subject_ids:
            return False
        if self.statuses is not None and case.status not in self.statuses:
            return False
        if self.requested_by_id is not None and case.requested_by_id != self.requested_by_id:
            return False
        if self.approver_id is not None:
            steps = case.steps_for(self.approver_id)
            if self.pending_only:
                steps = [s for s in steps if s.is_pending]
            if not steps:
                return False
        return True
