"""
HRIS Core - Approval Routing Engine

Builds and advances the ordered approval steps of a case, independent of
what the case represents.

Lifecycle:
    Draft -> PendingApproval -> Approved | Declined
    Approved -> PendingAcknowledgement -> Acknowledged -> Closed
    Declined -> Draft (reopen) -> PendingApproval (resubmit)

Routing modes:
    parallel (default)  every pending step may be decided at any time
    sequential          only the lowest-order pending step is actionable

Transitions are computed by pure functions on a copy of the case and
persisted through the CaseStore with an optimistic version check. A lost
race is retried from a fresh read, so a decision on a step that was just
decided by someone else fails with NoPendingStepException.
"""

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from hris_core.config import settings
from hris_core.models.case import CaseEventType, CaseKind, CaseStatus, StepStatus
from hris_core.models.directory import Role
from hris_core.services.case_store import CaseStore
from hris_core.services.case_types import ApprovalStep, Case, CaseEvent
from hris_core.services.org_directory import Actor
from hris_core.utils.error_handling import (
    CompositionConstraintException,
    InvalidTransitionException,
    NoPendingStepException,
    NotAuthorizedException,
    RejectionReasonRequiredException,
    ValidationException,
    VersionConflictException,
)

logger = logging.getLogger(__name__)


# ===========================================
# COMPOSITION CONSTRAINTS
# ===========================================

# Returns a violation message, or None when the selection is acceptable
CompositionConstraint = Callable[[Sequence[Actor]], Optional[str]]


def require_at_least_one_approver(
    message: str = "At least one approver must be selected.",
) -> CompositionConstraint:
    def constraint(approvers: Sequence[Actor]) -> Optional[str]:
        return None if approvers else message
    return constraint


def require_approver_with_role(role: Role, message: Optional[str] = None) -> CompositionConstraint:
    """At least one selected approver must hold the role."""
    message = message or f"At least one selected approver must be a {role.value}."
    
    def constraint(approvers: Sequence[Actor]) -> Optional[str]:
        if any(a.role == role for a in approvers):
            return None
        return message
    return constraint


def require_approvers_from_roles(roles: Iterable[Role], message: Optional[str] = None) -> CompositionConstraint:
    """Every selected approver must hold one of the roles."""
    allowed = frozenset(roles)
    
    def constraint(approvers: Sequence[Actor]) -> Optional[str]:
        outsiders = [a.name for a in approvers if a.role not in allowed]
        if not outsiders:
            return None
        if message:
            return message
        labels = ", ".join(sorted(r.value for r in allowed))
        return f"Approvers must hold one of these roles: {labels}. Not eligible: {', '.join(outsiders)}."
    return constraint


def validate_approvers(
    approvers: Sequence[Actor],
    constraints: Sequence[CompositionConstraint] = (),
    subject_employee_id: Optional[str] = None,
    allow_self_approval: bool = False,
) -> None:
    """
    Check an approver selection before anything is stored.
    
    Raises:
        CompositionConstraintException: listing every violation found
    """
    violations: List[str] = []
    if not approvers:
        violations.append("At least one approver must be selected.")
    
    seen = set()
    for approver in approvers:
        if approver.id in seen:
            violations.append(f"Approver '{approver.name}' was selected more than once.")
        seen.add(approver.id)
        if not approver.is_active:
            violations.append(f"Approver '{approver.name}' is not an active user.")
    
    if not allow_self_approval and subject_employee_id is not None and subject_employee_id in seen:
        violations.append("The subject of a case cannot be one of its approvers.")
    
    for constraint in constraints:
        violation = constraint(approvers)
        if violation and violation not in violations:
            violations.append(violation)
    
    if violations:
        raise CompositionConstraintException(violations)


# ===========================================
# PURE TRANSITIONS
# ===========================================

def build_steps(approvers: Sequence[Actor], cycle: int) -> List[ApprovalStep]:
    """One Pending step per approver, ordered 1..N in selection order."""
    return [
        ApprovalStep(
            order=order,
            approver_user_id=approver.id,
            approver_role_at_assignment=approver.role.value,
            cycle=cycle,
        )
        for order, approver in enumerate(approvers, start=1)
    ]


def actionable_steps(case: Case) -> List[ApprovalStep]:
    """Steps that may be decided right now."""
    if case.status != CaseStatus.PENDING_APPROVAL:
        return []
    pending = sorted(case.pending_steps, key=lambda s: s.order)
    if case.sequential:
        return pending[:1]
    return pending


def compute_aggregate_status(steps: Sequence[ApprovalStep]) -> CaseStatus:
    """
    First decline wins; all approved completes; otherwise still pending.
    """
    if any(step.status == StepStatus.DECLINED for step in steps):
        return CaseStatus.DECLINED
    if steps and all(step.status == StepStatus.APPROVED for step in steps):
        return CaseStatus.APPROVED
    return CaseStatus.PENDING_APPROVAL


@dataclass
class DecisionOutcome:
    """What changed in a decision, for the caller to decide whom to notify."""
    case: Case
    step: ApprovalStep
    decision: StepStatus
    previous_status: CaseStatus
    new_status: CaseStatus
    next_approver_ids: List[str] = field(default_factory=list)
    cancelled_approver_ids: List[str] = field(default_factory=list)
    
    @property
    def satisfied_approver_id(self) -> Optional[str]:
        if self.decision == StepStatus.APPROVED:
            return self.step.approver_user_id
        return None
    
    @property
    def became_approved(self) -> bool:
        return self.previous_status != CaseStatus.APPROVED and self.new_status == CaseStatus.APPROVED
    
    @property
    def became_declined(self) -> bool:
        return self.previous_status != CaseStatus.DECLINED and self.new_status == CaseStatus.DECLINED


def apply_decision(
    case: Case,
    acting_user_id: str,
    decision: StepStatus,
    reason: Optional[str],
    now: datetime,
    cancel_pending_on_decline: bool = False,
) -> DecisionOutcome:
    """
    Record one approver's decision on the case in place.
    
    Only the acting user's own pending step changes, and the aggregate
    status is recomputed from the full step list.
    
    Raises:
        NoPendingStepException: the user has no actionable pending step
    """
    if case.status != CaseStatus.PENDING_APPROVAL:
        raise NoPendingStepException(
            case.id, acting_user_id,
            message=f"Case is not awaiting approval (status: {case.status.value})",
        )
    
    mine = sorted(
        (s for s in case.steps_for(acting_user_id) if s.is_pending),
        key=lambda s: s.order,
    )
    if not mine:
        raise NoPendingStepException(case.id, acting_user_id)
    step = mine[0]
    
    if not any(s is step for s in actionable_steps(case)):
        raise NoPendingStepException(
            case.id, acting_user_id,
            message="An earlier approver has not decided yet",
        )
    
    previous_status = case.status
    step.status = decision
    step.decided_at = now
    if decision == StepStatus.DECLINED:
        step.rejection_reason = reason
        event_type = CaseEventType.STEP_DECLINED
    else:
        step.note = reason
        event_type = CaseEventType.STEP_APPROVED
    case.history.append(CaseEvent(
        event_type=event_type,
        cycle=case.cycle,
        occurred_at=now,
        actor_id=acting_user_id,
        reason=reason,
    ))
    
    new_status = compute_aggregate_status(case.steps)
    
    cancelled: List[str] = []
    if new_status == CaseStatus.DECLINED and cancel_pending_on_decline:
        for other in case.pending_steps:
            other.status = StepStatus.CANCELLED
            other.decided_at = now
            cancelled.append(other.approver_user_id)
        if cancelled:
            case.history.append(CaseEvent(
                event_type=CaseEventType.STEPS_CANCELLED,
                cycle=case.cycle,
                occurred_at=now,
                actor_id=acting_user_id,
            ))
    
    if new_status != previous_status:
        case.status = new_status
        case.history.append(CaseEvent(
            event_type=CaseEventType.APPROVED if new_status == CaseStatus.APPROVED else CaseEventType.DECLINED,
            cycle=case.cycle,
            occurred_at=now,
            actor_id=acting_user_id,
        ))
    
    return DecisionOutcome(
        case=case,
        step=step,
        decision=decision,
        previous_status=previous_status,
        new_status=new_status,
        next_approver_ids=[s.approver_user_id for s in actionable_steps(case)],
        cancelled_approver_ids=cancelled,
    )


def _require_status(case: Case, operation: str, allowed: Sequence[CaseStatus]) -> None:
    if case.status not in allowed:
        raise InvalidTransitionException(
            operation,
            case.status.value,
            [status.value for status in allowed],
        )


# ===========================================
# ENGINE
# ===========================================

class RoutingEngine:
    """Async front for the pure transitions, bound to a case store."""
    
    def __init__(
        self,
        store: CaseStore,
        *,
        max_conflict_retries: Optional[int] = None,
        cancel_pending_on_decline: Optional[bool] = None,
        allow_self_approval: Optional[bool] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.max_conflict_retries = (
            settings.decision_conflict_retries if max_conflict_retries is None else max_conflict_retries
        )
        self.cancel_pending_on_decline = (
            settings.cancel_pending_steps_on_decline
            if cancel_pending_on_decline is None else cancel_pending_on_decline
        )
        self.allow_self_approval = (
            settings.allow_self_approval if allow_self_approval is None else allow_self_approval
        )
        self._clock = clock or (lambda: datetime.now(timezone.utc))
    
    async def _mutate(
        self,
        case_id: uuid.UUID,
        operation: str,
        transition: Callable[[Case], Any],
    ) -> Tuple[Case, Any]:
        """
        Read, transform and save a case, retrying on version conflicts.
        
        The transition raises before touching the case when the request is
        invalid, so a failed attempt never persists anything.
        """
        attempts = self.max_conflict_retries + 1
        for attempt in range(1, attempts + 1):
            case = await self.store.get(case_id)
            result = transition(case)
            try:
                saved = await self.store.save(case)
            except VersionConflictException:
                if attempt == attempts:
                    logger.warning(f"Giving up {operation} on case {case_id} after {attempt} conflicts")
                    raise
                logger.warning(f"Version conflict on {operation} for case {case_id}, retrying ({attempt})")
                continue
            return saved, result
        raise VersionConflictException(case_id, -1)
    
    async def submit(
        self,
        *,
        kind: CaseKind,
        subject_employee_id: str,
        requested_by_id: str,
        approvers: Sequence[Actor],
        constraints: Sequence[CompositionConstraint] = (),
        business_unit_id: Optional[str] = None,
        department_id: Optional[str] = None,
        title: str = "",
        payload: Optional[Dict[str, Any]] = None,
        sequential: bool = False,
    ) -> Case:
        """
        Create a case awaiting approval.
        
        Approvers are validated first; on failure nothing is stored.
        Step order follows the selection order as given.
        """
        validate_approvers(approvers, constraints, subject_employee_id, self.allow_self_approval)
        
        now = self._clock()
        case = Case(
            kind=kind,
            subject_employee_id=subject_employee_id,
            requested_by_id=requested_by_id,
            business_unit_id=business_unit_id,
            department_id=department_id,
            title=title,
            payload=dict(payload or {}),
            status=CaseStatus.PENDING_APPROVAL,
            steps=build_steps(approvers, cycle=1),
            sequential=sequential,
            created_at=now,
        )
        case.history.append(CaseEvent(
            event_type=CaseEventType.SUBMITTED,
            cycle=case.cycle,
            occurred_at=now,
            actor_id=requested_by_id,
        ))
        stored = await self.store.create(case)
        logger.info(
            f"Case {stored.id} ({kind.value}) submitted by {requested_by_id} "
            f"with {len(stored.steps)} approver(s)"
        )
        return stored
    
    async def decide(
        self,
        case_id: uuid.UUID,
        acting_user_id: str,
        decision: StepStatus,
        reason: Optional[str] = None,
    ) -> DecisionOutcome:
        """
        Approve or decline the acting user's pending step.
        
        Raises:
            ValidationException: decision is not Approved/Declined
            RejectionReasonRequiredException: declining without a reason
            NoPendingStepException: no actionable pending step for the user
        """
        if decision not in (StepStatus.APPROVED, StepStatus.DECLINED):
            raise ValidationException(
                f"Decision must be {StepStatus.APPROVED.value} or {StepStatus.DECLINED.value}",
                field="decision",
            )
        reason = reason.strip() if reason else None
        if decision == StepStatus.DECLINED and not reason:
            raise RejectionReasonRequiredException()
        
        now = self._clock()
        saved, outcome = await self._mutate(
            case_id,
            "decide",
            lambda case: apply_decision(
                case, acting_user_id, decision, reason, now, self.cancel_pending_on_decline,
            ),
        )
        saved_step = next(
            s for s in saved.steps
            if s.order == outcome.step.order
        )
        logger.info(
            f"Case {case_id}: {acting_user_id} {decision.value.lower()} step {saved_step.order}; "
            f"status {outcome.previous_status.value} -> {outcome.new_status.value}"
        )
        return replace(outcome, case=saved, step=saved_step)
    
    async def reopen(self, case_id: uuid.UUID, acting_user_id: str) -> Case:
        """Move a declined case back to Draft for editing."""
        def transition(case: Case) -> None:
            _require_status(case, "reopen", [CaseStatus.DECLINED])
            case.status = CaseStatus.DRAFT
            case.history.append(CaseEvent(
                event_type=CaseEventType.REOPENED,
                cycle=case.cycle,
                occurred_at=self._clock(),
                actor_id=acting_user_id,
            ))
        
        saved, _ = await self._mutate(case_id, "reopen", transition)
        logger.info(f"Case {case_id} reopened by {acting_user_id}")
        return saved
    
    async def resubmit(
        self,
        case_id: uuid.UUID,
        acting_user_id: str,
        approvers: Optional[Sequence[Actor]] = None,
        constraints: Sequence[CompositionConstraint] = (),
    ) -> Case:
        """
        Start a new routing cycle for a declined (or reopened) case.
        
        The previous cycle's steps and reasons stay on the case. Without a
        new selection the previous approvers are routed again.
        """
        def transition(case: Case) -> None:
            _require_status(case, "resubmit", [CaseStatus.DECLINED, CaseStatus.DRAFT])
            next_cycle = case.cycle + 1
            if approvers is not None:
                validate_approvers(
                    approvers, constraints, case.subject_employee_id, self.allow_self_approval,
                )
                steps = build_steps(approvers, cycle=next_cycle)
            else:
                steps = [
                    ApprovalStep(
                        order=step.order,
                        approver_user_id=step.approver_user_id,
                        approver_role_at_assignment=step.approver_role_at_assignment,
                        cycle=next_cycle,
                    )
                    for step in sorted(case.steps, key=lambda s: s.order)
                ]
            if not steps:
                raise CompositionConstraintException(["At least one approver must be selected."])
            
            case.previous_steps.extend(case.steps)
            case.steps = steps
            case.cycle = next_cycle
            case.status = CaseStatus.PENDING_APPROVAL
            case.history.append(CaseEvent(
                event_type=CaseEventType.RESUBMITTED,
                cycle=next_cycle,
                occurred_at=self._clock(),
                actor_id=acting_user_id,
            ))
        
        saved, _ = await self._mutate(case_id, "resubmit", transition)
        logger.info(f"Case {case_id} resubmitted by {acting_user_id} (cycle {saved.cycle})")
        return saved
    
    async def request_acknowledgement(self, case_id: uuid.UUID, acting_user_id: Optional[str] = None) -> Case:
        """Hand an approved case to its subject for sign-off."""
        def transition(case: Case) -> None:
            _require_status(case, "request acknowledgement for", [CaseStatus.APPROVED])
            case.status = CaseStatus.PENDING_ACKNOWLEDGEMENT
            case.history.append(CaseEvent(
                event_type=CaseEventType.ACKNOWLEDGEMENT_REQUESTED,
                cycle=case.cycle,
                occurred_at=self._clock(),
                actor_id=acting_user_id,
            ))
        
        saved, _ = await self._mutate(case_id, "request_acknowledgement", transition)
        return saved
    
    async def acknowledge(self, case_id: uuid.UUID, acting_user_id: str) -> Case:
        """Subject signs off on an approved case."""
        def transition(case: Case) -> None:
            _require_status(case, "acknowledge", [CaseStatus.PENDING_ACKNOWLEDGEMENT])
            if acting_user_id != case.subject_employee_id:
                raise NotAuthorizedException("Only the subject of the case can acknowledge it")
            case.status = CaseStatus.ACKNOWLEDGED
            case.history.append(CaseEvent(
                event_type=CaseEventType.ACKNOWLEDGED,
                cycle=case.cycle,
                occurred_at=self._clock(),
                actor_id=acting_user_id,
            ))
        
        saved, _ = await self._mutate(case_id, "acknowledge", transition)
        logger.info(f"Case {case_id} acknowledged by {acting_user_id}")
        return saved
    
    async def close(self, case_id: uuid.UUID, acting_user_id: str, reason: Optional[str] = None) -> Case:
        """
        Close a finished case. A case still awaiting acknowledgement can
        only be closed manually with a reason.
        """
        reason = reason.strip() if reason else None
        
        def transition(case: Case) -> None:
            _require_status(
                case,
                "close",
                [CaseStatus.APPROVED, CaseStatus.ACKNOWLEDGED, CaseStatus.PENDING_ACKNOWLEDGEMENT],
            )
            if case.status == CaseStatus.PENDING_ACKNOWLEDGEMENT and not reason:
                raise ValidationException(
                    "A reason is required to close a case that has not been acknowledged.",
                    field="reason",
                )
            case.status = CaseStatus.CLOSED
            case.closure_reason = reason
            case.history.append(CaseEvent(
                event_type=CaseEventType.CLOSED,
                cycle=case.cycle,
                occurred_at=self._clock(),
                actor_id=acting_user_id,
                reason=reason,
            ))
        
        saved, _ = await self._mutate(case_id, "close", transition)
        logger.info(f"Case {case_id} closed by {acting_user_id}")
        return saved
