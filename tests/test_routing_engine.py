"""
HRIS Core - Routing Engine Tests

Unit tests for approver validation, aggregate status, decisions,
resubmission and optimistic concurrency.
"""

import pytest

from hris_core.models.case import CaseEventType, CaseKind, CaseStatus, StepStatus
from hris_core.models.directory import Role
from hris_core.services.case_store import InMemoryCaseStore
from hris_core.services.case_types import ApprovalStep, CaseQuery
from hris_core.services.routing_engine import (
    RoutingEngine,
    compute_aggregate_status,
    require_approver_with_role,
    require_approvers_from_roles,
    validate_approvers,
)
from hris_core.utils.error_handling import (
    CompositionConstraintException,
    InvalidTransitionException,
    NoPendingStepException,
    NotAuthorizedException,
    RejectionReasonRequiredException,
    ValidationException,
    VersionConflictException,
)


async def submit(engine, directory, approver_ids, subject="u-emp1", **kwargs):
    return await engine.submit(
        kind=kwargs.pop("kind", CaseKind.NTE),
        subject_employee_id=subject,
        requested_by_id=kwargs.pop("requested_by_id", "u-hr"),
        approvers=[directory.get_actor(a) for a in approver_ids],
        **kwargs,
    )


class RacingStore(InMemoryCaseStore):
    """Runs a competing write right before the next save."""
    
    def __init__(self):
        super().__init__()
        self.race = None
    
    async def save(self, case):
        if self.race is not None:
            race, self.race = self.race, None
            await race()
        return await super().save(case)


class AlwaysConflictingStore(InMemoryCaseStore):
    def __init__(self):
        super().__init__()
        self.save_attempts = 0
    
    async def save(self, case):
        self.save_attempts += 1
        raise VersionConflictException(case.id, case.version)


class TestApproverValidation:
    """Test cases for approver selection checks."""
    
    def test_empty_selection_rejected(self):
        with pytest.raises(CompositionConstraintException) as exc_info:
            validate_approvers([])
        
        assert exc_info.value.message == "At least one approver must be selected."
        assert exc_info.value.status_code == 422
    
    def test_duplicate_and_inactive_approvers_reported(self, directory):
        emp = directory.get_actor("u-emp2")
        gone = directory.get_actor("u-gone")
        
        with pytest.raises(CompositionConstraintException) as exc_info:
            validate_approvers([emp, emp, gone])
        
        assert len(exc_info.value.violations) == 2
    
    def test_subject_cannot_approve_own_case(self, directory):
        with pytest.raises(CompositionConstraintException):
            validate_approvers([directory.get_actor("u-emp1")], subject_employee_id="u-emp1")
        
        validate_approvers(
            [directory.get_actor("u-emp1")],
            subject_employee_id="u-emp1",
            allow_self_approval=True,
        )
    
    def test_required_role_constraint(self, directory):
        constraint = require_approver_with_role(Role.BOD, "Need a board member.")
        
        with pytest.raises(CompositionConstraintException) as exc_info:
            validate_approvers([directory.get_actor("u-gm")], [constraint])
        
        assert exc_info.value.message == "Need a board member."
        validate_approvers([directory.get_actor("u-gm"), directory.get_actor("u-bod1")], [constraint])
    
    def test_allowed_roles_constraint_names_outsiders(self, directory):
        constraint = require_approvers_from_roles({Role.BOD, Role.GENERAL_MANAGER})
        
        with pytest.raises(CompositionConstraintException) as exc_info:
            validate_approvers([directory.get_actor("u-bod1"), directory.get_actor("u-hr")], [constraint])
        
        assert "u-hr" in exc_info.value.message


class TestAggregateStatus:
    """Test cases for compute_aggregate_status."""
    
    def _steps(self, *statuses):
        return [
            ApprovalStep(order=i, approver_user_id=f"a{i}", approver_role_at_assignment="Admin", status=s)
            for i, s in enumerate(statuses, start=1)
        ]
    
    def test_any_decline_wins(self):
        steps = self._steps(StepStatus.APPROVED, StepStatus.DECLINED, StepStatus.PENDING)
        
        assert compute_aggregate_status(steps) == CaseStatus.DECLINED
    
    def test_all_approved(self):
        steps = self._steps(StepStatus.APPROVED, StepStatus.APPROVED)
        
        assert compute_aggregate_status(steps) == CaseStatus.APPROVED
    
    def test_partial_approval_still_pending(self):
        steps = self._steps(StepStatus.APPROVED, StepStatus.PENDING)
        
        assert compute_aggregate_status(steps) == CaseStatus.PENDING_APPROVAL
    
    def test_no_steps_is_pending(self):
        assert compute_aggregate_status([]) == CaseStatus.PENDING_APPROVAL


class TestRoutingEngine:
    """Test cases for RoutingEngine operations."""
    
    @pytest.mark.asyncio
    async def test_submit_orders_steps_by_selection(self, engine, directory):
        case = await submit(engine, directory, ["u-gm", "u-bod1", "u-bod2"])
        
        assert case.status == CaseStatus.PENDING_APPROVAL
        assert [(s.order, s.approver_user_id) for s in case.steps] == [
            (1, "u-gm"), (2, "u-bod1"), (3, "u-bod2"),
        ]
        assert all(s.status == StepStatus.PENDING for s in case.steps)
        assert case.steps[1].approver_role_at_assignment == Role.BOD.value
        assert case.version == 1
        assert case.history[0].event_type == CaseEventType.SUBMITTED
    
    @pytest.mark.asyncio
    async def test_failed_submit_stores_nothing(self, engine, store, directory):
        constraints = [require_approver_with_role(Role.BOD)]

        with pytest.raises(CompositionConstraintException) as first:
            await submit(engine, directory, ["u-gm"], constraints=constraints)
        with pytest.raises(CompositionConstraintException) as second:
            await submit(engine, directory, ["u-gm"], constraints=constraints)

        assert first.value.violations == second.value.violations
        assert len(first.value.violations) == 1
        assert await store.query(CaseQuery()) == []
    
    @pytest.mark.asyncio
    async def test_decline_wins_immediately(self, engine, directory):
        """Board and HR panel; HR declines while the board step is open."""
        case = await submit(engine, directory, ["u-bod1", "u-hr"], subject="u-emp2", requested_by_id="u-admin")
        
        outcome = await engine.decide(case.id, "u-hr", StepStatus.DECLINED, "incomplete")
        
        assert outcome.case.status == CaseStatus.DECLINED
        assert outcome.became_declined
        steps = {s.approver_user_id: s for s in outcome.case.steps}
        assert steps["u-hr"].status == StepStatus.DECLINED
        assert steps["u-hr"].rejection_reason == "incomplete"
        assert steps["u-bod1"].status == StepStatus.PENDING
    
    @pytest.mark.asyncio
    async def test_single_step_case_approves_directly(self, engine, directory):
        case = await submit(engine, directory, ["u-bod1"])
        
        outcome = await engine.decide(case.id, "u-bod1", StepStatus.APPROVED)
        
        assert outcome.previous_status == CaseStatus.PENDING_APPROVAL
        assert outcome.new_status == CaseStatus.APPROVED
        assert outcome.became_approved
        assert outcome.satisfied_approver_id == "u-bod1"
        assert outcome.next_approver_ids == []
    
    @pytest.mark.asyncio
    async def test_partial_approval_reports_remaining(self, engine, directory):
        case = await submit(engine, directory, ["u-bod1", "u-bod2", "u-gm"])
        
        outcome = await engine.decide(case.id, "u-bod2", StepStatus.APPROVED, "fine by me")
        
        assert outcome.case.status == CaseStatus.PENDING_APPROVAL
        assert not outcome.became_approved
        assert outcome.step.note == "fine by me"
        assert outcome.next_approver_ids == ["u-bod1", "u-gm"]
    
    @pytest.mark.asyncio
    @pytest.mark.parametrize("reason", [None, "", "   "])
    async def test_decline_requires_reason(self, engine, store, directory, reason):
        case = await submit(engine, directory, ["u-bod1"])
        
        with pytest.raises(RejectionReasonRequiredException):
            await engine.decide(case.id, "u-bod1", StepStatus.DECLINED, reason)
        
        unchanged = await store.get(case.id)
        assert unchanged.version == case.version
        assert unchanged.steps[0].status == StepStatus.PENDING
    
    @pytest.mark.asyncio
    async def test_decision_must_be_final_status(self, engine, directory):
        case = await submit(engine, directory, ["u-bod1"])
        
        with pytest.raises(ValidationException):
            await engine.decide(case.id, "u-bod1", StepStatus.CANCELLED)
    
    @pytest.mark.asyncio
    async def test_non_approver_has_no_pending_step(self, engine, directory):
        case = await submit(engine, directory, ["u-bod1"])
        
        with pytest.raises(NoPendingStepException) as exc_info:
            await engine.decide(case.id, "u-gm", StepStatus.APPROVED)
        
        assert exc_info.value.status_code == 403
    
    @pytest.mark.asyncio
    async def test_second_decision_by_same_approver_rejected(self, engine, directory):
        case = await submit(engine, directory, ["u-bod1", "u-bod2"])
        await engine.decide(case.id, "u-bod1", StepStatus.APPROVED)
        
        with pytest.raises(NoPendingStepException):
            await engine.decide(case.id, "u-bod1", StepStatus.DECLINED, "changed my mind")
    
    @pytest.mark.asyncio
    async def test_decide_after_decline_rejected(self, engine, directory):
        case = await submit(engine, directory, ["u-bod1", "u-bod2"])
        await engine.decide(case.id, "u-bod1", StepStatus.DECLINED, "no")
        
        with pytest.raises(NoPendingStepException):
            await engine.decide(case.id, "u-bod2", StepStatus.APPROVED)
    
    @pytest.mark.asyncio
    async def test_cancel_pending_on_decline(self, store, directory):
        engine = RoutingEngine(store, cancel_pending_on_decline=True, allow_self_approval=False)
        case = await submit(engine, directory, ["u-bod1", "u-bod2"])
        
        outcome = await engine.decide(case.id, "u-bod1", StepStatus.DECLINED, "no")
        
        assert outcome.cancelled_approver_ids == ["u-bod2"]
        assert outcome.case.steps[1].status == StepStatus.CANCELLED
        assert CaseEventType.STEPS_CANCELLED in [e.event_type for e in outcome.case.history]


class TestSequentialRouting:
    """Test cases for sequential routing mode."""
    
    @pytest.mark.asyncio
    async def test_only_lowest_pending_step_is_actionable(self, engine, directory):
        case = await submit(engine, directory, ["u-bod1", "u-bod2"], sequential=True)
        
        with pytest.raises(NoPendingStepException):
            await engine.decide(case.id, "u-bod2", StepStatus.APPROVED)
        
        outcome = await engine.decide(case.id, "u-bod1", StepStatus.APPROVED)
        assert outcome.next_approver_ids == ["u-bod2"]
        
        outcome = await engine.decide(case.id, "u-bod2", StepStatus.APPROVED)
        assert outcome.case.status == CaseStatus.APPROVED


class TestCaseLifecycle:
    """Test cases for reopen, resubmit, acknowledgement and closing."""
    
    @pytest.mark.asyncio
    async def test_resubmit_keeps_previous_cycle(self, engine, directory):
        case = await submit(engine, directory, ["u-bod1", "u-gm"])
        await engine.decide(case.id, "u-gm", StepStatus.DECLINED, "missing attachment")
        
        resubmitted = await engine.resubmit(case.id, "u-hr")
        
        assert resubmitted.status == CaseStatus.PENDING_APPROVAL
        assert resubmitted.cycle == 2
        assert [s.approver_user_id for s in resubmitted.steps] == ["u-bod1", "u-gm"]
        assert all(s.status == StepStatus.PENDING and s.cycle == 2 for s in resubmitted.steps)
        assert len(resubmitted.previous_steps) == 2
        assert resubmitted.rejection_reasons[0].reason == "missing attachment"
    
    @pytest.mark.asyncio
    async def test_resubmit_with_new_panel_is_validated(self, engine, directory):
        case = await submit(engine, directory, ["u-bod1"])
        await engine.decide(case.id, "u-bod1", StepStatus.DECLINED, "no")
        
        with pytest.raises(CompositionConstraintException):
            await engine.resubmit(case.id, "u-hr", approvers=[directory.get_actor("u-emp1")])
        
        resubmitted = await engine.resubmit(case.id, "u-hr", approvers=[directory.get_actor("u-bod2")])
        assert resubmitted.approver_ids == ["u-bod2"]
    
    @pytest.mark.asyncio
    async def test_reopen_then_resubmit(self, engine, directory):
        case = await submit(engine, directory, ["u-bod1"])
        await engine.decide(case.id, "u-bod1", StepStatus.DECLINED, "no")
        
        reopened = await engine.reopen(case.id, "u-hr")
        assert reopened.status == CaseStatus.DRAFT
        
        resubmitted = await engine.resubmit(case.id, "u-hr")
        assert resubmitted.status == CaseStatus.PENDING_APPROVAL
    
    @pytest.mark.asyncio
    async def test_resubmit_pending_case_rejected(self, engine, directory):
        case = await submit(engine, directory, ["u-bod1"])
        
        with pytest.raises(InvalidTransitionException):
            await engine.resubmit(case.id, "u-hr")
    
    @pytest.mark.asyncio
    async def test_acknowledgement_flow(self, engine, directory):
        case = await submit(engine, directory, ["u-bod1"])
        await engine.decide(case.id, "u-bod1", StepStatus.APPROVED)
        
        pending = await engine.request_acknowledgement(case.id, "u-bod1")
        assert pending.status == CaseStatus.PENDING_ACKNOWLEDGEMENT
        
        with pytest.raises(NotAuthorizedException):
            await engine.acknowledge(case.id, "u-hr")
        
        acknowledged = await engine.acknowledge(case.id, "u-emp1")
        assert acknowledged.status == CaseStatus.ACKNOWLEDGED
        
        closed = await engine.close(case.id, "u-hr")
        assert closed.status == CaseStatus.CLOSED
    
    @pytest.mark.asyncio
    async def test_closing_unacknowledged_case_needs_reason(self, engine, directory):
        case = await submit(engine, directory, ["u-bod1"])
        await engine.decide(case.id, "u-bod1", StepStatus.APPROVED)
        await engine.request_acknowledgement(case.id)
        
        with pytest.raises(ValidationException):
            await engine.close(case.id, "u-hr")
        
        closed = await engine.close(case.id, "u-hr", "Employee resigned")
        assert closed.closure_reason == "Employee resigned"


class TestConcurrency:
    """Test cases for optimistic concurrency and retries."""
    
    @pytest.mark.asyncio
    async def test_lost_race_is_retried(self, directory):
        store = RacingStore()
        engine = RoutingEngine(store, max_conflict_retries=3, allow_self_approval=False)
        case = await submit(engine, directory, ["u-bod1", "u-gm"])
        
        async def competing_decision():
            await engine.decide(case.id, "u-gm", StepStatus.APPROVED)
        
        store.race = competing_decision
        outcome = await engine.decide(case.id, "u-bod1", StepStatus.APPROVED)
        
        assert outcome.case.status == CaseStatus.APPROVED
        assert outcome.case.version == 3
        assert all(s.status == StepStatus.APPROVED for s in outcome.case.steps)
    
    @pytest.mark.asyncio
    async def test_duplicate_decision_in_race_fails(self, directory):
        store = RacingStore()
        engine = RoutingEngine(store, max_conflict_retries=3, allow_self_approval=False)
        case = await submit(engine, directory, ["u-bod1", "u-gm"])
        
        async def same_approver_again():
            await engine.decide(case.id, "u-bod1", StepStatus.APPROVED)
        
        store.race = same_approver_again
        with pytest.raises(NoPendingStepException):
            await engine.decide(case.id, "u-bod1", StepStatus.DECLINED, "too late")
        
        final = await store.get(case.id)
        assert final.steps[0].status == StepStatus.APPROVED
    
    @pytest.mark.asyncio
    async def test_gives_up_after_retries(self, directory):
        store = AlwaysConflictingStore()
        engine = RoutingEngine(store, max_conflict_retries=2, allow_self_approval=False)
        case = await submit(engine, directory, ["u-bod1"])
        
        with pytest.raises(VersionConflictException):
            await engine.decide(case.id, "u-bod1", StepStatus.APPROVED)
        
        assert store.save_attempts == 3
