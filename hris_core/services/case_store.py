"""
HRIS Core - Case Stores

Persistence port for cases with optimistic concurrency. A save succeeds
only when the caller's `case.version` still equals the stored version;
the stored version is then incremented. Cases are never deleted.
"""

import copy
import logging
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Protocol

from sqlalchemy import and_, false, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from hris_core.models.case import ApprovalStepRecord, CaseEventRecord, CaseRecord, StepStatus
from hris_core.services.case_types import ApprovalStep, Case, CaseEvent, CaseQuery
from hris_core.utils.error_handling import CaseNotFoundException, VersionConflictException

logger = logging.getLogger(__name__)


class CaseStore(Protocol):
    """Storage collaborator for the routing engine."""
    
    async def create(self, case: Case) -> Case: ...
    
    async def get(self, case_id: uuid.UUID) -> Case: ...
    
    async def save(self, case: Case) -> Case: ...
    
    async def query(self, query: CaseQuery) -> List[Case]: ...


# ===========================================
# IN-MEMORY STORE
# ===========================================

class InMemoryCaseStore:
    """
    Dict-backed store. Every read and write deep-copies, so callers never
    share mutable state with the store.
    """
    
    def __init__(self):
        self._cases: Dict[uuid.UUID, Case] = {}
    
    async def create(self, case: Case) -> Case:
        stored = copy.deepcopy(case)
        stored.version = 1
        stored.created_at = stored.created_at or datetime.now(timezone.utc)
        self._cases[stored.id] = stored
        return copy.deepcopy(stored)
    
    async def get(self, case_id: uuid.UUID) -> Case:
        stored = self._cases.get(case_id)
        if stored is None:
            raise CaseNotFoundException(case_id)
        return copy.deepcopy(stored)
    
    async def save(self, case: Case) -> Case:
        stored = self._cases.get(case.id)
        if stored is None:
            raise CaseNotFoundException(case.id)
        if stored.version != case.version:
            raise VersionConflictException(case.id, case.version)
        updated = copy.deepcopy(case)
        updated.version = stored.version + 1
        self._cases[case.id] = updated
        return copy.deepcopy(updated)
    
    async def query(self, query: CaseQuery) -> List[Case]:
        return [copy.deepcopy(c) for c in self._cases.values() if query.matches(c)]


# ===========================================
# SQL STORE
# ===========================================

def _step_to_domain(record: ApprovalStepRecord) -> ApprovalStep:
    return ApprovalStep(
        order=record.step_order,
        approver_user_id=record.approver_user_id,
        approver_role_at_assignment=record.approver_role_at_assignment,
        cycle=record.cycle,
        status=record.status,
        decided_at=record.decided_at,
        rejection_reason=record.rejection_reason,
        note=record.note,
    )


def _case_to_domain(record: CaseRecord) -> Case:
    steps = sorted(record.steps, key=lambda s: (s.cycle, s.step_order))
    events = sorted(record.events, key=lambda e: e.sequence)
    return Case(
        id=record.id,
        kind=record.kind,
        title=record.title,
        payload=dict(record.payload or {}),
        subject_employee_id=record.subject_employee_id,
        business_unit_id=record.business_unit_id,
        department_id=record.department_id,
        requested_by_id=record.requested_by_id,
        status=record.status,
        steps=[_step_to_domain(s) for s in steps if s.cycle == record.cycle],
        previous_steps=[_step_to_domain(s) for s in steps if s.cycle != record.cycle],
        history=[
            CaseEvent(
                id=e.id,
                event_type=e.event_type,
                cycle=e.cycle,
                occurred_at=e.occurred_at,
                actor_id=e.actor_id,
                reason=e.reason,
            )
            for e in events
        ],
        cycle=record.cycle,
        sequential=record.sequential,
        version=record.version,
        closure_reason=record.closure_reason,
        created_at=record.created_at,
    )


class SqlCaseStore:
    """
    SQLAlchemy-backed store. `save` issues a conditional
    UPDATE ... WHERE version = :expected and treats zero affected rows as a
    lost race.
    """
    
    def __init__(self, db: AsyncSession):
        self.db = db
    
    def _load_statement(self):
        return select(CaseRecord).options(
            selectinload(CaseRecord.steps),
            selectinload(CaseRecord.events),
        ).execution_options(populate_existing=True)
    
    async def create(self, case: Case) -> Case:
        record = CaseRecord(
            id=case.id,
            kind=case.kind,
            title=case.title,
            payload=dict(case.payload),
            subject_employee_id=case.subject_employee_id,
            business_unit_id=case.business_unit_id,
            department_id=case.department_id,
            requested_by_id=case.requested_by_id,
            status=case.status,
            sequential=case.sequential,
            cycle=case.cycle,
            version=1,
            closure_reason=case.closure_reason,
        )
        self.db.add(record)
        self._add_steps(case.id, [*case.previous_steps, *case.steps])
        self._add_events(case.id, case.history, start=0)
        await self.db.commit()
        logger.debug(f"Stored case {case.id} ({case.kind.value})")
        return await self.get(case.id)
    
    async def get(self, case_id: uuid.UUID) -> Case:
        result = await self.db.execute(self._load_statement().where(CaseRecord.id == case_id))
        record = result.scalar_one_or_none()
        if record is None:
            raise CaseNotFoundException(case_id)
        return _case_to_domain(record)
    
    async def save(self, case: Case) -> Case:
        result = await self.db.execute(
            update(CaseRecord)
            .where(CaseRecord.id == case.id, CaseRecord.version == case.version)
            .values(
                status=case.status,
                cycle=case.cycle,
                title=case.title,
                payload=dict(case.payload),
                closure_reason=case.closure_reason,
                version=case.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            exists = await self.db.scalar(select(CaseRecord.id).where(CaseRecord.id == case.id))
            if exists is None:
                raise CaseNotFoundException(case.id)
            raise VersionConflictException(case.id, case.version)
        
        await self._sync_steps(case)
        await self._sync_events(case)
        await self.db.commit()
        return await self.get(case.id)
    
    async def query(self, query: CaseQuery) -> List[Case]:
        stmt = self._load_statement()
        conditions = []
        if query.kind is not None:
            conditions.append(CaseRecord.kind == query.kind)
        if query.subject_ids is not None:
            if not query.subject_ids:
                conditions.append(false())
            else:
                conditions.append(CaseRecord.subject_employee_id.in_(sorted(query.subject_ids)))
        if query.statuses is not None:
            conditions.append(CaseRecord.status.in_(list(query.statuses)))
        if query.requested_by_id is not None:
            conditions.append(CaseRecord.requested_by_id == query.requested_by_id)
        if query.approver_id is not None:
            step_conditions = [
                ApprovalStepRecord.approver_user_id == query.approver_id,
                ApprovalStepRecord.cycle == CaseRecord.cycle,
            ]
            if query.pending_only:
                step_conditions.append(ApprovalStepRecord.status == StepStatus.PENDING)
            conditions.append(CaseRecord.steps.any(and_(*step_conditions)))
        
        if conditions:
            stmt = stmt.where(*conditions)
        stmt = stmt.order_by(CaseRecord.created_at, CaseRecord.id)
        result = await self.db.execute(stmt)
        return [_case_to_domain(record) for record in result.scalars().all()]
    
    # ===========================================
    # CHILD ROW SYNC
    # ===========================================
    
    def _add_steps(self, case_id: uuid.UUID, steps: List[ApprovalStep]) -> None:
        for step in steps:
            self.db.add(ApprovalStepRecord(
                case_id=case_id,
                cycle=step.cycle,
                step_order=step.order,
                approver_user_id=step.approver_user_id,
                approver_role_at_assignment=step.approver_role_at_assignment,
                status=step.status,
                decided_at=step.decided_at,
                rejection_reason=step.rejection_reason,
                note=step.note,
            ))
    
    def _add_events(self, case_id: uuid.UUID, events: List[CaseEvent], start: int) -> None:
        for sequence, event in enumerate(events, start=start):
            self.db.add(CaseEventRecord(
                id=event.id,
                case_id=case_id,
                sequence=sequence,
                cycle=event.cycle,
                event_type=event.event_type,
                actor_id=event.actor_id,
                reason=event.reason,
                occurred_at=event.occurred_at,
            ))
    
    async def _sync_steps(self, case: Case) -> None:
        result = await self.db.execute(
            select(ApprovalStepRecord).where(ApprovalStepRecord.case_id == case.id)
        )
        existing = {(s.cycle, s.step_order): s for s in result.scalars().all()}
        new_steps = []
        for step in [*case.previous_steps, *case.steps]:
            record = existing.get((step.cycle, step.order))
            if record is None:
                new_steps.append(step)
                continue
            record.approver_user_id = step.approver_user_id
            record.approver_role_at_assignment = step.approver_role_at_assignment
            record.status = step.status
            record.decided_at = step.decided_at
            record.rejection_reason = step.rejection_reason
            record.note = step.note
        self._add_steps(case.id, new_steps)
    
    async def _sync_events(self, case: Case) -> None:
        result = await self.db.execute(
            select(CaseEventRecord.id).where(CaseEventRecord.case_id == case.id)
        )
        stored_ids = set(result.scalars().all())
        self._add_events(
            case.id,
            [e for e in case.history if e.id not in stored_ids],
            start=len(stored_ids),
        )
