"""
HRIS Core - Case Facades

Binds the routing engine, scope resolver and permission gate to each case
kind (NTE, Resolution, COE, OT, PAN, Envelope, Award). A facade decides who
may file, view, edit and close a case of its kind, supplies the approver
composition rules, and tells the right people about each transition.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

from hris_core.config import settings
from hris_core.models.case import CaseKind, CaseStatus, StepStatus
from hris_core.models.directory import Role
from hris_core.services.case_types import Case, CaseQuery
from hris_core.services.notifications import LoggingNotificationSink, NotificationSink
from hris_core.services.org_directory import Actor, OrgDirectory
from hris_core.services.permission_gate import PermissionGate
from hris_core.services.routing_engine import (
    CompositionConstraint,
    DecisionOutcome,
    RoutingEngine,
    actionable_steps,
    require_approver_with_role,
    require_approvers_from_roles,
    require_at_least_one_approver,
)
from hris_core.services.scope_resolver import GroupFilter, ScopeResolver
from hris_core.utils.error_handling import AccountDisabledException, ErrorCode, NotAuthorizedException
from hris_core.utils.permissions import (
    CASE_RESOURCES,
    EXECUTIVE_APPROVER_ROLES,
    CaseCapabilities,
    Permission,
    ResourceKind,
)

logger = logging.getLogger(__name__)


# ===========================================
# PER-KIND CONFIGURATION
# ===========================================

@dataclass(frozen=True)
class FacadeConfig:
    """Static routing rules of one case kind."""
    kind: CaseKind
    label: str
    resource: ResourceKind
    constraints: Tuple[CompositionConstraint, ...] = ()
    # None means any active user may be selected
    approver_roles: Optional[FrozenSet[Role]] = None
    requires_acknowledgement: bool = False
    sequential: bool = False
    approved_label: str = "Approved"


_BOARD_PANEL = (
    require_at_least_one_approver(),
    require_approvers_from_roles(EXECUTIVE_APPROVER_ROLES),
    require_approver_with_role(Role.BOD, "At least one selected approver must be a Board of Director."),
)

FACADE_CONFIGS: Dict[CaseKind, FacadeConfig] = {
    CaseKind.NTE: FacadeConfig(
        kind=CaseKind.NTE,
        label="Notice to Explain",
        resource=CASE_RESOURCES[CaseKind.NTE],
        constraints=_BOARD_PANEL,
        approver_roles=EXECUTIVE_APPROVER_ROLES,
    ),
    CaseKind.RESOLUTION: FacadeConfig(
        kind=CaseKind.RESOLUTION,
        label="Resolution",
        resource=CASE_RESOURCES[CaseKind.RESOLUTION],
        constraints=_BOARD_PANEL,
        approver_roles=EXECUTIVE_APPROVER_ROLES,
        requires_acknowledgement=True,
    ),
    CaseKind.COE: FacadeConfig(
        kind=CaseKind.COE,
        label="Certificate of Employment request",
        resource=CASE_RESOURCES[CaseKind.COE],
        constraints=(require_approvers_from_roles({Role.ADMIN, Role.HR_MANAGER, Role.HR_STAFF}),),
        approver_roles=frozenset({Role.ADMIN, Role.HR_MANAGER, Role.HR_STAFF}),
        approved_label="Issued",
    ),
    CaseKind.OT: FacadeConfig(
        kind=CaseKind.OT,
        label="Overtime request",
        resource=CASE_RESOURCES[CaseKind.OT],
    ),
    CaseKind.PAN: FacadeConfig(
        kind=CaseKind.PAN,
        label="Personnel Action Notice",
        resource=CASE_RESOURCES[CaseKind.PAN],
        requires_acknowledgement=True,
    ),
    CaseKind.ENVELOPE: FacadeConfig(
        kind=CaseKind.ENVELOPE,
        label="Document envelope",
        resource=CASE_RESOURCES[CaseKind.ENVELOPE],
    ),
    CaseKind.AWARD: FacadeConfig(
        kind=CaseKind.AWARD,
        label="Award nomination",
        resource=CASE_RESOURCES[CaseKind.AWARD],
        constraints=(require_approvers_from_roles(EXECUTIVE_APPROVER_ROLES),),
        approver_roles=EXECUTIVE_APPROVER_ROLES,
    ),
}


def get_facade_config(kind: CaseKind) -> FacadeConfig:
    return FACADE_CONFIGS[kind]


# ===========================================
# FACADE
# ===========================================

class CaseFacade:
    """Entry point for one case kind, bound to a directory snapshot."""
    
    def __init__(
        self,
        config: FacadeConfig,
        engine: RoutingEngine,
        directory: OrgDirectory,
        gate: Optional[PermissionGate] = None,
        resolver: Optional[ScopeResolver] = None,
        notifier: Optional[NotificationSink] = None,
        sequential: Optional[bool] = None,
    ):
        self.config = config
        self.engine = engine
        self.directory = directory
        self.gate = gate or PermissionGate()
        self.resolver = resolver or ScopeResolver()
        self.notifier = notifier or LoggingNotificationSink()
        if sequential is None:
            sequential = config.sequential or config.kind.value in settings.sequential_case_kinds
        self.sequential = sequential
    
    @property
    def kind(self) -> CaseKind:
        return self.config.kind
    
    def link(self, case: Case) -> str:
        return f"/cases/{case.kind.value}/{case.id}"
    
    # ===========================================
    # AUTHORIZATION HELPERS
    # ===========================================
    
    def capabilities(self, actor: Actor) -> CaseCapabilities:
        return self.resolver.resolve_case_scope(actor, self.kind, self.directory)
    
    def _require_active(self, actor: Actor) -> None:
        if not actor.is_active:
            raise AccountDisabledException(actor.id)
    
    def can_request(self, actor: Actor) -> bool:
        return (
            self.capabilities(actor).can_request
            or self.gate.can(actor, self.config.resource, Permission.CREATE)
        )
    
    def can_edit(self, actor: Actor, case: Case) -> bool:
        return (
            actor.id == case.requested_by_id
            or self.gate.can(actor, self.config.resource, Permission.EDIT)
        )
    
    def can_view(self, actor: Actor, case: Case) -> bool:
        involved = {case.requested_by_id, case.subject_employee_id}
        involved.update(step.approver_user_id for step in case.steps)
        involved.update(step.approver_user_id for step in case.previous_steps)
        if actor.id in involved:
            return True
        capabilities = self.capabilities(actor)
        if not capabilities.can_view:
            return False
        return self.resolver.is_within_scope(
            capabilities.scope, actor, case.subject_employee_id, self.directory,
        )
    
    def can_act_on(self, actor: Actor, case: Case) -> bool:
        """Whether the actor can decide on the case right now."""
        if not actor.is_active:
            return False
        if not self._may_approve(actor, case):
            return False
        return any(s.approver_user_id == actor.id for s in actionable_steps(case))

    def _may_approve(self, actor: Actor, case: Case) -> bool:
        return self.resolver.can_act_on(
            actor,
            self.kind,
            case.subject_employee_id,
            self.directory,
            self.engine.allow_self_approval,
        )
    
    def _resolve_approvers(self, approver_ids: Sequence[str]) -> List[Actor]:
        return [self.directory.require_actor(approver_id) for approver_id in approver_ids]
    
    async def _send(self, user_ids: Iterable[str], title: str, message: str, case: Case) -> None:
        link = self.link(case)
        for user_id in dict.fromkeys(user_ids):
            try:
                await self.notifier.notify(user_id, title, message, link)
            except Exception:
                logger.exception(f"Notification to {user_id} for case {case.id} failed")
    
    # ===========================================
    # OPERATIONS
    # ===========================================
    
    async def submit(
        self,
        actor: Actor,
        *,
        subject_employee_id: str,
        approver_ids: Sequence[str],
        business_unit_id: Optional[str] = None,
        title: str = "",
        payload: Optional[Dict[str, Any]] = None,
    ) -> Case:
        """File a case about a subject and route it to the selected approvers."""
        self._require_active(actor)
        if not self.can_request(actor):
            logger.warning(f"{actor.id} ({actor.role.value}) may not file {self.kind.value} cases")
            raise NotAuthorizedException(
                f"You do not have permission to file a {self.config.label}.",
                required_permission=f"{self.config.resource.value}:{Permission.CREATE.value}",
            )
        
        subject = self.directory.require_actor(subject_employee_id)
        if subject.id != actor.id:
            scope = self.capabilities(actor).scope
            if not self.resolver.is_within_scope(scope, actor, subject.id, self.directory):
                raise NotAuthorizedException(
                    "The selected employee is outside your scope.",
                    code=ErrorCode.OUT_OF_SCOPE,
                    details={"subject_employee_id": subject.id, "scope": scope.value},
                )
        
        if business_unit_id is not None:
            self.directory.require_unit(business_unit_id)
        
        case = await self.engine.submit(
            kind=self.kind,
            subject_employee_id=subject.id,
            requested_by_id=actor.id,
            approvers=self._resolve_approvers(approver_ids),
            constraints=self.config.constraints,
            business_unit_id=business_unit_id or subject.business_unit_id,
            department_id=subject.department_id,
            title=title or f"{self.config.label} for {subject.name}",
            payload=payload,
            sequential=self.sequential,
        )
        
        await self._send(
            [s.approver_user_id for s in actionable_steps(case)],
            f"{self.config.label} awaiting your approval",
            f"{actor.name} submitted \"{case.title}\" for your approval.",
            case,
        )
        return case
    
    async def get(self, actor: Actor, case_id: uuid.UUID) -> Case:
        case = await self.engine.store.get(case_id)
        if case.kind != self.kind or not self.can_view(actor, case):
            raise NotAuthorizedException("You do not have access to this case.")
        return case
    
    async def list_cases(
        self,
        actor: Actor,
        statuses: Optional[Iterable[CaseStatus]] = None,
        pending_for_me: bool = False,
    ) -> List[Case]:
        """
        Cases the actor may see: everything inside the kind's scope for the
        actor's role, plus cases the actor filed, is the subject of, or is
        routed to.
        """
        status_filter = frozenset(statuses) if statuses else None
        store = self.engine.store
        
        if pending_for_me:
            cases = await store.query(CaseQuery(
                kind=self.kind,
                statuses=status_filter,
                approver_id=actor.id,
                pending_only=True,
            ))
            return [c for c in cases if self.can_act_on(actor, c)]
        
        queries = [
            CaseQuery(kind=self.kind, statuses=status_filter, requested_by_id=actor.id),
            CaseQuery(kind=self.kind, statuses=status_filter, subject_ids=frozenset({actor.id})),
            CaseQuery(kind=self.kind, statuses=status_filter, approver_id=actor.id),
        ]
        capabilities = self.capabilities(actor)
        if capabilities.can_view:
            queries.insert(0, CaseQuery(
                kind=self.kind,
                statuses=status_filter,
                subject_ids=self.resolver.subject_ids_in_scope(capabilities.scope, actor, self.directory),
            ))
        
        found: Dict[uuid.UUID, Case] = {}
        for query in queries:
            for case in await store.query(query):
                found.setdefault(case.id, case)
        return sorted(found.values(), key=lambda c: (c.created_at is None, c.created_at, str(c.id)))
    
    async def decide(
        self,
        actor: Actor,
        case_id: uuid.UUID,
        decision: StepStatus,
        reason: Optional[str] = None,
    ) -> DecisionOutcome:
        """Record the actor's approval or decline and notify accordingly."""
        self._require_active(actor)
        current = await self.get(actor, case_id)
        if not self.engine.allow_self_approval and current.subject_employee_id == actor.id:
            raise NotAuthorizedException(
                "You cannot decide on your own case.",
                code=ErrorCode.SELF_APPROVAL_FORBIDDEN,
            )
        if not self._may_approve(actor, current):
            logger.warning(
                f"{actor.id} ({actor.role.value}) may not decide {self.kind.value} case {case_id}"
            )
            raise NotAuthorizedException(
                f"You cannot approve this {self.config.label}.",
                required_permission=f"{self.config.resource.value}:{Permission.APPROVE.value}",
            )

        outcome = await self.engine.decide(case_id, actor.id, decision, reason)
        case = outcome.case
        
        if outcome.became_declined:
            await self._send(
                [case.requested_by_id],
                f"{self.config.label} declined",
                f"{actor.name} declined \"{case.title}\": {outcome.step.rejection_reason}",
                case,
            )
        elif outcome.became_approved:
            if self.config.requires_acknowledgement:
                case = await self.engine.request_acknowledgement(case_id, actor.id)
                outcome.case = case
                await self._send(
                    [case.subject_employee_id],
                    f"{self.config.label} requires your acknowledgement",
                    f"Please review and acknowledge \"{case.title}\".",
                    case,
                )
            await self._send(
                [case.requested_by_id],
                f"{self.config.label} {self.config.approved_label.lower()}",
                f"\"{case.title}\" has been fully {self.config.approved_label.lower()}.",
                case,
            )
        elif self.sequential and outcome.next_approver_ids:
            await self._send(
                outcome.next_approver_ids,
                f"{self.config.label} awaiting your approval",
                f"\"{case.title}\" is ready for your decision.",
                case,
            )
        return outcome
    
    async def reopen(self, actor: Actor, case_id: uuid.UUID) -> Case:
        """Return a declined case to Draft so it can be edited."""
        case = await self.get(actor, case_id)
        self._require_editor(actor, case)
        return await self.engine.reopen(case_id, actor.id)
    
    async def resubmit(
        self,
        actor: Actor,
        case_id: uuid.UUID,
        approver_ids: Optional[Sequence[str]] = None,
    ) -> Case:
        """
        Route a declined or reopened case again. Without a new selection the
        previous approvers are re-checked against the current directory.
        """
        current = await self.get(actor, case_id)
        self._require_editor(actor, current)
        if approver_ids is None:
            approver_ids = [step.approver_user_id for step in sorted(current.steps, key=lambda s: s.order)]
        
        case = await self.engine.resubmit(
            case_id,
            actor.id,
            approvers=self._resolve_approvers(approver_ids),
            constraints=self.config.constraints,
        )
        await self._send(
            [s.approver_user_id for s in actionable_steps(case)],
            f"{self.config.label} resubmitted",
            f"{actor.name} resubmitted \"{case.title}\" for your approval.",
            case,
        )
        return case
    
    async def acknowledge(self, actor: Actor, case_id: uuid.UUID) -> Case:
        await self.get(actor, case_id)
        case = await self.engine.acknowledge(case_id, actor.id)
        await self._send(
            [case.requested_by_id],
            f"{self.config.label} acknowledged",
            f"{actor.name} acknowledged \"{case.title}\".",
            case,
        )
        return case
    
    async def close(self, actor: Actor, case_id: uuid.UUID, reason: Optional[str] = None) -> Case:
        case = await self.get(actor, case_id)
        self._require_editor(actor, case)
        return await self.engine.close(case_id, actor.id, reason)
    
    def _require_editor(self, actor: Actor, case: Case) -> None:
        self._require_active(actor)
        if not self.can_edit(actor, case):
            raise NotAuthorizedException(
                f"You cannot edit this {self.config.label}.",
                required_permission=f"{self.config.resource.value}:{Permission.EDIT.value}",
            )
    
    def approver_candidates(
        self,
        group_filter: GroupFilter,
        subject_employee_id: Optional[str] = None,
    ) -> List[Actor]:
        """
        Active users matching the group filter who may sit on this kind's
        panel. With a subject, only users who could decide on that subject's
        case are kept.
        """
        members = self.resolver.group_members(group_filter, self.directory, subject_employee_id)
        if self.config.approver_roles is not None:
            members = [m for m in members if m.role in self.config.approver_roles]
        if subject_employee_id is not None:
            members = [
                m for m in members
                if self.resolver.can_act_on(
                    m, self.kind, subject_employee_id, self.directory, self.engine.allow_self_approval,
                )
            ]
        return members
