"""
HRIS Core - Scope Resolver

Answers "which business units and employees can this actor reach" and
"is a given record inside that reach". Every method is a pure function of
the actor and the directory snapshot it is given.

Reach is built in two layers:
1. Baseline business units from the actor's AccessScope, with the
   cross-functional manager override on top.
2. Per-case-kind scope classes from the case capability table, applied to
   records through filter_by_scope().
"""

import logging
from dataclasses import dataclass
from typing import Callable, FrozenSet, Iterable, List, Optional, Sequence, TypeVar

from hris_core.config import settings
from hris_core.models.case import CaseKind
from hris_core.models.directory import AccessScopeType, Role
from hris_core.services.org_directory import Actor, OrgDirectory, OrgUnit
from hris_core.utils.permissions import (
    CASE_CAPABILITY_TABLE,
    DIRECT_REPORT_APPROVAL_KINDS,
    ORG_WIDE_VISIBILITY_ROLES,
    CaseCapabilities,
    ScopeClass,
    get_case_capabilities,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class GroupFilter:
    """
    Declarative group membership filter used for group approver assignment.
    
    A candidate matches when it belongs to the business unit and the
    department named (each only when given), and, with exclude_subject,
    is not the subject of the case.
    """
    business_unit_id: Optional[str] = None
    department_id: Optional[str] = None
    exclude_subject: bool = False
    
    def matches(self, candidate: Actor, subject_id: Optional[str] = None) -> bool:
        if self.exclude_subject and subject_id is not None and candidate.id == subject_id:
            return False
        if self.business_unit_id and candidate.business_unit_id != self.business_unit_id:
            return False
        if self.department_id and candidate.department_id != self.department_id:
            return False
        return True


class ScopeResolver:
    """Computes organizational reach for actors."""
    
    def __init__(
        self,
        cross_functional_departments: Optional[Iterable[str]] = None,
        missing_field_permissive: Optional[bool] = None,
        capability_table=None,
    ):
        if cross_functional_departments is None:
            cross_functional_departments = settings.cross_functional_departments
        if missing_field_permissive is None:
            missing_field_permissive = settings.scope_missing_field_permissive
        self.cross_functional_departments = frozenset(cross_functional_departments)
        self.missing_field_permissive = missing_field_permissive
        self.capability_table = capability_table if capability_table is not None else CASE_CAPABILITY_TABLE
    
    # ===========================================
    # BUSINESS UNITS AND EMPLOYEES
    # ===========================================
    
    def is_cross_functional_manager(self, actor: Actor) -> bool:
        return (
            actor.role == Role.MANAGER
            and actor.department is not None
            and actor.department in self.cross_functional_departments
        )
    
    def accessible_org_units(self, actor: Actor, all_units: Sequence[OrgUnit]) -> List[OrgUnit]:
        """
        Units the actor may reach, in input order.
        
        SPECIFIC with an empty or unset allow-list yields nothing, never
        everything.
        """
        if self.is_cross_functional_manager(actor):
            return list(all_units)
        
        scope = actor.access_scope
        scope_type = scope.type if scope else AccessScopeType.HOME_ONLY
        
        if scope_type == AccessScopeType.GLOBAL:
            return list(all_units)
        if scope_type == AccessScopeType.SPECIFIC:
            allowed = scope.allowed_org_unit_ids
            if not allowed:
                return []
            return [unit for unit in all_units if unit.id in allowed]
        
        if not actor.business_unit:
            return []
        return [unit for unit in all_units if unit.name == actor.business_unit]
    
    def accessible_unit_ids(self, actor: Actor, directory: OrgDirectory) -> FrozenSet[str]:
        return frozenset(u.id for u in self.accessible_org_units(actor, directory.business_units))
    
    def visible_employee_ids(self, actor: Actor, directory: OrgDirectory) -> FrozenSet[str]:
        """
        Employees the actor may see.
        
        - Organization-wide roles: everyone in an accessible business unit
        - Managers: themselves plus direct reports (not transitive)
        - Everyone else: themselves
        """
        if actor.role in ORG_WIDE_VISIBILITY_ROLES:
            unit_ids = self.accessible_unit_ids(actor, directory)
            return frozenset(
                user.id for user in directory.actors
                if user.business_unit_id is not None and user.business_unit_id in unit_ids
            )
        
        if actor.role == Role.MANAGER:
            team = {report.id for report in directory.direct_reports(actor.id)}
            team.add(actor.id)
            return frozenset(team)
        
        return frozenset({actor.id})
    
    def has_direct_reports(self, actor: Actor, directory: OrgDirectory) -> bool:
        """True when at least one active user reports to the actor."""
        return any(report.is_active for report in directory.direct_reports(actor.id))
    
    def filter_visible(
        self,
        actor: Actor,
        records: Iterable[T],
        subject_id_of: Callable[[T], str],
        directory: OrgDirectory,
    ) -> List[T]:
        """Keep records whose subject is a visible employee."""
        visible = self.visible_employee_ids(actor, directory)
        return [record for record in records if subject_id_of(record) in visible]
    
    def filter_by_involved(
        self,
        actor: Actor,
        records: Iterable[T],
        involved_ids_of: Callable[[T], Iterable[str]],
        directory: OrgDirectory,
    ) -> List[T]:
        """Keep multi-subject records (incident reports) where any party is visible."""
        visible = self.visible_employee_ids(actor, directory)
        return [
            record for record in records
            if any(employee_id in visible for employee_id in involved_ids_of(record))
        ]
    
    def filter_by_requester_or_assignee(
        self,
        actor: Actor,
        records: Iterable[T],
        requester_id_of: Callable[[T], str],
        assignee_id_of: Callable[[T], Optional[str]],
        directory: OrgDirectory,
    ) -> List[T]:
        """Keep tickets raised by a visible employee or assigned to the actor."""
        visible = self.visible_employee_ids(actor, directory)
        return [
            record for record in records
            if requester_id_of(record) in visible or assignee_id_of(record) == actor.id
        ]
    
    # ===========================================
    # CASE SCOPES
    # ===========================================
    
    def resolve_case_scope(
        self,
        actor: Actor,
        kind: CaseKind,
        directory: Optional[OrgDirectory] = None,
    ) -> CaseCapabilities:
        """
        Capability row for the actor's role on a case kind.
        
        For kinds approved by line managers, an actor with active direct
        reports may approve within their team even when the role row says no.
        """
        capabilities = get_case_capabilities(kind, actor.role, self.capability_table)
        
        if (
            directory is not None
            and kind in DIRECT_REPORT_APPROVAL_KINDS
            and not capabilities.can_approve
            and self.has_direct_reports(actor, directory)
        ):
            scope = capabilities.scope
            if scope in (ScopeClass.SELF, ScopeClass.NONE):
                scope = ScopeClass.TEAM
            capabilities = CaseCapabilities(
                can_request=capabilities.can_request,
                can_approve=True,
                can_view=True,
                scope=scope,
            )
        return capabilities
    
    def _department_matches(self, actor: Actor, subject: Actor) -> bool:
        if actor.department_id is None or subject.department_id is None:
            return self.missing_field_permissive
        return actor.department_id == subject.department_id
    
    def is_within_scope(
        self,
        scope: ScopeClass,
        actor: Actor,
        subject_id: str,
        directory: OrgDirectory,
        accessible_ids: Optional[FrozenSet[str]] = None,
    ) -> bool:
        """
        Whether a subject falls inside a scope class for the actor.
        
        Subjects unknown to the directory can only match through global
        scope or by being the actor.
        """
        if scope == ScopeClass.GLOBAL:
            return True
        if scope == ScopeClass.NONE:
            return False
        if scope == ScopeClass.SELF:
            return subject_id == actor.id
        
        if scope == ScopeClass.TEAM and subject_id == actor.id:
            return True
        
        subject = directory.get_actor(subject_id)
        if subject is None:
            return False
        
        if accessible_ids is None:
            accessible_ids = self.accessible_unit_ids(actor, directory)
        in_accessible_unit = subject.business_unit_id in accessible_ids
        
        if scope == ScopeClass.TEAM:
            if subject.manager_id == actor.id:
                return True
            return in_accessible_unit and self._department_matches(actor, subject)
        
        if scope == ScopeClass.DEPT:
            return self._department_matches(actor, subject) or in_accessible_unit
        
        if scope == ScopeClass.BU:
            return in_accessible_unit or (
                subject.business_unit_id is not None
                and subject.business_unit_id == actor.business_unit_id
            )
        
        return False
    
    def filter_by_scope(
        self,
        scope: ScopeClass,
        actor: Actor,
        records: Iterable[T],
        subject_id_of: Callable[[T], str],
        directory: OrgDirectory,
    ) -> List[T]:
        """Keep records whose subject falls inside the scope class."""
        if scope == ScopeClass.GLOBAL:
            return list(records)
        if scope == ScopeClass.NONE:
            return []
        
        accessible_ids = self.accessible_unit_ids(actor, directory)
        return [
            record for record in records
            if self.is_within_scope(scope, actor, subject_id_of(record), directory, accessible_ids)
        ]
    
    def subject_ids_in_scope(
        self,
        scope: ScopeClass,
        actor: Actor,
        directory: OrgDirectory,
    ) -> Optional[FrozenSet[str]]:
        """
        Directory users inside a scope class, for store-side filtering.
        
        Returns None for global scope, meaning "no subject restriction".
        """
        if scope == ScopeClass.GLOBAL:
            return None
        if scope == ScopeClass.NONE:
            return frozenset()
        ids = self.filter_by_scope(scope, actor, directory.actors, lambda a: a.id, directory)
        result = {a.id for a in ids}
        if scope in (ScopeClass.SELF, ScopeClass.TEAM):
            result.add(actor.id)
        return frozenset(result)
    
    def can_act_on(
        self,
        actor: Actor,
        kind: CaseKind,
        subject_id: str,
        directory: OrgDirectory,
        allow_self_approval: Optional[bool] = None,
    ) -> bool:
        """
        Whether the actor may approve or decline a case about the subject:
        approval capability, subject in scope, and never one's own case
        unless self-approval is enabled.
        """
        if allow_self_approval is None:
            allow_self_approval = settings.allow_self_approval
        if not allow_self_approval and subject_id == actor.id:
            return False
        capabilities = self.resolve_case_scope(actor, kind, directory)
        if not capabilities.can_approve:
            return False
        return self.is_within_scope(capabilities.scope, actor, subject_id, directory)
    
    # ===========================================
    # GROUP ASSIGNMENT
    # ===========================================
    
    def group_members(
        self,
        group_filter: GroupFilter,
        directory: OrgDirectory,
        subject_id: Optional[str] = None,
        active_only: bool = True,
    ) -> List[Actor]:
        """
        Directory users matching a group filter.
        
        Raises:
            OrgUnitNotFoundException: if the filter names an unknown unit
        """
        if group_filter.business_unit_id:
            directory.require_unit(group_filter.business_unit_id)
        if group_filter.department_id:
            directory.require_unit(group_filter.department_id)
        
        return [
            candidate for candidate in directory.actors
            if (candidate.is_active or not active_only)
            and group_filter.matches(candidate, subject_id)
        ]
