"""
HRIS Core - Permissions System

Static RBAC tables consumed by the PermissionGate and the ScopeResolver.

1. Role -> Resource -> {Permission} (the permission table)
   - MANAGE implies every other permission on that resource.
   - Any non-empty set implies VIEW.
   - Roles or resources without an entry have no access.

2. (CaseKind, Role) -> CaseCapabilities (the case capability table)
   Different case kinds grant different capabilities to the same role,
   e.g. the Board can view COE requests everywhere but cannot file or
   approve them, while it may file overtime for itself.

Scope classes:
| Scope  | Reach                                                         |
|--------|---------------------------------------------------------------|
| global | every record                                                  |
| bu     | subjects in accessible business units or the actor's own unit |
| dept   | same department, or subject unit is accessible                |
| team   | self, direct reports, or same department in accessible units  |
| self   | the actor's own records                                       |
| none   | nothing                                                       |
"""

from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, NamedTuple, Optional, Set

from hris_core.models.case import CaseKind
from hris_core.models.directory import Role
from hris_core.utils.error_handling import ConfigurationException


# ===========================================
# PERMISSION ENUMS
# ===========================================

class Permission(str, Enum):
    """Permission kinds. MANAGE includes all others."""
    VIEW = "view"
    CREATE = "create"
    EDIT = "edit"
    APPROVE = "approve"
    MANAGE = "manage"


class ResourceKind(str, Enum):
    """Closed set of protected resources."""
    DASHBOARD = "Dashboard"
    EMPLOYEES = "Employees"
    PAN = "PAN"
    FILES = "Files"
    FEEDBACK = "Feedback"
    EVALUATION = "Evaluation"
    TIMEKEEPING = "Timekeeping"
    CLOCK = "Clock"
    OT = "OT"
    LEAVE = "Leave"
    LEAVE_POLICIES = "LeavePolicies"
    HOLIDAYS = "Holidays"
    EXCEPTIONS = "Exceptions"
    PAYROLL = "Payroll"
    PAYROLL_PREP = "PayrollPrep"
    PAYROLL_STAGING = "PayrollStaging"
    PAYSLIPS = "Payslips"
    GOVERNMENT_REPORTS = "GovernmentReports"
    REPORT_TEMPLATES = "ReportTemplates"
    REPORTS = "Reports"
    FINAL_PAY = "FinalPay"
    CLOCK_LOG = "ClockLog"
    SETTINGS = "Settings"
    AUDIT_LOG = "AuditLog"
    HELPDESK = "Helpdesk"
    ANNOUNCEMENTS = "Announcements"
    RECRUITMENT = "Recruitment"
    REQUISITIONS = "Requisitions"
    JOB_POSTS = "JobPosts"
    APPLICANTS = "Applicants"
    CANDIDATES = "Candidates"
    INTERVIEWS = "Interviews"
    OFFERS = "Offers"
    OFFBOARDING = "Offboarding"
    ANALYTICS = "Analytics"
    DEPARTMENTS = "Departments"
    LOANS = "Loans"
    USER = "User"
    USER_MANAGEMENT = "UserManagement"
    ROLES_PERMISSIONS = "RolesPermissions"
    ORG_CHART = "OrgChart"
    SITES = "Sites"
    ASSETS = "Assets"
    ASSET_REQUESTS = "AssetRequests"
    WORKFORCE_PLANNING = "WorkforcePlanning"
    LIFECYCLE = "Lifecycle"
    MANPOWER = "Manpower"
    COE = "COE"
    BENEFITS = "Benefits"
    PULSE_SURVEY = "PulseSurvey"
    COACHING = "Coaching"
    WFH = "WFH"


class ScopeClass(str, Enum):
    """Breadth of organizational reach for a case kind."""
    GLOBAL = "global"
    BU = "bu"
    DEPT = "dept"
    TEAM = "team"
    SELF = "self"
    NONE = "none"


PermissionTable = Dict[Role, Dict[ResourceKind, FrozenSet[Permission]]]


# ===========================================
# DEFAULT PERMISSION TABLE
# ===========================================

_V = Permission.VIEW
_C = Permission.CREATE
_E = Permission.EDIT
_A = Permission.APPROVE
_M = Permission.MANAGE

_R = ResourceKind

DEFAULT_ROLE_PERMISSIONS: Dict[Role, Dict[ResourceKind, Set[Permission]]] = {
    Role.ADMIN: {
        _R.DASHBOARD: {_V},
        _R.EMPLOYEES: {_M},
        _R.SETTINGS: {_M},
        _R.RECRUITMENT: {_M},
        _R.EVALUATION: {_M},
        _R.PAYROLL: {_M},
        _R.FEEDBACK: {_M},
        _R.HELPDESK: {_M},
        _R.MANPOWER: {_M},
        _R.COE: {_M},
        _R.BENEFITS: {_M},
        _R.PULSE_SURVEY: {_M},
        _R.COACHING: {_M},
        _R.WFH: {_M},
        _R.ANALYTICS: {_V},
    },
    Role.EMPLOYEE: {
        _R.DASHBOARD: {_V},
        _R.EMPLOYEES: {_V},
        _R.PAN: {_V},
        _R.COE: {_C, _V},
        _R.BENEFITS: {_C, _V},
        _R.PULSE_SURVEY: {_V},
        _R.COACHING: {_V},
        _R.WFH: {_C, _V, _E},
    },
    Role.MANAGER: {
        _R.DASHBOARD: {_V},
        _R.EMPLOYEES: {_V},
        _R.EVALUATION: {_V},
        _R.PAYROLL: {_V},
        _R.MANPOWER: {_V},
        _R.OT: {_A},
        _R.LEAVE: {_A},
        _R.FEEDBACK: {_V},
        _R.HELPDESK: {_V},
        _R.COE: {_C, _V},
        _R.BENEFITS: {_V},
        _R.PULSE_SURVEY: {_V},
        _R.COACHING: {_C, _V},
        _R.WFH: {_V},
    },
    Role.HR_MANAGER: {
        _R.DASHBOARD: {_V},
        _R.EMPLOYEES: {_M},
        _R.PAN: {_M},
        _R.LIFECYCLE: {_M},
        _R.ASSETS: {_M},
        _R.ASSET_REQUESTS: {_M},
        _R.SETTINGS: {_M},
        _R.RECRUITMENT: {_M},
        _R.EVALUATION: {_M},
        _R.PAYROLL: {_M},
        _R.FEEDBACK: {_M},
        _R.HELPDESK: {_M},
        _R.MANPOWER: {_M},
        _R.ANALYTICS: {_V},
        _R.COE: {_M},
        _R.BENEFITS: {_M},
        _R.PULSE_SURVEY: {_M},
        _R.COACHING: {_M},
        _R.WFH: {_V},
    },
    Role.HR_STAFF: {
        _R.DASHBOARD: {_V},
        _R.EMPLOYEES: {_C, _V, _E},
        _R.PAN: {_C, _V, _E},
        _R.LIFECYCLE: {_C, _V, _E},
        _R.ASSETS: {_C, _V, _E},
        _R.ASSET_REQUESTS: {_C, _V, _E, _A},
        _R.ANALYTICS: {_V},
        _R.PAYROLL: {_C, _V, _E},
        _R.FEEDBACK: {_C, _V, _E},
        _R.HELPDESK: {_M},
        _R.MANPOWER: {_C, _V},
        _R.COE: {_M},
        _R.BENEFITS: {_M},
        _R.PULSE_SURVEY: {_M},
        _R.COACHING: {_C, _V, _E},
        _R.WFH: {_V},
    },
    Role.BUSINESS_UNIT_MANAGER: {
        _R.DASHBOARD: {_V},
        _R.EMPLOYEES: {_V},
        _R.EVALUATION: {_V},
        _R.PAYROLL: {_V},
        _R.TIMEKEEPING: {_V, _E},
        _R.WORKFORCE_PLANNING: {_M},
        _R.MANPOWER: {_C, _V, _A},
        _R.OT: {_V, _A},
        _R.LEAVE: {_V, _A},
        _R.WFH: {_C, _V, _A},
        _R.FEEDBACK: {_V},
        _R.HELPDESK: {_V},
        _R.COE: {_C, _V},
        _R.BENEFITS: {_V},
        _R.PULSE_SURVEY: {_V},
        _R.COACHING: {_C, _V},
    },
    Role.OPERATIONS_DIRECTOR: {
        _R.DASHBOARD: {_V},
        _R.EMPLOYEES: {_V},
        _R.EVALUATION: {_V},
        _R.PAYROLL: {_V},
        _R.FEEDBACK: {_V},
        _R.MANPOWER: {_A},
        _R.COE: {_C, _V},
        _R.BENEFITS: {_V},
        _R.PULSE_SURVEY: {_V},
        _R.COACHING: {_C, _V},
        _R.WFH: {_V},
    },
    Role.BOD: {
        _R.DASHBOARD: {_V},
        _R.EMPLOYEES: {_V},
        _R.PAYROLL: {_V},
        _R.MANPOWER: {_A},
        _R.COE: {_C, _V},
        _R.BENEFITS: {_A, _V},
        _R.PULSE_SURVEY: {_V},
        _R.COACHING: {_V},
        _R.WFH: {_A, _V},
    },
    Role.GENERAL_MANAGER: {
        _R.DASHBOARD: {_V},
        _R.EMPLOYEES: {_V},
        _R.PAYROLL: {_V},
        _R.MANPOWER: {_A},
        _R.COE: {_C, _V},
        _R.BENEFITS: {_V},
        _R.PULSE_SURVEY: {_V},
        _R.COACHING: {_V},
        _R.WFH: {_V},
    },
    Role.FINANCE_STAFF: {
        _R.DASHBOARD: {_V},
        _R.EMPLOYEES: {_V},
        _R.PAYROLL: {_M},
        _R.BENEFITS: {_V},
    },
    Role.AUDITOR: {
        _R.DASHBOARD: {_V},
        _R.AUDIT_LOG: {_V},
        _R.BENEFITS: {_V},
    },
    Role.RECRUITER: {
        _R.DASHBOARD: {_V},
        _R.RECRUITMENT: {_M},
        _R.BENEFITS: {_V},
    },
}


# ===========================================
# ROLE SETS
# ===========================================

# Roles that see every employee inside their accessible business units
ORG_WIDE_VISIBILITY_ROLES: FrozenSet[Role] = frozenset({
    Role.ADMIN,
    Role.HR_MANAGER,
    Role.HR_STAFF,
    Role.BOD,
    Role.GENERAL_MANAGER,
    Role.AUDITOR,
    Role.FINANCE_STAFF,
    Role.RECRUITER,
    Role.BUSINESS_UNIT_MANAGER,
    Role.OPERATIONS_DIRECTOR,
})

# Roles eligible to sit on executive approval panels (NTE, Resolution, Award)
EXECUTIVE_APPROVER_ROLES: FrozenSet[Role] = frozenset({Role.BOD, Role.GENERAL_MANAGER})


# ===========================================
# CASE CAPABILITY TABLE
# ===========================================

class CaseCapabilities(NamedTuple):
    """What a role may do with one case kind, and how far it reaches."""
    can_request: bool
    can_approve: bool
    can_view: bool
    scope: ScopeClass


NO_CAPABILITIES = CaseCapabilities(False, False, False, ScopeClass.NONE)

_FULL = CaseCapabilities(True, True, True, ScopeClass.GLOBAL)
_FILE_GLOBAL = CaseCapabilities(True, False, True, ScopeClass.GLOBAL)
_APPROVE_GLOBAL = CaseCapabilities(False, True, True, ScopeClass.GLOBAL)
_VIEW_GLOBAL = CaseCapabilities(False, False, True, ScopeClass.GLOBAL)
_FILE_BU = CaseCapabilities(True, False, True, ScopeClass.BU)
_FULL_BU = CaseCapabilities(True, True, True, ScopeClass.BU)
_FILE_TEAM = CaseCapabilities(True, False, True, ScopeClass.TEAM)
_FULL_TEAM = CaseCapabilities(True, True, True, ScopeClass.TEAM)
_FILE_SELF = CaseCapabilities(True, False, True, ScopeClass.SELF)
_VIEW_SELF = CaseCapabilities(False, False, True, ScopeClass.SELF)

_DISCIPLINE_ROWS: Dict[Role, CaseCapabilities] = {
    Role.ADMIN: _FULL,
    Role.HR_MANAGER: _FULL,
    Role.HR_STAFF: _FILE_GLOBAL,
    Role.BOD: _APPROVE_GLOBAL,
    Role.GENERAL_MANAGER: _APPROVE_GLOBAL,
    Role.OPERATIONS_DIRECTOR: _FILE_BU,
    Role.BUSINESS_UNIT_MANAGER: _FILE_BU,
    Role.MANAGER: _FILE_TEAM,
    Role.AUDITOR: _VIEW_GLOBAL,
    Role.EMPLOYEE: _VIEW_SELF,
}

CASE_CAPABILITY_TABLE: Dict[CaseKind, Dict[Role, CaseCapabilities]] = {
    CaseKind.NTE: _DISCIPLINE_ROWS,
    CaseKind.RESOLUTION: _DISCIPLINE_ROWS,
    CaseKind.COE: {
        Role.ADMIN: _FULL,
        Role.HR_MANAGER: _FULL,
        Role.HR_STAFF: _FULL,
        Role.BOD: _VIEW_GLOBAL,
        Role.GENERAL_MANAGER: _FILE_SELF,
        Role.OPERATIONS_DIRECTOR: _FILE_SELF,
        Role.BUSINESS_UNIT_MANAGER: _FILE_SELF,
        Role.MANAGER: _FILE_SELF,
        Role.EMPLOYEE: _FILE_SELF,
    },
    CaseKind.OT: {
        Role.ADMIN: _FULL,
        Role.HR_MANAGER: _FULL,
        Role.HR_STAFF: _FILE_GLOBAL,
        Role.BOD: _FILE_SELF,
        Role.GENERAL_MANAGER: _FULL_BU,
        Role.OPERATIONS_DIRECTOR: _FULL_BU,
        Role.BUSINESS_UNIT_MANAGER: _FULL_BU,
        Role.MANAGER: _FULL_TEAM,
        Role.FINANCE_STAFF: _VIEW_GLOBAL,
        Role.AUDITOR: _VIEW_GLOBAL,
        Role.RECRUITER: _FILE_SELF,
        Role.EMPLOYEE: _FILE_SELF,
    },
    CaseKind.PAN: {
        Role.ADMIN: _FULL,
        Role.HR_MANAGER: _FULL,
        Role.HR_STAFF: _FILE_GLOBAL,
        Role.BOD: _APPROVE_GLOBAL,
        Role.GENERAL_MANAGER: _APPROVE_GLOBAL,
        Role.OPERATIONS_DIRECTOR: CaseCapabilities(False, True, True, ScopeClass.BU),
        Role.BUSINESS_UNIT_MANAGER: _FULL_BU,
        Role.MANAGER: _FULL_TEAM,
        Role.FINANCE_STAFF: _VIEW_GLOBAL,
        Role.AUDITOR: _VIEW_GLOBAL,
        Role.EMPLOYEE: _VIEW_SELF,
    },
    CaseKind.ENVELOPE: {
        Role.ADMIN: _FULL,
        Role.HR_MANAGER: _FULL,
        Role.HR_STAFF: _FILE_GLOBAL,
        Role.BOD: _APPROVE_GLOBAL,
        Role.GENERAL_MANAGER: _APPROVE_GLOBAL,
        Role.AUDITOR: _VIEW_GLOBAL,
        Role.OPERATIONS_DIRECTOR: _VIEW_SELF,
        Role.BUSINESS_UNIT_MANAGER: _VIEW_SELF,
        Role.MANAGER: _VIEW_SELF,
        Role.EMPLOYEE: _VIEW_SELF,
    },
    CaseKind.AWARD: {
        Role.ADMIN: _FULL,
        Role.HR_MANAGER: _FULL,
        Role.HR_STAFF: _FILE_GLOBAL,
        Role.BOD: _APPROVE_GLOBAL,
        Role.GENERAL_MANAGER: _APPROVE_GLOBAL,
        Role.OPERATIONS_DIRECTOR: _FILE_BU,
        Role.BUSINESS_UNIT_MANAGER: _FILE_BU,
        Role.MANAGER: _FILE_TEAM,
        Role.EMPLOYEE: _VIEW_SELF,
    },
}

# Case kinds where having direct reports grants approval over the team
DIRECT_REPORT_APPROVAL_KINDS: FrozenSet[CaseKind] = frozenset({CaseKind.OT})

# Resource whose permissions govern editing and resubmitting each case kind
CASE_RESOURCES: Dict[CaseKind, ResourceKind] = {
    CaseKind.NTE: ResourceKind.FEEDBACK,
    CaseKind.RESOLUTION: ResourceKind.FEEDBACK,
    CaseKind.COE: ResourceKind.COE,
    CaseKind.OT: ResourceKind.OT,
    CaseKind.PAN: ResourceKind.PAN,
    CaseKind.ENVELOPE: ResourceKind.FILES,
    CaseKind.AWARD: ResourceKind.EVALUATION,
}


# ===========================================
# TABLE VALIDATION
# ===========================================

def _parse_enum(enum_cls, raw: Any, what: str):
    if isinstance(raw, enum_cls):
        return raw
    for member in enum_cls:
        if raw == member.value or raw == member.name:
            return member
    raise ConfigurationException(
        f"Unknown {what} '{raw}' in permission table",
        details={what: str(raw), "allowed": [m.value for m in enum_cls]},
    )


def validate_permission_table(raw: Mapping[Any, Mapping[Any, Any]]) -> PermissionTable:
    """
    Validate a role -> resource -> permissions mapping exhaustively.
    
    Accepts enum members or their names/values. Every role is present in
    the result; roles or resources missing from the input map to no access.
    
    Raises:
        ConfigurationException: on any unknown role, resource or permission
    """
    table: PermissionTable = {role: {} for role in Role}
    for raw_role, resources in raw.items():
        role = _parse_enum(Role, raw_role, "role")
        for raw_resource, permissions in resources.items():
            resource = _parse_enum(ResourceKind, raw_resource, "resource")
            table[role][resource] = frozenset(
                _parse_enum(Permission, p, "permission") for p in permissions
            )
    return table


def build_permission_table(
    overrides: Optional[Mapping[Any, Mapping[Any, Any]]] = None,
) -> PermissionTable:
    """
    Build the effective permission table.
    
    Overrides replace the permission set of each (role, resource) pair
    they name; an empty list revokes access to that resource.
    """
    table = validate_permission_table(DEFAULT_ROLE_PERMISSIONS)
    if overrides:
        for role, resources in validate_permission_table(overrides).items():
            table[role].update(resources)
    return table


def get_case_capabilities(
    kind: CaseKind,
    role: Role,
    table: Optional[Mapping[CaseKind, Mapping[Role, CaseCapabilities]]] = None,
) -> CaseCapabilities:
    """Look up the capability row for a role on a case kind."""
    if table is None:
        table = CASE_CAPABILITY_TABLE
    return table.get(kind, {}).get(role, NO_CAPABILITIES)
