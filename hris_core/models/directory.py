"""
HRIS Core - Organization Directory Models

Users and organizational units as delivered by the external directory sync.
These tables are read-only to the access and approval core.

Role Catalogue:
- Organization-wide: Admin, HR Manager, HR Staff, Board of Director,
  General Manager, Operations Director, Business Unit Manager,
  Finance Staff, Auditor, Recruiter
- Team-scoped: Manager (direct reports only)
- Self-service: Employee
"""

from enum import Enum
from typing import List, Optional

from sqlalchemy import JSON, String, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from hris_core.database import Base
from hris_core.models.base import TimestampMixin


# ===========================================
# ENUMS
# ===========================================

class Role(str, Enum):
    """Directory roles. Values are the labels used by the HR directory."""
    ADMIN = "Admin"
    HR_MANAGER = "HR Manager"
    HR_STAFF = "HR Staff"
    BOD = "Board of Director"
    GENERAL_MANAGER = "GeneralManager"
    OPERATIONS_DIRECTOR = "Operations Director"
    BUSINESS_UNIT_MANAGER = "Business Unit Manager"
    MANAGER = "Manager"
    RECRUITER = "Recruiter"
    FINANCE_STAFF = "Finance Staff"
    AUDITOR = "Auditor"
    EMPLOYEE = "Employee"


class ActorStatus(str, Enum):
    """Employment status of a directory user."""
    ACTIVE = "Active"
    INACTIVE = "Inactive"


class AccessScopeType(str, Enum):
    """Baseline organizational reach attached to a user."""
    GLOBAL = "GLOBAL"
    SPECIFIC = "SPECIFIC"
    HOME_ONLY = "HOME_ONLY"


class OrgUnitKind(str, Enum):
    """Kinds of organizational unit."""
    BUSINESS_UNIT = "business_unit"
    DEPARTMENT = "department"


# ===========================================
# MODELS
# ===========================================

class OrgUnitRecord(Base, TimestampMixin):
    """Business unit or department."""
    
    __tablename__ = "org_units"
    
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    kind: Mapped[OrgUnitKind] = mapped_column(SQLEnum(OrgUnitKind), nullable=False, index=True)
    
    # Departments may hang off a business unit
    parent_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    
    def __repr__(self) -> str:
        return f"<OrgUnitRecord(id={self.id}, name={self.name}, kind={self.kind})>"


class DirectoryUser(Base, TimestampMixin):
    """A user as known to the HR directory."""
    
    __tablename__ = "hris_users"
    
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    role: Mapped[Role] = mapped_column(SQLEnum(Role), nullable=False, default=Role.EMPLOYEE)
    status: Mapped[ActorStatus] = mapped_column(
        SQLEnum(ActorStatus),
        nullable=False,
        default=ActorStatus.ACTIVE,
    )
    
    business_unit_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    department_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    
    # Back-reference only; a manager does not own their reports
    manager_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    
    # NULL means HOME_ONLY
    access_scope_type: Mapped[Optional[AccessScopeType]] = mapped_column(
        SQLEnum(AccessScopeType),
        nullable=True,
    )
    allowed_org_unit_ids: Mapped[Optional[List[str]]] = mapped_column(JSON, nullable=True)
    
    def __repr__(self) -> str:
        return f"<DirectoryUser(id={self.id}, name={self.name}, role={self.role})>"
