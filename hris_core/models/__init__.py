"""
HRIS Core - SQLAlchemy Models Package

This package contains all database models for the application.
"""

from hris_core.models.base import BaseModel, TimestampMixin
from hris_core.models.directory import (
    AccessScopeType,
    ActorStatus,
    DirectoryUser,
    OrgUnitKind,
    OrgUnitRecord,
    Role,
)
from hris_core.models.case import (
    ApprovalStepRecord,
    CaseEventRecord,
    CaseEventType,
    CaseKind,
    CaseRecord,
    CaseStatus,
    StepStatus,
)

__all__ = [
    "BaseModel",
    "TimestampMixin",
    "AccessScopeType",
    "ActorStatus",
    "DirectoryUser",
    "OrgUnitKind",
    "OrgUnitRecord",
    "Role",
    "ApprovalStepRecord",
    "CaseEventRecord",
    "CaseEventType",
    "CaseKind",
    "CaseRecord",
    "CaseStatus",
    "StepStatus",
]
