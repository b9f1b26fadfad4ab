"""
HRIS Core - Case Models

Approval-bearing records (NTE, Resolution, COE, OT, PAN, Envelope, Award)
share one table. Steps of every routing cycle and the event history are
kept for audit; cases are never deleted.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from sqlalchemy import (
    JSON, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint,
    Enum as SQLEnum, Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hris_core.models.base import BaseModel


# ===========================================
# ENUMS
# ===========================================

class CaseKind(str, Enum):
    """Entity types routed through the approval core."""
    NTE = "nte"                    # Notice to Explain
    RESOLUTION = "resolution"      # Disciplinary resolution
    COE = "coe"                    # Certificate of Employment request
    OT = "ot"                      # Overtime request
    PAN = "pan"                    # Personnel Action Notice
    ENVELOPE = "envelope"          # Document envelope for signature
    AWARD = "award"                # Award nomination


class CaseStatus(str, Enum):
    """Aggregate status of a case."""
    DRAFT = "Draft"
    PENDING_APPROVAL = "PendingApproval"
    APPROVED = "Approved"
    DECLINED = "Declined"
    PENDING_ACKNOWLEDGEMENT = "PendingAcknowledgement"
    ACKNOWLEDGED = "Acknowledged"
    CLOSED = "Closed"


class StepStatus(str, Enum):
    """Status of a single approval step."""
    PENDING = "Pending"
    APPROVED = "Approved"
    DECLINED = "Declined"
    CANCELLED = "Cancelled"


class CaseEventType(str, Enum):
    """Entries in a case's audit history."""
    SUBMITTED = "submitted"
    STEP_APPROVED = "step_approved"
    STEP_DECLINED = "step_declined"
    STEPS_CANCELLED = "steps_cancelled"
    APPROVED = "approved"
    DECLINED = "declined"
    REOPENED = "reopened"
    RESUBMITTED = "resubmitted"
    ACKNOWLEDGEMENT_REQUESTED = "acknowledgement_requested"
    ACKNOWLEDGED = "acknowledged"
    CLOSED = "closed"


# ===========================================
# MODELS
# ===========================================

class CaseRecord(BaseModel):
    """A routed case. `version` guards concurrent read-modify-write."""
    
    __tablename__ = "cases"
    
    kind: Mapped[CaseKind] = mapped_column(SQLEnum(CaseKind), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    
    subject_employee_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    business_unit_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    department_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    requested_by_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    
    status: Mapped[CaseStatus] = mapped_column(
        SQLEnum(CaseStatus),
        nullable=False,
        default=CaseStatus.DRAFT,
        index=True,
    )
    sequential: Mapped[bool] = mapped_column(default=False, nullable=False)
    cycle: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    
    closure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    
    steps: Mapped[List["ApprovalStepRecord"]] = relationship(
        "ApprovalStepRecord",
        back_populates="case",
        cascade="all",
        passive_deletes=True,
        order_by="ApprovalStepRecord.step_order",
    )
    events: Mapped[List["CaseEventRecord"]] = relationship(
        "CaseEventRecord",
        back_populates="case",
        cascade="all",
        passive_deletes=True,
        order_by="CaseEventRecord.sequence",
    )
    
    def __repr__(self) -> str:
        return f"<CaseRecord(id={self.id}, kind={self.kind}, status={self.status})>"


class ApprovalStepRecord(BaseModel):
    """One approver's position within a routing cycle."""
    
    __tablename__ = "case_approval_steps"
    __table_args__ = (
        UniqueConstraint("case_id", "cycle", "step_order", name="uq_case_approval_steps_position"),
    )
    
    case_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("cases.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    cycle: Mapped[int] = mapped_column(Integer, nullable=False)
    step_order: Mapped[int] = mapped_column(Integer, nullable=False)
    
    approver_user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    # Role label at assignment time, kept even if the approver's role changes
    approver_role_at_assignment: Mapped[str] = mapped_column(String(64), nullable=False)
    
    status: Mapped[StepStatus] = mapped_column(
        SQLEnum(StepStatus),
        nullable=False,
        default=StepStatus.PENDING,
    )
    decided_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    
    case: Mapped["CaseRecord"] = relationship("CaseRecord", back_populates="steps")


class CaseEventRecord(BaseModel):
    """Append-only history entry for a case."""
    
    __tablename__ = "case_events"
    
    case_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("cases.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    cycle: Mapped[int] = mapped_column(Integer, nullable=False)
    event_type: Mapped[CaseEventType] = mapped_column(SQLEnum(CaseEventType), nullable=False)
    actor_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    
    case: Mapped["CaseRecord"] = relationship("CaseRecord", back_populates="events")
