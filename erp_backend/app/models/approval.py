from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON, Text, Boolean, Index, text
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from erp_backend.app.core.database import Base

class RecordStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

class ApprovalRequest(Base):
    """Parent entity of one run through a workflow (a ticket or a leave request)."""
    __tablename__ = "approval_requests"

    id = Column(Integer, primary_key=True)
    workflow_type = Column(String(32), nullable=False, index=True)   # "procurement" | "leave"
    subject_type = Column(String(64), nullable=False)                # "help_desk_ticket" | "leave_request"
    subject_id = Column(Integer, nullable=True, index=True)
    status = Column(String(32), nullable=False, index=True)          # "pending_approval" | terminal status
    current_stage = Column(String(64), nullable=True)                # None once terminal
    requester_id = Column(String(64), ForeignKey("profiles.id"), nullable=False, index=True)
    assignee_id = Column(String(64), ForeignKey("profiles.id"), nullable=True)
    title = Column(String(255), nullable=True)
    priority = Column(String(16), nullable=True)
    department = Column(String(128), nullable=True)
    category = Column(String(128), nullable=True)
    context = Column(JSON, default=dict)                             # {"reliever_id":..., "supervisor_id":..., "required_documents":[...]}
    rejected_stage = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    records = relationship(
        "ApprovalRecord",
        back_populates="request",
        order_by="ApprovalRecord.id",
    )

class ApprovalRecord(Base):
    """One row per (request, stage) attempt."""
    __tablename__ = "approval_records"

    id = Column(Integer, primary_key=True)
    request_id = Column(Integer, ForeignKey("approval_requests.id"), nullable=False, index=True)
    stage = Column(String(64), nullable=False)
    status = Column(String(16), default=RecordStatus.PENDING.value, nullable=False)
    approver_id = Column(String(64), ForeignKey("profiles.id"), nullable=True)
    comments = Column(Text, nullable=True)
    evidence_override = Column(Boolean, default=False, nullable=False)
    requested_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    decided_at = Column(DateTime, nullable=True)

    request = relationship("ApprovalRequest", back_populates="records")

    __table_args__ = (
        # at most one pending record per request
        Index(
            "uq_approval_records_one_pending",
            "request_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )
