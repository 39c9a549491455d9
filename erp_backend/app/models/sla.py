from __future__ import annotations
from sqlalchemy import Column, Integer, String, DateTime, Boolean, UniqueConstraint
from datetime import datetime
from erp_backend.app.core.database import Base

class ApprovalSlaPolicy(Base):
    __tablename__ = "approval_sla_policies"
    id = Column(Integer, primary_key=True)
    workflow_type = Column(String(32), nullable=False)
    stage = Column(String(64), nullable=False)
    due_hours = Column(Integer, default=24, nullable=False)
    reminder_hours_before = Column(Integer, default=4, nullable=False)
    escalate_to_role = Column(String(32), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (UniqueConstraint("workflow_type", "stage", name="uq_sla_workflow_stage"),)
