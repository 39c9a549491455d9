from __future__ import annotations
from sqlalchemy import Column, Integer, String, DateTime, Date, ForeignKey, JSON, Text, Boolean, Float, UniqueConstraint
from datetime import datetime

from erp_backend.app.core.database import Base

class LeaveType(Base):
    __tablename__ = "leave_types"
    id = Column(Integer, primary_key=True)
    code = Column(String(32), unique=True, nullable=False)
    name = Column(String(128), nullable=False)
    max_days = Column(Integer, default=0, nullable=False)

class LeavePolicy(Base):
    __tablename__ = "leave_policies"
    id = Column(Integer, primary_key=True)
    leave_type_id = Column(Integer, ForeignKey("leave_types.id"), unique=True, nullable=False)
    annual_days = Column(Integer, default=0, nullable=False)
    notice_days = Column(Integer, default=0, nullable=False)
    max_days_per_request = Column(Integer, default=0, nullable=False)          # 0 = no limit
    medical_certificate_after_days = Column(Integer, default=0, nullable=False)  # 0 = never required
    required_documents = Column(JSON, default=list)                             # ["medical_certificate", ...]
    override_allowed = Column(Boolean, default=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

class LeaveRequest(Base):
    __tablename__ = "leave_requests"
    id = Column(Integer, primary_key=True)
    user_id = Column(String(64), ForeignKey("profiles.id"), nullable=False, index=True)
    leave_type_id = Column(Integer, ForeignKey("leave_types.id"), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    days_count = Column(Integer, nullable=False)
    reason = Column(Text, nullable=True)
    reliever_id = Column(String(64), ForeignKey("profiles.id"), nullable=False)
    supervisor_id = Column(String(64), ForeignKey("profiles.id"), nullable=False)
    status = Column(String(32), default="pending", nullable=False, index=True)   # pending | approved | rejected
    required_documents = Column(JSON, default=list)
    approval_request_id = Column(Integer, ForeignKey("approval_requests.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    decided_at = Column(DateTime, nullable=True)

class LeaveEvidence(Base):
    __tablename__ = "leave_evidence"
    id = Column(Integer, primary_key=True)
    leave_request_id = Column(Integer, ForeignKey("leave_requests.id"), nullable=False, index=True)
    document_type = Column(String(64), nullable=False)
    file_url = Column(String(1000), nullable=False)
    status = Column(String(16), default="pending", nullable=False)   # pending | verified | rejected
    notes = Column(Text, nullable=True)
    uploaded_by = Column(String(64), nullable=True)
    verified_by = Column(String(64), nullable=True)
    verified_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

class LeaveBalance(Base):
    __tablename__ = "leave_balances"
    id = Column(Integer, primary_key=True)
    user_id = Column(String(64), ForeignKey("profiles.id"), nullable=False, index=True)
    leave_type_id = Column(Integer, ForeignKey("leave_types.id"), nullable=False)
    allocated_days = Column(Float, default=0, nullable=False)
    used_days = Column(Float, default=0, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (UniqueConstraint("user_id", "leave_type_id", name="uq_leave_balance_user_type"),)

    @property
    def balance_days(self) -> float:
        return float(self.allocated_days or 0) - float(self.used_days or 0)
