from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON, Text, Boolean
from datetime import datetime
import enum

from erp_backend.app.core.database import Base

class TicketStatus(str, enum.Enum):
    NEW = "new"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    PENDING_APPROVAL = "pending_approval"
    APPROVED_FOR_PROCUREMENT = "approved_for_procurement"
    REJECTED = "rejected"
    RESOLVED = "resolved"
    CLOSED = "closed"
    CANCELLED = "cancelled"

PRIORITIES = ("low", "medium", "high", "urgent")

class HelpDeskTicket(Base):
    __tablename__ = "help_desk_tickets"

    id = Column(Integer, primary_key=True)
    ticket_number = Column(String(32), unique=True, index=True, nullable=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    request_type = Column(String(32), default="support", nullable=False)   # "support" | "procurement"
    category = Column(String(128), nullable=True)
    service_department = Column(String(128), nullable=False, index=True)
    priority = Column(String(16), default="medium", nullable=False)
    status = Column(String(32), default=TicketStatus.NEW.value, nullable=False, index=True)
    requester_id = Column(String(64), ForeignKey("profiles.id"), nullable=False, index=True)
    assigned_to = Column(String(64), ForeignKey("profiles.id"), nullable=True, index=True)
    assigned_by = Column(String(64), ForeignKey("profiles.id"), nullable=True)
    approval_required = Column(Boolean, default=False, nullable=False)
    approval_request_id = Column(Integer, ForeignKey("approval_requests.id"), nullable=True)
    procurement_reason = Column(Text, nullable=True)
    sla_target_at = Column(DateTime, nullable=True)
    submitted_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    assigned_at = Column(DateTime, nullable=True)
    paused_at = Column(DateTime, nullable=True)
    resumed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

class HelpDeskEvent(Base):
    """Ticket timeline."""
    __tablename__ = "help_desk_events"

    id = Column(Integer, primary_key=True)
    ticket_id = Column(Integer, ForeignKey("help_desk_tickets.id"), nullable=False, index=True)
    actor_id = Column(String(64), nullable=True)
    event_type = Column(String(64), nullable=False)   # ticket_created | ticket_assigned | pivot_to_procurement | approval_*
    old_status = Column(String(32), nullable=True)
    new_status = Column(String(32), nullable=True)
    details = Column(JSON, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
