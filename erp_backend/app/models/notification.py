from __future__ import annotations
from sqlalchemy import Column, Integer, String, DateTime, JSON, Boolean
from datetime import datetime
from erp_backend.app.core.database import Base

class Notification(Base):
    """In-app notification row; e-mail is mirrored best effort."""
    __tablename__ = "notifications"
    id = Column(Integer, primary_key=True)
    user_id = Column(String(64), index=True, nullable=False)
    type = Column(String(32), nullable=False)          # approval_request | approval_granted | approval_rejected | task_assigned | system
    category = Column(String(32), default="approvals")
    title = Column(String(255), nullable=False)
    message = Column(String(1000), nullable=False)
    priority = Column(String(16), default="normal")    # low | normal | high | urgent
    link_url = Column(String(255), nullable=True)
    actor_id = Column(String(64), nullable=True)
    entity_type = Column(String(64), nullable=True)
    entity_id = Column(Integer, nullable=True)
    rich_content = Column(JSON, default=dict)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
