from sqlalchemy import Column, String, DateTime, JSON, Boolean
from datetime import datetime
import enum
import uuid

from erp_backend.app.core.database import Base

class Role(str, enum.Enum):
    EMPLOYEE = "employee"
    LEAD = "lead"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"

def _new_id() -> str:
    return str(uuid.uuid4())

class Profile(Base):
    """Actor directory entry. Read-only from the approval engine's point of view."""
    __tablename__ = "profiles"

    id = Column(String(64), primary_key=True, default=_new_id)
    full_name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True, index=True)
    role = Column(String(32), default=Role.EMPLOYEE.value, nullable=False, index=True)
    department = Column(String(128), nullable=True, index=True)
    lead_departments = Column(JSON, default=list)       # departments a lead is responsible for
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def led_departments(self) -> list:
        """Departments this profile leads; falls back to its own department."""
        led = [d for d in (self.lead_departments or []) if d]
        if led:
            return led
        return [self.department] if self.department else []
