from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from erp_backend.app.core.database import get_db
from erp_backend.app.core.errors import NotFound
from erp_backend.app.deps.auth import get_current_user
from erp_backend.app.models.profile import Profile
from erp_backend.app.services.notify import list_notifications, mark_read

router = APIRouter(prefix="/api/notifications", tags=["notifications"])

class NotificationOut(BaseModel):
    id: int
    type: str
    category: Optional[str] = None
    title: str
    message: str
    priority: Optional[str] = None
    link_url: Optional[str] = None
    actor_id: Optional[str] = None
    entity_type: Optional[str] = None
    entity_id: Optional[int] = None
    rich_content: dict = {}
    is_read: bool
    created_at: datetime
    class Config:
        from_attributes = True

@router.get("", response_model=List[NotificationOut])
def api_list_notifications(unread_only: bool = False, limit: int = 50,
                           db: Session = Depends(get_db), user: Profile = Depends(get_current_user)):
    return [NotificationOut.model_validate(n) for n in list_notifications(db, user.id, unread_only, limit)]

@router.post("/{notification_id}/read", response_model=NotificationOut)
def api_mark_read(notification_id: int, db: Session = Depends(get_db), user: Profile = Depends(get_current_user)):
    row = mark_read(db, user.id, notification_id)
    if row is None:
        raise NotFound("Notification not found")
    return NotificationOut.model_validate(row)
