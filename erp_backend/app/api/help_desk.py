from datetime import datetime
from typing import Any, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from erp_backend.app.core.database import get_db
from erp_backend.app.crud.ticket import (
    assign_ticket, create_ticket, decide_ticket, events_for, get_visible_ticket, list_tickets, pivot_ticket,
)
from erp_backend.app.deps.auth import get_current_user
from erp_backend.app.models.profile import Profile

router = APIRouter(prefix="/api/help-desk", tags=["help-desk"])

class TicketIn(BaseModel):
    title: str
    service_department: str
    description: Optional[str] = None
    request_type: str = "support"       # "support" | "procurement"
    category: Optional[str] = None
    priority: Optional[str] = "medium"

class TicketOut(BaseModel):
    id: int
    ticket_number: Optional[str] = None
    title: str
    description: Optional[str] = None
    request_type: str
    category: Optional[str] = None
    service_department: str
    priority: str
    status: str
    requester_id: str
    assigned_to: Optional[str] = None
    approval_required: bool
    approval_request_id: Optional[int] = None
    procurement_reason: Optional[str] = None
    sla_target_at: Optional[datetime] = None
    submitted_at: datetime
    paused_at: Optional[datetime] = None
    resumed_at: Optional[datetime] = None
    class Config:
        from_attributes = True

class TicketEventOut(BaseModel):
    id: int
    event_type: str
    actor_id: Optional[str] = None
    old_status: Optional[str] = None
    new_status: Optional[str] = None
    details: dict = {}
    created_at: datetime
    class Config:
        from_attributes = True

class TicketDetail(TicketOut):
    events: List[TicketEventOut] = []

class AssignIn(BaseModel):
    assigned_to: str

class PivotIn(BaseModel):
    reason: Optional[str] = None

class TicketDecisionIn(BaseModel):
    decision: Any = None
    comments: Any = None

@router.post("/tickets", response_model=TicketOut, status_code=201)
def api_create_ticket(body: TicketIn, db: Session = Depends(get_db), user: Profile = Depends(get_current_user)):
    t = create_ticket(db, user, body.title, body.service_department, body.description,
                      body.request_type, body.category, body.priority)
    return TicketOut.model_validate(t)

@router.get("/tickets", response_model=List[TicketOut])
def api_list_tickets(scope: str = "mine", status: Optional[str] = None,
                     db: Session = Depends(get_db), user: Profile = Depends(get_current_user)):
    return [TicketOut.model_validate(t) for t in list_tickets(db, user, scope, status)]

@router.get("/tickets/{ticket_id}", response_model=TicketDetail)
def api_get_ticket(ticket_id: int, db: Session = Depends(get_db), user: Profile = Depends(get_current_user)):
    t = get_visible_ticket(db, ticket_id, user)
    out = TicketDetail.model_validate(t)
    out.events = [TicketEventOut.model_validate(e) for e in events_for(db, t.id)]
    return out

@router.post("/tickets/{ticket_id}/assign", response_model=TicketOut)
def api_assign_ticket(ticket_id: int, body: AssignIn, db: Session = Depends(get_db),
                      user: Profile = Depends(get_current_user)):
    return TicketOut.model_validate(assign_ticket(db, ticket_id, user, body.assigned_to))

@router.post("/tickets/{ticket_id}/pivot", response_model=TicketOut)
def api_pivot_ticket(ticket_id: int, body: Optional[PivotIn] = None, db: Session = Depends(get_db),
                     user: Profile = Depends(get_current_user)):
    return TicketOut.model_validate(pivot_ticket(db, ticket_id, user, body.reason if body else None))

@router.post("/tickets/{ticket_id}/approvals", response_model=dict)
def api_ticket_decision(ticket_id: int, body: Optional[TicketDecisionIn] = None, db: Session = Depends(get_db),
                        user: Profile = Depends(get_current_user)):
    body = body or TicketDecisionIn()
    return decide_ticket(db, ticket_id, user, body.decision, body.comments).to_dict()
