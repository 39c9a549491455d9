from datetime import datetime
from typing import Any, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from erp_backend.app.core.database import get_db
from erp_backend.app.core.errors import Forbidden, NotFound
from erp_backend.app.core.logging import bind_context
from erp_backend.app.crud.approval import decide, get_request, list_records, list_requests
from erp_backend.app.deps.auth import get_current_user, require_role
from erp_backend.app.models.profile import Profile
from erp_backend.app.services.resolver import can_decide
from erp_backend.app.services.sla import (
    approval_queue, list_sla_policies, send_reminders, upsert_sla_policy,
)
from erp_backend.app.utils.stages import get_workflow

router = APIRouter(prefix="/api/approvals", tags=["approvals"])

ADMIN_ROLES = ("admin", "super_admin")

class DecisionIn(BaseModel):
    # loosely typed; decide() checks values only after the actor is authorized
    decision: Any = None                # "approved" | "rejected"
    comments: Any = None
    override_evidence: Any = False

class DecisionOut(BaseModel):
    request_id: int
    stage: str
    decision: str
    status: str
    next_stage: Optional[str] = None

class ApprovalRecordOut(BaseModel):
    id: int
    stage: str
    status: str
    approver_id: Optional[str] = None
    comments: Optional[str] = None
    evidence_override: bool = False
    requested_at: datetime
    decided_at: Optional[datetime] = None
    class Config:
        from_attributes = True

class ApprovalSummary(BaseModel):
    id: int
    workflow_type: str
    subject_type: str
    subject_id: Optional[int] = None
    status: str
    current_stage: Optional[str] = None
    requester_id: str
    assignee_id: Optional[str] = None
    title: Optional[str] = None
    priority: Optional[str] = None
    department: Optional[str] = None
    rejected_stage: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None
    class Config:
        from_attributes = True

class ApprovalDetail(ApprovalSummary):
    stages: List[str] = []
    records: List[ApprovalRecordOut] = []
    can_decide: bool = False

class SlaPolicyIn(BaseModel):
    workflow_type: str
    stage: str
    due_hours: int = Field(default=24, gt=0)
    reminder_hours_before: int = Field(default=4, ge=0)
    escalate_to_role: Optional[str] = None
    is_active: bool = True

class SlaPolicyOut(SlaPolicyIn):
    id: int
    class Config:
        from_attributes = True

def _may_view(user: Profile, req) -> bool:
    if user.role in ADMIN_ROLES or user.id in (req.requester_id, req.assignee_id):
        return True
    ctx = req.context or {}
    if user.id in (ctx.get("reliever_id"), ctx.get("supervisor_id")):
        return True
    return bool(req.current_stage) and can_decide(user, req, req.current_stage)

@router.get("", response_model=List[ApprovalSummary])
def api_list_approvals(status: Optional[str] = None, workflow_type: Optional[str] = None,
                       mine: bool = False, db: Session = Depends(get_db),
                       user: Profile = Depends(get_current_user)):
    if not mine and user.role not in ADMIN_ROLES:
        mine = True
    rows = list_requests(db, status=status, workflow_type=workflow_type,
                         requester_id=user.id if mine else None)
    return [ApprovalSummary.model_validate(r) for r in rows]

@router.get("/queue", response_model=List[dict])
def api_queue(workflow_type: Optional[str] = None, db: Session = Depends(get_db),
              user: Profile = Depends(get_current_user)):
    return approval_queue(db, user, workflow_type)

@router.post("/sla/reminders", response_model=dict)
def api_sla_reminders(db: Session = Depends(get_db), user: Profile = Depends(require_role(*ADMIN_ROLES))):
    return send_reminders(db, user)

@router.get("/sla/policies", response_model=List[SlaPolicyOut])
def api_list_sla_policies(workflow_type: Optional[str] = None, db: Session = Depends(get_db),
                          user: Profile = Depends(get_current_user)):
    return [SlaPolicyOut.model_validate(p) for p in list_sla_policies(db, workflow_type)]

@router.post("/sla/policies", response_model=SlaPolicyOut)
def api_upsert_sla_policy(body: SlaPolicyIn, db: Session = Depends(get_db),
                          user: Profile = Depends(get_current_user)):
    p = upsert_sla_policy(db, user, body.workflow_type, body.stage, body.due_hours,
                          body.reminder_hours_before, body.escalate_to_role, body.is_active)
    return SlaPolicyOut.model_validate(p)

@router.get("/{request_id}", response_model=ApprovalDetail)
def api_get_approval(request_id: int, db: Session = Depends(get_db),
                     user: Profile = Depends(get_current_user)):
    req = get_request(db, request_id)
    if req is None:
        raise NotFound(f"Approval request {request_id} not found")
    if not _may_view(user, req):
        raise Forbidden("Forbidden")
    out = ApprovalDetail.model_validate(req)
    out.stages = get_workflow(req.workflow_type).stage_ids
    out.records = [ApprovalRecordOut.model_validate(r) for r in list_records(db, req.id)]
    out.can_decide = bool(req.current_stage) and can_decide(user, req, req.current_stage)
    return out

@router.post("/{request_id}/decide", response_model=DecisionOut)
def api_decide(request_id: int, payload: Optional[DecisionIn] = None, db: Session = Depends(get_db),
               user: Profile = Depends(get_current_user)):
    bind_context(request_id=request_id)
    payload = payload or DecisionIn()
    result = decide(db, request_id, user, payload.decision, payload.comments, payload.override_evidence)
    return DecisionOut(**result.to_dict())
