from datetime import date, datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from erp_backend.app.core.database import get_db
from erp_backend.app.crud.leave import (
    create_leave_request, create_leave_type, evidence_summary, list_balances, list_leave_requests,
    list_leave_types, list_policies, upload_evidence, upsert_policy, verify_evidence,
)
from erp_backend.app.deps.auth import get_current_user
from erp_backend.app.models.profile import Profile

router = APIRouter(prefix="/api/hr/leave", tags=["leave"])

class LeaveTypeIn(BaseModel):
    code: str
    name: str
    max_days: int = Field(default=0, ge=0)

class LeaveTypeOut(LeaveTypeIn):
    id: int
    class Config:
        from_attributes = True

class LeavePolicyIn(BaseModel):
    leave_type_id: int
    annual_days: Optional[int] = Field(default=None, ge=0)
    notice_days: Optional[int] = Field(default=None, ge=0)
    max_days_per_request: Optional[int] = Field(default=None, ge=0)
    medical_certificate_after_days: Optional[int] = Field(default=None, ge=0)
    required_documents: Optional[List[str]] = None
    override_allowed: Optional[bool] = None
    is_active: Optional[bool] = None

class LeavePolicyOut(BaseModel):
    id: int
    leave_type_id: int
    annual_days: int
    notice_days: int
    max_days_per_request: int
    medical_certificate_after_days: int
    required_documents: List[str] = []
    override_allowed: bool
    is_active: bool
    class Config:
        from_attributes = True

class LeaveRequestIn(BaseModel):
    leave_type_id: int
    start_date: date
    end_date: date
    reliever_id: str
    supervisor_id: Optional[str] = None
    reason: Optional[str] = None

class LeaveRequestOut(BaseModel):
    id: int
    user_id: str
    leave_type_id: int
    start_date: date
    end_date: date
    days_count: int
    reason: Optional[str] = None
    reliever_id: str
    supervisor_id: str
    status: str
    required_documents: List[str] = []
    approval_request_id: Optional[int] = None
    created_at: datetime
    decided_at: Optional[datetime] = None
    evidence_complete: Optional[bool] = None
    missing_documents: List[str] = []
    class Config:
        from_attributes = True

class EvidenceIn(BaseModel):
    leave_request_id: int
    document_type: str
    file_url: str
    notes: Optional[str] = None

class EvidenceVerifyIn(BaseModel):
    status: str                     # "verified" | "rejected"
    notes: Optional[str] = None

class EvidenceOut(BaseModel):
    id: int
    leave_request_id: int
    document_type: str
    file_url: str
    status: str
    notes: Optional[str] = None
    uploaded_by: Optional[str] = None
    verified_by: Optional[str] = None
    verified_at: Optional[datetime] = None
    created_at: datetime
    class Config:
        from_attributes = True

class BalanceOut(BaseModel):
    leave_type_id: int
    allocated_days: float
    used_days: float
    balance_days: float
    class Config:
        from_attributes = True

def _leave_out(db: Session, leave) -> LeaveRequestOut:
    out = LeaveRequestOut.model_validate(leave)
    out.evidence_complete, out.missing_documents = evidence_summary(db, leave)
    return out

@router.get("/types", response_model=List[LeaveTypeOut])
def api_list_types(db: Session = Depends(get_db), user: Profile = Depends(get_current_user)):
    return [LeaveTypeOut.model_validate(t) for t in list_leave_types(db)]

@router.post("/types", response_model=LeaveTypeOut, status_code=201)
def api_create_type(body: LeaveTypeIn, db: Session = Depends(get_db), user: Profile = Depends(get_current_user)):
    return LeaveTypeOut.model_validate(create_leave_type(db, user, body.code, body.name, body.max_days))

@router.get("/policies", response_model=List[LeavePolicyOut])
def api_list_policies(db: Session = Depends(get_db), user: Profile = Depends(get_current_user)):
    return [LeavePolicyOut.model_validate(p) for p in list_policies(db)]

@router.post("/policies", response_model=LeavePolicyOut)
def api_upsert_policy(body: LeavePolicyIn, db: Session = Depends(get_db), user: Profile = Depends(get_current_user)):
    fields = body.model_dump(exclude={"leave_type_id"}, exclude_none=True)
    return LeavePolicyOut.model_validate(upsert_policy(db, user, body.leave_type_id, **fields))

@router.post("/requests", response_model=LeaveRequestOut, status_code=201)
def api_create_request(body: LeaveRequestIn, db: Session = Depends(get_db), user: Profile = Depends(get_current_user)):
    leave = create_leave_request(db, user, body.leave_type_id, body.start_date, body.end_date,
                                 body.reliever_id, body.supervisor_id, body.reason)
    return _leave_out(db, leave)

@router.get("/requests", response_model=List[LeaveRequestOut])
def api_list_requests(scope: str = "mine", status: Optional[str] = None,
                      db: Session = Depends(get_db), user: Profile = Depends(get_current_user)):
    return [_leave_out(db, r) for r in list_leave_requests(db, user, scope, status)]

@router.post("/evidence", response_model=EvidenceOut, status_code=201)
def api_upload_evidence(body: EvidenceIn, db: Session = Depends(get_db), user: Profile = Depends(get_current_user)):
    ev = upload_evidence(db, user, body.leave_request_id, body.document_type, body.file_url, body.notes)
    return EvidenceOut.model_validate(ev)

@router.post("/evidence/{evidence_id}/verify", response_model=EvidenceOut)
def api_verify_evidence(evidence_id: int, body: EvidenceVerifyIn, db: Session = Depends(get_db),
                        user: Profile = Depends(get_current_user)):
    return EvidenceOut.model_validate(verify_evidence(db, user, evidence_id, body.status, body.notes))

@router.get("/balances", response_model=List[BalanceOut])
def api_balances(db: Session = Depends(get_db), user: Profile = Depends(get_current_user)):
    return [BalanceOut.model_validate(b) for b in list_balances(db, user.id)]
