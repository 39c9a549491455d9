# erp_backend/app/crud/leave.py
from __future__ import annotations
import logging
from datetime import date, datetime
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from erp_backend.app.core.errors import Forbidden, InvalidState, NotFound, ValidationError
from erp_backend.app.crud.approval import register_subject_hooks, start_request, started_event
from erp_backend.app.models.approval import ApprovalRecord, ApprovalRequest
from erp_backend.app.models.leave import LeaveBalance, LeaveEvidence, LeavePolicy, LeaveRequest, LeaveType
from erp_backend.app.models.profile import Profile, Role
from erp_backend.app.services.audit import mirror_audit, record_audit
from erp_backend.app.services.events import publish
from erp_backend.app.services.evidence import evidence_status
from erp_backend.app.services.notify import Message, notify_profiles
from erp_backend.app.utils.stages import LEAVE

logger = logging.getLogger(__name__)

# leave rows in these states block the same dates for requester and reliever
ACTIVE_LEAVE_STATUSES = ("pending", "approved")
EVIDENCE_STATUSES = ("verified", "rejected")
MEDICAL_CERTIFICATE = "medical_certificate"
LEAVE_LINK = "/dashboard/leave"

def _is_hr(profile: Profile) -> bool:
    return (profile.role or "") in (Role.ADMIN.value, Role.SUPER_ADMIN.value)

def _require_hr(profile: Profile) -> None:
    if not _is_hr(profile):
        raise Forbidden("Forbidden")


# -------------------------- types & policies --------------------------

def list_leave_types(db: Session) -> List[LeaveType]:
    return db.query(LeaveType).order_by(LeaveType.name.asc()).all()

def create_leave_type(db: Session, actor: Profile, code: str, name: str, max_days: int = 0) -> LeaveType:
    _require_hr(actor)
    code = (code or "").strip().lower()
    name = (name or "").strip()
    if not code or not name:
        raise ValidationError("code and name are required")
    if db.query(LeaveType).filter(LeaveType.code == code).first():
        raise ValidationError(f"Leave type '{code}' already exists")
    lt = LeaveType(code=code, name=name, max_days=max(0, int(max_days or 0)))
    db.add(lt)
    db.commit()
    db.refresh(lt)
    return lt

def get_leave_type(db: Session, leave_type_id: int) -> LeaveType:
    lt = db.get(LeaveType, leave_type_id)
    if not lt:
        raise NotFound("Leave type not found")
    return lt

def get_active_policy(db: Session, leave_type_id: int) -> Optional[LeavePolicy]:
    return (
        db.query(LeavePolicy)
        .filter(LeavePolicy.leave_type_id == leave_type_id, LeavePolicy.is_active == True)  # noqa: E712
        .first()
    )

def list_policies(db: Session) -> List[LeavePolicy]:
    return db.query(LeavePolicy).order_by(LeavePolicy.leave_type_id.asc()).all()

POLICY_FIELDS = ("annual_days", "notice_days", "max_days_per_request", "medical_certificate_after_days",
                 "required_documents", "override_allowed", "is_active")

def upsert_policy(db: Session, actor: Profile, leave_type_id: int, **fields) -> LeavePolicy:
    """Create or update the policy of a leave type. Unknown keys are ignored."""
    _require_hr(actor)
    get_leave_type(db, leave_type_id)
    p = db.query(LeavePolicy).filter(LeavePolicy.leave_type_id == leave_type_id).first()
    created = p is None
    if created:
        p = LeavePolicy(leave_type_id=leave_type_id)
        db.add(p)
    for key in POLICY_FIELDS:
        if key not in fields or fields[key] is None:
            continue
        val = fields[key]
        if key == "required_documents":
            val = [str(d).strip() for d in val if str(d).strip()]
        elif key not in ("override_allowed", "is_active"):
            val = int(val)
            if val < 0:
                raise ValidationError(f"{key} must be >= 0")
        setattr(p, key, val)
    audit = record_audit(db, "LEAVE_POLICY_CREATED" if created else "LEAVE_POLICY_UPDATED", "leave_policy",
                         leave_type_id, actor.id, {k: fields.get(k) for k in POLICY_FIELDS if k in fields},
                         commit=False)
    db.commit()
    db.refresh(p)
    mirror_audit(audit)
    return p


# -------------------------- balances --------------------------

def get_or_create_balance(db: Session, user_id: str, leave_type_id: int) -> LeaveBalance:
    bal = (
        db.query(LeaveBalance)
        .filter(LeaveBalance.user_id == user_id, LeaveBalance.leave_type_id == leave_type_id)
        .first()
    )
    if bal is None:
        policy = get_active_policy(db, leave_type_id)
        lt = db.get(LeaveType, leave_type_id)
        allocated = (policy.annual_days if policy and policy.annual_days else 0) or (lt.max_days if lt else 0)
        bal = LeaveBalance(user_id=user_id, leave_type_id=leave_type_id,
                           allocated_days=float(allocated or 0), used_days=0.0)
        db.add(bal)
        db.flush()
    return bal

def list_balances(db: Session, user_id: str) -> List[LeaveBalance]:
    return db.query(LeaveBalance).filter(LeaveBalance.user_id == user_id).all()


# -------------------------- validation helpers --------------------------

def _has_overlap(db: Session, user_id: str, start: date, end: date) -> bool:
    return (
        db.query(LeaveRequest.id)
        .filter(
            LeaveRequest.user_id == user_id,
            LeaveRequest.status.in_(ACTIVE_LEAVE_STATUSES),
            LeaveRequest.start_date <= end,
            LeaveRequest.end_date >= start,
        )
        .first()
        is not None
    )

def _active_profile(db: Session, profile_id: Optional[str], label: str) -> Profile:
    if not profile_id:
        raise ValidationError(f"{label} is required")
    p = db.get(Profile, profile_id)
    if p is None or p.is_active is False:
        raise ValidationError(f"{label} not found")
    return p

def default_supervisor(db: Session, requester: Profile) -> Profile:
    """Lead of the requester's department."""
    if not requester.department:
        raise ValidationError("Cannot determine your department for supervisor mapping")
    leads = (
        db.query(Profile)
        .filter(Profile.role == Role.LEAD.value, Profile.is_active == True)  # noqa: E712
        .order_by(Profile.created_at.asc(), Profile.id.asc())
        .all()
    )
    for p in leads:
        if p.id != requester.id and requester.department in p.led_departments():
            return p
    raise ValidationError("No department lead configured for your department")

def required_documents_for(policy: Optional[LeavePolicy], days: int) -> List[str]:
    if policy is None:
        return []
    docs = [d for d in (policy.required_documents or []) if d]
    threshold = int(policy.medical_certificate_after_days or 0)
    if threshold > 0 and days > threshold and MEDICAL_CERTIFICATE not in docs:
        docs.append(MEDICAL_CERTIFICATE)
    return docs

def check_eligibility(policy: Optional[LeavePolicy], leave_type: LeaveType, start: date,
                      days: int, today: Optional[date] = None) -> None:
    today = today or date.today()
    if policy is None:
        if leave_type.max_days and days > leave_type.max_days:
            raise ValidationError(f"This leave type allows at most {leave_type.max_days} days per request.")
        return
    if policy.notice_days and (start - today).days < policy.notice_days:
        raise ValidationError(f"This leave type requires at least {policy.notice_days} days notice.")
    if policy.max_days_per_request and days > policy.max_days_per_request:
        raise ValidationError(f"This leave type allows at most {policy.max_days_per_request} days per request.")


# -------------------------- requests --------------------------

def create_leave_request(
    db: Session,
    actor: Profile,
    leave_type_id: int,
    start_date: date,
    end_date: date,
    reliever_id: str,
    supervisor_id: Optional[str] = None,
    reason: Optional[str] = None,
) -> LeaveRequest:
    """
    Validate and file a leave request, then open the leave approval chain at
    the reliever stage.
    """
    if not start_date or not end_date:
        raise ValidationError("Missing required fields")
    if end_date < start_date:
        raise ValidationError("End date must be after start date")
    leave_type = get_leave_type(db, leave_type_id)
    days = (end_date - start_date).days + 1

    reliever = _active_profile(db, reliever_id, "Reliever")
    supervisor = _active_profile(db, supervisor_id, "Supervisor") if supervisor_id else default_supervisor(db, actor)
    if reliever.id == actor.id:
        raise ValidationError("You cannot be your own reliever")
    if supervisor.id == actor.id:
        raise ValidationError("You cannot be your own supervisor")
    if reliever.id == supervisor.id:
        raise ValidationError("Reliever and supervisor must be different people")

    policy = get_active_policy(db, leave_type_id)
    check_eligibility(policy, leave_type, start_date, days)

    if _has_overlap(db, actor.id, start_date, end_date):
        raise ValidationError("You already have an overlapping leave request for this date range")
    if _has_overlap(db, reliever.id, start_date, end_date):
        raise ValidationError("Selected reliever is unavailable in the requested date range")

    required = required_documents_for(policy, days)
    try:
        bal = get_or_create_balance(db, actor.id, leave_type_id)
        if bal.allocated_days > 0 and bal.balance_days < days:
            raise ValidationError(f"Insufficient leave balance. You have {bal.balance_days:g} days remaining.")

        leave = LeaveRequest(
            user_id=actor.id,
            leave_type_id=leave_type_id,
            start_date=start_date,
            end_date=end_date,
            days_count=days,
            reason=(reason or "").strip() or None,
            reliever_id=reliever.id,
            supervisor_id=supervisor.id,
            status="pending",
            required_documents=required,
        )
        db.add(leave)
        db.flush()
        req = start_request(
            db,
            LEAVE,
            subject_id=leave.id,
            requester_id=actor.id,
            title=f"{leave_type.name} leave {start_date.isoformat()} to {end_date.isoformat()}",
            department=actor.department,
            category=leave_type.code,
            context={
                "reliever_id": reliever.id,
                "supervisor_id": supervisor.id,
                "required_documents": required,
            },
        )
        leave.approval_request_id = req.id
        audit = record_audit(db, "LEAVE_REQUEST_CREATED", "leave_request", leave.id, actor.id,
                             {"leave_type": leave_type.code, "days": days, "reliever_id": reliever.id,
                              "supervisor_id": supervisor.id, "required_documents": required},
                             commit=False)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(leave)
    mirror_audit(audit)
    logger.info("[leave] request=%s user=%s days=%s docs=%s", leave.id, actor.id, days, required)

    publish(db, [started_event(req)])
    return leave

def get_leave_request(db: Session, leave_request_id: int) -> LeaveRequest:
    leave = db.get(LeaveRequest, leave_request_id)
    if not leave:
        raise NotFound("Leave request not found")
    return leave

def list_leave_requests(db: Session, actor: Profile, scope: str = "mine",
                        status: Optional[str] = None) -> List[LeaveRequest]:
    q = db.query(LeaveRequest)
    if scope == "all":
        _require_hr(actor)
    elif scope == "mine":
        q = q.filter(LeaveRequest.user_id == actor.id)
    elif scope == "relieving":
        q = q.filter((LeaveRequest.reliever_id == actor.id) | (LeaveRequest.supervisor_id == actor.id))
    else:
        raise ValidationError('scope must be "mine", "relieving" or "all"')
    if status:
        q = q.filter(LeaveRequest.status == status)
    return q.order_by(LeaveRequest.created_at.desc(), LeaveRequest.id.desc()).all()

def evidence_summary(db: Session, leave: LeaveRequest) -> Tuple[bool, List[str]]:
    return evidence_status(db, leave.id, list(leave.required_documents or []))


# -------------------------- evidence --------------------------

def upload_evidence(db: Session, actor: Profile, leave_request_id: int, document_type: str,
                    file_url: str, notes: Optional[str] = None) -> LeaveEvidence:
    document_type = (document_type or "").strip()
    file_url = (file_url or "").strip()
    if not leave_request_id or not document_type or not file_url:
        raise ValidationError("leave_request_id, document_type and file_url are required")
    leave = get_leave_request(db, leave_request_id)
    if leave.user_id != actor.id:
        raise Forbidden("You can only upload evidence for your own request")
    if leave.status != "pending":
        raise InvalidState(f"Leave request is already {leave.status}")

    ev = LeaveEvidence(leave_request_id=leave.id, document_type=document_type, file_url=file_url,
                       uploaded_by=actor.id, notes=(notes or "").strip() or None, status="pending")
    db.add(ev)
    db.commit()
    db.refresh(ev)
    logger.info("[leave] evidence %s uploaded for request=%s type=%s", ev.id, leave.id, document_type)
    return ev

def verify_evidence(db: Session, actor: Profile, evidence_id: int, status: str,
                    notes: Optional[str] = None) -> LeaveEvidence:
    _require_hr(actor)
    if status not in EVIDENCE_STATUSES:
        raise ValidationError('status must be "verified" or "rejected"')
    ev = db.get(LeaveEvidence, evidence_id)
    if not ev:
        raise NotFound("Evidence not found")

    ev.status = status
    ev.notes = (notes or "").strip() or ev.notes
    ev.verified_by = actor.id
    ev.verified_at = datetime.utcnow()
    audit = record_audit(db, "LEAVE_EVIDENCE_REVIEWED", "leave_evidence", ev.id, actor.id,
                         {"leave_request_id": ev.leave_request_id, "document_type": ev.document_type,
                          "status": status}, commit=False)
    db.commit()
    db.refresh(ev)
    mirror_audit(audit)

    leave = db.get(LeaveRequest, ev.leave_request_id)
    if leave is not None:
        complete, missing = evidence_summary(db, leave)
        text = f"Your {ev.document_type.replace('_', ' ')} was {status}."
        if status == "verified" and complete:
            text += " All required evidence is now verified."
        elif missing:
            text += f" Still missing: {', '.join(missing)}."
        notify_profiles(
            db,
            [db.get(Profile, leave.user_id)],
            Message(type="system", title=f"Leave evidence {status}", message=text,
                    priority="normal" if status == "verified" else "high"),
            link_url=LEAVE_LINK,
            entity_type="leave_request",
            entity_id=leave.id,
            actor_id=actor.id,
            rich_content={"evidence_id": ev.id, "missing_documents": missing},
            category="leave",
        )
    return ev


# -------------------------- engine hooks --------------------------

def _leave_for(db: Session, req: ApprovalRequest) -> Optional[LeaveRequest]:
    leave = db.get(LeaveRequest, req.subject_id) if req.subject_id else None
    if leave is None:
        logger.warning("[leave] approval request %s points at missing leave request %s", req.id, req.subject_id)
    return leave

def _on_approved(db: Session, req: ApprovalRequest, record: ApprovalRecord, actor: Profile, now: datetime) -> None:
    leave = _leave_for(db, req)
    if leave is None:
        return
    leave.status = "approved"
    leave.decided_at = now
    bal = get_or_create_balance(db, leave.user_id, leave.leave_type_id)
    bal.used_days = float(bal.used_days or 0) + float(leave.days_count)
    bal.updated_at = now

def _on_rejected(db: Session, req: ApprovalRequest, record: ApprovalRecord, actor: Profile, now: datetime) -> None:
    leave = _leave_for(db, req)
    if leave is None:
        return
    leave.status = "rejected"
    leave.decided_at = now

register_subject_hooks(LEAVE, on_approved=_on_approved, on_rejected=_on_rejected)
